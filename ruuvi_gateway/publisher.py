"""
Publisher pipeline: observes a listener and forwards samples to a destination.

Samples are published immediately, or collected per device and published in
batches on a fixed interval. In both modes, samples are handed to the
destination through an unbounded queue drained by a background task, so a
slow destination never blocks the listener.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Optional, Protocol

from .batching import BatchPublishBehaviour, BatchScheduler
from .constants import (
    DEFAULT_MAX_BATCH_SIZE,
    DEFAULT_PUBLISH_INTERVAL,
    ICON_ERROR,
    ICON_INFO,
    MAX_BATCH_SIZE_LIMIT,
)
from .errors import AlreadyRunningError, ConfigError
from .models import DecodedSample

# Marks the end of the outbound queue
_STOP = object()


class Listener(Protocol):
    """Source of decoded samples consumed by the publisher."""

    def listen(self, stop_event: Optional[asyncio.Event] = None) -> AsyncIterator[DecodedSample]:
        ...


@dataclass(frozen=True)
class PublisherOptions:
    """Options for PublisherPipeline.

    A publish_interval of zero (or less) publishes samples as soon as they are
    observed. A positive interval (seconds) publishes batches, with
    per_device_behaviour deciding whether a batch holds every sample of a
    device or only the latest one.
    """
    publish_interval: float = DEFAULT_PUBLISH_INTERVAL
    per_device_behaviour: BatchPublishBehaviour = BatchPublishBehaviour.ALL_SAMPLES
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE
    # Called for every sample before it is queued; may return a modified
    # sample, or None to drop it.
    prepare_for_publish: Optional[Callable[[DecodedSample], Optional[DecodedSample]]] = None

    def __post_init__(self):
        if not isinstance(self.publish_interval, (int, float)):
            raise ConfigError(f"publish_interval must be a number, got: {self.publish_interval!r}")
        if not isinstance(self.max_batch_size, int) or not 1 <= self.max_batch_size <= MAX_BATCH_SIZE_LIMIT:
            raise ConfigError(
                f"max_batch_size must be between 1 and {MAX_BATCH_SIZE_LIMIT}, got: {self.max_batch_size!r}"
            )
        object.__setattr__(self, 'per_device_behaviour', BatchPublishBehaviour(self.per_device_behaviour))


class PublisherPipeline(ABC):
    """Base class for publishing observed samples to a destination.

    Subclasses implement publish(), and can override open() and close() to
    manage connections for the lifetime of a run() call.
    """

    # Destination name used in log messages
    destination = 'destination'

    def __init__(
        self,
        listener: Listener,
        options: Optional[PublisherOptions] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.listener = listener
        self.options = options or PublisherOptions()
        self.logger = logger or logging.getLogger(__name__)

        # Called after every accepted sample, in both immediate and batched mode
        self.on_sample_received: Optional[Callable[[DecodedSample], None]] = None

        self.stats = {
            'samples_received': 0,
            'samples_published': 0,
            'publish_errors': 0,
            'batch_flushes': 0
        }

        self._running = False
        self._running_event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._flush_event: Optional[asyncio.Event] = None

    @property
    def batched(self) -> bool:
        """True if samples are published in batches on an interval."""
        return self.options.publish_interval > 0

    @property
    def running(self) -> bool:
        return self._running

    async def wait_until_running(self, timeout: Optional[float] = None) -> None:
        """Wait until run() has started."""
        await asyncio.wait_for(self._running_event.wait(), timeout)

    def flush(self) -> None:
        """Request that the current batch is published now.

        Does not wait for the publish. Safe to call from any thread; does
        nothing in immediate mode or when the publisher is not running.
        """
        flush_event = self._flush_event
        loop = self._loop
        if flush_event is None or loop is None or loop.is_closed():
            return

        try:
            current_loop = asyncio.get_running_loop()
        except RuntimeError:
            current_loop = None

        if current_loop is loop:
            flush_event.set()
        else:
            loop.call_soon_threadsafe(flush_event.set)

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Observe the listener and publish samples until stop_event is set.

        Setting stop_event (or the listener finishing) ends the run normally,
        after any samples still waiting in the current batch are published.

        Raises:
            AlreadyRunningError: run() is already active on this publisher
        """
        if self._running:
            raise AlreadyRunningError()

        self._running = True
        try:
            self._loop = asyncio.get_running_loop()
            self._running_event.set()
            await self._run_core(stop_event or asyncio.Event())
        finally:
            self._running = False
            self._running_event.clear()
            self._flush_event = None
            self._loop = None

    async def _run_core(self, stop_event: asyncio.Event) -> None:
        self.logger.info(f"Starting {self.destination} publisher")
        self.logger.info(
            f"Publish interval: {self.options.publish_interval}s "
            f"(0=immediate, >0=batched)"
        )
        if self.batched:
            self.logger.info(f"Per-device publish behaviour: {self.options.per_device_behaviour.value}")

        await self.open()
        try:
            outbound: asyncio.Queue = asyncio.Queue()
            publish_task = asyncio.create_task(self._publish_worker(outbound))

            scheduler: Optional[BatchScheduler] = None
            background: List[asyncio.Task] = []
            if self.batched:
                scheduler = BatchScheduler(self.options.per_device_behaviour)
                flush_event = asyncio.Event()
                self._flush_event = flush_event
                background = [
                    asyncio.create_task(self._interval_timer(flush_event)),
                    asyncio.create_task(self._flush_worker(flush_event, scheduler, outbound)),
                ]

            try:
                async with aclosing(self.listener.listen(stop_event)) as samples:
                    async for sample in samples:
                        self._handle_sample(sample, scheduler, outbound)
            finally:
                self._flush_event = None
                for task in background:
                    task.cancel()
                await asyncio.gather(*background, return_exceptions=True)

                if scheduler is not None:
                    # Publish whatever is left of the current batch window
                    self.logger.info("Flushing remaining samples before shutdown...")
                    self._move_to_outbound(scheduler.drain_all(), outbound)

                outbound.put_nowait(_STOP)
                try:
                    await publish_task
                except asyncio.CancelledError:
                    publish_task.cancel()
                    raise
        finally:
            await self.close()
            self.logger.info(f"Stopped {self.destination} publisher")
            self.logger.info(f"Final stats: {self.stats}")

    def _handle_sample(
        self,
        sample: DecodedSample,
        scheduler: Optional[BatchScheduler],
        outbound: asyncio.Queue
    ) -> None:
        """Queue a sample from the listener for publishing."""
        if self.options.prepare_for_publish is not None:
            try:
                sample = self.options.prepare_for_publish(sample)
            except Exception as e:
                self.logger.error(f"{ICON_ERROR} Error preparing sample for publish: {e}", exc_info=True)
                return
            if sample is None:
                return

        if not sample.mac_address:
            return

        self.stats['samples_received'] += 1
        if scheduler is None:
            outbound.put_nowait(sample)
        else:
            scheduler.enqueue(sample)

        if self.on_sample_received is not None:
            try:
                self.on_sample_received(sample)
            except Exception as e:
                self.logger.error(f"{ICON_ERROR} Error in sample received callback: {e}", exc_info=True)

    def _move_to_outbound(self, samples: List[DecodedSample], outbound: asyncio.Queue) -> None:
        if not samples:
            return

        self.stats['batch_flushes'] += 1
        self.logger.info(
            f"{ICON_INFO} Flushing batch: {len(samples)} sample(s) "
            f"[Publish interval: {self.options.publish_interval}s, "
            f"Behaviour: {self.options.per_device_behaviour.value}]"
        )
        for sample in samples:
            outbound.put_nowait(sample)

    async def _interval_timer(self, flush_event: asyncio.Event) -> None:
        """Request a flush every publish interval."""
        while True:
            await asyncio.sleep(self.options.publish_interval)
            flush_event.set()

    async def _flush_worker(
        self,
        flush_event: asyncio.Event,
        scheduler: BatchScheduler,
        outbound: asyncio.Queue
    ) -> None:
        """Move the current batch to the outbound queue whenever a flush is requested."""
        while True:
            await flush_event.wait()
            # Timer and manual flush requests that arrive together are handled once
            flush_event.clear()
            self.logger.debug(
                f"Flush requested: {scheduler.pending_count} sample(s) pending "
                f"from {scheduler.device_count()} device(s)"
            )
            self._move_to_outbound(scheduler.drain_all(), outbound)

    async def _publish_worker(self, outbound: asyncio.Queue) -> None:
        """Publish queued samples, up to max_batch_size at a time, until the stop marker."""
        while True:
            item = await outbound.get()
            if item is _STOP:
                return

            batch = [item]
            stop = False
            while len(batch) < self.options.max_batch_size and not outbound.empty():
                item = outbound.get_nowait()
                if item is _STOP:
                    stop = True
                    break
                batch.append(item)

            await self._publish_batch(batch)
            if stop:
                return

    async def _publish_batch(self, batch: List[DecodedSample]) -> None:
        try:
            await self.publish(batch)
            self.stats['samples_published'] += len(batch)
        except Exception as e:
            # Publish errors must not stop the pipeline
            self.stats['publish_errors'] += 1
            self.logger.error(
                f"{ICON_ERROR} Error publishing batch of {len(batch)} sample(s) "
                f"to {self.destination}: {e}",
                exc_info=True
            )

    async def open(self) -> None:
        """Prepare the destination before samples are published."""

    async def close(self) -> None:
        """Release destination resources after the run has finished."""

    @abstractmethod
    async def publish(self, samples: List[DecodedSample]) -> None:
        """Write a batch of samples to the destination."""
