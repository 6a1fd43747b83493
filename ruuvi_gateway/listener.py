"""
Listener that turns raw BLE advertisements into decoded samples.

The BLE stack is wrapped by an AdvertisementSource. Sources push raw
advertisements from whatever thread their callbacks run on; the listener
hands them over to the event loop through an unbounded queue and decodes,
filters and annotates them in a plain pull loop.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import AsyncIterator, Callable, Dict, Optional, Protocol

from .constants import DEVICE_CLASS, ICON_INFO, ICON_RECEIVE
from .devices import DeviceResolver, NullDeviceResolver
from .mac import MacAddressKey, mac_to_string, merge_truncated_mac, try_mac_to_int
from .models import DataFormat, DecodedSample, RawAdvertisement
from .payload import try_decode
from .telemetry import SAMPLES_OBSERVED, SampleCounter

# Callback used by sources to deliver advertisements. Passing None tells the
# listener that the source has finished.
EmitCallback = Callable[[Optional[RawAdvertisement]], None]


class AdvertisementSource(Protocol):
    """A producer of raw BLE advertisements (e.g. a bleak scanner)."""

    async def start(self, emit: EmitCallback) -> None:
        ...

    async def stop(self) -> None:
        ...


@dataclass(frozen=True)
class ListenerOptions:
    """Options for SampleListener.

    enable_extended_advertisement_formats has no default: when True, data
    format 6 advertisements are ignored because the same device also sends
    the richer Extended v1 format. Only enable it if the receiver supports
    Bluetooth 5 extended advertisements.
    """
    enable_extended_advertisement_formats: bool
    known_devices_only: bool = False
    allow_duplicate_advertisements: bool = False


async def _next_item(queue: asyncio.Queue, stop_event: asyncio.Event) -> Optional[RawAdvertisement]:
    """Wait for the next queued advertisement; returns None once stop_event is set."""
    if stop_event.is_set():
        return None
    if not queue.empty():
        return queue.get_nowait()

    get_task = asyncio.ensure_future(queue.get())
    stop_task = asyncio.ensure_future(stop_event.wait())
    try:
        await asyncio.wait({get_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (get_task, stop_task):
            if not task.done():
                task.cancel()

    if get_task.done() and not get_task.cancelled():
        return get_task.result()
    return None


class SampleListener:
    """Emits decoded samples from an AdvertisementSource until stopped."""

    def __init__(
        self,
        source: AdvertisementSource,
        options: ListenerOptions,
        device_resolver: Optional[DeviceResolver] = None,
        logger: Optional[logging.Logger] = None,
        counter: Optional[SampleCounter] = None
    ):
        self.source = source
        self.options = options
        self.device_resolver = device_resolver or NullDeviceResolver()
        self.logger = logger or logging.getLogger(__name__)
        self.counter = counter or SAMPLES_OBSERVED

        self._active = False
        self._listening = asyncio.Event()
        self._stopped = asyncio.Event()
        self._stopped.set()

    @property
    def listening(self) -> bool:
        return self._listening.is_set()

    async def wait_until_listening(self, timeout: Optional[float] = None) -> None:
        """Wait until listen() has started the advertisement source."""
        await asyncio.wait_for(self._listening.wait(), timeout)

    async def wait_until_stopped(self, timeout: Optional[float] = None) -> None:
        """Wait until a running listen() has finished."""
        await asyncio.wait_for(self._stopped.wait(), timeout)

    async def listen(self, stop_event: Optional[asyncio.Event] = None) -> AsyncIterator[DecodedSample]:
        """Listen for samples until stop_event is set or the source finishes.

        Setting stop_event ends the iteration normally; it is not an error.
        """
        if self._active:
            raise RuntimeError("Listener is already listening")

        stop_event = stop_event or asyncio.Event()
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        last_sequences: Dict[MacAddressKey, int] = {}

        def emit(advertisement: Optional[RawAdvertisement]) -> None:
            # BLE callbacks may run on a thread other than the event loop's
            if self._active and not loop.is_closed():
                loop.call_soon_threadsafe(queue.put_nowait, advertisement)

        self._active = True
        self._stopped.clear()
        source_name = type(self.source).__name__
        try:
            self.logger.info(f"{ICON_INFO} Starting listener using {source_name}")
            await self.source.start(emit)
        except BaseException:
            self._active = False
            self._stopped.set()
            raise

        self._listening.set()
        try:
            while True:
                advertisement = await _next_item(queue, stop_event)
                if advertisement is None:
                    break

                sample = self._process(advertisement, last_sequences)
                if sample is None:
                    continue

                self.logger.debug(
                    f"{ICON_RECEIVE} Sample from {sample.mac_address} "
                    f"(format: 0x{sample.data_format:02X}, RSSI: {sample.signal_strength})"
                )
                self.counter.add(source_name, sample.mac_address or '', DEVICE_CLASS)
                yield sample
        finally:
            self._active = False
            self._listening.clear()
            try:
                await self.source.stop()
            finally:
                self._stopped.set()
                self.logger.info(f"Listener stopped (samples observed: {self.counter.total()})")

    def _process(
        self,
        advertisement: RawAdvertisement,
        last_sequences: Dict[MacAddressKey, int]
    ) -> Optional[DecodedSample]:
        """Decode, filter and annotate a single advertisement."""
        sample, ok = try_decode(
            advertisement.payload,
            advertisement.signal_strength,
            advertisement.timestamp
        )
        if not ok:
            # Foreign or malformed payloads are expected noise
            self.logger.debug(
                f"Ignoring payload from {advertisement.address}: "
                f"{bytes(advertisement.payload).hex().upper()}"
            )
            return None

        if sample.data_format == DataFormat.DATA_FORMAT_6:
            if self.options.enable_extended_advertisement_formats:
                self.logger.debug(
                    f"Ignoring data format 6 sample from {advertisement.address}: "
                    f"extended advertisement formats are enabled"
                )
                return None
            # Data format 6 only carries the last three bytes of the MAC address
            sample = replace(
                sample,
                mac_address=merge_truncated_mac(advertisement.address, sample.mac_address)
            )

        if sample.mac_address is None:
            hardware_address = try_mac_to_int(advertisement.address)
            if hardware_address is not None:
                sample = replace(sample, mac_address=mac_to_string(hardware_address))

        device = self.device_resolver.lookup(sample.mac_address) if sample.mac_address else None
        if self.options.known_devices_only and device is None:
            self.logger.debug(f"Ignoring sample from unknown device {sample.mac_address}")
            return None

        if (
            not self.options.allow_duplicate_advertisements
            and sample.mac_address
            and sample.measurement_sequence is not None
        ):
            key = MacAddressKey(sample.mac_address)
            if last_sequences.get(key) == sample.measurement_sequence:
                self.logger.debug(
                    f"Ignoring duplicate advertisement from {sample.mac_address} "
                    f"(sequence {sample.measurement_sequence})"
                )
                return None
            last_sequences[key] = sample.measurement_sequence

        return sample.with_device(device)
