"""Per-device accumulation of samples between batch publishes."""

import threading
from enum import Enum
from typing import Dict, List, Optional

from .mac import MacAddressKey
from .models import DecodedSample


class BatchPublishBehaviour(str, Enum):
    """Which samples for a device are included in a batch."""
    ALL_SAMPLES = 'AllSamples'
    LATEST_SAMPLE_ONLY = 'LatestSampleOnly'


class DeviceQueue:
    """Samples for a single device.

    Keeps every sample in arrival order, or only the most recent one when
    latest_only is set.

    Uses __slots__ since one instance exists per device.
    """
    __slots__ = ('latest_only', '_items')

    def __init__(self, latest_only: bool):
        self.latest_only = latest_only
        self._items: List[DecodedSample] = []

    def add(self, sample: DecodedSample) -> None:
        if self.latest_only:
            self._items = [sample]
        else:
            self._items.append(sample)

    def drain(self) -> List[DecodedSample]:
        """Return the queued samples (oldest first) and clear the queue."""
        items = self._items
        self._items = []
        return items

    def __len__(self) -> int:
        return len(self._items)


class BatchScheduler:
    """
    Accumulates samples per device until they are drained for publishing.

    With BatchPublishBehaviour.ALL_SAMPLES every sample is kept; with
    LATEST_SAMPLE_ONLY only the last sample per device is kept. Device queues
    are keyed by MAC address (case-insensitive) and are created on the first
    sample after a drain.

    Enqueue and drain may be called concurrently from different tasks or threads.
    """

    def __init__(self, behaviour: BatchPublishBehaviour = BatchPublishBehaviour.ALL_SAMPLES):
        self.behaviour = BatchPublishBehaviour(behaviour)
        self._queues: Dict[MacAddressKey, DeviceQueue] = {}
        self._lock = threading.Lock()
        self._pending = 0
        self.total_enqueued = 0
        self.total_drained = 0

    def enqueue(self, sample: DecodedSample) -> bool:
        """Add a sample to its device queue.

        Returns:
            False if the sample was ignored because it has no MAC address
        """
        if not sample.mac_address:
            return False

        key = MacAddressKey(sample.mac_address)
        with self._lock:
            queue: Optional[DeviceQueue] = self._queues.get(key)
            if queue is None:
                queue = DeviceQueue(self.behaviour == BatchPublishBehaviour.LATEST_SAMPLE_ONLY)
                self._queues[key] = queue

            before = len(queue)
            queue.add(sample)
            self._pending += len(queue) - before
            self.total_enqueued += 1
        return True

    def drain_all(self) -> List[DecodedSample]:
        """Remove and return the queued samples of every device.

        Samples of one device are returned in the order they were enqueued.
        """
        with self._lock:
            queues = self._queues
            self._queues = {}
            self._pending = 0

        samples: List[DecodedSample] = []
        for queue in queues.values():
            samples.extend(queue.drain())

        with self._lock:
            self.total_drained += len(samples)
        return samples

    @property
    def pending_count(self) -> int:
        """Number of samples waiting to be drained."""
        with self._lock:
            return self._pending

    def device_count(self) -> int:
        with self._lock:
            return len(self._queues)
