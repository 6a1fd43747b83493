"""Counters for observed samples."""

import threading
from collections import Counter
from typing import Dict, Tuple

# (listener type, device MAC address, device class)
SampleTags = Tuple[str, str, str]


class SampleCounter:
    """Thread-safe counter of accepted samples, tagged per listener and device."""

    def __init__(self, name: str = 'ruuvi.samples_observed'):
        self.name = name
        self._counts: Counter = Counter()
        self._lock = threading.Lock()

    def add(self, listener_type: str, mac_address: str, device_class: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[(listener_type, mac_address, device_class)] += amount

    def snapshot(self) -> Dict[SampleTags, int]:
        with self._lock:
            return dict(self._counts)

    def total(self) -> int:
        with self._lock:
            return sum(self._counts.values())


# Process-wide counter used by listeners unless one is injected
SAMPLES_OBSERVED = SampleCounter()
