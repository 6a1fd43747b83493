"""Device registry lookups."""

from typing import Dict, Iterable, List, Optional, Protocol

from .mac import MacAddressKey
from .models import Device


class DeviceResolver(Protocol):
    """Maps a MAC address to known-device information."""

    def lookup(self, mac_address: str) -> Optional[Device]:
        ...


class NullDeviceResolver:
    """Resolver that knows no devices."""

    def lookup(self, mac_address: str) -> Optional[Device]:
        return None


class DeviceCollection:
    """In-memory device registry keyed by MAC address.

    Lookups use MAC address comparison rules, so "aa-bb-cc-dd-ee-ff" finds a
    device registered as "AA:BB:CC:DD:EE:FF".
    """

    def __init__(self, devices: Optional[Iterable[Device]] = None):
        self._devices: Dict[MacAddressKey, Device] = {}
        for device in devices or ():
            self.add(device)

    def add(self, device: Device) -> None:
        if not device.mac_address:
            raise ValueError("Device must have a MAC address")
        self._devices[MacAddressKey(device.mac_address)] = device

    def lookup(self, mac_address: str) -> Optional[Device]:
        if not mac_address:
            return None
        return self._devices.get(MacAddressKey(mac_address))

    def devices(self) -> List[Device]:
        return list(self._devices.values())

    def __len__(self) -> int:
        return len(self._devices)

    @classmethod
    def from_config(cls, entries: Iterable[dict]) -> 'DeviceCollection':
        """Build a collection from the 'devices' section of the configuration."""
        return cls(
            Device(
                mac_address=entry['mac_address'],
                device_id=entry.get('device_id'),
                display_name=entry.get('display_name'),
            )
            for entry in entries
        )
