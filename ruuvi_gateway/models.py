"""Data types passed between the listener, the batching layer and the sinks."""

import json
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, Optional

from .constants import DATA_FORMAT_6, DATA_FORMAT_EXTENDED_V1, DATA_FORMAT_RAW_V2


class DataFormat(IntEnum):
    """Advertisement payload formats, identified by the first payload byte."""
    RAW_V2 = DATA_FORMAT_RAW_V2
    DATA_FORMAT_6 = DATA_FORMAT_6
    EXTENDED_V1 = DATA_FORMAT_EXTENDED_V1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RawAdvertisement:
    """Manufacturer data received from the BLE stack, before decoding."""
    address: Optional[str]
    payload: bytes
    signal_strength: Optional[float] = None
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class Device:
    """A known device from the device registry."""
    mac_address: str
    device_id: Optional[str] = None
    display_name: Optional[str] = None


# JSON property names for DecodedSample attributes. Attributes not listed here
# are not serialized.
_JSON_NAMES = {
    'timestamp': 'timestamp',
    'signal_strength': 'signalStrength',
    'data_format': 'dataFormat',
    'device_id': 'deviceId',
    'display_name': 'displayName',
    'mac_address': 'macAddress',
    'calibrated': 'calibrated',
    'temperature': 'temperature',
    'humidity': 'humidity',
    'pressure': 'pressure',
    'acceleration_x': 'accelerationX',
    'acceleration_y': 'accelerationY',
    'acceleration_z': 'accelerationZ',
    'battery_voltage': 'batteryVoltage',
    'tx_power': 'txPower',
    'pm1_0': 'pm10',
    'pm2_5': 'pm25',
    'pm4_0': 'pm40',
    'pm10_0': 'pm100',
    'co2': 'co2',
    'voc': 'voc',
    'nox': 'nox',
    'luminosity': 'luminosity',
    'movement_counter': 'movementCounter',
    'measurement_sequence': 'measurementSequence',
}


@dataclass(frozen=True)
class DecodedSample:
    """A normalized sensor reading decoded from a single advertisement.

    Optional fields are None when the data format does not carry them or the
    device reported its "not available" value.
    """
    data_format: DataFormat
    timestamp: datetime = field(default_factory=utc_now)
    signal_strength: Optional[float] = None
    mac_address: Optional[str] = None
    calibrated: Optional[bool] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    pressure: Optional[float] = None
    acceleration_x: Optional[float] = None
    acceleration_y: Optional[float] = None
    acceleration_z: Optional[float] = None
    battery_voltage: Optional[float] = None
    tx_power: Optional[float] = None
    pm1_0: Optional[float] = None
    pm2_5: Optional[float] = None
    pm4_0: Optional[float] = None
    pm10_0: Optional[float] = None
    co2: Optional[float] = None
    voc: Optional[int] = None
    nox: Optional[int] = None
    luminosity: Optional[float] = None
    movement_counter: Optional[int] = None
    measurement_sequence: Optional[int] = None
    device_id: Optional[str] = None
    display_name: Optional[str] = None

    def with_device(self, device: Optional[Device]) -> 'DecodedSample':
        """Return a copy annotated with the device ID and display name of a known device."""
        if device is None:
            return self
        return replace(self, device_id=device.device_id, display_name=device.display_name)

    def without(self, *names: str) -> 'DecodedSample':
        """Return a copy with the named measurement fields removed.

        Used to strip readings before republishing a sample.
        """
        if 'data_format' in names or 'timestamp' in names:
            raise ValueError("data_format and timestamp cannot be removed")
        return replace(self, **{name: None for name in names})

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dict with camelCase keys; absent fields are omitted."""
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, IntEnum):
                value = int(value)
            data[_JSON_NAMES[f.name]] = value
        return data

    def to_json(self) -> str:
        """Convert to a compact JSON string."""
        return json.dumps(self.to_dict(), separators=(',', ':'))
