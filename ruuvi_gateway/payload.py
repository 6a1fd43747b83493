"""
Decoder for Ruuvi manufacturer data payloads.

Supports RAWv2 (data format 5), data format 6 and Extended v1 (data format E1).
See https://docs.ruuvi.com/communication/bluetooth-advertisements for the
wire formats.

All instrument readings are big-endian on the wire. Every field has a
reserved "not available" value, which decodes to None rather than to a number.
"""

import math
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from .constants import (
    PAYLOAD_LENGTH_DATA_FORMAT_6,
    PAYLOAD_LENGTH_EXTENDED_V1,
    PAYLOAD_LENGTH_RAW_V2,
)
from .errors import DecodeError, FormatMismatchError, InvalidLengthError, UnknownFormatError
from .mac import format_mac_bytes
from .models import DataFormat, DecodedSample, utc_now

# Step size of the 8-bit logarithmic luminosity encoding
_LUMINOSITY_LOG_DELTA = math.log(65_535 + 1) / 254

# Flag bits in the shared flags byte of data formats 6 and E1
_FLAG_CALIBRATION_IN_PROGRESS = 0b0000_0001
_FLAG_VOC_LSB = 0b0100_0000
_FLAG_NOX_LSB = 0b1000_0000


def _unsigned(buffer: bytes, offset: int, count: int) -> int:
    return int.from_bytes(buffer[offset:offset + count], 'big', signed=False)


def _signed16(buffer: bytes, offset: int) -> int:
    return int.from_bytes(buffer[offset:offset + 2], 'big', signed=True)


def _temperature(buffer: bytes, offset: int) -> Optional[float]:
    raw = _signed16(buffer, offset)
    # 0x8000 (minimum int16) means "not available"
    return None if raw == -0x8000 else round(raw * 0.005, 3)


def _humidity(buffer: bytes, offset: int) -> Optional[float]:
    raw = _unsigned(buffer, offset, 2)
    return None if raw == 0xFFFF else round(raw * 0.0025, 4)


def _pressure(buffer: bytes, offset: int) -> Optional[float]:
    raw = _unsigned(buffer, offset, 2)
    return None if raw == 0xFFFF else round((raw + 50_000) / 100, 2)


def _acceleration(buffer: bytes, offset: int) -> Optional[float]:
    raw = _signed16(buffer, offset)
    return None if raw == -0x8000 else round(raw * 0.001, 3)


def _power_info(buffer: bytes, offset: int) -> Tuple[Optional[float], Optional[float]]:
    raw = _unsigned(buffer, offset, 2)
    voltage_raw = raw >> 5  # 11 most-significant bits
    tx_power_raw = raw & 0x1F  # 5 least-significant bits

    battery_voltage = None if voltage_raw == 2047 else round((voltage_raw + 1600) * 0.001, 3)
    tx_power = None if tx_power_raw == 31 else float(-40 + 2 * tx_power_raw)
    return battery_voltage, tx_power


def _particulate_matter(buffer: bytes, offset: int) -> Optional[float]:
    raw = _unsigned(buffer, offset, 2)
    return None if raw == 0xFFFF else round(raw * 0.1, 1)


def _co2(buffer: bytes, offset: int) -> Optional[float]:
    raw = _unsigned(buffer, offset, 2)
    return None if raw == 0xFFFF else float(raw)


def _voc_nox_index(buffer: bytes, offset: int, flags_offset: int, flag_mask: int) -> Optional[int]:
    # 9-bit value: the raw byte plus one flag bit as the least-significant bit
    low_bit = 1 if buffer[flags_offset] & flag_mask else 0
    raw = (buffer[offset] << 1) | low_bit
    return None if raw == 0x1FF else raw


def _luminosity(buffer: bytes, offset: int) -> Optional[float]:
    raw = _unsigned(buffer, offset, 3)
    return None if raw == 0xFFFFFF else round(raw * 0.01, 2)


def _log_luminosity(buffer: bytes, offset: int) -> Optional[float]:
    raw = buffer[offset]
    if raw == 0xFF:
        return None
    code = round(math.log(raw + 1) / _LUMINOSITY_LOG_DELTA)
    return math.exp(code * _LUMINOSITY_LOG_DELTA) - 1


def _movement_counter(buffer: bytes, offset: int) -> Optional[int]:
    raw = buffer[offset]
    return None if raw == 0xFF else raw


def _measurement_sequence(buffer: bytes, offset: int, count: int) -> Optional[int]:
    # Width is 8, 16 or 24 bits depending on the data format
    raw = _unsigned(buffer, offset, count)
    return None if raw == (1 << (8 * count)) - 1 else raw


def _calibrated(buffer: bytes, flags_offset: int) -> bool:
    return (buffer[flags_offset] & _FLAG_CALIBRATION_IN_PROGRESS) == 0


def _mac_address(buffer: bytes, offset: int, count: int) -> Optional[str]:
    # MAC addresses are always big-endian
    raw = buffer[offset:offset + count]
    return None if raw == b'\xff' * count else format_mac_bytes(raw)


def _check_payload(payload: bytes, data_format: DataFormat, length: int) -> bytes:
    if len(payload) < length:
        raise InvalidLengthError(length, len(payload))
    if payload[0] != data_format:
        raise FormatMismatchError(data_format, payload[0])
    return bytes(payload[:length])


def parse_raw_v2(
    payload: bytes,
    signal_strength: Optional[float] = None,
    timestamp: Optional[datetime] = None
) -> DecodedSample:
    """Decode a 24-byte RAWv2 (data format 5) payload.

    Raises:
        InvalidLengthError: payload is shorter than 24 bytes
        FormatMismatchError: payload is not a RAWv2 payload
    """
    buffer = _check_payload(payload, DataFormat.RAW_V2, PAYLOAD_LENGTH_RAW_V2)
    battery_voltage, tx_power = _power_info(buffer, 13)

    return DecodedSample(
        data_format=DataFormat.RAW_V2,
        timestamp=timestamp or utc_now(),
        signal_strength=signal_strength,
        temperature=_temperature(buffer, 1),
        humidity=_humidity(buffer, 3),
        pressure=_pressure(buffer, 5),
        acceleration_x=_acceleration(buffer, 7),
        acceleration_y=_acceleration(buffer, 9),
        acceleration_z=_acceleration(buffer, 11),
        battery_voltage=battery_voltage,
        tx_power=tx_power,
        movement_counter=_movement_counter(buffer, 15),
        measurement_sequence=_measurement_sequence(buffer, 16, 2),
        mac_address=_mac_address(buffer, 18, 6),
    )


def parse_data_format_6(
    payload: bytes,
    signal_strength: Optional[float] = None,
    timestamp: Optional[datetime] = None
) -> DecodedSample:
    """Decode a 20-byte data format 6 payload.

    Only the three least-significant bytes of the MAC address are included in
    this format; the listener completes them from the hardware address.

    Raises:
        InvalidLengthError: payload is shorter than 20 bytes
        FormatMismatchError: payload is not a data format 6 payload
    """
    buffer = _check_payload(payload, DataFormat.DATA_FORMAT_6, PAYLOAD_LENGTH_DATA_FORMAT_6)

    # 14: reserved, 16: flags
    return DecodedSample(
        data_format=DataFormat.DATA_FORMAT_6,
        timestamp=timestamp or utc_now(),
        signal_strength=signal_strength,
        temperature=_temperature(buffer, 1),
        humidity=_humidity(buffer, 3),
        pressure=_pressure(buffer, 5),
        pm2_5=_particulate_matter(buffer, 7),
        co2=_co2(buffer, 9),
        voc=_voc_nox_index(buffer, 11, 16, _FLAG_VOC_LSB),
        nox=_voc_nox_index(buffer, 12, 16, _FLAG_NOX_LSB),
        luminosity=_log_luminosity(buffer, 13),
        measurement_sequence=_measurement_sequence(buffer, 15, 1),
        calibrated=_calibrated(buffer, 16),
        mac_address=_mac_address(buffer, 17, 3),
    )


def parse_extended_v1(
    payload: bytes,
    signal_strength: Optional[float] = None,
    timestamp: Optional[datetime] = None
) -> DecodedSample:
    """Decode a 40-byte Extended v1 (data format E1) payload.

    Raises:
        InvalidLengthError: payload is shorter than 40 bytes
        FormatMismatchError: payload is not an Extended v1 payload
    """
    buffer = _check_payload(payload, DataFormat.EXTENDED_V1, PAYLOAD_LENGTH_EXTENDED_V1)

    # 22-24 and 29-33: reserved, 28: flags
    return DecodedSample(
        data_format=DataFormat.EXTENDED_V1,
        timestamp=timestamp or utc_now(),
        signal_strength=signal_strength,
        temperature=_temperature(buffer, 1),
        humidity=_humidity(buffer, 3),
        pressure=_pressure(buffer, 5),
        pm1_0=_particulate_matter(buffer, 7),
        pm2_5=_particulate_matter(buffer, 9),
        pm4_0=_particulate_matter(buffer, 11),
        pm10_0=_particulate_matter(buffer, 13),
        co2=_co2(buffer, 15),
        voc=_voc_nox_index(buffer, 17, 28, _FLAG_VOC_LSB),
        nox=_voc_nox_index(buffer, 18, 28, _FLAG_NOX_LSB),
        luminosity=_luminosity(buffer, 19),
        measurement_sequence=_measurement_sequence(buffer, 25, 3),
        calibrated=_calibrated(buffer, 28),
        mac_address=_mac_address(buffer, 34, 6),
    )


_PARSERS: Dict[int, Callable[..., DecodedSample]] = {
    DataFormat.RAW_V2: parse_raw_v2,
    DataFormat.DATA_FORMAT_6: parse_data_format_6,
    DataFormat.EXTENDED_V1: parse_extended_v1,
}


def decode(
    payload: bytes,
    signal_strength: Optional[float] = None,
    timestamp: Optional[datetime] = None
) -> DecodedSample:
    """Decode a payload, selecting the data format from its first byte.

    Args:
        payload: Manufacturer data, starting with the data format byte
        signal_strength: Received signal strength in dBm
        timestamp: Reception time; defaults to now (UTC)

    Raises:
        InvalidLengthError: payload is empty or too short for its format
        UnknownFormatError: the data format byte is not recognized
    """
    if not payload:
        raise InvalidLengthError(1, 0)

    parser = _PARSERS.get(payload[0])
    if parser is None:
        raise UnknownFormatError(payload[0])
    return parser(payload, signal_strength, timestamp)


def try_decode(
    payload: bytes,
    signal_strength: Optional[float] = None,
    timestamp: Optional[datetime] = None
) -> Tuple[Optional[DecodedSample], bool]:
    """Decode a payload without raising.

    Returns:
        (sample, True) on success, (None, False) if the payload could not be decoded
    """
    try:
        return decode(payload, signal_strength, timestamp), True
    except DecodeError:
        return None, False
