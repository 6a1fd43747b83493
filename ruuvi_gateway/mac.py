"""MAC address conversion and comparison.

MAC addresses are handled either as strings (``XX:XX:XX:XX:XX:XX``) or as
64-bit integers whose low six bytes hold the address in big-endian order.
"""

import re
from typing import Optional

# 1 to 8 hex byte groups separated by ':' or '-'
_MAC_ADDRESS_PATTERN = re.compile(r'[0-9a-f]{2}(?:[:-][0-9a-f]{2}){0,7}', re.IGNORECASE)
_SEPARATOR_PATTERN = re.compile(r'[:-]')

MAC_ADDRESS_LENGTH = 6


def format_mac_bytes(data: bytes) -> str:
    """Format up to six big-endian address bytes as ``XX:XX:...``."""
    return ':'.join(f'{b:02X}' for b in data[:MAC_ADDRESS_LENGTH])


def mac_to_string(address: int) -> str:
    """Convert a numeric MAC address to its string form.

    Args:
        address: Numeric address; only the low six bytes are used

    Returns:
        Uppercase, colon-separated address e.g. ``CB:B8:33:4C:88:4F``
    """
    if address < 0 or address > 0xFFFFFFFFFFFFFFFF:
        raise ValueError(f"MAC address out of range: {address}")
    return format_mac_bytes(address.to_bytes(8, 'big')[2:])


def try_mac_to_int(address: Optional[str]) -> Optional[int]:
    """Convert a MAC address string to an integer, or return None if it is invalid."""
    if not address or not _MAC_ADDRESS_PATTERN.fullmatch(address):
        return None

    # Missing leading bytes are treated as zero, so "12:34:56:78:9A:BC" and
    # "00:00:12:34:56:78:9A:BC" are the same address.
    value = 0
    for group in _SEPARATOR_PATTERN.split(address):
        value = (value << 8) | int(group, 16)
    return value


def mac_to_int(address: str) -> int:
    """Convert a MAC address string to an integer.

    Both ``:`` and ``-`` separators are accepted, case-insensitively, with
    between one and eight byte groups.

    Raises:
        ValueError: address is not a valid MAC address
    """
    value = try_mac_to_int(address)
    if value is None:
        raise ValueError(f"Invalid MAC address: {address!r}")
    return value


def merge_truncated_mac(hardware_address: Optional[str], suffix: Optional[str]) -> Optional[str]:
    """Rebuild a full MAC address from a truncated (trailing octets) form.

    The leading octets come from the hardware address reported by the BLE
    stack. If the hardware address is not a usable MAC address, the truncated
    form is returned unchanged.
    """
    if not suffix:
        return suffix

    hardware = try_mac_to_int(hardware_address)
    truncated = try_mac_to_int(suffix)
    if hardware is None or truncated is None:
        return suffix

    suffix_bits = 8 * len(_SEPARATOR_PATTERN.split(suffix))
    mask = (1 << suffix_bits) - 1
    return mac_to_string((hardware & ~mask & 0xFFFFFFFFFFFF) | truncated)


class MacAddressComparer:
    """Compares MAC address strings.

    Two addresses are equal if they match ignoring case, or if both parse to
    the same numeric address ("aa-bb-cc-dd-ee-ff" == "AA:BB:CC:DD:EE:FF").
    """
    __slots__ = ()

    def equals(self, x: Optional[str], y: Optional[str]) -> bool:
        if x is None and y is None:
            return True
        if x is None or y is None:
            return False
        if x.casefold() == y.casefold():
            return True

        addr_x = try_mac_to_int(x)
        if addr_x is None:
            return False
        return addr_x == try_mac_to_int(y)

    def hash(self, value: str) -> int:
        if value is None:
            raise TypeError("Cannot hash a missing MAC address")
        address = try_mac_to_int(value)
        return hash(address) if address is not None else hash(value.casefold())


MAC_ADDRESS_COMPARER = MacAddressComparer()


class MacAddressKey:
    """Dictionary key that applies MacAddressComparer semantics to a MAC address."""
    __slots__ = ('address', '_hash')

    def __init__(self, address: str):
        self.address = address
        self._hash = MAC_ADDRESS_COMPARER.hash(address)

    def __eq__(self, other) -> bool:
        if isinstance(other, MacAddressKey):
            return MAC_ADDRESS_COMPARER.equals(self.address, other.address)
        if isinstance(other, str):
            return MAC_ADDRESS_COMPARER.equals(self.address, other)
        return NotImplemented

    def __hash__(self) -> int:
        return self._hash

    def __repr__(self) -> str:
        return f"MacAddressKey({self.address!r})"
