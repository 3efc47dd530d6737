"""IPv4 addresses of the overlay network held as unsigned 32 bit integers."""

from __future__ import annotations

import ipaddress
import json
from typing import Union

_MASK32 = 0xFFFFFFFF

IpLike = Union[str, bytes, bytearray, memoryview, ipaddress.IPv4Address, ipaddress.IPv6Address]


class VpnIp(int):
    """An IPv4 address as an unsigned 32 bit integer; values wrap like a uint32."""

    def __new__(cls, value: int = 0) -> "VpnIp":
        return super().__new__(cls, int(value) & _MASK32)

    def __str__(self) -> str:
        value = int(self)
        return f"{value >> 24 & 255}.{value >> 16 & 255}.{value >> 8 & 255}.{value & 255}"

    def __repr__(self) -> str:
        return f"VpnIp('{self}')"

    def __format__(self, spec: str) -> str:
        if not spec:
            return str(self)
        return format(int(self), spec)

    def to_ip(self) -> bytes:
        """Return the four address bytes in network order."""
        return int(self).to_bytes(4, "big")

    def to_ip_address(self) -> ipaddress.IPv4Address:
        """Return the address as an ``ipaddress.IPv4Address``."""
        return ipaddress.IPv4Address(int(self))

    def to_json(self) -> str:
        """Return the address as a JSON string literal."""
        return json.dumps(str(self))


def _address_bytes(ip: IpLike) -> bytes:
    if isinstance(ip, str):
        ip = ipaddress.ip_address(ip)
    if isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return ip.packed
    if isinstance(ip, (bytes, bytearray, memoryview)):
        return bytes(ip)
    raise TypeError(f"unsupported IP value: {ip!r}")


def ip_to_vpn_ip(ip: IpLike) -> VpnIp:
    """Convert a 4 or 16 byte address (or its text form) to a VpnIp.

    For 16 byte addresses the last four bytes are used, which covers
    IPv4-mapped IPv6 addresses.
    """
    data = _address_bytes(ip)
    if len(data) == 16:
        data = data[12:16]
    if len(data) != 4:
        raise ValueError(f"invalid IP length: {len(data)}")
    return VpnIp(int.from_bytes(data, "big"))


def _mask_ones(mask: bytes) -> int:
    bits = len(mask) * 8
    value = int.from_bytes(mask, "big") if mask else 0
    ones = 0
    for position in range(bits - 1, -1, -1):
        if value >> position & 1:
            ones += 1
        else:
            break
    # Anything set below the first zero makes the mask non-canonical.
    if bits == 0 or value & ((1 << (bits - ones)) - 1):
        raise ValueError(f"invalid network mask: {mask.hex()}")
    return ones


def to_ip_network(
    ip: IpLike, mask: bytes
) -> ipaddress.IPv4Interface | ipaddress.IPv6Interface:
    """Combine an address and a byte mask into an interface (address plus prefix)."""
    data = _address_bytes(ip)
    if len(data) not in (4, 16):
        raise ValueError(f"invalid IP: {data.hex()}")
    address = ipaddress.ip_address(data)
    ones = _mask_ones(bytes(mask))
    return ipaddress.ip_interface((address, ones))