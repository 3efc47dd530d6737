"""Extraction of the firewall-relevant fields from an IPv4 packet."""

from __future__ import annotations

import struct
from dataclasses import dataclass

from nebula.iputil import VpnIp

IPV4_HEADER_LEN = 20
MIN_FW_PACKET_LEN = 4

PROTO_ANY = 0
PROTO_ICMP = 1
PROTO_TCP = 6
PROTO_UDP = 17

_PORTS = struct.Struct(">HH")


class PacketError(ValueError):
    """Raised when a packet cannot be parsed for the firewall."""


@dataclass
class FirewallPacket:
    """The address tuple of a packet, oriented from the local host's view."""

    local_ip: VpnIp = VpnIp(0)
    remote_ip: VpnIp = VpnIp(0)
    local_port: int = 0
    remote_port: int = 0
    protocol: int = 0
    fragment: bool = False


def new_packet(data: bytes, incoming: bool) -> FirewallPacket:
    """Validate an IPv4 packet and return its firewall fields.

    For incoming packets the source is the remote side; for outgoing packets
    the destination is. Fragments after the first and ICMP packets carry no
    ports, so both ports are zero for them.
    """
    data = bytes(data)
    if len(data) < IPV4_HEADER_LEN:
        raise PacketError(f"packet is less than {IPV4_HEADER_LEN} bytes")

    version = (data[0] >> 4) & 0x0F
    if version != 4:
        raise PacketError(f"packet is not ipv4, type: {version}")

    ihl = (data[0] & 0x0F) << 2
    if ihl < IPV4_HEADER_LEN:
        raise PacketError(f"packet had an invalid header length: {ihl}")

    flags_frags = int.from_bytes(data[6:8], "big")
    fragment = (flags_frags & 0x1FFF) != 0
    protocol = data[9]
    has_ports = not fragment and protocol != PROTO_ICMP

    min_len = ihl + (MIN_FW_PACKET_LEN if has_ports else 0)
    if len(data) < min_len:
        raise PacketError(f"packet is less than {min_len} bytes, ip header len: {ihl}")

    source = VpnIp(int.from_bytes(data[12:16], "big"))
    destination = VpnIp(int.from_bytes(data[16:20], "big"))
    source_port, destination_port = _PORTS.unpack_from(data, ihl) if has_ports else (0, 0)

    if incoming:
        return FirewallPacket(
            local_ip=destination,
            remote_ip=source,
            local_port=destination_port,
            remote_port=source_port,
            protocol=protocol,
            fragment=fragment,
        )
    return FirewallPacket(
        local_ip=source,
        remote_ip=destination,
        local_port=source_port,
        remote_port=destination_port,
        protocol=protocol,
        fragment=fragment,
    )