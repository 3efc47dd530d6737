"""The 16 byte header carried at the front of every tunnel packet.

Layout (big endian)::

    version (4 bits) | type (4 bits) | subtype (8 bits) | reserved (16 bits)
    remote index (32 bits)
    message counter (64 bits)
"""

from __future__ import annotations

import enum
import json
import struct
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

VERSION = 1
HEADER_LEN = 16

_LAYOUT = struct.Struct(">BBHIQ")


class MessageType(enum.IntEnum):
    HANDSHAKE = 0
    MESSAGE = 1
    RECV_ERROR = 2
    LIGHTHOUSE = 3
    TEST = 4
    CLOSE_TUNNEL = 5
    CONTROL = 6


MESSAGE_NONE = 0
MESSAGE_RELAY = 1

TEST_REQUEST = 0
TEST_REPLY = 1

HANDSHAKE_IXPSK0 = 0
HANDSHAKE_XXPSK0 = 1

TYPE_NAMES: Mapping[int, str] = MappingProxyType(
    {
        MessageType.HANDSHAKE: "handshake",
        MessageType.MESSAGE: "message",
        MessageType.RECV_ERROR: "recvError",
        MessageType.LIGHTHOUSE: "lightHouse",
        MessageType.TEST: "test",
        MessageType.CLOSE_TUNNEL: "closeTunnel",
    }
)

_SUB_TYPE_NONE: Mapping[int, str] = MappingProxyType({MESSAGE_NONE: "none"})
_SUB_TYPE_TEST: Mapping[int, str] = MappingProxyType(
    {TEST_REQUEST: "testRequest", TEST_REPLY: "testReply"}
)

SUB_TYPE_NAMES: Mapping[int, Mapping[int, str]] = MappingProxyType(
    {
        MessageType.MESSAGE: _SUB_TYPE_NONE,
        MessageType.RECV_ERROR: _SUB_TYPE_NONE,
        MessageType.LIGHTHOUSE: _SUB_TYPE_NONE,
        MessageType.TEST: _SUB_TYPE_TEST,
        MessageType.CLOSE_TUNNEL: _SUB_TYPE_NONE,
        MessageType.HANDSHAKE: MappingProxyType({HANDSHAKE_IXPSK0: "ix_psk0"}),
        MessageType.CONTROL: _SUB_TYPE_NONE,
    }
)


class HeaderTooShortError(ValueError):
    """Raised when fewer than HEADER_LEN bytes are given to the parser."""

    def __init__(self, message: str = "header is too short") -> None:
        super().__init__(message)


def type_name(message_type: int) -> str:
    """Return the readable name of a message type, or ``unknown``."""
    return TYPE_NAMES.get(message_type, "unknown")


def sub_type_name(message_type: int, subtype: int) -> str:
    """Return the readable name of a message subtype, or ``unknown``."""
    names = SUB_TYPE_NAMES.get(message_type)
    if names is None:
        return "unknown"
    return names.get(subtype, "unknown")


def encode(version: int, message_type: int, subtype: int, remote_index: int, counter: int) -> bytes:
    """Encode header fields into 16 bytes; the reserved field is always zero."""
    return _LAYOUT.pack(
        ((version << 4) | (int(message_type) & 0x0F)) & 0xFF,
        int(subtype) & 0xFF,
        0,
        remote_index & 0xFFFFFFFF,
        counter & 0xFFFFFFFFFFFFFFFF,
    )


def _as_message_type(value: int) -> int:
    try:
        return MessageType(value)
    except ValueError:
        return value


@dataclass
class Header:
    version: int = 0
    message_type: int = 0
    subtype: int = 0
    reserved: int = 0
    remote_index: int = 0
    message_counter: int = 0

    def __str__(self) -> str:
        return (
            f"ver={self.version} type={self.type_name()} subtype={self.sub_type_name()} "
            f"reserved={self.reserved:#x} remoteindex={self.remote_index} "
            f"messagecounter={self.message_counter}"
        )

    def to_json(self) -> str:
        """Return a compact JSON object with sorted keys."""
        return json.dumps(
            {
                "version": self.version,
                "type": self.type_name(),
                "subType": self.sub_type_name(),
                "reserved": self.reserved,
                "remoteIndex": self.remote_index,
                "messageCounter": self.message_counter,
            },
            sort_keys=True,
            separators=(",", ":"),
        )

    def encode(self) -> bytes:
        return encode(
            self.version, self.message_type, self.subtype, self.remote_index, self.message_counter
        )

    def type_name(self) -> str:
        return type_name(self.message_type)

    def sub_type_name(self) -> str:
        return sub_type_name(self.message_type, self.subtype)


def parse_header(data: bytes) -> Header:
    """Parse the first 16 bytes of ``data`` into a Header."""
    if len(data) < HEADER_LEN:
        raise HeaderTooShortError()
    first, subtype, reserved, remote_index, counter = _LAYOUT.unpack_from(data)
    return Header(
        version=(first >> 4) & 0x0F,
        message_type=_as_message_type(first & 0x0F),
        subtype=subtype,
        reserved=reserved,
        remote_index=remote_index,
        message_counter=counter,
    )