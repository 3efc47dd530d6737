import pytest

from nebula.header import (
    HEADER_LEN,
    MESSAGE_NONE,
    SUB_TYPE_NAMES,
    TEST_REQUEST,
    TYPE_NAMES,
    Header,
    HeaderTooShortError,
    MessageType,
    encode,
    parse_header,
    sub_type_name,
    type_name,
)

EXPECTED_BYTES = bytes(
    [0x54, 0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0xA, 0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x9]
)
EXPECTED_HEADER = Header(
    version=5, message_type=4, subtype=0, reserved=0, remote_index=10, message_counter=9
)


def test_encode():
    assert EXPECTED_HEADER.encode() == EXPECTED_BYTES


def test_encode_function():
    assert encode(5, MessageType.TEST, 0, 10, 9) == EXPECTED_BYTES


def test_parse():
    assert parse_header(EXPECTED_BYTES) == EXPECTED_HEADER


def test_parse_too_short():
    with pytest.raises(HeaderTooShortError, match="header is too short"):
        parse_header(b"\x00" * (HEADER_LEN - 1))


def test_type_name():
    assert type_name(MessageType.TEST) == "test"
    assert Header(message_type=MessageType.TEST).type_name() == "test"
    assert type_name(99) == "unknown"
    assert Header(message_type=99).type_name() == "unknown"


def test_sub_type_name():
    assert sub_type_name(MessageType.TEST, TEST_REQUEST) == "testRequest"
    assert Header(message_type=MessageType.TEST, subtype=TEST_REQUEST).sub_type_name() == "testRequest"

    assert sub_type_name(99, TEST_REQUEST) == "unknown"
    assert Header(message_type=99, subtype=TEST_REQUEST).sub_type_name() == "unknown"

    assert sub_type_name(MessageType.TEST, 99) == "unknown"
    assert Header(message_type=MessageType.TEST, subtype=99).sub_type_name() == "unknown"

    assert sub_type_name(MessageType.MESSAGE, 0) == "none"
    assert Header(message_type=MessageType.MESSAGE, subtype=0).sub_type_name() == "none"


def test_type_map():
    assert dict(TYPE_NAMES) == {
        MessageType.HANDSHAKE: "handshake",
        MessageType.MESSAGE: "message",
        MessageType.RECV_ERROR: "recvError",
        MessageType.LIGHTHOUSE: "lightHouse",
        MessageType.TEST: "test",
        MessageType.CLOSE_TUNNEL: "closeTunnel",
    }

    none_map = {MESSAGE_NONE: "none"}
    assert {k: dict(v) for k, v in SUB_TYPE_NAMES.items()} == {
        MessageType.MESSAGE: none_map,
        MessageType.RECV_ERROR: none_map,
        MessageType.LIGHTHOUSE: none_map,
        MessageType.TEST: {0: "testRequest", 1: "testReply"},
        MessageType.CLOSE_TUNNEL: none_map,
        MessageType.HANDSHAKE: {0: "ix_psk0"},
        MessageType.CONTROL: none_map,
    }


def test_header_string():
    assert (
        str(Header(100, MessageType.TEST, TEST_REQUEST, 99, 98, 97))
        == "ver=100 type=test subtype=testRequest reserved=0x63 remoteindex=98 messagecounter=97"
    )


def test_header_to_json():
    assert (
        Header(100, MessageType.TEST, TEST_REQUEST, 99, 98, 97).to_json()
        == '{"messageCounter":97,"remoteIndex":98,"reserved":99,'
        '"subType":"testRequest","type":"test","version":100}'
    )


def test_round_trip_unknown_type():
    original = Header(1, 9, 3, 0, 12345, 2**63)
    assert parse_header(original.encode()) == original