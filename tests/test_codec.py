import pytest

from nonebot_plugin_mcdash.codec import (
    pack_packet,
    pack_string,
    pack_varint,
    read_packet,
    unpack_string,
    unpack_varint,
)
from nonebot_plugin_mcdash.exceptions import ProtocolError, ProtocolErrorKind


@pytest.mark.parametrize("value", [0, 1, 127, 128, 255, 300, 2**31 - 1, 2**31, 2**32 - 1])
def test_varint_round_trip(value):
    encoded = pack_varint(value)
    assert unpack_varint(encoded) == (value, len(encoded))


def test_varint_known_encodings():
    assert pack_varint(0) == b"\x00"
    assert pack_varint(300) == b"\xac\x02"
    assert pack_varint(-1) == b"\xff\xff\xff\xff\x0f"


def test_varint_out_of_range():
    with pytest.raises(ValueError):
        pack_varint(2**32)


def test_varint_need_more_data():
    assert unpack_varint(b"") is None
    assert unpack_varint(b"\xac") is None


def test_varint_too_long():
    with pytest.raises(ProtocolError) as exc_info:
        unpack_varint(b"\xff\xff\xff\xff\xff\x01")
    assert exc_info.value.kind is ProtocolErrorKind.VARINT_TOO_LARGE


def test_varint_over_32_bits():
    with pytest.raises(ProtocolError) as exc_info:
        unpack_varint(b"\xff\xff\xff\xff\x7f")
    assert exc_info.value.kind is ProtocolErrorKind.VARINT_TOO_LARGE


def test_varint_offset():
    assert unpack_varint(b"\x00\x00\xac\x02", 2) == (300, 4)


def test_string():
    encoded = pack_string("§a生存服")
    assert unpack_string(encoded) == ("§a生存服", len(encoded))
    assert unpack_string(encoded[:-1]) is None


def test_string_too_long():
    with pytest.raises(ProtocolError) as exc_info:
        unpack_string(pack_varint(10) + b"x" * 10, max_length=4)
    assert exc_info.value.kind is ProtocolErrorKind.INVALID_STRING_LENGTH


def test_read_packet_partial():
    packet = pack_packet(0x00, pack_string("{}"))
    for i in range(len(packet)):
        assert read_packet(packet[:i]) is None
    assert read_packet(packet) == (0x00, pack_string("{}"), len(packet))


def test_read_packet_leaves_trailing_data():
    first = pack_packet(0x01, b"12345678")
    packet_id, body, consumed = read_packet(first + b"\x05")  # type: ignore
    assert (packet_id, body, consumed) == (0x01, b"12345678", len(first))


def test_read_packet_zero_length():
    with pytest.raises(ProtocolError) as exc_info:
        read_packet(b"\x00")
    assert exc_info.value.kind is ProtocolErrorKind.INVALID_PACKET_LENGTH


def test_read_packet_truncated_id():
    with pytest.raises(ProtocolError) as exc_info:
        read_packet(b"\x01\x80")
    assert exc_info.value.kind is ProtocolErrorKind.INVALID_PACKET_LENGTH
