"""Tests for typed reply payload decoding."""

import struct

import pytest

from ev3_brick_mcp.errors import TruncatedReplyError
from ev3_brick_mcp.protocol.parser import (
    SYSTEM_DATA_OFFSET,
    decode_float32_le,
    decode_int32_le,
    decode_null_terminated_string,
    decode_raw_buffer,
    decode_system_data,
    decode_uint8,
    decode_uint32_array,
    decode_uint32_le,
    parse_listing,
)
from fakes import make_reply


def test_decode_float32():
    payload = struct.pack("<f", 7.25)
    assert decode_float32_le(payload) == 7.25
    assert decode_float32_le(b"\xff" + payload, 1) == 7.25


def test_decode_integers():
    payload = struct.pack("<iI", -90, 0xDEADBEEF)
    assert decode_int32_le(payload) == -90
    assert decode_uint32_le(payload, 4) == 0xDEADBEEF
    assert decode_uint8(b"\x00\x64", 1) == 100


def test_decode_uint32_array():
    payload = struct.pack("<3I", 10, 20, 30)
    assert decode_uint32_array(payload, 0, 3) == [10, 20, 30]


def test_decode_null_terminated_string():
    assert decode_null_terminated_string(b"EV3\x00\x00\x00") == "EV3"
    assert decode_null_terminated_string(b"xxEV3") == "xxEV3"
    assert decode_null_terminated_string(b"xxEV3\x00", 2) == "EV3"
    assert decode_null_terminated_string(b"") == ""


def test_decode_raw_buffer_copies():
    payload = bytearray(b"\x01\x02\x03\x04")
    raw = decode_raw_buffer(payload, 1, 2)
    payload[1] = 0xFF
    assert raw == b"\x02\x03"


@pytest.mark.parametrize(
    "decode, payload, offset",
    [
        (decode_float32_le, b"\x00\x00\x80", 0),
        (decode_int32_le, b"\x00" * 4, 1),
        (decode_uint32_le, b"", 0),
        (decode_uint8, b"\x01", 1),
        (decode_uint8, b"\x01", -1),
    ],
)
def test_decode_past_end_raises(decode, payload, offset):
    """No decode reads beyond the payload; the error reports the request."""
    with pytest.raises(TruncatedReplyError) as info:
        decode(payload, offset)
    assert info.value.offset == offset
    assert info.value.available == len(payload)


def test_decode_array_past_end_raises():
    with pytest.raises(TruncatedReplyError) as info:
        decode_uint32_array(b"\x00" * 8, 0, 3)
    assert info.value.size == 12


def test_decode_does_not_mutate_input():
    payload = bytearray(struct.pack("<f", 1.0))
    before = bytes(payload)
    decode_float32_le(payload)
    decode_raw_buffer(payload, 0, 4)
    assert bytes(payload) == before


def test_system_data_offset():
    raw = make_reply(1, 0x03, bytes([0x94, 0x00]) + struct.pack("<IB", 5, 0) + b"hello")
    assert SYSTEM_DATA_OFFSET == 12
    assert decode_system_data(raw) == b"hello"
    assert decode_system_data(raw, 3) == b"hel"


def test_system_data_short_reply():
    with pytest.raises(TruncatedReplyError):
        decode_system_data(make_reply(1, 0x05, b"\x94\x06"))


def test_parse_listing_reply():
    text = b"5d41402abc4b2a76b9719d911017c592 00000005 test.txt\n"
    raw = make_reply(1, 0x03, bytes([0x99, 0x08]) + struct.pack("<IB", len(text), 0) + text)
    entries = parse_listing(raw, 100)
    assert len(entries) == 1
    assert entries[0].name == "test.txt"
    assert entries[0].size == 5
