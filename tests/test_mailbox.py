"""Tests for mailbox encoding and the mailbox protocol."""

import struct

import pytest

from ev3_brick_mcp.errors import MailboxTypeError, ProtocolDesyncError, TruncatedReplyError
from ev3_brick_mcp.protocol.commands import Opcode
from ev3_brick_mcp.protocol.engine import RequestReplyEngine
from ev3_brick_mcp.protocol.framing import CommandType, decode_param
from ev3_brick_mcp.protocol.mailbox import (
    MailboxProtocol,
    MailboxType,
    decode_payload,
    encode_payload,
    parse_mailbox_message,
)
from fakes import FakeBrick, LoopbackChannel, make_mailbox_frame


@pytest.fixture
def mailbox(loopback):
    return MailboxProtocol(RequestReplyEngine(loopback))


def test_numeric_loopback(mailbox, loopback):
    """A numeric 3.5 written to box "abc" reads back unchanged."""
    mailbox.write(None, "abc", MailboxType.NUMERIC, 3.5)
    sent = loopback.writes[0]
    assert sent[4] == CommandType.SYSTEM_NO_REPLY
    assert sent[-4:] == struct.pack("<f", 3.5)
    assert mailbox.read(MailboxType.NUMERIC) == ("abc", 3.5)


def test_text_loopback(mailbox):
    mailbox.write(None, "greeting", "text", "hello brick")
    assert mailbox.read("text") == ("greeting", "hello brick")


@pytest.mark.parametrize("value", [True, False])
def test_logic_loopback(mailbox, value):
    mailbox.write(None, "flag", MailboxType.LOGIC, value)
    assert mailbox.read(MailboxType.LOGIC) == ("flag", value)


def test_loopback_in_small_reads():
    channel = LoopbackChannel(read_size=3)
    mailbox = MailboxProtocol(RequestReplyEngine(channel))
    mailbox.write(None, "abc", "numeric", -1.25)
    assert mailbox.read("numeric") == ("abc", -1.25)


def test_text_read_as_numeric_is_type_error(mailbox):
    mailbox.write(None, "abc", MailboxType.TEXT, "not a number")
    with pytest.raises(MailboxTypeError):
        mailbox.read(MailboxType.NUMERIC)


def test_numeric_read_as_text_is_allowed():
    """Text accepts any payload; bytes decode up to the first NUL."""
    raw = make_mailbox_frame("box", b"ok\x00")
    assert parse_mailbox_message(raw, "text").value == "ok"


def test_parse_rejects_non_mailbox_frames():
    raw = bytearray(make_mailbox_frame("box", b"\x01"))
    raw[5] = 0x92
    with pytest.raises(ProtocolDesyncError):
        parse_mailbox_message(bytes(raw), MailboxType.LOGIC)


def test_parse_truncated_title():
    raw = make_mailbox_frame("box", b"\x01")[:9]
    with pytest.raises(TruncatedReplyError):
        parse_mailbox_message(raw, MailboxType.LOGIC)
    with pytest.raises(TruncatedReplyError):
        parse_mailbox_message(b"\x00\x00\x00", MailboxType.LOGIC)


def test_parse_message_fields():
    raw = make_mailbox_frame("abc", struct.pack("<f", 2.0))
    assert raw[6] == 4
    message = parse_mailbox_message(raw, MailboxType.NUMERIC)
    assert message.title == "abc"
    assert message.payload == struct.pack("<f", 2.0)
    assert message.value == 2.0


def test_encode_payloads():
    assert encode_payload("text", "hi") == b"hi\x00"
    assert encode_payload("numeric", 1) == struct.pack("<f", 1.0)
    assert encode_payload("logic", 0) == b"\x00"
    assert encode_payload(MailboxType.LOGIC, "yes") == b"\x01"


def test_decode_payload_size_checks():
    with pytest.raises(MailboxTypeError):
        decode_payload("logic", b"\x01\x00")
    with pytest.raises(MailboxTypeError):
        decode_payload("numeric", b"\x00\x00")


def test_mailbox_type_parse():
    assert MailboxType.parse("NUMERIC") is MailboxType.NUMERIC
    assert MailboxType.parse(MailboxType.TEXT) is MailboxType.TEXT
    with pytest.raises(ValueError):
        MailboxType.parse("bytes")
    assert [t.vm_type for t in MailboxType] == [4, 3, 0]


def test_write_to_named_brick_uses_direct_command():
    brick = FakeBrick()
    mailbox = MailboxProtocol(RequestReplyEngine(brick))
    mailbox.write("EV3B", "abc", MailboxType.NUMERIC, 1.0)
    frame = brick.frames[0]
    assert frame[4] == CommandType.DIRECT_NO_REPLY
    assert frame[7] == Opcode.MAILBOX_WRITE
    params = []
    offset = 8
    while offset < len(frame):
        value, offset = decode_param(frame, offset)
        params.append(value)
    assert params == ["EV3B", 2, "abc", 3, 1, 0x3F800000]
    assert brick.mailbox == []


def test_system_write_reaches_brick_mailbox():
    brick = FakeBrick()
    mailbox = MailboxProtocol(RequestReplyEngine(brick))
    mailbox.write(None, "abc", "logic", True)
    assert brick.mailbox == [("abc", b"\x01")]


def test_read_from_channel_after_push():
    brick = FakeBrick()
    brick.push(make_mailbox_frame("remote", b"done\x00", counter=9))
    mailbox = MailboxProtocol(RequestReplyEngine(brick))
    assert mailbox.read(MailboxType.TEXT) == ("remote", "done")
