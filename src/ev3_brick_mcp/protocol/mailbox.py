"""Mailbox messages between bricks (or between a host and a brick).

A mailbox message is a system WRITEMAILBOX frame, sent without a reply.
Incoming messages have the same layout::

    ┌────────┬─────────┬──────┬──────┬──────┬─────────┬────────────┬─────────┐
    │ length │ counter │ type │ 0x9E │  n   │ title\\0 │ size (u16) │ payload │
    │  [0:2] │  [2:4]  │ [4]  │ [5]  │ [6]  │ [7:7+n] │ [7+n:9+n]  │ [9+n:]  │
    └────────┴─────────┴──────┴──────┴──────┴─────────┴────────────┴─────────┘

``n`` counts the title's NUL terminator. Payloads are:

    Text     UTF-8 bytes + 0x00
    Numeric  float32, little-endian
    Logic    one byte, 0 or 1

The payload carries no type tag; the reader states which type it expects.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from enum import Enum

from ..errors import MailboxTypeError, ProtocolDesyncError, TruncatedReplyError
from .commands import (
    SystemCommand,
    build_mailbox_write,
    build_write_mailbox,
    float_bits,
)
from .engine import RequestReplyEngine
from .parser import decode_float32_le, decode_null_terminated_string

logger = logging.getLogger(__name__)

MailboxValue = str | float | bool

TITLE_LENGTH_INDEX = 6
TITLE_OFFSET = 7


class MailboxType(Enum):
    TEXT = "text"
    NUMERIC = "numeric"
    LOGIC = "logic"

    @property
    def vm_type(self) -> int:
        """VM data type tag used by the direct ``opMAILBOX_WRITE``."""
        return _VM_TYPES[self]

    @classmethod
    def parse(cls, value: MailboxType | str) -> MailboxType:
        if isinstance(value, MailboxType):
            return value
        try:
            return cls(value.lower())
        except (ValueError, AttributeError):
            raise ValueError(
                f"Unknown mailbox type {value!r}. Valid: text, numeric, logic"
            ) from None


_VM_TYPES = {MailboxType.LOGIC: 0, MailboxType.NUMERIC: 3, MailboxType.TEXT: 4}
_FIXED_SIZES = {MailboxType.NUMERIC: 4, MailboxType.LOGIC: 1}


@dataclass(frozen=True)
class MailboxMessage:
    title: str
    payload_type: MailboxType
    payload: bytes

    @property
    def value(self) -> MailboxValue:
        return decode_payload(self.payload_type, self.payload)


def encode_payload(payload_type: MailboxType | str, value: MailboxValue) -> bytes:
    """Encode a value for an outgoing mailbox message."""
    payload_type = MailboxType.parse(payload_type)
    if payload_type is MailboxType.TEXT:
        return str(value).encode("utf-8") + b"\x00"
    if payload_type is MailboxType.NUMERIC:
        return struct.pack("<f", float(value))
    return b"\x01" if value else b"\x00"


def decode_payload(payload_type: MailboxType | str, payload: bytes) -> MailboxValue:
    """Decode a mailbox payload as ``payload_type``.

    Raises:
        MailboxTypeError: If the payload size cannot hold that type.
    """
    payload_type = MailboxType.parse(payload_type)
    if payload_type is MailboxType.TEXT:
        return decode_null_terminated_string(payload)
    expected = _FIXED_SIZES[payload_type]
    if len(payload) != expected:
        raise MailboxTypeError(
            f"{payload_type.value} payload must be {expected} byte(s), "
            f"got {len(payload)}"
        )
    if payload_type is MailboxType.NUMERIC:
        return decode_float32_le(payload)
    return payload[0] != 0


def parse_mailbox_message(
    raw: bytes, payload_type: MailboxType | str = MailboxType.TEXT
) -> MailboxMessage:
    """Split an incoming WRITEMAILBOX frame into title and payload.

    Raises:
        ProtocolDesyncError: If the frame is not a mailbox message.
        TruncatedReplyError: If the frame ends inside the title or size.
        MailboxTypeError: If the declared size does not fit ``payload_type``.
    """
    payload_type = MailboxType.parse(payload_type)
    if len(raw) <= TITLE_LENGTH_INDEX:
        raise TruncatedReplyError(TITLE_LENGTH_INDEX, 1, len(raw))
    if raw[5] != SystemCommand.WRITEMAILBOX:
        raise ProtocolDesyncError(
            f"Not a mailbox message (command byte 0x{raw[5]:02X})"
        )

    n = raw[TITLE_LENGTH_INDEX]
    payload_start = TITLE_OFFSET + n + 2
    if len(raw) < payload_start:
        raise TruncatedReplyError(TITLE_OFFSET, n + 2, len(raw))

    title = decode_null_terminated_string(raw[TITLE_OFFSET : TITLE_OFFSET + n])
    declared = int.from_bytes(raw[TITLE_OFFSET + n : payload_start], "little")
    expected = _FIXED_SIZES.get(payload_type)
    if expected is not None and declared != expected:
        raise MailboxTypeError(
            f"Mailbox '{title}' carries {declared} byte(s), "
            f"not a {payload_type.value} value"
        )
    return MailboxMessage(title, payload_type, bytes(raw[payload_start:]))


class MailboxProtocol:
    """Send and receive mailbox messages over an engine."""

    def __init__(self, engine: RequestReplyEngine) -> None:
        self._engine = engine

    def write(
        self,
        target_brick: str | None,
        box_name: str,
        payload_type: MailboxType | str,
        value: MailboxValue,
    ) -> None:
        """Post ``value`` to mailbox ``box_name``.

        With ``target_brick=None`` the message goes to the brick on this
        connection (system WRITEMAILBOX). With a brick name, the connected
        brick relays it over Bluetooth (direct ``opMAILBOX_WRITE``). Neither
        form expects a reply.
        """
        payload_type = MailboxType.parse(payload_type)
        counter = self._engine.next_counter()
        if target_brick is None:
            frame = build_write_mailbox(
                box_name, encode_payload(payload_type, value), counter=counter
            )
        else:
            if payload_type is MailboxType.TEXT:
                vm_value: int | str = str(value)
            elif payload_type is MailboxType.NUMERIC:
                vm_value = float_bits(float(value))
            else:
                vm_value = 1 if value else 0
            frame = build_mailbox_write(
                target_brick, box_name, payload_type.vm_type, vm_value, counter=counter
            )
        self._engine.post(frame)
        logger.debug(
            "Mailbox '%s' <- %r (%s)%s",
            box_name,
            value,
            payload_type.value,
            f" via {target_brick}" if target_brick else "",
        )

    def read(
        self, expected_type: MailboxType | str, raw: bytes | None = None
    ) -> tuple[str, MailboxValue]:
        """Decode a mailbox message, reading one from the channel if ``raw`` is None.

        Returns:
            ``(title, value)``.
        """
        if raw is None:
            raw = self._engine.receive_message()
        message = parse_mailbox_message(raw, expected_type)
        return message.title, message.value
