"""Command frame builder and reply parser for the EV3 brick protocol.

Frame layout (all integers little-endian)::

    +--------+---------+------+----------------+--------------------------+
    | Length | Counter | Type | Var allocation | Opcodes / system command |
    | 2 bytes| 2 bytes | 1 B  | 2 B, direct    | variable length          |
    +--------+---------+------+----------------+--------------------------+

- Length: number of bytes following the length field itself
- Counter: sequence identifier echoed back in the reply
- Type: 0x00 direct/no reply, 0x80 direct/reply, 0x01 system/no reply,
  0x81 system/reply
- Var allocation (direct only): ``(local_bytes << 10) | global_bytes``

Reply layout::

    +--------+---------+--------+------------------+
    | Length | Counter | Status | Payload          |
    | 2 bytes| 2 bytes | 1 byte | variable length  |
    +--------+---------+--------+------------------+

Direct-command parameters are encoded with a fixed tag table. The first
byte decides the form::

    0b00svvvvv        LC0  short constant, 6-bit two's complement (-32..31)
    0x81 b            LC1  1-byte signed constant (decoded, never emitted)
    0x82 b b          LC2  2-byte signed constant
    0x83 b b b b      LC4  4-byte signed constant
    0x84 ... 0x00     LCS  zero-terminated UTF-8 string
    0b010iiiii        LV0  local variable, index 0..31
    0xC1/0xC2/0xC3    LV1/LV2/LV4 local variable, 1/2/4-byte index follows
    0b011iiiii        GV0  global variable, index 0..31
    0xE1/0xE2/0xE3    GV1/GV2/GV4 global variable, 1/2/4-byte index follows
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Union

from ..errors import FrameSealedError, ProtocolDesyncError


class CommandType(IntEnum):
    """Command type byte at offset 4 of every outgoing frame."""

    DIRECT_NO_REPLY = 0x00
    DIRECT_REPLY = 0x80
    SYSTEM_NO_REPLY = 0x01
    SYSTEM_REPLY = 0x81


class ReplyStatus(IntEnum):
    """Status byte at offset 4 of every reply."""

    DIRECT_OK = 0x02
    SYSTEM_OK = 0x03
    DIRECT_ERROR = 0x04
    SYSTEM_ERROR = 0x05


REPLY_EXPECTED = frozenset({CommandType.DIRECT_REPLY, CommandType.SYSTEM_REPLY})
DIRECT_TYPES = frozenset({CommandType.DIRECT_NO_REPLY, CommandType.DIRECT_REPLY})
SUCCESS_STATUSES = frozenset({ReplyStatus.DIRECT_OK, ReplyStatus.SYSTEM_OK})

LENGTH_SIZE = 2
HEADER_SIZE = 5  # length + counter + type/status
PAYLOAD_OFFSET = HEADER_SIZE
MAX_FRAME_LENGTH = 0xFFFF
MAX_COUNTER = 0xFFFF
MAX_GLOBAL_BYTES = 1023
MAX_LOCAL_BYTES = 63

LC0_MIN = -32
LC0_MAX = 31
LC1 = 0x81
LC2 = 0x82
LC4 = 0x83
LCS = 0x84
LV0 = 0x40
LV1 = 0xC1
LV2 = 0xC2
LV4 = 0xC3
GV0 = 0x60
GV1 = 0xE1
GV2 = 0xE2
GV4 = 0xE3

_FOLLOW_FORMATS = {1: "<b", 2: "<h", 3: "<i"}
_INDEX_FORMATS = {1: "<B", 2: "<H", 3: "<I"}


@dataclass(frozen=True)
class LocalVar:
    """Reference to a local variable slot of the brick's VM."""

    index: int


@dataclass(frozen=True)
class GlobalVar:
    """Reference to a global variable slot; globals come back in the reply."""

    index: int


Param = Union[int, str, LocalVar, GlobalVar]


def _encode_var(ref: LocalVar | GlobalVar) -> bytes:
    index = ref.index
    if index < 0:
        raise ValueError(f"Variable index must be >= 0, got {index}")
    is_global = isinstance(ref, GlobalVar)
    if index <= 0x1F:
        return bytes([(GV0 if is_global else LV0) | index])
    if index <= 0xFF:
        return bytes([GV1 if is_global else LV1, index])
    if index <= 0xFFFF:
        return bytes([GV2 if is_global else LV2]) + struct.pack("<H", index)
    if index <= 0xFFFFFFFF:
        return bytes([GV4 if is_global else LV4]) + struct.pack("<I", index)
    raise ValueError(f"Variable index out of range: {index}")


def encode_param(value: Param) -> bytes:
    """Encode a single opcode parameter using the tag table above.

    Integers pick the smallest of LC0, LC2 or LC4 that holds them. Strings
    become LCS. ``LocalVar``/``GlobalVar`` become variable references.
    """
    if isinstance(value, (LocalVar, GlobalVar)):
        return _encode_var(value)
    if isinstance(value, str):
        return bytes([LCS]) + value.encode("utf-8") + b"\x00"
    if isinstance(value, int):
        value = int(value)
        if LC0_MIN <= value <= LC0_MAX:
            return bytes([value & 0x3F])
        if -0x8000 <= value <= 0x7FFF:
            return bytes([LC2]) + struct.pack("<h", value)
        if -0x80000000 <= value <= 0x7FFFFFFF:
            return bytes([LC4]) + struct.pack("<i", value)
        raise ValueError(f"Constant does not fit in 32 bits: {value}")
    raise TypeError(f"Unsupported parameter type: {type(value).__name__}")


def decode_param(data: bytes, offset: int = 0) -> tuple[Param, int]:
    """Decode one parameter at ``offset``.

    Returns:
        The decoded value and the offset just past it.

    Raises:
        ValueError: If the buffer ends inside the parameter.
    """
    if offset >= len(data):
        raise ValueError(f"No parameter at offset {offset}")
    tag = data[offset]
    offset += 1

    if not tag & 0x80:
        if not tag & 0x40:
            value = tag & 0x3F
            return (value - 0x40 if value & 0x20 else value), offset
        index = tag & 0x1F
        return (GlobalVar(index) if tag & 0x20 else LocalVar(index)), offset

    if tag == LCS:
        end = data.find(b"\x00", offset)
        if end == -1:
            raise ValueError("Unterminated string parameter")
        return data[offset:end].decode("utf-8"), end + 1

    size_code = tag & 0x07
    is_var = bool(tag & 0x40)
    fmt = (_INDEX_FORMATS if is_var else _FOLLOW_FORMATS).get(size_code)
    if fmt is None:
        raise ValueError(f"Unknown parameter tag 0x{tag:02X}")
    size = struct.calcsize(fmt)
    if offset + size > len(data):
        raise ValueError(f"Parameter at offset {offset - 1} is truncated")
    (value,) = struct.unpack_from(fmt, data, offset)
    offset += size
    if is_var:
        return (GlobalVar(value) if tag & 0x20 else LocalVar(value)), offset
    return value, offset


@dataclass(frozen=True)
class Frame:
    """A fully assembled outgoing frame, ready for transmission."""

    data: bytes

    @property
    def length(self) -> int:
        return int.from_bytes(self.data[0:2], "little")

    @property
    def counter(self) -> int:
        return int.from_bytes(self.data[2:4], "little")

    @property
    def command_type(self) -> CommandType:
        return CommandType(self.data[4])

    @property
    def expects_reply(self) -> bool:
        return self.command_type in REPLY_EXPECTED

    @property
    def is_direct(self) -> bool:
        return self.command_type in DIRECT_TYPES

    @property
    def body(self) -> bytes:
        """Everything after the type byte (var allocation included)."""
        return self.data[HEADER_SIZE:]

    def __bytes__(self) -> bytes:
        return self.data

    def __len__(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        return (
            f"Frame(type={self.command_type.name}, counter={self.counter}, "
            f"data={self.data.hex(' ')})"
        )


class FrameEncoder:
    """Order-preserving builder for a single command frame.

    Usage::

        frame = (
            FrameEncoder()
            .begin_direct(42, global_bytes=4, expect_reply=True)
            .append_opcode(Opcode.UI_READ, UIRead.GET_VBATT, GlobalVar(0))
            .finalize()
        )
    """

    def __init__(self) -> None:
        self._buffer: bytearray | None = None
        self._sealed = False

    def begin_direct(
        self,
        counter: int,
        global_bytes: int = 0,
        local_bytes: int = 0,
        expect_reply: bool = False,
    ) -> FrameEncoder:
        """Start a direct command with VM variable space reserved."""
        if not 0 <= global_bytes <= MAX_GLOBAL_BYTES:
            raise ValueError(
                f"Global bytes must be 0-{MAX_GLOBAL_BYTES}, got {global_bytes}"
            )
        if not 0 <= local_bytes <= MAX_LOCAL_BYTES:
            raise ValueError(
                f"Local bytes must be 0-{MAX_LOCAL_BYTES}, got {local_bytes}"
            )
        kind = CommandType.DIRECT_REPLY if expect_reply else CommandType.DIRECT_NO_REPLY
        self._start(counter, kind)
        allocation = (local_bytes << 10) | global_bytes
        self._buffer += allocation.to_bytes(2, "little")
        return self

    def begin_system(self, counter: int, expect_reply: bool = False) -> FrameEncoder:
        """Start a system command; the sub-command byte is appended next."""
        kind = CommandType.SYSTEM_REPLY if expect_reply else CommandType.SYSTEM_NO_REPLY
        self._start(counter, kind)
        return self

    def _start(self, counter: int, kind: CommandType) -> None:
        if not 0 <= counter <= MAX_COUNTER:
            raise ValueError(f"Counter must be 0-{MAX_COUNTER}, got {counter}")
        # Length is a placeholder until finalize()
        self._buffer = bytearray(b"\x00\x00")
        self._buffer += counter.to_bytes(2, "little")
        self._buffer.append(kind)
        self._sealed = False

    def _writable(self) -> bytearray:
        if self._sealed:
            raise FrameSealedError("Frame already finalized")
        if self._buffer is None:
            raise RuntimeError("begin_direct() or begin_system() must be called first")
        return self._buffer

    def append_opcode(self, code: int, *params: Param) -> FrameEncoder:
        """Append an opcode byte followed by its encoded parameters."""
        buffer = self._writable()
        buffer.append(code & 0xFF)
        for param in params:
            buffer += encode_param(param)
        return self

    def append_bytes(self, data: bytes) -> FrameEncoder:
        self._writable().extend(data)
        return self

    def append_u8(self, value: int) -> FrameEncoder:
        return self.append_bytes(struct.pack("<B", value))

    def append_u16(self, value: int) -> FrameEncoder:
        return self.append_bytes(struct.pack("<H", value))

    def append_u32(self, value: int) -> FrameEncoder:
        return self.append_bytes(struct.pack("<I", value))

    def append_cstring(self, text: str) -> FrameEncoder:
        """Append raw UTF-8 text plus terminator (system command arguments)."""
        return self.append_bytes(text.encode("utf-8") + b"\x00")

    def finalize(self) -> Frame:
        """Write the length field, seal the builder and return the frame."""
        buffer = self._writable()
        length = len(buffer) - LENGTH_SIZE
        if length > MAX_FRAME_LENGTH:
            raise ValueError(
                f"Frame body of {length} bytes exceeds {MAX_FRAME_LENGTH}"
            )
        buffer[0:2] = length.to_bytes(2, "little")
        self._sealed = True
        return Frame(bytes(buffer))


def parse_frame(data: bytes) -> Frame | None:
    """Parse a serialized outgoing frame.

    Returns:
        A ``Frame`` if the length field matches the buffer and the type byte
        is known, or ``None`` otherwise.
    """
    if len(data) < HEADER_SIZE:
        return None
    if int.from_bytes(data[0:2], "little") != len(data) - LENGTH_SIZE:
        return None
    try:
        CommandType(data[4])
    except ValueError:
        return None
    return Frame(bytes(data))


@dataclass(frozen=True)
class Reply:
    """Raw bytes of one reply frame."""

    data: bytes

    @property
    def length(self) -> int:
        return int.from_bytes(self.data[0:2], "little")

    @property
    def counter(self) -> int:
        return int.from_bytes(self.data[2:4], "little")

    @property
    def status(self) -> int:
        return self.data[4]

    @property
    def ok(self) -> bool:
        return self.status in SUCCESS_STATUSES

    @property
    def payload(self) -> bytes:
        """Reply bytes after length/counter/status."""
        return self.data[PAYLOAD_OFFSET:]

    @property
    def system_status(self) -> int | None:
        """Status byte of a system reply (after the echoed sub-command)."""
        if len(self.data) < PAYLOAD_OFFSET + 2:
            return None
        return self.data[PAYLOAD_OFFSET + 1]

    def __repr__(self) -> str:
        return (
            f"Reply(counter={self.counter}, status=0x{self.status:02X}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


def parse_reply(data: bytes) -> Reply:
    """Wrap raw reply bytes, checking the length field.

    Raises:
        ProtocolDesyncError: If the buffer is shorter than a reply header or
            its length field disagrees with the byte count.
    """
    if len(data) < HEADER_SIZE:
        raise ProtocolDesyncError(f"Reply too short: {len(data)} byte(s)")
    declared = int.from_bytes(data[0:2], "little")
    if declared != len(data) - LENGTH_SIZE:
        raise ProtocolDesyncError(
            f"Reply length field says {declared} byte(s), "
            f"got {len(data) - LENGTH_SIZE}"
        )
    return Reply(bytes(data))


def is_reply_status(value: int) -> bool:
    """True when a type/status byte can only belong to a reply frame."""
    return value in {status.value for status in ReplyStatus}
