"""Typed decoding of reply payloads.

Offsets are relative to ``Reply.payload``, which starts right after the
length/counter/status header (byte 6 of the full reply, counting from 1).
Every decode declares its width and endianness; nothing is reinterpreted
implicitly, and no decode reads past the end of its input.
"""

from __future__ import annotations

import struct

from ..errors import TruncatedReplyError
from ..models.files import FileEntry, parse_file_listing

# Bytes of a system reply before the data of BEGIN_UPLOAD / LIST_FILES:
# length(2) counter(2) status(1) command(1) system status(1) size(4) handle(1)
SYSTEM_DATA_OFFSET = 12


def _require(payload: bytes, offset: int, size: int) -> None:
    if offset < 0 or size < 0 or offset + size > len(payload):
        raise TruncatedReplyError(offset, size, len(payload))


def decode_uint8(payload: bytes, offset: int = 0) -> int:
    _require(payload, offset, 1)
    return payload[offset]


def decode_float32_le(payload: bytes, offset: int = 0) -> float:
    _require(payload, offset, 4)
    return struct.unpack_from("<f", payload, offset)[0]


def decode_int32_le(payload: bytes, offset: int = 0) -> int:
    _require(payload, offset, 4)
    return struct.unpack_from("<i", payload, offset)[0]


def decode_uint32_le(payload: bytes, offset: int = 0) -> int:
    _require(payload, offset, 4)
    return struct.unpack_from("<I", payload, offset)[0]


def decode_uint32_array(payload: bytes, offset: int, count: int) -> list[int]:
    """Decode ``count`` consecutive little-endian u32 fields (e.g. RGB)."""
    _require(payload, offset, 4 * count)
    return list(struct.unpack_from(f"<{count}I", payload, offset))


def decode_raw_buffer(payload: bytes, offset: int, count: int) -> bytes:
    _require(payload, offset, count)
    return bytes(payload[offset : offset + count])


def decode_null_terminated_string(
    payload: bytes, offset: int = 0, encoding: str = "utf-8"
) -> str:
    """Read text up to the first NUL, or to the end of the buffer."""
    if offset < 0 or offset > len(payload):
        raise TruncatedReplyError(offset, 1, len(payload))
    end = payload.find(b"\x00", offset)
    if end == -1:
        end = len(payload)
    return payload[offset:end].decode(encoding, errors="replace")


def decode_system_data(data: bytes, max_length: int | None = None) -> bytes:
    """Data section of an upload/listing reply, optionally truncated.

    Args:
        data: The full raw reply (header included).
        max_length: Truncate to this many bytes.
    """
    _require(data, 0, SYSTEM_DATA_OFFSET)
    body = bytes(data[SYSTEM_DATA_OFFSET:])
    if max_length is not None:
        body = body[:max_length]
    return body


def parse_listing(data: bytes, max_length: int | None = None) -> list[FileEntry]:
    """Decode a LIST_FILES reply straight into entries."""
    text = decode_system_data(data, max_length).decode("utf-8", errors="replace")
    return parse_file_listing(text)
