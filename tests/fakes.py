"""In-memory byte channels used by the test suite."""

from __future__ import annotations

import hashlib
import struct
from collections import deque

from ev3_brick_mcp.protocol.commands import SystemCommand, SystemStatus
from ev3_brick_mcp.protocol.framing import CommandType, ReplyStatus


def make_reply(counter: int, status: int, payload: bytes = b"") -> bytes:
    """Assemble raw reply bytes: length | counter | status | payload."""
    body = struct.pack("<HB", counter, status) + payload
    return struct.pack("<H", len(body)) + body


def make_mailbox_frame(title: str, payload: bytes, counter: int = 0) -> bytes:
    """An incoming WRITEMAILBOX frame as another brick would send it."""
    name = title.encode("utf-8") + b"\x00"
    body = (
        struct.pack("<HBB", counter, CommandType.SYSTEM_NO_REPLY, SystemCommand.WRITEMAILBOX)
        + bytes([len(name)])
        + name
        + struct.pack("<H", len(payload))
        + payload
    )
    return struct.pack("<H", len(body)) + body


class LoopbackChannel:
    """Every write becomes readable again, optionally in small pieces."""

    def __init__(self, read_size: int | None = None) -> None:
        self.read_size = read_size
        self.writes: list[bytes] = []
        self.closed = False
        self._pending = bytearray()

    def write(self, data: bytes) -> int:
        self.writes.append(bytes(data))
        self._pending += data
        return len(data)

    def read(self) -> bytes:
        size = self.read_size or len(self._pending)
        data = bytes(self._pending[:size])
        del self._pending[:size]
        return data

    def close(self) -> None:
        self.closed = True


class ScriptedChannel:
    """Replays queued bytes; records writes. Empty queue reads as closed.

    A queued exception is raised by the read that reaches it.
    """

    def __init__(self, *chunks: bytes | Exception) -> None:
        self.writes: list[bytes] = []
        self.closed = False
        self._chunks: deque[bytes | Exception] = deque(chunks)

    def feed(self, *chunks: bytes | Exception) -> None:
        self._chunks.extend(chunks)

    def write(self, data: bytes) -> int:
        self.writes.append(bytes(data))
        return len(data)

    def read(self) -> bytes:
        if not self._chunks:
            return b""
        chunk = self._chunks.popleft()
        if isinstance(chunk, Exception):
            raise chunk
        return chunk

    def close(self) -> None:
        self.closed = True


class FakeBrick:
    """A byte channel that answers like a brick.

    System commands run against an in-memory file system. Reply-expecting
    direct commands answer with queued payloads (or zeroed globals).
    Mailbox messages written to the brick are collected in ``mailbox``.
    """

    def __init__(self, read_size: int | None = None) -> None:
        self.read_size = read_size
        self.files: dict[str, bytes] = {}
        self.dirs: set[str] = {"/home/root/lms2012/"}
        self.mailbox: list[tuple[str, bytes]] = []
        self.frames: list[bytes] = []
        self.closed = False
        self._direct_payloads: deque[bytes] = deque()
        self._downloads: dict[int, tuple[str, int, bytearray]] = {}
        self._next_handle = 0
        self._outgoing = bytearray()

    # ─── scripting ───────────────────────────────────────────────────

    def queue_direct(self, *payloads: bytes) -> None:
        self._direct_payloads.extend(payloads)

    def push(self, data: bytes) -> None:
        """Make ``data`` readable as if the brick had sent it unprompted."""
        self._outgoing += data

    @property
    def continue_frames(self) -> list[bytes]:
        return [f for f in self.frames if len(f) > 5 and f[4] in (0x01, 0x81)
                and f[5] == SystemCommand.CONTINUE_DOWNLOAD]

    # ─── ByteChannel ─────────────────────────────────────────────────

    def write(self, data: bytes) -> int:
        data = bytes(data)
        self.frames.append(data)
        kind = data[4]
        counter = int.from_bytes(data[2:4], "little")
        if kind == CommandType.DIRECT_REPLY:
            self._answer_direct(counter, data)
        elif kind in (CommandType.SYSTEM_REPLY, CommandType.SYSTEM_NO_REPLY):
            self._answer_system(counter, data, kind == CommandType.SYSTEM_REPLY)
        return len(data)

    def read(self) -> bytes:
        size = self.read_size or len(self._outgoing)
        data = bytes(self._outgoing[:size])
        del self._outgoing[:size]
        return data

    def close(self) -> None:
        self.closed = True

    # ─── emulation ───────────────────────────────────────────────────

    def _answer_direct(self, counter: int, data: bytes) -> None:
        global_bytes = int.from_bytes(data[5:7], "little") & 0x3FF
        if self._direct_payloads:
            payload = self._direct_payloads.popleft()
        else:
            payload = bytes(global_bytes)
        self._outgoing += make_reply(counter, ReplyStatus.DIRECT_OK, payload)

    def _system_reply(
        self, counter: int, command: int, status: int, extra: bytes = b""
    ) -> None:
        ok = status in (SystemStatus.SUCCESS, SystemStatus.END_OF_FILE)
        reply_status = ReplyStatus.SYSTEM_OK if ok else ReplyStatus.SYSTEM_ERROR
        self._outgoing += make_reply(counter, reply_status, bytes([command, status]) + extra)

    def _answer_system(self, counter: int, data: bytes, reply: bool) -> None:
        command = data[5]
        args = data[6:]

        if command == SystemCommand.WRITEMAILBOX:
            n = args[0]
            title = args[1 : n].decode("utf-8")
            size = int.from_bytes(args[1 + n : 3 + n], "little")
            self.mailbox.append((title, bytes(args[3 + n : 3 + n + size])))
            return

        status, extra = self._run_system(command, args)
        if reply:
            self._system_reply(counter, command, status, extra)

    def _run_system(self, command: int, args: bytes) -> tuple[int, bytes]:
        if command == SystemCommand.BEGIN_DOWNLOAD:
            size = int.from_bytes(args[0:4], "little")
            path = _cstring(args[4:])
            handle = self._next_handle
            self._next_handle = (self._next_handle + 1) & 0xFF
            self._downloads[handle] = (path, size, bytearray())
            if size == 0:
                self.files[path] = b""
            return SystemStatus.SUCCESS, bytes([handle])

        if command == SystemCommand.CONTINUE_DOWNLOAD:
            handle = args[0]
            if handle not in self._downloads:
                return SystemStatus.UNKNOWN_HANDLE, bytes([handle])
            path, size, buffer = self._downloads[handle]
            buffer += args[1:]
            if len(buffer) >= size:
                self.files[path] = bytes(buffer)
                del self._downloads[handle]
                return SystemStatus.END_OF_FILE, bytes([handle])
            return SystemStatus.SUCCESS, bytes([handle])

        if command == SystemCommand.BEGIN_UPLOAD:
            max_length = int.from_bytes(args[0:2], "little")
            path = _cstring(args[2:])
            if path not in self.files:
                return SystemStatus.ILLEGAL_PATH, b""
            content = self.files[path]
            status = SystemStatus.END_OF_FILE if len(content) <= max_length else SystemStatus.SUCCESS
            return status, struct.pack("<IB", len(content), 0) + content[:max_length]

        if command == SystemCommand.LIST_FILES:
            max_length = int.from_bytes(args[0:2], "little")
            path = _cstring(args[2:])
            listing = self._listing(path)
            return SystemStatus.END_OF_FILE, struct.pack("<IB", len(listing), 0) + listing[:max_length]

        if command == SystemCommand.CREATE_DIR:
            path = _cstring(args).rstrip("/") + "/"
            if path in self.dirs:
                return SystemStatus.FILE_EXISTS, b""
            self.dirs.add(path)
            return SystemStatus.SUCCESS, b""

        if command == SystemCommand.DELETE_FILE:
            path = _cstring(args)
            if path in self.files:
                del self.files[path]
                return SystemStatus.SUCCESS, b""
            if path.rstrip("/") + "/" in self.dirs:
                self.dirs.discard(path.rstrip("/") + "/")
                return SystemStatus.SUCCESS, b""
            return SystemStatus.ILLEGAL_PATH, b""

        return SystemStatus.UNKNOWN_ERROR, b""

    def _listing(self, path: str) -> bytes:
        if not path.endswith("/"):
            path += "/"
        lines = ["../"]
        for directory in sorted(self.dirs):
            rest = directory[len(path):]
            if directory.startswith(path) and rest and rest.count("/") == 1:
                lines.append(rest)
        for name, content in sorted(self.files.items()):
            rest = name[len(path):]
            if name.startswith(path) and rest and "/" not in rest:
                md5 = hashlib.md5(content).hexdigest().upper()
                lines.append(f"{md5} {len(content):08X} {rest}")
        return ("\n".join(lines) + "\n").encode("utf-8")


def _cstring(data: bytes) -> str:
    end = data.find(b"\x00")
    return data[: end if end != -1 else len(data)].decode("utf-8")
