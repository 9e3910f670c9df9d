"""Chunked file transfer and file-system commands (system commands).

Download (host → brick)::

    BEGIN_DOWNLOAD  size(u32) path\\0        → reply ... handle
    CONTINUE_DOWNLOAD handle data[..65530]  → reply (repeated)
                                              until bytes_sent == size

Upload (brick → host) is a single BEGIN_UPLOAD whose reply carries the
file data after a 12-byte header; LIST_FILES works the same way with the
directory listing as data.

States::

    IDLE ─begin_download─▶ AWAITING_BEGIN_ACK ─handle─▶ TRANSFERRING ─▶ COMPLETE
    IDLE ─begin_upload───▶ AWAITING_UPLOAD_ACK ─data──────────────────▶ COMPLETE

Any failure discards the session and returns to IDLE; there is no resume.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from ..errors import ProtocolDesyncError, TruncatedReplyError
from ..models.files import FileEntry
from .commands import (
    MAX_CONTINUE_PAYLOAD,
    build_begin_download,
    build_begin_upload,
    build_continue_download,
    build_create_dir,
    build_delete_file,
    build_list_files,
)
from .engine import RequestReplyEngine
from .framing import Reply
from .parser import decode_system_data, parse_listing

logger = logging.getLogger(__name__)

DEFAULT_LIST_LENGTH = 1000
MAX_UPLOAD_LENGTH = 0xFFFF


class TransferState(Enum):
    IDLE = "idle"
    AWAITING_BEGIN_ACK = "awaiting_begin_ack"
    TRANSFERRING = "transferring"
    AWAITING_UPLOAD_ACK = "awaiting_upload_ack"
    COMPLETE = "complete"


@dataclass
class FileTransferSession:
    """An open download, created by a successful BEGIN_DOWNLOAD."""

    handle: int
    total_size: int
    bytes_sent: int = 0

    @property
    def remaining(self) -> int:
        return self.total_size - self.bytes_sent

    @property
    def complete(self) -> bool:
        return self.bytes_sent == self.total_size


class FileTransferProtocol:
    """File operations over a request/reply engine.

    Args:
        engine: The connection's engine.
        chunk_size: Largest CONTINUE_DOWNLOAD payload to send in one frame.
    """

    def __init__(
        self, engine: RequestReplyEngine, chunk_size: int = MAX_CONTINUE_PAYLOAD
    ) -> None:
        if not 1 <= chunk_size <= MAX_CONTINUE_PAYLOAD:
            raise ValueError(
                f"chunk_size must be 1-{MAX_CONTINUE_PAYLOAD}, got {chunk_size}"
            )
        self._engine = engine
        self._chunk_size = chunk_size
        self._state = TransferState.IDLE
        self._session: FileTransferSession | None = None

    @property
    def state(self) -> TransferState:
        return self._state

    @property
    def session(self) -> FileTransferSession | None:
        return self._session

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def _abort(self) -> None:
        if self._session is not None:
            logger.warning(
                "Discarding transfer session (handle %d, %d/%d bytes)",
                self._session.handle,
                self._session.bytes_sent,
                self._session.total_size,
            )
        self._session = None
        self._state = TransferState.IDLE

    # ─── DOWNLOAD (host → brick) ─────────────────────────────────────

    def begin_download(self, local_size: int, remote_path: str) -> int:
        """Open ``remote_path`` for writing ``local_size`` bytes.

        Returns:
            The file handle the brick assigned.

        Raises:
            BrickStatusError: If the brick refuses the file.
            TruncatedReplyError: If the reply carries no handle.
        """
        if self._state is TransferState.TRANSFERRING:
            self._abort()

        frame = build_begin_download(
            local_size, remote_path, counter=self._engine.next_counter()
        )
        self._state = TransferState.AWAITING_BEGIN_ACK
        try:
            reply = self._engine.request(frame, "begin_download")
            payload = reply.payload
            if len(payload) < 3:
                raise TruncatedReplyError(2, 1, len(payload))
        except Exception:
            self._abort()
            raise

        handle = payload[-1]
        self._session = FileTransferSession(handle=handle, total_size=local_size)
        if self._session.complete:
            self._state = TransferState.COMPLETE
            self._session = None
        else:
            self._state = TransferState.TRANSFERRING
        logger.info(
            "Download to %s started: %d bytes, handle %d",
            remote_path,
            local_size,
            handle,
        )
        return handle

    def continue_download(self, handle: int, chunk: bytes) -> None:
        """Send the next part of the open download.

        ``chunk`` may be larger than one frame; it is split into frames of at
        most ``chunk_size`` bytes, each acknowledged before the next is sent.

        Raises:
            ProtocolDesyncError: If no download is in progress.
            ValueError: If ``handle`` is not the open session's handle, or
                ``chunk`` would overrun the announced size.
        """
        session = self._session
        if self._state is not TransferState.TRANSFERRING or session is None:
            raise ProtocolDesyncError("continue_download() with no download in progress")
        if handle != session.handle:
            raise ValueError(f"Handle {handle} does not match open session {session.handle}")
        if len(chunk) > session.remaining:
            raise ValueError(
                f"Chunk of {len(chunk)} bytes overruns the announced size "
                f"({session.remaining} bytes remaining)"
            )

        try:
            for start in range(0, len(chunk), self._chunk_size):
                part = chunk[start : start + self._chunk_size]
                frame = build_continue_download(
                    handle, part, counter=self._engine.next_counter()
                )
                self._engine.request(frame, "continue_download")
                session.bytes_sent += len(part)
                logger.debug(
                    "Handle %d: %d/%d bytes sent",
                    handle,
                    session.bytes_sent,
                    session.total_size,
                )
        except Exception:
            self._abort()
            raise

        if session.complete:
            self._state = TransferState.COMPLETE
            self._session = None
            logger.info("Download complete (handle %d)", handle)

    def download(self, data: bytes, remote_path: str) -> int:
        """Write ``data`` to ``remote_path`` on the brick.

        Returns:
            Number of bytes written.
        """
        handle = self.begin_download(len(data), remote_path)
        if data:
            self.continue_download(handle, data)
        return len(data)

    # ─── UPLOAD (brick → host) ───────────────────────────────────────

    def begin_upload(self, max_length: int, remote_path: str) -> bytes:
        """Read up to ``max_length`` bytes of ``remote_path`` from the brick."""
        frame = build_begin_upload(
            max_length, remote_path, counter=self._engine.next_counter()
        )
        self._state = TransferState.AWAITING_UPLOAD_ACK
        try:
            reply = self._engine.request(frame, "begin_upload")
            data = decode_system_data(reply.data, max_length)
        except Exception:
            self._abort()
            raise
        self._state = TransferState.COMPLETE
        logger.info("Uploaded %d bytes from %s", len(data), remote_path)
        return data

    # ─── FILE SYSTEM ─────────────────────────────────────────────────

    def _list(self, path: str, max_length: int) -> Reply:
        frame = build_list_files(path, max_length, counter=self._engine.next_counter())
        return self._engine.request(frame, "list_files")

    def list_files(self, path: str, max_length: int = DEFAULT_LIST_LENGTH) -> str:
        """Raw directory listing text of ``path``."""
        reply = self._list(path, max_length)
        return decode_system_data(reply.data, max_length).decode(
            "utf-8", errors="replace"
        )

    def list_entries(
        self, path: str, max_length: int = DEFAULT_LIST_LENGTH
    ) -> list[FileEntry]:
        return parse_listing(self._list(path, max_length).data, max_length)

    def create_dir(self, path: str) -> None:
        frame = build_create_dir(path, counter=self._engine.next_counter())
        self._engine.request(frame, "create_dir")
        logger.info("Created directory %s", path)

    def delete_file(self, path: str) -> None:
        frame = build_delete_file(path, counter=self._engine.next_counter())
        self._engine.request(frame, "delete_file")
        logger.info("Deleted %s", path)
