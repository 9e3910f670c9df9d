"""One-request-at-a-time send/receive over a byte channel.

The brick answers reply-expecting frames strictly in order and never
pipelines, so the engine tracks a single :class:`CommState`. Any path that
sends a reply-expecting frame must consume exactly one reply before the
channel is reused; :meth:`RequestReplyEngine.scoped_request` guarantees
that on every exit path.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Iterator

from ..errors import (
    BrickError,
    BrickStatusError,
    ChannelClosedError,
    ChannelError,
    ProtocolDesyncError,
    ReplyCounterMismatchError,
    ReplyPendingError,
    UnexpectedReplyError,
)
from ..transport import ByteChannel
from .commands import SYSTEM_OK_STATUSES
from .framing import (
    LENGTH_SIZE,
    MAX_COUNTER,
    Frame,
    Reply,
    is_reply_status,
    parse_reply,
)

logger = logging.getLogger(__name__)


class CommState(Enum):
    IDLE = "idle"
    AWAITING_REPLY = "awaiting_reply"


class RequestReplyEngine:
    """Owns a channel and the request/reply state of that connection.

    Usage::

        engine = RequestReplyEngine(channel)
        reply = engine.request(build_battery_voltage(), "battery_voltage")
        volts = decode_float32_le(reply.payload)
    """

    def __init__(self, channel: ByteChannel) -> None:
        self._channel = channel
        self._state = CommState.IDLE
        self._expected_counter: int | None = None
        self._buffer = bytearray()
        self._counter = 0
        self._closed = False

    @property
    def state(self) -> CommState:
        return self._state

    @property
    def channel(self) -> ByteChannel:
        return self._channel

    def next_counter(self) -> int:
        """Next 16-bit sequence number for an outgoing frame."""
        self._counter = (self._counter + 1) & MAX_COUNTER
        return self._counter

    # ─── SEND / RECEIVE ──────────────────────────────────────────────

    def send(self, frame: Frame) -> None:
        """Write a frame to the channel.

        Raises:
            ReplyPendingError: If a reply-expecting frame is sent while a
                previous reply has not been consumed.
            ChannelError: If the channel write fails.
        """
        if self._closed:
            raise ChannelClosedError("Engine is closed")
        if frame.expects_reply and self._state is CommState.AWAITING_REPLY:
            raise ReplyPendingError(
                f"Reply to counter {self._expected_counter} not yet received"
            )

        logger.debug("sent: %s", frame.data.hex(" "))
        try:
            self._channel.write(frame.data)
        except ChannelError:
            raise
        except OSError as e:
            raise ChannelError(f"Write failed: {e}") from e

        if frame.expects_reply:
            self._state = CommState.AWAITING_REPLY
            self._expected_counter = frame.counter

    def _fill(self, size: int) -> None:
        """Read until at least ``size`` bytes are buffered."""
        while len(self._buffer) < size:
            try:
                chunk = self._channel.read()
            except ChannelError:
                raise
            except OSError as e:
                raise ChannelError(f"Read failed: {e}") from e
            if not chunk:
                raise ChannelClosedError("Channel closed while reading a frame")
            self._buffer.extend(chunk)

    def _read_frame(self) -> bytes:
        # nothing leaves the buffer until the whole frame is in it, so a
        # failed read can be retried without losing the length prefix
        self._fill(LENGTH_SIZE)
        total = LENGTH_SIZE + int.from_bytes(self._buffer[:LENGTH_SIZE], "little")
        self._fill(total)
        data = bytes(self._buffer[:total])
        del self._buffer[:total]
        logger.debug("received: %s", data.hex(" "))
        return data

    def receive(self) -> Reply:
        """Block until the outstanding reply has been read.

        Returns to ``IDLE`` once a complete frame has been consumed. A
        channel error leaves the engine ``AWAITING_REPLY`` for the cleanup
        path to resolve.

        Raises:
            ProtocolDesyncError: If no reply is outstanding.
            ReplyCounterMismatchError: If the reply belongs to another request.
            ChannelError: If the channel fails.
        """
        if self._state is not CommState.AWAITING_REPLY:
            raise ProtocolDesyncError("receive() called with no reply outstanding")

        data = self._read_frame()
        expected = self._expected_counter
        self._state = CommState.IDLE
        self._expected_counter = None

        reply = parse_reply(data)
        if reply.counter != expected:
            raise ReplyCounterMismatchError(expected, reply.counter)
        return reply

    def receive_message(self) -> bytes:
        """Read one unsolicited frame from the brick (e.g. a mailbox message).

        Raises:
            UnexpectedReplyError: If the frame is a reply while the engine
                is idle.
            ProtocolDesyncError: If a reply is outstanding; it must be
                received first.
        """
        if self._state is CommState.AWAITING_REPLY:
            raise ProtocolDesyncError(
                "A reply is outstanding; receive() it before reading messages"
            )
        data = self._read_frame()
        if len(data) > 4 and is_reply_status(data[4]):
            raise UnexpectedReplyError(
                f"Reply with counter {int.from_bytes(data[2:4], 'little')} "
                f"arrived with no request outstanding"
            )
        return data

    # ─── SCOPED REQUESTS ─────────────────────────────────────────────

    def drain(self) -> None:
        """Read and discard the outstanding reply, if any."""
        if self._state is not CommState.AWAITING_REPLY:
            return
        logger.warning(
            "Draining unread reply for counter %s", self._expected_counter
        )
        try:
            self.receive()
        except ReplyCounterMismatchError as e:
            logger.warning("Drained reply did not match: %s", e)

    @contextmanager
    def scoped_request(self, frame: Frame) -> Iterator[RequestReplyEngine]:
        """Send ``frame`` and guarantee its reply is consumed on exit.

        Usage::

            with engine.scoped_request(frame) as pending:
                reply = pending.receive()

        If the block exits (normally or by exception) without receiving the
        reply, exactly one reply is drained from the channel. A drain
        failure during exception unwinding is logged and the original
        exception propagates.
        """
        self.send(frame)
        try:
            yield self
        except BaseException:
            if self._state is CommState.AWAITING_REPLY:
                try:
                    self.drain()
                except BrickError:
                    logger.exception("Reply drain failed during error unwind")
            raise
        self.drain()

    def request(self, frame: Frame, operation: str = "request") -> Reply:
        """Send a reply-expecting frame and return its successful reply.

        Raises:
            BrickStatusError: If the reply (or, for system commands, the
                system status byte) reports an error.
        """
        if not frame.expects_reply:
            raise ValueError(f"{operation}: frame does not expect a reply")
        with self.scoped_request(frame) as pending:
            reply = pending.receive()
        check_reply(reply, operation, system=not frame.is_direct)
        return reply

    def post(self, frame: Frame) -> None:
        """Send a frame that expects no reply."""
        if frame.expects_reply:
            raise ValueError("post() is for no-reply frames; use request()")
        self.send(frame)

    def close(self) -> None:
        """Drain any outstanding reply, then close the channel."""
        if self._closed:
            return
        try:
            if self._state is CommState.AWAITING_REPLY:
                self.drain()
        finally:
            self._closed = True
            self._channel.close()


def check_reply(reply: Reply, operation: str, system: bool = False) -> None:
    """Raise ``BrickStatusError`` unless the reply reports success."""
    if not reply.ok:
        raise BrickStatusError(operation, reply.status, reply.system_status)
    if system:
        status = reply.system_status
        if status is not None and status not in SYSTEM_OK_STATUSES:
            raise BrickStatusError(operation, reply.status, status)
