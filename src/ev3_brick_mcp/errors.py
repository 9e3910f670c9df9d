"""Exception hierarchy for the EV3 brick driver.

::

    BrickError
    ├── ChannelError              transport read/write/close failure
    │   ├── ChannelClosedError
    │   └── ChannelTimeoutError
    ├── ProtocolDesyncError       the byte stream is no longer in step
    │   ├── ReplyCounterMismatchError
    │   ├── UnexpectedReplyError
    │   └── ReplyPendingError
    ├── TruncatedReplyError       decoder asked for bytes past the payload
    ├── BrickStatusError          brick answered with an error status
    ├── FrameSealedError          append after finalize()
    └── MailboxTypeError          mailbox payload does not fit the expected type

Argument validation in the command builders raises plain ``ValueError``.
"""

from __future__ import annotations


class BrickError(Exception):
    """Base class for all driver errors."""


class ChannelError(BrickError, ConnectionError):
    """The underlying byte channel failed.

    The channel should be considered unusable after this is raised.
    """


class ChannelClosedError(ChannelError):
    """The channel was closed, or the peer hung up mid-frame."""


class ChannelTimeoutError(ChannelError):
    """No data arrived within the configured read timeout."""


class ProtocolDesyncError(BrickError):
    """Request/reply sequencing on the channel has been violated."""


class ReplyCounterMismatchError(ProtocolDesyncError):
    """A reply carried a different counter than the outstanding request."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Reply counter mismatch: expected {expected}, got {actual}"
        )


class UnexpectedReplyError(ProtocolDesyncError):
    """A reply frame arrived while no request was outstanding."""


class ReplyPendingError(ProtocolDesyncError):
    """A reply-expecting frame was sent while another reply is still owed."""


class TruncatedReplyError(BrickError):
    """A decode asked for bytes beyond the end of the payload."""

    def __init__(self, offset: int, size: int, available: int) -> None:
        self.offset = offset
        self.size = size
        self.available = available
        super().__init__(
            f"Cannot read {size} byte(s) at offset {offset}: "
            f"payload holds {available} byte(s)"
        )


class BrickStatusError(BrickError):
    """The brick reported an error for a remote operation."""

    def __init__(
        self, operation: str, status: int, system_status: int | None = None
    ) -> None:
        self.operation = operation
        self.status = status
        self.system_status = system_status
        detail = f"status 0x{status:02X}"
        if system_status is not None:
            detail += f", system status 0x{system_status:02X}"
        super().__init__(f"{operation} failed on the brick ({detail})")


class FrameSealedError(BrickError):
    """The frame has already been finalized and cannot be extended."""


class MailboxTypeError(BrickError):
    """A mailbox payload cannot be the type the caller asked for."""
