"""Protocol layer: frame encoding, request/reply engine, payload decoding,
file transfer and mailboxes."""

from .engine import CommState, RequestReplyEngine
from .filetransfer import FileTransferProtocol, FileTransferSession, TransferState
from .framing import Frame, FrameEncoder, Reply, parse_frame, parse_reply
from .mailbox import MailboxMessage, MailboxProtocol, MailboxType
