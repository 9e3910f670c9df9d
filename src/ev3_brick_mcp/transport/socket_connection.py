"""Socket channels: Wi-Fi TCP and Bluetooth RFCOMM.

The Wi-Fi brick listens on TCP 5555 but only speaks the command protocol
after an unlock exchange::

    client → GET /target?sn=<serial number>VMTP1.0\\nProtocol: EV3
    brick  → Accept:EV340\\r\\n\\r\\n

After that both socket kinds carry raw frames with no extra framing.
"""

from __future__ import annotations

import logging
import socket

from ..errors import ChannelClosedError, ChannelError, ChannelTimeoutError

logger = logging.getLogger(__name__)

WIFI_PORT = 5555
RFCOMM_CHANNEL = 1
CONNECT_TIMEOUT = 5.0
RECV_SIZE = 1024
UNLOCK_REPLY = b"Accept:EV340\r\n\r\n"


def unlock_request(serial_number: str) -> bytes:
    return f"GET /target?sn={serial_number}VMTP1.0\nProtocol: EV3".encode("ascii")


class SocketConnection:
    """A connected stream socket exposed as a byte channel."""

    def __init__(self, sock: socket.socket, description: str) -> None:
        self._sock: socket.socket | None = sock
        self._description = description
        # bytes read past a handshake, returned by the next read()
        self._pending = b""

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def _socket(self) -> socket.socket:
        if self._sock is None:
            raise ChannelClosedError(f"{self._description} is closed")
        return self._sock

    def write(self, data: bytes) -> int:
        sock = self._socket()
        try:
            sock.sendall(data)
        except socket.timeout as e:
            raise ChannelTimeoutError(f"Send to {self._description} timed out") from e
        except OSError as e:
            raise ChannelError(f"Send to {self._description} failed: {e}") from e
        return len(data)

    def read(self) -> bytes:
        """Return the bytes available on the socket; ``b""`` once the peer closes."""
        sock = self._socket()
        if self._pending:
            data, self._pending = self._pending, b""
            return data
        try:
            return sock.recv(RECV_SIZE)
        except socket.timeout as e:
            raise ChannelTimeoutError(
                f"No data from {self._description} within {sock.gettimeout()} s"
            ) from e
        except OSError as e:
            raise ChannelError(f"Receive from {self._description} failed: {e}") from e

    def close(self) -> None:
        if self._sock is None:
            return
        try:
            self._sock.close()
        except OSError as e:
            logger.warning("Error closing %s: %s", self._description, e)
        finally:
            self._sock = None
            logger.info("Disconnected from %s", self._description)


class WiFiConnection(SocketConnection):
    """TCP connection to a brick on the local network.

    Args:
        address: IP address of the brick.
        port: TCP port, 5555 on stock firmware.
        serial_number: The brick's serial number, shown in its Wi-Fi menu.
        timeout: Read timeout in seconds; ``None`` blocks.
    """

    def __init__(
        self,
        address: str,
        port: int = WIFI_PORT,
        serial_number: str = "",
        timeout: float | None = None,
    ) -> None:
        description = f"{address}:{port}"
        try:
            sock = socket.create_connection((address, port), timeout=CONNECT_TIMEOUT)
        except OSError as e:
            raise ChannelError(f"Failed to connect to brick at {description}: {e}") from e

        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        super().__init__(sock, description)
        try:
            self._unlock(serial_number)
        except BaseException:
            self.close()
            raise
        sock.settimeout(timeout)
        logger.info("Connected via Wi-Fi: %s (sn=%s)", description, serial_number)

    def _unlock(self, serial_number: str) -> None:
        self.write(unlock_request(serial_number))
        reply = b""
        while len(reply) < len(UNLOCK_REPLY):
            chunk = self.read()
            if not chunk:
                raise ChannelClosedError("Brick closed the connection during unlock")
            reply += chunk
        if not reply.startswith(UNLOCK_REPLY[:12]):
            raise ChannelError(f"Brick rejected unlock request: {reply!r}")
        self._pending = reply[len(UNLOCK_REPLY):]


class RfcommConnection(SocketConnection):
    """Bluetooth RFCOMM socket (Linux ``AF_BLUETOOTH``).

    Args:
        address: Bluetooth MAC address of the brick.
        channel: RFCOMM channel, 1 on stock firmware.
        timeout: Read timeout in seconds; ``None`` blocks.
    """

    def __init__(
        self,
        address: str,
        channel: int = RFCOMM_CHANNEL,
        timeout: float | None = None,
    ) -> None:
        description = f"{address} ch{channel}"
        if not hasattr(socket, "AF_BLUETOOTH"):
            raise ChannelError("This Python build has no AF_BLUETOOTH sockets")
        sock = socket.socket(
            socket.AF_BLUETOOTH, socket.SOCK_STREAM, socket.BTPROTO_RFCOMM
        )
        try:
            sock.settimeout(CONNECT_TIMEOUT)
            sock.connect((address, channel))
        except OSError as e:
            sock.close()
            raise ChannelError(f"Failed to connect to brick at {description}: {e}") from e

        sock.settimeout(timeout)
        super().__init__(sock, description)
        logger.info("Connected via Bluetooth: %s", description)
