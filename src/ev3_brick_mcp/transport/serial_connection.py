"""Bluetooth connection through a bound RFCOMM serial device.

On Linux the brick is paired and bound first, for example
``rfcomm bind /dev/rfcomm0 <address> 1``; on macOS and Windows it appears
as a serial port after pairing. Frames travel unmodified.
"""

from __future__ import annotations

import logging

import serial

from ..errors import ChannelClosedError, ChannelError, ChannelTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_PORT = "/dev/rfcomm0"
BAUD_RATE = 57600


class SerialConnection:
    """Serial-port byte channel.

    Usage::

        conn = SerialConnection("/dev/rfcomm0", timeout=2.0)
        conn.write(bytes(frame))
        data = conn.read()
        conn.close()
    """

    def __init__(self, port: str = DEFAULT_PORT, timeout: float | None = None) -> None:
        self._port_name = port
        try:
            self._serial: serial.Serial | None = serial.Serial(
                port=port, baudrate=BAUD_RATE, timeout=timeout
            )
        except (serial.SerialException, OSError) as e:
            raise ChannelError(f"Failed to open {port}: {e}") from e
        logger.info("Connected via Bluetooth serial: %s", port)

    @property
    def connected(self) -> bool:
        return self._serial is not None

    def _port(self) -> serial.Serial:
        if self._serial is None:
            raise ChannelClosedError(f"{self._port_name} is closed")
        return self._serial

    def write(self, data: bytes) -> int:
        port = self._port()
        try:
            written = port.write(data)
            port.flush()
        except serial.SerialTimeoutException as e:
            raise ChannelTimeoutError(f"Write to {self._port_name} timed out") from e
        except (serial.SerialException, OSError) as e:
            raise ChannelError(f"Write to {self._port_name} failed: {e}") from e
        return written if written is not None else len(data)

    def read(self) -> bytes:
        """Block for at least one byte, then return everything buffered."""
        port = self._port()
        try:
            data = port.read(1)
            waiting = port.in_waiting if data else 0
            if waiting:
                data += port.read(waiting)
        except (serial.SerialException, OSError) as e:
            raise ChannelError(f"Read from {self._port_name} failed: {e}") from e
        if not data:
            raise ChannelTimeoutError(
                f"No data from {self._port_name} within {port.timeout} s"
            )
        return data

    def close(self) -> None:
        if self._serial is None:
            return
        try:
            self._serial.close()
        except (serial.SerialException, OSError) as e:
            logger.warning("Error closing %s: %s", self._port_name, e)
        finally:
            self._serial = None
            logger.info("Disconnected from %s", self._port_name)
