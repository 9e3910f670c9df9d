"""Byte channels to the brick: USB HID, Wi-Fi TCP and Bluetooth."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import BrickConfig


@runtime_checkable
class ByteChannel(Protocol):
    """Ordered, reliable duplex byte stream.

    ``read()`` blocks until at least one byte is available and returns what
    has arrived; an empty result means the peer closed the channel.
    """

    def write(self, data: bytes) -> int:
        ...

    def read(self) -> bytes:
        ...

    def close(self) -> None:
        ...


def open_channel(config: BrickConfig) -> ByteChannel:
    """Open the channel selected by ``config.io_type``."""
    io_type = config.io_type
    if io_type == "usb":
        from .usb_connection import USBConnection

        channel = USBConnection(timeout_ms=config.timeout_ms)
        channel.open()
        return channel
    if io_type == "wifi":
        from .socket_connection import WiFiConnection

        return WiFiConnection(
            config.wifi_address,
            config.wifi_port,
            config.wifi_serial,
            timeout=config.timeout,
        )
    if io_type == "bt":
        from .serial_connection import SerialConnection

        return SerialConnection(config.serial_port, timeout=config.timeout)
    if io_type == "btsocket":
        from .socket_connection import RfcommConnection

        return RfcommConnection(
            config.bt_address, config.bt_channel, timeout=config.timeout
        )
    raise ValueError(
        f"Unknown io_type '{io_type}'. Valid: usb, wifi, bt, btsocket"
    )
