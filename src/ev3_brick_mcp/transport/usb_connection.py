"""USB HID connection to the EV3 brick.

``hidapi`` is tried first, then ``pyusb`` (libusb) as a fallback.
The brick enumerates as a single HID interface (0) with endpoints 0x81
(IN) and 0x01 (OUT). Every transfer is one 1024-byte report; a frame is
written at the start of a report and zero-padded, so reads use the frame's
own length prefix to strip the padding::

    ┌────────────┬───────────────────────────┬──────────────────┐
    │ length u16 │ counter, type, body ...   │ 00 00 ... (pad)  │
    └────────────┴───────────────────────────┴──────────────────┘
    |<──────────────────── 1024 bytes ─────────────────────────>|
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import ChannelClosedError, ChannelError, ChannelTimeoutError

logger = logging.getLogger(__name__)

VENDOR_ID = 0x0694
PRODUCT_ID = 0x0005
HID_INTERFACE = 0
EP_IN = 0x81
EP_OUT = 0x01
HID_REPORT_SIZE = 1024
READ_TIMEOUT_MS = 2000


@dataclass
class DeviceInfo:
    """Descriptor strings of the opened brick."""

    vendor_id: int = VENDOR_ID
    product_id: int = PRODUCT_ID
    manufacturer: str = ""
    product: str = ""
    serial_number: str = ""


class USBConnection:
    """Manages the USB HID connection to the brick.

    Usage::

        conn = USBConnection()
        conn.open()
        conn.write(bytes(frame))
        data = conn.read()
        conn.close()

    ``timeout_ms=None`` blocks until a report arrives.
    """

    def __init__(
        self,
        vendor_id: int = VENDOR_ID,
        product_id: int = PRODUCT_ID,
        timeout_ms: int | None = READ_TIMEOUT_MS,
    ) -> None:
        self._vendor_id = vendor_id
        self._product_id = product_id
        self._timeout_ms = timeout_ms
        self._device = None
        self._backend: str = ""
        self._connected = False
        self._remaining = 0
        self._device_info = DeviceInfo(vendor_id=vendor_id, product_id=product_id)

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def backend(self) -> str:
        return self._backend

    @property
    def device_info(self) -> DeviceInfo:
        return self._device_info

    def open(self) -> DeviceInfo:
        """Open a connection to the brick, trying hidapi first, then pyusb.

        Returns:
            The descriptor strings of the brick.

        Raises:
            ChannelError: If the device cannot be found or opened.
        """
        try:
            return self._open_hidapi()
        except Exception as e:
            logger.debug("hidapi open failed (%s); falling back to pyusb", e)

        try:
            return self._open_pyusb()
        except Exception as e:
            raise ChannelError(
                f"Could not connect to EV3 brick "
                f"({self._vendor_id:#06x}:{self._product_id:#06x}). "
                f"Ensure the brick is on, connected and that you have permissions. "
                f"Last error: {e}"
            ) from e

    def _attach(self, backend: str, device, strings: tuple[str, str, str]) -> DeviceInfo:
        manufacturer, product, serial_number = (s or "" for s in strings)
        self._device = device
        self._backend = backend
        self._connected = True
        self._remaining = 0
        self._device_info = DeviceInfo(
            self._vendor_id, self._product_id, manufacturer, product, serial_number
        )
        logger.info(
            "Brick %s (%s) opened with %s", product or "EV3", serial_number, backend
        )
        return self._device_info

    def _open_hidapi(self) -> DeviceInfo:
        """Open through hidraw / IOKit / the Windows HID stack."""
        import hid

        device = hid.device()
        device.open(self._vendor_id, self._product_id)
        device.set_nonblocking(False)
        return self._attach(
            "hidapi",
            device,
            (
                device.get_manufacturer_string(),
                device.get_product_string(),
                device.get_serial_number_string(),
            ),
        )

    def _open_pyusb(self) -> DeviceInfo:
        """Open through libusb, detaching the kernel HID driver first."""
        import usb.core
        import usb.util

        dev = usb.core.find(idVendor=self._vendor_id, idProduct=self._product_id)
        if dev is None:
            raise ChannelError("No brick on the USB bus")
        if dev.is_kernel_driver_active(HID_INTERFACE):
            dev.detach_kernel_driver(HID_INTERFACE)
        usb.util.claim_interface(dev, HID_INTERFACE)
        strings = tuple(
            usb.util.get_string(dev, index)
            for index in (dev.iManufacturer, dev.iProduct, dev.iSerialNumber)
        )
        return self._attach("pyusb", dev, strings)

    def close(self) -> None:
        """Release the device; safe to call twice."""
        if not self._connected:
            return

        try:
            if self._backend == "hidapi":
                self._device.close()
            elif self._backend == "pyusb":
                import usb.util

                usb.util.release_interface(self._device, HID_INTERFACE)
                usb.util.dispose_resources(self._device)
        except Exception as e:
            logger.warning("Error releasing brick: %s", e)
        finally:
            self._device = None
            self._connected = False
            self._remaining = 0
            logger.info("USB brick disconnected")

    def write(self, data: bytes) -> int:
        """Write a frame as one or more zero-padded HID reports.

        Returns:
            Number of frame bytes written.

        Raises:
            ChannelClosedError: If not connected.
            ChannelError: If the backend write fails.
        """
        if not self._connected:
            raise ChannelClosedError("Not connected to device")

        try:
            for start in range(0, len(data), HID_REPORT_SIZE):
                report = data[start : start + HID_REPORT_SIZE]
                report = report + bytes(HID_REPORT_SIZE - len(report))
                if self._backend == "hidapi":
                    # hidapi takes the report id as the first byte
                    self._device.write(b"\x00" + report)
                elif self._backend == "pyusb":
                    self._device.write(EP_OUT, report, timeout=self._timeout_ms or 0)
                else:
                    raise RuntimeError(f"Unknown backend: {self._backend}")
        except (OSError, ValueError) as e:
            raise ChannelError(f"USB write failed: {e}") from e
        return len(data)

    def _read_report(self) -> bytes:
        timeout_ms = self._timeout_ms
        try:
            if self._backend == "hidapi":
                if timeout_ms is None:
                    data = self._device.read(HID_REPORT_SIZE)
                else:
                    data = self._device.read(HID_REPORT_SIZE, timeout_ms)
            elif self._backend == "pyusb":
                data = self._device.read(EP_IN, HID_REPORT_SIZE, timeout=timeout_ms or 0)
            else:
                raise RuntimeError(f"Unknown backend: {self._backend}")
        except (OSError, ValueError) as e:
            # pyusb errors are OSError subclasses
            if _is_usb_timeout(e):
                raise ChannelTimeoutError(
                    f"No report from brick within {timeout_ms} ms"
                ) from e
            raise ChannelError(f"USB read failed: {e}") from e

        if not data:
            raise ChannelTimeoutError(f"No report from brick within {timeout_ms} ms")
        return bytes(data)

    def read(self) -> bytes:
        """Read one HID report and return only the frame bytes it carries.

        Raises:
            ChannelClosedError: If not connected.
            ChannelTimeoutError: If no report arrives within the timeout.
            ChannelError: If the backend read fails.
        """
        if not self._connected:
            raise ChannelClosedError("Not connected to device")

        report = self._read_report()
        if self._remaining == 0:
            if len(report) < 2:
                return report
            total = int.from_bytes(report[:2], "little") + 2
        else:
            total = self._remaining

        data = report[:total]
        self._remaining = total - len(data)
        return data


def _is_usb_timeout(exc: Exception) -> bool:
    return type(exc).__name__ == "USBTimeoutError"
