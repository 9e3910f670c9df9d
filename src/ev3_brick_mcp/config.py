"""Connection settings for a brick.

Defaults match a stock brick; every field can be overridden from the
environment so the MCP server can be configured by its launcher::

    EV3_IO_TYPE      usb | wifi | bt | btsocket
    EV3_WIFI_ADDR    brick IP address
    EV3_WIFI_PORT    TCP port
    EV3_SERIAL       brick serial number (Wi-Fi unlock)
    EV3_SERIAL_PORT  RFCOMM tty for io_type=bt
    EV3_BT_ADDR      Bluetooth MAC for io_type=btsocket
    EV3_BT_CHANNEL   RFCOMM channel for io_type=btsocket
    EV3_TIMEOUT      read timeout in seconds (0 or empty blocks)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

IO_TYPES = ("usb", "wifi", "bt", "btsocket")


@dataclass
class BrickConfig:
    io_type: str = "usb"
    wifi_address: str = "192.168.1.104"
    wifi_port: int = 5555
    wifi_serial: str = "0016533dbaf5"
    serial_port: str = "/dev/rfcomm0"
    bt_address: str = ""
    bt_channel: int = 1
    timeout: float | None = 5.0

    def __post_init__(self) -> None:
        self.io_type = self.io_type.lower()
        if self.io_type not in IO_TYPES:
            raise ValueError(
                f"Unknown io_type '{self.io_type}'. Valid: {', '.join(IO_TYPES)}"
            )
        if not 0 < self.wifi_port <= 0xFFFF:
            raise ValueError(f"wifi_port must be 1-65535, got {self.wifi_port}")
        if not 1 <= self.bt_channel <= 30:
            raise ValueError(f"bt_channel must be 1-30, got {self.bt_channel}")
        if self.timeout is not None and self.timeout <= 0:
            self.timeout = None

    @property
    def timeout_ms(self) -> int | None:
        if self.timeout is None:
            return None
        return int(self.timeout * 1000)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> BrickConfig:
        """Build a config from ``EV3_*`` variables, then apply ``overrides``.

        ``None`` overrides are ignored so callers can pass optional
        arguments straight through.
        """
        env = os.environ if environ is None else environ
        values: dict = {}
        if env.get("EV3_IO_TYPE"):
            values["io_type"] = env["EV3_IO_TYPE"]
        if env.get("EV3_WIFI_ADDR"):
            values["wifi_address"] = env["EV3_WIFI_ADDR"]
        if env.get("EV3_WIFI_PORT"):
            values["wifi_port"] = int(env["EV3_WIFI_PORT"])
        if env.get("EV3_SERIAL"):
            values["wifi_serial"] = env["EV3_SERIAL"]
        if env.get("EV3_SERIAL_PORT"):
            values["serial_port"] = env["EV3_SERIAL_PORT"]
        if env.get("EV3_BT_ADDR"):
            values["bt_address"] = env["EV3_BT_ADDR"]
        if env.get("EV3_BT_CHANNEL"):
            values["bt_channel"] = int(env["EV3_BT_CHANNEL"])
        if "EV3_TIMEOUT" in env:
            raw = env["EV3_TIMEOUT"].strip()
            values["timeout"] = float(raw) if raw else None

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
