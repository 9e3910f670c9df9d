"""Tests for connection configuration."""

import pytest

from ev3_brick_mcp.config import BrickConfig


def test_defaults():
    config = BrickConfig()
    assert config.io_type == "usb"
    assert config.wifi_port == 5555
    assert config.timeout_ms == 5000


def test_from_env():
    env = {
        "EV3_IO_TYPE": "WIFI",
        "EV3_WIFI_ADDR": "10.0.0.5",
        "EV3_WIFI_PORT": "6000",
        "EV3_SERIAL": "00aabbccddee",
        "EV3_BT_CHANNEL": "3",
        "EV3_TIMEOUT": "0.5",
    }
    config = BrickConfig.from_env(env)
    assert config.io_type == "wifi"
    assert config.wifi_address == "10.0.0.5"
    assert config.wifi_port == 6000
    assert config.wifi_serial == "00aabbccddee"
    assert config.bt_channel == 3
    assert config.timeout_ms == 500


def test_from_env_empty_timeout_blocks():
    config = BrickConfig.from_env({"EV3_TIMEOUT": ""})
    assert config.timeout is None
    assert config.timeout_ms is None
    assert BrickConfig(timeout=0).timeout is None


def test_overrides_win_and_none_is_ignored():
    env = {"EV3_IO_TYPE": "bt", "EV3_SERIAL_PORT": "/dev/rfcomm1"}
    config = BrickConfig.from_env(env, io_type="wifi", serial_port=None)
    assert config.io_type == "wifi"
    assert config.serial_port == "/dev/rfcomm1"


@pytest.mark.parametrize(
    "kwargs",
    [{"io_type": "irda"}, {"wifi_port": 0}, {"wifi_port": 70000}, {"bt_channel": 31}],
)
def test_validation(kwargs):
    with pytest.raises(ValueError):
        BrickConfig(**kwargs)
