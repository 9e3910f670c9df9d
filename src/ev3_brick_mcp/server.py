"""MCP server entry point for a LEGO EV3 brick.

Exposes tools, resources, and prompts via the Model Context Protocol
using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from .brick import Brick
from .config import IO_TYPES, BrickConfig
from .models.motors import motor_mask, split_motors, to_brake
from .models.sensors import ColorMode, GyroMode, TouchMode, UltrasonicMode
from .protocol.filetransfer import DEFAULT_LIST_LENGTH, MAX_UPLOAD_LENGTH
from .protocol.mailbox import MailboxType

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "ev3-brick",
    instructions="MCP server for a LEGO Mindstorms EV3 brick (USB, Wi-Fi or Bluetooth)",
)

# Global connection state
_brick: Brick | None = None
_config: BrickConfig | None = None

SENSOR_KINDS = {
    "touch": TouchMode.PUSHED,
    "bumps": TouchMode.BUMPS,
    "reflect": ColorMode.REFLECT,
    "ambient": ColorMode.AMBIENT,
    "color": ColorMode.COLOR,
    "ultrasonic": UltrasonicMode.DIST_CM,
    "gyro_angle": GyroMode.ANGLE,
    "gyro_rate": GyroMode.RATE,
}


def _get_brick() -> Brick:
    """Get the connected brick, raising if not connected."""
    if _brick is None:
        raise RuntimeError("Not connected to a brick. Use the 'connect' tool first.")
    return _brick


def _check_port(port: int) -> dict[str, Any] | None:
    if not 1 <= port <= 4:
        return {"error": "Sensor port must be 1-4"}
    return None


def _check_motors(motors: str) -> dict[str, Any] | None:
    try:
        motor_mask(motors)
    except ValueError as e:
        return {"error": str(e)}
    return None


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(
    io_type: str | None = None,
    address: str | None = None,
    serial_number: str | None = None,
    serial_port: str | None = None,
) -> dict[str, Any]:
    """Connect to the brick.

    Settings not given here come from EV3_* environment variables, then
    stock defaults.

    Args:
        io_type: usb, wifi, bt (serial device) or btsocket (RFCOMM socket).
        address: IP address (wifi) or Bluetooth MAC (btsocket).
        serial_number: Brick serial number for the Wi-Fi unlock.
        serial_port: RFCOMM serial device for bt, e.g. /dev/rfcomm0.
    """
    global _brick, _config
    if _brick is not None:
        return {"connected": True, "message": "Already connected", "io_type": _config.io_type}

    if io_type is not None and io_type.lower() not in IO_TYPES:
        return {"error": f"Unknown io_type '{io_type}'. Valid: {', '.join(IO_TYPES)}"}

    overrides: dict[str, Any] = {"io_type": io_type, "serial_port": serial_port}
    if address is not None:
        if (io_type or "").lower() == "btsocket":
            overrides["bt_address"] = address
        else:
            overrides["wifi_address"] = address
    overrides["wifi_serial"] = serial_number

    config = BrickConfig.from_env(**overrides)
    brick = Brick.from_config(config)
    try:
        name = brick.get_brick_name()
        voltage = brick.battery_voltage()
    except Exception:
        brick.close()
        raise
    _brick, _config = brick, config

    return {
        "connected": True,
        "io_type": config.io_type,
        "brick_name": name,
        "battery_voltage": round(voltage, 2),
    }


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Close the connection to the brick."""
    global _brick, _config
    if _brick is None:
        return {"disconnected": True}
    try:
        _brick.close()
    finally:
        _brick = None
        _config = None
    return {"disconnected": True}


@mcp.tool()
def get_battery() -> dict[str, Any]:
    """Battery voltage (V) and level (%)."""
    brick = _get_brick()
    return {
        "voltage": round(brick.battery_voltage(), 3),
        "level": brick.battery_level(),
    }


# ─── SOUND ────────────────────────────────────────────────────────────

@mcp.tool()
def play_tone(frequency: int = 1000, duration: int = 500, volume: int = 10) -> dict[str, Any]:
    """Play a tone on the brick speaker.

    Args:
        frequency: Hz (0-20000).
        duration: Milliseconds.
        volume: 0-100.
    """
    if not 0 <= volume <= 100:
        return {"error": "Volume must be 0-100"}
    if not 0 <= frequency <= 20000:
        return {"error": "Frequency must be 0-20000 Hz"}
    if not 0 <= duration <= 0xFFFF:
        return {"error": "Duration must be 0-65535 ms"}
    _get_brick().play_tone(volume, frequency, duration)
    return {"played": True, "frequency": frequency, "duration": duration}


# ─── SENSOR TOOLS ─────────────────────────────────────────────────────

@mcp.tool()
def read_sensor(port: int, kind: str = "si", mode: int = 0) -> dict[str, Any]:
    """Read a sensor.

    Args:
        port: Sensor port 1-4.
        kind: touch, bumps, reflect, ambient, color, ultrasonic, gyro_angle,
              gyro_rate, or si to read ``mode`` directly.
        mode: Device mode when kind is si (0-7).
    """
    error = _check_port(port)
    if error:
        return error
    kind = kind.lower()
    if kind != "si" and kind not in SENSOR_KINDS:
        return {"error": f"Unknown sensor kind '{kind}'. Valid: si, {', '.join(SENSOR_KINDS)}"}
    if kind == "si" and not 0 <= mode <= 7:
        return {"error": "Mode must be 0-7"}

    brick = _get_brick()
    if kind == "touch":
        return {"port": port, "kind": kind, "pressed": brick.touch_pressed(port)}
    if kind == "color":
        color = brick.color_code(port)
        return {"port": port, "kind": kind, "code": int(color), "color": color.name.lower()}

    mode = SENSOR_KINDS.get(kind, mode)
    return {
        "port": port,
        "kind": kind,
        "mode": int(mode),
        "device": brick.device_name(port),
        "value": brick.read_si(port, mode),
    }


@mcp.tool()
def read_color_rgb(port: int) -> dict[str, Any]:
    """Raw red, green and blue readings from a colour sensor.

    Args:
        port: Sensor port 1-4.
    """
    error = _check_port(port)
    if error:
        return error
    red, green, blue = _get_brick().color_rgb(port)
    return {"port": port, "red": red, "green": green, "blue": blue}


# ─── MOTOR TOOLS ──────────────────────────────────────────────────────

@mcp.tool()
def move_motor(motors: str, power: int) -> dict[str, Any]:
    """Run motors at a power level until stopped.

    Args:
        motors: Motor letters, e.g. "A" or "BC".
        power: -100 to 100.
    """
    error = _check_motors(motors)
    if error:
        return error
    if not -100 <= power <= 100:
        return {"error": "Power must be -100 to 100"}
    _get_brick().move_motor(motors, power)
    return {"running": motors.upper(), "power": power}


@mcp.tool()
def stop_motors(motors: str = "ABCD", brake: str = "Coast") -> dict[str, Any]:
    """Stop motors.

    Args:
        motors: Motor letters, default all.
        brake: "Brake" to hold position or "Coast" to spin down.
    """
    error = _check_motors(motors)
    if error:
        return error
    try:
        brake_mode = to_brake(brake)
    except ValueError as e:
        return {"error": str(e)}
    _get_brick().stop_motor(motors, brake_mode)
    return {"stopped": motors.upper(), "brake": brake_mode.name.lower()}


@mcp.tool()
def rotate_motor(
    motors: str,
    angle: int,
    speed: int = 50,
    absolute: bool = False,
    brake: str = "Brake",
    wait: bool = True,
) -> dict[str, Any]:
    """Turn motors by (or to) an angle.

    Args:
        motors: Motor letters, e.g. "A".
        angle: Degrees; relative unless ``absolute``.
        speed: 1-100.
        absolute: Treat ``angle`` as a tacho position.
        brake: "Brake" or "Coast" at the end of the move.
        wait: Block until the motors have stopped.
    """
    error = _check_motors(motors)
    if error:
        return error
    if not 1 <= speed <= 100:
        return {"error": "Speed must be 1-100"}
    try:
        brake_mode = to_brake(brake)
    except ValueError as e:
        return {"error": str(e)}

    brick = _get_brick()
    if absolute:
        brick.move_motor_angle_abs(motors, speed, angle, brake_mode)
    else:
        brick.move_motor_angle_rel(motors, speed, angle, brake_mode)

    result: dict[str, Any] = {"motors": motors.upper(), "angle": angle, "absolute": absolute}
    if wait:
        brick.wait_for_motor(motors, timeout=60.0)
        result["position"] = brick.motor_angle(split_motors(motors)[0])
    return result


@mcp.tool()
def get_motor_angle(motor: str) -> dict[str, Any]:
    """Tacho count of one motor in degrees.

    Args:
        motor: A single motor letter.
    """
    if len(motor.strip()) != 1:
        return {"error": "Give exactly one motor letter"}
    error = _check_motors(motor)
    if error:
        return error
    return {"motor": motor.upper(), "angle": _get_brick().motor_angle(motor)}


# ─── BRICK NAME ───────────────────────────────────────────────────────

@mcp.tool()
def get_brick_name() -> dict[str, str]:
    """Name the brick shows on its display and advertises over Bluetooth."""
    return {"name": _get_brick().get_brick_name()}


@mcp.tool()
def set_brick_name(name: str) -> dict[str, Any]:
    """Rename the brick.

    Args:
        name: 1-11 characters.
    """
    if not 1 <= len(name.encode("utf-8")) <= 11:
        return {"error": "Name must be 1-11 bytes"}
    _get_brick().set_brick_name(name)
    return {"name": name}


# ─── FILE TOOLS ───────────────────────────────────────────────────────

@mcp.tool()
def list_files(path: str = "/home/root/lms2012/prjs/", max_length: int = DEFAULT_LIST_LENGTH) -> dict[str, Any]:
    """List a directory on the brick.

    Args:
        path: Absolute directory path ending in '/'.
        max_length: Maximum listing bytes to fetch (1-65535).
    """
    if not 1 <= max_length <= 0xFFFF:
        return {"error": "max_length must be 1-65535"}
    entries = _get_brick().list_files(path, max_length)
    return {"path": path, "entries": [entry.to_dict() for entry in entries]}


@mcp.tool()
def upload_file(local_path: str, remote_path: str) -> dict[str, Any]:
    """Copy a local file onto the brick.

    Args:
        local_path: File on this computer.
        remote_path: Destination, relative to /home/root/lms2012/sys unless absolute.
    """
    path = Path(local_path)
    if not path.is_file():
        return {"error": f"File not found: {local_path}"}
    written = _get_brick().upload_file(path, remote_path)
    return {"uploaded": True, "remote_path": remote_path, "bytes": written}


@mcp.tool()
def download_file(
    remote_path: str, local_path: str, max_length: int = MAX_UPLOAD_LENGTH
) -> dict[str, Any]:
    """Copy a file from the brick to this computer.

    Args:
        remote_path: File on the brick.
        local_path: Where to save it.
        max_length: Maximum bytes to read (1-65535).
    """
    if not 1 <= max_length <= 0xFFFF:
        return {"error": "max_length must be 1-65535"}
    data = _get_brick().download_file(remote_path, local_path, max_length)
    return {"downloaded": True, "local_path": local_path, "bytes": len(data)}


@mcp.tool()
def create_dir(path: str) -> dict[str, Any]:
    """Create a directory on the brick."""
    _get_brick().create_dir(path)
    return {"created": path}


@mcp.tool()
def delete_file(path: str) -> dict[str, Any]:
    """Delete a file or empty directory on the brick."""
    _get_brick().delete_file(path)
    return {"deleted": path}


# ─── MAILBOX TOOLS ────────────────────────────────────────────────────

@mcp.tool()
def send_mailbox(
    box_name: str,
    value: str,
    payload_type: str = "text",
    target_brick: str | None = None,
) -> dict[str, Any]:
    """Send a mailbox message.

    Args:
        box_name: Mailbox name the receiving program listens on.
        value: Message; parsed as a number for numeric, true/false for logic.
        payload_type: text, numeric or logic.
        target_brick: Relay to this brick name over Bluetooth instead of
            posting to the connected brick.
    """
    try:
        kind = MailboxType.parse(payload_type)
    except ValueError as e:
        return {"error": str(e)}

    message: Any = value
    if kind is MailboxType.NUMERIC:
        try:
            message = float(value)
        except ValueError:
            return {"error": f"Not a number: {value!r}"}
    elif kind is MailboxType.LOGIC:
        lowered = value.strip().lower()
        if lowered not in ("true", "false", "1", "0"):
            return {"error": "Logic value must be true/false"}
        message = lowered in ("true", "1")

    brick = _get_brick()
    if target_brick:
        brick.mailbox_write(target_brick, box_name, kind, message)
    else:
        brick.write_mailbox(box_name, kind, message)
    return {"sent": True, "box_name": box_name, "payload_type": kind.value, "value": message}


@mcp.tool()
def read_mailbox(payload_type: str = "text") -> dict[str, Any]:
    """Wait for the next mailbox message from the brick.

    Args:
        payload_type: text, numeric or logic.
    """
    try:
        kind = MailboxType.parse(payload_type)
    except ValueError as e:
        return {"error": str(e)}
    title, value = _get_brick().read_mailbox(kind)
    return {"box_name": title, "payload_type": kind.value, "value": value}


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("ev3://device/status")
def resource_device_status() -> str:
    """Connection state and transport."""
    if _brick is None:
        return json.dumps({"connected": False})
    return json.dumps({
        "connected": True,
        "io_type": _config.io_type if _config else None,
        "comm_state": _brick.engine.state.value,
        "transfer_state": _brick.files.state.value,
    })


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def survey_sensors() -> str:
    """Identify what is plugged into each sensor port."""
    return """For each sensor port 1-4, use read_sensor with kind "si" and
report the device name and reading. Then suggest which kind
(touch, color, ultrasonic, gyro_angle...) fits each device and read it
again with that kind."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
