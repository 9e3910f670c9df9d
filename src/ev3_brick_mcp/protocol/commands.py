"""Opcode tables and command builders.

Direct commands are opcode streams run by the brick's VM; results land in
the global variable area, which the brick returns as the reply payload.
System commands are handled by the brick's system services (files,
mailboxes) and always start with a one-byte sub-command.

Every builder returns a finalized :class:`~.framing.Frame`.
"""

from __future__ import annotations

import struct
from enum import IntEnum

from ..models.motors import Brake, MotorSpec, motor_index, motor_mask, to_brake
from ..models.sensors import LedPattern, port_layer_index
from .framing import Frame, FrameEncoder, GlobalVar, LocalVar, MAX_FRAME_LENGTH

DEFAULT_COUNTER = 42
LAYER = 0  # daisy-chain layer of the brick we talk to

# counter(2) + type(1) + sub-command(1) + handle(1)
MAX_CONTINUE_PAYLOAD = MAX_FRAME_LENGTH - 5


class Opcode(IntEnum):
    """Direct command opcodes."""

    UI_READ = 0x81
    UI_WRITE = 0x82
    UI_DRAW = 0x84
    TIMER_WAIT = 0x85
    TIMER_READY = 0x86
    SOUND = 0x94
    SOUND_READY = 0x96
    INPUT_DEVICE = 0x99
    INPUT_READSI = 0x9D
    OUTPUT_STOP = 0xA3
    OUTPUT_POWER = 0xA4
    OUTPUT_START = 0xA6
    OUTPUT_TEST = 0xA9
    OUTPUT_STEP_SPEED = 0xAE
    OUTPUT_CLR_COUNT = 0xB2
    OUTPUT_GET_COUNT = 0xB3
    COM_GET = 0xD3
    COM_SET = 0xD4
    MAILBOX_WRITE = 0xD9


class UIRead(IntEnum):
    GET_VBATT = 1
    GET_LBATT = 18


class UIWrite(IntEnum):
    LED = 27


class UIDraw(IntEnum):
    UPDATE = 0
    PIXEL = 2
    LINE = 3
    CIRCLE = 4
    TEXT = 5
    VALUE = 8
    FILLRECT = 9
    RECT = 10
    INVERSERECT = 16
    SELECT_FONT = 17
    FILLWINDOW = 19
    FILLCIRCLE = 24
    STORE = 25
    RESTORE = 26


class SoundCmd(IntEnum):
    TONE = 1


class InputDeviceCmd(IntEnum):
    GET_SYMBOL = 6
    CLR_ALL = 10
    GET_NAME = 21
    READY_RAW = 28


class ComGet(IntEnum):
    GET_BRICKNAME = 13


class ComSet(IntEnum):
    SET_BRICKNAME = 8


class SystemCommand(IntEnum):
    """System command sub-command identifiers."""

    BEGIN_DOWNLOAD = 0x92
    CONTINUE_DOWNLOAD = 0x93
    BEGIN_UPLOAD = 0x94
    LIST_FILES = 0x99
    CREATE_DIR = 0x9B
    DELETE_FILE = 0x9C
    WRITEMAILBOX = 0x9E


class SystemStatus(IntEnum):
    """Status byte carried by system replies."""

    SUCCESS = 0x00
    UNKNOWN_HANDLE = 0x01
    HANDLE_NOT_READY = 0x02
    CORRUPT_FILE = 0x03
    NO_HANDLES_AVAILABLE = 0x04
    NO_PERMISSION = 0x05
    ILLEGAL_PATH = 0x06
    FILE_EXISTS = 0x07
    END_OF_FILE = 0x08
    SIZE_ERROR = 0x09
    UNKNOWN_ERROR = 0x0A
    ILLEGAL_FILENAME = 0x0B
    ILLEGAL_CONNECTION = 0x0C


SYSTEM_OK_STATUSES = frozenset({SystemStatus.SUCCESS, SystemStatus.END_OF_FILE})

FG_COLOR = 1
LCD_WIDTH = 178
BRICK_NAME_LENGTH = 12


def _check_range(name: str, value: int, low: int, high: int) -> None:
    if not low <= value <= high:
        raise ValueError(f"{name} must be {low}-{high}, got {value}")


def _direct(
    counter: int, global_bytes: int = 0, local_bytes: int = 0, reply: bool = False
) -> FrameEncoder:
    return FrameEncoder().begin_direct(counter, global_bytes, local_bytes, reply)


# ─── UI / SOUND ──────────────────────────────────────────────────────

def build_battery_voltage(counter: int = DEFAULT_COUNTER) -> Frame:
    """Read battery voltage as a float32 in global 0."""
    return (
        _direct(counter, 4, reply=True)
        .append_opcode(Opcode.UI_READ, UIRead.GET_VBATT, GlobalVar(0))
        .finalize()
    )


def build_battery_level(counter: int = DEFAULT_COUNTER) -> Frame:
    """Read battery level (0-100%) as a byte in global 0."""
    return (
        _direct(counter, 1, reply=True)
        .append_opcode(Opcode.UI_READ, UIRead.GET_LBATT, GlobalVar(0))
        .finalize()
    )


def build_play_tone(
    volume: int, frequency: int, duration: int, counter: int = DEFAULT_COUNTER
) -> Frame:
    """Play a tone.

    Args:
        volume: 0-100.
        frequency: Tone frequency in Hz.
        duration: Duration in ms.
    """
    _check_range("Volume", volume, 0, 100)
    _check_range("Frequency", frequency, 0, 20000)
    _check_range("Duration", duration, 0, 0xFFFF)
    return (
        _direct(counter)
        .append_opcode(Opcode.SOUND, SoundCmd.TONE, volume, frequency, duration)
        .finalize()
    )


def build_play_three_tones(counter: int = DEFAULT_COUNTER) -> Frame:
    """Three rising tones, each waited on with SOUND_READY, in one frame."""
    encoder = _direct(counter)
    for volume, frequency in ((5, 440), (10, 880), (15, 1320)):
        encoder.append_opcode(Opcode.SOUND, SoundCmd.TONE, volume, frequency, 500)
        encoder.append_opcode(Opcode.SOUND_READY)
    return encoder.finalize()


def build_set_led(pattern: LedPattern | int, counter: int = DEFAULT_COUNTER) -> Frame:
    pattern = LedPattern(pattern)
    return (
        _direct(counter)
        .append_opcode(Opcode.UI_WRITE, UIWrite.LED, pattern)
        .finalize()
    )


def build_draw_test(counter: int = DEFAULT_COUNTER) -> Frame:
    """Display demo: shapes, fonts and the live battery voltage for 5 s."""
    e = _direct(counter, 4, 4)
    e.append_opcode(Opcode.UI_DRAW, UIDraw.STORE, 0)
    e.append_opcode(Opcode.UI_WRITE, UIWrite.LED, LedPattern.GREEN_FLASH)
    e.append_opcode(Opcode.UI_DRAW, UIDraw.FILLWINDOW, 0, 0, 0)
    for x, y in ((12, 15), (12, 20), (18, 15), (18, 20)):
        e.append_opcode(Opcode.UI_DRAW, UIDraw.PIXEL, FG_COLOR, x, y)
    e.append_opcode(Opcode.UI_DRAW, UIDraw.LINE, FG_COLOR, 0, 25, LCD_WIDTH, 25)
    e.append_opcode(Opcode.UI_DRAW, UIDraw.LINE, FG_COLOR, 15, 25, 15, 127)
    e.append_opcode(Opcode.UI_DRAW, UIDraw.CIRCLE, FG_COLOR, 40, 40, 10)
    e.append_opcode(Opcode.UI_DRAW, UIDraw.RECT, FG_COLOR, 70, 30, 20, 20)
    e.append_opcode(Opcode.UI_DRAW, UIDraw.FILLCIRCLE, FG_COLOR, 40, 70, 10)
    e.append_opcode(Opcode.UI_DRAW, UIDraw.FILLRECT, FG_COLOR, 70, 60, 20, 20)
    e.append_opcode(Opcode.UI_DRAW, UIDraw.INVERSERECT, 30, 90, 60, 20)
    for font, y in ((2, 40), (1, 70), (0, 90)):
        e.append_opcode(Opcode.UI_DRAW, UIDraw.SELECT_FONT, font)
        e.append_opcode(Opcode.UI_DRAW, UIDraw.TEXT, FG_COLOR, 100, y, "EV3")
    e.append_opcode(Opcode.UI_DRAW, UIDraw.TEXT, FG_COLOR, 100, 110, "v =")
    e.append_opcode(Opcode.UI_READ, UIRead.GET_VBATT, GlobalVar(0))
    e.append_opcode(Opcode.UI_DRAW, UIDraw.VALUE, FG_COLOR, 130, 110, GlobalVar(0), 5, 3)
    e.append_opcode(Opcode.UI_DRAW, UIDraw.UPDATE)
    e.append_opcode(Opcode.TIMER_WAIT, 5000, LocalVar(0))
    e.append_opcode(Opcode.TIMER_READY, LocalVar(0))
    e.append_opcode(Opcode.UI_WRITE, UIWrite.LED, LedPattern.GREEN)
    e.append_opcode(Opcode.UI_DRAW, UIDraw.RESTORE, 0)
    e.append_opcode(Opcode.UI_DRAW, UIDraw.UPDATE)
    return e.finalize()


# ─── INPUTS ──────────────────────────────────────────────────────────

def build_device_name(
    port: int, length: int = BRICK_NAME_LENGTH, counter: int = DEFAULT_COUNTER
) -> Frame:
    """Read the "type-mode" name of the device on a sensor port (1-4)."""
    _check_range("Name length", length, 1, 255)
    return (
        _direct(counter, length, reply=True)
        .append_opcode(
            Opcode.INPUT_DEVICE, InputDeviceCmd.GET_NAME,
            LAYER, port_layer_index(port), length, GlobalVar(0),
        )
        .finalize()
    )


def build_device_symbol(
    port: int, length: int = 5, counter: int = DEFAULT_COUNTER
) -> Frame:
    """Read the unit symbol of the device on a sensor port (1-4)."""
    _check_range("Symbol length", length, 1, 255)
    return (
        _direct(counter, length, reply=True)
        .append_opcode(
            Opcode.INPUT_DEVICE, InputDeviceCmd.GET_SYMBOL,
            LAYER, port_layer_index(port), length, GlobalVar(0),
        )
        .finalize()
    )


def build_clear_all_devices(counter: int = DEFAULT_COUNTER) -> Frame:
    return (
        _direct(counter)
        .append_opcode(Opcode.INPUT_DEVICE, InputDeviceCmd.CLR_ALL, LAYER)
        .finalize()
    )


def build_read_si(
    port: int, mode: int, sensor_type: int = 0, counter: int = DEFAULT_COUNTER
) -> Frame:
    """Read a sensor in SI units as a float32 in global 0.

    ``sensor_type`` 0 keeps whatever type the brick detected.
    """
    _check_range("Mode", mode, 0, 7)
    return (
        _direct(counter, 4, reply=True)
        .append_opcode(
            Opcode.INPUT_READSI,
            LAYER, port_layer_index(port), sensor_type, mode, GlobalVar(0),
        )
        .finalize()
    )


def build_set_mode(port: int, mode: int, counter: int = DEFAULT_COUNTER) -> Frame:
    """Switch a sensor mode by reading it once into a scratch local."""
    _check_range("Mode", mode, 0, 7)
    return (
        _direct(counter, 0, 4, reply=True)
        .append_opcode(
            Opcode.INPUT_READSI,
            LAYER, port_layer_index(port), 0, mode, LocalVar(0),
        )
        .finalize()
    )


def build_read_raw(
    port: int, mode: int, values: int, counter: int = DEFAULT_COUNTER
) -> Frame:
    """Read ``values`` raw 32-bit readings into consecutive globals."""
    _check_range("Mode", mode, 0, 7)
    _check_range("Value count", values, 1, 8)
    targets = [GlobalVar(4 * i) for i in range(values)]
    return (
        _direct(counter, 4 * values, reply=True)
        .append_opcode(
            Opcode.INPUT_DEVICE, InputDeviceCmd.READY_RAW,
            LAYER, port_layer_index(port), 0, mode, values, *targets,
        )
        .finalize()
    )


# ─── OUTPUTS ─────────────────────────────────────────────────────────

def build_output_stop(
    motors: MotorSpec, brake: Brake | str | bool | int = Brake.COAST,
    counter: int = DEFAULT_COUNTER,
) -> Frame:
    return (
        _direct(counter)
        .append_opcode(Opcode.OUTPUT_STOP, LAYER, motor_mask(motors), to_brake(brake))
        .finalize()
    )


def build_output_power(
    motors: MotorSpec, power: int, counter: int = DEFAULT_COUNTER
) -> Frame:
    _check_range("Power", power, -100, 100)
    return (
        _direct(counter)
        .append_opcode(Opcode.OUTPUT_POWER, LAYER, motor_mask(motors), power)
        .finalize()
    )


def build_output_start(motors: MotorSpec, counter: int = DEFAULT_COUNTER) -> Frame:
    return (
        _direct(counter)
        .append_opcode(Opcode.OUTPUT_START, LAYER, motor_mask(motors))
        .finalize()
    )


def build_output_test(motors: MotorSpec, counter: int = DEFAULT_COUNTER) -> Frame:
    """Ask whether any of the given motors is busy (byte in global 0)."""
    return (
        _direct(counter, 1, reply=True)
        .append_opcode(Opcode.OUTPUT_TEST, LAYER, motor_mask(motors), GlobalVar(0))
        .finalize()
    )


def build_output_step_speed(
    motors: MotorSpec,
    speed: int,
    ramp_up: int,
    constant: int,
    ramp_down: int,
    brake: Brake | str | bool | int = Brake.COAST,
    counter: int = DEFAULT_COUNTER,
) -> Frame:
    """Run motors at ``speed`` through ramp-up, constant and ramp-down degrees."""
    _check_range("Speed", speed, -100, 100)
    for name, step in (("Ramp up", ramp_up), ("Constant", constant), ("Ramp down", ramp_down)):
        _check_range(name, step, 0, 0x7FFFFFFF)
    return (
        _direct(counter)
        .append_opcode(
            Opcode.OUTPUT_STEP_SPEED, LAYER, motor_mask(motors),
            speed, ramp_up, constant, ramp_down, to_brake(brake),
        )
        .finalize()
    )


def build_output_clear_count(motors: MotorSpec, counter: int = DEFAULT_COUNTER) -> Frame:
    return (
        _direct(counter)
        .append_opcode(Opcode.OUTPUT_CLR_COUNT, LAYER, motor_mask(motors))
        .finalize()
    )


def build_output_get_count(motor: MotorSpec, counter: int = DEFAULT_COUNTER) -> Frame:
    """Read the tacho count (int32 degrees) of a single motor into global 0."""
    return (
        _direct(counter, 4, reply=True)
        .append_opcode(Opcode.OUTPUT_GET_COUNT, LAYER, motor_index(motor), GlobalVar(0))
        .finalize()
    )


# ─── BRICK NAME / MAILBOX ────────────────────────────────────────────

def build_get_brick_name(
    length: int = BRICK_NAME_LENGTH, counter: int = DEFAULT_COUNTER
) -> Frame:
    _check_range("Name length", length, 1, 255)
    return (
        _direct(counter, length, reply=True)
        .append_opcode(Opcode.COM_GET, ComGet.GET_BRICKNAME, length, GlobalVar(0))
        .finalize()
    )


def build_set_brick_name(name: str, counter: int = DEFAULT_COUNTER) -> Frame:
    if not name or len(name.encode("utf-8")) >= BRICK_NAME_LENGTH:
        raise ValueError(
            f"Brick name must be 1-{BRICK_NAME_LENGTH - 1} bytes, got {name!r}"
        )
    return (
        _direct(counter)
        .append_opcode(Opcode.COM_SET, ComSet.SET_BRICKNAME, name)
        .finalize()
    )


def build_mailbox_write(
    brick_name: str,
    box_name: str,
    type_tag: int,
    value: int | str,
    hardware: int = 2,
    counter: int = DEFAULT_COUNTER,
) -> Frame:
    """Direct ``opMAILBOX_WRITE``: post a value to another brick's mailbox.

    Args:
        brick_name: Name of the receiving brick.
        box_name: Mailbox name.
        type_tag: VM data type (0 DATA8, 3 DATAF, 4 DATAS).
        value: Already VM-encoded value (int bits or string).
        hardware: Link used to reach the brick (1 USB, 2 Bluetooth, 3 Wi-Fi).
    """
    return (
        _direct(counter)
        .append_opcode(
            Opcode.MAILBOX_WRITE, brick_name, hardware, box_name, type_tag, 1, value
        )
        .finalize()
    )


# ─── SYSTEM COMMANDS ─────────────────────────────────────────────────

def _system(counter: int, command: SystemCommand, reply: bool = True) -> FrameEncoder:
    return FrameEncoder().begin_system(counter, reply).append_u8(command)


def build_begin_download(size: int, path: str, counter: int = DEFAULT_COUNTER) -> Frame:
    """Announce a host-to-brick file of ``size`` bytes at ``path``."""
    _check_range("File size", size, 0, 0xFFFFFFFF)
    return (
        _system(counter, SystemCommand.BEGIN_DOWNLOAD)
        .append_u32(size)
        .append_cstring(path)
        .finalize()
    )


def build_continue_download(
    handle: int, chunk: bytes, counter: int = DEFAULT_COUNTER, expect_reply: bool = True
) -> Frame:
    _check_range("Handle", handle, 0, 0xFF)
    if len(chunk) > MAX_CONTINUE_PAYLOAD:
        raise ValueError(
            f"Chunk of {len(chunk)} bytes exceeds {MAX_CONTINUE_PAYLOAD}"
        )
    return (
        _system(counter, SystemCommand.CONTINUE_DOWNLOAD, expect_reply)
        .append_u8(handle)
        .append_bytes(chunk)
        .finalize()
    )


def build_begin_upload(max_length: int, path: str, counter: int = DEFAULT_COUNTER) -> Frame:
    """Request up to ``max_length`` bytes of a brick file."""
    _check_range("Max length", max_length, 0, 0xFFFF)
    return (
        _system(counter, SystemCommand.BEGIN_UPLOAD)
        .append_u16(max_length)
        .append_cstring(path)
        .finalize()
    )


def build_list_files(path: str, max_length: int, counter: int = DEFAULT_COUNTER) -> Frame:
    _check_range("Max length", max_length, 0, 0xFFFF)
    return (
        _system(counter, SystemCommand.LIST_FILES)
        .append_u16(max_length)
        .append_cstring(path)
        .finalize()
    )


def build_create_dir(path: str, counter: int = DEFAULT_COUNTER) -> Frame:
    return _system(counter, SystemCommand.CREATE_DIR).append_cstring(path).finalize()


def build_delete_file(path: str, counter: int = DEFAULT_COUNTER) -> Frame:
    return _system(counter, SystemCommand.DELETE_FILE).append_cstring(path).finalize()


def build_write_mailbox(title: str, payload: bytes, counter: int = DEFAULT_COUNTER) -> Frame:
    """System WRITEMAILBOX (no reply)::

        0x9E | name length incl. NUL (1) | name NUL | payload length (2) | payload
    """
    name = title.encode("utf-8") + b"\x00"
    if len(name) > 0xFF:
        raise ValueError(f"Mailbox title too long: {len(name) - 1} bytes")
    if len(payload) > 0xFFFF:
        raise ValueError(f"Mailbox payload too long: {len(payload)} bytes")
    return (
        _system(counter, SystemCommand.WRITEMAILBOX, reply=False)
        .append_u8(len(name))
        .append_bytes(name)
        .append_u16(len(payload))
        .append_bytes(payload)
        .finalize()
    )


def float_bits(value: float) -> int:
    """Reinterpret a float32 as the signed int the VM stores for DATAF."""
    return struct.unpack("<i", struct.pack("<f", value))[0]
