"""High-level driver for one EV3 brick.

Wraps a byte channel in a :class:`RequestReplyEngine` and exposes the
brick's sensors, motors, sound, display, name, file system and mailboxes
as plain method calls::

    with Brick.from_config(BrickConfig(io_type="usb")) as brick:
        print(brick.battery_voltage())
        brick.move_motor("A", 50)
        brick.stop_motor("A", "Brake")

Every reply-expecting call is a complete request: the reply is consumed
before the method returns, even when decoding fails.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from .config import BrickConfig
from .models.files import FileEntry
from .models.motors import Brake, Motor, MotorSpec, motor_mask, split_motors
from .models.sensors import (
    Color,
    ColorMode,
    GyroMode,
    LedPattern,
    TouchMode,
    UltrasonicMode,
    color_from_reading,
)
from .protocol import commands
from .protocol.engine import RequestReplyEngine
from .protocol.filetransfer import (
    DEFAULT_LIST_LENGTH,
    MAX_UPLOAD_LENGTH,
    FileTransferProtocol,
)
from .protocol.framing import Frame, Reply
from .protocol.mailbox import MailboxProtocol, MailboxType, MailboxValue
from .protocol.parser import (
    decode_float32_le,
    decode_int32_le,
    decode_null_terminated_string,
    decode_uint8,
    decode_uint32_array,
)
from .transport import ByteChannel, open_channel

logger = logging.getLogger(__name__)

BrakeSpec = Brake | str | bool | int

GYRO_CALIBRATION_DELAY = 0.1
MOTOR_POLL_INTERVAL = 0.1


class Brick:
    """A connected brick.

    Args:
        channel: An open byte channel to the brick.
        chunk_size: Largest file chunk sent per CONTINUE_DOWNLOAD frame.
    """

    def __init__(
        self,
        channel: ByteChannel,
        chunk_size: int = commands.MAX_CONTINUE_PAYLOAD,
    ) -> None:
        self._engine = RequestReplyEngine(channel)
        self._files = FileTransferProtocol(self._engine, chunk_size=chunk_size)
        self._mailbox = MailboxProtocol(self._engine)

    @classmethod
    def from_config(cls, config: BrickConfig | None = None, **kwargs) -> Brick:
        """Open the channel described by ``config`` (default: environment)."""
        config = config or BrickConfig.from_env()
        channel = open_channel(config)
        logger.info("Brick connected over %s", config.io_type)
        return cls(channel, **kwargs)

    @property
    def engine(self) -> RequestReplyEngine:
        return self._engine

    @property
    def files(self) -> FileTransferProtocol:
        return self._files

    @property
    def mailbox(self) -> MailboxProtocol:
        return self._mailbox

    def __enter__(self) -> Brick:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Drain any owed reply and close the channel."""
        self._engine.close()

    def _counter(self) -> int:
        return self._engine.next_counter()

    def _request(self, frame: Frame, operation: str) -> Reply:
        return self._engine.request(frame, operation)

    def _post(self, frame: Frame) -> None:
        self._engine.post(frame)

    # ─── UI / SOUND ──────────────────────────────────────────────────

    def battery_voltage(self) -> float:
        """Battery voltage in volts."""
        reply = self._request(
            commands.build_battery_voltage(counter=self._counter()), "battery_voltage"
        )
        return decode_float32_le(reply.payload)

    def battery_level(self) -> int:
        """Battery level in percent."""
        reply = self._request(
            commands.build_battery_level(counter=self._counter()), "battery_level"
        )
        return decode_uint8(reply.payload)

    def play_tone(self, volume: int, frequency: int, duration: int) -> None:
        self._post(
            commands.build_play_tone(volume, frequency, duration, counter=self._counter())
        )

    def beep(self, volume: int = 10, duration: int = 100) -> None:
        """Short 1 kHz tone."""
        self.play_tone(volume, 1000, duration)

    def play_three_tones(self) -> None:
        self._post(commands.build_play_three_tones(counter=self._counter()))

    def set_led(self, pattern: LedPattern | int) -> None:
        self._post(commands.build_set_led(pattern, counter=self._counter()))

    def draw_test(self) -> None:
        """Run the display demo (returns immediately; the brick draws for 5 s)."""
        self._post(commands.build_draw_test(counter=self._counter()))

    # ─── SENSORS ─────────────────────────────────────────────────────

    def device_name(self, port: int) -> str:
        """Type and mode name of the device on ``port``, e.g. ``"COL-REFLECT"``."""
        reply = self._request(
            commands.build_device_name(port, counter=self._counter()), "device_name"
        )
        return decode_null_terminated_string(reply.payload)

    def device_symbol(self, port: int) -> str:
        reply = self._request(
            commands.build_device_symbol(port, counter=self._counter()), "device_symbol"
        )
        return decode_null_terminated_string(reply.payload)

    def clear_all_devices(self) -> None:
        self._post(commands.build_clear_all_devices(counter=self._counter()))

    def set_mode(self, port: int, mode: int) -> None:
        self._request(
            commands.build_set_mode(port, mode, counter=self._counter()), "set_mode"
        )

    def read_si(self, port: int, mode: int) -> float:
        """Read the sensor on ``port`` in ``mode``, scaled to SI units."""
        reply = self._request(
            commands.build_read_si(port, mode, counter=self._counter()), "read_si"
        )
        return decode_float32_le(reply.payload)

    def read_raw(self, port: int, mode: int, values: int) -> list[int]:
        """Read ``values`` raw unsigned 32-bit readings from ``port``."""
        reply = self._request(
            commands.build_read_raw(port, mode, values, counter=self._counter()),
            "read_raw",
        )
        return decode_uint32_array(reply.payload, 0, values)

    def touch_pressed(self, port: int) -> bool:
        return self.read_si(port, TouchMode.PUSHED) >= 0.5

    def touch_bumps(self, port: int) -> int:
        """Press-and-release count since the sensor mode was set."""
        return int(self.read_si(port, TouchMode.BUMPS))

    def light_reflect(self, port: int) -> float:
        return self.read_si(port, ColorMode.REFLECT)

    def light_ambient(self, port: int) -> float:
        return self.read_si(port, ColorMode.AMBIENT)

    def color_code(self, port: int) -> Color:
        return color_from_reading(self.read_si(port, ColorMode.COLOR))

    def color_rgb(self, port: int) -> tuple[int, int, int]:
        red, green, blue = self.read_raw(port, ColorMode.RGB_RAW, 3)
        return red, green, blue

    def ultrasonic_distance(self, port: int) -> float:
        """Distance in centimetres."""
        return self.read_si(port, UltrasonicMode.DIST_CM)

    def gyro_calibrate(self, port: int) -> None:
        """Reset the gyro; keep the sensor still while this runs."""
        self.set_mode(port, GyroMode.CALIBRATION)
        time.sleep(GYRO_CALIBRATION_DELAY)

    def gyro_angle(self, port: int) -> float:
        return self.read_si(port, GyroMode.ANGLE)

    def gyro_rate(self, port: int) -> float:
        return self.read_si(port, GyroMode.RATE)

    # ─── MOTORS ──────────────────────────────────────────────────────

    def stop_motor(self, motors: MotorSpec, brake: BrakeSpec = Brake.COAST) -> None:
        self._post(commands.build_output_stop(motors, brake, counter=self._counter()))

    def stop_all_motors(self, brake: BrakeSpec = Brake.COAST) -> None:
        self.stop_motor(Motor.ALL, brake)

    def motor_power(self, motors: MotorSpec, power: int) -> None:
        self._post(commands.build_output_power(motors, power, counter=self._counter()))

    def motor_start(self, motors: MotorSpec) -> None:
        self._post(commands.build_output_start(motors, counter=self._counter()))

    def move_motor(self, motors: MotorSpec, power: int) -> None:
        """Set power and start; the motors run until stopped."""
        mask = motor_mask(motors)
        self.motor_power(mask, power)
        self.motor_start(mask)

    def motor_busy(self, motors: MotorSpec) -> bool:
        reply = self._request(
            commands.build_output_test(motors, counter=self._counter()), "motor_busy"
        )
        return decode_uint8(reply.payload) != 0

    def motor_step_speed(
        self,
        motors: MotorSpec,
        speed: int,
        ramp_up: int,
        constant: int,
        ramp_down: int,
        brake: BrakeSpec = Brake.COAST,
    ) -> None:
        self._post(
            commands.build_output_step_speed(
                motors, speed, ramp_up, constant, ramp_down, brake,
                counter=self._counter(),
            )
        )

    def move_motor_angle_rel(
        self,
        motors: MotorSpec,
        speed: int,
        angle: int,
        brake: BrakeSpec = Brake.COAST,
    ) -> None:
        """Turn by ``angle`` degrees; a negative angle reverses ``speed``.

        The move is split into equal ramp-up, constant and ramp-down thirds.
        """
        if angle < 0:
            speed = -speed
        angle = abs(int(angle))
        ramp = angle // 3
        self.motor_step_speed(motors, speed, ramp, angle - 2 * ramp, ramp, brake)

    def move_motor_angle_abs(
        self,
        motors: MotorSpec,
        speed: int,
        angle: int,
        brake: BrakeSpec = Brake.COAST,
    ) -> None:
        """Turn to tacho position ``angle``, measured on the first named motor."""
        reference = split_motors(motors)[0]
        # a hard brake locks the motor before the count is read
        self.stop_motor(motors, Brake.COAST)
        current = self.motor_angle(reference)
        self.move_motor_angle_rel(motors, abs(speed), angle - current, brake)

    def reset_motor_angle(self, motors: MotorSpec) -> None:
        self._post(commands.build_output_clear_count(motors, counter=self._counter()))

    def motor_angle(self, motor: MotorSpec) -> int:
        """Tacho count of a single motor, in degrees."""
        reply = self._request(
            commands.build_output_get_count(motor, counter=self._counter()), "motor_angle"
        )
        return decode_int32_le(reply.payload)

    def wait_for_motor(
        self,
        motors: MotorSpec,
        poll_interval: float = MOTOR_POLL_INTERVAL,
        timeout: float | None = None,
    ) -> None:
        """Block until the motors report ready and their angles stop changing.

        Raises:
            TimeoutError: If ``timeout`` seconds pass first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        def wait() -> None:
            if deadline is not None and time.monotonic() > deadline:
                raise TimeoutError(f"Motors still moving after {timeout} s")
            time.sleep(poll_interval)

        mask = motor_mask(motors)
        while self.motor_busy(mask):
            wait()
        for motor in split_motors(mask):
            last = self.motor_angle(motor)
            while True:
                current = self.motor_angle(motor)
                if current == last:
                    break
                last = current
                wait()

    # ─── BRICK NAME ──────────────────────────────────────────────────

    def get_brick_name(self) -> str:
        reply = self._request(
            commands.build_get_brick_name(counter=self._counter()), "get_brick_name"
        )
        return decode_null_terminated_string(reply.payload)

    def set_brick_name(self, name: str) -> None:
        self._post(commands.build_set_brick_name(name, counter=self._counter()))

    # ─── MAILBOX ─────────────────────────────────────────────────────

    def mailbox_write(
        self,
        brick_name: str,
        box_name: str,
        payload_type: MailboxType | str,
        value: MailboxValue,
    ) -> None:
        """Have the connected brick relay a message to ``brick_name``."""
        self._mailbox.write(brick_name, box_name, payload_type, value)

    def write_mailbox(
        self, title: str, payload_type: MailboxType | str, value: MailboxValue
    ) -> None:
        """Post a message to mailbox ``title`` on the connected brick."""
        self._mailbox.write(None, title, payload_type, value)

    def read_mailbox(self, payload_type: MailboxType | str) -> tuple[str, MailboxValue]:
        """Block for the next mailbox message and decode it as ``payload_type``."""
        return self._mailbox.read(payload_type)

    # ─── FILES ───────────────────────────────────────────────────────

    def upload_file(self, local_path: str | Path, remote_path: str) -> int:
        """Copy a local file onto the brick.

        ``remote_path`` is relative to ``/home/root/lms2012/sys`` unless
        absolute. Returns the number of bytes written.
        """
        data = Path(local_path).read_bytes()
        return self._files.download(data, remote_path)

    def download_file(
        self,
        remote_path: str,
        local_path: str | Path | None = None,
        max_length: int = MAX_UPLOAD_LENGTH,
    ) -> bytes:
        """Read a file from the brick, optionally saving it to ``local_path``."""
        data = self._files.begin_upload(max_length, remote_path)
        if local_path is not None:
            Path(local_path).write_bytes(data)
        return data

    def list_files(
        self, path: str, max_length: int = DEFAULT_LIST_LENGTH
    ) -> list[FileEntry]:
        return self._files.list_entries(path, max_length)

    def create_dir(self, path: str) -> None:
        self._files.create_dir(path)

    def delete_file(self, path: str) -> None:
        self._files.delete_file(path)
