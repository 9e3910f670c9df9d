"""Data models for motors, sensors and brick files."""

from .files import FileEntry, parse_file_listing
from .motors import Brake, Motor, motor_index, motor_mask, split_motors, to_brake
from .sensors import (
    Color,
    ColorMode,
    GyroMode,
    LedPattern,
    Port,
    TouchMode,
    UltrasonicMode,
)
