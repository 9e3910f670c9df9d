"""Sensor ports, device modes, colour codes and LED patterns."""

from __future__ import annotations

from enum import IntEnum


class Port(IntEnum):
    """Input ports as printed on the brick."""

    PORT_1 = 1
    PORT_2 = 2
    PORT_3 = 3
    PORT_4 = 4


class TouchMode(IntEnum):
    PUSHED = 0
    BUMPS = 1


class ColorMode(IntEnum):
    REFLECT = 0
    AMBIENT = 1
    COLOR = 2
    REFLECT_RAW = 3
    RGB_RAW = 4
    CALIBRATION = 5


class UltrasonicMode(IntEnum):
    DIST_CM = 0
    DIST_IN = 1
    LISTEN = 2


class GyroMode(IntEnum):
    ANGLE = 0
    RATE = 1
    FAST = 2
    RATE_AND_ANGLE = 3
    CALIBRATION = 4


class Color(IntEnum):
    """Colour codes reported by the colour sensor in COLOR mode."""

    NONE = 0
    BLACK = 1
    BLUE = 2
    GREEN = 3
    YELLOW = 4
    RED = 5
    WHITE = 6
    BROWN = 7


class LedPattern(IntEnum):
    BLACK = 0
    GREEN = 1
    RED = 2
    ORANGE = 3
    GREEN_FLASH = 4
    RED_FLASH = 5
    ORANGE_FLASH = 6
    GREEN_PULSE = 7
    RED_PULSE = 8
    ORANGE_PULSE = 9


def port_layer_index(port: int) -> int:
    """Convert a 1-4 port number to the 0-3 index the opcodes expect."""
    if not 1 <= port <= 4:
        raise ValueError(f"Sensor port must be 1-4, got {port}")
    return int(port) - 1


def color_from_reading(reading: float) -> Color:
    """Map a COLOR-mode SI reading to a ``Color``, unknown codes to NONE."""
    code = int(round(reading))
    try:
        return Color(code)
    except ValueError:
        return Color.NONE
