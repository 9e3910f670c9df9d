"""Motor identifiers and brake modes.

Output opcodes address motors with a 4-bit mask. Every public entry point
accepts a single ``MotorSpec`` and normalizes it here, so the mask is the
only representation the command builders ever see::

    +--------+------+------+
    | Letter | Mask | Port |
    +--------+------+------+
    | A      | 0x01 | 0    |
    | B      | 0x02 | 1    |
    | C      | 0x04 | 2    |
    | D      | 0x08 | 3    |
    +--------+------+------+
"""

from __future__ import annotations

from enum import IntEnum, IntFlag
from typing import Iterable, Union


class Motor(IntFlag):
    """Output port bit mask."""

    A = 0x01
    B = 0x02
    C = 0x04
    D = 0x08
    ALL = 0x0F


class Brake(IntEnum):
    """Stop behaviour for output opcodes."""

    COAST = 0
    BRAKE = 1


MOTOR_LETTERS: dict[str, Motor] = {
    "A": Motor.A,
    "B": Motor.B,
    "C": Motor.C,
    "D": Motor.D,
}

MOTOR_PORTS: dict[Motor, int] = {
    Motor.A: 0,
    Motor.B: 1,
    Motor.C: 2,
    Motor.D: 3,
}

MotorSpec = Union[Motor, str, int, Iterable[Union[Motor, str, int]]]


def motor_mask(spec: MotorSpec) -> int:
    """Normalize a motor specification to its output bit mask.

    Accepts a ``Motor`` flag, a string of letters such as ``"A"`` or
    ``"BC"`` (case-insensitive), an integer mask 0-15, or an iterable of any
    of these.

    Raises:
        ValueError: For unknown letters, masks outside 0-15 or an empty spec.
    """
    if isinstance(spec, bool):
        raise ValueError(f"Invalid motor specification: {spec!r}")
    if isinstance(spec, int):
        mask = int(spec)
        if not 0 < mask <= Motor.ALL:
            raise ValueError(f"Motor mask must be 1-15, got {mask}")
        return mask
    if isinstance(spec, str):
        letters = spec.strip().upper()
        if not letters:
            raise ValueError("Empty motor specification")
        mask = 0
        for letter in letters:
            if letter not in MOTOR_LETTERS:
                raise ValueError(
                    f"Unknown motor '{letter}'. Valid: {''.join(MOTOR_LETTERS)}"
                )
            mask |= MOTOR_LETTERS[letter]
        return mask

    mask = 0
    for item in spec:
        mask |= motor_mask(item)
    if not mask:
        raise ValueError("Empty motor specification")
    return mask


def motor_index(spec: MotorSpec) -> int:
    """Port number 0-3 of exactly one motor (used by tacho reads)."""
    mask = motor_mask(spec)
    try:
        return MOTOR_PORTS[Motor(mask)]
    except KeyError:
        raise ValueError(
            f"Exactly one motor expected, got mask 0x{mask:X}"
        ) from None


def split_motors(spec: MotorSpec) -> list[Motor]:
    """The single motors named by ``spec``, in port order."""
    mask = motor_mask(spec)
    return [motor for motor in MOTOR_PORTS if mask & motor]


def to_brake(value: Brake | str | bool | int) -> Brake:
    """Normalize ``"Brake"``/``"Coast"``, booleans or 0/1 to ``Brake``."""
    if isinstance(value, str):
        try:
            return Brake[value.strip().upper()]
        except KeyError:
            raise ValueError(
                f"Brake must be 'Brake' or 'Coast', got {value!r}"
            ) from None
    if value in (0, 1):
        return Brake(int(value))
    raise ValueError(f"Brake must be 0 or 1, got {value!r}")
