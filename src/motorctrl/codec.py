"""
Text protocol spoken with the motor controller.

Outbound commands are plain tokens (``START_CW``, ``START_CCW``, ``STOP``,
``S:<0-255>``). Inbound telemetry is one line of ``KEY:VALUE`` tokens, e.g.
``A:123.4 R:2.4 T:1800``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .core import SPEED_MAX, SPEED_MIN


class Direction(str, Enum):
    """Motor rotation direction, valued by its wire token."""

    CW = "CW"
    CCW = "CCW"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.CW else -1

    @classmethod
    def parse(cls, text: str) -> "Direction":
        """Parse ``cw``/``ccw`` (any case) into a Direction.

        Raises:
            ValueError: If text names no direction
        """
        try:
            return cls(text.strip().upper())
        except ValueError:
            raise ValueError(f"Unknown direction: {text!r}") from None


class CommandKind(Enum):
    START = "start"
    STOP = "stop"
    SET_SPEED = "set_speed"


@dataclass(frozen=True)
class Command:
    """A single outbound command."""

    kind: CommandKind
    direction: Optional[Direction] = None
    speed: Optional[int] = None

    @classmethod
    def start(cls, direction: Direction) -> "Command":
        return cls(CommandKind.START, direction=direction)

    @classmethod
    def stop(cls) -> "Command":
        return cls(CommandKind.STOP)

    @classmethod
    def set_speed(cls, speed: int) -> "Command":
        """Build a speed command.

        Raises:
            ValueError: If speed is outside the 0-255 range
        """
        if not SPEED_MIN <= speed <= SPEED_MAX:
            raise ValueError(f"Speed {speed} out of range [{SPEED_MIN}, {SPEED_MAX}]")
        return cls(CommandKind.SET_SPEED, speed=int(speed))

    def __str__(self) -> str:
        return encode_command(self)


@dataclass(frozen=True)
class TelemetryReading:
    """Angle in degrees, cumulative rotations and device ticks."""

    angle: float = 0.0
    rotations: float = 0.0
    ticks: int = 0


def encode_command(command: Command) -> str:
    """Serialize a command to its wire token."""
    if command.kind is CommandKind.START:
        if command.direction is None:
            raise ValueError("START command needs a direction")
        return f"START_{command.direction.value}"
    if command.kind is CommandKind.STOP:
        return "STOP"
    return f"S:{command.speed}"


def _to_float(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return 0.0


def _to_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        # Some firmware revisions send ticks as "2700.0"
        try:
            return int(float(value))
        except ValueError:
            return 0


def decode_telemetry(line: str) -> TelemetryReading:
    """Parse a telemetry line.

    Unknown keys are ignored; missing or malformed values default to zero.

    Args:
        line: Raw line such as ``"A:45.0 R:1.5 T:2700"``

    Returns:
        Decoded TelemetryReading
    """
    angle = 0.0
    rotations = 0.0
    ticks = 0

    for token in line.split():
        key, sep, value = token.partition(":")
        if not sep:
            continue
        if key == "A":
            angle = _to_float(value)
        elif key == "R":
            rotations = _to_float(value)
        elif key == "T":
            ticks = _to_int(value)

    return TelemetryReading(angle=angle, rotations=rotations, ticks=ticks)


def format_telemetry(reading: TelemetryReading) -> str:
    """Render a reading in the inbound telemetry shape."""
    return f"A:{reading.angle:.1f} R:{reading.rotations:.3f} T:{reading.ticks}"
