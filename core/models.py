"""
Data structures for decoded OBD readings.

Unit Conventions
----------------
Each reading carries its unit alongside the value:

- Engine speed: rpm (int)
- Temperatures: degrees Celsius (int)
- Battery state of charge: percent (int, not clamped)
- Battery voltage: Volts (float)
- Pressures: millibar (int)

Fahrenheit is a display concern only and is never stored.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class Pid(Enum):
    """Parameters the decoder registry knows how to decode."""
    ENGINE_RPM = "engine_rpm"
    CURRENT_GEAR = "current_gear"
    ENGINE_OIL_TEMP = "engine_oil_temp"
    BATTERY_IBS = "battery_ibs"
    BATTERY_VOLTAGE = "battery_voltage"
    ATMOSPHERIC_PRESSURE = "atmospheric_pressure"
    BOOST_PRESSURE = "boost_pressure"
    EXTERNAL_TEMP = "external_temp"


class GearKind(Enum):
    NEUTRAL = "neutral"
    REVERSE = "reverse"
    FORWARD = "forward"


@dataclass(frozen=True)
class GearState:
    """
    Currently engaged gear.

    Attributes:
        kind: NEUTRAL, REVERSE or FORWARD.
        number: Forward gear number (1-255). Always 0 for neutral and reverse.
    """
    kind: GearKind
    number: int = 0

    @classmethod
    def neutral(cls) -> 'GearState':
        return cls(GearKind.NEUTRAL)

    @classmethod
    def reverse(cls) -> 'GearState':
        return cls(GearKind.REVERSE)

    @classmethod
    def forward(cls, number: int) -> 'GearState':
        if number <= 0:
            raise ValueError(f"Forward gear number must be positive, got {number}")
        return cls(GearKind.FORWARD, number)

    def __str__(self) -> str:
        if self.kind is GearKind.NEUTRAL:
            return "Neutral"
        if self.kind is GearKind.REVERSE:
            return "Reverse"
        return str(self.number)


ReadingValue = Union[int, float, GearState]


@dataclass(frozen=True)
class PhysicalReading:
    """
    One decoded value. The pid field is the variant tag, so two readings
    with equal values but different PIDs (atmospheric vs boost pressure)
    never compare equal.
    """
    pid: Pid
    value: ReadingValue
    unit: str


class DecodeError(ValueError):
    """Base class for all decode failures."""


class ShortFrameError(DecodeError):
    """Frame is too short to hold the data bytes a decoder reads."""

    def __init__(self, length: int, required: int):
        super().__init__(f"Frame has {length} bytes, at least {required} required")
        self.length = length
        self.required = required


class UnknownPidError(DecodeError):
    """Selector does not map to any registered decoder."""

    def __init__(self, pid):
        super().__init__(f"No decoder registered for PID {pid!r}")
        self.pid = pid


class FrameFormatError(DecodeError):
    """Input could not be interpreted as a sequence of bytes."""
