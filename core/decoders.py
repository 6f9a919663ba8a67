"""
Decoder registry for OBD response frames.

A frame is the raw payload of a single-frame response:

    [length, service, identifier high, identifier low, A, B, ...]

Only A (byte 4) and B (byte 5) are read. The leading bytes belong to the
transport layer and are not checked here; routing a frame to the right
PID is the caller's job.

Every decoder is a pure function of its frame, so the registry can be
shared between threads without locking.
"""

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Union

from core import formatting
from core.models import (
    FrameFormatError,
    GearState,
    Pid,
    PhysicalReading,
    ReadingValue,
    ShortFrameError,
    UnknownPidError,
)

logger = logging.getLogger('obdcalc.decoders')

FRAME_MIN_LENGTH = 6
DATA_A_INDEX = 4
DATA_B_INDEX = 5

# Raw gear byte values. 0x10 is a fixed marker for reverse, not a gear number.
GEAR_NEUTRAL_RAW = 0x00
GEAR_REVERSE_RAW = 0x10

PidSelector = Union[Pid, str]


def as_frame(data) -> bytes:
    """
    Validate raw input and return it as an immutable frame.

    Args:
        data: bytes, bytearray, memoryview or a sequence of ints in 0..255

    Returns:
        Frame as bytes

    Raises:
        FrameFormatError: Input is not an ordered sequence of bytes
        ShortFrameError: Fewer than FRAME_MIN_LENGTH bytes
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        frame = bytes(data)
    elif isinstance(data, str) or not isinstance(data, Sequence):
        # Sets and iterators have no byte positions; bytes(5) is five zeros
        raise FrameFormatError(f"Frame must be a byte sequence, got {type(data).__name__}")
    else:
        try:
            frame = bytes(data)
        except (TypeError, ValueError) as e:
            raise FrameFormatError(f"Frame is not a byte sequence: {e}") from e

    if len(frame) < FRAME_MIN_LENGTH:
        raise ShortFrameError(len(frame), FRAME_MIN_LENGTH)
    return frame


def _data_bytes(data):
    frame = as_frame(data)
    return frame[DATA_A_INDEX], frame[DATA_B_INDEX]


def calc_engine_rpm(frame) -> int:
    """Engine RPM = ((A * 256) + B) / 4, truncated."""
    a, b = _data_bytes(frame)
    return (a * 256 + b) // 4


def calc_gear(frame) -> GearState:
    """Currently engaged gear from A."""
    a, _ = _data_bytes(frame)
    if a == GEAR_REVERSE_RAW:
        return GearState.reverse()
    if a == GEAR_NEUTRAL_RAW:
        return GearState.neutral()
    return GearState.forward(a)


def calc_engine_oil_temp(frame) -> int:
    """Engine oil temperature = B degrees C, no offset applied."""
    _, b = _data_bytes(frame)
    return b


def calc_battery_ibs(frame) -> int:
    """Battery state of charge = A percent."""
    a, _ = _data_bytes(frame)
    return a


def calc_battery_voltage(frame) -> float:
    """Battery voltage = B / 10."""
    _, b = _data_bytes(frame)
    return b / 10.0


def calc_atmospheric_pressure(frame) -> int:
    """Atmospheric pressure = (A * 256) + B mbar."""
    a, b = _data_bytes(frame)
    return a * 256 + b


def calc_boost_pressure(frame) -> int:
    """Boost pressure = (A * 256) + B mbar."""
    a, b = _data_bytes(frame)
    return a * 256 + b


def calc_external_temp(frame) -> int:
    """External temperature = (A / 2) - 40 degrees C, halved before the offset."""
    a, _ = _data_bytes(frame)
    return (a // 2) - 40


@dataclass(frozen=True)
class DecoderSpec:
    """Binds a PID to its decode formula, unit and display formatter."""
    pid: Pid
    unit: str
    decode: Callable[[bytes], ReadingValue]
    format: Callable[[PhysicalReading], str]

    @property
    def label(self) -> str:
        return formatting.LABELS[self.pid]


DEFAULT_DECODERS = (
    DecoderSpec(Pid.ENGINE_RPM, "rpm", calc_engine_rpm, formatting.format_engine_rpm),
    DecoderSpec(Pid.CURRENT_GEAR, "", calc_gear, formatting.format_gear),
    DecoderSpec(Pid.ENGINE_OIL_TEMP, "C", calc_engine_oil_temp, formatting.format_engine_oil_temp),
    DecoderSpec(Pid.BATTERY_IBS, "%", calc_battery_ibs, formatting.format_battery_ibs),
    DecoderSpec(Pid.BATTERY_VOLTAGE, "V", calc_battery_voltage, formatting.format_battery_voltage),
    DecoderSpec(Pid.ATMOSPHERIC_PRESSURE, "mbar", calc_atmospheric_pressure,
                formatting.format_atmospheric_pressure),
    DecoderSpec(Pid.BOOST_PRESSURE, "mbar", calc_boost_pressure, formatting.format_boost_pressure),
    DecoderSpec(Pid.EXTERNAL_TEMP, "C", calc_external_temp, formatting.format_external_temp),
)


class DecoderRegistry:
    """
    Lookup from PID selector to decoder.

    The registry is read-only once built. Selectors may be Pid members or
    strings matching a member's name or value ("ENGINE_RPM", "engine_rpm",
    "engine-rpm").
    """

    def __init__(self, specs: Optional[Iterable[DecoderSpec]] = None):
        self._specs: Dict[Pid, DecoderSpec] = {}
        for spec in DEFAULT_DECODERS if specs is None else specs:
            if spec.pid in self._specs:
                raise ValueError(f"Duplicate decoder for {spec.pid.name}")
            self._specs[spec.pid] = spec

    def __contains__(self, pid) -> bool:
        try:
            self.resolve(pid)
        except UnknownPidError:
            return False
        return True

    def __len__(self) -> int:
        return len(self._specs)

    def resolve(self, pid: PidSelector) -> DecoderSpec:
        """
        Find the decoder for a selector.

        Raises:
            UnknownPidError: Selector does not name a registered decoder
        """
        key = pid
        if isinstance(pid, str):
            normalised = pid.strip().lower().replace('-', '_')
            try:
                key = Pid(normalised)
            except ValueError:
                raise UnknownPidError(pid) from None

        spec = self._specs.get(key) if isinstance(key, Pid) else None
        if spec is None:
            raise UnknownPidError(pid)
        return spec

    def pids(self) -> List[Pid]:
        """Registered PIDs in registration order."""
        return list(self._specs)

    def label(self, pid: PidSelector) -> str:
        return self.resolve(pid).label

    def unit(self, pid: PidSelector) -> str:
        return self.resolve(pid).unit

    def decode(self, pid: PidSelector, frame) -> PhysicalReading:
        """
        Decode a frame into a tagged reading.

        Raises:
            UnknownPidError: Selector is not registered
            ShortFrameError: Frame shorter than FRAME_MIN_LENGTH
            FrameFormatError: Frame is not a byte sequence
        """
        spec = self.resolve(pid)
        value = spec.decode(frame)
        logger.debug("Decoded %s = %r", spec.pid.name, value)
        return PhysicalReading(pid=spec.pid, value=value, unit=spec.unit)

    def format(self, reading: PhysicalReading) -> str:
        return self.resolve(reading.pid).format(reading)

    def describe(self, pid: PidSelector, frame) -> str:
        """Decode and format in one step."""
        return self.format(self.decode(pid, frame))


_HEX_SEPARATORS = re.compile(r'[\s,:]+')
_HEX_BYTE = re.compile(r'[0-9A-Fa-f]{1,2}')


def parse_hex_frame(text: str) -> bytes:
    """
    Parse a hex dump into frame bytes.

    Accepts separated bytes ("07 62 11 22 1A F4", "0x1A,0xF4") or a packed
    string ("076211221AF4"). No length check is made; decoding does that.

    Raises:
        FrameFormatError: Text is empty or not valid hex
    """
    tokens = [t for t in _HEX_SEPARATORS.split(text.strip()) if t]
    if not tokens:
        raise FrameFormatError("Empty frame text")

    tokens = [t[2:] if t.lower().startswith('0x') else t for t in tokens]
    if len(tokens) == 1:
        try:
            return bytes.fromhex(tokens[0])
        except ValueError as e:
            raise FrameFormatError(f"Invalid hex frame {text!r}: {e}") from e

    bad = [t for t in tokens if not _HEX_BYTE.fullmatch(t)]
    if bad:
        raise FrameFormatError(f"Invalid hex frame {text!r}: bad byte(s) {bad}")
    return bytes(int(t, 16) for t in tokens)


default_registry = DecoderRegistry()


def decode(pid: PidSelector, frame) -> PhysicalReading:
    """Decode a frame with the default registry."""
    return default_registry.decode(pid, frame)


def format_reading(reading: PhysicalReading) -> str:
    """Format a reading with the default registry."""
    return default_registry.format(reading)
