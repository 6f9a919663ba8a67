"""
Core decoding modules for obdcalc.

This package provides the PID decoder registry, the reading types it
produces and the display formatting for them.
"""

from core.models import (
    DecodeError,
    FrameFormatError,
    GearKind,
    GearState,
    Pid,
    PhysicalReading,
    ShortFrameError,
    UnknownPidError,
)
from core.decoders import (
    DecoderRegistry,
    DecoderSpec,
    decode,
    default_registry,
    format_reading,
    parse_hex_frame,
)
from core.reading_cache import ReadingCache

__all__ = [
    'DecodeError',
    'FrameFormatError',
    'GearKind',
    'GearState',
    'Pid',
    'PhysicalReading',
    'ShortFrameError',
    'UnknownPidError',
    'DecoderRegistry',
    'DecoderSpec',
    'decode',
    'default_registry',
    'format_reading',
    'parse_hex_frame',
    'ReadingCache',
]
