"""
Unit conversion utilities for obdcalc.

Temperature conversion and rounding used when presenting decoded OBD
readings.
"""

import math


def celsius_to_fahrenheit(celsius):
    """Convert Celsius to Fahrenheit."""
    return (celsius * 9 / 5) + 32


def round_half_up(value) -> int:
    """
    Round to the nearest integer, halves rounding towards +infinity.

    Works for negative values too: -16.6 -> -17, -16.5 -> -16, 16.5 -> 17.
    Truncating ``value + 0.5`` only gives this result for non-negative
    values, so floor is used instead.

    Args:
        value: Number to round

    Returns:
        Rounded integer
    """
    return int(math.floor(value + 0.5))


def celsius_to_whole_fahrenheit(celsius) -> int:
    """Convert Celsius to Fahrenheit rounded half-up to a whole degree."""
    return round_half_up(celsius_to_fahrenheit(celsius))
