"""
Display strings for decoded readings.

Temperatures are shown in Celsius with the whole-degree Fahrenheit
equivalent in brackets, rounded half-up.
"""

from core.models import Pid, PhysicalReading
from utils.conversions import celsius_to_whole_fahrenheit

# Display labels, also used when a PID has no value yet
LABELS = {
    Pid.ENGINE_RPM: "Engine RPM",
    Pid.CURRENT_GEAR: "Current Engaged Gear",
    Pid.ENGINE_OIL_TEMP: "Engine Oil Temperature",
    Pid.BATTERY_IBS: "Battery IBS",
    Pid.BATTERY_VOLTAGE: "Battery",
    Pid.ATMOSPHERIC_PRESSURE: "Atmospheric Pressure",
    Pid.BOOST_PRESSURE: "Boost Pressure",
    Pid.EXTERNAL_TEMP: "External Temperature",
}


def _format_temperature(label: str, celsius: int) -> str:
    fahrenheit = celsius_to_whole_fahrenheit(celsius)
    return f"{label} = {celsius} C ({fahrenheit} F)"


def format_engine_rpm(reading: PhysicalReading) -> str:
    return f"{LABELS[Pid.ENGINE_RPM]} = {reading.value}"


def format_gear(reading: PhysicalReading) -> str:
    # GearState renders as Neutral / Reverse / gear number
    return f"{LABELS[Pid.CURRENT_GEAR]} = {reading.value}"


def format_engine_oil_temp(reading: PhysicalReading) -> str:
    return _format_temperature(LABELS[Pid.ENGINE_OIL_TEMP], reading.value)


def format_battery_ibs(reading: PhysicalReading) -> str:
    return f"{LABELS[Pid.BATTERY_IBS]} = {reading.value} %"


def format_battery_voltage(reading: PhysicalReading) -> str:
    return f"{LABELS[Pid.BATTERY_VOLTAGE]} = {reading.value:.1f} Volts"


def format_atmospheric_pressure(reading: PhysicalReading) -> str:
    return f"{LABELS[Pid.ATMOSPHERIC_PRESSURE]} = {reading.value} mbar"


def format_boost_pressure(reading: PhysicalReading) -> str:
    return f"{LABELS[Pid.BOOST_PRESSURE]} = {reading.value} mbar"


def format_external_temp(reading: PhysicalReading) -> str:
    return _format_temperature(LABELS[Pid.EXTERNAL_TEMP], reading.value)


def format_missing(pid: Pid) -> str:
    """Placeholder line for a PID that has not been decoded yet."""
    return f"{LABELS[pid]} = --"
