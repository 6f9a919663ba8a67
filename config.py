"""
Configuration settings for the obdcalc system.
Contains constants for the CAN transport, PID polling and output.

Organised into logical sections:
1. Application
2. Hardware - CAN Bus (OBD2 channel, ids, timing)
3. PID Identifiers (vehicle specific, overridable from the settings file)
4. Output (staleness, telemetry recording)
"""

import os

# ==============================================================================
# APPLICATION
# ==============================================================================
# Format: MAJOR.MINOR.PATCH
APP_VERSION = "0.3.0"

# Persistent user settings (JSON)
SETTINGS_FILE = os.path.expanduser("~/.obdcalc_settings.json")

# ==============================================================================
# HARDWARE - CAN BUS (OBD2)
# ==============================================================================

# python-can interface and channel
OBD_INTERFACE = "socketcan"
OBD_CHANNEL = "can0"
OBD_BITRATE = 500000  # Standard OBD2 bitrate (500 kbps)

# 11-bit identifiers. Requests go out on the functional broadcast id;
# any ECU answering in the response range is accepted.
OBD_REQUEST_ID = 0x7DF
OBD_RESPONSE_MIN = 0x7E8
OBD_RESPONSE_MAX = 0x7EF

# Service 0x22 (read data by identifier) and its positive response
OBD_SERVICE_READ_DATA = 0x22
OBD_POSITIVE_RESPONSE_OFFSET = 0x40
OBD_NEGATIVE_RESPONSE = 0x7F

# Polling and timing
OBD_POLL_INTERVAL_S = 0.2  # Delay between PID requests
OBD_RESPONSE_TIMEOUT_S = 0.15  # Wait per request before giving up
OBD_SEND_TIMEOUT_S = 0.1

# Reconnect backoff after transport failures
OBD_MAX_CONSECUTIVE_ERRORS = 10
OBD_BACKOFF_INITIAL_S = 1.0
OBD_BACKOFF_MULTIPLIER = 2.0
OBD_BACKOFF_MAX_S = 30.0

# ==============================================================================
# PID IDENTIFIERS
# ==============================================================================
# 16-bit data identifiers requested with service 0x22, keyed by Pid value.
# These differ between manufacturers, so none are set by default. Set them
# here or in the settings file, e.g.:
#   {"pids": {"engine_rpm": "0x1234", "boost_pressure": 4660}}
# PIDs left as None are not polled.
OBD_PID_IDENTIFIERS = {
    "engine_rpm": None,
    "current_gear": None,
    "engine_oil_temp": None,
    "battery_ibs": None,
    "battery_voltage": None,
    "atmospheric_pressure": None,
    "boost_pressure": None,
    "external_temp": None,
}

# ==============================================================================
# OUTPUT
# ==============================================================================

# Values older than this are marked stale on the console
READING_STALE_AFTER_S = 2.0

# Console refresh interval for the poll command
DISPLAY_INTERVAL_S = 1.0

# Telemetry CSV output directory
TELEMETRY_DIR = os.path.expanduser("~/obdcalc_telemetry")
