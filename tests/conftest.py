"""
Shared pytest fixtures for obdcalc tests.
"""

import os
import sys
import pytest
import tempfile
import json

# Add project root to path for imports
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)


def make_frame(a, b, header=(0x07, 0x62, 0x11, 0x22), padding=(0x00, 0x00)):
    """Build an 8-byte response frame with A and B at positions 4 and 5."""
    return bytes(list(header) + [a, b] + list(padding))


@pytest.fixture
def frame_factory():
    """Factory for response frames: frame_factory(a, b)."""
    return make_frame


@pytest.fixture
def scenario_frame():
    """Frame with A=0x1A, B=0xF4."""
    return make_frame(0x1A, 0xF4)


@pytest.fixture
def short_frame():
    """Five bytes: one short of the data bytes decoders read."""
    return bytes([0x07, 0x62, 0x11, 0x22, 0x1A])


@pytest.fixture
def temp_settings_file():
    """Create a temporary settings file for testing SettingsManager."""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
        f.write('{}')
        temp_path = f.name
    yield temp_path
    # Cleanup
    if os.path.exists(temp_path):
        os.remove(temp_path)


@pytest.fixture
def temp_settings_with_pids():
    """Create a temporary settings file with PID identifiers."""
    test_data = {
        "pids": {
            "engine_rpm": "0x1234",
            "boost_pressure": 4660,
            "current_gear": "not a number",
        },
        "can": {
            "channel": "vcan0"
        }
    }
    with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
        json.dump(test_data, f)
        temp_path = f.name
    yield temp_path
    # Cleanup
    if os.path.exists(temp_path):
        os.remove(temp_path)


@pytest.fixture
def settings_factory():
    """Build a SettingsManager bound to a given file, bypassing the singleton."""
    import threading
    from utils.settings import SettingsManager

    def _make(path, load=False):
        manager = object.__new__(SettingsManager)
        manager._initialised = False
        manager._settings = {}
        manager._file_path = path
        manager._save_lock = threading.Lock()
        if load:
            manager._load()
        manager._initialised = True
        return manager

    return _make
