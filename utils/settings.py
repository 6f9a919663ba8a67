"""
Per-vehicle settings for obdcalc.

Mode 22 data identifiers and the CAN channel differ between vehicles, so
they live in a JSON file (config.SETTINGS_FILE) rather than in config.py:

    {
        "can": {"channel": "can1", "bitrate": 500000},
        "pids": {"engine_rpm": "0x1234", "external_temp": 8193}
    }

A file that is not valid JSON is removed and an empty profile is used.
"""

import json
import logging
import os
import threading
from typing import Any, Optional

from config import SETTINGS_FILE

logger = logging.getLogger('obdcalc.settings')

_MISSING = object()


class SettingsManager:
    """
    Process-wide settings store, addressed with dotted keys ("can.channel").

    Loaded once on first use; set() writes the file back unless save=False.
    """

    _instance: Optional['SettingsManager'] = None
    _lock = threading.Lock()

    def __new__(cls):
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._initialised = False
                cls._instance = instance
        return cls._instance

    def __init__(self):
        if self._initialised:
            return

        self._settings = {}
        self._file_path = SETTINGS_FILE
        self._save_lock = threading.Lock()
        self._load()
        self._initialised = True

    def _load(self):
        if not os.path.exists(self._file_path):
            logger.debug("No settings at %s, using config defaults", self._file_path)
            self._settings = {}
            return

        try:
            with open(self._file_path, 'r', encoding='utf-8') as f:
                loaded = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("Settings file %s is not valid JSON (%s), removing it", self._file_path, e)
            self._remove_file()
            loaded = {}
        except OSError as e:
            logger.warning("Could not read settings %s: %s", self._file_path, e)
            loaded = {}

        if not isinstance(loaded, dict):
            logger.warning("Settings file %s does not hold an object, ignoring it", self._file_path)
            loaded = {}

        self._settings = loaded
        logger.info("Loaded %d setting group(s) from %s", len(loaded), self._file_path)

    def _remove_file(self):
        try:
            os.remove(self._file_path)
        except OSError as e:
            logger.error("Could not remove %s: %s", self._file_path, e)

    def _save(self):
        """Write to a sibling temp file and rename it over the original."""
        with self._save_lock:
            temp_path = self._file_path + '.tmp'
            try:
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(self._settings, f, indent=2, sort_keys=True)
                os.replace(temp_path, self._file_path)
            except OSError as e:
                logger.warning("Could not write settings %s: %s", self._file_path, e)
                if os.path.exists(temp_path):
                    try:
                        os.remove(temp_path)
                    except OSError:
                        logger.debug("Left %s behind", temp_path)

    def _lookup(self, key: str) -> Any:
        node = self._settings
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                return _MISSING
            node = node[part]
        return node

    def get(self, key: str, default: Any = None) -> Any:
        """
        Args:
            key: Dotted path, e.g. "pids.engine_rpm"
            default: Returned when any part of the path is absent
        """
        value = self._lookup(key)
        return default if value is _MISSING else value

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        """
        Integer setting. Strings are parsed with their base prefix, so an
        identifier may be written "0x1234" in the file.

        Returns:
            The integer, or default if the key is absent or not an integer
        """
        value = self.get(key)
        if value is None:
            return default
        # bool is an int subclass; true/false is never a valid identifier
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            try:
                return int(value.strip(), 0)
            except ValueError:
                pass
        logger.warning("Setting %s=%r is not an integer, using %r", key, value, default)
        return default

    def get_str(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.get(key)
        if value is None:
            return default
        if not isinstance(value, str):
            logger.warning("Setting %s=%r is not a string, using %r", key, value, default)
            return default
        return value

    def set(self, key: str, value: Any, save: bool = True):
        """
        Store a value, creating (or replacing non-object) parents on the path.

        Args:
            key: Dotted path
            value: JSON-serialisable value
            save: Write the file immediately
        """
        *parents, leaf = key.split('.')
        node = self._settings
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = value

        if save:
            self._save()

    def get_all(self) -> dict:
        return self._settings.copy()

    def reset(self):
        """Forget every setting and write the empty profile."""
        self._settings = {}
        self._save()


def get_settings() -> SettingsManager:
    return SettingsManager()
