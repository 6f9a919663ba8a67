"""
Last known value cache for decoded readings.

Decoders are stateless; a poller that wants to keep showing the previous
value while a PID is not answering owns one of these. Only successful
decodes are written, so a bad frame never replaces a good value.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from core.models import Pid, PhysicalReading


@dataclass(frozen=True)
class CachedReading:
    """A reading and the time it was decoded."""
    reading: PhysicalReading
    timestamp: float


class ReadingCache:
    """
    Thread-safe map of PID to its most recent reading.

    Written by the poller thread, read by the presenter.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[Pid, CachedReading] = {}
        self._lock = threading.Lock()

    def update(self, reading: PhysicalReading, timestamp: Optional[float] = None) -> CachedReading:
        """
        Store a successfully decoded reading.

        Args:
            reading: Decoded reading, keyed by its pid
            timestamp: Decode time (defaults to now)

        Returns:
            The stored entry
        """
        entry = CachedReading(
            reading=reading,
            timestamp=self._clock() if timestamp is None else timestamp,
        )
        with self._lock:
            self._entries[reading.pid] = entry
        return entry

    def get(self, pid: Pid) -> Optional[PhysicalReading]:
        entry = self.get_entry(pid)
        return entry.reading if entry else None

    def get_entry(self, pid: Pid) -> Optional[CachedReading]:
        with self._lock:
            return self._entries.get(pid)

    def age(self, pid: Pid) -> Optional[float]:
        """Seconds since the PID was last decoded, or None if never."""
        entry = self.get_entry(pid)
        if entry is None:
            return None
        return max(0.0, self._clock() - entry.timestamp)

    def is_stale(self, pid: Pid, max_age_s: float) -> bool:
        """True if the PID has no value or its value is older than max_age_s."""
        age = self.age(pid)
        return age is None or age > max_age_s

    def snapshot(self) -> Dict[Pid, CachedReading]:
        """Copy of all entries."""
        with self._lock:
            return dict(self._entries)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
