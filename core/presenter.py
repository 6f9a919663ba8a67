"""
Console output for decoded readings.
"""

import sys
from typing import Iterable, Optional, TextIO

from core.decoders import DecoderRegistry, default_registry
from core.formatting import format_missing
from core.models import Pid, PhysicalReading
from core.reading_cache import ReadingCache

STALE_SUFFIX = " (stale)"


class ConsolePresenter:
    """Writes one display line per reading to a text stream."""

    def __init__(self, stream: Optional[TextIO] = None,
                 registry: DecoderRegistry = default_registry):
        self.stream = stream if stream is not None else sys.stdout
        self.registry = registry

    def _write(self, line: str):
        self.stream.write(line + "\n")

    def show(self, reading: PhysicalReading):
        self._write(self.registry.format(reading))

    def show_missing(self, pid: Pid):
        self._write(format_missing(pid))

    def show_cache(self, cache: ReadingCache, pids: Iterable[Pid], max_age_s: float):
        """
        Render the cached value of each PID.

        PIDs never decoded are shown as "--"; values older than
        max_age_s keep their last value with a stale marker.
        """
        for pid in pids:
            reading = cache.get(pid)
            if reading is None:
                self.show_missing(pid)
                continue
            line = self.registry.format(reading)
            if cache.is_stale(pid, max_age_s):
                line += STALE_SUFFIX
            self._write(line)
        self.stream.flush()
