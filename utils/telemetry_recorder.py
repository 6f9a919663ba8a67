"""
Telemetry Recorder for obdcalc.
Records decoded readings to CSV files for later analysis.
"""

import csv
import logging
import os
import threading
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, Any, List, Optional

from core.models import GearState, PhysicalReading

logger = logging.getLogger('obdcalc.telemetry')

CSV_FIELDS = ['timestamp', 'pid', 'value', 'unit', 'text']


@dataclass
class ReadingRecord:
    """One CSV row: a decoded reading and its display string."""
    timestamp: float
    pid: str
    value: Any
    unit: str
    text: str

    @classmethod
    def from_reading(cls, reading: PhysicalReading, text: str,
                     timestamp: Optional[float] = None) -> 'ReadingRecord':
        value = reading.value
        if isinstance(value, GearState):
            value = str(value)
        return cls(
            timestamp=time.time() if timestamp is None else timestamp,
            pid=reading.pid.value,
            value=value,
            unit=reading.unit,
            text=text,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TelemetryRecorder:
    """
    Records readings to CSV files.

    Usage:
        recorder = TelemetryRecorder(output_dir)
        recorder.start_recording()
        # ... in poll loop ...
        recorder.record(reading_record)
        # ... when done ...
        recorder.stop_recording()
        recorder.save()   # or recorder.discard()
    """

    def __init__(self, output_dir: str):
        """
        Args:
            output_dir: Directory to save telemetry files (created if missing)
        """
        self.output_dir = output_dir
        self.recording = False
        self.records: List[ReadingRecord] = []
        self.start_time: Optional[float] = None
        self.filename: Optional[str] = None
        self.lock = threading.Lock()

        os.makedirs(output_dir, exist_ok=True)

    def start_recording(self):
        """Start a new recording session."""
        with self.lock:
            self.recording = True
            self.records = []
            self.start_time = time.time()
            dt = datetime.fromtimestamp(self.start_time)
            self.filename = dt.strftime("readings_%Y%m%d_%H%M%S.csv")
            logger.info("Recording started: %s", self.filename)

    def stop_recording(self):
        """Stop the current recording session."""
        with self.lock:
            self.recording = False
            duration = time.time() - self.start_time if self.start_time else 0
            logger.info("Recording stopped: %d readings, %.1fs", len(self.records), duration)

    def is_recording(self) -> bool:
        return self.recording

    def get_record_count(self) -> int:
        return len(self.records)

    def record(self, record: ReadingRecord):
        """Add a row. Ignored unless recording."""
        if not self.recording:
            return

        with self.lock:
            self.records.append(record)

    def save(self) -> Optional[str]:
        """
        Write the recorded rows to CSV.

        Returns:
            Path to saved file, or None if there was nothing to save
        """
        with self.lock:
            if not self.records:
                logger.info("No readings to save")
                return None

            filepath = os.path.join(self.output_dir, self.filename)
            with open(filepath, 'w', newline='') as f:
                writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
                writer.writeheader()
                for record in self.records:
                    writer.writerow(record.to_dict())

            logger.info("Saved %d readings to %s", len(self.records), filepath)
            self._clear()
            return filepath

    def discard(self):
        """Drop the current recording without saving."""
        with self.lock:
            count = len(self.records)
            self._clear()
            logger.info("Discarded %d readings", count)

    def _clear(self):
        self.records = []
        self.start_time = None
        self.filename = None
