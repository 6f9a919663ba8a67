"""
Base class for background pollers with a bounded snapshot queue.

The worker thread does all bus I/O and decoding; consumers only ever read
the latest published snapshot and never block on the bus.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger('obdcalc.hardware')


@dataclass(frozen=True)
class HardwareSnapshot:
    """Immutable snapshot of the latest polled data."""
    timestamp: float
    data: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


class ExponentialBackoff:
    """
    Delay tracker for reconnect attempts.

    Each recorded failure multiplies the delay (capped at max_delay);
    should_skip() is True until the delay since the last failure expires.
    """

    def __init__(self, initial_delay: float = 1.0, multiplier: float = 2.0,
                 max_delay: float = 64.0):
        self.initial_delay = initial_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.consecutive_failures = 0
        self.current_delay = 0.0
        self._last_failure_time = 0.0

    def record_failure(self):
        self.consecutive_failures += 1
        if self.consecutive_failures == 1:
            self.current_delay = self.initial_delay
        else:
            self.current_delay = min(self.current_delay * self.multiplier, self.max_delay)
        self._last_failure_time = time.monotonic()

    def should_skip(self) -> bool:
        if self.consecutive_failures == 0:
            return False
        return time.monotonic() - self._last_failure_time < self.current_delay

    def reset(self):
        self.consecutive_failures = 0
        self.current_delay = 0.0
        self._last_failure_time = 0.0


class BoundedQueueHardwareHandler:
    """
    Base for background pollers.

    A daemon worker publishes HardwareSnapshots into a queue holding at most
    queue_depth entries. When the queue is full the oldest snapshot is
    discarded, so readers always see recent data and get_snapshot() never
    blocks.
    """

    DROP_LOG_INTERVAL_S = 60.0

    def __init__(self, queue_depth: int = 2):
        self.queue_depth = queue_depth
        self.data_queue = queue.Queue(maxsize=queue_depth)
        self.current_snapshot: Optional[HardwareSnapshot] = None
        self.running = False
        self.thread: Optional[threading.Thread] = None

        self._dropped_recent = 0
        self._dropped_total = 0
        self._drop_window_start = time.monotonic()

    def start(self):
        """Start the worker thread (no-op if already running)."""
        if self.running:
            return

        self.running = True
        self.thread = threading.Thread(
            target=self._worker_loop,
            name=self.__class__.__name__,
            daemon=True,
        )
        self.thread.start()
        logger.info("%s worker started", self.__class__.__name__)

    def stop(self, timeout: float = 5.0):
        """Ask the worker to finish and wait up to timeout seconds."""
        self.running = False
        if self.thread:
            self.thread.join(timeout=timeout)
            if self.thread.is_alive():
                logger.warning("%s worker did not stop within %.1fs", self.__class__.__name__, timeout)
        logger.info("%s worker stopped", self.__class__.__name__)

    def _worker_loop(self):
        """Poll until self.running is cleared. Implemented by subclasses."""
        raise NotImplementedError("Subclasses must implement _worker_loop")

    def _publish_snapshot(self, data: Optional[Dict[str, Any]], metadata: Optional[Dict[str, Any]] = None):
        """
        Queue a snapshot built from copies of data and metadata.

        Called from the worker thread only.
        """
        snapshot = HardwareSnapshot(
            timestamp=time.time(),
            data=dict(data or {}),
            metadata=dict(metadata or {}),
        )

        while True:
            try:
                self.data_queue.put_nowait(snapshot)
                break
            except queue.Full:
                try:
                    self.data_queue.get_nowait()
                except queue.Empty:
                    continue
                self._dropped_recent += 1
                self._dropped_total += 1

        self._log_drops()

    def _log_drops(self):
        now = time.monotonic()
        if now - self._drop_window_start < self.DROP_LOG_INTERVAL_S:
            return
        if self._dropped_recent:
            logger.warning(
                "%s: %d snapshot(s) not read in the last %.0fs (%d in total)",
                self.__class__.__name__, self._dropped_recent,
                now - self._drop_window_start, self._dropped_total,
            )
        self._dropped_recent = 0
        self._drop_window_start = now

    def get_snapshot(self) -> Optional[HardwareSnapshot]:
        """
        Newest published snapshot; older queued ones are discarded.

        Returns:
            HardwareSnapshot, or None before the first publish
        """
        while True:
            try:
                self.current_snapshot = self.data_queue.get_nowait()
            except queue.Empty:
                return self.current_snapshot

    def get_data(self) -> Dict[str, Any]:
        snapshot = self.get_snapshot()
        return snapshot.data if snapshot else {}

    def get_frame_drop_stats(self) -> Dict[str, int]:
        return {"recent": self._dropped_recent, "total": self._dropped_total}
