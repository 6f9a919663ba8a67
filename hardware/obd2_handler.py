"""
OBD2 handler for obdcalc.
Requests PIDs over CAN with service 0x22 (read data by identifier) and
feeds the raw response frames through the decoder registry.
"""

import logging
import time
from typing import Dict, Optional

import can

from config import (
    OBD_BACKOFF_INITIAL_S,
    OBD_BACKOFF_MAX_S,
    OBD_BACKOFF_MULTIPLIER,
    OBD_BITRATE,
    OBD_CHANNEL,
    OBD_INTERFACE,
    OBD_MAX_CONSECUTIVE_ERRORS,
    OBD_NEGATIVE_RESPONSE,
    OBD_PID_IDENTIFIERS,
    OBD_POLL_INTERVAL_S,
    OBD_POSITIVE_RESPONSE_OFFSET,
    OBD_REQUEST_ID,
    OBD_RESPONSE_MAX,
    OBD_RESPONSE_MIN,
    OBD_RESPONSE_TIMEOUT_S,
    OBD_SEND_TIMEOUT_S,
    OBD_SERVICE_READ_DATA,
)
from core.decoders import DecoderRegistry, default_registry
from core.models import DecodeError, Pid, PhysicalReading
from core.reading_cache import ReadingCache
from utils.hardware_base import BoundedQueueHardwareHandler, ExponentialBackoff
from utils.settings import SettingsManager, get_settings

logger = logging.getLogger('obdcalc.obd2')

# Negative response code: ECU busy, final answer follows
NRC_RESPONSE_PENDING = 0x78


def resolve_pid_identifiers(settings: Optional[SettingsManager] = None) -> Dict[Pid, int]:
    """
    Build the PID -> data identifier map.

    Defaults come from config.OBD_PID_IDENTIFIERS; "pids.<pid>" entries in
    the settings file override them. PIDs with no identifier are left out.
    """
    identifiers = {}
    for pid in Pid:
        default = OBD_PID_IDENTIFIERS.get(pid.value)
        if settings is not None:
            identifier = settings.get_int(f"pids.{pid.value}", default)
        else:
            identifier = default
        if identifier is None:
            continue
        if not 0 <= identifier <= 0xFFFF:
            logger.warning("Ignoring identifier 0x%X for %s: not a 16-bit value", identifier, pid.value)
            continue
        identifiers[pid] = identifier
    return identifiers


class CanFrameSource:
    """
    Frame source on a python-can bus.

    Sends a single-frame service 0x22 request and returns the raw payload
    of the matching positive response. Only the transport checks (response
    id, service byte, identifier echo) are made here; the data bytes are
    left to the decoders.
    """

    def __init__(self, channel: str = OBD_CHANNEL, interface: str = OBD_INTERFACE,
                 bitrate: int = OBD_BITRATE, bus: Optional[can.BusABC] = None):
        self.channel = channel
        self.interface = interface
        self.bitrate = bitrate
        self.bus = bus

    @property
    def is_open(self) -> bool:
        return self.bus is not None

    def open(self):
        """Open the CAN bus. Errors from python-can propagate."""
        if self.bus is not None:
            return
        self.bus = can.interface.Bus(
            channel=self.channel,
            interface=self.interface,
            bitrate=self.bitrate
        )
        logger.info("OBD2: Bus open on %s (%s) at %d bps", self.channel, self.interface, self.bitrate)

    def close(self):
        """Shut the bus down."""
        if self.bus is None:
            return
        try:
            self.bus.shutdown()
        except can.CanError as e:
            logger.warning("OBD2: Error during bus shutdown: %s", e)
        self.bus = None

    @staticmethod
    def build_request(identifier: int) -> can.Message:
        """Build the request frame for a 16-bit data identifier."""
        data = [
            0x03,  # single frame, 3 bytes
            OBD_SERVICE_READ_DATA,
            (identifier >> 8) & 0xFF,
            identifier & 0xFF,
        ] + [0x00] * 4
        return can.Message(
            arbitration_id=OBD_REQUEST_ID,
            is_extended_id=False,
            data=data
        )

    def request(self, identifier: int, timeout_s: float = OBD_RESPONSE_TIMEOUT_S) -> Optional[bytes]:
        """
        Request one identifier and wait for its response.

        Returns:
            Raw response payload, or None on timeout or negative response
        """
        if self.bus is None:
            raise can.CanOperationError("OBD2: Bus is not open")

        self.bus.send(self.build_request(identifier), timeout=OBD_SEND_TIMEOUT_S)
        return self._wait_for_response(identifier, timeout_s)

    def _wait_for_response(self, identifier: int, timeout_s: float) -> Optional[bytes]:
        expected = (
            OBD_SERVICE_READ_DATA + OBD_POSITIVE_RESPONSE_OFFSET,
            (identifier >> 8) & 0xFF,
            identifier & 0xFF,
        )
        deadline = time.monotonic() + timeout_s

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            msg = self.bus.recv(timeout=remaining)
            if msg is None:
                return None

            # Check id and length before touching the payload
            if not (OBD_RESPONSE_MIN <= msg.arbitration_id <= OBD_RESPONSE_MAX):
                continue
            if msg.is_extended_id:
                continue
            data = msg.data
            if len(data) < 4:
                continue

            if data[1] == OBD_NEGATIVE_RESPONSE and data[2] == OBD_SERVICE_READ_DATA:
                if data[3] == NRC_RESPONSE_PENDING:
                    continue
                logger.debug("OBD2: Negative response 0x%02X for identifier 0x%04X", data[3], identifier)
                return None

            if tuple(data[1:4]) == expected:
                return bytes(data)


class OBD2Handler(BoundedQueueHardwareHandler):
    """
    Background poller for the configured PIDs.

    Requests one PID per cycle in registry order. Successful decodes go into
    the ReadingCache; bad frames are logged and counted but never cached.
    Each cycle publishes a snapshot {pid value: PhysicalReading}.
    """

    def __init__(self, source: Optional[CanFrameSource] = None,
                 identifiers: Optional[Dict[Pid, int]] = None,
                 registry: DecoderRegistry = default_registry,
                 cache: Optional[ReadingCache] = None,
                 poll_interval_s: float = OBD_POLL_INTERVAL_S,
                 response_timeout_s: float = OBD_RESPONSE_TIMEOUT_S):
        super().__init__(queue_depth=2)
        self.source = source if source is not None else CanFrameSource()
        if identifiers is None:
            identifiers = resolve_pid_identifiers(get_settings())
        self.identifiers = dict(identifiers)
        self.registry = registry
        self.cache = cache if cache is not None else ReadingCache()
        self.poll_interval_s = poll_interval_s
        self.response_timeout_s = response_timeout_s

        # Connection tracking
        self.hardware_available = self.source.is_open
        self.consecutive_errors = 0
        self.max_consecutive_errors = OBD_MAX_CONSECUTIVE_ERRORS
        self.backoff = ExponentialBackoff(
            initial_delay=OBD_BACKOFF_INITIAL_S,
            multiplier=OBD_BACKOFF_MULTIPLIER,
            max_delay=OBD_BACKOFF_MAX_S,
        )
        self.decode_errors = 0

        self._poll_order = [pid for pid in registry.pids() if pid in self.identifiers]
        self._poll_index = 0
        for pid in registry.pids():
            if pid not in self.identifiers:
                logger.warning("OBD2: No identifier configured for %s, not polling it", pid.value)

    @property
    def polled_pids(self):
        return list(self._poll_order)

    def start(self):
        if not self._poll_order:
            logger.warning("OBD2: No PID identifiers configured, nothing to poll")
            return
        super().start()

    def _initialise(self):
        """Open the frame source, recording a backoff step on failure."""
        try:
            self.source.open()
        except (can.CanError, OSError, ValueError) as e:
            logger.warning("OBD2: Failed to open %s: %s", self.source.channel, e)
            self.hardware_available = False
            self.backoff.record_failure()
            return

        self.hardware_available = True
        self.consecutive_errors = 0
        self.backoff.reset()

    def poll_pid(self, pid: Pid) -> Optional[PhysicalReading]:
        """
        Request and decode one PID.

        Returns:
            The decoded reading, or None if there was no usable response.
            Transport errors propagate.
        """
        frame = self.source.request(self.identifiers[pid], timeout_s=self.response_timeout_s)
        if frame is None:
            logger.debug("OBD2: No response for %s", pid.value)
            return None

        try:
            reading = self.registry.decode(pid, frame)
        except DecodeError as e:
            self.decode_errors += 1
            logger.warning("OBD2: Dropping %s frame %s: %s", pid.value, frame.hex(), e)
            return None

        self.cache.update(reading)
        return reading

    def poll_once(self) -> Optional[PhysicalReading]:
        """Poll the next PID in the rotation."""
        if not self._poll_order:
            return None
        pid = self._poll_order[self._poll_index]
        self._poll_index = (self._poll_index + 1) % len(self._poll_order)
        return self.poll_pid(pid)

    def _publish_cache(self):
        data = {pid.value: entry.reading for pid, entry in self.cache.snapshot().items()}
        metadata = {
            'hardware_available': self.hardware_available,
            'consecutive_errors': self.consecutive_errors,
            'decode_errors': self.decode_errors,
        }
        self._publish_snapshot(data, metadata)

    def _worker_loop(self):
        """Background thread that polls one PID per cycle."""
        while self.running:
            start_time = time.time()

            if not self.hardware_available:
                if not self.backoff.should_skip():
                    logger.info("OBD2: Attempting to connect...")
                    self._initialise()
                if not self.hardware_available:
                    time.sleep(self.poll_interval_s)
                    continue

            try:
                self.poll_once()
                self.consecutive_errors = 0
            except (can.CanError, OSError) as e:
                self.consecutive_errors += 1
                if self.consecutive_errors == 1:
                    logger.warning("OBD2: Error polling: %s", e)
                if self.consecutive_errors >= self.max_consecutive_errors:
                    logger.error("OBD2: %d consecutive errors - connection lost", self.consecutive_errors)
                    self.source.close()
                    self.hardware_available = False
                    self.backoff.record_failure()
            except Exception:
                # Not a transport fault, so the bus stays open
                self.consecutive_errors += 1
                logger.exception("OBD2: Unexpected error polling")

            self._publish_cache()

            elapsed = time.time() - start_time
            sleep_time = max(0, self.poll_interval_s - elapsed)
            if sleep_time > 0:
                time.sleep(sleep_time)

    def get_reading(self, pid: Pid) -> Optional[PhysicalReading]:
        """Last successfully decoded reading for a PID."""
        return self.cache.get(pid)

    def cleanup(self):
        """Stop the worker and release the bus."""
        self.stop()
        self.source.close()
