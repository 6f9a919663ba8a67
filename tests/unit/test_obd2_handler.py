"""
Unit tests for the OBD2 CAN transport and poller.
Uses a mocked python-can bus; no hardware required.
"""

import logging
from unittest.mock import MagicMock, patch

import can
import pytest

from core.models import Pid
from hardware import obd2_handler
from hardware.obd2_handler import CanFrameSource, OBD2Handler, resolve_pid_identifiers

RPM_DID = 0x1234
TEMP_DID = 0x2001


def response(data, arbitration_id=0x7E8, extended=False):
    return can.Message(arbitration_id=arbitration_id, is_extended_id=extended, data=data)


def positive(identifier, a, b):
    """Single-frame service 0x22 positive response carrying A and B."""
    return response([0x05, 0x62, identifier >> 8, identifier & 0xFF, a, b, 0x00, 0x00])


@pytest.fixture
def bus():
    return MagicMock()


@pytest.fixture
def source(bus):
    return CanFrameSource(channel="vcan0", interface="virtual", bus=bus)


@pytest.fixture
def handler(source):
    return OBD2Handler(
        source=source,
        identifiers={Pid.EXTERNAL_TEMP: TEMP_DID, Pid.ENGINE_RPM: RPM_DID},
        poll_interval_s=0,
        response_timeout_s=0.5,
    )


class TestResolvePidIdentifiers:
    """Tests for building the PID to identifier map."""

    @pytest.mark.unit
    def test_no_settings_no_defaults(self):
        """Test nothing is polled when no identifier is configured anywhere."""
        assert resolve_pid_identifiers() == {}

    @pytest.mark.unit
    def test_settings_override(self, settings_factory, temp_settings_with_pids):
        """Test hex strings and ints are read; invalid entries are skipped."""
        settings = settings_factory(temp_settings_with_pids, load=True)
        assert resolve_pid_identifiers(settings) == {
            Pid.ENGINE_RPM: 0x1234,
            Pid.BOOST_PRESSURE: 4660,
        }

    @pytest.mark.unit
    def test_config_default_used(self, monkeypatch, settings_factory, temp_settings_file):
        """Test config defaults apply when the settings file is silent."""
        monkeypatch.setitem(obd2_handler.OBD_PID_IDENTIFIERS, "external_temp", TEMP_DID)
        settings = settings_factory(temp_settings_file)
        assert resolve_pid_identifiers(settings) == {Pid.EXTERNAL_TEMP: TEMP_DID}

    @pytest.mark.unit
    @pytest.mark.parametrize("identifier", [-1, 0x10000])
    def test_out_of_range_skipped(self, settings_factory, temp_settings_file, identifier):
        """Test identifiers outside 16 bits are dropped."""
        settings = settings_factory(temp_settings_file)
        settings.set("pids.engine_rpm", identifier, save=False)
        assert resolve_pid_identifiers(settings) == {}


class TestCanFrameSource:
    """Tests for request framing and response matching."""

    @pytest.mark.unit
    def test_build_request(self):
        """Test the single-frame service 0x22 request layout."""
        msg = CanFrameSource.build_request(RPM_DID)
        assert msg.arbitration_id == 0x7DF
        assert msg.is_extended_id is False
        assert list(msg.data) == [0x03, 0x22, 0x12, 0x34, 0x00, 0x00, 0x00, 0x00]

    @pytest.mark.unit
    def test_request_returns_matching_payload(self, source, bus):
        """Test the matching positive response payload is returned."""
        bus.recv.side_effect = [positive(RPM_DID, 0x1A, 0xF4)]

        frame = source.request(RPM_DID)

        assert frame == bytes([0x05, 0x62, 0x12, 0x34, 0x1A, 0xF4, 0x00, 0x00])
        sent = bus.send.call_args[0][0]
        assert sent.arbitration_id == 0x7DF
        assert list(sent.data[:4]) == [0x03, 0x22, 0x12, 0x34]

    @pytest.mark.unit
    def test_unrelated_frames_skipped(self, source, bus):
        """Test other ids, extended ids, short payloads and other identifiers are ignored."""
        bus.recv.side_effect = [
            response([0x05, 0x62, 0x12, 0x34, 0x00, 0x01], arbitration_id=0x123),
            response([0x05, 0x62, 0x12, 0x34, 0x00, 0x02], extended=True),
            response([0x02, 0x62]),
            positive(0x9999, 0x00, 0x03),
            positive(RPM_DID, 0x00, 0x04),
        ]

        frame = source.request(RPM_DID)

        assert frame[4:6] == bytes([0x00, 0x04])
        assert bus.recv.call_count == 5

    @pytest.mark.unit
    def test_response_from_any_ecu_in_range(self, source, bus):
        """Test responses from the last ECU id are accepted."""
        bus.recv.side_effect = [
            response([0x05, 0x62, 0x12, 0x34, 0x00, 0x05, 0x00, 0x00], arbitration_id=0x7EF),
        ]
        assert source.request(RPM_DID)[5] == 0x05

    @pytest.mark.unit
    def test_timeout(self, source, bus):
        """Test None is returned when nothing arrives."""
        bus.recv.return_value = None
        assert source.request(RPM_DID) is None

    @pytest.mark.unit
    def test_negative_response(self, source, bus):
        """Test a negative response yields None."""
        bus.recv.side_effect = [response([0x03, 0x7F, 0x22, 0x31, 0, 0, 0, 0])]
        assert source.request(RPM_DID) is None

    @pytest.mark.unit
    def test_response_pending_keeps_waiting(self, source, bus):
        """Test NRC 0x78 waits for the final answer."""
        bus.recv.side_effect = [
            response([0x03, 0x7F, 0x22, 0x78, 0, 0, 0, 0]),
            positive(RPM_DID, 0x0C, 0x80),
        ]
        assert source.request(RPM_DID)[4:6] == bytes([0x0C, 0x80])

    @pytest.mark.unit
    def test_request_without_bus(self):
        """Test requesting on a closed source raises CanOperationError."""
        with pytest.raises(can.CanOperationError):
            CanFrameSource(channel="vcan0").request(RPM_DID)

    @pytest.mark.unit
    def test_open_creates_bus(self):
        """Test open() builds the bus once with the configured options."""
        with patch("can.interface.Bus") as bus_cls:
            source = CanFrameSource(channel="vcan0", interface="virtual", bitrate=250000)
            source.open()
            source.open()

        bus_cls.assert_called_once_with(channel="vcan0", interface="virtual", bitrate=250000)
        assert source.is_open

    @pytest.mark.unit
    def test_close(self, source, bus):
        """Test shutdown errors are logged and the bus released."""
        bus.shutdown.side_effect = can.CanError("already down")
        source.close()
        bus.shutdown.assert_called_once()
        assert source.is_open is False
        # Closing twice is harmless
        source.close()


class TestOBD2Handler:
    """Tests for polling, caching and error handling."""

    @pytest.mark.unit
    def test_poll_order_follows_registry(self, handler):
        """Test PIDs are polled in registry order."""
        assert handler.polled_pids == [Pid.ENGINE_RPM, Pid.EXTERNAL_TEMP]
        assert handler.hardware_available is True

    @pytest.mark.unit
    def test_poll_pid_updates_cache(self, handler, bus):
        """Test a good response is decoded and cached."""
        bus.recv.side_effect = [positive(RPM_DID, 0x1A, 0xF4)]

        reading = handler.poll_pid(Pid.ENGINE_RPM)

        assert reading.value == 1725
        assert handler.get_reading(Pid.ENGINE_RPM) == reading

    @pytest.mark.unit
    def test_bad_frame_keeps_previous_value(self, handler, bus):
        """Test a short frame is counted and never replaces the cached value."""
        bus.recv.side_effect = [
            positive(TEMP_DID, 0x1A, 0x00),
            response([0x04, 0x62, 0x20, 0x01, 0x50]),
        ]

        first = handler.poll_pid(Pid.EXTERNAL_TEMP)
        second = handler.poll_pid(Pid.EXTERNAL_TEMP)

        assert first.value == -27
        assert second is None
        assert handler.decode_errors == 1
        assert handler.get_reading(Pid.EXTERNAL_TEMP) == first

    @pytest.mark.unit
    def test_no_response_leaves_cache_empty(self, handler, bus):
        """Test a timeout is not a decode error and caches nothing."""
        bus.recv.return_value = None
        assert handler.poll_pid(Pid.ENGINE_RPM) is None
        assert handler.get_reading(Pid.ENGINE_RPM) is None
        assert handler.decode_errors == 0

    @pytest.mark.unit
    def test_poll_once_rotates(self, handler, monkeypatch):
        """Test poll_once cycles through the configured PIDs."""
        polled = []
        monkeypatch.setattr(handler, "poll_pid", polled.append)
        for _ in range(3):
            handler.poll_once()
        assert polled == [Pid.ENGINE_RPM, Pid.EXTERNAL_TEMP, Pid.ENGINE_RPM]

    @pytest.mark.unit
    def test_publish_cache(self, handler, bus):
        """Test snapshots carry cached readings and status metadata."""
        bus.recv.side_effect = [positive(RPM_DID, 0x0C, 0x80)]
        handler.poll_pid(Pid.ENGINE_RPM)
        handler._publish_cache()

        snapshot = handler.get_snapshot()
        assert snapshot.data["engine_rpm"].value == 800
        assert snapshot.metadata == {
            "hardware_available": True,
            "consecutive_errors": 0,
            "decode_errors": 0,
        }

    @pytest.mark.unit
    def test_start_without_identifiers(self, source):
        """Test start() is a no-op with nothing to poll."""
        handler = OBD2Handler(source=source, identifiers={})
        handler.start()
        assert handler.running is False
        assert handler.thread is None
        assert handler.poll_once() is None

    @pytest.mark.unit
    def test_initialise_failure_records_backoff(self):
        """Test a failed open backs off and a good open resets."""
        handler = OBD2Handler(source=CanFrameSource(channel="vcan9"), identifiers={Pid.ENGINE_RPM: RPM_DID})
        with patch("can.interface.Bus", side_effect=OSError("No such device")):
            handler._initialise()

        assert handler.hardware_available is False
        assert handler.backoff.consecutive_failures == 1

        with patch("can.interface.Bus"):
            handler._initialise()

        assert handler.hardware_available is True
        assert handler.backoff.consecutive_failures == 0

    @pytest.mark.unit
    def test_worker_drops_connection_after_repeated_errors(self, handler, bus, monkeypatch):
        """Test repeated transport errors close the bus and back off."""
        handler.max_consecutive_errors = 3
        calls = []

        def failing_poll():
            calls.append(1)
            if len(calls) == 3:
                handler.running = False
            raise can.CanOperationError("Transmit buffer full")

        monkeypatch.setattr(handler, "poll_once", failing_poll)
        handler.running = True
        handler._worker_loop()

        assert len(calls) == 3
        bus.shutdown.assert_called_once()
        assert handler.source.is_open is False
        assert handler.hardware_available is False
        assert handler.backoff.consecutive_failures == 1
        assert handler.get_snapshot().metadata["consecutive_errors"] == 3

    @pytest.mark.unit
    def test_worker_survives_unexpected_error(self, handler, bus, monkeypatch, caplog):
        """Test a non-transport exception is logged and counted and polling continues."""
        calls = []

        def flaky_poll():
            calls.append(1)
            if len(calls) == 1:
                raise KeyError("engine_rpm")
            handler.running = False

        monkeypatch.setattr(handler, "poll_once", flaky_poll)
        handler.running = True
        with caplog.at_level(logging.ERROR, logger="obdcalc.obd2"):
            handler._worker_loop()

        assert len(calls) == 2
        assert "Unexpected error polling" in caplog.text
        assert handler.source.is_open
        assert handler.hardware_available is True
        assert handler.data_queue.get_nowait().metadata["consecutive_errors"] == 1
        assert handler.consecutive_errors == 0
        bus.shutdown.assert_not_called()

    @pytest.mark.unit
    def test_cleanup_closes_source(self, handler, bus):
        """Test cleanup() releases the bus."""
        handler.cleanup()
        bus.shutdown.assert_called_once()
        assert handler.source.is_open is False
