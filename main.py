#!/usr/bin/env python3
"""
obdcalc - OBD-II response decoder
Decodes raw PID response frames into engine and body readings.

Commands:
    decode PID HEX...   Decode one frame given as hex bytes
    list                Show the supported PIDs
    poll                Poll the configured PIDs over CAN and print them
"""

import argparse
import logging
import sys
import time

from config import (
    APP_VERSION,
    DISPLAY_INTERVAL_S,
    OBD_BITRATE,
    OBD_CHANNEL,
    OBD_INTERFACE,
    READING_STALE_AFTER_S,
    SETTINGS_FILE,
    TELEMETRY_DIR,
)
from core.decoders import default_registry, parse_hex_frame
from core.models import DecodeError
from core.presenter import ConsolePresenter
from hardware.obd2_handler import CanFrameSource, OBD2Handler, resolve_pid_identifiers
from utils.settings import get_settings
from utils.telemetry_recorder import ReadingRecord, TelemetryRecorder

logger = logging.getLogger('obdcalc.main')


def setup_logging(verbose: bool = False):
    """Log to stderr so decoded output on stdout stays clean."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )


def cmd_decode(args, out) -> int:
    """Decode a single frame and print its display string."""
    try:
        frame = parse_hex_frame(" ".join(args.frame))
        text = default_registry.describe(args.pid, frame)
    except DecodeError as e:
        logger.error("Decode failed: %s", e)
        return 1

    print(text, file=out)
    return 0


def cmd_list(args, out) -> int:
    """Print the PID table."""
    for pid in default_registry.pids():
        spec = default_registry.resolve(pid)
        formula = (spec.decode.__doc__ or "").strip().splitlines()[0]
        unit = spec.unit or "-"
        print(f"{pid.value:<22} {unit:<5} {formula}", file=out)
    return 0


def resolve_can_options(args, settings):
    """Channel, interface and bitrate: flags, then the settings file, then config."""
    channel = args.channel or settings.get_str("can.channel", OBD_CHANNEL)
    interface = args.interface or settings.get_str("can.interface", OBD_INTERFACE)
    bitrate = args.bitrate or settings.get_int("can.bitrate", OBD_BITRATE)
    return channel, interface, bitrate


def cmd_poll(args, out) -> int:
    """Poll over CAN until interrupted or the duration expires."""
    settings = get_settings()
    identifiers = resolve_pid_identifiers(settings)
    if not identifiers:
        logger.error("No PID identifiers configured; add them under \"pids\" in %s", SETTINGS_FILE)
        return 1

    channel, interface, bitrate = resolve_can_options(args, settings)
    source = CanFrameSource(channel=channel, interface=interface, bitrate=bitrate)
    handler = OBD2Handler(source=source, identifiers=identifiers)
    presenter = ConsolePresenter(out)
    recorder = TelemetryRecorder(args.record) if args.record else None
    recorded_at = {}

    if recorder:
        recorder.start_recording()
    handler.start()
    started = time.time()

    try:
        while args.duration is None or time.time() - started < args.duration:
            time.sleep(args.interval)

            snapshot = handler.get_snapshot()
            if snapshot and not snapshot.metadata.get('hardware_available'):
                logger.info("Waiting for %s...", channel)

            presenter.show_cache(handler.cache, handler.polled_pids, READING_STALE_AFTER_S)
            print(file=out)

            if recorder:
                for pid, entry in handler.cache.snapshot().items():
                    if recorded_at.get(pid) == entry.timestamp:
                        continue
                    recorded_at[pid] = entry.timestamp
                    text = default_registry.format(entry.reading)
                    recorder.record(ReadingRecord.from_reading(entry.reading, text, entry.timestamp))
    except KeyboardInterrupt:
        pass
    finally:
        handler.cleanup()
        if recorder:
            recorder.stop_recording()
            path = recorder.save()
            if path:
                print(f"Saved readings to {path}", file=out)

    return 0


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="obdcalc - decode OBD-II PID response frames"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    decode_parser = subparsers.add_parser("decode", help="Decode a single response frame")
    decode_parser.add_argument("pid", help="PID name, e.g. engine_rpm")
    decode_parser.add_argument(
        "frame",
        nargs="+",
        help="Frame bytes in hex, e.g. 07 62 11 22 1A F4",
    )
    decode_parser.set_defaults(handler=cmd_decode)

    list_parser = subparsers.add_parser("list", help="List supported PIDs")
    list_parser.set_defaults(handler=cmd_list)

    poll_parser = subparsers.add_parser("poll", help="Poll configured PIDs over CAN")
    poll_parser.add_argument("--channel", help=f"CAN channel (default {OBD_CHANNEL})")
    poll_parser.add_argument("--interface", help=f"python-can interface (default {OBD_INTERFACE})")
    poll_parser.add_argument("--bitrate", type=int, help=f"CAN bitrate (default {OBD_BITRATE})")
    poll_parser.add_argument(
        "--interval",
        type=float,
        default=DISPLAY_INTERVAL_S,
        help="Seconds between console refreshes",
    )
    poll_parser.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")
    poll_parser.add_argument(
        "--record",
        nargs="?",
        const=TELEMETRY_DIR,
        default=None,
        metavar="DIR",
        help=f"Record readings to CSV (default directory {TELEMETRY_DIR})",
    )
    poll_parser.set_defaults(handler=cmd_poll)

    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    return args.handler(args, sys.stdout)


if __name__ == "__main__":
    sys.exit(main())
