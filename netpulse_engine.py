#!/usr/bin/env python3
"""
NetPulse engine - command-line front end.

Drives the engine from a terminal and prints the same JSON envelopes the
desktop UI receives:

    netpulse-engine info
    netpulse-engine speedtest
    netpulse-engine traffic --duration 30
    netpulse-engine settings --set traffic_interval_seconds=5
"""
import argparse
import json
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from app.controller import EngineController
from app.dependencies import create_dependencies
from app.events import EventBus
from config import STORAGE, ConfigurationError, get_logger, setup_logging

VERSION = "1.0.0"

logger = get_logger(__name__)


def _print_envelope(envelope: dict) -> int:
    print(json.dumps(envelope, indent=2, sort_keys=True))
    return 1 if "error" in envelope else 0


def _parse_value(raw: str):
    for cast in (int, float):
        try:
            return cast(raw)
        except ValueError:
            continue
    return raw


def cmd_info(controller: EngineController, args: argparse.Namespace) -> int:
    return _print_envelope(controller.get_network_info())


def cmd_speedtest(controller: EngineController, args: argparse.Namespace) -> int:
    def progress(phase: str, value: Optional[float]) -> None:
        if value is None:
            print(f"[{phase}]", file=sys.stderr)
        elif not args.quiet:
            print(f"  {phase}: {value:.2f} Mbps", file=sys.stderr)

    return _print_envelope(controller.run_speed_test(on_progress=progress))


def cmd_traffic(controller: EngineController, args: argparse.Namespace) -> int:
    stop_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, stopping traffic monitoring...")
        stop_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    if args.seed:
        controller.get_network_info()

    controller.start_traffic_monitoring()
    try:
        stop_event.wait(args.duration)
    finally:
        controller.stop_traffic_monitoring()
    return _print_envelope(controller.get_traffic_data())


def cmd_settings(controller: EngineController, args: argparse.Namespace) -> int:
    manager = controller.deps.settings
    if args.reset:
        manager.reset()
    changes = {}
    for item in args.set or []:
        key, sep, raw = item.partition("=")
        if not sep:
            return _print_envelope({"error": f"Expected key=value, got {item!r}",
                                    "code": "ConfigurationError"})
        changes[key.strip()] = _parse_value(raw.strip())
    if changes:
        try:
            manager.update(**changes)
        except ConfigurationError as e:
            return _print_envelope({"error": e.message, "code": type(e).__name__})
    return _print_envelope({"data": manager.settings.to_dict()})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="netpulse-engine",
        description="NetPulse - LAN discovery, speed test and traffic estimation",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help=f"Data directory (default: ~/{STORAGE.DATA_DIR_NAME})")

    subparsers = parser.add_subparsers(dest="command", required=True)

    info = subparsers.add_parser("info", help="Public IP, interfaces, host stats and LAN devices")
    info.set_defaults(func=cmd_info)

    speedtest = subparsers.add_parser("speedtest", help="Measure ping, download and upload")
    speedtest.add_argument("-q", "--quiet", action="store_true",
                           help="Only report phase changes, not live samples")
    speedtest.set_defaults(func=cmd_speedtest)

    traffic = subparsers.add_parser("traffic", help="Sample per-IP traffic for a while")
    traffic.add_argument("--duration", type=float, default=30.0,
                         help="Seconds to sample before printing the table (default: 30)")
    traffic.add_argument("--seed", action="store_true",
                         help="Discover LAN devices first so they appear in the table")
    traffic.set_defaults(func=cmd_traffic)

    settings = subparsers.add_parser("settings", help="Show or change engine settings")
    settings.add_argument("--set", action="append", metavar="KEY=VALUE",
                          help="Change a setting (repeatable)")
    settings.add_argument("--reset", action="store_true", help="Restore defaults")
    settings.set_defaults(func=cmd_settings)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the command-line front end."""
    args = build_parser().parse_args(argv)

    data_dir = args.data_dir or Path.home() / STORAGE.DATA_DIR_NAME
    setup_logging(data_dir=data_dir, debug=args.debug, console_output=True)
    logger.info(f"NetPulse engine {VERSION} starting ({args.command})")

    bus = EventBus(async_mode=False)
    controller = EngineController(create_dependencies(data_dir=data_dir, event_bus=bus))
    try:
        return args.func(controller, args)
    finally:
        controller.shutdown()


if __name__ == "__main__":
    sys.exit(main())
