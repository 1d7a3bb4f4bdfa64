#!/usr/bin/env python3
"""Command line helpers for inspecting and watching segmented recordings."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from dataclasses import replace
from pathlib import Path
from typing import Iterable

from segmon.config import (
    SegmentConfig,
    SegmentConfigError,
    active_config_path,
    dev_mode,
    get_cfg,
    search_paths,
)
from segmon.monitor import SegmentMonitor, SwitchRequest
from segmon.naming import extract_base_identity, extract_segment_index, list_segments, next_segment_name


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose or dev_mode() else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Segment rollover monitor")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    watch = subparsers.add_parser(
        "watch",
        help="Watch a recording file and report when it should roll over",
    )
    watch.add_argument("file", type=Path, help="Recording file currently being written")
    watch.add_argument("--max-bytes", type=int, help="Override max_segment_size_bytes")
    watch.add_argument("--interval-ms", type=int, help="Override check_interval_ms")
    watch.add_argument("--ratio", type=float, help="Override trigger_threshold_ratio")
    watch.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )

    list_parser = subparsers.add_parser("list", help="List segments in a directory in order")
    list_parser.add_argument("directory", type=Path)
    list_parser.add_argument("--base", help="Only list segments with this base identity")
    list_parser.add_argument("--json", action="store_true", help="Emit JSON instead of text")

    next_parser = subparsers.add_parser("next", help="Print the segment name following NAME")
    next_parser.add_argument("name")
    next_parser.add_argument("--extension", help="Extension for the generated name")
    return parser


def _watch_config(args: argparse.Namespace) -> SegmentConfig:
    config = SegmentConfig.from_cfg(get_cfg())
    overrides: dict[str, object] = {}
    if args.max_bytes is not None:
        overrides["max_segment_size_bytes"] = args.max_bytes
    if args.interval_ms is not None:
        overrides["check_interval"] = args.interval_ms / 1000.0
    if args.ratio is not None:
        overrides["trigger_threshold_ratio"] = args.ratio
    return replace(config, **overrides) if overrides else config


def _cmd_watch(args: argparse.Namespace) -> int:
    log = logging.getLogger("segment_monitor")
    try:
        config = _watch_config(args)
    except SegmentConfigError as exc:
        print(f"Invalid segment settings: {exc}", file=sys.stderr)
        return 2

    stop_event = threading.Event()
    monitor = SegmentMonitor(config)

    def _on_switch(request: SwitchRequest) -> None:
        print(f"{request.current_file} -> {request.next_file_path}", flush=True)
        # The external writer is expected to follow the naming convention.
        monitor.update_current_file(request.next_file_path)

    def _handle_signal(signum: int, _: object) -> None:
        log.info("Received signal %s; shutting down", signum)
        stop_event.set()

    previous_handlers = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous_handlers[sig] = signal.signal(sig, _handle_signal)
        except ValueError:
            # Signal registration fails outside the main thread.
            pass

    monitor.start(args.file, _on_switch)
    try:
        stop_event.wait(args.duration)
    finally:
        monitor.stop()
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)
    return 0


def _cmd_list(args: argparse.Namespace) -> int:
    segments = list_segments(args.directory, base=args.base)
    if args.json:
        print(json.dumps([segment.to_dict() for segment in segments], indent=2))
        return 0
    for segment in segments:
        print(f"{segment.index:03d}\t{segment.base}\t{segment.path.name}")
    return 0


def _cmd_next(args: argparse.Namespace) -> int:
    extension = args.extension or SegmentConfig.from_cfg(get_cfg()).segment_extension
    name = Path(args.name).name
    print(next_segment_name(extract_base_identity(name), extract_segment_index(name), extension))
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    if args.command == "watch":
        return _cmd_watch(args)
    if args.command == "list":
        return _cmd_list(args)
    if args.command == "next":
        return _cmd_next(args)
    return 1


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)
    log = logging.getLogger("segment_monitor")
    log.debug("Config search paths: %s", ", ".join(str(path) for path in search_paths()))
    log.debug("Active config: %s", active_config_path() or "defaults only")
    return _dispatch(args)


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
