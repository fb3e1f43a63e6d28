#!/usr/bin/env python3
"""Diagnostic tail for one or more server logs.

Usage::

    logtrail-tail -file=server1.log -file=server2.log [-lines=10] [-f]

Prints the last N complete lines of each file as ``[<source>] <line>``, then,
with ``-f``, keeps following every file through rotation and truncation.
Exits non-zero if any file cannot be opened.
"""

import argparse
import logging
import os
import signal
import sys
import threading

from logtrail.coldstart import last_lines_offset
from logtrail.config import source_id_from_path
from logtrail.dispatcher import PendingLine
from logtrail.replay import ReplayEngine, iter_complete_lines
from logtrail.rotation import RotationDetector, RotationStatus
from logtrail.tailer import LiveTailer

logger = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="logtrail-tail",
        description="Tail game server logs",
        allow_abbrev=False,
    )
    parser.add_argument("-file", dest="files", action="append", default=[],
                        help="File to tail (repeatable, required)")
    parser.add_argument("-lines", type=int, default=10,
                        help="Number of lines to show initially (default: 10)")
    parser.add_argument("-f", dest="follow", action="store_true",
                        help="Follow the files (like tail -f)")
    return parser


class LinePrinter:
    """Serialises output from several tailer threads."""

    def __init__(self, stream=None):
        self._stream = stream or sys.stdout
        self._lock = threading.Lock()

    def print_line(self, source: str, line: str) -> None:
        with self._lock:
            self._stream.write(f"[{source}] {line}\n")
            self._stream.flush()

    def notice(self, text: str) -> None:
        with self._lock:
            self._stream.write(f"--- {text} ---\n")
            self._stream.flush()

    def emit(self, item: PendingLine) -> bool:
        if item.line is not None:
            self.print_line(item.source_id, item.line)
        return True


def backfill(path: str, count: int, printer: LinePrinter) -> int:
    """Print the last *count* non-blank complete lines. Returns the offset after them."""
    source = source_id_from_path(path)
    start = last_lines_offset(path, count)
    end = start
    with open(path, "rb") as fh:
        for end, text in iter_complete_lines(fh, start):
            if text.strip():
                printer.print_line(source, text)
    return end


def follow(paths: dict[str, int], printer: LinePrinter, shutdown: threading.Event,
           poll_interval: float = 0.1, identity_check_interval: float = 1.0) -> list[LiveTailer]:
    tailers = []
    for path, offset in paths.items():
        source = source_id_from_path(path)
        detector = RotationDetector(source)
        engine = ReplayEngine(source, path, None, None, detector)

        def on_reopen(status: RotationStatus, path=path):
            if status is RotationStatus.ROTATED:
                printer.notice(f"File replaced, resuming tail: {path}")
            else:
                printer.notice(f"File truncated, resuming tail: {path}")

        tailer = LiveTailer(
            source, path, printer.emit, engine, detector, shutdown,
            poll_interval=poll_interval,
            identity_check_interval=identity_check_interval,
            start_offset=offset,
            on_reopen=on_reopen,
        )
        tailer.start()
        tailers.append(tailer)
    return tailers


def main(argv: list[str] | None = None) -> int:
    parser = build_cli_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [LOGTRAIL] %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    if not args.files:
        print("Usage: logtrail-tail -file=path/to/file [-file=...] [-lines=10] [-f]", file=sys.stderr)
        parser.print_help(sys.stderr)
        return 1

    printer = LinePrinter()
    exit_code = 0
    positions: dict[str, int] = {}
    for path in args.files:
        abs_path = os.path.abspath(path)
        try:
            positions[abs_path] = backfill(abs_path, args.lines, printer)
        except OSError as e:
            print(f"failed to open file {path}: {e}", file=sys.stderr)
            exit_code = 1

    if not args.follow or not positions:
        return exit_code

    shutdown = threading.Event()

    def _signal_handler(signum, frame):
        shutdown.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    printer.notice("Following file(s) (Ctrl+C to exit)")
    tailers = follow(positions, printer, shutdown)
    try:
        while not shutdown.wait(0.5):
            pass
    except KeyboardInterrupt:
        shutdown.set()
    for tailer in tailers:
        tailer.join(timeout=2)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
