#!/usr/bin/env python3
"""logtrail ingestion service: entry point."""

import argparse
import logging
import signal
import sys
import threading

from logtrail.config import ConfigError, load_config, load_yaml_config
from logtrail.service import IngestService

logger = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Follow game server logs and ingest events")
    parser.add_argument(
        "--config", default=None,
        help="Path to YAML config file",
    )
    parser.add_argument(
        "--log-files", nargs="+", default=None,
        help="Log files to follow (overrides sources from the config file)",
    )
    parser.add_argument(
        "--log-dir", action="append", default=None,
        help="Directory whose *.log files are followed (repeatable)",
    )
    parser.add_argument(
        "--state-dir", default=None,
        help="Directory for checkpoint files (default: state/)",
    )
    parser.add_argument(
        "--output-dir", default=None,
        help="Directory for JSON-lines event output (default: events/)",
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_cli_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [LOGTRAIL] %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_config(args, load_yaml_config(args.config))
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    if not config.sources:
        logger.error("No sources configured (use --log-files, --log-dir or a config file)")
        return 2

    logger.info("Config: %d source(s), state_dir=%s, poll=%.2fs, identity check=%.1fs, "
                "queue=%d, handler errors=%s",
                len(config.sources), config.state_dir, config.poll_interval,
                config.identity_check_interval, config.queue_size, config.handler_error_policy)

    shutdown = threading.Event()

    def _signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    service = IngestService(config, shutdown_event=shutdown)
    started = service.start()
    if not started:
        logger.error("No source could be started")
        service.stop()
        return 1

    logger.info("logtrail running with %d source(s). Press Ctrl+C to stop.", len(started))
    try:
        while not shutdown.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass

    logger.info("Shutting down...")
    service.stop()
    for sid, snap in service.stats.get_all()["sources"].items():
        logger.info("Source %s: %d replayed, %d live, %d events, %d parse errors, %d handler errors",
                    sid, snap["lines_replayed"], snap["lines_live"], snap["events"],
                    snap["parse_errors"], snap["handler_errors"])
    logger.info("logtrail stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
