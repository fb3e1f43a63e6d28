"""IngestService: one tailer thread and one dispatcher thread per source."""

import logging
import os
import threading
from dataclasses import dataclass

from logtrail.coldstart import ColdStartLocator
from logtrail.config import Config, SourceConfig, check_unique_names
from logtrail.dispatcher import Handler, Parser, SourceDispatcher
from logtrail.events import parse_line
from logtrail.notify import ChangeNotifier
from logtrail.offsets import OffsetStore
from logtrail.replay import ReplayEngine
from logtrail.rotation import RotationDetector
from logtrail.sink import JsonlEventSink
from logtrail.stats import StatsRegistry, StatsReporter
from logtrail.tailer import LiveTailer

logger = logging.getLogger(__name__)


@dataclass
class SourceWorkers:
    source: SourceConfig
    dispatcher: SourceDispatcher
    tailer: LiveTailer


class IngestService:
    def __init__(
        self,
        config: Config,
        parser: Parser = parse_line,
        handler: Handler | None = None,
        shutdown_event: threading.Event | None = None,
    ):
        self._config = config
        self._parser = parser
        self._handler = handler or JsonlEventSink(config.output_dir)
        self._shutdown = shutdown_event or threading.Event()
        self._store = OffsetStore(config.state_dir)
        self._stats = StatsRegistry(config.stats_file)
        self._reporter = StatsReporter(self._stats, config.stats_interval, self._shutdown)
        self._notifier = ChangeNotifier() if config.use_watchdog else None
        self._workers: dict[str, SourceWorkers] = {}
        self._excluded: list[SourceConfig] = []

    @property
    def stats(self) -> StatsRegistry:
        return self._stats

    @property
    def store(self) -> OffsetStore:
        return self._store

    @property
    def workers(self) -> dict[str, SourceWorkers]:
        return self._workers

    @property
    def excluded(self) -> list[SourceConfig]:
        return list(self._excluded)

    def _build(self, source: SourceConfig) -> SourceWorkers:
        cfg = self._config
        stats = self._stats.for_source(source.source_id)
        detector = RotationDetector(source.source_id)
        locator = None
        if cfg.cold_start.enabled:
            locator = ColdStartLocator(chunk_size=cfg.cold_start.chunk_size,
                                       stale_after=cfg.cold_start.stale_after)
        engine = ReplayEngine(source.source_id, source.path, self._store, locator, detector)
        dispatcher = SourceDispatcher(
            source.source_id,
            source.path,
            self._parser,
            self._handler,
            self._store,
            self._shutdown,
            queue_size=cfg.queue_size,
            checkpoint_every=cfg.checkpoint_every,
            handler_error_policy=cfg.handler_error_policy,
            handler_retry_interval=cfg.handler_retry_interval,
            stats=stats,
        )
        wake = self._notifier.register(source.path) if self._notifier else None
        tailer = LiveTailer(
            source.source_id,
            source.path,
            dispatcher.submit,
            engine,
            detector,
            self._shutdown,
            poll_interval=cfg.poll_interval,
            identity_check_interval=cfg.identity_check_interval,
            wake_event=wake,
            stats=stats,
        )
        return SourceWorkers(source, dispatcher, tailer)

    def start(self) -> list[str]:
        """Start every resolvable source. Returns the ids that started.

        Raises ConfigError if two sources share a log file name.
        """
        check_unique_names(self._config.sources)
        for source in self._config.sources:
            if not os.path.isfile(source.path):
                logger.error("Source %s: %s does not exist or is not a file, excluded",
                             source.source_id, source.path)
                self._excluded.append(source)
                continue
            workers = self._build(source)
            workers.dispatcher.start()
            workers.tailer.start()
            self._workers[source.source_id] = workers
            logger.info("Source %s: following %s", source.source_id, source.path)

        if self._notifier and self._workers:
            try:
                self._notifier.start()
            except OSError as e:
                logger.warning("File notifications unavailable, polling only: %s", e)
                self._notifier = None
        self._reporter.start()
        return list(self._workers)

    def stop(self, timeout: float = 10.0) -> None:
        """Stop tailers, drain dispatchers, flush checkpoints and stats."""
        self._shutdown.set()
        if self._notifier:
            self._notifier.wake_all()
        for workers in self._workers.values():
            workers.tailer.join(timeout)
        for workers in self._workers.values():
            workers.dispatcher.close(timeout)
        if self._notifier:
            self._notifier.stop()
        self._reporter.stop()
        logger.info("Stopped %d source(s)", len(self._workers))
