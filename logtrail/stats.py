"""Per-source counters and health, with a periodic JSON snapshot."""

import json
import logging
import os
import tempfile
import threading
import time
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_ERRORS = 5


class SourceStats:
    """Thread-safe counters for one source.

    A source turns unhealthy after MAX_CONSECUTIVE_ERRORS parse or handler
    errors in a row and recovers on the next clean line.
    """

    def __init__(self, source_id: str):
        self._source_id = source_id
        self._lock = threading.Lock()
        self._lines_replayed = 0
        self._lines_live = 0
        self._events = 0
        self._parse_errors = 0
        self._handler_errors = 0
        self._checkpoint_failures = 0
        self._backpressure_waits = 0
        self._rotations = 0
        self._truncations = 0
        self._consecutive_errors = 0
        self._healthy = True
        self._last_error: str | None = None
        self._state = "starting"

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def healthy(self) -> bool:
        with self._lock:
            return self._healthy

    def record_line(self, replay: bool, had_event: bool):
        with self._lock:
            if replay:
                self._lines_replayed += 1
            else:
                self._lines_live += 1
            if had_event:
                self._events += 1

    def record_success(self):
        with self._lock:
            if self._consecutive_errors and not self._healthy:
                logger.info("[%s] Recovered after %d consecutive errors",
                            self._source_id, self._consecutive_errors)
            self._consecutive_errors = 0
            self._healthy = True

    def record_parse_error(self, err: Exception):
        with self._lock:
            self._parse_errors += 1
            self._error(err)

    def record_handler_error(self, err: Exception):
        with self._lock:
            self._handler_errors += 1
            self._error(err)

    def _error(self, err: Exception):
        self._consecutive_errors += 1
        self._last_error = f"{type(err).__name__}: {err}"
        if self._healthy and self._consecutive_errors >= MAX_CONSECUTIVE_ERRORS:
            self._healthy = False
            logger.warning("[%s] Marked unhealthy after %d consecutive errors (last: %s)",
                           self._source_id, self._consecutive_errors, self._last_error)

    def record_checkpoint_failure(self):
        with self._lock:
            self._checkpoint_failures += 1

    def record_backpressure(self):
        with self._lock:
            self._backpressure_waits += 1

    def record_rotation(self):
        with self._lock:
            self._rotations += 1

    def record_truncation(self):
        with self._lock:
            self._truncations += 1

    def set_state(self, state: str):
        with self._lock:
            self._state = state

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "state": self._state,
                "healthy": self._healthy,
                "lines_replayed": self._lines_replayed,
                "lines_live": self._lines_live,
                "events": self._events,
                "parse_errors": self._parse_errors,
                "handler_errors": self._handler_errors,
                "checkpoint_failures": self._checkpoint_failures,
                "backpressure_waits": self._backpressure_waits,
                "rotations": self._rotations,
                "truncations": self._truncations,
                "consecutive_errors": self._consecutive_errors,
                "last_error": self._last_error,
            }


class StatsRegistry:
    def __init__(self, path: str | None = None):
        self._path = path
        self._sources: dict[str, SourceStats] = {}
        self._lock = threading.Lock()
        self._start_time = time.time()

    def for_source(self, source_id: str) -> SourceStats:
        with self._lock:
            if source_id not in self._sources:
                self._sources[source_id] = SourceStats(source_id)
            return self._sources[source_id]

    def get_all(self) -> dict:
        with self._lock:
            sources = dict(self._sources)
        return {
            "sources": {sid: s.snapshot() for sid, s in sorted(sources.items())},
            "uptime_seconds": round(time.time() - self._start_time, 1),
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }

    def save(self) -> None:
        if not self._path:
            return
        directory = os.path.dirname(self._path) or "."
        os.makedirs(directory, exist_ok=True)
        data = self.get_all()
        fd, tmp = tempfile.mkstemp(dir=directory)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self._path)
        except Exception:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise


class StatsReporter:
    """Background thread that periodically writes the stats snapshot."""

    def __init__(self, registry: StatsRegistry, interval: float, shutdown_event: threading.Event):
        self._registry = registry
        self._interval = interval
        self._shutdown = shutdown_event
        self._thread: threading.Thread | None = None

    def start(self):
        self._thread = threading.Thread(target=self._report_loop, name="stats-reporter", daemon=True)
        self._thread.start()

    def stop(self):
        if self._thread:
            self._thread.join(timeout=5)
        self._save()

    def _report_loop(self):
        while not self._shutdown.wait(self._interval):
            self._save()

    def _save(self):
        try:
            self._registry.save()
        except OSError as e:
            logger.warning("Failed to write stats snapshot: %s", e)
