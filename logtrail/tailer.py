"""LiveTailer: follows one source past EOF and survives rotation and truncation.

States::

    STARTING --open+replay--> FOLLOWING --rotated/truncated--> REOPENING
    REOPENING --reopen+replay from 0--> FOLLOWING
    any --shutdown--> CLOSED

While FOLLOWING with no new data the tailer sleeps ``poll_interval`` (or until
woken by the change notifier) and independently re-checks the file identity
every ``identity_check_interval`` seconds.
"""

import dataclasses
import logging
import os
import threading
import time
from enum import Enum
from typing import Callable

from logtrail.dispatcher import PendingLine
from logtrail.replay import Emit, ReplayEngine
from logtrail.rotation import RotationCheck, RotationDetector, RotationStatus
from logtrail.stats import SourceStats

logger = logging.getLogger(__name__)

# Longest a waiting tailer goes without looking at the shutdown event.
SHUTDOWN_CHECK_INTERVAL = 0.1


class TailState(Enum):
    STARTING = "starting"
    FOLLOWING = "following"
    REOPENING = "reopening"
    CLOSED = "closed"


class LiveTailer(threading.Thread):
    def __init__(
        self,
        source_id: str,
        path: str,
        emit: Emit,
        engine: ReplayEngine,
        detector: RotationDetector,
        shutdown_event: threading.Event,
        poll_interval: float = 0.2,
        identity_check_interval: float = 1.0,
        wake_event: threading.Event | None = None,
        start_offset: int | None = None,
        stats: SourceStats | None = None,
        on_reopen: Callable[[RotationStatus], None] | None = None,
    ):
        super().__init__(name=f"tail-{source_id}", daemon=True)
        self._source_id = source_id
        self._path = path
        self._emit = emit
        self._engine = engine
        self._detector = detector
        self._shutdown = shutdown_event
        self._poll_interval = poll_interval
        self._check_interval = identity_check_interval
        self._wake = wake_event or threading.Event()
        self._start_offset = start_offset
        self._stats = stats or SourceStats(source_id)
        self._on_reopen = on_reopen

        self._file = None
        self._identity = None
        self._position = 0
        self._last_size = 0
        self._missing = False
        self._state = TailState.STARTING

    @property
    def state(self) -> TailState:
        return self._state

    @property
    def position(self) -> int:
        return self._position

    def _set_state(self, state: TailState):
        if state is not self._state:
            logger.debug("[%s] %s -> %s", self._source_id, self._state.value, state.value)
        self._state = state
        self._stats.set_state(state.value)

    def run(self):
        try:
            if self._open_initial():
                self._follow()
        except Exception:
            logger.exception("[%s] Tailer for %s crashed", self._source_id, self._path)
        finally:
            self._close_file()
            self._set_state(TailState.CLOSED)

    def _open_initial(self) -> bool:
        """Wait for the file, open it and replay up to EOF."""
        while not self._shutdown.is_set():
            try:
                self._file = open(self._path, "rb")
                break
            except FileNotFoundError:
                if not self._missing:
                    logger.warning("[%s] Waiting for %s to appear...", self._source_id, self._path)
                    self._missing = True
            except OSError as e:
                logger.warning("[%s] Cannot open %s, retrying: %s", self._source_id, self._path, e)
            self._wait(self._check_interval)
        if self._shutdown.is_set():
            return False
        self._missing = False

        if self._start_offset is not None:
            size = os.fstat(self._file.fileno()).st_size
            point = self._engine.resume_point_at(self._file, min(self._start_offset, size))
        else:
            point = self._engine.resume_point(self._file)
        self._identity = point.identity
        logger.info("[%s] Opened %s at offset %d (%s)", self._source_id, self._path, point.offset, point.reason)

        if point.reset and not self._emit(PendingLine(self._source_id, None, point.offset, point.identity)):
            return False
        self._position = self._engine.replay(self._file, point.offset, self._identity, self._emit)
        self._last_size = os.fstat(self._file.fileno()).st_size
        return not self._shutdown.is_set()

    def _follow(self):
        self._set_state(TailState.FOLLOWING)
        last_check = time.monotonic()
        while not self._shutdown.is_set():
            got_data = self._read_available()

            now = time.monotonic()
            if now - last_check >= self._check_interval:
                last_check = now
                self._check_identity()
                continue

            if not got_data:
                self._wait(self._poll_interval)

    def _wait(self, timeout: float):
        """Sleep until *timeout*, a wake-up, or shutdown, whichever comes first."""
        deadline = time.monotonic() + timeout
        while not self._shutdown.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0 or self._wake.wait(min(remaining, SHUTDOWN_CHECK_INTERVAL)):
                break
        self._wake.clear()

    def _read_available(self) -> bool:
        """Emit complete lines past the current position. True if it advanced."""
        if self._file is None:
            return False
        try:
            new_position = self._engine.replay(self._file, self._position, self._identity,
                                               self._emit, replay=False)
        except OSError as e:
            logger.warning("[%s] Read error on %s at offset %d, retrying: %s",
                           self._source_id, self._path, self._position, e)
            return False
        advanced = new_position != self._position
        self._position = new_position
        return advanced

    def _check_identity(self):
        check = self._detector.check(self._path, self._identity, max(self._last_size, self._position))
        if check.status is RotationStatus.MISSING:
            if not self._missing:
                logger.warning("[%s] %s disappeared; waiting for it to come back",
                               self._source_id, self._path)
                self._missing = True
            return

        if self._missing:
            logger.info("[%s] %s is back", self._source_id, self._path)
            self._missing = False

        if check.needs_reopen or self._file is None:
            self._reopen(check)
            return

        current = check.identity
        if current.opened_at is None and self._identity is not None and self._identity.opened_at:
            current = dataclasses.replace(current, opened_at=self._identity.opened_at)
        self._identity = current
        self._last_size = check.size

    def _reopen(self, check: RotationCheck):
        self._set_state(TailState.REOPENING)
        if check.status is RotationStatus.ROTATED:
            self._stats.record_rotation()
            # Lines written to the old file before the switch still belong to it.
            self._read_available()
        elif check.status is RotationStatus.TRUNCATED:
            self._stats.record_truncation()

        self._close_file()
        try:
            self._file = open(self._path, "rb")
        except OSError as e:
            logger.warning("[%s] Reopen of %s failed, will retry: %s", self._source_id, self._path, e)
            self._set_state(TailState.FOLLOWING)
            return

        point = self._engine.resume_point_at(self._file, 0)
        self._identity = point.identity
        self._position = 0
        if not self._emit(PendingLine(self._source_id, None, 0, self._identity)):
            return
        if self._on_reopen is not None:
            self._on_reopen(check.status)
        self._position = self._engine.replay(self._file, 0, self._identity, self._emit)
        self._last_size = os.fstat(self._file.fileno()).st_size
        logger.info("[%s] Reopened %s after %s, now at offset %d",
                    self._source_id, self._path, check.status.value, self._position)
        self._set_state(TailState.FOLLOWING)

    def _close_file(self):
        if self._file is not None:
            try:
                self._file.close()
            except OSError as e:
                logger.debug("[%s] Error closing %s: %s", self._source_id, self._path, e)
            self._file = None
