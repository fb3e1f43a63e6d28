"""SourceDispatcher: one ordered queue and one worker thread per source.

The tailer thread produces PendingLine items; the worker parses, hands the
event to the handler, then commits the checkpoint, strictly in order. Sources
never share a dispatcher, so a slow handler on one server cannot stall or
reorder another.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable

from logtrail.identity import StreamIdentity
from logtrail.offsets import OffsetStore
from logtrail.stats import SourceStats

logger = logging.getLogger(__name__)

POLICY_ADVANCE = "advance"
POLICY_BLOCK = "block"
HANDLER_ERROR_POLICIES = (POLICY_ADVANCE, POLICY_BLOCK)

Parser = Callable[[str, str], Any]
Handler = Callable[[Any, str], None]

_STOP = object()


@dataclass(frozen=True)
class PendingLine:
    source_id: str
    line: str | None          # None: checkpoint-only mark (rotation reset)
    offset: int               # byte offset just past this line
    identity: StreamIdentity | None = None
    replay: bool = False


class SourceDispatcher(threading.Thread):
    def __init__(
        self,
        source_id: str,
        source_path: str,
        parser: Parser,
        handler: Handler,
        store: OffsetStore | None,
        shutdown_event: threading.Event,
        queue_size: int = 1000,
        checkpoint_every: int = 1,
        handler_error_policy: str = POLICY_ADVANCE,
        handler_retry_interval: float = 1.0,
        stats: SourceStats | None = None,
    ):
        super().__init__(name=f"dispatch-{source_id}", daemon=True)
        if handler_error_policy not in HANDLER_ERROR_POLICIES:
            raise ValueError(f"unknown handler error policy: {handler_error_policy!r}")
        self._source_id = source_id
        self._source_path = source_path
        self._parser = parser
        self._handler = handler
        self._store = store
        self._shutdown = shutdown_event
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._checkpoint_every = max(1, checkpoint_every)
        self._policy = handler_error_policy
        self._retry_interval = handler_retry_interval
        self._stats = stats or SourceStats(source_id)
        self._abort = threading.Event()

        self._uncommitted = 0
        self._last_delivered: PendingLine | None = None
        self._committed_offset: int | None = None

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def stats(self) -> SourceStats:
        return self._stats

    @property
    def committed_offset(self) -> int | None:
        return self._committed_offset

    def qsize(self) -> int:
        return self._queue.qsize()

    def submit(self, item: PendingLine) -> bool:
        """Enqueue, blocking while the queue is full. False if shut down first."""
        while True:
            if self._shutdown.is_set() or self._abort.is_set():
                return False
            try:
                self._queue.put(item, timeout=0.2)
                return True
            except queue.Full:
                self._stats.record_backpressure()

    def close(self, timeout: float | None = None) -> None:
        """Stop accepting work, drain what is queued, flush the checkpoint."""
        while self.is_alive():
            try:
                self._queue.put(_STOP, timeout=0.2)
                break
            except queue.Full:
                if self._abort.is_set():
                    break
        self.join(timeout)
        if self.is_alive():
            logger.warning("[%s] Dispatcher did not drain within %.1fs (%d queued)",
                           self._source_id, timeout or 0, self._queue.qsize())

    def abort(self) -> None:
        """Stop without draining: blocked retries and producers give up."""
        self._abort.set()

    def run(self):
        try:
            while not self._abort.is_set():
                try:
                    item = self._queue.get(timeout=0.5)
                except queue.Empty:
                    continue
                if item is _STOP:
                    break
                self._process(item)
        finally:
            self._flush()
            logger.debug("[%s] Dispatcher stopped", self._source_id)

    def _process(self, item: PendingLine) -> None:
        if item.line is None:
            self._flush()
            self._commit(item)
            return

        event = None
        ok = True
        try:
            event = self._parser(item.line, self._source_id)
        except Exception as e:
            ok = False
            self._stats.record_parse_error(e)
            logger.warning("[%s] Parse error at offset %d, skipping line: %s | %r",
                           self._source_id, item.offset, e, item.line)

        if event is not None:
            delivered = self._deliver(event, item)
            if delivered is None:
                return
            ok = delivered
        if ok:
            self._stats.record_success()

        self._stats.record_line(item.replay, event is not None)
        self._last_delivered = item
        self._uncommitted += 1
        if item.replay or self._uncommitted >= self._checkpoint_every:
            self._flush()

    def _deliver(self, event, item: PendingLine) -> bool | None:
        """Hand the event to the handler.

        True on success, False if the handler failed and the policy advances
        anyway, None if the event was never delivered (block policy gave up).
        """
        while True:
            try:
                self._handler(event, self._source_path)
                return True
            except Exception as e:
                self._stats.record_handler_error(e)
                logger.error("[%s] Handler error at offset %d: %s | %r",
                             self._source_id, item.offset, e, item.line)
                if self._policy == POLICY_ADVANCE:
                    return False
            if self._shutdown.is_set() or self._abort.wait(self._retry_interval):
                logger.warning("[%s] Gave up retrying offset %d; checkpoint not advanced",
                               self._source_id, item.offset)
                # Later lines must not be committed past the undelivered one.
                self._abort.set()
                return None

    def _flush(self) -> None:
        if self._last_delivered is not None and self._uncommitted:
            self._commit(self._last_delivered)

    def _commit(self, item: PendingLine) -> None:
        self._uncommitted = 0
        if self._store is None:
            self._committed_offset = item.offset
            return
        if self._store.save(self._source_path, item.offset, item.identity):
            self._committed_offset = item.offset
        else:
            self._stats.record_checkpoint_failure()
