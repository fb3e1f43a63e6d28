"""Replay engine: bring a source from its resume point up to the current EOF.

The resume point is the stored checkpoint when it still belongs to the file
at the path, 0 after a rotation or truncation, and the cold-start location
when no checkpoint exists. Only newline-terminated lines are replayed; an
unterminated last line is left for the tailer to pick up once complete.
"""

import logging
import os
from dataclasses import dataclass
from typing import Callable, Iterator

from logtrail.coldstart import ColdStartLocator
from logtrail.dispatcher import PendingLine
from logtrail.identity import StreamIdentity, identity_of
from logtrail.offsets import OffsetStore
from logtrail.rotation import RotationDetector, RotationStatus

logger = logging.getLogger(__name__)

Emit = Callable[[PendingLine], bool]


@dataclass(frozen=True)
class ResumePoint:
    offset: int
    identity: StreamIdentity
    reason: str
    reset: bool = False     # stored checkpoint must be rewritten before replay


def iter_complete_lines(fh, start: int) -> Iterator[tuple[int, str]]:
    """Yield ``(next_offset, text)`` for each complete line from *start*.

    Stops at EOF or before an unterminated line. ``text`` has its line
    terminator removed and is decoded as UTF-8 with replacement.
    """
    fh.seek(start)
    offset = start
    while True:
        raw = fh.readline()
        if not raw or not raw.endswith(b"\n"):
            return
        offset += len(raw)
        yield offset, raw.decode("utf-8", errors="replace").rstrip("\r\n")


class ReplayEngine:
    def __init__(
        self,
        source_id: str,
        source_path: str,
        store: OffsetStore | None,
        locator: ColdStartLocator | None,
        detector: RotationDetector,
    ):
        self._source_id = source_id
        self._path = source_path
        self._store = store
        self._locator = locator
        self._detector = detector

    def resume_point(self, fh) -> ResumePoint:
        """Decide where reading the freshly opened *fh* should begin."""
        identity = identity_of(fh)
        size = os.fstat(fh.fileno()).st_size
        checkpoint = self._store.load_checkpoint(self._path) if self._store else None

        if checkpoint is None:
            if self._locator is None:
                return ResumePoint(0, identity, "no_checkpoint", reset=True)
            found = self._locator.find(self._path)
            return ResumePoint(min(found.offset, size), identity, f"cold_start:{found.reason}", reset=True)

        status = self._detector.classify(checkpoint.identity, identity, size, checkpoint.offset)
        if status is not RotationStatus.UNCHANGED:
            logger.info("[%s] Stored offset %d does not match current file (%s), replaying from 0",
                        self._source_id, checkpoint.offset, status.value)
            return ResumePoint(0, identity, status.value, reset=True)

        return ResumePoint(checkpoint.offset, identity, "checkpoint")

    def resume_point_at(self, fh, offset: int) -> ResumePoint:
        """Resume point for an explicitly chosen offset, bypassing the checkpoint."""
        return ResumePoint(offset, identity_of(fh), "explicit")

    def replay(self, fh, start: int, identity: StreamIdentity | None, emit: Emit,
               replay: bool = True) -> int:
        """Emit every complete line from *start* to EOF. Returns the next offset.

        If *emit* refuses a line (shutdown), the returned offset is the start of
        that line so nothing is skipped.
        """
        offset = start
        count = 0
        for next_offset, text in iter_complete_lines(fh, start):
            if not text.strip():
                offset = next_offset
                continue
            item = PendingLine(self._source_id, text, next_offset, identity, replay)
            if not emit(item):
                break
            offset = next_offset
            count += 1
        if replay and count:
            logger.info("[%s] Replayed %d lines (%d -> %d)", self._source_id, count, start, offset)
        return offset
