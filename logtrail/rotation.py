"""Rotation detection: is the file at a path still the stream we were reading?

Identity is compared before size, so a replacement file that happens to be
shorter than the old one is reported as ROTATED rather than TRUNCATED.

Where the filesystem reports no file id, only the ``Log file open`` timestamp
and size shrink remain; a replacement that keeps both the timestamp line
(or has none) and a size at least as large as before goes unnoticed. This
is logged once per detector.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from logtrail.identity import StreamIdentity, identity_of_path

logger = logging.getLogger(__name__)


class RotationStatus(Enum):
    UNCHANGED = "unchanged"
    ROTATED = "rotated"
    TRUNCATED = "truncated"
    MISSING = "missing"


@dataclass(frozen=True)
class RotationCheck:
    status: RotationStatus
    identity: StreamIdentity | None = None
    size: int = 0

    @property
    def needs_reopen(self) -> bool:
        return self.status in (RotationStatus.ROTATED, RotationStatus.TRUNCATED)


class RotationDetector:
    def __init__(self, source_id: str):
        self._source_id = source_id
        self._warned_degraded = False

    def check(self, path: str, previous: StreamIdentity | None, last_size: int) -> RotationCheck:
        """Compare the file currently at *path* with the recorded identity and size."""
        try:
            current, size = identity_of_path(path)
        except FileNotFoundError:
            return RotationCheck(RotationStatus.MISSING)
        except OSError as e:
            logger.warning("[%s] Cannot stat %s: %s", self._source_id, path, e)
            return RotationCheck(RotationStatus.MISSING)

        return RotationCheck(self.classify(previous, current, size, last_size), current, size)

    def classify(self, previous: StreamIdentity | None, current: StreamIdentity,
                 size: int, last_size: int) -> RotationStatus:
        if current.file_id is None and not self._warned_degraded:
            self._warned_degraded = True
            logger.info("[%s] No native file id available; rotation detection uses "
                        "log open timestamp and size shrink only", self._source_id)

        if current.differs_from(previous):
            logger.info("[%s] Log rotation detected (identity %s -> %s)",
                        self._source_id, _describe(previous), _describe(current))
            return RotationStatus.ROTATED

        if size < last_size:
            logger.info("[%s] Log truncation detected (size %d < %d)",
                        self._source_id, size, last_size)
            return RotationStatus.TRUNCATED

        return RotationStatus.UNCHANGED


def _describe(identity: StreamIdentity | None) -> str:
    if identity is None:
        return "unknown"
    opened = identity.opened_at.strftime("%Y-%m-%d %H:%M:%S") if identity.opened_at else "-"
    return f"id={identity.file_id} opened={opened}"
