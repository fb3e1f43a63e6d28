"""Offset store: persists a byte-offset checkpoint per source file.

One small JSON record per source, named from the log file's base name so that
moving the log directory keeps history::

    <state_dir>/server1.log.offset.json
    {"offset": 18342, "file_id": 1311, "opened_at": "2025-11-10T20:58:31"}

Writes are atomic (tmp + fsync + os.replace). A failed save is logged and
reported to the caller; it never interrupts ingestion.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass

from logtrail.identity import StreamIdentity

logger = logging.getLogger(__name__)

CHECKPOINT_SUFFIX = ".offset.json"


@dataclass(frozen=True)
class Checkpoint:
    offset: int
    identity: StreamIdentity | None = None


class OffsetStore:
    def __init__(self, state_dir: str):
        self._state_dir = state_dir

    @property
    def state_dir(self) -> str:
        return self._state_dir

    def checkpoint_path(self, source_path: str) -> str:
        return os.path.join(self._state_dir, os.path.basename(source_path) + CHECKPOINT_SUFFIX)

    def load_checkpoint(self, source_path: str) -> Checkpoint | None:
        """Return the stored checkpoint, or None if absent or corrupt."""
        path = self.checkpoint_path(source_path)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            offset = int(data["offset"])
            if offset < 0:
                raise ValueError(f"negative offset {offset}")
            identity = None
            if data.get("file_id") is not None or data.get("opened_at"):
                identity = StreamIdentity.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring corrupt checkpoint %s: %s", path, e)
            return None
        return Checkpoint(offset=offset, identity=identity)

    def load(self, source_path: str) -> int:
        """Stored offset for *source_path*; 0 if absent or corrupt."""
        cp = self.load_checkpoint(source_path)
        return cp.offset if cp else 0

    def save(self, source_path: str, offset: int, identity: StreamIdentity | None = None) -> bool:
        """Durably persist the checkpoint before returning. Returns False on failure."""
        path = self.checkpoint_path(source_path)
        data = {"offset": offset}
        if identity is not None:
            data.update(identity.to_dict())

        try:
            os.makedirs(self._state_dir, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._state_dir, suffix=".tmp")
        except OSError as e:
            logger.error("Failed to save checkpoint %s (offset %d): %s", path, offset, e)
            return False
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError as e:
            if os.path.exists(tmp):
                os.unlink(tmp)
            logger.error("Failed to save checkpoint %s (offset %d): %s", path, offset, e)
            return False
        return True

    def reset(self, source_path: str, identity: StreamIdentity | None = None) -> bool:
        return self.save(source_path, 0, identity)
