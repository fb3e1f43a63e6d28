"""Stream identity: decides whether the file at a path is still the same stream.

Two independent signals are combined:

- the platform file id (``st_ino`` on POSIX, the file index Python exposes as
  ``st_ino`` on Windows) when the filesystem reports a nonzero value;
- the creation timestamp the game server writes as the first record of every
  log file: ``Log file open, 11/10/25 20:58:31``.

Either signal mismatching means a different stream now occupies the path.
"""

import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger(__name__)

LOG_OPEN_PATTERN = re.compile(r"Log file open,\s+(\d{2}/\d{2}/\d{2}\s+\d{2}:\d{2}:\d{2})")
LOG_OPEN_FORMAT = "%m/%d/%y %H:%M:%S"

# The first line is short; never read more than this looking for it.
FIRST_LINE_LIMIT = 4096


@dataclass(frozen=True)
class StreamIdentity:
    file_id: int | None = None
    opened_at: datetime | None = None

    def differs_from(self, other: "StreamIdentity | None") -> bool:
        """True if any signal known on both sides disagrees."""
        if other is None:
            return False
        if self.file_id is not None and other.file_id is not None and self.file_id != other.file_id:
            return True
        if self.opened_at is not None and other.opened_at is not None and self.opened_at != other.opened_at:
            return True
        return False

    def to_dict(self) -> dict:
        return {
            "file_id": self.file_id,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "StreamIdentity":
        opened_at = d.get("opened_at")
        file_id = d.get("file_id")
        return cls(
            file_id=int(file_id) if file_id is not None else None,
            opened_at=datetime.fromisoformat(opened_at) if opened_at else None,
        )


def file_id_from_stat(st: os.stat_result) -> int | None:
    """Return the native file id, or None where the platform reports none."""
    return st.st_ino or None


def parse_opened_at(line: str) -> datetime | None:
    """Parse the ``Log file open`` marker from a first line."""
    line = line.lstrip("\ufeff").strip()
    m = LOG_OPEN_PATTERN.search(line)
    if not m:
        return None
    try:
        return datetime.strptime(" ".join(m.group(1).split()), LOG_OPEN_FORMAT)
    except ValueError:
        logger.debug("Unparseable log open timestamp: %r", line)
        return None


def read_opened_at(fh) -> datetime | None:
    """Read the creation timestamp from the first line of a binary handle.

    The handle position is restored afterwards. An unterminated first line is
    still parsed: the marker is written in one piece by the server.
    """
    pos = fh.tell()
    try:
        fh.seek(0)
        first = fh.readline(FIRST_LINE_LIMIT)
    finally:
        fh.seek(pos)
    if not first:
        return None
    return parse_opened_at(first.decode("utf-8", errors="replace"))


def identity_of(fh) -> StreamIdentity:
    """Identity of an open binary handle."""
    st = os.fstat(fh.fileno())
    return StreamIdentity(file_id=file_id_from_stat(st), opened_at=read_opened_at(fh))


def identity_of_path(path: str) -> tuple[StreamIdentity, int]:
    """Identity and size of whatever file currently sits at *path*.

    Raises FileNotFoundError (or another OSError) if the path cannot be opened.
    """
    with open(path, "rb") as fh:
        st = os.fstat(fh.fileno())
        return StreamIdentity(file_id=file_id_from_stat(st), opened_at=read_opened_at(fh)), st.st_size
