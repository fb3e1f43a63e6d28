"""Cold-start locator: find where to resume a source that has no checkpoint.

Replaying a long-running server's log from byte 0 would rebuild every match
the server ever played. Instead the file is scanned backwards from EOF for the
most recent runtime map transition (``ProcessServerTravel``); reaching the
server-startup map load (``LogLoad: LoadMap``) first ends the scan there,
since nothing older belongs to the current match. The offset of the line found
becomes the resumption point, or 0 when neither marker exists.

Reverse reading is done in buffered chunks, never byte by byte, and never
loads the whole file.
"""

import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Iterator

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

MAP_TRAVEL_PATTERN = re.compile(rb"\]LogGameMode: ProcessServerTravel: ")
MAP_LOAD_PATTERN = re.compile(rb"\]LogLoad: LoadMap: ")


def reverse_lines(fh, end: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[tuple[int, bytes]]:
    """Yield ``(offset, line)`` pairs from *end* back to the start of the file.

    ``line`` excludes its ``\\n`` terminator (a trailing ``\\r`` is kept, as a
    forward reader would see it). Offsets are those of the first byte of each
    line. Bytes after the last terminator before *end* form the first line
    yielded, if any.
    """
    pos = end
    tail = b""
    while pos > 0:
        size = min(chunk_size, pos)
        pos -= size
        fh.seek(pos)
        chunk = fh.read(size)
        if len(chunk) != size:
            raise OSError(f"short read at offset {pos}: wanted {size}, got {len(chunk)}")
        buf = chunk + tail
        # Everything after the last newline in buf is a complete line,
        # except at the very end of the range where it may be unterminated.
        parts = buf.split(b"\n")
        tail = parts[0]
        line_end = pos + len(buf)
        for part in reversed(parts[1:]):
            line_start = line_end - len(part)
            if line_end != end or part:
                yield line_start, part
            line_end = line_start - 1
    if tail or end > 0:
        yield 0, tail


def last_lines_offset(path: str, count: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Offset at which the last *count* non-blank complete lines of *path* begin.

    An unterminated final line is not counted, nor are blank lines. Returns
    the end of the last complete line when *count* is 0.
    """
    with open(path, "rb") as fh:
        end = os.fstat(fh.fileno()).st_size
        complete_end = _complete_end(fh, end, chunk_size)
        if count <= 0 or complete_end == 0:
            return complete_end
        seen = 0
        offset = complete_end
        for line_start, line in reverse_lines(fh, complete_end, chunk_size):
            if not line.strip():
                continue
            seen += 1
            offset = line_start
            if seen >= count:
                break
        return offset


def _complete_end(fh, end: int, chunk_size: int) -> int:
    """Offset just past the last ``\\n`` at or before *end*."""
    pos = end
    while pos > 0:
        size = min(chunk_size, pos)
        pos -= size
        fh.seek(pos)
        chunk = fh.read(size)
        idx = chunk.rfind(b"\n")
        if idx >= 0:
            return pos + idx + 1
    return 0


@dataclass(frozen=True)
class ColdStartResult:
    offset: int
    reason: str


class ColdStartLocator:
    """Bounded backward scan for the start of the current match."""

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        stale_after: float = 0,
        travel_pattern: re.Pattern = MAP_TRAVEL_PATTERN,
        load_pattern: re.Pattern = MAP_LOAD_PATTERN,
    ):
        self._chunk_size = chunk_size
        self._stale_after = stale_after
        self._travel = travel_pattern
        self._load = load_pattern

    def locate(self, path: str) -> int:
        return self.find(path).offset

    def find(self, path: str) -> ColdStartResult:
        with open(path, "rb") as fh:
            st = os.fstat(fh.fileno())
            size = st.st_size

            if self._stale_after and time.time() - st.st_mtime > self._stale_after:
                logger.info("Cold start: %s not modified for %.1f minutes, starting at EOF (%d)",
                            path, (time.time() - st.st_mtime) / 60, size)
                return ColdStartResult(_complete_end(fh, size, self._chunk_size), "stale")

            scanned = 0
            for offset, line in reverse_lines(fh, size, self._chunk_size):
                scanned += 1
                if self._travel.search(line):
                    logger.info("Cold start: %s resumes at map travel, offset %d (%d lines scanned)",
                                path, offset, scanned)
                    return ColdStartResult(offset, "map_travel")
                if self._load.search(line):
                    logger.info("Cold start: %s resumes at map load, offset %d (%d lines scanned)",
                                path, offset, scanned)
                    return ColdStartResult(offset, "map_load")

        logger.info("Cold start: no map marker in %s, starting at 0", path)
        return ColdStartResult(0, "no_marker")
