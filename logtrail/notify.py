"""ChangeNotifier: watchdog handler that wakes tailers when their file changes.

Polling stays authoritative; notifications only cut the latency between a
write and the tailer noticing it.
"""

import logging
import os
import threading

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class ChangeNotifier(FileSystemEventHandler):
    def __init__(self):
        super().__init__()
        self._wakers: dict[str, threading.Event] = {}
        self._observer = None

    def register(self, path: str) -> threading.Event:
        """Return the wake event for *path*, creating it on first use."""
        abs_path = os.path.abspath(path)
        if abs_path not in self._wakers:
            self._wakers[abs_path] = threading.Event()
        return self._wakers[abs_path]

    def get_watched_dirs(self) -> set[str]:
        return {os.path.dirname(p) for p in self._wakers}

    def wake_all(self):
        for event in self._wakers.values():
            event.set()

    def _wake(self, path: str):
        event = self._wakers.get(os.path.abspath(path))
        if event is not None:
            event.set()

    def on_modified(self, event):
        if not event.is_directory:
            self._wake(event.src_path)

    def on_created(self, event):
        if not event.is_directory:
            self._wake(event.src_path)

    def on_deleted(self, event):
        if not event.is_directory:
            self._wake(event.src_path)

    def on_moved(self, event):
        if not event.is_directory:
            self._wake(event.src_path)
            self._wake(event.dest_path)

    def start(self):
        self._observer = Observer()
        for dir_path in self.get_watched_dirs():
            self._observer.schedule(self, dir_path, recursive=False)
            logger.info("Watching directory: %s", dir_path)
        self._observer.start()

    def stop(self):
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
