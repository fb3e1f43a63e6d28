"""JsonlEventSink: handler that appends events as JSON lines, one file per source."""

import json
import logging
import os
import threading
from datetime import datetime

logger = logging.getLogger(__name__)


class JsonlEventSink:
    def __init__(self, output_dir: str):
        self._output_dir = output_dir
        self._lock = threading.Lock()
        self._total_events = 0
        os.makedirs(self._output_dir, exist_ok=True)

    @property
    def total_events(self) -> int:
        with self._lock:
            return self._total_events

    def output_path(self, source_path: str) -> str:
        name = os.path.splitext(os.path.basename(source_path))[0]
        return os.path.join(self._output_dir, f"{name}.events.jsonl")

    def __call__(self, event, source_path: str) -> None:
        entry = event.to_dict() if hasattr(event, "to_dict") else {"event": event}
        entry["source_file"] = source_path
        entry["captured_at"] = datetime.now().isoformat()
        # Each source has exactly one worker, so one writer per output file.
        with open(self.output_path(source_path), "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, default=str) + "\n")
        with self._lock:
            self._total_events += 1
