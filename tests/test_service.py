"""End-to-end tests for IngestService."""

import dataclasses
import json
import threading

import pytest

from logtrail.config import ColdStartConfig, Config, ConfigError, SourceConfig
from logtrail.service import IngestService

TRAVEL = "[2025.11.10-21.10.00:000][400]LogGameMode: ProcessServerTravel: Oilfield?Scenario=Scenario_Refinery_Push_Security"


def _config(tmp_path, paths, **kwargs):
    kwargs.setdefault("use_watchdog", False)
    kwargs.setdefault("cold_start", ColdStartConfig(enabled=False))
    return Config(
        sources=[SourceConfig(path=str(p), source_id=p.stem) for p in paths],
        state_dir=str(tmp_path / "state"),
        output_dir=str(tmp_path / "events"),
        poll_interval=0.02,
        identity_check_interval=0.05,
        stats_file=str(tmp_path / "state" / "stats.json"),
        stats_interval=60,
        **kwargs,
    )


def _read_events(path):
    if not path.exists():
        return []
    with open(path) as f:
        return [json.loads(line) for line in f]


class Recorder:
    def __init__(self):
        self.events = {}
        self._lock = threading.Lock()

    def __call__(self, event, source_path):
        with self._lock:
            self.events.setdefault(event.server_id, []).append(event.raw)

    def raw(self, source_id):
        with self._lock:
            return list(self.events.get(source_id, []))


class TestIngestService:
    def test_writes_events_per_source(self, tmp_path, write_log, append_lines, game_line, wait_until):
        a = tmp_path / "server1.log"
        b = tmp_path / "server2.log"
        write_log(a, [game_line(1, "LogGameplayEvents: Display: Game over")])
        write_log(b, [])
        service = IngestService(_config(tmp_path, [a, b], use_watchdog=True))
        assert sorted(service.start()) == ["server1", "server2"]
        try:
            append_lines(b, [game_line(2, "LogNet: Join succeeded: Rabbit")])
            out_a = tmp_path / "events" / "server1.events.jsonl"
            out_b = tmp_path / "events" / "server2.events.jsonl"
            assert wait_until(lambda: [e["type"] for e in _read_events(out_a)] == ["log_open", "game_over"])
            assert wait_until(lambda: [e["type"] for e in _read_events(out_b)] == ["log_open", "player_join"])
        finally:
            service.stop()
        stats = json.loads((tmp_path / "state" / "stats.json").read_text())
        assert set(stats["sources"]) == {"server1", "server2"}

    def test_missing_source_is_excluded(self, tmp_path, write_log):
        present = tmp_path / "server1.log"
        write_log(present, [])
        service = IngestService(_config(tmp_path, [present, tmp_path / "ghost.log"]), handler=Recorder())
        try:
            assert service.start() == ["server1"]
            assert [s.source_id for s in service.excluded] == ["ghost"]
        finally:
            service.stop()

    def test_restart_delivers_each_line_once(self, tmp_path, write_log, append_lines, game_line, wait_until):
        path = tmp_path / "server1.log"
        lines = [game_line(i, f"LogNet: Join succeeded: Player{i}") for i in range(10)]
        write_log(path, lines[:5])

        recorder = Recorder()
        service = IngestService(_config(tmp_path, [path]), handler=recorder)
        service.start()
        assert wait_until(lambda: len(recorder.raw("server1")) == 6)
        service.stop()

        append_lines(path, lines[5:])
        service = IngestService(_config(tmp_path, [path]), handler=recorder)
        service.start()
        assert wait_until(lambda: len(recorder.raw("server1")) == 11)
        service.stop()

        assert recorder.raw("server1")[1:] == lines
        assert service.store.load(str(path)) == path.stat().st_size

    def test_cold_start_resumes_at_last_map_travel(self, tmp_path, write_log, game_line, wait_until):
        path = tmp_path / "server1.log"
        old = [game_line(i, "LogGameplayEvents: Display: Game over") for i in range(3)]
        new = [game_line(10, "LogGameplayEvents: Display: round 1 started")]
        write_log(path, old + [TRAVEL] + new)

        recorder = Recorder()
        service = IngestService(_config(tmp_path, [path], cold_start=ColdStartConfig()), handler=recorder)
        service.start()
        try:
            assert wait_until(lambda: len(recorder.raw("server1")) == 2)
        finally:
            service.stop()
        assert recorder.raw("server1") == [TRAVEL] + new

    def test_blocked_handler_does_not_stall_other_source(self, tmp_path, write_log, append_lines,
                                                         game_line, wait_until):
        a = tmp_path / "server1.log"
        b = tmp_path / "server2.log"
        write_log(a, [])
        write_log(b, [])
        gate = threading.Event()
        recorder = Recorder()

        def handler(event, source_path):
            if event.server_id == "server1":
                gate.wait()
            recorder(event, source_path)

        service = IngestService(_config(tmp_path, [a, b]), handler=handler)
        service.start()
        try:
            append_lines(b, [game_line(i, "LogGameplayEvents: Display: Game over") for i in range(5)])
            assert wait_until(lambda: len(recorder.raw("server2")) == 6)
            assert recorder.raw("server1") == []
        finally:
            gate.set()
            service.stop()
        assert len(recorder.raw("server1")) == 1

    def test_sources_sharing_a_file_name_are_refused(self, tmp_path, write_log):
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        first = tmp_path / "a" / "Insurgency.log"
        second = tmp_path / "b" / "Insurgency.log"
        write_log(first, ["eu-1 line"])
        write_log(second, ["eu-2 line"])
        config = _config(tmp_path, [])
        config = dataclasses.replace(config, sources=[
            SourceConfig(path=str(first), source_id="eu-1"),
            SourceConfig(path=str(second), source_id="eu-2"),
        ])
        service = IngestService(config, handler=Recorder())
        with pytest.raises(ConfigError, match="Insurgency"):
            service.start()
        assert service.workers == {}
        assert not (tmp_path / "state").exists()
