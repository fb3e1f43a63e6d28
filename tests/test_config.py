"""Tests for configuration loading."""

import argparse
import os

import pytest

from logtrail.config import (
    ConfigError,
    discover_sources,
    load_config,
    load_yaml_config,
    source_id_from_path,
)

ENV_VARS = [
    "LOGTRAIL_STATE_DIR", "LOGTRAIL_OUTPUT_DIR", "POLL_INTERVAL", "IDENTITY_CHECK_INTERVAL",
    "QUEUE_SIZE", "CHECKPOINT_EVERY", "HANDLER_ERROR_POLICY", "STATS_FILE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _args(**kwargs):
    defaults = dict(config=None, log_files=None, log_dir=None, state_dir=None, output_dir=None)
    defaults.update(kwargs)
    return argparse.Namespace(**defaults)


class TestDefaults:
    def test_defaults(self):
        config = load_config(_args(), {})
        assert config.sources == []
        assert config.state_dir == "state/"
        assert config.poll_interval == 0.2
        assert config.identity_check_interval == 1.0
        assert config.queue_size == 1000
        assert config.checkpoint_every == 1
        assert config.handler_error_policy == "advance"
        assert config.cold_start.enabled
        assert config.cold_start.stale_after == 9 * 3600
        assert config.stats_file == os.path.join("state/", "stats.json")


class TestSources:
    def test_yaml_sources(self, tmp_path):
        config = load_config(_args(), {"sources": [
            str(tmp_path / "server1.log"),
            {"path": str(tmp_path / "Insurgency.log"), "id": "eu-2"},
        ]})
        assert [s.source_id for s in config.sources] == ["server1", "eu-2"]
        assert all(os.path.isabs(s.path) for s in config.sources)

    def test_cli_files_replace_yaml_sources(self, tmp_path):
        config = load_config(_args(log_files=[str(tmp_path / "cli.log")]),
                             {"sources": [str(tmp_path / "yaml.log")]})
        assert [s.source_id for s in config.sources] == ["cli"]

    def test_log_dir_discovery_skips_backups(self, tmp_path):
        for name in ["server1.log", "server2.log", "server1-backup-2025.11.10-20.58.31.log", "notes.txt"]:
            (tmp_path / name).write_text("")
        assert [os.path.basename(p) for p in discover_sources(str(tmp_path))] == [
            "server1.log", "server2.log"]
        config = load_config(_args(log_dir=[str(tmp_path)]), {})
        assert [s.source_id for s in config.sources] == ["server1", "server2"]

    def test_duplicate_path_ignored(self, tmp_path):
        path = str(tmp_path / "server1.log")
        config = load_config(_args(log_files=[path, path]), {})
        assert len(config.sources) == 1

    def test_duplicate_id_rejected(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(_args(log_files=[str(tmp_path / "a" / "server1.log"),
                                         str(tmp_path / "b" / "server1.log")]), {})

    def test_same_file_name_in_two_dirs_rejected(self, tmp_path):
        with pytest.raises(ConfigError, match="Insurgency"):
            load_config(_args(), {"sources": [
                {"path": str(tmp_path / "a" / "Insurgency.log"), "id": "eu-1"},
                {"path": str(tmp_path / "b" / "Insurgency.log"), "id": "eu-2"},
            ]})

    def test_same_file_name_across_log_dirs_rejected(self, tmp_path):
        for d in ("a", "b"):
            (tmp_path / d).mkdir()
            (tmp_path / d / "Insurgency.log").write_text("")
        with pytest.raises(ConfigError):
            load_config(_args(), {"sources": [{"path": str(tmp_path / "a" / "Insurgency.log"), "id": "eu-1"}],
                                  "log_dirs": [str(tmp_path / "b")]})

    def test_invalid_source_entry(self):
        with pytest.raises(ConfigError):
            load_config(_args(), {"sources": [{"id": "no-path"}]})

    def test_source_id_from_path(self):
        assert source_id_from_path("/srv/logs/server1.log") == "server1"
        assert source_id_from_path("/srv/logs/Insurgency") == "Insurgency"


class TestPrecedence:
    def test_env_overrides_yaml(self, monkeypatch):
        monkeypatch.setenv("POLL_INTERVAL", "0.5")
        monkeypatch.setenv("HANDLER_ERROR_POLICY", "block")
        config = load_config(_args(), {"poll_interval": 2.0, "handler_error_policy": "advance"})
        assert config.poll_interval == 0.5
        assert config.handler_error_policy == "block"

    def test_cli_overrides_env_and_yaml(self, monkeypatch):
        monkeypatch.setenv("LOGTRAIL_STATE_DIR", "/env/state")
        config = load_config(_args(state_dir="/cli/state"), {"state_dir": "/yaml/state"})
        assert config.state_dir == "/cli/state"
        assert config.stats_file == os.path.join("/cli/state", "stats.json")

    def test_yaml_values(self):
        config = load_config(_args(), {
            "queue_size": 10,
            "checkpoint_every": 50,
            "cold_start": {"enabled": "false", "stale_after": 60},
            "use_watchdog": False,
        })
        assert config.queue_size == 10
        assert config.checkpoint_every == 50
        assert not config.cold_start.enabled
        assert config.cold_start.stale_after == 60
        assert not config.use_watchdog


class TestValidation:
    @pytest.mark.parametrize("data", [
        {"poll_interval": 0},
        {"identity_check_interval": -1},
        {"queue_size": 0},
        {"checkpoint_every": 0},
        {"handler_error_policy": "ignore"},
        {"queue_size": "many"},
        {"cold_start": {"stale_after": "nine hours"}},
        {"cold_start": {"chunk_size": "big"}},
        {"cold_start": "on"},
        {"handler_retry_interval": "soon"},
        {"handler_retry_interval": 0},
        {"stats_interval": [10]},
        {"stats_interval": -1},
    ])
    def test_invalid_values(self, data):
        with pytest.raises(ConfigError):
            load_config(_args(), data)


class TestYamlFile:
    def test_missing_file_is_empty(self, tmp_path):
        assert load_yaml_config(str(tmp_path / "nope.yaml")) == {}

    def test_no_path(self):
        assert load_yaml_config(None) == {}

    def test_loads_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("state_dir: /var/lib/logtrail\nsources:\n  - /srv/server1.log\n")
        data = load_yaml_config(str(path))
        assert data["state_dir"] == "/var/lib/logtrail"
        assert data["sources"] == ["/srv/server1.log"]

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("sources: [unclosed\n")
        with pytest.raises(ConfigError):
            load_yaml_config(str(path))

    def test_non_mapping_top_level(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_yaml_config(str(path))
