"""Configuration loading from CLI args, env vars, and an optional YAML file.

Precedence: CLI flags > environment variables > YAML > defaults. Consumed
once at startup.

Example YAML::

    sources:
      - path: /srv/sandstorm/Insurgency/Saved/Logs/server1.log
      - path: /srv/sandstorm2/Insurgency/Saved/Logs/Insurgency.log
        id: eu-2
    log_dirs: [/srv/sandstorm3/Insurgency/Saved/Logs]
    state_dir: state/
    output_dir: events/
    poll_interval: 0.2
    identity_check_interval: 1.0
    queue_size: 1000
    checkpoint_every: 1
    handler_error_policy: advance   # or "block"
    cold_start:
      enabled: true
      stale_after: 32400
"""

import glob
import logging
import os
from dataclasses import dataclass, field

import yaml

from logtrail.dispatcher import HANDLER_ERROR_POLICIES

logger = logging.getLogger(__name__)

BACKUP_MARKER = "-backup-"


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class SourceConfig:
    path: str          # absolute
    source_id: str


@dataclass(frozen=True)
class ColdStartConfig:
    enabled: bool = True
    stale_after: float = 9 * 3600   # servers restart every 8 hours
    chunk_size: int = 64 * 1024


@dataclass(frozen=True)
class Config:
    sources: list[SourceConfig] = field(default_factory=list)
    state_dir: str = "state/"
    output_dir: str = "events/"
    poll_interval: float = 0.2
    identity_check_interval: float = 1.0
    queue_size: int = 1000
    checkpoint_every: int = 1
    handler_error_policy: str = "advance"
    handler_retry_interval: float = 1.0
    cold_start: ColdStartConfig = field(default_factory=ColdStartConfig)
    stats_file: str | None = "state/stats.json"
    stats_interval: float = 10.0
    use_watchdog: bool = True


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def source_id_from_path(path: str) -> str:
    """Server id is the log file name without its .log extension."""
    name = os.path.basename(path)
    if name.endswith(".log"):
        return name[: -len(".log")]
    return name


def discover_sources(log_dir: str) -> list[str]:
    """All ``*.log`` files in *log_dir*, skipping server-made backups."""
    found = []
    for path in sorted(glob.glob(os.path.join(log_dir, "*.log"))):
        if BACKUP_MARKER in os.path.basename(path):
            continue
        found.append(os.path.abspath(path))
    return found


def load_yaml_config(path: str | None) -> dict:
    """Load the YAML config file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded YAML config from %s", path)
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def _cast(key: str, value, cast):
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {key}: {value!r}") from e


def check_unique_names(sources: list[SourceConfig]) -> None:
    """Checkpoints and event files are named from the log file name, so it must be unique."""
    seen: dict[str, SourceConfig] = {}
    for source in sources:
        name = os.path.splitext(os.path.basename(source.path))[0]
        other = seen.get(name)
        if other is not None:
            raise ConfigError(f"sources {other.source_id!r} ({other.path}) and {source.source_id!r} "
                              f"({source.path}) share the file name {name!r}; rename one of the logs")
        seen[name] = source


def _build_sources(entries: list[tuple[str, str | None]]) -> list[SourceConfig]:
    sources: list[SourceConfig] = []
    seen_paths: set[str] = set()
    seen_ids: set[str] = set()
    for path, source_id in entries:
        abs_path = os.path.abspath(path)
        if abs_path in seen_paths:
            logger.warning("Duplicate source %s ignored", abs_path)
            continue
        sid = source_id or source_id_from_path(abs_path)
        if sid in seen_ids:
            raise ConfigError(f"duplicate source id {sid!r} ({abs_path})")
        seen_paths.add(abs_path)
        seen_ids.add(sid)
        sources.append(SourceConfig(path=abs_path, source_id=sid))
    check_unique_names(sources)
    return sources


def load_config(cli_args, yaml_data: dict) -> Config:
    """Build Config from CLI args, env vars, and parsed YAML data."""
    entries: list[tuple[str, str | None]] = []
    for item in yaml_data.get("sources", []) or []:
        if isinstance(item, str):
            entries.append((item, None))
        elif isinstance(item, dict) and "path" in item:
            entries.append((item["path"], item.get("id")))
        else:
            raise ConfigError(f"invalid source entry: {item!r}")

    log_dirs = list(yaml_data.get("log_dirs", []) or [])
    cli_files = getattr(cli_args, "log_files", None) or []
    cli_dirs = getattr(cli_args, "log_dir", None) or []
    if cli_files or cli_dirs:
        entries = [(p, None) for p in cli_files]
        log_dirs = list(cli_dirs)
    for d in log_dirs:
        found = discover_sources(d)
        if not found:
            logger.warning("No .log files found in %s", d)
        entries.extend((p, None) for p in found)

    cold = yaml_data.get("cold_start", {}) or {}
    if not isinstance(cold, dict):
        raise ConfigError(f"cold_start must be a mapping, got {cold!r}")
    cold_start = ColdStartConfig(
        enabled=_parse_bool(cold.get("enabled", ColdStartConfig.enabled)),
        stale_after=_cast("cold_start.stale_after",
                          cold.get("stale_after", ColdStartConfig.stale_after), float),
        chunk_size=_cast("cold_start.chunk_size",
                         cold.get("chunk_size", ColdStartConfig.chunk_size), int),
    )

    def pick(cli_name: str, env_name: str, key: str, default, cast=str):
        value = getattr(cli_args, cli_name, None) if cli_name else None
        if value is None:
            value = os.environ.get(env_name)
        if value is None:
            value = yaml_data.get(key, default)
        if value is None:
            return None
        return _cast(key, value, cast)

    state_dir = pick("state_dir", "LOGTRAIL_STATE_DIR", "state_dir", Config.state_dir)
    config = Config(
        sources=_build_sources(entries),
        state_dir=state_dir,
        output_dir=pick("output_dir", "LOGTRAIL_OUTPUT_DIR", "output_dir", Config.output_dir),
        poll_interval=pick(None, "POLL_INTERVAL", "poll_interval", Config.poll_interval, float),
        identity_check_interval=pick(None, "IDENTITY_CHECK_INTERVAL", "identity_check_interval",
                                     Config.identity_check_interval, float),
        queue_size=pick(None, "QUEUE_SIZE", "queue_size", Config.queue_size, int),
        checkpoint_every=pick(None, "CHECKPOINT_EVERY", "checkpoint_every", Config.checkpoint_every, int),
        handler_error_policy=pick(None, "HANDLER_ERROR_POLICY", "handler_error_policy",
                                  Config.handler_error_policy),
        handler_retry_interval=_cast("handler_retry_interval",
                                     yaml_data.get("handler_retry_interval", Config.handler_retry_interval),
                                     float),
        cold_start=cold_start,
        stats_file=pick(None, "STATS_FILE", "stats_file", os.path.join(state_dir, "stats.json")),
        stats_interval=_cast("stats_interval", yaml_data.get("stats_interval", Config.stats_interval), float),
        use_watchdog=_parse_bool(yaml_data.get("use_watchdog", Config.use_watchdog)),
    )
    validate(config)
    return config


def validate(config: Config) -> None:
    if config.poll_interval <= 0:
        raise ConfigError("poll_interval must be positive")
    if config.identity_check_interval <= 0:
        raise ConfigError("identity_check_interval must be positive")
    if config.queue_size < 1:
        raise ConfigError("queue_size must be at least 1")
    if config.checkpoint_every < 1:
        raise ConfigError("checkpoint_every must be at least 1")
    if config.handler_error_policy not in HANDLER_ERROR_POLICIES:
        raise ConfigError(f"handler_error_policy must be one of {', '.join(HANDLER_ERROR_POLICIES)}")
    if config.cold_start.chunk_size < 1:
        raise ConfigError("cold_start.chunk_size must be positive")
    if config.cold_start.stale_after < 0:
        raise ConfigError("cold_start.stale_after must not be negative")
    if config.handler_retry_interval <= 0:
        raise ConfigError("handler_retry_interval must be positive")
    if config.stats_interval <= 0:
        raise ConfigError("stats_interval must be positive")
