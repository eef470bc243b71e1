"""
Configuration Management for RoundStats

Provides configuration loading from multiple sources:
- Default values
- Configuration files (YAML, TOML, JSON)
- Environment variables

Configuration precedence (highest to lowest):
1. Environment variables (ROUNDSTATS_*, STEAM_API_KEY)
2. Configuration file
3. Default values
"""

import json
import logging
import logging.handlers
import os
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from roundstats.core.identity import DEFAULT_STEAM64_OVERRIDES

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".roundstats"


# ============================================================================
# Configuration Dataclasses
# ============================================================================


@dataclass
class StorageConfig:
    """Database settings."""

    # Any SQLAlchemy URL; SQLite file by default
    database_url: str = f"sqlite:///{DEFAULT_HOME / 'roundstats.db'}"
    echo: bool = False


@dataclass
class IngestionConfig:
    """Settings for log ingestion runs."""

    logs_dir: str = str(DEFAULT_HOME / "logs")
    server_ids: list[int] = field(default_factory=lambda: [1])

    # Periodic trigger, every 5 minutes by default
    interval_seconds: float = 300.0

    # A run older than this no longer blocks new runs for its server
    run_timeout_seconds: float = 120.0

    # Pause between servers in one scheduled cycle to spread storage load
    inter_run_delay_seconds: float = 1.0

    # Continue the server's last stored match when new lines pick up mid-match
    resume_open_match: bool = True

    # Start the interval scheduler when the web app starts
    schedule_on_startup: bool = False

    max_upload_bytes: int = 50 * 1024 * 1024


@dataclass
class WatcherConfig:
    """Configuration for the log directory watcher."""

    enabled: bool = False
    debounce_seconds: float = 2.0


@dataclass
class SteamConfig:
    """Steam Web API profile lookups (optional)."""

    api_key: str = ""
    api_base: str = "https://api.steampowered.com"
    timeout_seconds: float = 10.0
    # GetPlayerSummaries accepts at most 100 ids per call
    batch_size: int = 100


@dataclass
class IdentityConfig:
    """Identifier translation settings."""

    overrides: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_STEAM64_OVERRIDES))


@dataclass
class CacheConfig:
    """Leaderboard query cache."""

    leaderboard_ttl_seconds: float = 60.0
    maxsize: int = 256


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str | None = None
    file_max_bytes: int = 10 * 1024 * 1024  # 10MB
    file_backup_count: int = 5


@dataclass
class RoundStatsConfig:
    """Main configuration container."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    steam: SteamConfig = field(default_factory=SteamConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    config_version: str = "1.0"


SECTIONS = ("storage", "ingestion", "watcher", "steam", "identity", "cache", "logging")


# ============================================================================
# Configuration Loading
# ============================================================================


def get_default_config_paths() -> list[Path]:
    """Get the default paths to search for configuration files."""
    home = Path.home()
    return [
        Path.cwd() / "roundstats.yaml",
        Path.cwd() / "roundstats.toml",
        Path.cwd() / "roundstats.json",
        home / ".config" / "roundstats" / "config.yaml",
        home / ".roundstats.yaml",
    ]


def load_yaml_config(path: Path) -> dict[str, Any]:
    """Load configuration from a YAML file."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from a TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from a JSON file."""
    with open(path) as f:
        return json.load(f)


def load_config_file(path: Path) -> dict[str, Any]:
    """Load configuration from a file, detecting format from extension."""
    if not path.exists():
        return {}

    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return load_yaml_config(path)
    elif suffix == ".toml":
        return load_toml_config(path)
    elif suffix == ".json":
        return load_json_config(path)
    else:
        logger.warning(f"Unknown config file format: {suffix}")
        return {}


def _parse_server_ids(value: str) -> list[int]:
    return [int(part) for part in value.replace(" ", "").split(",") if part]


def load_env_config() -> dict[str, Any]:
    """Load configuration from environment variables."""
    config: dict[str, Any] = {}

    env_mappings = {
        "ROUNDSTATS_DATABASE_URL": ("storage", "database_url"),
        "ROUNDSTATS_LOGS_DIR": ("ingestion", "logs_dir"),
        "ROUNDSTATS_SERVER_IDS": ("ingestion", "server_ids"),
        "ROUNDSTATS_INTERVAL_SECONDS": ("ingestion", "interval_seconds"),
        "ROUNDSTATS_RUN_TIMEOUT_SECONDS": ("ingestion", "run_timeout_seconds"),
        "ROUNDSTATS_RESUME_OPEN_MATCH": ("ingestion", "resume_open_match"),
        "ROUNDSTATS_SCHEDULE_ON_STARTUP": ("ingestion", "schedule_on_startup"),
        "ROUNDSTATS_WATCH_LOGS": ("watcher", "enabled"),
        "ROUNDSTATS_CACHE_TTL_SECONDS": ("cache", "leaderboard_ttl_seconds"),
        "ROUNDSTATS_LOG_LEVEL": ("logging", "level"),
        "ROUNDSTATS_LOG_FILE": ("logging", "file"),
        "STEAM_API_KEY": ("steam", "api_key"),
    }

    for env_var, (section, key) in env_mappings.items():
        value: Any = os.environ.get(env_var)
        if value is None:
            continue
        config.setdefault(section, {})

        if key == "server_ids":
            value = _parse_server_ids(value)
        elif key in ("database_url", "logs_dir", "api_key", "file", "level"):
            pass
        elif value.lower() in ("true", "false"):
            value = value.lower() == "true"
        elif value.isdigit():
            value = int(value)
        else:
            try:
                value = float(value)
            except ValueError:
                pass

        config[section][key] = value

    return config


def merge_configs(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two configuration dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value

    return result


def dict_to_config(data: dict[str, Any]) -> RoundStatsConfig:
    """Convert a dictionary to RoundStatsConfig, ignoring unknown keys."""
    config = RoundStatsConfig()

    for section in SECTIONS:
        values = data.get(section)
        if not isinstance(values, dict):
            continue
        target = getattr(config, section)
        for key, value in values.items():
            if hasattr(target, key):
                setattr(target, key, value)
            else:
                logger.debug(f"Ignoring unknown config key: {section}.{key}")

    # Override keys may come back from YAML/JSON as ints
    config.identity.overrides = {
        str(k): int(v) for k, v in config.identity.overrides.items()
    }
    return config


def load_config(config_file: Path | None = None, include_env: bool = True) -> RoundStatsConfig:
    """
    Load configuration from all sources.

    Args:
        config_file: Explicit path to a config file (optional)
        include_env: Whether to include environment variables

    Returns:
        Merged RoundStatsConfig
    """
    config_data: dict[str, Any] = {}

    if config_file:
        config_data = load_config_file(config_file)
        logger.info(f"Loaded config from: {config_file}")
    else:
        for path in get_default_config_paths():
            if path.exists():
                config_data = load_config_file(path)
                logger.info(f"Loaded config from: {path}")
                break

    if include_env:
        config_data = merge_configs(config_data, load_env_config())

    return dict_to_config(config_data)


def config_to_dict(config: RoundStatsConfig) -> dict[str, Any]:
    """Convert RoundStatsConfig to a dictionary."""
    return asdict(config)


def save_config(config: RoundStatsConfig, path: Path) -> None:
    """Save configuration to a YAML or JSON file (format from extension)."""
    data = config_to_dict(config)
    suffix = path.suffix.lower()

    if suffix in (".yaml", ".yml"):
        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    elif suffix == ".json":
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
    else:
        raise ValueError(f"Unsupported config format for saving: {suffix}")

    logger.info(f"Saved config to: {path}")


def configure_logging(config: LoggingConfig) -> None:
    """Apply logging settings to the root logger."""
    root = logging.getLogger()
    root.setLevel(config.level.upper())

    if not root.handlers:
        logging.basicConfig(level=config.level.upper(), format=config.format)

    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=config.file_max_bytes,
            backupCount=config.file_backup_count,
        )
        handler.setFormatter(logging.Formatter(config.format))
        root.addHandler(handler)


# ============================================================================
# Global Configuration
# ============================================================================

_global_config: RoundStatsConfig | None = None


def get_config() -> RoundStatsConfig:
    """Get the global configuration, loading it if necessary."""
    global _global_config

    if _global_config is None:
        _global_config = load_config()

    return _global_config


def set_config(config: RoundStatsConfig) -> None:
    """Set the global configuration."""
    global _global_config
    _global_config = config


def reset_config() -> None:
    """Reset the global configuration to defaults."""
    global _global_config
    _global_config = None


# ============================================================================
# Configuration Templates
# ============================================================================

DEFAULT_CONFIG_YAML = """# RoundStats Configuration

storage:
  # Any SQLAlchemy URL
  database_url: sqlite:///roundstats.db

ingestion:
  logs_dir: ./logs
  server_ids: [1]
  interval_seconds: 300
  run_timeout_seconds: 120
  inter_run_delay_seconds: 1.0
  resume_open_match: true
  schedule_on_startup: false

watcher:
  enabled: false
  debounce_seconds: 2.0

steam:
  # api_key: set STEAM_API_KEY instead of committing it here
  timeout_seconds: 10.0

identity:
  overrides:
    "76561199887711108": 1927445380
    "76561199888807001": 1928541273

cache:
  leaderboard_ttl_seconds: 60

logging:
  level: INFO
  # file: /var/log/roundstats.log
"""


def generate_default_config(path: Path) -> None:
    """Generate a default configuration file."""
    suffix = path.suffix.lower()

    if suffix in (".yaml", ".yml"):
        path.write_text(DEFAULT_CONFIG_YAML)
    else:
        save_config(RoundStatsConfig(), path)

    logger.info(f"Generated default config at: {path}")
