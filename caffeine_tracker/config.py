"""Configuration loading for caffeine_tracker."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class StorageConfig:
    """Where the durable database image lives."""

    backend: str = "file"  # "file", "keyvalue" or "memory"
    path: str = "~/.caffeine-tracker/caffeine.db"
    keyvalue_path: str = "~/.caffeine-tracker/keyvalue.db"
    keyvalue_key: str = "caffeine-tracker-db"


@dataclass
class SyncConfig:
    """Configuration for WebDAV snapshot sync."""

    server: str = ""
    username: str = ""
    password: str = ""
    file_name: str = "caffeine-tracker-data.json"
    timeout_seconds: float = 30.0
    sync_interval_minutes: int = 60

    @property
    def is_configured(self) -> bool:
        return bool(self.server and self.username and self.password)


@dataclass
class LoggingConfig:
    level: str = "warning"
    json: bool = False


@dataclass
class Config:
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with CAFFEINE_ prefix."""
    return os.environ.get(f"CAFFEINE_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Storage overrides
    if backend := _get_env("STORAGE_BACKEND"):
        config.storage.backend = backend
    if path := _get_env("STORAGE_PATH"):
        config.storage.path = path
    if kv_path := _get_env("STORAGE_KEYVALUE_PATH"):
        config.storage.keyvalue_path = kv_path

    # Sync overrides
    if server := _get_env("SYNC_SERVER"):
        config.sync.server = server
    if username := _get_env("SYNC_USERNAME"):
        config.sync.username = username
    if password := _get_env("SYNC_PASSWORD"):
        config.sync.password = password
    if timeout := _get_env("SYNC_TIMEOUT"):
        config.sync.timeout_seconds = float(timeout)
    if interval := _get_env("SYNC_INTERVAL"):
        config.sync.sync_interval_minutes = int(interval)

    if level := _get_env("LOG_LEVEL"):
        config.logging.level = level
    if log_json := _get_env("LOG_JSON"):
        config.logging.json = log_json.lower() in ("true", "1", "yes")

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path).expanduser()
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "storage" in data:
                storage_data = data["storage"] or {}
                config.storage = StorageConfig(
                    backend=storage_data.get("backend", config.storage.backend),
                    path=storage_data.get("path", config.storage.path),
                    keyvalue_path=storage_data.get(
                        "keyvalue_path", config.storage.keyvalue_path
                    ),
                    keyvalue_key=storage_data.get(
                        "keyvalue_key", config.storage.keyvalue_key
                    ),
                )

            if "sync" in data:
                sync_data = data["sync"] or {}
                config.sync = SyncConfig(
                    server=sync_data.get("server", config.sync.server),
                    username=sync_data.get("username", config.sync.username),
                    password=sync_data.get("password", config.sync.password),
                    file_name=sync_data.get("file_name", config.sync.file_name),
                    timeout_seconds=sync_data.get(
                        "timeout_seconds", config.sync.timeout_seconds
                    ),
                    sync_interval_minutes=sync_data.get(
                        "sync_interval_minutes", config.sync.sync_interval_minutes
                    ),
                )

            if "logging" in data:
                log_data = data["logging"] or {}
                config.logging = LoggingConfig(
                    level=log_data.get("level", config.logging.level),
                    json=log_data.get("json", config.logging.json),
                )

    return _apply_env_overrides(config)
