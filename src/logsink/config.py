"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation,
with an optional config.yaml supplying defaults.
"""

import os
import yaml
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config.yaml in common locations
        possible_paths = [
            "config.yaml",  # Current directory
            "../../config.yaml",  # Project root from src/logsink
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    admin_token: str = Field(default="", description="Admin token for status and flush endpoints")

    model_config = SettingsConfigDict(env_prefix="LOGSINK_SECURITY_")


class StorageSettings(BaseSettings):
    """Where application configs are read from and log files are written to."""

    config_dir: Path = Field(default=Path("./config"), description="Directory holding <appname>.json records")
    log_root: Path = Field(default=Path("./logs"), description="Root directory for per-application log dirs")
    disk_free_min_ratio: float = Field(default=0.05, description="Minimum free disk ratio for readiness")

    model_config = SettingsConfigDict(env_prefix="LOGSINK_STORAGE_")


class WorkerSettings(BaseSettings):
    """Per-application worker behaviour."""

    config_cache_seconds: float = Field(default=60, description="Config re-read interval")
    flush_interval_seconds: float = Field(default=30, description="Delay before dirty data is fsynced")
    rotation_interval_hours: float = Field(default=24, description="Maximum age of a log file")
    queue_size: int = Field(default=100, description="Per-worker queue capacity")

    # Eviction (0 disables)
    idle_timeout_seconds: float = Field(default=0, description="Evict workers idle for this long")
    max_workers: int = Field(default=0, description="Evict least recently used workers above this count")

    @field_validator("queue_size")
    def validate_queue_size(cls, v: int) -> int:
        """A zero-sized asyncio queue would be unbounded."""
        if v < 1:
            raise ValueError("queue_size must be at least 1")
        return v

    @property
    def rotation_interval_seconds(self) -> float:
        return self.rotation_interval_hours * 3600

    model_config = SettingsConfigDict(env_prefix="LOGSINK_WORKER_")


class ValidationSettings(BaseSettings):
    """Request validation configuration."""

    max_body_bytes: int = Field(default=10 * 1048576, description="Maximum request body size (10MB)")

    model_config = SettingsConfigDict(env_prefix="LOGSINK_VALIDATION_")


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Component settings
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)

    model_config = SettingsConfigDict(env_prefix="LOGSINK_", case_sensitive=False)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""

    # Load config file data
    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    settings = Settings()
    return settings


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    mappings = {
        ("server", "host"): "LOGSINK_HOST",
        ("server", "port"): "LOGSINK_PORT",
        ("server", "debug"): "LOGSINK_DEBUG",
        ("server", "log_level"): "LOGSINK_LOG_LEVEL",
        ("security", "admin_token"): "LOGSINK_SECURITY_ADMIN_TOKEN",
        ("storage", "config_dir"): "LOGSINK_STORAGE_CONFIG_DIR",
        ("storage", "log_root"): "LOGSINK_STORAGE_LOG_ROOT",
        ("storage", "disk_free_min_ratio"): "LOGSINK_STORAGE_DISK_FREE_MIN_RATIO",
        ("worker", "config_cache_seconds"): "LOGSINK_WORKER_CONFIG_CACHE_SECONDS",
        ("worker", "flush_interval_seconds"): "LOGSINK_WORKER_FLUSH_INTERVAL_SECONDS",
        ("worker", "rotation_interval_hours"): "LOGSINK_WORKER_ROTATION_INTERVAL_HOURS",
        ("worker", "queue_size"): "LOGSINK_WORKER_QUEUE_SIZE",
        ("worker", "idle_timeout_seconds"): "LOGSINK_WORKER_IDLE_TIMEOUT_SECONDS",
        ("worker", "max_workers"): "LOGSINK_WORKER_MAX_WORKERS",
        ("validation", "max_body_bytes"): "LOGSINK_VALIDATION_MAX_BODY_BYTES",
    }

    for (section, key), env_var in mappings.items():
        if env_var not in os.environ:
            value = (config_data.get(section) or {}).get(key)
            if value is not None:
                os.environ[env_var] = str(value)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
