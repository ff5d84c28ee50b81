"""
Configuration system for lexilot-jobs.

This module provides typed configuration classes with:
- Dataclass-based settings with validation
- Environment variable loading
- YAML/TOML file loading
- Sensible defaults with override capability
"""
from __future__ import annotations

import dataclasses
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

import yaml
from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["json", "text"]
StoreBackend = Literal["memory", "redis"]


# =============================================================================
# Dispatcher Configuration
# =============================================================================

@dataclass
class DispatcherConfig:
    """Configuration for the server-side job dispatcher."""

    # Upper bound on concurrently running handlers
    max_workers: int = 4

    # Re-enqueue jobs left pending in the store when the dispatcher starts
    resume_pending: bool = True

    def __post_init__(self):
        if self.max_workers < 1:
            raise ConfigError("max_workers must be at least 1")


# =============================================================================
# Monitor Configuration
# =============================================================================

@dataclass
class MonitorConfig:
    """Timing configuration for the client job monitor (seconds)."""

    # Individual poll cadence
    default_interval: float = 3.0
    processing_fast_interval: float = 1.5
    processing_fastest_interval: float = 1.0
    processing_fast_after: int = 5
    processing_fastest_after: int = 10

    # Poll failure backoff: min(backoff_max, backoff_base * backoff_factor ** (n - 1))
    backoff_base: float = 2.0
    backoff_factor: float = 1.5
    backoff_max: float = 10.0

    # Reconciliation against the authoritative job list
    reconcile_interval: float = 1.0
    reconcile_min_gap: float = 1.0
    reconcile_skip_window: float = 30.0
    preservation_window: float = 30.0
    list_limit: int = 20
    adaptive_reconcile: bool = False

    def __post_init__(self):
        if self.processing_fastest_interval <= 0:
            raise ConfigError("processing_fastest_interval must be positive")
        if self.backoff_base <= 0 or self.backoff_factor < 1:
            raise ConfigError("backoff_base must be positive and backoff_factor >= 1")
        if self.backoff_max < self.backoff_base:
            raise ConfigError("backoff_max cannot be lower than backoff_base")
        if self.reconcile_interval <= 0:
            raise ConfigError("reconcile_interval must be positive")
        if not 1 <= self.list_limit <= 100:
            raise ConfigError("list_limit must be between 1 and 100")


# =============================================================================
# Store Configuration
# =============================================================================

@dataclass
class StoreConfig:
    """Configuration for the job store backend."""

    backend: StoreBackend = "memory"
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "lexilot:jobs"

    def __post_init__(self):
        if self.backend not in ("memory", "redis"):
            raise ConfigError(f"Unsupported store backend: {self.backend}")


# =============================================================================
# API Configuration
# =============================================================================

@dataclass
class ApiConfig:
    """Configuration for the job query API and its HTTP client."""

    # Header carrying the already-authenticated owner identity
    owner_header: str = "X-User-Id"

    # Client side
    base_url: str = "http://localhost:8000"
    request_timeout: float = 10.0

    def __post_init__(self):
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive")


# =============================================================================
# Logging Configuration
# =============================================================================

@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: LogLevel = "INFO"
    format: LogFormat = "json"


# =============================================================================
# Master Settings
# =============================================================================

@dataclass
class Settings:
    """
    Master configuration for the job system.

    This aggregates all configuration sections into a single object
    that can be loaded from environment variables, files, or constructed
    programmatically.
    """

    dispatcher: DispatcherConfig = field(default_factory=DispatcherConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, prefix: str = "LEXILOT_") -> "Settings":
        """
        Load settings from environment variables.

        Environment variables are prefixed (default: LEXILOT_) and use
        underscore-separated paths for nested settings.

        Example:
            LEXILOT_DISPATCHER_MAX_WORKERS=8
            LEXILOT_STORE_BACKEND=redis
            LEXILOT_MONITOR_ADAPTIVE_RECONCILE=true
        """
        data: Dict[str, Dict[str, Any]] = {}
        for section, section_cls in cls._sections().items():
            for f in dataclasses.fields(section_cls):
                raw = os.getenv(f"{prefix}{section}_{f.name}".upper())
                if raw is None:
                    continue
                data.setdefault(section, {})[f.name] = _coerce(raw, section_cls, f.name)
        return cls._from_dict(data)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Settings":
        """
        Load settings from a YAML or TOML file.

        Args:
            path: Path to configuration file (.yaml, .yml, or .toml)

        Returns:
            Settings object with values from file
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        elif suffix == ".toml":
            with open(path, "rb") as f:
                data = tomllib.load(f)
        else:
            raise ConfigError(f"Unsupported config file format: {suffix}")

        return cls._from_dict(data)

    @classmethod
    def _sections(cls) -> Dict[str, type]:
        return {
            "dispatcher": DispatcherConfig,
            "monitor": MonitorConfig,
            "store": StoreConfig,
            "api": ApiConfig,
            "logging": LoggingConfig,
        }

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Create Settings from a dictionary.

        Sections are rebuilt through their constructors so validation in
        ``__post_init__`` also applies to file and environment values.
        """
        kwargs: Dict[str, Any] = {}
        for section, section_cls in cls._sections().items():
            values = data.get(section)
            if not values:
                continue
            known = {f.name for f in dataclasses.fields(section_cls)}
            kwargs[section] = section_cls(**{k: v for k, v in values.items() if k in known})
        settings = cls(**kwargs)
        settings.logging.level = settings.logging.level.upper()  # type: ignore[assignment]
        settings.logging.format = settings.logging.format.lower()  # type: ignore[assignment]
        return settings

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary."""
        return dataclasses.asdict(self)


def _coerce(raw: str, section_cls: type, name: str) -> Any:
    """Convert an environment string to the type of the field's default."""
    default = getattr(section_cls(), name)
    if isinstance(default, bool):
        value = raw.strip().lower()
        if value in {"1", "true", "yes", "on"}:
            return True
        if value in {"0", "false", "no", "off"}:
            return False
        raise ConfigError(f"Invalid boolean for {name}: {raw!r}")
    try:
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid value for {name}: {raw!r}", cause=exc) from exc
    return raw


# =============================================================================
# Global Settings & Helpers
# =============================================================================

_global_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance, creating with defaults if needed."""
    global _global_settings
    if _global_settings is None:
        _global_settings = Settings.from_env()
    return _global_settings


def configure(settings: Optional[Settings] = None, **kwargs) -> Settings:
    """
    Configure global settings.

    Args:
        settings: Settings object to use globally
        **kwargs: Override specific settings sections

    Returns:
        The configured Settings object
    """
    global _global_settings

    if settings is not None:
        _global_settings = settings
    elif _global_settings is None:
        _global_settings = Settings.from_env()

    for key, value in kwargs.items():
        if hasattr(_global_settings, key):
            setattr(_global_settings, key, value)

    return _global_settings


def load_env(path: Optional[str] = None, *, override: bool = False) -> bool:
    """
    Load environment variables from a .env file.

    Args:
        path: Optional path to a .env file. If not provided, uses find_dotenv().
        override: Whether to override existing environment variables.

    Returns:
        True if a .env file was found and loaded, False otherwise.
    """
    env_path = path or find_dotenv(usecwd=True)
    if not env_path:
        return False
    return load_dotenv(env_path, override=override)


__all__ = [
    "DispatcherConfig",
    "MonitorConfig",
    "StoreConfig",
    "ApiConfig",
    "LoggingConfig",
    "Settings",
    "get_settings",
    "configure",
    "load_env",
]
