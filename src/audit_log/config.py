"""Configuration management for the audit log."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

_config_logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class StorageSettings(BaseModel):
    sqlite_path: str = Field(default="./data/audit.sqlite")
    sqlite_wal: bool = Field(default=True)


class CleanupSettings(BaseModel):
    """Retention cleanup tuning.

    ``max_batches`` and ``max_seconds`` bound a single cleanup call. When either
    limit is reached the call stops early and reports a partial sweep; running
    it again continues with the remaining stale records.
    """

    batch_size: int = Field(default=25, ge=1, le=5000)
    max_batches: int = Field(default=10_000, ge=1)
    max_seconds: float | None = Field(
        default=300.0,
        gt=0,
        description="Wall-clock budget for one cleanup call. None disables the limit.",
    )
    retention_seconds: int = Field(default=14 * 24 * 60 * 60, ge=0)


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    cleanup: CleanupSettings = Field(default_factory=CleanupSettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "sqlite_path": "AUDIT_SQLITE_PATH",
    "sqlite_wal": "AUDIT_SQLITE_WAL",
    "cleanup_batch_size": "AUDIT_CLEANUP_BATCH_SIZE",
    "cleanup_max_batches": "AUDIT_CLEANUP_MAX_BATCHES",
    "cleanup_max_seconds": "AUDIT_CLEANUP_MAX_SECONDS",
    "retention_seconds": "AUDIT_RETENTION_SECONDS",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})
_NONE_VALUES = frozenset({"none", "off", "0"})


def _resolve_path(path: str) -> str:
    if path == MEMORY_DATABASE:
        return path
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = Path.cwd() / candidate
    return str(candidate.resolve())


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_optional_float(key: str, default: float | None) -> float | None:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    if value.strip().lower() in _NONE_VALUES:
        return None
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv()
    log_file_env = os.getenv(ENV_KEYS["log_file"])

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "storage": {
            "sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["sqlite_path"], StorageSettings().sqlite_path)
            ),
            "sqlite_wal": _env_bool(ENV_KEYS["sqlite_wal"], StorageSettings().sqlite_wal),
        },
        "cleanup": {
            "batch_size": _env_int(
                ENV_KEYS["cleanup_batch_size"],
                CleanupSettings().batch_size,
            ),
            "max_batches": _env_int(
                ENV_KEYS["cleanup_max_batches"],
                CleanupSettings().max_batches,
            ),
            "max_seconds": _env_optional_float(
                ENV_KEYS["cleanup_max_seconds"],
                CleanupSettings().max_seconds,
            ),
            "retention_seconds": _env_int(
                ENV_KEYS["retention_seconds"],
                CleanupSettings().retention_seconds,
            ),
        },
    }

    try:
        return Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc
