"""Configuration management for the roster offline sync core."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class RemoteSettings(BaseModel):
    base_url: str | None = Field(
        default=None,
        description="Base URL of the row-store REST API (e.g. https://xyz.example.co/rest/v1)",
    )
    api_key: str | None = Field(default=None, repr=False)
    timeout_seconds: float = Field(default=10.0, ge=1.0, le=120.0)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError("remote base_url must use http or https")
        return value


class StorageSettings(BaseModel):
    sqlite_path: str = Field(default="./data/roster_cache.sqlite")
    sqlite_wal: bool = Field(default=True)
    device_key_path: str = Field(default="./data/keys")


class SyncSettings(BaseModel):
    interval_seconds: float = Field(default=30.0, ge=1.0, le=3600.0)
    check_interval_seconds: float = Field(default=15.0, ge=1.0, le=3600.0)


class AuditSettings(BaseModel):
    retention_days: int = Field(default=14, ge=1, le=365)
    fetch_limit: int = Field(default=50, ge=1, le=1000)


class AuthSettings(BaseModel):
    jwt_secret: str | None = Field(default=None, repr=False)
    jwt_audience: str = Field(default="authenticated")


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    remote: RemoteSettings = Field(default_factory=RemoteSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "remote_url": "ROSTER_REMOTE_URL",
    "remote_api_key": "ROSTER_REMOTE_API_KEY",
    "remote_timeout": "ROSTER_REMOTE_TIMEOUT_SECONDS",
    "sqlite_path": "ROSTER_SQLITE_PATH",
    "sqlite_wal": "ROSTER_SQLITE_WAL",
    "device_key_path": "ROSTER_DEVICE_KEY_PATH",
    "sync_interval": "ROSTER_SYNC_INTERVAL_SECONDS",
    "check_interval": "ROSTER_CHECK_INTERVAL_SECONDS",
    "audit_retention_days": "ROSTER_AUDIT_RETENTION_DAYS",
    "audit_fetch_limit": "ROSTER_AUDIT_FETCH_LIMIT",
    "jwt_secret": "ROSTER_JWT_SECRET",
    "jwt_audience": "ROSTER_JWT_AUDIENCE",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    root = _project_root().resolve()
    if candidate.is_absolute():
        resolved = candidate.resolve()
    else:
        resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


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


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
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
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "remote": {
            "base_url": os.getenv(ENV_KEYS["remote_url"], "").strip() or None,
            "api_key": os.getenv(ENV_KEYS["remote_api_key"]) or None,
            "timeout_seconds": _env_float(
                ENV_KEYS["remote_timeout"], RemoteSettings().timeout_seconds
            ),
        },
        "storage": {
            "sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["sqlite_path"], StorageSettings().sqlite_path)
            ),
            "sqlite_wal": _env_bool(ENV_KEYS["sqlite_wal"], StorageSettings().sqlite_wal),
            "device_key_path": _resolve_path(
                os.getenv(ENV_KEYS["device_key_path"], StorageSettings().device_key_path)
            ),
        },
        "sync": {
            "interval_seconds": _env_float(
                ENV_KEYS["sync_interval"], SyncSettings().interval_seconds
            ),
            "check_interval_seconds": _env_float(
                ENV_KEYS["check_interval"], SyncSettings().check_interval_seconds
            ),
        },
        "audit": {
            "retention_days": _env_int(
                ENV_KEYS["audit_retention_days"], AuditSettings().retention_days
            ),
            "fetch_limit": _env_int(ENV_KEYS["audit_fetch_limit"], AuditSettings().fetch_limit),
        },
        "auth": {
            "jwt_secret": os.getenv(ENV_KEYS["jwt_secret"]) or None,
            "jwt_audience": os.getenv(ENV_KEYS["jwt_audience"], AuthSettings().jwt_audience),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    Path(settings.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)
    Path(settings.storage.device_key_path).mkdir(parents=True, exist_ok=True)

    return settings
