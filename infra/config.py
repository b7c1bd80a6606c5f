"""Centralized application configuration with schema validation.

This module is intentionally compatibility-first:
- Supports legacy flat environment names (for example ``API_KEY``).
- Supports nested names (for example ``API__API_KEY``) for future consistency.
- Optionally reads a local ``.env`` file before process env values.

Secrets (API key, email salt) go through ``resolve_secrets`` before use. In
production a missing secret is a hard error; elsewhere an ephemeral one is
generated and surfaced once in the logs.
"""

from __future__ import annotations

import logging
import os
import secrets
from collections.abc import Mapping
from pathlib import Path
from threading import Lock

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

_LOGGER = logging.getLogger(__name__)

_DEFAULT_CACHE_TTL_SECONDS = 300
_PRODUCTION_ENVIRONMENTS = {"prod", "production"}
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or unusable."""


def _parse_flag(value: object, default: bool) -> bool:
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return default


class WarehouseConfig(BaseModel):
    """Read-only warehouse (Postgres) connection settings."""

    model_config = ConfigDict(frozen=True)

    url: str | None = Field(default=None, description="Postgres connection URL")
    pool_maxconn: int = Field(default=10, ge=1, le=100)
    connect_timeout: int = Field(default=5, ge=1, le=60)
    stream_batch_size: int = Field(default=2000, ge=1)


class APIConfig(BaseModel):
    """Delivery endpoint runtime configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)
    api_key: str = Field(default="")
    cors_origin: str = Field(default="*")
    debug_errors: bool = Field(default=False)

    @field_validator("api_key", "cors_origin", mode="before")
    @classmethod
    def _strip_text(cls, value: object) -> str:
        return str(value or "").strip()

    @field_validator("debug_errors", mode="before")
    @classmethod
    def _normalize_debug_errors(cls, value: object) -> bool:
        return _parse_flag(value, False)


class SnapshotConfig(BaseModel):
    """Snapshot generation and cache settings."""

    model_config = ConfigDict(frozen=True)

    email_salt: str = Field(default="")
    # Not read from the environment: the cache lifetime is a fixed default.
    ttl_seconds: int = Field(default=_DEFAULT_CACHE_TTL_SECONDS, ge=1)
    compress: bool = Field(default=True)
    artifact_dir: str | None = Field(default=None)

    @field_validator("email_salt", mode="before")
    @classmethod
    def _strip_salt(cls, value: object) -> str:
        return str(value or "").strip()

    @field_validator("compress", mode="before")
    @classmethod
    def _normalize_compress(cls, value: object) -> bool:
        return _parse_flag(value, True)

    @field_validator("artifact_dir", mode="before")
    @classmethod
    def _normalize_artifact_dir(cls, value: object) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class LoggingSettings(BaseModel):
    """Repository-wide logging settings."""

    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)
    override_root_handlers: bool = Field(default=False)

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        text = str(value or "").strip().upper()
        if text in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            return text
        return "INFO"


class DbMetricsConfig(BaseModel):
    """Warehouse query instrumentation settings."""

    model_config = ConfigDict(frozen=True)

    metrics_enabled: bool = Field(default=True)
    slow_query_threshold_ms: float = Field(default=1000.0, ge=0.0)

    @field_validator("metrics_enabled", mode="before")
    @classmethod
    def _normalize_metrics_enabled(cls, value: object) -> bool:
        return _parse_flag(value, True)

    @field_validator("slow_query_threshold_ms", mode="before")
    @classmethod
    def _normalize_threshold_ms(cls, value: object) -> float:
        if value is None:
            return 1000.0
        text = str(value).strip()
        if text == "":
            return 1000.0
        try:
            parsed = float(text)
        except (TypeError, ValueError):
            return 1000.0
        return max(0.0, parsed)


class Settings(BaseModel):
    """Top-level settings model."""

    model_config = ConfigDict(frozen=True)

    environment: str = Field(default="development")
    warehouse: WarehouseConfig = Field(default_factory=WarehouseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    db_metrics: DbMetricsConfig = Field(default_factory=DbMetricsConfig)

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, value: object) -> str:
        text = str(value or "").strip().lower()
        return text or "development"

    @property
    def is_production(self) -> bool:
        return self.environment in _PRODUCTION_ENVIRONMENTS

    @classmethod
    def from_env(
        cls,
        *,
        env: Mapping[str, str] | None = None,
        env_file: str = ".env",
    ) -> Settings:
        """Build settings from `.env` then environment variables."""
        runtime_env = os.environ if env is None else env
        merged_env = _merge_env(_load_dotenv(Path(env_file)), runtime_env)
        payload = _build_payload(merged_env)
        return cls.model_validate(payload)


def _load_dotenv(path: Path) -> dict[str, str]:
    """Parse a minimal `.env` file format."""
    if not path.exists() or not path.is_file():
        return {}

    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, raw_value = line.split("=", 1)
        key_clean = key.strip()
        value = raw_value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        if key_clean:
            values[key_clean] = value
    return values


def _merge_env(dotenv_values: Mapping[str, str], runtime_env: Mapping[str, str]) -> dict[str, str]:
    """Return env map where process env overrides `.env` values."""
    merged = {str(k): str(v) for k, v in dotenv_values.items()}
    for key, value in runtime_env.items():
        merged[str(key)] = str(value)
    return merged


def _first_non_empty(env: Mapping[str, str], *keys: str) -> str | None:
    """Return the first non-empty value for the provided keys."""
    for key in keys:
        value = str(env.get(key, "")).strip()
        if value:
            return value
    return None


def _build_payload(env: Mapping[str, str]) -> dict[str, object]:
    """Build nested settings payload from env values."""
    warehouse = {
        "url": _first_non_empty(
            env, "WAREHOUSE__URL", "WAREHOUSE_READONLY_UNIFIED_YSWS_DATABASE_URL", "DB_URL"
        ),
        "pool_maxconn": _first_non_empty(env, "WAREHOUSE__POOL_MAXCONN", "DB_POOL_MAXCONN"),
        "connect_timeout": _first_non_empty(env, "WAREHOUSE__CONNECT_TIMEOUT", "DB_CONNECT_TIMEOUT"),
        "stream_batch_size": _first_non_empty(env, "WAREHOUSE__STREAM_BATCH_SIZE"),
    }
    api = {
        "host": _first_non_empty(env, "API__HOST", "API_HOST", "HOST"),
        "port": _first_non_empty(env, "API__PORT", "API_PORT", "PORT"),
        "api_key": _first_non_empty(env, "API__API_KEY", "API_KEY"),
        "cors_origin": _first_non_empty(env, "API__CORS_ORIGIN", "API_CORS_ORIGIN"),
        "debug_errors": _first_non_empty(env, "API__DEBUG_ERRORS", "API_DEBUG_ERRORS"),
    }
    snapshot = {
        "email_salt": _first_non_empty(env, "SNAPSHOT__EMAIL_SALT", "EMAIL_SALT"),
        "compress": _first_non_empty(env, "SNAPSHOT__COMPRESS", "SNAPSHOT_COMPRESS"),
        "artifact_dir": _first_non_empty(env, "SNAPSHOT__ARTIFACT_DIR", "SNAPSHOT_ARTIFACT_DIR"),
    }
    logging_settings = {
        "level": _first_non_empty(env, "LOGGING__LEVEL", "SNAPSHOT_LOG_LEVEL"),
        "json_logs": _first_non_empty(env, "LOGGING__JSON_LOGS", "SNAPSHOT_LOG_JSON"),
        "override_root_handlers": _first_non_empty(
            env, "LOGGING__OVERRIDE_ROOT_HANDLERS", "SNAPSHOT_LOG_OVERRIDE"
        ),
    }
    db_metrics = {
        "metrics_enabled": _first_non_empty(env, "DB_METRICS__ENABLED", "DB_QUERY_METRICS_ENABLED"),
        "slow_query_threshold_ms": _first_non_empty(
            env, "DB_METRICS__SLOW_QUERY_THRESHOLD_MS", "DB_SLOW_QUERY_THRESHOLD_MS"
        ),
    }
    payload: dict[str, object] = {
        "warehouse": {k: v for k, v in warehouse.items() if v is not None},
        "api": {k: v for k, v in api.items() if v is not None},
        "snapshot": {k: v for k, v in snapshot.items() if v is not None},
        "logging": {k: v for k, v in logging_settings.items() if v is not None},
        "db_metrics": {k: v for k, v in db_metrics.items() if v is not None},
    }
    environment = _first_non_empty(env, "APP_ENV", "ENVIRONMENT")
    if environment is not None:
        payload["environment"] = environment
    return payload


def _generate_secret() -> str:
    return secrets.token_hex(32)


def resolve_secrets(settings: Settings) -> Settings:
    """Return settings with the API key and email salt guaranteed non-empty.

    Production deployments must configure both; a missing one raises
    ``ConfigurationError``. In development, a random secret is minted for this
    process only and logged once so the operator can use it. Generated email
    salts make identity digests unstable across restarts.
    """
    missing = []
    if not settings.api.api_key:
        missing.append("API_KEY")
    if not settings.snapshot.email_salt:
        missing.append("EMAIL_SALT")
    if not missing:
        return settings

    if settings.is_production:
        raise ConfigurationError(
            f"Missing required secret(s) in {settings.environment}: {', '.join(missing)}"
        )

    api = settings.api
    snapshot = settings.snapshot
    if not api.api_key:
        api = api.model_copy(update={"api_key": _generate_secret()})
        _LOGGER.warning(
            "API_KEY not set; generated development key (send as 'Authorization: Bearer <key>' "
            "or 'X-API-Key: <key>'): %s",
            api.api_key,
        )
    if not snapshot.email_salt:
        snapshot = snapshot.model_copy(update={"email_salt": _generate_secret()})
        _LOGGER.warning(
            "EMAIL_SALT not set; generated development salt (save it for stable email hashes): %s",
            snapshot.email_salt,
        )
    return settings.model_copy(update={"api": api, "snapshot": snapshot})


_SETTINGS_LOCK = Lock()
_SETTINGS_CACHE: Settings | None = None


def get_settings(*, reload: bool = False) -> Settings:
    """Return cached settings, optionally forcing reload from env."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        if reload or _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = Settings.from_env()
        return _SETTINGS_CACHE


def clear_settings_cache() -> None:
    """Clear in-process settings cache."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None


__all__ = [
    "APIConfig",
    "ConfigurationError",
    "DbMetricsConfig",
    "LoggingSettings",
    "Settings",
    "SnapshotConfig",
    "WarehouseConfig",
    "get_settings",
    "clear_settings_cache",
    "resolve_secrets",
    "ValidationError",
]
