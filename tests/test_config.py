"""Unit tests for centralized configuration parsing and validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from infra.config import (
    ConfigurationError,
    Settings,
    ValidationError,
    clear_settings_cache,
    get_settings,
    resolve_secrets,
)


def test_settings_reads_legacy_env_keys() -> None:
    """Legacy flat env keys should map to nested settings models."""
    env = {
        "WAREHOUSE_READONLY_UNIFIED_YSWS_DATABASE_URL": "postgres://legacy/db",
        "DB_POOL_MAXCONN": "15",
        "DB_CONNECT_TIMEOUT": "9",
        "API_KEY": " secret-key ",
        "EMAIL_SALT": "pepper",
        "API_DEBUG_ERRORS": "1",
        "PORT": "7001",
    }
    settings = Settings.from_env(env=env, env_file=".missing.env")

    assert settings.warehouse.url == "postgres://legacy/db"
    assert settings.warehouse.pool_maxconn == 15
    assert settings.warehouse.connect_timeout == 9
    assert settings.api.api_key == "secret-key"
    assert settings.snapshot.email_salt == "pepper"
    assert settings.api.debug_errors is True
    assert settings.api.port == 7001


def test_settings_reads_nested_env_keys() -> None:
    """Nested env keys should be supported with `__` delimiter."""
    env = {
        "WAREHOUSE__URL": "postgres://nested/db",
        "WAREHOUSE__POOL_MAXCONN": "11",
        "API__HOST": "127.0.0.1",
        "API__PORT": "5050",
        "SNAPSHOT__COMPRESS": "off",
        "SNAPSHOT__ARTIFACT_DIR": "/var/tmp/snapshots",
    }
    settings = Settings.from_env(env=env, env_file=".missing.env")

    assert settings.warehouse.url == "postgres://nested/db"
    assert settings.warehouse.pool_maxconn == 11
    assert settings.api.host == "127.0.0.1"
    assert settings.api.port == 5050
    assert settings.snapshot.compress is False
    assert settings.snapshot.artifact_dir == "/var/tmp/snapshots"


def test_nested_key_wins_over_legacy_key() -> None:
    env = {"WAREHOUSE__URL": "postgres://nested/db", "DB_URL": "postgres://legacy/db"}
    settings = Settings.from_env(env=env, env_file=".missing.env")
    assert settings.warehouse.url == "postgres://nested/db"


def test_defaults() -> None:
    settings = Settings.from_env(env={}, env_file=".missing.env")

    assert settings.environment == "development"
    assert settings.is_production is False
    assert settings.warehouse.url is None
    assert settings.api.port == 8080
    assert settings.api.cors_origin == "*"
    assert settings.snapshot.ttl_seconds == 300
    assert settings.snapshot.compress is True


def test_cache_ttl_is_not_read_from_env() -> None:
    settings = Settings.from_env(env={"SNAPSHOT__TTL_SECONDS": "5"}, env_file=".missing.env")
    assert settings.snapshot.ttl_seconds == 300


def test_settings_invalid_pool_size_raises_validation_error() -> None:
    """Invalid constrained values should fail schema validation."""
    env = {"DB_POOL_MAXCONN": "0"}

    with pytest.raises(ValidationError):
        Settings.from_env(env=env, env_file=".missing.env")


def test_dotenv_values_are_overridden_by_process_env(tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# local overrides\nAPI_KEY='from-dotenv'\nEMAIL_SALT=\"dotenv-salt\"\nnot a pair\n",
        encoding="utf-8",
    )
    settings = Settings.from_env(env={"API_KEY": "from-env"}, env_file=str(env_file))

    assert settings.api.api_key == "from-env"
    assert settings.snapshot.email_salt == "dotenv-salt"


def test_get_settings_reload_rebuilds_cache(monkeypatch: Any) -> None:
    """Reload should rebuild cached settings from current process env."""
    clear_settings_cache()
    monkeypatch.setenv("WAREHOUSE__URL", "postgres://first/db")
    first = get_settings(reload=True)

    monkeypatch.setenv("WAREHOUSE__URL", "postgres://second/db")
    second = get_settings(reload=True)

    assert first.warehouse.url == "postgres://first/db"
    assert second.warehouse.url == "postgres://second/db"


def test_resolve_secrets_keeps_configured_values() -> None:
    settings = Settings.from_env(env={"API_KEY": "k", "EMAIL_SALT": "s"}, env_file=".missing.env")
    assert resolve_secrets(settings) is settings


@pytest.mark.parametrize("env_name", ["prod", "Production"])
def test_resolve_secrets_refuses_missing_secrets_in_production(env_name: str) -> None:
    settings = Settings.from_env(env={"APP_ENV": env_name, "API_KEY": "k"}, env_file=".missing.env")

    with pytest.raises(ConfigurationError, match="EMAIL_SALT"):
        resolve_secrets(settings)


def test_resolve_secrets_generates_development_values(caplog: Any) -> None:
    settings = Settings.from_env(env={}, env_file=".missing.env")

    caplog.set_level("WARNING")
    resolved = resolve_secrets(settings)

    assert len(resolved.api.api_key) == 64
    assert len(resolved.snapshot.email_salt) == 64
    assert resolved.api.api_key != resolved.snapshot.email_salt
    # The operator needs the generated key to call the API.
    assert any(resolved.api.api_key in r.getMessage() for r in caplog.records)
    # Input settings are frozen and untouched.
    assert settings.api.api_key == ""
