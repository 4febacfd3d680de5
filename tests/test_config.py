from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agent_dispatch.config import (
    DEFAULT_COMMAND_TEMPLATE,
    DispatchSettings,
    SessionSettings,
    Settings,
    SpawnSettings,
)

pytestmark = [
    allure.epic("Operations"),
    allure.feature("Configuration"),
]


def test_defaults_validate() -> None:
    settings = Settings()

    settings.validate()
    assert settings.dispatch.tick_seconds == 1.0
    assert settings.dispatch.lock_timeout_seconds == 10.0
    assert settings.sessions.stale_after_minutes == 60
    assert settings.spawn.command_template == DEFAULT_COMMAND_TEMPLATE


def test_from_env_reads_dispatch_variables(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_DISPATCH_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("AGENT_DISPATCH_TICK_SECONDS", "2.5")
    monkeypatch.setenv("AGENT_DISPATCH_RECONCILE_ON_START", "off")
    monkeypatch.setenv("AGENT_DISPATCH_SESSION_BACKEND", " Redis ")
    monkeypatch.setenv("AGENT_DISPATCH_REDIS_URL", "redis://localhost:6379/3")
    monkeypatch.setenv("AGENT_DISPATCH_SESSION_STALE_MINUTES", "15")
    monkeypatch.setenv("AGENT_DISPATCH_COMMAND_TEMPLATE", "agent {prompt}")

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "env.db"
    assert settings.dispatch.tick_seconds == 2.5
    assert settings.dispatch.reconcile_on_start is False
    assert settings.sessions.backend == "redis"
    assert settings.sessions.redis_url == "redis://localhost:6379/3"
    assert settings.sessions.stale_after_minutes == 15
    assert settings.spawn.command_template == "agent {prompt}"
    settings.validate()


def test_explicit_db_path_wins_over_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_DISPATCH_DB_PATH", str(tmp_path / "env.db"))

    settings = Settings.from_env(db_path=tmp_path / "cli.db")

    assert settings.db_path == tmp_path / "cli.db"


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("AGENT_DISPATCH_RECONCILE_ON_START", "sometimes")

    with pytest.raises(ValueError, match="Invalid boolean value"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(dispatch=DispatchSettings(tick_seconds=0)), "TICK_SECONDS"),
        (Settings(dispatch=DispatchSettings(lock_timeout_seconds=-1)), "LOCK_TIMEOUT"),
        (Settings(dispatch=DispatchSettings(reconcile_interval_seconds=0)), "RECONCILE_INTERVAL"),
        (Settings(dispatch=DispatchSettings(cleanup_interval_seconds=0)), "CLEANUP_INTERVAL"),
        (Settings(sessions=SessionSettings(stale_after_minutes=0)), "STALE_MINUTES"),
        (
            Settings(sessions=SessionSettings(completed_retention_minutes=-1)),
            "COMPLETED_RETENTION",
        ),
        (Settings(sessions=SessionSettings(backend="memory")), "SESSION_BACKEND must be one of"),
        (Settings(sessions=SessionSettings(backend="redis")), "REDIS_URL is required"),
        (Settings(spawn=SpawnSettings(command_template="agent")), "must include \\{prompt\\}"),
    ],
)
def test_validate_rejects_unusable_settings(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()
