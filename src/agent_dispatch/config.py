"""Runtime configuration for the dispatch engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

SESSION_BACKENDS = ("file", "redis")

DEFAULT_COMMAND_TEMPLATE = (
    "claude -p --permission-mode acceptEdits --session-id {session_id} -- {prompt}"
)


@dataclass(slots=True)
class DispatchSettings:
    """Dispatch loop and periodic driver settings."""

    tick_seconds: float = 1.0
    lock_timeout_seconds: float = 10.0
    reconcile_interval_seconds: float = 120.0
    cleanup_interval_seconds: float = 600.0
    reconcile_on_start: bool = True


@dataclass(slots=True)
class SessionSettings:
    """Session registry backend settings."""

    backend: str = "file"
    registry_dir: Path = Path(".agent_dispatch/sessions")
    redis_url: str | None = None
    redis_prefix: str = "agent_dispatch:sessions"
    stale_after_minutes: int = 60
    completed_retention_minutes: int = 60


@dataclass(slots=True)
class SpawnSettings:
    """Agent process launch settings."""

    command_template: str = DEFAULT_COMMAND_TEMPLATE
    prompt_dir: Path = Path(".agent_dispatch/prompts")


@dataclass(slots=True)
class RateLimitSettings:
    """Rate-limit diagnostics settings."""

    messages_path: Path = Path(".agent_dispatch/rate-limit-messages.json")


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".agent_dispatch.db")
    sqlite_busy_timeout_ms: int = 5_000
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)
    sessions: SessionSettings = field(default_factory=SessionSettings)
    spawn: SpawnSettings = field(default_factory=SpawnSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("AGENT_DISPATCH_DB_PATH", ".agent_dispatch.db")),
            sqlite_busy_timeout_ms=int(os.getenv("AGENT_DISPATCH_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            dispatch=DispatchSettings(
                tick_seconds=float(os.getenv("AGENT_DISPATCH_TICK_SECONDS", "1.0")),
                lock_timeout_seconds=float(
                    os.getenv("AGENT_DISPATCH_LOCK_TIMEOUT_SECONDS", "10.0"),
                ),
                reconcile_interval_seconds=float(
                    os.getenv("AGENT_DISPATCH_RECONCILE_INTERVAL_SECONDS", "120"),
                ),
                cleanup_interval_seconds=float(
                    os.getenv("AGENT_DISPATCH_CLEANUP_INTERVAL_SECONDS", "600"),
                ),
                reconcile_on_start=_env_bool("AGENT_DISPATCH_RECONCILE_ON_START", default=True),
            ),
            sessions=SessionSettings(
                backend=os.getenv("AGENT_DISPATCH_SESSION_BACKEND", "file").strip().lower(),
                registry_dir=Path(
                    os.getenv("AGENT_DISPATCH_SESSION_DIR", ".agent_dispatch/sessions"),
                ),
                redis_url=os.getenv("AGENT_DISPATCH_REDIS_URL") or None,
                redis_prefix=os.getenv("AGENT_DISPATCH_REDIS_PREFIX", "agent_dispatch:sessions"),
                stale_after_minutes=int(os.getenv("AGENT_DISPATCH_SESSION_STALE_MINUTES", "60")),
                completed_retention_minutes=int(
                    os.getenv("AGENT_DISPATCH_SESSION_COMPLETED_RETENTION_MINUTES", "60"),
                ),
            ),
            spawn=SpawnSettings(
                command_template=os.getenv(
                    "AGENT_DISPATCH_COMMAND_TEMPLATE",
                    DEFAULT_COMMAND_TEMPLATE,
                ),
                prompt_dir=Path(os.getenv("AGENT_DISPATCH_PROMPT_DIR", ".agent_dispatch/prompts")),
            ),
            rate_limit=RateLimitSettings(
                messages_path=Path(
                    os.getenv(
                        "AGENT_DISPATCH_RATE_LIMIT_MESSAGES_PATH",
                        ".agent_dispatch/rate-limit-messages.json",
                    ),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if timers, registry or spawn settings are unusable."""

        if self.dispatch.tick_seconds <= 0:
            raise ValueError("AGENT_DISPATCH_TICK_SECONDS must be > 0.")
        if self.dispatch.lock_timeout_seconds <= 0:
            raise ValueError("AGENT_DISPATCH_LOCK_TIMEOUT_SECONDS must be > 0.")
        if self.dispatch.reconcile_interval_seconds <= 0:
            raise ValueError("AGENT_DISPATCH_RECONCILE_INTERVAL_SECONDS must be > 0.")
        if self.dispatch.cleanup_interval_seconds <= 0:
            raise ValueError("AGENT_DISPATCH_CLEANUP_INTERVAL_SECONDS must be > 0.")
        if self.sessions.stale_after_minutes <= 0:
            raise ValueError("AGENT_DISPATCH_SESSION_STALE_MINUTES must be > 0.")
        if self.sessions.completed_retention_minutes < 0:
            raise ValueError("AGENT_DISPATCH_SESSION_COMPLETED_RETENTION_MINUTES must be >= 0.")
        if self.sessions.backend not in SESSION_BACKENDS:
            raise ValueError(
                "AGENT_DISPATCH_SESSION_BACKEND must be one of "
                f"{', '.join(SESSION_BACKENDS)}; got {self.sessions.backend!r}.",
            )
        if self.sessions.backend == "redis" and not self.sessions.redis_url:
            raise ValueError(
                "AGENT_DISPATCH_REDIS_URL is required when AGENT_DISPATCH_SESSION_BACKEND=redis.",
            )
        if "{prompt}" not in self.spawn.command_template:
            raise ValueError("AGENT_DISPATCH_COMMAND_TEMPLATE must include {prompt}.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
