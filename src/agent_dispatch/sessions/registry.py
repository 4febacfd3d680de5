"""Durable registry of in-flight and completed agent sessions.

The registry lives outside the relational store so a restarted scheduler can
tell whether a session a task claims is still running. Records are kept in
two pools, ``active`` and ``completed``, behind a small key-value interface
with a file backend for single-node use and a redis backend for shared use.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Protocol
from uuid import uuid4

import redis

from agent_dispatch.storage.common import from_iso, utc_now

logger = logging.getLogger(__name__)


class SessionPool(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class CorruptSessionRecordError(ValueError):
    """Stored payload cannot be decoded into a session record."""


@dataclass(slots=True)
class SessionRecord:
    """One agent session as tracked by the registry."""

    session_id: str
    task_id: str
    agent_id: str
    project_id: str
    repository_path: str
    started_at: datetime
    last_ping: datetime
    config_dir: str | None = None
    completed_at: datetime | None = None

    def to_payload(self) -> str:
        return json.dumps(
            {
                "session_id": self.session_id,
                "task_id": self.task_id,
                "agent_id": self.agent_id,
                "project_id": self.project_id,
                "repository_path": self.repository_path,
                "started_at": self.started_at.isoformat(),
                "last_ping": self.last_ping.isoformat(),
                "config_dir": self.config_dir,
                "completed_at": (
                    self.completed_at.isoformat() if self.completed_at is not None else None
                ),
            },
            ensure_ascii=False,
            sort_keys=True,
        )

    @classmethod
    def from_payload(cls, payload: str) -> SessionRecord:
        try:
            raw = json.loads(payload)
            completed_at = raw.get("completed_at")
            return cls(
                session_id=str(raw["session_id"]),
                task_id=str(raw["task_id"]),
                agent_id=str(raw["agent_id"]),
                project_id=str(raw["project_id"]),
                repository_path=str(raw["repository_path"]),
                started_at=from_iso(str(raw["started_at"])),
                last_ping=from_iso(str(raw.get("last_ping") or raw["started_at"])),
                config_dir=raw.get("config_dir"),
                completed_at=from_iso(str(completed_at)) if completed_at else None,
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as error:
            raise CorruptSessionRecordError(str(error)) from error


class SessionStore(Protocol):
    """Key-value backend holding serialized records per pool."""

    def put(self, pool: SessionPool, session_id: str, payload: str) -> None:
        """Create or replace one record."""

    def get(self, pool: SessionPool, session_id: str) -> str | None:
        """Return the raw payload or None."""

    def delete(self, pool: SessionPool, session_id: str) -> bool:
        """Remove one record; return True if it existed."""

    def items(self, pool: SessionPool) -> list[tuple[str, str]]:
        """Return ``(session_id, payload)`` pairs; unreadable entries carry an empty payload."""


class FileSessionStore:
    """One ``<session_id>.json`` file per record under ``<root>/<pool>/``."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def put(self, pool: SessionPool, session_id: str, payload: str) -> None:
        path = self._path(pool, session_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
        tmp_path.write_text(payload, "utf-8")
        os.replace(tmp_path, path)

    def get(self, pool: SessionPool, session_id: str) -> str | None:
        path = self._path(pool, session_id)
        try:
            return path.read_text("utf-8")
        except FileNotFoundError:
            return None

    def delete(self, pool: SessionPool, session_id: str) -> bool:
        try:
            self._path(pool, session_id).unlink()
        except FileNotFoundError:
            return False
        return True

    def items(self, pool: SessionPool) -> list[tuple[str, str]]:
        pool_dir = self.root / pool.value
        if not pool_dir.is_dir():
            return []
        entries: list[tuple[str, str]] = []
        for path in sorted(pool_dir.glob("*.json")):
            try:
                payload = path.read_text("utf-8")
            except FileNotFoundError:
                continue
            except (OSError, UnicodeDecodeError) as error:
                logger.warning("Unreadable session file %s: %s", path, error)
                payload = ""
            entries.append((path.stem, payload))
        return entries

    def _path(self, pool: SessionPool, session_id: str) -> Path:
        if not session_id or "/" in session_id or "\\" in session_id or session_id.startswith("."):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.root / pool.value / f"{session_id}.json"


class RedisSessionStore:
    """One redis hash per pool, field = session id, value = JSON payload."""

    def __init__(self, client: redis.Redis, *, prefix: str = "agent_dispatch:sessions") -> None:
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, *, prefix: str = "agent_dispatch:sessions") -> RedisSessionStore:
        return cls(redis.Redis.from_url(url, decode_responses=True), prefix=prefix)

    def put(self, pool: SessionPool, session_id: str, payload: str) -> None:
        self.client.hset(self._key(pool), session_id, payload)

    def get(self, pool: SessionPool, session_id: str) -> str | None:
        value = self.client.hget(self._key(pool), session_id)
        return _as_text(value) if value is not None else None

    def delete(self, pool: SessionPool, session_id: str) -> bool:
        return int(self.client.hdel(self._key(pool), session_id)) > 0

    def items(self, pool: SessionPool) -> list[tuple[str, str]]:
        raw = self.client.hgetall(self._key(pool))
        return sorted((_as_text(key), _as_text(value)) for key, value in raw.items())

    def _key(self, pool: SessionPool) -> str:
        return f"{self.prefix}:{pool.value}"


class SessionRegistry:
    """Session lifecycle operations over a pluggable store."""

    def __init__(self, store: SessionStore) -> None:
        self.store = store

    def register(self, record: SessionRecord) -> None:
        """Put a record in the active pool, dropping any completed entry with the same id."""

        self.store.put(SessionPool.ACTIVE, record.session_id, record.to_payload())
        self.store.delete(SessionPool.COMPLETED, record.session_id)

    def register_completed(self, record: SessionRecord, *, now: datetime | None = None) -> None:
        """Put a record in the completed pool, dropping any active entry with the same id."""

        completed = record
        if completed.completed_at is None:
            completed = replace(record, completed_at=now or utc_now())
        self.store.put(SessionPool.COMPLETED, completed.session_id, completed.to_payload())
        self.store.delete(SessionPool.ACTIVE, completed.session_id)

    def heartbeat(self, session_id: str, *, now: datetime | None = None) -> bool:
        record = self.get_active(session_id)
        if record is None:
            return False
        record.last_ping = now or utc_now()
        self.store.put(SessionPool.ACTIVE, session_id, record.to_payload())
        return True

    def unregister(self, session_id: str) -> bool:
        return self.store.delete(SessionPool.ACTIVE, session_id)

    def move_to_completed(
        self,
        session_id: str,
        *,
        now: datetime | None = None,
    ) -> SessionRecord | None:
        """Move an active record to the completed pool; None if it was not active."""

        record = self.get_active(session_id)
        if record is None:
            return None
        completed_at = now or utc_now()
        record = replace(record, last_ping=completed_at, completed_at=completed_at)
        self.register_completed(record)
        return record

    def get_active(self, session_id: str) -> SessionRecord | None:
        return self._load(SessionPool.ACTIVE, session_id)

    def get_completed(self, session_id: str) -> SessionRecord | None:
        return self._load(SessionPool.COMPLETED, session_id)

    def list_active(self) -> list[SessionRecord]:
        return self._list(SessionPool.ACTIVE)

    def list_completed(self) -> list[SessionRecord]:
        return self._list(SessionPool.COMPLETED)

    def sessions_for_agent(self, agent_id: str) -> list[SessionRecord]:
        return [record for record in self.list_active() if record.agent_id == agent_id]

    def sessions_for_task(self, task_id: str) -> list[SessionRecord]:
        return [record for record in self.list_active() if record.task_id == task_id]

    def purge_stale(
        self,
        max_age_minutes: int,
        *,
        now: datetime | None = None,
    ) -> list[SessionRecord]:
        """Drop active records whose last heartbeat (or start) is older than the window."""

        cutoff = (now or utc_now()) - timedelta(minutes=max_age_minutes)
        purged: list[SessionRecord] = []
        for record in self.list_active():
            if record.last_ping < cutoff:
                self.store.delete(SessionPool.ACTIVE, record.session_id)
                purged.append(record)
        if purged:
            logger.info("Purged %d stale active session(s)", len(purged))
        return purged

    def purge_completed(
        self,
        after_minutes: int,
        *,
        now: datetime | None = None,
    ) -> list[SessionRecord]:
        """Drop completed records older than the retention window."""

        cutoff = (now or utc_now()) - timedelta(minutes=after_minutes)
        purged: list[SessionRecord] = []
        for record in self.list_completed():
            finished_at = record.completed_at or record.last_ping
            if finished_at < cutoff:
                self.store.delete(SessionPool.COMPLETED, record.session_id)
                purged.append(record)
        return purged

    def _load(self, pool: SessionPool, session_id: str) -> SessionRecord | None:
        payload = self.store.get(pool, session_id)
        if payload is None:
            return None
        try:
            return SessionRecord.from_payload(payload)
        except CorruptSessionRecordError as error:
            self._discard(pool, session_id, error)
            return None

    def _list(self, pool: SessionPool) -> list[SessionRecord]:
        records: list[SessionRecord] = []
        for session_id, payload in self.store.items(pool):
            try:
                records.append(SessionRecord.from_payload(payload))
            except CorruptSessionRecordError as error:
                self._discard(pool, session_id, error)
        return records

    def _discard(self, pool: SessionPool, session_id: str, error: Exception) -> None:
        logger.warning("Discarding corrupt %s session record %s: %s", pool.value, session_id, error)
        self.store.delete(pool, session_id)


def build_session_store(
    *,
    backend: str,
    registry_dir: Path,
    redis_url: str | None = None,
    redis_prefix: str = "agent_dispatch:sessions",
) -> SessionStore:
    if backend == "file":
        return FileSessionStore(registry_dir)
    if backend == "redis":
        if not redis_url:
            raise ValueError("Redis session backend requires a URL.")
        return RedisSessionStore.from_url(redis_url, prefix=redis_prefix)
    raise ValueError(f"Unsupported session backend: {backend!r}")


def _as_text(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
