"""Durable agent session tracking."""

from agent_dispatch.sessions.registry import (
    FileSessionStore,
    RedisSessionStore,
    SessionPool,
    SessionRecord,
    SessionRegistry,
    SessionStore,
    build_session_store,
)

__all__ = [
    "FileSessionStore",
    "RedisSessionStore",
    "SessionPool",
    "SessionRecord",
    "SessionRegistry",
    "SessionStore",
    "build_session_store",
]
