"""Agent spawn interface and lifecycle callbacks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True)
class SpawnRequest:
    """Everything needed to start one agent session for a task."""

    session_id: str
    task_id: str
    agent_id: str
    project_id: str
    repository_path: str
    prompt: str
    agent_type: str = "claude"
    config_dir: str | None = None
    resume_session_id: str | None = None


@dataclass(slots=True)
class SpawnResult:
    success: bool
    error: str | None = None
    pid: int | None = None


class AgentSpawner(Protocol):
    """Protocol implemented by agent launchers."""

    async def spawn(self, request: SpawnRequest) -> SpawnResult:
        """Start the agent; return once it is launched or has failed to launch."""


class SessionEvents(Protocol):
    """Lifecycle callbacks an agent session reports back."""

    async def on_session_start(
        self,
        session_id: str,
        task_id: str,
        agent_id: str,
        project_id: str,
    ) -> None: ...

    async def on_session_stop(
        self,
        session_id: str,
        task_id: str,
        agent_id: str,
        project_id: str,
    ) -> None: ...

    async def on_rate_limit(self, message: str, agent_id: str, task_id: str | None = None) -> None:
        ...

    async def on_error(self, message: str, task_id: str) -> None: ...
