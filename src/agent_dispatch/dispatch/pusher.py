"""Lock-serialized loop that pushes ready tasks to available agents."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from uuid import uuid4

from agent_dispatch.dispatch.lock import DispatchLock
from agent_dispatch.dispatch.models import TaskView
from agent_dispatch.dispatch.notify import LoggingNotifier, Notifier
from agent_dispatch.dispatch.repository import DispatchRepository
from agent_dispatch.dispatch.selector import TaskSelector
from agent_dispatch.dispatch.spawner.base import AgentSpawner, SpawnRequest, SpawnResult
from agent_dispatch.sessions.registry import SessionRecord, SessionRegistry
from agent_dispatch.storage.common import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PushSummary:
    """Outcome of one push cycle."""

    pushed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    race_lost: list[str] = field(default_factory=list)
    skipped: bool = False


def build_prompt(task: TaskView) -> str:
    """Minimal task brief handed to the agent."""

    lines = [f"Task {task.task_id}: {task.title}"]
    if task.mode is not None:
        lines.append(f"Mode: {task.mode.value}")
    if task.content:
        lines.extend(["", task.content])
    return "\n".join(lines)


class DispatchLoop:
    """Selects and pushes tasks one at a time until nothing is assignable.

    Each assignment commits on its own. A spawn failure rolls the task back to
    INACTIVE and ends the cycle; the next tick retries.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: DispatchRepository,
        registry: SessionRegistry,
        spawner: AgentSpawner,
        lock: DispatchLock,
        generation: str,
        selector: TaskSelector | None = None,
        notifier: Notifier | None = None,
        prompt_builder: Callable[[TaskView], str] = build_prompt,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.spawner = spawner
        self.lock = lock
        self.generation = generation
        self.selector = selector or TaskSelector(repository, clock=clock)
        self.notifier = notifier or LoggingNotifier()
        self.prompt_builder = prompt_builder
        self.clock = clock

    async def push_tasks(self) -> PushSummary:
        acquired_at = self.clock()
        if not self.lock.try_acquire(self.generation, now=acquired_at):
            logger.debug("Push cycle already running; skipping")
            return PushSummary(skipped=True)

        summary = PushSummary()
        try:
            await self._run_cycle(summary)
        except Exception as error:
            logger.exception("Push cycle aborted")
            summary.errors.append(f"Push cycle aborted: {error}")
        finally:
            self.lock.release(self.generation, acquired_at=acquired_at)

        if summary.pushed:
            logger.info("Pushed %d task(s): %s", len(summary.pushed), ", ".join(summary.pushed))
        return summary

    async def _run_cycle(self, summary: PushSummary) -> None:
        attempted: set[str] = set()
        while True:
            task = self.selector.select_next_task(exclude=attempted)
            if task is None:
                return
            attempted.add(task.task_id)

            agent = self.selector.select_eligible_agent(task)
            if agent is None:
                logger.debug("No eligible agent for task %s; stopping cycle", task.task_id)
                return

            session_id = str(uuid4())
            now = self.clock()
            if not self.repository.mark_pushing(
                task_id=task.task_id,
                agent_id=agent.agent_id,
                session_id=session_id,
                now=now,
            ):
                logger.debug("Task %s already taken by another dispatcher", task.task_id)
                summary.race_lost.append(task.task_id)
                continue

            repository_ids = self.repository.task_repository_ids(task_id=task.task_id)
            self.repository.record_push(
                agent_id=agent.agent_id,
                repository_ids=repository_ids,
                now=now,
            )
            main_repository = self.repository.get_repository(repository_id=task.main_repository_id)
            repository_path = main_repository.path if main_repository is not None else ""
            self.registry.register(
                SessionRecord(
                    session_id=session_id,
                    task_id=task.task_id,
                    agent_id=agent.agent_id,
                    project_id=task.project_id,
                    repository_path=repository_path,
                    started_at=now,
                    last_ping=now,
                    config_dir=agent.config_dir,
                ),
            )
            self.notifier.notify(
                "task.pushing",
                {"task_id": task.task_id, "agent_id": agent.agent_id},
            )

            result = await self._spawn(
                SpawnRequest(
                    session_id=session_id,
                    task_id=task.task_id,
                    agent_id=agent.agent_id,
                    project_id=task.project_id,
                    repository_path=repository_path,
                    prompt=self.prompt_builder(task),
                    agent_type=agent.agent_type,
                    config_dir=agent.config_dir,
                    resume_session_id=task.last_agent_session_id,
                ),
            )
            if not result.success:
                error = result.error or "unknown spawn error"
                logger.warning("Spawn failed for task %s: %s", task.task_id, error)
                self.repository.rollback_push(
                    task_id=task.task_id,
                    error=error,
                    session_id=session_id,
                    previous_session_id=task.last_agent_session_id,
                )
                self.registry.unregister(session_id)
                summary.errors.append(f"{task.task_id}: {error}")
                self.notifier.notify("task.push_failed", {"task_id": task.task_id, "error": error})
                return

            summary.pushed.append(task.task_id)

    async def _spawn(self, request: SpawnRequest) -> SpawnResult:
        try:
            return await self.spawner.spawn(request)
        except Exception as error:
            logger.exception("Spawner raised for task %s", request.task_id)
            return SpawnResult(success=False, error=str(error) or type(error).__name__)
