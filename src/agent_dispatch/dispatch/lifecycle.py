"""Apply agent session lifecycle events to tasks, agents and the registry."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from agent_dispatch.dispatch.notify import LoggingNotifier, Notifier
from agent_dispatch.dispatch.rate_limit import RateLimitMessageLog, detect_rate_limit
from agent_dispatch.dispatch.repository import DispatchRepository
from agent_dispatch.sessions.registry import SessionRecord, SessionRegistry
from agent_dispatch.storage.common import utc_now

logger = logging.getLogger(__name__)


class SessionLifecycle:
    """``SessionEvents`` implementation backed by the dispatch stores.

    ``trigger_push`` is awaited after a session stops so freed capacity is
    reused without waiting for the next tick.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: DispatchRepository,
        registry: SessionRegistry,
        notifier: Notifier | None = None,
        message_log: RateLimitMessageLog | None = None,
        trigger_push: Callable[[], Awaitable[object]] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.notifier = notifier or LoggingNotifier()
        self.message_log = message_log
        self.trigger_push = trigger_push
        self.clock = clock

    async def on_session_start(
        self,
        session_id: str,
        task_id: str,
        agent_id: str,
        project_id: str,
    ) -> None:
        now = self.clock()
        if not self.repository.mark_session_started(
            task_id=task_id,
            session_id=session_id,
            agent_id=agent_id,
            now=now,
        ):
            logger.warning(
                "Session %s started for unknown or finished task %s",
                session_id,
                task_id,
            )
            return

        existing = self.registry.get_active(session_id)
        if existing is not None:
            self.registry.heartbeat(session_id, now=now)
        else:
            self.registry.register(
                SessionRecord(
                    session_id=session_id,
                    task_id=task_id,
                    agent_id=agent_id,
                    project_id=project_id,
                    repository_path=self._repository_path(task_id),
                    started_at=now,
                    last_ping=now,
                ),
            )
        self.notifier.notify("task.active", {"task_id": task_id, "agent_id": agent_id})

    async def on_session_stop(
        self,
        session_id: str,
        task_id: str,
        agent_id: str,
        project_id: str,
    ) -> None:
        now = self.clock()
        stopped = self.repository.mark_session_stopped(task_id=task_id, session_id=session_id)
        if self.registry.move_to_completed(session_id, now=now) is None:
            self.registry.register_completed(
                SessionRecord(
                    session_id=session_id,
                    task_id=task_id,
                    agent_id=agent_id,
                    project_id=project_id,
                    repository_path=self._repository_path(task_id),
                    started_at=now,
                    last_ping=now,
                ),
                now=now,
            )
        logger.info("Session %s for task %s stopped", session_id, task_id)
        if stopped:
            self.notifier.notify("task.inactive", {"task_id": task_id, "agent_id": agent_id})
        if self.trigger_push is not None:
            await self.trigger_push()

    async def on_rate_limit(self, message: str, agent_id: str, task_id: str | None = None) -> None:
        # Reset hours like "resets 3pm" are local wall-clock times.
        signal = detect_rate_limit(message, now=self.clock().astimezone())
        if signal is None:
            return
        if signal.cause and self.message_log is not None:
            try:
                self.message_log.record(signal.cause)
            except OSError as error:
                logger.warning("Could not record rate-limit message: %s", error)

        if signal.reset_at is None:
            logger.warning("Agent %s hit a rate limit without reset time: %s", agent_id, message)
            return

        self.repository.set_agent_rate_limit(agent_id=agent_id, reset_at=signal.reset_at)
        logger.warning(
            "Agent %s rate-limited until %s",
            agent_id,
            signal.reset_at.isoformat(),
        )
        if task_id is not None:
            self.repository.release_task(
                task_id=task_id,
                reason="rate_limited",
                **signal.to_event_details(),
            )
        self.notifier.notify(
            "agent.rate_limited",
            {"agent_id": agent_id, "reset_at": signal.reset_at.isoformat()},
        )

    async def on_error(self, message: str, task_id: str) -> None:
        logger.warning("Agent error on task %s: %s", task_id, message)
        self.repository.add_task_event(
            task_id=task_id,
            event_type="agent_error",
            details={"message": message},
        )
        self.notifier.notify("task.error", {"task_id": task_id, "message": message})

    def _repository_path(self, task_id: str) -> str:
        task = self.repository.get_task(task_id=task_id)
        if task is None:
            return ""
        repository = self.repository.get_repository(repository_id=task.main_repository_id)
        return repository.path if repository is not None else ""
