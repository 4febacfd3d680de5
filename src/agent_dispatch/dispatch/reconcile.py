"""Reset tasks that claim an agent session which is finished or lost."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from agent_dispatch.dispatch.notify import LoggingNotifier, Notifier
from agent_dispatch.dispatch.pusher import DispatchLoop, PushSummary
from agent_dispatch.dispatch.repository import DispatchRepository
from agent_dispatch.sessions.registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReconcileSummary:
    checked: int = 0
    reset_completed: list[str] = field(default_factory=list)
    reset_lost: list[str] = field(default_factory=list)
    live: list[str] = field(default_factory=list)
    push: PushSummary | None = None

    @property
    def reset(self) -> list[str]:
        return self.reset_completed + self.reset_lost


class ReconciliationMonitor:
    """Compares PUSHING/ACTIVE tasks with the session registry."""

    def __init__(
        self,
        *,
        repository: DispatchRepository,
        registry: SessionRegistry,
        dispatch: DispatchLoop,
        notifier: Notifier | None = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.dispatch = dispatch
        self.notifier = notifier or LoggingNotifier()

    async def check_out_of_sync(self) -> ReconcileSummary:
        summary = ReconcileSummary()
        for task in self.repository.list_claimed_tasks():
            summary.checked += 1
            session_id = task.last_agent_session_id
            if session_id is not None and self.registry.get_completed(session_id) is not None:
                reason = "session_completed"
            elif session_id is not None and self.registry.get_active(session_id) is not None:
                summary.live.append(task.task_id)
                continue
            else:
                reason = "session_lost"

            if not self.repository.release_task(
                task_id=task.task_id,
                reason=reason,
                session_id=session_id,
            ):
                continue
            logger.warning(
                "Reset out-of-sync task %s (%s, session %s)",
                task.task_id,
                reason,
                session_id or "-",
            )
            if reason == "session_completed":
                summary.reset_completed.append(task.task_id)
            else:
                summary.reset_lost.append(task.task_id)
            self.notifier.notify("task.reset", {"task_id": task.task_id, "reason": reason})

        if summary.reset:
            summary.push = await self.dispatch.push_tasks()
        return summary
