"""Pick the next assignable task and an eligible agent for it."""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from agent_dispatch.dispatch.capacity import agent_available, repository_available
from agent_dispatch.dispatch.models import AgentView, TaskList, TaskView
from agent_dispatch.dispatch.repository import DispatchRepository, parse_column_order
from agent_dispatch.storage.common import utc_now

logger = logging.getLogger(__name__)

# Finish in-progress work before starting new work.
LIST_WEIGHTS: dict[TaskList, int] = {
    TaskList.DOING: 3,
    TaskList.TODO: 2,
    TaskList.LOOP: 1,
}

_NEVER_PUSHED = datetime.min.replace(tzinfo=UTC)


def task_rank_key(task: TaskView) -> tuple[int, int, Decimal, datetime]:
    """Sort key: priority desc, list weight desc, column order asc, created asc."""

    return (
        -task.priority,
        -LIST_WEIGHTS.get(task.list_name, 0),
        parse_column_order(task.column_order),
        task.created_at,
    )


def rank_tasks(tasks: list[TaskView]) -> list[TaskView]:
    return sorted(tasks, key=task_rank_key)


def pick_agent(
    agents: list[AgentView],
    *,
    active_counts: dict[str, int],
    now: datetime,
) -> AgentView | None:
    """Least recently pushed available agent; never-pushed agents first."""

    available = [
        agent
        for agent in agents
        if agent_available(agent, active_counts.get(agent.agent_id, 0), now=now)
    ]
    if not available:
        return None
    available.sort(key=lambda agent: (agent.last_task_pushed_at or _NEVER_PUSHED, agent.agent_id))
    return available[0]


@dataclass(slots=True)
class Selection:
    task: TaskView
    agent: AgentView
    repository_ids: list[str]


class TaskSelector:
    """Reads fresh counts from the repository on every call."""

    def __init__(
        self,
        repository: DispatchRepository,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.clock = clock

    def select_next_task(self, *, exclude: Collection[str] = ()) -> TaskView | None:
        """Best-ranked candidate whose repositories have room and that has an available agent.

        A capacity-blocked task is passed over so lower-ranked work on free
        repositories is not starved.
        """

        now = self.clock()
        repository_room: dict[str, bool] = {}
        for task in rank_tasks(self.repository.list_candidate_tasks()):
            if task.task_id in exclude:
                continue
            if not self._repositories_have_room(task, repository_room):
                logger.debug("Task %s skipped: repository at capacity", task.task_id)
                continue
            if self._pick_agent(task, now=now) is None:
                logger.debug("Task %s skipped: no available agent", task.task_id)
                continue
            return task
        return None

    def select_eligible_agent(self, task: TaskView) -> AgentView | None:
        return self._pick_agent(task, now=self.clock())

    def select(self, *, exclude: Collection[str] = ()) -> Selection | None:
        task = self.select_next_task(exclude=exclude)
        if task is None:
            return None
        agent = self.select_eligible_agent(task)
        if agent is None:
            return None
        return Selection(
            task=task,
            agent=agent,
            repository_ids=self.repository.task_repository_ids(task_id=task.task_id),
        )

    def _pick_agent(self, task: TaskView, *, now: datetime) -> AgentView | None:
        agents = self.repository.list_assigned_agents(task_id=task.task_id)
        active_counts = {
            agent.agent_id: self.repository.count_active_tasks_for_agent(agent_id=agent.agent_id)
            for agent in agents
        }
        return pick_agent(agents, active_counts=active_counts, now=now)

    def _repositories_have_room(self, task: TaskView, cache: dict[str, bool]) -> bool:
        for repository_id in self.repository.task_repository_ids(task_id=task.task_id):
            if repository_id not in cache:
                repository = self.repository.get_repository(repository_id=repository_id)
                cache[repository_id] = repository is not None and repository_available(
                    repository,
                    self.repository.count_active_tasks_for_repository(repository_id=repository_id),
                )
            if not cache[repository_id]:
                return False
        return True
