"""Agent and repository availability from active-task counts.

A concurrency ceiling of ``0`` is the "unlimited" sentinel, never "no capacity".
"""

from __future__ import annotations

from datetime import datetime

from agent_dispatch.dispatch.models import AgentView, RepositoryView

UNLIMITED = 0


def has_capacity(*, ceiling: int, active_count: int) -> bool:
    """Return True if one more task fits under the ceiling."""

    return ceiling == UNLIMITED or active_count < ceiling


def is_rate_limited(agent: AgentView, *, now: datetime) -> bool:
    return agent.rate_limit_reset_at is not None and agent.rate_limit_reset_at > now


def agent_available(agent: AgentView, active_count: int, *, now: datetime) -> bool:
    """Agent can take a task: under its ceiling and not waiting on a rate-limit reset."""

    if is_rate_limited(agent, now=now):
        return False
    return has_capacity(ceiling=agent.max_concurrent_tasks, active_count=active_count)


def repository_available(repository: RepositoryView, active_count: int) -> bool:
    """Repository can host one more task, counting tasks using it as main or additional."""

    return has_capacity(ceiling=repository.max_concurrent_tasks, active_count=active_count)
