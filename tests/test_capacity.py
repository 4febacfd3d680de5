from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest

from agent_dispatch.dispatch.capacity import (
    agent_available,
    has_capacity,
    is_rate_limited,
    repository_available,
)
from agent_dispatch.dispatch.models import AgentView, RepositoryView

pytestmark = [
    allure.epic("Dispatch Engine"),
    allure.feature("Capacity Model"),
]

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _agent(*, ceiling: int, reset_at: datetime | None = None) -> AgentView:
    return AgentView(
        agent_id="agent-1",
        name="agent-1",
        agent_type="claude",
        config_dir=None,
        max_concurrent_tasks=ceiling,
        last_task_pushed_at=None,
        rate_limit_reset_at=reset_at,
        created_at=NOW,
    )


def _repository(*, ceiling: int) -> RepositoryView:
    return RepositoryView(
        repository_id="repo-1",
        project_id="project-1",
        name="repo-1",
        path="/tmp/repo-1",
        max_concurrent_tasks=ceiling,
        last_task_pushed_at=None,
        created_at=NOW,
    )


@pytest.mark.parametrize("active_count", [0, 1, 50, 10_000])
def test_zero_ceiling_is_unlimited(active_count: int) -> None:
    assert has_capacity(ceiling=0, active_count=active_count)
    assert agent_available(_agent(ceiling=0), active_count, now=NOW)
    assert repository_available(_repository(ceiling=0), active_count)


def test_positive_ceiling_blocks_once_reached() -> None:
    assert has_capacity(ceiling=2, active_count=1)
    assert not has_capacity(ceiling=2, active_count=2)
    assert not agent_available(_agent(ceiling=1), 1, now=NOW)
    assert not repository_available(_repository(ceiling=1), 1)
    assert repository_available(_repository(ceiling=3), 2)


def test_rate_limited_agent_is_unavailable_until_reset() -> None:
    agent = _agent(ceiling=0, reset_at=NOW + timedelta(minutes=5))

    assert is_rate_limited(agent, now=NOW)
    assert not agent_available(agent, 0, now=NOW)
    assert agent_available(agent, 0, now=NOW + timedelta(minutes=5))
    assert agent_available(agent, 0, now=NOW + timedelta(hours=1))


def test_past_reset_time_does_not_block() -> None:
    agent = _agent(ceiling=1, reset_at=NOW - timedelta(seconds=1))

    assert not is_rate_limited(agent, now=NOW)
    assert agent_available(agent, 0, now=NOW)
