from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest

from agent_dispatch.dispatch.models import AgentView, TaskList
from agent_dispatch.dispatch.selector import TaskSelector, pick_agent

pytestmark = [
    allure.epic("Dispatch Engine"),
    allure.feature("Task Selector"),
]


def _claim(repository, task_id: str, agent_id: str) -> None:
    assert repository.mark_pushing(task_id=task_id, agent_id=agent_id, session_id=f"s-{task_id}")


def test_highest_priority_wins(board, repository) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("low", repository_id="repo", agents=("agent",), priority=1)
    board.add_task("high", repository_id="repo", agents=("agent",), priority=9)
    board.add_task("mid", repository_id="repo", agents=("agent",), priority=5)

    task = TaskSelector(repository).select_next_task()

    assert task is not None
    assert task.task_id == "high"


def test_list_weight_breaks_priority_ties(board, repository) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("loop", repository_id="repo", agents=("agent",), list_name=TaskList.LOOP)
    board.add_task("todo", repository_id="repo", agents=("agent",), list_name=TaskList.TODO)
    board.add_task("doing", repository_id="repo", agents=("agent",), list_name=TaskList.DOING)
    selector = TaskSelector(repository)

    picked = []
    for _ in range(3):
        task = selector.select_next_task(exclude=picked)
        assert task is not None
        picked.append(task.task_id)

    assert picked == ["doing", "todo", "loop"]


def test_column_order_is_decimal_then_creation_time(board, repository) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("order-10", repository_id="repo", agents=("agent",), column_order="10")
    board.add_task("order-9.5", repository_id="repo", agents=("agent",), column_order="9.5")
    board.add_task("order-10-later", repository_id="repo", agents=("agent",), column_order="10.0")
    selector = TaskSelector(repository)

    picked = []
    for _ in range(3):
        task = selector.select_next_task(exclude=picked)
        assert task is not None
        picked.append(task.task_id)

    assert picked == ["order-9.5", "order-10", "order-10-later"]


def test_not_ready_done_and_claimed_tasks_are_filtered(board, repository) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("not-ready", repository_id="repo", agents=("agent",), priority=9, ready=False)
    board.add_task(
        "done",
        repository_id="repo",
        agents=("agent",),
        priority=8,
        list_name=TaskList.DONE,
    )
    board.add_task("claimed", repository_id="repo", agents=("agent",), priority=7)
    board.add_task("eligible", repository_id="repo", agents=("agent",), priority=1)
    _claim(repository, "claimed", "agent")

    task = TaskSelector(repository).select_next_task()

    assert task is not None
    assert task.task_id == "eligible"


def test_dependency_gating_until_blocker_is_done(board, repository) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("blocker", repository_id="repo", agents=("agent",), ready=False)
    board.add_task("blocked", repository_id="repo", agents=("agent",), priority=100)
    repository.add_dependency(task_id="blocked", depends_on_task_id="blocker")
    selector = TaskSelector(repository)

    assert selector.select_next_task() is None

    repository.update_task(task_id="blocker", list_name=TaskList.DOING)
    assert selector.select_next_task() is None

    repository.update_task(task_id="blocker", list_name=TaskList.DONE)
    task = selector.select_next_task()
    assert task is not None
    assert task.task_id == "blocked"


def test_add_dependency_rejects_cycles(board, repository) -> None:
    board.add_repository("repo")
    board.add_task("a", repository_id="repo")
    board.add_task("b", repository_id="repo")
    board.add_task("c", repository_id="repo")
    repository.add_dependency(task_id="a", depends_on_task_id="b")
    repository.add_dependency(task_id="b", depends_on_task_id="c")

    with pytest.raises(ValueError, match="cycle"):
        repository.add_dependency(task_id="c", depends_on_task_id="a")
    with pytest.raises(ValueError, match="cannot depend on itself"):
        repository.add_dependency(task_id="a", depends_on_task_id="a")


def test_repository_ceiling_blocks_and_zero_does_not(board, repository) -> None:
    board.add_repository("limited", ceiling=1)
    board.add_repository("open", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("running", repository_id="limited", agents=("agent",))
    board.add_task("waiting", repository_id="limited", agents=("agent",), priority=5)
    board.add_task("open-1", repository_id="open", agents=("agent",))
    board.add_task("open-2", repository_id="open", agents=("agent",))
    _claim(repository, "running", "agent")
    _claim(repository, "open-1", "agent")
    selector = TaskSelector(repository)

    task = selector.select_next_task()

    assert task is not None
    assert task.task_id == "open-2"


def test_additional_repository_counts_toward_capacity(board, repository) -> None:
    board.add_repository("main", ceiling=0)
    board.add_repository("shared", ceiling=1)
    board.add_agent("agent", ceiling=0)
    board.add_task(
        "uses-shared",
        repository_id="main",
        agents=("agent",),
        extra_repositories=("shared",),
    )
    board.add_task("on-shared", repository_id="shared", agents=("agent",))
    _claim(repository, "uses-shared", "agent")

    assert repository.count_active_tasks_for_repository(repository_id="shared") == 1
    assert TaskSelector(repository).select_next_task() is None


def test_agent_ceiling_blocks_and_zero_does_not(board, repository) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("single", ceiling=1)
    board.add_agent("unlimited", ceiling=0)
    board.add_task("busy", repository_id="repo", agents=("single",))
    board.add_task("single-only", repository_id="repo", agents=("single",), priority=5)
    board.add_task("unlimited-1", repository_id="repo", agents=("unlimited",))
    board.add_task("unlimited-2", repository_id="repo", agents=("unlimited",))
    _claim(repository, "busy", "single")
    _claim(repository, "unlimited-1", "unlimited")

    task = TaskSelector(repository).select_next_task()

    assert task is not None
    assert task.task_id == "unlimited-2"


def test_task_without_assigned_agents_is_never_selected(board, repository) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_task("orphan", repository_id="repo")

    assert TaskSelector(repository).select_next_task() is None


def test_rate_limited_agent_is_skipped(board, repository, clock) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("limited", ceiling=0)
    board.add_agent("fresh", ceiling=0)
    board.add_task("task", repository_id="repo", agents=("limited", "fresh"))
    repository.set_agent_rate_limit(agent_id="limited", reset_at=clock() + timedelta(hours=1))
    selector = TaskSelector(repository, clock=clock)

    task = selector.select_next_task()
    assert task is not None
    agent = selector.select_eligible_agent(task)
    assert agent is not None
    assert agent.agent_id == "fresh"

    repository.set_agent_rate_limit(agent_id="fresh", reset_at=clock() + timedelta(hours=1))
    assert selector.select_next_task() is None

    clock.advance(hours=2)
    assert selector.select_next_task() is not None


def _agent_view(agent_id: str, pushed_at: datetime | None) -> AgentView:
    return AgentView(
        agent_id=agent_id,
        name=agent_id,
        agent_type="claude",
        config_dir=None,
        max_concurrent_tasks=0,
        last_task_pushed_at=pushed_at,
        rate_limit_reset_at=None,
        created_at=datetime(2026, 1, 1, tzinfo=UTC),
    )


def test_pick_agent_prefers_least_recently_pushed() -> None:
    now = datetime(2026, 3, 1, tzinfo=UTC)
    agents = [
        _agent_view("recent", now - timedelta(minutes=1)),
        _agent_view("older", now - timedelta(hours=1)),
        _agent_view("never", None),
    ]

    picked = pick_agent(agents, active_counts={}, now=now)
    assert picked is not None
    assert picked.agent_id == "never"

    picked = pick_agent(agents[:2], active_counts={}, now=now)
    assert picked is not None
    assert picked.agent_id == "older"


def test_pick_agent_returns_none_when_all_busy() -> None:
    now = datetime(2026, 3, 1, tzinfo=UTC)
    busy = AgentView(
        agent_id="busy",
        name="busy",
        agent_type="claude",
        config_dir=None,
        max_concurrent_tasks=2,
        last_task_pushed_at=None,
        rate_limit_reset_at=None,
        created_at=now,
    )

    assert pick_agent([busy], active_counts={"busy": 2}, now=now) is None
