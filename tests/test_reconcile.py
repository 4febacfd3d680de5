from __future__ import annotations

import allure
import pytest

from agent_dispatch.dispatch.lock import DispatchLock
from agent_dispatch.dispatch.models import AgentSessionStatus, TaskList
from agent_dispatch.dispatch.pusher import DispatchLoop
from agent_dispatch.dispatch.reconcile import ReconciliationMonitor
from agent_dispatch.sessions.registry import SessionRecord
from agent_dispatch.storage.common import utc_now

pytestmark = [
    allure.epic("Dispatch Engine"),
    allure.feature("Reconciliation"),
]


def _monitor(repository, registry, spawner, notifier) -> ReconciliationMonitor:
    dispatch = DispatchLoop(
        repository=repository,
        registry=registry,
        spawner=spawner,
        lock=DispatchLock(),
        generation="gen-1",
        notifier=notifier,
    )
    return ReconciliationMonitor(
        repository=repository,
        registry=registry,
        dispatch=dispatch,
        notifier=notifier,
    )


def _activate(repository, registry, task_id: str, session_id: str) -> SessionRecord:
    assert repository.mark_pushing(task_id=task_id, agent_id="agent", session_id=session_id)
    assert repository.mark_session_started(
        task_id=task_id,
        session_id=session_id,
        agent_id="agent",
    )
    now = utc_now()
    record = SessionRecord(
        session_id=session_id,
        task_id=task_id,
        agent_id="agent",
        project_id="project-1",
        repository_path="/work",
        started_at=now,
        last_ping=now,
    )
    registry.register(record)
    return record


@pytest.mark.asyncio
async def test_completed_and_lost_sessions_are_reset_live_ones_kept(
    board,
    repository,
    registry,
    spawner,
    notifier,
) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("completed", repository_id="repo", agents=("agent",), ready=False)
    board.add_task("lost", repository_id="repo", agents=("agent",), ready=False)
    board.add_task("live", repository_id="repo", agents=("agent",), ready=False)
    _activate(repository, registry, "completed", "s-completed")
    _activate(repository, registry, "lost", "s-lost")
    _activate(repository, registry, "live", "s-live")
    registry.move_to_completed("s-completed")
    registry.unregister("s-lost")

    summary = await _monitor(repository, registry, spawner, notifier).check_out_of_sync()

    assert summary.checked == 3
    assert summary.reset_completed == ["completed"]
    assert summary.reset_lost == ["lost"]
    assert summary.live == ["live"]
    for task_id in ("completed", "lost"):
        task = repository.get_task(task_id=task_id)
        assert task is not None
        assert task.agent_session_status == AgentSessionStatus.INACTIVE
        assert task.active_agent_id is None
    live = repository.get_task(task_id="live")
    assert live is not None
    assert live.agent_session_status == AgentSessionStatus.ACTIVE
    assert notifier.topics.count("task.reset") == 2


@pytest.mark.asyncio
async def test_reset_triggers_an_immediate_push(
    board,
    repository,
    registry,
    spawner,
    notifier,
) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("stuck", repository_id="repo", agents=("agent",))
    assert repository.mark_pushing(task_id="stuck", agent_id="agent", session_id="gone")

    summary = await _monitor(repository, registry, spawner, notifier).check_out_of_sync()

    assert summary.reset_lost == ["stuck"]
    assert summary.push is not None
    assert summary.push.pushed == ["stuck"]
    assert spawner.task_ids == ["stuck"]
    assert spawner.requests[0].resume_session_id == "gone"


@pytest.mark.asyncio
async def test_no_drift_means_no_push(board, repository, registry, spawner, notifier) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("live", repository_id="repo", agents=("agent",), ready=False)
    board.add_task("done", repository_id="repo", agents=("agent",), list_name=TaskList.DONE)
    _activate(repository, registry, "live", "s-live")

    summary = await _monitor(repository, registry, spawner, notifier).check_out_of_sync()

    assert summary.checked == 1
    assert summary.reset == []
    assert summary.push is None
    assert spawner.requests == []
