from __future__ import annotations

import asyncio

import allure
import pytest

from agent_dispatch.dispatch.lock import DispatchLock
from agent_dispatch.dispatch.models import AgentSessionStatus, TaskList
from agent_dispatch.dispatch.pusher import DispatchLoop, build_prompt
from agent_dispatch.dispatch.spawner.base import SpawnRequest

pytestmark = [
    allure.epic("Dispatch Engine"),
    allure.feature("Dispatch Loop"),
]


def _loop(repository, registry, spawner, notifier=None, lock=None) -> DispatchLoop:
    return DispatchLoop(
        repository=repository,
        registry=registry,
        spawner=spawner,
        lock=lock or DispatchLock(),
        generation="gen-1",
        notifier=notifier,
    )


@pytest.mark.asyncio
async def test_push_claims_tasks_and_records_sessions(
    board,
    repository,
    registry,
    spawner,
    notifier,
) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("first", repository_id="repo", agents=("agent",), priority=2)
    board.add_task("second", repository_id="repo", agents=("agent",), priority=1)

    summary = await _loop(repository, registry, spawner, notifier).push_tasks()

    assert summary.pushed == ["first", "second"]
    assert summary.errors == []
    assert spawner.task_ids == ["first", "second"]
    for request in spawner.requests:
        task = repository.get_task(task_id=request.task_id)
        assert task is not None
        assert task.agent_session_status == AgentSessionStatus.PUSHING
        assert task.active_agent_id == "agent"
        assert task.last_agent_session_id == request.session_id
        assert registry.get_active(request.session_id) is not None
        assert request.repository_path.endswith("repo")
        assert "Work on" in request.prompt
    agent = repository.get_agent(agent_id="agent")
    assert agent is not None
    assert agent.last_task_pushed_at is not None
    assert notifier.topics.count("task.pushing") == 2


@pytest.mark.asyncio
async def test_spawn_failure_rolls_back_and_stops_cycle(
    board,
    repository,
    registry,
    spawner,
) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("broken", repository_id="repo", agents=("agent",), priority=2)
    board.add_task("next", repository_id="repo", agents=("agent",), priority=1)
    spawner.fail_for = {"broken"}

    summary = await _loop(repository, registry, spawner).push_tasks()

    assert summary.pushed == []
    assert summary.errors == ["broken: boom"]
    assert spawner.task_ids == ["broken"]
    task = repository.get_task(task_id="broken")
    assert task is not None
    assert task.agent_session_status == AgentSessionStatus.INACTIVE
    assert task.active_agent_id is None
    assert registry.list_active() == []
    untouched = repository.get_task(task_id="next")
    assert untouched is not None
    assert untouched.agent_session_status == AgentSessionStatus.INACTIVE

    details = repository.get_task_details(task_id="broken")
    assert details is not None
    assert [event.event_type for event in details.events][-1] == "push_rolled_back"


@pytest.mark.asyncio
async def test_spawner_exception_is_treated_as_failure(board, repository, registry) -> None:
    class ExplodingSpawner:
        async def spawn(self, request: SpawnRequest):
            raise RuntimeError("spawner crashed")

    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("task", repository_id="repo", agents=("agent",))

    summary = await _loop(repository, registry, ExplodingSpawner()).push_tasks()

    assert summary.errors == ["task: spawner crashed"]
    task = repository.get_task(task_id="task")
    assert task is not None
    assert task.agent_session_status == AgentSessionStatus.INACTIVE


@pytest.mark.asyncio
async def test_overlapping_invocations_do_real_work_once(
    board,
    repository,
    registry,
    spawner,
) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("only", repository_id="repo", agents=("agent",))

    async def _yield(request: SpawnRequest) -> None:
        await asyncio.sleep(0.01)

    spawner.on_spawn = _yield
    loop = _loop(repository, registry, spawner)

    first, second = await asyncio.gather(loop.push_tasks(), loop.push_tasks())

    assert first.pushed == ["only"]
    assert not first.skipped
    assert second.skipped
    assert second.pushed == []
    assert spawner.task_ids == ["only"]
    assert loop.lock.holder is None


@pytest.mark.asyncio
async def test_race_loss_continues_with_next_candidate(
    board,
    repository,
    registry,
    spawner,
) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("contested", repository_id="repo", agents=("agent",), priority=2)
    board.add_task("fallback", repository_id="repo", agents=("agent",), priority=1)
    loop = _loop(repository, registry, spawner)
    original_mark_pushing = repository.mark_pushing

    def _steal_first(*, task_id: str, agent_id: str, session_id: str, now=None) -> bool:
        if task_id == "contested":
            original_mark_pushing(task_id=task_id, agent_id="agent", session_id="foreign")
        return original_mark_pushing(
            task_id=task_id,
            agent_id=agent_id,
            session_id=session_id,
            now=now,
        )

    repository.mark_pushing = _steal_first

    summary = await loop.push_tasks()

    assert summary.race_lost == ["contested"]
    assert summary.pushed == ["fallback"]
    contested = repository.get_task(task_id="contested")
    assert contested is not None
    assert contested.last_agent_session_id == "foreign"


@pytest.mark.asyncio
async def test_repository_ceiling_scenario(board, repository, registry, spawner) -> None:
    board.add_repository("repo", ceiling=1)
    board.add_agent("agent", ceiling=0)
    board.add_task("p5", repository_id="repo", agents=("agent",), priority=5)
    board.add_task("p3", repository_id="repo", agents=("agent",), priority=3)
    loop = _loop(repository, registry, spawner)

    summary = await loop.push_tasks()
    assert summary.pushed == ["p5"]

    request = spawner.requests[0]
    assert repository.mark_session_started(
        task_id="p5",
        session_id=request.session_id,
        agent_id="agent",
    )
    assert loop.selector.select_next_task() is None

    summary = await loop.push_tasks()
    assert summary.pushed == []
    assert spawner.task_ids == ["p5"]

    board.add_repository("other", ceiling=1)
    board.add_task("elsewhere", repository_id="other", agents=("agent",), priority=1)
    summary = await loop.push_tasks()
    assert summary.pushed == ["elsewhere"]

    repository.update_task(task_id="p5", list_name=TaskList.DONE)
    assert repository.mark_session_stopped(task_id="p5", session_id=request.session_id)
    summary = await loop.push_tasks()
    assert summary.pushed == ["p3"]


@pytest.mark.asyncio
async def test_repush_passes_previous_session_for_resume(
    board,
    repository,
    registry,
    spawner,
) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("task", repository_id="repo", agents=("agent",))
    loop = _loop(repository, registry, spawner)

    await loop.push_tasks()
    first = spawner.requests[0]
    assert first.resume_session_id is None
    assert repository.release_task(task_id="task", reason="test")

    await loop.push_tasks()
    second = spawner.requests[1]
    assert second.resume_session_id == first.session_id
    assert second.session_id != first.session_id


def test_build_prompt_includes_title_and_content(board) -> None:
    board.add_repository("repo")
    task = board.add_task("task", repository_id="repo")

    prompt = build_prompt(task)

    assert prompt.startswith("Task task: Task task")
    assert prompt.endswith("Work on task")


@pytest.mark.asyncio
async def test_failed_push_does_not_become_resume_session(
    board,
    repository,
    registry,
    spawner,
) -> None:
    board.add_repository("repo", ceiling=0)
    board.add_agent("agent", ceiling=0)
    board.add_task("task", repository_id="repo", agents=("agent",))
    loop = _loop(repository, registry, spawner)

    await loop.push_tasks()
    first = spawner.requests[0]
    assert repository.release_task(task_id="task", reason="test")

    spawner.fail_for = {"task"}
    await loop.push_tasks()
    failed = spawner.requests[1]
    task = repository.get_task(task_id="task")
    assert task is not None
    assert task.agent_session_status == AgentSessionStatus.INACTIVE
    assert task.last_agent_session_id == first.session_id

    spawner.fail_for = set()
    await loop.push_tasks()
    third = spawner.requests[2]
    assert third.resume_session_id == first.session_id
    assert third.resume_session_id != failed.session_id
