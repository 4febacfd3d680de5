"""Shared test fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from agent_dispatch.dispatch.models import (
    AgentCreate,
    AgentView,
    RepositoryCreate,
    RepositoryView,
    TaskCreate,
    TaskList,
    TaskMode,
    TaskView,
)
from agent_dispatch.dispatch.repository import DispatchRepository
from agent_dispatch.dispatch.spawner.base import SpawnRequest, SpawnResult
from agent_dispatch.sessions.registry import FileSessionStore, SessionRegistry


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeSpawner:
    """Records spawn requests; fails for task ids listed in ``fail_for``."""

    def __init__(self, *, fail_for: tuple[str, ...] = ()) -> None:
        self.requests: list[SpawnRequest] = []
        self.fail_for = set(fail_for)
        self.on_spawn = None

    async def spawn(self, request: SpawnRequest) -> SpawnResult:
        self.requests.append(request)
        if self.on_spawn is not None:
            await self.on_spawn(request)
        if request.task_id in self.fail_for:
            return SpawnResult(success=False, error="boom")
        return SpawnResult(success=True, pid=4242)

    @property
    def task_ids(self) -> list[str]:
        return [request.task_id for request in self.requests]


class RecordingNotifier:
    def __init__(self) -> None:
        self.signals: list[tuple[str, dict[str, object]]] = []

    def notify(self, topic: str, payload: dict[str, object]) -> None:
        self.signals.append((topic, payload))

    @property
    def topics(self) -> list[str]:
        return [topic for topic, _ in self.signals]


class FakeRedis:
    """Dict-backed subset of the redis hash commands."""

    def __init__(self) -> None:
        self.hashes: dict[str, dict[str, str]] = {}

    def hset(self, key: str, field: str, value: str) -> int:
        bucket = self.hashes.setdefault(key, {})
        created = field not in bucket
        bucket[field] = value
        return int(created)

    def hget(self, key: str, field: str) -> str | None:
        return self.hashes.get(key, {}).get(field)

    def hdel(self, key: str, field: str) -> int:
        bucket = self.hashes.get(key, {})
        return 1 if bucket.pop(field, None) is not None else 0

    def hgetall(self, key: str) -> dict[str, str]:
        return dict(self.hashes.get(key, {}))


class Board:
    """Builder for projects, repositories, agents and tasks in a test database."""

    def __init__(self, repository: DispatchRepository, workdir: Path) -> None:
        self.repository = repository
        self.workdir = workdir
        self.project_id = repository.create_project(name="demo", project_id="project-1").project_id
        self._created = datetime(2026, 1, 1, tzinfo=UTC)

    def add_repository(self, repository_id: str, *, ceiling: int = 1) -> RepositoryView:
        path = self.workdir / repository_id
        path.mkdir(parents=True, exist_ok=True)
        return self.repository.create_repository(
            RepositoryCreate(
                project_id=self.project_id,
                name=repository_id,
                path=str(path),
                max_concurrent_tasks=ceiling,
                repository_id=repository_id,
            ),
        )

    def add_agent(self, agent_id: str, *, ceiling: int = 1) -> AgentView:
        return self.repository.create_agent(
            AgentCreate(name=agent_id, max_concurrent_tasks=ceiling, agent_id=agent_id),
        )

    def add_task(  # noqa: PLR0913
        self,
        task_id: str,
        *,
        repository_id: str,
        agents: tuple[str, ...] = (),
        priority: int = 0,
        list_name: TaskList = TaskList.TODO,
        mode: TaskMode | None = None,
        column_order: str = "1000",
        ready: bool = True,
        extra_repositories: tuple[str, ...] = (),
    ) -> TaskView:
        self._created += timedelta(minutes=1)
        task = self.repository.create_task(
            TaskCreate(
                project_id=self.project_id,
                main_repository_id=repository_id,
                title=f"Task {task_id}",
                content=f"Work on {task_id}",
                priority=priority,
                list_name=list_name,
                mode=mode,
                column_order=column_order,
                ready=ready,
                task_id=task_id,
                created_at=self._created,
            ),
        )
        for agent_id in agents:
            self.repository.assign_agent(task_id=task_id, agent_id=agent_id)
        for extra in extra_repositories:
            self.repository.add_additional_repository(task_id=task_id, repository_id=extra)
        return task


@pytest.fixture()
def repository(tmp_path: Path):
    repo = DispatchRepository(tmp_path / "dispatch.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def registry(tmp_path: Path) -> SessionRegistry:
    return SessionRegistry(FileSessionStore(tmp_path / "sessions"))


@pytest.fixture()
def board(repository: DispatchRepository, tmp_path: Path) -> Board:
    return Board(repository, tmp_path / "repos")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime.now(tz=UTC))


@pytest.fixture()
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()
