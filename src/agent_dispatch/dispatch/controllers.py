"""Controllers for dispatch CLI commands."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from agent_dispatch.config import Settings
from agent_dispatch.dispatch.models import (
    AgentCreate,
    AgentSessionStatus,
    RepositoryCreate,
    TaskCreate,
    TaskList,
    TaskMode,
)
from agent_dispatch.dispatch.pusher import PushSummary
from agent_dispatch.dispatch.reconcile import ReconcileSummary
from agent_dispatch.dispatch.repository import DispatchRepository
from agent_dispatch.dispatch.service import DispatchService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProjectAddCommand:
    db_path: Path | None
    name: str
    project_id: str | None


@dataclass(slots=True)
class RepositoryAddCommand:
    db_path: Path | None
    project_id: str
    name: str
    path: str
    max_concurrent_tasks: int
    repository_id: str | None


@dataclass(slots=True)
class AgentAddCommand:
    db_path: Path | None
    name: str
    agent_type: str
    max_concurrent_tasks: int
    config_dir: str | None
    agent_id: str | None


@dataclass(slots=True)
class AgentMutateCommand:
    db_path: Path | None
    agent_id: str


@dataclass(slots=True)
class TaskAddCommand:
    """CLI input for task creation."""

    db_path: Path | None
    project_id: str
    repository_id: str
    title: str
    content: str | None
    priority: int
    list_name: str
    mode: str | None
    column_order: str
    ready: bool
    agent_ids: tuple[str, ...]
    depends_on: tuple[str, ...]
    additional_repository_ids: tuple[str, ...]
    task_id: str | None = None


@dataclass(slots=True)
class TaskReadyCommand:
    db_path: Path | None
    task_id: str
    ready: bool


@dataclass(slots=True)
class TaskDependCommand:
    db_path: Path | None
    task_id: str
    depends_on_task_id: str


@dataclass(slots=True)
class TaskListCommand:
    db_path: Path | None
    list_name: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class TaskInspectCommand:
    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class EngineCommand:
    """CLI input for commands that run the engine."""

    db_path: Path | None


@dataclass(slots=True)
class SessionsCleanupCommand:
    db_path: Path | None
    stale_minutes: int | None
    completed_minutes: int | None


class DispatchCliController:
    """Coordinates catalog edits, engine runs and inspection CLI operations."""

    def add_project(self, command: ProjectAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            project = repository.create_project(name=command.name, project_id=command.project_id)
        return [f"Project created: {project.project_id} ({project.name})"]

    def add_repository(self, command: RepositoryAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            created = repository.create_repository(
                RepositoryCreate(
                    project_id=command.project_id,
                    name=command.name,
                    path=command.path,
                    max_concurrent_tasks=command.max_concurrent_tasks,
                    repository_id=command.repository_id,
                ),
            )
        return [
            f"Repository created: {created.repository_id} ({created.name}) "
            f"limit={_ceiling(created.max_concurrent_tasks)}",
        ]

    def add_agent(self, command: AgentAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            agent = repository.create_agent(
                AgentCreate(
                    name=command.name,
                    agent_type=command.agent_type,
                    max_concurrent_tasks=command.max_concurrent_tasks,
                    config_dir=command.config_dir,
                    agent_id=command.agent_id,
                ),
            )
        return [
            f"Agent created: {agent.agent_id} ({agent.name}) "
            f"limit={_ceiling(agent.max_concurrent_tasks)}",
        ]

    def clear_rate_limit(self, command: AgentMutateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            updated = repository.set_agent_rate_limit(agent_id=command.agent_id, reset_at=None)
        if not updated:
            return [f"Agent not found: {command.agent_id}"]
        return [f"Rate limit cleared: {command.agent_id}"]

    def add_task(self, command: TaskAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            task = repository.create_task(
                TaskCreate(
                    project_id=command.project_id,
                    main_repository_id=command.repository_id,
                    title=command.title,
                    content=command.content,
                    priority=command.priority,
                    list_name=TaskList(command.list_name),
                    mode=TaskMode(command.mode) if command.mode else None,
                    column_order=command.column_order,
                    ready=command.ready,
                    task_id=command.task_id,
                ),
            )
            for agent_id in command.agent_ids:
                repository.assign_agent(task_id=task.task_id, agent_id=agent_id)
            for repository_id in command.additional_repository_ids:
                repository.add_additional_repository(
                    task_id=task.task_id,
                    repository_id=repository_id,
                )
            for depends_on in command.depends_on:
                repository.add_dependency(task_id=task.task_id, depends_on_task_id=depends_on)
        return [
            f"Task created: {task.task_id} list={task.list_name.value} "
            f"priority={task.priority} ready={task.ready}",
        ]

    def set_ready(self, command: TaskReadyCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            task = repository.update_task(task_id=command.task_id, ready=command.ready)
        if task is None:
            return [f"Task not found: {command.task_id}"]
        return [f"Task {task.task_id} ready={task.ready}"]

    def add_dependency(self, command: TaskDependCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            repository.add_dependency(
                task_id=command.task_id,
                depends_on_task_id=command.depends_on_task_id,
            )
        return [f"Dependency added: {command.task_id} -> {command.depends_on_task_id}"]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(
                list_name=TaskList(command.list_name) if command.list_name else None,
                status=AgentSessionStatus(command.status) if command.status else None,
                limit=command.limit,
            )

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} list={task.list_name.value} "
                f"status={task.agent_session_status.value} priority={task.priority} "
                f"order={task.column_order} ready={task.ready} "
                f"agent={task.active_agent_id or '-'} title={task.title}",
            )
        return lines

    def inspect_task(self, command: TaskInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_task_details(task_id=command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Title: {task.title}",
            f"List: {task.list_name.value}",
            f"Mode: {task.mode.value if task.mode else '-'}",
            f"Status: {task.agent_session_status.value}",
            f"Priority: {task.priority}",
            f"Ready: {task.ready}",
            f"Active agent: {task.active_agent_id or '-'}",
            f"Last session: {task.last_agent_session_id or '-'}",
            f"Depends on: {', '.join(details.dependency_ids) or '-'}",
            f"Agents: {', '.join(details.agent_ids) or '-'}",
            f"Additional repositories: {', '.join(details.additional_repository_ids) or '-'}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            transition = ""
            if event.status_from is not None or event.status_to is not None:
                status_from = event.status_from.value if event.status_from else "-"
                status_to = event.status_to.value if event.status_to else "-"
                transition = f" {status_from}->{status_to}"
            lines.append(f"  {event.created_at.isoformat()} {event.event_type}{transition}")
        return lines

    def push(self, command: EngineCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings, push_on_stop=False) as service:
            summary = asyncio.run(_push_and_wait(service))
        if summary.skipped:
            return ["Push skipped: another cycle is running."]
        lines = [f"Pushed: {len(summary.pushed)}", f"Errors: {len(summary.errors)}"]
        lines.extend(f"  pushed {task_id}" for task_id in summary.pushed)
        lines.extend(f"  error {error}" for error in summary.errors)
        return lines

    def reconcile(self, command: EngineCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings, push_on_stop=False) as service:
            summary = asyncio.run(_reconcile_and_wait(service))
        lines = [
            f"Checked: {summary.checked}",
            f"Reset (completed session): {len(summary.reset_completed)}",
            f"Reset (lost session): {len(summary.reset_lost)}",
            f"Live: {len(summary.live)}",
        ]
        if summary.push is not None:
            lines.append(f"Pushed after reset: {len(summary.push.pushed)}")
        return lines

    def status(self, command: EngineCommand) -> list[str]:
        with _service(Settings.from_env(db_path=command.db_path)) as service:
            status = service.monitoring_status()
            agents = service.repository.list_agents()
        lines = [
            f"Active sessions: {status.active_sessions}",
            f"Completed sessions: {status.completed_sessions}",
            f"Active tasks: {status.active_tasks}",
            f"Pushing tasks: {status.pushing_tasks}",
            f"Ready tasks: {status.ready_tasks}",
            f"Agents: {len(agents)}",
        ]
        for agent in agents:
            reset_at = agent.rate_limit_reset_at.isoformat() if agent.rate_limit_reset_at else "-"
            lines.append(
                f"  {agent.agent_id} name={agent.name} "
                f"limit={_ceiling(agent.max_concurrent_tasks)} rate_limit_reset_at={reset_at}",
            )
        return lines

    def list_sessions(self, command: EngineCommand) -> list[str]:
        with _service(Settings.from_env(db_path=command.db_path)) as service:
            active = service.registry.list_active()
            completed = service.registry.list_completed()
        lines = [f"Active sessions: {len(active)}"]
        lines.extend(
            f"  {record.session_id} task={record.task_id} agent={record.agent_id} "
            f"last_ping={record.last_ping.isoformat()}"
            for record in active
        )
        lines.append(f"Completed sessions: {len(completed)}")
        lines.extend(
            f"  {record.session_id} task={record.task_id} agent={record.agent_id}"
            for record in completed
        )
        return lines

    def cleanup_sessions(self, command: SessionsCleanupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if command.stale_minutes is not None:
            settings.sessions.stale_after_minutes = command.stale_minutes
        if command.completed_minutes is not None:
            settings.sessions.completed_retention_minutes = command.completed_minutes
        with _service(settings) as service:
            summary = asyncio.run(service.cleanup_sessions())
        return [
            f"Stale active sessions purged: {len(summary.stale_purged)}",
            f"Completed sessions purged: {len(summary.completed_purged)}",
        ]

    def serve(self, command: EngineCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            asyncio.run(_serve(service))
        return ["Dispatch service stopped."]


async def _push_and_wait(service: DispatchService) -> PushSummary:
    summary = await service.push_tasks()
    await _wait_for_sessions(service)
    return summary


async def _reconcile_and_wait(service: DispatchService) -> ReconcileSummary:
    summary = await service.check_out_of_sync()
    await _wait_for_sessions(service)
    return summary


async def _wait_for_sessions(service: DispatchService) -> None:
    """One-shot commands exit only after the sessions they spawned have stopped."""

    wait_closed = getattr(service.spawner, "wait_closed", None)
    if wait_closed is not None:
        await wait_closed()


async def _serve(service: DispatchService) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handler for %s not supported", signum)
    await service.run(stop_event)


def _ceiling(value: int) -> str:
    return "unlimited" if value == 0 else str(value)


@contextmanager
def _repository(settings: Settings) -> Iterator[DispatchRepository]:
    repository = DispatchRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _service(settings: Settings, *, push_on_stop: bool = True) -> Iterator[DispatchService]:
    service = DispatchService.from_settings(settings, push_on_stop=push_on_stop)
    try:
        yield service
    finally:
        service.close()
