"""CLI entrypoint for agent-dispatch."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from agent_dispatch import __version__
from agent_dispatch.dispatch.controllers import (
    AgentAddCommand,
    AgentMutateCommand,
    DispatchCliController,
    EngineCommand,
    ProjectAddCommand,
    RepositoryAddCommand,
    SessionsCleanupCommand,
    TaskAddCommand,
    TaskDependCommand,
    TaskInspectCommand,
    TaskListCommand,
    TaskReadyCommand,
)
from agent_dispatch.dispatch.models import AgentSessionStatus, TaskList, TaskMode

click.rich_click.USE_MARKDOWN = True
CONTROLLER = DispatchCliController()

CommandT = TypeVar("CommandT")

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="agent-dispatch")
def agent_dispatch() -> None:
    """Task scheduling and agent dispatch CLI."""


@agent_dispatch.command("serve")
@db_path_option
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Log level for the running service.",
)
def serve(db_path: Path | None, log_level: str) -> None:
    """Run the dispatch, reconcile and session-cleanup loops until interrupted.

    Settings come from `AGENT_DISPATCH_*` environment variables.
    """

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _emit_lines(_invoke(CONTROLLER.serve, EngineCommand(db_path=db_path)))


@agent_dispatch.command("push")
@db_path_option
def push(db_path: Path | None) -> None:
    """Run one dispatch cycle and wait for the spawned sessions to finish."""

    _emit_lines(_invoke(CONTROLLER.push, EngineCommand(db_path=db_path)))


@agent_dispatch.command("reconcile")
@db_path_option
def reconcile(db_path: Path | None) -> None:
    """Reset tasks whose agent session is finished or lost."""

    _emit_lines(_invoke(CONTROLLER.reconcile, EngineCommand(db_path=db_path)))


@agent_dispatch.command("status")
@db_path_option
def status(db_path: Path | None) -> None:
    """Show session and task counters."""

    _emit_lines(_invoke(CONTROLLER.status, EngineCommand(db_path=db_path)))


@agent_dispatch.group()
def sessions() -> None:
    """Session registry commands."""


@sessions.command("list")
@db_path_option
def sessions_list(db_path: Path | None) -> None:
    """List active and completed sessions."""

    _emit_lines(_invoke(CONTROLLER.list_sessions, EngineCommand(db_path=db_path)))


@sessions.command("cleanup")
@db_path_option
@click.option(
    "--stale-minutes",
    type=click.IntRange(min=1),
    default=None,
    help="Purge active sessions without a heartbeat for this long.",
)
@click.option(
    "--completed-minutes",
    type=click.IntRange(min=0),
    default=None,
    help="Purge completed sessions older than this.",
)
def sessions_cleanup(
    db_path: Path | None,
    stale_minutes: int | None,
    completed_minutes: int | None,
) -> None:
    """Purge stale and expired session records."""

    _emit_lines(
        _invoke(
            CONTROLLER.cleanup_sessions,
            SessionsCleanupCommand(
                db_path=db_path,
                stale_minutes=stale_minutes,
                completed_minutes=completed_minutes,
            ),
        ),
    )


@agent_dispatch.group()
def project() -> None:
    """Project commands."""


@project.command("add")
@db_path_option
@click.option("--name", required=True, help="Project name.")
@click.option("--id", "project_id", default=None, help="Explicit project id.")
def project_add(db_path: Path | None, name: str, project_id: str | None) -> None:
    """Create a project."""

    _emit_lines(
        _invoke(
            CONTROLLER.add_project,
            ProjectAddCommand(db_path=db_path, name=name, project_id=project_id),
        ),
    )


@agent_dispatch.group()
def repo() -> None:
    """Repository commands."""


@repo.command("add")
@db_path_option
@click.option("--project", "project_id", required=True, help="Owning project id.")
@click.option("--name", required=True, help="Repository name.")
@click.option("--path", "path", required=True, help="Checkout path used as agent workdir.")
@click.option(
    "--max-concurrent",
    "max_concurrent_tasks",
    type=click.IntRange(min=0),
    default=1,
    show_default=True,
    help="Concurrent task ceiling, 0 means unlimited.",
)
@click.option("--id", "repository_id", default=None, help="Explicit repository id.")
def repo_add(  # noqa: PLR0913
    db_path: Path | None,
    project_id: str,
    name: str,
    path: str,
    max_concurrent_tasks: int,
    repository_id: str | None,
) -> None:
    """Register a repository."""

    _emit_lines(
        _invoke(
            CONTROLLER.add_repository,
            RepositoryAddCommand(
                db_path=db_path,
                project_id=project_id,
                name=name,
                path=path,
                max_concurrent_tasks=max_concurrent_tasks,
                repository_id=repository_id,
            ),
        ),
    )


@agent_dispatch.group()
def agent() -> None:
    """Agent commands."""


@agent.command("add")
@db_path_option
@click.option("--name", required=True, help="Agent name.")
@click.option("--type", "agent_type", default="claude", show_default=True, help="Agent type.")
@click.option(
    "--max-concurrent",
    "max_concurrent_tasks",
    type=click.IntRange(min=0),
    default=1,
    show_default=True,
    help="Concurrent task ceiling, 0 means unlimited.",
)
@click.option("--config-dir", default=None, help="Agent CLI config directory.")
@click.option("--id", "agent_id", default=None, help="Explicit agent id.")
def agent_add(  # noqa: PLR0913
    db_path: Path | None,
    name: str,
    agent_type: str,
    max_concurrent_tasks: int,
    config_dir: str | None,
    agent_id: str | None,
) -> None:
    """Register an agent."""

    _emit_lines(
        _invoke(
            CONTROLLER.add_agent,
            AgentAddCommand(
                db_path=db_path,
                name=name,
                agent_type=agent_type,
                max_concurrent_tasks=max_concurrent_tasks,
                config_dir=config_dir,
                agent_id=agent_id,
            ),
        ),
    )


@agent.command("clear-rate-limit")
@db_path_option
@click.argument("agent_id")
def agent_clear_rate_limit(db_path: Path | None, agent_id: str) -> None:
    """Clear a recorded rate-limit reset time."""

    _emit_lines(
        _invoke(
            CONTROLLER.clear_rate_limit,
            AgentMutateCommand(db_path=db_path, agent_id=agent_id),
        ),
    )


@agent_dispatch.group()
def task() -> None:
    """Task board commands."""


@task.command("add")
@db_path_option
@click.option("--project", "project_id", required=True, help="Project id.")
@click.option("--repo", "repository_id", required=True, help="Main repository id.")
@click.option("--title", required=True, help="Task title.")
@click.option("--content", default=None, help="Task body passed to the agent.")
@click.option("--priority", type=int, default=0, show_default=True, help="Higher runs first.")
@click.option(
    "--list",
    "list_name",
    type=click.Choice([item.value for item in TaskList]),
    default=TaskList.TODO.value,
    show_default=True,
    help="Board list.",
)
@click.option(
    "--mode",
    type=click.Choice([item.value for item in TaskMode]),
    default=None,
    help="Task mode.",
)
@click.option("--order", "column_order", default="1000", show_default=True, help="Column order.")
@click.option("--ready/--not-ready", default=False, show_default=True, help="Ready flag.")
@click.option("--agent", "agent_ids", multiple=True, help="Assigned agent id. Can be repeated.")
@click.option(
    "--depends-on",
    "depends_on",
    multiple=True,
    help="Blocking task id. Can be repeated.",
)
@click.option(
    "--extra-repo",
    "additional_repository_ids",
    multiple=True,
    help="Additional repository id. Can be repeated.",
)
@click.option("--id", "task_id", default=None, help="Explicit task id.")
def task_add(  # noqa: PLR0913
    db_path: Path | None,
    project_id: str,
    repository_id: str,
    title: str,
    content: str | None,
    priority: int,
    list_name: str,
    mode: str | None,
    column_order: str,
    ready: bool,
    agent_ids: tuple[str, ...],
    depends_on: tuple[str, ...],
    additional_repository_ids: tuple[str, ...],
    task_id: str | None,
) -> None:
    """Create a task on the board."""

    _emit_lines(
        _invoke(
            CONTROLLER.add_task,
            TaskAddCommand(
                db_path=db_path,
                project_id=project_id,
                repository_id=repository_id,
                title=title,
                content=content,
                priority=priority,
                list_name=list_name,
                mode=mode,
                column_order=column_order,
                ready=ready,
                agent_ids=agent_ids,
                depends_on=depends_on,
                additional_repository_ids=additional_repository_ids,
                task_id=task_id,
            ),
        ),
    )


@task.command("ready")
@db_path_option
@click.argument("task_id")
@click.option("--off", "not_ready", is_flag=True, default=False, help="Clear the ready flag.")
def task_ready(db_path: Path | None, task_id: str, not_ready: bool) -> None:
    """Mark a task ready for dispatch."""

    _emit_lines(
        _invoke(
            CONTROLLER.set_ready,
            TaskReadyCommand(db_path=db_path, task_id=task_id, ready=not not_ready),
        ),
    )


@task.command("depend")
@db_path_option
@click.argument("task_id")
@click.argument("depends_on_task_id")
def task_depend(db_path: Path | None, task_id: str, depends_on_task_id: str) -> None:
    """Block TASK_ID until DEPENDS_ON_TASK_ID is done."""

    _emit_lines(
        _invoke(
            CONTROLLER.add_dependency,
            TaskDependCommand(
                db_path=db_path,
                task_id=task_id,
                depends_on_task_id=depends_on_task_id,
            ),
        ),
    )


@task.command("list")
@db_path_option
@click.option(
    "--list",
    "list_name",
    type=click.Choice([item.value for item in TaskList]),
    default=None,
    help="Optional board list filter.",
)
@click.option(
    "--status",
    type=click.Choice([item.value for item in AgentSessionStatus]),
    default=None,
    help="Optional session status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Maximum tasks to show.",
)
def task_list(
    db_path: Path | None,
    list_name: str | None,
    status: str | None,
    limit: int,
) -> None:
    """List tasks."""

    _emit_lines(
        _invoke(
            CONTROLLER.list_tasks,
            TaskListCommand(db_path=db_path, list_name=list_name, status=status, limit=limit),
        ),
    )


@task.command("inspect")
@db_path_option
@click.argument("task_id")
def task_inspect(db_path: Path | None, task_id: str) -> None:
    """Show task details, links and events."""

    _emit_lines(
        _invoke(CONTROLLER.inspect_task, TaskInspectCommand(db_path=db_path, task_id=task_id)),
    )


def _invoke(handler: Callable[[CommandT], list[str]], command: CommandT) -> list[str]:
    try:
        return handler(command)
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_dispatch()
