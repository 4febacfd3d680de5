"""Domain models for task dispatch and agent sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskList(str, Enum):
    """Board column a task lives in."""

    TODO = "todo"
    DOING = "doing"
    DONE = "done"
    LOOP = "loop"


class TaskMode(str, Enum):
    """Active work phase within a task."""

    CLARIFY = "clarify"
    PLAN = "plan"
    EXECUTE = "execute"
    LOOP = "loop"
    TALK = "talk"


class AgentSessionStatus(str, Enum):
    """Dispatch lifecycle of a task's agent session."""

    INACTIVE = "INACTIVE"
    PUSHING = "PUSHING"
    ACTIVE = "ACTIVE"


CLAIMED_STATUSES: tuple[AgentSessionStatus, ...] = (
    AgentSessionStatus.PUSHING,
    AgentSessionStatus.ACTIVE,
)


@dataclass(slots=True)
class ProjectView:
    project_id: str
    name: str
    created_at: datetime


@dataclass(slots=True)
class RepositoryCreate:
    """Input payload for registering a repository."""

    project_id: str
    name: str
    path: str
    max_concurrent_tasks: int = 1
    repository_id: str | None = None


@dataclass(slots=True)
class RepositoryView:
    """Repository with its concurrency ceiling (0 = unlimited)."""

    repository_id: str
    project_id: str
    name: str
    path: str
    max_concurrent_tasks: int
    last_task_pushed_at: datetime | None
    created_at: datetime


@dataclass(slots=True)
class AgentCreate:
    """Input payload for registering an agent."""

    name: str
    agent_type: str = "claude"
    max_concurrent_tasks: int = 1
    config_dir: str | None = None
    agent_id: str | None = None


@dataclass(slots=True)
class AgentView:
    """Agent with its concurrency ceiling (0 = unlimited) and rate-limit state."""

    agent_id: str
    name: str
    agent_type: str
    config_dir: str | None
    max_concurrent_tasks: int
    last_task_pushed_at: datetime | None
    rate_limit_reset_at: datetime | None
    created_at: datetime


@dataclass(slots=True)
class TaskCreate:
    """Input payload for creating a task."""

    project_id: str
    main_repository_id: str
    title: str
    content: str | None = None
    priority: int = 0
    list_name: TaskList = TaskList.TODO
    mode: TaskMode | None = None
    column_order: str = "1000"
    ready: bool = False
    created_by_task_id: str | None = None
    task_id: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view for selector, dispatch loop and CLI."""

    task_id: str
    project_id: str
    main_repository_id: str
    created_by_task_id: str | None
    title: str
    content: str | None
    priority: int
    list_name: TaskList
    mode: TaskMode | None
    column_order: str
    ready: bool
    agent_session_status: AgentSessionStatus
    active_agent_id: str | None
    last_agent_session_id: str | None
    last_pushed_at: datetime | None
    last_agent_session_started_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: AgentSessionStatus | None
    status_to: AgentSessionStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task details with links and event stream."""

    task: TaskView
    dependency_ids: list[str]
    agent_ids: list[str]
    additional_repository_ids: list[str]
    events: list[TaskEventView]
