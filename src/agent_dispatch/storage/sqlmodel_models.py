"""SQLModel ORM tables for dispatch storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, text
from sqlmodel import Field, SQLModel


class Project(SQLModel, table=True):
    __tablename__ = "projects"  # type: ignore[bad-override]

    project_id: str = Field(primary_key=True)
    name: str = Field(index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Repository(SQLModel, table=True):
    __tablename__ = "repositories"  # type: ignore[bad-override]

    repository_id: str = Field(primary_key=True)
    project_id: str = Field(
        sa_column=Column(
            ForeignKey("projects.project_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    name: str
    path: str
    max_concurrent_tasks: int = Field(default=1, sa_column_kwargs={"server_default": "1"})
    last_task_pushed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Agent(SQLModel, table=True):
    __tablename__ = "agents"  # type: ignore[bad-override]

    agent_id: str = Field(primary_key=True)
    name: str = Field(index=True)
    agent_type: str = Field(default="claude")
    config_dir: str | None = None
    max_concurrent_tasks: int = Field(default=1, sa_column_kwargs={"server_default": "1"})
    last_task_pushed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    rate_limit_reset_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Task(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_tasks_candidates", "ready", "agent_session_status", "list_name"),
        Index("idx_tasks_project_list", "project_id", "list_name"),
    )

    task_id: str = Field(primary_key=True)
    project_id: str = Field(
        sa_column=Column(
            ForeignKey("projects.project_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    main_repository_id: str = Field(
        sa_column=Column(
            ForeignKey("repositories.repository_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    created_by_task_id: str | None = Field(
        default=None,
        sa_column=Column(ForeignKey("tasks.task_id", ondelete="SET NULL")),
    )
    title: str
    content: str | None = Field(default=None, sa_column=Column(Text))
    priority: int = Field(default=0, index=True)
    list_name: str = Field(default="todo", sa_column_kwargs={"server_default": "todo"})
    mode: str | None = None
    column_order: str = Field(default="1000", sa_column_kwargs={"server_default": "1000"})
    ready: bool = Field(default=False, sa_column_kwargs={"server_default": text("0")})
    agent_session_status: str = Field(
        default="INACTIVE",
        sa_column_kwargs={"server_default": "INACTIVE"},
    )
    active_agent_id: str | None = Field(
        default=None,
        sa_column=Column(ForeignKey("agents.agent_id", ondelete="SET NULL"), index=True),
    )
    last_agent_session_id: str | None = None
    last_pushed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    last_agent_session_started_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskDependency(SQLModel, table=True):
    __tablename__ = "task_dependencies"  # type: ignore[bad-override]

    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    depends_on_task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            primary_key=True,
            index=True,
        ),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskAgent(SQLModel, table=True):
    __tablename__ = "task_agents"  # type: ignore[bad-override]

    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    agent_id: str = Field(
        sa_column=Column(
            ForeignKey("agents.agent_id", ondelete="CASCADE"),
            primary_key=True,
            index=True,
        ),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskAdditionalRepository(SQLModel, table=True):
    __tablename__ = "task_additional_repositories"  # type: ignore[bad-override]

    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    repository_id: str = Field(
        sa_column=Column(
            ForeignKey("repositories.repository_id", ondelete="CASCADE"),
            primary_key=True,
            index=True,
        ),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskEvent(SQLModel, table=True):
    __tablename__ = "task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = Field(default=None, index=True)
    status_to: str | None = Field(default=None, index=True)
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
