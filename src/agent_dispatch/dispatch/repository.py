"""Persistent task, agent and repository store for the dispatch engine."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from uuid import uuid4

from sqlalchemy import func, or_
from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from agent_dispatch.dispatch.models import (
    CLAIMED_STATUSES,
    AgentCreate,
    AgentSessionStatus,
    AgentView,
    ProjectView,
    RepositoryCreate,
    RepositoryView,
    TaskCreate,
    TaskDetails,
    TaskEventView,
    TaskList,
    TaskMode,
    TaskView,
)
from agent_dispatch.storage.alembic_runner import upgrade_head
from agent_dispatch.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from agent_dispatch.storage.sqlmodel_models import (
    Agent,
    Project,
    Repository,
    Task,
    TaskAdditionalRepository,
    TaskAgent,
    TaskDependency,
    TaskEvent,
)

logger = logging.getLogger(__name__)

LOOP_ORDER_STEP = Decimal(1000)
_CLAIMED_VALUES = tuple(status.value for status in CLAIMED_STATUSES)


class DispatchRepository:
    """Dispatch persistence facade backed by SQLModel + SQLite.

    Every status transition is a single conditional UPDATE and reports whether
    it won, so overlapping dispatchers can never both claim the same task.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine: Engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    # -- catalog ---------------------------------------------------------------

    def create_project(self, *, name: str, project_id: str | None = None) -> ProjectView:
        now = utc_now()
        with Session(self.engine) as session:
            row = Project(project_id=project_id or str(uuid4()), name=name, created_at=now)
            session.add(row)
            session.commit()
            session.refresh(row)
            return ProjectView(
                project_id=row.project_id,
                name=row.name,
                created_at=to_utc_aware_datetime(row.created_at),
            )

    def create_repository(self, payload: RepositoryCreate) -> RepositoryView:
        _require_ceiling(payload.max_concurrent_tasks)
        now = utc_now()
        with Session(self.engine) as session:
            row = Repository(
                repository_id=payload.repository_id or str(uuid4()),
                project_id=payload.project_id,
                name=payload.name,
                path=payload.path,
                max_concurrent_tasks=payload.max_concurrent_tasks,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_repository_view(row)

    def create_agent(self, payload: AgentCreate) -> AgentView:
        _require_ceiling(payload.max_concurrent_tasks)
        now = utc_now()
        with Session(self.engine) as session:
            row = Agent(
                agent_id=payload.agent_id or str(uuid4()),
                name=payload.name,
                agent_type=payload.agent_type,
                config_dir=payload.config_dir,
                max_concurrent_tasks=payload.max_concurrent_tasks,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_agent_view(row)

    def create_task(self, payload: TaskCreate) -> TaskView:
        """Create an INACTIVE task."""

        now = payload.created_at or utc_now()
        mode = TaskMode.LOOP if payload.list_name == TaskList.LOOP else payload.mode
        _parse_order(payload.column_order)
        task_id = payload.task_id or str(uuid4())
        with Session(self.engine) as session:
            row = Task(
                task_id=task_id,
                project_id=payload.project_id,
                main_repository_id=payload.main_repository_id,
                created_by_task_id=payload.created_by_task_id,
                title=payload.title,
                content=payload.content,
                priority=payload.priority,
                list_name=payload.list_name.value,
                mode=mode.value if mode is not None else None,
                column_order=payload.column_order,
                ready=payload.ready,
                agent_session_status=AgentSessionStatus.INACTIVE.value,
                created_at=to_db_datetime(now),
                updated_at=to_db_datetime(now),
            )
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="created",
                status_from=None,
                status_to=AgentSessionStatus.INACTIVE,
                details={"list": payload.list_name.value, "priority": payload.priority},
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def assign_agent(self, *, task_id: str, agent_id: str) -> None:
        """Declare an agent eligible for a task."""

        with Session(self.engine) as session:
            existing = session.get(TaskAgent, (task_id, agent_id))
            if existing is not None:
                return
            session.add(TaskAgent(task_id=task_id, agent_id=agent_id, created_at=utc_now()))
            session.commit()

    def add_additional_repository(self, *, task_id: str, repository_id: str) -> None:
        with Session(self.engine) as session:
            existing = session.get(TaskAdditionalRepository, (task_id, repository_id))
            if existing is not None:
                return
            session.add(
                TaskAdditionalRepository(
                    task_id=task_id,
                    repository_id=repository_id,
                    created_at=utc_now(),
                ),
            )
            session.commit()

    def add_dependency(self, *, task_id: str, depends_on_task_id: str) -> None:
        """Add edge ``task -> depends_on``; reject self-edges and cycles."""

        if task_id == depends_on_task_id:
            raise ValueError(f"Task {task_id} cannot depend on itself.")
        with Session(self.engine) as session:
            for candidate in (task_id, depends_on_task_id):
                if session.get(Task, candidate) is None:
                    raise ValueError(f"Task not found: {candidate}")
            if session.get(TaskDependency, (task_id, depends_on_task_id)) is not None:
                return

            edges: dict[str, list[str]] = {}
            for row in session.exec(select(TaskDependency)).all():
                edges.setdefault(row.task_id, []).append(row.depends_on_task_id)
            if _reaches(edges, start=depends_on_task_id, target=task_id):
                raise ValueError(
                    f"Dependency {task_id} -> {depends_on_task_id} would create a cycle.",
                )

            session.add(
                TaskDependency(
                    task_id=task_id,
                    depends_on_task_id=depends_on_task_id,
                    created_at=utc_now(),
                ),
            )
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="dependency_added",
                status_from=None,
                status_to=None,
                details={"depends_on_task_id": depends_on_task_id},
            )
            session.commit()

    def update_task(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        ready: bool | None = None,
        list_name: TaskList | None = None,
        mode: TaskMode | None = None,
        priority: int | None = None,
        column_order: str | None = None,
    ) -> TaskView | None:
        """Apply board edits; a task on the loop list is always in loop mode."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.get(Task, task_id)
            if row is None:
                return None
            changes: dict[str, object] = {}
            if ready is not None:
                row.ready = ready
                changes["ready"] = ready
            if list_name is not None:
                row.list_name = list_name.value
                changes["list"] = list_name.value
                if list_name == TaskList.LOOP:
                    mode = TaskMode.LOOP
            elif mode is not None and row.list_name == TaskList.LOOP.value:
                mode = TaskMode.LOOP
            if mode is not None and row.mode != mode.value:
                row.mode = mode.value
                changes["mode"] = mode.value
            if priority is not None:
                row.priority = priority
                changes["priority"] = priority
            if column_order is not None:
                _parse_order(column_order)
                row.column_order = column_order
                changes["column_order"] = column_order
            if not changes:
                return _to_task_view(row)
            row.updated_at = to_db_datetime(now)
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="updated",
                status_from=None,
                status_to=None,
                details=changes,
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    # -- reads -----------------------------------------------------------------

    def get_task(self, *, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(Task, task_id)
            return _to_task_view(row) if row is not None else None

    def get_agent(self, *, agent_id: str) -> AgentView | None:
        with Session(self.engine) as session:
            row = session.get(Agent, agent_id)
            return _to_agent_view(row) if row is not None else None

    def get_repository(self, *, repository_id: str) -> RepositoryView | None:
        with Session(self.engine) as session:
            row = session.get(Repository, repository_id)
            return _to_repository_view(row) if row is not None else None

    def list_agents(self) -> list[AgentView]:
        with Session(self.engine) as session:
            rows = session.exec(select(Agent).order_by(col(Agent.name).asc())).all()
            return [_to_agent_view(row) for row in rows]

    def list_tasks(
        self,
        *,
        list_name: TaskList | None = None,
        status: AgentSessionStatus | None = None,
        limit: int = 100,
    ) -> list[TaskView]:
        with Session(self.engine) as session:
            statement = select(Task)
            if list_name is not None:
                statement = statement.where(Task.list_name == list_name.value)
            if status is not None:
                statement = statement.where(Task.agent_session_status == status.value)
            rows = session.exec(
                statement.order_by(
                    col(Task.priority).desc(),
                    col(Task.created_at).asc(),
                ).limit(limit),
            ).all()
            return [_to_task_view(row) for row in rows]

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        with Session(self.engine) as session:
            task = session.get(Task, task_id)
            if task is None:
                return None
            dependency_ids = session.exec(
                select(TaskDependency.depends_on_task_id).where(TaskDependency.task_id == task_id),
            ).all()
            agent_ids = session.exec(
                select(TaskAgent.agent_id).where(TaskAgent.task_id == task_id),
            ).all()
            repository_ids = session.exec(
                select(TaskAdditionalRepository.repository_id).where(
                    TaskAdditionalRepository.task_id == task_id,
                ),
            ).all()
            events = session.exec(
                select(TaskEvent)
                .where(TaskEvent.task_id == task_id)
                .order_by(col(TaskEvent.created_at).asc(), col(TaskEvent.id).asc()),
            ).all()
            return TaskDetails(
                task=_to_task_view(task),
                dependency_ids=sorted(dependency_ids),
                agent_ids=sorted(agent_ids),
                additional_repository_ids=sorted(repository_ids),
                events=[_to_event_view(event) for event in events],
            )

    def list_candidate_tasks(self) -> list[TaskView]:
        """Ready, INACTIVE, not-done tasks whose dependencies are all done."""

        dependency = TaskDependency.__table__.alias("dependency")
        blocker = Task.__table__.alias("blocker")
        unmet_dependency = (
            select(dependency.c.task_id)
            .select_from(
                dependency.join(blocker, blocker.c.task_id == dependency.c.depends_on_task_id),
            )
            .where(
                dependency.c.task_id == Task.task_id,
                blocker.c.list_name != TaskList.DONE.value,
            )
        )
        with Session(self.engine) as session:
            rows = session.exec(
                select(Task).where(
                    Task.ready == True,  # noqa: E712
                    Task.agent_session_status == AgentSessionStatus.INACTIVE.value,
                    Task.list_name != TaskList.DONE.value,
                    ~unmet_dependency.exists(),
                ),
            ).all()
            return [_to_task_view(row) for row in rows]

    def list_assigned_agents(self, *, task_id: str) -> list[AgentView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Agent)
                .join(TaskAgent, col(TaskAgent.agent_id) == col(Agent.agent_id))
                .where(TaskAgent.task_id == task_id),
            ).all()
            return [_to_agent_view(row) for row in rows]

    def task_repository_ids(self, *, task_id: str) -> list[str]:
        """Main repository first, then additional repositories."""

        with Session(self.engine) as session:
            task = session.get(Task, task_id)
            if task is None:
                return []
            additional = session.exec(
                select(TaskAdditionalRepository.repository_id).where(
                    TaskAdditionalRepository.task_id == task_id,
                ),
            ).all()
            return [task.main_repository_id] + sorted(
                repository_id
                for repository_id in additional
                if repository_id != task.main_repository_id
            )

    def count_active_tasks_for_agent(self, *, agent_id: str) -> int:
        with Session(self.engine) as session:
            return int(
                session.exec(
                    select(func.count())
                    .select_from(Task)
                    .where(
                        Task.active_agent_id == agent_id,
                        col(Task.agent_session_status).in_(_CLAIMED_VALUES),
                        Task.list_name != TaskList.DONE.value,
                    ),
                ).one(),
            )

    def count_active_tasks_for_repository(self, *, repository_id: str) -> int:
        """Claimed tasks using the repository as main or additional repository."""

        uses_as_additional = (
            select(TaskAdditionalRepository.task_id)
            .where(
                TaskAdditionalRepository.task_id == Task.task_id,
                TaskAdditionalRepository.repository_id == repository_id,
            )
            .exists()
        )
        with Session(self.engine) as session:
            return int(
                session.exec(
                    select(func.count())
                    .select_from(Task)
                    .where(
                        or_(Task.main_repository_id == repository_id, uses_as_additional),
                        col(Task.agent_session_status).in_(_CLAIMED_VALUES),
                        Task.list_name != TaskList.DONE.value,
                    ),
                ).one(),
            )

    def list_claimed_tasks(self) -> list[TaskView]:
        """Tasks in PUSHING/ACTIVE that are not done."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(Task)
                .where(
                    col(Task.agent_session_status).in_(_CLAIMED_VALUES),
                    Task.list_name != TaskList.DONE.value,
                )
                .order_by(col(Task.last_pushed_at).asc()),
            ).all()
            return [_to_task_view(row) for row in rows]

    def count_ready_tasks(self) -> int:
        with Session(self.engine) as session:
            return int(
                session.exec(
                    select(func.count())
                    .select_from(Task)
                    .where(
                        Task.ready == True,  # noqa: E712
                        Task.agent_session_status == AgentSessionStatus.INACTIVE.value,
                        Task.list_name != TaskList.DONE.value,
                    ),
                ).one(),
            )

    # -- transitions -----------------------------------------------------------

    def mark_pushing(
        self,
        *,
        task_id: str,
        agent_id: str,
        session_id: str,
        now: datetime | None = None,
    ) -> bool:
        """INACTIVE -> PUSHING; False if another dispatcher got there first."""

        pushed_at = now or utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == task_id,
                    col(Task.agent_session_status) == AgentSessionStatus.INACTIVE.value,
                )
                .values(
                    agent_session_status=AgentSessionStatus.PUSHING.value,
                    active_agent_id=agent_id,
                    last_agent_session_id=session_id,
                    last_pushed_at=to_db_datetime(pushed_at),
                    updated_at=to_db_datetime(pushed_at),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="push_started",
                status_from=AgentSessionStatus.INACTIVE,
                status_to=AgentSessionStatus.PUSHING,
                details={"agent_id": agent_id, "session_id": session_id},
            )
            session.commit()
            return True

    def record_push(
        self,
        *,
        agent_id: str,
        repository_ids: list[str],
        now: datetime | None = None,
    ) -> None:
        """Stamp ``last_task_pushed_at`` on the agent and every repository used."""

        pushed_at = to_db_datetime(now or utc_now())
        with Session(self.engine) as session:
            session.exec(
                sa_update(Agent)
                .where(col(Agent.agent_id) == agent_id)
                .values(last_task_pushed_at=pushed_at, updated_at=pushed_at),
            )
            if repository_ids:
                session.exec(
                    sa_update(Repository)
                    .where(col(Repository.repository_id).in_(repository_ids))
                    .values(last_task_pushed_at=pushed_at, updated_at=pushed_at),
                )
            session.commit()

    def rollback_push(
        self,
        *,
        task_id: str,
        error: str,
        session_id: str | None = None,
        previous_session_id: str | None = None,
    ) -> bool:
        """PUSHING -> INACTIVE after a failed spawn.

        When ``session_id`` is given the rollback only applies to that push, and
        ``last_agent_session_id`` goes back to ``previous_session_id`` so the
        never-started session is not offered for resume.
        """

        extra_values: dict[str, object] = {}
        if session_id is not None:
            extra_values["last_agent_session_id"] = previous_session_id
        return self._release(
            task_id=task_id,
            from_statuses=(AgentSessionStatus.PUSHING,),
            event_type="push_rolled_back",
            details={"error": error},
            session_id=session_id,
            extra_values=extra_values,
        )

    def release_task(self, *, task_id: str, reason: str, **details: object) -> bool:
        """PUSHING/ACTIVE -> INACTIVE so the task re-enters the candidate pool."""

        return self._release(
            task_id=task_id,
            from_statuses=CLAIMED_STATUSES,
            event_type="released",
            details={"reason": reason, **details},
        )

    def mark_session_started(
        self,
        *,
        task_id: str,
        session_id: str,
        agent_id: str,
        now: datetime | None = None,
    ) -> bool:
        """PUSHING -> ACTIVE when the session the task was pushed with reports in.

        Start events for a rolled-back, released or superseded session are ignored.
        """

        started_at = to_db_datetime(now or utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == task_id,
                    col(Task.agent_session_status) == AgentSessionStatus.PUSHING.value,
                    col(Task.last_agent_session_id) == session_id,
                    col(Task.list_name) != TaskList.DONE.value,
                )
                .values(
                    agent_session_status=AgentSessionStatus.ACTIVE.value,
                    active_agent_id=agent_id,
                    last_agent_session_started_at=started_at,
                    updated_at=started_at,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="session_started",
                status_from=AgentSessionStatus.PUSHING,
                status_to=AgentSessionStatus.ACTIVE,
                details={"agent_id": agent_id, "session_id": session_id},
            )
            session.commit()
            return True

    def mark_session_stopped(self, *, task_id: str, session_id: str) -> bool:
        """Return the task to INACTIVE when its current session ends.

        Loop-mode tasks go back to the bottom of their project's loop column.
        Stop events for a session the task no longer points at are ignored.
        """

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(Task, task_id)
            if row is None or row.last_agent_session_id != session_id:
                return False
            status_from = AgentSessionStatus(row.agent_session_status)
            values: dict[str, object] = {
                "agent_session_status": AgentSessionStatus.INACTIVE.value,
                "active_agent_id": None,
                "updated_at": now,
            }
            returned_to_loop = (
                row.mode == TaskMode.LOOP.value and row.list_name != TaskList.DONE.value
            )
            if returned_to_loop:
                values.update(
                    list_name=TaskList.LOOP.value,
                    mode=TaskMode.LOOP.value,
                    column_order=str(
                        self._bottom_of_loop_order(
                            session=session,
                            project_id=row.project_id,
                            exclude_task_id=task_id,
                        ),
                    ),
                )
            result = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == task_id,
                    col(Task.last_agent_session_id) == session_id,
                    col(Task.agent_session_status).in_(_CLAIMED_VALUES),
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="returned_to_loop" if returned_to_loop else "session_stopped",
                status_from=status_from,
                status_to=AgentSessionStatus.INACTIVE,
                details={"session_id": session_id},
            )
            session.commit()
            return True

    def set_agent_rate_limit(self, *, agent_id: str, reset_at: datetime | None) -> bool:
        """Set or clear the agent's rate-limit reset instant."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Agent)
                .where(col(Agent.agent_id) == agent_id)
                .values(
                    rate_limit_reset_at=to_db_datetime(reset_at) if reset_at is not None else None,
                    updated_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()
            return result.rowcount == 1

    def add_task_event(self, *, task_id: str, event_type: str, details: dict[str, object]) -> None:
        with Session(self.engine) as session:
            if session.get(Task, task_id) is None:
                logger.debug("Skipping %s event for unknown task %s", event_type, task_id)
                return
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=event_type,
                status_from=None,
                status_to=None,
                details=details,
            )
            session.commit()

    def _release(
        self,
        *,
        task_id: str,
        from_statuses: tuple[AgentSessionStatus, ...],
        event_type: str,
        details: dict[str, object],
        session_id: str | None = None,
        extra_values: dict[str, object] | None = None,
    ) -> bool:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(Task, task_id)
            if row is None:
                return False
            status_from = AgentSessionStatus(row.agent_session_status)
            conditions = [
                col(Task.task_id) == task_id,
                col(Task.agent_session_status).in_([status.value for status in from_statuses]),
            ]
            if session_id is not None:
                conditions.append(col(Task.last_agent_session_id) == session_id)
            result = session.exec(
                sa_update(Task)
                .where(*conditions)
                .values(
                    agent_session_status=AgentSessionStatus.INACTIVE.value,
                    active_agent_id=None,
                    updated_at=now,
                    **(extra_values or {}),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=event_type,
                status_from=status_from,
                status_to=AgentSessionStatus.INACTIVE,
                details=details,
            )
            session.commit()
            return True

    def _bottom_of_loop_order(
        self,
        *,
        session: Session,
        project_id: str,
        exclude_task_id: str,
    ) -> Decimal:
        orders = session.exec(
            select(Task.column_order).where(
                Task.project_id == project_id,
                Task.list_name == TaskList.LOOP.value,
                Task.task_id != exclude_task_id,
            ),
        ).all()
        parsed = [_parse_order(order) for order in orders]
        last = max(parsed) if parsed else LOOP_ORDER_STEP
        return last + LOOP_ORDER_STEP

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: AgentSessionStatus | None,
        status_to: AgentSessionStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            TaskEvent(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True, default=str)
                if details
                else None,
                created_at=utc_now(),
            ),
        )


def parse_column_order(value: str) -> Decimal:
    """Manual board order key as a decimal; unparsable keys sort last."""

    try:
        parsed = Decimal(value.strip())
    except (InvalidOperation, AttributeError):
        return Decimal("Infinity")
    if not parsed.is_finite():
        return Decimal("Infinity")
    return parsed


def _parse_order(value: str) -> Decimal:
    parsed = parse_column_order(value)
    if not parsed.is_finite():
        raise ValueError(f"Invalid column order: {value!r}")
    return parsed


def _require_ceiling(value: int) -> None:
    if value < 0:
        raise ValueError(f"Concurrency ceiling must be >= 0 (0 = unlimited), got {value}.")


def _reaches(edges: dict[str, list[str]], *, start: str, target: str) -> bool:
    stack = [start]
    seen: set[str] = set()
    while stack:
        node = stack.pop()
        if node == target:
            return True
        if node in seen:
            continue
        seen.add(node)
        stack.extend(edges.get(node, ()))
    return False


def _to_repository_view(row: Repository) -> RepositoryView:
    return RepositoryView(
        repository_id=row.repository_id,
        project_id=row.project_id,
        name=row.name,
        path=row.path,
        max_concurrent_tasks=row.max_concurrent_tasks,
        last_task_pushed_at=_optional_aware(row.last_task_pushed_at),
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_agent_view(row: Agent) -> AgentView:
    return AgentView(
        agent_id=row.agent_id,
        name=row.name,
        agent_type=row.agent_type,
        config_dir=row.config_dir,
        max_concurrent_tasks=row.max_concurrent_tasks,
        last_task_pushed_at=_optional_aware(row.last_task_pushed_at),
        rate_limit_reset_at=_optional_aware(row.rate_limit_reset_at),
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_task_view(row: Task) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        project_id=row.project_id,
        main_repository_id=row.main_repository_id,
        created_by_task_id=row.created_by_task_id,
        title=row.title,
        content=row.content,
        priority=row.priority,
        list_name=TaskList(row.list_name),
        mode=TaskMode(row.mode) if row.mode is not None else None,
        column_order=row.column_order,
        ready=bool(row.ready),
        agent_session_status=AgentSessionStatus(row.agent_session_status),
        active_agent_id=row.active_agent_id,
        last_agent_session_id=row.last_agent_session_id,
        last_pushed_at=_optional_aware(row.last_pushed_at),
        last_agent_session_started_at=_optional_aware(row.last_agent_session_started_at),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_event_view(row: TaskEvent) -> TaskEventView:
    return TaskEventView(
        event_id=row.id or 0,
        task_id=row.task_id,
        event_type=row.event_type,
        status_from=AgentSessionStatus(row.status_from) if row.status_from is not None else None,
        status_to=AgentSessionStatus(row.status_to) if row.status_to is not None else None,
        created_at=to_utc_aware_datetime(row.created_at),
        details=json.loads(row.details_json) if row.details_json else {},
    )


def _optional_aware(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None
