"""Dispatch engine assembly and periodic operation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from uuid import uuid4

from agent_dispatch.config import Settings
from agent_dispatch.dispatch.lifecycle import SessionLifecycle
from agent_dispatch.dispatch.lock import DispatchLock
from agent_dispatch.dispatch.models import AgentSessionStatus
from agent_dispatch.dispatch.notify import LoggingNotifier, Notifier
from agent_dispatch.dispatch.pusher import DispatchLoop, PushSummary
from agent_dispatch.dispatch.rate_limit import RateLimitMessageLog
from agent_dispatch.dispatch.reconcile import ReconcileSummary, ReconciliationMonitor
from agent_dispatch.dispatch.repository import DispatchRepository
from agent_dispatch.dispatch.scheduler import GenerationToken, PeriodicJob
from agent_dispatch.dispatch.spawner import AgentSpawner, CliAgentSpawner
from agent_dispatch.sessions.registry import SessionRecord, SessionRegistry, build_session_store
from agent_dispatch.storage.common import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CleanupSummary:
    stale_purged: list[str] = field(default_factory=list)
    completed_purged: list[str] = field(default_factory=list)


@dataclass(slots=True)
class MonitoringStatus:
    """Point-in-time view of sessions versus database state."""

    active_sessions: int
    completed_sessions: int
    active_tasks: int
    pushing_tasks: int
    ready_tasks: int
    sessions: list[SessionRecord]


class DispatchService:
    """Owns the repository, registry, spawner, lock and the three drivers."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        repository: DispatchRepository,
        registry: SessionRegistry,
        spawner: AgentSpawner | None = None,
        notifier: Notifier | None = None,
        generation: str | None = None,
        push_on_stop: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.registry = registry
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock
        self.generation = GenerationToken(generation or uuid4().hex)
        self.lifecycle = SessionLifecycle(
            repository=repository,
            registry=registry,
            notifier=self.notifier,
            message_log=RateLimitMessageLog(settings.rate_limit.messages_path),
            trigger_push=self.push_tasks if push_on_stop else None,
            clock=clock,
        )
        self.spawner: AgentSpawner = spawner or CliAgentSpawner(
            command_template=settings.spawn.command_template,
            events=self.lifecycle,
            prompt_dir=settings.spawn.prompt_dir,
            heartbeat=lambda session_id: registry.heartbeat(session_id),
            clock=clock,
        )
        self.lock = DispatchLock(
            timeout_seconds=settings.dispatch.lock_timeout_seconds,
            clock=clock,
        )
        self.dispatch = DispatchLoop(
            repository=repository,
            registry=registry,
            spawner=self.spawner,
            lock=self.lock,
            generation=self.generation.value,
            notifier=self.notifier,
            clock=clock,
        )
        self.monitor = ReconciliationMonitor(
            repository=repository,
            registry=registry,
            dispatch=self.dispatch,
            notifier=self.notifier,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        notifier: Notifier | None = None,
        push_on_stop: bool = True,
    ) -> DispatchService:
        settings.validate()
        repository = DispatchRepository(
            settings.db_path,
            sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        repository.init_schema()
        store = build_session_store(
            backend=settings.sessions.backend,
            registry_dir=settings.sessions.registry_dir,
            redis_url=settings.sessions.redis_url,
            redis_prefix=settings.sessions.redis_prefix,
        )
        return cls(
            settings=settings,
            repository=repository,
            registry=SessionRegistry(store),
            notifier=notifier,
            push_on_stop=push_on_stop,
        )

    def close(self) -> None:
        self.repository.close()

    async def push_tasks(self) -> PushSummary:
        return await self.dispatch.push_tasks()

    async def check_out_of_sync(self) -> ReconcileSummary:
        return await self.monitor.check_out_of_sync()

    async def cleanup_sessions(self) -> CleanupSummary:
        now = self.clock()
        stale = self.registry.purge_stale(self.settings.sessions.stale_after_minutes, now=now)
        completed = self.registry.purge_completed(
            self.settings.sessions.completed_retention_minutes,
            now=now,
        )
        return CleanupSummary(
            stale_purged=[record.session_id for record in stale],
            completed_purged=[record.session_id for record in completed],
        )

    def monitoring_status(self) -> MonitoringStatus:
        sessions = self.registry.list_active()
        claimed = self.repository.list_claimed_tasks()
        return MonitoringStatus(
            active_sessions=len(sessions),
            completed_sessions=len(self.registry.list_completed()),
            active_tasks=sum(
                1 for task in claimed if task.agent_session_status == AgentSessionStatus.ACTIVE
            ),
            pushing_tasks=sum(
                1 for task in claimed if task.agent_session_status == AgentSessionStatus.PUSHING
            ),
            ready_tasks=self.repository.count_ready_tasks(),
            sessions=sessions,
        )

    def build_jobs(self) -> list[PeriodicJob]:
        dispatch_settings = self.settings.dispatch
        generation = self.generation.value
        return [
            PeriodicJob(
                name="dispatch",
                interval_seconds=dispatch_settings.tick_seconds,
                callback=self.push_tasks,
                generation=generation,
                current_generation=self.generation,
            ),
            PeriodicJob(
                name="reconcile",
                interval_seconds=dispatch_settings.reconcile_interval_seconds,
                callback=self.check_out_of_sync,
                generation=generation,
                current_generation=self.generation,
                run_immediately=dispatch_settings.reconcile_on_start,
            ),
            PeriodicJob(
                name="session-cleanup",
                interval_seconds=dispatch_settings.cleanup_interval_seconds,
                callback=self.cleanup_sessions,
                generation=generation,
                current_generation=self.generation,
            ),
        ]

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run all periodic drivers until ``stop_event`` is set."""

        jobs = self.build_jobs()
        logger.info(
            "Dispatch service started (generation %s, jobs: %s)",
            self.generation.value,
            ", ".join(job.name for job in jobs),
        )
        try:
            await asyncio.gather(*(job.run(stop_event) for job in jobs))
        finally:
            if isinstance(self.spawner, CliAgentSpawner):
                await self.spawner.aclose(terminate=False)
            logger.info("Dispatch service stopped")
