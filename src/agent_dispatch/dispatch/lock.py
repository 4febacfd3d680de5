"""Single-holder push lock with a staleness timeout and generation tag."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from agent_dispatch.storage.common import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LockHolder:
    generation: str
    acquired_at: datetime


class DispatchLock:
    """Collapses overlapping push cycles into no-ops.

    A hold older than ``timeout_seconds`` is stale and may be taken over. A hold
    tagged with a different generation (a replaced process or reloaded module)
    is superseded and may be taken over immediately.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.timeout = timedelta(seconds=timeout_seconds)
        self.clock = clock
        self._holder: LockHolder | None = None

    @property
    def holder(self) -> LockHolder | None:
        return self._holder

    def is_held(self, *, generation: str, now: datetime | None = None) -> bool:
        """True if a fresh hold of the same generation exists."""

        holder = self._holder
        if holder is None:
            return False
        current = now or self.clock()
        return holder.generation == generation and current - holder.acquired_at < self.timeout

    def try_acquire(self, generation: str, *, now: datetime | None = None) -> bool:
        current = now or self.clock()
        holder = self._holder
        if holder is not None:
            if self.is_held(generation=generation, now=current):
                return False
            if holder.generation != generation:
                logger.warning(
                    "Taking over dispatch lock from superseded generation %s",
                    holder.generation,
                )
            else:
                logger.warning(
                    "Taking over stale dispatch lock held since %s",
                    holder.acquired_at.isoformat(),
                )
        self._holder = LockHolder(generation=generation, acquired_at=current)
        return True

    def release(self, generation: str, *, acquired_at: datetime | None = None) -> bool:
        """Release only a hold that the caller still owns."""

        holder = self._holder
        if holder is None or holder.generation != generation:
            return False
        if acquired_at is not None and holder.acquired_at != acquired_at:
            return False
        self._holder = None
        return True
