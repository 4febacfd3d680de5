"""Interval drivers for dispatch, reconciliation and registry cleanup."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class GenerationToken:
    """Current process generation; jobs from older generations stop themselves."""

    def __init__(self, value: str) -> None:
        self.value = value

    def advance(self, value: str) -> None:
        self.value = value


class PeriodicJob:
    """Run a coroutine every ``interval_seconds``.

    A tick that arrives while the previous run is still in flight is skipped.
    Failures are logged and never stop the job.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Awaitable[object]],
        generation: str,
        current_generation: GenerationToken,
        run_immediately: bool = False,
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self.callback = callback
        self.generation = generation
        self.current_generation = current_generation
        self.run_immediately = run_immediately
        self.runs = 0
        self.skipped = 0
        self.failures = 0
        self._running = False

    @property
    def superseded(self) -> bool:
        return self.current_generation.value != self.generation

    async def tick(self) -> bool:
        """Run once unless already running; return True if the callback ran."""

        if self._running:
            self.skipped += 1
            logger.debug("Job %s still running; tick skipped", self.name)
            return False
        self._running = True
        try:
            await self.callback()
            self.runs += 1
        except Exception:
            self.failures += 1
            logger.exception("Job %s failed", self.name)
        finally:
            self._running = False
        return True

    async def run(self, stop_event: asyncio.Event) -> None:
        """Fire ticks on the interval until stopped or superseded.

        Ticks are started as tasks rather than awaited so a slow run makes the
        following ticks skip instead of queueing up behind it.
        """

        in_flight: set[asyncio.Task[bool]] = set()
        if self.run_immediately and not stop_event.is_set():
            self._start_tick(in_flight)
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                pass
            if stop_event.is_set():
                break
            if self.superseded:
                logger.info(
                    "Job %s superseded by generation %s",
                    self.name,
                    self.current_generation.value,
                )
                break
            self._start_tick(in_flight)
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)

    def _start_tick(self, in_flight: set[asyncio.Task[bool]]) -> None:
        task = asyncio.create_task(self.tick(), name=f"job-{self.name}")
        in_flight.add(task)
        task.add_done_callback(in_flight.discard)
