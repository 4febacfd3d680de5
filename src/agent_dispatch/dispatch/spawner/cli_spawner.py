"""Subprocess-based spawner for CLI coding agents."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from collections import deque
from collections.abc import AsyncIterator, Callable
from datetime import datetime
from pathlib import Path

from agent_dispatch.dispatch.rate_limit import detect_rate_limit
from agent_dispatch.dispatch.spawner.base import SessionEvents, SpawnRequest, SpawnResult
from agent_dispatch.storage.common import utc_now

logger = logging.getLogger(__name__)

_ERROR_TAIL_LINES = 20
DEFAULT_HEARTBEAT_SECONDS = 30.0


class SpawnError(RuntimeError):
    """Spawn configuration error that retrying will not fix."""


class CliAgentSpawner:
    """Launch one CLI process per session and report its lifecycle.

    ``spawn`` returns as soon as the process has started. A background watcher
    reports session start, scans every output line for rate-limit messages,
    reports a non-zero exit as an error and finally reports session stop.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        command_template: str,
        events: SessionEvents,
        prompt_dir: Path,
        heartbeat: Callable[[str], object] | None = None,
        heartbeat_interval_seconds: float = DEFAULT_HEARTBEAT_SECONDS,
        extra_env: dict[str, str] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.command_template = command_template
        self.events = events
        self.prompt_dir = prompt_dir
        self.heartbeat = heartbeat
        self.heartbeat_interval_seconds = heartbeat_interval_seconds
        self.extra_env = dict(extra_env or {})
        self.clock = clock
        self._watchers: dict[str, asyncio.Task[None]] = {}
        self._processes: dict[str, asyncio.subprocess.Process] = {}

    @property
    def running_sessions(self) -> list[str]:
        return sorted(self._processes)

    async def spawn(self, request: SpawnRequest) -> SpawnResult:
        prompt_file = self.prompt_dir / f"{request.session_id}.txt"
        try:
            prompt_file.parent.mkdir(parents=True, exist_ok=True)
            prompt_file.write_text(request.prompt, "utf-8")
            argv = build_run_args(
                command_template=self.command_template,
                request=request,
                prompt_file=prompt_file,
            )
        except (OSError, SpawnError) as error:
            return SpawnResult(success=False, error=str(error))

        cwd = request.repository_path if Path(request.repository_path).is_dir() else None
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=self._build_env(request),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError:
            return SpawnResult(success=False, error=f"Agent command not found: {argv[0]}")
        except OSError as error:
            return SpawnResult(success=False, error=f"Agent failed to start: {error}")

        self._processes[request.session_id] = process
        self._watchers[request.session_id] = asyncio.create_task(
            self._watch(request, process),
            name=f"agent-session-{request.session_id}",
        )
        logger.info(
            "Spawned agent %s for task %s (session %s, pid %s)",
            request.agent_id,
            request.task_id,
            request.session_id,
            process.pid,
        )
        return SpawnResult(success=True, pid=process.pid)

    async def wait_closed(self) -> None:
        """Wait until every watched session has finished reporting."""

        watchers = list(self._watchers.values())
        if watchers:
            await asyncio.gather(*watchers, return_exceptions=True)

    async def aclose(self, *, terminate: bool = True) -> None:
        if terminate:
            for process in list(self._processes.values()):
                if process.returncode is None:
                    process.terminate()
        await self.wait_closed()

    async def _watch(self, request: SpawnRequest, process: asyncio.subprocess.Process) -> None:
        tail: deque[str] = deque(maxlen=_ERROR_TAIL_LINES)
        heartbeat_task: asyncio.Task[None] | None = None
        try:
            await self.events.on_session_start(
                request.session_id,
                request.task_id,
                request.agent_id,
                request.project_id,
            )
            if self.heartbeat is not None:
                heartbeat_task = asyncio.create_task(
                    self._beat(request.session_id, process, self.heartbeat),
                    name=f"agent-heartbeat-{request.session_id}",
                )
            reset_reported = False
            reported_causes: set[str] = set()
            async for raw_line in _lines(process):
                line = raw_line.decode("utf-8", errors="replace").rstrip()
                if not line:
                    continue
                tail.append(line)
                if reset_reported:
                    continue
                signal = detect_rate_limit(line, now=self.clock())
                if signal is None:
                    continue
                # Keep scanning until a line carries a reset time.
                if signal.reset_at is None:
                    cause = signal.cause or line
                    if cause in reported_causes:
                        continue
                    reported_causes.add(cause)
                else:
                    reset_reported = True
                await self.events.on_rate_limit(line, request.agent_id, request.task_id)
            return_code = await process.wait()
            if return_code != 0:
                summary = " | ".join(list(tail)[-3:]) or "no output"
                await self.events.on_error(
                    f"Agent exited with code {return_code}: {summary}",
                    request.task_id,
                )
        except Exception:
            logger.exception("Watcher for session %s failed", request.session_id)
        finally:
            if heartbeat_task is not None:
                heartbeat_task.cancel()
            self._processes.pop(request.session_id, None)
            self._watchers.pop(request.session_id, None)
            try:
                await self.events.on_session_stop(
                    request.session_id,
                    request.task_id,
                    request.agent_id,
                    request.project_id,
                )
            except Exception:
                logger.exception("Session stop handling failed for %s", request.session_id)

    async def _beat(
        self,
        session_id: str,
        process: asyncio.subprocess.Process,
        heartbeat: Callable[[str], object],
    ) -> None:
        """Ping the registry while the process runs, whether or not it prints."""

        while process.returncode is None:
            await asyncio.sleep(self.heartbeat_interval_seconds)
            if process.returncode is not None:
                return
            try:
                heartbeat(session_id)
            except Exception:
                logger.exception("Heartbeat failed for session %s", session_id)

    def _build_env(self, request: SpawnRequest) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self.extra_env)
        env["AGENT_DISPATCH_SESSION_ID"] = request.session_id
        env["AGENT_DISPATCH_TASK_ID"] = request.task_id
        env["AGENT_DISPATCH_AGENT_ID"] = request.agent_id
        env["AGENT_DISPATCH_PROJECT_ID"] = request.project_id
        env["AGENT_DISPATCH_REPOSITORY_PATH"] = request.repository_path
        env["AGENT_DISPATCH_RESUME_SESSION_ID"] = request.resume_session_id or ""
        if request.config_dir:
            env["CLAUDE_CONFIG_DIR"] = request.config_dir
        return env


def build_run_args(
    *,
    command_template: str,
    request: SpawnRequest,
    prompt_file: Path,
) -> list[str]:
    """Render the command template into argv with POSIX quoting."""

    stripped = command_template.strip()
    if not stripped:
        raise SpawnError("Agent command template is empty.")
    if "{prompt}" not in stripped:
        raise SpawnError("Agent command template must include {prompt}.")
    try:
        rendered = stripped.format(
            prompt=shlex.quote(request.prompt),
            prompt_file=shlex.quote(str(prompt_file)),
            session_id=shlex.quote(request.session_id),
            repository_path=shlex.quote(request.repository_path),
            resume_session_id=shlex.quote(request.resume_session_id or ""),
        )
    except (KeyError, IndexError) as error:
        raise SpawnError(f"Unsupported command template placeholder: {error}") from error

    argv = shlex.split(rendered)
    if not argv:
        raise SpawnError("Agent command template rendered empty command.")
    return argv


async def _lines(process: asyncio.subprocess.Process) -> AsyncIterator[bytes]:
    if process.stdout is None:
        return
    async for raw_line in process.stdout:
        yield raw_line
