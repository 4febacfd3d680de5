"""Agent process launchers."""

from agent_dispatch.dispatch.spawner.base import (
    AgentSpawner,
    SessionEvents,
    SpawnRequest,
    SpawnResult,
)
from agent_dispatch.dispatch.spawner.cli_spawner import CliAgentSpawner, SpawnError

__all__ = [
    "AgentSpawner",
    "CliAgentSpawner",
    "SessionEvents",
    "SpawnError",
    "SpawnRequest",
    "SpawnResult",
]
