"""Orchestrator - task coordination across specialized agents."""

from .config import AgentSettings, Settings
from .errors import OrchestratorError
from .state_machine import Task, TaskKind, TaskRequest, TaskStateMachine, TaskStatus

__all__ = [
    "AgentSettings",
    "OrchestratorError",
    "Settings",
    "Task",
    "TaskKind",
    "TaskRequest",
    "TaskStateMachine",
    "TaskStatus",
]
