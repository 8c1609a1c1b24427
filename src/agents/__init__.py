"""Agent implementations."""

from .architect import ArchitectAgent
from .base import (
    AgentErrorEntry,
    AgentResult,
    AgentState,
    AgentTask,
    BaseAgent,
    CompletionFn,
)
from .code_quality import DebuggerAgent, ReviewerAgent
from .developers import (
    BackendAgent,
    DatabaseAgent,
    DevOpsAgent,
    FrontendAgent,
    TesterAgent,
)

__all__ = [
    "AgentErrorEntry",
    "AgentResult",
    "AgentState",
    "AgentTask",
    "ArchitectAgent",
    "BackendAgent",
    "BaseAgent",
    "CompletionFn",
    "DatabaseAgent",
    "DebuggerAgent",
    "DevOpsAgent",
    "FrontendAgent",
    "ReviewerAgent",
    "TesterAgent",
]
