"""Orchestrator error taxonomy."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .state_machine import TaskError


class OrchestratorError(Exception):
    """Base class for all orchestration errors."""

    code = "orchestrator_error"

    def __init__(
        self,
        message: str,
        *,
        task_id: str | None = None,
        stage: str | None = None,
        agent: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.task_id = task_id
        self.stage = stage
        self.agent = agent

    @classmethod
    def from_record(cls, record: "TaskError") -> "OrchestratorError":
        """Rebuild the error stored on a failed task."""
        error_cls = ERROR_TYPES.get(record.code, OrchestratorError)
        return error_cls(
            record.message,
            task_id=record.task_id,
            stage=record.stage,
            agent=record.agent,
        )


class InvalidRequestError(OrchestratorError):
    """Malformed submission, rejected before a task exists."""

    code = "invalid_request"


class DuplicateNameError(OrchestratorError):
    """An agent with the same name is already registered."""

    code = "duplicate_name"


class MissingAgentError(OrchestratorError):
    """A mandatory workflow stage has no usable agent."""

    code = "missing_agent"


class AgentBusyError(OrchestratorError):
    """Agent received a task while already processing one."""

    code = "agent_busy"


class AgentNotReadyError(OrchestratorError):
    """Agent is not initialized or failed to initialize."""

    code = "agent_not_ready"


class TaskTimeoutError(OrchestratorError):
    """Workflow exceeded its time budget."""

    code = "timeout"


class AgentExecutionError(OrchestratorError):
    """Wraps any failure raised by a stage's agent."""

    code = "agent_execution"


class ProviderError(OrchestratorError):
    """The AI completion provider failed."""

    code = "provider_error"


class TaskNotFoundError(OrchestratorError):
    """Unknown or already evicted task id."""

    code = "task_not_found"


class InvalidTransitionError(OrchestratorError, ValueError):
    """Rejected state machine transition."""

    code = "invalid_transition"


ERROR_TYPES: dict[str, type[OrchestratorError]] = {
    cls.code: cls
    for cls in (
        OrchestratorError,
        InvalidRequestError,
        DuplicateNameError,
        MissingAgentError,
        AgentBusyError,
        AgentNotReadyError,
        TaskTimeoutError,
        AgentExecutionError,
        ProviderError,
        TaskNotFoundError,
        InvalidTransitionError,
    )
}
