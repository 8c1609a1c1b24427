"""Task state machine - tracks lifecycle of orchestrated tasks."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field

from .errors import InvalidRequestError, InvalidTransitionError, OrchestratorError

logger = structlog.get_logger()


class TaskKind(str, Enum):
    """Closed set of task kinds the orchestrator accepts."""
    CREATE_PROJECT = "create_project"
    DEBUG_CODE = "debug_code"
    REVIEW_CODE = "review_code"
    OPTIMIZE_PERFORMANCE = "optimize_performance"
    DEPLOY_APPLICATION = "deploy_application"


class TaskStatus(str, Enum):
    """Task lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Valid state transitions
TRANSITIONS: dict[TaskStatus, list[TaskStatus]] = {
    TaskStatus.PENDING: [TaskStatus.RUNNING, TaskStatus.FAILED],  # run or fail while queued
    TaskStatus.RUNNING: [TaskStatus.COMPLETED, TaskStatus.FAILED],
    TaskStatus.COMPLETED: [],  # terminal
    TaskStatus.FAILED: [],  # terminal
}

TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


class TaskRequest(BaseModel):
    """Submission payload."""
    kind: str
    description: str = ""
    requirements: dict[str, Any] = {}


class TaskError(BaseModel):
    """Error attached to a failed task."""
    code: str
    message: str
    task_id: str | None = None
    stage: str | None = None
    agent: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException, task_id: str) -> "TaskError":
        if isinstance(exc, OrchestratorError):
            return cls(
                code=exc.code,
                message=exc.message,
                task_id=task_id,
                stage=exc.stage,
                agent=exc.agent,
            )
        return cls(code="internal_error", message=str(exc) or type(exc).__name__, task_id=task_id)


class Task(BaseModel):
    """Orchestrated task - immutable request plus mutable execution record."""
    id: str
    kind: TaskKind
    description: str
    requirements: dict[str, Any] = {}
    status: TaskStatus = TaskStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)

    # Stage outputs keyed by stage name
    context: dict[str, Any] = {}
    stages_completed: list[str] = []
    stages_skipped: list[str] = []

    result: dict[str, Any] | None = None
    error: TaskError | None = None

    # Timeline
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_view(self) -> "TaskView":
        return TaskView(
            task_id=self.id,
            status=self.status,
            progress=self.progress,
            result=self.result,
            error=self.error,
        )


class TaskView(BaseModel):
    """Public result payload for a task."""
    task_id: str
    status: TaskStatus
    progress: int
    result: dict[str, Any] | None = None
    error: TaskError | None = None


class TaskStateMachine:
    """Creates tasks and applies validated transitions to them."""

    def create_task(self, request: TaskRequest) -> Task:
        """Create a new task in PENDING state."""
        try:
            kind = TaskKind(request.kind)
        except ValueError:
            raise InvalidRequestError(f"Unsupported task kind: {request.kind!r}") from None

        now = datetime.now(timezone.utc)
        task = Task(
            id=uuid.uuid4().hex,
            kind=kind,
            description=request.description,
            requirements=dict(request.requirements),
            created_at=now,
            updated_at=now,
        )

        logger.info("Created task", task_id=task.id, kind=kind.value)
        return task

    def transition(
        self,
        task: Task,
        new_status: TaskStatus,
        *,
        result: dict[str, Any] | None = None,
        error: TaskError | None = None,
    ) -> Task:
        """Transition task to new status."""
        valid_next = TRANSITIONS.get(task.status, [])
        if new_status not in valid_next:
            raise InvalidTransitionError(
                f"Invalid transition: {task.status.value} -> {new_status.value}. "
                f"Valid: {[s.value for s in valid_next]}",
                task_id=task.id,
            )

        if new_status == TaskStatus.COMPLETED and result is None:
            raise InvalidTransitionError("Completed task requires a result", task_id=task.id)
        if new_status == TaskStatus.FAILED and error is None:
            raise InvalidTransitionError("Failed task requires an error", task_id=task.id)

        old_status = task.status
        task.status = new_status
        task.updated_at = datetime.now(timezone.utc)

        # Update timeline fields
        if new_status == TaskStatus.RUNNING:
            task.started_at = task.updated_at
        elif new_status == TaskStatus.COMPLETED:
            task.progress = 100
            task.result = result
            task.completed_at = task.updated_at
        elif new_status == TaskStatus.FAILED:
            task.error = error
            task.completed_at = task.updated_at

        logger.info(
            "Task transition",
            task_id=task.id,
            from_status=old_status.value,
            to_status=new_status.value,
        )

        return task

    def set_progress(self, task: Task, progress: int) -> bool:
        """Advance progress; returns False if the value would not increase it."""
        if task.status != TaskStatus.RUNNING:
            raise InvalidTransitionError(
                f"Cannot update progress of {task.status.value} task",
                task_id=task.id,
            )
        if not 0 <= progress <= 100:
            raise ValueError(f"Progress out of range: {progress}")
        if progress < task.progress:
            raise InvalidTransitionError(
                f"Progress cannot decrease: {task.progress} -> {progress}",
                task_id=task.id,
            )
        if progress == task.progress:
            return False

        task.progress = progress
        task.updated_at = datetime.now(timezone.utc)
        return True

    def merge_stage(self, task: Task, key: str, output: dict[str, Any]) -> None:
        """Store a stage's output in the task context."""
        task.context[key] = output
        task.stages_completed.append(key)
        task.updated_at = datetime.now(timezone.utc)

    def skip_stage(self, task: Task, key: str) -> None:
        task.stages_skipped.append(key)
