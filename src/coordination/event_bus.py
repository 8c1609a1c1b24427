"""Event bus - ordered fan-out of task lifecycle events to observers."""

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, Any, Literal

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BaseEvent(BaseModel):
    """Common event fields."""
    task_id: str
    timestamp: datetime = Field(default_factory=_now)


class TaskQueued(BaseEvent):
    type: Literal["task_queued"] = "task_queued"
    position: int


class TaskStarted(BaseEvent):
    type: Literal["task_started"] = "task_started"
    kind: str


class TaskProgress(BaseEvent):
    type: Literal["task_progress"] = "task_progress"
    progress: int = Field(ge=0, le=100)


class TaskCompleted(BaseEvent):
    type: Literal["task_completed"] = "task_completed"
    result: dict[str, Any]


class TaskFailed(BaseEvent):
    type: Literal["task_failed"] = "task_failed"
    error: dict[str, Any]


class AgentStageCompleted(BaseEvent):
    type: Literal["agent_stage_completed"] = "agent_stage_completed"
    stage: str
    agent: str
    duration_ms: float


class AgentStageFailed(BaseEvent):
    type: Literal["agent_stage_failed"] = "agent_stage_failed"
    stage: str
    agent: str
    error: str


Event = Annotated[
    TaskQueued
    | TaskStarted
    | TaskProgress
    | TaskCompleted
    | TaskFailed
    | AgentStageCompleted
    | AgentStageFailed,
    Field(discriminator="type"),
]

Handler = Callable[[Event], None]


class EventBus:
    """Publish/subscribe channel.

    Handlers run synchronously inside ``publish`` in subscription order, so
    every observer sees events in the order they were generated. Stream
    subscribers receive the same sequence through an unbounded queue.
    """

    def __init__(self) -> None:
        self._handlers: list[Handler] = []
        self._streams: list[asyncio.Queue[Event]] = []

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a function that removes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    @asynccontextmanager
    async def stream(self) -> AsyncIterator[asyncio.Queue[Event]]:
        """Context manager yielding a queue of every event published while open."""
        queue: asyncio.Queue[Event] = asyncio.Queue()
        self._streams.append(queue)
        try:
            yield queue
        finally:
            self._streams.remove(queue)

    def publish(self, event: Event) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed", event_type=event.type, task_id=event.task_id)

        for queue in self._streams:
            queue.put_nowait(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers) + len(self._streams)
