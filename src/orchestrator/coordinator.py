"""Coordinator - task admission, queuing, concurrency limiting and events."""

import asyncio
from collections.abc import Callable, Mapping
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from src.coordination.event_bus import (
    Event,
    EventBus,
    TaskCompleted,
    TaskFailed,
    TaskProgress,
    TaskQueued,
    TaskStarted,
)
from src.coordination.task_queue import QueuePolicy, TaskQueue
from src.coordination.task_store import MemoryTaskStore, TaskStore

from .config import Settings
from .errors import (
    InvalidRequestError,
    OrchestratorError,
    TaskNotFoundError,
    TaskTimeoutError,
)
from .registry import AgentRegistry
from .state_machine import (
    Task,
    TaskError,
    TaskKind,
    TaskRequest,
    TaskStateMachine,
    TaskStatus,
)
from .workflow_engine import WorkflowEngine
from .workflows import get_workflow

logger = structlog.get_logger()


class CoordinatorStatus(BaseModel):
    """Status query payload."""
    initialized: bool
    agents: dict[str, dict[str, Any]]
    running_tasks: int
    queued_tasks: int


class Coordinator:
    """Owns the registry, the task queue and the concurrency limiter.

    All queue and running-set mutations happen in synchronous sections of
    the event loop, so concurrent submissions cannot reorder the queue or
    start a task twice. The coordinator is not thread-safe.

    Timeouts are best-effort: the workflow is cancelled cooperatively and
    its slot released immediately. Its agents stay reserved while the
    workflow unwinds, for at most ``cancel_grace_seconds``. A workflow that
    ignores cancellation past that is abandoned: its result is discarded and
    its reservations no longer block the queue. A task started on an agent
    still held by an abandoned call fails fast with ``AgentBusyError``.
    """

    def __init__(
        self,
        settings: Settings,
        registry: AgentRegistry | None = None,
        *,
        store: TaskStore | None = None,
        bus: EventBus | None = None,
    ):
        self.settings = settings
        self.registry = registry or AgentRegistry()
        self.store = store or MemoryTaskStore()
        self.bus = bus or EventBus()
        self.state_machine = TaskStateMachine()
        self.engine = WorkflowEngine(self.registry, self.state_machine, self.bus.publish)
        self.queue = TaskQueue(QueuePolicy(settings.queue_policy))
        self.max_concurrent = settings.max_concurrent_agents
        self.initialized = False

        self._tasks: dict[str, Task] = {}  # pending and running
        self._running: dict[str, asyncio.Task[None]] = {}  # slot holders
        self._reservations: dict[str, str] = {}  # agent name -> task id
        self._workflows: dict[str, asyncio.Task[Any]] = {}  # live, including abandoned
        self._abandoned: set[str] = set()
        self._done: dict[str, asyncio.Event] = {}
        self._processor: asyncio.Task[None] | None = None

    # === Lifecycle ===

    async def start(self) -> None:
        """Initialize agents and start the background task processor."""
        if self.initialized:
            return

        logger.info("Initializing coordinator", max_concurrent=self.max_concurrent)
        await self.registry.initialize_all()
        self._processor = asyncio.create_task(self._process_loop(), name="task-processor")
        self.initialized = True
        logger.info("Coordinator initialized", agents=self.registry.names())

    async def stop(self) -> None:
        """Stop the processor, fail queued tasks and cancel running ones."""
        logger.info("Shutting down coordinator")

        if self._processor is not None:
            self._processor.cancel()
            try:
                await self._processor
            except asyncio.CancelledError:
                pass
            self._processor = None

        # Shutdown is the only path where a task fails without ever running
        for task in self.queue.drain():
            await self._fail(task, OrchestratorError("Coordinator shut down before the task started"))

        runners = list(self._running.values())
        for runner in runners:
            runner.cancel()
        await asyncio.gather(*runners, return_exceptions=True)

        workflows = list(self._workflows.values())
        for workflow in workflows:
            workflow.cancel()
        if workflows:
            _, pending = await asyncio.wait(workflows, timeout=self.settings.cancel_grace_seconds)
            if pending:
                logger.warning("Workflows still running after shutdown", count=len(pending))

        await self.store.close()
        self.initialized = False

    # === Public API ===

    def submit(self, request: TaskRequest | Mapping[str, Any]) -> str:
        """Validate and admit a task; it starts now if a slot is free.

        Must be called from within the running event loop.
        """
        request = self._validate(request)
        task = self.state_machine.create_task(request)

        self._tasks[task.id] = task
        self._done[task.id] = asyncio.Event()
        position = self.queue.push(task)
        self.bus.publish(TaskQueued(task_id=task.id, position=position))

        self._dispatch()
        return task.id

    async def await_result(self, task_id: str, timeout: float | None = None) -> dict[str, Any]:
        """Wait for a task to finish; raises its stored error if it failed."""
        task = await self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found", task_id=task_id)

        if not task.is_terminal:
            done = self._done[task_id]
            if timeout is None:
                await done.wait()
            else:
                await asyncio.wait_for(done.wait(), timeout)

        if task.status == TaskStatus.FAILED:
            raise OrchestratorError.from_record(task.error)
        return task.result

    async def execute(self, request: TaskRequest | Mapping[str, Any]) -> dict[str, Any]:
        """Submit a task and wait for its result."""
        return await self.await_result(self.submit(request))

    async def get_task(self, task_id: str) -> Task | None:
        """Live task or retained terminal record."""
        task = self._tasks.get(task_id)
        if task is not None:
            return task
        return await self.store.get(task_id)

    def status(self) -> CoordinatorStatus:
        return CoordinatorStatus(
            initialized=self.initialized,
            agents=self.registry.status(),
            running_tasks=len(self._running),
            queued_tasks=len(self.queue),
        )

    def subscribe(self, handler: Callable[[Event], None]) -> Callable[[], None]:
        return self.bus.subscribe(handler)

    # === Admission ===

    def _validate(self, request: TaskRequest | Mapping[str, Any]) -> TaskRequest:
        if not isinstance(request, TaskRequest):
            if not isinstance(request, Mapping):
                raise InvalidRequestError("Task request must be a mapping")
            try:
                request = TaskRequest.model_validate(request)
            except ValidationError as e:
                raise InvalidRequestError(f"Malformed task request: {e.errors()[0]['msg']}") from e

        try:
            kind = TaskKind(request.kind)
        except ValueError:
            raise InvalidRequestError(f"Unsupported task kind: {request.kind!r}") from None

        if not request.description.strip():
            raise InvalidRequestError("Task request missing description")

        missing = [
            name for name in get_workflow(kind).required_fields
            if request.requirements.get(name) is None
        ]
        if missing:
            raise InvalidRequestError(f"Missing requirements for {kind.value}: {', '.join(missing)}")

        return request

    # === Dispatch ===

    def _dispatch(self) -> None:
        """Start queued tasks while slots are free. Never awaits."""
        while len(self._running) < self.max_concurrent:
            task = self.queue.pop_next(self._can_start)
            if task is None:
                return
            self._start(task)

    def _agents_for(self, task: Task) -> frozenset[str]:
        return get_workflow(task.kind).agents_for(task.requirements)

    def _can_start(self, task: Task) -> bool:
        """Every agent the task may use is free or held only by an abandoned call."""
        for agent in self._agents_for(task):
            holder = self._reservations.get(agent)
            if holder is not None and holder not in self._abandoned:
                return False
        return True

    def _start(self, task: Task) -> None:
        self.state_machine.transition(task, TaskStatus.RUNNING)
        for agent in self._agents_for(task):
            self._reservations[agent] = task.id

        self._running[task.id] = asyncio.create_task(self._run(task), name=f"task-{task.id}")
        self.bus.publish(TaskStarted(task_id=task.id, kind=task.kind.value))
        logger.info("Task started", task_id=task.id, kind=task.kind.value, running=len(self._running))

    async def _run(self, task: Task) -> None:
        workflow = asyncio.create_task(self.engine.run(task), name=f"workflow-{task.id}")
        self._workflows[task.id] = workflow
        workflow.add_done_callback(lambda t: self._workflow_finished(task.id, t))
        timed_out = False

        try:
            done, _ = await asyncio.wait({workflow}, timeout=self.settings.task_timeout_seconds)
            if not done:
                timed_out = True
                workflow.cancel()
                raise TaskTimeoutError(
                    f"Task exceeded its timeout of {self.settings.task_timeout_ms} ms",
                    task_id=task.id,
                )
            result = workflow.result()
        except asyncio.CancelledError:
            workflow.cancel()
            await self._fail(task, OrchestratorError("Task cancelled", task_id=task.id))
            raise
        except Exception as e:
            await self._fail(task, e)
        else:
            await self._complete(task, result)
        finally:
            self._running.pop(task.id, None)
            self._dispatch()

        if timed_out and not workflow.done():
            await asyncio.wait({workflow}, timeout=self.settings.cancel_grace_seconds)
            if not workflow.done():
                logger.warning(
                    "Abandoning workflow that ignored cancellation",
                    task_id=task.id,
                    agents=sorted(a for a, holder in self._reservations.items() if holder == task.id),
                )
                self._abandoned.add(task.id)
                self._dispatch()

    def _workflow_finished(self, task_id: str, workflow: asyncio.Task[Any]) -> None:
        """Release agent reservations once the workflow coroutine really ends."""
        if not workflow.cancelled() and workflow.exception() is not None:
            logger.debug("Workflow ended with error", task_id=task_id, error=str(workflow.exception()))

        self._workflows.pop(task_id, None)
        self._abandoned.discard(task_id)
        for agent, holder in list(self._reservations.items()):
            if holder == task_id:
                del self._reservations[agent]
        self._dispatch()

    # === Terminal bookkeeping ===

    async def _complete(self, task: Task, result: dict[str, Any]) -> None:
        self.state_machine.transition(task, TaskStatus.COMPLETED, result=result)
        self.bus.publish(TaskProgress(task_id=task.id, progress=task.progress))
        self.bus.publish(TaskCompleted(task_id=task.id, result=result))
        logger.info("Task completed", task_id=task.id, stages=task.stages_completed)
        await self._retain(task)

    async def _fail(self, task: Task, error: BaseException) -> None:
        if task.is_terminal:
            return

        record = TaskError.from_exception(error, task.id)
        if isinstance(error, OrchestratorError):
            logger.warning("Task failed", task_id=task.id, code=record.code, error=record.message)
        else:
            logger.error("Task failed with unexpected error", task_id=task.id, error=repr(error))

        self.state_machine.transition(task, TaskStatus.FAILED, error=record)
        self.bus.publish(TaskFailed(task_id=task.id, error=record.model_dump()))
        await self._retain(task)

    async def _retain(self, task: Task) -> None:
        """Keep the record for late status queries, then release waiters."""
        try:
            await self.store.save(task, self.settings.task_retention_seconds)
        except Exception:
            logger.exception("Failed to retain task record", task_id=task.id)

        self._tasks.pop(task.id, None)
        done = self._done.pop(task.id, None)
        if done is not None:
            done.set()

    async def _process_loop(self) -> None:
        """Periodic dispatch and lazy eviction of expired task records."""
        while True:
            await asyncio.sleep(self.settings.dispatch_interval_seconds)
            try:
                self._dispatch()
                await self.store.evict_expired()
            except Exception:
                logger.exception("Task processor cycle failed")
