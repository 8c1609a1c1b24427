"""Task queue - admitted tasks waiting for a concurrency slot."""

from collections import deque
from collections.abc import Callable, Iterator
from enum import Enum

from src.orchestrator.state_machine import Task


class QueuePolicy(str, Enum):
    """How the next task is chosen when the head of the queue cannot start."""
    FIFO = "fifo"  # head-of-line blocks everything behind it
    SKIP_BLOCKED = "skip_blocked"  # oldest task that can start wins


class TaskQueue:
    """Ordered sequence of pending tasks; not a priority structure."""

    def __init__(self, policy: QueuePolicy = QueuePolicy.FIFO):
        self.policy = policy
        self._tasks: deque[Task] = deque()

    def push(self, task: Task) -> int:
        """Append a task; returns its 1-based position."""
        self._tasks.append(task)
        return len(self._tasks)

    def pop_next(self, can_start: Callable[[Task], bool]) -> Task | None:
        """Remove and return the next startable task, or None."""
        if not self._tasks:
            return None

        if self.policy == QueuePolicy.FIFO:
            if can_start(self._tasks[0]):
                return self._tasks.popleft()
            return None

        for task in self._tasks:
            if can_start(task):
                self._tasks.remove(task)
                return task
        return None

    def drain(self) -> list[Task]:
        """Remove and return every queued task in order."""
        tasks = list(self._tasks)
        self._tasks.clear()
        return tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(list(self._tasks))
