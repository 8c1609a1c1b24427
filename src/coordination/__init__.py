"""Coordination - event fan-out, task queue and task retention."""

from .event_bus import Event, EventBus
from .task_queue import QueuePolicy, TaskQueue
from .task_store import MemoryTaskStore, RedisTaskStore, TaskStore

__all__ = [
    "Event",
    "EventBus",
    "MemoryTaskStore",
    "QueuePolicy",
    "RedisTaskStore",
    "TaskQueue",
    "TaskStore",
]
