"""Task store - retains terminal task records for a bounded grace period."""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import redis.asyncio as redis
import structlog

from src.orchestrator.state_machine import Task

logger = structlog.get_logger()


class TaskStore(ABC):
    """Retention of finished tasks for late status queries. Eviction is lazy."""

    @abstractmethod
    async def save(self, task: Task, ttl_seconds: float) -> None:
        ...

    @abstractmethod
    async def get(self, task_id: str) -> Task | None:
        ...

    @abstractmethod
    async def evict_expired(self) -> int:
        """Drop expired records; returns how many were removed."""
        ...

    async def close(self) -> None:
        return None


class MemoryTaskStore(TaskStore):
    """In-process store with best-effort TTL eviction."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._records: dict[str, tuple[Task, float]] = {}

    async def save(self, task: Task, ttl_seconds: float) -> None:
        self._records[task.id] = (task, self._clock() + ttl_seconds)

    async def get(self, task_id: str) -> Task | None:
        record = self._records.get(task_id)
        if record is None:
            return None
        task, expires_at = record
        if self._clock() >= expires_at:
            del self._records[task_id]
            return None
        return task

    async def evict_expired(self) -> int:
        now = self._clock()
        expired = [task_id for task_id, (_, expires_at) in self._records.items() if now >= expires_at]
        for task_id in expired:
            del self._records[task_id]

        if expired:
            logger.debug("Evicted task records", count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)


class RedisTaskStore(TaskStore):
    """Redis-backed store; expiry is delegated to Redis key TTLs."""

    def __init__(self, redis_url: str, key_prefix: str = "orchestrator"):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.redis: redis.Redis | None = None

    async def _get_redis(self) -> redis.Redis:
        """Lazy Redis connection."""
        if self.redis is None:
            self.redis = redis.from_url(self.redis_url)
        return self.redis

    def _task_key(self, task_id: str) -> str:
        return f"{self.key_prefix}:task:{task_id}"

    async def save(self, task: Task, ttl_seconds: float) -> None:
        r = await self._get_redis()
        # Redis needs a positive expiry in milliseconds
        await r.set(self._task_key(task.id), task.model_dump_json(), px=max(1, int(ttl_seconds * 1000)))

    async def get(self, task_id: str) -> Task | None:
        r = await self._get_redis()
        data = await r.get(self._task_key(task_id))
        if not data:
            return None
        return Task.model_validate_json(data)

    async def evict_expired(self) -> int:
        return 0

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
