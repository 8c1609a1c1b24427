"""Default runtime composition - agent roster and task store selection."""

import structlog

from src.agents import (
    ArchitectAgent,
    BackendAgent,
    BaseAgent,
    CompletionFn,
    DatabaseAgent,
    DebuggerAgent,
    DevOpsAgent,
    FrontendAgent,
    ReviewerAgent,
    TesterAgent,
)
from src.coordination.task_store import MemoryTaskStore, RedisTaskStore, TaskStore

from .config import Settings
from .coordinator import Coordinator
from .registry import AgentRegistry

logger = structlog.get_logger()

AGENT_CLASSES: tuple[type[BaseAgent], ...] = (
    ArchitectAgent,
    FrontendAgent,
    BackendAgent,
    DatabaseAgent,
    DevOpsAgent,
    TesterAgent,
    DebuggerAgent,
    ReviewerAgent,
)


def build_registry(settings: Settings, completion: CompletionFn | None = None) -> AgentRegistry:
    """Register one instance of every built-in agent under its type name."""
    registry = AgentRegistry()
    for agent_cls in AGENT_CLASSES:
        agent = agent_cls(settings, completion=completion)
        registry.register(agent.name, agent, agent_cls.description)
    return registry


def build_store(settings: Settings) -> TaskStore:
    if settings.redis_url:
        logger.info("Using Redis task store", redis_url=settings.redis_url)
        return RedisTaskStore(settings.redis_url)
    return MemoryTaskStore()


def build_coordinator(settings: Settings, completion: CompletionFn | None = None) -> Coordinator:
    """Coordinator wired with the default roster; call ``start()`` before use."""
    return Coordinator(
        settings,
        build_registry(settings, completion),
        store=build_store(settings),
    )
