"""Shared fixtures."""

import asyncio
import json
from typing import Any

import pytest

from src.agents.base import AgentTask, BaseAgent
from src.orchestrator.config import Settings
from src.orchestrator.coordinator import Coordinator
from src.orchestrator.registry import AgentRegistry


class StubAgent(BaseAgent):
    """Agent with scripted behavior, registered under any agent type."""

    def __init__(
        self,
        settings: Settings,
        agent_type: str,
        *,
        delay: float = 0.0,
        fail: Exception | None = None,
        output: dict[str, Any] | None = None,
        ignore_cancel: bool = False,
        stalls: int | None = None,
    ):
        self._agent_type = agent_type
        super().__init__(settings)
        self.delay = delay
        self.fail = fail
        self.output = output
        self.ignore_cancel = ignore_cancel
        self.stalls = stalls  # how many calls wait out the delay; None means all
        self.calls: list[AgentTask] = []

    @property
    def agent_type(self) -> str:
        return self._agent_type

    async def process_task(self, task: AgentTask) -> dict[str, Any]:
        self.calls.append(task)
        stall = self.stalls is None or len(self.calls) <= self.stalls
        if self.delay and stall:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                if not self.ignore_cancel:
                    raise
                await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail
        if self.output is not None:
            return dict(self.output)
        return {"agent": self.name, "action": task.action, "suggestions": []}


@pytest.fixture
def settings():
    """Fast settings for tests; ignores any local .env file."""
    return Settings(
        _env_file=None,
        max_concurrent_agents=5,
        task_timeout_ms=2000,
        cancel_grace_seconds=0.05,
        dispatch_interval_seconds=0.05,
        task_retention_seconds=60,
        anthropic_api_key=None,
    )


@pytest.fixture
def completion():
    """Completion function returning a fixed architecture document."""
    async def complete(prompt: str, system: str | None = None) -> str:
        return "```json\n" + json.dumps({
            "architecture_type": "monolith",
            "frontend": "react",
            "backend": "express",
            "database": "postgresql",
        }) + "\n```"

    return complete


@pytest.fixture
def make_agent(settings):
    """Factory for stub agents bound to the test settings."""
    def factory(agent_type: str, **kwargs: Any) -> StubAgent:
        return StubAgent(settings, agent_type, **kwargs)

    return factory


@pytest.fixture
async def make_coordinator(settings):
    """Factory for started coordinators; all are stopped after the test."""
    created: list[Coordinator] = []

    async def factory(*agents: BaseAgent, **overrides: Any) -> Coordinator:
        registry = AgentRegistry()
        for agent in agents:
            registry.register(agent.name, agent)

        coordinator = Coordinator(settings.model_copy(update=overrides), registry)
        await coordinator.start()
        created.append(coordinator)
        return coordinator

    yield factory

    for coordinator in created:
        await coordinator.stop()
