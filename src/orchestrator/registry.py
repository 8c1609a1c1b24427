"""Agent registry - named agents plus their bookkeeping."""

from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from .errors import DuplicateNameError

if TYPE_CHECKING:
    from src.agents.base import BaseAgent

logger = structlog.get_logger()


@dataclass
class AgentEntry:
    """Registered agent."""
    name: str
    agent: "BaseAgent"
    description: str = ""

    @property
    def status(self) -> str:
        return self.agent.state.value


class AgentRegistry:
    """Maps agent names to instances. Registration emits no events."""

    def __init__(self) -> None:
        self._entries: dict[str, AgentEntry] = {}

    def register(self, name: str, agent: "BaseAgent", description: str = "") -> AgentEntry:
        """Register an agent under a unique name."""
        if name in self._entries:
            raise DuplicateNameError(f"Agent '{name}' is already registered", agent=name)

        entry = AgentEntry(name=name, agent=agent, description=description or agent.description)
        self._entries[name] = entry
        logger.debug("Registered agent", agent=name)
        return entry

    async def initialize_all(self) -> dict[str, bool]:
        """Initialize every agent; failures are logged, never fatal."""
        results: dict[str, bool] = {}
        for name, entry in self._entries.items():
            try:
                await entry.agent.initialize()
            except Exception as e:
                logger.warning("Agent unavailable after initialization", agent=name, error=str(e))
                results[name] = False
            else:
                results[name] = True

        logger.info(
            "Agents initialized",
            ready=[n for n, ok in results.items() if ok],
            failed=[n for n, ok in results.items() if not ok],
        )
        return results

    def lookup(self, name: str) -> "BaseAgent | None":
        entry = self._entries.get(name)
        return entry.agent if entry else None

    def is_available(self, name: str) -> bool:
        agent = self.lookup(name)
        return agent is not None and agent.is_ready

    def names(self) -> list[str]:
        return list(self._entries)

    def status(self) -> dict[str, dict[str, Any]]:
        """Per-agent snapshot for status queries."""
        return {
            name: {
                "status": entry.status,
                "description": entry.description,
                "completed_tasks": entry.agent.completed_count,
                "current_task": entry.agent.current_task_id,
                "errors": len(entry.agent.error_log),
                "capabilities": list(entry.agent.capabilities),
            }
            for name, entry in self._entries.items()
        }

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[AgentEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)
