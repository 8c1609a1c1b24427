"""Base agent class - lifecycle and execution contract shared by all agents."""

import json
import re
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any

import anthropic
import structlog

from src.orchestrator.config import AgentSettings, Settings
from src.orchestrator.errors import (
    AgentBusyError,
    AgentNotReadyError,
    InvalidRequestError,
    InvalidTransitionError,
    ProviderError,
)

logger = structlog.get_logger()

# prompt, system prompt -> completion text
CompletionFn = Callable[[str, str | None], Awaitable[str]]


class AgentState(str, Enum):
    """Agent lifecycle states."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    BUSY = "busy"
    FAILED = "failed"


AGENT_TRANSITIONS: dict[AgentState, list[AgentState]] = {
    AgentState.UNINITIALIZED: [AgentState.INITIALIZING],
    AgentState.INITIALIZING: [AgentState.READY, AgentState.FAILED],
    AgentState.READY: [AgentState.BUSY],
    AgentState.BUSY: [AgentState.READY],
    AgentState.FAILED: [],  # terminal, no retry
}


@dataclass(frozen=True)
class AgentTask:
    """Read-only unit of work handed to an agent by the workflow engine."""
    task_id: str
    kind: str
    action: str
    payload: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    context: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    description: str = ""


@dataclass
class AgentResult:
    """Result of agent execution."""
    output: dict[str, Any] = field(default_factory=dict)
    tokens_used: dict[str, int] = field(default_factory=dict)  # model -> tokens
    duration_ms: float = 0.0


@dataclass(frozen=True)
class AgentErrorEntry:
    """One failed execution recorded in an agent's error log."""
    timestamp: datetime
    task_id: str
    message: str


class BaseAgent(ABC):
    """Base class for all agents."""

    description: str = ""

    def __init__(
        self,
        settings: Settings,
        *,
        name: str | None = None,
        completion: CompletionFn | None = None,
    ):
        self.settings = settings
        self.name = name or self.agent_type
        self.config: AgentSettings = settings.agent_settings(self.agent_type)
        self.state = AgentState.UNINITIALIZED
        self.current_task_id: str | None = None
        self.completed_count = 0
        self.error_log: deque[AgentErrorEntry] = deque(maxlen=settings.agent_error_log_size)
        self.tokens_used: dict[str, int] = {}
        self.init_error: str | None = None
        self._completion = completion
        self._client: anthropic.AsyncAnthropic | None = None
        self.log = logger.bind(agent=self.name)

    @property
    @abstractmethod
    def agent_type(self) -> str:
        """Agent type identifier."""
        ...

    @property
    def capabilities(self) -> tuple[str, ...]:
        return tuple(self.config.capabilities)

    @property
    def is_ready(self) -> bool:
        return self.state in (AgentState.READY, AgentState.BUSY)

    def _transition(self, new_state: AgentState) -> None:
        if new_state not in AGENT_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Invalid agent transition: {self.state.value} -> {new_state.value}",
                agent=self.name,
            )
        self.state = new_state

    # === Lifecycle ===

    async def initialize(self) -> None:
        """Run agent setup; failures leave the agent FAILED."""
        if self.state in (AgentState.READY, AgentState.BUSY):
            return

        self._transition(AgentState.INITIALIZING)
        self.log.info("Initializing agent")

        try:
            await self.setup()
        except Exception as e:
            self.init_error = str(e)
            self._transition(AgentState.FAILED)
            self.log.error("Agent initialization failed", error=str(e))
            raise

        self._transition(AgentState.READY)
        self.log.info("Agent initialized")

    async def setup(self) -> None:
        """Agent-specific initialization hook."""
        return None

    # === Execution ===

    async def execute(self, task: AgentTask) -> AgentResult:
        """Run one task; the agent holds at most one task at a time."""
        if self.state == AgentState.BUSY:
            raise AgentBusyError(
                f"{self.name} agent is currently busy with task {self.current_task_id}",
                task_id=getattr(task, "task_id", None),
                agent=self.name,
            )
        if self.state != AgentState.READY:
            raise AgentNotReadyError(
                f"{self.name} agent is not ready (state: {self.state.value})",
                task_id=getattr(task, "task_id", None),
                agent=self.name,
            )

        self.validate_task(task)

        self._transition(AgentState.BUSY)
        self.current_task_id = task.task_id
        self.tokens_used = {}
        started = time.monotonic()

        self.log.info("Agent executing task", task_id=task.task_id, kind=task.kind, action=task.action)

        try:
            output = await self.process_task(task)
        except Exception as e:
            self.error_log.append(
                AgentErrorEntry(
                    timestamp=datetime.now(timezone.utc),
                    task_id=task.task_id,
                    message=str(e) or type(e).__name__,
                )
            )
            self.log.warning("Agent task failed", task_id=task.task_id, error=str(e))
            raise
        finally:
            self.current_task_id = None
            self._transition(AgentState.READY)

        self.completed_count += 1
        duration_ms = (time.monotonic() - started) * 1000

        self.log.info("Agent completed task", task_id=task.task_id, duration_ms=round(duration_ms, 1))

        return AgentResult(
            output=output,
            tokens_used=self.tokens_used.copy(),
            duration_ms=duration_ms,
        )

    @abstractmethod
    async def process_task(self, task: AgentTask) -> dict[str, Any]:
        """Agent-specific work for one task."""
        ...

    def validate_task(self, task: Any) -> None:
        """Generic shape check for incoming tasks."""
        if task is None:
            raise InvalidRequestError("Invalid task object", agent=self.name)
        if not getattr(task, "kind", None):
            raise InvalidRequestError("Task kind is required", agent=self.name)

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "initialized": self.is_ready,
            "busy": self.state == AgentState.BUSY,
            "state": self.state.value,
            "current_task": self.current_task_id,
            "capabilities": list(self.capabilities),
        }

    # === Completion helpers ===

    async def _complete(
        self,
        prompt: str,
        system: str | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Make completion request; any failure surfaces as ProviderError."""
        if self._completion is not None:
            try:
                return await self._completion(prompt, system)
            except ProviderError:
                raise
            except Exception as e:
                raise ProviderError(f"Completion failed: {e}", agent=self.name) from e

        model = self.config.model or self.settings.model_default
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens or self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self._get_client().messages.create(**kwargs)
        except anthropic.AnthropicError as e:
            raise ProviderError(f"AI response generation failed: {e}", agent=self.name) from e

        total = response.usage.input_tokens + response.usage.output_tokens
        self.tokens_used[model] = self.tokens_used.get(model, 0) + total

        self.log.debug(
            "Completion",
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

        # Extract text from response
        text_blocks = [
            block.text for block in response.content
            if hasattr(block, "text")
        ]
        return "\n".join(text_blocks)

    def _get_client(self) -> anthropic.AsyncAnthropic:
        """Lazy Anthropic client."""
        if self._client is None:
            if not self.settings.anthropic_api_key:
                raise ProviderError("No completion provider configured", agent=self.name)
            self._client = anthropic.AsyncAnthropic(api_key=self.settings.anthropic_api_key)
        return self._client

    def _create_prompt(self, instruction: str, context: Mapping[str, Any]) -> str:
        """Structured prompt with JSON-encoded context."""
        return f"""You are a {self.name} agent specialized in {self.config.specialization}.

INSTRUCTION:
{instruction}

CONTEXT:
{json.dumps(dict(context), indent=2, default=str)}

Please provide a detailed and practical response. Format your response as JSON when appropriate for structured data."""

    def _parse_json_response(self, response: str) -> dict[str, Any]:
        """Parse JSON from a completion, falling back to raw content."""
        match = re.search(r"```json\s*\n(.*?)\n\s*```", response, re.DOTALL)
        if match is None:
            match = re.search(r"(\{.*\})", response, re.DOTALL)
        candidate = match.group(1) if match else response

        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            self.log.warning("Failed to parse JSON response, returning raw text")
            return {"content": response}

        if not isinstance(parsed, dict):
            return {"content": parsed}
        return parsed
