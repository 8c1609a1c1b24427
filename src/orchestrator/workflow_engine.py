"""Workflow engine - runs a task's stages against registered agents."""

import asyncio
from collections.abc import Callable
from types import MappingProxyType
from typing import Any

import structlog

from src.agents.base import AgentTask
from src.coordination.event_bus import (
    AgentStageCompleted,
    AgentStageFailed,
    Event,
    TaskProgress,
)

from .errors import AgentBusyError, AgentExecutionError, MissingAgentError
from .registry import AgentRegistry
from .state_machine import Task, TaskStateMachine, TaskStatus
from .workflows import Stage, Workflow, get_workflow

logger = structlog.get_logger()


class WorkflowEngine:
    """Executes the static stage list for a task kind, strictly in order."""

    def __init__(
        self,
        registry: AgentRegistry,
        state_machine: TaskStateMachine,
        publish: Callable[[Event], None],
    ):
        self.registry = registry
        self.state_machine = state_machine
        self.publish = publish

    async def run(self, task: Task) -> dict[str, Any]:
        """Run every stage of the task's workflow and shape the result.

        Mandatory stage failures abort the workflow; already merged context
        is not rolled back. Optional stages are skipped when their agent is
        unavailable or fails.
        """
        workflow = get_workflow(task.kind)
        log = logger.bind(task_id=task.id, kind=task.kind.value)

        for stage in workflow.stages:
            if not stage.guard(task.requirements, MappingProxyType(task.context)):
                self.state_machine.skip_stage(task, stage.key)
                log.debug("Stage guard false, skipping", stage=stage.key)
                continue

            if not self.registry.is_available(stage.agent):
                if stage.mandatory:
                    raise MissingAgentError(
                        f"Agent '{stage.agent}' required by stage '{stage.key}' is not available",
                        task_id=task.id,
                        stage=stage.key,
                        agent=stage.agent,
                    )
                self.state_machine.skip_stage(task, stage.key)
                log.warning("Optional stage skipped, agent unavailable", stage=stage.key, agent=stage.agent)
                continue

            try:
                output = await self._run_stage(task, stage)
            except AgentExecutionError as e:
                if stage.mandatory:
                    raise
                self.state_machine.skip_stage(task, stage.key)
                log.warning("Optional stage failed, continuing", stage=stage.key, error=e.message)
                continue

            self.state_machine.merge_stage(task, stage.key, output)
            if self.state_machine.set_progress(task, stage.checkpoint):
                self.publish(TaskProgress(task_id=task.id, progress=task.progress))

        return self._shape(workflow, task)

    async def _run_stage(self, task: Task, stage: Stage) -> dict[str, Any]:
        agent = self.registry.lookup(stage.agent)
        agent_task = AgentTask(
            task_id=task.id,
            kind=task.kind.value,
            action=stage.action,
            payload=MappingProxyType(stage.extract(task.requirements)),
            context=MappingProxyType(dict(task.context)),
            description=task.description,
        )

        try:
            result = await agent.execute(agent_task)
        except AgentBusyError as e:
            self._stage_failed(task, stage, e)
            raise
        except Exception as e:
            self._stage_failed(task, stage, e)
            raise AgentExecutionError(
                f"Stage '{stage.key}' failed in agent '{stage.agent}': {e}",
                task_id=task.id,
                stage=stage.key,
                agent=stage.agent,
            ) from e

        if task.status != TaskStatus.RUNNING:
            # Task was failed (timeout) while the agent was still working
            logger.info("Discarding late stage result", task_id=task.id, stage=stage.key)
            raise asyncio.CancelledError()

        self.publish(
            AgentStageCompleted(
                task_id=task.id,
                stage=stage.key,
                agent=stage.agent,
                duration_ms=result.duration_ms,
            )
        )
        return result.output

    def _stage_failed(self, task: Task, stage: Stage, error: Exception) -> None:
        self.publish(
            AgentStageFailed(
                task_id=task.id,
                stage=stage.key,
                agent=stage.agent,
                error=str(error) or type(error).__name__,
            )
        )

    def _shape(self, workflow: Workflow, task: Task) -> dict[str, Any]:
        try:
            return workflow.shape_result(task)
        except (KeyError, TypeError, AttributeError) as e:
            raise AgentExecutionError(
                f"Could not assemble {task.kind.value} result: {e}",
                task_id=task.id,
            ) from e
