"""Tests for the coordinator."""

import asyncio

import pytest

from src.agents import ArchitectAgent, DebuggerAgent, ReviewerAgent
from src.agents.base import AgentState
from src.orchestrator.errors import (
    AgentBusyError,
    AgentExecutionError,
    InvalidRequestError,
    MissingAgentError,
    OrchestratorError,
    TaskNotFoundError,
    TaskTimeoutError,
)
from src.orchestrator.state_machine import TaskRequest, TaskStatus

FILES = [{"path": "app.py", "content": "print('hi')\n"}]


def review(description="Review it"):
    return {"kind": "review_code", "description": description, "requirements": {"files": FILES}}


def deploy(description="Ship it"):
    return {"kind": "deploy_application", "description": description, "requirements": {}}


def collect(coordinator):
    events = []
    coordinator.subscribe(events.append)
    return events


class TestSubmission:
    """Test request validation and admission."""

    @pytest.mark.parametrize(
        "request_",
        [
            {"kind": "make_coffee", "description": "x"},
            {"kind": "review_code", "description": "   ", "requirements": {"files": []}},
            {"kind": "review_code", "description": "no files"},
            {"kind": "review_code", "description": "x", "requirements": ["files"]},
            {"description": "no kind"},
            "review_code",
        ],
    )
    async def test_invalid_requests_create_no_task(self, make_coordinator, make_agent, request_):
        coordinator = await make_coordinator(make_agent("reviewer"))
        events = collect(coordinator)

        with pytest.raises(InvalidRequestError):
            coordinator.submit(request_)

        assert events == []
        assert coordinator.status().queued_tasks == 0
        assert coordinator.status().running_tasks == 0

    async def test_accepts_task_request_model(self, make_coordinator, make_agent):
        coordinator = await make_coordinator(make_agent("reviewer"))

        task_id = coordinator.submit(TaskRequest(**review()))

        assert (await coordinator.await_result(task_id))["review"]["agent"] == "reviewer"

    async def test_execute(self, make_coordinator, settings):
        """Submit and wait in one call, with a real reviewer."""
        coordinator = await make_coordinator(ReviewerAgent(settings))

        result = await coordinator.execute(review())

        assert result["review"]["review"] == "completed"
        assert result["review"]["files_reviewed"] == 1

    async def test_unknown_task(self, make_coordinator):
        coordinator = await make_coordinator()
        with pytest.raises(TaskNotFoundError):
            await coordinator.await_result("nope")
        assert await coordinator.get_task("nope") is None


class TestLifecycleEvents:
    """Test the event stream of a single task."""

    async def test_architecture_only_project(self, make_coordinator, settings, completion):
        """Only the architect is registered: task completes with one stage."""
        coordinator = await make_coordinator(ArchitectAgent(settings, completion=completion))
        events = collect(coordinator)

        task_id = coordinator.submit({"kind": "create_project", "description": "Shop", "requirements": {}})
        result = await coordinator.await_result(task_id)

        assert result["project_id"] == task_id
        assert list(result["stages"]) == ["architecture"]
        assert [e.progress for e in events if e.type == "task_progress"] == [20, 100]
        types = [e.type for e in events]
        assert types[:2] == ["task_queued", "task_started"]
        assert types[-1] == "task_completed"

        task = await coordinator.get_task(task_id)
        assert task.status == TaskStatus.COMPLETED
        assert set(task.context) == {"architecture"}
        assert task.error is None

    async def test_missing_mandatory_agent(self, make_coordinator, make_agent):
        """A kind whose mandatory agent is not registered fails with MissingAgentError."""
        coordinator = await make_coordinator(make_agent("tester"))
        events = collect(coordinator)

        task_id = coordinator.submit({"kind": "create_project", "description": "Shop"})

        with pytest.raises(MissingAgentError):
            await coordinator.await_result(task_id)

        task = await coordinator.get_task(task_id)
        assert task.status == TaskStatus.FAILED
        assert task.result is None
        failed = [e for e in events if e.type == "task_failed"]
        assert len(failed) == 1
        assert failed[0].error["code"] == "missing_agent"

    async def test_mandatory_agent_failure(self, make_coordinator, make_agent):
        coordinator = await make_coordinator(make_agent("reviewer", fail=RuntimeError("parse error")))

        with pytest.raises(AgentExecutionError) as exc_info:
            await coordinator.execute(review())

        assert exc_info.value.stage == "review"
        assert "parse error" in exc_info.value.message

    async def test_optional_failure_still_completes(self, make_coordinator, make_agent, settings):
        coordinator = await make_coordinator(
            DebuggerAgent(settings),
            make_agent("reviewer", fail=RuntimeError("down")),
        )

        task_id = coordinator.submit({"kind": "debug_code", "description": "Fix", "requirements": {"files": FILES}})
        result = await coordinator.await_result(task_id)

        assert "review" not in result
        task = await coordinator.get_task(task_id)
        assert list(task.context) == ["analysis", "fixes"]

    async def test_progress_is_monotonic(self, make_coordinator, make_agent, settings, completion):
        coordinator = await make_coordinator(
            ArchitectAgent(settings, completion=completion),
            make_agent("database"),
            make_agent("backend"),
            make_agent("frontend"),
            make_agent("tester"),
        )
        events = collect(coordinator)

        await coordinator.execute({
            "kind": "create_project",
            "description": "Full stack",
            "requirements": {"database": "postgresql", "backend": "fastapi", "frontend": "react"},
        })

        progress = [e.progress for e in events if e.type == "task_progress"]
        assert progress == [20, 35, 60, 85, 95, 100]


class TestConcurrency:
    """Test the concurrency limit and queue ordering."""

    async def test_fifo_with_single_slot(self, make_coordinator, make_agent):
        """With one slot, B starts only after A reaches a terminal status."""
        coordinator = await make_coordinator(make_agent("reviewer", delay=0.05), max_concurrent_agents=1)
        events = collect(coordinator)

        a = coordinator.submit(review("A"))
        b = coordinator.submit(review("B"))

        assert (await coordinator.get_task(a)).status == TaskStatus.RUNNING
        assert (await coordinator.get_task(b)).status == TaskStatus.PENDING

        await coordinator.await_result(b)

        order = [(e.type, e.task_id) for e in events if e.type in ("task_started", "task_completed")]
        assert order == [
            ("task_started", a),
            ("task_completed", a),
            ("task_started", b),
            ("task_completed", b),
        ]

    async def test_running_never_exceeds_limit(self, make_coordinator, make_agent, settings, completion):
        """Disjoint workflows run concurrently up to the limit; the queue drains."""
        coordinator = await make_coordinator(
            make_agent("reviewer", delay=0.05),
            make_agent("devops", delay=0.05),
            make_agent("architect", delay=0.05, output={"project_structure": {}}),
            max_concurrent_agents=2,
        )
        observed = []
        coordinator.subscribe(lambda e: observed.append(coordinator.status().running_tasks))

        ids = [
            coordinator.submit(review()),
            coordinator.submit(deploy()),
            coordinator.submit({"kind": "create_project", "description": "Shop"}),
        ]
        assert coordinator.status().running_tasks == 2
        assert coordinator.status().queued_tasks == 1

        for task_id in ids:
            await coordinator.await_result(task_id)

        assert max(observed) <= 2
        assert coordinator.status().queued_tasks == 0

    async def test_shared_agent_serializes_tasks(self, make_coordinator, make_agent):
        """Tasks needing a busy agent wait in the queue instead of failing."""
        coordinator = await make_coordinator(make_agent("reviewer", delay=0.05))

        a = coordinator.submit(review("A"))
        b = coordinator.submit(review("B"))

        assert coordinator.status().running_tasks == 1
        await coordinator.await_result(a)
        await coordinator.await_result(b)

    async def test_unused_stage_agents_stay_free(self, make_coordinator, make_agent):
        """A project without a backend leaves the backend agent free for other tasks."""
        coordinator = await make_coordinator(
            make_agent("architect", delay=0.05, output={"project_structure": {}}),
            make_agent("reviewer", delay=0.05),
            make_agent("backend"),
        )

        project = coordinator.submit({"kind": "create_project", "description": "Shop", "requirements": {}})
        optimize = coordinator.submit({
            "kind": "optimize_performance",
            "description": "Speed up",
            "requirements": {"files": FILES},
        })

        assert coordinator.status().running_tasks == 2
        await coordinator.await_result(project)
        result = await coordinator.await_result(optimize)
        assert list(result["stages"]) == ["review", "backend"]

    async def test_fifo_head_of_line_blocks(self, make_coordinator, make_agent):
        """Under FIFO a blocked head task holds back tasks behind it."""
        coordinator = await make_coordinator(
            make_agent("reviewer", delay=0.05),
            make_agent("devops"),
            max_concurrent_agents=2,
        )

        coordinator.submit(review("A"))
        coordinator.submit(review("B"))  # needs the reviewer held by A
        c = coordinator.submit(deploy("C"))

        assert (await coordinator.get_task(c)).status == TaskStatus.PENDING
        await coordinator.await_result(c)

    async def test_skip_blocked_policy(self, make_coordinator, make_agent):
        """skip_blocked starts the oldest task whose agents are free."""
        coordinator = await make_coordinator(
            make_agent("reviewer", delay=0.05),
            make_agent("devops", delay=0.05),
            max_concurrent_agents=2,
            queue_policy="skip_blocked",
        )

        coordinator.submit(review("A"))
        b = coordinator.submit(review("B"))
        c = coordinator.submit(deploy("C"))

        assert (await coordinator.get_task(b)).status == TaskStatus.PENDING
        assert (await coordinator.get_task(c)).status == TaskStatus.RUNNING
        await coordinator.await_result(b)


class TestTimeouts:
    """Test the per-task time budget."""

    async def test_timeout_releases_slot(self, make_coordinator, make_agent):
        """A stalled task fails with a timeout and the queued task proceeds."""
        coordinator = await make_coordinator(
            make_agent("devops", delay=10),
            make_agent("reviewer"),
            max_concurrent_agents=1,
            task_timeout_ms=100,
        )
        events = collect(coordinator)

        stalled = coordinator.submit(deploy())
        waiting = coordinator.submit(review())

        with pytest.raises(TaskTimeoutError):
            await coordinator.await_result(stalled)

        result = await coordinator.await_result(waiting, timeout=2)
        assert result["review"]["agent"] == "reviewer"

        failed = [e for e in events if e.type == "task_failed"]
        assert [e.error["code"] for e in failed] == ["timeout"]

    async def test_stuck_agent_does_not_block_queue(self, make_coordinator, make_agent):
        """Every queued task finishes even if a timed-out agent never returns."""
        coordinator = await make_coordinator(
            make_agent("devops", delay=3600, ignore_cancel=True),
            make_agent("reviewer"),
            max_concurrent_agents=2,
            task_timeout_ms=100,
        )

        first = coordinator.submit(deploy("first"))
        second = coordinator.submit(deploy("second"))
        unrelated = coordinator.submit(review())

        with pytest.raises(TaskTimeoutError):
            await coordinator.await_result(first, timeout=2)
        # The agent is still held by the abandoned call, so the next deploy fails fast
        with pytest.raises(AgentBusyError):
            await coordinator.await_result(second, timeout=2)
        result = await coordinator.await_result(unrelated, timeout=2)

        assert result["review"]["agent"] == "reviewer"
        for task_id in (first, second, unrelated):
            assert (await coordinator.get_task(task_id)).is_terminal
        assert coordinator.status().queued_tasks == 0
        assert coordinator.status().running_tasks == 0

    async def test_cancelled_agent_is_reused(self, make_coordinator, make_agent):
        """An agent that honors cancellation serves the next queued task normally."""
        devops = make_agent("devops", delay=10, stalls=1)
        coordinator = await make_coordinator(devops, max_concurrent_agents=2, task_timeout_ms=100)

        first = coordinator.submit(deploy("first"))
        second = coordinator.submit(deploy("second"))

        with pytest.raises(TaskTimeoutError):
            await coordinator.await_result(first, timeout=2)
        result = await coordinator.await_result(second, timeout=2)

        assert result["deployment"]["agent"] == "devops"
        assert len(devops.calls) == 2

    async def test_late_result_is_discarded(self, make_coordinator, make_agent):
        devops = make_agent("devops", delay=0.2, ignore_cancel=True, stalls=1)
        coordinator = await make_coordinator(devops, task_timeout_ms=100)

        first = coordinator.submit(deploy("first"))
        with pytest.raises(TaskTimeoutError):
            await coordinator.await_result(first, timeout=2)

        await asyncio.sleep(0.5)  # the abandoned call returns meanwhile

        task = await coordinator.get_task(first)
        assert task.status == TaskStatus.FAILED
        assert task.result is None
        assert task.error.code == "timeout"
        assert (await coordinator.execute(deploy("again")))["deployment"]["agent"] == "devops"

    async def test_stop_cancels_abandoned_workflows(self, make_coordinator, make_agent):
        """Shutdown does not leave abandoned agent calls running."""
        devops = make_agent("devops", delay=3600, ignore_cancel=True)
        coordinator = await make_coordinator(devops, task_timeout_ms=100)

        task_id = coordinator.submit(deploy())
        with pytest.raises(TaskTimeoutError):
            await coordinator.await_result(task_id, timeout=2)
        await asyncio.sleep(0.1)

        await coordinator.stop()

        assert devops.state == AgentState.READY
        assert devops.current_task_id is None

    async def test_await_result_timeout(self, make_coordinator, make_agent):
        coordinator = await make_coordinator(make_agent("devops", delay=0.5))
        task_id = coordinator.submit(deploy())

        with pytest.raises(asyncio.TimeoutError):
            await coordinator.await_result(task_id, timeout=0.01)


class TestRetentionAndStatus:
    """Test terminal record retention and status queries."""

    async def test_terminal_record_is_evicted(self, make_coordinator, make_agent):
        coordinator = await make_coordinator(make_agent("devops"), task_retention_seconds=0.1)

        task_id = coordinator.submit(deploy())
        await coordinator.await_result(task_id)
        assert (await coordinator.get_task(task_id)).status == TaskStatus.COMPLETED

        await asyncio.sleep(0.25)

        assert await coordinator.get_task(task_id) is None
        with pytest.raises(TaskNotFoundError):
            await coordinator.await_result(task_id)

    async def test_status(self, make_coordinator, make_agent):
        coordinator = await make_coordinator(make_agent("devops"), make_agent("reviewer"))

        status = coordinator.status()

        assert status.initialized is True
        assert set(status.agents) == {"devops", "reviewer"}
        assert status.agents["devops"]["status"] == "ready"
        assert status.running_tasks == 0
        assert status.queued_tasks == 0

    async def test_agent_bookkeeping(self, make_coordinator, make_agent):
        coordinator = await make_coordinator(make_agent("devops"))

        await coordinator.execute(deploy())

        assert coordinator.status().agents["devops"]["completed_tasks"] == 1

    async def test_stop_fails_queued_tasks(self, make_coordinator, make_agent):
        coordinator = await make_coordinator(make_agent("devops", delay=10), max_concurrent_agents=1)

        running = coordinator.submit(deploy("running"))
        queued = coordinator.submit(deploy("queued"))
        await asyncio.sleep(0.01)

        await coordinator.stop()

        for task_id in (running, queued):
            with pytest.raises(OrchestratorError):
                await coordinator.await_result(task_id)
        assert coordinator.initialized is False
