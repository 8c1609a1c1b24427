"""Main orchestrator service - task submission and status API."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from .config import Settings
from .coordinator import Coordinator, CoordinatorStatus
from .errors import InvalidRequestError, OrchestratorError
from .log_config import configure_logging
from .runtime import build_coordinator
from .state_machine import TaskRequest, TaskView

logger = structlog.get_logger()
settings = Settings()


class SubmitResponse(BaseModel):
    """Accepted task."""
    task_id: str
    status: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    configure_logging(settings)
    logger.info("Starting agent orchestrator")

    coordinator = build_coordinator(settings)
    await coordinator.start()
    app.state.coordinator = coordinator

    yield

    logger.info("Shutting down orchestrator")
    await coordinator.stop()


app = FastAPI(
    title="Agent Orchestrator",
    description="Task coordination across specialized agents",
    version="0.1.0",
    lifespan=lifespan,
)


def _coordinator(request: Request) -> Coordinator:
    return request.app.state.coordinator


def _submit(coordinator: Coordinator, body: TaskRequest) -> str:
    try:
        return coordinator.submit(body)
    except InvalidRequestError as e:
        raise HTTPException(status_code=422, detail=e.message) from e


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "agent-orchestrator"}


@app.get("/status", response_model=CoordinatorStatus)
async def get_status(request: Request):
    """Coordinator and agent status."""
    return _coordinator(request).status()


@app.get("/agents")
async def list_agents(request: Request):
    """Registered agents with their bookkeeping."""
    return {"agents": _coordinator(request).registry.status()}


@app.post("/tasks", status_code=202, response_model=SubmitResponse)
async def submit_task(body: TaskRequest, request: Request):
    """Queue a task; returns immediately with its id."""
    task_id = _submit(_coordinator(request), body)
    logger.info("Accepted task", task_id=task_id, kind=body.kind)
    return SubmitResponse(task_id=task_id, status="pending")


@app.post("/tasks/execute", response_model=TaskView)
async def execute_task(body: TaskRequest, request: Request):
    """Submit a task and wait until it finishes."""
    coordinator = _coordinator(request)
    task_id = _submit(coordinator, body)

    try:
        await coordinator.await_result(task_id)
    except OrchestratorError as e:
        logger.info("Executed task failed", task_id=task_id, code=e.code)

    task = await coordinator.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return task.to_view()


@app.get("/tasks/{task_id}", response_model=TaskView)
async def get_task(task_id: str, request: Request):
    """Get task details; finished tasks are kept for the retention period."""
    task = await _coordinator(request).get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task.to_view()


def cli():
    """CLI entry point."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    cli()
