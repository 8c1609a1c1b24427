"""Builder agents - frontend, backend, database, devops and testing."""

from collections.abc import Mapping
from typing import Any

from src.orchestrator.errors import InvalidRequestError

from .base import AgentTask, BaseAgent


def _unsupported(agent: BaseAgent, action: str) -> InvalidRequestError:
    return InvalidRequestError(
        f"Unsupported action for {agent.name}: {action}",
        agent=agent.name,
    )


class FrontendAgent(BaseAgent):
    """Creates UI structure and base components."""

    description = "Creates UI/UX components and interfaces"

    @property
    def agent_type(self) -> str:
        return "frontend"

    async def process_task(self, task: AgentTask) -> dict[str, Any]:
        match task.action:
            case "create_project":
                return await self._create_project(task.payload, task.context)
            case _:
                raise _unsupported(self, task.action)

    async def _create_project(
        self,
        requirements: Mapping[str, Any],
        context: Mapping[str, Any],
    ) -> dict[str, Any]:
        architecture = context.get("architecture") or {}
        framework = requirements.get("frontend") or architecture.get("frontend") or "react"

        prompt = self._create_prompt(
            f"Generate base UI components for a {framework} application. "
            "Create reusable components that follow modern best practices.",
            {"framework": framework, "requirements": dict(requirements)},
        )
        components = self._parse_json_response(await self._complete(prompt))

        return {
            "framework": framework,
            "structure": ["src/components", "src/pages", "src/hooks", "src/services", "public"],
            "components": components,
            "routing": {"router": "react-router-dom" if framework == "react" else "vue-router"},
            "files": [
                {"path": "frontend/package.json", "generated_by": self.name},
                {"path": "frontend/src/App.jsx", "generated_by": self.name},
            ],
        }


class BackendAgent(BaseAgent):
    """Builds API structure and server-side optimizations."""

    description = "Builds APIs, databases, and server logic"

    @property
    def agent_type(self) -> str:
        return "backend"

    async def process_task(self, task: AgentTask) -> dict[str, Any]:
        match task.action:
            case "create_project":
                framework = task.payload.get("backend") or "express"
                database = task.context.get("database") or {}
                return {
                    "framework": framework,
                    "routes": ["/health", "/api"],
                    "uses_schema": bool(database.get("schema")),
                    "files": [
                        {"path": "backend/src/server.js", "generated_by": self.name},
                        {"path": "backend/src/routes/index.js", "generated_by": self.name},
                    ],
                }
            case "optimize":
                review = task.context.get("review") or {}
                return {
                    "suggestions": [
                        "Cache expensive read paths",
                        "Batch outbound requests",
                        "Move blocking work off the request path",
                    ],
                    "based_on_findings": len(review.get("findings", [])),
                }
            case _:
                raise _unsupported(self, task.action)


class DatabaseAgent(BaseAgent):
    """Designs schemas and query optimizations."""

    description = "Optimizes data models and queries"

    @property
    def agent_type(self) -> str:
        return "database"

    async def process_task(self, task: AgentTask) -> dict[str, Any]:
        engine = task.payload.get("database") or "postgresql"
        match task.action:
            case "design_schema":
                entities = task.payload.get("entities") or []
                return {
                    "engine": engine,
                    "schema": {entity: {"id": "primary_key"} for entity in entities},
                    "migrations": [f"001_create_{entity}.sql" for entity in entities],
                    "files": [
                        {"path": f"database/migrations/001_create_{entity}.sql", "generated_by": self.name}
                        for entity in entities
                    ],
                }
            case "optimize":
                return {
                    "engine": engine,
                    "suggestions": [
                        "Index columns used in frequent filters",
                        "Avoid N+1 query patterns",
                    ],
                }
            case _:
                raise _unsupported(self, task.action)


class DevOpsAgent(BaseAgent):
    """Produces deployment configuration."""

    description = "Handles deployment and infrastructure"

    @property
    def agent_type(self) -> str:
        return "devops"

    async def process_task(self, task: AgentTask) -> dict[str, Any]:
        match task.action:
            case "deploy":
                platform = task.payload.get("platform") or "docker"
                files = [{"path": "Dockerfile", "generated_by": self.name}]
                if platform == "kubernetes":
                    files.append({"path": "k8s/deployment.yaml", "generated_by": self.name})
                return {
                    "deployment": "configured",
                    "platform": platform,
                    "environment": task.payload.get("environment") or "production",
                    "files": files,
                }
            case _:
                raise _unsupported(self, task.action)


class TesterAgent(BaseAgent):
    """Sets up a testing framework for generated projects."""

    description = "Writes tests and ensures code quality"

    @property
    def agent_type(self) -> str:
        return "tester"

    async def process_task(self, task: AgentTask) -> dict[str, Any]:
        match task.action:
            case "setup_testing":
                layers = [key for key in ("backend", "frontend") if key in task.context]
                return {
                    "framework": task.payload.get("test_framework") or "jest",
                    "suites": layers or ["unit"],
                    "files": [
                        {"path": f"tests/{layer}.test.js", "generated_by": self.name}
                        for layer in layers or ["unit"]
                    ],
                }
            case _:
                raise _unsupported(self, task.action)
