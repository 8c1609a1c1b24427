"""Architect agent - designs application structure and technology stack."""

from collections.abc import Mapping
from typing import Any

from src.orchestrator.errors import InvalidRequestError

from .base import AgentTask, BaseAgent


class ArchitectAgent(BaseAgent):
    """Designs application architecture from project requirements."""

    description = "Designs application structure and architecture"

    @property
    def agent_type(self) -> str:
        return "architect"

    async def process_task(self, task: AgentTask) -> dict[str, Any]:
        match task.action:
            case "design":
                return await self.design_architecture(task.payload)
            case _:
                raise InvalidRequestError(
                    f"Unsupported action for architect: {task.action}",
                    agent=self.name,
                )

    async def design_architecture(self, requirements: Mapping[str, Any]) -> dict[str, Any]:
        """Ask the model for an architecture, then fill in derived structure."""
        prompt = self._create_prompt(
            "Design a comprehensive application architecture based on the given requirements. "
            "Consider scalability, maintainability, security, and best practices. "
            "Respond with JSON containing architecture_type, frontend, backend, database and cache.",
            requirements,
        )
        response = await self._complete(
            prompt,
            system="You are a senior software architect. Respond with JSON only.",
        )
        architecture = self._parse_json_response(response)

        # Explicit requirements win over model suggestions
        for layer in ("frontend", "backend", "database"):
            if requirements.get(layer):
                architecture[layer] = requirements[layer]

        architecture["project_structure"] = self._project_structure(architecture, requirements)
        architecture["security_considerations"] = self._security_recommendations(requirements)
        architecture["files"] = [
            {"path": "README.md", "generated_by": self.name},
            {"path": ".env.example", "generated_by": self.name},
        ]
        return architecture

    def _project_structure(
        self,
        architecture: Mapping[str, Any],
        requirements: Mapping[str, Any],
    ) -> dict[str, Any]:
        structure: dict[str, Any] = {
            "root": requirements.get("project_name", "app"),
            "directories": {},
        }
        directories = structure["directories"]

        if architecture.get("frontend"):
            directories["frontend"] = ["src/components", "src/pages", "src/services", "public", "tests"]
        if architecture.get("backend"):
            directories["backend"] = ["src/routes", "src/services", "src/models", "tests"]
        if architecture.get("database"):
            directories["database"] = ["migrations", "seeds"]
        directories["docs"] = ["architecture.md"]

        return structure

    def _security_recommendations(self, requirements: Mapping[str, Any]) -> list[str]:
        recommendations = [
            "Validate and sanitize all external input",
            "Keep secrets out of source control",
        ]
        features = requirements.get("features") or []
        if "authentication" in features:
            recommendations.append("Hash passwords with a slow adaptive algorithm")
        if "payments" in features:
            recommendations.append("Delegate card handling to a PCI-compliant provider")
        return recommendations
