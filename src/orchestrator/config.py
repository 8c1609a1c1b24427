"""Configuration management."""

from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class AgentSettings(BaseModel):
    """Per-agent model and capability configuration."""
    model: str | None = None
    temperature: float = 0.7
    max_tokens: int = 4000
    specialization: str = "software_development"
    capabilities: list[str] = []


DEFAULT_AGENT_SETTINGS: dict[str, AgentSettings] = {
    "architect": AgentSettings(
        temperature=0.3,
        specialization="system_design",
        capabilities=[
            "architecture_design",
            "technology_selection",
            "scalability_planning",
            "security_assessment",
        ],
    ),
    "frontend": AgentSettings(
        temperature=0.5,
        max_tokens=3000,
        specialization="ui_development",
        capabilities=[
            "component_creation",
            "styling",
            "state_management",
            "responsive_design",
        ],
    ),
    "backend": AgentSettings(
        temperature=0.4,
        specialization="api_development",
        capabilities=[
            "api_design",
            "database_integration",
            "authentication",
            "performance_optimization",
        ],
    ),
    "database": AgentSettings(
        temperature=0.2,
        max_tokens=3000,
        specialization="data_modeling",
        capabilities=[
            "schema_design",
            "query_optimization",
            "indexing",
            "migration_planning",
        ],
    ),
    "devops": AgentSettings(
        temperature=0.3,
        max_tokens=3500,
        specialization="deployment",
        capabilities=[
            "containerization",
            "ci_cd_setup",
            "infrastructure_as_code",
            "monitoring_setup",
        ],
    ),
    "tester": AgentSettings(
        temperature=0.4,
        max_tokens=3000,
        specialization="quality_assurance",
        capabilities=[
            "test_generation",
            "coverage_analysis",
            "test_automation",
            "quality_metrics",
        ],
    ),
    "debugger": AgentSettings(
        temperature=0.2,
        specialization="bug_detection",
        capabilities=[
            "bug_detection",
            "root_cause_analysis",
            "fix_generation",
            "prevention_recommendations",
        ],
    ),
    "reviewer": AgentSettings(
        temperature=0.3,
        max_tokens=3500,
        specialization="code_quality",
        capabilities=[
            "code_analysis",
            "best_practices_checking",
            "refactoring_suggestions",
            "documentation_review",
        ],
    ),
}


class Settings(BaseSettings):
    """Application settings from environment."""

    # Concurrency
    max_concurrent_agents: int = Field(default=5, ge=1)
    task_timeout_ms: int = Field(default=300_000, gt=0)
    # How long a cancelled workflow may take to unwind before its agents are abandoned
    cancel_grace_seconds: float = Field(default=1.0, ge=0)
    dispatch_interval_seconds: float = Field(default=1.0, gt=0)
    queue_policy: Literal["fifo", "skip_blocked"] = "fifo"

    # Retention of terminal task records
    task_retention_seconds: float = Field(default=60.0, ge=0)
    redis_url: str | None = None

    # Agent bookkeeping
    agent_error_log_size: int = Field(default=50, ge=1)
    agents: dict[str, AgentSettings] = Field(
        default_factory=lambda: dict(DEFAULT_AGENT_SETTINGS)
    )

    # Logging
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    # Anthropic
    anthropic_api_key: str | None = None
    model_default: str = "claude-sonnet-4-5-20250929"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def task_timeout_seconds(self) -> float:
        return self.task_timeout_ms / 1000

    def agent_settings(self, name: str) -> AgentSettings:
        """Settings for one agent, falling back to defaults."""
        return self.agents.get(name) or DEFAULT_AGENT_SETTINGS.get(name) or AgentSettings()
