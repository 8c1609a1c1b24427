"""Workflow definitions - static stage tables per task kind."""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from .state_machine import TaskKind

if TYPE_CHECKING:
    from .state_machine import Task

Guard = Callable[[Mapping[str, Any], Mapping[str, Any]], bool]  # (requirements, context)
Extract = Callable[[Mapping[str, Any]], dict[str, Any]]


def always(requirements: Mapping[str, Any], context: Mapping[str, Any]) -> bool:
    return True


def when_required(name: str) -> Guard:
    """Run the stage only if requirements[name] is set."""
    def guard(requirements: Mapping[str, Any], context: Mapping[str, Any]) -> bool:
        return bool(requirements.get(name))
    guard.__name__ = f"when_required_{name}"
    return guard


def unless_disabled(name: str) -> Guard:
    """Run the stage unless requirements[name] is explicitly false."""
    def guard(requirements: Mapping[str, Any], context: Mapping[str, Any]) -> bool:
        return requirements.get(name, True) is not False
    guard.__name__ = f"unless_disabled_{name}"
    return guard


def everything(requirements: Mapping[str, Any]) -> dict[str, Any]:
    return dict(requirements)


def pick(*names: str) -> Extract:
    def extract(requirements: Mapping[str, Any]) -> dict[str, Any]:
        return {n: requirements[n] for n in names if n in requirements}
    return extract


@dataclass(frozen=True)
class Stage:
    """One workflow step bound to one agent invocation."""
    key: str
    agent: str
    checkpoint: int
    action: str
    guard: Guard = always
    mandatory: bool = False
    extract: Extract = everything


@dataclass(frozen=True)
class Workflow:
    """Ordered stage list plus the result projection for a task kind."""
    kind: TaskKind
    stages: tuple[Stage, ...]
    shape_result: Callable[["Task"], dict[str, Any]]
    required_fields: tuple[str, ...] = ()
    agents: frozenset[str] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "agents", frozenset(s.agent for s in self.stages))
        _validate(self)

    def agents_for(self, requirements: Mapping[str, Any]) -> frozenset[str]:
        """Agents of the stages whose guard passes for these requirements.

        Guards are evaluated against the requirements alone, before any stage
        has produced context.
        """
        context = MappingProxyType({})
        return frozenset(s.agent for s in self.stages if s.guard(requirements, context))


def _validate(workflow: Workflow) -> None:
    keys = [s.key for s in workflow.stages]
    if len(set(keys)) != len(keys):
        raise ValueError(f"{workflow.kind.value}: duplicate stage keys {keys}")

    previous = 0
    for stage in workflow.stages:
        if not previous < stage.checkpoint < 100:
            raise ValueError(
                f"{workflow.kind.value}: checkpoint {stage.checkpoint} of stage "
                f"'{stage.key}' must increase and stay below 100"
            )
        previous = stage.checkpoint


# === Result shaping ===

SETUP_INSTRUCTIONS = [
    "Install dependencies",
    "Copy .env.example to .env and fill in the values",
    "Initialize the database (if applicable)",
    "Start the development server",
]

NEXT_STEPS = [
    "Review the generated code structure",
    "Customize the configuration files",
    "Add your specific business logic",
    "Run tests to ensure everything works",
    "Deploy to your preferred platform",
]


def _collect_files(context: Mapping[str, Any]) -> dict[str, list[Any]]:
    return {
        key: output["files"]
        for key, output in context.items()
        if isinstance(output, Mapping) and output.get("files")
    }


def shape_create_project(task: "Task") -> dict[str, Any]:
    architecture = task.context.get("architecture") or {}
    return {
        "project_id": task.id,
        "structure": architecture.get("project_structure"),
        "files": _collect_files(task.context),
        "instructions": list(SETUP_INSTRUCTIONS),
        "next_steps": list(NEXT_STEPS),
        "stages": dict(task.context),
    }


def shape_debug_code(task: "Task") -> dict[str, Any]:
    analysis = task.context["analysis"]
    result = {
        "analysis": analysis,
        "fixes": task.context["fixes"]["fixes"],
        "recommendations": analysis.get("recommendations", []),
    }
    if "review" in task.context:
        result["review"] = task.context["review"]
    return result


def shape_review_code(task: "Task") -> dict[str, Any]:
    return {"review": task.context["review"]}


def shape_optimize_performance(task: "Task") -> dict[str, Any]:
    suggestions = [
        suggestion
        for output in task.context.values()
        for suggestion in output.get("suggestions", [])
    ]
    return {"suggestions": suggestions, "stages": dict(task.context)}


def shape_deploy_application(task: "Task") -> dict[str, Any]:
    deployment = task.context["deployment"]
    return {"deployment": deployment, "files": deployment.get("files", [])}


# === Workflow table ===

WORKFLOWS: dict[TaskKind, Workflow] = {
    TaskKind.CREATE_PROJECT: Workflow(
        kind=TaskKind.CREATE_PROJECT,
        stages=(
            Stage("architecture", "architect", 20, "design", mandatory=True),
            Stage("database", "database", 35, "design_schema",
                  guard=when_required("database"), extract=pick("database", "entities")),
            Stage("backend", "backend", 60, "create_project",
                  guard=when_required("backend"), extract=pick("backend", "features")),
            Stage("frontend", "frontend", 85, "create_project",
                  guard=when_required("frontend"), extract=pick("frontend", "features")),
            Stage("testing", "tester", 95, "setup_testing", extract=pick("test_framework")),
        ),
        shape_result=shape_create_project,
    ),
    TaskKind.DEBUG_CODE: Workflow(
        kind=TaskKind.DEBUG_CODE,
        stages=(
            Stage("analysis", "debugger", 50, "analyze", mandatory=True, extract=pick("files", "issues")),
            Stage("fixes", "debugger", 85, "generate_fixes", mandatory=True, extract=pick()),
            Stage("review", "reviewer", 95, "review", guard=unless_disabled("review"), extract=pick()),
        ),
        shape_result=shape_debug_code,
        required_fields=("files",),
    ),
    TaskKind.REVIEW_CODE: Workflow(
        kind=TaskKind.REVIEW_CODE,
        stages=(
            Stage("review", "reviewer", 90, "review", mandatory=True, extract=pick("files", "focus_areas")),
        ),
        shape_result=shape_review_code,
        required_fields=("files",),
    ),
    TaskKind.OPTIMIZE_PERFORMANCE: Workflow(
        kind=TaskKind.OPTIMIZE_PERFORMANCE,
        stages=(
            Stage("review", "reviewer", 30, "review", mandatory=True, extract=pick("files", "focus_areas")),
            Stage("backend", "backend", 65, "optimize", extract=pick("backend")),
            Stage("database", "database", 90, "optimize",
                  guard=when_required("database"), extract=pick("database")),
        ),
        shape_result=shape_optimize_performance,
        required_fields=("files",),
    ),
    TaskKind.DEPLOY_APPLICATION: Workflow(
        kind=TaskKind.DEPLOY_APPLICATION,
        stages=(
            Stage("deployment", "devops", 90, "deploy", mandatory=True, extract=pick("platform", "environment")),
        ),
        shape_result=shape_deploy_application,
    ),
}


def get_workflow(kind: TaskKind) -> Workflow:
    return WORKFLOWS[kind]
