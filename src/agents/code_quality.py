"""Code quality agents - bug detection and code review."""

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

from src.orchestrator.errors import InvalidRequestError

from .base import AgentTask, BaseAgent

SEVERITY_ORDER = {"high": 3, "medium": 2, "low": 1}
MAX_LINE_LENGTH = 120


@dataclass(frozen=True)
class BugPattern:
    pattern: re.Pattern[str]
    type: str
    severity: str
    message: str
    fix: str


def _p(regex: str, type_: str, severity: str, message: str, fix: str, flags: int = 0) -> BugPattern:
    return BugPattern(re.compile(regex, flags), type_, severity, message, fix)


BUG_PATTERNS: dict[str, list[BugPattern]] = {
    "js": [
        _p(r"[^=!]==\s*null", "equality", "medium", "Use strict equality (===) instead of ==", "Replace == with ==="),
        _p(r"\bvar\s+\w+", "declaration", "low", "Use let or const instead of var", "Declare with const or let"),
        _p(r"console\.log\(", "debugging", "low", "Remove console.log statements", "Remove or route through a logger"),
        _p(r"\beval\(", "security", "high", "Avoid using eval() - security risk", "Call the target function directly"),
        _p(r"innerHTML\s*=", "security", "high", "Potential XSS vulnerability with innerHTML", "Use textContent or a sanitizer"),
    ],
    "py": [
        _p(r"except:\s*$", "exception", "high", "Avoid bare except clauses", "Catch a specific exception type"),
        _p(r"\bprint\(", "debugging", "low", "Use logging instead of print statements", "Replace print with a logger call"),
        _p(r"\bexec\(", "security", "high", "Avoid using exec() - security risk", "Remove dynamic code execution"),
        _p(r"import\s+\*", "import", "medium", "Avoid wildcard imports", "Import names explicitly"),
    ],
    "general": [
        _p(r"TODO|FIXME|HACK", "todo", "low", "Unfinished code or technical debt", "Resolve or track the note"),
        _p(
            r"(password|secret|api_?key)\s*[:=]\s*['\"]",
            "security",
            "high",
            "Potential hardcoded sensitive information",
            "Load the value from configuration",
            re.IGNORECASE,
        ),
    ],
}

EXTENSION_ALIASES = {"jsx": "js", "ts": "js", "tsx": "js", "mjs": "js"}


def _require_files(agent: BaseAgent, payload: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
    files = payload.get("files")
    if not isinstance(files, Sequence) or isinstance(files, str):
        raise InvalidRequestError("requirements.files must be a list of {path, content}", agent=agent.name)
    for item in files:
        if not isinstance(item, Mapping) or "content" not in item:
            raise InvalidRequestError("Each file needs a content field", agent=agent.name)
    return files


class DebuggerAgent(BaseAgent):
    """Finds bugs with pattern-based static analysis and proposes fixes."""

    description = "Finds and fixes bugs in existing code"

    @property
    def agent_type(self) -> str:
        return "debugger"

    async def process_task(self, task: AgentTask) -> dict[str, Any]:
        match task.action:
            case "analyze":
                files = _require_files(self, task.payload)
                return self.analyze_code(files, task.payload.get("issues") or ["all"])
            case "generate_fixes":
                analysis = task.context.get("analysis")
                if analysis is None:
                    raise InvalidRequestError("No analysis available to fix", agent=self.name)
                return self.generate_fixes(analysis)
            case _:
                raise InvalidRequestError(
                    f"Unsupported action for debugger: {task.action}",
                    agent=self.name,
                )

    def analyze_code(
        self,
        files: Sequence[Mapping[str, Any]],
        issue_types: Sequence[str],
    ) -> dict[str, Any]:
        file_reports = [self._analyze_file(f, issue_types) for f in files]
        issues = [issue for report in file_reports for issue in report["issues"]]

        summary = {
            "total_files": len(file_reports),
            "total_issues": len(issues),
            "critical_issues": sum(1 for i in issues if i["severity"] == "high"),
            "security_issues": sum(1 for i in issues if i["type"] == "security"),
        }
        return {
            "summary": summary,
            "files": file_reports,
            "recommendations": self._recommendations(summary),
        }

    def _analyze_file(self, file: Mapping[str, Any], issue_types: Sequence[str]) -> dict[str, Any]:
        path = str(file.get("path") or file.get("name") or "<unnamed>")
        content = str(file["content"])
        extension = PurePosixPath(path).suffix.lstrip(".")
        language = EXTENSION_ALIASES.get(extension, extension)

        patterns = BUG_PATTERNS.get(language, []) + BUG_PATTERNS["general"]
        if "all" not in issue_types:
            patterns = [p for p in patterns if p.type in issue_types]

        issues = []
        for line_number, line in enumerate(content.splitlines(), start=1):
            for pattern in patterns:
                if pattern.pattern.search(line):
                    issues.append({
                        "type": pattern.type,
                        "severity": pattern.severity,
                        "message": pattern.message,
                        "fix": pattern.fix,
                        "line": line_number,
                        "code": line.strip(),
                        "file": path,
                    })

        issues.sort(key=lambda i: SEVERITY_ORDER[i["severity"]], reverse=True)
        return {
            "file": path,
            "extension": extension,
            "lines": len(content.splitlines()),
            "issues": issues,
        }

    def generate_fixes(self, analysis: Mapping[str, Any]) -> dict[str, Any]:
        fixes = [
            {
                "file": issue["file"],
                "line": issue["line"],
                "severity": issue["severity"],
                "original": issue["code"],
                "suggestion": issue["fix"],
            }
            for report in analysis.get("files", [])
            for issue in report["issues"]
        ]
        return {"fixes": fixes, "total": len(fixes)}

    def _recommendations(self, summary: Mapping[str, int]) -> list[str]:
        recommendations = []
        if summary["security_issues"]:
            recommendations.append("Address security issues before the next release")
        if summary["critical_issues"]:
            recommendations.append("Fix high severity issues first")
        if summary["total_issues"] == 0:
            recommendations.append("No issues detected by static analysis")
        else:
            recommendations.append("Add a linter to CI to catch these patterns early")
        return recommendations


class ReviewerAgent(BaseAgent):
    """Provides code quality feedback."""

    description = "Provides code quality feedback"

    @property
    def agent_type(self) -> str:
        return "reviewer"

    async def process_task(self, task: AgentTask) -> dict[str, Any]:
        match task.action:
            case "review":
                files = task.payload.get("files")
                if files is None:
                    # Reviewing a previous stage, e.g. after debugging
                    fixes = (task.context.get("fixes") or {}).get("fixes", [])
                    return {"review": "completed", "findings": [], "reviewed_fixes": len(fixes)}
                return self.review(_require_files(self, task.payload), task.payload.get("focus_areas") or [])
            case _:
                raise InvalidRequestError(
                    f"Unsupported action for reviewer: {task.action}",
                    agent=self.name,
                )

    def review(self, files: Sequence[Mapping[str, Any]], focus_areas: Sequence[str]) -> dict[str, Any]:
        findings = []
        for file in files:
            path = str(file.get("path") or file.get("name") or "<unnamed>")
            for line_number, line in enumerate(str(file["content"]).splitlines(), start=1):
                if len(line) > MAX_LINE_LENGTH:
                    findings.append({"file": path, "line": line_number, "aspect": "style",
                                     "message": f"Line longer than {MAX_LINE_LENGTH} characters"})
                if line != line.rstrip():
                    findings.append({"file": path, "line": line_number, "aspect": "style",
                                     "message": "Trailing whitespace"})

        if focus_areas:
            findings = [f for f in findings if f["aspect"] in focus_areas]

        return {
            "review": "completed",
            "files_reviewed": len(files),
            "findings": findings,
            "suggestions": sorted({f["message"] for f in findings}),
        }
