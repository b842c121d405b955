"""Project context bundle sent alongside AI questions."""

from __future__ import annotations

import json
import logging as py_logging
from dataclasses import dataclass
from pathlib import Path

from devharbor.models import Project, ProjectKind

logger = py_logging.getLogger(__name__)

README_NAMES = ("README.md", "README.txt", "readme.md")
README_LIMIT = 2000
DEPENDENCY_PREVIEW = 10
EXECUTE_INSTRUCTION = (
    "If the user should run a shell command in this project, include it exactly once "
    "as <<<EXECUTE: command>>> on its own line."
)


@dataclass(frozen=True)
class AiContext:
    kind: str = ProjectKind.UNKNOWN.value
    name: str = ""
    path: str = ""
    recent_logs: str = ""

    @classmethod
    def for_project(cls, project: Project | None, *, recent_logs: str = "") -> AiContext:
        if project is None:
            return cls(recent_logs=recent_logs)
        return cls(kind=project.kind.value, name=project.name, path=project.path, recent_logs=recent_logs)


def _read_readme(project_dir: Path) -> str:
    for name in README_NAMES:
        candidate = project_dir / name
        if not candidate.is_file():
            continue
        try:
            return candidate.read_text(encoding="utf-8", errors="replace")[:README_LIMIT]
        except OSError:
            logger.debug("ai-context readme unreadable path=%s", candidate, exc_info=True)
    return ""


def _package_summary(project_dir: Path) -> list[str]:
    package_json = project_dir / "package.json"
    if not package_json.is_file():
        return []
    try:
        pkg = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.debug("ai-context package.json unreadable path=%s", package_json, exc_info=True)
        return []
    if not isinstance(pkg, dict):
        return []
    lines = [
        "Package Info:",
        f"- Name: {pkg.get('name')}",
        f"- Version: {pkg.get('version')}",
        f"- Description: {pkg.get('description') or 'N/A'}",
    ]
    scripts = pkg.get("scripts")
    if isinstance(scripts, dict) and scripts:
        lines.append(f"- Scripts: {', '.join(scripts)}")
    dependencies = pkg.get("dependencies")
    if isinstance(dependencies, dict) and dependencies:
        names = list(dependencies)
        suffix = "..." if len(names) > DEPENDENCY_PREVIEW else ""
        lines.append(f"- Dependencies: {', '.join(names[:DEPENDENCY_PREVIEW])}{suffix}")
    return lines


def build_prompt(question: str, context: AiContext) -> str:
    sections = [f"Project: {context.name}\nType: {context.kind}\nLocation: {context.path}"]
    if context.path:
        project_dir = Path(context.path)
        readme = _read_readme(project_dir)
        if readme:
            sections.append(f"README:\n{readme}")
        if context.kind == ProjectKind.NODE.value:
            summary = _package_summary(project_dir)
            if summary:
                sections.append("\n".join(summary))
    if context.recent_logs:
        sections.append(f"Recent Logs:\n{context.recent_logs}")
    sections.append(EXECUTE_INSTRUCTION)
    sections.append(f"User Question: {question}")
    return "\n\n".join(sections)
