"""Persistent project list keyed by filesystem path."""

from __future__ import annotations

import json
import logging as py_logging
import shutil
import time
from contextlib import suppress
from dataclasses import replace
from pathlib import Path
from typing import Protocol

from devharbor.errors import DevHarborError, ExitCode
from devharbor.models import Project, ProjectKind, ProjectStatus

logger = py_logging.getLogger(__name__)

_UPDATABLE_FIELDS = {"name", "kind", "origin", "status", "port", "branch"}


class ProjectStore(Protocol):
    def list(self) -> list[Project]: ...

    def get(self, path: str) -> Project | None: ...

    def add(self, project: Project) -> list[Project]: ...

    def remove(self, path: str, *, delete_files: bool = False) -> list[Project]: ...

    def update(self, path: str, **fields: object) -> Project | None: ...


def remove_tree(
    path: Path,
    *,
    attempts: int = 3,
    delay_seconds: float = 0.25,
) -> OSError | None:
    """Remove directory tree with retries and linear backoff."""
    last_error: OSError | None = None
    for attempt in range(max(1, attempts)):
        try:
            if path.exists():
                shutil.rmtree(path)
            return None
        except OSError as exc:
            last_error = exc
            if attempt + 1 < attempts:
                time.sleep(delay_seconds * (attempt + 1))
    return last_error


def _apply_fields(project: Project, fields: dict[str, object]) -> Project:
    unknown = set(fields) - _UPDATABLE_FIELDS
    if unknown:
        raise DevHarborError(
            f"Unknown project fields: {sorted(unknown)}",
            code=ExitCode.VALIDATION_ERROR,
            hint=f"Use one of: {', '.join(sorted(_UPDATABLE_FIELDS))}.",
        )
    changes = dict(fields)
    if "kind" in changes and not isinstance(changes["kind"], ProjectKind):
        changes["kind"] = ProjectKind(str(changes["kind"]))
    if "status" in changes and not isinstance(changes["status"], ProjectStatus):
        changes["status"] = ProjectStatus(str(changes["status"]))
    return replace(project, **changes)  # type: ignore[arg-type]


class MemoryProjectStore:
    def __init__(self, projects: list[Project] | None = None) -> None:
        self._projects: dict[str, Project] = {}
        self.update_calls: list[tuple[str, dict[str, object]]] = []
        for project in projects or []:
            self._projects.setdefault(project.path, project)

    def list(self) -> list[Project]:
        return [replace(item) for item in self._projects.values()]

    def get(self, path: str) -> Project | None:
        project = self._projects.get(path)
        return replace(project) if project is not None else None

    def add(self, project: Project) -> list[Project]:
        self._projects.setdefault(project.path, replace(project))
        return self.list()

    def remove(self, path: str, *, delete_files: bool = False) -> list[Project]:
        self._projects.pop(path, None)
        if delete_files:
            _delete_project_files(path)
        return self.list()

    def update(self, path: str, **fields: object) -> Project | None:
        project = self._projects.get(path)
        if project is None:
            return None
        updated = _apply_fields(project, fields)
        self._projects[path] = updated
        self.update_calls.append((path, dict(fields)))
        return replace(updated)


class JsonProjectStore:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def _load(self) -> list[Project]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Project store unreadable path=%s; starting empty", self.path)
            return []
        items = raw.get("projects", []) if isinstance(raw, dict) else raw
        if not isinstance(items, list):
            return []
        projects: list[Project] = []
        seen: set[str] = set()
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                project = Project.from_dict(item)
            except ValueError:
                continue
            if project.path in seen:
                continue
            seen.add(project.path)
            projects.append(project)
        return projects

    def _save(self, projects: list[Project]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"projects": [item.to_dict() for item in projects]}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=True) + "\n", encoding="utf-8")
        tmp_path.replace(self.path)
        with suppress(OSError):
            self.path.chmod(0o600)

    def list(self) -> list[Project]:
        return self._load()

    def get(self, path: str) -> Project | None:
        for project in self._load():
            if project.path == path:
                return project
        return None

    def add(self, project: Project) -> list[Project]:
        projects = self._load()
        if not any(item.path == project.path for item in projects):
            projects.append(project)
            self._save(projects)
        return projects

    def remove(self, path: str, *, delete_files: bool = False) -> list[Project]:
        projects = [item for item in self._load() if item.path != path]
        self._save(projects)
        if delete_files:
            _delete_project_files(path)
        return projects

    def update(self, path: str, **fields: object) -> Project | None:
        projects = self._load()
        for index, project in enumerate(projects):
            if project.path == path:
                projects[index] = _apply_fields(project, fields)
                self._save(projects)
                return projects[index]
        return None


def _delete_project_files(path: str) -> None:
    logger.info("Removing project files path=%s", path)
    error = remove_tree(Path(path))
    if error is not None:
        raise DevHarborError(
            f"Failed to delete project files: {path}",
            code=ExitCode.RUNTIME_ERROR,
            hint=str(error) or "Check file permissions.",
        )
