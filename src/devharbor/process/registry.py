"""In-memory map of projects to the child processes this manager started."""

from __future__ import annotations

import logging as py_logging

from devharbor.models import ManagedProcess

logger = py_logging.getLogger(__name__)


class ProcessRegistry:
    def __init__(self) -> None:
        self._processes: dict[str, ManagedProcess] = {}

    def register(self, project_path: str, handle: ManagedProcess) -> None:
        existing = self._processes.get(project_path)
        if existing is not None and existing is not handle:
            raise ValueError(f"Process already registered for project: {project_path}")
        self._processes[project_path] = handle
        logger.debug("process-registry register project=%s pid=%s", project_path, handle.pid)

    def unregister(self, project_path: str, handle: ManagedProcess | None = None) -> ManagedProcess | None:
        current = self._processes.get(project_path)
        if current is None:
            return None
        if handle is not None and current is not handle:
            # A newer process replaced this one; leave it tracked.
            return None
        del self._processes[project_path]
        logger.debug("process-registry unregister project=%s pid=%s", project_path, current.pid)
        return current

    def get(self, project_path: str) -> ManagedProcess | None:
        return self._processes.get(project_path)

    def paths(self) -> list[str]:
        return sorted(self._processes)

    def __contains__(self, project_path: object) -> bool:
        return project_path in self._processes

    def __len__(self) -> int:
        return len(self._processes)
