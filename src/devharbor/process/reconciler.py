"""Periodic correction of stored project status against the OS process table."""

from __future__ import annotations

import asyncio
import logging as py_logging
from contextlib import suppress
from dataclasses import dataclass

from devharbor.errors import ProcessLookupFailedError
from devharbor.events import EventBus
from devharbor.models import Project, ProjectStatus
from devharbor.process.inspector import ProcessInspector, PsutilInspector, path_contains
from devharbor.process.registry import ProcessRegistry
from devharbor.store import ProjectStore

logger = py_logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 10.0


@dataclass(frozen=True)
class Observation:
    candidates: tuple[int, ...]
    port: int | None


class GhostReconciler:
    def __init__(
        self,
        *,
        store: ProjectStore,
        registry: ProcessRegistry,
        bus: EventBus,
        inspector: ProcessInspector | None = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        self.store = store
        self.registry = registry
        self.bus = bus
        self.inspector = inspector or PsutilInspector()
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    def observe(self, projects: list[Project]) -> dict[str, Observation] | None:
        """Map project paths to matching pids and their listening port; None when inspection fails."""
        try:
            processes = self.inspector.list_processes()
            candidates: dict[str, list[int]] = {}
            for project in projects:
                pids = [info.pid for info in processes if path_contains(project.path, info.cwd)]
                if pids:
                    candidates[project.path] = sorted(set(pids))
            all_pids = {pid for pids in candidates.values() for pid in pids}
            ports = self.inspector.listening_ports(all_pids) if all_pids else {}
        except ProcessLookupFailedError as exc:
            logger.warning("reconcile-event step=inspect-failed error=%s", exc)
            return None

        observations: dict[str, Observation] = {}
        for project in projects:
            pids = candidates.get(project.path, [])
            listening = sorted(ports[pid] for pid in pids if pid in ports)
            observations[project.path] = Observation(
                candidates=tuple(pids),
                port=listening[0] if listening else None,
            )
        return observations

    async def reconcile(self) -> list[Project]:
        projects = self.store.list()
        observations = self.observe(projects)
        if observations is None:
            return projects

        result: list[Project] = []
        for project in projects:
            observation = observations[project.path]
            updated = self._apply(project, observation)
            result.append(updated)
        return result

    def _apply(self, project: Project, observation: Observation) -> Project:
        path = project.path
        tracked = path in self.registry
        status = project.status
        port = project.port

        if observation.candidates and observation.port is not None:
            status = ProjectStatus.RUNNING
            port = observation.port
        elif not observation.candidates and project.status == ProjectStatus.RUNNING and not tracked:
            status = ProjectStatus.STOPPED
            port = None

        changes: dict[str, object] = {}
        if status != project.status:
            changes["status"] = status
        if port != project.port:
            changes["port"] = port
        if not changes:
            return project

        logger.info(
            "reconcile-event project=%s status=%s->%s port=%s->%s tracked=%s",
            path,
            project.status.value,
            status.value,
            project.port,
            port,
            tracked,
        )
        updated = self.store.update(path, **changes) or project
        if "status" in changes:
            self.bus.status(path, status)
        if "port" in changes and port is not None:
            self.bus.port(path, port)
        return updated

    def start(self, interval_seconds: float | None = None) -> asyncio.Task[None]:
        if interval_seconds is not None:
            self.interval_seconds = interval_seconds
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(self._run_forever())
        return self._task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run_forever(self) -> None:
        while True:
            try:
                await self.reconcile()
            except Exception:
                logger.exception("reconcile-event step=pass-failed")
            await asyncio.sleep(self.interval_seconds)

    async def aclose(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
