"""Start/stop orchestration for project dev-server processes."""

from __future__ import annotations

import asyncio
import logging as py_logging
import os
import shutil
from collections.abc import Mapping

from devharbor.errors import ChildSpawnFailedError, NoPortAvailableError, ProcessLookupFailedError
from devharbor.events import EventBus, ExitEvent
from devharbor.models import ManagedProcess, Project, ProjectKind, ProjectStatus
from devharbor.process.inspector import ProcessInspector, PsutilInspector
from devharbor.process.ports import PortAllocator
from devharbor.process.registry import ProcessRegistry
from devharbor.process.sniffer import sanitize_output, scan_for_port
from devharbor.process.spawn import Spawner, kill_process, pump_stream, spawn_process, terminate_process
from devharbor.sanitize import command_for_log
from devharbor.store import ProjectStore

logger = py_logging.getLogger(__name__)

DEFAULT_PORT = 3000
STOP_GRACE_SECONDS = 2.0


def _python_executable() -> str:
    if shutil.which("python"):
        return "python"
    return "python3"


def build_launch_command(kind: ProjectKind, script_name: str | None = None) -> list[str] | None:
    if kind == ProjectKind.NODE:
        script = (script_name or "").strip()
        return ["npm", "run", script] if script else ["npm", "start"]
    if kind == ProjectKind.PYTHON:
        return [_python_executable(), "main.py"]
    if kind == ProjectKind.RUST:
        return ["cargo", "run"]
    if kind == ProjectKind.GO:
        return ["go", "run", "."]
    if kind == ProjectKind.DOCKER:
        return ["docker", "compose", "up"]
    return None


def build_child_env(port: int, base: Mapping[str, str] | None = None) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    env["FORCE_COLOR"] = "1"
    env["PYTHONUNBUFFERED"] = "1"
    env["PORT"] = str(port)
    return env


class ProcessSupervisor:
    def __init__(
        self,
        *,
        registry: ProcessRegistry,
        bus: EventBus,
        store: ProjectStore,
        allocator: PortAllocator | None = None,
        inspector: ProcessInspector | None = None,
        spawner: Spawner | None = None,
        default_port: int = DEFAULT_PORT,
        stop_grace_seconds: float = STOP_GRACE_SECONDS,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self.registry = registry
        self.bus = bus
        self.store = store
        self.allocator = allocator or PortAllocator()
        self.inspector = inspector or PsutilInspector()
        self._spawn = spawner or spawn_process
        self.default_port = default_port
        self.stop_grace_seconds = stop_grace_seconds
        self.base_env = base_env
        self._tasks: set[asyncio.Task[None]] = set()

    async def start(
        self,
        project: Project,
        script_name: str | None = None,
        port: int | None = None,
    ) -> ManagedProcess | None:
        path = project.path
        existing = self.registry.get(path)
        if existing is not None and not existing.exited:
            logger.warning("process-event project=%s step=start-skipped pid=%s", path, existing.pid)
            self.bus.output(path, f"[devharbor] {project.name} is already running (pid {existing.pid}).\r\n")
            return existing
        if existing is not None:
            # Exited, but its output pipes are still held open by a descendant.
            logger.info("process-event project=%s step=replace-exited pid=%s", path, existing.pid)
            self.registry.unregister(path, existing)

        command = build_launch_command(project.kind, script_name)
        if command is None:
            logger.info("process-event project=%s step=start-unsupported kind=%s", path, project.kind.value)
            self.bus.output(path, f"[devharbor] No launch command for project type '{project.kind.value}'.\r\n")
            return None

        requested = port or self.default_port
        resolved = await self._resolve_port(path, requested)
        env = build_child_env(resolved, self.base_env)

        logger.info("process-event project=%s step=start command=%s port=%s", path, command_for_log(command), resolved)
        try:
            process = await self._spawn(command, cwd=path, env=env)
        except ChildSpawnFailedError as exc:
            logger.error("process-event project=%s step=spawn-failed error=%s", path, exc)
            self.bus.output(path, f"\x1b[31mError: {exc}\x1b[0m\r\n")
            self._mark_stopped(path)
            return None

        managed = ManagedProcess(project_path=path, process=process, port=resolved)
        try:
            self.registry.register(path, managed)
        except ValueError:
            current = self.registry.get(path)
            logger.warning(
                "process-event project=%s step=start-raced pid=%s kept=%s",
                path,
                managed.pid,
                current.pid if current is not None else None,
            )
            terminate_process(process)
            self._track(self._escalate(managed))
            return current
        self.store.update(path, status=ProjectStatus.RUNNING, port=resolved)
        self.bus.status(path, ProjectStatus.RUNNING)
        self._track(self._watch(managed))
        return managed

    async def _resolve_port(self, path: str, requested: int) -> int:
        try:
            resolved = await self.allocator.allocate(requested)
        except NoPortAvailableError as exc:
            logger.warning("process-event project=%s step=port-unavailable error=%s", path, exc)
            return requested
        if resolved != requested:
            self.bus.output(path, f"[devharbor] Port {requested} is in use; starting on port {resolved}.\r\n")
        return resolved

    async def _watch(self, managed: ManagedProcess) -> None:
        process = managed.process
        await asyncio.gather(
            pump_stream(process.stdout, lambda chunk: self._handle_chunk(managed, chunk)),
            pump_stream(process.stderr, lambda chunk: self._handle_chunk(managed, chunk)),
        )
        code = await process.wait()
        self._handle_exit(managed, code)

    def _handle_chunk(self, managed: ManagedProcess, chunk: bytes) -> None:
        path = managed.project_path
        port = scan_for_port(chunk)
        if port is not None:
            if port != managed.port:
                logger.info("process-event project=%s step=port-detected port=%s", path, port)
                managed.port = port
                if self.registry.get(path) is managed:
                    self.store.update(path, port=port)
            self.bus.port(path, port)
        text = sanitize_output(chunk)
        if text:
            self.bus.output(path, text)

    def _handle_exit(self, managed: ManagedProcess, code: int | None) -> None:
        path = managed.project_path
        self.registry.unregister(path, managed)
        logger.info("process-event project=%s step=exit code=%s", path, code)
        self.bus.output(path, f"\r\nProcess exited with code {code}\r\n")
        self.bus.publish(ExitEvent(project_id=path, code=code))
        if self.registry.get(path) is None:
            self._mark_stopped(path)

    async def stop(self, project: Project) -> None:
        path = project.path
        managed = self.registry.get(path)
        if managed is not None:
            logger.info("process-event project=%s step=stop pid=%s", path, managed.pid)
            terminate_process(managed.process)
            self.registry.unregister(path, managed)
            self._track(self._escalate(managed))
        else:
            self._stop_by_port(project)

        self.bus.output(path, "\r\n[Stopped by user]\r\n")
        self._mark_stopped(path)

    def _stop_by_port(self, project: Project) -> None:
        stored = self.store.get(project.path)
        port = project.port or (stored.port if stored is not None else None)
        if not port:
            logger.info("process-event project=%s step=stop-noop reason=no-port", project.path)
            return
        try:
            pids = self.inspector.pids_listening_on(port)
            for pid in pids:
                self.inspector.kill(pid, force=True)
        except ProcessLookupFailedError as exc:
            logger.warning("process-event project=%s step=stop-by-port-failed port=%s error=%s", project.path, port, exc)
            return
        if not pids:
            logger.info("process-event project=%s step=stop-by-port-miss port=%s", project.path, port)
        else:
            logger.info("process-event project=%s step=stop-by-port port=%s pids=%s", project.path, port, pids)

    async def _escalate(self, managed: ManagedProcess) -> None:
        await asyncio.sleep(self.stop_grace_seconds)
        if managed.exited:
            return
        logger.warning(
            "process-event project=%s step=force-kill pid=%s grace=%ss",
            managed.project_path,
            managed.pid,
            self.stop_grace_seconds,
        )
        kill_process(managed.process)

    def _mark_stopped(self, path: str) -> None:
        self.store.update(path, status=ProjectStatus.STOPPED, port=None)
        self.bus.status(path, ProjectStatus.STOPPED)

    def _track(self, coro: object) -> None:
        task = asyncio.ensure_future(coro)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("process-event step=background-task-failed error=%s", exc, exc_info=exc)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for path in self.registry.paths():
            project = self.store.get(path) or Project(path=path)
            await self.stop(project)
        await self.wait_idle()
