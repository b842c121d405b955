"""Command surface wiring the process core, terminal session and AI interceptor together."""

from __future__ import annotations

import asyncio
import logging as py_logging
import subprocess
from pathlib import Path

from devharbor.ai.backend import AiBackend, CliAiBackend
from devharbor.ai.context import AiContext
from devharbor.ai.interceptor import AiInterceptor, Writer
from devharbor.config import AppConfig
from devharbor.errors import DevHarborError, ExitCode
from devharbor.events import EventBus, OutputEvent
from devharbor.models import ManagedProcess, Project, TerminalSessionState
from devharbor.process.inspector import ProcessInspector, PsutilInspector
from devharbor.process.ports import PortAllocator
from devharbor.process.reconciler import GhostReconciler
from devharbor.process.registry import ProcessRegistry
from devharbor.process.spawn import Spawner, spawn_process
from devharbor.process.supervisor import ProcessSupervisor
from devharbor.projects import (
    clone_project,
    current_branch,
    detect_project_kind,
    install_dependencies,
    list_scripts,
    pull_project,
)
from devharbor.store import JsonProjectStore, ProjectStore
from devharbor.terminal.session import TerminalSession

logger = py_logging.getLogger(__name__)

RECENT_OUTPUT_LIMIT = 2000


class ProjectManager:
    """One instance per running application; owns every piece of mutable process state."""

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        store: ProjectStore | None = None,
        bus: EventBus | None = None,
        inspector: ProcessInspector | None = None,
        spawner: Spawner | None = None,
        allocator: PortAllocator | None = None,
        ai_backend: AiBackend | None = None,
        runner: callable = subprocess.run,
    ) -> None:
        self.config = config or AppConfig()
        self.store = store or JsonProjectStore(self.config.resolved_store_path())
        self.bus = bus or EventBus()
        self.registry = ProcessRegistry()
        spawn = spawner or spawn_process
        inspector = inspector or PsutilInspector()
        self.supervisor = ProcessSupervisor(
            registry=self.registry,
            bus=self.bus,
            store=self.store,
            allocator=allocator,
            inspector=inspector,
            spawner=spawn,
            default_port=self.config.default_port,
            stop_grace_seconds=self.config.stop_grace_seconds,
        )
        self.reconciler = GhostReconciler(
            store=self.store,
            registry=self.registry,
            bus=self.bus,
            inspector=inspector,
            interval_seconds=self.config.reconcile_interval_seconds,
        )
        self.session = TerminalSession(bus=self.bus, spawner=spawn, shell=self.config.shell)
        self.ai_backend = ai_backend or CliAiBackend(self.config.ai_command, spawner=spawn)
        self._runner = runner
        self._tasks: set[asyncio.Task[None]] = set()

    def projects(self) -> list[Project]:
        return self.store.list()

    def _require(self, path: str) -> Project:
        project = self.store.get(path)
        if project is None:
            raise DevHarborError(
                f"Unknown project: {path}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Add the project with `devharbor add PATH` first.",
            )
        return project

    async def start(self, path: str, script: str | None = None, port: int | None = None) -> ManagedProcess | None:
        return await self.supervisor.start(self._require(path), script, port)

    async def stop(self, path: str) -> None:
        await self.supervisor.stop(self._require(path))

    async def check_all_statuses(self) -> list[Project]:
        return await self.reconciler.reconcile()

    async def start_shell(self, path: str) -> None:
        await self.session.start_shell(path)

    async def send_input(self, data: str | bytes) -> None:
        await self.session.input(data)

    async def execute_once(self, command: str, path: str) -> None:
        await self.session.execute_once(command, path)

    def import_project(self, path: str | Path) -> Project:
        resolved = Path(path).expanduser().resolve()
        if not resolved.is_dir():
            raise DevHarborError(
                f"Project directory not found: {resolved}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Pass an existing project directory.",
            )
        existing = self.store.get(str(resolved))
        if existing is not None:
            logger.info("Project already imported path=%s", resolved)
            return existing
        project = Project(path=str(resolved), kind=detect_project_kind(resolved))
        project.branch = current_branch(project, runner=self._runner)
        self.store.add(project)
        logger.info("Imported project path=%s kind=%s", project.path, project.kind.value)
        return project

    def clone(self, url: str, target_dir: str | Path) -> Project:
        project = clone_project(url, target_dir, runner=self._runner)
        project.kind = detect_project_kind(project.path)
        project.branch = current_branch(project, runner=self._runner)
        self.store.add(project)
        logger.info("Cloned project path=%s kind=%s", project.path, project.kind.value)
        return project

    async def remove_project(self, path: str, *, delete_files: bool = False) -> list[Project]:
        if path in self.registry:
            await self.stop(path)
        return self.store.remove(path, delete_files=delete_files)

    def update_project(self, path: str) -> str:
        project = self._require(path)
        output = pull_project(project, runner=self._runner)
        branch = current_branch(project, runner=self._runner)
        self.store.update(path, branch=branch)
        return output

    def install(self, path: str) -> str:
        return install_dependencies(self._require(path), runner=self._runner)

    def scripts(self, path: str) -> dict[str, str]:
        return list_scripts(self._require(path))

    def recent_output(self, path: str, limit: int = RECENT_OUTPUT_LIMIT) -> str:
        text = "".join(event.text for event in self.bus.history(path) if isinstance(event, OutputEvent))
        return text[-limit:]

    def interceptor_for(self, path: str, write: Writer) -> AiInterceptor:
        def context() -> AiContext:
            return AiContext.for_project(self.store.get(path), recent_logs=self.recent_output(path))

        return AiInterceptor(
            session=self.session,
            backend=self.ai_backend,
            write=write,
            state=TerminalSessionState(project_path=path),
            context_provider=context,
            drain_interval=self.config.ai_drain_interval_ms / 1000,
            execute_delay=self.config.ai_execute_delay_ms / 1000,
            on_command_executed=self._on_command_executed,
        )

    def _on_command_executed(self, command: str, path: str) -> None:
        logger.debug("Scheduling status check after command project=%s command=%s", path, command)
        self._track(self._delayed_status_check(self.config.status_check_delay_seconds))

    async def _delayed_status_check(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.check_all_statuses()

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
            logger.error("Background task failed error=%s", exc, exc_info=exc)

    def start_background(self) -> asyncio.Task[None]:
        logger.info("Starting reconciliation interval=%ss", self.config.reconcile_interval_seconds)
        return self.reconciler.start(self.config.reconcile_interval_seconds)

    async def aclose(self) -> None:
        await self.reconciler.aclose()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.supervisor.aclose()
        await self.session.close()
