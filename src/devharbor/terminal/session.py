"""Persistent interactive shell plus one-off command execution."""

from __future__ import annotations

import asyncio
import logging as py_logging
from contextlib import suppress

from devharbor.errors import ChildSpawnFailedError
from devharbor.events import EventBus
from devharbor.process.spawn import ChildProcess, Spawner, kill_process, pump_stream, spawn_process, terminate_process
from devharbor.terminal.backend import (
    build_one_off_command,
    build_shell_command,
    build_shell_env,
    resolve_shell,
)

logger = py_logging.getLogger(__name__)

SHELL_EXIT_TIMEOUT_SECONDS = 2.0


class TerminalSession:
    def __init__(
        self,
        *,
        bus: EventBus,
        spawner: Spawner | None = None,
        shell: str = "",
        env: dict[str, str] | None = None,
    ) -> None:
        self.bus = bus
        self._spawn = spawner or spawn_process
        self._configured_shell = shell
        self._env = env
        self._shell: ChildProcess | None = None
        self._shell_project: str | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def has_shell(self) -> bool:
        return self._shell is not None and self._shell.returncode is None

    @property
    def project_path(self) -> str | None:
        return self._shell_project

    async def start_shell(self, project_path: str) -> ChildProcess | None:
        await self._close_shell()
        try:
            shell = resolve_shell(self._configured_shell)
            process = await self._spawn(
                build_shell_command(shell),
                cwd=project_path,
                env=build_shell_env(self._env),
                with_stdin=True,
            )
        except ChildSpawnFailedError as exc:
            logger.error("terminal-event project=%s step=shell-start-failed error=%s", project_path, exc)
            self._report_error(project_path, exc)
            return None
        self._shell = process
        self._shell_project = project_path
        logger.info("terminal-event project=%s step=shell-start pid=%s", project_path, process.pid)
        self._track(self._stream(process, project_path, persistent=True))
        return process

    async def input(self, data: str | bytes) -> None:
        process = self._shell
        if process is None or process.returncode is not None or process.stdin is None:
            logger.debug("terminal-event step=input-dropped reason=no-shell")
            return
        payload = data.encode("utf-8") if isinstance(data, str) else data
        try:
            process.stdin.write(payload)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.warning("terminal-event project=%s step=input-failed error=%s", self._shell_project, exc)

    async def execute_once(self, command: str, project_path: str) -> None:
        if self.has_shell:
            logger.info("terminal-event project=%s step=execute-in-shell command=%s", project_path, command)
            await self.input(command + "\n")
            return

        logger.info("terminal-event project=%s step=execute-once command=%s", project_path, command)
        self.bus.output(project_path, f"$ {command}\r\n")
        try:
            shell = resolve_shell(self._configured_shell)
            process = await self._spawn(
                build_one_off_command(shell, command),
                cwd=project_path,
                env=build_shell_env(self._env),
            )
        except ChildSpawnFailedError as exc:
            logger.error("terminal-event project=%s step=execute-failed error=%s", project_path, exc)
            self._report_error(project_path, exc)
            return
        self._track(self._stream(process, project_path, persistent=False))

    def _report_error(self, project_path: str, exc: ChildSpawnFailedError) -> None:
        self.bus.output(project_path, f"\x1b[31mError: {exc}\x1b[0m\r\n")

    async def _stream(self, process: ChildProcess, project_path: str, *, persistent: bool) -> None:
        def forward(chunk: bytes) -> None:
            self.bus.output(project_path, chunk.decode("utf-8", errors="replace"))

        await asyncio.gather(pump_stream(process.stdout, forward), pump_stream(process.stderr, forward))
        code = await process.wait()
        if persistent:
            if self._shell is process:
                self._shell = None
                self._shell_project = None
            logger.info("terminal-event project=%s step=shell-exit code=%s", project_path, code)
        else:
            self.bus.output(project_path, f"\r\n[exit {code}]\r\n")

    async def _close_shell(self) -> None:
        process = self._shell
        self._shell = None
        self._shell_project = None
        if process is None or process.returncode is not None:
            return
        logger.info("terminal-event step=shell-replace pid=%s", process.pid)
        if process.stdin is not None:
            with suppress(Exception):
                process.stdin.close()
        terminate_process(process)
        try:
            await asyncio.wait_for(process.wait(), timeout=SHELL_EXIT_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            kill_process(process)

    async def close(self) -> None:
        await self._close_shell()
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _track(self, coro: object) -> None:
        task = asyncio.ensure_future(coro)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
