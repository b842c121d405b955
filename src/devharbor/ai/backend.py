"""AI text generator adapters consumed by the terminal interceptor."""

from __future__ import annotations

import asyncio
import logging as py_logging
import shutil
from collections.abc import AsyncIterator, Callable
from typing import Protocol

from devharbor.ai.context import AiContext, build_prompt
from devharbor.errors import AiBackendUnavailableError, AiQueryFailedError, ChildSpawnFailedError
from devharbor.process.spawn import Spawner, spawn_process, terminate_process
from devharbor.sanitize import truncate_log

logger = py_logging.getLogger(__name__)

DEFAULT_AI_COMMAND = "gemini"
STREAM_CHUNK_SIZE = 1024


class AiBackend(Protocol):
    async def is_available(self) -> bool: ...

    def stream(self, question: str, context: AiContext) -> AsyncIterator[str]: ...


class CliAiBackend:
    """Runs an AI command-line tool in the project directory and streams its stdout."""

    def __init__(
        self,
        command: str = DEFAULT_AI_COMMAND,
        *,
        spawner: Spawner | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.command = command
        self._spawn = spawner or spawn_process
        self._which = which

    async def is_available(self) -> bool:
        return bool(self._which(self.command))

    async def stream(self, question: str, context: AiContext) -> AsyncIterator[str]:
        executable = self._which(self.command)
        if not executable:
            raise AiBackendUnavailableError(
                f"{self.command} CLI not installed",
                hint=f"Install {self.command} or set ai_command in config.toml.",
            )
        prompt = build_prompt(question, context)
        logger.info("ai-event step=query command=%s cwd=%s", self.command, context.path)
        try:
            process = await self._spawn([executable, prompt], cwd=context.path or None)
        except ChildSpawnFailedError as exc:
            raise AiQueryFailedError(
                f"Failed to execute {self.command} CLI: {exc.message}",
                hint=exc.hint,
            ) from exc

        stderr_task = asyncio.ensure_future(process.stderr.read() if process.stderr is not None else _empty())
        try:
            stdout = process.stdout
            while stdout is not None:
                chunk = await stdout.read(STREAM_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk.decode("utf-8", errors="replace")
            code = await process.wait()
            error_output = (await stderr_task).decode("utf-8", errors="replace").strip()
        finally:
            if not stderr_task.done():
                stderr_task.cancel()
                terminate_process(process)
        if code != 0:
            logger.error("ai-event step=query-failed code=%s stderr=%s", code, truncate_log(error_output))
            raise AiQueryFailedError(
                f"{self.command} CLI error: {error_output or f'exit code {code}'}",
            )
        logger.info("ai-event step=query-complete")


async def _empty() -> bytes:
    return b""
