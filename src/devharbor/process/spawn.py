"""Async child process spawning and signalling helpers."""

from __future__ import annotations

import asyncio
import logging as py_logging
import os
import signal
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import Protocol

from devharbor.errors import ChildSpawnFailedError

logger = py_logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096


class ChildProcess(Protocol):
    """Subset of :class:`asyncio.subprocess.Process` the core relies on."""

    pid: int
    returncode: int | None
    stdin: asyncio.StreamWriter | None
    stdout: asyncio.StreamReader | None
    stderr: asyncio.StreamReader | None

    def send_signal(self, sig: int) -> None: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...

    async def wait(self) -> int: ...


Spawner = Callable[..., Awaitable[ChildProcess]]


async def spawn_process(
    command: list[str],
    *,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    with_stdin: bool = False,
) -> ChildProcess:
    if not command:
        raise ChildSpawnFailedError(
            "Process command cannot be empty.",
            hint="Provide a launch command for the project.",
        )
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=cwd or None,
            env=env,
            stdin=asyncio.subprocess.PIPE if with_stdin else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=os.name == "posix",
        )
    except OSError as exc:
        raise ChildSpawnFailedError(
            f"Failed to start {command[0]}.",
            hint=exc.strerror or str(exc) or "Check that the program is installed and on PATH.",
        ) from exc
    logger.debug("Spawned pid=%s command=%s cwd=%s", process.pid, command, cwd)
    return process


def signal_process(process: ChildProcess, sig: int) -> None:
    """Signal the child's process group when it leads one, else the child alone."""
    if process.returncode is not None:
        return
    if os.name == "posix":
        try:
            pgid = os.getpgid(process.pid)
        except (ProcessLookupError, PermissionError, OSError):
            pgid = None
        if pgid is not None and pgid == process.pid:
            with suppress(ProcessLookupError, PermissionError):
                os.killpg(pgid, sig)
                return
    with suppress(ProcessLookupError):
        process.send_signal(sig)


def terminate_process(process: ChildProcess) -> None:
    signal_process(process, signal.SIGTERM)


def kill_process(process: ChildProcess) -> None:
    signal_process(process, getattr(signal, "SIGKILL", signal.SIGTERM))


async def pump_stream(
    stream: asyncio.StreamReader | None,
    on_chunk: Callable[[bytes], None],
    *,
    chunk_size: int = READ_CHUNK_SIZE,
) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            return
        on_chunk(chunk)
