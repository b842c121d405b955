"""Terminal input interception for AI question/answer exchanges.

The interceptor sits between the terminal surface and the persistent shell.
In ``shell`` mode keystrokes pass straight through to :class:`TerminalSession`.
In ``ai-query`` mode they are buffered and echoed locally; Enter submits the
buffer to an :class:`AiBackend`. Answers are drained into the terminal at a
fixed cadence, and a ``<<<EXECUTE: command>>>`` tag in a finished answer hands
the command back to the terminal session.
"""

from __future__ import annotations

import asyncio
import logging as py_logging
from collections.abc import Callable
from dataclasses import dataclass

from devharbor.ai.backend import AiBackend
from devharbor.ai.context import AiContext
from devharbor.ai.render import find_execute_tag, render_markup
from devharbor.errors import AiBackendUnavailableError, AiQueryFailedError, DevHarborError
from devharbor.models import TerminalMode, TerminalSessionState, TranscriptEntry
from devharbor.terminal.session import TerminalSession

logger = py_logging.getLogger(__name__)

DRAIN_INTERVAL_SECONDS = 0.03
EXECUTE_DELAY_SECONDS = 0.8
DRAIN_DIVISOR = 50

ENTER = 13
BACKSPACE_CODES = {8, 127}
CTRL_C = 3

PROMPT = "\x1b[36m❯\x1b[0m "
AI_BANNER = "\r\n\x1b[36mAI: Type your question and press Enter\x1b[0m\r\n"
SHELL_BANNER = "\r\n\x1b[36mNormal Mode\x1b[0m\r\n"
QUERYING_LINE = "\x1b[36mQuerying AI...\x1b[0m\r\n"
CLEAR_QUERYING_LINE = "\x1b[1A\r\x1b[K"

Writer = Callable[[str], None]


@dataclass
class _ResponseStream:
    full: str = ""
    display: str = ""
    tail: str = ""
    finished: bool = False
    error: DevHarborError | None = None

    def feed(self, chunk: str) -> None:
        self.full += chunk
        self.tail += chunk
        if "\n" in self.tail:
            head, self.tail = self.tail.rsplit("\n", 1)
            self.display += render_markup(head + "\n")

    def finish(self) -> None:
        if self.tail:
            self.display += render_markup(self.tail)
            self.tail = ""
        self.finished = True

    def take(self) -> str:
        size = max(1, len(self.display) // DRAIN_DIVISOR)
        piece, self.display = self.display[:size], self.display[size:]
        return piece


class AiInterceptor:
    def __init__(
        self,
        *,
        session: TerminalSession,
        backend: AiBackend,
        write: Writer,
        state: TerminalSessionState | None = None,
        context_provider: Callable[[], AiContext] | None = None,
        drain_interval: float = DRAIN_INTERVAL_SECONDS,
        execute_delay: float = EXECUTE_DELAY_SECONDS,
        on_mode_change: Callable[[TerminalMode], None] | None = None,
        on_command_executed: Callable[[str, str], None] | None = None,
    ) -> None:
        self.session = session
        self.backend = backend
        self._write = write
        self.state = state or TerminalSessionState()
        self._context_provider = context_provider
        self.drain_interval = drain_interval
        self.execute_delay = execute_delay
        self._on_mode_change = on_mode_change
        self._on_command_executed = on_command_executed
        self._generation = 0
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def mode(self) -> TerminalMode:
        return self.state.mode

    def toggle(self, mode: TerminalMode | None = None) -> TerminalMode:
        if mode is None:
            mode = TerminalMode.SHELL if self.state.mode == TerminalMode.AI_QUERY else TerminalMode.AI_QUERY
        self.state.mode = mode
        self.state.pending_input = ""
        # Any in-flight answer stops drawing once the mode flips.
        self._generation += 1
        logger.info("ai-event project=%s step=mode mode=%s", self.state.project_path, mode.value)
        if mode == TerminalMode.AI_QUERY:
            self._write(AI_BANNER + PROMPT)
        else:
            self._write(SHELL_BANNER)
        if self._on_mode_change is not None:
            self._on_mode_change(mode)
        return mode

    def handle_input(self, data: str) -> asyncio.Task[None] | None:
        if not data:
            return None
        if self.state.mode == TerminalMode.SHELL:
            return self._track(self.session.input(data))

        code = ord(data[0])
        if code == ENTER:
            question = self.state.pending_input.strip()
            self.state.pending_input = ""
            if not question:
                self._write("\r\n" + PROMPT)
                return None
            self._write("\r\n")
            return self._track(self.ask(question))
        if code in BACKSPACE_CODES:
            if self.state.pending_input:
                self.state.pending_input = self.state.pending_input[:-1]
                self._write("\b \b")
            return None
        if code == CTRL_C:
            self.state.pending_input = ""
            self._write("^C\r\n" + PROMPT)
            return None
        if code < 32:
            return None
        self.state.pending_input += data
        self._write(data)
        return None

    async def ask(self, question: str) -> None:
        self._generation += 1
        generation = self._generation
        self.state.transcript.append(TranscriptEntry(role="user", text=question))
        self._write(QUERYING_LINE)

        if not await self.backend.is_available():
            logger.warning("ai-event step=backend-unavailable")
            self._report_error(AiBackendUnavailableError("AI backend not installed"))
            return

        context = self._context()
        stream = _ResponseStream()
        self._track(self._read(stream, question, context))
        await self._drain(stream, generation, context)

    def _context(self) -> AiContext:
        if self._context_provider is not None:
            return self._context_provider()
        return AiContext(path=self.state.project_path or "")

    async def _read(self, stream: _ResponseStream, question: str, context: AiContext) -> None:
        try:
            async for chunk in self.backend.stream(question, context):
                stream.feed(chunk)
        except DevHarborError as exc:
            stream.error = exc
        except Exception as exc:
            logger.exception("ai-event step=stream-crashed")
            stream.error = AiQueryFailedError(str(exc) or type(exc).__name__)
        finally:
            stream.finish()

    async def _drain(self, stream: _ResponseStream, generation: int, context: AiContext) -> None:
        started = False
        while True:
            if generation != self._generation:
                logger.debug("ai-event step=display-abandoned generation=%s", generation)
                return
            if stream.error is not None:
                self._report_error(stream.error)
                return
            if stream.display:
                if not started:
                    self._write(CLEAR_QUERYING_LINE)
                    started = True
                self._write(stream.take())
            elif stream.finished:
                break
            await asyncio.sleep(self.drain_interval)

        self.state.transcript.append(TranscriptEntry(role="assistant", text=stream.full))
        command = find_execute_tag(stream.full)
        if command is None:
            self._write("\r\n\r\n" + PROMPT)
            return
        await self._execute(command, context)

    async def _execute(self, command: str, context: AiContext) -> None:
        project_path = self.state.project_path or context.path
        self._write(f"\r\n\x1b[36mAuto-Running: {command}\x1b[0m\r\n")
        self.toggle(TerminalMode.SHELL)
        await asyncio.sleep(self.execute_delay)
        if not project_path:
            logger.warning("ai-event step=execute-skipped reason=no-project command=%s", command)
            self._write("\x1b[31mError: No project directory to run the command in\x1b[0m\r\n")
            return
        logger.info("ai-event project=%s step=execute command=%s", project_path, command)
        await self.session.execute_once(command, project_path)
        if self._on_command_executed is not None:
            self._on_command_executed(command, project_path)

    def _report_error(self, error: DevHarborError) -> None:
        logger.warning("ai-event step=query-error error=%s", error.message)
        self._write(f"\r\n\x1b[31mError: {error.message}\x1b[0m\r\n")
        self._write(PROMPT)

    def _track(self, coro: object) -> asyncio.Task[None]:
        task = asyncio.ensure_future(coro)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
