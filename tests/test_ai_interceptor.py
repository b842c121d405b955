from __future__ import annotations

import asyncio

import pytest
from fakes import FakeBackend, FakeSession, FakeSpawner

from devharbor.ai.context import AiContext
from devharbor.ai.interceptor import PROMPT, AiInterceptor
from devharbor.errors import AiQueryFailedError, ChildSpawnFailedError
from devharbor.events import EventBus, OutputEvent
from devharbor.models import TerminalMode, TerminalSessionState
from devharbor.terminal.session import TerminalSession

pytestmark = pytest.mark.critical_regression

APP = "/work/app"


class _Harness:
    def __init__(self, backend: FakeBackend, **kwargs: object) -> None:
        self.written: list[str] = []
        self.session = FakeSession()
        self.executed_callbacks: list[tuple[str, str]] = []
        self.modes: list[TerminalMode] = []
        self.interceptor = AiInterceptor(
            session=self.session,
            backend=backend,
            write=self.written.append,
            state=TerminalSessionState(project_path=APP),
            context_provider=lambda: AiContext(kind="node", name="app", path=APP),
            drain_interval=0.001,
            execute_delay=0.01,
            on_mode_change=self.modes.append,
            on_command_executed=lambda command, path: self.executed_callbacks.append((command, path)),
            **kwargs,
        )

    @property
    def screen(self) -> str:
        return "".join(self.written)

    def type(self, text: str) -> None:
        for char in text:
            self.interceptor.handle_input(char)

    async def ask(self, question: str) -> None:
        self.interceptor.toggle(TerminalMode.AI_QUERY)
        self.type(question)
        self.interceptor.handle_input("\r")
        await self.interceptor.wait_idle()


def test_toggle_switches_modes_and_clears_buffer() -> None:
    harness = _Harness(FakeBackend())
    interceptor = harness.interceptor

    assert interceptor.toggle() == TerminalMode.AI_QUERY
    harness.type("half typed")
    assert interceptor.state.pending_input == "half typed"
    assert interceptor.toggle() == TerminalMode.SHELL

    assert interceptor.state.pending_input == ""
    assert harness.modes == [TerminalMode.AI_QUERY, TerminalMode.SHELL]
    assert "AI: Type your question" in harness.screen
    assert "Normal Mode" in harness.screen


def test_shell_mode_forwards_keystrokes() -> None:
    async def scenario() -> _Harness:
        harness = _Harness(FakeBackend())
        harness.interceptor.handle_input("l")
        harness.interceptor.handle_input("\r")
        await harness.interceptor.wait_idle()
        return harness

    harness = asyncio.run(scenario())

    assert harness.session.inputs == ["l", "\r"]
    assert harness.screen == ""


def test_ai_mode_line_editing() -> None:
    harness = _Harness(FakeBackend())
    interceptor = harness.interceptor
    interceptor.toggle(TerminalMode.AI_QUERY)
    harness.written.clear()

    harness.type("abc")
    interceptor.handle_input("\x7f")
    interceptor.handle_input("\x08")
    interceptor.handle_input("\x1b[A")
    interceptor.handle_input("\t")

    assert interceptor.state.pending_input == "a"
    assert harness.written == ["a", "b", "c", "\b \b", "\b \b"]

    interceptor.handle_input("\x03")

    assert interceptor.state.pending_input == ""
    assert harness.written[-1] == "^C\r\n" + PROMPT
    assert harness.session.inputs == []


def test_empty_submit_only_redraws_prompt() -> None:
    harness = _Harness(FakeBackend(["never"]))
    harness.interceptor.toggle(TerminalMode.AI_QUERY)
    harness.type("   ")

    assert harness.interceptor.handle_input("\r") is None
    assert harness.written[-1] == "\r\n" + PROMPT


def test_answer_is_rendered_and_recorded() -> None:
    backend = FakeBackend(["Use **npm**", " to install.\n", "Done"])
    harness = _Harness(backend)

    asyncio.run(harness.ask("how do I install?"))

    assert backend.questions[0][0] == "how do I install?"
    assert "\x1b[1mnpm\x1b[22m to install.\r\n" in harness.screen
    assert harness.screen.endswith("Done\r\n\r\n" + PROMPT)
    assert harness.interceptor.mode == TerminalMode.AI_QUERY
    transcript = harness.interceptor.state.transcript
    assert [entry.role for entry in transcript] == ["user", "assistant"]
    assert transcript[1].text == "Use **npm** to install.\nDone"
    assert harness.session.executed == []


def test_execute_directive_runs_command_once_after_answer() -> None:
    backend = FakeBackend(["Start the tests with:\n", "<<<EXECUTE:", " npm test>>>\n", "Good luck"])
    harness = _Harness(backend)

    asyncio.run(harness.ask("run the tests"))

    assert harness.session.executed == [("npm test", APP)]
    assert harness.executed_callbacks == [("npm test", APP)]
    assert harness.interceptor.mode == TerminalMode.SHELL
    assert harness.modes[-1] == TerminalMode.SHELL
    assert "Auto-Running: npm test" in harness.screen
    assert harness.screen.index("Good luck") < harness.screen.index("Auto-Running")


def test_execute_directive_survives_spawn_failure() -> None:
    bus = EventBus()
    spawner = FakeSpawner(error=ChildSpawnFailedError("Failed to start /bin/sh."))
    session = TerminalSession(bus=bus, spawner=spawner, shell="/bin/sh")
    executed: list[tuple[str, str]] = []
    written: list[str] = []
    interceptor = AiInterceptor(
        session=session,
        backend=FakeBackend(["<<<EXECUTE: npm test>>>"]),
        write=written.append,
        state=TerminalSessionState(project_path=APP),
        context_provider=lambda: AiContext(kind="node", name="app", path=APP),
        drain_interval=0.001,
        execute_delay=0.0,
        on_command_executed=lambda command, path: executed.append((command, path)),
    )

    async def scenario():
        interceptor.toggle(TerminalMode.AI_QUERY)
        for char in "go\r":
            interceptor.handle_input(char)
        await interceptor.wait_idle()

    asyncio.run(scenario())

    assert executed == [("npm test", APP)]
    output = "".join(event.text for event in bus.history(APP) if isinstance(event, OutputEvent))
    assert "Error: Failed to start /bin/sh." in output


def test_backend_unavailable_is_reported_inline() -> None:
    harness = _Harness(FakeBackend(["x"], available=False))

    asyncio.run(harness.ask("hello"))

    assert "Error: AI backend not installed" in harness.screen
    assert harness.screen.endswith(PROMPT)
    assert harness.interceptor.mode == TerminalMode.AI_QUERY
    assert harness.session.executed == []


def test_query_failure_is_reported_inline() -> None:
    backend = FakeBackend(["<<<EXECUTE: ls>>>"], error=AiQueryFailedError("gemini CLI error: quota exceeded"))
    harness = _Harness(backend)

    asyncio.run(harness.ask("hello"))

    assert "Error: gemini CLI error: quota exceeded" in harness.screen
    assert harness.session.executed == []
    assert harness.interceptor.mode == TerminalMode.AI_QUERY


def test_unexpected_backend_exception_is_contained() -> None:
    harness = _Harness(FakeBackend(error=RuntimeError("socket closed")))

    asyncio.run(harness.ask("hello"))

    assert "Error: socket closed" in harness.screen


def test_leaving_ai_mode_discards_in_flight_answer() -> None:
    async def scenario() -> _Harness:
        gate = asyncio.Event()
        backend = FakeBackend(["Thinking\n"], gate=gate, tail=["<<<EXECUTE: rm -rf build>>>"])
        harness = _Harness(backend)
        harness.interceptor.toggle(TerminalMode.AI_QUERY)
        harness.type("clean")
        harness.interceptor.handle_input("\r")
        for _ in range(200):
            await asyncio.sleep(0.001)
            if "Thinking" in harness.screen:
                break
        harness.interceptor.toggle(TerminalMode.SHELL)
        gate.set()
        await harness.interceptor.wait_idle()
        return harness

    harness = asyncio.run(scenario())

    assert "Thinking" in harness.screen
    assert harness.session.executed == []
    assert "Auto-Running" not in harness.screen
    assert [entry.role for entry in harness.interceptor.state.transcript] == ["user"]
