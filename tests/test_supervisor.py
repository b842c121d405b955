from __future__ import annotations

import asyncio
import signal

import pytest
from fakes import FakeInspector, FakeProcess, FakeSpawner

from devharbor.errors import ChildSpawnFailedError, ProcessLookupFailedError
from devharbor.events import EventBus, ExitEvent, OutputEvent, PortDetected, StatusChanged
from devharbor.models import Project, ProjectKind, ProjectStatus
from devharbor.process.ports import PortAllocator
from devharbor.process.registry import ProcessRegistry
from devharbor.process.supervisor import ProcessSupervisor, build_child_env, build_launch_command
from devharbor.store import MemoryProjectStore

pytestmark = pytest.mark.critical_regression

APP = "/work/app"


def _make(
    spawner: FakeSpawner,
    *,
    project: Project | None = None,
    inspector: FakeInspector | None = None,
    probe=lambda port: True,
) -> tuple[ProcessSupervisor, MemoryProjectStore, EventBus, ProcessRegistry]:
    store = MemoryProjectStore([project or Project(path=APP, kind=ProjectKind.NODE)])
    bus = EventBus()
    registry = ProcessRegistry()
    supervisor = ProcessSupervisor(
        registry=registry,
        bus=bus,
        store=store,
        allocator=PortAllocator(probe=probe),
        inspector=inspector or FakeInspector(),
        spawner=spawner,
        stop_grace_seconds=0.01,
        base_env={"PATH": "/usr/bin"},
    )
    return supervisor, store, bus, registry


def _output(bus: EventBus) -> str:
    return "".join(event.text for event in bus.history() if isinstance(event, OutputEvent))


def test_build_launch_command_table() -> None:
    assert build_launch_command(ProjectKind.NODE) == ["npm", "start"]
    assert build_launch_command(ProjectKind.NODE, "dev") == ["npm", "run", "dev"]
    assert build_launch_command(ProjectKind.PYTHON)[1] == "main.py"
    assert build_launch_command(ProjectKind.RUST) == ["cargo", "run"]
    assert build_launch_command(ProjectKind.GO) == ["go", "run", "."]
    assert build_launch_command(ProjectKind.DOCKER) == ["docker", "compose", "up"]
    assert build_launch_command(ProjectKind.OTHER) is None
    assert build_launch_command(ProjectKind.UNKNOWN) is None


def test_build_child_env_sets_port_and_color() -> None:
    env = build_child_env(4100, {"PATH": "/bin", "PORT": "1"})

    assert env == {"PATH": "/bin", "PORT": "4100", "FORCE_COLOR": "1", "PYTHONUNBUFFERED": "1"}


def test_start_runs_process_to_completion_and_reports_lifecycle() -> None:
    async def scenario():
        process = FakeProcess(stdout=[b"VITE ready\n  Local: http://localhost:5173/\n"], exit_code=0)
        spawner = FakeSpawner(process)
        supervisor, store, bus, registry = _make(spawner)

        managed = await supervisor.start(store.get(APP), "dev")
        assert managed is not None
        assert registry.get(APP) is managed
        await supervisor.wait_idle()
        return spawner, store, bus, registry

    spawner, store, bus, registry = asyncio.run(scenario())

    call = spawner.calls[0]
    assert call.command == ["npm", "run", "dev"]
    assert call.cwd == APP
    assert call.env["PORT"] == "3000"
    kinds = [type(event) for event in bus.history()]
    assert kinds[0] is StatusChanged
    assert PortDetected in kinds
    assert [event for event in bus.history() if isinstance(event, ExitEvent)] == [ExitEvent(APP, 0)]
    assert bus.history()[-1] == StatusChanged(APP, ProjectStatus.STOPPED)
    assert "Local: http://localhost:5173/" in _output(bus)
    assert "Process exited with code 0" in _output(bus)
    assert APP not in registry
    assert store.get(APP).status == ProjectStatus.STOPPED
    assert store.get(APP).port is None


def test_detected_port_is_persisted_while_running() -> None:
    async def scenario():
        process = FakeProcess(hold_open=True)
        supervisor, store, bus, _registry = _make(FakeSpawner(process))
        await supervisor.start(store.get(APP))
        process.stdout.feed(b"listening on port 8080\n")
        process.stdout.feed(b"still on port 8080\n")
        for _ in range(20):
            await asyncio.sleep(0)
        snapshot = store.get(APP)
        await supervisor.aclose()
        return snapshot, bus

    snapshot, bus = asyncio.run(scenario())

    assert snapshot.status == ProjectStatus.RUNNING
    assert snapshot.port == 8080
    assert [event.port for event in bus.history() if isinstance(event, PortDetected)] == [8080, 8080]


def test_start_moves_to_next_free_port() -> None:
    async def scenario():
        spawner = FakeSpawner(FakeProcess())
        supervisor, store, bus, _registry = _make(spawner, probe=lambda port: port != 3000)
        await supervisor.start(store.get(APP), port=3000)
        await supervisor.wait_idle()
        return spawner, bus

    spawner, bus = asyncio.run(scenario())

    assert spawner.calls[0].env["PORT"] == "3001"
    assert "Port 3000 is in use; starting on port 3001" in _output(bus)


def test_duplicate_start_returns_existing_handle() -> None:
    async def scenario():
        spawner = FakeSpawner(FakeProcess(hold_open=True))
        supervisor, store, bus, _registry = _make(spawner)
        first = await supervisor.start(store.get(APP))
        second = await supervisor.start(store.get(APP))
        await supervisor.aclose()
        return first, second, spawner, bus

    first, second, spawner, bus = asyncio.run(scenario())

    assert first is second
    assert len(spawner.calls) == 1
    assert "already running" in _output(bus)


def test_unsupported_kind_does_not_spawn() -> None:
    async def scenario():
        spawner = FakeSpawner()
        supervisor, store, bus, _registry = _make(spawner, project=Project(path=APP, kind=ProjectKind.OTHER))
        result = await supervisor.start(store.get(APP))
        return result, spawner, bus

    result, spawner, bus = asyncio.run(scenario())

    assert result is None
    assert spawner.calls == []
    assert "No launch command" in _output(bus)


def test_spawn_failure_is_reported_and_project_stays_stopped() -> None:
    async def scenario():
        spawner = FakeSpawner(error=ChildSpawnFailedError("Failed to start npm.", hint="No such file"))
        supervisor, store, bus, registry = _make(spawner)
        result = await supervisor.start(store.get(APP))
        return result, store, bus, registry

    result, store, bus, registry = asyncio.run(scenario())

    assert result is None
    assert APP not in registry
    assert "Failed to start npm." in _output(bus)
    assert store.get(APP).status == ProjectStatus.STOPPED
    assert bus.history()[-1] == StatusChanged(APP, ProjectStatus.STOPPED)


def test_stop_terminates_tracked_process() -> None:
    async def scenario():
        process = FakeProcess(hold_open=True)
        supervisor, store, bus, registry = _make(FakeSpawner(process))
        await supervisor.start(store.get(APP))
        await supervisor.stop(store.get(APP))
        assert APP not in registry
        await supervisor.wait_idle()
        return process, store, bus

    process, store, bus = asyncio.run(scenario())

    assert process.signals == [signal.SIGTERM]
    assert "[Stopped by user]" in _output(bus)
    assert store.get(APP).status == ProjectStatus.STOPPED
    assert store.get(APP).port is None


def test_stop_escalates_to_kill_after_grace_period() -> None:
    async def scenario():
        process = FakeProcess(hold_open=True, ignore_terminate=True)
        supervisor, store, _bus, _registry = _make(FakeSpawner(process))
        await supervisor.start(store.get(APP))
        await supervisor.stop(store.get(APP))
        await supervisor.wait_idle()
        return process

    process = asyncio.run(scenario())

    assert process.signals == [signal.SIGTERM, signal.SIGKILL]
    assert process.returncode == -signal.SIGKILL


def test_stop_is_idempotent() -> None:
    async def scenario():
        supervisor, store, bus, _registry = _make(FakeSpawner())
        await supervisor.stop(store.get(APP))
        await supervisor.stop(store.get(APP))
        return store, bus

    store, bus = asyncio.run(scenario())

    assert store.get(APP).status == ProjectStatus.STOPPED
    assert _output(bus).count("[Stopped by user]") == 2


def test_stop_untracked_project_kills_listener_on_known_port() -> None:
    project = Project(path=APP, kind=ProjectKind.NODE, status=ProjectStatus.RUNNING, port=4000)
    inspector = FakeInspector(ports={777: 4000, 888: 5000})

    async def scenario():
        supervisor, store, bus, _registry = _make(FakeSpawner(), project=project, inspector=inspector)
        await supervisor.stop(store.get(APP))
        return store, bus

    store, bus = asyncio.run(scenario())

    assert inspector.killed == [(777, True)]
    assert store.get(APP).status == ProjectStatus.STOPPED
    assert store.get(APP).port is None
    assert bus.history()[-1] == StatusChanged(APP, ProjectStatus.STOPPED)


def test_stop_by_port_survives_lookup_failure() -> None:
    project = Project(path=APP, kind=ProjectKind.NODE, status=ProjectStatus.RUNNING, port=4000)
    inspector = FakeInspector(error=ProcessLookupFailedError("denied"))

    async def scenario():
        supervisor, store, _bus, _registry = _make(FakeSpawner(), project=project, inspector=inspector)
        await supervisor.stop(store.get(APP))
        return store

    store = asyncio.run(scenario())

    assert inspector.killed == []
    assert store.get(APP).status == ProjectStatus.STOPPED


def test_restart_after_stop_keeps_new_process_tracked() -> None:
    async def scenario():
        first = FakeProcess(hold_open=True, ignore_terminate=True)
        second = FakeProcess(hold_open=True)
        supervisor, store, _bus, registry = _make(FakeSpawner(first, second))
        await supervisor.start(store.get(APP))
        await supervisor.stop(store.get(APP))
        replacement = await supervisor.start(store.get(APP))
        first.finish(0)
        for _ in range(10):
            await asyncio.sleep(0)
        tracked = registry.get(APP)
        running = store.get(APP).status
        await supervisor.aclose()
        return replacement, tracked, running

    replacement, tracked, running = asyncio.run(scenario())

    assert tracked is replacement
    assert running == ProjectStatus.RUNNING


def test_start_replaces_exited_process_whose_pipes_are_still_open() -> None:
    async def scenario():
        first = FakeProcess(hold_open=True)
        second = FakeProcess(hold_open=True)
        spawner = FakeSpawner(first, second)
        supervisor, store, bus, registry = _make(spawner)

        old = await supervisor.start(store.get(APP))
        # Exit status is known but a descendant still holds stdout/stderr.
        first.returncode = 1
        new = await supervisor.start(store.get(APP))

        assert new is not None and new is not old
        assert new.process is second
        assert registry.get(APP) is new
        assert len(spawner.calls) == 2

        first.stdout.close()
        first.stderr.close()
        first._exited.set()
        await asyncio.sleep(0.01)
        assert registry.get(APP) is new
        assert store.get(APP).status is ProjectStatus.RUNNING

        await supervisor.aclose()
        return registry

    registry = asyncio.run(scenario())

    assert len(registry) == 0


class _YieldingSpawner(FakeSpawner):
    async def __call__(self, command, **kwargs):
        process = await super().__call__(command, **kwargs)
        await asyncio.sleep(0)
        return process


def test_start_keeps_registered_process_when_concurrent_start_wins() -> None:
    async def scenario():
        first = FakeProcess(hold_open=True)
        second = FakeProcess(hold_open=True)
        spawner = _YieldingSpawner(first, second)
        supervisor, store, bus, registry = _make(spawner)

        results = await asyncio.gather(supervisor.start(store.get(APP)), supervisor.start(store.get(APP)))

        assert results[0] is results[1]
        assert registry.get(APP) is results[0]
        loser = second if results[0].process is first else first
        assert signal.SIGTERM in loser.signals
        await supervisor.aclose()

    asyncio.run(scenario())
