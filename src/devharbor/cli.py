"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import logging as py_logging
import sys
from collections.abc import Callable, Sequence
from pathlib import Path

from .config import AppConfig, load_config
from .errors import DevHarborError, ExitCode, user_facing_error
from .events import ExitEvent, OutputEvent, PortDetected, StatusChanged
from .logging import configure_logging, default_log_path, resolve_level
from .manager import ProjectManager
from .models import Project

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")

ManagerFactory = Callable[[AppConfig], ProjectManager]


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def _port_type(value: str) -> int:
    try:
        port = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("--port must be an integer") from exc
    if port < 1 or port > 65535:
        raise argparse.ArgumentTypeError("--port must be between 1 and 65535")
    return port


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="devharbor")
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--log-level", type=_log_level_type, default="INFO")
    parser.add_argument("--log-file", type=Path, default=None)

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("list", help="Show known projects")

    add = commands.add_parser("add", help="Import an existing project directory")
    add.add_argument("path", type=Path)

    start = commands.add_parser("start", help="Run a project in the foreground")
    start.add_argument("path", type=Path)
    start.add_argument("--script", default=None)
    start.add_argument("--port", type=_port_type, default=None)

    stop = commands.add_parser("stop", help="Stop a project's dev server")
    stop.add_argument("path", type=Path)

    commands.add_parser("check", help="Reconcile stored status with running processes")
    commands.add_parser("watch", help="Reconcile periodically and print changes")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def format_project(project: Project) -> str:
    port = str(project.port) if project.port else "-"
    return f"{project.name:<24} {project.kind.value:<8} {project.status.value:<8} {port:<6} {project.path}"


def _print_projects(projects: list[Project]) -> None:
    if not projects:
        print("No projects yet. Add one with `devharbor add PATH`.")
        return
    for project in projects:
        print(format_project(project))


async def _run_start(manager: ProjectManager, namespace: argparse.Namespace) -> int:
    project = manager.import_project(namespace.path)
    subscription = manager.bus.subscribe(project_id=project.path)
    try:
        managed = await manager.start(project.path, namespace.script, namespace.port)
        if managed is None:
            while subscription.pending():
                event = subscription.get_nowait()
                if isinstance(event, OutputEvent):
                    sys.stdout.write(event.text)
            sys.stdout.flush()
            return int(ExitCode.PROCESS_ERROR)
        async for event in subscription:
            if isinstance(event, OutputEvent):
                sys.stdout.write(event.text)
                sys.stdout.flush()
            elif isinstance(event, ExitEvent):
                return int(ExitCode.SUCCESS) if event.code == 0 else int(ExitCode.PROCESS_ERROR)
        return int(ExitCode.SUCCESS)
    finally:
        subscription.close()
        await manager.aclose()


async def _run_stop(manager: ProjectManager, namespace: argparse.Namespace) -> int:
    path = str(namespace.path.expanduser().resolve())
    try:
        await manager.stop(path)
    finally:
        await manager.aclose()
    print(f"Stopped {path}")
    return int(ExitCode.SUCCESS)


async def _run_check(manager: ProjectManager) -> int:
    try:
        projects = await manager.check_all_statuses()
    finally:
        await manager.aclose()
    _print_projects(projects)
    return int(ExitCode.SUCCESS)


async def _run_watch(manager: ProjectManager) -> int:
    subscription = manager.bus.subscribe()
    manager.start_background()
    try:
        async for event in subscription:
            if isinstance(event, StatusChanged):
                print(f"{event.project_id}: {event.status.value}")
            elif isinstance(event, PortDetected):
                print(f"{event.project_id}: port {event.port}")
    finally:
        subscription.close()
        await manager.aclose()
    return int(ExitCode.SUCCESS)


def run_cli_flow(namespace: argparse.Namespace, manager: ProjectManager) -> int:
    command = namespace.command
    if command == "list":
        _print_projects(manager.projects())
        return int(ExitCode.SUCCESS)
    if command == "add":
        project = manager.import_project(namespace.path)
        print(format_project(project))
        return int(ExitCode.SUCCESS)
    if command == "start":
        return asyncio.run(_run_start(manager, namespace))
    if command == "stop":
        return asyncio.run(_run_stop(manager, namespace))
    if command == "check":
        return asyncio.run(_run_check(manager))
    if command == "watch":
        return asyncio.run(_run_watch(manager))
    raise DevHarborError(
        f"Unknown command: {command}",
        code=ExitCode.INVALID_ARGS,
        hint="Run `devharbor --help` for the list of commands.",
    )


def main(
    argv: Sequence[str] | None = None,
    *,
    manager_factory: ManagerFactory | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level, log_file=log_path)

    try:
        config = load_config(namespace.config)
        factory = manager_factory or ProjectManager
        manager = factory(config)
        logger.debug("Starting CLI flow command=%s", namespace.command)
        return run_cli_flow(namespace, manager)
    except KeyboardInterrupt:
        logger.info("Interrupted by user command=%s", namespace.command)
        return int(ExitCode.SUCCESS)
    except DevHarborError as exc:
        logger.error(
            "Handled DevHarborError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=resolve_level(namespace.log_level) <= py_logging.DEBUG,
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        hint = f"Inspect logs: {log_path}"
        print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
