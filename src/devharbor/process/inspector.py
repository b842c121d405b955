"""OS process table inspection backed by psutil."""

from __future__ import annotations

import logging as py_logging
import os
import signal
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

import psutil

from devharbor.errors import ProcessLookupFailedError

logger = py_logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    cwd: str
    name: str = ""


class ProcessInspector(Protocol):
    def list_processes(self) -> list[ProcessInfo]: ...

    def listening_ports(self, pids: Iterable[int]) -> dict[int, int]: ...

    def pids_listening_on(self, port: int) -> list[int]: ...

    def kill(self, pid: int, *, force: bool = True) -> bool: ...


def path_contains(root: str, candidate: str) -> bool:
    """True when ``candidate`` equals ``root`` or is nested under it."""
    base = os.path.normpath(root)
    target = os.path.normpath(candidate)
    if target == base:
        return True
    prefix = base if base.endswith(os.sep) else base + os.sep
    return target.startswith(prefix)


def _connections_for(process: psutil.Process) -> list[object]:
    getter = getattr(process, "net_connections", None) or process.connections
    return list(getter(kind="inet"))


class PsutilInspector:
    def list_processes(self) -> list[ProcessInfo]:
        result: list[ProcessInfo] = []
        try:
            iterator = psutil.process_iter(["pid", "name", "cwd"])
            for process in iterator:
                info = process.info
                cwd = info.get("cwd")
                if not cwd:
                    continue
                result.append(ProcessInfo(pid=int(info["pid"]), cwd=str(cwd), name=str(info.get("name") or "")))
        except psutil.Error as exc:
            raise ProcessLookupFailedError(
                "Failed to enumerate processes.",
                hint=str(exc) or "Check process inspection permissions.",
            ) from exc
        logger.debug("process-inspect listed=%s", len(result))
        return result

    def listening_ports(self, pids: Iterable[int]) -> dict[int, int]:
        wanted = set(pids)
        if not wanted:
            return {}
        ports: dict[int, int] = {}
        try:
            connections = psutil.net_connections(kind="inet")
        except psutil.AccessDenied:
            # macOS needs root for the system-wide table; fall back per process.
            return self._listening_ports_per_process(wanted)
        except psutil.Error as exc:
            raise ProcessLookupFailedError(
                "Failed to list network connections.",
                hint=str(exc) or "Check process inspection permissions.",
            ) from exc
        for conn in connections:
            if conn.status != psutil.CONN_LISTEN or conn.pid not in wanted or not conn.laddr:
                continue
            port = int(conn.laddr.port)
            if conn.pid not in ports or port < ports[conn.pid]:
                ports[conn.pid] = port
        return ports

    def _listening_ports_per_process(self, pids: set[int]) -> dict[int, int]:
        ports: dict[int, int] = {}
        for pid in sorted(pids):
            try:
                connections = _connections_for(psutil.Process(pid))
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
            listening = [
                int(conn.laddr.port)
                for conn in connections
                if conn.status == psutil.CONN_LISTEN and conn.laddr
            ]
            if listening:
                ports[pid] = min(listening)
        return ports

    def pids_listening_on(self, port: int) -> list[int]:
        try:
            connections = psutil.net_connections(kind="inet")
        except psutil.Error as exc:
            raise ProcessLookupFailedError(
                f"Failed to look up the process listening on port {port}.",
                hint=str(exc) or "Check process inspection permissions.",
            ) from exc
        pids = {
            int(conn.pid)
            for conn in connections
            if conn.pid and conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port
        }
        return sorted(pids)

    def kill(self, pid: int, *, force: bool = True) -> bool:
        try:
            process = psutil.Process(pid)
            if force:
                process.kill()
            else:
                process.send_signal(signal.SIGTERM)
        except psutil.NoSuchProcess:
            return False
        except psutil.Error as exc:
            raise ProcessLookupFailedError(
                f"Failed to terminate process {pid}.",
                hint=str(exc) or "Check process ownership.",
            ) from exc
        logger.info("process-inspect killed pid=%s force=%s", pid, force)
        return True
