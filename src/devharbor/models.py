"""Project, process and terminal session domain models."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ProjectKind(str, Enum):
    NODE = "node"
    PYTHON = "python"
    RUST = "rust"
    GO = "go"
    DOCKER = "docker"
    OTHER = "other"
    UNKNOWN = "unknown"


class ProjectStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class TerminalMode(str, Enum):
    SHELL = "shell"
    AI_QUERY = "ai-query"


LOCAL_ORIGIN = "local"


@dataclass
class Project:
    path: str
    name: str = ""
    kind: ProjectKind = ProjectKind.UNKNOWN
    origin: str = LOCAL_ORIGIN
    status: ProjectStatus = ProjectStatus.STOPPED
    port: int | None = None
    branch: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.path.rstrip("/\\").replace("\\", "/").rsplit("/", 1)[-1] or self.path

    @property
    def is_running(self) -> bool:
        return self.status == ProjectStatus.RUNNING

    def to_dict(self) -> dict[str, object]:
        return {
            "path": self.path,
            "name": self.name,
            "type": self.kind.value,
            "url": self.origin,
            "status": self.status.value,
            "port": self.port,
            "branch": self.branch,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Project:
        path = str(raw.get("path", "")).strip()
        if not path:
            raise ValueError("Project path is required")
        return cls(
            path=path,
            name=str(raw.get("name", "") or "").strip(),
            kind=_coerce_kind(raw.get("type", raw.get("kind"))),
            origin=str(raw.get("url", raw.get("origin")) or LOCAL_ORIGIN),
            status=_coerce_status(raw.get("status")),
            port=_coerce_port(raw.get("port")),
            branch=str(raw.get("branch", "") or ""),
        )


@dataclass
class ManagedProcess:
    project_path: str
    process: Any
    port: int | None = None
    started_at: float = field(default_factory=time.time)

    @property
    def pid(self) -> int | None:
        return getattr(self.process, "pid", None)

    @property
    def exited(self) -> bool:
        return getattr(self.process, "returncode", None) is not None


@dataclass(frozen=True)
class TranscriptEntry:
    role: str
    text: str


@dataclass
class TerminalSessionState:
    project_path: str | None = None
    mode: TerminalMode = TerminalMode.SHELL
    pending_input: str = ""
    transcript: list[TranscriptEntry] = field(default_factory=list)


def _coerce_kind(value: object) -> ProjectKind:
    normalized = str(value or "").strip().lower()
    for kind in ProjectKind:
        if kind.value == normalized:
            return kind
    return ProjectKind.UNKNOWN


def _coerce_status(value: object) -> ProjectStatus:
    if str(value or "").strip().lower() == ProjectStatus.RUNNING.value:
        return ProjectStatus.RUNNING
    return ProjectStatus.STOPPED


def _coerce_port(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 0 < value <= 65535 else None
    if isinstance(value, str) and value.strip().isdigit():
        return _coerce_port(int(value.strip()))
    return None
