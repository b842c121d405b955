"""Deterministic error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    PORT_ERROR = 5
    PROCESS_ERROR = 6
    VALIDATION_ERROR = 7
    AI_ERROR = 8
    GIT_ERROR = 9


@dataclass
class DevHarborError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


@dataclass
class NoPortAvailableError(DevHarborError):
    code: ExitCode = ExitCode.PORT_ERROR


@dataclass
class ChildSpawnFailedError(DevHarborError):
    code: ExitCode = ExitCode.PROCESS_ERROR


@dataclass
class ProcessLookupFailedError(DevHarborError):
    code: ExitCode = ExitCode.PROCESS_ERROR


@dataclass
class AiBackendUnavailableError(DevHarborError):
    code: ExitCode = ExitCode.AI_ERROR


@dataclass
class AiQueryFailedError(DevHarborError):
    code: ExitCode = ExitCode.AI_ERROR


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
