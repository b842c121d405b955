"""Interactive terminal session domain package."""

from .backend import build_one_off_command, build_shell_command, resolve_shell
from .session import TerminalSession

__all__ = [
    "build_one_off_command",
    "build_shell_command",
    "resolve_shell",
    "TerminalSession",
]
