"""Shell program resolution for interactive terminal sessions."""

from __future__ import annotations

import os
import shutil

from devharbor.errors import ChildSpawnFailedError

FALLBACK_SHELL = "/bin/bash"
_LOGIN_SHELLS = {"bash", "zsh", "sh", "fish", "ksh", "dash"}


def resolve_shell(configured: str = "") -> str:
    for candidate in (configured.strip(), os.environ.get("SHELL", "").strip(), FALLBACK_SHELL):
        if candidate and (os.path.isabs(candidate) or shutil.which(candidate)):
            return candidate
    raise ChildSpawnFailedError(
        "No usable shell found.",
        hint="Set the 'shell' option in config.toml or the SHELL environment variable.",
    )


def build_shell_command(shell: str) -> list[str]:
    name = os.path.basename(shell)
    if name in _LOGIN_SHELLS:
        return [shell, "-l"]
    return [shell]


def build_one_off_command(shell: str, command: str) -> list[str]:
    name = os.path.basename(shell)
    if name in _LOGIN_SHELLS:
        return [shell, "-lc", command]
    return [shell, "-c", command]


def build_shell_env(base: dict[str, str] | None = None) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    env.setdefault("TERM", "xterm-256color")
    env["FORCE_COLOR"] = "1"
    return env
