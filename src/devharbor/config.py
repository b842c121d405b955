"""XDG config loading/saving."""

from __future__ import annotations

import os
import sys
from contextlib import suppress
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

DEFAULT_CONFIG_PATH = Path("~/.config/devharbor/config.toml").expanduser()
DEFAULT_STORE_PATH = "~/.config/devharbor/projects.json"
DEFAULT_PORT = 3000
DEFAULT_RECONCILE_INTERVAL_SECONDS = 10
DEFAULT_STOP_GRACE_SECONDS = 2.0
DEFAULT_AI_COMMAND = "gemini"
DEFAULT_AI_DRAIN_INTERVAL_MS = 30
DEFAULT_AI_EXECUTE_DELAY_MS = 800
DEFAULT_STATUS_CHECK_DELAY_SECONDS = 3.0
AI_COMMAND_ENV = "DEVHARBOR_AI_COMMAND"


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    projects_root: str = ""
    store_path: str = DEFAULT_STORE_PATH
    default_port: int = Field(default=DEFAULT_PORT, ge=1024, le=65535)
    reconcile_interval_seconds: int = Field(default=DEFAULT_RECONCILE_INTERVAL_SECONDS, ge=1)
    stop_grace_seconds: float = Field(default=DEFAULT_STOP_GRACE_SECONDS, gt=0)
    shell: str = ""
    ai_command: str = DEFAULT_AI_COMMAND
    ai_drain_interval_ms: int = Field(default=DEFAULT_AI_DRAIN_INTERVAL_MS, ge=1, le=1000)
    ai_execute_delay_ms: int = Field(default=DEFAULT_AI_EXECUTE_DELAY_MS, ge=0, le=10000)
    status_check_delay_seconds: float = Field(default=DEFAULT_STATUS_CHECK_DELAY_SECONDS, ge=0)

    @field_validator("ai_command")
    @classmethod
    def _validate_ai_command(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("AI command cannot be empty")
        return value.strip()

    def resolved_store_path(self) -> Path:
        return Path(self.store_path).expanduser()


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _sanitize(raw: dict[str, object]) -> AppConfig:
    cfg = AppConfig()

    for key in ("projects_root", "store_path", "shell"):
        value = raw.get(key)
        if isinstance(value, str):
            setattr(cfg, key, value)

    default_port = raw.get("default_port", cfg.default_port)
    if isinstance(default_port, int) and not isinstance(default_port, bool) and 1024 <= default_port <= 65535:
        cfg.default_port = default_port

    interval = raw.get("reconcile_interval_seconds", cfg.reconcile_interval_seconds)
    if isinstance(interval, int) and not isinstance(interval, bool) and interval >= 1:
        cfg.reconcile_interval_seconds = interval

    grace = raw.get("stop_grace_seconds", cfg.stop_grace_seconds)
    if _is_number(grace) and float(grace) > 0:
        cfg.stop_grace_seconds = float(grace)

    ai_command = raw.get("ai_command", cfg.ai_command)
    if isinstance(ai_command, str) and ai_command.strip():
        cfg.ai_command = ai_command
    env_command = os.getenv(AI_COMMAND_ENV, "").strip()
    if env_command:
        cfg.ai_command = env_command

    drain = raw.get("ai_drain_interval_ms", cfg.ai_drain_interval_ms)
    if isinstance(drain, int) and not isinstance(drain, bool) and 1 <= drain <= 1000:
        cfg.ai_drain_interval_ms = drain

    delay = raw.get("ai_execute_delay_ms", cfg.ai_execute_delay_ms)
    if isinstance(delay, int) and not isinstance(delay, bool) and 0 <= delay <= 10000:
        cfg.ai_execute_delay_ms = delay

    status_delay = raw.get("status_check_delay_seconds", cfg.status_check_delay_seconds)
    if _is_number(status_delay) and float(status_delay) >= 0:
        cfg.status_check_delay_seconds = float(status_delay)

    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return _sanitize({})
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return _sanitize({})
    if not isinstance(raw, dict):
        return _sanitize({})
    return _sanitize(raw)


def save_config(config: AppConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    lines = [
        f"projects_root = {_toml_scalar(config.projects_root)}",
        f"store_path = {_toml_scalar(config.store_path)}",
        f"default_port = {_toml_scalar(config.default_port)}",
        f"reconcile_interval_seconds = {_toml_scalar(config.reconcile_interval_seconds)}",
        f"stop_grace_seconds = {_toml_scalar(float(config.stop_grace_seconds))}",
        f"shell = {_toml_scalar(config.shell)}",
        f"ai_command = {_toml_scalar(config.ai_command)}",
        f"ai_drain_interval_ms = {_toml_scalar(config.ai_drain_interval_ms)}",
        f"ai_execute_delay_ms = {_toml_scalar(config.ai_execute_delay_ms)}",
        f"status_check_delay_seconds = {_toml_scalar(float(config.status_check_delay_seconds))}",
    ]
    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
