"""Log text masking and truncation."""

from __future__ import annotations

import re
import shlex

DEFAULT_LOG_TRUNCATE_LIMIT = 700

AUTH_BEARER_PATTERN = re.compile(r"(Authorization:\s*Bearer)\s+\S+", re.IGNORECASE)
URL_CREDENTIAL_PATTERN = re.compile(r"(https?://)([^/\s:@]+):([^@\s]+)@")
TOKEN_PATTERN = re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9_]{20,}|sk-[A-Za-z0-9_-]{20,}|AIza[0-9A-Za-z_-]{30,})\b")


def truncate_log(value: str, limit: int = DEFAULT_LOG_TRUNCATE_LIMIT) -> str:
    value = value.strip()
    if len(value) <= limit:
        return value
    return value[: max(0, limit - 3)] + "..."


def sanitize_log_text(value: str, limit: int = DEFAULT_LOG_TRUNCATE_LIMIT) -> str:
    """Mask credentials in URLs, bearer headers and API tokens; bound the length."""
    if not value:
        return ""
    sanitized = AUTH_BEARER_PATTERN.sub(r"\1 ***", value)
    sanitized = URL_CREDENTIAL_PATTERN.sub(r"\1***:***@", sanitized)
    sanitized = TOKEN_PATTERN.sub("***", sanitized)
    return truncate_log(sanitized, limit)


def command_for_log(args: list[str]) -> str:
    if not args:
        return ""
    return sanitize_log_text(" ".join(shlex.quote(part) for part in args))
