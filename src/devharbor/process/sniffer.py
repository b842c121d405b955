"""Heuristic scanners for dev-server output text."""

from __future__ import annotations

import re

PORT_PATTERN = re.compile(r"(?:localhost:|:|port\s+)(\d{4,5})(?!\d)", re.IGNORECASE)
_MARKER_LINE = re.compile(r"^\s*\d*\s*\|[\s^|]*$")
_MARKER_CHARS = frozenset("^|")


def _decode(chunk: bytes | str) -> str:
    if isinstance(chunk, bytes):
        return chunk.decode("utf-8", errors="replace")
    return chunk


def scan_for_port(chunk: bytes | str) -> int | None:
    match = PORT_PATTERN.search(_decode(chunk))
    if match is None:
        return None
    return int(match.group(1))


def is_marker_line(line: str) -> bool:
    """True for compiler underline/caret lines such as ``   |    ^^^^``."""
    if _MARKER_LINE.match(line) and "^" in line:
        return True
    visible = [char for char in line if not char.isspace()]
    if not visible:
        return False
    markers = sum(1 for char in visible if char in _MARKER_CHARS)
    return markers * 2 > len(visible)


def sanitize_output(chunk: bytes | str) -> str:
    text = _decode(chunk)
    kept: list[str] = []
    for line in text.splitlines(keepends=True):
        if is_marker_line(line.rstrip("\r\n")):
            continue
        kept.append(line)
    result = "".join(kept)
    if not result.strip():
        return ""
    return result
