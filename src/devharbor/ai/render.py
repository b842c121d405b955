"""Lightweight markdown-to-ANSI rendering for streamed AI answers."""

from __future__ import annotations

import re

RESET = "\x1b[0m"
BOLD_ON, BOLD_OFF = "\x1b[1m", "\x1b[22m"
ITALIC_ON, ITALIC_OFF = "\x1b[3m", "\x1b[23m"
CODE_ON, CODE_OFF = "\x1b[36m", "\x1b[39m"
TAG_STYLE = "\x1b[1;30;43m"
BULLET = "\x1b[35m•\x1b[39m"

EXECUTE_TAG_PATTERN = re.compile(r"<<<EXECUTE:\s*(.*?)>>>")
_BOLD = re.compile(r"\*\*(?=\S)(.+?)(?<=\S)\*\*")
_ITALIC = re.compile(r"(?<![\*\w])\*(?=\S)([^*\n]+?)(?<=\S)\*(?![\*\w])")
_CODE = re.compile(r"`([^`\n]+)`")
_BULLET = re.compile(r"^([ \t]*)[-*+][ \t]+", re.MULTILINE)
_PLACEHOLDER = "\x00{}\x00"
_PLACEHOLDER_PATTERN = re.compile("\x00(\\d+)\x00")


def find_execute_tag(text: str) -> str | None:
    match = EXECUTE_TAG_PATTERN.search(text)
    if match is None:
        return None
    command = match.group(1).strip()
    return command or None


def render_markup(text: str) -> str:
    """Translate emphasis, code spans, bullets and execute-tags to terminal escapes."""
    protected: list[str] = []

    def _protect(rendered: str) -> str:
        protected.append(rendered)
        return _PLACEHOLDER.format(len(protected) - 1)

    out = EXECUTE_TAG_PATTERN.sub(lambda m: _protect(f"{TAG_STYLE}{m.group(0)}{RESET}"), text)
    out = _CODE.sub(lambda m: _protect(f"{CODE_ON}{m.group(1)}{CODE_OFF}"), out)
    out = _BULLET.sub(lambda m: f"{m.group(1)}{BULLET} ", out)
    out = _BOLD.sub(lambda m: f"{BOLD_ON}{m.group(1)}{BOLD_OFF}", out)
    out = _ITALIC.sub(lambda m: f"{ITALIC_ON}{m.group(1)}{ITALIC_OFF}", out)
    out = _PLACEHOLDER_PATTERN.sub(lambda m: protected[int(m.group(1))], out)
    return out.replace("\r\n", "\n").replace("\n", "\r\n")
