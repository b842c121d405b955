from __future__ import annotations

import pytest

from devharbor.ai.render import (
    BOLD_OFF,
    BOLD_ON,
    BULLET,
    CODE_OFF,
    CODE_ON,
    ITALIC_OFF,
    ITALIC_ON,
    RESET,
    TAG_STYLE,
    find_execute_tag,
    render_markup,
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Try this:\n<<<EXECUTE: npm run dev>>>\n", "npm run dev"),
        ("<<<EXECUTE:   git status   >>>", "git status"),
        ("first <<<EXECUTE: ls>>> then <<<EXECUTE: pwd>>>", "ls"),
        ("no directive here", None),
        ("<<<EXECUTE: >>>", None),
        ("<<<EXECUTE: unterminated", None),
    ],
)
def test_find_execute_tag(text: str, expected: str | None) -> None:
    assert find_execute_tag(text) == expected


def test_render_bold_and_italic() -> None:
    assert render_markup("a **b** c") == f"a {BOLD_ON}b{BOLD_OFF} c"
    assert render_markup("an *idea*") == f"an {ITALIC_ON}idea{ITALIC_OFF}"


def test_render_code_span_is_not_further_styled() -> None:
    assert render_markup("run `a **b** c`") == f"run {CODE_ON}a **b** c{CODE_OFF}"


def test_render_bullets_and_line_endings() -> None:
    rendered = render_markup("Steps:\n- install\n  * build\n")

    assert rendered == f"Steps:\r\n{BULLET} install\r\n  {BULLET} build\r\n"


def test_render_highlights_execute_tag_verbatim() -> None:
    rendered = render_markup("<<<EXECUTE: rm -rf *build*>>>")

    assert rendered == f"{TAG_STYLE}<<<EXECUTE: rm -rf *build*>>>{RESET}"


def test_render_keeps_crlf_single() -> None:
    assert render_markup("a\r\nb") == "a\r\nb"
