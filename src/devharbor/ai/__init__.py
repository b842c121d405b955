"""AI question/answer support for the project terminal."""

from .backend import AiBackend, CliAiBackend
from .context import AiContext, build_prompt
from .interceptor import AiInterceptor
from .render import find_execute_tag, render_markup

__all__ = [
    "AiBackend",
    "AiContext",
    "AiInterceptor",
    "build_prompt",
    "CliAiBackend",
    "find_execute_tag",
    "render_markup",
]
