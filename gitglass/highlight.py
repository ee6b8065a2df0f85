from __future__ import annotations

import functools

from pygments import highlight as pygments_highlight
from pygments.formatters import HtmlFormatter
from pygments.lexer import Lexer
from pygments.lexers import get_lexer_for_filename
from pygments.lexers.diff import DiffLexer
from pygments.lexers.special import TextLexer
from pygments.util import ClassNotFound

from gitglass.errors import RenderError


THEME = "monokai"
PLAIN_TEXT_HINT = "txt"
_DIFF_HINTS = {"patch", "diff"}


@functools.lru_cache(maxsize=1)
def html_formatter() -> HtmlFormatter:
    return HtmlFormatter(style=THEME, noclasses=True, nowrap=False)


@functools.lru_cache(maxsize=256)
def lexer_for(language_hint: str) -> Lexer:
    hint = (language_hint or PLAIN_TEXT_HINT).lstrip(".").lower()
    if hint in _DIFF_HINTS:
        return DiffLexer(stripnl=False, ensurenl=False)
    try:
        return get_lexer_for_filename(f"file.{hint}", stripnl=False, ensurenl=False)
    except ClassNotFound:
        return TextLexer(stripnl=False, ensurenl=False)


def highlight(language_hint: str, text: str) -> str:
    """Render ``text`` as inline-styled HTML, choosing the lexer by file extension."""
    try:
        return pygments_highlight(text, lexer_for(language_hint), html_formatter())
    except Exception as exc:
        raise RenderError(f"highlighting failed for {language_hint!r}: {exc}") from exc
