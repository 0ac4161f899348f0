"""Literal placeholder matchers that tolerate inline markup tags.

A placeholder whose characters Word has split across runs appears in the
packaged markup as e.g. ``[Comp</w:t></w:r><w:r><w:t>any]``. The boundary
tolerant matcher accepts any number of ``<...>`` tokens around each
alphanumeric character, so the same compiled pattern matches the split form
in packaged markup and the plain literal in text or HTML.
"""

from __future__ import annotations

import re
import unicodedata

from core.utils.errors import PatternCompileError

_TAG_RUN = r"(?:<[^>]*>)*"
_ALLOWED_CONTROL_CHARS = frozenset("\t\n\r")
_BRACKET_CHARS_RE = re.compile(r"[\[\]]")

# Markup text carries these characters as entities; quotes may also stay raw.
_MARKUP_CHAR_FORMS: dict[str, str] = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': '(?:"|&quot;|&#34;)',
    "'": "(?:'|&apos;|&#39;)",
}


def compile_boundary_tolerant(pattern: str, *, markup: bool = False) -> re.Pattern[str]:
    """Compile a literal pattern that still matches when tags interrupt its characters.

    Tags are accepted between characters only, never before the first or after the
    last literal character, so a match never swallows surrounding markup. With
    ``markup=True`` the literal is matched in its entity-escaped form, e.g.
    ``[M&A]`` matches ``[M&amp;A]``.

    Raises:
        PatternCompileError: when the pattern is empty or carries control characters.
    """

    _check_literal(pattern)

    parts: list[str] = []
    for index, char in enumerate(pattern):
        if char.isalnum():
            if index > 0 and (not parts or parts[-1] != _TAG_RUN):
                parts.append(_TAG_RUN)
            parts.append(re.escape(char))
            if index < len(pattern) - 1:
                parts.append(_TAG_RUN)
        else:
            parts.append(_literal_char(char, markup))

    return _compile(pattern, "".join(parts))


def compile_flexible(pattern: str, *, markup: bool = False) -> re.Pattern[str]:
    """Compile the loosened fallback: brackets dropped, whitespace runs made variable.

    Only meant for plain text and styled markup.
    """

    _check_literal(pattern)

    loosened = _BRACKET_CHARS_RE.sub("", pattern).strip()
    if not loosened:
        raise PatternCompileError(pattern, "pattern is empty once brackets are removed")

    body = r"\s+".join(
        "".join(_literal_char(char, markup) for char in token) for token in loosened.split()
    )
    return _compile(pattern, body)


def compile_literal(pattern: str) -> re.Pattern[str]:
    """Compile a plain literal matcher (used for marker substitution outside markup)."""

    _check_literal(pattern)
    return _compile(pattern, re.escape(pattern))


def _literal_char(char: str, markup: bool) -> str:
    if markup and char in _MARKUP_CHAR_FORMS:
        return _MARKUP_CHAR_FORMS[char]
    return re.escape(char)


def _check_literal(pattern: str) -> None:
    if not isinstance(pattern, str) or not pattern:
        raise PatternCompileError(str(pattern), "pattern is empty")
    if not pattern.strip():
        raise PatternCompileError(pattern, "pattern is blank")
    for char in pattern:
        if unicodedata.category(char) == "Cc" and char not in _ALLOWED_CONTROL_CHARS:
            raise PatternCompileError(pattern, f"control character U+{ord(char):04X}")


def _compile(pattern: str, source: str) -> re.Pattern[str]:
    try:
        return re.compile(source)
    except re.error as exc:
        raise PatternCompileError(pattern, str(exc)) from exc
