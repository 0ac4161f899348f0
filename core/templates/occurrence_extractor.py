"""Heuristic occurrence extraction over one representation.

Four scans run in fixed priority order:
- bracketed spans, optionally dollar-prefixed: ``[Company Name]``, ``$[_____]``
- underscore or dash runs of length three or more: ``______``, ``----``
- a known label, a colon and a blank: ``Name: ______``
- a known label and a colon with nothing after it: ``Title:`` at end of line/tag

Matches are merged, sorted by start offset (ties broken by scan priority) and
numbered after sorting, so identifier order always agrees with position order.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from core.templates.models import (
    OCCURRENCE_KIND_PRIORITY,
    Occurrence,
    OccurrenceKind,
    RepresentationKind,
)

DEFAULT_LABEL_WORDS: tuple[str, ...] = (
    "By",
    "Name",
    "Title",
    "Address",
    "Email",
    "Date",
    "Company Name",
    "Investor Name",
    "Purchase Amount",
    "Post-Money Valuation Cap",
    "State of Incorporation",
    "Governing Law Jurisdiction",
)
DEFAULT_CONTEXT_WINDOW = 120

ID_PREFIXES: dict[RepresentationKind, str] = {
    "plain_text": "t",
    "styled_markup": "h",
    "packaged_markup": "x",
}

_INLINE_SPACE = r"[^\S\r\n]*"
_BRACKET = r"\[[^\]]{0,80}\]"
_RUN = r"[_\-—]{3,}"
_DOLLAR_PREFIX = rf"(?:\${_INLINE_SPACE})?"

_BRACKET_RE = re.compile(_DOLLAR_PREFIX + _BRACKET)
_UNDERSCORE_RE = re.compile(_DOLLAR_PREFIX + _RUN)
_TRAILING_DOLLAR_RE = re.compile(r"\$\s*\Z")


@dataclass(frozen=True)
class _Candidate:
    start: int
    end: int
    kind: OccurrenceKind
    label_guess: str | None


@dataclass(frozen=True)
class LabelPatterns:
    """Compiled label scans for one label vocabulary."""

    with_blank: re.Pattern[str]
    label_only: re.Pattern[str]


def compile_label_patterns(label_words: Iterable[str]) -> LabelPatterns:
    """Compile label-with-blank and label-only scans for a label vocabulary."""

    words = sorted({word.strip() for word in label_words if word.strip()}, key=len, reverse=True)
    if not words:
        raise ValueError("label vocabulary must not be empty")

    alternation = "|".join(re.escape(word) for word in words)
    label_head = rf"(?<![^>\s])(?P<label>{alternation}){_INLINE_SPACE}:{_INLINE_SPACE}"
    return LabelPatterns(
        with_blank=re.compile(label_head + rf"(?P<blank>{_DOLLAR_PREFIX}(?:{_BRACKET}|{_RUN}))"),
        label_only=re.compile(label_head + r"(?=\Z|[<\r\n])"),
    )


_DEFAULT_LABEL_PATTERNS = compile_label_patterns(DEFAULT_LABEL_WORDS)


def extract_occurrences(
    text: str,
    representation: RepresentationKind,
    *,
    label_words: Sequence[str] | None = None,
    context_window: int = DEFAULT_CONTEXT_WINDOW,
) -> list[Occurrence]:
    """Scan one representation and return its position-ordered slot list."""

    if not text:
        return []

    label_patterns = (
        _DEFAULT_LABEL_PATTERNS
        if label_words is None
        else compile_label_patterns(label_words)
    )

    candidates: list[_Candidate] = []
    candidates.extend(_scan_plain(text, _BRACKET_RE, "bracket"))
    candidates.extend(_scan_plain(text, _UNDERSCORE_RE, "underscore_run"))
    candidates.extend(_scan_label_with_blank(text, label_patterns.with_blank))
    candidates.extend(_scan_label_only(text, label_patterns.label_only))

    candidates.sort(key=lambda item: (item.start, OCCURRENCE_KIND_PRIORITY[item.kind]))

    prefix = ID_PREFIXES[representation]
    occurrences: list[Occurrence] = []
    for index, candidate in enumerate(candidates, start=1):
        raw = text[candidate.start : candidate.end]
        before = text[max(0, candidate.start - context_window) : candidate.start]
        after = text[candidate.end : candidate.end + context_window]
        occurrences.append(
            Occurrence(
                id=f"{prefix}{index:04d}",
                representation=representation,
                start=candidate.start,
                end=candidate.end,
                raw=raw,
                kind=candidate.kind,
                label_guess=candidate.label_guess,
                has_currency_marker=(
                    raw.lstrip().startswith("$") or _TRAILING_DOLLAR_RE.search(before) is not None
                ),
                context_before=before,
                context_after=after,
            )
        )
    return occurrences


def _scan_plain(text: str, pattern: re.Pattern[str], kind: OccurrenceKind) -> list[_Candidate]:
    return [
        _Candidate(start=match.start(), end=match.end(), kind=kind, label_guess=None)
        for match in pattern.finditer(text)
    ]


def _scan_label_with_blank(text: str, pattern: re.Pattern[str]) -> list[_Candidate]:
    # The slot covers the blank only; the label stays in the document.
    return [
        _Candidate(
            start=match.start("blank"),
            end=match.end("blank"),
            kind="label_with_blank",
            label_guess=match.group("label").strip(),
        )
        for match in pattern.finditer(text)
    ]


def _scan_label_only(text: str, pattern: re.Pattern[str]) -> list[_Candidate]:
    return [
        _Candidate(
            start=match.start("label"),
            end=match.end(),
            kind="label_only",
            label_guess=match.group("label").strip(),
        )
        for match in pattern.finditer(text)
    ]
