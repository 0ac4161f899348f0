"""Bounded leftmost replacement over a single representation."""

from __future__ import annotations

import re
from collections.abc import Sequence

Span = tuple[int, int]


def find_match_spans(
    text: str,
    matcher: re.Pattern[str],
    limit: int | None = None,
    *,
    start: int = 0,
    end: int | None = None,
    skip_spans: Sequence[Span] = (),
) -> list[Span]:
    """Return up to ``limit`` non-overlapping match spans, leftmost first.

    Pure function: the scan position lives only inside this call. Matches that
    overlap any of ``skip_spans`` are passed over and not counted. Zero-width
    matches advance the scan by one character.
    """

    if limit is not None and limit <= 0:
        return []

    stop = len(text) if end is None else min(end, len(text))
    protected = sorted(skip_spans)
    spans: list[Span] = []
    position = start

    while position <= stop:
        match = matcher.search(text, position, stop)
        if match is None:
            break

        match_start, match_end = match.span()
        blocker = _overlapping_span(protected, match_start, match_end)
        if blocker is not None:
            position = max(blocker[1], match_start + 1)
            continue

        spans.append((match_start, match_end))
        if limit is not None and len(spans) >= limit:
            break
        position = match_end if match_end > match_start else match_end + 1

    return spans


def replace_spans(text: str, spans: Sequence[Span], replacement: str) -> str:
    """Replace each span with ``replacement``, applying the highest offset first."""

    result = text
    for span_start, span_end in sorted(spans, reverse=True):
        result = result[:span_start] + replacement + result[span_end:]
    return result


def bounded_replace(
    text: str,
    matcher: re.Pattern[str],
    replacement: str,
    max_count: int,
    *,
    skip_spans: Sequence[Span] = (),
) -> tuple[str, int]:
    """Replace the leftmost ``max_count`` matches and return ``(new_text, replaced)``.

    Matches beyond ``max_count`` are left untouched; text outside the replaced
    spans is unchanged byte for byte.
    """

    if not text or max_count <= 0:
        return text, 0

    spans = find_match_spans(text, matcher, max_count, skip_spans=skip_spans)
    if not spans:
        return text, 0
    return replace_spans(text, spans, replacement), len(spans)


def _overlapping_span(protected: Sequence[Span], start: int, end: int) -> Span | None:
    for span_start, span_end in protected:
        if span_start >= max(end, start + 1):
            break
        if span_start < max(end, start + 1) and start < span_end:
            return span_start, span_end
    return None
