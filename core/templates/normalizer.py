"""Normalize detected placeholder occurrences to canonical ``{{key}}`` markers."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from core.templates.matcher import compile_boundary_tolerant, compile_flexible
from core.templates.models import (
    REPRESENTATION_KINDS,
    DescriptorOutcome,
    NormalizationReport,
    PlaceholderDescriptor,
    RepresentationKind,
    Representations,
)
from core.templates.replacer import Span, bounded_replace
from core.utils.errors import PatternCompileError
from core.utils.log_events import log_event

logger = logging.getLogger("blankfill.engine")

MARKER_RE = re.compile(r"\{\{[^{}<>\s]+\}\}")

# Whitespace normalization is unsafe against markup noise in the packaged part.
_FLEXIBLE_KINDS: frozenset[RepresentationKind] = frozenset({"plain_text", "styled_markup"})
_MARKUP_KINDS: frozenset[RepresentationKind] = frozenset({"styled_markup", "packaged_markup"})


@dataclass(frozen=True)
class NormalizationResult:
    """Normalized representations plus the per-descriptor report."""

    representations: Representations
    report: NormalizationReport


def normalize_representations(
    representations: Representations,
    descriptors: Sequence[PlaceholderDescriptor],
) -> NormalizationResult:
    """Replace up to ``occurrence_count`` matches of each descriptor pattern with its marker.

    Descriptors are applied in order. When two descriptors share an identical
    ``original_pattern`` the first one registered wins and the later one is
    reported as ``duplicate_pattern``. Matches overlapping an existing canonical
    marker are never rewritten, so normalizing twice changes nothing.
    """

    current = representations
    registered: dict[str, str] = {}
    outcomes: list[DescriptorOutcome] = []

    for descriptor in descriptors:
        pattern = descriptor.original_pattern
        owner = registered.get(pattern)
        if owner is not None:
            log_event(
                logger,
                logging.INFO,
                "descriptor_skipped",
                key=descriptor.key,
                pattern=pattern,
                reason="duplicate_pattern",
                registered_key=owner,
            )
            outcomes.append(
                DescriptorOutcome(
                    key=descriptor.key,
                    status="duplicate_pattern",
                    reason=f"pattern already registered by {owner}",
                )
            )
            continue
        registered[pattern] = descriptor.key

        try:
            strict = {
                kind: compile_boundary_tolerant(pattern, markup=kind in _MARKUP_KINDS)
                for kind in REPRESENTATION_KINDS
            }
        except PatternCompileError as exc:
            log_event(
                logger,
                logging.WARNING,
                "descriptor_skipped",
                key=descriptor.key,
                pattern=pattern,
                reason="invalid_pattern",
                error=exc.reason,
            )
            outcomes.append(
                DescriptorOutcome(key=descriptor.key, status="invalid_pattern", reason=exc.reason)
            )
            continue

        current, outcome = _apply_descriptor(current, descriptor, strict)
        outcomes.append(outcome)
        log_event(
            logger,
            logging.DEBUG,
            "descriptor_applied",
            key=descriptor.key,
            pattern=pattern,
            status=outcome.status,
            replaced=outcome.replaced,
            flexible=outcome.flexible,
        )

    return NormalizationResult(
        representations=current,
        report=NormalizationReport(outcomes=outcomes),
    )


def marker_spans(text: str) -> list[Span]:
    """Return spans of canonical markers already present in ``text``."""

    return [match.span() for match in MARKER_RE.finditer(text)]


def _apply_descriptor(
    representations: Representations,
    descriptor: PlaceholderDescriptor,
    strict: Mapping[RepresentationKind, re.Pattern[str]],
) -> tuple[Representations, DescriptorOutcome]:
    marker = descriptor.marker
    replaced: dict[str, int] = {}
    flexible_used: list[RepresentationKind] = []
    flexible_failed = False

    current = representations
    for kind in REPRESENTATION_KINDS:
        text = current.get(kind)
        if not text:
            replaced[kind] = 0
            continue

        protected = marker_spans(text)
        new_text, count = bounded_replace(
            text, strict[kind], marker, descriptor.occurrence_count, skip_spans=protected
        )

        if count == 0 and kind in _FLEXIBLE_KINDS and descriptor.occurrence_count > 0:
            flexible: re.Pattern[str] | None = None
            if not flexible_failed:
                try:
                    flexible = compile_flexible(
                        descriptor.original_pattern, markup=kind in _MARKUP_KINDS
                    )
                except PatternCompileError as exc:
                    flexible_failed = True
                    log_event(
                        logger,
                        logging.INFO,
                        "flexible_fallback_unavailable",
                        key=descriptor.key,
                        pattern=descriptor.original_pattern,
                        error=exc.reason,
                    )
            if flexible is not None:
                new_text, count = bounded_replace(
                    text, flexible, marker, descriptor.occurrence_count, skip_spans=protected
                )
                if count:
                    flexible_used.append(kind)

        replaced[kind] = count
        current = current.with_text(kind, new_text)

    status = "applied" if any(replaced.values()) else "no_match"
    return current, DescriptorOutcome(
        key=descriptor.key,
        status=status,
        replaced=replaced,
        flexible=flexible_used,
    )
