"""Template rehydration: substitute resolved values into slots and canonical markers."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from core.render.models import RehydrationEntry
from core.templates.matcher import compile_boundary_tolerant, compile_literal
from core.templates.models import (
    OCCURRENCE_KIND_PRIORITY,
    FieldValue,
    Occurrence,
    RepresentationKind,
    canonical_marker,
)
from core.templates.normalizer import MARKER_RE
from core.utils.errors import PatternCompileError
from core.utils.log_events import log_event

logger = logging.getLogger("blankfill.engine")

DEFAULT_LABEL_WINDOW = 80

_HTML_ESCAPES = str.maketrans(
    {"&": "&amp;", "<": "&lt;", ">": "&gt;", '"': "&quot;", "'": "&#39;"}
)
_XML_ESCAPES = str.maketrans(
    {"&": "&amp;", "<": "&lt;", ">": "&gt;", '"': "&quot;", "'": "&apos;"}
)
_INLINE_SPACES = frozenset(" \t\u00a0")
_TAG_RE = re.compile(r"<[^>]*>")


@dataclass
class RehydrationOutcome:
    """Filled text for one representation plus what was done to it."""

    text: str
    entries: list[RehydrationEntry] = field(default_factory=list)
    markers_replaced: dict[str, int] = field(default_factory=dict)

    @property
    def unresolved_markers(self) -> list[str]:
        return sorted({match.group(0)[2:-2] for match in MARKER_RE.finditer(self.text)})


def escape_value(value: str, representation: RepresentationKind) -> str:
    """Escape ``value`` for insertion into the given representation."""

    if representation == "styled_markup":
        return value.translate(_HTML_ESCAPES)
    if representation == "packaged_markup":
        return value.translate(_XML_ESCAPES)
    return value


@dataclass(frozen=True)
class _Edit:
    start: int
    end: int
    text: str

    def overlaps(self, start: int, end: int) -> bool:
        if self.start == self.end:
            return start < self.start < end
        return start < self.end and self.start < end


def rehydrate_representation(
    text: str,
    representation: RepresentationKind,
    fields: Sequence[FieldValue],
    *,
    occurrences: Sequence[Occurrence] = (),
    slot_mapping: Mapping[str, str] | None = None,
    label_window: int = DEFAULT_LABEL_WINDOW,
) -> RehydrationOutcome:
    """Fill mapped slots and every ``{{key}}`` marker in a single splice.

    Slot and marker positions are both taken from the incoming text, so an
    inserted value is final and never rescanned for markers.
    """

    values = {item.key: item.value for item in fields}
    value_by_id: dict[str, tuple[str, str]] = {}
    for slot_id, key in (slot_mapping or {}).items():
        if key in values:
            value_by_id[slot_id] = (key, values[key])

    local = [item for item in occurrences if item.representation == representation]
    slot_edits, entries = _slot_edits(
        text, representation, local, value_by_id, label_window=label_window
    )
    marker_edits, markers_replaced = _marker_edits(
        text, representation, fields, occupied=slot_edits
    )
    filled = _apply_edits(text, [*slot_edits, *marker_edits])
    return RehydrationOutcome(text=filled, entries=entries, markers_replaced=markers_replaced)


def select_slots(
    occurrences: Sequence[Occurrence],
    value_by_id: Mapping[str, tuple[str, str]],
) -> list[Occurrence]:
    """Pick mapped slots with non-overlapping spans; the earliest, longest span wins."""

    candidates = sorted(
        (item for item in occurrences if item.id in value_by_id),
        key=lambda item: (
            item.start,
            -(item.end - item.start),
            OCCURRENCE_KIND_PRIORITY[item.kind],
        ),
    )
    selected: list[Occurrence] = []
    last_end = -1
    for item in candidates:
        if item.start < last_end:
            continue
        selected.append(item)
        last_end = max(item.end, item.start + 1)
    return selected


def replace_markers(
    text: str,
    representation: RepresentationKind,
    fields: Sequence[FieldValue],
) -> tuple[str, dict[str, int]]:
    """Replace every ``{{key}}`` marker with the key's escaped value.

    Packaged markup uses the boundary tolerant matcher, since a marker may have
    been split across runs after normalization.
    """

    edits, counts = _marker_edits(text, representation, fields)
    return _apply_edits(text, edits), counts


def _slot_edits(
    text: str,
    representation: RepresentationKind,
    occurrences: Sequence[Occurrence],
    value_by_id: Mapping[str, tuple[str, str]],
    *,
    label_window: int,
) -> tuple[list[_Edit], list[RehydrationEntry]]:
    edits: list[_Edit] = []
    entries: list[RehydrationEntry] = []

    for occurrence in select_slots(occurrences, value_by_id):
        key, value = value_by_id[occurrence.id]
        escaped = escape_value(_keep_currency_symbol(occurrence, value), representation)

        if occurrence.kind == "label_only":
            edit = _label_insertion(text, occurrence, escaped, label_window)
            status = "inserted"
        elif text[occurrence.start : occurrence.end] == occurrence.raw:
            edit = _Edit(occurrence.start, occurrence.end, escaped)
            status = "replaced"
        else:
            edit = None

        if edit is None:
            log_event(
                logger,
                logging.INFO,
                "slot_skipped",
                representation=representation,
                slot_id=occurrence.id,
                key=key,
            )
            entries.append(_entry(occurrence, key, "skipped", reason="span_changed"))
            continue

        edits.append(edit)
        entries.append(_entry(occurrence, key, status))

    return edits, entries


def _marker_edits(
    text: str,
    representation: RepresentationKind,
    fields: Sequence[FieldValue],
    *,
    occupied: Sequence[_Edit] = (),
) -> tuple[list[_Edit], dict[str, int]]:
    matcher, values = _marker_matcher(representation, fields)
    if matcher is None:
        return [], {}

    edits: list[_Edit] = []
    counts: dict[str, int] = {}
    for match in matcher.finditer(text):
        start, end = match.span()
        if any(edit.overlaps(start, end) for edit in occupied):
            continue
        key = _TAG_RE.sub("", match.group(0))[2:-2]
        value = values.get(key)
        if value is None:
            continue
        edits.append(_Edit(start, end, value))
        counts[key] = counts.get(key, 0) + 1
    return edits, counts


def _marker_matcher(
    representation: RepresentationKind,
    fields: Sequence[FieldValue],
) -> tuple[re.Pattern[str] | None, dict[str, str]]:
    """Build one alternation over every field marker, plus escaped values by key."""

    sources: dict[str, str] = {}
    values: dict[str, str] = {}
    for item in fields:
        if item.key in values:
            continue
        marker = canonical_marker(item.key)
        try:
            matcher = (
                compile_boundary_tolerant(marker)
                if representation == "packaged_markup"
                else compile_literal(marker)
            )
        except PatternCompileError as exc:
            log_event(
                logger,
                logging.WARNING,
                "marker_skipped",
                representation=representation,
                key=item.key,
                error=exc.reason,
            )
            continue
        sources[item.key] = matcher.pattern
        values[item.key] = escape_value(item.value, representation)

    if not sources:
        return None, values
    ordered = sorted(sources, key=len, reverse=True)
    return re.compile("|".join(f"(?:{sources[key]})" for key in ordered)), values


def _apply_edits(text: str, edits: Sequence[_Edit]) -> str:
    result = text
    for edit in sorted(edits, key=lambda item: (item.start, item.end), reverse=True):
        result = result[: edit.start] + edit.text + result[edit.end :]
    return result


def _label_insertion(
    text: str,
    occurrence: Occurrence,
    escaped: str,
    label_window: int,
) -> _Edit | None:
    if text[occurrence.start : occurrence.end] == occurrence.raw:
        anchor = occurrence.end
    else:
        anchor = _find_label_anchor(text, occurrence, label_window)
        if anchor is None:
            return None

    separator = "" if anchor and text[anchor - 1] in _INLINE_SPACES else " "
    return _Edit(anchor, anchor, separator + escaped)


def _find_label_anchor(text: str, occurrence: Occurrence, label_window: int) -> int | None:
    """Locate ``Label:`` inside a bounded window around the slot, closest to its start."""

    if not occurrence.label_guess:
        return None

    window_start = max(0, occurrence.start - label_window)
    window_end = min(len(text), occurrence.end + label_window)
    pattern = re.compile(
        rf"(?<![^>\s]){re.escape(occurrence.label_guess)}[^\S\r\n]*:[^\S\r\n]*(?=\Z|[<\r\n])"
    )
    best: int | None = None
    best_distance: int | None = None
    for match in pattern.finditer(text, window_start, window_end):
        distance = abs(match.start() - occurrence.start)
        if best_distance is None or distance < best_distance:
            best, best_distance = match.end(), distance
    return best


def _keep_currency_symbol(occurrence: Occurrence, value: str) -> str:
    if occurrence.raw.lstrip().startswith("$") and not value.lstrip().startswith("$"):
        return "$" + value
    return value


def _entry(
    occurrence: Occurrence,
    key: str,
    status: str,
    *,
    reason: str | None = None,
) -> RehydrationEntry:
    return RehydrationEntry(
        status=status,  # type: ignore[arg-type]
        representation=occurrence.representation,
        slot_id=occurrence.id,
        field_key=key,
        kind=occurrence.kind,
        start=occurrence.start,
        end=occurrence.end,
        reason=reason,
    )
