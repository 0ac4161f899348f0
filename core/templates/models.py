"""Data models for placeholder descriptors, field values, occurrences and normalization."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Literal, get_args

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

RepresentationKind = Literal["plain_text", "styled_markup", "packaged_markup"]
PlaceholderType = Literal["text", "number", "currency", "date", "email", "address", "signature"]
OccurrenceKind = Literal["bracket", "underscore_run", "label_with_blank", "label_only"]

REPRESENTATION_KINDS: tuple[RepresentationKind, ...] = get_args(RepresentationKind)
PLACEHOLDER_TYPES: frozenset[str] = frozenset(get_args(PlaceholderType))

# Scan priority; also the tie-break order for occurrences sharing a start offset.
OCCURRENCE_KIND_PRIORITY: dict[OccurrenceKind, int] = {
    "bracket": 0,
    "underscore_run": 1,
    "label_with_blank": 2,
    "label_only": 3,
}


@dataclass(frozen=True)
class Representations:
    """The three parallel textual views of one document."""

    plain_text: str = ""
    styled_markup: str = ""
    packaged_markup: str = ""

    def get(self, kind: RepresentationKind) -> str:
        return getattr(self, kind)

    def with_text(self, kind: RepresentationKind, text: str) -> Representations:
        return replace(self, **{kind: text})


@dataclass(frozen=True)
class Occurrence:
    """One located placeholder-like span (a slot) in a single representation."""

    id: str
    representation: RepresentationKind
    start: int
    end: int
    raw: str
    kind: OccurrenceKind
    label_guess: str | None
    has_currency_marker: bool
    context_before: str
    context_after: str


class PlaceholderDescriptor(BaseModel):
    """Externally detected definition of a fillable field."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    key: str
    label: str = ""
    type: PlaceholderType = "text"
    question: str | None = None
    original_pattern: str = Field(
        validation_alias=AliasChoices("original_pattern", "originalPattern"),
    )
    occurrence_count: int = Field(
        validation_alias=AliasChoices(
            "occurrence_count",
            "occurrenceCount",
            "numberOfOccurrences",
            "number_of_occurrences",
        ),
    )

    @field_validator("key", mode="before")
    @classmethod
    def _validate_key(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("key must be a non-empty string")
        return value.strip()

    @field_validator("label", mode="before")
    @classmethod
    def _validate_label(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    @field_validator("type", mode="before")
    @classmethod
    def _default_unknown_type(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip().lower() in PLACEHOLDER_TYPES:
            return value.strip().lower()
        return "text"

    @field_validator("original_pattern", mode="before")
    @classmethod
    def _validate_pattern(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("original_pattern must be a non-empty string")
        return value

    @field_validator("occurrence_count", mode="before")
    @classmethod
    def _coerce_count(cls, value: Any) -> int:
        return _coerce_occurrence_count(value)

    @model_validator(mode="after")
    def _default_label(self) -> PlaceholderDescriptor:
        if not self.label:
            self.label = self.key
        return self

    @property
    def marker(self) -> str:
        return canonical_marker(self.key)


class FieldValue(BaseModel):
    """A resolved value for one placeholder key."""

    model_config = ConfigDict(extra="ignore")

    key: str
    value: str
    label: str = ""
    type: PlaceholderType = "text"

    @model_validator(mode="before")
    @classmethod
    def _resolve_value(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        resolved = dict(data)
        primary = _scalar_text(resolved.get("value"))
        resolved["value"] = primary if primary else _scalar_text(resolved.get("suggestion"))
        return resolved

    @field_validator("key", mode="before")
    @classmethod
    def _validate_key(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("key must be a non-empty string")
        return value.strip()

    @field_validator("value")
    @classmethod
    def _validate_value(cls, value: str) -> str:
        if not value:
            raise ValueError("value must not be empty")
        return value

    @field_validator("label", mode="before")
    @classmethod
    def _validate_label(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    @field_validator("type", mode="before")
    @classmethod
    def _default_unknown_type(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip().lower() in PLACEHOLDER_TYPES:
            return value.strip().lower()
        return "text"


class SlotView(BaseModel):
    """Light-weight occurrence description sent to the resolution oracle."""

    model_config = ConfigDict(extra="forbid")

    id: str
    representation: RepresentationKind
    kind: OccurrenceKind
    label_guess: str | None = None
    has_currency_marker: bool = False
    text_window: str


class DescriptorOutcome(BaseModel):
    """Per-descriptor normalization result."""

    model_config = ConfigDict(extra="forbid")

    key: str
    status: Literal["applied", "no_match", "duplicate_pattern", "invalid_pattern"]
    replaced: dict[str, int] = Field(default_factory=dict)
    flexible: list[RepresentationKind] = Field(default_factory=list)
    reason: str | None = None


class NormalizationReport(BaseModel):
    """Aggregate normalization report across descriptors."""

    model_config = ConfigDict(extra="forbid")

    outcomes: list[DescriptorOutcome] = Field(default_factory=list)

    @property
    def keys(self) -> list[str]:
        return [item.key for item in self.outcomes if item.status == "applied"]

    @property
    def skipped(self) -> list[DescriptorOutcome]:
        return [
            item
            for item in self.outcomes
            if item.status in {"duplicate_pattern", "invalid_pattern"}
        ]


def canonical_marker(key: str) -> str:
    """Return the two-brace marker used as the normalized stand-in for a key."""

    return "{{" + key + "}}"


def _coerce_occurrence_count(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("occurrence_count must be numeric")
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValueError("occurrence_count must be numeric")
        try:
            value = float(stripped)
        except ValueError as exc:
            raise ValueError("occurrence_count must be numeric") from exc
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError("occurrence_count must be finite")
        return max(0, math.ceil(value))
    raise ValueError("occurrence_count must be numeric")


def _scalar_text(value: Any) -> str:
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return ""
