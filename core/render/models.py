"""Fill pipeline report models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from core.mapping.slot_mapper import SlotMappingResult
from core.templates.models import OccurrenceKind, RepresentationKind

FillMode = Literal["preview", "download", "both"]


class RehydrationEntry(BaseModel):
    """Single slot substitution/insertion/skip log item."""

    model_config = ConfigDict(extra="forbid")

    status: Literal["replaced", "inserted", "skipped"]
    representation: RepresentationKind
    slot_id: str
    field_key: str
    kind: OccurrenceKind
    start: int
    end: int
    reason: str | None = None


class RepresentationFillSummary(BaseModel):
    """What happened to one representation during fill."""

    model_config = ConfigDict(extra="forbid")

    slot_count: int = 0
    slots_filled: int = 0
    markers_replaced: dict[str, int] = Field(default_factory=dict)
    unresolved_markers: list[str] = Field(default_factory=list)


class FillReport(BaseModel):
    """Full fill report across representations."""

    model_config = ConfigDict(extra="forbid")

    mode: FillMode
    field_keys: list[str] = Field(default_factory=list)
    entries: list[RehydrationEntry] = Field(default_factory=list)
    representations: dict[str, RepresentationFillSummary] = Field(default_factory=dict)
    slot_mapping: SlotMappingResult = Field(default_factory=SlotMappingResult)
