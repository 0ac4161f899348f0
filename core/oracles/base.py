"""Oracle interface definitions."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from core.templates.models import FieldValue, PlaceholderDescriptor, SlotView


class DetectionOracle(Protocol):
    """Detects fillable placeholders in a chunk of plain text."""

    def detect_placeholders(self, text: str) -> list[PlaceholderDescriptor]:
        """Return validated descriptors found in ``text``."""


class SummaryOracle(Protocol):
    """Summarizes a document in a few sentences."""

    def summarize(self, text: str) -> str:
        """Return a short summary of ``text``."""


class ResolutionOracle(Protocol):
    """Maps one batch of slots to available field keys."""

    def map_slots(self, slots: Sequence[SlotView], fields: Sequence[FieldValue]) -> dict[str, str]:
        """Return a partial ``slot id -> field key`` mapping for this batch."""


class Oracle(DetectionOracle, SummaryOracle, ResolutionOracle, Protocol):
    """A backend implementing every oracle role."""

    name: str
