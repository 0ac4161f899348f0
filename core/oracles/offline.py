"""Oracle backend that never calls out and contributes nothing."""

from __future__ import annotations

from collections.abc import Sequence

from core.templates.models import FieldValue, PlaceholderDescriptor, SlotView


class OfflineOracle:
    """No detection, no summary, no slot mappings."""

    name = "offline"

    def detect_placeholders(self, text: str) -> list[PlaceholderDescriptor]:
        return []

    def summarize(self, text: str) -> str:
        return ""

    def map_slots(self, slots: Sequence[SlotView], fields: Sequence[FieldValue]) -> dict[str, str]:
        return {}
