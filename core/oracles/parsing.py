"""Parse loosely-typed oracle and client payloads into validated models.

Invalid entries are dropped (and logged); nothing untyped leaves this module.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Collection
from typing import Any

from pydantic import ValidationError

from core.templates.models import FieldValue, PlaceholderDescriptor
from core.utils.errors import OracleUnavailableError
from core.utils.log_events import log_event

logger = logging.getLogger("blankfill.oracle")

_CODE_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f]")


def load_json_payload(text: str) -> Any:
    """Decode an oracle JSON reply, tolerating code fences and stray control characters."""

    cleaned = _CODE_FENCE_RE.sub("", text or "").strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    try:
        return json.loads(_CONTROL_CHARS_RE.sub("", cleaned))
    except json.JSONDecodeError as exc:
        raise OracleUnavailableError(f"oracle returned invalid JSON: {exc.msg}") from exc


def parse_descriptors(raw: Any) -> list[PlaceholderDescriptor]:
    """Validate descriptor entries from a list or a ``{"placeholders": [...]}`` object."""

    if isinstance(raw, dict):
        raw = raw.get("placeholders", [])
    if not isinstance(raw, list):
        log_event(logger, logging.WARNING, "descriptors_malformed", payload_type=type(raw).__name__)
        return []

    descriptors: list[PlaceholderDescriptor] = []
    for index, item in enumerate(raw):
        try:
            descriptors.append(PlaceholderDescriptor.model_validate(item))
        except ValidationError as exc:
            log_event(
                logger,
                logging.INFO,
                "descriptor_dropped",
                index=index,
                errors=[error["loc"][0] if error["loc"] else "entry" for error in exc.errors()],
            )
    return descriptors


def parse_field_values(raw: Any) -> list[FieldValue]:
    """Validate field values; the first entry wins when a key repeats.

    Accepts a list of field objects, a ``{"fields": [...]}`` object, or a plain
    ``{key: value}`` mapping.
    """

    if isinstance(raw, dict):
        if isinstance(raw.get("fields"), list):
            raw = raw["fields"]
        else:
            raw = [{"key": key, "value": value} for key, value in raw.items()]
    if not isinstance(raw, list):
        return []

    fields: list[FieldValue] = []
    seen: set[str] = set()
    for index, item in enumerate(raw):
        try:
            field_value = FieldValue.model_validate(item)
        except ValidationError:
            log_event(logger, logging.DEBUG, "field_value_dropped", index=index)
            continue
        if field_value.key in seen:
            continue
        seen.add(field_value.key)
        fields.append(field_value)
    return fields


def parse_slot_mapping(
    raw: Any,
    allowed_ids: Collection[str],
    allowed_keys: Collection[str],
) -> dict[str, str]:
    """Keep only ``slot id -> field key`` pairs that refer to known slots and keys."""

    if isinstance(raw, dict) and isinstance(raw.get("mapping"), dict):
        raw = raw["mapping"]
    if not isinstance(raw, dict):
        return {}

    mapping: dict[str, str] = {}
    for slot_id, key in raw.items():
        if not isinstance(slot_id, str) or not isinstance(key, str):
            continue
        if slot_id in allowed_ids and key in allowed_keys:
            mapping[slot_id] = key
    return mapping
