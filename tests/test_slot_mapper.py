from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

import pytest

from core.mapping.slot_mapper import build_slot_views, map_slots, partition
from core.templates.models import FieldValue, SlotView
from core.templates.occurrence_extractor import extract_occurrences
from core.utils.errors import OracleTimeoutError

FIELDS = [
    FieldValue(key="company_name", value="Acme Inc."),
    FieldValue(key="amount", value="100,000", type="currency"),
]


def _occurrences(count: int):
    return extract_occurrences(" ".join("[Blank]" for _ in range(count)), "plain_text")


class MappingOracle:
    """Maps every slot to company_name except the batches told to misbehave."""

    def __init__(
        self,
        *,
        hang_on: set[str] | None = None,
        fail_on: dict[str, Exception] | None = None,
    ) -> None:
        self.hang_on = hang_on or set()
        self.fail_on = fail_on or {}
        self.release = threading.Event()
        self.calls: list[list[str]] = []

    def map_slots(self, slots: Sequence[SlotView], fields: Sequence[FieldValue]) -> dict[str, str]:
        ids = [slot.id for slot in slots]
        self.calls.append(ids)
        if ids[0] in self.hang_on:
            self.release.wait(5)
        if ids[0] in self.fail_on:
            raise self.fail_on[ids[0]]
        return {slot_id: "company_name" for slot_id in ids}


def test_partition_preserves_order_and_sizes() -> None:
    batches = partition(list(range(95)), 40)

    assert [len(batch) for batch in batches] == [40, 40, 15]
    assert [item for batch in batches for item in batch] == list(range(95))


def test_partition_rejects_non_positive_size() -> None:
    with pytest.raises(ValueError):
        partition([1, 2], 0)


def test_slot_views_carry_bounded_window_with_blank_token() -> None:
    occurrences = extract_occurrences("x" * 200 + "$[Amount]" + "y" * 200, "plain_text")

    view = build_slot_views(occurrences, prompt_window=10)[0]

    assert view.text_window == "x" * 10 + "[BLANK]" + "y" * 10
    assert view.has_currency_marker is True
    assert view.kind == "bracket"


def test_scenario_one_timed_out_batch_leaves_only_its_slots_unmapped(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="blankfill.mapper")
    occurrences = _occurrences(120)
    oracle = MappingOracle(hang_on={"t0041"})

    try:
        result = map_slots(
            occurrences,
            FIELDS,
            oracle,
            batch_size=40,
            timeout_seconds=0.5,
            max_workers=4,
        )
    finally:
        oracle.release.set()

    assert result.batch_count == 3
    assert len(result.mapping) == 80
    assert not any(f"t{index:04d}" in result.mapping for index in range(41, 81))
    assert "t0001" in result.mapping and "t0120" in result.mapping
    assert [(item.index, item.size, item.reason) for item in result.failed_batches] == [
        (1, 40, "timeout")
    ]
    messages = [record.message for record in caplog.records if record.name == "blankfill.mapper"]
    assert any('"event":"mapping_batch_failed"' in message for message in messages)


def test_failed_batch_contributes_nothing_and_others_apply() -> None:
    occurrences = _occurrences(6)
    oracle = MappingOracle(fail_on={"t0003": RuntimeError("boom")})

    result = map_slots(occurrences, FIELDS, oracle, batch_size=2, max_workers=1)

    assert sorted(result.mapping) == ["t0001", "t0002", "t0005", "t0006"]
    assert result.failed_batches[0].reason == "error"
    assert result.failed_batches[0].error_type == "RuntimeError"
    assert len(oracle.calls) == 3


def test_oracle_timeout_error_is_reported_as_timeout() -> None:
    oracle = MappingOracle(fail_on={"t0001": OracleTimeoutError("slow")})

    result = map_slots(_occurrences(2), FIELDS, oracle, batch_size=1)

    assert list(result.mapping) == ["t0002"]
    assert result.failed_batches[0].reason == "timeout"


def test_unknown_ids_and_keys_are_dropped() -> None:
    class NoisyOracle:
        def map_slots(self, slots, fields):
            return {
                "t0001": "company_name",
                "t0002": "not_a_field",
                "t9999": "amount",
                "t0003": 7,
            }

    result = map_slots(_occurrences(3), FIELDS, NoisyOracle())

    assert result.mapping == {"t0001": "company_name"}


def test_no_oracle_call_without_slots_or_fields() -> None:
    oracle = MappingOracle()

    assert map_slots([], FIELDS, oracle).mapping == {}
    assert map_slots(_occurrences(2), [], oracle).mapping == {}
    assert oracle.calls == []
