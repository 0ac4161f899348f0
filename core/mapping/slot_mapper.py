"""Batched slot-to-field mapping against a resolution oracle.

The ordered slot list is cut into fixed-size batches. Each batch is submitted
on its own with a timeout; a batch that times out or fails contributes no
mappings and the remaining batches still apply. Batches are disjoint by slot
id, so merging is a plain union and completion order does not matter.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from core.oracles.base import ResolutionOracle
from core.oracles.parsing import parse_slot_mapping
from core.templates.models import FieldValue, Occurrence, SlotView
from core.utils.errors import OracleTimeoutError
from core.utils.log_events import log_event

logger = logging.getLogger("blankfill.mapper")

DEFAULT_BATCH_SIZE = 40
DEFAULT_TIMEOUT_SECONDS = 20.0
DEFAULT_MAX_WORKERS = 4
DEFAULT_PROMPT_WINDOW = 90
BLANK_TOKEN = "[BLANK]"

T = TypeVar("T")


class BatchFailure(BaseModel):
    """A batch that contributed no mappings."""

    model_config = ConfigDict(extra="forbid")

    index: int
    size: int
    reason: Literal["timeout", "error"]
    error_type: str | None = None


class SlotMappingResult(BaseModel):
    """Aggregate mapping plus per-batch bookkeeping."""

    model_config = ConfigDict(extra="forbid")

    mapping: dict[str, str] = Field(default_factory=dict)
    batch_count: int = 0
    failed_batches: list[BatchFailure] = Field(default_factory=list)


def build_slot_views(
    occurrences: Sequence[Occurrence],
    prompt_window: int = DEFAULT_PROMPT_WINDOW,
) -> list[SlotView]:
    """Build the light-weight slot descriptions handed to the oracle."""

    return [
        SlotView(
            id=occurrence.id,
            representation=occurrence.representation,
            kind=occurrence.kind,
            label_guess=occurrence.label_guess,
            has_currency_marker=occurrence.has_currency_marker,
            text_window=(
                occurrence.context_before[-prompt_window:]
                + BLANK_TOKEN
                + occurrence.context_after[:prompt_window]
            ),
        )
        for occurrence in occurrences
    ]


def partition(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into consecutive batches of at most ``size``, preserving order."""

    if size <= 0:
        raise ValueError("batch size must be positive")
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


def map_slots(
    occurrences: Sequence[Occurrence],
    fields: Sequence[FieldValue],
    resolver: ResolutionOracle,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    max_workers: int = DEFAULT_MAX_WORKERS,
    prompt_window: int = DEFAULT_PROMPT_WINDOW,
) -> SlotMappingResult:
    """Map slots to field keys batch by batch; never raises for oracle failures."""

    if not occurrences or not fields:
        return SlotMappingResult()

    batches = partition(build_slot_views(occurrences, prompt_window), batch_size)
    allowed_keys = {field.key for field in fields}
    result = SlotMappingResult(batch_count=len(batches))
    indexed = list(enumerate(batches))
    wave_size = max(1, max_workers)

    for wave_start in range(0, len(indexed), wave_size):
        wave = indexed[wave_start : wave_start + wave_size]
        executor = ThreadPoolExecutor(max_workers=len(wave), thread_name_prefix="blankfill-mapper")
        try:
            submitted: list[tuple[int, list[SlotView], Future[dict[str, str]]]] = [
                (index, batch, executor.submit(resolver.map_slots, batch, list(fields)))
                for index, batch in wave
            ]
            deadline = time.monotonic() + timeout_seconds
            for index, batch, future in submitted:
                _collect_batch(
                    result,
                    index=index,
                    batch=batch,
                    future=future,
                    timeout=max(0.0, deadline - time.monotonic()),
                    allowed_keys=allowed_keys,
                    batch_total=len(batches),
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    log_event(
        logger,
        logging.INFO,
        "slot_mapping_done",
        slot_count=len(occurrences),
        batch_count=result.batch_count,
        failed_batches=[failure.index for failure in result.failed_batches],
        mapped_count=len(result.mapping),
    )
    return result


def _collect_batch(
    result: SlotMappingResult,
    *,
    index: int,
    batch: list[SlotView],
    future: Future[dict[str, str]],
    timeout: float,
    allowed_keys: set[str],
    batch_total: int,
) -> None:
    try:
        raw = future.result(timeout=timeout)
    except (FutureTimeoutError, OracleTimeoutError):
        future.cancel()
        result.failed_batches.append(BatchFailure(index=index, size=len(batch), reason="timeout"))
        log_event(
            logger,
            logging.WARNING,
            "mapping_batch_failed",
            batch_index=index,
            batch_total=batch_total,
            reason="timeout",
        )
        return
    except Exception as exc:  # noqa: BLE001
        result.failed_batches.append(
            BatchFailure(
                index=index,
                size=len(batch),
                reason="error",
                error_type=type(exc).__name__,
            )
        )
        log_event(
            logger,
            logging.WARNING,
            "mapping_batch_failed",
            batch_index=index,
            batch_total=batch_total,
            reason="error",
            error_type=type(exc).__name__,
        )
        return

    partial = parse_slot_mapping(
        raw,
        allowed_ids={slot.id for slot in batch},
        allowed_keys=allowed_keys,
    )
    result.mapping.update(partial)
    log_event(
        logger,
        logging.DEBUG,
        "mapping_batch_done",
        batch_index=index,
        batch_total=batch_total,
        mapped_count=len(partial),
    )
