"""Orchestration for the analyze (normalize) and fill (rehydrate) stages."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import cast, get_args

from core.config.models import FillSettings
from core.mapping.slot_mapper import map_slots
from core.oracles.base import DetectionOracle, ResolutionOracle, SummaryOracle
from core.render.models import FillMode, FillReport, RepresentationFillSummary
from core.render.rehydrator import rehydrate_representation
from core.templates.models import (
    FieldValue,
    NormalizationReport,
    Occurrence,
    PlaceholderDescriptor,
    RepresentationKind,
    Representations,
)
from core.templates.normalizer import normalize_representations
from core.templates.occurrence_extractor import extract_occurrences
from core.templates.representations import extract_representations
from core.utils.docx_xml import read_document_xml, replace_document_xml
from core.utils.errors import InputError
from core.utils.log_events import log_event

logger = logging.getLogger("blankfill.engine")

FILL_MODES: frozenset[str] = frozenset(get_args(FillMode))


@dataclass(frozen=True)
class AnalysisResult:
    """Normalized document produced by the analyze stage."""

    extracted_text: str
    representations: Representations
    package: bytes
    descriptors: list[PlaceholderDescriptor]
    summary: str | None
    report: NormalizationReport


@dataclass(frozen=True)
class FillResult:
    """Filled outputs produced by the fill stage."""

    styled_markup: str | None
    plain_text: str | None
    package: bytes | None
    report: FillReport


def analyze_document(
    package_bytes: bytes,
    *,
    detector: DetectionOracle | None = None,
    summarizer: SummaryOracle | None = None,
    settings: FillSettings | None = None,
    descriptors: Sequence[PlaceholderDescriptor] | None = None,
) -> AnalysisResult:
    """Derive representations, detect placeholders, normalize and repackage."""

    settings = settings or FillSettings()
    original = extract_representations(package_bytes)

    detect_needed = descriptors is None and detector is not None
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="blankfill-analyze") as executor:
        detection = (
            executor.submit(_detect, detector, original.plain_text, settings)
            if detect_needed
            else None
        )
        summary = (
            executor.submit(_summarize, summarizer, original.plain_text, settings)
            if summarizer is not None
            else None
        )
        detected = detection.result() if detection is not None else list(descriptors or [])
        summary_text = summary.result() if summary is not None else None

    normalized = normalize_representations(original, detected)
    package = replace_document_xml(package_bytes, normalized.representations.packaged_markup)

    log_event(
        logger,
        logging.INFO,
        "analyze_done",
        descriptor_count=len(detected),
        applied_keys=normalized.report.keys,
        skipped=[item.key for item in normalized.report.skipped],
    )
    return AnalysisResult(
        extracted_text=original.plain_text,
        representations=normalized.representations,
        package=package,
        descriptors=detected,
        summary=summary_text,
        report=normalized.report,
    )


def fill_document(
    package_bytes: bytes | None,
    fields: Sequence[FieldValue] | None,
    *,
    mode: str = "both",
    styled_markup: str | None = None,
    plain_text: str | None = None,
    resolver: ResolutionOracle | None = None,
    settings: FillSettings | None = None,
) -> FillResult:
    """Fill normalized representations with resolved values.

    Raises:
        InputError: when the mode is unknown or a representation the mode needs
            is missing.
        RepackagingError: when the filled package cannot be rebuilt.
    """

    settings = settings or FillSettings()
    if mode not in FILL_MODES:
        raise InputError(f"unsupported mode: {mode}", field="mode")
    if not package_bytes:
        raise InputError("normalized document is required", field="normalized_document")
    if fields is None:
        raise InputError("fields are required", field="fields")
    if mode in {"preview", "both"} and not styled_markup:
        raise InputError(
            "normalized styled markup is required for preview",
            field="normalized_html",
        )

    targets: dict[RepresentationKind, str] = {}
    if mode in {"preview", "both"} and styled_markup:
        targets["styled_markup"] = styled_markup
    if mode in {"download", "both"}:
        targets["packaged_markup"] = read_document_xml(package_bytes)
    if plain_text:
        targets["plain_text"] = plain_text

    occurrences: list[Occurrence] = []
    for kind, text in targets.items():
        occurrences.extend(
            extract_occurrences(
                text,
                kind,
                label_words=settings.label_words,
                context_window=settings.context_window,
            )
        )

    report = FillReport(
        mode=cast(FillMode, mode),
        field_keys=[item.key for item in fields],
    )
    if resolver is not None and occurrences and fields:
        report.slot_mapping = map_slots(
            occurrences,
            fields,
            resolver,
            batch_size=settings.mapping_batch_size,
            timeout_seconds=settings.mapping_timeout_seconds,
            max_workers=settings.mapping_max_workers,
            prompt_window=settings.prompt_window,
        )

    filled: dict[RepresentationKind, str] = {}
    for kind, text in targets.items():
        outcome = rehydrate_representation(
            text,
            kind,
            fields,
            occurrences=occurrences,
            slot_mapping=report.slot_mapping.mapping,
            label_window=settings.label_window,
        )
        filled[kind] = outcome.text
        report.entries.extend(outcome.entries)
        report.representations[kind] = RepresentationFillSummary(
            slot_count=sum(1 for item in occurrences if item.representation == kind),
            slots_filled=sum(1 for item in outcome.entries if item.status != "skipped"),
            markers_replaced=outcome.markers_replaced,
            unresolved_markers=outcome.unresolved_markers,
        )

    package = (
        replace_document_xml(package_bytes, filled["packaged_markup"])
        if "packaged_markup" in filled
        else None
    )

    log_event(
        logger,
        logging.INFO,
        "fill_done",
        mode=mode,
        field_count=len(fields),
        slot_count=len(occurrences),
        mapped_count=len(report.slot_mapping.mapping),
        failed_batches=[item.index for item in report.slot_mapping.failed_batches],
    )
    return FillResult(
        styled_markup=filled.get("styled_markup"),
        plain_text=filled.get("plain_text"),
        package=package,
        report=report,
    )


def chunk_text(text: str, size: int, overlap: int) -> list[str]:
    """Split ``text`` into windows of ``size`` characters overlapping by ``overlap``."""

    if len(text) <= size:
        return [text]
    step = size - overlap
    return [text[start : start + size] for start in range(0, len(text), step)]


def _detect(
    detector: DetectionOracle,
    text: str,
    settings: FillSettings,
) -> list[PlaceholderDescriptor]:
    chunks = chunk_text(text, settings.detection_chunk_size, settings.detection_chunk_overlap)
    detected: list[PlaceholderDescriptor] = []
    for index, chunk in enumerate(chunks):
        try:
            detected.extend(detector.detect_placeholders(chunk))
        except Exception as exc:  # noqa: BLE001
            log_event(
                logger,
                logging.WARNING,
                "detection_chunk_failed",
                chunk_index=index,
                chunk_total=len(chunks),
                error_type=type(exc).__name__,
            )
    return detected


def _summarize(summarizer: SummaryOracle, text: str, settings: FillSettings) -> str | None:
    try:
        return summarizer.summarize(text[: settings.summary_input_chars]) or None
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.WARNING, "summary_failed", error_type=type(exc).__name__)
        return None
