"""CLI I/O helpers for atomic output writing."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from core.orchestrator.pipeline import AnalysisResult, FillResult


@dataclass(frozen=True)
class NormalizeOutputPaths:
    """Fixed artifact paths for one normalize run."""

    docx: Path
    html: Path
    text: Path
    analysis: Path


@dataclass(frozen=True)
class FillOutputPaths:
    """Fixed artifact paths for one fill run."""

    docx: Path
    html: Path
    text: Path
    report: Path


def build_normalize_paths(out_dir: Path) -> NormalizeOutputPaths:
    """Build fixed normalize output file paths under out_dir."""

    return NormalizeOutputPaths(
        docx=out_dir / "out.normalized.docx",
        html=out_dir / "out.normalized.html",
        text=out_dir / "out.normalized.txt",
        analysis=out_dir / "out.analysis.json",
    )


def build_fill_paths(out_dir: Path) -> FillOutputPaths:
    """Build fixed fill output file paths under out_dir."""

    return FillOutputPaths(
        docx=out_dir / "out.filled.docx",
        html=out_dir / "out.filled.html",
        text=out_dir / "out.filled.txt",
        report=out_dir / "out.fill_report.json",
    )


def write_analysis_atomic(paths: NormalizeOutputPaths, result: AnalysisResult) -> None:
    """Write the normalized package, both text views and the analysis JSON."""

    paths.docx.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_bytes(paths.docx, result.package)
    _atomic_write_text(paths.html, result.representations.styled_markup)
    _atomic_write_text(paths.text, result.representations.plain_text)
    _atomic_write_json(
        paths.analysis,
        {
            "descriptors": [item.model_dump(mode="json") for item in result.descriptors],
            "document_summary": result.summary,
            "report": result.report.model_dump(mode="json"),
        },
    )


def write_fill_atomic(paths: FillOutputPaths, result: FillResult) -> list[Path]:
    """Write whichever filled outputs exist plus the fill report; return written paths."""

    paths.report.parent.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    if result.package is not None:
        _atomic_write_bytes(paths.docx, result.package)
        written.append(paths.docx)
    if result.styled_markup is not None:
        _atomic_write_text(paths.html, result.styled_markup)
        written.append(paths.html)
    if result.plain_text is not None:
        _atomic_write_text(paths.text, result.plain_text)
        written.append(paths.text)
    _atomic_write_json(paths.report, result.report.model_dump(mode="json"))
    written.append(paths.report)
    return written


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        prefix=f"{path.name}.",
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        json.dump(payload, tmp, ensure_ascii=False, sort_keys=True, separators=(",", ":"))

    tmp_path.replace(path)


def _atomic_write_text(path: Path, text: str) -> None:
    _atomic_write_bytes(path, text.encode("utf-8"))


def _atomic_write_bytes(path: Path, data: bytes) -> None:
    fd, raw_tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f"{path.name}.",
        suffix=".tmp",
    )
    tmp_path = Path(raw_tmp_path)

    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        tmp_path.replace(path)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
        raise
