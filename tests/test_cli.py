from __future__ import annotations

import json
from pathlib import Path

import pytest
from docx import Document
from typer.testing import CliRunner

import core.orchestrator.pipeline as pipeline_module
from apps.cli.main import app
from core.utils.errors import RepackagingError

runner = CliRunner()


def _write_docx(path: Path, *paragraphs: str) -> None:
    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    document.save(str(path))


def _write_json(path: Path, payload: object) -> None:
    path.write_text(json.dumps(payload), encoding="utf-8")


@pytest.fixture(autouse=True)
def _no_remote_oracle(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BLANKFILL_ORACLE", "offline")


def test_scan_prints_slots_as_json(tmp_path: Path) -> None:
    document = tmp_path / "safe.docx"
    _write_docx(document, "Issued by [Company Name].", "Title:")

    result = runner.invoke(app, ["scan", "--document", str(document)])

    assert result.exit_code == 0
    slots = json.loads(result.stdout)
    assert [(slot["id"], slot["kind"], slot["raw"]) for slot in slots] == [
        ("t0001", "bracket", "[Company Name]"),
        ("t0002", "label_only", "Title:"),
    ]


def test_scan_rejects_unknown_representation(tmp_path: Path) -> None:
    document = tmp_path / "safe.docx"
    _write_docx(document, "Issued by [Company Name].")

    result = runner.invoke(
        app, ["scan", "--document", str(document), "--representation", "pdf"]
    )

    assert result.exit_code == 2
    assert "--representation must be one of" in result.stdout


def test_normalize_then_fill_writes_outputs(tmp_path: Path) -> None:
    document = tmp_path / "safe.docx"
    descriptors = tmp_path / "descriptors.json"
    fields = tmp_path / "fields.json"
    out_dir = tmp_path / "out"
    _write_docx(document, "Issued by [Company Name].", "[Company Name] agrees.")
    _write_json(
        descriptors,
        [{"key": "company_name", "originalPattern": "[Company Name]", "numberOfOccurrences": 2}],
    )
    _write_json(fields, {"company_name": "Acme Inc."})

    normalized = runner.invoke(
        app,
        [
            "normalize",
            "--document",
            str(document),
            "--descriptors",
            str(descriptors),
            "--out-dir",
            str(out_dir),
        ],
    )

    assert normalized.exit_code == 0
    assert "applied=1" in normalized.stdout
    for name in ("out.normalized.docx", "out.normalized.html", "out.normalized.txt"):
        assert (out_dir / name).exists()
    analysis = json.loads((out_dir / "out.analysis.json").read_text(encoding="utf-8"))
    assert analysis["report"]["outcomes"][0]["replaced"]["packaged_markup"] == 2

    filled = runner.invoke(
        app,
        [
            "fill",
            "--document",
            str(out_dir / "out.normalized.docx"),
            "--fields",
            str(fields),
            "--html",
            str(out_dir / "out.normalized.html"),
            "--text",
            str(out_dir / "out.normalized.txt"),
            "--out-dir",
            str(out_dir),
        ],
    )

    assert filled.exit_code == 0
    assert "INFO: success" in filled.stdout
    html = (out_dir / "out.filled.html").read_text(encoding="utf-8")
    assert "<p>Acme Inc. agrees.</p>" in html
    assert "{{" not in (out_dir / "out.filled.txt").read_text(encoding="utf-8")
    paragraphs = [p.text for p in Document(str(out_dir / "out.filled.docx")).paragraphs]
    assert paragraphs == ["Issued by Acme Inc..", "Acme Inc. agrees."]
    report = json.loads((out_dir / "out.fill_report.json").read_text(encoding="utf-8"))
    assert report["mode"] == "both"
    assert not list(out_dir.glob("*.tmp"))


def test_fill_preview_without_html_exits_with_input_error(tmp_path: Path) -> None:
    document = tmp_path / "normalized.docx"
    fields = tmp_path / "fields.json"
    _write_docx(document, "{{company_name}}")
    _write_json(fields, [{"key": "company_name", "value": "Acme"}])

    result = runner.invoke(
        app,
        [
            "fill",
            "--document",
            str(document),
            "--fields",
            str(fields),
            "--mode",
            "preview",
            "--out-dir",
            str(tmp_path / "out"),
        ],
    )

    assert result.exit_code == 2
    assert "normalized styled markup is required" in result.stdout
    assert not (tmp_path / "out" / "out.fill_report.json").exists()


def test_fill_rejects_unknown_mode(tmp_path: Path) -> None:
    document = tmp_path / "normalized.docx"
    fields = tmp_path / "fields.json"
    _write_docx(document, "{{company_name}}")
    _write_json(fields, [])

    result = runner.invoke(
        app,
        ["fill", "--document", str(document), "--fields", str(fields), "--mode", "print"],
    )

    assert result.exit_code == 2


def test_normalize_rejects_invalid_document(tmp_path: Path) -> None:
    document = tmp_path / "broken.docx"
    document.write_bytes(b"not a docx")

    result = runner.invoke(
        app, ["normalize", "--document", str(document), "--out-dir", str(tmp_path)]
    )

    assert result.exit_code == 2
    assert "ERROR:" in result.stdout


def test_normalize_rejects_unknown_oracle(tmp_path: Path) -> None:
    document = tmp_path / "safe.docx"
    _write_docx(document, "[Company Name]")

    result = runner.invoke(
        app,
        ["normalize", "--document", str(document), "--oracle", "psychic", "--out-dir", str(tmp_path)],
    )

    assert result.exit_code == 2
    assert "--oracle must be one of" in result.stdout


def test_repackaging_failure_exits_with_code_three(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    document = tmp_path / "safe.docx"
    _write_docx(document, "[Company Name]")

    def _explode(package_bytes: bytes, document_xml: str) -> bytes:
        raise RepackagingError("cannot rebuild")

    monkeypatch.setattr(pipeline_module, "replace_document_xml", _explode)

    result = runner.invoke(
        app, ["normalize", "--document", str(document), "--out-dir", str(tmp_path / "out")]
    )

    assert result.exit_code == 3
    assert "repackaging failed" in result.stdout
