from __future__ import annotations

import io
import zipfile

import pytest
from docx import Document

from core.templates.representations import extract_representations
from core.utils.docx_xml import DOCUMENT_PART, read_document_xml, replace_document_xml
from core.utils.errors import InputError, RepackagingError


def _build_docx_bytes(*paragraphs: str) -> bytes:
    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _entries(package_bytes: bytes) -> list[tuple[str, int, bytes]]:
    with zipfile.ZipFile(io.BytesIO(package_bytes)) as archive:
        return [
            (info.filename, info.compress_type, archive.read(info.filename))
            for info in archive.infolist()
        ]


def test_read_document_xml_returns_main_part() -> None:
    xml = read_document_xml(_build_docx_bytes("Hello [Name]"))

    assert "<w:document" in xml
    assert "Hello [Name]" in xml


def test_noop_rewrite_round_trips_every_entry() -> None:
    original = _build_docx_bytes("Hello [Name]", "Second paragraph")

    rewritten = replace_document_xml(original, read_document_xml(original))

    assert _entries(rewritten) == _entries(original)


def test_rewrite_changes_only_document_part() -> None:
    original = _build_docx_bytes("Hello [Name]")
    xml = read_document_xml(original).replace("[Name]", "{{name}}")

    rewritten = replace_document_xml(original, xml)

    before = {name: data for name, _, data in _entries(original)}
    after = {name: data for name, _, data in _entries(rewritten)}
    assert before.keys() == after.keys()
    changed = [name for name in before if before[name] != after[name]]
    assert changed == [DOCUMENT_PART]
    assert Document(io.BytesIO(rewritten)).paragraphs[0].text == "Hello {{name}}"


def test_malformed_document_xml_raises_repackaging_error() -> None:
    original = _build_docx_bytes("Hello")

    with pytest.raises(RepackagingError):
        replace_document_xml(original, "<w:document><w:body>")


@pytest.mark.parametrize("payload", [b"", b"not a zip file", b"PK\x03\x04garbage"])
def test_invalid_package_raises_input_error(payload: bytes) -> None:
    with pytest.raises(InputError) as exc_info:
        read_document_xml(payload)

    assert exc_info.value.field == "document"


def test_package_without_document_part_raises_input_error() -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("hello.txt", "hi")

    with pytest.raises(InputError):
        read_document_xml(buffer.getvalue())


def test_extract_representations_builds_three_views() -> None:
    representations = extract_representations(
        _build_docx_bytes("Between [Company Name] & the Investor.", "Title:")
    )

    assert "Between [Company Name] & the Investor." in representations.plain_text
    assert "<p>Between [Company Name] &amp; the Investor.</p>" in representations.styled_markup
    assert "<p>Title:</p>" in representations.styled_markup
    assert "[Company Name] &amp; the Investor." in representations.packaged_markup
