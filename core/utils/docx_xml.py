"""Utilities for docx package XML operations.

All reads and writes of the package's text-bearing part must go through here.
Only ``word/document.xml`` is ever rewritten; every other entry is copied as is.
"""

from __future__ import annotations

import io
import zipfile

from docx import Document

from core.utils.errors import InputError, RepackagingError

DOCUMENT_PART = "word/document.xml"
ZIP_MAGIC = b"PK\x03\x04"


def read_document_xml(package_bytes: bytes) -> str:
    """Return the main document part of a docx package as text."""

    if not package_bytes or not package_bytes.startswith(ZIP_MAGIC):
        raise InputError("document must be a valid .docx package", field="document")

    try:
        with zipfile.ZipFile(io.BytesIO(package_bytes), "r") as archive:
            raw = archive.read(DOCUMENT_PART)
    except KeyError as exc:
        raise InputError(f"document package has no {DOCUMENT_PART}", field="document") from exc
    except zipfile.BadZipFile as exc:
        raise InputError("document must be a valid .docx package", field="document") from exc

    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InputError(f"{DOCUMENT_PART} is not UTF-8", field="document") from exc


def replace_document_xml(package_bytes: bytes, document_xml: str) -> bytes:
    """Write ``document_xml`` back into the package and re-serialize it.

    Entry order, names, compression and timestamps of all other parts are kept.

    Raises:
        RepackagingError: when the package cannot be rebuilt or the result does
            not open as a Word document.
    """

    buffer = io.BytesIO()
    try:
        with zipfile.ZipFile(io.BytesIO(package_bytes), "r") as source, zipfile.ZipFile(
            buffer, "w"
        ) as target:
            if DOCUMENT_PART not in source.namelist():
                raise RepackagingError(f"package has no {DOCUMENT_PART}")
            for info in source.infolist():
                if info.filename == DOCUMENT_PART:
                    target.writestr(info, document_xml.encode("utf-8"))
                else:
                    target.writestr(info, source.read(info.filename))
    except (zipfile.BadZipFile, OSError, ValueError) as exc:
        raise RepackagingError(f"failed to rebuild document package: {exc}") from exc

    repackaged = buffer.getvalue()
    validate_package(repackaged)
    return repackaged


def validate_package(package_bytes: bytes) -> None:
    """Ensure the package opens as a Word document."""

    try:
        Document(io.BytesIO(package_bytes))
    except Exception as exc:  # noqa: BLE001
        raise RepackagingError(f"rewritten package is not a valid document: {exc}") from exc
