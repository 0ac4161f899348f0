"""Derive the three parallel representations from docx package bytes."""

from __future__ import annotations

import io

import mammoth

from core.templates.models import Representations
from core.utils.docx_xml import read_document_xml


def extract_representations(package_bytes: bytes) -> Representations:
    """Return plain text (mammoth raw text), styled markup (mammoth HTML) and document XML."""

    packaged_markup = read_document_xml(package_bytes)
    plain_text = mammoth.extract_raw_text(io.BytesIO(package_bytes)).value or ""
    styled_markup = mammoth.convert_to_html(io.BytesIO(package_bytes)).value or ""
    return Representations(
        plain_text=plain_text,
        styled_markup=styled_markup,
        packaged_markup=packaged_markup,
    )
