from __future__ import annotations

import base64
import io
import logging
from typing import Any

import httpx
import pytest
from docx import Document

import apps.api.main as api_main
from apps.api.main import app
from core.oracles.offline import OfflineOracle
from core.utils.errors import RepackagingError


def _normalized_docx_b64() -> str:
    document = Document()
    document.add_paragraph("Issued by {{company_name}}.")
    document.add_paragraph("{{company_name}} agrees.")
    buffer = io.BytesIO()
    document.save(buffer)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def _body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "normalized_document": _normalized_docx_b64(),
        "normalized_html": "<p>Issued by {{company_name}}.</p><p>{{company_name}} agrees.</p>",
        "normalized_text": "Issued by {{company_name}}.\n\n{{company_name}} agrees.\n\n",
        "fields": [{"key": "company_name", "value": "Acme & Co"}],
    }
    body.update(overrides)
    return body


@pytest.fixture(autouse=True)
def _offline_oracle(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(api_main, "_build_oracle", lambda settings: OfflineOracle())


async def _post_fill(body: Any, mode: str | None = None) -> httpx.Response:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        params = {"mode": mode} if mode is not None else None
        return await client.post("/v1/fill", json=body, params=params)


@pytest.mark.anyio
async def test_fill_both_returns_html_text_and_document() -> None:
    response = await _post_fill(_body())

    assert response.status_code == 200
    payload = response.json()
    assert payload["filled_html"] == "<p>Issued by Acme &amp; Co.</p><p>Acme &amp; Co agrees.</p>"
    assert payload["filled_text"] == "Issued by Acme & Co.\n\nAcme & Co agrees.\n\n"
    filled = Document(io.BytesIO(base64.b64decode(payload["filled_document"])))
    assert [paragraph.text for paragraph in filled.paragraphs] == [
        "Issued by Acme & Co.",
        "Acme & Co agrees.",
    ]
    assert payload["report"]["mode"] == "both"


@pytest.mark.anyio
async def test_fill_preview_returns_html_only() -> None:
    response = await _post_fill(_body(normalized_text=None), mode="preview")

    assert response.status_code == 200
    payload = response.json()
    assert payload["filled_html"].startswith("<p>Issued by Acme &amp; Co.</p>")
    assert payload["filled_document"] is None
    assert payload["filled_text"] is None


@pytest.mark.anyio
async def test_fill_download_returns_docx_attachment() -> None:
    response = await _post_fill(_body(normalized_html=None), mode="download")

    assert response.status_code == 200
    assert response.headers["content-disposition"] == 'attachment; filename="filled.docx"'
    assert response.content.startswith(b"PK\x03\x04")
    assert response.headers["X-Blankfill-Request-Id"]
    filled = Document(io.BytesIO(response.content))
    assert filled.paragraphs[1].text == "Acme & Co agrees."


@pytest.mark.anyio
async def test_fill_preview_without_html_is_client_error() -> None:
    response = await _post_fill(_body(normalized_html=None), mode="preview")

    assert response.status_code == 400
    payload = response.json()
    assert payload["error_code"] == "INVALID_ARGUMENT"
    assert payload["detail"]["field"] == "normalized_html"
    assert payload["detail"]["request_id"] == response.headers["X-Blankfill-Request-Id"]


@pytest.mark.anyio
async def test_fill_without_document_is_invalid_document() -> None:
    response = await _post_fill(_body(normalized_document=None), mode="both")

    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_DOCUMENT"


@pytest.mark.anyio
async def test_fill_with_bad_base64_is_invalid_document() -> None:
    response = await _post_fill(_body(normalized_document="%%%"), mode="download")

    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_DOCUMENT"


@pytest.mark.anyio
async def test_fill_without_fields_is_invalid_argument() -> None:
    response = await _post_fill(_body(fields=None), mode="download")

    assert response.status_code == 400
    payload = response.json()
    assert payload["error_code"] == "INVALID_ARGUMENT"
    assert payload["detail"]["field"] == "fields"


@pytest.mark.anyio
async def test_fill_rejects_unknown_mode() -> None:
    response = await _post_fill(_body(), mode="print")

    assert response.status_code == 400
    assert response.json()["detail"]["allowed"] == ["both", "download", "preview"]


@pytest.mark.anyio
async def test_fill_rejects_non_object_body() -> None:
    response = await _post_fill(["not", "an", "object"])

    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_JSON"


@pytest.mark.anyio
async def test_repackaging_failure_is_internal_error(
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="blankfill.api")

    def _explode(*args: Any, **kwargs: Any):
        raise RepackagingError("cannot rebuild")

    monkeypatch.setattr(api_main, "fill_document", _explode)

    response = await _post_fill(_body(), mode="download")

    assert response.status_code == 500
    assert response.json()["error_code"] == "REPACKAGING_FAILED"
    request_id = response.headers["X-Blankfill-Request-Id"]
    messages = [record.message for record in caplog.records if record.name == "blankfill.api"]
    assert any(
        '"event":"error"' in message
        and '"error_code":"REPACKAGING_FAILED"' in message
        and request_id in message
        for message in messages
    )


@pytest.mark.anyio
async def test_unexpected_failure_is_internal_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def _explode(*args: Any, **kwargs: Any):
        raise RuntimeError("boom")

    monkeypatch.setattr(api_main, "fill_document", _explode)

    response = await _post_fill(_body(), mode="both")

    assert response.status_code == 500
    assert response.json()["error_code"] == "INTERNAL_ERROR"
