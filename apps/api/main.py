"""FastAPI wrapper for the blankfill analyze/fill pipeline."""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Annotated, Any

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, ValidationError
from starlette.concurrency import run_in_threadpool

from core.config.models import FillSettings
from core.config.settings_loader import load_settings
from core.oracles.base import Oracle
from core.oracles.parsing import parse_descriptors, parse_field_values
from core.oracles.registry import create_oracle, default_oracle_name
from core.orchestrator.pipeline import FILL_MODES, analyze_document, fill_document
from core.templates.models import PlaceholderDescriptor
from core.utils.docx_xml import ZIP_MAGIC
from core.utils.errors import InputError, RepackagingError
from core.utils.log_events import dump_json

app = FastAPI(title="blankfill API", version="0.1.0")
logger = logging.getLogger("blankfill.api")

REQUEST_ID_HEADER = "X-Blankfill-Request-Id"
DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

_DEFAULT_MAX_UPLOAD_BYTES = 25 * 1024 * 1024
_DEFAULT_TIMEOUT_SECONDS = 120.0
_DOCUMENT_FIELDS = {"document", "normalized_document"}


class ApiRequestError(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        error_code: str,
        message: str,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.detail = detail or {}


class FillRequest(BaseModel):
    """JSON body of ``POST /v1/fill``."""

    model_config = ConfigDict(extra="ignore")

    normalized_document: str | None = None
    normalized_html: str | None = None
    normalized_text: str | None = None
    fields: Any = None


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Ensure every response has a request id header."""

    request_id = uuid.uuid4().hex
    request.state.request_id = request_id
    try:
        response = await call_next(request)
    except Exception:  # noqa: BLE001
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="INTERNAL_ERROR",
            status_code=500,
            failure_stage="middleware",
        )
        response = _error_response(
            status_code=500,
            error_code="INTERNAL_ERROR",
            message="internal server error",
            request_id=request_id,
            detail={"path": request.url.path},
        )
    response.headers.setdefault(REQUEST_ID_HEADER, request_id)
    return response


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    """Liveness endpoint."""

    return {"status": "ok"}


@app.post("/v1/analyze", response_model=None)
async def analyze_v1(
    request: Request,
    document: Annotated[UploadFile, File(...)],
    descriptors: Annotated[str | None, Form()] = None,
) -> JSONResponse:
    """Detect placeholders and return the normalized document in every representation."""

    request_started = time.perf_counter()
    request_id = _request_id_from_request(request)
    failure_stage = "init"

    try:
        failure_stage = "upload"
        _validate_upload_name(document.filename, expected_suffix=".docx", field_name="document")
        package_bytes = _read_upload_with_limit(
            upload=document,
            max_bytes=_max_upload_bytes(),
            field_name="document",
        )
        if not package_bytes.startswith(ZIP_MAGIC):
            raise ApiRequestError(
                status_code=415,
                error_code="INVALID_MEDIA_TYPE",
                message="document must be a valid .docx file",
                detail={"field": "document"},
            )

        failure_stage = "validate_inputs"
        supplied = _parse_descriptors_form(descriptors)
        settings = _load_settings()
        oracle = _build_oracle(settings) if supplied is None else None

        _log_event(
            logging.INFO,
            "start",
            request_id,
            endpoint="analyze",
            document_bytes=len(package_bytes),
            descriptors_supplied=supplied is not None,
            oracle=getattr(oracle, "name", None),
        )

        failure_stage = "pipeline"
        result = await _run_with_timeout(
            analyze_document,
            package_bytes,
            detector=oracle,
            summarizer=oracle,
            settings=settings,
            descriptors=supplied,
        )

        failure_stage = "respond"
        payload = {
            "filename": document.filename,
            "extracted_text": result.extracted_text,
            "normalized_text": result.representations.plain_text,
            "normalized_html": result.representations.styled_markup,
            "normalized_document": base64.b64encode(result.package).decode("ascii"),
            "fields": [
                item.model_dump(mode="json", exclude={"original_pattern", "occurrence_count"})
                for item in result.descriptors
            ],
            "document_summary": result.summary,
            "placeholder_count": len(result.descriptors),
            "report": result.report.model_dump(mode="json"),
        }
        _log_event(
            logging.INFO,
            "done",
            request_id,
            endpoint="analyze",
            placeholder_count=len(result.descriptors),
            applied_count=len(result.report.keys),
            total_ms=_elapsed_ms(request_started),
        )
        return JSONResponse(
            status_code=200,
            headers={REQUEST_ID_HEADER: request_id},
            content=payload,
        )
    except Exception as exc:  # noqa: BLE001
        return _handle_exception(exc, request_id, failure_stage, request_started)


@app.post("/v1/fill", response_model=None)
async def fill_v1(request: Request, mode: str = "both") -> Response:
    """Fill a normalized document with field values."""

    request_started = time.perf_counter()
    request_id = _request_id_from_request(request)
    failure_stage = "init"

    try:
        failure_stage = "validate_inputs"
        normalized_mode = mode.strip().lower()
        if normalized_mode not in FILL_MODES:
            raise ApiRequestError(
                status_code=400,
                error_code="INVALID_ARGUMENT",
                message="invalid mode",
                detail={"field": "mode", "value": mode, "allowed": sorted(FILL_MODES)},
            )

        body = await _load_fill_request(request)
        package_bytes = _decode_document(body.normalized_document)
        fields = parse_field_values(body.fields) if body.fields is not None else None
        settings = _load_settings()
        oracle = _build_oracle(settings)

        _log_event(
            logging.INFO,
            "start",
            request_id,
            endpoint="fill",
            mode=normalized_mode,
            field_count=len(fields) if fields is not None else None,
            oracle=oracle.name,
        )

        failure_stage = "pipeline"
        result = await _run_with_timeout(
            fill_document,
            package_bytes,
            fields,
            mode=normalized_mode,
            styled_markup=body.normalized_html,
            plain_text=body.normalized_text,
            resolver=oracle,
            settings=settings,
        )

        failure_stage = "respond"
        _log_event(
            logging.INFO,
            "done",
            request_id,
            endpoint="fill",
            mode=normalized_mode,
            mapped_count=len(result.report.slot_mapping.mapping),
            failed_batches=len(result.report.slot_mapping.failed_batches),
            total_ms=_elapsed_ms(request_started),
        )
        if normalized_mode == "download":
            return Response(
                content=result.package or b"",
                media_type=DOCX_MEDIA_TYPE,
                headers={
                    REQUEST_ID_HEADER: request_id,
                    "Content-Disposition": 'attachment; filename="filled.docx"',
                },
            )
        return JSONResponse(
            status_code=200,
            headers={REQUEST_ID_HEADER: request_id},
            content={
                "filled_html": result.styled_markup,
                "filled_text": result.plain_text,
                "filled_document": (
                    base64.b64encode(result.package).decode("ascii")
                    if result.package is not None
                    else None
                ),
                "report": result.report.model_dump(mode="json"),
            },
        )
    except Exception as exc:  # noqa: BLE001
        return _handle_exception(exc, request_id, failure_stage, request_started)


def _build_oracle(settings: FillSettings) -> Oracle:
    """Resolve the oracle backend for this process."""

    return create_oracle(default_oracle_name(), settings)


def _load_settings() -> FillSettings:
    raw = os.getenv("BLANKFILL_SETTINGS_PATH")
    return load_settings(Path(raw) if raw else None)


async def _run_with_timeout(func, *args: Any, **kwargs: Any) -> Any:
    timeout_seconds = _timeout_seconds()
    try:
        return await asyncio.wait_for(
            run_in_threadpool(func, *args, **kwargs),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError as exc:
        raise ApiRequestError(
            status_code=408,
            error_code="REQUEST_TIMEOUT",
            message="request timed out",
            detail={"timeout_seconds": timeout_seconds},
        ) from exc


async def _load_fill_request(request: Request) -> FillRequest:
    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ApiRequestError(
            status_code=400,
            error_code="INVALID_JSON",
            message="request body must be valid JSON",
        ) from exc

    if not isinstance(raw, dict):
        raise ApiRequestError(
            status_code=400,
            error_code="INVALID_JSON",
            message="request body must be a JSON object",
        )

    try:
        return FillRequest.model_validate(raw)
    except ValidationError as exc:
        raise ApiRequestError(
            status_code=400,
            error_code="INVALID_ARGUMENT",
            message="request body schema validation failed",
            detail={"error": str(exc)},
        ) from exc


def _decode_document(encoded: str | None) -> bytes | None:
    if not encoded:
        return None
    try:
        return base64.b64decode(encoded.encode("ascii"), validate=True)
    except (ValueError, binascii.Error) as exc:
        raise InputError(
            "normalized_document must be base64-encoded",
            field="normalized_document",
        ) from exc


def _parse_descriptors_form(raw: str | None) -> list[PlaceholderDescriptor] | None:
    if raw is None or not raw.strip():
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ApiRequestError(
            status_code=400,
            error_code="INVALID_JSON",
            message="descriptors must be valid JSON",
            detail={"field": "descriptors", "error": str(exc)},
        ) from exc
    return parse_descriptors(payload)


def _handle_exception(
    exc: Exception,
    request_id: str,
    failure_stage: str,
    request_started: float,
) -> JSONResponse:
    if isinstance(exc, ApiRequestError):
        status_code, error_code, message, detail = (
            exc.status_code,
            exc.error_code,
            exc.message,
            exc.detail,
        )
    elif isinstance(exc, InputError):
        status_code = 400
        error_code = "INVALID_DOCUMENT" if exc.field in _DOCUMENT_FIELDS else "INVALID_ARGUMENT"
        message = str(exc)
        detail = {"field": exc.field}
    elif isinstance(exc, RepackagingError):
        status_code, error_code, message = 500, "REPACKAGING_FAILED", "document repackaging failed"
        detail = {"error": str(exc)}
    else:
        status_code, error_code, message = 500, "INTERNAL_ERROR", "internal server error"
        detail = {"error": str(exc), "total_ms": _elapsed_ms(request_started)}

    _log_event(
        logging.ERROR,
        "error",
        request_id,
        error_code=error_code,
        status_code=status_code,
        failure_stage=failure_stage,
        error_type=type(exc).__name__,
    )
    return _error_response(
        status_code=status_code,
        error_code=error_code,
        message=message,
        request_id=request_id,
        detail=detail,
    )


def _request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id
    generated = uuid.uuid4().hex
    request.state.request_id = generated
    return generated


def _validate_upload_name(filename: str | None, *, expected_suffix: str, field_name: str) -> None:
    if filename is None or not filename.lower().endswith(expected_suffix):
        raise ApiRequestError(
            status_code=415,
            error_code="INVALID_MEDIA_TYPE",
            message=f"{field_name} must be a {expected_suffix} file",
            detail={"field": field_name, "filename": filename},
        )


def _read_upload_with_limit(*, upload: UploadFile, max_bytes: int, field_name: str) -> bytes:
    chunks: list[bytes] = []
    total_size = 0

    source = upload.file
    source.seek(0)
    while True:
        chunk = source.read(1024 * 1024)
        if not chunk:
            break
        total_size += len(chunk)
        if total_size > max_bytes:
            raise ApiRequestError(
                status_code=413,
                error_code="UPLOAD_TOO_LARGE",
                message=f"{field_name} exceeds upload size limit",
                detail={
                    "field": field_name,
                    "max_bytes": max_bytes,
                    "received_bytes": total_size,
                },
            )
        chunks.append(chunk)

    source.close()
    return b"".join(chunks)


def _max_upload_bytes() -> int:
    raw = os.getenv("BLANKFILL_MAX_UPLOAD_BYTES")
    if raw is None:
        return _DEFAULT_MAX_UPLOAD_BYTES
    try:
        parsed = int(raw)
    except ValueError:
        return _DEFAULT_MAX_UPLOAD_BYTES
    return parsed if parsed > 0 else _DEFAULT_MAX_UPLOAD_BYTES


def _timeout_seconds() -> float:
    raw = os.getenv("BLANKFILL_REQUEST_TIMEOUT_SECONDS")
    if raw is None:
        return _DEFAULT_TIMEOUT_SECONDS
    try:
        parsed = float(raw)
    except ValueError:
        return _DEFAULT_TIMEOUT_SECONDS
    return parsed if parsed > 0 else _DEFAULT_TIMEOUT_SECONDS


def _error_response(
    *,
    status_code: int,
    error_code: str,
    message: str,
    request_id: str,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    payload_detail = dict(detail or {})
    payload_detail["request_id"] = request_id

    return JSONResponse(
        status_code=status_code,
        headers={REQUEST_ID_HEADER: request_id},
        content={
            "error_code": error_code,
            "message": message,
            "detail": payload_detail,
        },
    )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _log_event(level: int, event: str, request_id: str, **fields: Any) -> None:
    payload = {
        "event": event,
        "request_id": request_id,
        **fields,
    }
    logger.log(level, dump_json(payload))
