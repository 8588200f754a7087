"""FastAPI routes for the OCR service.

Endpoint map (prefix ``/api/ocr``)::

    /process    POST  one document, multipart ``file`` or JSON base64
    /batch      POST  up to ``max_batch_documents`` documents
    /providers  GET   provider health, statistics and configuration report
    /status     GET   liveness, statistics and configuration summary
    /validate   POST  score text without calling any provider

Service dependencies are resolved from ``app.state`` (populated in
``main.create_app``) via ``Annotated[..., Depends(helper)]``.
"""

from __future__ import annotations

import json
import time
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from booking_ocr import __version__
from booking_ocr.api.schemas import (
    BatchItemResponse,
    BatchRequest,
    BatchResponse,
    BatchSummaryResponse,
    ConfigurationResponse,
    DocumentMetadata,
    ErrorResponse,
    ProcessRequest,
    ProcessResponse,
    ProvidersResponse,
    StatusResponse,
    ValidateRequest,
    ValidateResponse,
    ValidationResponse,
)
from booking_ocr.config.settings import Settings
from booking_ocr.models.ocr import OCRDocument, OCRResult, ProcessOptions
from booking_ocr.services.batch_coordinator import BatchCoordinator
from booking_ocr.services.field_extractor import missing_fields
from booking_ocr.services.ocr_service import OCRMultiProviderService
from booking_ocr.services.quality_validator import QualityValidator
from booking_ocr.utils.errors import DocumentTooLargeError
from booking_ocr.utils.logging import bind_request_context, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/ocr")

_UPLOAD_CHUNK_SIZE = 64 * 1024
_DEFAULT_MIME_TYPE = "application/pdf"


# ---------------------------------------------------------------------------
# Dependency injection helpers
# ---------------------------------------------------------------------------


def _get_service(request: Request) -> OCRMultiProviderService:
    return request.app.state.ocr_service


def _get_batch_coordinator(request: Request) -> BatchCoordinator:
    return request.app.state.batch_coordinator


def _get_validator(request: Request) -> QualityValidator:
    return request.app.state.quality_validator


def _get_settings(request: Request) -> Settings:
    return request.app.state.settings


ServiceDep = Annotated[OCRMultiProviderService, Depends(_get_service)]
BatchDep = Annotated[BatchCoordinator, Depends(_get_batch_coordinator)]
ValidatorDep = Annotated[QualityValidator, Depends(_get_validator)]
SettingsDep = Annotated[Settings, Depends(_get_settings)]


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------


def _new_request_id() -> str:
    return f"ocr_{uuid.uuid4().hex[:12]}"


def _is_multipart(request: Request) -> bool:
    return request.headers.get("content-type", "").startswith("multipart/form-data")


def _check_size(size: int, settings: Settings) -> None:
    limit = settings.max_upload_mb * 1024 * 1024
    if size > limit:
        raise DocumentTooLargeError(
            f"File too large: {size / (1024 * 1024):.1f} MB. Maximum: {settings.max_upload_mb} MB"
        )


async def _read_upload(upload: UploadFile, settings: Settings) -> bytes:
    """Read an upload in chunks, rejecting oversized files early."""
    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await upload.read(_UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        _check_size(total, settings)
        chunks.append(chunk)
    return b"".join(chunks)


def _decode_document(
    encoded: str,
    *,
    mime_type: str | None,
    filename: str,
    document_type: str,
    settings: Settings,
    document_id: str | None = None,
) -> OCRDocument:
    # base64 inflates by 4/3; reject before decoding when clearly too large.
    _check_size(len(encoded) * 3 // 4, settings)
    document = OCRDocument.from_base64(
        encoded,
        mime_type=mime_type,
        filename=filename,
        document_type=document_type,
        document_id=document_id,
    )
    _check_size(document.file_size, settings)
    return document


def _parse_body(model: type, payload: Any) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=400, detail="Request body is not valid JSON") from exc


def _form_bool(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    return str(value).strip().lower() not in {"false", "0", "no", "off"}


def _form_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Expected an integer, got {value!r}") from exc


def _timeout_seconds(timeout_ms: int | None) -> float | None:
    if timeout_ms is None:
        return None
    if timeout_ms <= 0:
        raise HTTPException(status_code=400, detail="timeout must be positive")
    return timeout_ms / 1000


# ---------------------------------------------------------------------------
# OCR endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/process",
    response_model=ProcessResponse,
    responses={
        400: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
    summary="Run one document through the OCR failover chain",
)
async def process_document(
    request: Request,
    service: ServiceDep,
    settings: SettingsDep,
) -> Any:
    """Accept a multipart ``file`` or a JSON ``fileBase64`` body and return the OCR result."""
    request_id = _new_request_id()
    bind_request_context(request_id=request_id)
    started = time.perf_counter()
    document_type = service.registry.config.default_document_type

    if _is_multipart(request):
        form = await request.form()
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise HTTPException(status_code=400, detail="No file provided. Send a 'file' field or fileBase64")
        data = await _read_upload(upload, settings)
        if not data:
            raise HTTPException(status_code=400, detail="Uploaded file is empty")
        document_type = str(form.get("documentType") or document_type)
        options = ProcessOptions(
            preferred_provider=form.get("preferredProvider") or request.query_params.get("provider"),
            require_high_quality=_form_bool(form.get("requireHighQuality"), True),
            timeout_seconds=_timeout_seconds(_form_int(form.get("timeout"))),
            document_type=document_type,
            strategy=form.get("strategy") or None,
        )
        document = OCRDocument.from_bytes(
            data,
            mime_type=upload.content_type or None,
            filename=upload.filename or "document",
            document_type=document_type,
        )
    else:
        payload = await _json_body(request)
        if not isinstance(payload, dict) or not payload.get("fileBase64"):
            raise HTTPException(status_code=400, detail="No file provided. Send a 'file' field or fileBase64")
        body: ProcessRequest = _parse_body(ProcessRequest, payload)
        document_type = body.document_type or document_type
        options = ProcessOptions(
            preferred_provider=body.preferred_provider or request.query_params.get("provider"),
            require_high_quality=body.require_high_quality,
            timeout_seconds=_timeout_seconds(body.timeout),
            document_type=document_type,
            strategy=body.strategy,
        )
        document = _decode_document(
            body.file_base64,
            mime_type=body.mime_type or _DEFAULT_MIME_TYPE,
            filename=body.file_name,
            document_type=document_type,
            settings=settings,
        )

    _logger.info(
        "ocr_request_received",
        filename=document.filename,
        mime_type=document.mime_type,
        size_mb=round(document.size_mb, 2),
        preferred_provider=options.preferred_provider or "auto",
        document_type=document_type,
    )
    result = await service.process_document(document, options)
    elapsed_ms = round((time.perf_counter() - started) * 1000, 1)

    if not result.success:
        error_body = ErrorResponse(
            error="OCRExtractionError", detail=result.error or "OCR processing failed", provider=result.provider,
        )
        return JSONResponse(status_code=500, content=error_body.model_dump(by_alias=True))

    profile = service.registry.document_type(document_type)
    structured = result.structured_data or {}
    return ProcessResponse(
        request_id=request_id,
        provider=result.provider,
        confidence=result.confidence,
        processing_time=elapsed_ms,
        ocr_time=round(result.processing_time_ms, 1),
        text=result.text,
        text_length=len(result.text),
        structured_data=structured,
        missing_fields=missing_fields(structured, profile.required_fields),
        metadata=DocumentMetadata(
            file_name=document.filename,
            file_size=f"{document.size_mb:.2f}MB",
            mime_type=document.mime_type,
            document_type=document_type,
            quality=result.metadata.quality if result.metadata else "unknown",
            page_count=(result.metadata.page_count if result.metadata else None) or 1,
            language=(result.metadata.language if result.metadata else None) or "auto",
        ),
        validation=ValidationResponse.from_result(result.validation) if result.validation else None,
    )


@router.post(
    "/batch",
    response_model=BatchResponse,
    responses={400: {"model": ErrorResponse}, 413: {"model": ErrorResponse}},
    summary="Process several documents, results in input order",
)
async def batch_process(
    request: Request,
    service: ServiceDep,
    coordinator: BatchDep,
    settings: SettingsDep,
) -> BatchResponse:
    """Accept multipart ``files`` or a JSON ``documents`` array."""
    request_id = _new_request_id()
    bind_request_context(request_id=request_id)
    default_type = service.registry.config.default_document_type
    documents: list[OCRDocument] = []

    if _is_multipart(request):
        form = await request.form()
        uploads = [f for f in form.getlist("files") if isinstance(f, UploadFile)]
        if len(uploads) > coordinator.max_documents:
            raise HTTPException(
                status_code=400, detail=f"Maximum {coordinator.max_documents} documents allowed per batch",
            )
        document_type = str(form.get("documentType") or default_type)
        for index, upload in enumerate(uploads, start=1):
            data = await _read_upload(upload, settings)
            documents.append(OCRDocument.from_bytes(
                data,
                mime_type=upload.content_type or None,
                filename=upload.filename or f"document_{index}",
                document_type=document_type,
            ))
        concurrency = _form_int(form.get("concurrency"))
        options = ProcessOptions(
            preferred_provider=form.get("preferredProvider") or request.query_params.get("provider"),
            require_high_quality=_form_bool(form.get("requireHighQuality"), False),
            document_type=document_type,
            strategy=form.get("strategy") or None,
        )
    else:
        body: BatchRequest = _parse_body(BatchRequest, await _json_body(request))
        if len(body.documents) > coordinator.max_documents:
            raise HTTPException(
                status_code=400, detail=f"Maximum {coordinator.max_documents} documents allowed per batch",
            )
        document_type = body.document_type or default_type
        for index, item in enumerate(body.documents, start=1):
            documents.append(_decode_document(
                item.file_base64,
                mime_type=item.mime_type or _DEFAULT_MIME_TYPE,
                filename=item.file_name or item.id or f"document_{index}",
                document_type=document_type,
                settings=settings,
                document_id=item.id,
            ))
        concurrency = body.concurrency
        options = ProcessOptions(
            preferred_provider=body.preferred_provider or request.query_params.get("provider"),
            require_high_quality=body.require_high_quality,
            document_type=document_type,
            strategy=body.strategy,
        )

    if not documents:
        raise HTTPException(status_code=400, detail="No documents provided for batch processing")
    if concurrency is not None and concurrency < 1:
        raise HTTPException(status_code=400, detail="concurrency must be at least 1")

    _logger.info("ocr_batch_received", documents=len(documents), concurrency=concurrency)
    batch = await coordinator.batch_process(documents, concurrency=concurrency, options=options)
    required = service.registry.document_type(document_type).required_fields

    return BatchResponse(
        request_id=request_id,
        summary=BatchSummaryResponse(
            total=batch.summary.total,
            successful=batch.summary.successful,
            failed=batch.summary.failed,
            processing_time=batch.summary.processing_time_ms,
            average_time_per_document=batch.summary.average_time_per_document_ms,
        ),
        results=[_batch_item(item.document_id, item.filename, item.result, required) for item in batch.results],
    )


def _batch_item(document_id: str, filename: str, result: OCRResult, required: list[str]) -> BatchItemResponse:
    structured = result.structured_data or {}
    return BatchItemResponse(
        document_id=document_id,
        file_name=filename,
        success=result.success,
        provider=result.provider,
        confidence=result.confidence,
        processing_time=round(result.processing_time_ms, 1),
        text=result.text,
        structured_data=structured,
        missing_fields=missing_fields(structured, required) if result.success else [],
        error=result.error,
    )


# ---------------------------------------------------------------------------
# Introspection endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/providers",
    response_model=ProvidersResponse,
    summary="Provider health, statistics and configuration diagnostics",
)
async def list_providers(service: ServiceDep) -> ProvidersResponse:
    statuses = await service.get_provider_status()
    report = service.registry.validate()
    return ProvidersResponse(
        providers=[status.model_dump() for status in statuses],
        available_providers=report.available_providers,
        statistics=service.get_statistics(),
        configuration=ConfigurationResponse(**report.model_dump()),
        recommendations=report.recommendations,
    )


@router.get(
    "/status",
    response_model=StatusResponse,
    summary="OCR service liveness and statistics",
)
async def service_status(service: ServiceDep) -> StatusResponse:
    report = service.registry.validate()
    return StatusResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        statistics=service.get_statistics(),
        configuration=ConfigurationResponse(
            valid=report.valid,
            issues=report.issues,
            available_providers=report.available_providers,
        ),
        version=__version__,
    )


@router.post(
    "/validate",
    response_model=ValidateResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Score OCR text quality without calling a provider",
)
async def validate_text(body: ValidateRequest, validator: ValidatorDep) -> ValidateResponse:
    if not body.text:
        raise HTTPException(status_code=400, detail="Text is required for validation")
    verdict = validator.validate_text(body.text, body.confidence, provider=body.provider)
    return ValidateResponse(
        validation=ValidationResponse.from_result(verdict),
        recommendations=validator.recommendations(verdict),
    )
