"""FastAPI app for legal document text extraction."""

from __future__ import annotations

import logging
import math
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import (
    CACHE_ON_EXTRACT,
    MAX_FILE_SIZE_BYTES,
    OCR_DEFAULT_LANGUAGE,
    SUPPORTED_MIME_TYPES,
    UPLOAD_CHUNK_SIZE,
    log_startup_config,
    setup_logging,
)
from .extract import ExtractionPipeline, failure_method, get_pipeline, normalize_mime_type
from .ocr import OCREngine, get_engine
from .rasterizer import get_renderer_backend
from .result_store import ResultStore, get_result_store
from .schema import (
    CacheEntry,
    CheckResultRequest,
    ExtractionOptions,
    ExtractionRequest,
    ExtractionResult,
    ExtractTextResponse,
    HealthResponse,
    SaveResultRequest,
)
from .utils import (
    ExtractionError,
    ExtractionTimeoutError,
    FileTooLargeError,
    InputValidationError,
    OCREngineError,
    PageRenderError,
    PdfProcessingError,
    RendererError,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(_app: FastAPI):
    setup_logging()
    log_startup_config()
    try:
        get_renderer_backend()
    except RendererError as exc:
        # PDFs will come back as classified failures until this is fixed.
        logger.error("PDF renderer unavailable [%s]: %s", exc.code, exc)
    yield
    terminated = get_engine().cleanup()
    logger.info("Shutdown: terminated %d shared OCR worker(s)", terminated)


app = FastAPI(title="Legal OCR", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(request, exc: RequestValidationError):  # noqa: ARG001
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Invalid request.",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request, exc: Exception):  # noqa: ARG001
    if isinstance(exc, HTTPException):
        raise exc
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "detail": str(exc) or "Internal server error",
        },
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
_STATUS_BY_ERROR: tuple[tuple[type[ExtractionError], int], ...] = (
    (FileTooLargeError, 413),
    (InputValidationError, 400),
    (PdfProcessingError, 422),
    (PageRenderError, 422),
    (ExtractionTimeoutError, 504),
    (OCREngineError, 500),
)


def status_for_error(exc: ExtractionError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def _camel(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "detail": message},
    )


def require_user(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required.")
    return x_user_id.strip()


async def _read_upload(file: UploadFile) -> tuple[bytes, str]:
    """Validate the declared type, then stream *file* into memory under the size limit."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file provided.")
    mime_type = normalize_mime_type(file.content_type)
    if mime_type not in SUPPORTED_MIME_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type '{file.content_type}'. Only PDF and image files are accepted.",
        )
    buffer = bytearray()
    while True:
        chunk = await file.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        buffer.extend(chunk)
        if len(buffer) > MAX_FILE_SIZE_BYTES:
            raise HTTPException(
                status_code=413,
                detail=f"File too large (limit {MAX_FILE_SIZE_BYTES // (1024*1024)} MB).",
            )
    if not buffer:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    return bytes(buffer), mime_type


def _envelope(result: ExtractionResult, elapsed: float) -> ExtractTextResponse:
    return ExtractTextResponse(
        success=result.succeeded,
        text=result.text,
        pages=result.page_count or 1,
        confidence=result.confidence,
        method=failure_method(result),
        error=result.error,
        processing_time=f"{elapsed:.2f}s",
        text_length=result.text_length,
        word_count=result.word_count,
        page_results=result.per_page_results,
    )


def _cached_envelope(entry: CacheEntry) -> ExtractTextResponse:
    return ExtractTextResponse(
        success=True,
        text=entry.text or "",
        pages=entry.pages,
        confidence=entry.confidence,
        method=entry.method,
        processing_time=entry.processing_time,
        text_length=entry.text_length,
        word_count=entry.word_count,
        cached=True,
    )


async def _lookup_cached(store: ResultStore, user_id: str, file_name: str, size: int) -> CacheEntry | None:
    try:
        return await run_in_threadpool(store.check, user_id, file_name, size)
    except Exception:
        logger.warning("Result cache lookup failed for %s", file_name, exc_info=True)
        return None


async def _store_result(
    store: ResultStore,
    user_id: str,
    file_name: str,
    mime_type: str,
    size: int,
    envelope: ExtractTextResponse,
) -> None:
    """Best-effort cache write; a failing store never fails the request."""
    try:
        payload = SaveResultRequest(
            file_name=file_name,
            file_size=size,
            file_type=mime_type,
            text=envelope.text,
            confidence=envelope.confidence,
            pages=envelope.pages,
            method=envelope.method,
            processing_time=envelope.processing_time,
            text_length=envelope.text_length,
            word_count=envelope.word_count,
        )
        await run_in_threadpool(store.upsert, user_id, payload)
    except Exception:
        logger.warning("Failed to cache OCR result for %s", file_name, exc_info=True)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/v1/ocr/health")
async def ocr_health(engine: OCREngine = Depends(get_engine)):
    """Create and tear down a throwaway OCR worker."""
    try:
        info = await run_in_threadpool(engine.health_check)
    except ExtractionError as exc:
        logger.error("OCR health check failed: %s", exc)
        body = HealthResponse(
            success=False,
            status="unhealthy",
            message="OCR service is unavailable.",
            error=str(exc),
        )
        return JSONResponse(status_code=500, content=_camel(body))
    return _camel(HealthResponse(
        success=True,
        status="healthy",
        message="OCR service is ready.",
        languages=info["languages"],
        supported_formats=info["supported_formats"],
    ))


@app.post("/api/v1/ocr/cleanup")
async def ocr_cleanup(engine: OCREngine = Depends(get_engine)):
    """Tear down shared OCR workers. Safe to call when none exist."""
    terminated = await run_in_threadpool(engine.cleanup)
    return {"success": True, "message": "OCR workers cleaned up.", "terminated": terminated}


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------
@app.post("/api/v1/ocr/extract-text")
async def extract_text(
    file: UploadFile = File(...),
    force_ocr: bool = Form(default=False, alias="forceOCR"),
    language: str = Form(default=OCR_DEFAULT_LANGUAGE),
    use_shared_worker: bool = Form(default=False, alias="useSharedWorker"),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
    pipeline: ExtractionPipeline = Depends(get_pipeline),
    store: ResultStore = Depends(get_result_store),
):
    """Extract text from an uploaded PDF or image.

    Classified renderer failures come back as 200 with ``success: false``;
    every other failure keeps its status code and also carries ``success: false``.
    """
    try:
        data, mime_type = await _read_upload(file)
    except HTTPException as exc:
        return _error_response(exc.status_code, exc.detail)
    file_name = file.filename
    user_id = (user_id or "").strip() or None
    use_cache = bool(user_id) and CACHE_ON_EXTRACT

    if use_cache and not force_ocr:
        entry = await _lookup_cached(store, user_id, file_name, len(data))
        if entry is not None:
            logger.info("Serving cached OCR result %s for %s", entry.id, file_name)
            return _camel(_cached_envelope(entry))

    request = ExtractionRequest(
        data=data,
        mime_type=mime_type,
        file_name=file_name,
        options=ExtractionOptions(
            force_ocr=force_ocr,
            language=language,
            use_shared_worker=use_shared_worker,
        ),
    )
    del data
    started = time.perf_counter()
    try:
        result = await run_in_threadpool(pipeline.extract, request)
    except ExtractionError as exc:
        status = status_for_error(exc)
        log = logger.warning if status < 500 else logger.error
        log("Extraction of %s failed (%d): %s", file_name, status, exc)
        return _error_response(status, str(exc))

    envelope = _envelope(result, time.perf_counter() - started)
    if use_cache and result.succeeded and result.text:
        await _store_result(store, user_id, file_name, mime_type, request.size, envelope)
    return _camel(envelope)


# ---------------------------------------------------------------------------
# Result cache
# ---------------------------------------------------------------------------
@app.post("/api/v1/ocr-results")
async def save_result(
    payload: SaveResultRequest,
    user_id: str = Depends(require_user),
    store: ResultStore = Depends(get_result_store),
):
    entry = await run_in_threadpool(store.upsert, user_id, payload)
    return {"success": True, "data": _camel(entry), "message": "OCR result saved."}


@app.get("/api/v1/ocr-results")
async def list_results(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(require_user),
    store: ResultStore = Depends(get_result_store),
):
    entries, total = await run_in_threadpool(store.list, user_id, page, limit)
    return {
        "success": True,
        "data": [_camel(e) for e in entries],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit),
        },
    }


@app.post("/api/v1/ocr-results/check")
async def check_result(
    payload: CheckResultRequest,
    user_id: str = Depends(require_user),
    store: ResultStore = Depends(get_result_store),
):
    entry = await run_in_threadpool(store.check, user_id, payload.file_name, payload.file_size)
    if entry is None:
        return {"success": True, "exists": False}
    return {"success": True, "exists": True, "data": _camel(entry)}


@app.get("/api/v1/ocr-results/{file_hash}")
async def get_result(
    file_hash: str,
    user_id: str = Depends(require_user),
    store: ResultStore = Depends(get_result_store),
):
    entry = await run_in_threadpool(store.get, user_id, file_hash)
    if entry is None:
        raise HTTPException(status_code=404, detail="OCR result not found.")
    return {"success": True, "data": _camel(entry)}


@app.delete("/api/v1/ocr-results/{entry_id}")
async def delete_result(
    entry_id: str,
    user_id: str = Depends(require_user),
    store: ResultStore = Depends(get_result_store),
):
    deleted = await run_in_threadpool(store.delete, user_id, entry_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="OCR result not found.")
    return {"success": True, "message": "OCR result deleted."}
