"""Main extraction orchestrator.

Chooses the cheapest sufficient strategy for one upload: the embedded PDF
text layer when it is good enough, otherwise rasterize + preprocess + OCR
page by page. Environment failures of the renderer come back in-band as a
``failed`` result; every other error propagates to the caller.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

from .aggregate import aggregate_pages
from .config import (
    DIRECT_EXTRACTION_MIN_CONFIDENCE,
    DIRECT_EXTRACTION_MIN_WORDS,
    EXTRACTION_TIMEOUT_SECONDS,
    MAX_FILE_SIZE_BYTES,
    PDF_MIME_TYPE,
    SHARED_WORKER_FOR_PDF,
    SUPPORTED_MIME_TYPES,
    TEXT_LAYER_MIN_CHARS,
    TEXT_LAYER_MIN_NON_WHITESPACE,
    TEXT_LAYER_REAL_CONFIDENCE,
    TEXT_LAYER_REAL_MIN_WORDS,
    TEXT_LAYER_WEAK_CONFIDENCE,
)
from .ocr import OCREngine, clean_ocr_text, get_engine
from .ocr_router import resolve_ocr_config
from .pdf_text import extract_text_layer
from .preprocess import preprocess_image
from .rasterizer import PdfRasterizer
from .schema import (
    ExtractionOptions,
    ExtractionRequest,
    ExtractionResult,
    RasterPage,
    RecognitionResult,
    TextLayerAssessment,
)
from .utils import (
    EmptyFileError,
    FileTooLargeError,
    MissingDependencyError,
    PageCountMismatchError,
    PdfProcessingError,
    ProgressCallback,
    ProgressEvent,
    RendererError,
    RendererMisconfiguredError,
    UnsupportedFileTypeError,
    count_words,
    make_deadline,
    notify_progress,
    remaining_seconds,
)

logger = logging.getLogger(__name__)

# error_code of a failed result -> method reported on the wire
FAILURE_METHODS: dict[str, str] = {
    MissingDependencyError.code: "ocr_failed_missing_dependency",
    RendererMisconfiguredError.code: "ocr_failed_renderer_misconfigured",
}


def failure_method(result: ExtractionResult) -> str:
    """Return the wire method for *result*, classifying failures by error code."""
    if result.method != "failed":
        return result.method
    return FAILURE_METHODS.get(result.error_code or "", "ocr_failed")


def normalize_mime_type(mime_type: str | None) -> str:
    return (mime_type or "").split(";", 1)[0].strip().lower()


@dataclass(frozen=True)
class TextLayerPolicy:
    """Cutoffs deciding whether an embedded text layer can replace OCR.

    A layer is "real" on a cheap sanity check; skipping OCR needs the
    stricter acceptance gate on top of that.
    """

    min_chars: int = TEXT_LAYER_MIN_CHARS
    min_non_whitespace: int = TEXT_LAYER_MIN_NON_WHITESPACE
    real_min_words: int = TEXT_LAYER_REAL_MIN_WORDS
    accept_min_words: int = DIRECT_EXTRACTION_MIN_WORDS
    accept_min_confidence: float = DIRECT_EXTRACTION_MIN_CONFIDENCE
    real_confidence: float = TEXT_LAYER_REAL_CONFIDENCE
    weak_confidence: float = TEXT_LAYER_WEAK_CONFIDENCE

    def _substantial(self, assessment: TextLayerAssessment) -> bool:
        return (
            assessment.contains_letters
            and assessment.char_count > self.min_chars
            and assessment.non_whitespace_count > self.min_non_whitespace
        )

    def is_real_text(self, assessment: TextLayerAssessment) -> bool:
        return self._substantial(assessment) and assessment.word_count > self.real_min_words

    def derived_confidence(self, assessment: TextLayerAssessment) -> float:
        return self.real_confidence if self.is_real_text(assessment) else self.weak_confidence

    def accepts(self, assessment: TextLayerAssessment) -> bool:
        return (
            self._substantial(assessment)
            and assessment.word_count > self.accept_min_words
            and self.derived_confidence(assessment) >= self.accept_min_confidence
        )


class ExtractionPipeline:
    """Decision engine over injectable collaborators.

    Every collaborator defaults to the production implementation; tests
    pass fakes to count calls or simulate failures.
    """

    def __init__(
        self,
        rasterizer: PdfRasterizer | None = None,
        engine: OCREngine | None = None,
        preprocess: Callable[[bytes], bytes] = preprocess_image,
        text_layer: Callable[[bytes], TextLayerAssessment] = extract_text_layer,
        policy: TextLayerPolicy | None = None,
        max_file_size: int = MAX_FILE_SIZE_BYTES,
    ) -> None:
        self.rasterizer = rasterizer if rasterizer is not None else PdfRasterizer()
        self.engine = engine if engine is not None else get_engine()
        self.preprocess = preprocess
        self.text_layer = text_layer
        self.policy = policy or TextLayerPolicy()
        self.max_file_size = max_file_size

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def validate(self, request: ExtractionRequest) -> str:
        """Reject a request before any work; return its normalised MIME type."""
        mime_type = normalize_mime_type(request.mime_type)
        if mime_type not in SUPPORTED_MIME_TYPES:
            raise UnsupportedFileTypeError(
                f"Unsupported file type '{request.mime_type}'. "
                "Only PDF and image files (png, jpeg, gif, bmp, webp, tiff) are accepted."
            )
        if request.size == 0:
            raise EmptyFileError(f"File '{request.file_name}' is empty.")
        if request.size > self.max_file_size:
            raise FileTooLargeError(
                f"File '{request.file_name}' is {request.size} bytes; "
                f"the limit is {self.max_file_size} bytes."
            )
        resolve_ocr_config(request.options.language)
        return mime_type

    def extract(
        self,
        request: ExtractionRequest,
        progress: ProgressCallback | None = None,
    ) -> ExtractionResult:
        mime_type = self.validate(request)
        options = request.options
        timeout = (
            options.timeout_seconds
            if options.timeout_seconds is not None
            else EXTRACTION_TIMEOUT_SECONDS
        )
        deadline = make_deadline(timeout)
        started = time.perf_counter()
        logger.info(
            "Extracting %s (%s, %d bytes, force_ocr=%s, lang=%s)",
            request.file_name, mime_type, request.size, options.force_ocr, options.language,
        )

        if mime_type == PDF_MIME_TYPE:
            result = self._extract_pdf(request, deadline, progress)
        else:
            result = self._extract_image(request, deadline, progress)

        logger.info(
            "Extracted %s: method=%s pages=%d confidence=%.1f in %.2fs",
            request.file_name, result.method, result.page_count, result.confidence,
            time.perf_counter() - started,
        )
        return result

    # ------------------------------------------------------------------
    # PDF
    # ------------------------------------------------------------------
    def _extract_pdf(
        self,
        request: ExtractionRequest,
        deadline: float | None,
        progress: ProgressCallback | None,
    ) -> ExtractionResult:
        options = request.options
        assessment: TextLayerAssessment | None = None

        if not options.force_ocr:
            notify_progress(progress, ProgressEvent(stage="text_layer"))
            try:
                assessment = self.text_layer(request.data)
            except PdfProcessingError as exc:
                logger.warning("Text layer unreadable, falling back to OCR: %s", exc)
            else:
                if assessment.page_count == 0:
                    raise PdfProcessingError("PDF contains no pages.")
                if self.policy.accepts(assessment):
                    logger.info(
                        "Using embedded text layer (%d words, %d chars)",
                        assessment.word_count, assessment.char_count,
                    )
                    return _build_result(
                        text=assessment.text,
                        page_count=assessment.page_count,
                        confidence=self.policy.derived_confidence(assessment),
                        method="direct_extraction",
                    )
                logger.info(
                    "Text layer rejected (%d words, %d chars); running OCR",
                    assessment.word_count, assessment.char_count,
                )

        try:
            pages = self.rasterizer.rasterize(request.data, deadline=deadline, progress=progress)
        except RendererError as exc:
            logger.error("PDF rasterization unavailable [%s]: %s", exc.code, exc)
            return ExtractionResult(method="failed", error=str(exc), error_code=exc.code)
        if not pages:
            raise PdfProcessingError("PDF contains no pages to render.")

        use_shared = options.use_shared_worker or SHARED_WORKER_FOR_PDF
        queue = deque(pages)
        del pages
        results = self._recognize_pages(queue, options, use_shared, deadline, progress)

        method = "ocr"
        if assessment is not None:
            results, merged = self._merge_text_layer(results, assessment)
            if merged:
                logger.info("Filled %d empty OCR page(s) from the text layer", merged)
                method = "merged"

        notify_progress(progress, ProgressEvent(stage="aggregate", total_pages=len(results)))
        text, confidence = aggregate_pages(results)
        return _build_result(
            text=text,
            page_count=len(results),
            confidence=confidence,
            method=method,
            per_page_results=results,
        )

    def _recognize_pages(
        self,
        queue: deque[RasterPage],
        options: ExtractionOptions,
        use_shared: bool,
        deadline: float | None,
        progress: ProgressCallback | None,
    ) -> list[RecognitionResult]:
        """OCR rendered pages one at a time, releasing each page once read."""
        total = len(queue)
        results: list[RecognitionResult] = []
        while queue:
            page = queue.popleft()
            timeout = remaining_seconds(deadline, "recognition")
            notify_progress(
                progress,
                ProgressEvent(stage="preprocess", page_index=page.page_index, total_pages=total),
            )
            image_bytes = self.preprocess(page.image_bytes)
            result = self.engine.recognize(
                image_bytes,
                language=options.language,
                use_shared_worker=use_shared,
                page_index=page.page_index,
                timeout=timeout,
                progress=progress,
            )
            if result.page_index != page.page_index:
                result = result.model_copy(update={"page_index": page.page_index})
            results.append(result)
            logger.debug(
                "Page %d/%d recognized (confidence %.1f)",
                page.page_index, total, result.confidence,
            )

        if len(results) != total:
            raise PageCountMismatchError(
                f"Recognized {len(results)} page(s) for {total} rendered page(s)."
            )
        return results

    def _merge_text_layer(
        self,
        results: list[RecognitionResult],
        assessment: TextLayerAssessment,
    ) -> tuple[list[RecognitionResult], int]:
        """Use a page's embedded text where OCR read nothing from it."""
        merged = 0
        combined: list[RecognitionResult] = []
        for position, result in enumerate(results):
            index = result.page_index or position + 1
            layer_text = ""
            if index - 1 < len(assessment.page_texts):
                layer_text = clean_ocr_text(assessment.page_texts[index - 1])
            if not result.text.strip() and layer_text:
                result = RecognitionResult(
                    text=layer_text,
                    confidence=self.policy.weak_confidence,
                    page_index=result.page_index,
                )
                merged += 1
            combined.append(result)
        return combined, merged

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------
    def _extract_image(
        self,
        request: ExtractionRequest,
        deadline: float | None,
        progress: ProgressCallback | None,
    ) -> ExtractionResult:
        options = request.options
        timeout = remaining_seconds(deadline, "recognition")
        notify_progress(progress, ProgressEvent(stage="preprocess", page_index=1, total_pages=1))
        image_bytes = self.preprocess(request.data)
        result = self.engine.recognize(
            image_bytes,
            language=options.language,
            use_shared_worker=options.use_shared_worker,
            page_index=1,
            timeout=timeout,
            progress=progress,
        )
        if result.page_index != 1:
            result = result.model_copy(update={"page_index": 1})
        return _build_result(
            text=result.text,
            page_count=1,
            confidence=result.confidence,
            method="ocr",
            per_page_results=[result],
        )


def _build_result(
    text: str,
    page_count: int,
    confidence: float,
    method: str,
    per_page_results: list[RecognitionResult] | None = None,
) -> ExtractionResult:
    return ExtractionResult(
        text=text,
        page_count=page_count,
        confidence=round(confidence, 2),
        method=method,
        per_page_results=per_page_results,
        word_count=count_words(text),
        text_length=len(text),
    )


# Module-level pipeline used by the API and CLI.
_pipeline: ExtractionPipeline | None = None
_pipeline_lock = threading.Lock()


def get_pipeline() -> ExtractionPipeline:
    """Get or create the process-wide pipeline."""
    global _pipeline
    with _pipeline_lock:
        if _pipeline is None:
            _pipeline = ExtractionPipeline()
        return _pipeline


def extract_document(
    data: bytes,
    mime_type: str,
    file_name: str = "document",
    options: ExtractionOptions | None = None,
    progress: ProgressCallback | None = None,
) -> ExtractionResult:
    """Extract text from one document with the process-wide pipeline."""
    request = ExtractionRequest(
        data=data,
        mime_type=mime_type,
        file_name=file_name,
        options=options or ExtractionOptions(),
    )
    return get_pipeline().extract(request, progress=progress)
