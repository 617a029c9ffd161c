"""Tesseract OCR adapter with explicit worker lifecycle.

A *worker* is a configured, health-checked handle on the Tesseract engine.
Two lifecycles are offered:

- shared: one long-lived worker per language, created lazily and reused
  across requests until ``cleanup`` tears it down;
- isolated: a fresh worker per call, terminated on every exit path.

pytesseract runs one ``tesseract`` subprocess per recognition and kills it
on timeout, so terminating a worker never leaves a process behind.
"""

from __future__ import annotations

import io
import logging
import shlex
import threading
from typing import Callable

import pytesseract
from PIL import Image

from .config import (
    OCR_DEFAULT_LANGUAGE,
    OCR_OEM,
    OCR_PSM_AUTO,
    SUPPORTED_FORMATS,
    TESSDATA_PATH,
    TESSERACT_CMD,
)
from .ocr_router import SUPPORTED_LANGUAGES, ResolvedOCRConfig, resolve_ocr_config
from .schema import BBox, RecognitionResult, Word
from .utils import (
    ExtractionTimeoutError,
    OCREngineError,
    ProgressCallback,
    ProgressEvent,
    WorkerHealthError,
    notify_progress,
)

logger = logging.getLogger(__name__)

if TESSERACT_CMD:
    pytesseract.pytesseract.tesseract_cmd = TESSERACT_CMD


def build_tesseract_config(
    resolved: ResolvedOCRConfig,
    psm: int = OCR_PSM_AUTO,
    oem: int = OCR_OEM,
    tessdata_path: str | None = None,
) -> str:
    parts = [f"--oem {oem}", f"--psm {psm}"]
    if tessdata_path:
        parts.append(f"--tessdata-dir {shlex.quote(tessdata_path)}")
    parts.append("-c " + shlex.quote(f"tessedit_char_whitelist={resolved.char_whitelist}"))
    parts.append("-c preserve_interword_spaces=1")
    return " ".join(parts)


def clean_ocr_text(text: str) -> str:
    """Trim, drop blank lines and rejoin; removes margin artifacts only."""
    lines = (line.strip() for line in text.strip().splitlines())
    return "\n".join(line for line in lines if line)


def _extract_words(ocr_data: dict) -> tuple[list[Word], list[str]]:
    """Return recognized words and the page text rebuilt line by line."""
    words: list[Word] = []
    lines: dict[tuple[int, int, int, int], list[str]] = {}
    text_items = ocr_data.get("text", [])
    for index in range(len(text_items)):
        text = (text_items[index] or "").strip()
        if not text:
            continue
        try:
            confidence = float(ocr_data["conf"][index])
        except (KeyError, TypeError, ValueError):
            confidence = -1.0
        if confidence < 0:
            continue
        key = (
            int(ocr_data.get("page_num", [1] * len(text_items))[index]),
            int(ocr_data["block_num"][index]),
            int(ocr_data["par_num"][index]),
            int(ocr_data["line_num"][index]),
        )
        lines.setdefault(key, []).append(text)
        words.append(
            Word(
                text=text,
                bbox=BBox(
                    x=int(ocr_data["left"][index]),
                    y=int(ocr_data["top"][index]),
                    w=int(ocr_data["width"][index]),
                    h=int(ocr_data["height"][index]),
                ),
                confidence=min(confidence, 100.0),
            )
        )
    return words, [" ".join(parts) for parts in lines.values()]


def _mean_confidence(words: list[Word]) -> float:
    if not words:
        return 0.0
    return sum(w.confidence for w in words) / len(words)


class TesseractWorker:
    """A configured Tesseract handle for one language combination."""

    def __init__(
        self,
        language: str = OCR_DEFAULT_LANGUAGE,
        tessdata_path: str | None = TESSDATA_PATH,
        psm: int = OCR_PSM_AUTO,
        oem: int = OCR_OEM,
    ) -> None:
        self.resolved = resolve_ocr_config(language)
        self.config = build_tesseract_config(
            self.resolved, psm=psm, oem=oem, tessdata_path=tessdata_path
        )
        self._tessdata_path = tessdata_path
        self._lock = threading.Lock()
        self._closed = False
        self._check_engine()
        logger.info("Tesseract worker ready (lang=%s)", self.language)

    @property
    def language(self) -> str:
        return self.resolved.tesseract_lang

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_engine(self) -> None:
        try:
            version = pytesseract.get_tesseract_version()
            config = f"--tessdata-dir {shlex.quote(self._tessdata_path)}" if self._tessdata_path else ""
            installed = set(pytesseract.get_languages(config=config))
        except pytesseract.TesseractNotFoundError as exc:
            raise WorkerHealthError("Tesseract is not installed or not on PATH.") from exc
        except Exception as exc:
            raise WorkerHealthError(f"Tesseract health check failed: {exc}") from exc
        missing = [code for code in self.language.split("+") if code not in installed]
        if missing:
            raise WorkerHealthError(
                f"Tesseract {version} is missing language data: {', '.join(missing)}"
            )

    def recognize(
        self,
        image_bytes: bytes,
        page_index: int | None = None,
        timeout: float | None = None,
    ) -> RecognitionResult:
        """Recognize one encoded image. Calls on the same worker are serialised."""
        with self._lock:
            if self._closed:
                raise WorkerHealthError("OCR worker has been terminated.")
            try:
                with Image.open(io.BytesIO(image_bytes)) as image:
                    image.load()
                    ocr_data = pytesseract.image_to_data(
                        image,
                        lang=self.language,
                        config=self.config,
                        output_type=pytesseract.Output.DICT,
                        timeout=timeout or 0,
                    )
            except pytesseract.TesseractNotFoundError as exc:
                raise WorkerHealthError("Tesseract binary disappeared.") from exc
            except pytesseract.TesseractError as exc:
                raise OCREngineError(f"OCR failed: {exc}") from exc
            except RuntimeError as exc:
                # pytesseract signals a killed subprocess this way.
                if "timeout" in str(exc).lower():
                    raise ExtractionTimeoutError("OCR exceeded the request deadline.") from exc
                raise OCREngineError(f"OCR failed: {exc}") from exc
            except OSError as exc:
                raise OCREngineError(f"Unreadable image for OCR: {exc}") from exc

        words, lines = _extract_words(ocr_data)
        return RecognitionResult(
            text=clean_ocr_text("\n".join(lines)),
            confidence=_mean_confidence(words),
            words=words,
            page_index=page_index,
        )

    def terminate(self) -> None:
        if not self._closed:
            self._closed = True
            logger.debug("Tesseract worker terminated (lang=%s)", self.language)

    def __enter__(self) -> "TesseractWorker":
        return self

    def __exit__(self, *exc_info) -> None:
        self.terminate()


WorkerFactory = Callable[[str], TesseractWorker]


class SharedWorker:
    """Process-wide owner of long-lived workers, one per resolved language."""

    def __init__(self, factory: WorkerFactory = TesseractWorker) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._workers: dict[str, TesseractWorker] = {}

    def acquire(self, language: str) -> TesseractWorker:
        """Return the shared worker for *language*, creating it at most once."""
        key = resolve_ocr_config(language).tesseract_lang
        with self._lock:
            worker = self._workers.get(key)
            if worker is None or worker.closed:
                logger.info("Initialising shared OCR worker (lang=%s)", key)
                worker = self._factory(key)
                self._workers[key] = worker
            return worker

    def release(self, worker: TesseractWorker) -> None:
        """Hand a worker back; shared workers outlive callers until reset()."""
        logger.debug("Released shared OCR worker (lang=%s)", worker.language)

    def reset(self) -> int:
        """Terminate every shared worker. Safe to call when none exist."""
        with self._lock:
            workers = list(self._workers.values())
            self._workers.clear()
        for worker in workers:
            worker.terminate()
        if workers:
            logger.info("Terminated %d shared OCR worker(s)", len(workers))
        return len(workers)

    @property
    def active(self) -> int:
        with self._lock:
            return sum(1 for w in self._workers.values() if not w.closed)


class OCREngine:
    """Uniform ``recognize`` entry point over shared and isolated workers."""

    def __init__(
        self,
        worker_factory: WorkerFactory = TesseractWorker,
        shared: SharedWorker | None = None,
    ) -> None:
        self._factory = worker_factory
        self._shared = shared if shared is not None else SharedWorker(worker_factory)

    @property
    def shared(self) -> SharedWorker:
        return self._shared

    def recognize(
        self,
        image_bytes: bytes,
        language: str = OCR_DEFAULT_LANGUAGE,
        use_shared_worker: bool = False,
        page_index: int | None = None,
        timeout: float | None = None,
        progress: ProgressCallback | None = None,
    ) -> RecognitionResult:
        notify_progress(progress, ProgressEvent(stage="recognize", page_index=page_index))
        if use_shared_worker:
            return self._recognize_shared(image_bytes, language, page_index, timeout)

        worker = self._factory(language)
        try:
            return worker.recognize(image_bytes, page_index=page_index, timeout=timeout)
        finally:
            worker.terminate()

    def _recognize_shared(
        self,
        image_bytes: bytes,
        language: str,
        page_index: int | None,
        timeout: float | None,
    ) -> RecognitionResult:
        worker = self._shared.acquire(language)
        try:
            return worker.recognize(image_bytes, page_index=page_index, timeout=timeout)
        except WorkerHealthError:
            logger.error("Shared OCR worker unhealthy; scheduling cleanup", exc_info=True)
            threading.Thread(
                target=self._shared.reset, name="ocr-shared-cleanup", daemon=True
            ).start()
            raise
        finally:
            self._shared.release(worker)

    def cleanup(self) -> int:
        return self._shared.reset()

    def health_check(self) -> dict:
        """Create and tear down a throwaway worker.

        Raises:
            WorkerHealthError: if the engine or its language data is unavailable.
        """
        worker = self._factory(OCR_DEFAULT_LANGUAGE)
        worker.terminate()
        return {
            "languages": list(SUPPORTED_LANGUAGES),
            "supported_formats": list(SUPPORTED_FORMATS),
        }


# Module-level engine used by the API and CLI.
_engine: OCREngine | None = None
_engine_lock = threading.Lock()


def get_engine() -> OCREngine:
    """Get or create the process-wide OCR engine."""
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = OCREngine()
        return _engine


def reset_engine() -> None:
    """Tear down shared workers and drop the engine (useful for testing)."""
    global _engine
    with _engine_lock:
        engine, _engine = _engine, None
    if engine is not None:
        engine.cleanup()
