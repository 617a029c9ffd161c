"""Utility helpers for document extraction."""

from __future__ import annotations

import hashlib
import logging
import re
import shutil
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

# Latin letters including the Vietnamese precomposed range.
_LETTER_RE = re.compile(r"[a-zA-ZÀ-ỹ]")


class ExtractionError(Exception):
    """Base exception for extraction errors."""


class InputValidationError(ExtractionError):
    """Raised when a request is rejected before any processing starts."""


class UnsupportedFileTypeError(InputValidationError):
    """Raised when the declared MIME type is not a PDF or supported image."""


class EmptyFileError(InputValidationError):
    """Raised when the uploaded payload has no bytes."""


class FileTooLargeError(InputValidationError):
    """Raised when the uploaded payload exceeds the size limit."""


class InvalidOptionsError(InputValidationError):
    """Raised when extraction options cannot be interpreted."""


class RendererError(ExtractionError):
    """Raised when the PDF rasterization backend cannot be used."""

    code = "renderer-error"


class MissingDependencyError(RendererError):
    """Raised when required system dependencies are missing."""

    code = "missing-renderer-dependency"


class RendererMisconfiguredError(RendererError):
    """Raised when the rasterizer is installed but its configuration is broken."""

    code = "renderer-misconfigured"


class PageRenderError(ExtractionError):
    """Raised when a single PDF page fails to render."""

    def __init__(self, page_index: int, detail: str) -> None:
        super().__init__(f"Failed to render page {page_index}: {detail}")
        self.page_index = page_index


class PdfProcessingError(ExtractionError):
    """Raised when PDF processing fails."""


class PageCountMismatchError(ExtractionError):
    """Raised when recognized pages do not line up with rendered pages."""


class OCREngineError(ExtractionError):
    """Raised when the OCR engine fails to recognize a page."""


class WorkerHealthError(OCREngineError):
    """Raised when an OCR worker is unusable (engine missing, terminated, crashed)."""


class ExtractionTimeoutError(ExtractionError):
    """Raised when a request exceeds its deadline."""


# ---------------------------------------------------------------------------
# Text metrics
# ---------------------------------------------------------------------------
def count_words(text: str) -> int:
    """Return the number of whitespace-separated tokens."""

    return len(text.split())


def count_non_whitespace(text: str) -> int:
    return sum(1 for ch in text if not ch.isspace())


def contains_letters(text: str) -> bool:
    return _LETTER_RE.search(text) is not None


def compute_file_hash(user_id: str, file_name: str, file_size: int) -> str:
    """Return the cache identity of an upload.

    The identity is coarse: it covers who uploaded what name at what size,
    not the byte stream itself.
    """

    digest = hashlib.sha256()
    digest.update(f"{user_id}_{file_name}_{file_size}".encode("utf-8"))
    return digest.hexdigest()


# ---------------------------------------------------------------------------
# Deadlines
# ---------------------------------------------------------------------------
def make_deadline(timeout_seconds: float | None) -> float | None:
    if not timeout_seconds or timeout_seconds <= 0:
        return None
    return time.monotonic() + timeout_seconds


def remaining_seconds(deadline: float | None, stage: str) -> float | None:
    """Return seconds left before *deadline*; raise once it has passed."""

    if deadline is None:
        return None
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise ExtractionTimeoutError(f"Extraction deadline exceeded during {stage}.")
    return remaining


# ---------------------------------------------------------------------------
# Progress reporting
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ProgressEvent:
    """One step of the pipeline, reported to an optional callback."""

    stage: str
    page_index: int | None = None
    total_pages: int | None = None


ProgressCallback = Callable[[ProgressEvent], None]


def notify_progress(callback: ProgressCallback | None, event: ProgressEvent) -> None:
    """Invoke *callback* without letting it interrupt extraction."""

    if callback is None:
        return
    try:
        callback(event)
    except Exception:
        logger.warning("Progress callback failed for stage %s", event.stage, exc_info=True)


# ---------------------------------------------------------------------------
# System binaries
# ---------------------------------------------------------------------------
def check_binary_exists(binary_name: str, search_path: str | None = None) -> bool:
    """Return True if a binary is available on PATH (or *search_path*)."""

    return shutil.which(binary_name, path=search_path) is not None
