"""Centralized configuration for limits, thresholds and runtime backends.

All env-driven settings live here so there is a single source of truth.
Import from ``legal_ocr.config`` in api.py, extract.py, etc.
"""

from __future__ import annotations

import logging
import os
import sys


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes")


def _env_int(name: str, default: int, lo: int = 1, hi: int = 10_000) -> int:
    try:
        return max(lo, min(hi, int(os.environ.get(name, str(default)))))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float, lo: float = 0.0, hi: float = 10_000.0) -> float:
    try:
        return max(lo, min(hi, float(os.environ.get(name, str(default)))))
    except (TypeError, ValueError):
        return default


def _env_str(name: str, default: str | None = None) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or default


# ---------------------------------------------------------------------------
# Upload limits
# ---------------------------------------------------------------------------
MAX_FILE_SIZE_BYTES: int = _env_int(
    "MAX_FILE_SIZE_BYTES", default=100 * 1024 * 1024, lo=1, hi=1024 * 1024 * 1024,
)
UPLOAD_CHUNK_SIZE: int = 64 * 1024  # 64 KiB streaming chunks

PDF_MIME_TYPE = "application/pdf"
IMAGE_MIME_TYPES: tuple[str, ...] = (
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/gif",
    "image/bmp",
    "image/webp",
    "image/tiff",
)
SUPPORTED_MIME_TYPES: tuple[str, ...] = (PDF_MIME_TYPE, *IMAGE_MIME_TYPES)
SUPPORTED_FORMATS: tuple[str, ...] = ("pdf", "png", "jpg", "jpeg", "gif", "bmp", "webp", "tiff")

# ---------------------------------------------------------------------------
# Text-layer acceptance policy (empirical cutoffs, kept tunable)
# ---------------------------------------------------------------------------
TEXT_LAYER_MIN_CHARS: int = _env_int("TEXT_LAYER_MIN_CHARS", default=100, lo=0)
TEXT_LAYER_MIN_NON_WHITESPACE: int = _env_int("TEXT_LAYER_MIN_NON_WHITESPACE", default=50, lo=0)
TEXT_LAYER_REAL_MIN_WORDS: int = _env_int("TEXT_LAYER_REAL_MIN_WORDS", default=10, lo=0)
DIRECT_EXTRACTION_MIN_WORDS: int = _env_int("DIRECT_EXTRACTION_MIN_WORDS", default=15, lo=0)
DIRECT_EXTRACTION_MIN_CONFIDENCE: float = _env_float(
    "DIRECT_EXTRACTION_MIN_CONFIDENCE", default=80.0, hi=100.0,
)
TEXT_LAYER_REAL_CONFIDENCE: float = 100.0
TEXT_LAYER_WEAK_CONFIDENCE: float = 30.0

# ---------------------------------------------------------------------------
# PDF rasterizer (poppler via pdf2image)
# ---------------------------------------------------------------------------
RASTER_SCALE: float = _env_float("RASTER_SCALE", default=2.5, lo=0.5, hi=10.0)
RASTER_MAX_DIMENSION: int = _env_int("RASTER_MAX_DIMENSION", default=3000, lo=100, hi=20_000)
POPPLER_PATH: str | None = _env_str("POPPLER_PATH")

# ---------------------------------------------------------------------------
# Image preprocessing
# ---------------------------------------------------------------------------
PREPROCESS_GAMMA: float = 1.2
PREPROCESS_UNSHARP: tuple[float, int, int] = (1.5, 150, 2)  # radius, percent, threshold
PREPROCESS_BRIGHTNESS: float = 1.1
PREPROCESS_MAX_DIMENSION: int = _env_int("PREPROCESS_MAX_DIMENSION", default=2400, lo=100, hi=20_000)
PREPROCESS_MIN_DIMENSION: int = _env_int("PREPROCESS_MIN_DIMENSION", default=600, lo=1, hi=20_000)

# ---------------------------------------------------------------------------
# OCR engine (Tesseract)
# ---------------------------------------------------------------------------
OCR_DEFAULT_LANGUAGE: str = _env_str("OCR_DEFAULT_LANGUAGE", "vie+eng")
OCR_OEM: int = 1
OCR_PSM_AUTO: int = 3
TESSERACT_CMD: str | None = _env_str("TESSERACT_CMD")
TESSDATA_PATH: str | None = _env_str("TESSDATA_PATH")
SHARED_WORKER_FOR_PDF: bool = _env_bool("SHARED_WORKER_FOR_PDF", default=True)
EXTRACTION_TIMEOUT_SECONDS: float = _env_float(
    "EXTRACTION_TIMEOUT_SECONDS", default=600.0, hi=86_400.0,
)

# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------
PAGE_MARKER_TEMPLATE: str = _env_str("PAGE_MARKER_TEMPLATE", "--- Trang {page} ---")

# ---------------------------------------------------------------------------
# Result cache
# ---------------------------------------------------------------------------
RESULT_STORE_BACKEND: str = (_env_str("RESULT_STORE_BACKEND", "sqlite") or "sqlite").lower()
RESULT_STORE_PATH: str = _env_str("RESULT_STORE_PATH", "ocr_results.sqlite3")
CACHE_ON_EXTRACT: bool = _env_bool("CACHE_ON_EXTRACT", default=True)
SUPABASE_URL: str | None = _env_str("SUPABASE_URL")
SUPABASE_KEY: str | None = _env_str("SUPABASE_KEY")
SUPABASE_RESULTS_TABLE: str = _env_str("SUPABASE_RESULTS_TABLE", "ocr_results")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL: str = (_env_str("LOG_LEVEL", "INFO") or "INFO").upper()


def setup_logging(level: str | None = None) -> None:
    """Configure a single plain-text root handler."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO))
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)-8s %(name)s:%(lineno)d  %(message)s",
        datefmt="%H:%M:%S",
    ))
    root.addHandler(handler)


def log_startup_config() -> None:
    """Print one startup line summarising active configuration."""
    msg = (
        f"Legal OCR config: MAX_FILE_SIZE_BYTES={MAX_FILE_SIZE_BYTES} "
        f"OCR_DEFAULT_LANGUAGE={OCR_DEFAULT_LANGUAGE} "
        f"RASTER_SCALE={RASTER_SCALE} RASTER_MAX_DIMENSION={RASTER_MAX_DIMENSION} "
        f"POPPLER_PATH={POPPLER_PATH or '<PATH>'} "
        f"SHARED_WORKER_FOR_PDF={SHARED_WORKER_FOR_PDF} "
        f"EXTRACTION_TIMEOUT_SECONDS={EXTRACTION_TIMEOUT_SECONDS} "
        f"RESULT_STORE_BACKEND={RESULT_STORE_BACKEND} CACHE_ON_EXTRACT={CACHE_ON_EXTRACT}"
    )
    print(msg, flush=True)
    sys.stderr.write(msg + "\n")
    sys.stderr.flush()
