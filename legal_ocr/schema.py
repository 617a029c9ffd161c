"""Pydantic models for extraction requests, results and API envelopes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .config import OCR_DEFAULT_LANGUAGE

ExtractionMethod = Literal["direct_extraction", "ocr", "merged", "failed"]
StoredMethod = Literal["direct_extraction", "ocr", "ocr_failed", "merged", "python_ocr"]


class ExtractionOptions(BaseModel):
    """Typed options accepted by the extraction pipeline."""

    model_config = ConfigDict(frozen=True)

    force_ocr: bool = False
    language: str = OCR_DEFAULT_LANGUAGE
    use_shared_worker: bool = False
    timeout_seconds: float | None = None


class ExtractionRequest(BaseModel):
    """One uploaded document; the pipeline owns the bytes for the call."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str
    file_name: str
    options: ExtractionOptions = Field(default_factory=ExtractionOptions)

    @property
    def size(self) -> int:
        return len(self.data)


class TextLayerAssessment(BaseModel):
    """Quality metrics of the text embedded in a PDF."""

    model_config = ConfigDict(frozen=True)

    text: str
    page_count: int
    char_count: int
    non_whitespace_count: int
    word_count: int
    contains_letters: bool
    page_texts: List[str] = Field(default_factory=list)


@dataclass(frozen=True)
class RasterPage:
    """One rendered PDF page; lives only until OCR has consumed it."""

    page_index: int
    image_bytes: bytes
    width: int
    height: int


class BBox(BaseModel):
    """Bounding box for a word."""

    x: int
    y: int
    w: int
    h: int


class Word(BaseModel):
    """Word-level OCR data."""

    text: str
    bbox: BBox
    confidence: float


class RecognitionResult(BaseModel):
    """OCR output for one page or one image."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    text: str
    confidence: float = Field(ge=0.0, le=100.0)
    words: List[Word] = Field(default_factory=list)
    page_index: int | None = None


class ExtractionResult(BaseModel):
    """Canonical extraction output envelope."""

    text: str = ""
    page_count: int = 0
    confidence: float = 0.0
    method: ExtractionMethod
    per_page_results: List[RecognitionResult] | None = None
    error: str | None = None
    error_code: str | None = None
    word_count: int = 0
    text_length: int = 0

    @model_validator(mode="after")
    def _check_pages(self) -> "ExtractionResult":
        if self.method != "failed" and self.page_count < 1:
            raise ValueError("page_count must be >= 1 for a successful extraction")
        if self.per_page_results is not None:
            if len(self.per_page_results) != self.page_count:
                raise ValueError(
                    f"per_page_results has {len(self.per_page_results)} entries "
                    f"for {self.page_count} pages"
                )
            indices = [r.page_index for r in self.per_page_results if r.page_index is not None]
            if indices != sorted(set(indices)):
                raise ValueError("per_page_results must be ordered by ascending page index")
        return self

    @property
    def succeeded(self) -> bool:
        return self.method != "failed"


class CacheEntry(BaseModel):
    """A persisted extraction result, unique per (user_id, file_hash)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    user_id: str
    file_name: str
    file_size: int
    file_type: str
    file_hash: str
    text: str | None = None
    html: str | None = None
    confidence: float = 0.0
    pages: int = 1
    method: StoredMethod = "ocr"
    processing_time: str = ""
    text_length: int = 0
    word_count: int = 0
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# API payloads (camelCase on the wire)
# ---------------------------------------------------------------------------
class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExtractTextResponse(_CamelModel):
    """Envelope returned by the extraction endpoint, success or not."""

    success: bool
    text: str = ""
    pages: int = 0
    confidence: float = 0.0
    method: str
    error: str | None = None
    processing_time: str = "0.00s"
    text_length: int = 0
    word_count: int = 0
    page_results: List[RecognitionResult] | None = None
    cached: bool = False


class SaveResultRequest(_CamelModel):
    """Body of a cache write coming from a client."""

    file_name: str = Field(min_length=1)
    file_size: int = Field(gt=0)
    file_type: str = Field(min_length=1)
    text: str = Field(min_length=1)
    html: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    pages: int = Field(default=1, ge=1)
    method: StoredMethod = "ocr"
    processing_time: str = ""
    text_length: int | None = None
    word_count: int | None = None


class CheckResultRequest(_CamelModel):
    file_name: str = Field(min_length=1)
    file_size: int = Field(gt=0)


class HealthResponse(_CamelModel):
    success: bool
    status: Literal["healthy", "unhealthy"]
    message: str
    languages: List[str] = Field(default_factory=list)
    supported_formats: List[str] = Field(default_factory=list)
    error: str | None = None
