"""Tests for legal_ocr.schema models."""

from __future__ import annotations

import unittest
from datetime import datetime, timezone

from pydantic import ValidationError

from legal_ocr.schema import (
    CacheEntry,
    ExtractionOptions,
    ExtractionRequest,
    ExtractionResult,
    ExtractTextResponse,
    RecognitionResult,
    SaveResultRequest,
)


def _page(index: int | None, text: str = "x", confidence: float = 90.0) -> RecognitionResult:
    return RecognitionResult(text=text, confidence=confidence, page_index=index)


class TestOptionsAndRequest(unittest.TestCase):
    def test_option_defaults(self) -> None:
        options = ExtractionOptions()
        self.assertFalse(options.force_ocr)
        self.assertEqual(options.language, "vie+eng")
        self.assertFalse(options.use_shared_worker)
        self.assertIsNone(options.timeout_seconds)

    def test_request_is_immutable(self) -> None:
        request = ExtractionRequest(data=b"abc", mime_type="image/png", file_name="a.png")
        self.assertEqual(request.size, 3)
        with self.assertRaises(ValidationError):
            request.file_name = "b.png"


class TestRecognitionResult(unittest.TestCase):
    def test_confidence_bounds(self) -> None:
        with self.assertRaises(ValidationError):
            RecognitionResult(text="x", confidence=101)
        with self.assertRaises(ValidationError):
            RecognitionResult(text="x", confidence=-1)

    def test_camel_case_dump(self) -> None:
        dumped = _page(2).model_dump(by_alias=True)
        self.assertEqual(dumped["pageIndex"], 2)


class TestExtractionResultInvariants(unittest.TestCase):
    def test_success_needs_a_page(self) -> None:
        with self.assertRaises(ValidationError):
            ExtractionResult(text="x", page_count=0, method="ocr")

    def test_failed_may_have_zero_pages(self) -> None:
        result = ExtractionResult(method="failed", error="poppler missing")
        self.assertFalse(result.succeeded)
        self.assertEqual(result.page_count, 0)

    def test_per_page_length_must_match(self) -> None:
        with self.assertRaises(ValidationError):
            ExtractionResult(text="x", page_count=3, method="ocr", per_page_results=[_page(1), _page(2)])

    def test_per_page_must_be_ascending(self) -> None:
        with self.assertRaises(ValidationError):
            ExtractionResult(text="x", page_count=2, method="ocr", per_page_results=[_page(2), _page(1)])
        with self.assertRaises(ValidationError):
            ExtractionResult(text="x", page_count=2, method="ocr", per_page_results=[_page(1), _page(1)])

    def test_valid_ocr_result(self) -> None:
        result = ExtractionResult(
            text="a\n\nb", page_count=2, confidence=88.5, method="ocr",
            per_page_results=[_page(1), _page(2)],
        )
        self.assertTrue(result.succeeded)

    def test_unknown_method_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            ExtractionResult(text="x", page_count=1, method="magic")


class TestWireModels(unittest.TestCase):
    def test_envelope_uses_camel_case(self) -> None:
        envelope = ExtractTextResponse(
            success=True, text="t", pages=1, confidence=99.0, method="ocr",
            processing_time="1.20s", text_length=1, word_count=1,
        )
        dumped = envelope.model_dump(by_alias=True, exclude_none=True)
        for key in ("processingTime", "textLength", "wordCount", "cached"):
            self.assertIn(key, dumped)
        self.assertNotIn("error", dumped)

    def test_save_request_accepts_camel_case(self) -> None:
        payload = SaveResultRequest.model_validate(
            {"fileName": "a.pdf", "fileSize": 10, "fileType": "application/pdf", "text": "hello"}
        )
        self.assertEqual(payload.file_name, "a.pdf")
        self.assertEqual(payload.method, "ocr")
        self.assertIsNone(payload.word_count)

    def test_save_request_requires_fields(self) -> None:
        with self.assertRaises(ValidationError):
            SaveResultRequest.model_validate({"fileName": "a.pdf", "fileSize": 10, "fileType": "x", "text": ""})
        with self.assertRaises(ValidationError):
            SaveResultRequest.model_validate({"fileName": "a.pdf", "fileSize": 0, "fileType": "x", "text": "t"})

    def test_cache_entry_allows_missing_text(self) -> None:
        now = datetime.now(timezone.utc)
        entry = CacheEntry(
            id="1", user_id="u", file_name="a.pdf", file_size=10, file_type="application/pdf",
            file_hash="h", created_at=now, updated_at=now,
        )
        self.assertIsNone(entry.text)
        self.assertIn("fileHash", entry.model_dump(by_alias=True))


if __name__ == "__main__":
    unittest.main()
