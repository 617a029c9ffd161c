"""Embedded PDF text extraction using PyMuPDF (fitz).

Reads the text layer without rendering any pixels and scores it so the
decision engine can tell born-digital PDFs from scans.
"""

from __future__ import annotations

import fitz  # PyMuPDF

from .schema import TextLayerAssessment
from .utils import (
    PdfProcessingError,
    contains_letters,
    count_non_whitespace,
    count_words,
)


def _open_pdf(pdf_bytes: bytes) -> fitz.Document:
    try:
        return fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as exc:
        raise PdfProcessingError(f"Failed to open PDF: {exc}") from exc


def extract_text_layer(pdf_bytes: bytes) -> TextLayerAssessment:
    """Extract embedded text from a PDF and measure its quality.

    Returns:
        A ``TextLayerAssessment`` whose ``text`` is the non-empty page texts
        joined by newlines and trimmed; ``page_texts`` keeps the raw text of
        every page (empty string for pages without a text layer).
    """
    doc = _open_pdf(pdf_bytes)
    page_texts: list[str] = []
    full_parts: list[str] = []
    try:
        for page in doc:
            text = page.get_text()
            page_texts.append(text)
            if text.strip():
                full_parts.append(text.strip())
        page_count = doc.page_count
    except Exception as exc:
        raise PdfProcessingError(f"Failed to read PDF text layer: {exc}") from exc
    finally:
        doc.close()
    return assess_text_layer("\n".join(full_parts), page_count, page_texts)


def assess_text_layer(
    text: str,
    page_count: int,
    page_texts: list[str] | None = None,
) -> TextLayerAssessment:
    """Compute the quality metrics of already-extracted text."""
    text = text.strip()
    return TextLayerAssessment(
        text=text,
        page_count=page_count,
        char_count=len(text),
        non_whitespace_count=count_non_whitespace(text),
        word_count=count_words(text),
        contains_letters=contains_letters(text),
        page_texts=list(page_texts or []),
    )


def pdf_page_sizes(pdf_bytes: bytes) -> list[tuple[float, float]]:
    """Return ``(width, height)`` in points for every page, in page order."""
    doc = _open_pdf(pdf_bytes)
    try:
        return [(page.rect.width, page.rect.height) for page in doc]
    finally:
        doc.close()
