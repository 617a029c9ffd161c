"""Merge per-page recognition results into one document text."""

from __future__ import annotations

from typing import Sequence

from .config import PAGE_MARKER_TEMPLATE
from .schema import RecognitionResult


def page_marker(page_index: int, template: str = PAGE_MARKER_TEMPLATE) -> str:
    return template.format(page=page_index)


def aggregate_pages(
    results: Sequence[RecognitionResult],
    template: str = PAGE_MARKER_TEMPLATE,
) -> tuple[str, float]:
    """Return ``(text, mean_confidence)`` for ordered page results.

    A single page is returned unmodified. With several pages each text is
    prefixed by its page marker and pages are separated by a blank line.

    Raises:
        ValueError: page indices are present but not strictly ascending.
    """
    indices = [r.page_index for r in results if r.page_index is not None]
    if any(later <= earlier for earlier, later in zip(indices, indices[1:])):
        raise ValueError(f"Page results out of order: {indices}")

    if not results:
        return "", 0.0

    confidence = sum(r.confidence for r in results) / len(results)
    if len(results) == 1:
        return results[0].text, confidence

    sections = []
    for position, result in enumerate(results, start=1):
        index = result.page_index if result.page_index is not None else position
        sections.append(f"{page_marker(index, template)}\n\n{result.text}")
    return "\n\n".join(sections), confidence
