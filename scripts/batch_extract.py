#!/usr/bin/env python3
"""Batch text extraction for a set of PDFs and images, with a JSON summary."""

from __future__ import annotations

import argparse
import json
import time
from pathlib import Path

import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from legal_ocr.cli import guess_mime_type
from legal_ocr.config import OCR_DEFAULT_LANGUAGE, setup_logging
from legal_ocr.extract import extract_document, failure_method
from legal_ocr.ocr import reset_engine
from legal_ocr.schema import ExtractionOptions
from legal_ocr.utils import ExtractionError


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Batch extract text from documents.")
    parser.add_argument("files", nargs="+", help="PDF or image file paths.")
    parser.add_argument("--force-ocr", action="store_true", help="Force OCR for all files.")
    parser.add_argument("--language", type=str, default=OCR_DEFAULT_LANGUAGE)
    parser.add_argument(
        "--output-dir", type=str, default=None, metavar="DIR",
        help="Write each extracted text to DIR/<stem>.txt.",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    setup_logging()
    # One shared worker for the whole batch.
    options = ExtractionOptions(
        force_ocr=args.force_ocr, language=args.language, use_shared_worker=True,
    )
    output_dir = Path(args.output_dir) if args.output_dir else None
    if output_dir:
        output_dir.mkdir(parents=True, exist_ok=True)

    results = []
    total_pages = 0
    failed = 0
    try:
        for file_path in args.files:
            path = Path(file_path)
            started = time.perf_counter()
            try:
                result = extract_document(
                    path.read_bytes(),
                    mime_type=guess_mime_type(path),
                    file_name=path.name,
                    options=options,
                )
            except (OSError, ExtractionError) as exc:
                failed += 1
                results.append({"file": path.name, "method": "error", "error": str(exc)})
                continue

            if not result.succeeded:
                failed += 1
            total_pages += result.page_count
            if output_dir and result.text:
                (output_dir / f"{path.stem}.txt").write_text(result.text, encoding="utf-8")
            results.append(
                {
                    "file": path.name,
                    "method": failure_method(result),
                    "pages": result.page_count,
                    "confidence": result.confidence,
                    "word_count": result.word_count,
                    "seconds": round(time.perf_counter() - started, 2),
                    "error": result.error,
                }
            )
    finally:
        reset_engine()

    summary = {
        "files_total": len(args.files),
        "files_failed": failed,
        "total_pages": total_pages,
        "files": results,
    }
    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
