"""Command-line interface for document text extraction."""

from __future__ import annotations

import argparse
import mimetypes
import sys
from pathlib import Path

from .config import EXTRACTION_TIMEOUT_SECONDS, LOG_LEVEL, OCR_DEFAULT_LANGUAGE, setup_logging
from .extract import extract_document
from .ocr import reset_engine
from .schema import ExtractionOptions
from .utils import ExtractionError


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""

    parser = argparse.ArgumentParser(description="Extract text from a PDF or image.")
    parser.add_argument("file_path", help="Path to the PDF or image file.")
    parser.add_argument(
        "--force-ocr",
        action="store_true",
        help="Always run OCR, even if the PDF has a usable text layer.",
    )
    parser.add_argument(
        "--language",
        type=str,
        default=OCR_DEFAULT_LANGUAGE,
        help=f"OCR language(s), '+'-joined (default: {OCR_DEFAULT_LANGUAGE}).",
    )
    parser.add_argument(
        "--shared-worker",
        action="store_true",
        help="Reuse one long-lived OCR worker instead of one per call.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=EXTRACTION_TIMEOUT_SECONDS,
        metavar="SECONDS",
        help=f"Deadline for the whole extraction; 0 disables it (default: {EXTRACTION_TIMEOUT_SECONDS}).",
    )
    parser.add_argument(
        "--mime-type",
        type=str,
        default=None,
        help="Declared MIME type (default: guessed from the file extension).",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=LOG_LEVEL,
        help=f"Logging level (default: {LOG_LEVEL}).",
    )
    return parser


def guess_mime_type(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or "application/octet-stream"


def main(argv: list[str] | None = None) -> int:
    """Entry point for the CLI."""

    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    path = Path(args.file_path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        print(f"Error: cannot read {path}: {exc}", file=sys.stderr)
        return 1

    try:
        result = extract_document(
            data,
            mime_type=args.mime_type or guess_mime_type(path),
            file_name=path.name,
            options=ExtractionOptions(
                force_ocr=args.force_ocr,
                language=args.language,
                use_shared_worker=args.shared_worker,
                timeout_seconds=args.timeout,
            ),
        )
        print(result.model_dump_json(indent=2))
        return 0 if result.succeeded else 1
    except ExtractionError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except Exception as exc:  # pragma: no cover - safety net
        print(f"Unexpected error: {exc}", file=sys.stderr)
        return 2
    finally:
        reset_engine()


if __name__ == "__main__":
    raise SystemExit(main())
