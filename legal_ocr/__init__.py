"""Text extraction for legal documents: PDF text layer or Tesseract OCR."""

__version__ = "0.1.0"
