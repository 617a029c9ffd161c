"""OCR language routing: resolve the ``language`` option to Tesseract codes and a whitelist."""

from __future__ import annotations

import string
import unicodedata
from dataclasses import dataclass

from .utils import InvalidOptionsError

_PUNCTUATION = ".,;:!?\"'()[]{}-/"
_LATIN = string.digits + string.ascii_uppercase + string.ascii_lowercase


def _vietnamese_letters() -> str:
    """Every precomposed Vietnamese vowel/tone combination plus đ/Đ."""
    bases = "aăâeêioôơuưy"
    tones = ("", "\u0300", "\u0301", "\u0303", "\u0309", "\u0323")
    letters: list[str] = []
    for base in bases + bases.upper():
        for tone in tones:
            composed = unicodedata.normalize("NFC", base + tone)
            if composed not in _LATIN and composed not in letters:
                letters.append(composed)
    letters.extend(["đ", "Đ"])
    return "".join(letters)


# Canonical Tesseract code -> profile
LANGUAGE_PROFILES: dict[str, dict[str, str]] = {
    "vie": {
        "id": "vietnamese",
        "tesseract_lang": "vie",
        "whitelist": _LATIN + _vietnamese_letters() + _PUNCTUATION,
    },
    "eng": {
        "id": "english",
        "tesseract_lang": "eng",
        "whitelist": _LATIN + _PUNCTUATION,
    },
}

# Alias -> canonical Tesseract code
LANGUAGE_ALIASES: dict[str, str] = {
    "vi": "vie",
    "vn": "vie",
    "vietnamese": "vie",
    "en": "eng",
    "english": "eng",
}

SUPPORTED_LANGUAGES: tuple[str, ...] = ("vie", "eng", "vie+eng")


@dataclass(frozen=True)
class ResolvedOCRConfig:
    """Resolved OCR config: Tesseract language string and character whitelist."""

    tesseract_lang: str  # e.g. "vie+eng"
    language_ids: tuple[str, ...]  # canonical ids, e.g. ("vietnamese", "english")
    char_whitelist: str


def _canonical_code(code: str) -> str:
    normalized = code.strip().lower()
    if normalized in LANGUAGE_PROFILES:
        return normalized
    alias = LANGUAGE_ALIASES.get(normalized)
    if alias is None:
        raise InvalidOptionsError(
            f"Unsupported OCR language '{code}'. "
            f"Supported: {', '.join(SUPPORTED_LANGUAGES)}"
        )
    return alias


def resolve_ocr_config(language: str | None) -> ResolvedOCRConfig:
    """Resolve a ``+``-joined language option (e.g. "vie+eng", "vi") to a full config.

    Raises:
        InvalidOptionsError: if the option is empty or names an unknown language.
    """
    if language is None or not language.strip():
        raise InvalidOptionsError("OCR language must not be empty.")

    codes: list[str] = []
    for part in language.split("+"):
        if not part.strip():
            raise InvalidOptionsError(f"Malformed OCR language option '{language}'.")
        code = _canonical_code(part)
        if code not in codes:
            codes.append(code)

    whitelist: list[str] = []
    seen: set[str] = set()
    for code in codes:
        for ch in LANGUAGE_PROFILES[code]["whitelist"]:
            if ch not in seen:
                seen.add(ch)
                whitelist.append(ch)

    return ResolvedOCRConfig(
        tesseract_lang="+".join(LANGUAGE_PROFILES[c]["tesseract_lang"] for c in codes),
        language_ids=tuple(LANGUAGE_PROFILES[c]["id"] for c in codes),
        char_whitelist="".join(whitelist),
    )
