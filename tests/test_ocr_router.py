"""Tests for legal_ocr.ocr_router."""

from __future__ import annotations

import unittest

from legal_ocr.ocr_router import SUPPORTED_LANGUAGES, ResolvedOCRConfig, resolve_ocr_config
from legal_ocr.utils import InvalidOptionsError


class TestResolveCanonical(unittest.TestCase):
    def test_resolve_vietnamese(self) -> None:
        r = resolve_ocr_config("vie")
        self.assertIsInstance(r, ResolvedOCRConfig)
        self.assertEqual(r.tesseract_lang, "vie")
        self.assertEqual(r.language_ids, ("vietnamese",))

    def test_resolve_combined_default(self) -> None:
        r = resolve_ocr_config("vie+eng")
        self.assertEqual(r.tesseract_lang, "vie+eng")
        self.assertEqual(r.language_ids, ("vietnamese", "english"))

    def test_every_supported_language_resolves(self) -> None:
        for language in SUPPORTED_LANGUAGES:
            self.assertEqual(resolve_ocr_config(language).tesseract_lang, language)


class TestResolveAliases(unittest.TestCase):
    def test_aliases_and_case(self) -> None:
        self.assertEqual(resolve_ocr_config("vi").tesseract_lang, "vie")
        self.assertEqual(resolve_ocr_config("Vietnamese").tesseract_lang, "vie")
        self.assertEqual(resolve_ocr_config(" EN ").tesseract_lang, "eng")
        self.assertEqual(resolve_ocr_config("vi+english").tesseract_lang, "vie+eng")

    def test_duplicates_collapse(self) -> None:
        self.assertEqual(resolve_ocr_config("vie+vi+vie").tesseract_lang, "vie")


class TestWhitelist(unittest.TestCase):
    def test_vietnamese_whitelist_has_diacritics(self) -> None:
        whitelist = resolve_ocr_config("vie").char_whitelist
        for ch in ("đ", "Đ", "ă", "ơ", "ư", "ế", "ệ", "ỹ", "Ỵ", "à", "7", "Z", "(", "/"):
            self.assertIn(ch, whitelist)

    def test_english_whitelist_is_ascii(self) -> None:
        whitelist = resolve_ocr_config("eng").char_whitelist
        self.assertTrue(whitelist.isascii())
        self.assertIn("a", whitelist)
        self.assertNotIn("đ", whitelist)

    def test_combined_whitelist_has_no_duplicates(self) -> None:
        whitelist = resolve_ocr_config("vie+eng").char_whitelist
        self.assertEqual(len(whitelist), len(set(whitelist)))
        self.assertNotIn(" ", whitelist)


class TestResolveInvalid(unittest.TestCase):
    def test_unknown_language_raises(self) -> None:
        with self.assertRaises(InvalidOptionsError):
            resolve_ocr_config("klingon")

    def test_empty_language_raises(self) -> None:
        for value in (None, "", "   "):
            with self.assertRaises(InvalidOptionsError):
                resolve_ocr_config(value)

    def test_malformed_combination_raises(self) -> None:
        with self.assertRaises(InvalidOptionsError):
            resolve_ocr_config("vie++eng")


if __name__ == "__main__":
    unittest.main()
