"""Tests for legal_ocr.preprocess."""

from __future__ import annotations

import io
import unittest
from unittest.mock import patch

from PIL import Image, ImageDraw, ImageStat

from legal_ocr.preprocess import (
    adjust_brightness,
    adjust_gamma,
    flatten_on_white,
    normalize_histogram,
    normalize_resolution,
    preprocess_image,
    to_grayscale,
)


def _encode(image: Image.Image, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def _decode(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def _text_like_page(size: tuple[int, int] = (1000, 800)) -> Image.Image:
    """A grey, low-contrast page with dark 'text' bars."""
    image = Image.new("RGB", size, (180, 180, 180))
    draw = ImageDraw.Draw(image)
    for top in range(40, size[1] - 40, 60):
        draw.rectangle((40, top, size[0] - 40, top + 20), fill=(90, 90, 90))
    return image


class TestSteps(unittest.TestCase):
    def test_flatten_on_white_removes_transparency(self) -> None:
        transparent = Image.new("RGBA", (10, 10), (0, 0, 0, 0))
        flat = flatten_on_white(transparent)
        self.assertEqual(flat.mode, "RGB")
        self.assertEqual(flat.getpixel((5, 5)), (255, 255, 255))

    def test_to_grayscale(self) -> None:
        self.assertEqual(to_grayscale(Image.new("RGB", (4, 4), "red")).mode, "L")
        gray = Image.new("L", (4, 4), 10)
        self.assertIs(to_grayscale(gray), gray)

    def test_normalize_histogram_stretches_range(self) -> None:
        image = Image.new("L", (2, 1))
        image.putpixel((0, 0), 100)
        image.putpixel((1, 0), 150)
        stretched = normalize_histogram(image)
        self.assertEqual(stretched.getextrema(), (0, 255))

    def test_gamma_keeps_endpoints_and_lifts_midtones(self) -> None:
        image = Image.new("L", (3, 1))
        for x, value in enumerate((0, 128, 255)):
            image.putpixel((x, 0), value)
        adjusted = adjust_gamma(image, 1.2)
        self.assertEqual(adjusted.getpixel((0, 0)), 0)
        self.assertEqual(adjusted.getpixel((2, 0)), 255)
        self.assertGreater(adjusted.getpixel((1, 0)), 128)

    def test_brightness_boost(self) -> None:
        image = Image.new("L", (4, 4), 100)
        self.assertEqual(adjust_brightness(image, 1.1).getpixel((0, 0)), 110)

    def test_downscale_fits_inside_max(self) -> None:
        resized = normalize_resolution(Image.new("L", (4800, 1200)), 2400, 600)
        self.assertEqual(resized.size, (2400, 600))

    def test_upscale_small_images(self) -> None:
        resized = normalize_resolution(Image.new("L", (300, 400)), 2400, 600)
        # scale = max(600/300, 600/400) = 2
        self.assertEqual(resized.size, (600, 800))

    def test_mid_size_untouched(self) -> None:
        image = Image.new("L", (1000, 1000))
        self.assertIs(normalize_resolution(image, 2400, 600), image)


class TestPreprocessImage(unittest.TestCase):
    def test_outputs_grayscale_png(self) -> None:
        out = _decode(preprocess_image(_encode(_text_like_page(), "JPEG")))
        self.assertEqual(out.format, "PNG")
        self.assertEqual(out.mode, "L")
        self.assertEqual(out.size, (1000, 800))

    def test_large_image_is_downscaled(self) -> None:
        out = _decode(preprocess_image(_encode(_text_like_page((3000, 1500)))))
        self.assertEqual(out.size, (2400, 1200))

    def test_undecodable_bytes_returned_unchanged(self) -> None:
        garbage = b"\x00\x01 definitely not an image"
        with self.assertLogs("legal_ocr.preprocess", level="WARNING"):
            self.assertEqual(preprocess_image(garbage), garbage)

    def test_step_failure_returns_original(self) -> None:
        original = _encode(_text_like_page())
        with patch("legal_ocr.preprocess.sharpen", side_effect=RuntimeError("filter crashed")):
            with self.assertLogs("legal_ocr.preprocess", level="WARNING"):
                self.assertEqual(preprocess_image(original), original)

    def test_multi_frame_uses_first_frame(self) -> None:
        first = Image.new("RGB", (800, 800), "white")
        second = Image.new("RGB", (700, 700), "black")
        buffer = io.BytesIO()
        first.save(buffer, format="TIFF", save_all=True, append_images=[second])
        out = _decode(preprocess_image(buffer.getvalue()))
        self.assertEqual(out.size, (800, 800))

    def test_reapplying_does_not_degrade_contrast(self) -> None:
        once = _decode(preprocess_image(_encode(_text_like_page())))
        twice = _decode(preprocess_image(_encode(once)))
        self.assertEqual(once.size, twice.size)
        spread_once = ImageStat.Stat(once).stddev[0]
        spread_twice = ImageStat.Stat(twice).stddev[0]
        # Re-normalising normalised data keeps text/background separation.
        self.assertGreater(spread_twice, 0.8 * spread_once)


if __name__ == "__main__":
    unittest.main()
