"""Tests for legal_ocr.rasterizer (poppler backend locator and page rendering)."""

from __future__ import annotations

import io
import os
import tempfile
import time
import unittest
from unittest.mock import patch

import fitz
from PIL import Image
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPopplerTimeoutError

from legal_ocr import rasterizer
from legal_ocr.rasterizer import (
    PdfRasterizer,
    RendererBackend,
    clamp_scale,
    get_renderer_backend,
    locate_renderer_backend,
    target_size,
)
from legal_ocr.utils import (
    ExtractionTimeoutError,
    MissingDependencyError,
    PageRenderError,
    RendererMisconfiguredError,
)


def make_pdf(page_count: int, width: float = 595, height: float = 842) -> bytes:
    doc = fitz.open()
    for _ in range(page_count):
        doc.new_page(width=width, height=height)
    data = doc.tobytes()
    doc.close()
    return data


def fake_convert(pdf_bytes, first_page, last_page, size, **kwargs):
    """Mimic pdf2image: one transparent RGBA page of the requested size."""
    return [Image.new("RGBA", size, (0, 0, 0, 0))]


class TestLocateRendererBackend(unittest.TestCase):
    @patch("legal_ocr.rasterizer.check_binary_exists", return_value=True)
    def test_binaries_on_path(self, _which) -> None:
        self.assertEqual(locate_renderer_backend(None), RendererBackend(poppler_path=None))

    @patch("legal_ocr.rasterizer.check_binary_exists", return_value=False)
    def test_not_installed(self, _which) -> None:
        with self.assertRaises(MissingDependencyError) as ctx:
            locate_renderer_backend(None)
        self.assertEqual(ctx.exception.code, "missing-renderer-dependency")

    def test_configured_path_not_a_directory(self) -> None:
        with self.assertRaises(RendererMisconfiguredError) as ctx:
            locate_renderer_backend("/definitely/not/here")
        self.assertEqual(ctx.exception.code, "renderer-misconfigured")

    def test_configured_directory_without_pdftoppm(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(RendererMisconfiguredError):
                locate_renderer_backend(tmp)

    def test_configured_directory_with_pdftoppm(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            binary = os.path.join(tmp, "pdftoppm")
            with open(binary, "w") as f:
                f.write("#!/bin/sh\n")
            os.chmod(binary, 0o755)
            self.assertEqual(locate_renderer_backend(tmp).poppler_path, tmp)


class TestGetRendererBackend(unittest.TestCase):
    def setUp(self) -> None:
        rasterizer._backend = None

    def tearDown(self) -> None:
        rasterizer._backend = None

    def test_resolved_once_and_cached(self) -> None:
        with patch("legal_ocr.rasterizer.locate_renderer_backend", return_value=RendererBackend()) as mock_locate:
            first = get_renderer_backend()
            second = get_renderer_backend()
            self.assertIs(first, second)
            mock_locate.assert_called_once()
            get_renderer_backend(refresh=True)
            self.assertEqual(mock_locate.call_count, 2)

    def test_failure_not_cached(self) -> None:
        with patch(
            "legal_ocr.rasterizer.locate_renderer_backend",
            side_effect=[MissingDependencyError("no poppler"), RendererBackend()],
        ):
            with self.assertRaises(MissingDependencyError):
                get_renderer_backend()
            self.assertEqual(get_renderer_backend(), RendererBackend())


class TestScale(unittest.TestCase):
    def test_a4_at_default_scale_is_not_clamped(self) -> None:
        self.assertEqual(clamp_scale(595, 842, 2.5, 3000), 2.5)
        self.assertEqual(target_size(595, 842, 2.5, 3000), (1488, 2105))

    def test_large_page_is_clamped_preserving_aspect(self) -> None:
        # 1684 x 1191 pt at 2.5x would be 4210 px wide.
        scale = clamp_scale(1684, 1191, 2.5, 3000)
        self.assertAlmostEqual(scale, 3000 / 1684)
        width, height = target_size(1684, 1191, 2.5, 3000)
        self.assertEqual(width, 3000)
        self.assertLessEqual(height, 3000)
        self.assertAlmostEqual(width / height, 1684 / 1191, places=2)


class TestPdfRasterizer(unittest.TestCase):
    def setUp(self) -> None:
        self.rasterizer = PdfRasterizer(backend=RendererBackend(poppler_path="/opt/poppler/bin"))

    def test_pages_sequential_ascending_on_white(self) -> None:
        events = []
        with patch("legal_ocr.rasterizer.convert_from_bytes", side_effect=fake_convert) as mock_convert:
            pages = self.rasterizer.rasterize(make_pdf(3), progress=events.append)
        self.assertEqual([p.page_index for p in pages], [1, 2, 3])
        self.assertEqual([c.kwargs["first_page"] for c in mock_convert.call_args_list], [1, 2, 3])
        for call in mock_convert.call_args_list:
            self.assertEqual(call.kwargs["first_page"], call.kwargs["last_page"])
            self.assertEqual(call.kwargs["poppler_path"], "/opt/poppler/bin")
            self.assertEqual(call.kwargs["size"], (1488, 2105))
        image = Image.open(io.BytesIO(pages[0].image_bytes))
        self.assertEqual(image.format, "PNG")
        self.assertEqual(image.convert("RGB").getpixel((10, 10)), (255, 255, 255))
        self.assertEqual((pages[0].width, pages[0].height), (1488, 2105))
        self.assertEqual([e.page_index for e in events], [1, 2, 3])
        self.assertTrue(all(e.total_pages == 3 for e in events))

    def test_oversized_page_is_clamped(self) -> None:
        with patch("legal_ocr.rasterizer.convert_from_bytes", side_effect=fake_convert):
            pages = self.rasterizer.rasterize(make_pdf(1, width=2000, height=1000))
        self.assertEqual((pages[0].width, pages[0].height), (3000, 1500))

    def test_single_page_failure_aborts_document(self) -> None:
        calls = []

        def flaky(pdf_bytes, first_page, last_page, size, **kwargs):
            calls.append(first_page)
            if first_page == 2:
                raise ValueError("broken content stream")
            return fake_convert(pdf_bytes, first_page, last_page, size)

        with patch("legal_ocr.rasterizer.convert_from_bytes", side_effect=flaky):
            with self.assertRaises(PageRenderError) as ctx:
                self.rasterizer.rasterize(make_pdf(3))
        self.assertEqual(ctx.exception.page_index, 2)
        self.assertEqual(calls, [1, 2])

    def test_poppler_missing_at_call_time(self) -> None:
        with patch(
            "legal_ocr.rasterizer.convert_from_bytes",
            side_effect=PDFInfoNotInstalledError("Unable to get page count. Is poppler installed?"),
        ):
            with self.assertRaises(MissingDependencyError):
                self.rasterizer.rasterize(make_pdf(1))

    def test_poppler_timeout(self) -> None:
        with patch("legal_ocr.rasterizer.convert_from_bytes", side_effect=PDFPopplerTimeoutError("timeout")):
            with self.assertRaises(ExtractionTimeoutError):
                self.rasterizer.rasterize(make_pdf(1))

    def test_expired_deadline_stops_before_rendering(self) -> None:
        with patch("legal_ocr.rasterizer.convert_from_bytes", side_effect=fake_convert) as mock_convert:
            with self.assertRaises(ExtractionTimeoutError):
                self.rasterizer.rasterize(make_pdf(2), deadline=time.monotonic() - 1)
        mock_convert.assert_not_called()

    def test_backend_error_surfaces_from_locator(self) -> None:
        lazy = PdfRasterizer()
        with patch(
            "legal_ocr.rasterizer.get_renderer_backend",
            side_effect=RendererMisconfiguredError("bad POPPLER_PATH"),
        ):
            with self.assertRaises(RendererMisconfiguredError):
                lazy.rasterize(make_pdf(1))


if __name__ == "__main__":
    unittest.main()
