"""PDF rasterization through poppler (pdf2image).

The poppler install is located once and cached; call sites get a
``RendererBackend`` or a classified ``RendererError`` and never inspect
error strings themselves.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass

from pdf2image import convert_from_bytes
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPopplerTimeoutError,
)

from .config import POPPLER_PATH, RASTER_MAX_DIMENSION, RASTER_SCALE
from .pdf_text import pdf_page_sizes
from .preprocess import encode_png, flatten_on_white
from .schema import RasterPage
from .utils import (
    ExtractionTimeoutError,
    MissingDependencyError,
    PageRenderError,
    ProgressCallback,
    ProgressEvent,
    RendererMisconfiguredError,
    check_binary_exists,
    notify_progress,
    remaining_seconds,
)

logger = logging.getLogger(__name__)

RENDER_BINARY = "pdftoppm"


@dataclass(frozen=True)
class RendererBackend:
    """A usable poppler install; ``poppler_path`` None means binaries on PATH."""

    poppler_path: str | None = None

    @property
    def description(self) -> str:
        return self.poppler_path or "<PATH>"


def locate_renderer_backend(poppler_path: str | None = POPPLER_PATH) -> RendererBackend:
    """Resolve the poppler backend from configuration.

    Raises:
        RendererMisconfiguredError: ``poppler_path`` is set but unusable.
        MissingDependencyError: poppler is not installed at all.
    """
    if poppler_path:
        if not os.path.isdir(poppler_path):
            raise RendererMisconfiguredError(
                f"POPPLER_PATH={poppler_path!r} is not a directory."
            )
        if not check_binary_exists(RENDER_BINARY, search_path=poppler_path):
            raise RendererMisconfiguredError(
                f"POPPLER_PATH={poppler_path!r} does not contain {RENDER_BINARY}."
            )
        return RendererBackend(poppler_path=poppler_path)

    if not check_binary_exists(RENDER_BINARY):
        raise MissingDependencyError(
            f"poppler ({RENDER_BINARY}) is not installed or not on PATH. "
            "Install poppler-utils or set POPPLER_PATH."
        )
    return RendererBackend()


_backend: RendererBackend | None = None
_backend_lock = threading.Lock()


def get_renderer_backend(refresh: bool = False) -> RendererBackend:
    """Return the cached backend, resolving it on first use (or on *refresh*).

    Failures are not cached, so installing poppler does not need a restart.
    """
    global _backend
    with _backend_lock:
        if _backend is None or refresh:
            _backend = None
            _backend = locate_renderer_backend()
            logger.info("PDF renderer backend: poppler at %s", _backend.description)
        return _backend


def clamp_scale(
    width_pt: float,
    height_pt: float,
    scale: float = RASTER_SCALE,
    max_dimension: int = RASTER_MAX_DIMENSION,
) -> float:
    """Return *scale*, reduced so neither rendered side exceeds *max_dimension*."""
    if width_pt * scale > max_dimension or height_pt * scale > max_dimension:
        return min(max_dimension / width_pt, max_dimension / height_pt)
    return scale


def target_size(
    width_pt: float,
    height_pt: float,
    scale: float = RASTER_SCALE,
    max_dimension: int = RASTER_MAX_DIMENSION,
) -> tuple[int, int]:
    final = clamp_scale(width_pt, height_pt, scale, max_dimension)
    width = min(max_dimension, max(1, round(width_pt * final)))
    height = min(max_dimension, max(1, round(height_pt * final)))
    return width, height


class PdfRasterizer:
    """Render PDF pages to PNG ``RasterPage`` objects, one page at a time."""

    def __init__(
        self,
        backend: RendererBackend | None = None,
        max_dimension: int = RASTER_MAX_DIMENSION,
    ) -> None:
        self._backend = backend
        self.max_dimension = max_dimension

    @property
    def backend(self) -> RendererBackend:
        if self._backend is None:
            return get_renderer_backend()
        return self._backend

    def rasterize(
        self,
        pdf_bytes: bytes,
        scale: float | None = None,
        deadline: float | None = None,
        progress: ProgressCallback | None = None,
    ) -> list[RasterPage]:
        """Render every page sequentially, ascending, 1-based.

        A failure on any page aborts the whole document.

        Raises:
            RendererError: the poppler backend is missing or misconfigured.
            PageRenderError: a page could not be rendered.
            ExtractionTimeoutError: *deadline* passed while rendering.
        """
        backend = self.backend
        scale = scale or RASTER_SCALE
        sizes = pdf_page_sizes(pdf_bytes)
        total = len(sizes)
        logger.info("Rasterizing %d page(s) at scale %.2f", total, scale)

        pages: list[RasterPage] = []
        for page_index, (width_pt, height_pt) in enumerate(sizes, start=1):
            timeout = remaining_seconds(deadline, "rasterization")
            notify_progress(
                progress, ProgressEvent(stage="rasterize", page_index=page_index, total_pages=total)
            )
            pages.append(
                self._render_page(
                    pdf_bytes,
                    page_index,
                    target_size(width_pt, height_pt, scale, self.max_dimension),
                    backend,
                    timeout,
                )
            )
        return pages

    def _render_page(
        self,
        pdf_bytes: bytes,
        page_index: int,
        size: tuple[int, int],
        backend: RendererBackend,
        timeout: float | None,
    ) -> RasterPage:
        try:
            images = convert_from_bytes(
                pdf_bytes,
                first_page=page_index,
                last_page=page_index,
                size=size,
                fmt="png",
                poppler_path=backend.poppler_path,
                timeout=timeout,
            )
        except PDFInfoNotInstalledError as exc:
            raise MissingDependencyError(
                f"poppler is not usable at {backend.description}: {exc}"
            ) from exc
        except PDFPopplerTimeoutError as exc:
            raise ExtractionTimeoutError(
                f"Rendering page {page_index} exceeded the request deadline."
            ) from exc
        except Exception as exc:
            raise PageRenderError(page_index, str(exc)) from exc

        if len(images) != 1:
            raise PageRenderError(page_index, f"renderer returned {len(images)} images")

        image = flatten_on_white(images[0])
        logger.debug("Rendered page %d at %dx%d", page_index, *image.size)
        return RasterPage(
            page_index=page_index,
            image_bytes=encode_png(image),
            width=image.width,
            height=image.height,
        )
