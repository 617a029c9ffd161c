"""Pillow preprocessing that normalises page images before OCR.

Scans arrive at very different DPIs and contrast levels; Tesseract is tuned
for a narrow band of both. Every step here is a small pure function on a
PIL image, and ``preprocess_image`` chains them on encoded bytes.
"""

from __future__ import annotations

import io
import logging

from PIL import Image, ImageEnhance, ImageFilter, ImageOps

from .config import (
    PREPROCESS_BRIGHTNESS,
    PREPROCESS_GAMMA,
    PREPROCESS_MAX_DIMENSION,
    PREPROCESS_MIN_DIMENSION,
    PREPROCESS_UNSHARP,
)

logger = logging.getLogger(__name__)


def flatten_on_white(image: Image.Image) -> Image.Image:
    """Return an RGB copy of *image* composited over an opaque white canvas."""
    if image.mode in ("RGBA", "LA", "PA") or (
        image.mode == "P" and "transparency" in image.info
    ):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, "white")
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return image.convert("RGB")


def to_grayscale(image: Image.Image) -> Image.Image:
    if image.mode == "L":
        return image
    return ImageOps.grayscale(flatten_on_white(image))


def normalize_histogram(image: Image.Image) -> Image.Image:
    """Stretch the histogram to the full 0-255 range."""
    return ImageOps.autocontrast(image, cutoff=0)


def adjust_gamma(image: Image.Image, gamma: float = PREPROCESS_GAMMA) -> Image.Image:
    """Lift mid-tones; black and white stay fixed."""
    if gamma <= 0:
        return image
    inverse = 1.0 / gamma
    table = [round(255 * ((value / 255) ** inverse)) for value in range(256)]
    return image.point(table)


def sharpen(
    image: Image.Image,
    unsharp: tuple[float, int, int] = PREPROCESS_UNSHARP,
) -> Image.Image:
    radius, percent, threshold = unsharp
    return image.filter(
        ImageFilter.UnsharpMask(radius=radius, percent=percent, threshold=threshold)
    )


def adjust_brightness(image: Image.Image, factor: float = PREPROCESS_BRIGHTNESS) -> Image.Image:
    # Grayscale input, so there is no saturation to change.
    return ImageEnhance.Brightness(image).enhance(factor)


def normalize_resolution(
    image: Image.Image,
    max_dimension: int = PREPROCESS_MAX_DIMENSION,
    min_dimension: int = PREPROCESS_MIN_DIMENSION,
) -> Image.Image:
    """Fit oversized images inside ``max_dimension`` and enlarge tiny ones."""
    width, height = image.size
    if width > max_dimension or height > max_dimension:
        resized = ImageOps.contain(
            image, (max_dimension, max_dimension), method=Image.Resampling.LANCZOS
        )
        logger.debug("Downscaled image from %dx%d to %dx%d", width, height, *resized.size)
        return resized
    if width < min_dimension or height < min_dimension:
        scale = max(min_dimension / width, min_dimension / height)
        new_size = (round(width * scale), round(height * scale))
        logger.debug("Upscaled image from %dx%d to %dx%d (%.2fx)", width, height, *new_size, scale)
        return image.resize(new_size, Image.Resampling.LANCZOS)
    return image


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def preprocess_pil_image(image: Image.Image) -> Image.Image:
    """Run the full preprocessing chain on a decoded image."""
    result = to_grayscale(image)
    result = normalize_histogram(result)
    result = adjust_gamma(result)
    result = sharpen(result)
    result = adjust_brightness(result)
    return normalize_resolution(result)


def preprocess_image(image_bytes: bytes) -> bytes:
    """Normalise an encoded raster image for OCR and re-encode it as PNG.

    Never raises: if the image cannot be decoded or any step fails, the
    original bytes are returned unchanged.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as source:
            # Multi-frame TIFF/GIF: the first frame is the page.
            source.seek(0)
            source.load()
            processed = preprocess_pil_image(source)
        return encode_png(processed)
    except Exception as exc:
        logger.warning("Image preprocessing failed, using original bytes: %s", exc)
        return image_bytes
