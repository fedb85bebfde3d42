"""Decoding of source images and JPEG encoding of results."""

from __future__ import annotations

from io import BytesIO

from PIL import Image, UnidentifiedImageError

from faceblur.errors import ImageDecodeError, ImageEncodeError

JPEG_CONTENT_TYPE = "image/jpeg"
DEFAULT_JPEG_QUALITY = 90

# Modes the blur filter and the JPEG encoder both accept as-is.
_WORKING_MODES = {"RGB", "L"}
_JPEG_MODES = {"RGB", "L", "CMYK"}


def decode_image(data: bytes) -> Image.Image:
    """Decode raw bytes into a fully loaded Pillow image."""

    if not data:
        raise ImageDecodeError("Source image is empty.")

    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            image = img.copy()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise ImageDecodeError(f"Unable to decode source image: {exc}") from exc

    if image.width <= 0 or image.height <= 0:
        raise ImageDecodeError(f"Source image has invalid dimensions {image.width}x{image.height}.")
    if image.mode not in _WORKING_MODES:
        image = image.convert("RGB")
    return image


def encode_jpeg(image: Image.Image, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    """Serialise the image as JPEG at the given quality."""

    if image.mode not in _JPEG_MODES:
        image = image.convert("RGB")

    buffer = BytesIO()
    try:
        image.save(buffer, format="JPEG", quality=quality)
    except (OSError, ValueError) as exc:
        raise ImageEncodeError(f"Unable to encode redacted image: {exc}") from exc
    return buffer.getvalue()
