"""Irreversible blurring of face regions."""

from __future__ import annotations

from PIL import Image, ImageFilter

from faceblur.errors import InvariantViolation
from faceblur.face.regions import Rectangle

DEFAULT_BLUR_RADIUS = 20.0


def redact_region(image: Image.Image, rect: Rectangle, blur_radius: float) -> Image.Image:
    """
    Blur ``rect`` inside ``image`` and return the image for the next step.

    The blurred crop fully replaces the original pixels of the rectangle; there
    is no feathering at the edges. A zero-area rectangle leaves the image
    untouched.
    """

    if rect.is_empty:
        return image

    if rect.left < 0 or rect.top < 0 or rect.right > image.width or rect.bottom > image.height:
        raise InvariantViolation(
            f"Region {rect.as_box()} lies outside the {image.width}x{image.height} image.",
        )

    box = rect.as_box()
    region = image.crop(box)
    blurred = region.filter(ImageFilter.GaussianBlur(radius=blur_radius))
    image.paste(blurred, box)
    return image


class FaceRedactor:
    """Applies a fixed-strength Gaussian blur to face rectangles."""

    def __init__(self, blur_radius: float = DEFAULT_BLUR_RADIUS) -> None:
        if blur_radius <= 0:
            raise ValueError("Blur radius must be positive.")
        self._blur_radius = blur_radius

    @property
    def blur_radius(self) -> float:
        return self._blur_radius

    def redact(self, image: Image.Image, rect: Rectangle) -> Image.Image:
        """Return ``image`` with ``rect`` blurred."""

        return redact_region(image, rect, self._blur_radius)
