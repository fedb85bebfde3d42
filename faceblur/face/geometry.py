"""Coordinate normalisation and bounds clamping for face rectangles.

Detectors report faces either in absolute pixels or as fractions of the image
size. ``normalize`` turns both into an integer :class:`Rectangle` without
looking at the image bounds, and ``clamp`` then forces that rectangle inside
the image so the redactor can crop it safely.
"""

from __future__ import annotations

import math

from faceblur.face.regions import AbsolutePixels, FaceRegion, Rectangle, RelativeFraction


def round_half_up(value: float) -> int:
    """
    Round to the nearest integer, resolving ``.5`` towards positive infinity.

    ``2.5 -> 3``, ``-2.5 -> -2``. Raises ``ValueError`` for NaN or infinity.
    """

    if not math.isfinite(value):
        raise ValueError(f"Face coordinate is not a finite number: {value!r}")
    return math.floor(value + 0.5)


def normalize(face: FaceRegion, image_width: int, image_height: int) -> Rectangle:
    """Convert a detected face into an absolute pixel rectangle (not clamped)."""

    if isinstance(face, AbsolutePixels):
        left, top, width, height = face.left, face.top, face.width, face.height
    elif isinstance(face, RelativeFraction):
        left = face.left * image_width
        top = face.top * image_height
        width = face.width * image_width
        height = face.height * image_height
    else:
        raise TypeError(f"Unsupported face region type: {type(face).__name__}")

    return Rectangle(
        left=round_half_up(left),
        top=round_half_up(top),
        width=round_half_up(width),
        height=round_half_up(height),
    )


def clamp(rect: Rectangle, image_width: int, image_height: int) -> Rectangle:
    """
    Return ``rect`` limited to the image area.

    The origin is clamped first and the extents are derived from the clamped
    origin. A rectangle that starts at or past the far edge, or ends at or
    before the near edge, yields a zero extent on that axis.
    Never raises.
    """

    left = max(0, min(rect.left, image_width - 1))
    top = max(0, min(rect.top, image_height - 1))

    outside_x = rect.left >= image_width or rect.right <= 0
    outside_y = rect.top >= image_height or rect.bottom <= 0
    width = 0 if outside_x else min(rect.width, image_width - left)
    height = 0 if outside_y else min(rect.height, image_height - top)

    return Rectangle(left=left, top=top, width=max(0, width), height=max(0, height))
