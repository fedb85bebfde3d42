"""Face geometry and redaction primitives."""

from .anonymize import FaceRedactor, redact_region
from .geometry import clamp, normalize, round_half_up
from .regions import AbsolutePixels, CoordinateSpace, FaceRegion, Rectangle, RelativeFraction

__all__ = [
    "AbsolutePixels",
    "CoordinateSpace",
    "FaceRedactor",
    "FaceRegion",
    "Rectangle",
    "RelativeFraction",
    "clamp",
    "normalize",
    "redact_region",
    "round_half_up",
]
