"""Face region value types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class CoordinateSpace(str, Enum):
    """Unit in which a detector reports a face rectangle."""

    ABSOLUTE_PIXELS = "absolute_pixels"
    RELATIVE_FRACTION = "relative_fraction"


@dataclass(frozen=True, slots=True)
class AbsolutePixels:
    """Face rectangle measured in source image pixels."""

    left: float
    top: float
    width: float
    height: float

    @property
    def coordinate_space(self) -> CoordinateSpace:
        return CoordinateSpace.ABSOLUTE_PIXELS


@dataclass(frozen=True, slots=True)
class RelativeFraction:
    """Face rectangle expressed as fractions (0-1) of the image size."""

    left: float
    top: float
    width: float
    height: float

    @property
    def coordinate_space(self) -> CoordinateSpace:
        return CoordinateSpace.RELATIVE_FRACTION


FaceRegion = Union[AbsolutePixels, RelativeFraction]


@dataclass(frozen=True, slots=True)
class Rectangle:
    """Integer pixel rectangle anchored at its top-left corner."""

    left: int
    top: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.left + self.width

    @property
    def bottom(self) -> int:
        return self.top + self.height

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def as_box(self) -> tuple[int, int, int, int]:
        """Return the rectangle as a Pillow ``(left, upper, right, lower)`` box."""

        return (self.left, self.top, self.right, self.bottom)
