"""
Geometry utilities for page-relative bounding boxes.

All boxes in the pipeline are normalized to [0, 1] relative to the page
raster, with the origin at the top-left corner.
"""

from dataclasses import dataclass
from typing import Iterable, Tuple, Dict

# Smallest width/height a normalized box may have after clamping
MIN_EXTENT = 0.001


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in normalized page coordinates."""
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    @property
    def area(self) -> float:
        return self.width * self.height

    @classmethod
    def normalized(cls, x: float, y: float, width: float, height: float) -> 'BoundingBox':
        """
        Build a box clamped inside the page.

        x and y are clamped to [0, 1 - MIN_EXTENT]; width and height are
        clamped so the box keeps a positive size and never crosses the
        right or bottom page edge.
        """
        x = _clamp(x, 0.0, 1.0 - MIN_EXTENT)
        y = _clamp(y, 0.0, 1.0 - MIN_EXTENT)
        width = _clamp(width, MIN_EXTENT, 1.0 - x)
        height = _clamp(height, MIN_EXTENT, 1.0 - y)
        return cls(x, y, width, height)

    @classmethod
    def from_pixels(
        cls,
        x0: float,
        y0: float,
        x1: float,
        y1: float,
        page_width: float,
        page_height: float
    ) -> 'BoundingBox':
        """Normalize a pixel-space (x0, y0, x1, y1) box against the raster size."""
        return cls.normalized(
            x0 / page_width,
            y0 / page_height,
            (x1 - x0) / page_width,
            (y1 - y0) / page_height
        )

    def to_tuple(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.width, self.height)

    def to_dict(self) -> Dict[str, float]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height
        }


ZERO_BOX = BoundingBox(0.0, 0.0, 0.0, 0.0)


def calculate_bounding_box(boxes: Iterable[BoundingBox]) -> BoundingBox:
    """
    Return the smallest box covering all inputs.

    An empty input yields the zero box.
    """
    boxes = list(boxes)
    if not boxes:
        return ZERO_BOX

    min_x = min(b.x for b in boxes)
    min_y = min(b.y for b in boxes)
    max_x = max(b.right for b in boxes)
    max_y = max(b.bottom for b in boxes)

    return BoundingBox(
        x=min_x,
        y=min_y,
        width=max_x - min_x,
        height=max_y - min_y
    )
