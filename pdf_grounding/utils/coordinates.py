"""
Coordinate transforms between the spaces used by different consumers.

- raster pixels: OCR engine boxes, viewer overlays
- percentage (0-100): legacy text chunks rendered by the viewer
- normalized (0-1): intermediate representation and grounding boxes
"""

from dataclasses import dataclass
from typing import Dict, Any, Tuple

from .geometry import BoundingBox


@dataclass(frozen=True)
class PercentGeometry:
    """Legacy chunk geometry in percent of page size."""
    x: float
    y: float
    w: float
    h: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}


@dataclass(frozen=True)
class GroundingBox:
    """Normalized left/top/right/bottom box."""
    l: float
    t: float
    r: float
    b: float

    def to_dict(self) -> Dict[str, float]:
        return {"l": self.l, "t": self.t, "r": self.r, "b": self.b}


@dataclass(frozen=True)
class Grounding:
    """Anchors a chunk's text to a region of a page."""
    box: GroundingBox
    page: int

    def to_dict(self) -> Dict[str, Any]:
        return {"box": self.box.to_dict(), "page": self.page}


def _clamp_percent(value: float) -> float:
    return max(0.0, min(value, 100.0))


def normalized_to_percent(bbox: BoundingBox) -> PercentGeometry:
    """Convert a normalized box to legacy percentage geometry."""
    return PercentGeometry(
        x=_clamp_percent(bbox.x * 100),
        y=_clamp_percent(bbox.y * 100),
        w=_clamp_percent(bbox.width * 100),
        h=_clamp_percent(bbox.height * 100)
    )


def percent_to_normalized(geometry: PercentGeometry) -> BoundingBox:
    """Convert legacy percentage geometry back to a normalized box."""
    return BoundingBox(
        x=geometry.x / 100,
        y=geometry.y / 100,
        width=geometry.w / 100,
        height=geometry.h / 100
    )


def percent_to_grounding(geometry: PercentGeometry, page_number: int) -> Grounding:
    """Transform legacy percentage geometry into a normalized grounding."""
    left = geometry.x / 100
    top = geometry.y / 100
    return Grounding(
        box=GroundingBox(
            l=left,
            t=top,
            r=left + geometry.w / 100,
            b=top + geometry.h / 100
        ),
        page=page_number
    )


def grounding_to_percent(grounding: Grounding) -> PercentGeometry:
    """Inverse of percent_to_grounding."""
    box = grounding.box
    return PercentGeometry(
        x=box.l * 100,
        y=box.t * 100,
        w=(box.r - box.l) * 100,
        h=(box.b - box.t) * 100
    )


def grounding_to_pixels(
    grounding: Grounding,
    image_width: float,
    image_height: float
) -> Tuple[float, float, float, float]:
    """
    Map a grounding box onto an image of the given size.

    Returns (x, y, width, height) in pixels, clamped to the image with a
    minimum size of one pixel.
    """
    box = grounding.box
    x = max(0.0, min(box.l * image_width, image_width))
    y = max(0.0, min(box.t * image_height, image_height))
    width = max(1.0, min((box.r - box.l) * image_width, image_width - x))
    height = max(1.0, min((box.b - box.t) * image_height, image_height - y))
    return (x, y, width, height)


def percent_to_pixels(
    geometry: PercentGeometry,
    image_width: float,
    image_height: float
) -> Tuple[float, float, float, float]:
    """Map legacy percentage geometry onto an image of the given size."""
    x = max(0.0, min(geometry.x / 100 * image_width, image_width))
    y = max(0.0, min(geometry.y / 100 * image_height, image_height))
    width = max(1.0, min(geometry.w / 100 * image_width, image_width - x))
    height = max(1.0, min(geometry.h / 100 * image_height, image_height - y))
    return (x, y, width, height)
