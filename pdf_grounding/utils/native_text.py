"""
Native PDF text-layer reader.

Embedded text is read from the PDF itself rather than recognized, so its
words carry a fixed, near-certain confidence. Scanned pages simply have
no text layer; that yields an empty word list, not an error.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .geometry import BoundingBox
from .layout import Word, WordSource

logger = logging.getLogger(__name__)

NATIVE_CONFIDENCE = 0.98
DEFAULT_FONT_FAMILY = "Arial"
# Average glyph advance as a fraction of font size, for items without a width
ESTIMATED_CHAR_WIDTH = 0.6


@dataclass
class NativeTextItem:
    """
    A run of embedded text.

    `transform` is the 2D affine matrix (a, b, c, d, e, f) in PDF user
    space: (e, f) is the baseline origin measured from the bottom-left
    corner, and |a| is the horizontal scale, i.e. the font size.
    """
    string: str
    transform: Tuple[float, float, float, float, float, float]
    width: float = 0.0
    height: float = 0.0
    font_name: Optional[str] = None


@dataclass
class NativeTextLayer:
    """Text items of one page plus the page size in the same units."""
    page_width: float
    page_height: float
    items: List[NativeTextItem] = field(default_factory=list)


def read_native_words(layer: Optional[NativeTextLayer]) -> List[Word]:
    """
    Convert text-layer items into normalized words.

    Args:
        layer: Text layer of the page, or None if the page has none

    Returns:
        One Word per non-blank item (empty list when there is no layer)
    """
    if layer is None or not layer.items:
        return []
    if layer.page_width <= 0 or layer.page_height <= 0:
        logger.warning(f"Ignoring text layer with invalid page size "
                       f"{layer.page_width}x{layer.page_height}")
        return []

    pw, ph = layer.page_width, layer.page_height
    words = []

    for item in layer.items:
        if not item.string or not item.string.strip():
            continue

        x, y = item.transform[4], item.transform[5]
        font_size = abs(item.transform[0])
        text_width = item.width or len(item.string) * font_size * ESTIMATED_CHAR_WIDTH
        text_height = item.height or font_size

        bbox = BoundingBox.normalized(
            x / pw,
            (ph - y - text_height) / ph,  # flip to top-left origin
            text_width / pw,
            text_height / ph
        )

        words.append(Word(
            text=item.string,
            bbox=bbox,
            confidence=NATIVE_CONFIDENCE,
            font_family=item.font_name or DEFAULT_FONT_FAMILY,
            font_size=font_size,
            source=WordSource.PDF_NATIVE
        ))

    logger.debug(f"Read {len(words)} native words from {len(layer.items)} items")
    return words


def load_text_layer(
    pdf_path: Union[str, Path],
    page_number: int
) -> Optional[NativeTextLayer]:
    """
    Load the embedded text of one page with PyMuPDF.

    Each text span becomes one item. Returns None when the file cannot be
    opened or the page carries no text.

    Args:
        pdf_path: Path to the PDF file
        page_number: Page number (1-indexed)
    """
    try:
        import fitz  # PyMuPDF
    except ImportError:
        logger.warning("PyMuPDF not available, skipping native text layer")
        return None

    try:
        with fitz.open(str(pdf_path)) as doc:
            page = doc[page_number - 1]
            page_width = float(page.rect.width)
            page_height = float(page.rect.height)
            data = page.get_text("dict")
    except (RuntimeError, ValueError, IndexError, OSError) as e:
        logger.warning(f"Could not read text layer of page {page_number}: {e}")
        return None

    items = []
    for block in data.get("blocks", []):
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                text = span.get("text", "")
                if not text.strip():
                    continue
                x0, y0, x1, y1 = span["bbox"]
                size = float(span.get("size", y1 - y0))
                items.append(NativeTextItem(
                    string=text,
                    # Baseline-origin matrix with the y axis measured from the bottom
                    transform=(size, 0.0, 0.0, size, x0, page_height - y1),
                    width=x1 - x0,
                    height=y1 - y0,
                    font_name=span.get("font")
                ))

    if not items:
        return None

    return NativeTextLayer(page_width=page_width, page_height=page_height, items=items)
