"""
Coordinate synthesis for text without reliable word positions.

These strategies produce plausible, not accurate, boxes. They are only
used when a better spatial source produced nothing, or to keep content
that the positioned sources missed.
"""

import logging
import math
from typing import List, Sequence, Optional

from ..config import SynthesisConfig
from .geometry import BoundingBox
from .layout import Word, WordSource
from .ocr_text import OCRLine

logger = logging.getLogger(__name__)


# ============================================================================
# OCR Line Splitting
# ============================================================================

def synthesize_from_ocr_lines(
    lines: Sequence[OCRLine],
    page_width: float,
    page_height: float,
    config: Optional[SynthesisConfig] = None,
    default_line_confidence: float = 80.0
) -> List[Word]:
    """
    Split recognized lines into words proportionally to character count.

    Every word gets its line's confidence.
    """
    config = config or SynthesisConfig()
    words: List[Word] = []

    for line in lines:
        if not line.text or not line.text.strip():
            continue

        tokens = line.text.split()
        line_width = line.bbox.width
        line_height = line.bbox.height
        avg_char_width = line_width / len(line.text)
        spacing = line_width * config.word_spacing_ratio
        confidence = (line.confidence or default_line_confidence) / 100
        font_size = max(config.min_font_size, line_height * 0.8)

        current_x = line.bbox.x0
        for token in tokens:
            word_width = max(len(token) * avg_char_width, line_width * config.min_word_width_ratio)
            words.append(Word(
                text=token,
                bbox=BoundingBox.normalized(
                    current_x / page_width,
                    line.bbox.y0 / page_height,
                    word_width / page_width,
                    line_height / page_height
                ),
                confidence=confidence,
                font_size=font_size,
                source=WordSource.OCR_LINES
            ))
            current_x += word_width + spacing

    return words


def split_ocr_lines_evenly(
    lines: Sequence[OCRLine],
    page_width: float,
    page_height: float,
    default_line_confidence: float = 70.0
) -> List[Word]:
    """Split recognized lines into equal-width words."""
    words: List[Word] = []

    for line in lines:
        if not line.text or not line.text.strip():
            continue

        tokens = line.text.split()
        word_width = line.bbox.width / len(tokens)
        confidence = (line.confidence or default_line_confidence) / 100

        for i, token in enumerate(tokens):
            words.append(Word(
                text=token,
                bbox=BoundingBox.normalized(
                    (line.bbox.x0 + i * word_width) / page_width,
                    line.bbox.y0 / page_height,
                    word_width / page_width,
                    line.bbox.height / page_height
                ),
                confidence=confidence,
                source=WordSource.OCR_LINES
            ))

    return words


# ============================================================================
# Idealized Text Flow
# ============================================================================

def synthesize_text_flow(
    text: str,
    confidence: float,
    config: Optional[SynthesisConfig] = None
) -> List[Word]:
    """
    Lay out plain text as an idealized single-column page.

    Words fill lines between fixed margins and wrap after a nominal number
    of words or at the right margin. When the page runs out of vertical
    space, layout continues at the top in a new column shifted right; a
    shift that would leave no room returns to the left margin.
    """
    config = config or SynthesisConfig()
    tokens = text.split()
    if not tokens:
        return []

    left = config.margin_left
    right_edge = 1 - config.margin_right
    bottom_edge = 1 - config.margin_bottom
    content_width = 1 - config.margin_left - config.margin_right
    avg_char_width = content_width / (config.words_per_line * config.chars_per_word)
    line_height = config.line_height

    column_offset = 0.0
    current_x = left
    current_y = config.margin_top
    words: List[Word] = []

    for i, token in enumerate(tokens):
        word_width = max(len(token) * avg_char_width, content_width * 0.02)

        if current_x + word_width > right_edge or (i > 0 and i % config.words_per_line == 0):
            current_x = left + column_offset
            current_y += line_height * config.line_spacing

        if current_y + line_height > bottom_edge:
            column_offset += content_width * config.column_shift
            if left + column_offset >= right_edge - content_width * 0.02:
                column_offset = 0.0
            current_x = left + column_offset
            current_y = config.margin_top

        words.append(Word(
            text=token,
            bbox=BoundingBox.normalized(current_x, current_y, word_width, line_height),
            confidence=confidence,
            source=WordSource.VISION_FLOW
        ))
        current_x += word_width + config.word_spacing

    return words


def synthesize_text_grid(text: str, confidence: float = 0.6) -> List[Word]:
    """Spread plain text over a coarse grid of at most 12 columns."""
    tokens = text.split()
    if not tokens:
        return []

    grid_cols = min(12, math.ceil(math.sqrt(len(tokens))))
    grid_rows = math.ceil(len(tokens) / grid_cols)

    words = []
    for i, token in enumerate(tokens):
        row, col = divmod(i, grid_cols)
        words.append(Word(
            text=token,
            bbox=BoundingBox.normalized(
                0.05 + col * 0.08,
                0.1 + row * 0.7 / grid_rows,
                0.07,
                0.03
            ),
            confidence=confidence,
            source=WordSource.OCR_GRID
        ))
    return words


# ============================================================================
# Coverage Gap Words
# ============================================================================

def gap_block_box(index: int, config: Optional[SynthesisConfig] = None) -> BoundingBox:
    """Box of the index-th synthesized gap block, stacked from y=0.8 down."""
    config = config or SynthesisConfig()
    return BoundingBox.normalized(
        0.1,
        config.gap_start_y + index * config.gap_step_y,
        0.8,
        config.gap_block_height
    )


def synthesize_gap_words(
    content: str,
    block_box: BoundingBox,
    confidence: float
) -> List[Word]:
    """Place the words of missing content along a gap block."""
    words = []
    for i, token in enumerate(content.split()):
        words.append(Word(
            text=token,
            bbox=BoundingBox.normalized(
                block_box.x + i * 0.05,
                block_box.y,
                min(0.05, len(token) * 0.01),
                block_box.height
            ),
            confidence=confidence,
            source=WordSource.GAP_FILL
        ))
    return words
