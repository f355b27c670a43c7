"""
Layout module for the PDF grounding pipeline.

Provides:
- Page intermediate representation (Word, Line, Block, IRPage)
- Line grouping from positioned words
- Block grouping from ordered lines
- Heuristic semantic regions (header, footer, main content)

Grouping is a greedy single pass over fixed, page-relative thresholds.
Skewed or rotated text will be mis-grouped; that is an accepted limit.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, Sequence
from enum import Enum
import numpy as np

from .geometry import BoundingBox, calculate_bounding_box

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes and Enums
# ============================================================================

class BlockType(Enum):
    """Types of geometric blocks."""
    PARAGRAPH = "paragraph"
    HEADING = "heading"
    LIST = "list"
    TABLE = "table"
    FOOTER = "footer"
    IMAGE = "image"


class WordSource(Enum):
    """Extractor or synthesis strategy that produced a word."""
    PDF_NATIVE = "pdf_native"
    OCR = "ocr"
    OCR_LINES = "ocr_lines"
    VISION_FLOW = "vision_flow"
    GAP_FILL = "gap_fill"
    OCR_GRID = "ocr_grid"
    EMPTY = "empty"


@dataclass(frozen=True)
class Word:
    """A single positioned token."""
    text: str
    bbox: BoundingBox
    confidence: float
    font_family: str = "Arial"
    font_size: float = 12.0
    source: WordSource = WordSource.OCR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "bbox": self.bbox.to_dict(),
            "confidence": self.confidence,
            "fontFamily": self.font_family,
            "fontSize": self.font_size,
            "source": self.source.value
        }


@dataclass
class Line:
    """Words sharing a vertical position."""
    id: str
    words: List[Word]
    bbox: BoundingBox
    reading_order: int = 0
    alignment: str = "left"

    @property
    def text(self) -> str:
        return " ".join(w.text for w in self.words)

    @property
    def mean_confidence(self) -> float:
        if not self.words:
            return 0.0
        return float(np.mean([w.confidence for w in self.words]))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "words": [w.to_dict() for w in self.words],
            "bbox": self.bbox.to_dict(),
            "readingOrder": self.reading_order,
            "alignment": self.alignment
        }


@dataclass
class Block:
    """Lines forming a paragraph, heading, table, etc."""
    id: str
    lines: List[Line]
    bbox: BoundingBox
    block_type: BlockType = BlockType.PARAGRAPH
    confidence: float = 0.8
    semantic_role: Optional[str] = None
    reading_order: int = 0

    @property
    def text(self) -> str:
        return "\n".join(line.text for line in self.lines)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "type": self.block_type.value,
            "bbox": self.bbox.to_dict(),
            "lines": [line.to_dict() for line in self.lines],
            "confidence": self.confidence,
            "readingOrder": self.reading_order
        }
        if self.semantic_role is not None:
            result["semanticRole"] = self.semantic_role
        return result


@dataclass
class SemanticRegion:
    """A page region inferred from block positions."""
    id: str
    region_type: str  # header, footer, main_content
    bbox: BoundingBox
    confidence: float
    block_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.region_type,
            "bbox": self.bbox.to_dict(),
            "confidence": self.confidence,
            "blockIds": self.block_ids
        }


@dataclass
class PageCoverage:
    """Diagnostic counts of how much text each source contributed."""
    pdf_native_words: int = 0
    ocr_words: int = 0
    reconciled_words: int = 0
    coverage_percent: float = 0.0
    missed_words: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pdfNativeWords": self.pdf_native_words,
            "ocrWords": self.ocr_words,
            "reconciledWords": self.reconciled_words,
            "coveragePercent": self.coverage_percent,
            "missedWords": self.missed_words
        }


@dataclass
class IRPage:
    """Intermediate representation of one page."""
    page_number: int
    width: int
    height: int
    words: List[Word] = field(default_factory=list)
    lines: List[Line] = field(default_factory=list)
    blocks: List[Block] = field(default_factory=list)
    coverage: PageCoverage = field(default_factory=PageCoverage)
    semantic_regions: Optional[List[SemanticRegion]] = None
    source: WordSource = WordSource.EMPTY
    # Whether vision-model output shaped this page (labels, repair, text flow)
    vision_used: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "pageNumber": self.page_number,
            "width": self.width,
            "height": self.height,
            "words": [w.to_dict() for w in self.words],
            "lines": [line.to_dict() for line in self.lines],
            "blocks": [b.to_dict() for b in self.blocks],
            "coverage": self.coverage.to_dict(),
            "source": self.source.value
        }
        if self.semantic_regions is not None:
            result["semanticRegions"] = [r.to_dict() for r in self.semantic_regions]
        return result


# ============================================================================
# Line Grouping
# ============================================================================

def _word_sort_key(word: Word):
    b = word.bbox
    return (b.y, b.x, word.text, b.width, b.height, word.confidence)


def sort_words_reading_order(
    words: Sequence[Word],
    same_row_tolerance: float = 0.01
) -> List[Word]:
    """
    Sort words top-to-bottom, then left-to-right within a row.

    Words whose top edge lies within `same_row_tolerance` of the first
    word of a row are ordered by x. The result depends only on the set of
    words, not on the input order.
    """
    ordered = sorted(words, key=_word_sort_key)

    result: List[Word] = []
    row: List[Word] = []
    for word in ordered:
        if row and abs(word.bbox.y - row[0].bbox.y) >= same_row_tolerance:
            result.extend(sorted(row, key=lambda w: (w.bbox.x, _word_sort_key(w))))
            row = []
        row.append(word)
    if row:
        result.extend(sorted(row, key=lambda w: (w.bbox.x, _word_sort_key(w))))

    return result


def group_words_into_lines(
    words: Sequence[Word],
    same_row_tolerance: float = 0.01,
    line_tolerance: float = 0.02
) -> List[List[Word]]:
    """
    Group words into lines by vertical proximity.

    A word joins the current line when its vertical center is within
    `line_tolerance` of the center of the line's last word; otherwise it
    starts a new line.
    """
    if not words:
        return []

    sorted_words = sort_words_reading_order(words, same_row_tolerance)

    lines: List[List[Word]] = []
    current_line = [sorted_words[0]]

    for word in sorted_words[1:]:
        last = current_line[-1]
        if abs(word.bbox.center_y - last.bbox.center_y) < line_tolerance:
            current_line.append(word)
        else:
            lines.append(current_line)
            current_line = [word]

    lines.append(current_line)
    return lines


def build_lines(
    word_groups: Sequence[Sequence[Word]],
    id_prefix: str = "line",
    start_order: int = 0
) -> List[Line]:
    """Create Line objects with derived boxes and reading order."""
    lines = []
    for i, group in enumerate(g for g in word_groups if g):
        lines.append(Line(
            id=f"{id_prefix}-{i}",
            words=list(group),
            bbox=calculate_bounding_box(w.bbox for w in group),
            reading_order=start_order + i
        ))
    return lines


# ============================================================================
# Block Grouping
# ============================================================================

def group_lines_into_blocks(
    lines: Sequence[Line],
    gap_threshold: float = 0.03
) -> List[List[Line]]:
    """
    Group ordered lines into blocks.

    A new block starts when the gap between the previous line's bottom
    edge and the next line's top edge exceeds `gap_threshold`.
    """
    if not lines:
        return []

    blocks: List[List[Line]] = []
    current_block = [lines[0]]

    for line in lines[1:]:
        last = current_block[-1]
        vertical_gap = line.bbox.y - last.bbox.bottom
        if vertical_gap > gap_threshold:
            blocks.append(current_block)
            current_block = [line]
        else:
            current_block.append(line)

    blocks.append(current_block)
    return blocks


def mean_line_confidence(lines: Sequence[Line]) -> float:
    """Mean over lines of each line's mean word confidence."""
    scored = [line.mean_confidence for line in lines if line.words]
    if not scored:
        return 0.0
    return float(np.mean(scored))


def build_blocks_by_confidence(
    line_groups: Sequence[Sequence[Line]]
) -> List[Block]:
    """Create paragraph blocks scored by mean line confidence."""
    blocks = []
    for i, group in enumerate(g for g in line_groups if g):
        blocks.append(Block(
            id=f"block-{i}",
            lines=list(group),
            bbox=calculate_bounding_box(line.bbox for line in group),
            block_type=BlockType.PARAGRAPH,
            confidence=mean_line_confidence(group),
            reading_order=i
        ))
    return blocks


# ============================================================================
# Semantic Regions
# ============================================================================

def generate_semantic_regions(
    blocks: Sequence[Block],
    header_limit: float = 0.2,
    footer_limit: float = 0.8
) -> List[SemanticRegion]:
    """
    Guess header, footer and main-content regions from block positions.

    The topmost block becomes a header if it starts in the top 20% of the
    page, the bottommost a footer if it ends in the bottom 20%, and blocks
    fully between the two limits form the main content.
    """
    regions: List[SemanticRegion] = []
    if not blocks:
        return regions

    sorted_blocks = sorted(blocks, key=lambda b: (b.bbox.y, b.reading_order))

    top_block = sorted_blocks[0]
    if top_block.bbox.y < header_limit:
        regions.append(SemanticRegion(
            id="semantic-header-0",
            region_type="header",
            bbox=top_block.bbox,
            confidence=0.7,
            block_ids=[top_block.id]
        ))

    bottom_block = sorted_blocks[-1]
    if bottom_block.bbox.bottom > footer_limit:
        regions.append(SemanticRegion(
            id="semantic-footer-0",
            region_type="footer",
            bbox=bottom_block.bbox,
            confidence=0.7,
            block_ids=[bottom_block.id]
        ))

    main_blocks = [
        b for b in sorted_blocks
        if b.bbox.y > header_limit and b.bbox.bottom < footer_limit
    ]
    if main_blocks:
        regions.append(SemanticRegion(
            id="semantic-main-0",
            region_type="main_content",
            bbox=calculate_bounding_box(b.bbox for b in main_blocks),
            confidence=0.8,
            block_ids=[b.id for b in main_blocks]
        ))

    return regions
