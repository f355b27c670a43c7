"""
Reconciliation engine for the PDF grounding pipeline.

Decides, per page, which extraction source to trust and turns the chosen
words into a grouped, labeled page:

1. Ladder - the first stage producing words wins:
   native text layer > OCR words > OCR lines > vision-model text flow
2. Grouping - words into lines, lines into blocks
3. Semantic labeling - block types from the vision model's structure
4. Coverage-gap repair - content the positioned sources missed is kept
   as synthesized blocks at the bottom of the page

A separate OCR-only path serves pages whose vision-model call failed.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Dict, Callable, Sequence, Tuple
import numpy as np

from ..config import PipelineConfig
from .geometry import BoundingBox, calculate_bounding_box
from .layout import (
    Word, Line, Block, BlockType, WordSource, IRPage, PageCoverage,
    group_words_into_lines, group_lines_into_blocks, build_lines,
    build_blocks_by_confidence, generate_semantic_regions
)
from .ocr_text import OCRResult
from .vision import VisionTextResult, DocumentStructure, StructuralElement
from .fallback import (
    synthesize_from_ocr_lines, split_ocr_lines_evenly, synthesize_text_flow,
    synthesize_text_grid, synthesize_gap_words, gap_block_box
)

logger = logging.getLogger(__name__)

# Coverage percentages reported per path
MAX_COVERAGE_PERCENT = 95.0
FALLBACK_COVERAGE_PERCENT = 80.0

DEFAULT_SEMANTIC_CONFIDENCE = 0.8
MIN_MATCHED_CONFIDENCE = 0.7


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class PageSources:
    """Everything the extractors produced for one page."""
    page_number: int
    width: int
    height: int
    native_words: Sequence[Word] = ()
    ocr: Optional[OCRResult] = None
    vision: Optional[VisionTextResult] = None
    structure: Optional[DocumentStructure] = None

    @property
    def complete_text(self) -> str:
        if self.structure is not None and self.structure.complete_text:
            return self.structure.complete_text
        if self.vision is not None:
            return self.vision.text
        return ""


@dataclass
class LadderOutcome:
    """Result of the extraction ladder: which source won, and its words."""
    source: WordSource
    words: List[Word]

    @property
    def is_empty(self) -> bool:
        return not self.words


@dataclass
class LadderStage:
    """One rung of the ladder."""
    name: str
    source: WordSource
    extract: Callable[[PageSources, PipelineConfig], List[Word]]


@dataclass
class SemanticMatch:
    """Block type information taken from the structural breakdown."""
    element_type: str
    confidence: float
    role: Optional[str] = None


# ============================================================================
# Ladder Stages
# ============================================================================

def native_stage(sources: PageSources, config: PipelineConfig) -> List[Word]:
    return list(sources.native_words)


def ocr_words_to_page_words(ocr: Optional[OCRResult], width: int, height: int) -> List[Word]:
    """Normalize OCR word boxes against the raster size."""
    if ocr is None:
        return []
    words = []
    for ocr_word in ocr.words:
        if not ocr_word.text.strip():
            continue
        b = ocr_word.bbox
        words.append(Word(
            text=ocr_word.text,
            bbox=BoundingBox.from_pixels(b.x0, b.y0, b.x1, b.y1, width, height),
            confidence=ocr_word.confidence / 100,
            source=WordSource.OCR
        ))
    return words


def ocr_words_stage(sources: PageSources, config: PipelineConfig) -> List[Word]:
    return ocr_words_to_page_words(sources.ocr, sources.width, sources.height)


def ocr_lines_stage(sources: PageSources, config: PipelineConfig) -> List[Word]:
    if sources.ocr is None or not sources.ocr.lines:
        return []
    return synthesize_from_ocr_lines(
        sources.ocr.lines,
        sources.width,
        sources.height,
        config.synthesis,
        config.ocr.default_line_confidence
    )


def vision_flow_stage(sources: PageSources, config: PipelineConfig) -> List[Word]:
    if sources.vision is None or not sources.vision.text:
        return []
    return synthesize_text_flow(sources.vision.text, sources.vision.confidence, config.synthesis)


DEFAULT_LADDER: List[LadderStage] = [
    LadderStage("pdf_native", WordSource.PDF_NATIVE, native_stage),
    LadderStage("ocr_words", WordSource.OCR, ocr_words_stage),
    LadderStage("ocr_lines", WordSource.OCR_LINES, ocr_lines_stage),
    LadderStage("vision_flow", WordSource.VISION_FLOW, vision_flow_stage),
]


def run_ladder(
    sources: PageSources,
    config: Optional[PipelineConfig] = None,
    stages: Optional[Sequence[LadderStage]] = None
) -> LadderOutcome:
    """Return the words of the first stage that produces any."""
    config = config or PipelineConfig()
    for stage in stages or DEFAULT_LADDER:
        words = stage.extract(sources, config)
        if words:
            logger.info(f"Page {sources.page_number}: using {stage.name} ({len(words)} words)")
            return LadderOutcome(stage.source, words)
        logger.debug(f"Page {sources.page_number}: {stage.name} produced no words")

    logger.warning(f"Page {sources.page_number}: no extraction method produced words")
    return LadderOutcome(WordSource.EMPTY, [])


# ============================================================================
# Semantic Labeling
# ============================================================================

def map_element_type(element_type: str) -> BlockType:
    """Map a structural element type onto a block type."""
    key = (element_type or "").lower()
    if key in ("title", "header"):
        return BlockType.HEADING
    if key == "table":
        return BlockType.TABLE
    if key == "list":
        return BlockType.LIST
    if key == "footer":
        return BlockType.FOOTER
    if key == "image":
        return BlockType.IMAGE
    return BlockType.PARAGRAPH


def build_semantic_map(elements: Sequence[StructuralElement]) -> Dict[str, SemanticMatch]:
    """
    Index elements by normalized content.

    A repeated content key keeps its first position but takes the later
    element's type and confidence.
    """
    semantic_map: Dict[str, SemanticMatch] = {}
    for element in elements:
        normalized = element.content.lower().strip()
        if not normalized:
            continue
        semantic_map[normalized] = SemanticMatch(
            element_type=element.element_type,
            confidence=element.confidence,
            role=element.element_type
        )
    return semantic_map


def match_semantics(block_text: str, semantic_map: Dict[str, SemanticMatch]) -> SemanticMatch:
    """
    Find the first element whose content contains, or is contained in, the block text.

    Matching stops at the first hit in insertion order, not the best one.
    """
    normalized = block_text.lower().strip()
    if normalized:
        for element_text, info in semantic_map.items():
            if element_text in normalized or normalized in element_text:
                return SemanticMatch(
                    element_type=info.element_type,
                    confidence=max(info.confidence, MIN_MATCHED_CONFIDENCE),
                    role=info.role
                )
    return SemanticMatch("paragraph", DEFAULT_SEMANTIC_CONFIDENCE)


def label_blocks(
    line_groups: Sequence[Sequence[Line]],
    structure: Optional[DocumentStructure] = None
) -> List[Block]:
    """Create blocks typed by the structural breakdown."""
    semantic_map = build_semantic_map(structure.elements) if structure else {}

    blocks = []
    for i, group in enumerate(g for g in line_groups if g):
        block_text = "\n".join(line.text for line in group)
        match = match_semantics(block_text, semantic_map)
        blocks.append(Block(
            id=f"block-{i}",
            lines=list(group),
            bbox=calculate_bounding_box(line.bbox for line in group),
            block_type=map_element_type(match.element_type),
            confidence=match.confidence,
            semantic_role=match.role,
            reading_order=i
        ))
    return blocks


# ============================================================================
# Coverage Gap Repair
# ============================================================================

def needs_gap_repair(complete_text: str, extracted_text: str, ratio: float = 1.2) -> bool:
    """True when the structural text is longer than the recognized text by more than the margin."""
    return len(complete_text) > len(extracted_text) * ratio


def repair_coverage_gaps(
    words: Sequence[Word],
    lines: Sequence[Line],
    blocks: Sequence[Block],
    sources: PageSources,
    config: Optional[PipelineConfig] = None
) -> Tuple[List[Word], List[Line], List[Block]]:
    """
    Synthesize blocks for structural elements missing from the recognized text.

    Returns the added (words, lines, blocks); positions are stacked at the
    bottom of the page and are known to be wrong.
    """
    config = config or PipelineConfig()
    if sources.structure is None:
        return [], [], []

    extracted_text = " ".join(w.text for w in words)
    if not needs_gap_repair(sources.complete_text, extracted_text, config.synthesis.gap_ratio):
        return [], [], []

    extracted_lower = extracted_text.lower()
    missing = [
        element for element in sources.structure.elements
        if element.content.lower().strip()
        and element.content.lower().strip() not in extracted_lower
    ]
    if not missing:
        return [], [], []

    logger.info(f"Page {sources.page_number}: adding {len(missing)} elements missed by positioned sources")

    new_words: List[Word] = []
    new_lines: List[Line] = []
    new_blocks: List[Block] = []

    for i, element in enumerate(missing):
        box = gap_block_box(i, config.synthesis)
        element_words = synthesize_gap_words(element.content, box, element.confidence)
        if not element_words:
            continue
        new_words.extend(element_words)

        line = Line(
            id=f"fallback-line-{i}",
            words=element_words,
            bbox=box,
            reading_order=len(lines) + i
        )
        new_lines.append(line)

        new_blocks.append(Block(
            id=f"fallback-block-{i}",
            lines=[line],
            bbox=box,
            block_type=map_element_type(element.element_type),
            confidence=element.confidence,
            semantic_role=element.element_type,
            reading_order=len(blocks) + i
        ))

    return new_words, new_lines, new_blocks


# ============================================================================
# Reconciler
# ============================================================================

class Reconciler:
    """Builds the intermediate representation of a page from its sources."""

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        stages: Optional[Sequence[LadderStage]] = None
    ):
        self.config = config or PipelineConfig()
        self.stages = list(stages or DEFAULT_LADDER)

    def _group(self, words: Sequence[Word]) -> Tuple[List[Line], List[List[Line]]]:
        grouping = self.config.grouping
        word_groups = group_words_into_lines(
            words,
            same_row_tolerance=grouping.same_row_tolerance,
            line_tolerance=grouping.line_center_tolerance
        )
        lines = build_lines(word_groups)
        return lines, group_lines_into_blocks(lines, grouping.block_gap_threshold)

    def reconcile_page(self, sources: PageSources) -> IRPage:
        """Run the ladder, group, label and repair coverage gaps."""
        outcome = run_ladder(sources, self.config, self.stages)
        words = list(outcome.words)

        lines, line_groups = self._group(words)
        blocks = label_blocks(line_groups, sources.structure)

        gap_words, gap_lines, gap_blocks = repair_coverage_gaps(
            words, lines, blocks, sources, self.config
        )
        words.extend(gap_words)
        lines.extend(gap_lines)
        blocks.extend(gap_blocks)

        if sources.vision is not None:
            confidence = sources.vision.confidence
        else:
            confidence = float(np.mean([w.confidence for w in words])) if words else 0.0

        coverage = PageCoverage(
            pdf_native_words=len(sources.native_words),
            ocr_words=len(sources.ocr.words) if sources.ocr else 0,
            reconciled_words=len(words),
            coverage_percent=min(MAX_COVERAGE_PERCENT, confidence * 100),
            missed_words=[" ".join(w.text for w in line.words) for line in gap_lines]
        )

        return IRPage(
            page_number=sources.page_number,
            width=sources.width,
            height=sources.height,
            words=words,
            lines=lines,
            blocks=blocks,
            coverage=coverage,
            source=outcome.source,
            vision_used=sources.vision is not None
        )

    def build_ocr_only_page(
        self,
        page_number: int,
        width: int,
        height: int,
        ocr: OCRResult,
        coverage_percent: float = FALLBACK_COVERAGE_PERCENT
    ) -> IRPage:
        """
        Build a page from a single OCR pass, without vision-model input.

        Blocks are plain paragraphs scored by the mean of per-line mean
        word confidence. If OCR found no words, lines are split evenly,
        then plain text is spread on a grid.
        """
        words = ocr_words_to_page_words(ocr, width, height)
        source = WordSource.OCR

        if not words and ocr.lines:
            logger.info(f"Page {page_number}: OCR found no words, splitting OCR lines")
            words = split_ocr_lines_evenly(
                ocr.lines, width, height, self.config.ocr.emergency_line_confidence
            )
            source = WordSource.OCR_LINES

        if not words and ocr.text.strip():
            logger.info(f"Page {page_number}: placing OCR text on a synthetic grid")
            words = synthesize_text_grid(ocr.text)
            source = WordSource.OCR_GRID

        if not words:
            logger.warning(f"Page {page_number}: OCR-only path produced no words")
            source = WordSource.EMPTY

        lines, line_groups = self._group(words)
        blocks = build_blocks_by_confidence(line_groups)

        return IRPage(
            page_number=page_number,
            width=width,
            height=height,
            words=words,
            lines=lines,
            blocks=blocks,
            coverage=PageCoverage(
                pdf_native_words=0,
                ocr_words=len(ocr.words),
                reconciled_words=len(words),
                coverage_percent=coverage_percent
            ),
            semantic_regions=generate_semantic_regions(blocks),
            source=source
        )
