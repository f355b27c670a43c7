"""
Document assembler module for the PDF grounding pipeline.

Provides:
- Output data model (legacy page data, text chunks, extraction result)
- Session accumulator for per-page results
- Progress reporting
- Pipeline orchestration and final assembly
- Metrics calculation
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Dict, Any, Union, Callable, Sequence, Tuple

from ..config import PipelineConfig, SynthesisConfig, JSON_SCHEMA_VERSION
from .coordinates import PercentGeometry, Grounding, normalized_to_percent, percent_to_grounding
from .layout import IRPage, WordSource
from .io import RenderedPage, PageSource, PdfPageSource, PageLoadError, encode_data_url
from .native_text import read_native_words
from .reconcile import PageSources, MAX_COVERAGE_PERCENT, FALLBACK_COVERAGE_PERCENT
from .vision import VisionModelError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]
ErrorCallback = Callable[[str], None]

DOCUMENT_LOAD_ERROR = "Failed to load PDF document. Please ensure the file is a valid PDF."

QUALITY_SCORE = 90.0

# Word sources grouped for method coverage
SOURCE_FAMILIES = {
    WordSource.PDF_NATIVE: "native",
    WordSource.OCR: "ocr",
    WordSource.OCR_LINES: "synthesized",
    WordSource.VISION_FLOW: "synthesized",
    WordSource.GAP_FILL: "synthesized",
    WordSource.OCR_GRID: "synthesized",
}


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class LegacyTextChunk:
    """A word positioned in percent of the page, for viewer highlighting."""
    id: str
    text: str
    page_number: int
    geometry: PercentGeometry

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "pageNumber": self.page_number,
            "geometry": self.geometry.to_dict()
        }


@dataclass
class LegacyPageData:
    """Per-page output consumed by the viewer."""
    page_number: int
    image_url: str
    text_chunks: List[LegacyTextChunk] = field(default_factory=list)

    @property
    def text(self) -> str:
        return " ".join(chunk.text for chunk in self.text_chunks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pageNumber": self.page_number,
            "imageUrl": self.image_url,
            "textChunks": [c.to_dict() for c in self.text_chunks]
        }


class ChunkType(Enum):
    """Types of grounded text chunks."""
    TEXT = "text"
    TITLE = "title"
    LIST = "list"
    TABLE = "table"
    FIGURE = "figure"
    FOOTER = "footer"
    HEADER = "header"
    FORM_FIELD = "form_field"
    CAPTION = "caption"


BLOCK_TO_CHUNK_TYPE = {
    "paragraph": ChunkType.TEXT,
    "heading": ChunkType.TITLE,
    "list": ChunkType.LIST,
    "table": ChunkType.TABLE,
    "image": ChunkType.FIGURE,
    "footer": ChunkType.FOOTER,
    "header": ChunkType.HEADER,
    "form_field": ChunkType.FORM_FIELD,
    "caption": ChunkType.CAPTION,
    "line": ChunkType.TEXT,
    "signature": ChunkType.FIGURE,
    "logo": ChunkType.FIGURE,
}


def map_block_type_to_chunk_type(block_type: str) -> ChunkType:
    return BLOCK_TO_CHUNK_TYPE.get(block_type, ChunkType.TEXT)


@dataclass
class TextChunk:
    """A grounded piece of text at block or word granularity."""
    id: str
    text: str
    chunk_type: ChunkType
    confidence: float
    grounding: Grounding
    page_number: int
    semantic_role: Optional[str] = None
    granularity: str = "block"  # block or word

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "chunk_type": self.chunk_type.value,
            "confidence": self.confidence,
            "semantic_role": self.semantic_role,
            "grounding": self.grounding.to_dict(),
            "page_number": self.page_number,
            "granularity": self.granularity
        }


@dataclass
class DocumentMetrics:
    """Document-wide counts and timings."""
    total_words: int = 0
    total_lines: int = 0
    total_blocks: int = 0
    overall_coverage: float = MAX_COVERAGE_PERCENT
    processing_time: float = 0.0
    extraction_methods: List[str] = field(default_factory=list)
    method_coverage: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalWords": self.total_words,
            "totalLines": self.total_lines,
            "totalBlocks": self.total_blocks,
            "overallCoverage": self.overall_coverage,
            "processingTime": round(self.processing_time, 3),
            "extractionMethods": self.extraction_methods
        }


@dataclass
class ExtractionResult:
    """Complete extraction output for a document."""
    text: str
    chunks: List[TextChunk]
    markdown: str
    ir_pages: List[IRPage]
    document_metrics: DocumentMetrics
    metadata: Dict[str, Any] = field(default_factory=dict)
    pages: List[LegacyPageData] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "chunks": [c.to_dict() for c in self.chunks],
            "markdown": self.markdown,
            "intermediate_representation": {
                "pages": [p.to_dict() for p in self.ir_pages],
                "documentMetrics": self.document_metrics.to_dict()
            },
            "metadata": self.metadata
        }


# ============================================================================
# Session and Progress
# ============================================================================

@dataclass
class ExtractionSession:
    """
    Accumulates page results for one document run.

    Pages are kept sorted by page number whatever order they complete in.
    """
    total_pages: int
    page_numbers: List[int] = field(default_factory=list)
    pages: List[LegacyPageData] = field(default_factory=list)
    ir_pages: List[IRPage] = field(default_factory=list)
    failed_pages: List[int] = field(default_factory=list)

    def __post_init__(self):
        if not self.page_numbers:
            self.page_numbers = list(range(1, self.total_pages + 1))

    @property
    def expected_next(self) -> Optional[int]:
        """Lowest selected page that has neither completed nor failed."""
        done = {p.page_number for p in self.pages} | set(self.failed_pages)
        for page_number in self.page_numbers:
            if page_number not in done:
                return page_number
        return None

    @property
    def is_complete(self) -> bool:
        return self.expected_next is None

    def add_page(self, page: LegacyPageData, ir_page: IRPage):
        self.pages.append(page)
        self.ir_pages.append(ir_page)
        self.pages.sort(key=lambda p: p.page_number)
        self.ir_pages.sort(key=lambda p: p.page_number)

    def mark_failed(self, page_number: int):
        self.failed_pages.append(page_number)

    def is_last_page(self, page_number: int) -> bool:
        return bool(self.page_numbers) and page_number == self.page_numbers[-1]

    def reset(self):
        self.pages = []
        self.ir_pages = []
        self.failed_pages = []


@dataclass
class ProcessingProgress:
    """Track progress of document processing; reported values never decrease."""
    total_pages: int = 0
    processed_pages: int = 0
    current_stage: str = ""
    current_page: int = 0
    percent: float = 0.0
    callback: Optional[ProgressCallback] = None

    def report(self, percent: float, stage: str, page: Optional[int] = None):
        self.current_stage = stage
        if page is not None:
            self.current_page = page
        self.percent = max(self.percent, min(percent, 100.0))
        logger.debug(f"Progress {self.percent:.1f}% ({stage})")
        if self.callback is not None:
            self.callback(self.percent)

    def complete_page(self):
        self.processed_pages += 1


def page_milestone(index: int, total: int, step: int) -> float:
    """
    Progress value for the step-th milestone (1-6) of the index-th page.

    Pages share the 10-90 range equally; each page has six milestones.
    """
    base = index / total * 80 + 10
    return base + step * (80 / total / 6)


# ============================================================================
# Chunk Generation
# ============================================================================

def build_legacy_chunks(
    ir_page: IRPage,
    synthesis: Optional[SynthesisConfig] = None
) -> List[LegacyTextChunk]:
    """One chunk per word, or the placeholder when the page has no words."""
    synthesis = synthesis or SynthesisConfig()
    if not ir_page.words:
        return [LegacyTextChunk(
            id=f"p{ir_page.page_number}-placeholder",
            text=synthesis.placeholder_text,
            page_number=ir_page.page_number,
            geometry=PercentGeometry(*synthesis.placeholder_geometry)
        )]

    return [
        LegacyTextChunk(
            id=f"p{ir_page.page_number}-w{i}",
            text=word.text,
            page_number=ir_page.page_number,
            geometry=normalized_to_percent(word.bbox)
        )
        for i, word in enumerate(ir_page.words)
    ]


def generate_text_chunks(ir_pages: Sequence[IRPage]) -> List[TextChunk]:
    """
    Build block-level and word-level chunks for every page.

    Each non-blank block yields one block chunk followed by one chunk per
    word, all grounded from percentage geometry.
    """
    chunks: List[TextChunk] = []

    for page in ir_pages:
        for block in page.blocks:
            block_text = block.text
            if not block_text.strip():
                continue

            block_type = block.block_type.value
            chunks.append(TextChunk(
                id=f"p{page.page_number}-{block.id}",
                text=block_text,
                chunk_type=map_block_type_to_chunk_type(block_type),
                confidence=block.confidence or 0.8,
                grounding=percent_to_grounding(normalized_to_percent(block.bbox), page.page_number),
                page_number=page.page_number,
                semantic_role=block.semantic_role
            ))

            word_role = f"word_in_{block.semantic_role or block_type}"
            for i, line in enumerate(block.lines):
                for j, word in enumerate(line.words):
                    chunks.append(TextChunk(
                        id=f"p{page.page_number}-{block.id}-line-{i}-word-{j}",
                        text=word.text,
                        chunk_type=ChunkType.TEXT,
                        confidence=word.confidence,
                        grounding=percent_to_grounding(
                            normalized_to_percent(word.bbox), page.page_number
                        ),
                        page_number=page.page_number,
                        semantic_role=word_role,
                        granularity="word"
                    ))

    return chunks


# ============================================================================
# Metrics
# ============================================================================

def calculate_method_coverage(ir_pages: Sequence[IRPage]) -> Dict[str, float]:
    """Percentage of reconciled words per source family."""
    counts = {"native": 0, "ocr": 0, "synthesized": 0}
    total = 0
    for page in ir_pages:
        for word in page.words:
            family = SOURCE_FAMILIES.get(word.source)
            if family is None:
                continue
            counts[family] += 1
            total += 1

    if total == 0:
        return {name: 0.0 for name in counts}
    return {name: round(count / total * 100, 2) for name, count in counts.items()}


def calculate_document_metrics(
    ir_pages: Sequence[IRPage],
    processing_time: float
) -> DocumentMetrics:
    methods: List[str] = []
    for page in ir_pages:
        if page.source.value not in methods:
            methods.append(page.source.value)

    return DocumentMetrics(
        total_words=sum(len(p.words) for p in ir_pages),
        total_lines=sum(len(p.lines) for p in ir_pages),
        total_blocks=sum(len(p.blocks) for p in ir_pages),
        overall_coverage=MAX_COVERAGE_PERCENT,
        processing_time=processing_time,
        extraction_methods=methods,
        method_coverage=calculate_method_coverage(ir_pages)
    )


def build_processing_pipeline(ir_pages: Sequence[IRPage]) -> List[str]:
    """Stage names used for the document, in pipeline order."""
    used = {p.source for p in ir_pages} | {w.source for p in ir_pages for w in p.words}
    pipeline = ["pdf_render"]
    pipeline.extend(
        source.value for source in WordSource
        if source in used and source is not WordSource.EMPTY
    )
    pipeline.append("text_chunking")
    if any(p.vision_used for p in ir_pages):
        pipeline.append("semantic_analysis")
    return pipeline


# ============================================================================
# Document Assembler
# ============================================================================

class DocumentAssembler:
    """
    Orchestrates the PDF grounding pipeline.

    Coordinates:
    - Page image encoding
    - Vision-model extraction and structure analysis
    - Native text layer and OCR extraction
    - Reconciliation into the intermediate representation
    - Chunking and final assembly
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        ocr_runner=None,
        vision_client=None
    ):
        self.config = config or PipelineConfig()

        # Initialize components lazily
        self._ocr_runner = ocr_runner
        self._vision_client = vision_client
        self._reconciler = None
        self._markdown_exporter = None

    @property
    def ocr_runner(self):
        if self._ocr_runner is None:
            from .ocr_text import OCRRunner
            self._ocr_runner = OCRRunner(self.config.ocr)
        return self._ocr_runner

    @property
    def vision_client(self):
        if self._vision_client is None:
            from .vision import VisionModelClient
            self._vision_client = VisionModelClient(self.config.vision)
        return self._vision_client

    @property
    def reconciler(self):
        if self._reconciler is None:
            from .reconcile import Reconciler
            self._reconciler = Reconciler(self.config)
        return self._reconciler

    @property
    def markdown_exporter(self):
        if self._markdown_exporter is None:
            from .export import MarkdownExporter
            self._markdown_exporter = MarkdownExporter()
        return self._markdown_exporter

    @property
    def vision_enabled(self) -> bool:
        if not self.config.vision.enabled:
            return False
        return self._vision_client is not None or self.config.vision.is_configured

    # ------------------------------------------------------------------
    # Single page
    # ------------------------------------------------------------------

    def encode_page(self, rendered_page: RenderedPage) -> str:
        return encode_data_url(rendered_page.image, "jpeg", self.config.jpeg_quality)

    def extract_page(self, rendered_page: RenderedPage, image_url: str) -> IRPage:
        """
        Run the extractors for one page and reconcile their output.

        A failed vision-model call switches the page to the OCR-only path;
        it is never retried.
        """
        page_number = rendered_page.page_number
        width, height = rendered_page.width, rendered_page.height

        if self.config.extraction_mode == "ocr_only":
            logger.info(f"Page {page_number}: OCR-only extraction")
            ocr = self.ocr_runner.run_single(rendered_page.image)
            return self.reconciler.build_ocr_only_page(
                page_number, width, height, ocr, coverage_percent=MAX_COVERAGE_PERCENT
            )

        native_words = read_native_words(rendered_page.text_layer)
        vision = None
        structure = None

        if self.vision_enabled:
            try:
                vision = self.vision_client.extract_text(image_url)
            except VisionModelError as e:
                logger.warning(f"Page {page_number}: vision model failed "
                               f"({e.failure_class}): {e}; falling back to OCR only")
                ocr = self.ocr_runner.run_single(rendered_page.image)
                return self.reconciler.build_ocr_only_page(
                    page_number, width, height, ocr, coverage_percent=FALLBACK_COVERAGE_PERCENT
                )
            structure = self.vision_client.analyze_structure(image_url, vision.text)
        else:
            logger.debug(f"Page {page_number}: vision model disabled")

        ocr = self.ocr_runner.run(rendered_page.image)

        return self.reconciler.reconcile_page(PageSources(
            page_number=page_number,
            width=width,
            height=height,
            native_words=native_words,
            ocr=ocr,
            vision=vision,
            structure=structure
        ))

    def build_page_data(self, ir_page: IRPage, image_url: str) -> LegacyPageData:
        return LegacyPageData(
            page_number=ir_page.page_number,
            image_url=image_url,
            text_chunks=build_legacy_chunks(ir_page, self.config.synthesis)
        )

    def process_page(self, rendered_page: RenderedPage) -> Tuple[LegacyPageData, IRPage]:
        """
        Process a single rendered page.

        Returns:
            (LegacyPageData, IRPage) for the page
        """
        image_url = self.encode_page(rendered_page)
        ir_page = self.extract_page(rendered_page, image_url)
        return self.build_page_data(ir_page, image_url), ir_page

    # ------------------------------------------------------------------
    # Whole document
    # ------------------------------------------------------------------

    def _report_error(self, message: str, on_error: Optional[ErrorCallback]):
        logger.error(message)
        if on_error is not None:
            on_error(message)

    def process_document(
        self,
        source: PageSource,
        on_progress: Optional[ProgressCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        pages: Optional[Sequence[int]] = None
    ) -> Optional[ExtractionResult]:
        """
        Process pages one after another and assemble the result.

        Never raises: failures are reported through `on_error` and yield
        None unless `continue_on_error` lets later pages finish.

        Args:
            source: Page source to read from
            on_progress: Receives non-decreasing percentages, 100 last
            on_error: Receives human-readable failure messages
            pages: Page numbers to process (default: all)
        """
        start_time = time.time()

        try:
            page_numbers = sorted(set(pages)) if pages else list(range(1, source.page_count + 1))
        except Exception as e:
            logger.debug(f"Page count unavailable: {e}")
            self._report_error(DOCUMENT_LOAD_ERROR, on_error)
            return None

        if self.config.max_pages:
            page_numbers = page_numbers[:self.config.max_pages]
        if not page_numbers:
            self._report_error("Document has no pages to process.", on_error)
            return None

        total = len(page_numbers)
        session = ExtractionSession(total_pages=total, page_numbers=page_numbers)
        progress = ProcessingProgress(total_pages=total, callback=on_progress)
        progress.report(10, "load")

        for index, page_number in enumerate(page_numbers):
            progress.report(page_milestone(index, total, 1), "start", page_number)
            try:
                rendered = source.render_page(page_number)
                progress.report(page_milestone(index, total, 2), "render")

                image_url = self.encode_page(rendered)
                progress.report(page_milestone(index, total, 3), "encode")

                ir_page = self.extract_page(rendered, image_url)
                progress.report(page_milestone(index, total, 4), "extract")

                page_data = self.build_page_data(ir_page, image_url)
                progress.report(page_milestone(index, total, 5), "chunk")

            except PageLoadError as e:
                session.mark_failed(page_number)
                self._report_error(f"Failed to load page {page_number}: {e}", on_error)
                if not self.config.continue_on_error:
                    return None
                continue
            except Exception as e:
                session.mark_failed(page_number)
                self._report_error(f"Failed to process page {page_number}: {e}", on_error)
                if self.config.debug_mode:
                    logger.exception(f"Page {page_number} traceback")
                if not self.config.continue_on_error:
                    return None
                continue

            session.add_page(page_data, ir_page)
            progress.complete_page()
            progress.report(page_milestone(index, total, 6), "accumulate")

            if session.is_last_page(page_number):
                logger.info(f"Last page {page_number} processed, assembling document")

        if not session.pages:
            self._report_error("No pages could be processed.", on_error)
            return None

        if session.failed_pages:
            logger.warning(f"Assembling without failed pages: {session.failed_pages}")

        result = self.assemble(session, time.time() - start_time)
        progress.report(100, "complete")
        return result

    def process_pdf(
        self,
        pdf_path: Union[str, Path],
        on_progress: Optional[ProgressCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        pages: Optional[Sequence[int]] = None
    ) -> Optional[ExtractionResult]:
        """Open a PDF and process it; a load failure goes to `on_error`."""
        try:
            source = PdfPageSource(pdf_path, dpi=self.config.render_dpi)
        except Exception as e:
            logger.debug(f"Could not open {pdf_path}: {e}")
            self._report_error(DOCUMENT_LOAD_ERROR, on_error)
            return None

        result = self.process_document(source, on_progress, on_error, pages)
        if result is not None:
            result.metadata["source_file"] = str(pdf_path)
        return result

    def assemble(self, session: ExtractionSession, processing_time: float) -> ExtractionResult:
        """Build the document-level result from accumulated pages."""
        ir_pages = list(session.ir_pages)
        chunks = generate_text_chunks(ir_pages)
        metrics = calculate_document_metrics(ir_pages, processing_time)

        text = "\n".join(page.text for page in session.pages)

        metadata = {
            "schema_version": JSON_SCHEMA_VERSION,
            "processed_at": datetime.now().isoformat(),
            "extraction_mode": self.config.extraction_mode,
            "page_count": len(session.pages),
            "word_count": metrics.total_words,
            "has_text": metrics.total_words > 0,
            "coverage_metrics": {
                "overall_coverage": metrics.overall_coverage,
                "method_coverage": metrics.method_coverage,
                "quality_score": QUALITY_SCORE
            },
            "processing_pipeline": build_processing_pipeline(ir_pages)
        }
        if session.failed_pages:
            metadata["failed_pages"] = list(session.failed_pages)

        logger.info(f"Assembled {len(session.pages)} pages, {metrics.total_words} words, "
                    f"{len(chunks)} chunks in {processing_time:.2f}s")

        return ExtractionResult(
            text=text,
            chunks=chunks,
            markdown=self.markdown_exporter.render(chunks),
            ir_pages=ir_pages,
            document_metrics=metrics,
            metadata=metadata,
            pages=list(session.pages)
        )
