"""
Utility modules for the PDF grounding pipeline.
"""

from .geometry import BoundingBox, calculate_bounding_box
from .coordinates import (
    PercentGeometry, Grounding, GroundingBox,
    normalized_to_percent, percent_to_normalized, percent_to_grounding
)
from .layout import Word, Line, Block, BlockType, WordSource, IRPage, PageCoverage
from .native_text import NativeTextItem, NativeTextLayer, read_native_words
from .ocr_text import OCRRunner, OCRResult
from .vision import VisionModelClient, VisionModelError
from .reconcile import Reconciler, PageSources, run_ladder
from .io import (
    RenderedPage, PdfPageSource, ImagePageSource, PageLoadError,
    load_image, save_json, ensure_dir
)
from .assembler import (
    DocumentAssembler, ExtractionResult, ExtractionSession,
    LegacyPageData, LegacyTextChunk, TextChunk, ChunkType
)
from .export import MarkdownExporter, DocumentExporter

__all__ = [
    # Geometry
    "BoundingBox", "calculate_bounding_box",
    "PercentGeometry", "Grounding", "GroundingBox",
    "normalized_to_percent", "percent_to_normalized", "percent_to_grounding",
    # Layout
    "Word", "Line", "Block", "BlockType", "WordSource", "IRPage", "PageCoverage",
    # Extractors
    "NativeTextItem", "NativeTextLayer", "read_native_words",
    "OCRRunner", "OCRResult",
    "VisionModelClient", "VisionModelError",
    # Reconciliation
    "Reconciler", "PageSources", "run_ladder",
    # IO
    "RenderedPage", "PdfPageSource", "ImagePageSource", "PageLoadError",
    "load_image", "save_json", "ensure_dir",
    # Assembly
    "DocumentAssembler", "ExtractionResult", "ExtractionSession",
    "LegacyPageData", "LegacyTextChunk", "TextChunk", "ChunkType",
    # Export
    "MarkdownExporter", "DocumentExporter",
]
