"""
Configuration and constants for the PDF grounding pipeline.

This module provides:
- Global logging setup
- OCR page-segmentation ladder
- Grouping and synthesis thresholds
- Vision-model endpoint configuration
- Pipeline settings with environment overrides
"""

import os
from dataclasses import dataclass, field
from typing import Optional, List, Tuple
import logging

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT
)
logger = logging.getLogger("pdf_grounding")


# ============================================================================
# OCR Configuration
# ============================================================================

DEFAULT_CHAR_WHITELIST = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
    ".,!?:;()-[]{}\"' /\\@#$%^&*+=<>|~`"
)


@dataclass(frozen=True)
class OCRPassConfig:
    """One Tesseract invocation setting in the segmentation ladder."""
    name: str
    psm: int
    description: str = ""


@dataclass
class OCRConfig:
    """OCR configuration."""
    tesseract_lang: str = "eng"
    oem: int = 3
    char_whitelist: str = DEFAULT_CHAR_WHITELIST
    preserve_interword_spaces: bool = True
    dpi_hint: int = 300
    # Tried in order; the first pass that yields words wins
    page_segmentation_ladder: List[OCRPassConfig] = field(default_factory=lambda: [
        OCRPassConfig("single_uniform_block", 6, "Single uniform block of text"),
        OCRPassConfig("auto_osd", 1, "Automatic page segmentation with OSD"),
        OCRPassConfig("single_column", 4, "Single column of text (block fallback)"),
    ])
    # Used alone when the vision model fails and in ocr_only mode
    fallback_pass: OCRPassConfig = field(
        default_factory=lambda: OCRPassConfig("single_uniform_block", 6, "Single uniform block of text")
    )
    default_line_confidence: float = 80.0
    emergency_line_confidence: float = 70.0


# ============================================================================
# Grouping Configuration
# ============================================================================

@dataclass
class GroupingConfig:
    """Thresholds for line and block grouping (normalized page units)."""
    same_row_tolerance: float = 0.01
    line_center_tolerance: float = 0.02
    block_gap_threshold: float = 0.03


# ============================================================================
# Synthesis Configuration
# ============================================================================

@dataclass
class SynthesisConfig:
    """Parameters for synthesized coordinates when no spatial signal exists."""
    # Text flow (vision-model text only)
    margin_top: float = 0.08
    margin_bottom: float = 0.08
    margin_left: float = 0.06
    margin_right: float = 0.06
    words_per_line: int = 12
    chars_per_word: int = 7
    line_height: float = 0.025
    line_spacing: float = 1.2
    word_spacing: float = 0.008
    column_shift: float = 0.5
    # OCR line splitting
    min_word_width_ratio: float = 0.03
    word_spacing_ratio: float = 0.01
    min_font_size: float = 8.0
    # Coverage gap repair
    gap_ratio: float = 1.2
    gap_start_y: float = 0.8
    gap_step_y: float = 0.05
    gap_block_height: float = 0.04
    # Placeholder geometry (percent)
    placeholder_text: str = "No text detected"
    placeholder_geometry: Tuple[float, float, float, float] = (10.0, 10.0, 20.0, 5.0)


# ============================================================================
# Vision Model Configuration
# ============================================================================

@dataclass
class VisionConfig:
    """Vision-language model endpoint (OpenAI-compatible chat completions)."""
    enabled: bool = True
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    temperature: float = 0.1
    max_tokens: int = 4096
    timeout: Tuple[int, int] = (20, 900)

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.base_url or self.api_key)


# ============================================================================
# Pipeline Configuration
# ============================================================================

EXTRACTION_MODES = ("enhanced", "ocr_only")

DEFAULT_VISION_URL = "https://api.openai.com/v1"


@dataclass
class PipelineConfig:
    """Main pipeline configuration."""
    ocr: OCRConfig = field(default_factory=OCRConfig)
    grouping: GroupingConfig = field(default_factory=GroupingConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    vision: VisionConfig = field(default_factory=VisionConfig)

    # Global settings
    extraction_mode: str = "enhanced"
    render_dpi: int = 144
    jpeg_quality: int = 80
    continue_on_error: bool = False
    debug_mode: bool = False
    max_pages: Optional[int] = None  # None = process all pages


# ============================================================================
# Default Configuration Instance
# ============================================================================

def get_config() -> PipelineConfig:
    """Get the default pipeline configuration with environment overrides."""
    config = PipelineConfig()

    mode = os.environ.get("PDF_GROUNDING_MODE", "").lower()
    if mode in EXTRACTION_MODES:
        config.extraction_mode = mode

    if os.environ.get("PDF_GROUNDING_DEBUG", "").lower() == "true":
        config.debug_mode = True

    if os.environ.get("TESSERACT_LANG"):
        config.ocr.tesseract_lang = os.environ["TESSERACT_LANG"]

    # Vision endpoint from environment
    config.vision.api_key = os.environ.get("PDF_GROUNDING_VISION_API_KEY")
    config.vision.base_url = os.environ.get("PDF_GROUNDING_VISION_URL")
    if config.vision.api_key and not config.vision.base_url:
        config.vision.base_url = DEFAULT_VISION_URL
    if os.environ.get("PDF_GROUNDING_VISION_MODEL"):
        config.vision.model = os.environ["PDF_GROUNDING_VISION_MODEL"]

    return config


# ============================================================================
# JSON Schema Version
# ============================================================================

JSON_SCHEMA_VERSION = "1.0"
