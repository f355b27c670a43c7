"""
Text OCR module for the PDF grounding pipeline.

Provides:
- Tesseract engine returning positioned words and lines
- OCR runner trying an ordered page-segmentation ladder
- Single-configuration runs for the fallback path

The runner accepts the first configuration that yields at least one
word. Results from different configurations are never merged.
"""

import logging
import shlex
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, Callable, Tuple
import numpy as np

from ..config import OCRConfig, OCRPassConfig

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class PixelBox:
    """Pixel-space box as reported by the OCR engine."""
    x0: float
    y0: float
    x1: float
    y1: float

    @property
    def width(self) -> float:
        return self.x1 - self.x0

    @property
    def height(self) -> float:
        return self.y1 - self.y0

    def to_dict(self) -> Dict[str, float]:
        return {"x0": self.x0, "y0": self.y0, "x1": self.x1, "y1": self.y1}


@dataclass
class OCRWord:
    """OCR result for a single word (confidence on the engine's 0-100 scale)."""
    text: str
    bbox: PixelBox
    confidence: float


@dataclass
class OCRLine:
    """OCR result for a line of text."""
    text: str
    bbox: PixelBox
    confidence: Optional[float] = None
    words: List[OCRWord] = field(default_factory=list)


@dataclass
class OCRResult:
    """Complete OCR result for a page image."""
    text: str = ""
    words: List[OCRWord] = field(default_factory=list)
    lines: List[OCRLine] = field(default_factory=list)
    config_used: Optional[str] = None
    engine_used: str = ""

    @property
    def has_words(self) -> bool:
        return any(w.text.strip() for w in self.words)

    @property
    def has_lines(self) -> bool:
        return any(line.text.strip() for line in self.lines)

    @property
    def confidence(self) -> float:
        if not self.words:
            return 0.0
        return float(np.mean([w.confidence for w in self.words])) / 100.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "words": len(self.words),
            "lines": len(self.lines),
            "config": self.config_used,
            "engine": self.engine_used,
            "confidence": self.confidence
        }


# ============================================================================
# Tesseract Engine
# ============================================================================

class TesseractEngine:
    """OCR using Tesseract."""

    def __init__(self, ocr_config: Optional[OCRConfig] = None):
        try:
            import pytesseract
            self.pytesseract = pytesseract

            # Test that tesseract is installed
            pytesseract.get_tesseract_version()

        except Exception as e:
            raise ImportError(
                f"Tesseract not available: {e}\n"
                "Install with: pip install pytesseract\n"
                "Also install Tesseract: https://github.com/tesseract-ocr/tesseract"
            )

        self.ocr_config = ocr_config or OCRConfig()

    def build_config(self, pass_config: OCRPassConfig) -> str:
        """Build the Tesseract command-line options for one pass."""
        cfg = self.ocr_config
        options = [
            f"--oem {cfg.oem}",
            f"--psm {pass_config.psm}",
            f"--dpi {cfg.dpi_hint}",
            f"-c preserve_interword_spaces={1 if cfg.preserve_interword_spaces else 0}",
            "-c tessedit_write_images=0",
        ]
        if cfg.char_whitelist:
            options.append("-c " + shlex.quote(f"tessedit_char_whitelist={cfg.char_whitelist}"))
        return " ".join(options)

    def _preprocess_for_ocr(self, image: np.ndarray) -> Tuple[np.ndarray, float]:
        """Preprocess image for better OCR results; returns (image, scale)."""
        import cv2

        # Convert to grayscale if needed
        if len(image.shape) == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            gray = image.copy()

        # Resize if too small (helps OCR accuracy)
        scale = 1.0
        h, w = gray.shape
        if h < 30:
            scale = 30.0 / h
            gray = cv2.resize(gray, None, fx=scale, fy=scale, interpolation=cv2.INTER_CUBIC)

        gray = cv2.adaptiveThreshold(
            gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 11, 2
        )
        gray = cv2.medianBlur(gray, 3)

        return gray, scale

    def recognize(self, image: np.ndarray, pass_config: OCRPassConfig) -> OCRResult:
        """Recognize text using one page-segmentation configuration."""
        processed, scale = self._preprocess_for_ocr(image)

        data = self.pytesseract.image_to_data(
            processed,
            lang=self.ocr_config.tesseract_lang,
            config=self.build_config(pass_config),
            output_type=self.pytesseract.Output.DICT
        )

        result = parse_tesseract_data(data, scale=scale)
        result.config_used = pass_config.name
        return result


def parse_tesseract_data(data: Dict[str, List[Any]], scale: float = 1.0) -> OCRResult:
    """
    Turn pytesseract `image_to_data` output into words and lines.

    Level-5 rows are words; rows sharing (block_num, par_num, line_num)
    form a line whose box comes from the level-4 row when present.
    Tesseract leaves level-4 text empty, so a line exists only once one of
    its words survives filtering; line-only results come from other engines.
    Coordinates are divided by `scale` to undo preprocessing resizes.
    """
    def box_at(i: int) -> PixelBox:
        left, top = data['left'][i], data['top'][i]
        return PixelBox(
            left / scale,
            top / scale,
            (left + data['width'][i]) / scale,
            (top + data['height'][i]) / scale
        )

    line_boxes: Dict[Tuple[int, int, int], PixelBox] = {}
    line_words: Dict[Tuple[int, int, int], List[OCRWord]] = {}
    words: List[OCRWord] = []

    for i in range(len(data['text'])):
        level = int(data['level'][i]) if 'level' in data else 5
        key = (data['block_num'][i], data['par_num'][i], data['line_num'][i])

        if level == 4:
            line_boxes[key] = box_at(i)
            line_words.setdefault(key, [])
            continue
        if level != 5:
            continue

        text = str(data['text'][i]).strip()
        conf = float(data['conf'][i])
        if not text or conf < 0:  # -1 means no valid confidence
            continue

        word = OCRWord(text=text, bbox=box_at(i), confidence=conf)
        words.append(word)
        line_words.setdefault(key, []).append(word)

    lines = []
    for key, members in line_words.items():
        if not members:
            continue
        bbox = line_boxes.get(key) or PixelBox(
            min(w.bbox.x0 for w in members),
            min(w.bbox.y0 for w in members),
            max(w.bbox.x1 for w in members),
            max(w.bbox.y1 for w in members)
        )
        lines.append(OCRLine(
            text=" ".join(w.text for w in members),
            bbox=bbox,
            confidence=float(np.mean([w.confidence for w in members])),
            words=members
        ))

    lines.sort(key=lambda l: (l.bbox.y0, l.bbox.x0))

    return OCRResult(
        text="\n".join(line.text for line in lines),
        words=words,
        lines=lines,
        engine_used="tesseract"
    )


# ============================================================================
# OCR Runner
# ============================================================================

class OCRRunner:
    """
    Runs OCR on a page image under an ordered list of configurations.

    A fresh engine is created for every run and dropped afterwards; engines
    are never pooled across pages.
    """

    def __init__(
        self,
        ocr_config: Optional[OCRConfig] = None,
        engine_factory: Optional[Callable[[OCRConfig], Any]] = None
    ):
        self.ocr_config = ocr_config or OCRConfig()
        self.engine_factory = engine_factory or TesseractEngine

    def _create_engine(self) -> Optional[Any]:
        """Build an engine, or None when OCR is unavailable on this system."""
        try:
            return self.engine_factory(self.ocr_config)
        except (ImportError, RuntimeError, OSError) as e:
            logger.warning(f"OCR engine unavailable: {e}")
            return None

    def run(self, image: np.ndarray) -> OCRResult:
        """
        Try each configuration of the ladder in order.

        Returns the first result containing words. If none has words, the
        first result that still recognized lines is returned (words empty),
        otherwise an empty result. An unavailable engine also yields an
        empty result.
        """
        engine = self._create_engine()
        if engine is None:
            return OCRResult()
        line_only: Optional[OCRResult] = None

        for pass_config in self.ocr_config.page_segmentation_ladder:
            logger.debug(f"Trying OCR config: {pass_config.name} - {pass_config.description}")
            try:
                result = engine.recognize(image, pass_config)
            except Exception as e:
                logger.warning(f"OCR config {pass_config.name} error: {e}")
                continue

            if result.has_words:
                logger.info(f"OCR config {pass_config.name} found {len(result.words)} words")
                return result

            logger.debug(f"OCR config {pass_config.name} extracted no words")
            if line_only is None and result.has_lines:
                line_only = result

        if line_only is not None:
            logger.warning("No OCR config extracted words; keeping line-level result")
            return OCRResult(
                text=line_only.text,
                words=[],
                lines=line_only.lines,
                config_used=line_only.config_used,
                engine_used=line_only.engine_used
            )

        logger.warning("All OCR configurations failed to extract words")
        return OCRResult()

    def run_single(
        self,
        image: np.ndarray,
        pass_config: Optional[OCRPassConfig] = None
    ) -> OCRResult:
        """Run one fixed configuration, without the ladder."""
        pass_config = pass_config or self.ocr_config.fallback_pass
        engine = self._create_engine()
        if engine is None:
            return OCRResult()
        try:
            result = engine.recognize(image, pass_config)
        except Exception as e:
            logger.warning(f"OCR config {pass_config.name} error: {e}")
            return OCRResult()
        logger.info(f"Single-pass OCR ({pass_config.name}) found {len(result.words)} words")
        return result
