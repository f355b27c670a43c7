"""
Shared fakes for the OCR engine, vision client and page sources.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pdf_grounding.utils.ocr_text import OCRResult, OCRWord, OCRLine, PixelBox
from pdf_grounding.utils.vision import (
    VisionModelError, VisionTextResult, DocumentStructure, StructuralElement
)
from pdf_grounding.utils.native_text import NativeTextItem, NativeTextLayer


class FakeOCRRunner:
    """Returns fixed OCR results and records how it was called."""

    def __init__(self, result=None, single_result=None, error=None):
        self.result = result if result is not None else OCRResult()
        self.single_result = single_result if single_result is not None else self.result
        self.error = error
        self.run_calls = 0
        self.single_calls = 0

    def run(self, image):
        self.run_calls += 1
        if self.error:
            raise self.error
        return self.result

    def run_single(self, image, pass_config=None):
        self.single_calls += 1
        if self.error:
            raise self.error
        return self.single_result


class FakeVisionClient:
    """Vision client returning canned text and structure, or failing."""

    def __init__(self, text="", confidence=0.9, elements=None, complete_text=None, error=None):
        self.text = text
        self.confidence = confidence
        self.elements = elements or []
        self.complete_text = complete_text
        self.error = error
        self.extract_calls = 0
        self.structure_calls = 0

    def extract_text(self, image_data_url, api_key=None):
        self.extract_calls += 1
        if self.error:
            raise self.error
        return VisionTextResult(text=self.text, confidence=self.confidence)

    def analyze_structure(self, image_data_url, fallback_text=None, api_key=None):
        self.structure_calls += 1
        return DocumentStructure(
            layout="single-column",
            elements=[StructuralElement(t, c, conf) for t, c, conf in self.elements],
            complete_text=self.complete_text if self.complete_text is not None else (fallback_text or "")
        )


def make_ocr_result(words, page_lines=None):
    """
    Build an OCRResult from (text, x0, y0, x1, y1, conf) tuples.

    Words sharing y0 form one line unless explicit lines are given.
    """
    ocr_words = [OCRWord(t, PixelBox(x0, y0, x1, y1), conf) for t, x0, y0, x1, y1, conf in words]
    if page_lines is None:
        by_row = {}
        for w in ocr_words:
            by_row.setdefault(w.bbox.y0, []).append(w)
        page_lines = [
            OCRLine(
                text=" ".join(w.text for w in members),
                bbox=PixelBox(
                    min(w.bbox.x0 for w in members), y0,
                    max(w.bbox.x1 for w in members), max(w.bbox.y1 for w in members)
                ),
                confidence=float(np.mean([w.confidence for w in members])),
                words=members
            )
            for y0, members in sorted(by_row.items())
        ]
    return OCRResult(
        text="\n".join(line.text for line in page_lines),
        words=ocr_words,
        lines=page_lines,
        config_used="fake",
        engine_used="fake"
    )


def make_text_layer(strings, y=700.0, size=12.0, page_width=612.0, page_height=792.0):
    """A single-baseline text layer with items spaced 60pt apart from x=72."""
    items = [
        NativeTextItem(
            string=s,
            transform=(size, 0.0, 0.0, size, 72.0 + i * 60.0, y),
            width=len(s) * size * 0.5,
            height=size,
            font_name="Helvetica"
        )
        for i, s in enumerate(strings)
    ]
    return NativeTextLayer(page_width=page_width, page_height=page_height, items=items)


@pytest.fixture
def blank_page():
    """White page raster, 1000x800 (h x w)."""
    return np.ones((1000, 800, 3), dtype=np.uint8) * 255


@pytest.fixture
def service_error():
    return VisionModelError("Vision API error 503: busy", status=503)
