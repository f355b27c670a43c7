"""
End-to-end tests for the PDF grounding pipeline.

Extractors are replaced by fakes, so no Tesseract binary or network is
needed; page images still go through OpenCV encoding.
"""

import pytest
import numpy as np
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import FakeOCRRunner, FakeVisionClient, make_ocr_result, make_text_layer


def white_page(height=1000, width=800):
    return np.ones((height, width, 3), dtype=np.uint8) * 255


class FailingSource:
    """Page source whose given page cannot be rendered."""

    def __init__(self, inner, failing_page):
        self.inner = inner
        self.failing_page = failing_page

    @property
    def page_count(self):
        return self.inner.page_count

    def render_page(self, page_number):
        from pdf_grounding.utils.io import PageLoadError

        if page_number == self.failing_page:
            raise PageLoadError(page_number, "renderer crashed")
        return self.inner.render_page(page_number)


class TestProcessPage:
    """Test single-page processing."""

    def test_native_page(self):
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import RenderedPage

        assembler = DocumentAssembler(ocr_runner=FakeOCRRunner())
        page_data, ir_page = assembler.process_page(
            RenderedPage(1, white_page(), make_text_layer(["Hello", "world"]))
        )

        assert page_data.image_url.startswith("data:image/jpeg;base64,")
        assert [c.text for c in page_data.text_chunks] == ["Hello", "world"]
        assert [c.id for c in page_data.text_chunks] == ["p1-w0", "p1-w1"]
        assert ir_page.width == 800
        assert ir_page.height == 1000

    def test_legacy_geometry_in_percent(self):
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import RenderedPage

        ocr = make_ocr_result([("Scan", 80, 100, 160, 120, 90)])
        assembler = DocumentAssembler(ocr_runner=FakeOCRRunner(ocr))
        page_data, _ = assembler.process_page(RenderedPage(1, white_page()))

        geometry = page_data.text_chunks[0].geometry
        assert geometry.x == pytest.approx(10.0)
        assert geometry.y == pytest.approx(10.0)
        assert geometry.w == pytest.approx(10.0)
        assert geometry.h == pytest.approx(2.0)


class TestProcessDocument:
    """Test whole-document runs with fake extractors."""

    def test_progress_monotonic_and_final(self):
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource

        progress = []
        assembler = DocumentAssembler(ocr_runner=FakeOCRRunner(
            make_ocr_result([("Hello", 80, 100, 160, 120, 90)])
        ))
        result = assembler.process_document(
            ImagePageSource([white_page()]), on_progress=progress.append
        )

        assert result is not None
        assert progress[0] == 10
        assert progress == sorted(progress)
        assert progress[-1] == 100
        assert progress.count(100) == 1
        assert progress[-2] == pytest.approx(90)

    def test_multi_page_progress(self):
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource

        progress = []
        assembler = DocumentAssembler(ocr_runner=FakeOCRRunner())
        assembler.process_document(
            ImagePageSource([white_page(), white_page(), white_page()]),
            on_progress=progress.append
        )

        assert progress == sorted(progress)
        assert progress[-1] == 100
        assert all(p < 100 for p in progress[:-1])

    def test_native_document(self):
        """Chunks at block and word granularity, metadata and text."""
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource

        source = ImagePageSource(
            [white_page(), white_page()],
            text_layers=[make_text_layer(["Hello", "world"]), make_text_layer(["Second", "page"])]
        )
        result = DocumentAssembler(ocr_runner=FakeOCRRunner()).process_document(source)

        assert result.text == "Hello world\nSecond page"

        ids = [c.id for c in result.chunks]
        assert len(ids) == len(set(ids))
        assert ids[:3] == ["p1-block-0", "p1-block-0-line-0-word-0", "p1-block-0-line-0-word-1"]
        assert "p2-block-0" in ids

        block_chunk = result.chunks[0]
        assert block_chunk.text == "Hello world"
        assert block_chunk.chunk_type.value == "text"
        assert block_chunk.confidence == 0.8
        assert block_chunk.grounding.page == 1
        word_chunk = result.chunks[1]
        assert word_chunk.semantic_role == "word_in_paragraph"
        assert word_chunk.granularity == "word"

        assert result.markdown == "Hello world\n\nSecond page"

        metadata = result.metadata
        assert metadata["extraction_mode"] == "enhanced"
        assert metadata["page_count"] == 2
        assert metadata["word_count"] == 4
        assert metadata["has_text"] is True
        assert metadata["processing_pipeline"] == ["pdf_render", "pdf_native", "text_chunking"]
        assert metadata["coverage_metrics"]["overall_coverage"] == 95.0
        assert metadata["coverage_metrics"]["quality_score"] == 90.0
        assert metadata["coverage_metrics"]["method_coverage"]["native"] == 100.0

        metrics = result.document_metrics
        assert metrics.total_words == 4
        assert metrics.total_lines == 2
        assert metrics.total_blocks == 2
        assert metrics.extraction_methods == ["pdf_native"]

    def test_vision_labels_and_markdown(self):
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource

        layer = make_text_layer(["Annual", "Report"], y=740.0)
        layer.items.extend(make_text_layer(["Revenue", "grew"], y=500.0).items)
        vision = FakeVisionClient(
            text="Annual Report\nRevenue grew",
            elements=[("title", "Annual Report", 0.96), ("paragraph", "Revenue grew", 0.9)]
        )
        result = DocumentAssembler(ocr_runner=FakeOCRRunner(), vision_client=vision).process_document(
            ImagePageSource([white_page()], text_layers=[layer])
        )

        assert vision.extract_calls == 1
        assert vision.structure_calls == 1
        assert result.markdown == "# Annual Report\n\nRevenue grew"
        title_chunk = result.chunks[0]
        assert title_chunk.chunk_type.value == "title"
        assert title_chunk.semantic_role == "title"
        assert result.chunks[1].semantic_role == "word_in_title"
        assert result.metadata["processing_pipeline"][-1] == "semantic_analysis"

    def test_vision_failure_falls_back_to_ocr_only(self, service_error):
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource

        ocr_runner = FakeOCRRunner(make_ocr_result([("Fallback", 80, 100, 240, 120, 85)]))
        vision = FakeVisionClient(error=service_error)
        errors = []

        result = DocumentAssembler(ocr_runner=ocr_runner, vision_client=vision).process_document(
            ImagePageSource([white_page()]), on_error=errors.append
        )

        assert errors == []
        assert ocr_runner.single_calls == 1
        assert ocr_runner.run_calls == 0
        assert vision.structure_calls == 0
        page = result.ir_pages[0]
        assert page.coverage.coverage_percent == 80.0
        assert page.semantic_regions is not None
        assert result.text == "Fallback"
        assert "semantic_analysis" not in result.metadata["processing_pipeline"]

    def test_ocr_only_mode(self):
        from pdf_grounding.config import PipelineConfig
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource

        config = PipelineConfig(extraction_mode="ocr_only")
        ocr_runner = FakeOCRRunner(make_ocr_result([("Only", 80, 100, 160, 120, 85)]))
        vision = FakeVisionClient(text="ignored")

        result = DocumentAssembler(config, ocr_runner=ocr_runner, vision_client=vision).process_document(
            ImagePageSource([white_page()], text_layers=[make_text_layer(["Native"])])
        )

        assert vision.extract_calls == 0
        assert ocr_runner.single_calls == 1
        assert result.ir_pages[0].coverage.coverage_percent == 95.0
        assert result.text == "Only"
        assert result.metadata["extraction_mode"] == "ocr_only"

    def test_empty_page_placeholder(self):
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource

        result = DocumentAssembler(ocr_runner=FakeOCRRunner()).process_document(
            ImagePageSource([white_page()])
        )

        assert result.text == "No text detected"
        assert result.chunks == []
        assert result.markdown == ""
        assert result.metadata["has_text"] is False
        assert result.pages[0].text_chunks[0].id == "p1-placeholder"

    def test_selected_pages(self):
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource

        source = ImagePageSource(
            [white_page()] * 3,
            text_layers=[make_text_layer(["one"]), make_text_layer(["two"]), make_text_layer(["three"])]
        )
        result = DocumentAssembler(ocr_runner=FakeOCRRunner()).process_document(source, pages=[3, 1])

        assert result.text == "one\nthree"
        assert [p.page_number for p in result.pages] == [1, 3]


class TestErrorHandling:
    """Test error reporting through the callback."""

    def test_page_load_failure_halts(self):
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource

        errors = []
        source = FailingSource(ImagePageSource([white_page(), white_page()]), failing_page=2)
        result = DocumentAssembler(ocr_runner=FakeOCRRunner()).process_document(
            source, on_error=errors.append
        )

        assert result is None
        assert errors == ["Failed to load page 2: renderer crashed"]

    def test_page_load_failure_continue(self):
        from pdf_grounding.config import PipelineConfig
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource

        errors = []
        progress = []
        source = FailingSource(
            ImagePageSource([white_page()] * 3, text_layers=[make_text_layer(["a"])] * 3),
            failing_page=2
        )
        result = DocumentAssembler(
            PipelineConfig(continue_on_error=True), ocr_runner=FakeOCRRunner()
        ).process_document(source, on_progress=progress.append, on_error=errors.append)

        assert errors == ["Failed to load page 2: renderer crashed"]
        assert [p.page_number for p in result.pages] == [1, 3]
        assert result.metadata["failed_pages"] == [2]
        assert progress == sorted(progress)
        assert progress[-1] == 100

    def test_processing_failure_message(self):
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource

        errors = []
        result = DocumentAssembler(
            ocr_runner=FakeOCRRunner(error=RuntimeError("engine exploded"))
        ).process_document(ImagePageSource([white_page()]), on_error=errors.append)

        assert result is None
        assert errors == ["Failed to process page 1: engine exploded"]

    def test_invalid_pdf(self, tmp_path):
        from pdf_grounding.utils.assembler import DocumentAssembler

        bad_pdf = tmp_path / "broken.pdf"
        bad_pdf.write_bytes(b"not a pdf at all")
        errors = []

        result = DocumentAssembler(ocr_runner=FakeOCRRunner()).process_pdf(bad_pdf, on_error=errors.append)

        assert result is None
        assert errors == ["Failed to load PDF document. Please ensure the file is a valid PDF."]

    def test_missing_pdf(self, tmp_path):
        from pdf_grounding.utils.assembler import DocumentAssembler, DOCUMENT_LOAD_ERROR

        errors = []
        result = DocumentAssembler().process_pdf(tmp_path / "missing.pdf", on_error=errors.append)

        assert result is None
        assert errors == [DOCUMENT_LOAD_ERROR]


class TestDegradedSources:
    """Pages still process when one source is unusable."""

    @staticmethod
    def missing_tesseract(ocr_config):
        raise ImportError("Tesseract not available")

    def test_missing_ocr_engine_keeps_native_text(self):
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource
        from pdf_grounding.utils.ocr_text import OCRRunner

        errors = []
        result = DocumentAssembler(
            ocr_runner=OCRRunner(engine_factory=self.missing_tesseract)
        ).process_document(
            ImagePageSource([white_page()], text_layers=[make_text_layer(["Hello", "world"])]),
            on_error=errors.append
        )

        assert errors == []
        assert result.text == "Hello world"

    def test_missing_ocr_engine_in_ocr_only_mode(self):
        """The OCR-only path ends in the placeholder instead of failing."""
        from pdf_grounding.config import PipelineConfig
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource
        from pdf_grounding.utils.ocr_text import OCRRunner

        errors = []
        result = DocumentAssembler(
            PipelineConfig(extraction_mode="ocr_only"),
            ocr_runner=OCRRunner(engine_factory=self.missing_tesseract)
        ).process_document(ImagePageSource([white_page()]), on_error=errors.append)

        assert errors == []
        assert result.text == "No text detected"

    def test_vision_reply_with_bad_confidences(self, monkeypatch):
        """Non-numeric confidences fall back to defaults and the page keeps vision."""
        import requests
        from pdf_grounding.config import VisionConfig
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource
        from pdf_grounding.utils.vision import VisionModelClient

        reply = json.dumps({
            "text": "Hello world",
            "confidence": "0.9x",
            "elements": [{"type": "title", "content": "Hello world", "confidence": "high"}]
        })

        class Reply:
            status_code = 200

            def raise_for_status(self):
                pass

            def json(self):
                return {"choices": [{"message": {"content": reply}}]}

        monkeypatch.setattr(requests, "post", lambda *a, **kw: Reply())

        errors = []
        result = DocumentAssembler(
            ocr_runner=FakeOCRRunner(),
            vision_client=VisionModelClient(VisionConfig(base_url="http://localhost:1234/v1"))
        ).process_document(
            ImagePageSource([white_page()], text_layers=[make_text_layer(["Hello", "world"])]),
            on_error=errors.append
        )

        assert errors == []
        assert result.text == "Hello world"
        assert result.chunks[0].chunk_type.value == "title"
        assert result.ir_pages[0].coverage.coverage_percent == pytest.approx(95.0)


class TestExtractionSession:
    """Test the page accumulator."""

    def make_page(self, n):
        from pdf_grounding.utils.assembler import LegacyPageData
        from pdf_grounding.utils.layout import IRPage

        return LegacyPageData(n, "data:,"), IRPage(n, 10, 10)

    def test_out_of_order_pages_sorted(self):
        from pdf_grounding.utils.assembler import ExtractionSession

        session = ExtractionSession(total_pages=3)
        assert session.expected_next == 1

        session.add_page(*self.make_page(3))
        assert session.expected_next == 1
        session.add_page(*self.make_page(1))
        assert session.expected_next == 2
        session.add_page(*self.make_page(2))

        assert [p.page_number for p in session.pages] == [1, 2, 3]
        assert [p.page_number for p in session.ir_pages] == [1, 2, 3]
        assert session.is_complete
        assert session.is_last_page(3)
        assert not session.is_last_page(2)

    def test_reset(self):
        from pdf_grounding.utils.assembler import ExtractionSession

        session = ExtractionSession(total_pages=2)
        session.add_page(*self.make_page(1))
        session.mark_failed(2)
        session.reset()

        assert session.pages == []
        assert session.failed_pages == []
        assert session.expected_next == 1


class TestExport:
    """Test writing results to disk."""

    def test_export_all(self, tmp_path):
        from pdf_grounding.utils.assembler import DocumentAssembler
        from pdf_grounding.utils.io import ImagePageSource
        from pdf_grounding.utils.export import DocumentExporter

        result = DocumentAssembler(ocr_runner=FakeOCRRunner()).process_document(
            ImagePageSource([white_page()], text_layers=[make_text_layer(["Exported", "words"])])
        )
        paths = DocumentExporter(tmp_path, "document").export(result, ["all"])

        assert set(paths) == {"json", "markdown", "pages"}
        data = json.loads((tmp_path / "document.json").read_text(encoding="utf-8"))
        assert data["text"] == "Exported words"
        assert data["intermediate_representation"]["documentMetrics"]["totalWords"] == 2
        assert data["chunks"][0]["chunk_type"] == "text"

        assert (tmp_path / "document.md").read_text(encoding="utf-8") == "Exported words"

        pages = json.loads((tmp_path / "pages.json").read_text(encoding="utf-8"))
        assert pages[0]["pageNumber"] == 1
        assert pages[0]["textChunks"][0]["geometry"]["x"] > 0

    def test_markdown_list_and_header(self):
        from pdf_grounding.utils.export import MarkdownExporter
        from pdf_grounding.utils.assembler import TextChunk, ChunkType
        from pdf_grounding.utils.coordinates import Grounding, GroundingBox

        grounding = Grounding(GroundingBox(0, 0, 1, 1), 1)
        chunks = [
            TextChunk("a", "Section", ChunkType.HEADER, 0.9, grounding, 1),
            TextChunk("b", "first\nsecond", ChunkType.LIST, 0.9, grounding, 1),
            TextChunk("c", "first", ChunkType.TEXT, 0.9, grounding, 1, granularity="word"),
        ]

        assert MarkdownExporter().render(chunks) == "## Section\n\n- first\n- second"


class TestCLI:
    """Test command-line configuration."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ("PDF_GROUNDING_VISION_URL", "PDF_GROUNDING_VISION_MODEL",
                     "PDF_GROUNDING_VISION_API_KEY", "PDF_GROUNDING_MODE",
                     "PDF_GROUNDING_DEBUG", "TESSERACT_LANG"):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        from pdf_grounding.cli import setup_argparser, build_config

        args = setup_argparser().parse_args(["--input", "a.pdf", "--output", "out"])
        config = build_config(args)

        assert config.extraction_mode == "enhanced"
        assert config.render_dpi == 144
        assert config.vision.is_configured is False
        assert args.format == ["json", "markdown"]

    def test_overrides(self):
        from pdf_grounding.cli import setup_argparser, build_config

        args = setup_argparser().parse_args([
            "--input", "a.pdf", "--output", "out",
            "--mode", "ocr_only", "--dpi", "200", "--api-key", "k",
            "--vision-model", "local-vl", "--continue-on-error"
        ])
        config = build_config(args)

        assert config.extraction_mode == "ocr_only"
        assert config.render_dpi == 200
        assert config.continue_on_error is True
        assert config.vision.base_url == "https://api.openai.com/v1"
        assert config.vision.model == "local-vl"
        assert config.vision.is_configured is True

    def test_no_vision(self, monkeypatch):
        from pdf_grounding.cli import setup_argparser, build_config

        monkeypatch.setenv("PDF_GROUNDING_VISION_URL", "http://localhost:1234/v1")
        args = setup_argparser().parse_args(["-i", "a.pdf", "-o", "out", "--no-vision"])
        config = build_config(args)

        assert config.vision.base_url == "http://localhost:1234/v1"
        assert config.vision.is_configured is False

    def test_environment(self, monkeypatch):
        from pdf_grounding.config import get_config

        monkeypatch.setenv("PDF_GROUNDING_MODE", "OCR_ONLY")
        monkeypatch.setenv("PDF_GROUNDING_DEBUG", "true")
        monkeypatch.setenv("TESSERACT_LANG", "deu")
        config = get_config()

        assert config.extraction_mode == "ocr_only"
        assert config.debug_mode is True
        assert config.ocr.tesseract_lang == "deu"

    def test_page_range(self):
        from pdf_grounding.utils.io import parse_page_range

        assert parse_page_range("1-3,5,9", 6) == [1, 2, 3, 5]
        assert parse_page_range(None, 2) == [1, 2]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
