#!/usr/bin/env python
"""
Command-line interface for the PDF grounding pipeline.

Usage:
    pdf-grounding --input <pdf_or_image> --output <output_dir> [options]

Examples:
    # Process a PDF with a vision model endpoint
    pdf-grounding --input document.pdf --output ./output --vision-url http://localhost:1234/v1

    # OCR only, no vision model
    pdf-grounding --input document.pdf --output ./output --mode ocr_only
"""

import sys
import argparse
import logging
import time
from pathlib import Path
from typing import List

from pdf_grounding import __version__
from pdf_grounding.config import LOG_FORMAT, EXTRACTION_MODES, DEFAULT_VISION_URL, get_config

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT
)
logger = logging.getLogger("pdf_grounding")


def setup_argparser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        description="PDF Grounding Pipeline - Extract positioned, typed text from PDFs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Process a PDF and export everything:
    pdf-grounding --input document.pdf --output ./output --format all

  Use a local OpenAI-compatible vision server:
    pdf-grounding --input document.pdf --output ./output --vision-url http://localhost:1234/v1

  OCR only, specific pages:
    pdf-grounding --input document.pdf --output ./output --mode ocr_only --pages 1-5
        """
    )

    # Required arguments
    parser.add_argument(
        "--input", "-i",
        required=True,
        help="Input PDF file, image, or folder of images"
    )

    parser.add_argument(
        "--output", "-o",
        required=True,
        help="Output directory for generated files"
    )

    # Optional arguments
    parser.add_argument(
        "--format", "-f",
        nargs="+",
        default=["json", "markdown"],
        choices=["json", "markdown", "pages", "all"],
        help="Output format(s) (default: json markdown)"
    )

    parser.add_argument(
        "--dpi",
        type=int,
        default=None,
        help="DPI for PDF page rendering (default: 144)"
    )

    parser.add_argument(
        "--pages",
        type=str,
        default=None,
        help="Page range to process, e.g., '1-5' or '1,3,5' (default: all)"
    )

    parser.add_argument(
        "--mode",
        choices=list(EXTRACTION_MODES),
        default=None,
        help="Extraction mode (default: enhanced)"
    )

    parser.add_argument(
        "--no-vision",
        action="store_true",
        help="Disable the vision model (native text and OCR only)"
    )

    parser.add_argument(
        "--vision-url",
        default=None,
        help=f"OpenAI-compatible API base URL (default: {DEFAULT_VISION_URL} when an API key is set)"
    )

    parser.add_argument(
        "--vision-model",
        default=None,
        help="Vision model name"
    )

    parser.add_argument(
        "--api-key",
        default=None,
        help="API key for the vision endpoint"
    )

    parser.add_argument(
        "--continue-on-error",
        action="store_true",
        help="Keep processing later pages after a page fails"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def check_dependencies() -> bool:
    """Check if required dependencies are available."""
    missing = []
    optional_missing = []

    try:
        import cv2
    except ImportError:
        missing.append("opencv-python")

    try:
        import numpy
    except ImportError:
        missing.append("numpy")

    try:
        import pytesseract
        try:
            pytesseract.get_tesseract_version()
        except Exception:
            missing.append("tesseract-ocr (system package)")
    except ImportError:
        missing.append("pytesseract")

    try:
        import pdf2image
    except ImportError:
        optional_missing.append("pdf2image (for PDF support)")

    try:
        import fitz
    except ImportError:
        optional_missing.append("PyMuPDF (for native PDF text)")

    if missing:
        logger.error("Missing required dependencies:")
        for dep in missing:
            logger.error(f"  - {dep}")
        logger.error("\nInstall with: pip install -e .")
        return False

    if optional_missing:
        logger.warning("Missing optional dependencies (some features may be limited):")
        for dep in optional_missing:
            logger.warning(f"  - {dep}")

    return True


def build_config(args):
    """Pipeline configuration from environment plus command-line overrides."""
    config = get_config()

    if args.mode:
        config.extraction_mode = args.mode
    if args.dpi:
        config.render_dpi = args.dpi
    if args.continue_on_error:
        config.continue_on_error = True
    if args.verbose:
        config.debug_mode = True

    if args.api_key:
        config.vision.api_key = args.api_key
    if args.vision_url:
        config.vision.base_url = args.vision_url
    elif config.vision.api_key and not config.vision.base_url:
        config.vision.base_url = DEFAULT_VISION_URL
    if args.vision_model:
        config.vision.model = args.vision_model
    if args.no_vision:
        config.vision.enabled = False

    return config


def run_pipeline(args) -> int:
    """Run the PDF grounding pipeline."""
    from pdf_grounding.utils.io import (
        PdfPageSource, ImagePageSource, DocumentLoadError,
        detect_input_type, ensure_dir, parse_page_range
    )
    from pdf_grounding.utils.assembler import DocumentAssembler, DOCUMENT_LOAD_ERROR
    from pdf_grounding.utils.export import DocumentExporter

    start_time = time.time()
    config = build_config(args)

    output_dir = Path(args.output)
    ensure_dir(output_dir)

    input_path = Path(args.input)
    input_type = detect_input_type(input_path)
    logger.info(f"Input type detected: {input_type}")

    if input_type == "pdf":
        try:
            source = PdfPageSource(input_path, dpi=config.render_dpi)
        except (FileNotFoundError, DocumentLoadError) as e:
            logger.debug(f"PDF load error: {e}")
            logger.error(DOCUMENT_LOAD_ERROR)
            return 1
    elif input_type == "image":
        source = ImagePageSource([input_path])
    elif input_type == "image_folder":
        source = ImagePageSource.from_folder(input_path)
    else:
        logger.error(f"Unsupported input type: {input_type}")
        return 1

    logger.info(f"Document has {source.page_count} page(s)")

    pages = None
    if args.pages:
        pages = parse_page_range(args.pages, source.page_count)
        if not pages:
            logger.error(f"No pages selected by range '{args.pages}'")
            return 1
        logger.info(f"Processing pages: {pages}")

    if config.vision.enabled and not config.vision.is_configured:
        logger.info("No vision endpoint configured, using native text and OCR only")

    errors: List[str] = []
    assembler = DocumentAssembler(config)

    logger.info("Processing document...")
    result = assembler.process_document(
        source,
        on_progress=lambda pct: logger.debug(f"Progress: {pct:.1f}%"),
        on_error=errors.append,
        pages=pages
    )

    if result is None:
        logger.error("Processing failed")
        return 1

    if input_type == "pdf":
        result.metadata["source_file"] = str(input_path)

    exporter = DocumentExporter(output_dir, "document")
    export_results = exporter.export(result, args.format)
    for fmt, path in export_results.items():
        logger.info(f"Exported {fmt}: {path}")

    # Print summary
    elapsed = time.time() - start_time
    metrics = result.document_metrics
    method_coverage = result.metadata["coverage_metrics"]["method_coverage"]

    if not args.quiet:
        print("\n" + "="*60)
        print("PDF GROUNDING COMPLETE")
        print("="*60)
        print(f"Source: {input_path}")
        print(f"Output: {output_dir}")
        print(f"Pages processed: {len(result.pages)}")
        print(f"Processing time: {elapsed:.2f}s")
        print()
        print("Metrics:")
        print(f"  Words: {metrics.total_words}")
        print(f"  Lines: {metrics.total_lines}")
        print(f"  Blocks: {metrics.total_blocks}")
        print(f"  Chunks: {len(result.chunks)}")
        print(f"  Sources: {', '.join(metrics.extraction_methods)}")
        print(f"  Word share: native {method_coverage['native']:.1f}%, "
              f"ocr {method_coverage['ocr']:.1f}%, "
              f"synthesized {method_coverage['synthesized']:.1f}%")
        if errors:
            print(f"  Failed pages: {len(errors)}")
        print("="*60)

    return 0


def main():
    """Main entry point."""
    parser = setup_argparser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.ERROR)

    if not check_dependencies():
        sys.exit(1)

    try:
        exit_code = run_pipeline(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args.verbose:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()
