"""
PDF Grounding Pipeline
======================

Extracts text from PDF pages together with its position on the page, so
every piece of extracted text can be traced back to a region of the
rendered image.

Main components:
- Native PDF text layer reading
- Tesseract OCR with a page-segmentation ladder
- Vision-language model text and structure extraction
- Reconciliation into words, lines and typed blocks
- Grounded text chunks, Markdown and JSON export
"""

__version__ = "1.0.0"
__author__ = "PDF Grounding Team"
