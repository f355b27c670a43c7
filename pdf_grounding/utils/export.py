"""
Export module for the PDF grounding pipeline.

Provides:
- Markdown rendering from grounded chunks
- JSON export of the full extraction result and per-page viewer data
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, List, Union, Sequence

from .io import save_json

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "markdown", "pages")


# ============================================================================
# Markdown Exporter
# ============================================================================

class MarkdownExporter:
    """Export grounded chunks to Markdown."""

    def __init__(self, separator: str = "\n\n"):
        self.separator = separator

    def render(self, chunks: Sequence[Any]) -> str:
        """
        Render block-level chunks; word-level chunks are skipped.

        Titles become `#` headings, headers `##` headings, list chunks one
        `-` item per line, and everything else plain text.
        """
        parts = []
        for chunk in chunks:
            if getattr(chunk, "granularity", "block") != "block":
                continue
            md = self._chunk_to_markdown(chunk)
            if md:
                parts.append(md)
        return self.separator.join(parts)

    def _chunk_to_markdown(self, chunk: Any) -> str:
        chunk_type = chunk.chunk_type if isinstance(chunk.chunk_type, str) else chunk.chunk_type.value

        if chunk_type == "title":
            return f"# {chunk.text}"
        elif chunk_type == "header":
            return f"## {chunk.text}"
        elif chunk_type == "list":
            return "\n".join(f"- {item}" for item in chunk.text.split("\n"))
        return chunk.text

    def export(self, result: Any, output_path: Union[str, Path]) -> Path:
        """Write a result's Markdown to a file."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        markdown = result.markdown if getattr(result, "markdown", None) else self.render(result.chunks)

        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(markdown)

        logger.info(f"Exported Markdown to: {output_path}")
        return output_path


# ============================================================================
# Multi-Format Exporter
# ============================================================================

class DocumentExporter:
    """Convenience class for exporting to multiple formats."""

    def __init__(
        self,
        output_dir: Union[str, Path],
        base_name: str = "document"
    ):
        self.output_dir = Path(output_dir)
        self.base_name = base_name

        self.markdown_exporter = MarkdownExporter()

    def export(
        self,
        result: Any,
        formats: Optional[List[str]] = None
    ) -> Dict[str, Path]:
        """
        Export an extraction result to multiple formats.

        Args:
            result: ExtractionResult
            formats: List of formats ('json', 'markdown', 'pages', 'all')

        Returns:
            Dictionary mapping format to output path
        """
        if formats is None:
            formats = ["json", "markdown"]

        if "all" in formats:
            formats = list(EXPORT_FORMATS)

        self.output_dir.mkdir(parents=True, exist_ok=True)

        results = {}

        if "json" in formats:
            path = self.output_dir / f"{self.base_name}.json"
            results["json"] = save_json(result.to_dict(), path)
            logger.info(f"Exported JSON to: {path}")

        if "markdown" in formats:
            path = self.output_dir / f"{self.base_name}.md"
            results["markdown"] = self.markdown_exporter.export(result, path)

        if "pages" in formats:
            path = self.output_dir / "pages.json"
            results["pages"] = save_json([p.to_dict() for p in result.pages], path)
            logger.info(f"Exported page data to: {path}")

        return results
