"""
Vision-language model extractor.

Sends a rendered page to an OpenAI-compatible chat-completions endpoint
and parses two kinds of answers:
- plain text extraction with a self-reported confidence
- a structural breakdown (typed elements plus the complete page text)

The model returns no geometry. Positions for its text, when needed, are
synthesized by the reconciliation engine.
"""

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

import requests

from ..config import VisionConfig, DEFAULT_VISION_URL

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

TEXT_EXTRACTION_PROMPT = """
Read this PDF page image and transcribe every piece of visible text as precisely as possible.

Include body text, titles and headings, footnotes, captions, page numbers,
table cells, form fields, stamps and watermarks. Keep the original line
breaks and reading order.

Answer with one JSON object:
{
  "text": "all text on the page, line breaks preserved",
  "structuredData": {
    "title": "main title if any",
    "headings": ["..."],
    "paragraphs": ["..."],
    "tables": ["..."],
    "lists": ["..."]
  },
  "confidence": 0.98
}

Do not leave out small elements such as page numbers or footnotes.
"""

STRUCTURE_PROMPT = """
Describe the structure of this document page.

Answer with one JSON object:
{
  "layout": "single-column, multi-column, mixed, ...",
  "elements": [
    {
      "type": "header|paragraph|title|table|list|footer|image|caption",
      "content": "text of the element",
      "confidence": 0.95
    }
  ],
  "completeText": "every visible piece of text, including captions, footers and page numbers"
}

List small elements (captions, footnotes, page numbers, running headers and footers) as well.
"""


# ============================================================================
# Errors
# ============================================================================

class VisionModelError(Exception):
    """A vision-model request failed."""

    SERVICE_UNAVAILABLE = "service_unavailable"
    CLIENT_ERROR = "client_error"
    UNKNOWN = "unknown"

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @property
    def failure_class(self) -> str:
        """Classify the failure for logging: rate-limit/busy, client, or unknown."""
        if self.status is None:
            return self.UNKNOWN
        if self.status == 429 or self.status >= 500:
            return self.SERVICE_UNAVAILABLE
        if 400 <= self.status < 500:
            return self.CLIENT_ERROR
        return self.UNKNOWN


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class VisionTextResult:
    """Plain text extracted by the vision model."""
    text: str
    confidence: float
    structured_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "structuredData": self.structured_data
        }


@dataclass
class StructuralElement:
    """One typed element of the page structure."""
    element_type: str
    content: str
    confidence: float = 0.7

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.element_type,
            "content": self.content,
            "confidence": self.confidence
        }


@dataclass
class DocumentStructure:
    """Structural breakdown of a page."""
    layout: str
    elements: List[StructuralElement]
    complete_text: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "layout": self.layout,
            "elements": [e.to_dict() for e in self.elements],
            "completeText": self.complete_text
        }


def _empty_structured_data(text: str) -> Dict[str, Any]:
    return {"headings": [], "paragraphs": [text], "tables": [], "lists": []}


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Parse the outermost {...} span of a model reply, if any."""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def coerce_confidence(value: Any, default: float) -> float:
    """Read a reply confidence, keeping the default for missing or non-numeric values."""
    if not value or isinstance(value, bool):
        return default
    try:
        confidence = float(value)
    except (ValueError, TypeError):
        logger.debug(f"Ignoring non-numeric confidence {value!r}")
        return default
    return confidence if math.isfinite(confidence) else default


def coerce_text(value: Any) -> str:
    """Reply text fields must be strings; anything else counts as missing."""
    return value if isinstance(value, str) else ""


def parse_text_reply(reply: str) -> VisionTextResult:
    """Interpret a text-extraction reply, falling back to the raw text."""
    parsed = extract_json_object(reply)
    if parsed is not None:
        structured_data = parsed.get("structuredData")
        return VisionTextResult(
            text=coerce_text(parsed.get("text")) or reply,
            confidence=coerce_confidence(parsed.get("confidence"), 0.95),
            structured_data=(structured_data if isinstance(structured_data, dict)
                             else _empty_structured_data(reply))
        )

    logger.warning("Could not parse vision reply as JSON, using raw text")
    return VisionTextResult(
        text=reply,
        confidence=0.85,
        structured_data=_empty_structured_data(reply)
    )


def _parse_elements(raw: Any) -> List[StructuralElement]:
    elements = []
    if not isinstance(raw, list):
        return elements
    for item in raw:
        if not isinstance(item, dict):
            continue
        elements.append(StructuralElement(
            element_type=coerce_text(item.get("type")) or "paragraph",
            content=coerce_text(item.get("content")),
            confidence=coerce_confidence(item.get("confidence"), 0.7)
        ))
    return elements


def parse_structure_reply(reply: str, fallback_text: Optional[str] = None) -> DocumentStructure:
    """
    Interpret a structure reply.

    completeText falls back to `fallback_text`, then to the joined element
    contents, then to the raw reply.
    """
    parsed = extract_json_object(reply)
    if parsed is not None:
        elements = _parse_elements(parsed.get("elements"))
        complete_text = coerce_text(parsed.get("completeText"))
        if not complete_text and fallback_text:
            complete_text = fallback_text
        if not complete_text and elements:
            complete_text = "\n".join(e.content for e in elements).strip()
        if not complete_text:
            complete_text = reply

        if not elements:
            elements = [StructuralElement("paragraph", complete_text, 0.7)]

        return DocumentStructure(
            layout=coerce_text(parsed.get("layout")) or "single-column",
            elements=elements,
            complete_text=complete_text
        )

    logger.warning("Could not parse structure reply, using fallback text")
    complete_text = fallback_text or reply
    return DocumentStructure(
        layout="single-column",
        elements=[StructuralElement("paragraph", complete_text, 0.7)],
        complete_text=complete_text
    )


def _fallback_structure(fallback_text: Optional[str]) -> DocumentStructure:
    complete_text = fallback_text or ""
    return DocumentStructure(
        layout="single-column",
        elements=[StructuralElement("paragraph", complete_text, 0.5)],
        complete_text=complete_text
    )


# ============================================================================
# Client
# ============================================================================

class VisionModelClient:
    """Client for an OpenAI-compatible vision endpoint."""

    def __init__(self, config: Optional[VisionConfig] = None):
        self.config = config or VisionConfig()
        self.base_url = (self.config.base_url or DEFAULT_VISION_URL).rstrip("/")

    def _complete(self, prompt: str, image_data_url: str, api_key: Optional[str] = None) -> str:
        """Send one prompt plus image; returns the assistant text."""
        url = f"{self.base_url}/chat/completions"
        headers = {"Content-Type": "application/json"}
        key = api_key or self.config.api_key
        if key:
            headers["Authorization"] = f"Bearer {key}"

        payload = {
            "model": self.config.model,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_data_url}}
                    ]
                }
            ]
        }

        try:
            response = requests.post(
                url,
                headers=headers,
                json=payload,
                timeout=self.config.timeout
            )
            response.raise_for_status()
            body = response.json()
            content = body["choices"][0]["message"]["content"] or ""
            if not isinstance(content, str):
                raise TypeError(f"content is {type(content).__name__}, not text")
            return content
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise VisionModelError(f"Vision API error {status}: {e}", status=status) from e
        except requests.exceptions.RequestException as e:
            raise VisionModelError(f"Vision API request failed: {e}") from e
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise VisionModelError(f"Malformed vision API response: {e}") from e

    def extract_text(self, image_data_url: str, api_key: Optional[str] = None) -> VisionTextResult:
        """
        Extract all text of a page image.

        Raises:
            VisionModelError: If the request fails for any reason
        """
        reply = self._complete(TEXT_EXTRACTION_PROMPT, image_data_url, api_key)
        try:
            result = parse_text_reply(reply)
        except (ValueError, TypeError, AttributeError) as e:
            raise VisionModelError(f"Unusable vision reply: {e}") from e
        logger.info(f"Vision model extracted {len(result.text)} characters "
                    f"with {result.confidence:.1%} confidence")
        return result

    def analyze_structure(
        self,
        image_data_url: str,
        fallback_text: Optional[str] = None,
        api_key: Optional[str] = None
    ) -> DocumentStructure:
        """
        Describe the structure of a page image.

        Never raises: on a failed request or an unusable reply the fallback
        text is kept as a single low-confidence paragraph.
        """
        try:
            reply = self._complete(STRUCTURE_PROMPT, image_data_url, api_key)
        except VisionModelError as e:
            logger.warning(f"Structure analysis failed ({e.failure_class}): {e}")
            return _fallback_structure(fallback_text)

        try:
            return parse_structure_reply(reply, fallback_text)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Structure reply could not be interpreted: {e}")
            return _fallback_structure(fallback_text)
