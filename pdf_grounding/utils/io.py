"""
I/O utilities for the PDF grounding pipeline.

Handles:
- Page sources (PDF rendering one page at a time, in-memory images)
- Image loading and data-URL encoding
- JSON serialization
- Directory management
"""

import base64
import json
import logging
from pathlib import Path
from typing import List, Union, Optional, Any, Sequence
from dataclasses import dataclass, asdict

import numpy as np

from .native_text import NativeTextLayer, load_text_layer

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.tiff', '.tif', '.bmp')


# ============================================================================
# Errors
# ============================================================================

class PageLoadError(Exception):
    """A page could not be rendered."""

    def __init__(self, page_number: int, message: str):
        super().__init__(message)
        self.page_number = page_number


class DocumentLoadError(Exception):
    """The document itself could not be opened."""


# ============================================================================
# Page Sources
# ============================================================================

@dataclass
class RenderedPage:
    """A rasterized page plus its embedded text layer, if any."""
    page_number: int
    image: np.ndarray
    text_layer: Optional[NativeTextLayer] = None

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


class PageSource:
    """Base class for anything that yields rendered pages by number."""

    @property
    def page_count(self) -> int:
        raise NotImplementedError

    def render_page(self, page_number: int) -> RenderedPage:
        raise NotImplementedError


class PdfPageSource(PageSource):
    """
    Renders PDF pages on demand with pdf2image (poppler backend).

    Only one page is rasterized per call, so large documents are never
    fully held in memory.
    """

    def __init__(self, pdf_path: Union[str, Path], dpi: int = 144):
        self.pdf_path = Path(pdf_path)
        if not self.pdf_path.exists():
            raise FileNotFoundError(f"PDF file not found: {self.pdf_path}")
        self.dpi = dpi
        self._page_count = self._read_page_count()

    def _read_page_count(self) -> int:
        try:
            from pdf2image import pdfinfo_from_path
            info = pdfinfo_from_path(str(self.pdf_path))
        except Exception as e:
            raise DocumentLoadError(f"Could not open PDF {self.pdf_path}: {e}") from e

        pages = int(info.get('Pages', 0))
        if pages <= 0:
            raise DocumentLoadError(f"PDF has no pages: {self.pdf_path}")
        return pages

    @property
    def page_count(self) -> int:
        return self._page_count

    def render_page(self, page_number: int) -> RenderedPage:
        """
        Rasterize one page and read its text layer.

        Raises:
            PageLoadError: If the page cannot be rendered
        """
        try:
            from pdf2image import convert_from_path
            pil_images = convert_from_path(
                str(self.pdf_path),
                dpi=self.dpi,
                first_page=page_number,
                last_page=page_number,
                fmt='png'
            )
        except Exception as e:
            raise PageLoadError(page_number, str(e)) from e

        if not pil_images:
            raise PageLoadError(page_number, "renderer returned no image")

        # RGB -> BGR for OpenCV compatibility
        img_array = np.array(pil_images[0])
        if len(img_array.shape) == 3 and img_array.shape[2] == 3:
            img_array = img_array[:, :, ::-1].copy()

        logger.debug(f"Rendered page {page_number} at {self.dpi} DPI, shape {img_array.shape}")
        return RenderedPage(
            page_number=page_number,
            image=img_array,
            text_layer=load_text_layer(self.pdf_path, page_number)
        )


class ImagePageSource(PageSource):
    """Pages from in-memory images or image files, with optional text layers."""

    def __init__(
        self,
        images: Sequence[Union[np.ndarray, str, Path]],
        text_layers: Optional[Sequence[Optional[NativeTextLayer]]] = None
    ):
        self.images = list(images)
        self.text_layers = list(text_layers) if text_layers is not None else []

    @classmethod
    def from_folder(cls, folder_path: Union[str, Path]) -> "ImagePageSource":
        folder_path = Path(folder_path)
        if not folder_path.is_dir():
            raise NotADirectoryError(f"Not a directory: {folder_path}")
        files = sorted(f for f in folder_path.iterdir() if f.suffix.lower() in IMAGE_EXTENSIONS)
        logger.info(f"Found {len(files)} images in {folder_path}")
        return cls(files)

    @property
    def page_count(self) -> int:
        return len(self.images)

    def render_page(self, page_number: int) -> RenderedPage:
        if not 1 <= page_number <= len(self.images):
            raise PageLoadError(page_number, f"page out of range 1-{len(self.images)}")

        image = self.images[page_number - 1]
        if not isinstance(image, np.ndarray):
            try:
                image = load_image(image)
            except (FileNotFoundError, ValueError) as e:
                raise PageLoadError(page_number, str(e)) from e

        layer = None
        if page_number <= len(self.text_layers):
            layer = self.text_layers[page_number - 1]

        return RenderedPage(page_number=page_number, image=image, text_layer=layer)


# ============================================================================
# Image Loading and Encoding
# ============================================================================

def load_image(image_path: Union[str, Path]) -> np.ndarray:
    """
    Load an image from file.

    Raises:
        FileNotFoundError: If image file doesn't exist
        ValueError: If image cannot be decoded
    """
    import cv2

    image_path = Path(image_path)
    if not image_path.exists():
        raise FileNotFoundError(f"Image file not found: {image_path}")

    img = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
    if img is None:
        raise ValueError(f"Could not decode image: {image_path}")

    logger.debug(f"Loaded image: {image_path}, shape: {img.shape}")
    return img


def encode_data_url(image: np.ndarray, fmt: str = "jpeg", quality: int = 80) -> str:
    """
    Encode an image as a base64 data URL.

    Args:
        image: BGR or grayscale image
        fmt: "jpeg" or "png"
        quality: JPEG quality (1-100), ignored for PNG
    """
    import cv2

    fmt = fmt.lower()
    if fmt in ("jpeg", "jpg"):
        ok, buffer = cv2.imencode('.jpg', image, [cv2.IMWRITE_JPEG_QUALITY, quality])
        mime = "image/jpeg"
    else:
        ok, buffer = cv2.imencode('.png', image)
        mime = "image/png"

    if not ok:
        raise ValueError(f"Could not encode image as {fmt}")

    encoded = base64.b64encode(buffer.tobytes()).decode('ascii')
    return f"data:{mime};base64,{encoded}"


# ============================================================================
# JSON Serialization
# ============================================================================

class EnhancedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy values, dataclasses and paths."""

    def default(self, obj):
        if hasattr(obj, 'to_dict'):
            return obj.to_dict()
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if hasattr(obj, '__dataclass_fields__'):
            return asdict(obj)
        if isinstance(obj, Path):
            return str(obj)
        return super().default(obj)


def save_json(
    data: Any,
    output_path: Union[str, Path],
    indent: int = 2,
    ensure_ascii: bool = False
) -> Path:
    """Save data to a JSON file, creating parent directories."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent, ensure_ascii=ensure_ascii, cls=EnhancedJSONEncoder)

    logger.debug(f"Saved JSON: {output_path}")
    return output_path


# ============================================================================
# Directory Management
# ============================================================================

def ensure_dir(path: Union[str, Path]) -> Path:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


# ============================================================================
# File Type Detection
# ============================================================================

def detect_input_type(input_path: Union[str, Path]) -> str:
    """
    Detect the type of input file or directory.

    Returns:
        One of: 'pdf', 'image', 'image_folder', 'unknown'
    """
    input_path = Path(input_path)

    if input_path.is_dir():
        has_images = any(
            f.suffix.lower() in IMAGE_EXTENSIONS
            for f in input_path.iterdir()
        )
        return 'image_folder' if has_images else 'unknown'

    if not input_path.exists():
        return 'unknown'

    suffix = input_path.suffix.lower()
    if suffix == '.pdf':
        return 'pdf'
    elif suffix in IMAGE_EXTENSIONS:
        return 'image'

    return 'unknown'


def parse_page_range(page_str: Optional[str], page_count: int) -> List[int]:
    """
    Parse a page selection like "1-3,5" into sorted page numbers.

    None or an empty string selects every page. Numbers outside
    1..page_count are dropped.
    """
    if not page_str:
        return list(range(1, page_count + 1))

    pages = set()
    for part in page_str.split(','):
        part = part.strip()
        if not part:
            continue
        if '-' in part:
            start, end = part.split('-', 1)
            pages.update(range(int(start), int(end) + 1))
        else:
            pages.add(int(part))

    return sorted(p for p in pages if 1 <= p <= page_count)
