"""
I/O utilities for the QR extraction pipeline.

Handles:
- Decoding image bytes into RGBA pixel buffers
- PDF page rendering (pdf2image / poppler backend)
- Input discovery and type detection
- JSON serialization
"""

import json
import logging
from pathlib import Path
from typing import Any, Iterator, List, Sequence, Tuple, Union
from dataclasses import asdict
from enum import Enum

import numpy as np

from .errors import BufferAcquisitionError
from .images import dimensions, resize, to_rgba

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.webp', '.tiff', '.tif', '.bmp')
MAX_SCANNING_DIMENSION = 4096
ADAPTIVE_SCALING_THRESHOLD = 2048
MAX_UPSCALE = 2.0
# 3x the 72 DPI PDF base resolution
DEFAULT_PDF_DPI = 216


# ============================================================================
# Image Decoding
# ============================================================================

def fit_for_scanning(
    image: np.ndarray,
    max_dimension: int = MAX_SCANNING_DIMENSION,
    upscale_threshold: int = ADAPTIVE_SCALING_THRESHOLD,
    max_upscale: float = MAX_UPSCALE
) -> np.ndarray:
    """
    Rescale a buffer into the range the detectors handle best.

    Large images are shrunk so neither side exceeds ``max_dimension``; images
    with both sides under ``upscale_threshold`` are enlarged by up to
    ``max_upscale``.
    """
    width, height = dimensions(image)

    if width > max_dimension or height > max_dimension:
        scale = min(max_dimension / width, max_dimension / height)
    elif width < upscale_threshold and height < upscale_threshold:
        scale = min(max_upscale, upscale_threshold / max(width, height))
    else:
        return image

    if int(width * scale) < 1 or int(height * scale) < 1:
        return image

    return resize(image, scale)


def decode_image_bytes(
    data: bytes,
    max_dimension: int = MAX_SCANNING_DIMENSION,
    upscale_threshold: int = ADAPTIVE_SCALING_THRESHOLD,
    max_upscale: float = MAX_UPSCALE
) -> np.ndarray:
    """
    Decode an encoded image (PNG, JPEG, WebP, ...) into an RGBA buffer.

    Args:
        data: Raw file contents
        max_dimension: Largest side allowed after scaling
        upscale_threshold: Images smaller than this on both sides are enlarged
        max_upscale: Cap on the enlargement factor

    Returns:
        RGBA pixel buffer ready for detection

    Raises:
        BufferAcquisitionError: If the bytes cannot be decoded
    """
    import cv2

    if not data:
        raise BufferAcquisitionError("Empty image data")

    encoded = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(encoded, cv2.IMREAD_UNCHANGED)

    if img is None:
        raise BufferAcquisitionError("Could not decode image data")

    if img.dtype == np.uint16:
        # 16-bit PNG/TIFF
        img = cv2.convertScaleAbs(img, alpha=255.0 / 65535.0)
    elif img.dtype != np.uint8:
        raise BufferAcquisitionError(f"Unsupported image depth: {img.dtype}")

    if img.ndim == 3 and img.shape[2] == 4:
        rgba = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
    else:
        rgba = to_rgba(img)

    logger.debug(f"Decoded image: {rgba.shape[1]}x{rgba.shape[0]}")
    return fit_for_scanning(rgba, max_dimension, upscale_threshold, max_upscale)


def load_image(image_path: Union[str, Path], **kwargs) -> np.ndarray:
    """
    Load an image file into an RGBA buffer.

    Raises:
        FileNotFoundError: If the file doesn't exist
        BufferAcquisitionError: If the file cannot be decoded
    """
    image_path = Path(image_path)
    if not image_path.exists():
        raise FileNotFoundError(f"Image file not found: {image_path}")

    return decode_image_bytes(image_path.read_bytes(), **kwargs)


# ============================================================================
# PDF Rendering
# ============================================================================

def get_pdf_page_count(pdf_path: Union[str, Path]) -> int:
    """
    Get the number of pages in a PDF file.

    Raises:
        FileNotFoundError: If the PDF doesn't exist
        RuntimeError: If the PDF cannot be parsed
    """
    pdf_path = Path(pdf_path)
    if not pdf_path.exists():
        raise FileNotFoundError(f"PDF file not found: {pdf_path}")

    from pdf2image import pdfinfo_from_path
    from pdf2image.exceptions import PDFPageCountError, PDFSyntaxError

    try:
        info = pdfinfo_from_path(str(pdf_path))
    except (PDFPageCountError, PDFSyntaxError) as e:
        raise RuntimeError(f"Failed to parse PDF: {e}")

    return int(info.get('Pages', 0))


def render_pdf_pages(
    pdf_path: Union[str, Path],
    dpi: int = DEFAULT_PDF_DPI,
    max_dimension: int = MAX_SCANNING_DIMENSION,
    page_count: int = 0
) -> Iterator[Tuple[int, np.ndarray]]:
    """
    Render PDF pages one at a time.

    Args:
        pdf_path: Path to the PDF file
        dpi: Rendering resolution
        max_dimension: Pages larger than this on any side are shrunk to fit
        page_count: Known page count (looked up when 0)

    Yields:
        (page_number, RGBA buffer) with 1-indexed page numbers
    """
    from pdf2image import convert_from_path

    pdf_path = Path(pdf_path)
    total = page_count or get_pdf_page_count(pdf_path)
    logger.info(f"Rendering {total} page(s) from {pdf_path.name} at {dpi} DPI")

    for page_number in range(1, total + 1):
        pil_pages = convert_from_path(
            str(pdf_path),
            dpi=dpi,
            first_page=page_number,
            last_page=page_number,
            fmt='png'
        )
        if not pil_pages:
            logger.warning(f"No image rendered for page {page_number} of {pdf_path.name}")
            continue

        rgba = np.array(pil_pages[0].convert("RGBA"))
        width, height = dimensions(rgba)
        if width > max_dimension or height > max_dimension:
            rgba = resize(rgba, min(max_dimension / width, max_dimension / height))

        yield page_number, rgba


# ============================================================================
# Input Discovery
# ============================================================================

def detect_input_type(input_path: Union[str, Path]) -> str:
    """
    Detect the type of input file or directory.

    Returns:
        One of: 'pdf', 'image', 'image_folder', 'unknown'
    """
    input_path = Path(input_path)

    if input_path.is_dir():
        has_files = any(
            f.suffix.lower() in IMAGE_EXTENSIONS + ('.pdf',)
            for f in input_path.iterdir()
        )
        return 'image_folder' if has_files else 'unknown'

    if not input_path.exists():
        return 'unknown'

    suffix = input_path.suffix.lower()
    if suffix == '.pdf':
        return 'pdf'
    elif suffix in IMAGE_EXTENSIONS:
        return 'image'

    return 'unknown'


def collect_inputs(paths: Sequence[Union[str, Path]]) -> List[Path]:
    """
    Expand files and folders into a sorted list of supported input files.

    Unsupported or missing paths are skipped with a warning.
    """
    files: List[Path] = []
    for raw in paths:
        path = Path(raw)
        input_type = detect_input_type(path)

        if input_type in ('pdf', 'image'):
            files.append(path)
        elif input_type == 'image_folder':
            files.extend(sorted(
                f for f in path.iterdir()
                if f.is_file() and detect_input_type(f) in ('pdf', 'image')
            ))
        else:
            logger.warning(f"Skipping unsupported input: {path}")

    return files


# ============================================================================
# JSON Serialization
# ============================================================================

class EnhancedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy values, enums and dataclasses."""

    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, Enum):
            return obj.value
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
    """
    Save data to a JSON file.

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent, ensure_ascii=ensure_ascii, cls=EnhancedJSONEncoder)

    logger.debug(f"Saved JSON: {output_path}")
    return output_path


def load_json(json_path: Union[str, Path]) -> Any:
    """Load data from a JSON file."""
    json_path = Path(json_path)
    if not json_path.exists():
        raise FileNotFoundError(f"JSON file not found: {json_path}")

    with open(json_path, 'r', encoding='utf-8') as f:
        return json.load(f)


def ensure_dir(path: Union[str, Path]) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path
