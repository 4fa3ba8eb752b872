"""Image preprocessing for OCR uploads.

Receipt photos straight from a phone are large, often rotated via EXIF
and in colour.  The OCR provider accepts up to about 1MB per request on
the free tier and reads grayscale text at least as well, so uploads are
oriented, converted to grayscale, bounded in size and re-encoded as JPEG
before being sent.  PDFs are rasterised to an image of their first page
with PyMuPDF.  If Pillow cannot open the payload the original bytes are
returned unchanged.
"""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Optional

import fitz  # PyMuPDF for PDF rasterization
from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


def is_pdf(data: bytes, filename: str | None = None) -> bool:
    if filename and filename.lower().endswith(".pdf"):
        return True
    return data[:4] == PDF_MAGIC


def render_pdf_first_page(data: bytes, zoom: float = 2.0) -> Optional[bytes]:
    """Render page one of a PDF to PNG bytes, or None if it has no pages."""
    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            if doc.page_count < 1:
                return None
            page = doc.load_page(0)
            pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom))
            return pix.tobytes("png")
    except Exception as e:
        logger.warning("[image] PDF render failed: %s", e)
        return None


def preprocess_image(image_data: bytes, max_size: int = 2000, quality: int = 85) -> bytes:
    """Prepare an image for OCR.

    Applies EXIF orientation, converts to grayscale and resizes the
    longest edge to ``max_size`` pixels while keeping the aspect ratio.

    :param image_data: Raw image bytes
    :param max_size: Maximum size of the longest edge in pixels
    :returns: Processed image bytes in JPEG format
    """
    try:
        with Image.open(BytesIO(image_data)) as img:
            img = ImageOps.exif_transpose(img)
            img = img.convert("L")
            width, height = img.size
            max_dim = max(width, height)
            if max_dim > max_size:
                scale = max_size / float(max_dim)
                img = img.resize((int(width * scale), int(height * scale)))
            buf = BytesIO()
            img.save(buf, format="JPEG", quality=quality)
            return buf.getvalue()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.info("[image] preprocessing skipped: %s", e)
        return image_data


def prepare_for_ocr(data: bytes, filename: str | None = None) -> bytes:
    """Rasterise PDFs, then run :func:`preprocess_image`."""
    if is_pdf(data, filename):
        rendered = render_pdf_first_page(data)
        if rendered is None:
            return data
        data = rendered
    return preprocess_image(data)
