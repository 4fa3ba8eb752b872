from io import BytesIO

import fitz
from PIL import Image

from app.utils.image_processing import is_pdf, prepare_for_ocr, preprocess_image


def _png(size=(3000, 1000), color=(200, 30, 30)):
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def test_preprocess_image_bounds_and_grayscales():
    out = preprocess_image(_png())
    with Image.open(BytesIO(out)) as img:
        assert img.format == "JPEG"
        assert img.mode == "L"
        assert img.size == (2000, 666)


def test_small_image_keeps_its_size():
    with Image.open(BytesIO(preprocess_image(_png((400, 300))))) as img:
        assert img.size == (400, 300)


def test_unreadable_payload_is_returned_unchanged():
    assert preprocess_image(b"not an image") == b"not an image"


def test_pdf_is_rasterised():
    doc = fitz.open()
    page = doc.new_page(width=200, height=300)
    page.insert_text((20, 40), "Total 12.00")
    data = doc.tobytes()
    doc.close()

    assert is_pdf(data)
    assert is_pdf(b"", "scan.PDF")
    with Image.open(BytesIO(prepare_for_ocr(data, "scan.pdf"))) as img:
        assert img.format == "JPEG"
        assert img.size == (400, 600)
