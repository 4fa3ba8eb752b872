"""OCR via the OCR.space HTTP API.

The free ``helloworld`` key works for development; set
``OCR_SPACE_API_KEY`` for real volume.  :func:`ocr_image` never raises:
provider failures come back as a short explanatory text so the pipeline
can surface them (it rejects anything under ten characters anyway).
"""

from __future__ import annotations

import base64
import datetime as dt
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import ProviderError
from app.core.observability import sentry_breadcrumb
from app.utils.image_processing import prepare_for_ocr

logger = logging.getLogger(__name__)

_AMOUNT = re.compile(r"(\d+\.\d{2})")
_FALLBACK_SKIP = re.compile(r"sub\s*total|tax|mocha|latte|pie|milk|venti|grande", re.IGNORECASE)


@dataclass
class OCRResult:
    text: str
    pages: int


def normalize_ocr_text(text: str) -> str:
    """Fix the usual OCR mistakes in amounts."""
    normalized = re.sub(r"(\$?\d+),(\d{2})\b", r"\1.\2", text)
    normalized = re.sub(r"\$\s+(\d)", r"$\1", normalized)
    normalized = re.sub(
        r"\b(total|subtotal|tax|amount|balance)[\s:]+(\d+\.\d{2})",
        r"\1 $\2",
        normalized,
        flags=re.IGNORECASE,
    )
    return normalized


async def _ocr_space_request(image_bytes: bytes) -> dict:
    b64 = base64.b64encode(image_bytes).decode("ascii")
    mime = "image/png" if image_bytes[:8] == b"\x89PNG\r\n\x1a\n" else "image/jpeg"
    form = {
        "base64Image": f"data:{mime};base64,{b64}",
        "language": "eng",
        "isTable": "true",
        "OCREngine": "2",
        "scale": "true",
        "detectOrientation": "true",
    }
    async with httpx.AsyncClient(timeout=settings.OCR_TIMEOUT) as client:
        r = await client.post(
            settings.OCR_SPACE_ENDPOINT,
            headers={"apikey": settings.OCR_SPACE_API_KEY},
            data=form,
        )
    if r.status_code != 200:
        raise ProviderError("ocr.space", f"API error: {r.status_code} {r.reason_phrase}")
    return r.json()


async def ocr_image(data: bytes, filename: str | None = None) -> OCRResult:
    """Extract text from an uploaded image or PDF."""
    try:
        logger.info("[ocr] sending %d bytes to OCR.space", len(data))
        result = await _ocr_space_request(prepare_for_ocr(data, filename))
        if result.get("IsErroredOnProcessing"):
            message = result.get("ErrorMessage") or "OCR processing failed"
            if isinstance(message, list):
                message = "; ".join(str(m) for m in message)
            raise ProviderError("ocr.space", str(message))
        parsed: List[dict] = result.get("ParsedResults") or []
        if not parsed:
            raise ProviderError("ocr.space", "No OCR results returned")

        text = "\n".join(p.get("ParsedText") or "" for p in parsed).strip()
        if len(text) < 10:
            logger.warning("[ocr] extracted text too short (%d chars)", len(text))
        normalized = normalize_ocr_text(text)
        logger.info("[ocr] extracted %d characters", len(normalized))
        return OCRResult(text=normalized, pages=len(parsed))
    except (ProviderError, httpx.HTTPError, ValueError) as e:
        logger.error("[ocr] OCR.space failed: %s", e)
        sentry_breadcrumb("ocr", "ocr failed", level="error", data={"error": str(e)[:200]})
        return OCRResult(
            text=(
                "OCR Processing Error\n"
                "Please try uploading a clearer image.\n"
                f"Error: {e or 'Unknown error'}\n"
                f"Date: {dt.date.today().isoformat()}"
            ),
            pages=1,
        )


def extract_total_from_text(text: str) -> Optional[float]:
    """Pick the grand total out of receipt text.

    Explicit total lines win, provided they are not smaller than a
    subtotal seen earlier.  Otherwise the largest plausible amount after
    the subtotal is used, and failing that the subtotal plus 10% tax.
    """
    lines = re.split(r"\r?\n", normalize_ocr_text(text))
    total: Optional[float] = None
    subtotal: Optional[float] = None
    subtotal_index = -1

    for i, line in enumerate(lines):
        clean = line.strip().lower()

        if re.search(r"sub\s*total", clean):
            m = _AMOUNT.search(clean)
            if m and subtotal is None:
                subtotal = float(m.group(1))
                subtotal_index = i
            continue

        # "Total (Eat In)", "Total (Take Out)"
        if re.search(r"total\s*\([^)]+\)", clean):
            m = _AMOUNT.search(clean)
            if m:
                total = float(m.group(1))
                break

        if re.match(r"^\s*(total|amount due|grand total|balance|final total)\b", clean):
            m = _AMOUNT.search(clean)
            if m:
                amount = float(m.group(1))
                if subtotal is None or amount >= subtotal:
                    total = amount
                    break
                logger.debug("[ocr] skipping total %.2f below subtotal %.2f", amount, subtotal)

        m = re.match(r"^\s*total[:\s]+\$?(\d+\.\d{2})", clean)
        if m:
            amount = float(m.group(1))
            if subtotal is None or amount >= subtotal:
                total = amount
                break

    if total is not None:
        return total

    start = subtotal_index if subtotal_index >= 0 else 0
    amounts: List[float] = []
    for line in lines[start:]:
        clean = line.strip().lower()
        if _FALLBACK_SKIP.search(clean):
            continue
        for m in _AMOUNT.finditer(clean):
            value = float(m.group(1))
            if 0 < value < 10000:
                amounts.append(value)
    if amounts:
        return max(amounts)

    if subtotal is not None:
        return round(subtotal * 1.1, 2)
    return None
