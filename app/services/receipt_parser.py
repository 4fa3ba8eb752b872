"""Receipt text to structured fields.

Parsing is two-stage.  A regex pass (:func:`parse_receipt_heuristic`)
handles the common layouts and is enough whenever it finds a merchant, a
date and a non-zero total.  Only receipts the regex pass cannot make
sense of are sent to the LLM, with the heuristic result kept as the
fallback when the model answers with something unusable.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from app.core.config import settings
from app.models.schemas import ParsedReceipt
from app.services.ai_providers import extract_json, generate_text
from app.utils.helpers import parse_amount, today_iso

logger = logging.getLogger(__name__)

_AMOUNT = r"(\d+[,.]?\d*\.?\d{1,2})"

DATE_PATTERNS = [
    re.compile(r"(\d{4}-\d{2}-\d{2})"),
    re.compile(r"(\d{1,2}[/-]\d{1,2}[/-]\d{2,4})"),
]

CURRENCY_PATTERN = re.compile(r"\b(USD|EUR|GBP|INR|CAD|AUD)\b", re.IGNORECASE)

TOTAL_PATTERNS = [
    re.compile(r"total\s*[:]?\s*\$?\s*" + _AMOUNT, re.IGNORECASE),
    re.compile(r"\btotal\b.*?(\d+[,.]?\d+\.?\d{2})", re.IGNORECASE),
    re.compile(r"amount\s*due\s*[:]?\s*\$?\s*" + _AMOUNT, re.IGNORECASE),
    re.compile(r"balance\s*[:]?\s*\$?\s*" + _AMOUNT, re.IGNORECASE),
]

TAX_PATTERNS = [
    re.compile(r"tax\s*[:]?\s*\$?\s*" + _AMOUNT, re.IGNORECASE),
    re.compile(r"\btax\b.*?(\d+\.?\d{2})", re.IGNORECASE),
]

# name    $12.34 / 2 name $12.34 / name $12.34
LINE_ITEM_PATTERNS = [
    re.compile(r"^(.+?)\s{2,}\$?\s*" + _AMOUNT + "$"),
    re.compile(r"^(\d+)\s+(.+?)\s+\$?\s*" + _AMOUNT + "$"),
    re.compile(r"^(.+?)\s+\$?\s*" + _AMOUNT + "$"),
]

_SUMMARY_LINE = re.compile(r"^(subtotal|tax|total|amount|balance)", re.IGNORECASE)

SYSTEM_PROMPT = (
    "You are a strict JSON receipt parser. Respond with only a single JSON object, "
    "no prose or markdown."
)

RECEIPT_SCHEMA = """{
  "merchant": "string",
  "date": "YYYY-MM-DD",
  "total": number,
  "tax": number|null,
  "currency": "string",
  "category": "Food & Beverage|Transportation|Shopping|Entertainment|Business|Other",
  "paymentMethod": "string|null",
  "lineItems": [{"description":"string","quantity":number,"unitPrice":number,"total":number}],
  "confidence": {"merchant":number,"date":number,"total":number,"category":number}
}"""


def normalize_date(raw: str) -> str:
    """Normalise a matched date to ``YYYY-MM-DD``.

    Slash dates are read month-first unless the first part cannot be a
    month, in which case the first two parts are swapped.  Two-digit years
    are placed in the 2000s.
    """
    if re.search(r"\d{4}-\d{2}-\d{2}", raw):
        return raw
    parts = re.split(r"[/-]", raw)
    if len(parts) < 3:
        return raw
    a, b, c = parts[0], parts[1], parts[2]
    if len(c) == 2:
        c = "20" + c
    if int(a) > 12:
        a, b = b, a
    return f"{c}-{a.zfill(2)}-{b.zfill(2)}"


def infer_category(merchant: str) -> str:
    m = merchant.lower()
    if re.search(r"coffee|cafe|starbucks|restaurant|food|market|whole foods", m):
        return "Food & Beverage"
    if re.search(r"uber|lyft|taxi|transport|bus|flight", m):
        return "Transportation"
    if re.search(r"store|mart|shop|retail", m):
        return "Shopping"
    return "Other"


def infer_payment(text: str) -> Optional[str]:
    card = re.search(r"card.*?(\*{2,}\d{2,}|ending\s+\d{2,4})", text, re.IGNORECASE)
    if card:
        return re.sub(r"\s+", " ", card.group(0)).strip()
    if re.search(r"cash", text, re.IGNORECASE):
        return "Cash"
    return None


def extract_line_items(lines: List[str]) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    for line in lines:
        if _SUMMARY_LINE.match(line):
            continue
        for pattern in LINE_ITEM_PATTERNS:
            m = pattern.match(line)
            if not m:
                continue
            if len(m.groups()) == 3:
                quantity = int(m.group(1)) or 1
                description = m.group(2).strip()
                amount = parse_amount(m.group(3))
            else:
                quantity = 1
                description = m.group(1).strip()
                amount = parse_amount(m.group(2))
            items.append({
                "description": description,
                "quantity": quantity,
                "unitPrice": amount / quantity,
                "total": amount,
            })
            break
    return items


def _first_match(patterns: List[re.Pattern], text: str) -> Optional[re.Match]:
    for pattern in patterns:
        m = pattern.search(text)
        if m:
            return m
    return None


def parse_receipt_heuristic(text: str) -> Dict[str, Any]:
    """Regex-only parse of OCR text."""
    lines = [l.strip() for l in re.split(r"\r?\n", text) if l.strip()]
    merchant = lines[0] if lines else "Unknown Merchant"

    date: Optional[str] = None
    date_match = _first_match(DATE_PATTERNS, text)
    if date_match:
        date = normalize_date(date_match.group(0))

    currency_match = CURRENCY_PATTERN.search(text)
    total_match = _first_match(TOTAL_PATTERNS, text)
    tax_match = _first_match(TAX_PATTERNS, text)
    line_items = extract_line_items(lines[1:])

    return {
        "merchant": merchant,
        "date": date or today_iso(),
        "total": parse_amount(total_match.group(1)) if total_match else 0,
        "tax": parse_amount(tax_match.group(1)) if tax_match else None,
        "currency": currency_match.group(0).upper() if currency_match else "USD",
        "category": infer_category(merchant),
        "paymentMethod": infer_payment(text),
        "lineItems": line_items,
        "confidence": {
            "merchant": 0.7 if merchant else 0.3,
            "date": 0.7 if date else 0.3,
            "total": 0.8 if total_match else 0.2,
            "category": 0.5,
        },
    }


def build_parse_prompt(ocr_text: str) -> str:
    return (
        f"{SYSTEM_PROMPT}\n\n"
        f"Extract this exact JSON schema from the receipt:\n{RECEIPT_SCHEMA}\n\n"
        f"Receipt text:\n{ocr_text}\n\n"
        "Rules:\n"
        "- Return ONLY valid JSON, no markdown code blocks\n"
        "- Numbers must be numbers (not strings)\n"
        "- Use null for missing values\n"
        "- confidence values are 0.0 to 1.0"
    )


def _validated(raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        parsed = ParsedReceipt.model_validate(raw)
    except ValidationError as e:
        logger.warning("[parser] LLM JSON failed validation: %s", e.error_count())
        return None
    return parsed.model_dump(exclude_none=False)


async def parse_receipt_with_ai(ocr_text: str) -> Dict[str, Any]:
    """Parse OCR text, calling the LLM only when the regex pass falls short."""
    heuristic = parse_receipt_heuristic(ocr_text)
    needs_llm = not heuristic["merchant"] or heuristic["total"] == 0 or not heuristic["date"]
    if not needs_llm or settings.USE_LOCAL_RECEIPT_PARSE:
        source = "heuristic-local-only" if settings.USE_LOCAL_RECEIPT_PARSE else "heuristic-first-pass"
        return {**heuristic, "source": source}

    logger.info("[parser] parsing receipt with LLM")
    raw = extract_json(await generate_text(build_parse_prompt(ocr_text)))
    if isinstance(raw, dict) and raw.get("merchant"):
        if not raw.get("lineItems") and heuristic["lineItems"]:
            raw["lineItems"] = heuristic["lineItems"]
        data = _validated(raw)
        if data is not None:
            return {**data, "source": "llm"}
    return {**heuristic, "source": "heuristic-fallback"}
