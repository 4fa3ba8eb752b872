"""Receipt auto-categorisation that learns from user corrections.

Categories are decided in three steps, stopping at the first confident
answer:

1. **learned** - the user has corrected receipts from this merchant
   before (at least twice, confidence >= 0.8);
2. **heuristic** - merchant names and line items matched against an
   ordered keyword table (used when confidence >= 0.7);
3. **llm** - the model picks one of :data:`RECEIPT_CATEGORIES`.

Corrections are stored in the ``category_training`` collection, one
document per user and normalised merchant name.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from app.core.database import receipts_col, training_col
from app.models.enums import CategoryMethod
from app.models.schemas import CategorizationResult
from app.services.ai_providers import extract_json, generate_text
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

RECEIPT_CATEGORIES: Tuple[str, ...] = (
    "Food & Beverage",
    "Transportation",
    "Shopping",
    "Entertainment",
    "Healthcare",
    "Utilities",
    "Business",
    "Travel",
    "Groceries",
    "Other",
)

_I = re.IGNORECASE

# (merchant pattern, line item pattern, category, confidence); first match wins
HEURISTIC_RULES: List[Tuple[re.Pattern, Optional[re.Pattern], str, float]] = [
    (
        re.compile(r"subway|mcdonalds|burger|pizza|restaurant|cafe|coffee|starbucks|dunkin|chipotle|taco|wendys|kfc|dominos", _I),
        re.compile(r"sandwich|burger|fries|drink|soda|coffee|tea|meal", _I),
        "Food & Beverage",
        0.85,
    ),
    (
        re.compile(r"walmart|target|kroger|safeway|whole foods|trader joe|aldi|costco|sams club|grocery|market|supermarket", _I),
        None,
        "Groceries",
        0.8,
    ),
    (
        re.compile(r"uber|lyft|taxi|cab|transit|metro|bus|train|parking|shell|chevron|exxon|bp|gas|fuel", _I),
        None,
        "Transportation",
        0.85,
    ),
    (
        re.compile(r"cinema|movie|theater|netflix|spotify|gaming|amc|regal|imax|hulu|disney", _I),
        None,
        "Entertainment",
        0.8,
    ),
    (
        re.compile(r"pharmacy|cvs|walgreens|rite aid|clinic|hospital|doctor|medical|health", _I),
        None,
        "Healthcare",
        0.85,
    ),
    (
        re.compile(r"amazon|ebay|store|shop|mall|retail|bestbuy|macys|nordstrom", _I),
        None,
        "Shopping",
        0.7,
    ),
    (
        re.compile(r"hotel|motel|airbnb|airline|flight|airport|booking|expedia|marriott|hilton", _I),
        None,
        "Travel",
        0.85,
    ),
    (
        re.compile(r"electric|water|gas|utility|internet|phone|verizon|att|tmobile|comcast", _I),
        None,
        "Utilities",
        0.85,
    ),
]


def normalize_merchant(merchant: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace, cap at 50 chars."""
    m = re.sub(r"[^\w\s]", "", (merchant or "").lower(), flags=re.ASCII)
    m = re.sub(r"\s+", " ", m).strip()
    return m[:50]


def extract_line_items_pattern(line_items: Sequence[Mapping[str, Any]]) -> str:
    if not line_items:
        return ""
    parts = []
    for item in line_items[:3]:
        desc = re.sub(r"[^\w\s]", "", (item.get("description") or "").lower(), flags=re.ASCII)
        parts.append(" ".join(desc.split(" ")[:3]))
    return " | ".join(parts)[:200]


def categorize_by_heuristics(merchant: str, line_items: Sequence[Mapping[str, Any]]) -> Tuple[str, float]:
    m = (merchant or "").lower()
    items_text = " ".join((i.get("description") or "").lower() for i in line_items)
    for merchant_re, items_re, category, confidence in HEURISTIC_RULES:
        if merchant_re.search(m) or (items_re is not None and items_re.search(items_text)):
            return category, confidence
    return "Other", 0.3


def build_category_prompt(merchant: str, line_items: Sequence[Mapping[str, Any]]) -> str:
    items_list = "\n".join(
        f"{i + 1}. {item.get('description', '')} - ${item.get('total', 0)}"
        for i, item in enumerate(line_items)
    )
    return (
        "You are a receipt categorization expert. Categorize this receipt into exactly ONE category.\n\n"
        f"Available categories:\n{', '.join(RECEIPT_CATEGORIES)}\n\n"
        f"Merchant: {merchant}\n"
        f"Items purchased:\n{items_list or 'No items listed'}\n\n"
        "Respond with ONLY a JSON object in this exact format:\n"
        '{\n  "category": "Food & Beverage",\n  "confidence": 0.85,\n  "reasoning": "Brief explanation"\n}\n\n'
        "Rules:\n"
        "- category must be ONE of the available categories listed above\n"
        "- confidence is a number between 0 and 1\n"
        "- reasoning should be one sentence explaining why"
    )


async def categorize_with_llm(merchant: str, line_items: Sequence[Mapping[str, Any]]) -> Tuple[str, float, str]:
    """Ask the LLM for a category; returns (category, confidence, reasoning)."""
    response = await generate_text(build_category_prompt(merchant, line_items))
    parsed = extract_json(response)
    if not isinstance(parsed, dict):
        logger.error("[auto-cat] could not parse LLM category response")
        return "Other", 0.4, "Failed to parse AI response"
    category = parsed.get("category")
    if category not in RECEIPT_CATEGORIES:
        logger.warning("[auto-cat] LLM returned invalid category: %s", category)
        return "Other", 0.5, "LLM returned invalid category"
    try:
        raw_conf = float(parsed.get("confidence") or 0.7)
    except (TypeError, ValueError):
        raw_conf = 0.7
    return category, max(0.5, min(0.95, raw_conf)), parsed.get("reasoning") or "Categorized by AI"


async def auto_categorize_receipt(
    db,
    user_id: str,
    merchant: str,
    line_items: Sequence[Mapping[str, Any]],
) -> CategorizationResult:
    learned = await training_col(db).find_one({
        "userId": user_id,
        "merchantNormalized": normalize_merchant(merchant),
    })
    if learned and learned.get("confidence", 0) >= 0.8 and learned.get("occurrences", 0) >= 2:
        logger.info("[auto-cat] using learned pattern: %s (%s)", learned["category"], learned["confidence"])
        return CategorizationResult(
            category=learned["category"],
            confidence=learned["confidence"],
            method=CategoryMethod.LEARNED,
            suggestion=f"Based on {learned['occurrences']} previous receipts from {merchant}",
        )

    category, confidence = categorize_by_heuristics(merchant, line_items)
    if confidence >= 0.7:
        logger.info("[auto-cat] using heuristic: %s (%s)", category, confidence)
        return CategorizationResult(category=category, confidence=confidence, method=CategoryMethod.HEURISTIC)

    logger.info("[auto-cat] low confidence (%s), using LLM", confidence)
    try:
        llm_category, llm_conf, reasoning = await categorize_with_llm(merchant, line_items)
    except Exception as e:
        logger.warning("[auto-cat] LLM failed, using heuristic fallback: %s", e)
        return CategorizationResult(category=category, confidence=confidence, method=CategoryMethod.HEURISTIC)
    return CategorizationResult(
        category=llm_category,
        confidence=llm_conf,
        method=CategoryMethod.LLM,
        suggestion=reasoning,
    )


async def learn_from_correction(
    db,
    user_id: str,
    receipt_id: str,
    merchant: str,
    line_items: Sequence[Mapping[str, Any]],
    new_category: str,
) -> Dict[str, Any]:
    """Record a user's category correction and apply it to the receipt."""
    col = training_col(db)
    merchant_norm = normalize_merchant(merchant)
    pattern = extract_line_items_pattern(line_items)
    training_id = f"{user_id}_{merchant_norm}"
    now = utcnow()

    existing = await col.find_one({"_id": training_id})
    if existing:
        same = existing.get("category") == new_category
        await col.update_one(
            {"_id": training_id},
            {
                "$set": {
                    "category": new_category,
                    # a changed category restarts at the base confidence
                    "confidence": min(0.99, existing.get("confidence", 0.75) + 0.15) if same else 0.75,
                    "lineItemsPattern": pattern,
                    "lastUsed": now,
                },
                "$inc": {"occurrences": 1},
            },
        )
        logger.info("[auto-cat] updated pattern for %s -> %s", merchant, new_category)
    else:
        await col.insert_one({
            "_id": training_id,
            "userId": user_id,
            "merchant": merchant,
            "merchantNormalized": merchant_norm,
            "lineItemsPattern": pattern,
            "category": new_category,
            "confidence": 0.75,
            "occurrences": 1,
            "lastUsed": now,
            "createdAt": now,
        })
        logger.info("[auto-cat] created pattern for %s -> %s", merchant, new_category)

    await receipts_col(db).update_one(
        {"_id": receipt_id, "userId": user_id},
        {"$set": {"category": new_category, "categorySource": "user_corrected", "updatedAt": now}},
    )
    return {"success": True, "message": f'Learned: "{merchant}" → "{new_category}"'}


async def get_category_suggestions(db, user_id: str, merchant_prefix: str) -> List[Dict[str, Any]]:
    prefix = normalize_merchant(merchant_prefix)
    cursor = (
        training_col(db)
        .find({"userId": user_id, "merchantNormalized": {"$regex": f"^{re.escape(prefix)}", "$options": "i"}})
        .sort([("confidence", -1), ("occurrences", -1)])
        .limit(5)
    )
    docs = await cursor.to_list(length=None)
    return [
        {"merchant": d.get("merchant"), "category": d.get("category"), "confidence": d.get("confidence")}
        for d in docs
    ]
