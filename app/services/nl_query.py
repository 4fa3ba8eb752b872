"""Natural-language questions over a user's receipts.

The question is classified first.  Spending and category questions
become structured filters (category, merchant, date range), merchant
questions filter on the merchant name, and everything else falls back to
semantic search over the stored chunks.  The retrieved receipts are then
summarised for the LLM, with a plain aggregate answer when no model is
available.
"""

from __future__ import annotations

import calendar
import datetime as dt
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from app.core.database import chunks_col, receipts_col
from app.models.enums import QueryType, ReceiptStatus
from app.services.ai_providers import MOCK_GENERATION, embed_texts, generate_text
from app.services.chunking import cosine_similarity
from app.utils.helpers import to_number

logger = logging.getLogger(__name__)

NO_RESULTS_ANSWER = (
    "I couldn't find any receipts matching your query. "
    "Try uploading more receipts or adjusting your search."
)

# Checked in order
QUERY_TYPE_PATTERNS: List[Tuple[QueryType, re.Pattern]] = [
    (QueryType.SPENDING, re.compile(r"how much|total|spent|spending|cost", re.IGNORECASE)),
    (QueryType.MERCHANT, re.compile(r"where|which store|which restaurant|from", re.IGNORECASE)),
    (QueryType.CATEGORY, re.compile(r"category|type of|kind of", re.IGNORECASE)),
    (QueryType.DATE, re.compile(r"when|date|last|this month|this year", re.IGNORECASE)),
    (QueryType.ITEM, re.compile(r"item|product|bought|purchased", re.IGNORECASE)),
]

CATEGORY_KEYWORDS: List[Tuple[str, str]] = [
    ("food", "Food & Beverage"),
    ("beverage", "Food & Beverage"),
    ("transportation", "Transportation"),
    ("shopping", "Shopping"),
    ("entertainment", "Entertainment"),
    ("healthcare", "Healthcare"),
    ("utilities", "Utilities"),
    ("business", "Business"),
    ("travel", "Travel"),
    ("groceries", "Groceries"),
]

MERCHANT_PATTERNS = [
    re.compile(r"at\s+([A-Z][a-zA-Z\s&]+)"),
    re.compile(r"from\s+([A-Z][a-zA-Z\s&]+)"),
    re.compile(r"(Subway|Uber|Starbucks|Amazon|Walmart|Target|McDonald's|Pizza|Coffee)", re.IGNORECASE),
]


def detect_query_type(query: str) -> QueryType:
    for query_type, pattern in QUERY_TYPE_PATTERNS:
        if pattern.search(query):
            return query_type
    return QueryType.GENERAL


def extract_category(query: str) -> Optional[str]:
    lower = query.lower()
    for keyword, category in CATEGORY_KEYWORDS:
        if keyword in lower:
            return category
    return None


def extract_merchant(query: str) -> Optional[str]:
    for pattern in MERCHANT_PATTERNS:
        match = pattern.search(query)
        if match:
            return match.group(1).strip()
    return None


def extract_date_range(query: str, today: Optional[dt.date] = None) -> Optional[Tuple[str, str]]:
    """Inclusive ``(start, end)`` ISO dates for phrases like "last month"."""
    lower = query.lower()
    today = today or dt.date.today()

    if "this month" in lower:
        last_day = calendar.monthrange(today.year, today.month)[1]
        return today.replace(day=1).isoformat(), today.replace(day=last_day).isoformat()

    if "last month" in lower:
        end = today.replace(day=1) - dt.timedelta(days=1)
        return end.replace(day=1).isoformat(), end.isoformat()

    if "this year" in lower:
        return dt.date(today.year, 1, 1).isoformat(), today.isoformat()

    days = re.search(r"last\s+(\d+)\s+days?", lower)
    if days:
        start = today - dt.timedelta(days=int(days.group(1)))
        return start.isoformat(), today.isoformat()

    return None


def _icontains(value: str) -> Dict[str, str]:
    return {"$regex": re.escape(value), "$options": "i"}


async def _semantic_receipts(db, user_id: str, query: str) -> List[Dict[str, Any]]:
    [query_embedding] = await embed_texts([query])
    chunks = await chunks_col(db).find({"userId": user_id}).limit(100).to_list(length=None)
    ranked = sorted(
        chunks,
        key=lambda c: cosine_similarity(query_embedding, c.get("embedding") or []),
        reverse=True,
    )[:10]
    receipt_ids = list(dict.fromkeys(c["receiptId"] for c in ranked))
    if not receipt_ids:
        return []
    return await receipts_col(db).find({"_id": {"$in": receipt_ids}, "userId": user_id}).to_list(length=None)


async def find_relevant_receipts(db, user_id: str, query: str, query_type: QueryType) -> List[Dict[str, Any]]:
    completed = ReceiptStatus.COMPLETED.value
    if query_type in (QueryType.SPENDING, QueryType.CATEGORY):
        filters: Dict[str, Any] = {"userId": user_id, "status": completed}
        category = extract_category(query)
        merchant = extract_merchant(query)
        date_range = extract_date_range(query)
        if category:
            filters["category"] = _icontains(category)
        if merchant:
            filters["merchant"] = _icontains(merchant)
        if date_range:
            filters["date"] = {"$gte": date_range[0], "$lte": date_range[1]}
        return await receipts_col(db).find(filters).limit(50).to_list(length=None)

    if query_type == QueryType.MERCHANT:
        merchant = extract_merchant(query)
        if not merchant:
            return []
        return await receipts_col(db).find(
            {"userId": user_id, "merchant": _icontains(merchant), "status": completed}
        ).limit(20).to_list(length=None)

    return await _semantic_receipts(db, user_id, query)


def _receipt_line(r: Mapping[str, Any]) -> str:
    return f"{r.get('merchant')} - ${to_number(r.get('total')):.2f} on {r.get('date')} ({r.get('category')})"


def _usable(answer: str) -> bool:
    return bool(answer) and answer != MOCK_GENERATION


async def generate_answer(query: str, query_type: QueryType, receipts: Sequence[Mapping[str, Any]]) -> str:
    if not receipts:
        return NO_RESULTS_ANSWER

    if query_type == QueryType.SPENDING:
        total = sum(to_number(r.get("total")) for r in receipts)
        count = len(receipts)
        categories = list(dict.fromkeys(str(r.get("category")) for r in receipts))
        merchants = list(dict.fromkeys(str(r.get("merchant")) for r in receipts))
        recent = "\n".join(f"- {_receipt_line(r)}" for r in receipts[:5])
        summary = (
            f"Total Receipts: {count}\n"
            f"Total Amount: ${total:.2f}\n"
            f"Categories: {', '.join(categories)}\n"
            f"Top Merchants: {', '.join(merchants[:5])}\n\n"
            f"Recent Receipts:\n{recent}"
        )
        prompt = (
            "You are a financial assistant helping analyze receipt data.\n\n"
            f'User Question: "{query}"\n\n'
            f"Receipt Data:\n{summary}\n\n"
            "Provide a clear, concise answer (2-3 sentences) that directly answers the user's question. "
            "Include specific numbers and dates when relevant. Be friendly and helpful."
        )
        answer = await generate_text(prompt)
        if _usable(answer):
            return answer
        return (
            f"You spent **${total:.2f}** across **{count} receipts**. "
            f"The main categories were {', '.join(categories[:3])}."
        )

    context = "\n".join(_receipt_line(r) for r in receipts[:5])
    prompt = (
        "You are a financial assistant. Answer this question based on the receipt data:\n\n"
        f'Question: "{query}"\n\n'
        f"Receipts:\n{context}\n\n"
        "Provide a helpful, specific answer in 2-3 sentences."
    )
    answer = await generate_text(prompt)
    if _usable(answer):
        return answer
    return f"I found {len(receipts)} receipts that might answer your question. Check the list below for details."


async def query_receipts(db, user_id: str, query: str) -> Dict[str, Any]:
    logger.info("[nl-query] processing: %r", query)
    query_type = detect_query_type(query)
    receipts = await find_relevant_receipts(db, user_id, query, query_type)
    logger.info("[nl-query] type=%s found %d receipts", query_type.value, len(receipts))

    answer = await generate_answer(query, query_type, receipts)
    return {
        "answer": answer,
        "relevantReceipts": [
            {
                "receiptId": r.get("_id"),
                "merchant": r.get("merchant") or "Unknown",
                "date": r.get("date") or "",
                "total": r.get("total") or 0,
                "category": r.get("category") or "Other",
                "relevance": 0.8,
            }
            for r in receipts[:10]
        ],
        "queryType": query_type.value,
        "confidence": 0.85 if receipts else 0.5,
    }


def build_rag_prompt(query: str, hits: Sequence[Mapping[str, Any]]) -> str:
    """Prompt for answering a question from retrieved chunks."""
    context = "\n\n".join(f"[{i + 1}] {h.get('text', '')}" for i, h in enumerate(hits))
    return (
        "You are a helpful assistant analyzing receipt data. Answer the user's question "
        "based on the following receipt information.\n\n"
        f"Context from receipts:\n{context}\n\n"
        f"User question: {query}\n\n"
        "Provide a clear, concise answer. If the information isn't in the context, say so."
    )
