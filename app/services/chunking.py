"""Splitting receipt text into embeddable chunks, and vector scoring."""

from __future__ import annotations

import math
from typing import Any, Dict, List, Sequence

MAX_CHUNK_SIZE = 2000


def _chunk(receipt_id: str, user_id: str, index: int, text: str, section: str) -> Dict[str, Any]:
    return {
        "id": f"{receipt_id}::{index}",
        "receiptId": receipt_id,
        "userId": user_id,
        "page": 1,
        "text": text.strip(),
        "metadata": {"section": section, "index": index},
    }


def simple_chunker(text: str, receipt_id: str, user_id: str) -> List[Dict[str, Any]]:
    """Chunk a receipt's OCR text.

    Receipts are short, so most become a single ``full`` chunk.  Longer
    ones are split in two at the first line break past the middle
    (``header`` with the items, ``footer`` with the totals).
    """
    if len(text) <= MAX_CHUNK_SIZE:
        return [_chunk(receipt_id, user_id, 0, text, "full")]

    midpoint = len(text) // 2
    split_point = text.find("\n", midpoint)
    if split_point < 0:
        split_point = midpoint
    return [
        _chunk(receipt_id, user_id, 0, text[:split_point], "header"),
        _chunk(receipt_id, user_id, 1, text[split_point:], "footer"),
    ]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; vectors of different length are compared on their overlap."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)
