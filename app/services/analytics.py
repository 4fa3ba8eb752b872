"""Dashboard summary over all of a user's receipts."""

from __future__ import annotations

import datetime as dt
import logging
from collections import Counter, defaultdict
from typing import Any, Dict, List, Mapping, Optional

from app.core.database import receipts_col
from app.utils.helpers import as_datetime, to_number, utcnow

logger = logging.getLogger(__name__)

MONTHS_SHOWN = 6


def _confidence_value(confidence: Any) -> Optional[float]:
    """Numeric confidence for a stored value that may be a number or per-field dict."""
    if isinstance(confidence, bool):
        return None
    if isinstance(confidence, (int, float)):
        return float(confidence)
    if isinstance(confidence, Mapping):
        values = [v for v in confidence.values() if isinstance(v, (int, float)) and not isinstance(v, bool)]
        return sum(values) / len(values) if values else None
    return None


def _month_start(now: dt.datetime, months_back: int) -> dt.date:
    index = now.year * 12 + (now.month - 1) - months_back
    return dt.date(index // 12, index % 12 + 1, 1)


def build_dashboard_summary(receipts: List[Mapping[str, Any]], now: Optional[dt.datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    total_spent = sum(to_number(r.get("total")) for r in receipts)
    status_counts = Counter(r.get("status") or "pending" for r in receipts)

    confidences = [c for c in (_confidence_value(r.get("confidence")) for r in receipts) if c is not None]
    # stored confidences are 0-1, the dashboard shows a percentage
    avg_confidence = round(sum(confidences) / len(confidences) * 100) if confidences else 0

    categories: Dict[str, Dict[str, float]] = defaultdict(lambda: {"count": 0, "total": 0.0})
    merchants: Dict[str, Dict[str, float]] = defaultdict(lambda: {"count": 0, "total": 0.0})
    for r in receipts:
        amount = to_number(r.get("total"))
        c = categories[r.get("category") or "Uncategorized"]
        c["count"] += 1
        c["total"] += amount
        m = merchants[r.get("merchant") or "Unknown"]
        m["count"] += 1
        m["total"] += amount

    category_breakdown = sorted(
        (
            {
                "category": name,
                "amount": data["total"],
                "count": data["count"],
                "percentage": round(data["total"] / total_spent * 100) if total_spent > 0 else 0,
            }
            for name, data in categories.items()
        ),
        key=lambda c: c["amount"],
        reverse=True,
    )

    monthly: List[Dict[str, Any]] = []
    for back in range(MONTHS_SHOWN - 1, -1, -1):
        month = _month_start(now, back)
        in_month = []
        for r in receipts:
            when = as_datetime(r.get("date") or r.get("createdAt"))
            if when is not None and (when.year, when.month) == (month.year, month.month):
                in_month.append(r)
        monthly.append({
            "month": month.strftime("%b %Y"),
            "amount": sum(to_number(r.get("total")) for r in in_month),
            "count": len(in_month),
        })

    top_merchants = sorted(
        ({"merchant": name, "amount": data["total"], "count": data["count"]} for name, data in merchants.items()),
        key=lambda m: m["amount"],
        reverse=True,
    )[:5]

    return {
        "totalSpent": total_spent,
        "receiptsProcessed": len(receipts),
        "averageConfidence": avg_confidence,
        "categoriesCount": len(categories),
        "statusCounts": dict(status_counts),
        "categoryBreakdown": category_breakdown,
        "monthlySpending": monthly,
        "topMerchants": top_merchants,
    }


async def get_dashboard_summary(db, user_id: str) -> Dict[str, Any]:
    receipts = await receipts_col(db).find({"userId": user_id}).sort("createdAt", -1).to_list(length=None)
    logger.info("[analytics] summarizing %d receipts for %s", len(receipts), user_id)
    return build_dashboard_summary(receipts)
