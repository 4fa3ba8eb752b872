"""Period-over-period spending insights.

Receipts are selected by their printed ``date`` (an ISO ``YYYY-MM-DD``
string), so string comparison on the stored value selects the period.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.core.database import receipts_col
from app.models.enums import CategoryMethod, ReceiptStatus
from app.services.ai_providers import first_sentence, generate_text
from app.services.regret import ANALYZED_STATUSES
from app.utils.helpers import period_start, to_number, utcnow

logger = logging.getLogger(__name__)


async def _receipts_between(db, user_id: str, start: dt.date, end: dt.date) -> List[Dict[str, Any]]:
    return await receipts_col(db).find({
        "userId": user_id,
        "date": {"$gte": start.isoformat(), "$lte": end.isoformat()},
        "status": {"$in": ANALYZED_STATUSES},
    }).to_list(length=None)


def _totals_by(receipts: Sequence[Mapping[str, Any]], field: str, default: str) -> Dict[str, float]:
    out: Dict[str, float] = defaultdict(float)
    for r in receipts:
        out[r.get(field) or default] += to_number(r.get("total"))
    return dict(out)


def _top(totals: Mapping[str, float], n: int) -> List[tuple]:
    return sorted(totals.items(), key=lambda kv: kv[1], reverse=True)[:n]


async def generate_ai_summary(
    receipts: Sequence[Mapping[str, Any]],
    category_breakdown: Mapping[str, float],
    trend: str,
) -> Optional[str]:
    if not receipts:
        return None
    total = sum(to_number(r.get("total")) for r in receipts)
    top_categories = ", ".join(f"{c}: ${a:.2f}" for c, a in _top(category_breakdown, 3))
    top_merchants = ", ".join(f"{m}: ${a:.2f}" for m, a in _top(_totals_by(receipts, "merchant", "Unknown"), 3))
    prompt = (
        "Analyze this spending data and provide ONE insightful observation in 10-15 words:\n\n"
        f"Total: ${total:.2f} across {len(receipts)} receipts\n"
        f"Trend: {trend}\n"
        f"Top Categories: {top_categories}\n"
        f"Top Merchants: {top_merchants}\n\n"
        "Provide a single, specific insight about spending patterns (not generic advice). "
        "Focus on trends or unusual patterns."
    )
    summary = await generate_text(prompt)
    return first_sentence(summary) + "."


async def generate_spending_insights(
    db,
    user_id: str,
    period: str = "month",
    now: Optional[dt.datetime] = None,
) -> Dict[str, Any]:
    end = now or utcnow()
    start = period_start(period, end)
    receipts = await _receipts_between(db, user_id, start.date(), end.date())
    logger.info("[insights] analyzing %d receipts for period %s", len(receipts), period)

    total_spent = sum(to_number(r.get("total")) for r in receipts)
    count = len(receipts)
    needs_review = sum(1 for r in receipts if r.get("status") == ReceiptStatus.NEEDS_REVIEW.value)

    breakdown = _totals_by(receipts, "category", "Other")
    top_category = _top(breakdown, 1)[0][0] if breakdown else "Other"

    prev_end = start.date() - dt.timedelta(days=1)
    prev_start = period_start(period, start).date()
    previous = await _receipts_between(db, user_id, prev_start, prev_end)
    prev_total = sum(to_number(r.get("total")) for r in previous)
    change = (total_spent - prev_total) / prev_total * 100 if prev_total > 0 else 0

    trend = "stable"
    if change > 10:
        trend = "increasing"
    elif change < -10:
        trend = "decreasing"

    insights: List[Dict[str, Any]] = []

    learned = sum(1 for r in receipts if r.get("categoryMethod") == CategoryMethod.LEARNED.value)
    if learned:
        insights.append({
            "type": "success",
            "icon": "CheckCircle",
            "title": f"AI Learning: {learned / count * 100:.0f}% Accurate",
            "description": f"Smart categorization is learning from your {learned} corrections",
        })

    if needs_review:
        insights.append({
            "type": "warning",
            "icon": "AlertCircle",
            "title": f"{needs_review} Receipt{'s' if needs_review > 1 else ''} Need Review",
            "description": "Some receipts have quality issues and need your attention",
        })

    if trend == "increasing" and change > 15:
        insights.append({
            "type": "warning",
            "icon": "TrendingUp",
            "title": f"Spending Up {change:.0f}%",
            "description": f"You're spending more than last {period}. Top category: {top_category}",
            "category": top_category,
        })
    elif trend == "decreasing" and change < -15:
        insights.append({
            "type": "success",
            "icon": "TrendingDown",
            "title": f"Spending Down {abs(change):.0f}%",
            "description": f"Great job! You spent less than last {period}",
        })
    else:
        insights.append({
            "type": "info",
            "icon": "TrendingUp",
            "title": "Spending Stable",
            "description": f"Similar to last {period}. Total: ${total_spent:.2f}",
        })

    top_spent = breakdown.get(top_category, 0)
    top_percent = top_spent / total_spent * 100 if total_spent > 0 else 0
    if top_percent > 40:
        insights.append({
            "type": "info",
            "icon": "PieChart",
            "title": f"{top_percent:.0f}% on {top_category}",
            "description": "This is your biggest expense category",
            "category": top_category,
            "amount": top_spent,
        })

    summary = await generate_ai_summary(receipts, breakdown, trend)
    if summary:
        insights.append({"type": "info", "icon": "Sparkles", "title": "AI Analysis", "description": summary})

    return {
        "insights": insights[:5],
        "totalSpent": total_spent,
        "receiptCount": count,
        "topCategory": top_category,
        "categoryBreakdown": breakdown,
        "monthlyTrend": trend,
        "needsReviewCount": needs_review,
    }
