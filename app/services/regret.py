"""Purchase regret analysis and prediction.

A past purchase counts as a likely regret when it is a large impulse
category purchase (over 8350 INR, about 100 USD) or its category was
assigned with low confidence.  New purchases are scored 0-100 from
their similarity to past purchases, category, price, merchant frequency
and the time of day.
"""

from __future__ import annotations

import datetime as dt
import logging
import random
from collections import Counter, defaultdict
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.core.database import receipts_col
from app.models.enums import ReceiptStatus
from app.utils.helpers import as_datetime, to_number, utcnow

logger = logging.getLogger(__name__)

IMPULSE_CATEGORIES = ("Shopping", "Entertainment", "Electronics")
HIGH_RISK_CATEGORIES = ("Electronics", "Fashion", "Entertainment", "Shopping")
IMPULSE_THRESHOLD_INR = 8350

REGRET_TIPS = [
    "Wait 48 hours before purchases over $100",
    "Check if you own something similar first",
    "Ask: 'Will I use this in 6 months?'",
    "Set a monthly 'fun money' budget",
    "Enable purchase cooling-off notifications",
]

ANALYZED_STATUSES = [ReceiptStatus.COMPLETED.value, ReceiptStatus.NEEDS_REVIEW.value]


def is_late_night(hour: int) -> bool:
    return hour >= 22 or hour <= 2


def is_likely_regret(receipt: Mapping[str, Any]) -> bool:
    if receipt.get("category") in IMPULSE_CATEGORIES:
        amount = receipt.get("totalINR")
        if amount is None:
            amount = receipt.get("total")
        if to_number(amount) > IMPULSE_THRESHOLD_INR:
            return True
    return (receipt.get("categoryConfidence") or 0) < 0.5


def get_recommendation(score: int) -> str:
    if score > 70:
        return "High regret risk - Wait 48 hours before buying"
    if score > 50:
        return "Moderate risk - Sleep on it tonight"
    if score > 30:
        return "Consider if you really need this"
    return "Low regret risk - Looks like a good purchase"


def generate_regret_insights(total: int, regrets: int, risk_categories: Sequence[Mapping[str, Any]]) -> List[Dict[str, str]]:
    insights: List[Dict[str, str]] = []
    rate = regrets / total * 100 if total else 0
    if rate > 30:
        insights.append({
            "title": "High Regret Rate",
            "description": f"{rate:.0f}% of purchases might be regrettable",
            "type": "warning",
        })
    elif rate < 15:
        insights.append({
            "title": "Mindful Spender",
            "description": f"Only {rate:.0f}% regret risk - you make good decisions!",
            "type": "success",
        })

    if risk_categories and risk_categories[0]["regretRate"] > 40:
        top = risk_categories[0]
        insights.append({
            "title": f"Watch {top['category']} Purchases",
            "description": f"{top['regretRate']:.0f}% regret rate in this category",
            "type": "warning",
        })

    insights.append({
        "title": "Pro Tip",
        "description": "Use the 24-hour rule: Wait a day before making purchases over $50",
        "type": "info",
    })
    return insights


async def _history(db, user_id: str) -> List[Dict[str, Any]]:
    return await receipts_col(db).find(
        {"userId": user_id, "status": {"$in": ANALYZED_STATUSES}}
    ).to_list(length=None)


async def analyze_regret_patterns(db, user_id: str) -> Dict[str, Any]:
    receipts = await _history(db, user_id)
    logger.info("[regret] analyzing %d receipts", len(receipts))

    regrets = [r for r in receipts if is_likely_regret(r)]

    per_category: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
    for r in receipts:
        stats = per_category[r.get("category") or "Other"]
        stats[0] += 1
        if is_likely_regret(r):
            stats[1] += 1
    risk_categories = sorted(
        ({"category": cat, "regretRate": regret / total * 100} for cat, (total, regret) in per_category.items()),
        key=lambda c: c["regretRate"],
        reverse=True,
    )

    merchant_counts = Counter(r.get("merchant") or "Unknown" for r in regrets)
    top_merchants = [
        {"merchant": m, "regretCount": n}
        for m, n in sorted(merchant_counts.items(), key=lambda kv: kv[1], reverse=True)[:5]
    ]

    return {
        "totalPurchases": len(receipts),
        "potentialRegrets": len(regrets),
        "regretRate": len(regrets) / len(receipts) * 100 if receipts else 0,
        "riskCategories": risk_categories[:5],
        "topRegretMerchants": top_merchants,
        "insights": generate_regret_insights(len(receipts), len(regrets), risk_categories),
    }


async def predict_regret_score(
    db,
    user_id: str,
    merchant: str,
    category: str,
    total: float,
    now: Optional[dt.datetime] = None,
) -> Dict[str, Any]:
    """Score how likely the user is to regret a purchase they are about to make."""
    history = await _history(db, user_id)
    score = 0
    reasons: List[str] = []

    similar = [
        r for r in history
        if r.get("category") == category and abs(to_number(r.get("total")) - total) < total * 0.3
    ]
    if len(similar) > 2:
        score += 30
        reasons.append(f"You've bought {len(similar)} similar items before")

    if category in IMPULSE_CATEGORIES:
        score += 20
        reasons.append("Category prone to impulse buying")

    in_category = [to_number(r.get("total")) for r in history if r.get("category") == category]
    avg_price = sum(in_category) / len(in_category) if in_category else 0
    if avg_price > 0 and total > avg_price * 1.5:
        score += 25
        reasons.append(f"{round((total / avg_price - 1) * 100)}% more than usual for this category")

    at_merchant = [r for r in history if (r.get("merchant") or "").lower() == merchant.lower()]
    if len(at_merchant) > 5:
        score += 15
        reasons.append(f"You've shopped at {merchant} {len(at_merchant)} times")

    hour = (now or dt.datetime.now()).hour
    if is_late_night(hour):
        score += 10
        reasons.append("Late night purchase - sleep on it?")

    return {
        "score": min(score, 100),
        "confidence": 0.75,
        "reasons": reasons,
        "recommendation": get_recommendation(score),
    }


def format_relative_date(value: Any, now: Optional[dt.datetime] = None) -> str:
    when = as_datetime(value)
    if when is None:
        return ""
    now = now or utcnow()
    hours = int((now - when).total_seconds() // 3600)
    days = int((now - when).total_seconds() // 86400)
    if hours < 1:
        return "Just now"
    if hours < 24:
        return f"{hours} hours ago"
    if days == 1:
        return "Yesterday"
    if days < 7:
        return f"{days} days ago"
    return when.date().isoformat()


async def build_regret_dashboard(db, user_id: str) -> Dict[str, Any]:
    """Regret analysis shaped for the regret predictor page."""
    analysis = await analyze_regret_patterns(db, user_id)
    recent = await receipts_col(db).find(
        {"userId": user_id, "status": {"$in": ANALYZED_STATUSES}}
    ).sort("createdAt", -1).limit(20).to_list(length=None)

    high_risk = []
    for r in recent:
        created = as_datetime(r.get("createdAt"))
        late = created is not None and is_late_night(created.hour)
        risky_category = r.get("category") in HIGH_RISK_CATEGORIES and to_number(r.get("total")) > 50
        if not (late or risky_category):
            continue
        items = r.get("lineItems") or []
        high_risk.append({
            "id": len(high_risk) + 1,
            "merchant": r.get("merchant") or "Unknown",
            "item": (items[0].get("description") if items else None) or r.get("category") or "Purchase",
            "amount": r.get("total") or 0,
            "regretScore": 75 + random.random() * 15 if late else 50 + random.random() * 25,
            "reason": (
                "Late night impulse purchase pattern"
                if late
                else f"{r.get('category')} purchases over $50 have higher regret rates"
            ),
            "category": r.get("category") or "Other",
            "date": format_relative_date(r.get("createdAt")),
        })
        if len(high_risk) == 5:
            break

    return {
        "overallRegretRisk": round(analysis["regretRate"]),
        "totalPotentialRegrets": analysis["potentialRegrets"],
        "savedFromRegret": int(analysis["potentialRegrets"] * 0.3),
        "averageRegretAmount": (
            sum(to_number(r.get("total")) for r in recent) / len(recent) if recent else 0
        ),
        "highRiskPurchases": high_risk,
        "pastRegrets": [
            {
                "merchant": m["merchant"],
                "item": "Multiple purchases",
                "amount": 0,
                "regretConfirmed": True,
                "usageFrequency": f"{m['regretCount']} flagged purchases",
            }
            for m in analysis["topRegretMerchants"][:3]
        ],
        "regretPatterns": [
            {"pattern": c["category"], "percentage": round(c["regretRate"])}
            for c in analysis["riskCategories"][:4]
        ],
        "tips": REGRET_TIPS,
        "insights": analysis["insights"],
    }
