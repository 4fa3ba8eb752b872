"""Emotional spending patterns derived from when receipts are uploaded."""

from __future__ import annotations

import datetime as dt
import logging
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.core.database import receipts_col
from app.services.ai_providers import first_sentence, generate_text
from app.services.regret import ANALYZED_STATUSES, is_late_night
from app.utils.helpers import as_datetime, js_weekday, period_start, to_number, utcnow

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
LATE_NIGHT_HOURS = (22, 23, 0, 1, 2)


def _created(receipt: Mapping[str, Any]) -> dt.datetime:
    return as_datetime(receipt.get("createdAt")) or utcnow()


def _total(receipt: Mapping[str, Any]) -> float:
    return to_number(receipt.get("total"))


def analyze_time_of_day(receipts: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    patterns: Dict[int, Dict[str, Any]] = {}
    for r in receipts:
        hour = _created(r).hour
        p = patterns.setdefault(hour, {"hour": hour, "count": 0, "totalSpent": 0.0, "avgAmount": 0.0})
        p["count"] += 1
        p["totalSpent"] += _total(r)
    for p in patterns.values():
        p["avgAmount"] = p["totalSpent"] / p["count"]
    return list(patterns.values())


def analyze_day_of_week(receipts: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    patterns: Dict[str, Dict[str, Any]] = {}
    for r in receipts:
        day = DAY_NAMES[js_weekday(_created(r))]
        p = patterns.setdefault(day, {"day": day, "count": 0, "totalSpent": 0.0})
        p["count"] += 1
        p["totalSpent"] += _total(r)
    return list(patterns.values())


def calculate_stress_score(receipts: Sequence[Mapping[str, Any]], time_patterns: Sequence[Mapping[str, Any]]) -> int:
    if not receipts:
        return 0
    n = len(receipts)
    score = 0.0
    late = sum(p["count"] for p in time_patterns if p["hour"] in LATE_NIGHT_HOURS)
    score += late / n * 40
    small = sum(1 for r in receipts if _total(r) < 20)
    score += small / n * 30
    per_day = Counter(_created(r).date().isoformat() for r in receipts)
    busy_days = sum(1 for count in per_day.values() if count > 3)
    score += min(busy_days * 5, 30)
    return min(round(score), 100)


def calculate_impulse_score(receipts: Sequence[Mapping[str, Any]]) -> int:
    if not receipts:
        return 0
    n = len(receipts)
    impulse = [r for r in receipts if r.get("category") in ("Shopping", "Entertainment") and _total(r) > 50]
    score = len(impulse) / n * 50

    times = sorted(_created(r) for r in receipts)
    quick = sum(1 for a, b in zip(times, times[1:]) if (b - a).total_seconds() < 3600)
    score += min(quick / n * 50, 50)
    return min(round(score), 100)


def determine_overall_mood(stress: int, impulse: int, late_night: int, total: int) -> Dict[str, Any]:
    if stress > 60:
        return {"type": "stress", "score": stress, "description": "High stress spending detected", "color": "text-red-500"}
    if impulse > 60:
        return {"type": "impulse", "score": impulse, "description": "Frequent impulse purchases", "color": "text-orange-500"}
    if late_night > total * 0.3:
        return {"type": "celebration", "score": 70, "description": "Late night social spending", "color": "text-purple-500"}
    if stress < 30 and impulse < 30:
        return {"type": "routine", "score": 85, "description": "Disciplined, routine spending", "color": "text-green-500"}
    return {"type": "necessity", "score": 60, "description": "Balanced spending patterns", "color": "text-blue-500"}


def _hour_label(hour: int) -> str:
    return f"{hour - 12 or 12} PM" if hour >= 12 else f"{hour} AM"


async def generate_mood_insights(
    receipts: Sequence[Mapping[str, Any]],
    time_patterns: Sequence[Mapping[str, Any]],
    day_patterns: Sequence[Mapping[str, Any]],
    stress: int,
    impulse: int,
    late_night: int,
) -> List[Dict[str, Any]]:
    insights: List[Dict[str, Any]] = []
    n = len(receipts)
    total_spent = sum(_total(r) for r in receipts)

    if n and late_night > n * 0.2:
        insights.append({
            "title": "Late Night Shopping Alert",
            "description": f"{late_night / n * 100:.0f}% of purchases after 10 PM",
            "icon": "Moon",
            "type": "warning",
            "recommendation": "Try a 24-hour waiting period for late-night purchases",
        })

    if stress > 50:
        insights.append({
            "title": "Stress Spending Pattern",
            "description": "Multiple small purchases and late-night activity detected",
            "icon": "AlertTriangle",
            "type": "warning",
            "recommendation": "Consider stress-relief activities before shopping",
        })

    if time_patterns:
        peak = max(time_patterns, key=lambda p: p["count"])
        label = _hour_label(peak["hour"])
        insights.append({
            "title": f"Peak Spending: {label}",
            "description": f"You spend most around {label} (${peak['avgAmount']:.2f} avg)",
            "icon": "Clock",
            "type": "info",
        })

    weekend_total = sum(d["totalSpent"] for d in day_patterns if d["day"] in ("Saturday", "Sunday"))
    if total_spent > 0 and weekend_total > total_spent * 0.5:
        insights.append({
            "title": "Weekend Spender",
            "description": f"{weekend_total / total_spent * 100:.0f}% of spending happens on weekends",
            "icon": "Calendar",
            "type": "info",
        })

    prompt = (
        "Based on this spending behavior, give ONE specific psychological insight in 15 words:\n"
        f"- Stress score: {stress}/100\n"
        f"- Impulse score: {impulse}/100\n"
        f"- Late night purchases: {late_night}/{n}\n"
        f"- Total spent: ${total_spent:.2f}\n\n"
        "Focus on the emotional driver, not generic advice."
    )
    ai_insight = await generate_text(prompt)
    if ai_insight:
        insights.append({
            "title": "AI Psychological Analysis",
            "description": first_sentence(ai_insight) + ".",
            "icon": "Brain",
            "type": "info",
        })

    return insights[:5]


async def analyze_mood_patterns(db, user_id: str, period: str = "month", now: Optional[dt.datetime] = None) -> Dict[str, Any]:
    end = now or utcnow()
    start = period_start(period, end)
    receipts = await receipts_col(db).find({
        "userId": user_id,
        "createdAt": {"$gte": start, "$lte": end},
        "status": {"$in": ANALYZED_STATUSES},
    }).to_list(length=None)
    logger.info("[mood] analyzing %d receipts (%s)", len(receipts), period)

    time_patterns = analyze_time_of_day(receipts)
    day_patterns = analyze_day_of_week(receipts)

    late = [r for r in receipts if is_late_night(_created(r).hour)]
    weekend = [r for r in receipts if js_weekday(_created(r)) in (0, 6)]
    n = len(receipts)

    stress = calculate_stress_score(receipts, time_patterns)
    impulse = calculate_impulse_score(receipts)

    return {
        "overallMood": determine_overall_mood(stress, impulse, len(late), n),
        "timePatterns": time_patterns,
        "dayPatterns": day_patterns,
        "stressSpendingScore": stress,
        "impulseSpendingScore": impulse,
        "insights": await generate_mood_insights(receipts, time_patterns, day_patterns, stress, impulse, len(late)),
        "lateNightSpending": {
            "count": len(late),
            "total": sum(_total(r) for r in late),
            "percentage": len(late) / n * 100 if n else 0,
        },
        "weekendSpending": {
            "count": len(weekend),
            "total": sum(_total(r) for r in weekend),
            "percentage": len(weekend) / n * 100 if n else 0,
        },
    }
