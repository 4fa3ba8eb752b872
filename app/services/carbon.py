"""Carbon footprint estimates for a user's spending.

Each receipt's CO2 is its total times a per-category factor (kg CO2 per
currency unit), adjusted by the first matching merchant multiplier.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.core.database import receipts_col
from app.services.regret import ANALYZED_STATUSES
from app.utils.helpers import as_datetime, period_start, round2, to_number, utcnow

logger = logging.getLogger(__name__)

CATEGORY_CO2_FACTORS: Dict[str, float] = {
    "Food & Beverage": 0.5,
    "Fast Food": 1.2,
    "Transportation": 0.8,
    "Air Travel": 5.0,
    "Shopping": 0.6,
    "Electronics": 1.5,
    "Fashion": 1.8,
    "Utilities": 0.4,
    "Groceries": 0.3,
    "Entertainment": 0.2,
    "Business": 0.5,
    "Other": 0.4,
}

# Checked in order, first substring match wins
MERCHANT_CO2_MULTIPLIERS: Dict[str, float] = {
    "whole foods": 0.6,
    "trader joe": 0.7,
    "amazon": 1.3,
    "uber": 0.9,
    "lyft": 0.9,
    "tesla": 0.3,
    "shell": 2.0,
    "bp": 2.0,
}

# kg CO2 one tree absorbs per year
TREE_CO2_KG = 22


def estimate_co2(receipt: Mapping[str, Any]) -> Dict[str, Any]:
    total = to_number(receipt.get("total"))
    category = receipt.get("category") or "Other"
    merchant = (receipt.get("merchant") or "").lower()

    factor = CATEGORY_CO2_FACTORS.get(category) or CATEGORY_CO2_FACTORS["Other"]
    for key, multiplier in MERCHANT_CO2_MULTIPLIERS.items():
        if key in merchant:
            factor *= multiplier
            break

    return {"co2kg": round2(total * factor), "source": "category", "confidence": 0.7}


def calculate_monthly_trend(receipts: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    months: Dict[str, float] = defaultdict(float)
    for r in receipts:
        created = as_datetime(r.get("createdAt")) or utcnow()
        months[f"{created.year}-{created.month:02d}"] += r["co2Estimate"]["co2kg"]
    return [{"month": m, "co2kg": months[m]} for m in sorted(months)]


def generate_eco_insights(
    category_breakdown: Sequence[Mapping[str, Any]],
    eco_score: float,
    total_co2: float,
) -> List[Dict[str, Any]]:
    insights: List[Dict[str, Any]] = []

    if eco_score > 75:
        insights.append({
            "title": "Eco Champion",
            "description": f"Your eco score is {round(eco_score)}/100. You're in the top 25% of sustainable spenders!",
            "icon": "Leaf",
            "type": "success",
        })
    elif eco_score < 40:
        insights.append({
            "title": "High Carbon Footprint",
            "description": f"Eco score: {round(eco_score)}/100. Consider switching to eco-friendly alternatives.",
            "icon": "AlertTriangle",
            "type": "warning",
            "action": "View Recommendations",
        })

    if category_breakdown and category_breakdown[0]["percentage"] > 40:
        top = category_breakdown[0]
        insights.append({
            "title": f"{top['category']} Impact",
            "description": f"{round(top['percentage'])}% of your carbon footprint comes from {top['category']}",
            "icon": "PieChart",
            "type": "info",
        })

    trees = math.ceil(total_co2 / TREE_CO2_KG)
    insights.append({
        "title": f"Plant {trees} Trees to Offset",
        "description": f"Your carbon footprint equals {total_co2:.1f} kg CO2 this period",
        "icon": "TreePine",
        "type": "info",
        "action": "Offset Now",
    })

    transport = next((c["co2kg"] for c in category_breakdown if c["category"] == "Transportation"), 0)
    if total_co2 > 0 and transport > total_co2 * 0.3:
        insights.append({
            "title": "Consider Public Transport",
            "description": f"{round(transport / total_co2 * 100)}% of emissions from transportation",
            "icon": "Bus",
            "type": "warning",
            "action": "Explore Alternatives",
        })

    return insights[:5]


def generate_recommendations(category_breakdown: Sequence[Mapping[str, Any]]) -> List[str]:
    recommendations: List[str] = []
    for cat in category_breakdown[:3]:
        if cat["category"] == "Transportation" and cat["percentage"] > 20:
            recommendations.append("Switch to bike or public transport for short distances")
        elif cat["category"] == "Food & Beverage" and cat["percentage"] > 30:
            recommendations.append("Choose local, plant-based options to reduce food emissions")
        elif cat["category"] == "Shopping" and cat["percentage"] > 25:
            recommendations.append("Buy second-hand or from sustainable brands")

    recommendations.extend([
        "Use reusable bags and containers",
        "Support eco-certified businesses",
        "Reduce online shopping to minimize shipping emissions",
    ])
    return recommendations[:5]


async def analyze_carbon_footprint(
    db,
    user_id: str,
    period: str = "month",
    now: Optional[dt.datetime] = None,
) -> Dict[str, Any]:
    end = now or utcnow()
    start = period_start(period, end)
    receipts = await receipts_col(db).find({
        "userId": user_id,
        "createdAt": {"$gte": start, "$lte": end},
        "status": {"$in": ANALYZED_STATUSES},
    }).to_list(length=None)
    logger.info("[carbon] analyzing %d receipts (%s)", len(receipts), period)

    with_co2 = [{**r, "co2Estimate": estimate_co2(r)} for r in receipts]
    total_co2 = sum(r["co2Estimate"]["co2kg"] for r in with_co2)

    per_category: Dict[str, float] = defaultdict(float)
    for r in with_co2:
        per_category[r.get("category") or "Other"] += r["co2Estimate"]["co2kg"]
    breakdown = sorted(
        (
            {"category": cat, "co2kg": kg, "percentage": kg / total_co2 * 100 if total_co2 else 0}
            for cat, kg in per_category.items()
        ),
        key=lambda c: c["co2kg"],
        reverse=True,
    )

    total_spent = sum(to_number(r.get("total")) for r in receipts)
    co2_per_unit = total_co2 / total_spent if total_spent > 0 else 0
    eco_score = max(0.0, min(100.0, 100 - co2_per_unit * 50))

    top_polluters = [
        {"merchant": r.get("merchant") or "Unknown", "co2kg": r["co2Estimate"]["co2kg"], "category": r.get("category") or "Other"}
        for r in sorted(with_co2, key=lambda r: r["co2Estimate"]["co2kg"], reverse=True)[:5]
    ]

    return {
        "totalCO2kg": total_co2,
        "treesEquivalent": math.ceil(total_co2 / TREE_CO2_KG),
        "categoryBreakdown": breakdown,
        "monthlyTrend": calculate_monthly_trend(with_co2),
        "ecoScore": eco_score,
        "insights": generate_eco_insights(breakdown, eco_score, total_co2),
        "topPolluters": top_polluters,
        "recommendations": generate_recommendations(breakdown),
    }
