"""Spending personality profiles ("spending DNA").

Six traits, each scored 0-100 from the share of receipts that show it,
decide one of six personality types.  Profiles are computed over every
completed or needs-review receipt a user has.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, List, Mapping, Sequence

from app.core.database import receipts_col
from app.services.regret import ANALYZED_STATUSES
from app.utils.helpers import as_datetime, to_number, utcnow

logger = logging.getLogger(__name__)

EXPERIENCE_CATEGORIES = ("Entertainment", "Transportation", "Travel")
ONLINE_MERCHANTS = ("amazon", "ebay", "etsy", "uber", "doordash")
INDULGENCE_CATEGORIES = ("Dining", "Entertainment", "Fashion", "Shopping")

CHARACTERISTICS: Dict[str, List[str]] = {
    "The Planner": [
        "You budget meticulously and rarely make impulse purchases",
        "Spreadsheets are your best friend",
        "You research before every major purchase",
        "Future security is a top priority",
    ],
    "The Impulsive": [
        "You live in the moment and enjoy spontaneous purchases",
        "Shopping is a form of self-expression",
        "You trust your gut when buying",
        "Experiences matter more than savings",
    ],
    "The Minimalist": [
        "You believe less is more",
        "Every purchase must serve a clear purpose",
        "Quality over quantity is your mantra",
        "You find joy in simplicity",
    ],
    "The Experience Seeker": [
        "You'd rather spend on experiences than things",
        "Travel and dining are your top categories",
        "Memories are more valuable than possessions",
        "YOLO is your financial philosophy",
    ],
    "The Balanced": [
        "You maintain a healthy spending equilibrium",
        "You save but also enjoy treats",
        "Practical with occasional indulgences",
        "Financial wisdom with room for fun",
    ],
    "The Stress Shopper": [
        "Shopping is your emotional release",
        "Late-night purchases are common",
        "Spending patterns fluctuate with mood",
        "Retail therapy is real for you",
    ],
}

STRENGTHS_WEAKNESSES: Dict[str, Dict[str, List[str]]] = {
    "The Planner": {
        "strengths": ["Excellent at saving", "Low financial stress", "Achieves long-term goals"],
        "weaknesses": ["May miss out on spontaneous joy", "Can be overly restrictive"],
    },
    "The Impulsive": {
        "strengths": ["Lives fully in the moment", "Open to opportunities", "High life satisfaction"],
        "weaknesses": ["Struggles with savings", "May experience buyer's remorse"],
    },
    "The Minimalist": {
        "strengths": ["Low clutter", "High satisfaction per purchase", "Eco-conscious"],
        "weaknesses": ["May deprive yourself unnecessarily", "Can seem rigid"],
    },
    "The Experience Seeker": {
        "strengths": ["Rich life experiences", "Great memories", "Well-traveled"],
        "weaknesses": ["Lower material assets", "Less emergency savings"],
    },
    "The Balanced": {
        "strengths": ["Financial stability", "Life enjoyment", "Flexible approach"],
        "weaknesses": ["May lack strong direction", "Could optimize further"],
    },
    "The Stress Shopper": {
        "strengths": ["Finds emotional outlets", "Quick mood boosts"],
        "weaknesses": ["Unhealthy coping mechanism", "Financial instability"],
    },
}

TAGLINES: Dict[str, str] = {
    "The Planner": "Every dollar has a purpose",
    "The Impulsive": "Life's too short for spreadsheets",
    "The Minimalist": "Less stuff, more life",
    "The Experience Seeker": "Collect moments, not things",
    "The Balanced": "Best of both worlds",
    "The Stress Shopper": "Shopping = therapy",
}

# Display hints used by the DNA page
PERSONALITY_DISPLAY: Dict[str, Dict[str, str]] = {
    "The Planner": {"emoji": "📊", "color": "from-blue-500 to-cyan-500"},
    "The Impulsive": {"emoji": "🎉", "color": "from-orange-500 to-red-500"},
    "The Minimalist": {"emoji": "✨", "color": "from-gray-500 to-slate-600"},
    "The Experience Seeker": {"emoji": "🌍", "color": "from-purple-500 to-pink-500"},
    "The Balanced": {"emoji": "⚖️", "color": "from-green-500 to-teal-500"},
    "The Stress Shopper": {"emoji": "💳", "color": "from-red-500 to-pink-500"},
}

TRAIT_ICONS: Dict[str, str] = {
    "Planning": "Target",
    "Frugality": "TrendingUp",
    "Experience Seeker": "Plane",
    "Consistency": "Zap",
    "Digital Adoption": "Sparkles",
    "Indulgence": "Heart",
}


def _strand(trait: str, value: float, high: str, low: str, color: str) -> Dict[str, Any]:
    return {"trait": trait, "value": round(value), "description": high if value > 60 else low, "color": color}


def calculate_dna_strands(receipts: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    n = len(receipts)
    totals = [to_number(r.get("total")) for r in receipts]
    avg = sum(totals) / n if n else 0

    def share(count: int, factor: float) -> float:
        return min(count / n * factor, 100) if n else 0

    planning = share(sum(1 for t in totals if t < avg * 0.5), 100)
    frugality = share(sum(1 for t in totals if t < 30), 120)
    experience = share(sum(1 for r in receipts if r.get("category") in EXPERIENCE_CATEGORIES), 150)

    per_day = Counter(
        (as_datetime(r.get("createdAt")) or utcnow()).date().isoformat() for r in receipts
    )
    if per_day:
        counts = list(per_day.values())
        mean = sum(counts) / len(counts)
        variance = sum((c - mean) ** 2 for c in counts) / len(counts)
        consistency = max(0.0, 100 - variance * 10)
    else:
        consistency = 0.0

    digital = share(
        sum(1 for r in receipts if any(m in (r.get("merchant") or "").lower() for m in ONLINE_MERCHANTS)),
        150,
    )
    indulgence = share(sum(1 for r in receipts if r.get("category") in INDULGENCE_CATEGORIES), 120)

    return [
        _strand("Planning", planning, "Careful planner", "Spontaneous", "text-blue-500"),
        _strand("Frugality", frugality, "Budget conscious", "Value quality", "text-green-500"),
        _strand("Experience Seeker", experience, "Lives for experiences", "Material focused", "text-purple-500"),
        _strand("Consistency", consistency, "Routine spender", "Variable patterns", "text-orange-500"),
        _strand("Digital Adoption", digital, "Digital native", "Prefers in-store", "text-cyan-500"),
        _strand("Indulgence", indulgence, "Treats often", "Necessity focused", "text-pink-500"),
    ]


def determine_personality_type(strands: Sequence[Mapping[str, Any]]) -> str:
    s = {strand["trait"]: strand["value"] for strand in strands}
    if s["Planning"] > 70 and s["Consistency"] > 70:
        return "The Planner"
    if s["Planning"] < 40 and s["Indulgence"] > 60:
        return "The Impulsive"
    if s["Frugality"] > 70 and s["Indulgence"] < 40:
        return "The Minimalist"
    if s["Experience Seeker"] > 70:
        return "The Experience Seeker"
    if s["Consistency"] < 40 and s["Indulgence"] > 60:
        return "The Stress Shopper"
    return "The Balanced"


async def analyze_spending_dna(db, user_id: str) -> Dict[str, Any]:
    receipts = await receipts_col(db).find(
        {"userId": user_id, "status": {"$in": ANALYZED_STATUSES}}
    ).to_list(length=None)
    logger.info("[spending-dna] analyzing %d receipts", len(receipts))

    strands = calculate_dna_strands(receipts)
    personality = determine_personality_type(strands)
    top_traits = [s["trait"] for s in sorted(strands, key=lambda s: s["value"], reverse=True)[:3]]

    return {
        "personalityType": personality,
        "confidence": 0.85,
        "dnaStrands": strands,
        "characteristics": CHARACTERISTICS[personality],
        "strengths": STRENGTHS_WEAKNESSES[personality]["strengths"],
        "weaknesses": STRENGTHS_WEAKNESSES[personality]["weaknesses"],
        "shareableCard": {
            "type": personality,
            "tagline": TAGLINES[personality],
            "topTraits": top_traits,
        },
    }


def to_dna_view(analysis: Mapping[str, Any]) -> Dict[str, Any]:
    """Reshape an analysis for the spending DNA page."""
    personality = analysis["personalityType"]
    info = PERSONALITY_DISPLAY.get(personality, {"emoji": "🧬", "color": "from-gray-500 to-gray-600"})
    characteristics = analysis["characteristics"]
    return {
        "personalityType": {
            "name": personality,
            "tagline": analysis["shareableCard"]["tagline"],
            "emoji": info["emoji"],
            "color": info["color"],
        },
        "dnaStrands": [
            {
                "trait": s["trait"],
                "score": s["value"],
                "icon": TRAIT_ICONS.get(s["trait"], "Sparkles"),
                "color": s["color"],
                "description": s["description"],
            }
            for s in analysis["dnaStrands"]
        ],
        "topCategories": [{"category": "Based on your purchases", "percentage": 100, "icon": "ShoppingBag"}],
        "financialHabits": [
            {"habit": c[4:] if c.lower().startswith("you ") else c, "positive": idx < 2}
            for idx, c in enumerate(characteristics[:4])
        ],
        "compatibleTypes": [
            {"type": "The Balanced", "compatibility": 82},
            {"type": "The Planner", "compatibility": 75},
            {"type": "The Minimalist", "compatibility": 60},
        ],
        "uniqueInsights": characteristics,
        "strengths": analysis["strengths"],
        "weaknesses": analysis["weaknesses"],
        "shareCard": {
            "type": personality,
            "tagline": analysis["shareableCard"]["tagline"],
            "topTraits": analysis["shareableCard"]["topTraits"],
            "color": info["color"].split(" ")[0].replace("from-", "").split("-")[0],
        },
    }
