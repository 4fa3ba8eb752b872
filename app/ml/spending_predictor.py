"""Spending prediction on top of :mod:`app.ml.neural_network`.

The network maps seven normalised features of a purchase context

    [day of week, hour of day, category, previous amount,
     average spend, merchant frequency, trend]

to three outputs in (0, 1): amount as a fraction of the largest receipt,
category index as a fraction of the category list, and a confidence.
A predictor is retrained from scratch on every :meth:`initialize` call.
"""

from __future__ import annotations

import datetime as dt
import logging
import random
from collections import Counter, defaultdict
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.ml.neural_network import NeuralNetwork, NeuralNetworkConfig, TrainingSample
from app.utils.helpers import as_datetime, js_weekday, round2, to_number, utcnow

logger = logging.getLogger(__name__)

CATEGORIES = [
    "Food & Beverage",
    "Shopping",
    "Transportation",
    "Entertainment",
    "Healthcare",
    "Utilities",
    "Travel",
    "Education",
    "Other",
]

MIN_TRAINING_RECEIPTS = 5
TRAINING_EPOCHS = 300
TRAINING_BATCH_SIZE = 16


def _network() -> NeuralNetwork:
    return NeuralNetwork(NeuralNetworkConfig(
        input_size=7,
        hidden_layers=[16, 8],
        output_size=3,
        learning_rate=0.01,
    ))


def _category_feature(category: Optional[str]) -> float:
    name = category or "Other"
    # unknown categories encode as -1 like a failed index lookup
    index = CATEGORIES.index(name) if name in CATEGORIES else -1
    return index / (len(CATEGORIES) - 1)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def fallback_prediction(receipts: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    avg = _mean([r["total"] for r in receipts]) if receipts else 50
    return {
        "predictedAmount": round2(avg),
        "predictedCategory": "Other",
        "confidence": 50,
        "trend": "stable",
        "nextWeekEstimate": avg * 7,
        "insights": ["Upload more receipts to improve predictions"],
        "riskLevel": "low",
        "savingsOpportunity": 0,
    }


class SpendingPredictor:
    def __init__(self):
        self.network = _network()
        self.receipts: List[Dict[str, Any]] = []
        self.merchant_frequency: Counter = Counter()
        self.category_averages: Dict[str, float] = {}
        self.is_initialized = False

    @staticmethod
    def _normalize(receipt: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "merchant": receipt.get("merchant") or "Unknown",
            "total": to_number(receipt.get("total")),
            "date": as_datetime(receipt.get("date")) or as_datetime(receipt.get("createdAt")) or utcnow(),
            "category": receipt.get("category") or "Other",
        }

    def initialize(self, receipts: Sequence[Mapping[str, Any]]) -> None:
        """Reset and train on a user's receipt history."""
        self.network = _network()
        self.merchant_frequency = Counter()
        self.category_averages = {}
        self.is_initialized = False
        self.receipts = sorted((self._normalize(r) for r in receipts), key=lambda r: r["date"])

        if len(self.receipts) < MIN_TRAINING_RECEIPTS:
            logger.info("[neural] %d receipts, not enough to train", len(self.receipts))
            return

        self._calculate_statistics()
        training_data = self._prepare_training_data()
        if training_data:
            self.network.train(training_data, TRAINING_EPOCHS, TRAINING_BATCH_SIZE)
            self.is_initialized = True
            logger.info(
                "[neural] trained on %d samples, final loss %.4f",
                len(training_data),
                self.network.get_loss_history()[-1],
            )

    def _calculate_statistics(self) -> None:
        sums: Dict[str, List[float]] = defaultdict(list)
        for r in self.receipts:
            self.merchant_frequency[r["merchant"].lower()] += 1
            sums[r["category"]].append(r["total"])
        self.category_averages = {cat: _mean(totals) for cat, totals in sums.items()}

    def _prepare_training_data(self) -> List[TrainingSample]:
        rows = self.receipts
        max_amount = max([r["total"] for r in rows] + [1])
        avg_spend = _mean([r["total"] for r in rows])
        samples: List[TrainingSample] = []

        for i in range(1, len(rows)):
            current, prev = rows[i], rows[i - 1]
            date: dt.datetime = current["date"]

            trend = 0.0
            if i >= 3:
                recent_avg = _mean([rows[i - k]["total"] for k in (1, 2, 3)])
                older_avg = _mean([rows[i - k]["total"] for k in (4, 5, 6)]) if i >= 6 else recent_avg
                trend = (recent_avg - older_avg) / max(older_avg, 1)

            freq = self.merchant_frequency.get(current["merchant"].lower()) or 1
            inputs = [
                js_weekday(date) / 6,
                date.hour / 23,
                _category_feature(current["category"]),
                prev["total"] / max_amount,
                avg_spend / max_amount,
                freq / len(rows),
                (trend + 1) / 2,
            ]
            targets = [
                current["total"] / max_amount,
                _category_feature(current["category"]),
                0.8 + random.random() * 0.2,
            ]
            samples.append(TrainingSample(inputs=inputs, targets=targets))
        return samples

    def predict(self, context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        if not self.is_initialized or len(self.receipts) < MIN_TRAINING_RECEIPTS:
            return fallback_prediction(self.receipts)

        context = context or {}
        totals = [r["total"] for r in self.receipts]
        max_amount = max(totals + [1])
        avg_spend = _mean(totals)
        last_receipt = self.receipts[-1]

        recent = totals[-5:]
        older = totals[-10:-5]
        recent_avg = _mean(recent)
        older_avg = _mean(older) if older else recent_avg
        trend = (recent_avg - older_avg) / max(older_avg, 1)

        now = dt.datetime.now()
        day = context.get("dayOfWeek")
        hour = context.get("hourOfDay")
        inputs = [
            (js_weekday(now) if day is None else day) / 6,
            (now.hour if hour is None else hour) / 23,
            _category_feature(context.get("category") or last_receipt["category"]),
            last_receipt["total"] / max_amount,
            avg_spend / max_amount,
            0.5,
            (trend + 1) / 2,
        ]
        output = self.network.predict(inputs)

        predicted_amount = output[0] * max_amount
        category_index = round(output[1] * (len(CATEGORIES) - 1))
        confidence = output[2]

        if trend > 0.1:
            direction = "increasing"
        elif trend < -0.1:
            direction = "decreasing"
        else:
            direction = "stable"

        weekly_rate = sum(totals[-7:]) if len(totals) > 7 else avg_spend * 7
        next_week = weekly_rate * (1 + trend * 0.5)

        risk = "low"
        if predicted_amount > avg_spend * 2:
            risk = "high"
        elif predicted_amount > avg_spend * 1.5:
            risk = "medium"

        savings = max(0.0, (recent_avg - older_avg) * 4)

        return {
            "predictedAmount": round2(predicted_amount),
            "predictedCategory": CATEGORIES[category_index] if 0 <= category_index < len(CATEGORIES) else "Other",
            "confidence": round(confidence * 100),
            "trend": direction,
            "nextWeekEstimate": round2(next_week),
            "insights": self._insights(predicted_amount, direction, avg_spend, js_weekday(now)),
            "riskLevel": risk,
            "savingsOpportunity": round2(savings),
        }

    def _insights(self, predicted: float, trend: str, avg: float, weekday: int) -> List[str]:
        insights: List[str] = []
        if predicted > avg * 1.5:
            insights.append("Predicted spending is 50% above your average")
        elif predicted < avg * 0.5:
            insights.append("Predicted spending is below your average - good job!")

        if trend == "increasing":
            insights.append("Your spending has been trending upward recently")
        elif trend == "decreasing":
            insights.append("Great progress! Your spending is trending down")

        # Friday and Saturday
        if weekday in (5, 6):
            insights.append("Weekend spending tends to be higher - stay mindful!")

        if self.category_averages:
            top = max(self.category_averages.items(), key=lambda kv: kv[1])
            insights.append(f"Your highest spending category is {top[0]}")

        if not insights:
            insights.append("Your spending patterns look consistent")
        return insights

    def get_model_info(self) -> Dict[str, Any]:
        history = self.network.get_loss_history()
        last_loss = history[-1] if history and history[-1] else 1
        accuracy = max(0.0, min(100.0, (1 - last_loss) * 100))
        return {
            "trained": self.is_initialized,
            "samples": len(self.receipts),
            "accuracy": round(accuracy),
        }

    def export_model(self) -> str:
        return self.network.serialize()

    def import_model(self, payload: str) -> None:
        self.network = NeuralNetwork.deserialize(payload)
        self.is_initialized = True


_predictor: Optional[SpendingPredictor] = None


def get_spending_predictor() -> SpendingPredictor:
    global _predictor
    if _predictor is None:
        _predictor = SpendingPredictor()
    return _predictor
