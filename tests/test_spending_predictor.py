import datetime as dt

from app.ml.spending_predictor import (
    CATEGORIES,
    SpendingPredictor,
    fallback_prediction,
    get_spending_predictor,
)


def _receipts(n, start=dt.datetime(2024, 3, 1, 12, tzinfo=dt.timezone.utc)):
    categories = ["Food & Beverage", "Shopping", "Transportation"]
    return [
        {
            "merchant": f"Shop {i % 3}",
            "total": 10 + i * 5,
            "date": (start + dt.timedelta(days=i)).date().isoformat(),
            "category": categories[i % 3],
        }
        for i in range(n)
    ]


def test_fallback_uses_average_of_history():
    result = fallback_prediction([{"total": 10.0}, {"total": 20.0}])
    assert result["predictedAmount"] == 15.0
    assert result["confidence"] == 50
    assert result["insights"] == ["Upload more receipts to improve predictions"]
    assert fallback_prediction([])["predictedAmount"] == 50


def test_too_few_receipts_fall_back():
    predictor = SpendingPredictor()
    predictor.initialize(_receipts(4))
    assert predictor.get_model_info()["trained"] is False
    prediction = predictor.predict()
    assert prediction["predictedCategory"] == "Other"
    assert prediction["predictedAmount"] == 17.5


def test_trained_prediction_shape():
    predictor = SpendingPredictor()
    predictor.initialize(list(reversed(_receipts(12))))

    # receipts are put in chronological order before training
    assert [r["total"] for r in predictor.receipts] == [10 + i * 5 for i in range(12)]

    prediction = predictor.predict({"dayOfWeek": 2, "hourOfDay": 9, "category": "Shopping"})
    assert prediction["predictedCategory"] in CATEGORIES
    assert 0 <= prediction["confidence"] <= 100
    assert 0 <= prediction["predictedAmount"] <= 65
    assert prediction["trend"] == "increasing"
    assert prediction["riskLevel"] in ("low", "medium", "high")
    assert "Your spending has been trending upward recently" in prediction["insights"]
    assert "Your highest spending category is Transportation" in prediction["insights"]

    info = predictor.get_model_info()
    assert info["trained"] is True
    assert info["samples"] == 12
    assert 0 <= info["accuracy"] <= 100


def test_initialize_resets_previous_state():
    predictor = SpendingPredictor()
    predictor.initialize(_receipts(8))
    assert predictor.is_initialized
    predictor.initialize(_receipts(2))
    assert predictor.is_initialized is False
    assert predictor.category_averages == {}
    assert predictor.get_model_info() == {"trained": False, "samples": 2, "accuracy": 0}


def test_export_import_model():
    source = SpendingPredictor()
    source.initialize(_receipts(6))
    target = SpendingPredictor()
    target.import_model(source.export_model())
    features = [0.1, 0.2, 0.3, 0.4, 0.5, 0.5, 0.5]
    assert target.network.predict(features) == source.network.predict(features)


def test_predictor_is_a_singleton():
    assert get_spending_predictor() is get_spending_predictor()
