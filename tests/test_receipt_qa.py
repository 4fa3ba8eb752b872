import datetime as dt

from app.services.receipt_qa import check_duplicate_receipt, generate_qa_suggestions, run_receipt_qa

TODAY = dt.date(2024, 3, 10)


def _receipt(**overrides):
    receipt = {
        "merchant": "Corner Cafe",
        "date": "2024-03-05",
        "total": 8.37,
        "tax": 0.62,
        "confidence": {"merchant": 0.9, "total": 0.9, "date": 0.9},
        "lineItems": [
            {"description": "Latte", "quantity": 1, "unitPrice": 4.5, "total": 4.5},
            {"description": "Muffin", "quantity": 1, "unitPrice": 3.25, "total": 3.25},
        ],
    }
    receipt.update(overrides)
    return receipt


def test_clean_receipt_passes():
    result = run_receipt_qa(_receipt(), today=TODAY)
    assert result.score == 100
    assert result.passed is True
    assert result.needsReview is False
    assert result.issues == []


def test_missing_total_is_critical():
    result = run_receipt_qa(_receipt(total=0, lineItems=[]), today=TODAY)
    assert "missing_total" in result.flags
    assert result.score == 75
    assert result.needsReview is True
    assert result.passed is False


def test_low_confidence_from_scalar_confidence():
    result = run_receipt_qa(_receipt(confidence=0.4), today=TODAY)
    assert {"low_confidence_merchant", "low_confidence_total", "low_confidence_date"} <= set(result.flags)
    assert result.score == 100 - 10 - 25 - 5


def test_future_date_and_arithmetic_errors():
    items = [{"description": "Latte", "quantity": 2, "unitPrice": 4.5, "total": 4.5}]
    result = run_receipt_qa(_receipt(date="2024-04-01", lineItems=items), today=TODAY)
    assert "future_date" in result.flags
    assert "calculation_error" in result.flags
    assert "total_mismatch" in result.flags
    assert result.score == 100 - 10 - 10 - 10


def test_large_amount_is_flagged():
    result = run_receipt_qa(_receipt(total=25000, tax=None, lineItems=[]), today=TODAY)
    assert "large_amount" in result.flags
    assert result.passed is True


def test_duplicate_detection_ranks_best_match():
    existing = [
        {"_id": "r1", "merchant": "Corner Cafe #12", "date": "2024-03-05", "total": 8.37},
        {"_id": "r2", "merchant": "Other Place", "date": "2024-03-05", "total": 8.50},
        {"receiptId": "r3", "merchant": "corner cafe", "date": "2024-03-04", "total": 8.40},
    ]
    result = check_duplicate_receipt(_receipt(), existing)
    assert result.isDuplicate is True
    assert result.matchedReceipts == ["r1", "r3"]
    assert result.similarity == 100


def test_duplicate_needs_merchant_date_and_total():
    result = check_duplicate_receipt(_receipt(total=0), [_receipt()])
    assert result.isDuplicate is False
    assert result.similarity == 0


def test_suggestions_follow_flags():
    result = run_receipt_qa(_receipt(merchant=None, confidence={"merchant": 0.9, "total": 0.3, "date": 0.9}), today=TODAY)
    suggestions = generate_qa_suggestions(result)
    assert suggestions[0] == "This receipt needs manual review before processing"
    assert "Try re-uploading with better lighting or higher resolution" in suggestions
    assert "Add the merchant name from the receipt image" in suggestions


def test_negative_total_is_critical():
    result = run_receipt_qa(_receipt(total=-5.0, tax=None, lineItems=[]), today=TODAY)
    assert result.flags == ["negative_amount"]
    assert result.issues[0].severity == "critical"
    assert result.score == 75
    assert result.needsReview is True


def test_very_old_receipt_is_informational():
    result = run_receipt_qa(_receipt(date="2010-01-01"), today=TODAY)
    assert result.flags == ["very_old"]
    assert result.issues[0].severity == "info"
    assert result.score == 95
    assert result.passed is True


def test_ten_year_limit_on_leap_day():
    leap_day = dt.date(2024, 2, 29)
    assert "very_old" in run_receipt_qa(_receipt(date="2014-02-27"), today=leap_day).flags
    assert "very_old" not in run_receipt_qa(_receipt(date="2014-02-28"), today=leap_day).flags


def test_invalid_line_items():
    items = [
        {"description": "Latte", "quantity": 1, "unitPrice": 4.5, "total": 4.5},
        {"description": "X", "quantity": 1, "unitPrice": 2.0, "total": 2.0},
    ]
    result = run_receipt_qa(_receipt(total=7.12, tax=0.62, lineItems=items), today=TODAY)
    assert result.flags == ["invalid_items"]
    assert result.issues[0].message == "1 invalid line item(s) detected"
    assert result.score == 95


def test_score_never_drops_below_zero():
    items = [{"description": "", "quantity": 0, "unitPrice": -1, "total": 3}]
    result = run_receipt_qa(
        _receipt(merchant=None, date=None, total=-50.0, tax=5.0, confidence=0.1, lineItems=items),
        today=TODAY,
    )
    assert len(result.issues) == 9
    assert result.score == 0
    assert result.needsReview is True
    assert result.passed is False
