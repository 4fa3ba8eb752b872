"""Neural, RAG, SMS transaction and currency routes, plus the assembled app."""
from __future__ import annotations

import asyncio
import time

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from app.api.error_handlers import generic_exception_handler
from app.api.routes import neural as neural_routes
from app.api.routes.currency import router as currency_router
from app.api.routes.neural import router as neural_router
from app.api.routes.rag import router as rag_router
from app.api.routes.transactions import router as transactions_router
from app.core.database import chunks_col, get_db, receipts_col
from app.services import currency
from app.services.ai_providers import MOCK_GENERATION, mock_embed

SBI_SMS = "Rs.250.00 debited from A/c XX1234 to UPI/swiggy@icici on 12-03-24. Ref 412345678901"


@pytest.fixture
def client(fake_db):
    app = FastAPI()
    for router in (neural_router, rag_router, transactions_router, currency_router):
        app.include_router(router, prefix="/api")
    app.dependency_overrides[get_db] = lambda: fake_db
    return TestClient(app)


def _seed_receipts(fake_db, n, user_id="u1"):
    for i in range(n):
        receipts_col(fake_db).docs.append({
            "_id": f"r{i}",
            "userId": user_id,
            "merchant": f"Shop {i % 2}",
            "total": 20.0 + i,
            "category": "Food & Beverage" if i % 2 else "Shopping",
            "date": f"2024-03-{i + 1:02d}",
            "status": "completed",
        })


# -- neural ----------------------------------------------------------------------


def test_predict_without_receipts(client):
    body = client.post("/api/neural/predict", json={"userId": "u1"}).json()
    assert body == {"success": False, "error": "No receipts found for training", "prediction": None}

    body = client.get("/api/neural/predict", params={"userId": "u1"}).json()
    assert body["success"] is True
    assert body["prediction"] == {
        "predictedAmount": 0,
        "predictedCategory": "Other",
        "confidence": 0,
        "trend": "stable",
        "nextWeekEstimate": 0,
        "insights": ["Upload receipts to get AI predictions"],
        "riskLevel": "low",
        "savingsOpportunity": 0,
    }
    assert body["model"] == {"trained": False, "samples": 0, "accuracy": 0}
    assert body["receiptsUsed"] == 0


def test_predict_trains_on_history(client, fake_db):
    _seed_receipts(fake_db, 6)
    body = client.post(
        "/api/neural/predict",
        json={"userId": "u1", "context": {"dayOfWeek": 5, "hourOfDay": 20, "category": "Shopping"}},
    ).json()
    assert body["success"] is True
    assert body["model"]["trained"] is True
    assert body["model"]["samples"] == 6
    assert body["receiptsUsed"] == 6
    assert "predictedAmount" in body["prediction"]


def test_predict_with_little_history_falls_back(client, fake_db):
    _seed_receipts(fake_db, 3)
    body = client.get("/api/neural/predict", params={"userId": "u1", "category": "Shopping"}).json()
    assert body["model"]["trained"] is False
    assert body["prediction"]["confidence"] == 50
    assert body["prediction"]["predictedAmount"] == 21.0


def test_predict_context_is_validated(client):
    res = client.post("/api/neural/predict", json={"userId": "u1", "context": {"dayOfWeek": 9}})
    assert res.status_code == 422


@pytest.mark.asyncio
async def test_training_runs_off_the_event_loop(fake_db, monkeypatch):
    _seed_receipts(fake_db, 6)

    def slow_predict(receipts, context):
        time.sleep(0.5)
        return {"success": True, "receiptsUsed": len(receipts)}

    monkeypatch.setattr(neural_routes, "_predict", slow_predict)
    app = FastAPI()
    app.include_router(neural_router, prefix="/api")
    app.dependency_overrides[get_db] = lambda: fake_db

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        request = asyncio.create_task(ac.post("/api/neural/predict", json={"userId": "u1"}))
        gaps = []
        while not request.done():
            started = time.perf_counter()
            await asyncio.sleep(0.01)
            gaps.append(time.perf_counter() - started)
        response = await request

    assert max(gaps) < 0.3
    assert response.json() == {"success": True, "receiptsUsed": 6}


def test_predictor_is_used_under_the_lock(monkeypatch):
    seen = []

    class RecordingPredictor:
        def initialize(self, receipts):
            seen.append(neural_routes._predictor_lock.locked())

        def predict(self, context):
            seen.append(neural_routes._predictor_lock.locked())
            return {"predictedAmount": 1.0}

        def get_model_info(self):
            return {"trained": False, "samples": 1, "accuracy": 0}

    monkeypatch.setattr(neural_routes, "get_spending_predictor", RecordingPredictor)
    result = neural_routes._predict([{"total": 1.0}], {})
    assert seen == [True, True]
    assert result["prediction"] == {"predictedAmount": 1.0}
    assert neural_routes._predictor_lock.locked() is False


# -- rag -------------------------------------------------------------------------


def test_rag_query(client, fake_db):
    assert client.post("/api/rag/query", json={"userId": "u1"}).status_code == 400

    chunks_col(fake_db).docs.append({
        "id": "r1::0", "receiptId": "r1", "userId": "u1", "text": "Corner Cafe latte",
        "metadata": {"section": "full", "index": 0}, "embedding": mock_embed("Corner Cafe latte"),
    })
    body = client.post("/api/rag/query", json={"userId": "u1", "query": "Corner Cafe latte", "k": 3}).json()
    assert body["answer"] == MOCK_GENERATION
    [hit] = body["hits"]
    assert hit["receiptId"] == "r1"
    assert hit["metadata"] == {"section": "full", "index": 0}
    assert hit["score"] == pytest.approx(1.0)


def test_rag_chat(client, fake_db):
    assert client.post("/api/rag/chat", json={"userId": "u1"}).json()["detail"] == "userId and query are required"

    _seed_receipts(fake_db, 4)
    body = client.post("/api/rag/chat", json={"userId": "u1", "query": "How much did I spend on food?"}).json()
    assert body["success"] is True
    assert body["queryType"] == "spending"
    assert body["answer"].startswith("You spent **$44.00** across **2 receipts**")
    assert {r["receiptId"] for r in body["relevantReceipts"]} == {"r1", "r3"}


# -- transactions ----------------------------------------------------------------


def test_sms_import(client, fake_db):
    res = client.post("/api/transactions/sms", params={"userId": "u1"}, json={"smsBody": SBI_SMS})
    body = res.json()
    assert body["success"] is True
    assert body["transaction"]["merchant"] == "Swiggy"
    assert receipts_col(fake_db).docs[0]["_id"] == body["receiptId"]

    dup = client.post("/api/transactions/sms", params={"userId": "u1"}, json={"smsBody": SBI_SMS})
    assert dup.status_code == 409
    assert dup.json() == {"success": False, "error": "Duplicate transaction detected", "existingId": body["receiptId"]}


def test_sms_import_errors(client):
    empty = client.post("/api/transactions/sms", params={"userId": "u1"}, json={})
    assert empty.json()["detail"] == "SMS body is required"

    res = client.post("/api/transactions/sms", params={"userId": "u1"}, json={"smsBody": "Your OTP is 123456"})
    assert res.status_code == 400
    assert res.json() == {"error": "Could not parse transaction from SMS", "smsBody": "Your OTP is 123456"}


def test_sms_sync(client, fake_db):
    assert client.post("/api/transactions/sms/sync", params={"userId": "u1"}, json={}).status_code == 400

    res = client.post(
        "/api/transactions/sms/sync",
        params={"userId": "u1"},
        json={"messages": [
            {"body": SBI_SMS, "date": "2024-03-12T10:30:00Z", "sender": "VM-SBIINB"},
            {"body": "Hello there"},
        ]},
    )
    results = res.json()["results"]
    assert results["imported"] == 1
    assert results["failed"] == 1
    assert receipts_col(fake_db).docs[0]["date"] == "2024-03-12"


# -- currency --------------------------------------------------------------------


def test_currency_detect(client):
    body = client.post("/api/currency/detect", json={"ocrText": "Total ₹450"}).json()
    assert body == {"currency": "INR", "confidence": 0.99, "signals": ["symbol:INR"]}


def test_currency_convert(client, monkeypatch):
    currency.clear_exchange_rate_cache()

    async def fake_fetch(base):
        return 80.0

    monkeypatch.setattr(currency, "_fetch_rate_from_api", fake_fetch)
    body = client.get("/api/currency/convert", params={"amount": 10, "currency": "usd"}).json()
    assert body == {"amount": 10.0, "currency": "USD", "inr": 800.0, "rate": 80.0, "formatted": "₹ 800.00"}
    currency.clear_exchange_rate_cache()

    assert client.get("/api/currency/convert", params={"amount": -1, "currency": "USD"}).status_code == 422
    assert client.get("/api/currency/convert", params={"amount": 1, "currency": "US"}).status_code == 422


# -- application -----------------------------------------------------------------


def test_health_and_root():
    from app.api.main import app

    client = TestClient(app)
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.head("/health").status_code == 200
    assert "Receipt API" in client.get("/").json()["message"]
    assert "database" in client.get("/debug/db").json()


def test_validation_errors_use_error_envelope(fake_db):
    from app.api.main import app

    app.dependency_overrides[get_db] = lambda: fake_db
    try:
        res = TestClient(app).post("/api/currency/detect", json=["not", "an", "object"])
    finally:
        app.dependency_overrides.clear()
    assert res.status_code == 422
    body = res.json()
    assert body["error"] == "Validation error"
    assert body["details"]


def test_generic_exception_handler():
    request = Request({
        "type": "http", "method": "GET", "path": "/boom", "headers": [],
        "query_string": b"", "server": ("testserver", 80), "scheme": "http",
    })
    response = generic_exception_handler(request, RuntimeError("kaboom"))
    assert response.status_code == 500
    assert response.body == b'{"error":"Internal server error","details":"kaboom"}'
