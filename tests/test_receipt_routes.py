from __future__ import annotations

import datetime as dt

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt

from app.api.routes.receipts import router as receipts_router
from app.core import config as cfg
from app.core.database import get_db, receipts_col, training_col
from app.services import pipeline
from app.services.ocr import OCRResult

CAFE_RECEIPT = "Corner Cafe\n2024-03-05\nLatte    4.50\nMuffin    3.25\nTax: 0.62\nTotal: 8.37"


@pytest.fixture
def client(fake_db):
    app = FastAPI()
    app.include_router(receipts_router, prefix="/api")
    app.dependency_overrides[get_db] = lambda: fake_db
    return TestClient(app)


@pytest.fixture
def fake_ocr(monkeypatch):
    def _set(text):
        async def fake_ocr_image(data, filename=None):
            return OCRResult(text=text, pages=1)

        monkeypatch.setattr(pipeline, "ocr_image", fake_ocr_image)

    _set(CAFE_RECEIPT)
    return _set


@pytest.fixture
def storage_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(cfg.settings, "STORAGE_DIRECTORY", str(tmp_path))
    return tmp_path


def _seed(fake_db, **doc):
    base = {
        "_id": "r1",
        "userId": "u1",
        "merchant": "Corner Cafe",
        "date": "2024-03-05",
        "total": 8.37,
        "category": "Food & Beverage",
        "status": "completed",
        "lineItems": [],
        "createdAt": dt.datetime(2024, 3, 5, 9, tzinfo=dt.timezone.utc),
    }
    base.update(doc)
    receipts_col(fake_db).docs.append(base)
    return base


def test_upload_saves_file_and_processes(client, fake_db, fake_ocr, storage_dir):
    res = client.post(
        "/api/receipts/upload",
        files={"file": ("cafe.jpg", b"\xff\xd8fakejpeg", "image/jpeg")},
        data={"userId": "u1"},
    )
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "completed"
    assert body["receiptId"].startswith("r_")

    doc = receipts_col(fake_db).docs[0]
    assert doc["userId"] == "u1"
    assert doc["fileKey"].startswith("u1/")
    assert (storage_dir / doc["fileKey"]).read_bytes() == b"\xff\xd8fakejpeg"


def test_upload_validation(client, storage_dir):
    assert client.post("/api/receipts/upload", data={"userId": "u1"}).json() == {"detail": "No file provided"}

    res = client.post("/api/receipts/upload", files={"file": ("notes.txt", b"hello", "text/plain")}, data={"userId": "u1"})
    assert res.status_code == 400
    assert res.json()["detail"] == "Unsupported file type: .txt"

    res = client.post("/api/receipts/upload", files={"file": ("empty.png", b"", "image/png")}, data={"userId": "u1"})
    assert res.status_code == 400
    assert res.json()["detail"] == "Empty file"


def test_upload_rejects_oversized_files(client, storage_dir, monkeypatch):
    monkeypatch.setattr(cfg.settings, "MAX_UPLOAD_SIZE", 4)
    res = client.post("/api/receipts/upload", files={"file": ("big.png", b"12345", "image/png")}, data={"userId": "u1"})
    assert res.status_code == 413


def test_upload_requires_a_user(client, storage_dir):
    res = client.post("/api/receipts/upload", files={"file": ("cafe.jpg", b"data", "image/jpeg")})
    assert res.status_code == 401


def test_process_failure_returns_error_and_marks_failed(client, fake_db, fake_ocr):
    fake_ocr("blurry")
    res = client.post(
        "/api/receipts/r9/process",
        files={"file": ("cafe.jpg", b"data", "image/jpeg")},
        data={"userId": "u1"},
    )
    assert res.status_code == 500
    assert res.json() == {"error": "OCR failed to extract text"}
    assert receipts_col(fake_db).docs[0]["status"] == "failed"


def test_list_receipts(client, fake_db):
    _seed(fake_db)
    _seed(fake_db, _id="r2", userId="u2")
    _seed(fake_db, _id="r3", merchant=None, date=None, total=None, category=None)

    res = client.get("/api/receipts/list", params={"userId": "u1"})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["count"] == 2
    fallback = next(r for r in body["receipts"] if r["receiptId"] == "r3")
    assert fallback["merchant"] == "Unknown Merchant"
    assert fallback["date"] == "2024-03-05"
    assert fallback["category"] == "Other"
    assert fallback["total"] == 0


def test_cached_list_matches_uncached_response(client, fake_db, fake_redis):
    _seed(fake_db)

    first = client.get("/api/receipts/list", params={"userId": "u1"}).json()
    assert list(fake_redis.store) == ["receipts:list:u1:100"]
    receipts_col(fake_db).docs[0]["merchant"] = "Changed"
    second = client.get("/api/receipts/list", params={"userId": "u1"}).json()

    assert second == first
    assert second["receipts"][0]["merchant"] == "Corner Cafe"
    assert second["receipts"][0]["createdAt"] == "2024-03-05T09:00:00+00:00"


def test_mutations_invalidate_cached_list(client, fake_db, fake_redis):
    _seed(fake_db)
    client.get("/api/receipts/list", params={"userId": "u1"})
    assert fake_redis.store

    assert client.delete("/api/receipts/r1", params={"userId": "u1"}).json()["ok"] is True
    assert fake_redis.store == {}
    assert client.get("/api/receipts/list", params={"userId": "u1"}).json()["count"] == 0


def test_list_requires_identity(client):
    assert client.get("/api/receipts/list").status_code == 401


def test_bearer_token_identifies_user(client, fake_db):
    _seed(fake_db, userId="u9")
    token = jwt.encode({"sub": "u9"}, cfg.settings.SECRET_KEY, algorithm=cfg.settings.JWT_ALGORITHM)
    res = client.get("/api/receipts/list", headers={"Authorization": f"Bearer {token}"})
    assert res.json()["count"] == 1

    bad = client.get("/api/receipts/list", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


def test_dev_bypass_uses_demo_user(client, fake_db, dev_user):
    _seed(fake_db, userId=dev_user)
    assert client.get("/api/receipts/list").json()["count"] == 1


def test_receipt_detail(client, fake_db):
    _seed(fake_db)
    res = client.get("/api/receipts/r1", params={"userId": "u1"})
    assert res.json()["receipt"]["merchant"] == "Corner Cafe"
    assert client.get("/api/receipts/r1", params={"userId": "u2"}).status_code == 404


def test_delete_receipt(client, fake_db):
    _seed(fake_db)
    res = client.delete("/api/receipts/r1")
    assert res.status_code == 400
    assert res.json()["detail"] == "Missing userId"

    res = client.delete("/api/receipts/r1", params={"userId": "u1"})
    assert res.json() == {"ok": True, "receiptId": "r1"}
    assert receipts_col(fake_db).docs == []
    assert client.delete("/api/receipts/r1", params={"userId": "u1"}).status_code == 404


def test_update_receipt(client, fake_db):
    _seed(fake_db)
    res = client.patch("/api/receipts/r1/update", params={"userId": "u1"}, json={"merchant": "Corner Cafe Ltd", "total": 9.5})
    body = res.json()
    assert body["success"] is True
    assert body["message"] == "Receipt updated successfully"
    assert body["receipt"]["merchant"] == "Corner Cafe Ltd"
    assert receipts_col(fake_db).docs[0]["total"] == 9.5

    assert client.patch("/api/receipts/nope/update", params={"userId": "u1"}, json={}).status_code == 404


def test_update_category_learns(client, fake_db):
    _seed(fake_db)
    res = client.patch("/api/receipts/r1/update-category", json={"userId": "u1", "category": "Business"})
    assert res.status_code == 200
    body = res.json()
    assert body["receipt"] == {"id": "r1", "category": "Business", "merchant": "Corner Cafe"}
    assert body["message"] == 'Learned: "Corner Cafe" → "Business"'
    assert training_col(fake_db).docs[0]["category"] == "Business"
    assert receipts_col(fake_db).docs[0]["category"] == "Business"

    suggestions = client.get("/api/receipts/categories/suggestions", params={"userId": "u1", "prefix": "corn"})
    assert suggestions.json()["suggestions"] == [
        {"merchant": "Corner Cafe", "category": "Business", "confidence": 0.75},
    ]


def test_update_category_validation(client, fake_db):
    _seed(fake_db)
    missing = client.patch("/api/receipts/r1/update-category", json={"userId": "u1"})
    assert missing.json()["detail"] == "userId and category are required"

    invalid = client.patch("/api/receipts/r1/update-category", json={"userId": "u1", "category": "Snacks"})
    assert invalid.status_code == 400
    assert invalid.json()["detail"].startswith("Invalid category. Must be one of: Food & Beverage")

    unknown = client.patch("/api/receipts/r404/update-category", json={"userId": "u1", "category": "Travel"})
    assert unknown.status_code == 404


def test_debug_counts(client, fake_db):
    _seed(fake_db)
    _seed(fake_db, _id="r2", userId=cfg.settings.DEV_USER_ID)
    body = client.get("/api/receipts/debug").json()
    assert body["totalReceipts"] == 2
    assert body["demoUserReceipts"] == 1
    assert len(body["sampleReceipts"]) == 2
