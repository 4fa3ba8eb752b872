import pytest

from app.core.database import receipts_col
from app.scripts import migrate_currencies
from app.scripts.migrate_currencies import MigrationStats, migrate_receipt, migrate_receipts, summarize
from app.services import currency


@pytest.fixture(autouse=True)
def fixed_rates(monkeypatch):
    currency.clear_exchange_rate_cache()

    async def fake_fetch(base):
        return 80.0

    monkeypatch.setattr(currency, "_fetch_rate_from_api", fake_fetch)
    yield
    currency.clear_exchange_rate_cache()


def _seed(fake_db):
    receipts_col(fake_db).docs.extend([
        {"_id": "a", "merchant": "Corner Cafe", "ocrText": "Total $10.00", "total": 10},
        {"_id": "b", "merchant": "Chai Point", "rawOCR": "CGST 2.5%", "total": 100},
        {"_id": "c", "merchant": "Done", "currency": "INR", "totalINR": 5, "total": 5},
        {"_id": "d", "merchant": "Unknown", "total": 0},
    ])


@pytest.mark.asyncio
async def test_migrate_receipts_backfills_missing_currency(fake_db):
    _seed(fake_db)
    stats = await migrate_receipts(fake_db, pause=0)

    docs = {d["_id"]: d for d in receipts_col(fake_db).docs}
    assert docs["a"]["currency"] == "USD"
    assert docs["a"]["totalINR"] == 800.0
    assert docs["a"]["fxRateToINR"] == 80.0
    assert docs["b"]["currency"] == "INR"
    assert docs["b"]["totalINR"] == 100
    assert docs["b"]["currencySignals"] == ["ocr:india-patterns"]
    assert "currencySignals" not in docs["c"]
    assert docs["d"]["currencySignals"] == ["default:inr"]

    assert summarize(stats) == {
        "totalProcessed": 3,
        "updateSuccess": 3,
        "alreadyMigrated": 0,
        "updateFailed": 0,
        "needsReview": 1,
        "conversionErrors": 0,
        "byCurrency": {"INR": 2, "USD": 1},
        "byDetectionMethod": {"symbol": 1, "ocr": 1, "default": 1},
    }


@pytest.mark.asyncio
async def test_already_migrated_receipt_is_skipped(fake_db):
    stats = MigrationStats()
    await migrate_receipt(fake_db, {"_id": "x", "currency": "EUR", "totalINR": 91.0}, stats)
    assert stats.already_migrated == 1
    assert stats.by_currency == {}


@pytest.mark.asyncio
async def test_conversion_error_keeps_original_total(fake_db, monkeypatch):
    receipts_col(fake_db).docs.append({"_id": "e", "merchant": "Cafe", "ocrText": "€ 12.00", "total": 12})

    async def broken(amount, code):
        raise RuntimeError("rates unavailable")

    monkeypatch.setattr(migrate_currencies, "convert_to_inr", broken)
    stats = await migrate_receipts(fake_db, pause=0)

    doc = receipts_col(fake_db).docs[0]
    assert doc["currency"] == "EUR"
    assert doc["totalINR"] == 12
    assert doc["fxRateToINR"] == 1.0
    assert stats.conversion_errors == 1
    assert stats.update_success == 1
