"""Backfill currency data on receipts stored before currency detection existed.

Usage:
  python -m app.scripts.migrate_currencies [--pause SECONDS]

Finds receipts missing ``currency`` or ``totalINR``, detects the currency
from the stored OCR text and merchant, converts the total to INR and writes
``currency``, ``currencyConfidence``, ``currencySignals``, ``totalINR`` and
``fxRateToINR``.  Receipts are handled in batches of 10 with a pause
between batches to stay under the FX and geocoding rate limits.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

from app.core.database import close_db, get_database, receipts_col
from app.services.currency import convert_to_inr, detect_currency
from app.utils.helpers import to_number

logger = logging.getLogger(__name__)

BATCH_SIZE = 10
BATCH_PAUSE_SECONDS = 2.0
LOW_CONFIDENCE = 0.6


@dataclass
class MigrationStats:
    total_processed: int = 0
    already_migrated: int = 0
    needs_review: int = 0
    conversion_errors: int = 0
    update_success: int = 0
    update_failed: int = 0
    by_detection_method: Counter = field(default_factory=Counter)
    by_currency: Counter = field(default_factory=Counter)


def _ocr_text(receipt: Mapping[str, Any]) -> str:
    return receipt.get("rawOCR") or receipt.get("ocrText") or receipt.get("ocr") or ""


async def migrate_receipt(db, receipt: Mapping[str, Any], stats: MigrationStats) -> None:
    if receipt.get("currency") and receipt.get("totalINR") is not None:
        stats.already_migrated += 1
        return

    detection = await detect_currency(receipt.get("merchant") or "Unknown", _ocr_text(receipt), None)
    if detection.signals:
        stats.by_detection_method[detection.signals[0].split(":")[0]] += 1
    stats.by_currency[detection.currency] += 1

    total = to_number(receipt.get("total"))
    total_inr, rate = total, 1.0
    if detection.currency != "INR" and total:
        try:
            conversion = await convert_to_inr(total, detection.currency)
            total_inr, rate = conversion.inr, conversion.rate
        except Exception as e:  # noqa: BLE001
            logger.warning("  conversion failed for %s: %s", detection.currency, e)
            stats.conversion_errors += 1

    if detection.confidence < LOW_CONFIDENCE:
        print(f"  [warn] low confidence detection ({round(detection.confidence * 100)}%)")
        stats.needs_review += 1

    result = await receipts_col(db).update_one(
        {"_id": receipt["_id"]},
        {"$set": {
            "currency": detection.currency,
            "currencyConfidence": detection.confidence,
            "currencySignals": detection.signals,
            "totalINR": total_inr,
            "fxRateToINR": rate,
        }},
    )
    if result.modified_count > 0:
        stats.update_success += 1
        print(f"  [ok] {detection.currency} ({round(detection.confidence * 100)}% confidence)")
    elif result.matched_count > 0:
        stats.already_migrated += 1
    else:
        stats.update_failed += 1
        print("  [fail] update matched no receipt")


async def migrate_receipts(db, pause: float = BATCH_PAUSE_SECONDS) -> MigrationStats:
    stats = MigrationStats()
    pending = await receipts_col(db).find(
        {"$or": [{"currency": {"$exists": False}}, {"totalINR": {"$exists": False}}]}
    ).to_list(length=None)
    print(f"Found {len(pending)} receipts to process")

    for start in range(0, len(pending), BATCH_SIZE):
        for receipt in pending[start:start + BATCH_SIZE]:
            stats.total_processed += 1
            print(f"[{stats.total_processed}/{len(pending)}] Processing {receipt.get('merchant')}...")
            try:
                await migrate_receipt(db, receipt, stats)
            except Exception as e:  # noqa: BLE001
                stats.update_failed += 1
                logger.error("  error processing %s: %s", receipt.get("merchant"), e)
        if start + BATCH_SIZE < len(pending) and pause > 0:
            print(f"Processed batch {start // BATCH_SIZE + 1}, waiting before next batch...")
            await asyncio.sleep(pause)
    return stats


def summarize(stats: MigrationStats) -> Dict[str, Any]:
    return {
        "totalProcessed": stats.total_processed,
        "updateSuccess": stats.update_success,
        "alreadyMigrated": stats.already_migrated,
        "updateFailed": stats.update_failed,
        "needsReview": stats.needs_review,
        "conversionErrors": stats.conversion_errors,
        "byCurrency": dict(stats.by_currency.most_common()),
        "byDetectionMethod": dict(stats.by_detection_method.most_common()),
    }


def print_summary(stats: MigrationStats) -> None:
    summary = summarize(stats)
    print("=" * 60)
    print("MIGRATION SUMMARY")
    print("=" * 60)
    print(f"Total Processed:       {summary['totalProcessed']}")
    print(f"Successfully Updated:  {summary['updateSuccess']}")
    print(f"Already Migrated:      {summary['alreadyMigrated']}")
    print(f"Update Failed:         {summary['updateFailed']}")
    print(f"Needs Review:          {summary['needsReview']}")
    print(f"Conversion Errors:     {summary['conversionErrors']}")
    print("\nCurrencies Detected:")
    for currency, count in summary["byCurrency"].items():
        print(f"  {currency}: {count} receipts")
    print("\nDetection Methods Used:")
    for method, count in summary["byDetectionMethod"].items():
        print(f"  {method}: {count} times")
    print("=" * 60)
    if stats.needs_review:
        print(f"\n{stats.needs_review} receipts have low confidence currency detection; review them in the UI.")


async def _main(pause: float) -> int:
    try:
        stats = await migrate_receipts(get_database(), pause=pause)
        print_summary(stats)
    finally:
        await close_db()
    return 1 if stats.update_failed else 0


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--pause", type=float, default=BATCH_PAUSE_SECONDS, help="seconds to wait between batches")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    return asyncio.run(_main(args.pause))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
