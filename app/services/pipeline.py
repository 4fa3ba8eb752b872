"""Receipt processing pipeline and receipt storage helpers.

``process_receipt`` takes an uploaded file all the way to stored, searchable
data: OCR -> parse -> categorise -> currency -> QA -> chunk -> embed ->
store.  Each stage logs with the receipt id so a single upload can be
followed through the logs.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from pymongo import UpdateOne

from app.core.database import chunks_col, receipts_col
from app.core.exceptions import OCRError
from app.core.observability import sentry_breadcrumb, sentry_metric_inc
from app.models.enums import ReceiptSource, ReceiptStatus
from app.services.ai_providers import embed_texts
from app.services.auto_categorizer import auto_categorize_receipt
from app.services.chunking import cosine_similarity, simple_chunker
from app.services.currency import convert_to_inr, detect_currency
from app.services.ocr import extract_total_from_text, ocr_image
from app.services.receipt_parser import parse_receipt_with_ai
from app.services.receipt_qa import check_duplicate_receipt, run_receipt_qa
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("merchant", "date", "total", "category", "lineItems")


async def _mark_failed(db, receipt_id: str, user_id: str) -> None:
    now = utcnow()
    await receipts_col(db).update_one(
        {"_id": receipt_id, "userId": user_id},
        {"$set": {"status": ReceiptStatus.FAILED.value, "updatedAt": now}, "$setOnInsert": {"createdAt": now}},
        upsert=True,
    )


async def process_receipt(
    db,
    receipt_id: str,
    user_id: str,
    file_bytes: bytes,
    file_name: str,
    ip_country: Optional[str] = None,
    file_key: Optional[str] = None,
) -> Dict[str, Any]:
    """Run the full pipeline for one uploaded receipt.

    The receipt document is upserted as ``processing`` first so the
    frontend can show progress.  Any failure marks it ``failed`` and the
    original exception propagates to the caller.
    """
    receipts = receipts_col(db)
    now = utcnow()
    try:
        await receipts.update_one(
            {"_id": receipt_id, "userId": user_id},
            {
                "$set": {
                    "status": ReceiptStatus.PROCESSING.value,
                    "updatedAt": now,
                    "fileKey": file_key or file_name,
                    "originalName": file_name,
                    "source": ReceiptSource.UPLOAD.value,
                },
                "$setOnInsert": {"createdAt": now},
            },
            upsert=True,
        )

        logger.info("[pipeline] [%s] running OCR", receipt_id)
        ocr = await ocr_image(file_bytes, file_name)
        ocr_text = ocr.text
        if not ocr_text or len(ocr_text) < 10:
            raise OCRError("OCR failed to extract text")
        logger.info("[pipeline] [%s] OCR extracted %d characters", receipt_id, len(ocr_text))

        logger.info("[pipeline] [%s] parsing receipt", receipt_id)
        parsed = await parse_receipt_with_ai(ocr_text)
        if not parsed.get("total"):
            fallback_total = extract_total_from_text(ocr_text)
            if fallback_total:
                logger.info("[pipeline] [%s] using total from OCR text: %s", receipt_id, fallback_total)
                parsed["total"] = fallback_total
        logger.info(
            "[pipeline] [%s] parsed merchant=%r date=%s total=%s items=%d source=%s",
            receipt_id,
            parsed.get("merchant"),
            parsed.get("date"),
            parsed.get("total"),
            len(parsed.get("lineItems") or []),
            parsed.get("source"),
        )

        line_items = parsed.get("lineItems") or []
        categorization = await auto_categorize_receipt(db, user_id, parsed.get("merchant") or "", line_items)

        detection = await detect_currency(parsed.get("merchant"), ocr_text, ip_country)
        total = parsed.get("total") or 0
        conversion = await convert_to_inr(total, detection.currency)

        qa = run_receipt_qa(parsed)
        others = await receipts.find(
            {"userId": user_id, "_id": {"$ne": receipt_id}},
        ).sort("createdAt", -1).limit(200).to_list(length=None)
        duplicate = check_duplicate_receipt(parsed, others)
        if duplicate.isDuplicate:
            logger.warning("[pipeline] [%s] possible duplicate of %s", receipt_id, duplicate.matchedReceipts)

        logger.info("[pipeline] [%s] chunking and embedding", receipt_id)
        chunks = simple_chunker(ocr_text, receipt_id, user_id)
        embeddings = await embed_texts([c["text"] for c in chunks])
        for i, chunk in enumerate(chunks):
            chunk["embedding"] = embeddings[i] if i < len(embeddings) else []

        needs_review = qa.needsReview or duplicate.isDuplicate
        status = ReceiptStatus.NEEDS_REVIEW if needs_review else ReceiptStatus.COMPLETED
        await receipts.update_one(
            {"_id": receipt_id, "userId": user_id},
            {
                "$set": {
                    "ocrText": ocr_text,
                    "merchant": parsed.get("merchant"),
                    "date": parsed.get("date"),
                    "total": parsed.get("total"),
                    "tax": parsed.get("tax"),
                    "currency": detection.currency,
                    "currencyConfidence": detection.confidence,
                    "currencySignals": detection.signals,
                    "totalINR": conversion.inr,
                    "fxRateToINR": conversion.rate,
                    "category": categorization.category,
                    "categoryConfidence": categorization.confidence,
                    "categoryMethod": categorization.method.value,
                    "categorySuggestion": categorization.suggestion,
                    "paymentMethod": parsed.get("paymentMethod"),
                    "lineItems": line_items,
                    "confidence": parsed.get("confidence"),
                    "qaScore": qa.score,
                    "qaIssues": [i.model_dump(mode="json") for i in qa.issues],
                    "qaFlags": qa.flags,
                    "isDuplicate": duplicate.isDuplicate,
                    "duplicateOf": duplicate.matchedReceipts,
                    "status": status.value,
                    "updatedAt": utcnow(),
                },
            },
        )

        if chunks:
            await chunks_col(db).bulk_write(
                [UpdateOne({"id": c["id"]}, {"$set": c}, upsert=True) for c in chunks]
            )

        logger.info("[pipeline] [%s] processing complete (%s)", receipt_id, status.value)
        sentry_metric_inc("receipts.processed", tags={"status": status.value})
        return {
            "receiptId": receipt_id,
            "status": status.value,
            "parsed": {**parsed, "category": categorization.category},
            "chunks": len(chunks),
            "qa": qa.model_dump(mode="json"),
            "duplicate": duplicate.model_dump(),
            "currency": detection.model_dump(),
        }
    except Exception as e:
        logger.exception("[pipeline] [%s] processing failed: %s", receipt_id, e)
        sentry_breadcrumb("pipeline", "receipt processing failed", level="error", data={"receiptId": receipt_id})
        await _mark_failed(db, receipt_id, user_id)
        raise


async def rag_search(db, user_id: str, query: str, k: int = 5) -> List[Dict[str, Any]]:
    """Rank a user's chunks against ``query`` by cosine similarity."""
    try:
        [query_embedding] = await embed_texts([query])
        all_chunks = await chunks_col(db).find({"userId": user_id}).limit(1000).to_list(length=None)
        scored = [
            {**chunk, "score": cosine_similarity(query_embedding, chunk.get("embedding") or [])}
            for chunk in all_chunks
        ]
        scored.sort(key=lambda c: c["score"], reverse=True)
        return scored[:k]
    except Exception as e:
        logger.error("[rag] search failed: %s", e)
        return []


async def get_receipt(db, receipt_id: str, user_id: str) -> Optional[Dict[str, Any]]:
    return await receipts_col(db).find_one({"_id": receipt_id, "userId": user_id})


async def find_receipt(db, receipt_id: str, user_id: str) -> Optional[Dict[str, Any]]:
    """Look a receipt up by its ``receiptId`` field or its ``_id``."""
    return await receipts_col(db).find_one(
        {"$or": [{"receiptId": receipt_id}, {"_id": receipt_id}], "userId": user_id}
    )


async def list_receipts(db, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    cursor = receipts_col(db).find({"userId": user_id}).sort("createdAt", -1).limit(limit)
    return await cursor.to_list(length=None)


async def delete_receipt(db, receipt_id: str, user_id: str) -> bool:
    """Delete a receipt and its chunks; False when no receipt matched."""
    res = await receipts_col(db).delete_one({"_id": receipt_id, "userId": user_id})
    await chunks_col(db).delete_many({"receiptId": receipt_id, "userId": user_id})
    return res.deleted_count > 0


async def update_receipt(db, receipt: Mapping[str, Any], fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Apply the user-editable ``fields`` that were provided to ``receipt``."""
    update: Dict[str, Any] = {"updatedAt": utcnow()}
    for name in UPDATABLE_FIELDS:
        if name in fields and fields[name] is not None:
            update[name] = fields[name]
    await receipts_col(db).update_one({"_id": receipt["_id"]}, {"$set": update})
    logger.info("[update-receipt] updated receipt %s: %s", receipt["_id"], sorted(update))
    return {**receipt, **update}
