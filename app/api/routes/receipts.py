"""API routes for receipt upload, processing and management."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Mapping, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.database import get_db, receipts_col
from app.core.observability import sentry_breadcrumb, sentry_set_tags
from app.core.security import get_current_user_id, resolve_user_id
from app.models.schemas import CategoryUpdate, ReceiptUpdate
from app.services.auto_categorizer import RECEIPT_CATEGORIES, get_category_suggestions, learn_from_correction
from app.services.cache import cache_get_json, cache_set_json, invalidate_user_cache, list_cache_key
from app.services.pipeline import (
    delete_receipt,
    find_receipt,
    list_receipts,
    process_receipt,
    update_receipt,
)
from app.services.storage_service import StorageService
from app.utils.helpers import as_datetime, new_receipt_id, today_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/receipts", tags=["receipts"])

# Headers set by common edge proxies with the caller's country
IP_COUNTRY_HEADERS = ("x-vercel-ip-country", "cf-ipcountry")


def _ip_country(request: Request) -> Optional[str]:
    for header in IP_COUNTRY_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return None


async def _read_upload(file: Optional[UploadFile]) -> bytes:
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")
    ext = os.path.splitext(file.filename)[1].lower()
    if ext and ext not in settings.ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {ext}")
    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(contents) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(status_code=413, detail="File too large. Maximum size is 10MB")
    return contents


async def _run_pipeline(
    db,
    request: Request,
    receipt_id: str,
    user_id: str,
    file: UploadFile,
    contents: bytes,
    file_key: Optional[str] = None,
):
    sentry_set_tags({"receipt.id": receipt_id})
    try:
        result = await process_receipt(
            db,
            receipt_id,
            user_id,
            contents,
            file.filename or "receipt",
            ip_country=_ip_country(request),
            file_key=file_key,
        )
    except Exception as e:
        logger.error("[process-receipt] %s failed: %s", receipt_id, e)
        return JSONResponse(status_code=500, content={"error": str(e)})
    finally:
        await invalidate_user_cache(user_id)
    return result


def _list_item(r: Mapping[str, Any]) -> Dict[str, Any]:
    created = as_datetime(r.get("createdAt"))
    fallback_date = created.date().isoformat() if created else today_iso()
    return {
        "_id": r.get("_id"),
        "receiptId": r.get("_id"),
        "merchant": r.get("merchant") or "Unknown Merchant",
        "date": r.get("date") or fallback_date,
        "total": r.get("total") or 0,
        "tax": r.get("tax") or 0,
        "category": r.get("category") or "Other",
        "categoryConfidence": r.get("categoryConfidence"),
        "categoryMethod": r.get("categoryMethod"),
        "categorySuggestion": r.get("categorySuggestion"),
        "status": r.get("status"),
        "currency": r.get("currency") or "USD",
        "confidence": r.get("confidence") or 0,
        "lineItems": r.get("lineItems") or [],
        "ocrText": r.get("ocrText"),
        "parsedData": r.get("parsedData"),
        "userId": r.get("userId"),
        "createdAt": r.get("createdAt"),
    }


@router.post("/upload")
async def upload_receipt(
    request: Request,
    file: Optional[UploadFile] = File(None),
    user_id: Optional[str] = Form(None, alias="userId"),
    db=Depends(get_db),
):
    """Store an uploaded file under a new receipt id and process it."""
    uid = resolve_user_id(request, user_id)
    contents = await _read_upload(file)
    receipt_id = new_receipt_id()
    file_key, _ = StorageService().save_bytes(contents, file.filename, uid)
    sentry_breadcrumb("receipts", "upload", data={"receiptId": receipt_id, "bytes": len(contents)})
    return await _run_pipeline(db, request, receipt_id, uid, file, contents, file_key=file_key)


@router.post("/{receipt_id}/process")
async def process_uploaded_receipt(
    receipt_id: str,
    request: Request,
    file: Optional[UploadFile] = File(None),
    user_id: Optional[str] = Form(None, alias="userId"),
    db=Depends(get_db),
):
    uid = resolve_user_id(request, user_id)
    contents = await _read_upload(file)
    return await _run_pipeline(db, request, receipt_id, uid, file, contents)


@router.get("/list")
async def list_user_receipts(
    limit: int = Query(100, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    cache_key = list_cache_key(user_id, limit)
    cached = await cache_get_json(cache_key)
    if cached is not None:
        return cached
    try:
        receipts = await list_receipts(db, user_id, limit=limit)
    except Exception as e:
        logger.error("[receipts-list] failed for %s: %s", user_id, e)
        return JSONResponse(status_code=500, content={"error": "Failed to fetch receipts", "details": str(e)})
    logger.info("[receipts-list] found %d receipts for user %s", len(receipts), user_id)
    payload = {"success": True, "count": len(receipts), "receipts": [_list_item(r) for r in receipts]}
    await cache_set_json(cache_key, payload, settings.RESPONSE_CACHE_TTL)
    return payload


@router.get("/debug")
async def debug_receipts(db=Depends(get_db)):
    """Collection-wide counts and a sample, for local troubleshooting."""
    col = receipts_col(db)
    total = await col.count_documents({})
    demo = await col.count_documents({"userId": settings.DEV_USER_ID})
    sample = await col.find({}).sort("createdAt", -1).limit(10).to_list(length=None)
    return {
        "success": True,
        "totalReceipts": total,
        "demoUserReceipts": demo,
        "sampleReceipts": [
            {
                "_id": r.get("_id"),
                "userId": r.get("userId"),
                "merchant": r.get("merchant"),
                "status": r.get("status"),
                "createdAt": r.get("createdAt"),
                "hasCreatedAt": r.get("createdAt") is not None,
            }
            for r in sample
        ],
    }


@router.get("/categories/suggestions")
async def category_suggestions(
    prefix: str = Query(""),
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    return {"success": True, "suggestions": await get_category_suggestions(db, user_id, prefix)}


@router.get("/{receipt_id}")
async def get_receipt_detail(
    receipt_id: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    receipt = await find_receipt(db, receipt_id, user_id)
    if not receipt:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return {"success": True, "receipt": receipt}


@router.delete("/{receipt_id}")
async def delete_user_receipt(
    receipt_id: str,
    request: Request,
    user_id: Optional[str] = Query(None, alias="userId"),
    db=Depends(get_db),
):
    if not user_id and not settings.DEV_AUTH_BYPASS and "authorization" not in request.headers:
        raise HTTPException(status_code=400, detail="Missing userId")
    uid = resolve_user_id(request, user_id)
    if not await delete_receipt(db, receipt_id, uid):
        raise HTTPException(status_code=404, detail="Receipt not found")
    await invalidate_user_cache(uid)
    logger.info("[delete-receipt] deleted %s for %s", receipt_id, uid)
    return {"ok": True, "receiptId": receipt_id}


@router.patch("/{receipt_id}/update")
async def update_user_receipt(
    receipt_id: str,
    body: ReceiptUpdate,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    receipt = await find_receipt(db, receipt_id, user_id)
    if not receipt:
        raise HTTPException(status_code=404, detail="Receipt not found")
    fields = body.model_dump(exclude_none=True)
    updated = await update_receipt(db, receipt, fields)
    await invalidate_user_cache(user_id)
    return {"success": True, "message": "Receipt updated successfully", "receipt": updated}


@router.patch("/{receipt_id}/update-category")
async def update_receipt_category(
    receipt_id: str,
    body: CategoryUpdate,
    request: Request,
    db=Depends(get_db),
):
    if not body.category:
        raise HTTPException(status_code=400, detail="userId and category are required")
    user_id = resolve_user_id(request, body.userId)
    if body.category not in RECEIPT_CATEGORIES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid category. Must be one of: {', '.join(RECEIPT_CATEGORIES)}",
        )

    receipt = await find_receipt(db, receipt_id, user_id)
    if not receipt:
        raise HTTPException(status_code=404, detail="Receipt not found")

    result = await learn_from_correction(
        db,
        user_id,
        receipt["_id"],
        receipt.get("merchant") or "",
        receipt.get("lineItems") or [],
        body.category,
    )
    await invalidate_user_cache(user_id)
    logger.info("[update-category] %s -> %s (%s)", receipt_id, body.category, result["message"])
    return {
        "success": True,
        "message": result["message"],
        "receipt": {"id": receipt["_id"], "category": body.category, "merchant": receipt.get("merchant")},
    }
