"""Import UPI / bank SMS messages as receipts."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from app.core.database import get_db
from app.core.security import get_current_user_id
from app.models.schemas import SmsSyncRequest, SmsTransactionRequest
from app.services.cache import invalidate_user_cache
from app.services.sms import import_sms_transaction, sync_sms_messages

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.post("/sms")
async def import_sms(
    body: SmsTransactionRequest,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    if not body.smsBody:
        raise HTTPException(status_code=400, detail="SMS body is required")

    outcome = await import_sms_transaction(db, user_id, body.smsBody, body.timestamp)
    if outcome["status"] == "unparsed":
        return JSONResponse(
            status_code=400,
            content={"error": "Could not parse transaction from SMS", "smsBody": body.smsBody},
        )
    if outcome["status"] == "duplicate":
        return JSONResponse(
            status_code=409,
            content={"success": False, "error": "Duplicate transaction detected", "existingId": outcome["existingId"]},
        )

    await invalidate_user_cache(user_id)
    return {"success": True, "transaction": outcome["transaction"], "receiptId": outcome["receiptId"]}


@router.post("/sms/sync")
async def sync_sms(
    body: SmsSyncRequest,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    if body.messages is None:
        raise HTTPException(status_code=400, detail="Messages array is required")
    results = await sync_sms_messages(db, user_id, [m.model_dump() for m in body.messages])
    if results["imported"]:
        await invalidate_user_cache(user_id)
    return {"success": True, "results": results}
