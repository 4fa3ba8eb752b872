"""Spending prediction routes backed by the in-process neural network.

Training is pure-Python backprop, so it runs in the threadpool.  The
predictor is a process singleton; the lock keeps one request's
``initialize`` from interleaving with another request's ``predict``.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.core.database import get_db, receipts_col
from app.core.security import get_current_user_id, resolve_user_id
from app.ml import get_spending_predictor
from app.models.schemas import PredictRequest
from app.utils.helpers import js_weekday, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/neural", tags=["neural"])

RECEIPT_LIMIT = 100

_predictor_lock = threading.Lock()


async def _recent_receipts(db, user_id: str):
    return await receipts_col(db).find({"userId": user_id}).sort("date", -1).limit(RECEIPT_LIMIT).to_list(length=None)


def _default_context() -> Dict[str, Any]:
    now = utcnow()
    return {"dayOfWeek": js_weekday(now.date()), "hourOfDay": now.hour}


def _predict(receipts, context: Dict[str, Any]) -> Dict[str, Any]:
    with _predictor_lock:
        predictor = get_spending_predictor()
        predictor.initialize(receipts)
        prediction = predictor.predict(context)
        model = predictor.get_model_info()
    return {
        "success": True,
        "prediction": prediction,
        "model": model,
        "receiptsUsed": len(receipts),
    }


@router.post("/predict")
async def predict_spending(
    body: PredictRequest,
    request: Request,
    db=Depends(get_db),
):
    user_id = resolve_user_id(request, body.userId)
    context: Dict[str, Any] = _default_context()
    if body.context is not None:
        context.update(body.context.model_dump(exclude_none=True))
    try:
        receipts = await _recent_receipts(db, user_id)
        if not receipts:
            return {"success": False, "error": "No receipts found for training", "prediction": None}
        logger.info("[neural] training on %d receipts for %s", len(receipts), user_id)
        return await run_in_threadpool(_predict, receipts, context)
    except Exception as e:
        logger.error("[neural] prediction failed: %s", e)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})


@router.get("/predict")
async def predict_spending_now(
    category: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    context = _default_context()
    if category:
        context["category"] = category
    try:
        receipts = await _recent_receipts(db, user_id)
        if not receipts:
            return {
                "success": True,
                "prediction": {
                    "predictedAmount": 0,
                    "predictedCategory": "Other",
                    "confidence": 0,
                    "trend": "stable",
                    "nextWeekEstimate": 0,
                    "insights": ["Upload receipts to get AI predictions"],
                    "riskLevel": "low",
                    "savingsOpportunity": 0,
                },
                "model": {"trained": False, "samples": 0, "accuracy": 0},
                "receiptsUsed": 0,
            }
        return await run_in_threadpool(_predict, receipts, context)
    except Exception as e:
        logger.error("[neural] prediction failed: %s", e)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
