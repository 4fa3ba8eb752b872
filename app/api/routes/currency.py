"""Currency detection and INR conversion helpers."""

from __future__ import annotations

from fastapi import APIRouter, Query

from app.models.schemas import CurrencyDetectRequest
from app.services.currency import convert_to_inr, detect_currency, format_currency

router = APIRouter(prefix="/currency", tags=["currency"])


@router.post("/detect")
async def detect(body: CurrencyDetectRequest):
    detection = await detect_currency(body.merchant, body.ocrText, body.ipCountry)
    return detection.model_dump()


@router.get("/convert")
async def convert(
    amount: float = Query(..., ge=0),
    currency: str = Query(..., min_length=3, max_length=3),
):
    result = await convert_to_inr(amount, currency.upper())
    return {
        "amount": amount,
        "currency": currency.upper(),
        "inr": result.inr,
        "rate": result.rate,
        "formatted": format_currency(result.inr, "INR"),
    }
