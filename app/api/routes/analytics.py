"""Dashboard and behavioural analytics routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.database import get_db
from app.core.security import get_current_user_id, resolve_user_id
from app.models.enums import AnalysisPeriod
from app.models.schemas import RegretCheckRequest
from app.services.analytics import get_dashboard_summary
from app.services.cache import analytics_cache_key, cache_get_json, cache_set_json
from app.services.carbon import analyze_carbon_footprint
from app.services.insights import generate_spending_insights
from app.services.mood import analyze_mood_patterns
from app.services.regret import build_regret_dashboard, predict_regret_score
from app.services.spending_dna import analyze_spending_dna, to_dna_view

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])


def _failed(what: str, e: Exception) -> JSONResponse:
    logger.error("[analytics] %s failed: %s", what, e)
    return JSONResponse(status_code=500, content={"error": f"Failed to {what}"})


@router.get("")
async def dashboard_summary(
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    cache_key = analytics_cache_key(user_id)
    cached = await cache_get_json(cache_key)
    if cached is not None:
        return cached
    try:
        summary = await get_dashboard_summary(db, user_id)
    except Exception as e:
        return _failed("fetch analytics", e)
    await cache_set_json(cache_key, summary, settings.RESPONSE_CACHE_TTL)
    return summary


@router.get("/insights")
async def spending_insights(
    request: Request,
    user_id: str | None = Query(None, alias="userId"),
    period: AnalysisPeriod = Query(AnalysisPeriod.MONTH),
    db=Depends(get_db),
):
    if not user_id and not settings.DEV_AUTH_BYPASS and "authorization" not in request.headers:
        raise HTTPException(status_code=400, detail="userId is required")
    uid = resolve_user_id(request, user_id)
    try:
        analysis = await generate_spending_insights(db, uid, period.value)
    except Exception as e:
        return _failed("generate insights", e)
    return {"success": True, **analysis}


@router.get("/mood-analysis")
async def mood_analysis(
    period: AnalysisPeriod = Query(AnalysisPeriod.MONTH),
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    try:
        return await analyze_mood_patterns(db, user_id, period.value)
    except Exception as e:
        return _failed("analyze mood patterns", e)


@router.get("/regret-predictor")
async def regret_dashboard(
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    try:
        return await build_regret_dashboard(db, user_id)
    except Exception as e:
        return _failed("analyze regret patterns", e)


@router.post("/regret-predictor")
async def regret_check(
    body: RegretCheckRequest,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    if not body.merchant or not body.category or body.total is None:
        raise HTTPException(status_code=400, detail="merchant, category, and total are required")
    try:
        prediction = await predict_regret_score(db, user_id, body.merchant, body.category, body.total)
    except Exception as e:
        return _failed("predict regret", e)
    return {"success": True, "prediction": prediction}


@router.get("/spending-dna")
async def spending_dna(
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    try:
        analysis = await analyze_spending_dna(db, user_id)
    except Exception as e:
        return _failed("analyze spending DNA", e)
    return to_dna_view(analysis)


@router.get("/carbon-footprint")
async def carbon_footprint(
    period: AnalysisPeriod = Query(AnalysisPeriod.MONTH),
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    try:
        return await analyze_carbon_footprint(db, user_id, period.value)
    except Exception as e:
        return _failed("analyze carbon footprint", e)
