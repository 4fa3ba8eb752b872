"""Retrieval-augmented question answering over a user's receipts."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from app.core.database import get_db
from app.core.security import resolve_user_id
from app.models.schemas import ChatRequest, RagQueryRequest
from app.services.ai_providers import generate_text
from app.services.nl_query import build_rag_prompt, query_receipts
from app.services.pipeline import rag_search

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rag", tags=["rag"])


@router.post("/query")
async def rag_query(body: RagQueryRequest, request: Request, db=Depends(get_db)):
    """Answer a question from the top-``k`` most similar receipt chunks."""
    if not body.query:
        raise HTTPException(status_code=400, detail="Query is required")
    user_id = resolve_user_id(request, body.userId)
    try:
        hits = await rag_search(db, user_id, body.query, body.k)
        answer = await generate_text(build_rag_prompt(body.query, hits))
    except Exception as e:
        logger.error("[rag] query failed: %s", e)
        return JSONResponse(status_code=500, content={"error": str(e)})
    return {
        "answer": answer,
        "hits": [
            {
                "text": h.get("text"),
                "score": h.get("score"),
                "receiptId": h.get("receiptId"),
                "metadata": h.get("metadata") or {},
            }
            for h in hits
        ],
    }


@router.post("/chat")
async def rag_chat(body: ChatRequest, request: Request, db=Depends(get_db)):
    if not body.query:
        raise HTTPException(status_code=400, detail="userId and query are required")
    user_id = resolve_user_id(request, body.userId)
    try:
        result = await query_receipts(db, user_id, body.query)
    except Exception as e:
        logger.error("[nl-query] failed: %s", e)
        return JSONResponse(status_code=500, content={"error": "Failed to process query", "details": str(e)})
    return {"success": True, **result}
