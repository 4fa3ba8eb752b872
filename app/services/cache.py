"""Lightweight Redis cache utilities for short-lived API response caching.

Usage guidelines:
- Only cache per-user responses (always namespace keys with the user id).
- Keep TTLs short so processing status changes show up quickly.
- Invalidate on mutations (process, update, category correction, delete, SMS import).
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[aioredis.Redis] = None
_lock = asyncio.Lock()


async def get_redis() -> Optional[aioredis.Redis]:
    """Return a singleton async Redis client or None if not configured."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    if not settings.REDIS_URL:
        return None
    async with _lock:
        if _redis_client is not None:
            return _redis_client
        try:
            _redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        except (RedisError, ValueError) as e:  # pragma: no cover
            logger.warning("[cache] redis client unavailable: %s", e)
            _redis_client = None
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except RedisError:  # pragma: no cover
            pass
        _redis_client = None


async def cache_get_json(key: str) -> Optional[Any]:
    client = await get_redis()
    if not client:
        return None
    try:
        raw = await client.get(key)
        if raw is None:
            return None
        return json.loads(raw)
    except (RedisError, OSError, ValueError):
        return None


async def cache_set_json(key: str, value: Any, ttl: int) -> None:
    client = await get_redis()
    if not client:
        return
    try:
        await client.set(key, json.dumps(jsonable_encoder(value)), ex=ttl)
    except (RedisError, OSError, TypeError):
        pass


async def cache_delete(key: str) -> None:
    client = await get_redis()
    if not client:
        return
    try:
        await client.delete(key)
    except (RedisError, OSError):
        pass


async def cache_delete_pattern(pattern: str) -> None:
    """Best-effort pattern deletion (SCAN + DEL). Avoid for hot paths."""
    client = await get_redis()
    if not client:
        return
    try:
        # Use scan_iter to avoid blocking Redis
        async for key in client.scan_iter(pattern):
            await client.delete(key)
    except (RedisError, OSError):
        pass


def list_cache_key(user_id: str, limit: int) -> str:
    return f"receipts:list:{user_id}:{limit}"


def analytics_cache_key(user_id: str) -> str:
    return f"analytics:summary:{user_id}"


async def invalidate_user_cache(user_id: str) -> None:
    """Drop every cached list and analytics response for a user."""
    await cache_delete_pattern(f"receipts:list:{user_id}:*")
    await cache_delete(analytics_cache_key(user_id))
