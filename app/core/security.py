"""Caller identity resolution.

LedgerMind does not run its own login flow; user sessions are issued by
the frontend's auth provider.  The API only needs to know *which* user a
request belongs to, which is resolved in order from:

1. ``DEV_AUTH_BYPASS`` - every request acts as ``DEV_USER_ID``.
2. A ``Bearer`` JWT signed with ``SECRET_KEY`` - the ``sub`` claim.
3. An explicit ``userId`` query parameter (kept for the mobile client,
   which syncs SMS transactions before it holds a session token).
"""

from __future__ import annotations

from typing import Dict, Optional

from fastapi import HTTPException, Query, Request, status
from jose import JWTError, jwt

from app.core.config import settings


def decode_access_token(token: str) -> Dict:
    """Decode and verify an HS256 access token.

    Raises:
        HTTPException: If the token is malformed, expired or unsigned.
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_aud": False},
        )
    except JWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {exc}") from exc


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return None


def resolve_user_id(request: Request, user_id: Optional[str] = None) -> str:
    """Resolve the user id for a request, given any explicit ``userId``, or raise 401."""
    if settings.DEV_AUTH_BYPASS:
        return user_id or settings.DEV_USER_ID
    token = _bearer_token(request)
    if token:
        payload = decode_access_token(token)
        sub = payload.get("sub")
        if not sub:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token: no sub claim")
        return str(sub)
    if user_id:
        return user_id
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def get_current_user_id(
    request: Request,
    user_id: Optional[str] = Query(None, alias="userId"),
) -> str:
    """Dependency form of :func:`resolve_user_id` reading ``?userId=``."""
    return resolve_user_id(request, user_id)
