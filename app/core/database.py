"""MongoDB client and collection access.

A single ``AsyncMongoClient`` is created lazily from ``settings.MONGODB_URI``
and shared for the lifetime of the process.  Route handlers receive the
database through the ``get_db`` dependency so tests can override it with an
in-memory stand-in.  Index creation runs once at startup and is best
effort: a missing or unreachable server is logged rather than fatal so
that the health endpoints keep answering.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from pymongo import ASCENDING, DESCENDING, AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import PyMongoError

from app.core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[AsyncMongoClient] = None
LAST_DB_INIT_ERROR: Optional[str] = None


def get_client() -> AsyncMongoClient:
    """Return the process-wide Mongo client, creating it on first use."""
    global _client
    if _client is None:
        _client = AsyncMongoClient(
            settings.MONGODB_URI,
            serverSelectionTimeoutMS=settings.MONGODB_TIMEOUT_MS,
            appname=settings.PROJECT_NAME,
        )
    return _client


def get_database() -> AsyncDatabase:
    return get_client()[settings.MONGODB_DB]


async def get_db() -> AsyncDatabase:
    """Dependency that returns the application database.

    Services reach collections through :func:`receipts_col`,
    :func:`chunks_col` and :func:`training_col`.
    """
    return get_database()


def receipts_col(db):
    return db[settings.RECEIPTS_COLLECTION]


def chunks_col(db):
    return db[settings.CHUNKS_COLLECTION]


def training_col(db):
    return db[settings.CATEGORY_TRAINING_COLLECTION]


async def init_db() -> None:
    """Create the indexes the services rely on."""
    global LAST_DB_INIT_ERROR
    db = get_database()
    try:
        await db[settings.RECEIPTS_COLLECTION].create_index(
            [("userId", ASCENDING), ("createdAt", DESCENDING)]
        )
        await db[settings.RECEIPTS_COLLECTION].create_index(
            [("userId", ASCENDING), ("status", ASCENDING)]
        )
        await db[settings.CHUNKS_COLLECTION].create_index("id", unique=True)
        await db[settings.CHUNKS_COLLECTION].create_index("userId")
        await db[settings.CATEGORY_TRAINING_COLLECTION].create_index(
            [("userId", ASCENDING), ("merchantNormalized", ASCENDING)]
        )
        LAST_DB_INIT_ERROR = None
        logger.info("MongoDB indexes ensured on %s", settings.MONGODB_DB)
    except PyMongoError as e:
        LAST_DB_INIT_ERROR = str(e)
        logger.warning("MongoDB index setup failed: %s", e)


async def close_db() -> None:
    global _client
    if _client is not None:
        await _client.close()
        _client = None


def _mask_uri(uri: str) -> str:
    parts = urlsplit(uri)
    if parts.password:
        netloc = parts.netloc.replace(f":{parts.password}@", ":***@")
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
    return uri


def get_db_debug_info() -> Dict[str, Any]:
    """Return non-sensitive information about the database connection.

    Passwords embedded in the URI are masked.  Intended for a
    diagnostic endpoint.
    """
    info: Dict[str, Any] = {
        "environment": (settings.ENVIRONMENT or "development"),
        "database": settings.MONGODB_DB,
        "uri": _mask_uri(settings.MONGODB_URI),
        "client_created": _client is not None,
        "collections": {
            "receipts": settings.RECEIPTS_COLLECTION,
            "chunks": settings.CHUNKS_COLLECTION,
            "categoryTraining": settings.CATEGORY_TRAINING_COLLECTION,
        },
    }
    if LAST_DB_INIT_ERROR:
        info["last_db_init_error"] = LAST_DB_INIT_ERROR
    return info
