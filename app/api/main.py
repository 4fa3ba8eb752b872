"""Entry point for the FastAPI application.

This module constructs the FastAPI app, includes all routers and
manages startup and shutdown. When run with uvicorn it connects to
MongoDB and loads configuration from ``app.core.config``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.api.error_handlers import generic_exception_handler, validation_exception_handler
from app.api.routes.analytics import router as analytics_router
from app.api.routes.currency import router as currency_router
from app.api.routes.neural import router as neural_router
from app.api.routes.rag import router as rag_router
from app.api.routes.receipts import router as receipts_router
from app.api.routes.transactions import router as transactions_router
from app.core.config import settings
from app.core.database import close_db, get_db_debug_info, init_db
from app.core.observability import init_sentry, sentry_enabled, sentry_set_tags, sentry_set_user
from app.services.cache import close_redis

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    logger.info("Starting up...")
    if init_sentry("api"):
        logger.info("Sentry SDK initialized (api)")
    await init_db()
    yield
    logger.info("Shutting down...")
    await close_redis()
    await close_db()


app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    version="1.0.0",
    lifespan=lifespan,
)


# Middleware to enrich Sentry scope with lightweight request + user info
@app.middleware("http")
async def sentry_context_middleware(request: Request, call_next):
    if sentry_enabled():
        sentry_set_tags({"path": request.url.path, "method": request.method})
        sentry_set_user(request.headers.get("x-user-id") or request.query_params.get("userId"))
    return await call_next(request)


"""CORS configuration.

1. In development => allow all ( * ).
2. Otherwise start from BACKEND_CORS_ORIGINS plus the FRONTEND_BASE_URL origin.
"""
env_is_dev = (settings.ENVIRONMENT or "development").lower() == "development"
allow_origins = ["*"] if env_is_dev else list(settings.BACKEND_CORS_ORIGINS or [])

if not env_is_dev:
    parsed = urlparse(settings.FRONTEND_BASE_URL or "")
    if parsed.scheme and parsed.netloc:
        front_origin = f"{parsed.scheme}://{parsed.netloc}"
        if front_origin not in allow_origins:
            allow_origins.append(front_origin)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    # browsers reject credentials with a wildcard origin
    allow_credentials=not env_is_dev,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register custom exception handlers
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Include routers
for router in (
    receipts_router,
    analytics_router,
    neural_router,
    rag_router,
    transactions_router,
    currency_router,
):
    app.include_router(router, prefix=settings.API_PREFIX)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": f"Welcome to {settings.PROJECT_NAME} Receipt API"}


@app.api_route("/health", methods=["GET", "HEAD"])
async def health_check():
    """Health check endpoint (supports GET & HEAD)."""
    return {"status": "healthy"}


@app.get("/debug/db")
async def db_debug():
    """Return non-sensitive DB diagnostics (for development)."""
    return get_db_debug_info()
