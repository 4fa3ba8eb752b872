"""Application configuration.

This module defines a ``Settings`` class that reads configuration
values from environment variables and provides sensible defaults.
``.env`` support is implemented by loading files from the repository
root in a defined order.  You can override any value via environment
variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv, find_dotenv

# -----------------------------------------------------------------------------
# .env loading
#
# Prefer a .env in the repository root but allow fallback to whatever
# python-dotenv discovers from the current working directory.  Files are
# loaded in order without overriding already-set variables.

_THIS_FILE = Path(__file__).resolve()
_REPO_ROOT = _THIS_FILE.parents[2]
_ROOT_ENV = _REPO_ROOT / ".env"

_candidate_envs: list[str] = []
if _ROOT_ENV.exists():
    _candidate_envs.append(str(_ROOT_ENV))

_FOUND_ENV = find_dotenv(usecwd=True)
if _FOUND_ENV and _FOUND_ENV not in _candidate_envs:
    _candidate_envs.append(_FOUND_ENV)

_LOCAL_ENV = (_REPO_ROOT / ".env.local").as_posix()
if os.path.exists(_LOCAL_ENV) and _LOCAL_ENV not in _candidate_envs:
    _candidate_envs.append(_LOCAL_ENV)

for _env_path in _candidate_envs:
    load_dotenv(dotenv_path=_env_path, override=False)


class Settings(BaseSettings):
    """Application settings.

    Values are loaded from the environment with sensible defaults.  Any
    attribute defined here can be overridden by setting the corresponding
    environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=tuple(_candidate_envs) if _candidate_envs else (".env",),
        case_sensitive=True,
        extra="allow",
    )

    # API Settings
    API_PREFIX: str = "/api"
    PROJECT_NAME: str = "LedgerMind"
    ENVIRONMENT: str = Field(default="development")

    # MongoDB
    MONGODB_URI: str = Field(default="mongodb://localhost:27017")
    MONGODB_DB: str = Field(default="ledgermind")
    MONGODB_TIMEOUT_MS: int = Field(default=5000)
    RECEIPTS_COLLECTION: str = "receipts"
    CHUNKS_COLLECTION: str = "receipt_chunks"
    CATEGORY_TRAINING_COLLECTION: str = "category_training"

    # Redis
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    # Seconds to keep per-user analytics responses
    RESPONSE_CACHE_TTL: int = Field(default=10)

    # LLM / embeddings
    LLM_PROVIDER: str = Field(default="groq")
    EMBEDDINGS_PROVIDER: str = Field(default="ollama")
    OLLAMA_BASE_URL: str = Field(default="http://localhost:11434")
    OLLAMA_LLM_MODEL: str = Field(default="tinyllama")
    OLLAMA_EMBED_MODEL: str = Field(default="nomic-embed-text")
    OLLAMA_TIMEOUT: float = Field(default=60.0)
    GROQ_API_KEY: Optional[str] = Field(default=None)
    GROQ_BASE_URL: str = Field(default="https://api.groq.com/openai/v1")
    GROQ_MODEL: str = Field(default="llama-3.1-8b-instant")
    GOOGLE_API_KEY: Optional[str] = Field(default=None)
    GEMINI_BASE_URL: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    GEMINI_MODEL: str = Field(default="gemini-2.0-flash-exp")
    GEMINI_EMBED_MODEL: str = Field(default="text-embedding-004")
    EMBEDDING_DIM: int = Field(default=768)
    USE_LOCAL_RECEIPT_PARSE: bool = Field(default=False)
    AI_RETRY_TRIES: int = Field(default=3)
    AI_RETRY_BASE_MS: int = Field(default=400)

    # OCR
    OCR_SPACE_API_KEY: str = Field(default="helloworld")
    OCR_SPACE_ENDPOINT: str = Field(default="https://api.ocr.space/parse/image")
    OCR_TIMEOUT: float = Field(default=60.0)

    # Currency
    EXCHANGE_RATE_API_URL: str = Field(default="https://api.exchangerate-api.com/v4/latest")
    EXCHANGE_RATE_CACHE_TTL: int = Field(default=6 * 60 * 60)
    NOMINATIM_URL: str = Field(default="https://nominatim.openstreetmap.org/search")
    CURRENCY_GEOCODE_ENABLED: bool = Field(default=True)

    # Auth
    # Disable auth bypass by default.  Override in .env only when running
    # locally.
    DEV_AUTH_BYPASS: bool = Field(default=False)
    DEV_USER_ID: str = Field(default="demo-user")
    SECRET_KEY: str = Field(default="changeme")
    JWT_ALGORITHM: str = Field(default="HS256")

    # File Upload
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB
    ALLOWED_EXTENSIONS: set[str] = {".jpg", ".jpeg", ".png", ".gif", ".pdf", ".webp"}
    STORAGE_DIRECTORY: str = Field(default="./storage")

    # CORS
    BACKEND_CORS_ORIGINS: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
    )
    FRONTEND_BASE_URL: str = Field(default="http://localhost:3000")

    # Sentry
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_PROFILES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_RELEASE: Optional[str] = Field(default=None)


# Instantiate global settings
settings = Settings()
