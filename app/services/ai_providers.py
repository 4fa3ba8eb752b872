"""Multi-provider text generation and embeddings.

Every call walks a fixed provider cascade and returns the first usable
answer, so callers never have to handle provider outages:

* embeddings: Ollama (local) -> Gemini -> deterministic mock vectors
* generation: Groq -> Ollama -> Gemini -> fixed mock message

Each HTTP attempt is wrapped in :func:`with_retry` (exponential backoff with
jitter).  Groq is reached through the OpenAI SDK since it exposes an
OpenAI-compatible endpoint; Ollama and Gemini are plain REST calls over
``httpx``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import httpx
from openai import AsyncOpenAI

from app.core.config import settings
from app.core.exceptions import ProviderError
from app.core.observability import sentry_breadcrumb, sentry_metric_inc

logger = logging.getLogger(__name__)

T = TypeVar("T")

MOCK_GENERATION = (
    "Mock response: Unable to connect to AI providers. "
    "Please configure Groq, Ollama, or Gemini."
)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    tries: Optional[int] = None,
    base_ms: Optional[int] = None,
) -> T:
    """Await ``fn`` up to ``tries`` times, backing off between attempts.

    The wait after attempt ``i`` is ``base_ms * 2**i`` plus up to 99ms of
    jitter.  The last error is re-raised once attempts are exhausted.
    """
    tries = max(1, tries or settings.AI_RETRY_TRIES)
    base_ms = settings.AI_RETRY_BASE_MS if base_ms is None else base_ms
    for i in range(tries):
        try:
            return await fn()
        except Exception as e:
            if i == tries - 1:
                raise
            wait = base_ms * (2 ** i) + random.randint(0, 99)
            logger.info("Retry %d/%d after %dms (%s)", i + 1, tries, wait, e)
            await asyncio.sleep(wait / 1000)
    raise ProviderError("retry", "no attempts made")


def mock_embed(text: str, dim: int = 768) -> List[float]:
    """Deterministic pseudo-embedding derived from a string hash."""
    seed = 0
    for ch in text:
        seed = (seed * 31 + ord(ch)) & 0xFFFFFFFF
    return [((seed >> (i % 24)) & 255) / 255 for i in range(dim)]


# ---------------------------------------------------------------------------
# Single provider attempts


async def _ollama_embed(client: httpx.AsyncClient, text: str) -> Optional[List[float]]:
    r = await client.post(
        f"{settings.OLLAMA_BASE_URL}/api/embeddings",
        json={"model": settings.OLLAMA_EMBED_MODEL, "prompt": text},
    )
    if r.status_code != 200:
        raise ProviderError("ollama", f"embeddings {r.status_code}: {r.text}")
    return r.json().get("embedding")


async def _gemini_embed(client: httpx.AsyncClient, text: str) -> List[float]:
    model = settings.GEMINI_EMBED_MODEL
    r = await client.post(
        f"{settings.GEMINI_BASE_URL}/models/{model}:embedContent",
        params={"key": settings.GOOGLE_API_KEY},
        json={"model": f"models/{model}", "content": {"parts": [{"text": text}]}},
    )
    if r.status_code != 200:
        raise ProviderError("gemini", f"embeddings {r.status_code}: {r.text}")
    values = (r.json().get("embedding") or {}).get("values")
    if not values:
        raise ProviderError("gemini", "empty embedding")
    return values


async def _groq_generate(prompt: str) -> str:
    client = AsyncOpenAI(api_key=settings.GROQ_API_KEY, base_url=settings.GROQ_BASE_URL, max_retries=0)
    resp = await client.chat.completions.create(
        model=settings.GROQ_MODEL,
        messages=[{"role": "user", "content": prompt}],
        temperature=0.2,
        max_tokens=2048,
    )
    if not resp.choices:
        return ""
    return resp.choices[0].message.content or ""


async def _ollama_generate(client: httpx.AsyncClient, prompt: str) -> str:
    model = settings.OLLAMA_LLM_MODEL
    r = await client.post(
        f"{settings.OLLAMA_BASE_URL}/api/generate",
        json={"model": model, "prompt": prompt, "stream": False, "options": {"temperature": 0.2}},
    )
    if r.status_code == 404:
        raise ProviderError("ollama", f"model not found: {model}")
    if r.status_code != 200:
        raise ProviderError("ollama", f"{r.status_code}: {r.text}")
    data = r.json()
    return data.get("response") or (data.get("message") or {}).get("content") or ""


async def _gemini_generate(client: httpx.AsyncClient, prompt: str) -> str:
    r = await client.post(
        f"{settings.GEMINI_BASE_URL}/models/{settings.GEMINI_MODEL}:generateContent",
        params={"key": settings.GOOGLE_API_KEY},
        json={
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0.1, "topP": 0.9, "maxOutputTokens": 2048},
        },
    )
    if r.status_code != 200:
        raise ProviderError("gemini", f"{r.status_code}: {r.text}")
    candidates = r.json().get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts)


# ---------------------------------------------------------------------------
# Cascades


async def embed_texts(texts: List[str]) -> List[List[float]]:
    """Embed ``texts`` with the first provider that answers for all of them."""
    if not texts:
        return []

    if settings.EMBEDDINGS_PROVIDER.lower() == "ollama":
        try:
            logger.info("[ai] using Ollama for embeddings (%d texts)", len(texts))
            embeddings: List[List[float]] = []
            async with httpx.AsyncClient(timeout=settings.OLLAMA_TIMEOUT) as client:
                for text in texts:
                    vec = await with_retry(lambda t=text: _ollama_embed(client, t))
                    if vec:
                        embeddings.append(vec)
            if len(embeddings) == len(texts):
                return embeddings
            logger.warning("[ai] Ollama returned %d/%d embeddings", len(embeddings), len(texts))
        except Exception as e:
            logger.warning("[ai] Ollama embeddings failed, falling back to Gemini: %s", e)
            sentry_metric_inc("ai.fallback", tags={"kind": "embed", "provider": "ollama"})

    if settings.GOOGLE_API_KEY:
        try:
            logger.info("[ai] using Gemini for embeddings (%d texts)", len(texts))
            embeddings = []
            async with httpx.AsyncClient(timeout=30) as client:
                for text in texts:
                    embeddings.append(await with_retry(lambda t=text: _gemini_embed(client, t)))
            return embeddings
        except Exception as e:
            logger.warning("[ai] Gemini embeddings failed, falling back to mock: %s", e)
            sentry_metric_inc("ai.fallback", tags={"kind": "embed", "provider": "gemini"})

    logger.info("[ai] using mock embeddings (no providers available)")
    return [mock_embed(t, settings.EMBEDDING_DIM) for t in texts]


async def generate_text(prompt: str) -> str:
    """Generate a completion for ``prompt``; never raises."""
    provider = settings.LLM_PROVIDER.lower()

    if provider == "groq" and settings.GROQ_API_KEY:
        try:
            logger.info("[ai] using Groq for generation")
            text = await with_retry(lambda: _groq_generate(prompt))
            if text:
                return text.strip()
        except Exception as e:
            logger.warning("[ai] Groq generation failed, falling back to Ollama: %s", e)
            sentry_metric_inc("ai.fallback", tags={"kind": "generate", "provider": "groq"})

    # Ollama doubles as the fallback when Groq is selected
    if provider in ("ollama", "groq"):
        try:
            logger.info("[ai] using Ollama for generation (model=%s)", settings.OLLAMA_LLM_MODEL)
            async with httpx.AsyncClient(timeout=settings.OLLAMA_TIMEOUT) as client:
                text = await with_retry(lambda: _ollama_generate(client, prompt))
            if text:
                return text.strip()
        except Exception as e:
            logger.warning("[ai] Ollama generation failed, falling back to Gemini: %s", e)
            sentry_metric_inc("ai.fallback", tags={"kind": "generate", "provider": "ollama"})

    if settings.GOOGLE_API_KEY:
        try:
            logger.info("[ai] using Gemini for generation")
            async with httpx.AsyncClient(timeout=60) as client:
                text = await with_retry(lambda: _gemini_generate(client, prompt))
            if text:
                return text.strip()
        except Exception as e:
            logger.warning("[ai] Gemini generation failed, using mock: %s", e)
            sentry_metric_inc("ai.fallback", tags={"kind": "generate", "provider": "gemini"})

    logger.info("[ai] using mock generation (no providers available)")
    sentry_breadcrumb("ai", "mock generation used", level="warning")
    return MOCK_GENERATION


def extract_json(text: str) -> Optional[Any]:
    """Pull a JSON object out of an LLM answer that may be wrapped in fences."""
    cleaned = re.sub(r"```json\n?", "", text or "")
    cleaned = re.sub(r"```\n?", "", cleaned)
    try:
        match = re.search(r"\{[\s\S]*\}", cleaned)
        if match:
            return json.loads(match.group(0))
        return json.loads(cleaned)
    except (ValueError, TypeError):
        return None


def first_sentence(text: str) -> str:
    """First sentence of a generated answer, used for one-line AI insights."""
    return (text or "").split(".")[0].strip()
