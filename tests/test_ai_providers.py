import pytest

from app.core import config as cfg
from app.core.exceptions import ProviderError
from app.services import ai_providers
from app.services.ai_providers import (
    MOCK_GENERATION,
    embed_texts,
    extract_json,
    first_sentence,
    generate_text,
    mock_embed,
    with_retry,
)


@pytest.fixture
def sleeps(monkeypatch):
    """Record backoff waits instead of sleeping; jitter pinned to zero."""
    waits = []

    async def fake_sleep(seconds):
        waits.append(seconds)

    monkeypatch.setattr(ai_providers.asyncio, "sleep", fake_sleep)
    monkeypatch.setattr(ai_providers.random, "randint", lambda a, b: 0)
    return waits


@pytest.mark.asyncio
async def test_with_retry_backs_off_until_success(sleeps):
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ProviderError("ollama", "busy")
        return "ok"

    assert await with_retry(flaky, tries=3, base_ms=100) == "ok"
    assert len(calls) == 3
    assert sleeps == [0.1, 0.2]


@pytest.mark.asyncio
async def test_with_retry_reraises_last_error(sleeps):
    calls = []

    async def always_fails():
        calls.append(1)
        raise ProviderError("groq", f"attempt {len(calls)}")

    with pytest.raises(ProviderError, match="groq: attempt 2"):
        await with_retry(always_fails, tries=2, base_ms=50)
    assert len(calls) == 2
    assert sleeps == [0.05]


@pytest.mark.asyncio
async def test_with_retry_uses_configured_tries(sleeps, monkeypatch):
    monkeypatch.setattr(cfg.settings, "AI_RETRY_TRIES", 4)
    calls = []

    async def always_fails():
        calls.append(1)
        raise ValueError("bad")

    with pytest.raises(ValueError):
        await with_retry(always_fails, base_ms=0)
    assert len(calls) == 4


@pytest.mark.asyncio
async def test_short_ollama_embeddings_fall_back_to_gemini(sleeps, monkeypatch):
    monkeypatch.setattr(cfg.settings, "EMBEDDINGS_PROVIDER", "ollama")
    monkeypatch.setattr(cfg.settings, "GOOGLE_API_KEY", "key")

    async def ollama_embed(client, text):
        return [0.5, 0.5] if text == "first" else None

    async def gemini_embed(client, text):
        return [float(len(text)), 1.0]

    monkeypatch.setattr(ai_providers, "_ollama_embed", ollama_embed)
    monkeypatch.setattr(ai_providers, "_gemini_embed", gemini_embed)
    assert await embed_texts(["first", "second"]) == [[5.0, 1.0], [6.0, 1.0]]


@pytest.mark.asyncio
async def test_ollama_embeddings_used_when_complete(sleeps, monkeypatch):
    monkeypatch.setattr(cfg.settings, "EMBEDDINGS_PROVIDER", "ollama")

    async def ollama_embed(client, text):
        return [1.0, 2.0]

    monkeypatch.setattr(ai_providers, "_ollama_embed", ollama_embed)
    assert await embed_texts(["a", "b"]) == [[1.0, 2.0], [1.0, 2.0]]


@pytest.mark.asyncio
async def test_embeddings_fall_back_to_mock(sleeps, monkeypatch):
    monkeypatch.setattr(cfg.settings, "EMBEDDINGS_PROVIDER", "ollama")

    async def ollama_down(client, text):
        raise ProviderError("ollama", "connection refused")

    monkeypatch.setattr(ai_providers, "_ollama_embed", ollama_down)
    [vector] = await embed_texts(["receipt"])
    assert vector == mock_embed("receipt", cfg.settings.EMBEDDING_DIM)
    assert await embed_texts([]) == []


@pytest.mark.asyncio
async def test_empty_groq_reply_falls_through_to_ollama(sleeps, monkeypatch):
    monkeypatch.setattr(cfg.settings, "LLM_PROVIDER", "groq")
    monkeypatch.setattr(cfg.settings, "GROQ_API_KEY", "key")
    calls = []

    async def groq(prompt):
        calls.append("groq")
        return ""

    async def ollama(client, prompt):
        calls.append("ollama")
        return "  Spent $12 on coffee.  "

    monkeypatch.setattr(ai_providers, "_groq_generate", groq)
    monkeypatch.setattr(ai_providers, "_ollama_generate", ollama)
    assert await generate_text("How much?") == "Spent $12 on coffee."
    assert calls == ["groq", "ollama"]


@pytest.mark.asyncio
async def test_failing_providers_reach_gemini(sleeps, monkeypatch):
    monkeypatch.setattr(cfg.settings, "LLM_PROVIDER", "groq")
    monkeypatch.setattr(cfg.settings, "GROQ_API_KEY", "key")
    monkeypatch.setattr(cfg.settings, "GOOGLE_API_KEY", "key")
    monkeypatch.setattr(cfg.settings, "AI_RETRY_TRIES", 2)
    attempts = {"groq": 0, "ollama": 0}

    async def groq(prompt):
        attempts["groq"] += 1
        raise ProviderError("groq", "429")

    async def ollama(client, prompt):
        attempts["ollama"] += 1
        raise ProviderError("ollama", "model not found")

    async def gemini(client, prompt):
        return "From Gemini"

    monkeypatch.setattr(ai_providers, "_groq_generate", groq)
    monkeypatch.setattr(ai_providers, "_ollama_generate", ollama)
    monkeypatch.setattr(ai_providers, "_gemini_generate", gemini)
    assert await generate_text("hi") == "From Gemini"
    assert attempts == {"groq": 2, "ollama": 2}


@pytest.mark.asyncio
async def test_no_configured_provider_returns_mock(monkeypatch):
    async def never(*args):
        raise AssertionError("provider should not be called")

    monkeypatch.setattr(ai_providers, "_groq_generate", never)
    monkeypatch.setattr(ai_providers, "_ollama_generate", never)
    monkeypatch.setattr(ai_providers, "_gemini_generate", never)
    assert await generate_text("hi") == MOCK_GENERATION


def test_mock_embed_is_deterministic():
    first = mock_embed("Corner Cafe")
    assert first == mock_embed("Corner Cafe")
    assert first != mock_embed("Corner Cafe 2")
    assert len(first) == 768
    assert len(mock_embed("x", dim=16)) == 16
    assert all(0.0 <= v <= 1.0 for v in first)


def test_extract_json():
    fenced = '```json\n{"merchant": "Corner Cafe", "total": 8.37}\n```'
    assert extract_json(fenced) == {"merchant": "Corner Cafe", "total": 8.37}
    assert extract_json('Sure! Here it is: {"total": 1} hope that helps') == {"total": 1}
    assert extract_json("no json here") is None
    assert extract_json('{"total": }') is None
    assert extract_json(None) is None


def test_first_sentence():
    assert first_sentence("You spend most on Fridays. Try a budget.") == "You spend most on Fridays"
    assert first_sentence("") == ""
