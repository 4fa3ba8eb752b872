"""Shared fixtures: an in-memory stand-in for the async Mongo database.

``FakeDatabase`` implements the subset of the ``AsyncDatabase`` /
``AsyncCollection`` API the services use (find/sort/limit/to_list,
find_one, insert_one, update_one with upsert, delete_one/delete_many,
count_documents and bulk_write of ``UpdateOne``).
"""
from __future__ import annotations

import copy
import fnmatch
import re
import types
from typing import Any, Dict, List

import pytest

from app.core import config as cfg
from app.services import cache as cache_module

_MISSING = object()


def _get_path(doc: Dict[str, Any], path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return _MISSING
    return value


def _compare(value: Any, bound: Any, op) -> bool:
    if value is _MISSING or value is None:
        return False
    try:
        return op(value, bound)
    except TypeError:
        return False


def _match_condition(value: Any, cond: Any) -> bool:
    if isinstance(cond, dict) and any(k.startswith("$") for k in cond):
        for op, arg in cond.items():
            if op == "$in":
                if value not in arg:
                    return False
            elif op == "$ne":
                if value == arg:
                    return False
            elif op == "$gte":
                if not _compare(value, arg, lambda a, b: a >= b):
                    return False
            elif op == "$gt":
                if not _compare(value, arg, lambda a, b: a > b):
                    return False
            elif op == "$lte":
                if not _compare(value, arg, lambda a, b: a <= b):
                    return False
            elif op == "$lt":
                if not _compare(value, arg, lambda a, b: a < b):
                    return False
            elif op == "$exists":
                if (value is not _MISSING) != bool(arg):
                    return False
            elif op == "$regex":
                flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
                if not isinstance(value, str) or not re.search(arg, value, flags):
                    return False
            elif op == "$options":
                continue
            else:
                raise NotImplementedError(op)
        return True
    if value is _MISSING:
        return cond is None
    return value == cond


def matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, cond in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in cond):
                return False
            continue
        if not _match_condition(_get_path(doc, key), cond):
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = docs
        self._limit = 0

    def sort(self, key, direction: int = 1):
        keys = key if isinstance(key, list) else [(key, direction)]
        for field, dirn in reversed(keys):
            present = [d for d in self._docs if _get_path(d, field) not in (_MISSING, None)]
            absent = [d for d in self._docs if _get_path(d, field) in (_MISSING, None)]
            present.sort(key=lambda d: _get_path(d, field), reverse=dirn < 0)
            self._docs = absent + present if dirn > 0 else present + absent
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    async def to_list(self, length=None):
        docs = self._docs[: self._limit] if self._limit else self._docs
        return [copy.deepcopy(d) for d in docs]


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.docs: List[Dict[str, Any]] = []
        self._counter = 0

    def _find_all(self, query):
        return [d for d in self.docs if matches(d, query)]

    def find(self, query=None, projection=None):
        return FakeCursor(self._find_all(query or {}))

    async def find_one(self, query=None):
        found = self._find_all(query or {})
        return copy.deepcopy(found[0]) if found else None

    async def insert_one(self, doc):
        doc = copy.deepcopy(doc)
        if "_id" not in doc:
            self._counter += 1
            doc["_id"] = f"oid_{self._counter}"
        if any(d["_id"] == doc["_id"] for d in self.docs):
            raise ValueError(f"duplicate key {doc['_id']}")
        self.docs.append(doc)
        return types.SimpleNamespace(inserted_id=doc["_id"])

    def _apply(self, doc, update, inserting: bool):
        for key, value in update.get("$set", {}).items():
            doc[key] = copy.deepcopy(value)
        if inserting:
            for key, value in update.get("$setOnInsert", {}).items():
                doc[key] = copy.deepcopy(value)
        for key, value in update.get("$inc", {}).items():
            doc[key] = doc.get(key, 0) + value

    async def update_one(self, query, update, upsert: bool = False):
        found = self._find_all(query)
        if found:
            before = copy.deepcopy(found[0])
            self._apply(found[0], update, inserting=False)
            modified = int(before != found[0])
            return types.SimpleNamespace(matched_count=1, modified_count=modified, upserted_id=None)
        if upsert:
            doc = {k: v for k, v in query.items() if not k.startswith("$") and not isinstance(v, dict)}
            self._apply(doc, update, inserting=True)
            await self.insert_one(doc)
            return types.SimpleNamespace(matched_count=0, modified_count=0, upserted_id=doc.get("_id"))
        return types.SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def delete_one(self, query):
        found = self._find_all(query)
        if found:
            self.docs.remove(found[0])
        return types.SimpleNamespace(deleted_count=len(found[:1]))

    async def delete_many(self, query):
        found = self._find_all(query)
        for d in found:
            self.docs.remove(d)
        return types.SimpleNamespace(deleted_count=len(found))

    async def count_documents(self, query):
        return len(self._find_all(query))

    async def bulk_write(self, requests, ordered: bool = True):
        for req in requests:
            await self.update_one(req._filter, req._doc, upsert=bool(req._upsert))
        return types.SimpleNamespace(acknowledged=True)

    async def create_index(self, *args, **kwargs):
        return "ok"


class FakeDatabase:
    def __init__(self):
        self._collections: Dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture(autouse=True)
def _no_external_services(monkeypatch):
    """Keep tests offline: no Redis, no Sentry, mock AI providers."""
    monkeypatch.setattr(cfg.settings, "REDIS_URL", "")
    monkeypatch.setattr(cfg.settings, "SENTRY_DSN", None)
    monkeypatch.setattr(cfg.settings, "EMBEDDINGS_PROVIDER", "mock")
    monkeypatch.setattr(cfg.settings, "LLM_PROVIDER", "mock")
    monkeypatch.setattr(cfg.settings, "GROQ_API_KEY", None)
    monkeypatch.setattr(cfg.settings, "GOOGLE_API_KEY", None)
    monkeypatch.setattr(cfg.settings, "CURRENCY_GEOCODE_ENABLED", False)
    monkeypatch.setattr(cache_module, "_redis_client", None)
    yield


@pytest.fixture
def dev_user(monkeypatch):
    """Enable the auth bypass and return the bypass user id."""
    monkeypatch.setattr(cfg.settings, "DEV_AUTH_BYPASS", True)
    return cfg.settings.DEV_USER_ID


class FakeRedis:
    """Dict-backed stand-in for the ``redis.asyncio`` calls the cache makes."""

    def __init__(self):
        self.store: Dict[str, str] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value

    async def delete(self, key):
        self.store.pop(key, None)

    async def scan_iter(self, pattern):
        for key in [k for k in self.store if fnmatch.fnmatch(k, pattern)]:
            yield key

    async def aclose(self):
        pass


@pytest.fixture
def fake_redis(monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr(cache_module, "_redis_client", client)
    return client
