"""Tests for the greedy object response cache."""

from __future__ import annotations

import time

import httpx
import pytest

from mpx_sync.adapters.mpx.cache_strategy import (
    CACHE_STATUS_HEADER,
    CachingTransport,
    cache_key,
    matches_object_request,
)
from mpx_sync.infrastructure.persistence.sqlite.repositories.http_cache_repository import (
    CachedResponse,
    SqliteHttpCacheRepositoryAdapter,
)

OBJECT_URL = "https://data.example.test/media/data/Media/123"


class InMemoryStore:
    def __init__(self) -> None:
        self.entries: dict[str, CachedResponse] = {}

    async def async_get(self, key):
        return self.entries.get(key)

    async def async_put(self, key, *, url, status_code, headers, body):
        self.entries[key] = CachedResponse(status_code, dict(headers), body, time.time())

    def age_all(self, seconds: float) -> None:
        for key, entry in self.entries.items():
            self.entries[key] = CachedResponse(
                entry.status_code, entry.headers, entry.body, entry.stored_at - seconds
            )


class Origin:
    """Mock origin that answers with an increasing version number."""

    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        return httpx.Response(self.status_code, json={"version": self.calls})


def _client(store, origin, **kwargs) -> httpx.AsyncClient:
    transport = CachingTransport(store, transport=httpx.MockTransport(origin), **kwargs)
    return httpx.AsyncClient(transport=transport)


def test_cache_key_ignores_token_and_param_order():
    a = httpx.Request("GET", OBJECT_URL, params={"token": "one", "schema": "1.10", "form": "cjson"})
    b = httpx.Request("GET", OBJECT_URL, params={"form": "cjson", "schema": "1.10", "token": "two"})

    assert cache_key(a) == cache_key(b)
    assert "token" not in cache_key(a)


def test_cache_key_differs_per_object_and_method():
    a = httpx.Request("GET", OBJECT_URL)
    b = httpx.Request("GET", OBJECT_URL.replace("123", "124"))
    c = httpx.Request("HEAD", OBJECT_URL)

    assert len({cache_key(a), cache_key(b), cache_key(c)}) == 3


def test_object_request_matcher():
    assert matches_object_request(httpx.Request("GET", OBJECT_URL))
    assert not matches_object_request(
        httpx.Request("GET", "https://data.example.test/media/data/Media")
    )
    notify = httpx.Request("GET", "https://data.example.test/media/notify")
    assert not matches_object_request(notify)


@pytest.mark.asyncio
async def test_second_read_is_served_from_cache():
    store, origin = InMemoryStore(), Origin()
    async with _client(store, origin) as client:
        first = await client.get(OBJECT_URL, params={"token": "a"})
        second = await client.get(OBJECT_URL, params={"token": "b"})

    assert origin.calls == 1
    assert first.headers[CACHE_STATUS_HEADER] == "MISS"
    assert second.headers[CACHE_STATUS_HEADER] == "HIT"
    assert second.json() == {"version": 1}


@pytest.mark.asyncio
async def test_no_cache_skips_read_but_refreshes_entry():
    store, origin = InMemoryStore(), Origin()
    async with _client(store, origin) as client:
        await client.get(OBJECT_URL)
        fresh = await client.get(OBJECT_URL, headers={"Cache-Control": "no-cache"})
        after = await client.get(OBJECT_URL)

    assert fresh.json() == {"version": 2}
    assert after.json() == {"version": 2}
    assert after.headers[CACHE_STATUS_HEADER] == "HIT"
    assert origin.calls == 2


@pytest.mark.asyncio
async def test_pragma_no_cache_skips_read():
    store, origin = InMemoryStore(), Origin()
    async with _client(store, origin) as client:
        await client.get(OBJECT_URL)
        fresh = await client.get(OBJECT_URL, headers={"Pragma": "no-cache"})

    assert fresh.json() == {"version": 2}


@pytest.mark.asyncio
async def test_max_age_rejects_older_entries():
    store, origin = InMemoryStore(), Origin()
    async with _client(store, origin) as client:
        await client.get(OBJECT_URL)
        store.age_all(120)
        young_enough = await client.get(OBJECT_URL, headers={"Cache-Control": "max-age=600"})
        too_old = await client.get(OBJECT_URL, headers={"Cache-Control": "max-age=60"})

    assert young_enough.json() == {"version": 1}
    assert too_old.json() == {"version": 2}


@pytest.mark.asyncio
async def test_entries_past_ttl_are_ignored():
    store, origin = InMemoryStore(), Origin()
    async with _client(store, origin, ttl_seconds=60) as client:
        await client.get(OBJECT_URL)
        store.age_all(61)
        response = await client.get(OBJECT_URL)

    assert response.json() == {"version": 2}


@pytest.mark.asyncio
async def test_no_store_bypasses_cache():
    store, origin = InMemoryStore(), Origin()
    async with _client(store, origin) as client:
        response = await client.get(OBJECT_URL, headers={"Cache-Control": "no-store"})

    assert store.entries == {}
    assert CACHE_STATUS_HEADER not in response.headers


@pytest.mark.asyncio
async def test_errors_are_not_stored():
    store, origin = InMemoryStore(), Origin(status_code=503)
    async with _client(store, origin) as client:
        response = await client.get(OBJECT_URL)

    assert response.status_code == 503
    assert store.entries == {}


@pytest.mark.asyncio
async def test_non_object_requests_pass_through():
    store, origin = InMemoryStore(), Origin()
    async with _client(store, origin) as client:
        await client.get("https://data.example.test/media/notify")
        await client.get("https://data.example.test/media/notify")

    assert origin.calls == 2
    assert store.entries == {}


@pytest.mark.asyncio
async def test_sqlite_store_round_trip(session_manager):
    store = SqliteHttpCacheRepositoryAdapter(session_manager)
    origin = Origin()
    transport = CachingTransport(store, transport=httpx.MockTransport(origin))

    async with httpx.AsyncClient(transport=transport) as client:
        await client.get(OBJECT_URL, params={"token": "secret"})
        cached = await client.get(OBJECT_URL, params={"token": "other"})

    assert cached.headers[CACHE_STATUS_HEADER] == "HIT"
    assert transport.stats == {"hits": 1, "misses": 1, "stores": 1}
    assert await store.async_purge_older_than(-1) == 1
