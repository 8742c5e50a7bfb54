"""Greedy response cache for single-object reads from the mpx data services.

The transport sits under ``httpx.AsyncClient`` and stores successful GET
responses regardless of what the server's own caching headers say. Callers
steer it per request:

- ``Cache-Control: no-cache`` or ``Pragma: no-cache`` skips the cached read
  but still stores the fresh response
- ``Cache-Control: max-age=N`` rejects entries older than ``N`` seconds
- ``Cache-Control: no-store`` bypasses the cache entirely
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from mpx_sync.config.mpx import DEFAULT_CACHE_TTL_SECONDS

if TYPE_CHECKING:
    from collections.abc import Callable

    from mpx_sync.infrastructure.persistence.sqlite.repositories.http_cache_repository import (
        CachedResponse,
    )

logger = logging.getLogger(__name__)

CACHE_STATUS_HEADER = "x-mpx-cache"

# Transfer-level headers describe the wire body, not the decoded one we keep.
_UNSTORED_HEADERS = frozenset({"content-encoding", "content-length", "transfer-encoding"})


class ResponseCacheStore(Protocol):
    async def async_get(self, key: str) -> CachedResponse | None: ...

    async def async_put(
        self,
        key: str,
        *,
        url: str,
        status_code: int,
        headers: dict[str, Any],
        body: bytes,
    ) -> None: ...


def cache_key(request: httpx.Request) -> str:
    """Build a cache key that ignores the auth token and query ordering.

    Tokens rotate over time and are only accepted as a query parameter, so two
    reads of the same object with different tokens must share one entry.
    """
    params = sorted(
        (name, value) for name, value in request.url.params.multi_items() if name != "token"
    )
    return f"{request.method} {request.url.copy_with(params=params)}"


def matches_object_request(request: httpx.Request) -> bool:
    """True for reads of one object, e.g. ``/media/data/Media/12345``."""
    parts = request.url.path.split("/")
    return len(parts) > 4 and parts[2] == "data" and parts[4].isdigit()


def _parse_cache_control(values: list[str]) -> dict[str, str | None]:
    directives: dict[str, str | None] = {}
    for header in values:
        for part in header.split(","):
            name, _, value = part.strip().partition("=")
            if name:
                directives[name.lower()] = value.strip().strip('"') or None
    return directives


class CachingTransport(httpx.AsyncBaseTransport):
    """``httpx`` transport that serves and stores object reads via a cache store."""

    def __init__(
        self,
        store: ResponseCacheStore,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        key_func: Callable[[httpx.Request], str] = cache_key,
        request_matcher: Callable[[httpx.Request], bool] = matches_object_request,
    ) -> None:
        self._store = store
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._ttl_seconds = ttl_seconds
        self._key_func = key_func
        self._request_matcher = request_matcher
        self.stats = {"hits": 0, "misses": 0, "stores": 0}

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if request.method != "GET" or not self._request_matcher(request):
            return await self._transport.handle_async_request(request)

        directives = _parse_cache_control(request.headers.get_list("cache-control"))
        if "no-store" in directives:
            return await self._transport.handle_async_request(request)

        key = self._key_func(request)
        if self._may_read(request, directives):
            cached = await self._fetch(key, directives)
            if cached is not None:
                self.stats["hits"] += 1
                logger.debug("http_cache_hit", extra={"cache_key": key})
                return httpx.Response(
                    status_code=cached.status_code,
                    headers={**cached.headers, CACHE_STATUS_HEADER: "HIT"},
                    content=cached.body,
                    request=request,
                )

        self.stats["misses"] += 1
        response = await self._transport.handle_async_request(request)
        if response.status_code != 200:
            return response

        body = await response.aread()
        headers = {
            name: value
            for name, value in response.headers.items()
            if name.lower() not in _UNSTORED_HEADERS
        }
        await self._store.async_put(
            key,
            url=str(request.url.copy_remove_param("token")),
            status_code=response.status_code,
            headers=headers,
            body=body,
        )
        self.stats["stores"] += 1
        return httpx.Response(
            status_code=response.status_code,
            headers={**headers, CACHE_STATUS_HEADER: "MISS"},
            content=body,
            request=request,
            extensions=response.extensions,
        )

    @staticmethod
    def _may_read(request: httpx.Request, directives: dict[str, str | None]) -> bool:
        if "no-cache" in directives:
            return False
        if not directives:
            pragma = _parse_cache_control(request.headers.get_list("pragma"))
            if "no-cache" in pragma:
                return False
        return True

    async def _fetch(self, key: str, directives: dict[str, str | None]) -> CachedResponse | None:
        cached = await self._store.async_get(key)
        if cached is None:
            return None

        age = cached.age()
        if age > self._ttl_seconds:
            return None

        max_age = directives.get("max-age")
        if max_age is not None:
            try:
                if age > int(max_age):
                    return None
            except ValueError:
                logger.debug("http_cache_max_age_invalid", extra={"max_age": max_age})
        return cached

    async def aclose(self) -> None:
        await self._transport.aclose()
