"""SQLite storage for cached HTTP GET responses."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from mpx_sync.db.models import HttpCacheEntry
from mpx_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository


@dataclass(frozen=True, slots=True)
class CachedResponse:
    status_code: int
    headers: dict[str, str]
    body: bytes
    stored_at: float

    def age(self, now: float | None = None) -> float:
        return (now if now is not None else time.time()) - self.stored_at


class SqliteHttpCacheRepositoryAdapter(SqliteBaseRepository):
    async def async_get(self, key: str) -> CachedResponse | None:
        def _query() -> CachedResponse | None:
            row = HttpCacheEntry.get_or_none(HttpCacheEntry.key == key)
            if row is None:
                return None
            return CachedResponse(
                status_code=row.status_code,
                headers=dict(row.headers or {}),
                body=bytes(row.body),
                stored_at=float(row.stored_at),
            )

        return await self._execute(_query, operation_name="http_cache_get", read_only=True)

    async def async_put(
        self,
        key: str,
        *,
        url: str,
        status_code: int,
        headers: dict[str, Any],
        body: bytes,
    ) -> None:
        def _upsert() -> None:
            now = time.time()
            HttpCacheEntry.insert(
                key=key,
                url=url,
                status_code=status_code,
                headers=headers,
                body=body,
                stored_at=now,
            ).on_conflict(
                conflict_target=[HttpCacheEntry.key],
                update={
                    HttpCacheEntry.url: url,
                    HttpCacheEntry.status_code: status_code,
                    HttpCacheEntry.headers: headers,
                    HttpCacheEntry.body: body,
                    HttpCacheEntry.stored_at: now,
                },
            ).execute()

        await self._execute(_upsert, operation_name="http_cache_put")

    async def async_purge_older_than(self, max_age_seconds: float) -> int:
        cutoff = time.time() - max_age_seconds
        return await self._execute(
            lambda: HttpCacheEntry.delete().where(HttpCacheEntry.stored_at < cutoff).execute(),
            operation_name="http_cache_purge",
        )
