"""Key/value store of the last full remote payload per object."""

from __future__ import annotations

from typing import Any

from mpx_sync.core.time_utils import utc_now
from mpx_sync.db.models import CachedObject
from mpx_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository


class SqliteObjectStoreRepositoryAdapter(SqliteBaseRepository):
    """Unique per (collection key, remote id); every write overwrites."""

    async def async_put(self, collection_key: str, remote_id: str, payload: dict[str, Any]) -> None:
        def _upsert() -> None:
            CachedObject.insert(
                collection_key=collection_key,
                remote_id=remote_id,
                payload=payload,
            ).on_conflict(
                conflict_target=[CachedObject.collection_key, CachedObject.remote_id],
                update={CachedObject.payload: payload, CachedObject.updated_at: utc_now()},
            ).execute()

        await self._execute(_upsert, operation_name="put_cached_object")

    async def async_get(self, collection_key: str, remote_id: str) -> dict[str, Any] | None:
        def _query() -> dict[str, Any] | None:
            row = CachedObject.get_or_none(
                (CachedObject.collection_key == collection_key)
                & (CachedObject.remote_id == remote_id)
            )
            return dict(row.payload) if row is not None else None

        return await self._execute(_query, operation_name="get_cached_object", read_only=True)

    async def async_delete(self, collection_key: str, remote_id: str) -> int:
        def _delete() -> int:
            return (
                CachedObject.delete()
                .where(
                    (CachedObject.collection_key == collection_key)
                    & (CachedObject.remote_id == remote_id)
                )
                .execute()
            )

        return await self._execute(_delete, operation_name="delete_cached_object")
