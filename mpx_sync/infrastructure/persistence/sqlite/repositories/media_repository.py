"""SQLite implementation of the media record repository."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from mpx_sync.db.models import MediaRecord
from mpx_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository

if TYPE_CHECKING:
    from collections.abc import Sequence

    from mpx_sync.infrastructure.cache.entity_cache import EntityCache


class SqliteMediaRepositoryAdapter(SqliteBaseRepository):
    """Async access to ``MediaRecord`` rows.

    Reads by primary key go through the optional request-scoped entity cache.
    """

    def __init__(self, session_manager: Any, entity_cache: EntityCache | None = None) -> None:
        super().__init__(session_manager)
        self._cache = entity_cache

    async def async_find_by_remote_id(self, remote_id: str) -> list[MediaRecord]:
        """Return every record pointing at ``remote_id``, oldest first."""

        def _query() -> list[MediaRecord]:
            return list(
                MediaRecord.select()
                .where(MediaRecord.remote_id == remote_id)
                .order_by(MediaRecord.id)
            )

        return await self._execute(_query, operation_name="find_media_by_remote_id", read_only=True)

    async def async_get(self, record_id: int) -> MediaRecord | None:
        if self._cache is not None:
            cached = self._cache.get(record_id)
            if cached is not None:
                return cached

        record = await self._execute(
            MediaRecord.get_or_none,
            MediaRecord.id == record_id,
            operation_name="get_media_record",
            read_only=True,
        )
        if record is not None and self._cache is not None:
            self._cache.put(record_id, record)
        return record

    async def async_save_all(self, records: Sequence[MediaRecord]) -> list[int]:
        """Save ``records`` in one transaction and return their ids."""

        def _save() -> list[int]:
            ids: list[int] = []
            for record in records:
                record.save()
                ids.append(record.id)
            return ids

        return await self._transaction(_save, operation_name="save_media_records")

    async def async_count(self, bundle: str | None = None) -> int:
        def _count() -> int:
            query = MediaRecord.select()
            if bundle is not None:
                query = query.where(MediaRecord.bundle == bundle)
            return query.count()

        return await self._execute(_count, operation_name="count_media_records", read_only=True)

    def invalidate(self, record_ids: Sequence[int | None]) -> None:
        if self._cache is not None:
            self._cache.invalidate(record_ids)
