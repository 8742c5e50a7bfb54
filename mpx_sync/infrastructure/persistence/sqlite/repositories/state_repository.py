"""SQLite-backed notification cursor store.

Cursors are kept in the ``state`` key/value table under
``"<collection key>_notification_id"``. A missing entry reads as ``-1``,
meaning the next poll starts from the beginning of the notification history.
"""

from __future__ import annotations

import logging

from mpx_sync.adapters.mpx.models import UNSET_CURSOR
from mpx_sync.db.models import StateEntry
from mpx_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository

logger = logging.getLogger(__name__)


def notification_key(collection_key: str) -> str:
    return f"{collection_key}_notification_id"


def _read(key: str) -> int:
    entry = StateEntry.get_or_none(StateEntry.key == key)
    if entry is None or entry.value is None:
        return UNSET_CURSOR
    try:
        return int(entry.value)
    except (TypeError, ValueError):
        logger.warning("cursor_value_invalid", extra={"key": key, "value": entry.value})
        return UNSET_CURSOR


def _write(key: str, value: int) -> None:
    # Upsert keeps the write to a single statement.
    StateEntry.insert(key=key, value=int(value)).on_conflict(
        conflict_target=[StateEntry.key],
        update={StateEntry.value: int(value)},
    ).execute()


def _delete(key: str) -> None:
    StateEntry.delete().where(StateEntry.key == key).execute()


class SqliteNotificationCursorStore(SqliteBaseRepository):
    """Durable per-collection notification cursor."""

    def get(self, collection_key: str) -> int:
        return self._run_in_context(_read, notification_key(collection_key))

    def set(self, collection_key: str, notification_id: int) -> None:
        self._run_in_context(_write, notification_key(collection_key), notification_id)

    def reset(self, collection_key: str) -> None:
        self._run_in_context(_delete, notification_key(collection_key))

    async def async_get(self, collection_key: str) -> int:
        return await self._execute(
            _read,
            notification_key(collection_key),
            operation_name="get_notification_cursor",
            read_only=True,
        )

    async def async_set(self, collection_key: str, notification_id: int) -> None:
        await self._execute(
            _write,
            notification_key(collection_key),
            notification_id,
            operation_name="set_notification_cursor",
        )
        logger.debug(
            "cursor_saved",
            extra={"collection": collection_key, "cursor": notification_id},
        )

    async def async_reset(self, collection_key: str) -> None:
        await self._execute(
            _delete,
            notification_key(collection_key),
            operation_name="reset_notification_cursor",
        )
        logger.info("cursor_reset", extra={"collection": collection_key})
