"""Durable named work queues stored in SQLite.

Messages are claimed with a lease rather than popped: a worker that dies
mid-message leaves a lease that simply expires, after which another worker
claims the same message again. A message only disappears on ``delete_item``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from mpx_sync.db.models import QueueItem
from mpx_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ClaimedItem:
    item_id: int
    queue_name: str
    payload: Any
    attempts: int


class SqliteWorkQueue(SqliteBaseRepository):
    """Lease-based FIFO queue over the ``queue_items`` table."""

    async def create_item(self, queue_name: str, payload: Any) -> int:
        """Insert one message in its own transaction and return its id."""

        def _create() -> int:
            return QueueItem.create(queue_name=queue_name, payload=payload).id

        item_id = await self._transaction(_create, operation_name="queue_create_item")
        logger.debug("queue_item_created", extra={"queue": queue_name, "item_id": item_id})
        return item_id

    async def claim_item(self, queue_name: str, lease_seconds: int = 300) -> ClaimedItem | None:
        """Claim the oldest message that is unclaimed or whose lease expired."""

        def _claim() -> ClaimedItem | None:
            now = time.time()
            item = (
                QueueItem.select()
                .where(
                    (QueueItem.queue_name == queue_name)
                    & (QueueItem.claimed_until.is_null() | (QueueItem.claimed_until < now))
                )
                .order_by(QueueItem.id)
                .first()
            )
            if item is None:
                return None
            attempts = item.attempts + 1
            QueueItem.update(claimed_until=now + lease_seconds, attempts=attempts).where(
                QueueItem.id == item.id
            ).execute()
            return ClaimedItem(
                item_id=item.id,
                queue_name=queue_name,
                payload=item.payload,
                attempts=attempts,
            )

        return await self._transaction(_claim, operation_name="queue_claim_item")

    async def delete_item(self, item_id: int) -> None:
        await self._execute(
            lambda: QueueItem.delete().where(QueueItem.id == item_id).execute(),
            operation_name="queue_delete_item",
        )

    async def release_item(self, item_id: int) -> None:
        """Drop the lease so the message can be claimed again right away."""
        await self._execute(
            lambda: QueueItem.update(claimed_until=None).where(QueueItem.id == item_id).execute(),
            operation_name="queue_release_item",
        )
        logger.debug("queue_item_released", extra={"item_id": item_id})

    async def number_of_items(self, queue_name: str) -> int:
        return await self._execute(
            lambda: QueueItem.select().where(QueueItem.queue_name == queue_name).count(),
            operation_name="queue_number_of_items",
            read_only=True,
        )

    async def delete_queue(self, queue_name: str) -> int:
        return await self._execute(
            lambda: QueueItem.delete().where(QueueItem.queue_name == queue_name).execute(),
            operation_name="queue_delete_queue",
        )
