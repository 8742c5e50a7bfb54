"""Notification listener: one poll-and-queue cycle per collection.

State flow of ``listen``::

    idle -> polling -> processing             batch queued, cursor advanced
                    -> empty                  nothing new, cursor untouched
                    -> stale_cursor_recovery  cursor reset, polled once more
                    -> fatal                  error propagated, cursor untouched
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mpx_sync.adapters.mpx.errors import StaleCursorError
from mpx_sync.adapters.mpx.models import UNSET_CURSOR, ListenResult, ListenState
from mpx_sync.adapters.mpx.sync.constants import DEFAULT_CHUNK_SIZE
from mpx_sync.adapters.mpx.sync.dedupe import dedupe_notifications
from mpx_sync.core.async_utils import raise_if_cancelled
from mpx_sync.core.logging_utils import generate_correlation_id

if TYPE_CHECKING:
    from mpx_sync.adapters.mpx.models import NotificationBatch
    from mpx_sync.adapters.mpx.sync.protocols import CursorStore, NotificationSource
    from mpx_sync.adapters.mpx.sync.queuer import BatchQueuer

logger = logging.getLogger(__name__)


class NotificationListener:
    def __init__(
        self,
        transport: NotificationSource,
        cursor_store: CursorStore,
        queuer: BatchQueuer,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._transport = transport
        self._cursors = cursor_store
        self._queuer = queuer
        self._chunk_size = chunk_size
        self.state = ListenState.IDLE

    async def listen(self, collection_key: str, correlation_id: str | None = None) -> ListenResult:
        """Run one listen cycle for ``collection_key``.

        The cursor only moves after every chunk of the batch was queued, and
        then to the highest notification id in the batch.

        Raises:
            StaleCursorError: The cursor was stale again right after a reset
            TransportError: The notification service failed
            QueueSubmissionError: A chunk could not be queued
        """
        cid = correlation_id or generate_correlation_id()
        cursor_before = await self._cursors.async_get(collection_key)
        result = ListenResult(
            collection_key=collection_key,
            state=ListenState.POLLING,
            cursor_before=cursor_before,
            cursor_after=cursor_before,
            correlation_id=cid,
        )

        try:
            batch = await self._poll(collection_key, cursor_before, result)
            if not batch:
                self.state = result.state = ListenState.EMPTY
                logger.info(
                    "notification_listen_empty",
                    extra={
                        "collection": collection_key,
                        "cursor": result.cursor_after,
                        "correlation_id": cid,
                    },
                )
                return result

            self.state = result.state = ListenState.PROCESSING
            await self._process(collection_key, batch, result)
        except Exception as exc:
            raise_if_cancelled(exc)
            self.state = ListenState.FATAL
            logger.error(
                "notification_listen_failed",
                extra={
                    "collection": collection_key,
                    "cursor": result.cursor_after,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "correlation_id": cid,
                },
            )
            raise
        finally:
            if self.state is not ListenState.FATAL:
                self.state = ListenState.IDLE

        logger.info(
            "notification_listen_processed",
            extra={
                "collection": collection_key,
                "received": result.received,
                "queued": result.queued,
                "chunk_size": self._chunk_size,
                "cursor_before": result.cursor_before,
                "cursor_after": result.cursor_after,
                "correlation_id": cid,
            },
        )
        return result

    async def _poll(
        self, collection_key: str, since_id: int, result: ListenResult
    ) -> NotificationBatch | None:
        self.state = ListenState.POLLING
        try:
            return await self._transport.poll(collection_key, since_id)
        except StaleCursorError as exc:
            self.state = result.state = ListenState.STALE_CURSOR_RECOVERY
            logger.warning(
                "notification_cursor_stale",
                extra={
                    "collection": collection_key,
                    "stale_id": exc.since_id,
                    "correlation_id": result.correlation_id,
                },
            )
            await self._cursors.async_reset(collection_key)
            result.recovered_stale_cursor = True
            result.cursor_after = UNSET_CURSOR

        # One retry only; a second stale cursor propagates.
        self.state = ListenState.POLLING
        return await self._transport.poll(collection_key, UNSET_CURSOR)

    async def _process(
        self, collection_key: str, batch: NotificationBatch, result: ListenResult
    ) -> None:
        kept = dedupe_notifications(batch)
        chunks = await self._queuer.enqueue(kept, collection_key, self._chunk_size)

        new_cursor = max(notification.id for notification in batch)
        await self._cursors.async_set(collection_key, new_cursor)

        result.received = len(batch)
        result.queued = len(kept)
        result.chunks = chunks
        result.cursor_after = new_cursor
