"""Split notifications into import-task chunks on the durable queue."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mpx_sync.adapters.mpx.errors import QueueSubmissionError
from mpx_sync.adapters.mpx.models import ImportTask
from mpx_sync.adapters.mpx.sync.constants import DEFAULT_CHUNK_SIZE, NOTIFICATION_QUEUE
from mpx_sync.core.async_utils import raise_if_cancelled

if TYPE_CHECKING:
    from collections.abc import Sequence

    from mpx_sync.adapters.mpx.models import Notification
    from mpx_sync.adapters.mpx.sync.protocols import WorkQueue

logger = logging.getLogger(__name__)


def chunked(items: Sequence[ImportTask], size: int) -> list[list[ImportTask]]:
    if size < 1:
        msg = "chunk_size must be at least 1"
        raise ValueError(msg)
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class BatchQueuer:
    """Write each chunk of import tasks as one message on the notification queue."""

    def __init__(self, queue: WorkQueue, queue_name: str = NOTIFICATION_QUEUE) -> None:
        self._queue = queue
        self.queue_name = queue_name

    async def enqueue(
        self,
        notifications: Sequence[Notification],
        collection_key: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> int:
        """Queue the notifications and return the number of messages written.

        Each message insert commits on its own, so a failure leaves earlier
        chunks queued. The caller must not advance its cursor after a failure:
        the next listen re-delivers the whole batch.

        Raises:
            ValueError: ``chunk_size`` is below 1
            QueueSubmissionError: A message could not be written
        """
        tasks = [
            ImportTask(remote_object_id=n.entry.id, collection_key=collection_key)
            for n in notifications
            if n.entry is not None
        ]
        chunks = chunked(tasks, chunk_size)

        for index, chunk in enumerate(chunks):
            payload = [task.model_dump() for task in chunk]
            try:
                await self._queue.create_item(self.queue_name, payload)
            except Exception as exc:
                raise_if_cancelled(exc)
                logger.error(
                    "notification_chunk_queue_failed",
                    extra={
                        "collection": collection_key,
                        "queue": self.queue_name,
                        "chunk_index": index,
                        "chunks_queued": index,
                        "error": str(exc),
                    },
                )
                raise QueueSubmissionError(self.queue_name) from exc

        if chunks:
            logger.info(
                "notification_chunks_queued",
                extra={
                    "collection": collection_key,
                    "queue": self.queue_name,
                    "chunks": len(chunks),
                    "tasks": len(tasks),
                    "chunk_size": chunk_size,
                },
            )
        return len(chunks)
