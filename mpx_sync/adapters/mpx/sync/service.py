"""Public mpx sync service composed of the pipeline stages."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from mpx_sync.adapters.mpx.errors import CollectionNotConfiguredError
from mpx_sync.adapters.mpx.models import (
    ChunkResult,
    ImportTask,
    QueueImportsResult,
    QueueRunResult,
    RemoteObject,
)
from mpx_sync.adapters.mpx.notifications import NotificationTransport
from mpx_sync.adapters.mpx.sync.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_QUEUE_LEASE_SECONDS,
    DEFAULT_RELOAD_CONCURRENCY,
    DEFAULT_SELECT_PAGE_SIZE,
    IMPORTER_QUEUE,
    NOTIFICATION_QUEUE,
)
from mpx_sync.adapters.mpx.sync.importer import DataObjectImporter
from mpx_sync.adapters.mpx.sync.listener import NotificationListener
from mpx_sync.adapters.mpx.sync.queuer import BatchQueuer
from mpx_sync.adapters.mpx.sync.reloader import ObjectReloader
from mpx_sync.core.async_utils import raise_if_cancelled
from mpx_sync.core.logging_utils import generate_correlation_id
from mpx_sync.core.time_utils import utc_now
from mpx_sync.domain.events.import_events import ImportSelectEvent
from mpx_sync.infrastructure.persistence.sqlite.repositories.media_repository import (
    SqliteMediaRepositoryAdapter,
)
from mpx_sync.infrastructure.persistence.sqlite.repositories.object_store_repository import (
    SqliteObjectStoreRepositoryAdapter,
)
from mpx_sync.infrastructure.persistence.sqlite.repositories.state_repository import (
    SqliteNotificationCursorStore,
)
from mpx_sync.infrastructure.queue.sqlite_queue import SqliteWorkQueue

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from mpx_sync.adapters.mpx.client import MpxClient
    from mpx_sync.adapters.mpx.models import ListenResult
    from mpx_sync.adapters.mpx.sync.protocols import (
        CursorStore,
        MediaRepository,
        MpxClientProtocol,
        NotificationSource,
        ObjectStore,
        WorkQueue,
    )
    from mpx_sync.config import AppConfig
    from mpx_sync.config.mpx import CollectionConfig, MpxConfig
    from mpx_sync.config.sync import SyncConfig
    from mpx_sync.db.models import MediaRecord
    from mpx_sync.db.session import DatabaseSessionManager
    from mpx_sync.infrastructure.cache.entity_cache import EntityCache
    from mpx_sync.infrastructure.messaging.event_bus import EventBus
    from mpx_sync.infrastructure.queue.sqlite_queue import ClaimedItem

logger = logging.getLogger(__name__)


class MpxSyncService:
    """Thin orchestrator over listener, queues, reloader and importer.

    Queue runs keep the lease of every message that failed until the run is
    over and only then release them, so a failing message is retried by a
    later run rather than spinning within this one.
    """

    def __init__(
        self,
        *,
        config: MpxConfig,
        client: MpxClientProtocol,
        notifications: NotificationSource,
        cursor_store: CursorStore,
        queue: WorkQueue,
        media_repository: MediaRepository,
        object_store: ObjectStore,
        event_bus: EventBus | None = None,
        sync_config: SyncConfig | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._cursors = cursor_store
        self._queue = queue
        self._objects = object_store
        self._events = event_bus

        self.chunk_size = sync_config.chunk_size if sync_config else DEFAULT_CHUNK_SIZE
        self.lease_seconds = (
            sync_config.queue_lease_seconds if sync_config else DEFAULT_QUEUE_LEASE_SECONDS
        )
        self.select_page_size = (
            sync_config.select_page_size if sync_config else DEFAULT_SELECT_PAGE_SIZE
        )
        concurrency = (
            sync_config.reload_concurrency if sync_config else DEFAULT_RELOAD_CONCURRENCY
        )

        self.importer = DataObjectImporter(
            media_repository, object_store, config, event_bus=event_bus
        )
        self.queuer = BatchQueuer(queue, NOTIFICATION_QUEUE)
        self.listener = NotificationListener(
            notifications, cursor_store, self.queuer, chunk_size=self.chunk_size
        )
        self.reloader = ObjectReloader(client, self.importer, config, concurrency=concurrency)

    def _collection(self, collection_key: str) -> CollectionConfig:
        collection = self._config.collection(collection_key)
        if collection is None:
            raise CollectionNotConfiguredError(collection_key)
        return collection

    async def listen(self, collection_key: str) -> ListenResult:
        self._collection(collection_key)
        return await self.listener.listen(collection_key, generate_correlation_id())

    async def get_cursor(self, collection_key: str) -> int:
        self._collection(collection_key)
        return await self._cursors.async_get(collection_key)

    async def reset_cursor(self, collection_key: str) -> None:
        self._collection(collection_key)
        await self._cursors.async_reset(collection_key)

    async def queue_sizes(self) -> dict[str, int]:
        return {
            NOTIFICATION_QUEUE: await self._queue.number_of_items(NOTIFICATION_QUEUE),
            IMPORTER_QUEUE: await self._queue.number_of_items(IMPORTER_QUEUE),
        }

    async def clear_queue(self, queue_name: str) -> int:
        """Delete every message of ``queue_name``, claimed or not."""
        deleted = await self._queue.delete_queue(queue_name)
        logger.info("queue_cleared", extra={"queue": queue_name, "deleted": deleted})
        return deleted

    async def process_notification_queue(
        self, max_items: int | None = None, lease_seconds: int | None = None
    ) -> QueueRunResult:
        """Reload and import queued notification chunks.

        Per-item failures inside a chunk are counted but do not keep the
        message around; only an unexpected error while handling the chunk as a
        whole releases it.
        """

        async def _handle(item: ClaimedItem, cid: str) -> ChunkResult:
            tasks = [ImportTask.model_validate(entry) for entry in item.payload]
            return await self.reloader.process_chunk(tasks, cid)

        return await self._drain(NOTIFICATION_QUEUE, _handle, max_items, lease_seconds)

    async def process_import_queue(
        self, max_items: int | None = None, lease_seconds: int | None = None
    ) -> QueueRunResult:
        """Import queued full-import tasks one at a time through the response cache.

        A task whose failure is retryable is released for a later run.
        """

        async def _handle(item: ClaimedItem, cid: str) -> ChunkResult:
            task = ImportTask.model_validate(item.payload)
            result = await self.reloader.process_chunk([task], cid, bypass_cache=False)
            if result.retryable_errors:
                raise _RetryLater(result)
            return result

        return await self._drain(IMPORTER_QUEUE, _handle, max_items, lease_seconds)

    async def _drain(
        self,
        queue_name: str,
        handler: Callable[[ClaimedItem, str], Awaitable[ChunkResult]],
        max_items: int | None,
        lease_seconds: int | None,
    ) -> QueueRunResult:
        cid = generate_correlation_id()
        lease = lease_seconds or self.lease_seconds
        result = QueueRunResult(queue=queue_name, correlation_id=cid)
        to_release: list[int] = []

        try:
            while max_items is None or result.claimed < max_items:
                item = await self._queue.claim_item(queue_name, lease)
                if item is None:
                    break
                result.claimed += 1

                try:
                    chunk = await handler(item, cid)
                except (ValidationError, TypeError) as exc:
                    # A payload that cannot be parsed will never succeed.
                    logger.error(
                        "queue_item_malformed",
                        extra={
                            "queue": queue_name,
                            "item_id": item.item_id,
                            "error": str(exc),
                            "correlation_id": cid,
                        },
                    )
                    result.items.failed += 1
                    result.items.permanent_errors.append(
                        f"item {item.item_id}: malformed payload"
                    )
                    await self._queue.delete_item(item.item_id)
                    result.deleted += 1
                    continue
                except _RetryLater as retry:
                    result.items.merge(retry.result)
                    to_release.append(item.item_id)
                    continue
                except Exception as exc:
                    raise_if_cancelled(exc)
                    logger.exception(
                        "queue_item_failed",
                        extra={
                            "queue": queue_name,
                            "item_id": item.item_id,
                            "attempts": item.attempts,
                            "correlation_id": cid,
                        },
                    )
                    result.items.errors.append(f"item {item.item_id}: {exc}")
                    to_release.append(item.item_id)
                    continue

                result.items.merge(chunk)
                await self._queue.delete_item(item.item_id)
                result.deleted += 1
        finally:
            for item_id in to_release:
                await self._queue.release_item(item_id)
                result.released += 1

        logger.info(
            "queue_run_complete",
            extra={
                "queue": queue_name,
                "claimed": result.claimed,
                "deleted": result.deleted,
                "released": result.released,
                "imported": result.items.imported,
                "failed": result.items.failed,
                "correlation_id": cid,
            },
        )
        return result

    async def queue_full_import(
        self, collection_key: str, limit: int | None = None, offset: int = 0
    ) -> QueueImportsResult:
        """Queue one import task per object of the collection.

        Objects are listed in id order, ``offset`` objects are skipped and at
        most ``limit`` tasks are queued. ``ImportSelectEvent`` handlers may add
        listing filters first.
        """
        collection = self._collection(collection_key)
        if limit is not None and limit < 1:
            raise ValueError("limit must be at least 1")
        if offset < 0:
            raise ValueError("offset cannot be negative")

        select_event = ImportSelectEvent(occurred_at=utc_now(), collection_key=collection_key)
        if self._events is not None:
            await self._events.publish(select_event)

        result = QueueImportsResult(collection_key=collection_key)
        start = offset + 1
        while True:
            remaining = None if limit is None else limit - (result.queued + result.not_queued)
            if remaining is not None and remaining <= 0:
                break
            size = self.select_page_size
            if remaining is not None:
                size = min(size, remaining)

            page = await self._client.select_ids(
                collection, start=start, end=start + size - 1, filters=select_event.filters
            )
            if result.total_results is None:
                result.total_results = page.total_results

            for object_id in page.ids[:size]:
                await self._queue_import_task(result, collection_key, object_id)

            if len(page.entries) < size:
                break
            start += size

        logger.info(
            "full_import_queued",
            extra={
                "collection": collection_key,
                "queue": IMPORTER_QUEUE,
                "queued": result.queued,
                "not_queued": result.not_queued,
                "total_results": result.total_results,
            },
        )
        return result

    async def _queue_import_task(
        self, result: QueueImportsResult, collection_key: str, object_id: str
    ) -> None:
        task = ImportTask(remote_object_id=object_id, collection_key=collection_key)
        try:
            await self._queue.create_item(IMPORTER_QUEUE, task.model_dump())
        except Exception as exc:
            raise_if_cancelled(exc)
            result.not_queued += 1
            result.errors.append(f"{object_id}: {exc}")
            logger.error(
                "full_import_task_not_queued",
                extra={"collection": collection_key, "remote_id": object_id, "error": str(exc)},
            )
            return
        result.queued += 1

    async def import_by_id(
        self, collection_key: str, remote_object_id: str, bypass_cache: bool = True
    ) -> list[MediaRecord]:
        """Load and import one object right away; errors propagate to the caller."""
        collection = self._collection(collection_key)
        remote_object = await self._client.load_object(
            collection, remote_object_id, bypass_cache=bypass_cache
        )
        return await self.importer.import_item(remote_object, collection)

    async def get_remote_object(self, record: MediaRecord) -> RemoteObject:
        """Return the remote object behind ``record``.

        The stored payload is used when present; otherwise the object is loaded
        and its payload stored for the next read.
        """
        collection = self._collection_for_bundle(record.bundle)
        payload = await self._objects.async_get(collection.key, record.remote_id)
        if payload is not None:
            return RemoteObject.model_validate(payload)

        remote_object = await self._client.load_object(collection, record.remote_id)
        await self._objects.async_put(collection.key, record.remote_id, remote_object.to_payload())
        return remote_object

    def _collection_for_bundle(self, bundle: str) -> CollectionConfig:
        for collection in self._config.collections:
            if collection.bundle == bundle:
                return collection
        raise CollectionNotConfiguredError(bundle)


class _RetryLater(Exception):
    def __init__(self, result: ChunkResult) -> None:
        super().__init__("retryable item failure")
        self.result = result


def build_sync_service(
    config: AppConfig,
    session_manager: DatabaseSessionManager,
    client: MpxClient,
    *,
    event_bus: EventBus | None = None,
    entity_cache: EntityCache | None = None,
) -> MpxSyncService:
    """Wire the SQLite-backed adapters and ``client`` into a sync service."""
    return MpxSyncService(
        config=config.mpx,
        client=client,
        notifications=NotificationTransport(client, config.mpx),
        cursor_store=SqliteNotificationCursorStore(session_manager),
        queue=SqliteWorkQueue(session_manager),
        media_repository=SqliteMediaRepositoryAdapter(session_manager, entity_cache),
        object_store=SqliteObjectStoreRepositoryAdapter(session_manager),
        event_bus=event_bus,
        sync_config=config.sync,
    )
