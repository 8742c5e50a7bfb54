"""End-to-end tests of the sync service over a temporary SQLite database."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from mpx_sync.adapters.mpx.errors import (
    CollectionNotConfiguredError,
    MpxClientError,
    RemoteObjectNotFoundError,
)
from mpx_sync.adapters.mpx.models import ChunkResult, ObjectIdList, UNSET_CURSOR
from mpx_sync.adapters.mpx.sync.constants import IMPORTER_QUEUE, NOTIFICATION_QUEUE
from mpx_sync.adapters.mpx.sync.service import MpxSyncService, build_sync_service
from mpx_sync.config import AppConfig, DatabaseConfig, RuntimeConfig, SyncConfig
from mpx_sync.db.models import MediaRecord
from mpx_sync.domain.events.import_events import ImportSelectEvent
from mpx_sync.infrastructure.messaging.event_bus import EventBus
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
from tests.conftest import make_notification, make_remote_object

MEDIA_URI = "http://data.media.theplatform.com/media/data/Media"
IMPORT_TASK = {"remote_object_id": "1", "collection_key": "mpx_video"}


def _id_page(ids: list[int], total: int) -> ObjectIdList:
    return ObjectIdList.model_validate(
        {
            "entries": [{"id": f"{MEDIA_URI}/{i}"} for i in ids],
            "totalResults": total,
        }
    )


@pytest.fixture
def client():
    mock = AsyncMock()

    async def _load(collection, object_id, *, bypass_cache=False):
        return make_remote_object(object_id.rsplit("/", 1)[-1])

    mock.load_object.side_effect = _load
    return mock


@pytest.fixture
def notifications():
    return AsyncMock()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def queue(session_manager):
    return SqliteWorkQueue(session_manager)


@pytest.fixture
def service(session_manager, mpx_config, client, notifications, queue, event_bus):
    return MpxSyncService(
        config=mpx_config,
        client=client,
        notifications=notifications,
        cursor_store=SqliteNotificationCursorStore(session_manager),
        queue=queue,
        media_repository=SqliteMediaRepositoryAdapter(session_manager),
        object_store=SqliteObjectStoreRepositoryAdapter(session_manager),
        event_bus=event_bus,
        sync_config=SyncConfig(chunk_size=2, select_page_size=3),
    )


@pytest.mark.asyncio
async def test_listen_then_process_notifications(service, notifications, queue, session_manager):
    notifications.poll.return_value = [
        make_notification(11, "1"),
        make_notification(12, "2"),
        make_notification(13, "1"),
        make_notification(14, "3"),
    ]

    listen = await service.listen("mpx_video")

    assert listen.queued == 3
    assert listen.chunks == 2
    assert await service.get_cursor("mpx_video") == 14
    assert await queue.number_of_items(NOTIFICATION_QUEUE) == 2

    run = await service.process_notification_queue()

    assert run.claimed == 2
    assert run.deleted == 2
    assert run.released == 0
    assert run.items.imported == 3
    assert await queue.number_of_items(NOTIFICATION_QUEUE) == 0
    with session_manager.connection_context():
        assert MediaRecord.select().count() == 3


@pytest.mark.asyncio
async def test_per_item_failures_do_not_keep_notification_message(service, client, queue):
    async def _load(collection, object_id, *, bypass_cache=False):
        if object_id.endswith("/2"):
            raise RemoteObjectNotFoundError(object_id)
        return make_remote_object(object_id.rsplit("/", 1)[-1])

    client.load_object.side_effect = _load
    await queue.create_item(
        NOTIFICATION_QUEUE,
        [
            {"remote_object_id": f"http://x/Media/{i}", "collection_key": "mpx_video"}
            for i in (1, 2, 3)
        ],
    )

    run = await service.process_notification_queue()

    assert run.items.imported == 2
    assert run.items.skipped == 1
    assert run.deleted == 1
    assert await queue.number_of_items(NOTIFICATION_QUEUE) == 0


@pytest.mark.asyncio
async def test_unexpected_chunk_error_releases_message(service, queue):
    item_id = await queue.create_item(
        NOTIFICATION_QUEUE, [{"remote_object_id": "1", "collection_key": "mpx_video"}]
    )
    service.reloader.process_chunk = AsyncMock(side_effect=RuntimeError("boom"))

    run = await service.process_notification_queue()

    assert run.claimed == 1
    assert run.deleted == 0
    assert run.released == 1
    assert await queue.number_of_items(NOTIFICATION_QUEUE) == 1
    again = await queue.claim_item(NOTIFICATION_QUEUE)
    assert again.item_id == item_id
    assert again.attempts == 2


@pytest.mark.asyncio
async def test_failing_message_is_not_reclaimed_within_one_run(service, queue):
    await queue.create_item(NOTIFICATION_QUEUE, [{"remote_object_id": "1", "collection_key": "x"}])
    service.reloader.process_chunk = AsyncMock(side_effect=RuntimeError("boom"))

    run = await service.process_notification_queue()

    assert service.reloader.process_chunk.await_count == 1
    assert run.claimed == 1


@pytest.mark.asyncio
async def test_malformed_message_is_dropped(service, queue):
    await queue.create_item(NOTIFICATION_QUEUE, [{"unexpected": True}])

    run = await service.process_notification_queue()

    assert run.deleted == 1
    assert run.items.failed == 1
    assert await queue.number_of_items(NOTIFICATION_QUEUE) == 0


@pytest.mark.asyncio
async def test_max_items_limits_claims(service, queue):
    for i in range(3):
        await queue.create_item(
            NOTIFICATION_QUEUE, [{"remote_object_id": str(i), "collection_key": "mpx_video"}]
        )

    run = await service.process_notification_queue(max_items=2)

    assert run.claimed == 2
    assert await queue.number_of_items(NOTIFICATION_QUEUE) == 1


@pytest.mark.asyncio
async def test_queue_full_import_pages_and_respects_limit(service, client, queue):
    client.select_ids.side_effect = [_id_page([1, 2, 3], 10), _id_page([4, 5], 10)]

    result = await service.queue_full_import("mpx_video", limit=5)

    assert result.queued == 5
    assert result.not_queued == 0
    assert result.total_results == 10
    assert await queue.number_of_items(IMPORTER_QUEUE) == 5
    ranges = [(c.kwargs["start"], c.kwargs["end"]) for c in client.select_ids.await_args_list]
    assert ranges == [(1, 3), (4, 5)]


@pytest.mark.asyncio
async def test_queue_full_import_stops_on_short_page(service, client, queue):
    client.select_ids.side_effect = [_id_page([1, 2, 3], 4), _id_page([4], 4)]

    result = await service.queue_full_import("mpx_video", offset=0)

    assert result.queued == 4
    assert client.select_ids.await_count == 2


@pytest.mark.asyncio
async def test_queue_full_import_offset_and_select_filters(service, client, event_bus):
    client.select_ids.return_value = _id_page([], 0)

    async def add_filter(event: ImportSelectEvent) -> None:
        event.filters["byCustomValue"] = "{excludeLocal}{false}"

    event_bus.subscribe(ImportSelectEvent, add_filter)

    result = await service.queue_full_import("mpx_video", offset=10)

    assert result.queued == 0
    call = client.select_ids.await_args
    assert call.kwargs["start"] == 11
    assert call.kwargs["filters"] == {"byCustomValue": "{excludeLocal}{false}"}


@pytest.mark.asyncio
async def test_queue_full_import_counts_queue_failures(service, client, queue):
    client.select_ids.return_value = _id_page([1, 2], 2)
    queue.create_item = AsyncMock(side_effect=[1, RuntimeError("locked")])

    result = await service.queue_full_import("mpx_video")

    assert result.queued == 1
    assert result.not_queued == 1
    assert len(result.errors) == 1


@pytest.mark.asyncio
async def test_queue_full_import_validates_arguments(service):
    with pytest.raises(ValueError):
        await service.queue_full_import("mpx_video", limit=0)
    with pytest.raises(ValueError):
        await service.queue_full_import("mpx_video", offset=-1)
    with pytest.raises(CollectionNotConfiguredError):
        await service.queue_full_import("missing")


@pytest.mark.asyncio
async def test_process_import_queue_uses_cache(service, client, queue):
    client.select_ids.return_value = _id_page([1, 2], 2)
    await service.queue_full_import("mpx_video")

    run = await service.process_import_queue()

    assert run.claimed == 2
    assert run.deleted == 2
    assert run.items.imported == 2
    assert all(c.kwargs["bypass_cache"] is False for c in client.load_object.await_args_list)


@pytest.mark.asyncio
async def test_process_import_queue_releases_retryable_failures(service, client, queue):
    await queue.create_item(IMPORTER_QUEUE, IMPORT_TASK)
    client.load_object.side_effect = MpxClientError("unavailable", status_code=503)

    run = await service.process_import_queue()

    assert run.released == 1
    assert run.deleted == 0
    assert len(run.items.retryable_errors) == 1
    assert await queue.number_of_items(IMPORTER_QUEUE) == 1


@pytest.mark.asyncio
async def test_process_import_queue_deletes_permanent_failures(service, client, queue):
    await queue.create_item(IMPORTER_QUEUE, IMPORT_TASK)
    client.load_object.side_effect = MpxClientError("forbidden", status_code=403)

    run = await service.process_import_queue()

    assert run.deleted == 1
    assert run.items.failed == 1
    assert await queue.number_of_items(IMPORTER_QUEUE) == 0


@pytest.mark.asyncio
async def test_import_by_id_bypasses_cache(service, client):
    records = await service.import_by_id("mpx_video", "55")

    assert len(records) == 1
    assert client.load_object.await_args.kwargs["bypass_cache"] is True


@pytest.mark.asyncio
async def test_import_by_id_propagates_not_found(service, client):
    client.load_object.side_effect = RemoteObjectNotFoundError("55")

    with pytest.raises(RemoteObjectNotFoundError):
        await service.import_by_id("mpx_video", "55")


@pytest.mark.asyncio
async def test_get_remote_object_reads_stored_payload_first(service, client):
    records = await service.import_by_id("mpx_video", "55")
    client.load_object.reset_mock()

    remote = await service.get_remote_object(records[0])

    assert remote.title == "Video 55"
    client.load_object.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_remote_object_loads_and_stores_when_missing(service, client):
    record = MediaRecord(bundle="video", remote_id="http://x/Media/77", fields={})

    first = await service.get_remote_object(record)
    second = await service.get_remote_object(record)

    assert first.title == "Video 77"
    assert second.title == "Video 77"
    assert client.load_object.await_count == 1


@pytest.mark.asyncio
async def test_get_remote_object_unknown_bundle(service):
    with pytest.raises(CollectionNotConfiguredError):
        await service.get_remote_object(MediaRecord(bundle="nope", remote_id="1", fields={}))


@pytest.mark.asyncio
async def test_reset_cursor(service, notifications):
    notifications.poll.return_value = [make_notification(99, "1")]
    await service.listen("mpx_video")

    await service.reset_cursor("mpx_video")

    assert await service.get_cursor("mpx_video") == UNSET_CURSOR


@pytest.mark.asyncio
async def test_queue_sizes(service, queue):
    await queue.create_item(IMPORTER_QUEUE, {})

    assert await service.queue_sizes() == {NOTIFICATION_QUEUE: 0, IMPORTER_QUEUE: 1}


def test_build_sync_service_wires_sqlite_adapters(session_manager, mpx_config):
    config = AppConfig(
        mpx=mpx_config,
        sync=SyncConfig(chunk_size=4),
        database=DatabaseConfig(path=session_manager.path),
        runtime=RuntimeConfig(),
    )

    service = build_sync_service(config, session_manager, AsyncMock())

    assert isinstance(service, MpxSyncService)
    assert service.chunk_size == 4


def test_chunk_result_merge():
    total = ChunkResult(imported=1, errors=["a"])
    total.merge(ChunkResult(imported=2, failed=1, errors=["a", "b"], retryable_errors=["b"]))

    assert total.imported == 3
    assert total.failed == 1
    assert total.errors == ["a", "b"]
    assert total.retryable_errors == ["b"]
