"""Protocol definitions (ports) for mpx sync.

The pipeline stages only see these Protocols, so tests can swap in fakes for
the HTTP client, the durable queue and the SQLite repositories.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from mpx_sync.adapters.mpx.models import NotificationBatch, ObjectIdList, RemoteObject
    from mpx_sync.config.mpx import CollectionConfig
    from mpx_sync.db.models import MediaRecord
    from mpx_sync.infrastructure.queue.sqlite_queue import ClaimedItem


class MpxClientProtocol(Protocol):
    async def load_object(
        self, collection: CollectionConfig, object_id: str, *, bypass_cache: bool = False
    ) -> RemoteObject: ...

    async def select_ids(
        self,
        collection: CollectionConfig,
        *,
        start: int,
        end: int,
        filters: Mapping[str, str] | None = None,
    ) -> ObjectIdList: ...


class NotificationSource(Protocol):
    async def poll(self, collection_key: str, since_id: int) -> NotificationBatch | None: ...


class CursorStore(Protocol):
    async def async_get(self, collection_key: str) -> int: ...

    async def async_set(self, collection_key: str, notification_id: int) -> None: ...

    async def async_reset(self, collection_key: str) -> None: ...


class WorkQueue(Protocol):
    async def create_item(self, queue_name: str, payload: Any) -> int: ...

    async def claim_item(self, queue_name: str, lease_seconds: int = 300) -> ClaimedItem | None: ...

    async def delete_item(self, item_id: int) -> None: ...

    async def release_item(self, item_id: int) -> None: ...

    async def number_of_items(self, queue_name: str) -> int: ...

    async def delete_queue(self, queue_name: str) -> int: ...


class MediaRepository(Protocol):
    async def async_find_by_remote_id(self, remote_id: str) -> list[MediaRecord]: ...

    async def async_save_all(self, records: Sequence[MediaRecord]) -> list[int]: ...

    def invalidate(self, record_ids: Sequence[int | None]) -> None: ...


class ObjectStore(Protocol):
    async def async_put(
        self, collection_key: str, remote_id: str, payload: dict[str, Any]
    ) -> None: ...

    async def async_get(self, collection_key: str, remote_id: str) -> dict[str, Any] | None: ...
