"""Upsert local media records from a loaded remote object."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from mpx_sync.adapters.mpx.errors import CollectionNotConfiguredError, LocalStorageError
from mpx_sync.adapters.mpx.metadata import extract, schema_for
from mpx_sync.core.async_utils import raise_if_cancelled
from mpx_sync.core.time_utils import utc_now
from mpx_sync.db.models import MediaRecord
from mpx_sync.domain.events.import_events import ImportEvent

if TYPE_CHECKING:
    from mpx_sync.adapters.mpx.metadata import SchemaDescriptor
    from mpx_sync.adapters.mpx.models import RemoteObject
    from mpx_sync.adapters.mpx.sync.protocols import MediaRepository, ObjectStore
    from mpx_sync.config.mpx import CollectionConfig, MpxConfig
    from mpx_sync.infrastructure.messaging.event_bus import EventBus

logger = logging.getLogger(__name__)


class DataObjectImporter:
    """Create or update every local record that points at a remote object.

    The remote id is not a unique key locally: when several records reference
    the same object, all of them are updated.
    """

    def __init__(
        self,
        media_repository: MediaRepository,
        object_store: ObjectStore,
        config: MpxConfig,
        *,
        event_bus: EventBus | None = None,
    ) -> None:
        self._media = media_repository
        self._objects = object_store
        self._config = config
        self._events = event_bus

    def resolve_collection(self, collection: CollectionConfig | str) -> CollectionConfig:
        if not isinstance(collection, str):
            return collection
        resolved = self._config.collection(collection)
        if resolved is None:
            raise CollectionNotConfiguredError(collection)
        return resolved

    async def import_item(
        self, remote_object: RemoteObject, collection: CollectionConfig | str
    ) -> list[MediaRecord]:
        """Import ``remote_object`` and return the saved records.

        Steps, in order: find existing records, create a stub when there are
        none, publish ``ImportEvent``, store the full payload, copy mapped
        metadata and the thumbnail URL, save. Cached entities for touched records are invalidated
        whether or not the save succeeds.

        Raises:
            CollectionNotConfiguredError: ``collection`` is an unknown key
            LocalStorageError: Storing the payload or saving a record failed
        """
        collection = self.resolve_collection(collection)
        remote_id = str(remote_object.id)

        records = await self._media.async_find_by_remote_id(remote_id)
        if not records:
            records = [self._new_record(collection, remote_id)]

        event = ImportEvent(
            occurred_at=utc_now(),
            aggregate_id=remote_id,
            collection_key=collection.key,
            remote_object=remote_object,
            records=list(records),
        )
        if self._events is not None:
            await self._events.publish(event)
        records = list(event.records)

        touched: list[int | None] = [record.id for record in records]
        try:
            try:
                await self._objects.async_put(collection.key, remote_id, remote_object.to_payload())
            except Exception as exc:
                raise_if_cancelled(exc)
                raise LocalStorageError(
                    remote_id, f"Failed to store payload for {remote_id}"
                ) from exc

            schema = schema_for(collection.object_type)
            for record in records:
                self._apply_metadata(record, schema, remote_object, collection)

            try:
                touched.extend(await self._media.async_save_all(records))
            except Exception as exc:
                raise_if_cancelled(exc)
                raise LocalStorageError(remote_id) from exc
        finally:
            self._media.invalidate(touched)

        logger.info(
            "media_imported",
            extra={
                "collection": collection.key,
                "remote_id": remote_id,
                "records": len(records),
                "record_ids": [record.id for record in records],
            },
        )
        return records

    @staticmethod
    def _new_record(collection: CollectionConfig, remote_id: str) -> MediaRecord:
        return MediaRecord(
            bundle=collection.bundle,
            remote_id=remote_id,
            owner_id=collection.default_owner_id,
            fields={},
        )

    @staticmethod
    def _apply_metadata(
        record: MediaRecord,
        schema: SchemaDescriptor,
        remote_object: RemoteObject,
        collection: CollectionConfig,
    ) -> None:
        fields: dict[str, Any] = dict(record.fields or {})
        for attribute, local_field in collection.field_map.items():
            fields[local_field] = extract(schema, remote_object, attribute)
        record.fields = fields

        if not record.name:
            name = extract(schema, remote_object, collection.default_name_attribute)
            record.name = str(name) if name is not None else None

        if collection.thumbnail_attribute:
            thumbnail = extract(schema, remote_object, collection.thumbnail_attribute)
            if thumbnail:
                record.thumbnail_url = str(thumbnail)
