"""Peewee ORM models for the sync database."""

from __future__ import annotations

import datetime as _dt
import time
from typing import Any

import peewee
from playhouse.sqlite_ext import JSONField

from mpx_sync.core.time_utils import UTC

# A proxy that will be initialised with the concrete database instance at runtime.
database_proxy: peewee.Database = peewee.DatabaseProxy()


class BaseModel(peewee.Model):
    """Base Peewee model bound to the lazily initialised database proxy."""

    def save(self, *args: Any, **kwargs: Any) -> int:
        """Refresh ``updated_at`` on every save."""
        if hasattr(self, "updated_at"):
            self.updated_at = _utcnow()
        return super().save(*args, **kwargs)

    class Meta:
        database = database_proxy
        legacy_table_names = False


def _utcnow() -> _dt.datetime:
    """Timezone-aware UTC now (avoids deprecated datetime.utcnow)."""
    return _dt.datetime.now(UTC)


class MediaRecord(BaseModel):
    """Local media entity mirrored from one remote object."""

    id = peewee.AutoField()
    bundle = peewee.TextField()
    # Several records may point at the same remote object.
    remote_id = peewee.TextField(index=True)
    name = peewee.TextField(null=True)
    thumbnail_url = peewee.TextField(null=True)
    owner_id = peewee.IntegerField(default=1)
    fields = JSONField(default=dict)
    created_at = peewee.DateTimeField(default=_utcnow)
    updated_at = peewee.DateTimeField(default=_utcnow)

    class Meta:
        table_name = "media_records"
        indexes = ((("bundle", "remote_id"), False),)


class CachedObject(BaseModel):
    """Last full payload seen for a remote object, overwritten on every import."""

    id = peewee.AutoField()
    collection_key = peewee.TextField()
    remote_id = peewee.TextField()
    payload = JSONField()
    updated_at = peewee.DateTimeField(default=_utcnow)

    class Meta:
        table_name = "cached_objects"
        indexes = ((("collection_key", "remote_id"), True),)


class StateEntry(BaseModel):
    """Durable key/value state (notification cursors live here)."""

    key = peewee.TextField(primary_key=True)
    value = JSONField(null=True)
    updated_at = peewee.DateTimeField(default=_utcnow)

    class Meta:
        table_name = "state"


class QueueItem(BaseModel):
    """One message of a named durable work queue."""

    id = peewee.AutoField()
    queue_name = peewee.TextField()
    payload = JSONField()
    created_at = peewee.DateTimeField(default=_utcnow)
    # Epoch seconds; a message is claimable once this lies in the past.
    claimed_until = peewee.FloatField(null=True)
    attempts = peewee.IntegerField(default=0)

    class Meta:
        table_name = "queue_items"
        indexes = ((("queue_name", "claimed_until", "id"), False),)


class HttpCacheEntry(BaseModel):
    """Cached body of a successful GET response."""

    key = peewee.TextField(primary_key=True)
    url = peewee.TextField()
    status_code = peewee.IntegerField(default=200)
    headers = JSONField(default=dict)
    body = peewee.BlobField()
    stored_at = peewee.FloatField(default=time.time)

    class Meta:
        table_name = "http_cache"
        indexes = ((("stored_at",), False),)


ALL_MODELS: tuple[type[BaseModel], ...] = (
    MediaRecord,
    CachedObject,
    StateEntry,
    QueueItem,
    HttpCacheEntry,
)

