"""Pydantic models for the mpx data and notification services."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NotificationMethod(StrEnum):
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class NotificationEntry(BaseModel):
    """Minimal object payload carried by a notification."""

    id: str
    updated: int | None = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        object_id = str(value or "").strip()
        if not object_id:
            raise ValueError("Notification entry id cannot be empty")
        return object_id


class Notification(BaseModel):
    """One change notification.

    A notification without ``entry`` is a sync marker: the service hands one
    out when asked without a cursor, carrying only the current position.
    """

    id: int
    method: NotificationMethod | None = None
    type: str | None = None
    entry: NotificationEntry | None = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("method", mode="before")
    @classmethod
    def _normalize_method(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value


NotificationBatch = list[Notification]

# Cursor value meaning "no position yet": the next poll omits ``since``.
UNSET_CURSOR = -1


class ImportTask(BaseModel):
    """A single object to reload and import; the unit of queue payloads."""

    remote_object_id: str
    collection_key: str

    model_config = ConfigDict(frozen=True)


class RemoteObject(BaseModel):
    """Full deserialized remote object.

    Only the identity fields are typed; everything else the service returns,
    including ``namespace$field`` custom fields, is kept as extra data.
    """

    id: str
    title: str | None = None
    guid: str | None = None
    updated: int | None = None
    description: str | None = None
    added: int | None = None
    owner_id: str | None = Field(default=None, alias="ownerId")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def value(self, key: str) -> Any:
        """Read a field by its wire name, typed or extra."""
        for name, info in type(self).model_fields.items():
            if key in (name, info.alias):
                return getattr(self, name)
        return (self.model_extra or {}).get(key)


class ObjectIdList(BaseModel):
    """One page of an object list request made with ``fields=id``."""

    entries: list[dict[str, Any]] = Field(default_factory=list)
    entry_count: int | None = Field(default=None, alias="entryCount")
    start_index: int | None = Field(default=None, alias="startIndex")
    items_per_page: int | None = Field(default=None, alias="itemsPerPage")
    total_results: int | None = Field(default=None, alias="totalResults")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def ids(self) -> list[str]:
        return [str(entry["id"]) for entry in self.entries if entry.get("id")]


class ListenState(StrEnum):
    IDLE = "idle"
    POLLING = "polling"
    PROCESSING = "processing"
    EMPTY = "empty"
    STALE_CURSOR_RECOVERY = "stale_cursor_recovery"
    FATAL = "fatal"


class ListenResult(BaseModel):
    """Outcome of one listen cycle for one collection."""

    collection_key: str
    state: ListenState
    received: int = 0
    queued: int = 0
    chunks: int = 0
    cursor_before: int = UNSET_CURSOR
    cursor_after: int = UNSET_CURSOR
    recovered_stale_cursor: bool = False
    correlation_id: str | None = None


class ChunkResult(BaseModel):
    """Result of reloading and importing one chunk of import tasks."""

    imported: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)
    retryable_errors: list[str] = Field(default_factory=list)
    permanent_errors: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0

    def merge(self, other: ChunkResult) -> None:
        self.imported += other.imported
        self.skipped += other.skipped
        self.failed += other.failed
        self.errors.extend(e for e in other.errors if e not in self.errors)
        self.retryable_errors.extend(other.retryable_errors)
        self.permanent_errors.extend(other.permanent_errors)
        self.duration_seconds += other.duration_seconds


class QueueRunResult(BaseModel):
    """Result of draining a work queue."""

    queue: str
    claimed: int = 0
    deleted: int = 0
    released: int = 0
    items: ChunkResult = Field(default_factory=ChunkResult)
    correlation_id: str | None = None


class QueueImportsResult(BaseModel):
    """Result of queueing a full import of one collection."""

    collection_key: str
    queued: int = 0
    not_queued: int = 0
    total_results: int | None = None
    errors: list[str] = Field(default_factory=list)
