from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ._validators import _parse_positive_int


class SyncConfig(BaseModel):
    """Notification pipeline tuning: chunking, fan-out and queue leases."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    chunk_size: int = Field(default=10, validation_alias="SYNC_CHUNK_SIZE")
    reload_concurrency: int = Field(default=10, validation_alias="SYNC_RELOAD_CONCURRENCY")
    queue_lease_seconds: int = Field(default=300, validation_alias="SYNC_QUEUE_LEASE_SECONDS")
    select_page_size: int = Field(default=100, validation_alias="SYNC_SELECT_PAGE_SIZE")

    @field_validator("chunk_size", mode="before")
    @classmethod
    def _validate_chunk_size(cls, value: Any) -> int:
        return _parse_positive_int(value, default=10, name="Sync chunk size", maximum=500)

    @field_validator("reload_concurrency", mode="before")
    @classmethod
    def _validate_concurrency(cls, value: Any) -> int:
        return _parse_positive_int(value, default=10, name="Sync reload concurrency", maximum=100)

    @field_validator("queue_lease_seconds", mode="before")
    @classmethod
    def _validate_lease(cls, value: Any) -> int:
        return _parse_positive_int(
            value, default=300, name="Sync queue lease", minimum=5, maximum=86400
        )

    @field_validator("select_page_size", mode="before")
    @classmethod
    def _validate_page_size(cls, value: Any) -> int:
        return _parse_positive_int(value, default=100, name="Sync select page size", maximum=1000)
