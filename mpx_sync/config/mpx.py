from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ._validators import _parse_json_list, _parse_positive_int

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://read.data.media.theplatform.com"

# 30 days, the lifetime of a greedy object cache entry.
DEFAULT_CACHE_TTL_SECONDS = 3600 * 24 * 30


class CollectionConfig(BaseModel):
    """One synchronized collection: a remote object type mapped onto a local bundle."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: str
    object_type: str = "Media"
    base_url: str | None = None
    service_path: str = "/media/data/Media"
    notify_path: str = "/media/notify"
    schema_version: str = "1.10"
    notification_schema: str = "1.10"
    default_bundle: str | None = None
    default_owner_id: int = 1
    # Remote attribute name -> local field name.
    field_map: dict[str, str] = Field(default_factory=dict)
    default_name_attribute: str = "title"
    # Remote attribute holding the thumbnail URL, e.g. "defaultThumbnailUrl".
    thumbnail_attribute: str | None = None

    @field_validator("key", mode="before")
    @classmethod
    def _validate_key(cls, value: Any) -> str:
        key = str(value or "").strip()
        if not key:
            msg = "Collection key cannot be empty"
            raise ValueError(msg)
        if len(key) > 100 or any(ch.isspace() for ch in key):
            msg = f"Invalid collection key: {key!r}"
            raise ValueError(msg)
        return key

    @field_validator("service_path", "notify_path", mode="before")
    @classmethod
    def _validate_path(cls, value: Any) -> str:
        path = str(value or "").strip()
        if not path.startswith("/"):
            msg = "Service paths must start with '/'"
            raise ValueError(msg)
        return path.rstrip("/")

    @field_validator("base_url", mode="before")
    @classmethod
    def _validate_base_url(cls, value: Any) -> str | None:
        if value in (None, ""):
            return None
        return str(value).strip().rstrip("/")

    @property
    def bundle(self) -> str:
        return self.default_bundle or self.key


def _default_collections() -> tuple[CollectionConfig, ...]:
    return (CollectionConfig(key="mpx_video"),)


class MpxConfig(BaseModel):
    """Remote media API connection settings and synchronized collections."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    api_url: str = Field(default=DEFAULT_API_URL, validation_alias="MPX_API_URL")
    notify_url: str | None = Field(
        default=None,
        validation_alias="MPX_NOTIFY_URL",
        description="Notification service base; falls back to the read data service",
    )
    token: str = Field(default="", validation_alias="MPX_TOKEN")
    account: str | None = Field(default=None, validation_alias="MPX_ACCOUNT")
    client_id: str = Field(default="mpx-sync", validation_alias="MPX_CLIENT_ID")
    request_timeout: float = Field(default=30.0, validation_alias="MPX_REQUEST_TIMEOUT")
    listen_timeout: float = Field(
        default=40.0,
        validation_alias="MPX_LISTEN_TIMEOUT",
        description="Client-side read timeout for the notification long-poll",
    )
    max_retries: int = Field(default=3, validation_alias="MPX_MAX_RETRIES")
    cache_ttl_seconds: int = Field(
        default=DEFAULT_CACHE_TTL_SECONDS, validation_alias="MPX_CACHE_TTL_SECONDS"
    )
    collections: tuple[CollectionConfig, ...] = Field(
        default_factory=_default_collections, validation_alias="MPX_COLLECTIONS"
    )

    @field_validator("api_url", mode="before")
    @classmethod
    def _validate_api_url(cls, value: Any) -> str:
        url = str(value or DEFAULT_API_URL).strip()
        if not url.startswith(("http://", "https://")):
            msg = "MPX_API_URL must be an http(s) URL"
            raise ValueError(msg)
        return url.rstrip("/")

    @field_validator("notify_url", mode="before")
    @classmethod
    def _validate_notify_url(cls, value: Any) -> str | None:
        if value in (None, ""):
            return None
        url = str(value).strip()
        if not url.startswith(("http://", "https://")):
            msg = "MPX_NOTIFY_URL must be an http(s) URL"
            raise ValueError(msg)
        return url.rstrip("/")

    @field_validator("token", mode="before")
    @classmethod
    def _validate_token(cls, value: Any) -> str:
        if value in (None, ""):
            return ""
        token = str(value).strip()
        if len(token) > 500 or any(ch.isspace() for ch in token):
            msg = "MPX token contains invalid characters or is too long"
            raise ValueError(msg)
        return token

    @field_validator("client_id", mode="before")
    @classmethod
    def _validate_client_id(cls, value: Any) -> str:
        client_id = str(value or "mpx-sync").strip()
        if not all(c.isalnum() or c in "-_." for c in client_id):
            msg = f"Invalid MPX client id: {client_id!r}"
            raise ValueError(msg)
        return client_id

    @field_validator("request_timeout", "listen_timeout", mode="before")
    @classmethod
    def _validate_timeouts(cls, value: Any) -> float:
        if value in (None, ""):
            return 30.0
        try:
            parsed = float(str(value))
        except ValueError as exc:
            msg = "MPX timeouts must be valid numbers"
            raise ValueError(msg) from exc
        if parsed <= 0 or parsed > 600:
            msg = "MPX timeouts must be between 0 and 600 seconds"
            raise ValueError(msg)
        return parsed

    @field_validator("max_retries", mode="before")
    @classmethod
    def _validate_max_retries(cls, value: Any) -> int:
        return _parse_positive_int(value, default=3, name="MPX max retries", minimum=0, maximum=10)

    @field_validator("cache_ttl_seconds", mode="before")
    @classmethod
    def _validate_cache_ttl(cls, value: Any) -> int:
        return _parse_positive_int(
            value, default=DEFAULT_CACHE_TTL_SECONDS, name="MPX cache TTL", minimum=0
        )

    @field_validator("collections", mode="before")
    @classmethod
    def _parse_collections(cls, value: Any) -> Any:
        if value in (None, ""):
            return _default_collections()
        if isinstance(value, tuple) and all(isinstance(v, CollectionConfig) for v in value):
            return value
        return tuple(_parse_json_list(value, name="MPX_COLLECTIONS"))

    @model_validator(mode="after")
    def _validate_unique_collections(self) -> MpxConfig:
        keys = [collection.key for collection in self.collections]
        duplicates = {key for key in keys if keys.count(key) > 1}
        if duplicates:
            msg = f"Duplicate collection keys: {sorted(duplicates)}"
            raise ValueError(msg)
        if self.listen_timeout <= self.request_timeout:
            logger.warning(
                "mpx_listen_timeout_not_above_request_timeout",
                extra={
                    "listen_timeout": self.listen_timeout,
                    "request_timeout": self.request_timeout,
                },
            )
        return self

    def collection(self, key: str) -> CollectionConfig | None:
        for collection in self.collections:
            if collection.key == key:
                return collection
        return None

    def base_url_for(self, collection: CollectionConfig) -> str:
        return collection.base_url or self.api_url

    def notify_url_for(self, collection: CollectionConfig) -> str:
        return self.notify_url or self.base_url_for(collection)
