"""Metadata attribute extraction for mpx objects.

Each object type gets a ``SchemaDescriptor``: an explicit table of attribute
name to accessor, built once at import time. Attributes are addressed either
bare (``title``), qualified by object type (``Media:title``), as a property
of the first media file (``MediaFile:duration``), or as a custom field using
the wire key ``namespace$field`` (``pl1$seriesName``).
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from mpx_sync.adapters.mpx.models import RemoteObject

Accessor = Callable[[RemoteObject], Any]

CUSTOM_FIELD_SEPARATOR = "$"


def _field(key: str) -> Accessor:
    def accessor(obj: RemoteObject) -> Any:
        return obj.value(key)

    return accessor


def _first_media_file(key: str) -> Accessor:
    def accessor(obj: RemoteObject) -> Any:
        content = obj.value("content")
        if not isinstance(content, list) or not content:
            return None
        first = content[0]
        return first.get(key) if isinstance(first, dict) else None

    return accessor


def _category_names(obj: RemoteObject) -> list[str] | None:
    categories = obj.value("categories")
    if not isinstance(categories, list):
        return None
    return [c["name"] for c in categories if isinstance(c, dict) and c.get("name")]


def _thumbnail_url(obj: RemoteObject) -> Any:
    url = obj.value("defaultThumbnailUrl")
    if url:
        return url
    thumbnails = obj.value("thumbnails")
    if isinstance(thumbnails, list) and thumbnails and isinstance(thumbnails[0], dict):
        return thumbnails[0].get("url")
    return None


@dataclass(frozen=True)
class SchemaDescriptor:
    object_type: str
    accessors: Mapping[str, Accessor] = field(default_factory=dict)

    def attribute_names(self) -> list[str]:
        return sorted(self.accessors)

    def has_attribute(self, name: str) -> bool:
        return self.normalize(name) in self.accessors

    def normalize(self, name: str) -> str:
        prefix = f"{self.object_type}:"
        return name[len(prefix) :] if name.startswith(prefix) else name


_COMMON: dict[str, Accessor] = {
    name: _field(name)
    for name in ("id", "guid", "title", "description", "updated", "added", "ownerId", "pid")
}

MEDIA_SCHEMA = SchemaDescriptor(
    object_type="Media",
    accessors={
        **_COMMON,
        "author": _field("author"),
        "availableDate": _field("availableDate"),
        "expirationDate": _field("expirationDate"),
        "keywords": _field("keywords"),
        "copyright": _field("copyright"),
        "ratings": _field("ratings"),
        "categories": _category_names,
        "defaultThumbnailUrl": _thumbnail_url,
        "MediaFile:duration": _first_media_file("duration"),
        "MediaFile:url": _first_media_file("url"),
        "MediaFile:format": _first_media_file("format"),
        "MediaFile:width": _first_media_file("width"),
        "MediaFile:height": _first_media_file("height"),
    },
)

PLAYER_SCHEMA = SchemaDescriptor(
    object_type="Player",
    accessors={
        **_COMMON,
        "disabled": _field("disabled"),
        "height": _field("height"),
        "width": _field("width"),
    },
)

FEED_CONFIG_SCHEMA = SchemaDescriptor(
    object_type="FeedConfig",
    accessors={
        **_COMMON,
        "feedUrl": _field("feedUrl"),
        "disabled": _field("disabled"),
    },
)

SCHEMAS: dict[str, SchemaDescriptor] = {
    schema.object_type: schema for schema in (MEDIA_SCHEMA, PLAYER_SCHEMA, FEED_CONFIG_SCHEMA)
}


def schema_for(object_type: str) -> SchemaDescriptor:
    """Return the descriptor for ``object_type``; unknown types only expose common fields."""
    return SCHEMAS.get(object_type) or SchemaDescriptor(object_type=object_type, accessors=_COMMON)


def extract(schema: SchemaDescriptor, obj: RemoteObject, name: str) -> Any:
    """Return the value of attribute ``name`` on ``obj``, or ``None`` if unknown."""
    key = schema.normalize(name)
    accessor = schema.accessors.get(key)
    if accessor is not None:
        return accessor(obj)
    if CUSTOM_FIELD_SEPARATOR in key:
        return obj.value(key)
    return None
