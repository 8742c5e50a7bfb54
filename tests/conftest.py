"""Pytest configuration and shared fixtures.

This module provides common fixtures and builders for all tests.
"""

from __future__ import annotations

import os
from typing import Any

import pytest

from mpx_sync.adapters.mpx.models import UNSET_CURSOR, Notification, RemoteObject
from mpx_sync.config.mpx import CollectionConfig, MpxConfig
from mpx_sync.db.session import DatabaseSessionManager

# Keep a developer's shell environment from leaking into configuration tests.
for _name in list(os.environ):
    if _name.startswith(("MPX_", "SYNC_", "DB_", "LOG_")):
        os.environ.pop(_name, None)


def make_notification(
    notification_id: int, remote_id: str | None, method: str = "put"
) -> Notification:
    data: dict[str, Any] = {"id": notification_id, "method": method, "type": "Media"}
    if remote_id is not None:
        data["entry"] = {"id": f"http://data.media.theplatform.com/media/data/Media/{remote_id}"}
    return Notification.model_validate(data)


def make_remote_object(remote_id: str = "1001", **fields: Any) -> RemoteObject:
    data: dict[str, Any] = {
        "id": f"http://data.media.theplatform.com/media/data/Media/{remote_id}",
        "title": f"Video {remote_id}",
        "guid": f"guid-{remote_id}",
        "updated": 1700000000000,
    }
    data.update(fields)
    return RemoteObject.model_validate(data)


def make_mpx_config(**overrides: Any) -> MpxConfig:
    values: dict[str, Any] = {
        "api_url": "https://data.example.test",
        "token": "test-token",
        "account": "http://access.auth.theplatform.com/data/Account/42",
        "request_timeout": 5,
        "listen_timeout": 10,
        "max_retries": 0,
        "collections": (
            CollectionConfig(
                key="mpx_video",
                default_bundle="video",
                field_map={"guid": "field_guid", "MediaFile:duration": "field_duration"},
            ),
        ),
    }
    values.update(overrides)
    return MpxConfig(**values)


class InMemoryCursorStore:
    def __init__(self, initial: dict[str, int] | None = None) -> None:
        self.values = dict(initial or {})
        self.resets: list[str] = []

    async def async_get(self, collection_key: str) -> int:
        return self.values.get(collection_key, UNSET_CURSOR)

    async def async_set(self, collection_key: str, notification_id: int) -> None:
        self.values[collection_key] = notification_id

    async def async_reset(self, collection_key: str) -> None:
        self.resets.append(collection_key)
        self.values.pop(collection_key, None)


@pytest.fixture
def mpx_config() -> MpxConfig:
    return make_mpx_config()


@pytest.fixture
def session_manager(tmp_path):
    """Migrated SQLite database in a temporary directory."""
    manager = DatabaseSessionManager(str(tmp_path / "mpx_sync.db"))
    manager.migrate()
    yield manager
    manager.close()
