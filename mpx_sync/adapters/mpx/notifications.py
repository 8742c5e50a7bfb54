"""Long-poll transport for the mpx notification service."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx
from pydantic import ValidationError

from mpx_sync.adapters.mpx.client import exception_response_code
from mpx_sync.adapters.mpx.errors import (
    CollectionNotConfiguredError,
    StaleCursorError,
    TransportError,
)
from mpx_sync.adapters.mpx.models import UNSET_CURSOR, Notification, NotificationBatch

if TYPE_CHECKING:
    from collections.abc import Mapping

    from mpx_sync.config.mpx import CollectionConfig, MpxConfig

logger = logging.getLogger(__name__)

# Exception envelopes with these codes mean the cursor fell out of history.
STALE_CURSOR_CODES = frozenset({404, 410})


class NotificationHttpClient(Protocol):
    async def get(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        timeout: httpx.Timeout | float | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response: ...


class NotificationTransport:
    """Issue one blocking notification request per ``poll``.

    ``poll`` returns ``None`` when nothing changed during the long-poll window:
    the service answered with an empty list or the read timeout elapsed.
    """

    def __init__(self, client: NotificationHttpClient, config: MpxConfig) -> None:
        self._client = client
        self._config = config

    def _collection(self, collection_key: str) -> CollectionConfig:
        collection = self._config.collection(collection_key)
        if collection is None:
            raise CollectionNotConfiguredError(collection_key)
        return collection

    def build_params(self, collection: CollectionConfig, since_id: int) -> dict[str, Any]:
        params: dict[str, Any] = {
            "clientId": self._config.client_id,
            "block": "true",
            "filter": collection.object_type,
            "form": "cjson",
            "schema": collection.notification_schema,
        }
        if since_id != UNSET_CURSOR:
            params["since"] = since_id
        return params

    async def poll(self, collection_key: str, since_id: int) -> NotificationBatch | None:
        """Wait for notifications newer than ``since_id``.

        Raises:
            StaleCursorError: ``since_id`` is no longer known to the service
            TransportError: Any other failure; the original error is chained
        """
        collection = self._collection(collection_key)
        url = f"{self._config.notify_url_for(collection)}{collection.notify_path}"
        timeout = httpx.Timeout(self._config.request_timeout, read=self._config.listen_timeout)

        try:
            response = await self._client.get(
                url,
                params=self.build_params(collection, since_id),
                timeout=timeout,
                headers={"Cache-Control": "no-store"},
            )
        except (httpx.ReadTimeout, httpx.PoolTimeout):
            logger.debug(
                "notification_poll_timed_out",
                extra={"collection": collection_key, "cursor": since_id},
            )
            return None
        except httpx.HTTPError as exc:
            msg = f"Notification request for {collection_key} failed: {exc}"
            raise TransportError(msg) from exc

        if response.status_code == 404 and since_id != UNSET_CURSOR:
            raise StaleCursorError(collection_key, since_id, status_code=404)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"Notification request for {collection_key} failed: HTTP {response.status_code}",
                status_code=response.status_code,
            ) from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError(
                f"Notification response for {collection_key} is not valid JSON",
                status_code=response.status_code,
            ) from exc

        code = exception_response_code(data)
        if code in STALE_CURSOR_CODES and since_id != UNSET_CURSOR:
            raise StaleCursorError(collection_key, since_id, status_code=code)
        if code is not None:
            raise TransportError(
                f"Notification service returned an exception for {collection_key}: "
                f"{data.get('title', '')} {data.get('description', '')}".strip(),
                status_code=code or None,
            )

        if not isinstance(data, list):
            raise TransportError(
                f"Notification response for {collection_key} is not a list",
                status_code=response.status_code,
            )
        if not data:
            return None

        batch = [
            notification
            for item in data
            if (notification := _parse_notification(item, collection_key)) is not None
        ]
        if not batch:
            raise TransportError(
                f"Notification response for {collection_key} has no usable notification ids",
                status_code=response.status_code,
            )
        return batch


def _parse_notification(item: Any, collection_key: str) -> Notification | None:
    """Validate one record of a notification response.

    A record that fails validation but still carries an integer ``id`` comes
    back as an entry-less notification: nothing is queued for it, but the
    cursor can move past it. Records without a usable id are dropped.
    """
    try:
        return Notification.model_validate(item)
    except ValidationError as exc:
        raw_id = item.get("id") if isinstance(item, dict) else None
        try:
            notification_id = int(raw_id) if raw_id is not None else None
        except (TypeError, ValueError):
            notification_id = None
        logger.warning(
            "notification_malformed",
            extra={
                "collection": collection_key,
                "notification_id": notification_id,
                "error": str(exc),
            },
        )
        if notification_id is None:
            return None
        return Notification(id=notification_id)
