"""Collapse a notification batch to one notification per remote object."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from mpx_sync.adapters.mpx.models import Notification

logger = logging.getLogger(__name__)


def dedupe_notifications(notifications: Iterable[Notification]) -> list[Notification]:
    """Keep the first notification seen for each ``entry.id``, in input order.

    Later notifications for an object already seen are dropped whatever their
    method: the object is reloaded in full anyway, so one task per object is
    enough. Sync markers carry no entry and are dropped as well.
    """
    seen: set[str] = set()
    kept: list[Notification] = []
    for notification in notifications:
        if notification.entry is None:
            continue
        remote_id = notification.entry.id
        if remote_id in seen:
            continue
        seen.add(remote_id)
        kept.append(notification)
        logger.debug(
            "notification_kept",
            extra={
                "method": notification.method.value if notification.method else None,
                "remote_id": remote_id,
                "notification_id": notification.id,
            },
        )
    return kept
