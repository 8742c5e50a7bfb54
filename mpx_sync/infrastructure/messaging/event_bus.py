"""In-memory event bus for import events.

Publishers and subscribers stay decoupled: the importer publishes events and
site-specific handlers reshape records without the importer knowing them.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import TypeVar

from mpx_sync.core.async_utils import raise_if_cancelled
from mpx_sync.domain.events.import_events import DomainEvent

logger = logging.getLogger(__name__)

TEvent = TypeVar("TEvent", bound=DomainEvent)

EventHandler = Callable[[TEvent], Awaitable[None]]


class EventBus:
    """Dispatch domain events to async handlers in subscription order.

    Example:
        ```python
        bus = EventBus()

        async def keep_first_record(event: ImportEvent) -> None:
            event.set_records(event.records[:1])

        bus.subscribe(ImportEvent, keep_first_record)
        await bus.publish(ImportEvent(occurred_at=utc_now(), collection_key="mpx_video"))
        ```
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: type[TEvent], handler: EventHandler[TEvent]) -> None:
        self._handlers[event_type].append(handler)
        logger.debug(
            "event_handler_subscribed",
            extra={
                "event_type": event_type.__name__,
                "handler": getattr(handler, "__name__", repr(handler)),
                "total_handlers": len(self._handlers[event_type]),
            },
        )

    def unsubscribe(self, event_type: type[TEvent], handler: EventHandler[TEvent]) -> None:
        handlers = self._handlers.get(event_type)
        if not handlers or handler not in handlers:
            logger.warning(
                "event_handler_not_found",
                extra={
                    "event_type": event_type.__name__,
                    "handler": getattr(handler, "__name__", repr(handler)),
                },
            )
            return
        handlers.remove(handler)

    async def publish(self, event: DomainEvent) -> None:
        """Call every handler for ``type(event)``.

        A failing handler is logged and skipped; the remaining handlers still
        run and the publisher never sees the error.
        """
        event_type = type(event)
        handlers = list(self._handlers.get(event_type, []))
        if not handlers:
            logger.debug("event_published_no_handlers", extra={"event_type": event_type.__name__})
            return

        logger.debug(
            "event_published",
            extra={
                "event_type": event_type.__name__,
                "event_id": event.aggregate_id,
                "handler_count": len(handlers),
            },
        )

        for handler in handlers:
            try:
                await handler(event)
            except Exception as exc:
                raise_if_cancelled(exc)
                logger.exception(
                    "event_handler_failed",
                    extra={
                        "event_type": event_type.__name__,
                        "handler": getattr(handler, "__name__", repr(handler)),
                        "error": str(exc),
                    },
                )

    def clear_handlers(self, event_type: type[TEvent] | None = None) -> None:
        if event_type is None:
            self._handlers.clear()
        else:
            self._handlers.pop(event_type, None)

    def get_handler_count(self, event_type: type[TEvent]) -> int:
        return len(self._handlers.get(event_type, []))
