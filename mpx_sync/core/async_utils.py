"""Async helper utilities."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

T = TypeVar("T")


def raise_if_cancelled(exc: BaseException) -> None:
    """Re-raise ``asyncio.CancelledError`` instances to preserve cancellation semantics."""

    if isinstance(exc, asyncio.CancelledError):  # pragma: no cover - simple guard
        raise exc


async def bounded_gather(
    factories: Iterable[Callable[[], Awaitable[T]]],
    *,
    limit: int,
) -> list[T | BaseException]:
    """Run zero-arg coroutine factories with at most ``limit`` in flight.

    Results come back in input order. Exceptions raised by a single factory are
    returned in its slot instead of cancelling the siblings, so callers can
    isolate per-item failures. Cancellation of the caller still propagates.

    Example::

        results = await bounded_gather(
            [lambda oid=oid: client.load_object(oid) for oid in ids],
            limit=10,
        )
    """
    if limit < 1:
        msg = "limit must be at least 1"
        raise ValueError(msg)

    semaphore = asyncio.Semaphore(limit)

    async def _run(factory: Callable[[], Awaitable[T]]) -> T | BaseException:
        async with semaphore:
            try:
                return await factory()
            except Exception as exc:
                return exc

    return await asyncio.gather(*(_run(factory) for factory in factories))
