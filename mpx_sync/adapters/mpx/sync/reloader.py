"""Reload the objects of one queued chunk and import them."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from mpx_sync.adapters.mpx.errors import (
    CollectionNotConfiguredError,
    LocalStorageError,
    RemoteObjectNotFoundError,
)
from mpx_sync.adapters.mpx.models import ChunkResult, RemoteObject
from mpx_sync.adapters.mpx.sync.constants import DEFAULT_RELOAD_CONCURRENCY
from mpx_sync.adapters.mpx.sync.errors import is_retryable, record_error
from mpx_sync.core.async_utils import bounded_gather, raise_if_cancelled

if TYPE_CHECKING:
    from collections.abc import Sequence

    from mpx_sync.adapters.mpx.models import ImportTask
    from mpx_sync.adapters.mpx.sync.importer import DataObjectImporter
    from mpx_sync.adapters.mpx.sync.protocols import MpxClientProtocol
    from mpx_sync.config.mpx import CollectionConfig, MpxConfig

logger = logging.getLogger(__name__)


class ObjectReloader:
    """Load every task's object, bypassing the response cache by default, then import.

    Loads run concurrently up to ``concurrency``; imports run one at a time in
    task order once every load has settled. A failing item never affects its
    siblings.
    """

    def __init__(
        self,
        client: MpxClientProtocol,
        importer: DataObjectImporter,
        config: MpxConfig,
        *,
        concurrency: int = DEFAULT_RELOAD_CONCURRENCY,
    ) -> None:
        if concurrency < 1:
            msg = "concurrency must be at least 1"
            raise ValueError(msg)
        self._client = client
        self._importer = importer
        self._config = config
        self._concurrency = concurrency

    async def process_chunk(
        self,
        tasks: Sequence[ImportTask],
        correlation_id: str | None = None,
        *,
        bypass_cache: bool = True,
    ) -> ChunkResult:
        start = time.monotonic()
        result = ChunkResult()

        resolved: list[tuple[ImportTask, CollectionConfig]] = []
        for task in tasks:
            collection = self._config.collection(task.collection_key)
            if collection is None:
                result.failed += 1
                message = str(CollectionNotConfiguredError(task.collection_key))
                record_error(result, message, retryable=False)
                logger.error(
                    "reload_collection_missing",
                    extra={
                        "collection": task.collection_key,
                        "remote_id": task.remote_object_id,
                        "correlation_id": correlation_id,
                    },
                )
                continue
            resolved.append((task, collection))

        outcomes = await bounded_gather(
            [
                lambda t=task, c=collection: self._client.load_object(
                    c, t.remote_object_id, bypass_cache=bypass_cache
                )
                for task, collection in resolved
            ],
            limit=self._concurrency,
        )

        loaded: list[tuple[ImportTask, CollectionConfig, RemoteObject]] = []
        for (task, collection), outcome in zip(resolved, outcomes, strict=True):
            if isinstance(outcome, RemoteObject):
                loaded.append((task, collection, outcome))
            else:
                self._record_load_failure(result, task, outcome, correlation_id)

        for task, collection, remote_object in loaded:
            try:
                await self._importer.import_item(remote_object, collection)
                result.imported += 1
            except LocalStorageError as exc:
                result.failed += 1
                record_error(result, f"{task.remote_object_id}: {exc}", retryable=True)
                logger.error(
                    "reload_import_storage_failed",
                    extra={
                        "collection": task.collection_key,
                        "remote_id": task.remote_object_id,
                        "error": str(exc.__cause__ or exc),
                        "correlation_id": correlation_id,
                    },
                )
            except Exception as exc:
                raise_if_cancelled(exc)
                result.failed += 1
                record_error(result, f"{task.remote_object_id}: {exc}", retryable=False)
                logger.exception(
                    "reload_import_failed",
                    extra={
                        "collection": task.collection_key,
                        "remote_id": task.remote_object_id,
                        "correlation_id": correlation_id,
                    },
                )

        result.duration_seconds = time.monotonic() - start
        logger.info(
            "reload_chunk_complete",
            extra={
                "tasks": len(tasks),
                "imported": result.imported,
                "skipped": result.skipped,
                "failed": result.failed,
                "duration_seconds": round(result.duration_seconds, 3),
                "correlation_id": correlation_id,
            },
        )
        return result

    @staticmethod
    def _record_load_failure(
        result: ChunkResult, task: ImportTask, outcome: Any, correlation_id: str | None
    ) -> None:
        extra = {
            "collection": task.collection_key,
            "remote_id": task.remote_object_id,
            "correlation_id": correlation_id,
        }
        if isinstance(outcome, RemoteObjectNotFoundError):
            result.skipped += 1
            logger.warning("reload_object_not_found", extra=extra)
            return

        result.failed += 1
        retryable = isinstance(outcome, BaseException) and is_retryable(outcome)
        record_error(result, f"{task.remote_object_id}: {outcome}", retryable=retryable)
        logger.error(
            "reload_object_load_failed",
            extra={
                **extra,
                "error": str(outcome),
                "error_type": type(outcome).__name__,
                "retryable": retryable,
            },
        )
