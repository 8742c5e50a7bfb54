"""Exceptions raised by the mpx adapter and the sync pipeline."""

from __future__ import annotations


class MpxClientError(Exception):
    """Base exception for mpx client errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MpxRetryableError(MpxClientError):
    """Error that can be retried."""


class TransportError(MpxClientError):
    """The notification endpoint failed for a reason other than a stale cursor."""


class StaleCursorError(MpxClientError):
    """The notification cursor is older than the retained notification history."""

    def __init__(self, collection_key: str, since_id: int, status_code: int | None = None) -> None:
        super().__init__(
            f"Notification cursor {since_id} for {collection_key} is no longer valid",
            status_code=status_code,
        )
        self.collection_key = collection_key
        self.since_id = since_id


class RemoteObjectNotFoundError(MpxClientError):
    """The remote object was deleted or never existed."""

    def __init__(self, object_id: str, status_code: int | None = 404) -> None:
        super().__init__(f"Remote object not found: {object_id}", status_code=status_code)
        self.object_id = object_id


class SyncError(Exception):
    """Base exception for sync pipeline errors."""


class LocalStorageError(SyncError):
    """Saving local records for a remote object failed."""

    def __init__(self, remote_id: str, message: str | None = None) -> None:
        super().__init__(message or f"Failed to save local records for {remote_id}")
        self.remote_id = remote_id


class QueueSubmissionError(SyncError):
    """A message could not be written to the durable queue."""

    def __init__(self, queue_name: str, message: str | None = None) -> None:
        super().__init__(message or f"Failed to submit message to queue {queue_name}")
        self.queue_name = queue_name


class CollectionNotConfiguredError(SyncError):
    def __init__(self, collection_key: str) -> None:
        super().__init__(f"Collection is not configured: {collection_key}")
        self.collection_key = collection_key
