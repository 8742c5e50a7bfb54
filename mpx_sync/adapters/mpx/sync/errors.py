"""Error collection helpers for sync results."""

from __future__ import annotations

from typing import TYPE_CHECKING

from mpx_sync.adapters.mpx.client import RETRYABLE_STATUS_CODES
from mpx_sync.adapters.mpx.errors import LocalStorageError, MpxClientError, MpxRetryableError

if TYPE_CHECKING:
    from mpx_sync.adapters.mpx.models import ChunkResult


def record_error(result: ChunkResult, message: str, retryable: bool) -> None:
    if message not in result.errors:
        result.errors.append(message)
    if retryable:
        result.retryable_errors.append(message)
    else:
        result.permanent_errors.append(message)


def is_retryable(exc: BaseException) -> bool:
    """Whether a later attempt at the same item could succeed."""
    if isinstance(exc, (MpxRetryableError, LocalStorageError)):
        return True
    if isinstance(exc, MpxClientError):
        return exc.status_code is None or exc.status_code in RETRYABLE_STATUS_CODES
    return False
