"""mpx data service API client."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from mpx_sync.adapters.mpx.errors import (
    MpxClientError,
    MpxRetryableError,
    RemoteObjectNotFoundError,
)
from mpx_sync.adapters.mpx.models import ObjectIdList, RemoteObject

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping
    from typing import Self

    from mpx_sync.config.mpx import CollectionConfig, MpxConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP status codes that should trigger a retry
RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 30.0  # seconds
DEFAULT_JITTER = 0.1  # 10% jitter


def _is_retryable_error(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    if isinstance(exc, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    return isinstance(exc, MpxRetryableError)


def _calculate_delay(attempt: int, base_delay: float, max_delay: float, jitter: float) -> float:
    """Exponential backoff for ``attempt`` (0-indexed) plus up to ``jitter`` random spread."""
    delay = min(base_delay * (2**attempt), max_delay)
    return delay + delay * jitter * random.random()


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    jitter: float = DEFAULT_JITTER,
    operation_name: str = "operation",
) -> T:
    """Execute an async function with exponential backoff retry.

    Non-retryable errors propagate unchanged on the first attempt.

    Raises:
        MpxClientError: If all retries are exhausted
    """
    for attempt in range(max_retries + 1):
        try:
            return await func()
        except Exception as e:
            if not _is_retryable_error(e):
                raise

            if attempt == max_retries:
                logger.error(
                    "mpx_retry_exhausted",
                    extra={"operation": operation_name, "attempts": attempt + 1, "error": str(e)},
                )
                status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
                raise MpxClientError(
                    f"{operation_name} failed after {attempt + 1} attempts: {e}",
                    status_code=status,
                ) from e

            delay = _calculate_delay(attempt, base_delay, max_delay, jitter)
            logger.warning(
                "mpx_retry_attempt",
                extra={
                    "operation": operation_name,
                    "attempt": attempt + 1,
                    "max_retries": max_retries,
                    "delay_seconds": round(delay, 2),
                    "error": str(e),
                },
            )
            await asyncio.sleep(delay)

    raise MpxClientError(f"{operation_name} failed")


def object_numeric_id(object_id: str) -> str:
    """Return the last path segment of an object id URI.

    ``http://data.media.theplatform.com/media/data/Media/2602559`` -> ``2602559``
    """
    segment = str(object_id).rstrip("/").rsplit("/", 1)[-1]
    if not segment:
        raise ValueError(f"Invalid mpx object id: {object_id!r}")
    return segment


def exception_response_code(data: Any) -> int | None:
    """Return ``responseCode`` of an mpx exception envelope, ``None`` for regular bodies."""
    if not isinstance(data, dict) or not data.get("isException"):
        return None
    code = data.get("responseCode")
    return code if isinstance(code, int) else 0


def raise_for_exception_envelope(data: Any, *, operation_name: str) -> None:
    """Raise for the JSON error bodies mpx sends with an HTTP 200 status."""
    code = exception_response_code(data)
    if code is None:
        return
    title = data.get("title", "mpx exception")
    message = f"{operation_name}: {title}: {data.get('description', '')}"
    if code in RETRYABLE_STATUS_CODES:
        raise MpxRetryableError(message, status_code=code)
    raise MpxClientError(message, status_code=code or None)


class MpxClient:
    """Async HTTP client for the mpx read data services.

    The token is sent as the ``token`` query parameter; mpx does not accept it
    as a header.
    """

    # Default per-endpoint timeouts (seconds)
    DEFAULT_TIMEOUTS: dict[str, float] = {
        "load_object": 30.0,
        "select_ids": 60.0,
    }

    def __init__(
        self,
        api_url: str,
        token: str,
        timeout: float = 30.0,
        *,
        account: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_BASE_DELAY,
        retry_max_delay: float = DEFAULT_MAX_DELAY,
        endpoint_timeouts: dict[str, float] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_url: Default data service base URL, used when a collection has none
            token: Authentication token issued by the identity service
            timeout: Default request timeout in seconds
            account: Account URI sent with every request, if any
            max_retries: Maximum number of retry attempts for transient failures
            retry_base_delay: Base delay between retries in seconds
            retry_max_delay: Maximum delay between retries in seconds
            endpoint_timeouts: Custom per-endpoint timeouts (overrides defaults)
            transport: Transport for the underlying ``httpx.AsyncClient``; the
                response cache plugs in here
        """
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.account = account
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.endpoint_timeouts = {**self.DEFAULT_TIMEOUTS}
        if endpoint_timeouts:
            self.endpoint_timeouts.update(endpoint_timeouts)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls, config: MpxConfig, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> MpxClient:
        return cls(
            config.api_url,
            config.token,
            config.request_timeout,
            account=config.account,
            max_retries=config.max_retries,
            transport=transport,
        )

    def get_timeout(self, endpoint: str) -> float:
        return self.endpoint_timeouts.get(endpoint, self.timeout)

    async def __aenter__(self) -> Self:
        self._client = httpx.AsyncClient(
            headers={"Accept": "application/json"},
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise MpxClientError("Client not initialized. Use async context manager.")
        return self._client

    def _params(self, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        merged: dict[str, Any] = dict(params or {})
        if self.account and "account" not in merged:
            merged["account"] = self.account
        if self.token:
            merged["token"] = self.token
        return merged

    def _base_url(self, collection: CollectionConfig) -> str:
        return collection.base_url or self.api_url

    async def _with_retry(self, func: Callable[[], Awaitable[T]], operation_name: str) -> T:
        return await retry_with_backoff(
            func,
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            operation_name=operation_name,
        )

    async def get(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        timeout: httpx.Timeout | float | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Single authenticated GET without retries or status checks.

        Used by the notification long-poll, where a read timeout is a normal
        outcome and must reach the caller as ``httpx.ReadTimeout``.
        """
        return await self.client.get(
            url,
            params=self._params(params),
            timeout=timeout if timeout is not None else self.timeout,
            headers=dict(headers or {}),
        )

    async def load_object(
        self,
        collection: CollectionConfig,
        object_id: str,
        *,
        bypass_cache: bool = False,
    ) -> RemoteObject:
        """Load one full object.

        Args:
            collection: Collection the object belongs to
            object_id: Object id URI (or bare numeric id)
            bypass_cache: Send ``Cache-Control: no-cache`` so the response
                cache is skipped on read and refreshed on write

        Raises:
            RemoteObjectNotFoundError: The object does not exist (anymore)
            MpxClientError: Any other failure, after retries for transient ones
        """
        base = f"{self._base_url(collection)}{collection.service_path}"
        url = f"{base}/{object_numeric_id(object_id)}"
        params = {"schema": collection.schema_version, "form": "cjson"}
        headers = {"Cache-Control": "no-cache"} if bypass_cache else {}
        timeout = self.get_timeout("load_object")

        async def _fetch() -> RemoteObject:
            response = await self.client.get(
                url, params=self._params(params), headers=headers, timeout=timeout
            )
            if response.status_code == 404:
                raise RemoteObjectNotFoundError(object_id)
            response.raise_for_status()
            data = response.json()
            if exception_response_code(data) == 404:
                raise RemoteObjectNotFoundError(object_id)
            raise_for_exception_envelope(data, operation_name="load_object")
            return RemoteObject.model_validate(data)

        try:
            return await self._with_retry(_fetch, f"load_object({object_id})")
        except httpx.HTTPStatusError as exc:
            raise MpxClientError(
                f"load_object({object_id}) failed: {exc}",
                status_code=exc.response.status_code,
            ) from exc
        except ValueError as exc:
            raise MpxClientError(f"load_object({object_id}) returned invalid data") from exc

    async def select_ids(
        self,
        collection: CollectionConfig,
        *,
        start: int,
        end: int,
        filters: Mapping[str, str] | None = None,
    ) -> ObjectIdList:
        """Fetch one page of object ids, ``range`` is 1-based and inclusive."""
        url = f"{self._base_url(collection)}{collection.service_path}"
        params: dict[str, Any] = {
            "schema": collection.schema_version,
            "form": "cjson",
            "fields": "id",
            "range": f"{start}-{end}",
            "sort": "id",
            "count": "true",
        }
        params.update(filters or {})
        timeout = self.get_timeout("select_ids")

        async def _fetch() -> ObjectIdList:
            response = await self.client.get(url, params=self._params(params), timeout=timeout)
            response.raise_for_status()
            data = response.json()
            raise_for_exception_envelope(data, operation_name="select_ids")
            return ObjectIdList.model_validate(data)

        try:
            return await self._with_retry(_fetch, f"select_ids({collection.key})")
        except httpx.HTTPStatusError as exc:
            raise MpxClientError(
                f"select_ids({collection.key}) failed: {exc}",
                status_code=exc.response.status_code,
            ) from exc
        except ValueError as exc:
            raise MpxClientError(f"select_ids({collection.key}) returned invalid data") from exc
