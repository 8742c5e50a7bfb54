"""Tests for the mpx data service client and its retry helper."""

from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, patch

import httpx

from mpx_sync.adapters.mpx.client import (
    MpxClient,
    _calculate_delay,
    exception_response_code,
    object_numeric_id,
    retry_with_backoff,
)
from mpx_sync.adapters.mpx.errors import (
    MpxClientError,
    MpxRetryableError,
    RemoteObjectNotFoundError,
)
from tests.conftest import make_mpx_config

OBJECT = {
    "id": "http://data.media.theplatform.com/media/data/Media/2602559",
    "title": "Clip",
    "guid": "abc",
    "ownerId": "http://access.auth.theplatform.com/data/Account/42",
    "pl1$seriesName": "Series",
}


class TestHelpers(unittest.TestCase):
    def test_object_numeric_id(self):
        assert object_numeric_id(OBJECT["id"]) == "2602559"
        assert object_numeric_id("2602559") == "2602559"
        assert object_numeric_id(OBJECT["id"] + "/") == "2602559"

    def test_object_numeric_id_rejects_empty(self):
        with self.assertRaises(ValueError):
            object_numeric_id("")

    def test_exception_response_code(self):
        assert exception_response_code([]) is None
        assert exception_response_code({"title": "x"}) is None
        assert exception_response_code({"isException": True, "responseCode": 404}) == 404
        assert exception_response_code({"isException": True}) == 0

    def test_delay_grows_and_is_capped(self):
        with patch("mpx_sync.adapters.mpx.client.random.random", return_value=0.0):
            assert _calculate_delay(0, 1.0, 30.0, 0.1) == 1.0
            assert _calculate_delay(3, 1.0, 30.0, 0.1) == 8.0
            assert _calculate_delay(10, 1.0, 30.0, 0.1) == 30.0


class TestRetryWithBackoff(unittest.IsolatedAsyncioTestCase):
    async def test_retries_transient_errors(self):
        func = AsyncMock(side_effect=[MpxRetryableError("busy", status_code=503), "ok"])

        with patch("mpx_sync.adapters.mpx.client.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await retry_with_backoff(func, max_retries=2, base_delay=0.01)

        assert result == "ok"
        assert func.await_count == 2
        sleep.assert_awaited_once()

    async def test_non_retryable_error_propagates_immediately(self):
        func = AsyncMock(side_effect=RemoteObjectNotFoundError("1"))

        with self.assertRaises(RemoteObjectNotFoundError):
            await retry_with_backoff(func, max_retries=3, base_delay=0)

        assert func.await_count == 1

    async def test_exhausted_retries_raise_client_error(self):
        request = httpx.Request("GET", "https://data.example.test")
        error = httpx.HTTPStatusError(
            "503", request=request, response=httpx.Response(503, request=request)
        )
        func = AsyncMock(side_effect=error)

        with patch("mpx_sync.adapters.mpx.client.asyncio.sleep", new=AsyncMock()):
            with self.assertRaises(MpxClientError) as ctx:
                await retry_with_backoff(func, max_retries=2, base_delay=0)

        assert func.await_count == 3
        assert ctx.exception.status_code == 503
        assert ctx.exception.__cause__ is error


class TestMpxClient(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.config = make_mpx_config()
        self.collection = self.config.collection("mpx_video")
        self.requests: list[httpx.Request] = []
        self.responses: list[httpx.Response] = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return self.responses.pop(0)

        self.client = MpxClient(
            self.config.api_url,
            self.config.token,
            account=self.config.account,
            max_retries=1,
            retry_base_delay=0,
            retry_max_delay=0,
            transport=httpx.MockTransport(handler),
        )
        await self.client.__aenter__()

    async def asyncTearDown(self):
        await self.client.__aexit__(None, None, None)

    async def test_load_object(self):
        self.responses.append(httpx.Response(200, json=OBJECT))

        remote = await self.client.load_object(self.collection, OBJECT["id"], bypass_cache=True)

        assert remote.id == OBJECT["id"]
        assert remote.owner_id == OBJECT["ownerId"]
        assert remote.value("pl1$seriesName") == "Series"
        request = self.requests[0]
        assert request.url.path == "/media/data/Media/2602559"
        assert request.url.params["schema"] == "1.10"
        assert request.url.params["form"] == "cjson"
        assert request.url.params["token"] == "test-token"
        assert request.url.params["account"] == self.config.account
        assert request.headers["cache-control"] == "no-cache"

    async def test_load_object_without_bypass_sends_no_cache_header(self):
        self.responses.append(httpx.Response(200, json=OBJECT))

        await self.client.load_object(self.collection, "2602559")

        assert "cache-control" not in self.requests[0].headers

    async def test_load_object_404(self):
        self.responses.append(httpx.Response(404))

        with self.assertRaises(RemoteObjectNotFoundError):
            await self.client.load_object(self.collection, "1")

    async def test_load_object_404_envelope(self):
        self.responses.append(
            httpx.Response(200, json={"isException": True, "responseCode": 404, "title": "Gone"})
        )

        with self.assertRaises(RemoteObjectNotFoundError):
            await self.client.load_object(self.collection, "1")

    async def test_load_object_retries_server_error(self):
        self.responses.extend([httpx.Response(502), httpx.Response(200, json=OBJECT)])

        remote = await self.client.load_object(self.collection, "2602559")

        assert remote.title == "Clip"
        assert len(self.requests) == 2

    async def test_load_object_permanent_http_error(self):
        self.responses.append(httpx.Response(403))

        with self.assertRaises(MpxClientError) as ctx:
            await self.client.load_object(self.collection, "1")

        assert ctx.exception.status_code == 403
        assert len(self.requests) == 1

    async def test_load_object_invalid_body(self):
        self.responses.append(httpx.Response(200, json={"title": "no id"}))

        with self.assertRaises(MpxClientError):
            await self.client.load_object(self.collection, "1")

    async def test_select_ids(self):
        page = {
            "startIndex": 1,
            "itemsPerPage": 2,
            "entryCount": 2,
            "totalResults": 5,
            "entries": [{"id": OBJECT["id"]}, {"id": "http://x/Media/2"}],
        }
        self.responses.append(httpx.Response(200, json=page))

        result = await self.client.select_ids(
            self.collection, start=1, end=2, filters={"byCustomValue": "{excluded}{false}"}
        )

        assert result.ids == [OBJECT["id"], "http://x/Media/2"]
        assert result.total_results == 5
        params = self.requests[0].url.params
        assert params["range"] == "1-2"
        assert params["fields"] == "id"
        assert params["sort"] == "id"
        assert params["count"] == "true"
        assert params["byCustomValue"] == "{excluded}{false}"

    async def test_client_requires_context(self):
        client = MpxClient("https://data.example.test", "t")

        with self.assertRaises(MpxClientError):
            _ = client.client


if __name__ == "__main__":
    unittest.main()
