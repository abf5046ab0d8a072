"""
Tests for the Neynar API client used by admin outreach.
"""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from geoplet.exceptions import FarcasterIntegrationError
from geoplet.integrations.farcaster.neynar_api_client import (
    NeynarAPIClient,
    NeynarAPIError,
    NeynarNetworkError,
    NeynarRateLimitError,
)


def make_client(handler, **kwargs) -> NeynarAPIClient:
    return NeynarAPIClient(
        api_key="neynar-key",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


class TestNeynarAPIClient:
    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            NeynarAPIClient(api_key="")

    @pytest.mark.asyncio
    async def test_publish_cast_payload(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"success": True, "cast": {"hash": "0xcast"}})

        client = make_client(handler)
        result = await client.publish_cast("hello", "signer-1", embeds=[{"url": "https://app/share/1"}])

        assert result["cast"]["hash"] == "0xcast"
        request = seen[0]
        assert request.url.path == "/v2/farcaster/cast"
        assert request.headers["x-api-key"] == "neynar-key"
        assert json.loads(request.content) == {
            "text": "hello",
            "signer_uuid": "signer-1",
            "embeds": [{"url": "https://app/share/1"}],
        }

    @pytest.mark.asyncio
    async def test_publish_requires_signer(self):
        client = make_client(lambda r: httpx.Response(200, json={}))
        with pytest.raises(ValueError):
            await client.publish_cast("hello", "")

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        statuses = iter([502, 200])

        def handler(request):
            return httpx.Response(next(statuses), json={"users": [{"fid": 1, "username": "a"}]})

        client = make_client(handler)
        with patch("geoplet.integrations.farcaster.neynar_api_client.asyncio.sleep", new_callable=AsyncMock) as sleep:
            users = await client.get_users_by_fids([1])

        assert users == [{"fid": 1, "username": "a"}]
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self):
        responses = iter([
            httpx.Response(429, headers={"retry-after": "7"}),
            httpx.Response(200, json={"status": "approved", "fid": 9}),
        ])
        client = make_client(lambda r: next(responses))

        with patch("geoplet.integrations.farcaster.neynar_api_client.asyncio.sleep", new_callable=AsyncMock) as sleep:
            signer = await client.lookup_signer("signer-1")

        assert signer["status"] == "approved"
        sleep.assert_awaited_once_with(7)

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self):
        client = make_client(lambda r: httpx.Response(429), max_retries=1)
        with patch("geoplet.integrations.farcaster.neynar_api_client.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(NeynarRateLimitError) as exc_info:
                await client.lookup_signer("signer-1")
        assert exc_info.value.status_code == 429
        assert isinstance(exc_info.value, FarcasterIntegrationError)

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(403, text="forbidden")

        client = make_client(handler)
        with pytest.raises(NeynarAPIError) as exc_info:
            await client.publish_cast("hello", "signer-1")
        assert exc_info.value.status_code == 403
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        client = make_client(handler, max_retries=0)
        with pytest.raises(NeynarNetworkError):
            await client.lookup_signer("signer-1")

    @pytest.mark.asyncio
    async def test_rate_limit_headers_recorded(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"users": []},
                headers={"x-ratelimit-limit": "300", "x-ratelimit-remaining": "5", "x-ratelimit-reset": "60"},
            )

        client = make_client(handler)
        await client.get_users_by_fids([1])

        assert client.rate_limit_info["limit"] == 300
        assert client.rate_limit_info["remaining"] == 5
        assert client.rate_limit_info["reset"] == 60

    @pytest.mark.asyncio
    async def test_empty_fid_list_skips_request(self):
        client = make_client(lambda r: pytest.fail("no request expected"))
        assert await client.get_users_by_fids([]) == []
