"""
Tests for timeout and retry fetch helpers.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from geoplet.exceptions import FetchTimeoutError
from geoplet.utils.fetch_utils import backoff_delay, fetch_with_retry, is_retryable_status


def _sequenced_client(statuses):
    """Client whose transport answers with ``statuses`` in order."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(statuses[len(calls) - 1], json={"attempt": len(calls)})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), calls


class TestHelpers:
    def test_backoff_doubles(self):
        assert backoff_delay(0) == pytest.approx(0.1)
        assert backoff_delay(1) == pytest.approx(0.2)
        assert backoff_delay(2) == pytest.approx(0.4)

    def test_only_5xx_is_retryable(self):
        assert is_retryable_status(500)
        assert is_retryable_status(503)
        assert not is_retryable_status(404)
        assert not is_retryable_status(429)
        assert not is_retryable_status(200)


class TestFetchWithRetry:
    """Retry behaviour for 5xx, 4xx and network failures."""

    @pytest.mark.asyncio
    async def test_retries_5xx_until_success(self):
        client, calls = _sequenced_client([500, 500, 200])
        with patch("geoplet.utils.fetch_utils.asyncio.sleep", new_callable=AsyncMock) as sleep:
            response = await fetch_with_retry("https://api.example.com/items", client=client)

        assert response.status_code == 200
        assert len(calls) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [pytest.approx(0.1), pytest.approx(0.2)]

    @pytest.mark.asyncio
    async def test_4xx_returned_immediately(self):
        client, calls = _sequenced_client([404, 200])
        with patch("geoplet.utils.fetch_utils.asyncio.sleep", new_callable=AsyncMock) as sleep:
            response = await fetch_with_retry("https://api.example.com/items", client=client)

        assert response.status_code == 404
        assert len(calls) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_last_5xx_returned_after_exhaustion(self):
        client, calls = _sequenced_client([502, 503, 504])
        with patch("geoplet.utils.fetch_utils.asyncio.sleep", new_callable=AsyncMock):
            response = await fetch_with_retry("https://api.example.com/items", client=client, max_retries=3)

        assert response.status_code == 504
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_5xx_not_retried_when_disabled(self):
        client, calls = _sequenced_client([500, 200])
        response = await fetch_with_retry("https://api.example.com/items", client=client, retry_on_5xx=False)

        assert response.status_code == 500
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_network_errors_raise_fetch_timeout(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        with patch("geoplet.utils.fetch_utils.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(FetchTimeoutError) as exc_info:
                await fetch_with_retry("https://api.example.com/items", client=client, max_retries=3)

        assert len(attempts) == 3
        assert sleep.await_count == 2
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_timeout_recovers_on_retry(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json={"ok": True})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        with patch("geoplet.utils.fetch_utils.asyncio.sleep", new_callable=AsyncMock):
            response = await fetch_with_retry("https://api.example.com/items", client=client)

        assert response.json() == {"ok": True}
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_no_retry_on_timeout_when_disabled(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        with pytest.raises(FetchTimeoutError):
            await fetch_with_retry("https://api.example.com/items", client=client, retry_on_timeout=False)
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            await fetch_with_retry("https://api.example.com/items", max_retries=0)
