"""
Tests for the Onchain.fi facilitator client.
"""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from geoplet.core.error_codes import PaymentErrorCode
from geoplet.exceptions import PaymentNotVerified
from geoplet.integrations.payment.facilitator_client import FacilitatorClient


def make_client(handler, api_key="key"):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return FacilitatorClient(api_key, base_url="https://facilitator.test/v1", client=http)


def ok_handler(requests):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/verify"):
            return httpx.Response(200, json={"status": "success", "data": {"valid": True, "facilitator": "cb"}})
        return httpx.Response(
            200, json={"status": "success", "data": {"settled": True, "txHash": "0xabc", "facilitator": "cb"}}
        )
    return handler


class TestFacilitatorClient:
    @pytest.mark.asyncio
    async def test_verify_and_settle(self):
        requests = []
        client = make_client(ok_handler(requests))

        result = await client.verify_and_settle("header", "1.99", "0xrecipient")

        assert result.tx_hash == "0xabc"
        assert [r.url.path for r in requests] == ["/v1/verify", "/v1/settle"]
        verify_body = json.loads(requests[0].content)
        assert verify_body["expectedAmount"] == "1.99"
        assert verify_body["recipientAddress"] == "0xrecipient"
        assert requests[0].headers["X-API-Key"] == "key"

    @pytest.mark.asyncio
    async def test_invalid_payment_is_not_settled(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"status": "success", "data": {"valid": False, "reason": "amount"}})

        client = make_client(handler)
        with pytest.raises(PaymentNotVerified):
            await client.verify_and_settle("header", "1.99", "0xrecipient")
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_settle_is_attempted_once(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(503, json={"message": "unavailable"})

        client = make_client(handler)
        with pytest.raises(PaymentNotVerified):
            await client.settle("header")
        assert calls == ["/v1/settle"]

    @pytest.mark.asyncio
    async def test_settlement_without_tx_hash_fails(self):
        def handler(request):
            return httpx.Response(200, json={"status": "success", "data": {"settled": True}})

        with pytest.raises(PaymentNotVerified):
            await make_client(handler).settle("header")

    @pytest.mark.asyncio
    async def test_unreachable_maps_to_payment_timeout(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        client = make_client(handler)
        with patch("geoplet.utils.fetch_utils.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(PaymentNotVerified) as exc_info:
                await client.verify("header", "1.99", "0xrecipient")
        assert exc_info.value.code == PaymentErrorCode.PAYMENT_TIMEOUT

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        client = make_client(ok_handler([]), api_key=None)
        assert not client.is_configured()
        with pytest.raises(PaymentNotVerified) as exc_info:
            await client.verify("header", "1.99", "0xrecipient")
        assert exc_info.value.code == PaymentErrorCode.ONCHAIN_FI_ERROR
