#!/usr/bin/env python3
"""
Onchain.fi facilitator client.

Verifies and settles x402 payment headers. Verification is read-only and
retried; settlement moves funds and is attempted exactly once.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ...core.error_codes import PaymentErrorCode
from ...exceptions import FetchTimeoutError, PaymentNotVerified
from ...utils.fetch_utils import fetch_with_retry
from ...utils.logging_config import metrics_logger

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    tx_hash: str
    facilitator: Optional[str] = None


class FacilitatorClient:
    """
    A client for the Onchain.fi x402 facilitator API.
    """

    DEFAULT_BASE_URL = "https://api.onchain.fi/v1"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        network: str = "base",
        priority: str = "balanced",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.network = network
        self.priority = priority
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=timeout, connect=10.0),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_headers(self) -> Dict[str, str]:
        return {
            "X-API-Key": self.api_key or "",
            "Content-Type": "application/json",
        }

    async def _post(self, endpoint: str, payload: Dict[str, Any], max_retries: int) -> Dict[str, Any]:
        if not self.is_configured():
            raise PaymentNotVerified(
                "Payment facilitator is not configured", code=PaymentErrorCode.ONCHAIN_FI_ERROR
            )

        started = time.perf_counter()
        try:
            response = await fetch_with_retry(
                f"{self.base_url}{endpoint}",
                "POST",
                client=self._client,
                max_retries=max_retries,
                timeout=self.timeout,
                json=payload,
                headers=self._get_headers(),
            )
        except FetchTimeoutError as e:
            logger.error(f"Facilitator {endpoint} unreachable: {e}")
            raise PaymentNotVerified(
                "Payment service unreachable", code=PaymentErrorCode.PAYMENT_TIMEOUT
            ) from e

        metrics_logger.log_facilitator_call(endpoint, (time.perf_counter() - started) * 1000, response.status_code)

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            reason = (data.get("data") or {}).get("reason") or data.get("message") or response.text
            logger.warning(f"Facilitator {endpoint} returned {response.status_code}: {reason}")
            raise PaymentNotVerified(
                f"Payment {endpoint.strip('/')} failed: {reason}",
                details={"status_code": response.status_code},
            )
        return data

    async def verify(self, payment_header: str, expected_amount: str, recipient: str) -> bool:
        """
        Verify a payment header for ``expected_amount`` USDC to ``recipient``.

        Returns True only when the facilitator reports success and validity.
        """
        data = await self._post(
            "/verify",
            {
                "paymentHeader": payment_header,
                "network": self.network,
                "expectedAmount": expected_amount,
                "expectedToken": "USDC",
                "recipientAddress": recipient,
                "priority": self.priority,
            },
            max_retries=3,
        )
        result = data.get("data") or {}
        valid = data.get("status") == "success" and bool(result.get("valid"))
        if not valid:
            logger.warning(f"Payment verification rejected: {result.get('reason')}")
        else:
            logger.info(f"Payment verified via {result.get('facilitator')}")
        return valid

    async def settle(self, payment_header: str) -> SettlementResult:
        """Settle a verified payment. Raises PaymentNotVerified on failure."""
        data = await self._post(
            "/settle",
            {
                "paymentHeader": payment_header,
                "network": self.network,
                "priority": self.priority,
            },
            max_retries=1,
        )
        result = data.get("data") or {}
        if data.get("status") != "success" or not result.get("settled"):
            reason = result.get("reason") or "settlement not confirmed"
            logger.error(f"Payment settlement failed: {reason}")
            raise PaymentNotVerified(f"Payment settlement failed: {reason}")

        tx_hash = result.get("txHash")
        if not tx_hash:
            raise PaymentNotVerified("Payment settled without a transaction hash")
        logger.info(f"Payment settled: {tx_hash} via {result.get('facilitator')}")
        return SettlementResult(tx_hash=tx_hash, facilitator=result.get("facilitator"))

    async def verify_and_settle(self, payment_header: str, expected_amount: str, recipient: str) -> SettlementResult:
        if not await self.verify(payment_header, expected_amount, recipient):
            raise PaymentNotVerified("Payment verification failed - Invalid or insufficient payment")
        return await self.settle(payment_header)

    async def health_check(self) -> bool:
        return self.is_configured()

    async def close(self):
        """Close the HTTP client connection."""
        await self._client.aclose()
