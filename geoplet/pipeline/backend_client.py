"""
HTTP client for the Geoplet backend, used by the client-side mint pipeline.

Handles the x402 round trip: a 402 answer carries payment requirements, the
injected payment signer authorizes the USDC transfer, and the request is
replayed with an ``X-Payment`` header.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..core.error_codes import MintErrorCode, PaymentErrorCode
from ..chain.voucher import SignedVoucher
from ..exceptions import (
    AlreadyMinted,
    ConfigurationError,
    GeopletError,
    InvalidRequest,
    PaymentNotVerified,
)
from ..integrations.payment.x402 import PaymentRequirements, X402PaymentSigner
from ..utils.fetch_utils import fetch_with_retry

logger = logging.getLogger(__name__)

_PAYMENT_FAILURE_CODES = {
    PaymentErrorCode.PAYMENT_VERIFICATION_FAILED.value,
    PaymentErrorCode.INVALID_SIGNATURE.value,
    PaymentErrorCode.PAYMENT_REQUIRED.value,
    PaymentErrorCode.PAYMENT_TIMEOUT.value,
    PaymentErrorCode.ONCHAIN_FI_ERROR.value,
}


class GeopletBackendClient:
    """Talks to the voucher, generation and payment-tracking endpoints."""

    def __init__(
        self,
        base_url: str,
        payment_signer: Optional[X402PaymentSigner] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.payment_signer = payment_signer
        self.timeout = timeout
        self._client = client or httpx.AsyncClient()

    @staticmethod
    def _error_from_response(response: httpx.Response, fid: Optional[int] = None) -> GeopletError:
        try:
            error = (response.json() or {}).get("error") or {}
        except ValueError:
            error = {}
        code = error.get("code")
        message = error.get("message") or f"Backend returned {response.status_code}"
        details = error.get("details")

        if code == MintErrorCode.FID_ALREADY_MINTED.value:
            return AlreadyMinted(fid or 0, message)
        if code in _PAYMENT_FAILURE_CODES or response.status_code in (402, 403):
            return PaymentNotVerified(message, code=code or PaymentErrorCode.PAYMENT_VERIFICATION_FAILED, details=details)
        if code == MintErrorCode.SERVICE_UNAVAILABLE.value:
            return ConfigurationError(message)
        if response.status_code == 400:
            return InvalidRequest(message, code=code or MintErrorCode.INVALID_REQUEST, details=details)
        return GeopletError(message, code=code or PaymentErrorCode.API_ERROR, details=details)

    async def _post_voucher_request(self, path: str, fid: int, to: str, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        # Paid requests move money; one attempt only.
        return await fetch_with_retry(
            f"{self.base_url}{path}",
            "POST",
            client=self._client,
            max_retries=1,
            timeout=self.timeout,
            json={"to": to, "fid": str(fid)},
            headers=headers or {},
        )

    def _parse_voucher(self, response: httpx.Response, fid: int) -> SignedVoucher:
        if response.status_code != 200:
            raise self._error_from_response(response, fid)
        return SignedVoucher.from_dict(response.json())

    async def request_mint_voucher(self, fid: int, to: str) -> SignedVoucher:
        """Pay (if asked to) and obtain a signed mint voucher."""
        path = "/api/get-mint-signature"
        response = await self._post_voucher_request(path, fid, to)

        if response.status_code == 402:
            body: Dict[str, Any] = response.json()
            accepts = body.get("accepts") or []
            if not accepts:
                raise self._error_from_response(response, fid)
            if self.payment_signer is None:
                raise ConfigurationError("No payment signer configured for x402 payments")
            requirements = PaymentRequirements.from_dict(accepts[0])
            logger.info(f"Paying {requirements.max_amount_required} to {requirements.pay_to} for FID {fid}")
            # TransactionRejected propagates when the signer declines
            header = self.payment_signer.create_payment_header(requirements)
            response = await self._post_voucher_request(path, fid, to, headers={"X-Payment": header})

        return self._parse_voucher(response, fid)

    async def request_recovery_voucher(self, fid: int, to: str) -> SignedVoucher:
        """Fresh short-lived voucher for a FID whose payment already settled."""
        response = await self._post_voucher_request("/api/get-mint-signature-paid", fid, to)
        return self._parse_voucher(response, fid)

    async def delete_generation(self, fid: int) -> bool:
        response = await fetch_with_retry(
            f"{self.base_url}/api/delete-generation",
            "DELETE",
            client=self._client,
            params={"fid": str(fid)},
        )
        if response.status_code >= 400:
            raise self._error_from_response(response, fid)
        return True

    async def update_payment_status(self, fid: int, status: str, mint_tx_hash: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": status}
        if mint_tx_hash:
            payload["mintTxHash"] = mint_tx_hash
        response = await fetch_with_retry(
            f"{self.base_url}/api/payment-tracking/{fid}",
            "PATCH",
            client=self._client,
            json=payload,
        )
        if response.status_code >= 400:
            raise self._error_from_response(response, fid)
        return response.json()

    async def close(self):
        await self._client.aclose()

