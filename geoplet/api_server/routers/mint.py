"""
Mint voucher endpoints.

A voucher is the server's EIP-712 authorization for one (wallet, FID)
pair. It is only signed after the x402 payment settles, or for recovery
when a settled payment never turned into a mint.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from ...core.error_codes import PaymentErrorCode, api_error
from ...exceptions import PaymentNotVerified, PaymentRequired
from ...integrations.payment.x402 import encode_payment_header, payment_required_body
from ...pipeline.voucher_issuer import parse_fid
from ..dependencies import DependencyContainer, get_container
from ..schemas import MintSignatureRequest, SettlePaymentRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["mint"])


def _settlement_header(tx_hash: str, network: str) -> str:
    return encode_payment_header({"success": True, "transaction": tx_hash, "network": network})


@router.post("/get-mint-signature")
async def get_mint_signature(
    body: MintSignatureRequest,
    request: Request,
    x_payment: Optional[str] = Header(default=None),
    container: DependencyContainer = Depends(get_container),
):
    """Verify and settle the mint payment, then return a signed voucher."""
    issuer = container.voucher_issuer
    signed = await issuer.issue_for_payment(body.fid, body.to, x_payment, resource=str(request.url))
    logger.info(f"Issued mint voucher for FID {signed.voucher.fid} to {signed.voucher.to}")
    return signed.to_dict()


@router.post("/get-mint-signature-paid")
async def get_mint_signature_paid(
    body: MintSignatureRequest,
    container: DependencyContainer = Depends(get_container),
):
    """Recovery voucher for a FID whose settled payment never minted."""
    issuer = container.voucher_issuer
    try:
        signed = await issuer.issue_recovery_voucher(body.fid, body.to)
    except PaymentNotVerified as e:
        return JSONResponse(
            status_code=403,
            content=api_error(PaymentErrorCode.PAYMENT_VERIFICATION_FAILED, e.message, e.details or None),
        )
    return signed.to_dict()


@router.post("/settle-payment")
async def settle_payment(
    request: Request,
    body: Optional[SettlePaymentRequest] = None,
    x_payment: Optional[str] = Header(default=None),
    container: DependencyContainer = Depends(get_container),
):
    """Verify and settle a mint payment without issuing a voucher."""
    issuer = container.voucher_issuer
    if not x_payment:
        raise PaymentRequired(payment_required_body([issuer.payment_requirements(str(request.url))]))

    fid = body.fid if body else None
    settlement = await issuer.settle_payment(x_payment, fid)
    network = container.config.payment.network
    return JSONResponse(
        content={"success": True, "txHash": settlement.tx_hash, "facilitator": settlement.facilitator},
        headers={"X-PAYMENT-RESPONSE": _settlement_header(settlement.tx_hash, network)},
    )


@router.get("/check-fid")
async def check_fid(fid: Optional[str] = None, container: DependencyContainer = Depends(get_container)):
    """Whether a FID has already minted, read from the contract."""
    fid_value = parse_fid(fid)
    minted = await container.is_fid_minted(fid_value)
    return {"fid": fid_value, "isMinted": bool(minted), "available": not minted}
