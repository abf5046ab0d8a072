"""
Payment tracking records: settled, minted, failed or refunded per FID.

Records are written by the server when a payment settles. Creating one by
hand, or moving it to any status other than ``minted``, needs an admin key;
the ``minted`` transition is open to the minting client but only once the
contract reports the FID as minted.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ...exceptions import InvalidRequest
from ...pipeline.voucher_issuer import parse_fid
from ..dependencies import DependencyContainer, get_container, require_admin
from ..schemas import PaymentTrackingCreate, PaymentTrackingUpdate, payment_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment-tracking", tags=["payment-tracking"])


@router.post("", dependencies=[Depends(require_admin)])
async def create_payment_record(body: PaymentTrackingCreate, container: DependencyContainer = Depends(get_container)):
    fid = parse_fid(body.fid)
    try:
        record = await container.payments.upsert(fid, body.settlement_tx_hash, body.status)
    except ValueError as e:
        raise InvalidRequest(str(e))
    logger.info(f"Admin recorded payment for FID {fid} as {body.status}")
    return {"success": True, "data": payment_to_dict(record)}


@router.get("/{fid}")
async def get_payment_record(fid: str, container: DependencyContainer = Depends(get_container)):
    record = await container.payments.get(parse_fid(fid))
    if record is None:
        raise HTTPException(status_code=404, detail="No payment record for this FID")
    return {"success": True, "data": payment_to_dict(record)}


@router.patch("/{fid}")
async def update_payment_record(
    fid: str,
    body: PaymentTrackingUpdate,
    request: Request,
    container: DependencyContainer = Depends(get_container),
):
    fid_value = parse_fid(fid)

    if await container.optional_admin_auth(request) is None:
        if body.status != "minted" or body.refund_tx_hash:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="API key required",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if not await container.is_fid_minted(fid_value):
            raise InvalidRequest("FID has not minted yet", details={"fid": fid_value})

    try:
        record = await container.payments.update_status(
            fid_value, body.status, mint_tx_hash=body.mint_tx_hash, refund_tx_hash=body.refund_tx_hash
        )
    except ValueError as e:
        raise InvalidRequest(str(e))
    if record is None:
        raise HTTPException(status_code=404, detail="No payment record for this FID")
    logger.info(f"Payment for FID {fid_value} marked {body.status}")
    return {"success": True, "data": payment_to_dict(record)}
