"""
Generation endpoints: produce geometric art and stage it until mint.

The first generation for a FID is free. Regenerating, or generating
without a FID, is priced through x402.
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from ...chain.contracts import to_atomic_units
from ...core.artifact import WEBP_DATA_URI_PREFIX, GeneratedArtifact
from ...core.error_codes import MintErrorCode
from ...exceptions import ConfigurationError, InvalidRequest, PaymentRequired
from ...integrations.payment.x402 import (
    build_payment_requirements,
    payment_required_body,
    validate_payment_header,
)
from ...pipeline.voucher_issuer import parse_fid
from ..dependencies import DependencyContainer, get_container
from ..schemas import GenerateImageRequest, SaveGenerationRequest, generation_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["generation"])


async def _charge_regeneration(container: DependencyContainer, payment_header: Optional[str], resource: str) -> str:
    config = container.config
    if not config.payment.recipient_address:
        raise ConfigurationError("Payment recipient address not configured")

    price = config.payment.regenerate_price_usdc
    if not payment_header:
        requirements = build_payment_requirements(
            price_usdc=price,
            pay_to=config.payment.recipient_address,
            asset=config.chain.usdc_contract_address,
            resource=resource,
            description=f"Regenerate your Geoplet artwork for {price} USDC",
            network=config.payment.network,
            max_timeout_seconds=config.payment.max_timeout_seconds,
            decimals=config.chain.usdc_decimals,
        )
        raise PaymentRequired(payment_required_body([requirements]))

    validate_payment_header(
        payment_header,
        to_atomic_units(price, config.chain.usdc_decimals),
        network=config.payment.network,
    )
    settlement = await container.facilitator.verify_and_settle(
        payment_header, price, config.payment.recipient_address
    )
    logger.info(f"Regeneration payment settled: {settlement.tx_hash}")
    return settlement.tx_hash


@router.get("/generate-image")
async def generation_info(container: DependencyContainer = Depends(get_container)):
    config = container.config
    return {
        "status": "ok",
        "service": "geoplet-generation",
        "price": f"${config.payment.regenerate_price_usdc} USDC",
        "network": config.payment.network,
        "provider": config.generation.model,
        "paymentProtocol": "x402",
    }


@router.get("/openai-precheck")
async def openai_precheck(container: DependencyContainer = Depends(get_container)):
    """Whether generation can be attempted right now; 503 carries the reason."""
    check = await container.check_generator()
    logger.info(f"OpenAI precheck: available={check.available} reason={check.reason}")
    if check.available:
        return JSONResponse(
            content=check.to_dict(),
            headers={"Cache-Control": "public, max-age=30, stale-while-revalidate=60"},
        )
    return JSONResponse(status_code=503, content=check.to_dict(), headers={"Cache-Control": "no-store"})


@router.post("/generate-image")
async def generate_image(
    body: GenerateImageRequest,
    request: Request,
    x_payment: Optional[str] = Header(default=None),
    container: DependencyContainer = Depends(get_container),
):
    generator = container.generator

    is_first_time = body.fid is not None and await container.generations.get(body.fid) is None
    payment_tx = None
    if not is_first_time:
        payment_tx = await _charge_regeneration(container, x_payment, str(request.url))

    artifact = await generator.generate(body.image_url, body.token_id, body.name)
    return {
        "success": True,
        "imageData": artifact.image_data,
        "paymentTxHash": payment_tx,
        "metadata": {
            "tokenId": body.token_id,
            "name": body.name,
            "model": artifact.model,
            "prompt": artifact.prompt,
            "sizeBytes": artifact.size_bytes,
            "timestamp": int(time.time() * 1000),
        },
    }


@router.post("/save-generation")
async def save_generation(body: SaveGenerationRequest, container: DependencyContainer = Depends(get_container)):
    """Stage a generated image for a FID until it is minted."""
    fid = parse_fid(body.fid)
    container.rate_limiter.enforce(f"save-generation:{fid}")

    if not body.image_data.startswith(WEBP_DATA_URI_PREFIX):
        raise InvalidRequest(
            "Image must be a base64 WebP data URI",
            code=MintErrorCode.IMAGE_VALIDATION_FAILED,
        )
    artifact = GeneratedArtifact(image_data=body.image_data)
    if artifact.is_empty:
        raise InvalidRequest(code=MintErrorCode.IMAGE_VALIDATION_FAILED)
    artifact.validate_size(container.config.generation.max_artifact_bytes)

    record = await container.generations.save(fid, body.image_data, body.username)
    logger.info(f"Saved generation for FID {fid} ({artifact.size_bytes} bytes)")
    return {"success": True, "data": {"fid": record.fid, "createdAt": record.created_at}}


@router.get("/get-generation")
async def get_generation(fid: Optional[str] = None, container: DependencyContainer = Depends(get_container)):
    record = await container.generations.get(parse_fid(fid))
    return {"success": True, "data": generation_to_dict(record) if record else None}


@router.delete("/delete-generation")
async def delete_generation(fid: Optional[str] = None, container: DependencyContainer = Depends(get_container)):
    deleted = await container.generations.delete(parse_fid(fid))
    return {"success": True, "deleted": deleted}
