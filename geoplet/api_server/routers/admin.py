"""Admin outreach endpoints; every route requires a Bearer admin API key."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from ...exceptions import InvalidRequest
from ..dependencies import DependencyContainer, get_container, require_admin
from ..schemas import MarkContactedRequest, SendCastRequest

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/unconverted")
async def list_unconverted(cast_sent: Optional[bool] = None, container: DependencyContainer = Depends(get_container)):
    """Users who generated an image but never paid."""
    report = await container.outreach.list_unconverted(cast_sent=cast_sent)
    return {"success": True, **report.to_dict()}


@router.post("/mark-contacted")
async def mark_contacted(body: MarkContactedRequest, container: DependencyContainer = Depends(get_container)):
    if not body.fids:
        raise InvalidRequest("fids must not be empty")
    updated = await container.outreach.mark_contacted(body.fids, body.contacted)
    return {"success": True, "updated": updated}


@router.post("/send-cast")
async def send_cast(body: SendCastRequest, container: DependencyContainer = Depends(get_container)):
    if not body.fids:
        raise InvalidRequest("fids must not be empty")
    try:
        batch = await container.outreach.send_casts(body.fids, body.message, body.template)
    except ValueError as e:
        raise InvalidRequest(str(e))
    return {"success": True, **batch.to_dict()}


@router.post("/test-farcaster-key")
async def test_farcaster_key(container: DependencyContainer = Depends(get_container)):
    return await container.outreach.test_api_key()


@router.get("/health")
async def upstream_health(container: DependencyContainer = Depends(get_container)):
    """Live status of OpenAI, the payment facilitator and Neynar."""
    return {"success": True, "services": await container.check_upstreams()}
