"""Collection gallery, marketplace lookups and the image proxy."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, Response

from ...core.error_codes import api_error
from ...exceptions import ConfigurationError, InvalidRequest
from ...services.gallery import GalleryFeed
from ...services.image_proxy import IMMUTABLE_CACHE_CONTROL, ImageProxyError
from ..dependencies import DependencyContainer, get_container

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["gallery"])


def _contract_or_default(container: DependencyContainer, contract: Optional[str]) -> str:
    contract = contract or container.config.chain.geoplet_contract_address
    if not contract:
        raise ConfigurationError("Geoplet contract address not configured")
    return contract


def _owner_contract(container: DependencyContainer, contract: Optional[str]) -> str:
    contract = contract or container.config.chain.warplets_contract_address
    if not contract:
        raise ConfigurationError("Warplets contract address not configured")
    return contract


@router.get("/gallery")
async def get_gallery_page(
    continuation: Optional[str] = None,
    contract: Optional[str] = None,
    size: Optional[int] = Query(default=None, ge=1, le=100),
    container: DependencyContainer = Depends(get_container),
):
    """One page of the collection; items without any resolvable image are omitted."""
    feed = GalleryFeed(
        container.gallery_source,
        _contract_or_default(container, contract),
        page_size=size or container.config.marketplace.gallery_page_size,
        cache=container.gallery_cache,
        resolver_chain=container.resolver_chain,
    )
    page = await feed.fetch_page(continuation)
    return page.to_dict()


@router.get("/rarible")
async def get_rarible_items(
    owner: Optional[str] = None,
    token_id: Optional[str] = Query(default=None, alias="tokenId"),
    contract: Optional[str] = None,
    container: DependencyContainer = Depends(get_container),
):
    """
    Warplets held by ``owner`` (any collection via ``contract``), or a
    single Geoplet by ``tokenId``.
    """
    if owner:
        items = await container.gallery_source.get_nfts_for_owner(owner, _owner_contract(container, contract))
        items = await container.resolver_chain.resolve_all(items)
        return {"items": [i.to_dict() for i in items]}
    if token_id:
        item = await container.rarible.get_item(_contract_or_default(container, contract), token_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Item not found")
        resolution = await container.resolver_chain.resolve(item)
        data = item.to_dict()
        data["image"] = resolution.image
        return data
    raise InvalidRequest("Either owner or tokenId is required")


@router.get("/image-proxy")
async def image_proxy(url: Optional[str] = None, container: DependencyContainer = Depends(get_container)):
    """Serve an allow-listed remote image as a bounded PNG."""
    try:
        png = await container.image_proxy.fetch_and_transcode(url)
    except ImageProxyError as e:
        return JSONResponse(
            status_code=e.status_code,
            content=api_error(e.code, e.message),
            headers={"Cache-Control": "no-store"},
        )
    return Response(content=png, media_type="image/png", headers={"Cache-Control": IMMUTABLE_CACHE_CONTROL})
