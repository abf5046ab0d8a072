"""
Rarible API client for Base collections.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from ...exceptions import MarketplaceAPIError
from ...utils.fetch_utils import fetch_with_retry
from .metadata import CollectionPage, CollectionSource, NFTMetadata, normalize_rarible_item

logger = logging.getLogger(__name__)


class RaribleAPIClient(CollectionSource):
    """
    A client for the Rarible multichain API.

    Item and collection ids are chain-prefixed: ``BASE:<contract>:<tokenId>``.
    """

    DEFAULT_BASE_URL = "https://api.rarible.org/v0.1"
    BLOCKCHAIN = "BASE"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_headers(self) -> Dict[str, str]:
        return {"accept": "application/json", "X-API-KEY": self.api_key or ""}

    async def _get_json(self, url: str) -> Optional[Dict[str, Any]]:
        response = await fetch_with_retry(
            url, client=self._client, timeout=self.timeout, headers=self._get_headers()
        )
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.error(f"Rarible API error {response.status_code} for {url}: {response.text[:200]}")
            raise MarketplaceAPIError(
                f"Rarible API error: {response.status_code}", status_code=response.status_code
            )
        return response.json()

    async def get_item(self, contract_address: str, token_id: str) -> Optional[NFTMetadata]:
        url = f"{self.base_url}/items/{self.BLOCKCHAIN}:{contract_address}:{token_id}"
        data = await self._get_json(url)
        return normalize_rarible_item(data) if data else None

    def collection_page_url(self, contract_address: str, continuation: Optional[str], size: int) -> str:
        params = {"collection": f"{self.BLOCKCHAIN}:{contract_address}", "size": size}
        if continuation:
            params["continuation"] = continuation
        return f"{self.base_url}/items/byCollection?{urlencode(params)}"

    async def fetch_collection_page(self, url: str) -> CollectionPage:
        data = await self._get_json(url) or {}
        items = [normalize_rarible_item(item) for item in data.get("items") or []]
        return CollectionPage(items=items, continuation=data.get("continuation") or None)

    async def get_nfts_for_owner(self, owner: str, contract_address: str) -> List[NFTMetadata]:
        params = {"owner": f"ETHEREUM:{owner}", "blockchains": self.BLOCKCHAIN, "size": 100}
        data = await self._get_json(f"{self.base_url}/items/byOwner?{urlencode(params)}") or {}
        items = [normalize_rarible_item(item) for item in data.get("items") or []]
        return [i for i in items if i.contract.address.lower() == contract_address.lower()]

    async def close(self):
        await self._client.aclose()
