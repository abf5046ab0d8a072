"""
Alchemy NFT API (v3) client for Base.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from ...exceptions import ConfigurationError, MarketplaceAPIError
from ...utils.fetch_utils import fetch_with_retry
from .metadata import CollectionPage, CollectionSource, NFTMetadata, normalize_alchemy_nft

logger = logging.getLogger(__name__)


class AlchemyNFTClient(CollectionSource):
    """Collection and ownership queries; ``pageKey`` is the continuation token."""

    DEFAULT_BASE_URL = "https://base-mainnet.g.alchemy.com/nft/v3"

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
        self._client = client or httpx.AsyncClient()

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _endpoint(self, method: str) -> str:
        if not self.api_key:
            raise ConfigurationError("Alchemy API key is not configured")
        return f"{self.base_url}/{self.api_key}/{method}"

    async def _get_json(self, url: str) -> Dict[str, Any]:
        response = await fetch_with_retry(
            url, client=self._client, timeout=self.timeout, headers={"accept": "application/json"}
        )
        if response.status_code >= 400:
            logger.error(f"Alchemy API error {response.status_code}: {response.text[:200]}")
            raise MarketplaceAPIError(
                f"Alchemy API error: {response.status_code}", status_code=response.status_code
            )
        return response.json()

    def collection_page_url(self, contract_address: str, continuation: Optional[str], size: int) -> str:
        params = {"contractAddress": contract_address, "withMetadata": "true", "limit": size}
        if continuation:
            params["pageKey"] = continuation
        return f"{self._endpoint('getNFTsForContract')}?{urlencode(params)}"

    async def fetch_collection_page(self, url: str) -> CollectionPage:
        data = await self._get_json(url)
        items = [normalize_alchemy_nft(nft) for nft in data.get("nfts") or []]
        return CollectionPage(items=items, continuation=data.get("pageKey") or None)

    async def get_nfts_for_owner(self, owner: str, contract_address: str) -> List[NFTMetadata]:
        params = {"owner": owner, "contractAddresses[]": contract_address, "withMetadata": "true"}
        data = await self._get_json(f"{self._endpoint('getNFTsForOwner')}?{urlencode(params)}")
        return [normalize_alchemy_nft(nft) for nft in data.get("ownedNfts") or []]

    async def close(self):
        await self._client.aclose()
