"""
NFT metadata normalization.

Marketplace records are mapped onto ``NFTMetadata``. When a record carries
no image, a prioritized resolver chain tries further sources (the token's
on-chain ``tokenURI``); items that exhaust the chain are dropped.
"""

import asyncio
import base64
import binascii
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import unquote

from web3.exceptions import Web3Exception

from ...chain.client import ChainClient
from ...chain.contracts import ERC721_METADATA_ABI
from ...exceptions import ContractCallReverted

logger = logging.getLogger(__name__)

JSON_BASE64_PREFIX = "data:application/json;base64,"
JSON_PLAIN_PREFIX = "data:application/json,"


@dataclass
class ContractRef:
    address: str
    name: str = "Unknown Collection"


@dataclass
class NFTMetadata:
    token_id: str
    name: str
    description: str
    image: str
    contract: ContractRef
    owner: Optional[str] = None
    attributes: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "tokenId": self.token_id,
            "name": self.name,
            "description": self.description,
            "image": self.image,
            "contract": {"address": self.contract.address, "name": self.contract.name},
            "attributes": self.attributes,
        }
        if self.owner:
            data["owner"] = self.owner
        return data


def strip_chain_prefix(value: Optional[str]) -> Optional[str]:
    """'BASE:0xabc' -> '0xabc'"""
    if not value:
        return value
    return value.split(":", 1)[1] if ":" in value else value


def normalize_rarible_item(item: Dict[str, Any]) -> NFTMetadata:
    meta = item.get("meta") or {}
    token_id = str(item.get("tokenId", ""))

    image = ""
    for content in meta.get("content") or []:
        if content.get("@type") == "IMAGE" and content.get("url"):
            image = content["url"]
            break

    contract_address = strip_chain_prefix(item.get("contract"))
    if not contract_address and item.get("id"):
        # id is "BASE:0x...:tokenId"
        parts = item["id"].split(":")
        contract_address = parts[1] if len(parts) >= 3 else ""

    collection = item.get("itemCollection") or {}
    return NFTMetadata(
        token_id=token_id,
        name=meta.get("name") or f"NFT #{token_id}",
        description=meta.get("description") or "",
        image=image,
        contract=ContractRef(
            address=contract_address or "",
            name=collection.get("name") or "Unknown Collection",
        ),
        owner=strip_chain_prefix(item.get("ownerIfSingle")),
        attributes=list(meta.get("attributes") or []),
    )


def normalize_alchemy_nft(nft: Dict[str, Any]) -> NFTMetadata:
    token_id = str(nft.get("tokenId", ""))
    image_info = nft.get("image") or {}
    raw_metadata = (nft.get("raw") or {}).get("metadata") or {}
    image = (
        image_info.get("cachedUrl")
        or image_info.get("originalUrl")
        or raw_metadata.get("image")
        or ""
    )
    contract = nft.get("contract") or {}
    attributes = [
        {"key": a.get("trait_type", ""), "value": str(a.get("value", ""))}
        for a in raw_metadata.get("attributes") or []
        if isinstance(a, dict)
    ]
    return NFTMetadata(
        token_id=token_id,
        name=nft.get("name") or raw_metadata.get("name") or f"NFT #{token_id}",
        description=nft.get("description") or raw_metadata.get("description") or "",
        image=image,
        contract=ContractRef(
            address=contract.get("address", ""),
            name=contract.get("name") or "Unknown Collection",
        ),
        attributes=attributes,
    )


def decode_token_uri_image(uri: Optional[str]) -> Optional[str]:
    """Extract the ``image`` field from an inline JSON token URI."""
    if not uri:
        return None
    try:
        if uri.startswith(JSON_BASE64_PREFIX):
            payload = base64.b64decode(uri[len(JSON_BASE64_PREFIX):]).decode("utf-8")
        elif uri.startswith(JSON_PLAIN_PREFIX):
            payload = unquote(uri[len(JSON_PLAIN_PREFIX):])
        elif uri.lstrip().startswith("{"):
            payload = uri
        else:
            return None
        metadata = json.loads(payload)
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        logger.debug(f"Could not decode token URI: {e}")
        return None
    image = metadata.get("image") if isinstance(metadata, dict) else None
    return image or None


class ImageResolver(ABC):
    """One source of an image URL for an NFT."""

    name = "resolver"

    @abstractmethod
    async def resolve(self, item: NFTMetadata) -> Optional[str]:
        ...


class RecordImageResolver(ImageResolver):
    """Image already present on the marketplace record."""

    name = "record"

    async def resolve(self, item: NFTMetadata) -> Optional[str]:
        return item.image or None


class OnChainTokenURIResolver(ImageResolver):
    """Reads ``tokenURI`` from the contract and decodes inline JSON."""

    name = "token_uri"

    def __init__(self, chain_client: ChainClient, contract_address: Optional[str] = None):
        self.chain_client = chain_client
        self.contract_address = contract_address

    async def resolve(self, item: NFTMetadata) -> Optional[str]:
        contract = self.contract_address or item.contract.address
        if not contract or not item.token_id:
            return None
        try:
            uri = await self.chain_client.read(
                contract, ERC721_METADATA_ABI, "tokenURI", [int(item.token_id)]
            )
        except (ContractCallReverted, ValueError) as e:
            logger.debug(f"tokenURI fallback failed for token {item.token_id}: {e}")
            return None
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            logger.warning(f"tokenURI read failed for token {item.token_id}: {type(e).__name__}: {e}")
            return None
        return decode_token_uri_image(uri)


@dataclass(frozen=True)
class ImageResolution:
    image: Optional[str]
    source: Optional[str]

    @property
    def exhausted(self) -> bool:
        return self.image is None


EXHAUSTED = ImageResolution(image=None, source=None)


class ImageResolverChain:
    """Tries resolvers in order and returns the first non-empty image."""

    def __init__(self, resolvers: Sequence[ImageResolver]):
        self.resolvers = list(resolvers)

    async def resolve(self, item: NFTMetadata) -> ImageResolution:
        for resolver in self.resolvers:
            image = await resolver.resolve(item)
            if image:
                return ImageResolution(image=image, source=resolver.name)
        return EXHAUSTED

    async def resolve_all(self, items: Sequence[NFTMetadata]) -> List[NFTMetadata]:
        """Return items with images filled in; items with no image anywhere are dropped."""
        resolved = []
        for item in items:
            resolution = await self.resolve(item)
            if resolution.exhausted:
                logger.debug(f"Dropping token {item.token_id}: no image after fallback")
                continue
            resolved.append(item if item.image == resolution.image else replace(item, image=resolution.image))
        return resolved


def default_resolver_chain(
    chain_client: Optional[ChainClient] = None, contract_address: Optional[str] = None
) -> ImageResolverChain:
    resolvers: List[ImageResolver] = [RecordImageResolver()]
    if chain_client is not None:
        resolvers.append(OnChainTokenURIResolver(chain_client, contract_address))
    return ImageResolverChain(resolvers)


@dataclass
class CollectionPage:
    items: List[NFTMetadata]
    continuation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"items": [i.to_dict() for i in self.items]}
        if self.continuation:
            data["continuation"] = self.continuation
        return data


class CollectionSource(ABC):
    """A paginated collection listing addressed by request URL, plus owner lookups."""

    @abstractmethod
    def collection_page_url(self, contract_address: str, continuation: Optional[str], size: int) -> str:
        ...

    @abstractmethod
    async def fetch_collection_page(self, url: str) -> CollectionPage:
        ...

    @abstractmethod
    async def get_nfts_for_owner(self, owner: str, contract_address: str) -> List[NFTMetadata]:
        """Tokens of ``contract_address`` held by ``owner``."""
