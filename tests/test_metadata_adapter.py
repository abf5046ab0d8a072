"""
Tests for marketplace record normalization and image resolution.
"""

import base64
import json

import httpx
import pytest
from web3.exceptions import BadFunctionCallOutput, Web3RPCError

from geoplet.exceptions import ConfigurationError, ContractCallReverted, MarketplaceAPIError
from geoplet.integrations.marketplace.metadata import (
    ContractRef,
    NFTMetadata,
    decode_token_uri_image,
    default_resolver_chain,
    normalize_alchemy_nft,
    normalize_rarible_item,
    strip_chain_prefix,
)
from geoplet.integrations.marketplace.alchemy_client import AlchemyNFTClient
from geoplet.integrations.marketplace.rarible_client import RaribleAPIClient
from tests.factories import WARPLETS_CONTRACT, FakeChainClient

RARIBLE_ITEM = {
    "id": f"BASE:{WARPLETS_CONTRACT}:7",
    "contract": f"BASE:{WARPLETS_CONTRACT}",
    "tokenId": "7",
    "ownerIfSingle": "ETHEREUM:0xowner",
    "itemCollection": {"name": "Warplets"},
    "meta": {
        "name": "Warplet #7",
        "description": "A warplet",
        "content": [
            {"@type": "VIDEO", "url": "https://cdn.example/7.mp4"},
            {"@type": "IMAGE", "url": "https://cdn.example/7.png"},
        ],
        "attributes": [{"key": "eyes", "value": "laser"}],
    },
}


def item(token_id: str, image: str = "") -> NFTMetadata:
    return NFTMetadata(
        token_id=token_id, name=f"#{token_id}", description="", image=image,
        contract=ContractRef(address=WARPLETS_CONTRACT),
    )


def token_uri(image: str) -> str:
    payload = base64.b64encode(json.dumps({"name": "x", "image": image}).encode()).decode()
    return "data:application/json;base64," + payload


class TestNormalization:
    def test_rarible_item(self):
        nft = normalize_rarible_item(RARIBLE_ITEM)

        assert nft.token_id == "7"
        assert nft.image == "https://cdn.example/7.png"
        assert nft.contract.address == WARPLETS_CONTRACT
        assert nft.contract.name == "Warplets"
        assert nft.owner == "0xowner"
        assert nft.attributes == [{"key": "eyes", "value": "laser"}]

    def test_rarible_item_defaults(self):
        nft = normalize_rarible_item({"id": f"BASE:{WARPLETS_CONTRACT}:9", "tokenId": "9"})

        assert nft.name == "NFT #9"
        assert nft.image == ""
        assert nft.contract.address == WARPLETS_CONTRACT
        assert nft.contract.name == "Unknown Collection"

    def test_alchemy_nft_prefers_cached_image(self):
        nft = normalize_alchemy_nft({
            "tokenId": "3",
            "name": "Geoplet #3",
            "image": {"cachedUrl": "https://nft-cdn.alchemy.com/3.png", "originalUrl": "ipfs://3"},
            "contract": {"address": WARPLETS_CONTRACT, "name": "Geoplets"},
            "raw": {"metadata": {"attributes": [{"trait_type": "shape", "value": 5}]}},
        })

        assert nft.image == "https://nft-cdn.alchemy.com/3.png"
        assert nft.attributes == [{"key": "shape", "value": "5"}]

    def test_alchemy_falls_back_to_raw_metadata(self):
        nft = normalize_alchemy_nft({"tokenId": "4", "raw": {"metadata": {"image": "data:image/webp;base64,AA"}}})
        assert nft.image == "data:image/webp;base64,AA"
        assert nft.name == "NFT #4"

    def test_camel_case_dict(self):
        data = normalize_rarible_item(RARIBLE_ITEM).to_dict()
        assert data["tokenId"] == "7"
        assert data["contract"]["address"] == WARPLETS_CONTRACT

    def test_strip_chain_prefix(self):
        assert strip_chain_prefix("BASE:0xabc") == "0xabc"
        assert strip_chain_prefix("0xabc") == "0xabc"
        assert strip_chain_prefix(None) is None


class TestTokenURIDecoding:
    def test_base64_json(self):
        assert decode_token_uri_image(token_uri("data:image/webp;base64,AA")) == "data:image/webp;base64,AA"

    def test_plain_json(self):
        assert decode_token_uri_image('data:application/json,{"image":"https://x/y.png"}') == "https://x/y.png"

    @pytest.mark.parametrize("uri", [None, "", "ipfs://abc", "data:application/json;base64,!!!", '{"name": "no image"}'])
    def test_undecodable(self, uri):
        assert decode_token_uri_image(uri) is None


class TestResolverChain:
    """Record image first, then on-chain tokenURI, else exhausted."""

    @pytest.mark.asyncio
    async def test_record_image_wins(self):
        chain = FakeChainClient(reads={"tokenURI": token_uri("onchain")})
        resolution = await default_resolver_chain(chain).resolve(item("1", "https://cdn/1.png"))

        assert resolution.image == "https://cdn/1.png"
        assert resolution.source == "record"
        assert chain.calls == []

    @pytest.mark.asyncio
    async def test_falls_back_to_token_uri(self):
        chain = FakeChainClient(reads={"tokenURI": token_uri("data:image/webp;base64,BB")})
        resolution = await default_resolver_chain(chain).resolve(item("2"))

        assert resolution.image == "data:image/webp;base64,BB"
        assert resolution.source == "token_uri"
        assert chain.calls == [("read", "tokenURI", [2])]

    @pytest.mark.asyncio
    async def test_exhausted_when_nothing_resolves(self):
        chain = FakeChainClient(reads={"tokenURI": ContractCallReverted("nonexistent token")})
        resolution = await default_resolver_chain(chain).resolve(item("3"))
        assert resolution.exhausted
        assert resolution.source is None

    @pytest.mark.asyncio
    async def test_resolve_all_drops_exhausted_and_fills_images(self):
        chain = FakeChainClient(reads={"tokenURI": lambda token_id: token_uri("img") if token_id == 2 else None})
        items = [item("1", "https://cdn/1.png"), item("2"), item("3")]

        resolved = await default_resolver_chain(chain).resolve_all(items)

        assert [(i.token_id, i.image) for i in resolved] == [("1", "https://cdn/1.png"), ("2", "img")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            BadFunctionCallOutput("Could not decode contract function call"),
            Web3RPCError("header not found"),
            ConnectionResetError("connection reset by peer"),
        ],
    )
    async def test_node_errors_drop_the_item(self, error):
        chain = FakeChainClient(reads={"tokenURI": error})

        resolved = await default_resolver_chain(chain).resolve_all([item("1", "https://cdn/1.png"), item("2")])

        assert [i.token_id for i in resolved] == ["1"]

    @pytest.mark.asyncio
    async def test_without_chain_only_records(self):
        resolved = await default_resolver_chain().resolve_all([item("1"), item("2", "x")])
        assert [i.token_id for i in resolved] == ["2"]


class TestRaribleClient:
    @pytest.mark.asyncio
    async def test_get_item_and_missing(self):
        seen = []

        def handler(request):
            seen.append(request)
            if request.url.path.endswith(":7"):
                return httpx.Response(200, json=RARIBLE_ITEM)
            return httpx.Response(404, json={"code": "NOT_FOUND"})

        client = RaribleAPIClient("key", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        nft = await client.get_item(WARPLETS_CONTRACT, "7")
        missing = await client.get_item(WARPLETS_CONTRACT, "8")

        assert nft.token_id == "7"
        assert missing is None
        assert seen[0].headers["X-API-KEY"] == "key"

    @pytest.mark.asyncio
    async def test_collection_page(self):
        def handler(request):
            assert request.url.params["collection"] == f"BASE:{WARPLETS_CONTRACT}"
            assert request.url.params["continuation"] == "abc"
            return httpx.Response(200, json={"items": [RARIBLE_ITEM], "continuation": "def"})

        client = RaribleAPIClient("key", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        url = client.collection_page_url(WARPLETS_CONTRACT, "abc", 20)

        page = await client.fetch_collection_page(url)

        assert [i.token_id for i in page.items] == ["7"]
        assert page.continuation == "def"

    @pytest.mark.asyncio
    async def test_client_error_raises(self):
        client = RaribleAPIClient(
            "key", client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(403)))
        )
        with pytest.raises(MarketplaceAPIError) as exc_info:
            await client.get_item(WARPLETS_CONTRACT, "7")
        assert exc_info.value.status_code == 403


class TestAlchemyClient:
    ALCHEMY_NFT = {
        "tokenId": "3",
        "name": "Warplet #3",
        "image": {"cachedUrl": "https://nft-cdn.alchemy.com/3.png"},
        "contract": {"address": WARPLETS_CONTRACT, "name": "Warplets"},
    }

    def make_client(self, handler, api_key="alchemy-key"):
        return AlchemyNFTClient(api_key, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    @pytest.mark.asyncio
    async def test_collection_page_uses_page_key(self):
        def handler(request):
            assert request.url.path.endswith("/alchemy-key/getNFTsForContract")
            assert request.url.params["contractAddress"] == WARPLETS_CONTRACT
            assert request.url.params["pageKey"] == "p1"
            assert request.url.params["limit"] == "20"
            return httpx.Response(200, json={"nfts": [self.ALCHEMY_NFT], "pageKey": "p2"})

        client = self.make_client(handler)
        page = await client.fetch_collection_page(client.collection_page_url(WARPLETS_CONTRACT, "p1", 20))

        assert [i.token_id for i in page.items] == ["3"]
        assert page.items[0].image == "https://nft-cdn.alchemy.com/3.png"
        assert page.continuation == "p2"

    @pytest.mark.asyncio
    async def test_last_page_has_no_continuation(self):
        client = self.make_client(lambda r: httpx.Response(200, json={"nfts": []}))
        page = await client.fetch_collection_page(client.collection_page_url(WARPLETS_CONTRACT, None, 20))

        assert page.items == []
        assert page.continuation is None

    @pytest.mark.asyncio
    async def test_owner_query(self):
        def handler(request):
            assert request.url.path.endswith("/getNFTsForOwner")
            assert request.url.params["owner"] == "0xowner"
            return httpx.Response(200, json={"ownedNfts": [self.ALCHEMY_NFT]})

        nfts = await self.make_client(handler).get_nfts_for_owner("0xowner", WARPLETS_CONTRACT)
        assert [n.name for n in nfts] == ["Warplet #3"]

    @pytest.mark.asyncio
    async def test_client_error_raises(self):
        client = self.make_client(lambda r: httpx.Response(401, text="bad key"))
        with pytest.raises(MarketplaceAPIError) as exc_info:
            await client.fetch_collection_page(client.collection_page_url(WARPLETS_CONTRACT, None, 20))
        assert exc_info.value.status_code == 401

    def test_missing_key(self):
        client = self.make_client(lambda r: httpx.Response(200), api_key=None)

        assert not client.is_configured()
        with pytest.raises(ConfigurationError):
            client.collection_page_url(WARPLETS_CONTRACT, None, 20)
