"""
Paginated gallery feed over a marketplace collection listing.

Pages are requested with an opaque continuation token and appended in
arrival order. Responses are cached by request URL for five minutes.
"""

import logging
import time
from typing import Callable, List, Optional, Set

from cachetools import TTLCache

from ..integrations.marketplace.metadata import (
    CollectionPage,
    CollectionSource,
    ImageResolverChain,
    NFTMetadata,
    default_resolver_chain,
)

logger = logging.getLogger(__name__)


class ResponseCache:
    """URL-keyed cache of collection pages with a freshness window."""

    def __init__(self, ttl_seconds: float = 300, maxsize: int = 256, timer: Callable[[], float] = time.monotonic):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=timer)

    def get(self, url: str) -> Optional[CollectionPage]:
        return self._cache.get(url)

    def set(self, url: str, page: CollectionPage) -> None:
        self._cache[url] = page

    def clear(self) -> None:
        self._cache.clear()

    def __contains__(self, url: str) -> bool:
        return url in self._cache


class GalleryFeed:
    """Append-only list of collection items loaded page by page."""

    def __init__(
        self,
        source: CollectionSource,
        contract_address: str,
        page_size: int = 20,
        cache: Optional[ResponseCache] = None,
        resolver_chain: Optional[ImageResolverChain] = None,
    ):
        self.source = source
        self.contract_address = contract_address
        self.page_size = page_size
        self.cache = cache if cache is not None else ResponseCache()
        self.resolver_chain = resolver_chain or default_resolver_chain()

        self.items: List[NFTMetadata] = []
        self.continuation: Optional[str] = None
        self.is_loading = False
        self.error: Optional[Exception] = None
        self._loaded_once = False
        self._seen_token_ids: Set[str] = set()

    @property
    def has_more(self) -> bool:
        return not self._loaded_once or self.continuation is not None

    async def fetch_page(self, continuation: Optional[str]) -> CollectionPage:
        """Fetch one page (cached by URL) with images resolved."""
        url = self.source.collection_page_url(self.contract_address, continuation, self.page_size)
        cached = self.cache.get(url)
        if cached is not None:
            logger.debug(f"Gallery cache hit: {url}")
            return cached

        page = await self.source.fetch_collection_page(url)
        items = await self.resolver_chain.resolve_all(page.items)
        page = CollectionPage(items=items, continuation=page.continuation)
        self.cache.set(url, page)
        return page

    def _append(self, items: List[NFTMetadata]) -> int:
        added = 0
        for item in items:
            if item.token_id in self._seen_token_ids:
                continue
            self._seen_token_ids.add(item.token_id)
            self.items.append(item)
            added += 1
        return added

    async def load_initial(self) -> List[NFTMetadata]:
        """(Re)load the first page, discarding what was loaded before."""
        if self.is_loading:
            return self.items
        self.items = []
        self._seen_token_ids = set()
        self.continuation = None
        self._loaded_once = False
        await self._load(None)
        return self.items

    async def load_more(self) -> List[NFTMetadata]:
        """
        Load the next page.

        No-op while a page is in flight or when no continuation remains.
        """
        if self.is_loading:
            logger.debug("Gallery load_more ignored: page already in flight")
            return []
        if not self._loaded_once:
            return await self._load(None)
        if not self.continuation:
            return []
        return await self._load(self.continuation)

    async def _load(self, continuation: Optional[str]) -> List[NFTMetadata]:
        self.is_loading = True
        self.error = None
        try:
            page = await self.fetch_page(continuation)
        except Exception as e:
            self.error = e
            logger.error(f"Gallery page load failed: {e}")
            raise
        finally:
            self.is_loading = False

        before = len(self.items)
        self._append(page.items)
        self.continuation = page.continuation
        self._loaded_once = True
        logger.debug(f"Gallery loaded {len(self.items) - before} items (continuation: {bool(self.continuation)})")
        return self.items[before:]
