"""
Image proxy: fetch an allow-listed remote image and serve it as a bounded PNG.
"""

import io
import logging
from typing import Optional, Sequence
from urllib.parse import urlparse

import httpx
from PIL import Image, UnidentifiedImageError

from ..exceptions import FetchTimeoutError, GeopletError
from ..utils.fetch_utils import fetch_with_retry

logger = logging.getLogger(__name__)

ALLOWED_PROXY_HOSTS = (
    "nft-cdn.alchemy.com",
    "res.cloudinary.com",
    "ipfs.raribleuserdata.com",
    "api.rarible.org",
    "imagedelivery.net",
    "ipfs.io",
    "gateway.pinata.cloud",
)

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, s-maxage=31536000, immutable"


class ImageProxyError(GeopletError):
    """Proxy failure carrying the HTTP status to answer with."""

    def __init__(self, message: str, status_code: int):
        self.status_code = status_code
        super().__init__(message, details={"status_code": status_code})


class ImageProxy:
    def __init__(
        self,
        allowed_hosts: Sequence[str] = ALLOWED_PROXY_HOSTS,
        max_dimension: int = 800,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.allowed_hosts = tuple(h.lower() for h in allowed_hosts)
        self.max_dimension = max_dimension
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(follow_redirects=False)

    def validate_url(self, url: Optional[str]) -> str:
        if not url:
            raise ImageProxyError("Missing url parameter", 400)
        try:
            parsed = urlparse(url)
        except ValueError:
            raise ImageProxyError("Invalid url parameter", 400)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ImageProxyError("Invalid url parameter", 400)
        if parsed.hostname.lower() not in self.allowed_hosts:
            logger.warning(f"Image proxy refused host {parsed.hostname}")
            raise ImageProxyError("Domain not allowed", 403)
        return url

    def transcode(self, data: bytes) -> bytes:
        """Fit inside max_dimension x max_dimension (never enlarging) and encode as PNG."""
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise ImageProxyError("Upstream returned an unreadable image", 502) from e

        if image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGBA")
        image.thumbnail((self.max_dimension, self.max_dimension))

        out = io.BytesIO()
        image.save(out, format="PNG", optimize=True)
        return out.getvalue()

    async def fetch_and_transcode(self, url: Optional[str]) -> bytes:
        url = self.validate_url(url)
        try:
            response = await fetch_with_retry(url, client=self._client, timeout=self.timeout)
        except FetchTimeoutError as e:
            raise ImageProxyError("Failed to fetch image", 502) from e
        if response.status_code != 200:
            logger.warning(f"Image proxy upstream {response.status_code} for {url}")
            raise ImageProxyError(f"Failed to fetch image: {response.status_code}", 502)
        return self.transcode(response.content)

    async def close(self):
        await self._client.aclose()
