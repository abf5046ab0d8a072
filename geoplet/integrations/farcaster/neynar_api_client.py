#!/usr/bin/env python3
"""
Neynar API Client for Farcaster

Used by admin outreach: publish casts from the app's signer, look up the
signer, and resolve FIDs to usernames.
"""
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from ...exceptions import FarcasterIntegrationError

logger = logging.getLogger(__name__)


class NeynarAPIError(FarcasterIntegrationError):
    """Base exception for Neynar API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, details={"status_code": status_code})


class NeynarNetworkError(NeynarAPIError):
    """Network-related errors when connecting to Neynar API."""
    pass


class NeynarRateLimitError(NeynarAPIError):
    """Rate limit exceeded error."""
    pass


class NeynarAPIClient:
    """
    A client for making requests to the Neynar Farcaster API.
    """

    DEFAULT_BASE_URL = "https://api.neynar.com/v2"

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ValueError("API key is required for NeynarAPIClient.")
        self.api_key = api_key
        self.base_url = base_url or self.DEFAULT_BASE_URL
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=timeout, connect=10.0),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            transport=httpx.AsyncHTTPTransport(retries=1),
        )

        self.rate_limit_info: Dict[str, Any] = {
            "limit": None,
            "remaining": None,
            "reset": None,
            "last_updated_client": 0.0,
        }

    def _get_headers(self, is_post: bool = False) -> Dict[str, str]:
        headers = {
            "accept": "application/json",
            "x-api-key": self.api_key,
        }
        if is_post:
            headers["content-type"] = "application/json"
        return headers

    def _delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
        json_data: Optional[Dict] = None,
    ) -> httpx.Response:
        """Make HTTP request with exponential backoff retry logic."""
        url = f"{self.base_url}{endpoint}"
        headers = self._get_headers(is_post=(method.upper() == "POST"))

        for attempt in range(self.max_retries + 1):
            is_last_attempt = attempt >= self.max_retries
            try:
                logger.debug(
                    f"Making {method.upper()} request to {url} (attempt {attempt + 1}/{self.max_retries + 1})"
                )
                response = await self._client.request(
                    method, url, params=params, json=json_data, headers=headers
                )
            except (httpx.TimeoutException, httpx.TransportError) as e:
                logger.warning(f"Network error for {method.upper()} {url}: {e}")
                if is_last_attempt:
                    raise NeynarNetworkError(f"Network error after {self.max_retries} retries: {e}") from e
                await asyncio.sleep(self._delay(attempt))
                continue

            self._update_rate_limits(response)

            if response.status_code == 429:
                retry_after = response.headers.get("retry-after")
                retry_delay = int(retry_after) if retry_after and retry_after.isdigit() else self._delay(attempt)
                logger.warning(f"Rate limited by Neynar API. Retrying after {retry_delay} seconds.")
                if is_last_attempt:
                    raise NeynarRateLimitError(
                        f"Rate limit exceeded after {self.max_retries} retries", status_code=429
                    )
                await asyncio.sleep(retry_delay)
                continue

            if 500 <= response.status_code < 600:
                logger.warning(f"Server error {response.status_code} for {method.upper()} {url}")
                if is_last_attempt:
                    raise NeynarAPIError(
                        f"Server error after {self.max_retries} retries: {response.status_code}",
                        status_code=response.status_code,
                    )
                await asyncio.sleep(self._delay(attempt))
                continue

            if response.status_code >= 400:
                # Client errors (4xx) - don't retry
                logger.error(f"Client error {response.status_code} for {method.upper()} {url}: {response.text}")
                raise NeynarAPIError(
                    f"Client error: {response.status_code} - {response.text}",
                    status_code=response.status_code,
                )

            return response

        raise NeynarNetworkError(f"Failed after {self.max_retries} retries")

    def _update_rate_limits(self, response: httpx.Response):
        """Store x-ratelimit-* header values from the last response."""
        limit_hdr = response.headers.get("x-ratelimit-limit")
        remaining_hdr = response.headers.get("x-ratelimit-remaining")
        reset_hdr = response.headers.get("x-ratelimit-reset")

        try:
            if limit_hdr:
                self.rate_limit_info["limit"] = int(limit_hdr)
            if remaining_hdr:
                remaining = int(remaining_hdr)
                self.rate_limit_info["remaining"] = remaining
                if remaining < 10:
                    logger.warning(f"Farcaster API rate limit approaching: {remaining} requests remaining")
            if reset_hdr:
                self.rate_limit_info["reset"] = int(reset_hdr)
        except ValueError:
            logger.debug(f"NeynarAPIClient: Could not parse rate limit headers: {dict(response.headers)}")
            return

        if limit_hdr or remaining_hdr or reset_hdr:
            self.rate_limit_info["last_updated_client"] = time.time()

    async def health_check(self) -> bool:
        """Perform a lightweight health check of the API."""
        try:
            response = await self._make_request("GET", "/farcaster/channel/list", {"limit": 1})
            return response.status_code == 200
        except NeynarAPIError as e:
            logger.warning(f"Health check failed: {e}")
            return False

    async def close(self):
        """Close the HTTP client connection."""
        await self._client.aclose()

    async def publish_cast(
        self,
        text: str,
        signer_uuid: str,
        embeds: Optional[List[Dict]] = None,
        channel_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not signer_uuid:
            raise ValueError("signer_uuid is required to publish a cast.")
        payload: Dict[str, Any] = {"text": text, "signer_uuid": signer_uuid}
        if channel_id:
            payload["channel_id"] = channel_id
        if embeds:
            payload["embeds"] = embeds

        response = await self._make_request("POST", "/farcaster/cast", json_data=payload)
        return response.json()

    async def lookup_signer(self, signer_uuid: str) -> Dict[str, Any]:
        """Fetch signer status (``approved``, ``pending_approval``, ``revoked``) and its FID."""
        response = await self._make_request(
            "GET", "/farcaster/signer", params={"signer_uuid": signer_uuid}
        )
        return response.json()

    async def get_users_by_fids(self, fids: List[int]) -> List[Dict[str, Any]]:
        """
        Fetches user details for a list of FIDs.
        Corresponds to: https://docs.neynar.com/reference/fetch-bulk-users
        """
        if not fids:
            return []
        params = {"fids": ",".join(map(str, fids))}
        response = await self._make_request("GET", "/farcaster/user/bulk", params=params)
        return response.json().get("users", [])
