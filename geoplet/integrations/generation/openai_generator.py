"""
Geometric art generation with OpenAI image edits.

The source Warplet image is transformed by gpt-image-1, then shrunk to a
512x512 WebP that fits the on-chain storage ceiling. Upstream failures are
mapped to GenerationErrorCode values and are never retried automatically.
"""

import base64
import io
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence
from urllib.parse import urlparse

import httpx
import openai
from openai import AsyncOpenAI
from PIL import Image, ImageOps, UnidentifiedImageError

from ...core.artifact import MAX_ARTIFACT_BYTES, WEBP_DATA_URI_PREFIX, GeneratedArtifact, payload_size
from ...core.error_codes import GenerationErrorCode
from ...exceptions import ArtifactTooLarge, ConfigurationError, FetchTimeoutError, GenerationError
from ...utils.fetch_utils import fetch_with_retry

logger = logging.getLogger(__name__)

ALLOWED_SOURCE_DOMAINS = (
    "base-mainnet.g.alchemy.com",
    "nft-cdn.alchemy.com",
    "ipfs.io",
    "gateway.pinata.cloud",
    "res.cloudinary.com",
    "imagedelivery.net",
)

GEOMETRIC_PROMPT = """Transform this image into bauhaus and suprematism geometric art style with these strict rules:
- Use solid flat colors with subtle shading between shapes to create 3D depth
- Use clean sharp edges and straight lines
- Keep the character's exact pose as shown in reference image
- Keep the character's exact body shape as shown in reference image
- Plain solid pastel color background with more empty space around the smaller character"""

QUALITY_STEPS = (85, 75, 65, 55, 45, 35)


@dataclass
class GeneratorAvailability:
    """Result of a pre-generation check against the image API."""

    available: bool
    reason: Optional[str] = None
    checked_at: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"available": self.available, "checkedAt": self.checked_at}
        if self.reason:
            data["reason"] = self.reason
        return data


def is_allowed_source(url: str, allowed: Sequence[str] = ALLOWED_SOURCE_DOMAINS) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return False
    host = parsed.hostname.lower()
    return any(host == domain or host.endswith(f".{domain}") for domain in allowed)


def compress_to_webp(
    image_bytes: bytes,
    dimension: int = 512,
    max_bytes: int = MAX_ARTIFACT_BYTES,
    start_quality: int = 85,
) -> str:
    """
    Fit the image into a transparent ``dimension`` square and encode as WebP.

    Quality steps down until the data URI fits ``max_bytes``.
    """
    try:
        source = Image.open(io.BytesIO(image_bytes))
        source.load()
    except (UnidentifiedImageError, OSError) as e:
        raise GenerationError(
            "Generated image could not be decoded", code=GenerationErrorCode.IMAGE_PROCESSING_FAILED
        ) from e

    fitted = ImageOps.contain(source.convert("RGBA"), (dimension, dimension))
    canvas = Image.new("RGBA", (dimension, dimension), (0, 0, 0, 0))
    canvas.paste(fitted, ((dimension - fitted.width) // 2, (dimension - fitted.height) // 2))

    data_uri = ""
    for quality in [q for q in QUALITY_STEPS if q <= start_quality] or [start_quality]:
        buffer = io.BytesIO()
        canvas.save(buffer, format="WEBP", quality=quality, method=6)
        data_uri = WEBP_DATA_URI_PREFIX + base64.b64encode(buffer.getvalue()).decode("ascii")
        if payload_size(data_uri) <= max_bytes:
            logger.debug(f"Compressed to {payload_size(data_uri) / 1024:.2f}KB at quality {quality}")
            return data_uri

    raise ArtifactTooLarge(payload_size(data_uri), max_bytes)


class GeometricArtGenerator:
    """Produces GeneratedArtifacts from Warplet images."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-image-1",
        output_dimension: int = 512,
        webp_quality: int = 85,
        max_artifact_bytes: int = MAX_ARTIFACT_BYTES,
        timeout: float = 120.0,
        http_client: Optional[httpx.AsyncClient] = None,
        openai_client: Optional[AsyncOpenAI] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.output_dimension = output_dimension
        self.webp_quality = webp_quality
        self.max_artifact_bytes = max_artifact_bytes
        self._http = http_client or httpx.AsyncClient()
        self._openai = openai_client
        if self._openai is None and api_key:
            self._openai = AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def is_configured(self) -> bool:
        return self._openai is not None

    async def _download_source(self, image_url: str) -> bytes:
        if not is_allowed_source(image_url):
            raise GenerationError(
                f"Invalid image URL domain: {urlparse(image_url).hostname}",
                code=GenerationErrorCode.INVALID_PROMPT,
            )
        try:
            response = await fetch_with_retry(image_url, client=self._http, timeout=15.0)
        except FetchTimeoutError as e:
            raise GenerationError(code=GenerationErrorCode.IMAGE_DOWNLOAD_FAILED) from e
        if response.status_code != 200:
            raise GenerationError(
                f"Failed to fetch image: {response.status_code}",
                code=GenerationErrorCode.IMAGE_DOWNLOAD_FAILED,
            )
        return response.content

    async def _edit(self, source: bytes) -> Optional[str]:
        response = await self._openai.images.edit(
            model=self.model,
            image=("warplet.png", source, "image/png"),
            prompt=GEOMETRIC_PROMPT,
            n=1,
            size="1024x1024",
        )
        if not response.data:
            return None
        return response.data[0].b64_json

    async def generate(self, image_url: str, token_id: str, name: Optional[str] = None) -> GeneratedArtifact:
        if not self.is_configured():
            raise ConfigurationError("OpenAI API key is not configured")

        logger.info(f"Generating geometric art for {name or f'Warplet #{token_id}'}")
        source = await self._download_source(image_url)

        try:
            b64_json = await self._edit(source)
            if not b64_json:
                logger.warning("Empty response from image model, retrying once")
                b64_json = await self._edit(source)
        except openai.APITimeoutError as e:
            raise GenerationError(code=GenerationErrorCode.OPENAI_TIMEOUT) from e
        except openai.RateLimitError as e:
            if getattr(e, "code", None) == "insufficient_quota" or "quota" in str(e).lower():
                raise GenerationError(
                    "Image generation credits are exhausted. Please try again later.",
                    code=GenerationErrorCode.OPENAI_API_ERROR,
                ) from e
            raise GenerationError(code=GenerationErrorCode.OPENAI_RATE_LIMIT) from e
        except openai.BadRequestError as e:
            text = str(e).lower()
            if "safety" in text or "content_policy" in text or "moderation" in text:
                raise GenerationError(code=GenerationErrorCode.CONTENT_POLICY_VIOLATION) from e
            raise GenerationError(code=GenerationErrorCode.GENERATION_FAILED) from e
        except openai.APIError as e:
            logger.error(f"OpenAI image edit failed: {e}")
            raise GenerationError(code=GenerationErrorCode.OPENAI_API_ERROR) from e

        if not b64_json:
            raise GenerationError("No image data returned by the image model")

        image_data = compress_to_webp(
            base64.b64decode(b64_json),
            dimension=self.output_dimension,
            max_bytes=self.max_artifact_bytes,
            start_quality=self.webp_quality,
        )
        logger.info(f"Generated {payload_size(image_data) / 1024:.2f}KB artwork for token {token_id}")
        return GeneratedArtifact(image_data=image_data, prompt=GEOMETRIC_PROMPT, model=self.model)

    async def check_availability(self) -> GeneratorAvailability:
        """Checks the API key, credits and reachability with a model listing."""
        if not self.is_configured():
            return GeneratorAvailability(False, "OpenAI API key not configured")
        try:
            await self._openai.models.list()
        except openai.AuthenticationError as e:
            logger.error(f"OpenAI rejected the API key: {e}")
            return GeneratorAvailability(False, "OpenAI API key rejected")
        except openai.RateLimitError as e:
            logger.warning(f"OpenAI availability check rate limited: {e}")
            if getattr(e, "code", None) == "insufficient_quota":
                return GeneratorAvailability(False, "OpenAI credits exhausted")
            return GeneratorAvailability(False, "OpenAI rate limit reached")
        except openai.APIConnectionError as e:
            logger.warning(f"OpenAI unreachable: {e}")
            return GeneratorAvailability(False, "OpenAI service unreachable")
        except openai.APIError as e:
            logger.warning(f"OpenAI availability check failed: {e}")
            return GeneratorAvailability(False, "OpenAI service error")
        return GeneratorAvailability(True)

    async def close(self):
        await self._http.aclose()
        if self._openai is not None:
            await self._openai.close()
