"""
Dependency injection for the API server.

The container owns every service the routes use. Services that need
credentials are only built when those credentials are configured;
requesting a missing one raises ConfigurationError, which the API turns
into a 503.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Depends, Request

from ..chain.client import ChainClient, Web3ChainClient
from ..chain.contracts import GEOPLET_ABI
from ..chain.voucher import VoucherSigner
from ..config import AppConfig
from ..core.persistence import (
    DatabaseManager,
    GenerationRepository,
    PaymentTrackingRepository,
)
from ..core.rate_limiter import FixedWindowRateLimiter
from ..exceptions import ConfigurationError
from ..integrations.farcaster.neynar_api_client import NeynarAPIClient
from ..integrations.generation.openai_generator import GeneratorAvailability, GeometricArtGenerator
from ..integrations.marketplace.alchemy_client import AlchemyNFTClient
from ..integrations.marketplace.metadata import (
    CollectionSource,
    ImageResolverChain,
    default_resolver_chain,
)
from ..integrations.marketplace.rarible_client import RaribleAPIClient
from ..integrations.payment.facilitator_client import FacilitatorClient
from ..pipeline.voucher_issuer import VoucherIssuer
from ..services.gallery import ResponseCache
from ..services.image_proxy import ImageProxy
from ..services.outreach import OutreachService
from .security import APIKeyAuth

logger = logging.getLogger(__name__)


class DependencyContainer:
    """Container for managing API dependencies."""

    def __init__(
        self,
        config: AppConfig,
        db_manager: Optional[DatabaseManager] = None,
        chain_client: Optional[ChainClient] = None,
        facilitator: Optional[FacilitatorClient] = None,
        voucher_issuer: Optional[VoucherIssuer] = None,
        generator: Optional[GeometricArtGenerator] = None,
        rarible: Optional[RaribleAPIClient] = None,
        gallery_source: Optional[CollectionSource] = None,
        gallery_cache: Optional[ResponseCache] = None,
        resolver_chain: Optional[ImageResolverChain] = None,
        neynar: Optional[NeynarAPIClient] = None,
        image_proxy: Optional[ImageProxy] = None,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
    ):
        self.config = config
        self.db_manager = db_manager or DatabaseManager(config.storage.database_url)
        self.generations = GenerationRepository(self.db_manager)
        self.payments = PaymentTrackingRepository(self.db_manager)

        self._chain_client = chain_client
        self._facilitator = facilitator
        self._voucher_issuer = voucher_issuer
        self._generator = generator
        self._rarible = rarible
        self._gallery_source = gallery_source
        self.gallery_cache = gallery_cache or ResponseCache(config.marketplace.cache_ttl_seconds)
        self.resolver_chain = resolver_chain or default_resolver_chain(chain_client)
        self.outreach = OutreachService(self.generations, neynar, config.farcaster)
        self.image_proxy = image_proxy or ImageProxy(
            max_dimension=config.security.image_proxy_max_dimension
        )
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter(
            max_requests=config.rate_limit.max_requests,
            window_seconds=config.rate_limit.window_seconds,
        )
        self.admin_auth = APIKeyAuth(config.security.admin_keys)
        self.optional_admin_auth = APIKeyAuth(config.security.admin_keys, auto_error=False)

    @classmethod
    def from_settings(cls, config: AppConfig) -> "DependencyContainer":
        """Build real clients for everything the configuration enables."""
        db_manager = DatabaseManager(config.storage.database_url)
        chain_client = Web3ChainClient(config.chain.rpc_url, config.chain.chain_id)

        facilitator = FacilitatorClient(
            config.payment.facilitator_api_key,
            base_url=config.payment.facilitator_url,
            network=config.payment.network,
            priority=config.payment.priority,
            timeout=config.payment.facilitator_timeout,
        )

        voucher_issuer = None
        missing = config.missing_minting_credentials()
        if missing:
            logger.warning(f"Voucher issuance disabled; missing {', '.join(missing)}")
        else:
            signer = VoucherSigner(
                config.voucher.signer_private_key,
                config.chain.chain_id,
                config.chain.geoplet_contract_address,
                name=config.voucher.eip712_name,
                version=config.voucher.eip712_version,
            )
            voucher_issuer = VoucherIssuer(
                signer, chain_client, facilitator, PaymentTrackingRepository(db_manager), config
            )

        generator = GeometricArtGenerator(
            config.generation.openai_api_key,
            model=config.generation.model,
            output_dimension=config.generation.output_dimension,
            webp_quality=config.generation.webp_quality,
            max_artifact_bytes=config.generation.max_artifact_bytes,
            timeout=config.generation.request_timeout,
        )

        rarible = RaribleAPIClient(config.marketplace.rarible_api_key, config.marketplace.rarible_base_url)
        if config.marketplace.gallery_source == "alchemy":
            gallery_source: CollectionSource = AlchemyNFTClient(
                config.marketplace.alchemy_api_key, config.marketplace.alchemy_base_url
            )
        else:
            gallery_source = rarible

        neynar = None
        if config.farcaster.neynar_api_key:
            neynar = NeynarAPIClient(
                api_key=config.farcaster.neynar_api_key,
                base_url=config.farcaster.neynar_base_url,
                max_retries=config.farcaster.api_max_retries,
                base_delay=config.farcaster.api_base_delay,
                max_delay=config.farcaster.api_max_delay,
                timeout=config.farcaster.api_timeout,
            )

        return cls(
            config=config,
            db_manager=db_manager,
            chain_client=chain_client,
            facilitator=facilitator,
            voucher_issuer=voucher_issuer,
            generator=generator,
            rarible=rarible,
            gallery_source=gallery_source,
            neynar=neynar,
        )

    @property
    def chain_client(self) -> ChainClient:
        if self._chain_client is None:
            raise ConfigurationError("Chain client not configured")
        return self._chain_client

    @property
    def facilitator(self) -> FacilitatorClient:
        if self._facilitator is None or not self._facilitator.is_configured():
            raise ConfigurationError("Payment facilitator not configured")
        return self._facilitator

    @property
    def voucher_issuer(self) -> VoucherIssuer:
        if self._voucher_issuer is None:
            raise ConfigurationError(
                "Voucher issuance not configured",
                details={"missing": self.config.missing_minting_credentials()},
            )
        return self._voucher_issuer

    @property
    def generator(self) -> GeometricArtGenerator:
        if self._generator is None or not self._generator.is_configured():
            raise ConfigurationError("Image generation not configured")
        return self._generator

    @property
    def rarible(self) -> RaribleAPIClient:
        if self._rarible is None or not self._rarible.is_configured():
            raise ConfigurationError("Rarible API key not configured")
        return self._rarible

    def _gallery_configured(self) -> bool:
        if self._gallery_source is None:
            return False
        is_configured = getattr(self._gallery_source, "is_configured", None)
        return is_configured is None or bool(is_configured())

    @property
    def gallery_source(self) -> CollectionSource:
        if self._gallery_source is None:
            raise ConfigurationError("Gallery source not configured")
        if not self._gallery_configured():
            raise ConfigurationError("Gallery source API key not configured")
        return self._gallery_source

    async def is_fid_minted(self, fid: int) -> bool:
        contract = self.config.chain.geoplet_contract_address
        if not contract:
            raise ConfigurationError("Geoplet contract address not configured")
        return bool(await self.chain_client.read(contract, GEOPLET_ABI, "isFidMinted", [fid]))

    async def check_generator(self) -> GeneratorAvailability:
        if self._generator is None:
            return GeneratorAvailability(False, "OpenAI API key not configured")
        return await self._generator.check_availability()

    async def check_upstreams(self) -> Dict[str, Any]:
        """Live checks against the external services; used by the admin health route."""
        generator = await self.check_generator()
        neynar = self.outreach.neynar
        return {
            "generator": generator.to_dict(),
            "facilitator": self._facilitator is not None and await self._facilitator.health_check(),
            "neynar": neynar is not None and await neynar.health_check(),
        }

    def get_health_status(self) -> Dict[str, Any]:
        """Which optional services are available."""
        return {
            "voucher_issuer": self._voucher_issuer is not None,
            "facilitator": self._facilitator is not None and self._facilitator.is_configured(),
            "generator": self._generator is not None and self._generator.is_configured(),
            "gallery": self._gallery_configured(),
            "outreach": self.outreach.is_configured(),
            "admin_auth": bool(self.admin_auth.valid_keys_hashed),
        }

    async def startup(self) -> None:
        await self.db_manager.initialize()

    async def shutdown(self) -> None:
        """Close every owned client; errors are logged so the rest still close."""
        closables = [
            self._facilitator,
            self._generator,
            self._rarible,
            self._gallery_source if self._gallery_source is not self._rarible else None,
            self.outreach.neynar,
            self.image_proxy,
        ]
        for client in closables:
            close = getattr(client, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"Error closing {type(client).__name__}: {e}")
        await self.db_manager.cleanup()


def get_container() -> DependencyContainer:
    """Placeholder resolved through ``app.dependency_overrides`` by the server."""
    raise ConfigurationError("Dependency container not initialized")


async def require_admin(request: Request, container: DependencyContainer = Depends(get_container)):
    await container.admin_auth(request)
