"""
Centralized Configuration Management

This module loads and validates configuration for the Geoplet service from
environment variables and .env files, organized into nested sections.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class ChainConfig(BaseSettings):
    """Base chain and contract configuration."""

    model_config = SettingsConfigDict(env_prefix="CHAIN_")

    rpc_url: str = "https://mainnet.base.org"
    chain_id: int = 8453
    geoplet_contract_address: Optional[str] = None
    warplets_contract_address: Optional[str] = None
    usdc_contract_address: str = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
    usdc_decimals: int = 6

    # Gas handling
    fallback_gas_limit: int = 500_000
    gas_buffer_multiplier: float = 1.2
    receipt_timeout_seconds: int = 300


class VoucherConfig(BaseSettings):
    """EIP-712 mint voucher signing configuration."""

    model_config = SettingsConfigDict(env_prefix="VOUCHER_")

    signer_private_key: Optional[str] = None
    eip712_name: str = "Geoplets"
    eip712_version: str = "1"
    validity_seconds: int = 3600
    recovery_validity_seconds: int = 900


class PaymentConfig(BaseSettings):
    """x402 payment and facilitator configuration."""

    model_config = SettingsConfigDict(env_prefix="PAYMENT_")

    facilitator_url: str = "https://api.onchain.fi/v1"
    facilitator_api_key: Optional[str] = None
    facilitator_timeout: float = 30.0
    recipient_address: Optional[str] = None
    mint_price_usdc: str = "1.99"
    regenerate_price_usdc: str = "3.00"
    network: str = "base"
    priority: str = "balanced"
    max_timeout_seconds: int = 300


class FarcasterConfig(BaseSettings):
    """Farcaster / Neynar configuration used for admin outreach."""

    model_config = SettingsConfigDict(env_prefix="FARCASTER_")

    neynar_api_key: Optional[str] = None
    neynar_base_url: str = "https://api.neynar.com/v2"
    signer_uuid: Optional[str] = None
    app_url: str = "https://geoplet.geoart.studio"
    cast_delay_seconds: float = 0.1

    # API configuration
    api_timeout: float = 30.0
    api_max_retries: int = 3
    api_base_delay: float = 1.0
    api_max_delay: float = 60.0


class MarketplaceConfig(BaseSettings):
    """NFT marketplace data sources."""

    model_config = SettingsConfigDict(env_prefix="MARKETPLACE_")

    rarible_api_key: Optional[str] = None
    rarible_base_url: str = "https://api.rarible.org/v0.1"
    alchemy_api_key: Optional[str] = None
    alchemy_base_url: str = "https://base-mainnet.g.alchemy.com/nft/v3"
    gallery_source: str = "rarible"  # "rarible" or "alchemy"
    gallery_page_size: int = 20
    cache_ttl_seconds: int = 300


class GenerationConfig(BaseSettings):
    """Image generation configuration."""

    model_config = SettingsConfigDict(env_prefix="GENERATION_")

    openai_api_key: Optional[str] = None
    model: str = "gpt-image-1"
    max_artifact_bytes: int = 24 * 1024
    output_dimension: int = 512
    webp_quality: int = 85
    request_timeout: float = 120.0


class StorageConfig(BaseSettings):
    """Relational storage configuration."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    database_url: str = "sqlite+aiosqlite:///data/geoplet.db"


class SecurityConfig(BaseSettings):
    """API security configuration."""

    model_config = SettingsConfigDict(env_prefix="SECURITY_")

    admin_api_keys: str = ""
    cors_origins: List[str] = ["http://localhost:3000"]
    image_proxy_max_dimension: int = 800

    @property
    def admin_keys(self) -> List[str]:
        return [k.strip() for k in self.admin_api_keys.split(",") if k.strip()]


class RateLimitConfig(BaseSettings):
    """Fixed-window limits for the generation staging endpoint."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_")

    max_requests: int = 10
    window_seconds: int = 60


class AppConfig(BaseSettings):
    """
    Centralized application configuration with nested sections.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    log_level: str = "INFO"
    environment: str = "development"

    # Nested configuration sections
    chain: ChainConfig = ChainConfig()
    voucher: VoucherConfig = VoucherConfig()
    payment: PaymentConfig = PaymentConfig()
    farcaster: FarcasterConfig = FarcasterConfig()
    marketplace: MarketplaceConfig = MarketplaceConfig()
    generation: GenerationConfig = GenerationConfig()
    storage: StorageConfig = StorageConfig()
    security: SecurityConfig = SecurityConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()

    def missing_minting_credentials(self) -> List[str]:
        """Return the names of settings required for voucher issuance that are unset."""
        missing = []
        if not self.voucher.signer_private_key:
            missing.append("VOUCHER_SIGNER_PRIVATE_KEY")
        if not self.chain.geoplet_contract_address:
            missing.append("CHAIN_GEOPLET_CONTRACT_ADDRESS")
        if not self.payment.facilitator_api_key:
            missing.append("PAYMENT_FACILITATOR_API_KEY")
        if not self.payment.recipient_address:
            missing.append("PAYMENT_RECIPIENT_ADDRESS")
        return missing

    def validate_for_minting(self) -> None:
        missing = self.missing_minting_credentials()
        if missing:
            raise ConfigurationError(
                f"Missing configuration for minting: {', '.join(missing)}",
                details={"missing": missing},
            )


# Global settings instance
def create_settings() -> AppConfig:
    """Create settings instance from environment variables and .env files only."""
    return AppConfig()


settings = create_settings()


def get_settings() -> AppConfig:
    """Get the global settings instance."""
    return settings
