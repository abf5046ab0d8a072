"""
Global test configuration and fixtures.
"""

import pytest
import pytest_asyncio
from eth_account import Account

from geoplet.chain.voucher import VoucherSigner
from geoplet.config import (
    AppConfig,
    ChainConfig,
    FarcasterConfig,
    PaymentConfig,
    SecurityConfig,
    StorageConfig,
    VoucherConfig,
)
from geoplet.core.persistence import (
    DatabaseManager,
    GenerationRepository,
    PaymentTrackingRepository,
)
from tests.factories import (
    GEOPLET_CONTRACT,
    PAYER_KEY,
    RECIPIENT,
    SIGNER_KEY,
    USDC,
    WARPLETS_CONTRACT,
)


@pytest.fixture
def signer_account():
    return Account.from_key(SIGNER_KEY)


@pytest.fixture
def payer_account():
    return Account.from_key(PAYER_KEY)


@pytest.fixture
def voucher_signer() -> VoucherSigner:
    return VoucherSigner(SIGNER_KEY, 8453, GEOPLET_CONTRACT)


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    """Fully configured settings pointing at a temporary database."""
    return AppConfig(
        chain=ChainConfig(
            geoplet_contract_address=GEOPLET_CONTRACT,
            warplets_contract_address=WARPLETS_CONTRACT,
            usdc_contract_address=USDC,
        ),
        voucher=VoucherConfig(signer_private_key=SIGNER_KEY),
        payment=PaymentConfig(
            facilitator_api_key="test-facilitator-key",
            recipient_address=RECIPIENT,
            mint_price_usdc="1.99",
            regenerate_price_usdc="3.00",
            network="base",
        ),
        storage=StorageConfig(database_url=f"sqlite+aiosqlite:///{tmp_path / 'geoplet_test.db'}"),
        security=SecurityConfig(admin_api_keys="admin-test-key"),
        farcaster=FarcasterConfig(signer_uuid="signer-uuid", cast_delay_seconds=0),
    )


@pytest_asyncio.fixture
async def db_manager(tmp_path):
    """Initialized database in a temporary directory."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await manager.initialize()
    try:
        yield manager
    finally:
        await manager.cleanup()


@pytest.fixture
def generations(db_manager) -> GenerationRepository:
    return GenerationRepository(db_manager)


@pytest.fixture
def payments(db_manager) -> PaymentTrackingRepository:
    return PaymentTrackingRepository(db_manager)
