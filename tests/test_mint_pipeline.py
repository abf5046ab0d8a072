"""
Tests for the client-side payment-to-mint pipeline.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from geoplet.chain.revert_reasons import MintRevertReason
from geoplet.core.artifact import WEBP_DATA_URI_PREFIX, GeneratedArtifact
from geoplet.exceptions import (
    AlreadyMinted,
    ArtifactTooLarge,
    ContractCallReverted,
    InvalidRequest,
    MintCancelled,
    PaymentNotVerified,
    TransactionRejected,
    TransactionReverted,
)
from geoplet.pipeline.backend_client import GeopletBackendClient
from geoplet.pipeline.mint_pipeline import MintPipeline, MintPipelineConfig, MintState
from tests.factories import GEOPLET_CONTRACT, USDC, WALLET, FakeChainClient

PRICE = 1_990_000


@pytest.fixture
def config() -> MintPipelineConfig:
    return MintPipelineConfig(contract_address=GEOPLET_CONTRACT, usdc_address=USDC, price_atomic=PRICE)


@pytest.fixture
def backend():
    return AsyncMock(spec=GeopletBackendClient)


@pytest.fixture
def chain():
    return FakeChainClient(reads={"isFidMinted": False, "mintingPaused": False, "balanceOf": 5_000_000})


@pytest.fixture
def artifact() -> GeneratedArtifact:
    return GeneratedArtifact(image_data=WEBP_DATA_URI_PREFIX + "A" * 1000)


@pytest.fixture
def signed(voucher_signer):
    return voucher_signer.issue(WALLET, 42, validity_seconds=3600)


def make_pipeline(chain, backend, config):
    states = []
    pipeline = MintPipeline(chain, backend, config, on_state_change=states.append)
    return pipeline, states


class TestEligibility:
    @pytest.mark.asyncio
    async def test_eligible_wallet(self, chain, backend, config):
        pipeline, _ = make_pipeline(chain, backend, config)

        eligibility = await pipeline.check_eligibility(42, WALLET)

        assert eligibility.can_pay
        assert pipeline.state == MintState.IDLE

    @pytest.mark.asyncio
    async def test_already_minted(self, chain, backend, config):
        chain.reads["isFidMinted"] = True
        pipeline, _ = make_pipeline(chain, backend, config)

        eligibility = await pipeline.check_eligibility(42, WALLET)

        assert eligibility.already_minted
        assert not eligibility.can_pay
        assert pipeline.state == MintState.ALREADY_MINTED

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, chain, backend, config):
        chain.reads["balanceOf"] = PRICE - 1
        pipeline, _ = make_pipeline(chain, backend, config)

        eligibility = await pipeline.check_eligibility(42, WALLET)

        assert not eligibility.has_sufficient_balance
        assert pipeline.state == MintState.INSUFFICIENT_BALANCE

    @pytest.mark.asyncio
    async def test_already_minted_blocks_payment(self, chain, backend, config):
        chain.reads["isFidMinted"] = True
        pipeline, _ = make_pipeline(chain, backend, config)
        await pipeline.check_eligibility(42, WALLET)

        with pytest.raises(AlreadyMinted):
            await pipeline.request_mint_voucher(42, WALLET)
        backend.request_mint_voucher.assert_not_awaited()


class TestVoucherRequest:
    @pytest.mark.asyncio
    async def test_paying_then_voucher(self, chain, backend, config, signed):
        backend.request_mint_voucher.return_value = signed
        pipeline, states = make_pipeline(chain, backend, config)

        result = await pipeline.request_mint_voucher(42, WALLET)

        assert result == signed
        assert states == [MintState.PAYING]

    @pytest.mark.asyncio
    async def test_payment_declined_returns_to_idle(self, chain, backend, config):
        backend.request_mint_voucher.side_effect = TransactionRejected()
        pipeline, _ = make_pipeline(chain, backend, config)

        with pytest.raises(TransactionRejected):
            await pipeline.request_mint_voucher(42, WALLET)
        assert pipeline.state == MintState.IDLE

    @pytest.mark.asyncio
    async def test_payment_not_verified_returns_to_idle(self, chain, backend, config):
        backend.request_mint_voucher.side_effect = PaymentNotVerified()
        pipeline, _ = make_pipeline(chain, backend, config)

        with pytest.raises(PaymentNotVerified):
            await pipeline.request_mint_voucher(42, WALLET)
        assert pipeline.state == MintState.IDLE

    @pytest.mark.asyncio
    async def test_backend_reports_already_minted(self, chain, backend, config):
        backend.request_mint_voucher.side_effect = AlreadyMinted(42)
        pipeline, _ = make_pipeline(chain, backend, config)

        with pytest.raises(AlreadyMinted):
            await pipeline.request_mint_voucher(42, WALLET)
        assert pipeline.state == MintState.ALREADY_MINTED

    @pytest.mark.asyncio
    async def test_voucher_for_other_fid_rejected(self, chain, backend, config, voucher_signer):
        backend.request_mint_voucher.return_value = voucher_signer.issue(WALLET, 43, validity_seconds=60)
        pipeline, _ = make_pipeline(chain, backend, config)

        with pytest.raises(InvalidRequest):
            await pipeline.request_mint_voucher(42, WALLET)
        assert pipeline.state == MintState.IDLE

    @pytest.mark.asyncio
    async def test_recovery_uses_paid_endpoint(self, chain, backend, config, signed):
        backend.request_recovery_voucher.return_value = signed
        pipeline, _ = make_pipeline(chain, backend, config)

        await pipeline.request_mint_voucher(42, WALLET, recover=True)

        backend.request_recovery_voucher.assert_awaited_once_with(42, WALLET)
        backend.request_mint_voucher.assert_not_awaited()


class TestSubmitMint:
    """Submission, gas handling and revert mapping."""

    @pytest.mark.asyncio
    async def test_success_cleans_up_and_notifies(self, chain, backend, config, signed, artifact):
        pipeline, states = make_pipeline(chain, backend, config)
        on_success = MagicMock()

        result = await pipeline.submit_mint(signed, artifact, on_success=on_success)

        assert result.token_id == 42
        assert result.tx_hash == chain.write_result
        assert states == [MintState.MINTING, MintState.SUCCESS]
        on_success.assert_called_once_with(result)
        backend.delete_generation.assert_awaited_once_with(42)
        backend.update_payment_status.assert_awaited_once_with(42, "minted", mint_tx_hash=result.tx_hash)

    @pytest.mark.asyncio
    async def test_gas_estimate_gets_buffer(self, chain, backend, config, signed, artifact):
        chain.gas_estimate = 100_000
        pipeline, _ = make_pipeline(chain, backend, config)

        await pipeline.submit_mint(signed, artifact)

        write = chain.called("write")[0]
        assert write[3] == 120_000

    @pytest.mark.asyncio
    async def test_gas_estimate_failure_uses_fallback(self, chain, backend, config, signed, artifact):
        chain.gas_estimate = RuntimeError("estimation failed")
        pipeline, _ = make_pipeline(chain, backend, config)

        await pipeline.submit_mint(signed, artifact)

        assert chain.called("write")[0][3] == 500_000

    @pytest.mark.asyncio
    async def test_oversized_artifact_fails_before_network(self, chain, backend, config, signed):
        big = GeneratedArtifact(image_data=WEBP_DATA_URI_PREFIX + "A" * (24 * 1024))
        pipeline, _ = make_pipeline(chain, backend, config)

        with pytest.raises(ArtifactTooLarge):
            await pipeline.submit_mint(signed, big)

        assert chain.calls == []
        assert pipeline.state == MintState.IDLE

    @pytest.mark.asyncio
    async def test_empty_artifact_rejected(self, chain, backend, config, signed):
        pipeline, _ = make_pipeline(chain, backend, config)
        with pytest.raises(InvalidRequest):
            await pipeline.submit_mint(signed, GeneratedArtifact(image_data=WEBP_DATA_URI_PREFIX))
        assert chain.calls == []

    @pytest.mark.asyncio
    async def test_already_minted_revert_even_with_fresh_voucher(self, chain, backend, config, signed, artifact):
        chain.write_result = ContractCallReverted("execution reverted: FID already minted")
        pipeline, _ = make_pipeline(chain, backend, config)

        with pytest.raises(AlreadyMinted):
            await pipeline.submit_mint(signed, artifact)
        assert pipeline.state == MintState.ALREADY_MINTED
        backend.delete_generation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_voucher_resets_to_idle(self, chain, backend, config, artifact, voucher_signer):
        expired = voucher_signer.issue(WALLET, 42, validity_seconds=1, now=1_000_000)
        chain.write_result = ContractCallReverted("execution reverted: Signature expired")
        pipeline, _ = make_pipeline(chain, backend, config)

        with pytest.raises(TransactionReverted) as exc_info:
            await pipeline.submit_mint(expired, artifact)

        assert exc_info.value.reason == MintRevertReason.SIGNATURE_EXPIRED
        assert exc_info.value.can_retry
        assert "expired" in exc_info.value.message.lower()
        assert pipeline.state == MintState.IDLE

    @pytest.mark.asyncio
    async def test_reverted_receipt_replays_for_reason(self, chain, backend, config, signed, artifact):
        chain.receipt = {"status": 0, "gasUsed": 50_000}
        chain.reads["mintGeoplet"] = ContractCallReverted("execution reverted: Max supply reached")
        pipeline, _ = make_pipeline(chain, backend, config)

        with pytest.raises(TransactionReverted) as exc_info:
            await pipeline.submit_mint(signed, artifact)

        assert exc_info.value.reason == MintRevertReason.MAX_SUPPLY_REACHED
        assert exc_info.value.tx_hash == chain.write_result
        assert not exc_info.value.can_retry
        assert pipeline.state == MintState.IDLE

    @pytest.mark.asyncio
    async def test_wallet_rejection_returns_to_idle(self, chain, backend, config, signed, artifact):
        chain.write_result = TransactionRejected()
        pipeline, _ = make_pipeline(chain, backend, config)

        with pytest.raises(TransactionRejected):
            await pipeline.submit_mint(signed, artifact)
        assert pipeline.state == MintState.IDLE

    @pytest.mark.asyncio
    async def test_cleanup_failure_does_not_fail_mint(self, chain, backend, config, signed, artifact):
        backend.delete_generation.side_effect = RuntimeError("backend down")
        pipeline, _ = make_pipeline(chain, backend, config)

        result = await pipeline.submit_mint(signed, artifact)

        assert pipeline.state == MintState.SUCCESS
        backend.update_payment_status.assert_awaited_once_with(42, "minted", mint_tx_hash=result.tx_hash)


class TestAbort:
    @pytest.mark.asyncio
    async def test_abort_stops_state_updates(self, chain, backend, config, signed):
        pipeline, states = make_pipeline(chain, backend, config)

        async def slow_voucher(fid, wallet):
            pipeline.abort()
            return signed

        backend.request_mint_voucher.side_effect = slow_voucher

        with pytest.raises(MintCancelled):
            await pipeline.request_mint_voucher(42, WALLET)
        assert states == [MintState.PAYING]

    @pytest.mark.asyncio
    async def test_abort_during_mint_skips_callback(self, chain, backend, config, signed, artifact):
        pipeline, _ = make_pipeline(chain, backend, config)
        on_success = MagicMock()

        def abort_on_estimate(*args):
            pipeline.abort()
            return 100_000

        chain.gas_estimate = abort_on_estimate

        with pytest.raises(MintCancelled):
            await pipeline.submit_mint(signed, artifact, on_success=on_success)
        assert chain.called("write") == []
        on_success.assert_not_called()

    def test_reset_clears_abort(self, chain, backend, config):
        pipeline, _ = make_pipeline(chain, backend, config)
        pipeline.abort()
        pipeline.reset()
        assert not pipeline.aborted
        assert pipeline.state == MintState.IDLE
