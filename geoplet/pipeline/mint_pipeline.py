"""
Client-side payment-to-mint pipeline.

States::

    idle -> insufficient_balance | paying -> minting -> success | already_minted

Recoverable failures (declined signature, unverified payment, retryable
revert) return the pipeline to ``idle``. Exactly-one-mint per FID is enforced
by the contract; this class only maps its answers onto states.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from web3 import Web3

from ..chain.client import ChainClient
from ..chain.contracts import ERC20_ABI, GEOPLET_ABI, to_atomic_units
from ..chain.revert_reasons import MintRevertReason, RevertInfo, decode_revert_reason
from ..chain.voucher import SignedVoucher
from ..core.artifact import MAX_ARTIFACT_BYTES, GeneratedArtifact
from ..core.error_codes import MintErrorCode
from ..exceptions import (
    AlreadyMinted,
    ContractCallReverted,
    GeopletError,
    InvalidRequest,
    MintCancelled,
    PaymentNotVerified,
    TransactionRejected,
    TransactionReverted,
)
from .backend_client import GeopletBackendClient

logger = logging.getLogger(__name__)


class MintState(str, Enum):
    IDLE = "idle"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    PAYING = "paying"
    MINTING = "minting"
    SUCCESS = "success"
    ALREADY_MINTED = "already_minted"


@dataclass
class MintPipelineConfig:
    contract_address: str
    usdc_address: str
    price_atomic: int
    fallback_gas_limit: int = 500_000
    gas_buffer_multiplier: float = 1.2
    receipt_timeout: float = 300
    max_artifact_bytes: int = MAX_ARTIFACT_BYTES

    @classmethod
    def from_settings(cls, config) -> "MintPipelineConfig":
        return cls(
            contract_address=config.chain.geoplet_contract_address,
            usdc_address=config.chain.usdc_contract_address,
            price_atomic=to_atomic_units(config.payment.mint_price_usdc, config.chain.usdc_decimals),
            fallback_gas_limit=config.chain.fallback_gas_limit,
            gas_buffer_multiplier=config.chain.gas_buffer_multiplier,
            receipt_timeout=config.chain.receipt_timeout_seconds,
            max_artifact_bytes=config.generation.max_artifact_bytes,
        )


@dataclass
class Eligibility:
    already_minted: bool
    minting_paused: bool
    balance_atomic: int
    price_atomic: int

    @property
    def has_sufficient_balance(self) -> bool:
        return self.balance_atomic >= self.price_atomic

    @property
    def can_pay(self) -> bool:
        return not self.already_minted and not self.minting_paused and self.has_sufficient_balance


@dataclass
class MintResult:
    tx_hash: str
    token_id: int
    gas_used: Optional[int] = None


class MintPipeline:
    """Drives one wallet through payment, voucher and mint submission."""

    def __init__(
        self,
        chain_client: ChainClient,
        backend: GeopletBackendClient,
        config: MintPipelineConfig,
        on_state_change: Optional[Callable[[MintState], None]] = None,
    ):
        self.chain = chain_client
        self.backend = backend
        self.config = config
        self.on_state_change = on_state_change
        self.state = MintState.IDLE
        self._abort = asyncio.Event()

    # State handling

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def abort(self) -> None:
        """Stop applying results of in-flight work (e.g. the owning view was torn down)."""
        logger.info("Mint pipeline aborted")
        self._abort.set()

    def reset(self) -> None:
        self._abort.clear()
        self._set_state(MintState.IDLE)

    def _set_state(self, state: MintState) -> None:
        if self.aborted:
            return
        if state != self.state:
            logger.debug(f"Mint state {self.state.value} -> {state.value}")
        self.state = state
        if self.on_state_change:
            self.on_state_change(state)

    def _raise_if_aborted(self) -> None:
        if self.aborted:
            raise MintCancelled()

    # Operations

    async def check_eligibility(self, fid: int, wallet_address: str) -> Eligibility:
        """Read mint status and USDC balance before any payment is requested."""
        already_minted = await self.chain.read(
            self.config.contract_address, GEOPLET_ABI, "isFidMinted", [int(fid)]
        )
        minting_paused = await self.chain.read(
            self.config.contract_address, GEOPLET_ABI, "mintingPaused"
        )
        balance = await self.chain.read(
            self.config.usdc_address, ERC20_ABI, "balanceOf", [Web3.to_checksum_address(wallet_address)]
        )
        self._raise_if_aborted()

        eligibility = Eligibility(
            already_minted=bool(already_minted),
            minting_paused=bool(minting_paused),
            balance_atomic=int(balance),
            price_atomic=self.config.price_atomic,
        )
        if eligibility.already_minted:
            self._set_state(MintState.ALREADY_MINTED)
        elif not eligibility.has_sufficient_balance:
            self._set_state(MintState.INSUFFICIENT_BALANCE)
        else:
            self._set_state(MintState.IDLE)
        return eligibility

    async def request_mint_voucher(self, fid: int, wallet_address: str, recover: bool = False) -> SignedVoucher:
        """
        Pay and obtain a signed voucher from the backend.

        With ``recover=True`` no new payment is made: the backend re-issues a
        short-lived voucher for a payment that already settled.
        """
        if self.state == MintState.ALREADY_MINTED:
            raise AlreadyMinted(fid)

        self._set_state(MintState.PAYING)
        try:
            if recover:
                signed = await self.backend.request_recovery_voucher(fid, wallet_address)
            else:
                signed = await self.backend.request_mint_voucher(fid, wallet_address)
        except AlreadyMinted:
            self._set_state(MintState.ALREADY_MINTED)
            raise
        except (TransactionRejected, PaymentNotVerified) as e:
            logger.info(f"Payment for FID {fid} did not complete: {e}")
            self._set_state(MintState.IDLE)
            raise
        except GeopletError:
            self._set_state(MintState.IDLE)
            raise

        self._raise_if_aborted()
        if signed.voucher.fid != int(fid) or signed.voucher.to.lower() != wallet_address.lower():
            self._set_state(MintState.IDLE)
            raise InvalidRequest("Voucher does not match the requesting wallet and FID")
        return signed

    async def _estimate_gas(self, args, sender: Optional[str]) -> int:
        try:
            estimate = await self.chain.estimate_gas(
                self.config.contract_address, GEOPLET_ABI, "mintGeoplet", args, sender
            )
        except Exception as e:
            logger.warning(f"Gas estimation failed ({e}); using fallback limit {self.config.fallback_gas_limit}")
            return self.config.fallback_gas_limit
        return int(estimate * self.config.gas_buffer_multiplier)

    async def _replay_revert_reason(self, args, sender: Optional[str]) -> Optional[str]:
        """Re-run the mint as a call to recover the revert string of a failed tx."""
        try:
            await self.chain.read(self.config.contract_address, GEOPLET_ABI, "mintGeoplet", args, sender)
        except ContractCallReverted as e:
            return str(e)
        return None

    def _fail_with_revert(self, info: RevertInfo, fid: int, tx_hash: Optional[str]) -> None:
        if info.reason == MintRevertReason.FID_ALREADY_MINTED:
            self._set_state(MintState.ALREADY_MINTED)
            raise AlreadyMinted(fid, info.user_message)
        if info.reason == MintRevertReason.USER_REJECTED:
            self._set_state(MintState.IDLE)
            raise TransactionRejected(info.user_message)
        self._set_state(MintState.IDLE)
        raise TransactionReverted(info.reason, info.user_message, info.can_retry, tx_hash)

    async def submit_mint(
        self,
        signed_voucher: SignedVoucher,
        artifact: GeneratedArtifact,
        on_success: Optional[Callable[[MintResult], None]] = None,
    ) -> MintResult:
        """
        Submit ``mintGeoplet(voucher, image, signature)`` and wait for it.

        Raises ArtifactTooLarge before touching the network when the image
        exceeds the ceiling; regeneration may have changed it since the
        voucher was issued.
        """
        artifact.validate_size(self.config.max_artifact_bytes)
        if artifact.is_empty:
            raise InvalidRequest("Image data is missing", code=MintErrorCode.IMAGE_VALIDATION_FAILED)

        voucher = signed_voucher.voucher
        sender = self.chain.address
        args = [
            voucher.as_contract_tuple(),
            artifact.image_data,
            Web3.to_bytes(hexstr=signed_voucher.signature),
        ]

        self._set_state(MintState.MINTING)
        gas = await self._estimate_gas(args, sender)
        self._raise_if_aborted()

        try:
            tx_hash = await self.chain.write(
                self.config.contract_address, GEOPLET_ABI, "mintGeoplet", args, gas=gas
            )
        except TransactionRejected:
            self._set_state(MintState.IDLE)
            raise
        except ContractCallReverted as e:
            self._fail_with_revert(decode_revert_reason(e), voucher.fid, None)

        logger.info(f"Mint transaction for FID {voucher.fid} sent: {tx_hash}")
        try:
            receipt = await self.chain.wait_for_receipt(tx_hash, timeout=self.config.receipt_timeout)
        except GeopletError:
            self._set_state(MintState.IDLE)
            raise
        self._raise_if_aborted()

        if receipt.get("status") != 1:
            reason = await self._replay_revert_reason(args, sender)
            logger.warning(f"Mint transaction {tx_hash} reverted: {reason}")
            self._fail_with_revert(decode_revert_reason(reason), voucher.fid, tx_hash)

        result = MintResult(tx_hash=tx_hash, token_id=voucher.fid, gas_used=receipt.get("gasUsed"))
        self._set_state(MintState.SUCCESS)
        logger.info(f"Geoplet #{voucher.fid} minted in {tx_hash}")

        await self._after_mint(voucher.fid, tx_hash)
        if on_success and not self.aborted:
            on_success(result)
        return result

    async def _after_mint(self, fid: int, tx_hash: str) -> None:
        """Clear the held generation and record the mint. Never fails the mint."""
        try:
            await self.backend.delete_generation(fid)
        except Exception as e:
            logger.warning(f"Could not clear unminted generation for FID {fid}: {e}")
        try:
            await self.backend.update_payment_status(fid, "minted", mint_tx_hash=tx_hash)
        except Exception as e:
            logger.warning(f"Could not update payment tracking for FID {fid}: {e}")
