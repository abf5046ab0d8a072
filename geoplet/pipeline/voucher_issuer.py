"""
Server-side mint voucher issuance.

A voucher is only signed after the x402 payment has been verified and
settled. The settled payment is recorded so that a user whose mint failed
afterwards can obtain a fresh voucher without paying again; the recorded
settlement transaction is re-checked on chain before such a voucher is
signed.
"""

import logging
import re
from typing import Optional

from ..chain.client import ChainClient
from ..chain.contracts import GEOPLET_ABI, to_atomic_units, transferred_to
from ..chain.voucher import SignedVoucher, VoucherSigner
from ..config import AppConfig
from ..core.error_codes import PaymentErrorCode
from ..core.persistence import PaymentTrackingRepository
from ..exceptions import (
    AlreadyMinted,
    GeopletError,
    InvalidRequest,
    PaymentNotVerified,
    PaymentRequired,
)
from ..integrations.payment.facilitator_client import FacilitatorClient, SettlementResult
from ..integrations.payment.x402 import (
    PaymentRequirements,
    build_payment_requirements,
    payment_required_body,
    validate_payment_header,
)

logger = logging.getLogger(__name__)

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")
RECOVERABLE_PAYMENT_STATUSES = ("settled", "failed")


def parse_fid(fid) -> int:
    try:
        fid_value = int(fid)
    except (TypeError, ValueError):
        raise InvalidRequest("Invalid FID")
    if fid_value <= 0:
        raise InvalidRequest("Invalid FID")
    return fid_value


def parse_mint_request(to: Optional[str], fid) -> int:
    """Validate recipient and FID; returns the FID as int."""
    if not to or not ADDRESS_RE.match(to):
        raise InvalidRequest("Invalid wallet address format")
    return parse_fid(fid)


class VoucherIssuer:
    """Verifies payment, tracks it and signs MintVouchers."""

    def __init__(
        self,
        signer: VoucherSigner,
        chain_client: ChainClient,
        facilitator: FacilitatorClient,
        payments: PaymentTrackingRepository,
        config: AppConfig,
    ):
        self.signer = signer
        self.chain = chain_client
        self.facilitator = facilitator
        self.payments = payments
        self.config = config

    @property
    def price_atomic(self) -> int:
        return to_atomic_units(self.config.payment.mint_price_usdc, self.config.chain.usdc_decimals)

    def payment_requirements(self, resource: str) -> PaymentRequirements:
        price = self.config.payment.mint_price_usdc
        return build_payment_requirements(
            price_usdc=price,
            pay_to=self.config.payment.recipient_address,
            asset=self.config.chain.usdc_contract_address,
            resource=resource,
            description=f"Mint your unique Geoplet NFT for {price} USDC",
            network=self.config.payment.network,
            max_timeout_seconds=self.config.payment.max_timeout_seconds,
            decimals=self.config.chain.usdc_decimals,
        )

    async def is_minted(self, fid: int) -> bool:
        return bool(await self.chain.read(
            self.config.chain.geoplet_contract_address, GEOPLET_ABI, "isFidMinted", [fid]
        ))

    def _sign(self, to: str, fid: int, validity_seconds: int) -> SignedVoucher:
        signed = self.signer.issue(to, fid, validity_seconds)
        if not self.signer.verify(signed):
            logger.error(f"Voucher for FID {fid} failed local signature recovery")
            raise GeopletError(code=PaymentErrorCode.SIGNATURE_GENERATION_FAILED)
        return signed

    async def settle_payment(self, payment_header: str, fid: Optional[int] = None) -> SettlementResult:
        """Verify and settle a mint payment, recording it against ``fid`` when given."""
        validate_payment_header(payment_header, self.price_atomic, network=self.config.payment.network)
        settlement = await self.facilitator.verify_and_settle(
            payment_header,
            self.config.payment.mint_price_usdc,
            self.config.payment.recipient_address,
        )
        if fid is not None:
            try:
                await self.payments.upsert(fid, settlement.tx_hash, "settled")
            except Exception as e:
                # Funds have moved; the voucher is still issued and the tx hash logged.
                logger.error(f"Failed to record settlement {settlement.tx_hash} for FID {fid}: {e}", exc_info=True)
        return settlement

    async def issue_for_payment(
        self, fid, to: Optional[str], payment_header: Optional[str], resource: str = ""
    ) -> SignedVoucher:
        """
        Issue a voucher against an x402 payment.

        Raises:
            InvalidRequest: malformed address or FID
            AlreadyMinted: FID already holds a Geoplet (checked before charging)
            PaymentRequired: no X-Payment header
            PaymentNotVerified: header invalid or facilitator rejected it
        """
        fid_value = parse_mint_request(to, fid)

        if await self.is_minted(fid_value):
            raise AlreadyMinted(fid_value)

        if not payment_header:
            raise PaymentRequired(payment_required_body([self.payment_requirements(resource)]))

        settlement = await self.settle_payment(payment_header, fid_value)
        logger.info(f"Payment settled for FID {fid_value}: {settlement.tx_hash}")
        return self._sign(to, fid_value, self.config.voucher.validity_seconds)

    async def verify_settlement_on_chain(self, fid: int, tx_hash: Optional[str]) -> None:
        """
        Require a successful transaction moving at least the mint price in
        USDC to the payment recipient.

        Raises:
            PaymentNotVerified: unknown, failed or insufficient settlement
        """
        if not tx_hash or not TX_HASH_RE.match(tx_hash):
            raise PaymentNotVerified("Recorded settlement is not a transaction hash", details={"tx_hash": tx_hash})

        receipt = await self.chain.get_transaction_receipt(tx_hash)
        if receipt is None or receipt.get("status") != 1:
            logger.warning(f"Settlement {tx_hash} for FID {fid} not found or failed on chain")
            raise PaymentNotVerified("Settlement transaction not found or failed", details={"tx_hash": tx_hash})

        paid = transferred_to(
            receipt.get("logs") or [],
            self.config.chain.usdc_contract_address,
            self.config.payment.recipient_address,
        )
        if paid < self.price_atomic:
            logger.warning(f"Settlement {tx_hash} for FID {fid} paid {paid}, expected {self.price_atomic}")
            raise PaymentNotVerified(
                "Settlement did not pay the mint price",
                details={"tx_hash": tx_hash, "paid": str(paid), "required": str(self.price_atomic)},
            )

    async def issue_recovery_voucher(self, fid, to: Optional[str]) -> SignedVoucher:
        """Short-lived voucher for a FID whose payment settled but whose mint did not land."""
        fid_value = parse_mint_request(to, fid)

        record = await self.payments.get(fid_value)
        if record is None or record.status not in RECOVERABLE_PAYMENT_STATUSES:
            status = record.status if record else None
            logger.warning(f"Recovery voucher refused for FID {fid_value} (payment status: {status})")
            raise PaymentNotVerified(
                "No settled payment found for this FID",
                details={"status": status},
            )

        if await self.is_minted(fid_value):
            raise AlreadyMinted(fid_value)

        await self.verify_settlement_on_chain(fid_value, record.settlement_tx_hash)
        if await self.payments.fids_for_settlement(record.settlement_tx_hash) != [fid_value]:
            logger.warning(f"Settlement {record.settlement_tx_hash} is recorded for more than FID {fid_value}")
            raise PaymentNotVerified("Settlement is claimed by another FID", details={"tx_hash": record.settlement_tx_hash})

        logger.info(f"Issuing recovery voucher for FID {fid_value} (payment {record.settlement_tx_hash})")
        return self._sign(to, fid_value, self.config.voucher.recovery_validity_seconds)
