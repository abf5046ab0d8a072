"""
EIP-712 mint vouchers.

The backend signs ``MintVoucher{to, fid, nonce, deadline}`` with a key that
never leaves the server; the Geoplet contract recovers the signer, checks the
deadline and consumes the nonce.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from .contracts import MINT_VOUCHER_TYPES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MintVoucher:
    to: str
    fid: int
    nonce: int
    deadline: int

    def is_expired(self, now: Optional[float] = None) -> bool:
        current = time.time() if now is None else now
        return current >= self.deadline

    def as_contract_tuple(self) -> Tuple[str, int, int, int]:
        return (Web3.to_checksum_address(self.to), self.fid, self.nonce, self.deadline)

    def to_message(self) -> Dict[str, Any]:
        return {
            "to": Web3.to_checksum_address(self.to),
            "fid": self.fid,
            "nonce": self.nonce,
            "deadline": self.deadline,
        }

    def to_dict(self) -> Dict[str, Any]:
        # uint256 values go over JSON as strings
        return {
            "to": self.to,
            "fid": str(self.fid),
            "nonce": str(self.nonce),
            "deadline": str(self.deadline),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MintVoucher":
        return cls(
            to=data["to"],
            fid=int(data["fid"]),
            nonce=int(data["nonce"]),
            deadline=int(data["deadline"]),
        )


@dataclass(frozen=True)
class SignedVoucher:
    voucher: MintVoucher
    signature: str

    def to_dict(self) -> Dict[str, Any]:
        return {"voucher": self.voucher.to_dict(), "signature": self.signature}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignedVoucher":
        return cls(voucher=MintVoucher.from_dict(data["voucher"]), signature=data["signature"])


class VoucherSigner:
    """Creates and signs mint vouchers for one deployed contract."""

    def __init__(
        self,
        private_key: str,
        chain_id: int,
        contract_address: str,
        name: str = "Geoplets",
        version: str = "1",
    ):
        if not private_key:
            raise ValueError("A signer private key is required for VoucherSigner.")
        self._account = Account.from_key(private_key)
        self.chain_id = chain_id
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.name = name
        self.version = version

    @property
    def address(self) -> str:
        return self._account.address

    def domain(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.contract_address,
        }

    def _typed_data(self, voucher: MintVoucher) -> Dict[str, Any]:
        return {
            "types": MINT_VOUCHER_TYPES,
            "primaryType": "MintVoucher",
            "domain": self.domain(),
            "message": voucher.to_message(),
        }

    def create_voucher(
        self, to: str, fid: int, validity_seconds: int, now: Optional[float] = None
    ) -> MintVoucher:
        """Build a voucher whose nonce is the issuance time in milliseconds."""
        if validity_seconds <= 0:
            raise ValueError("validity_seconds must be positive")
        current = time.time() if now is None else now
        return MintVoucher(
            to=Web3.to_checksum_address(to),
            fid=int(fid),
            nonce=int(current * 1000),
            deadline=int(current) + validity_seconds,
        )

    def sign(self, voucher: MintVoucher) -> SignedVoucher:
        signable = encode_typed_data(full_message=self._typed_data(voucher))
        signed = self._account.sign_message(signable)
        signature = Web3.to_hex(signed.signature)
        logger.debug(f"Signed voucher for FID {voucher.fid} (nonce {voucher.nonce}, deadline {voucher.deadline})")
        return SignedVoucher(voucher=voucher, signature=signature)

    def issue(self, to: str, fid: int, validity_seconds: int, now: Optional[float] = None) -> SignedVoucher:
        return self.sign(self.create_voucher(to, fid, validity_seconds, now))

    def recover(self, signed: SignedVoucher) -> str:
        signable = encode_typed_data(full_message=self._typed_data(signed.voucher))
        return Account.recover_message(signable, signature=signed.signature)

    def verify(self, signed: SignedVoucher) -> bool:
        """True when the signature recovers to this signer's address."""
        try:
            return self.recover(signed).lower() == self.address.lower()
        except Exception as e:
            logger.warning(f"Voucher signature could not be recovered: {e}")
            return False
