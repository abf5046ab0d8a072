"""
Chain client capability.

The mint pipeline and the voucher issuer depend only on ``ChainClient``
(read, estimate_gas, write and the receipt lookups), injected through their
constructors. ``Web3ChainClient`` is the production implementation backed
by AsyncWeb3 and a local eth_account signer.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from ..core.error_codes import MintErrorCode
from ..exceptions import ConfigurationError, ContractCallReverted, GeopletError
from ..utils.logging_config import metrics_logger

logger = logging.getLogger(__name__)


def _receipt_to_dict(receipt) -> Dict[str, Any]:
    return {
        "status": receipt["status"],
        "transactionHash": Web3.to_hex(receipt["transactionHash"]),
        "blockNumber": receipt["blockNumber"],
        "gasUsed": receipt["gasUsed"],
        "logs": [
            {
                "address": log["address"],
                "topics": [Web3.to_hex(topic) for topic in log["topics"]],
                "data": Web3.to_hex(log["data"]),
            }
            for log in receipt.get("logs", [])
        ],
    }


class ChainClient(ABC):
    """Minimal contract access used by the mint flow."""

    @property
    @abstractmethod
    def address(self) -> Optional[str]:
        """Address that signs writes, if any."""

    @abstractmethod
    async def read(
        self,
        contract_address: str,
        abi: List[Dict[str, Any]],
        function: str,
        args: Sequence[Any] = (),
        sender: Optional[str] = None,
    ) -> Any:
        """Call a function without sending a transaction. Raises ContractCallReverted."""

    @abstractmethod
    async def estimate_gas(
        self,
        contract_address: str,
        abi: List[Dict[str, Any]],
        function: str,
        args: Sequence[Any] = (),
        sender: Optional[str] = None,
    ) -> int:
        """Ask the node for a gas estimate. Raises ContractCallReverted."""

    @abstractmethod
    async def write(
        self,
        contract_address: str,
        abi: List[Dict[str, Any]],
        function: str,
        args: Sequence[Any] = (),
        gas: Optional[int] = None,
    ) -> str:
        """
        Sign and send a transaction, returning its hash.

        Wallet-backed implementations raise TransactionRejected when the
        user declines to sign.
        """

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str, timeout: float = 300) -> Dict[str, Any]:
        """Wait for the transaction to be mined and return its receipt."""

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt of an already mined transaction, or None when the node does not know it."""


class Web3ChainClient(ChainClient):
    """ChainClient over AsyncWeb3 with an optional local signing account."""

    def __init__(self, rpc_url: str, chain_id: int, private_key: Optional[str] = None):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._account = Account.from_key(private_key) if private_key else None

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account else None

    def _function(self, contract_address: str, abi: List[Dict[str, Any]], function: str, args: Sequence[Any]):
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(contract_address), abi=abi)
        return getattr(contract.functions, function)(*args)

    async def read(self, contract_address, abi, function, args=(), sender=None) -> Any:
        started = time.perf_counter()
        call_params = {"from": Web3.to_checksum_address(sender)} if sender else None
        try:
            result = await self._function(contract_address, abi, function, args).call(call_params)
        except ContractLogicError as e:
            metrics_logger.log_chain_call("read", function, (time.perf_counter() - started) * 1000, False)
            raise ContractCallReverted(str(e.message or e)) from e
        metrics_logger.log_chain_call("read", function, (time.perf_counter() - started) * 1000, True)
        return result

    async def estimate_gas(self, contract_address, abi, function, args=(), sender=None) -> int:
        started = time.perf_counter()
        sender = sender or self.address
        params = {"from": Web3.to_checksum_address(sender)} if sender else {}
        try:
            gas = await self._function(contract_address, abi, function, args).estimate_gas(params)
        except ContractLogicError as e:
            metrics_logger.log_chain_call("estimate_gas", function, (time.perf_counter() - started) * 1000, False)
            raise ContractCallReverted(str(e.message or e)) from e
        metrics_logger.log_chain_call("estimate_gas", function, (time.perf_counter() - started) * 1000, True)
        return int(gas)

    async def write(self, contract_address, abi, function, args=(), gas=None) -> str:
        if self._account is None:
            raise ConfigurationError("Web3ChainClient has no signing account configured")

        started = time.perf_counter()
        tx_params: Dict[str, Any] = {
            "from": self._account.address,
            "nonce": await self.w3.eth.get_transaction_count(self._account.address, "pending"),
            "gasPrice": await self.w3.eth.gas_price,
            "chainId": self.chain_id,
        }
        if gas is not None:
            tx_params["gas"] = gas

        try:
            tx = await self._function(contract_address, abi, function, args).build_transaction(tx_params)
        except ContractLogicError as e:
            raise ContractCallReverted(str(e.message or e)) from e

        signed_tx = self._account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        tx_hash_hex = Web3.to_hex(tx_hash)

        metrics_logger.log_chain_call("write", function, (time.perf_counter() - started) * 1000, True)
        logger.info(f"Sent {function} transaction {tx_hash_hex}")
        return tx_hash_hex

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 300) -> Dict[str, Any]:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted as e:
            raise GeopletError(
                f"Transaction {tx_hash} not mined within {timeout}s",
                code=MintErrorCode.TX_TIMEOUT,
                details={"tx_hash": tx_hash},
            ) from e
        return _receipt_to_dict(receipt)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return _receipt_to_dict(receipt)
