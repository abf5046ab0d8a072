"""
Contract ABIs and EIP-712 type definitions for the Geoplet collection on Base.
"""

from decimal import Decimal
from typing import Any, Dict, Iterable, Union

BASE_CHAIN_ID = 8453

MINT_VOUCHER_COMPONENTS = [
    {"name": "to", "type": "address"},
    {"name": "fid", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]

GEOPLET_ABI = [
    {
        "name": "mintGeoplet",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {
                "name": "voucher",
                "type": "tuple",
                "internalType": "struct Geoplets.MintVoucher",
                "components": MINT_VOUCHER_COMPONENTS,
            },
            {"name": "base64ImageData", "type": "string"},
            {"name": "signature", "type": "bytes"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "isFidMinted",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "fid", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "mintingPaused",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "tokenURI",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "totalSupply",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "MAX_SUPPLY",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

# Only what the app reads from source collections
ERC721_METADATA_ABI = [
    {
        "name": "tokenURI",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "string"}],
    },
]

ERC20_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
]

# keccak256("Transfer(address,address,uint256)")
ERC20_TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

MINT_VOUCHER_TYPES = {
    "EIP712Domain": EIP712_DOMAIN_TYPE,
    "MintVoucher": MINT_VOUCHER_COMPONENTS,
}

# EIP-3009 authorization signed by the payer for x402 "exact" payments
TRANSFER_WITH_AUTHORIZATION_TYPES = {
    "EIP712Domain": EIP712_DOMAIN_TYPE,
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ],
}


def to_atomic_units(amount: Union[str, Decimal, int], decimals: int = 6) -> int:
    """'1.99' USDC -> 1990000"""
    return int(Decimal(str(amount)) * (Decimal(10) ** decimals))


def from_atomic_units(amount: int, decimals: int = 6) -> Decimal:
    return Decimal(amount) / (Decimal(10) ** decimals)


def _topic_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


def transferred_to(logs: Iterable[Dict[str, Any]], token: str, recipient: str) -> int:
    """Total ERC-20 ``token`` amount the receipt ``logs`` move to ``recipient``."""
    token = token.lower()
    recipient = recipient.lower()
    total = 0
    for log in logs:
        topics = log.get("topics") or []
        if (log.get("address") or "").lower() != token or len(topics) < 3:
            continue
        if topics[0].lower() != ERC20_TRANSFER_TOPIC or _topic_address(topics[2]) != recipient:
            continue
        total += int(log.get("data") or "0x0", 16)
    return total
