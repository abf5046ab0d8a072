"""
x402 "exact" payments on Base.

Server side: build the 402 challenge and sanity-check an ``X-Payment``
header before handing it to the facilitator. Client side: sign an EIP-3009
``TransferWithAuthorization`` for the advertised requirement and encode it
as the header value.
"""

import base64
import binascii
import json
import logging
import re
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from eth_account.messages import encode_typed_data
from web3 import Web3

from ...chain.contracts import TRANSFER_WITH_AUTHORIZATION_TYPES, to_atomic_units
from ...core.error_codes import PaymentErrorCode
from ...exceptions import PaymentNotVerified, TransactionRejected

logger = logging.getLogger(__name__)

X402_VERSION = 1
ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
NONCE_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")


class InvalidPaymentHeader(PaymentNotVerified):
    """The X-Payment header is malformed or does not match the requirement."""

    default_code = PaymentErrorCode.INVALID_SIGNATURE


@dataclass
class PaymentRequirements:
    max_amount_required: int
    asset: str
    pay_to: str
    resource: str
    description: str
    network: str = "base"
    scheme: str = "exact"
    mime_type: str = "application/json"
    max_timeout_seconds: int = 300
    extra: Dict[str, str] = field(default_factory=lambda: {"name": "USD Coin", "version": "2"})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scheme": self.scheme,
            "network": self.network,
            "maxAmountRequired": str(self.max_amount_required),
            "asset": self.asset,
            "payTo": self.pay_to,
            "resource": self.resource,
            "description": self.description,
            "mimeType": self.mime_type,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaymentRequirements":
        return cls(
            max_amount_required=int(data["maxAmountRequired"]),
            asset=data["asset"],
            pay_to=data["payTo"],
            resource=data.get("resource", ""),
            description=data.get("description", ""),
            network=data.get("network", "base"),
            scheme=data.get("scheme", "exact"),
            mime_type=data.get("mimeType", "application/json"),
            max_timeout_seconds=int(data.get("maxTimeoutSeconds", 300)),
            extra=data.get("extra") or {"name": "USD Coin", "version": "2"},
        )


def build_payment_requirements(
    price_usdc: str,
    pay_to: str,
    asset: str,
    resource: str,
    description: str,
    network: str = "base",
    max_timeout_seconds: int = 300,
    decimals: int = 6,
) -> PaymentRequirements:
    return PaymentRequirements(
        max_amount_required=to_atomic_units(price_usdc, decimals),
        asset=asset,
        pay_to=pay_to,
        resource=resource,
        description=description,
        network=network,
        max_timeout_seconds=max_timeout_seconds,
    )


def payment_required_body(requirements: List[PaymentRequirements]) -> Dict[str, Any]:
    """Body of a 402 response."""
    return {
        "x402Version": X402_VERSION,
        "accepts": [r.to_dict() for r in requirements],
        "error": "Payment Required",
    }


def encode_payment_header(payload: Dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def decode_payment_header(header: str) -> Dict[str, Any]:
    try:
        decoded = json.loads(base64.b64decode(header, validate=True).decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError) as e:
        raise InvalidPaymentHeader(
            "Malformed payment header - Invalid base64 encoding or JSON structure"
        ) from e
    if not isinstance(decoded, dict):
        raise InvalidPaymentHeader("Malformed payment header - expected a JSON object")
    return decoded


def validate_payment_header(
    header: str,
    expected_amount: int,
    network: str = "base",
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Check the structure of an x402 exact-scheme header.

    Returns the decoded header. Raises InvalidPaymentHeader listing every
    problem found.
    """
    decoded = decode_payment_header(header)
    errors: List[str] = []

    if decoded.get("x402Version") != X402_VERSION:
        errors.append(f"Missing or invalid x402Version (must be {X402_VERSION})")
    if decoded.get("scheme") != "exact":
        errors.append('Invalid payment scheme (must be "exact")')
    if decoded.get("network") != network:
        errors.append(f'Invalid network (must be "{network}")')

    payload = decoded.get("payload") or {}
    if not isinstance(payload, dict):
        errors.append("Invalid payload (must be an object)")
        payload = {}
    elif not payload.get("signature"):
        errors.append("Missing payment signature")

    auth = payload.get("authorization")
    if not auth:
        errors.append("Missing authorization data")
    elif not isinstance(auth, dict):
        errors.append("Invalid authorization data (must be an object)")
    else:
        if not ADDRESS_RE.match(str(auth.get("from", ""))):
            errors.append('Invalid "from" address')
        if not ADDRESS_RE.match(str(auth.get("to", ""))):
            errors.append('Invalid "to" address')
        if str(auth.get("value")) != str(expected_amount):
            errors.append(f"Invalid payment value (expected {expected_amount}, got {auth.get('value')})")
        valid_before = auth.get("validBefore")
        if not valid_before:
            errors.append("Missing validBefore timestamp")
        else:
            current = time.time() if now is None else now
            try:
                if int(valid_before) <= current:
                    errors.append("Payment authorization has expired")
            except (TypeError, ValueError):
                errors.append("Invalid validBefore timestamp")
        if not NONCE_RE.match(str(auth.get("nonce", ""))):
            errors.append("Invalid nonce format (must be 32-byte hex)")

    if errors:
        logger.warning(f"Payment header validation failed: {errors}")
        raise InvalidPaymentHeader(
            "Invalid payment header format", details={"validationErrors": errors}
        )
    return decoded


def payer_address(decoded: Dict[str, Any]) -> Optional[str]:
    payload = decoded.get("payload")
    auth = payload.get("authorization") if isinstance(payload, dict) else None
    return auth.get("from") if isinstance(auth, dict) else None


class X402PaymentSigner:
    """Signs x402 exact-scheme USDC authorizations with a local account."""

    def __init__(self, account, chain_id: int, max_amount_atomic: Optional[int] = None):
        self.account = account
        self.chain_id = chain_id
        self.max_amount_atomic = max_amount_atomic

    @property
    def address(self) -> str:
        return self.account.address

    def create_payment_header(
        self, requirements: PaymentRequirements, now: Optional[float] = None
    ) -> str:
        if requirements.scheme != "exact":
            raise TransactionRejected(f"Unsupported payment scheme: {requirements.scheme}")
        value = requirements.max_amount_required
        if self.max_amount_atomic is not None and value > self.max_amount_atomic:
            raise TransactionRejected(
                f"Payment of {value} exceeds the allowed maximum of {self.max_amount_atomic}",
                code=PaymentErrorCode.PAYMENT_REJECTED,
            )

        current = int(time.time() if now is None else now)
        nonce = "0x" + secrets.token_hex(32)
        authorization = {
            "from": self.account.address,
            "to": Web3.to_checksum_address(requirements.pay_to),
            "value": str(value),
            "validAfter": str(current - 600),
            "validBefore": str(current + requirements.max_timeout_seconds),
            "nonce": nonce,
        }
        typed_data = {
            "types": TRANSFER_WITH_AUTHORIZATION_TYPES,
            "primaryType": "TransferWithAuthorization",
            "domain": {
                "name": requirements.extra.get("name", "USD Coin"),
                "version": requirements.extra.get("version", "2"),
                "chainId": self.chain_id,
                "verifyingContract": Web3.to_checksum_address(requirements.asset),
            },
            "message": {
                "from": authorization["from"],
                "to": authorization["to"],
                "value": value,
                "validAfter": int(authorization["validAfter"]),
                "validBefore": int(authorization["validBefore"]),
                "nonce": bytes.fromhex(nonce[2:]),
            },
        }
        signed = self.account.sign_message(encode_typed_data(full_message=typed_data))
        logger.info(f"Signed x402 authorization of {value} from {self.account.address}")
        return encode_payment_header({
            "x402Version": X402_VERSION,
            "scheme": requirements.scheme,
            "network": requirements.network,
            "payload": {
                "signature": Web3.to_hex(signed.signature),
                "authorization": authorization,
            },
        })
