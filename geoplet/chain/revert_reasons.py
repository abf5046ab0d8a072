"""
Decoding of Geoplet contract revert reasons into user-facing outcomes.

Revert strings come back embedded in provider error messages, so matching
is by case-insensitive substring.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple, Union


class MintRevertReason(str, Enum):
    FID_ALREADY_MINTED = "fid_already_minted"
    MAX_SUPPLY_REACHED = "max_supply_reached"
    IMAGE_TOO_LARGE = "image_too_large"
    RECIPIENT_MISMATCH = "recipient_mismatch"
    EMPTY_IMAGE_DATA = "empty_image_data"
    SIGNATURE_EXPIRED = "signature_expired"
    SIGNATURE_ALREADY_USED = "signature_already_used"
    INVALID_SIGNATURE = "invalid_signature"
    MINTING_PAUSED = "minting_paused"
    DEADLINE_TOO_LONG = "deadline_too_long"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    USER_REJECTED = "user_rejected"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RevertInfo:
    reason: MintRevertReason
    user_message: str
    can_retry: bool


# Order matters: "invalid signature" must not shadow "signature expired" etc.
_PATTERNS: List[Tuple[Tuple[str, ...], RevertInfo]] = [
    (("fid already minted",), RevertInfo(
        MintRevertReason.FID_ALREADY_MINTED,
        "This FID has already minted a Geoplet. Each FID can only mint once.",
        False,
    )),
    (("max supply reached",), RevertInfo(
        MintRevertReason.MAX_SUPPLY_REACHED,
        "All Geoplets have been minted. Collection sold out!",
        False,
    )),
    (("image too large",), RevertInfo(
        MintRevertReason.IMAGE_TOO_LARGE,
        "Image is too large (max 24KB). Please regenerate with a simpler design.",
        True,
    )),
    (("caller mismatch", "not the caller"), RevertInfo(
        MintRevertReason.RECIPIENT_MISMATCH,
        "Wallet address mismatch. Please use the same wallet that requested the mint.",
        False,
    )),
    (("invalid recipient",), RevertInfo(
        MintRevertReason.RECIPIENT_MISMATCH,
        "Invalid recipient address. Please check your wallet connection.",
        True,
    )),
    (("empty image data",), RevertInfo(
        MintRevertReason.EMPTY_IMAGE_DATA,
        "Image data is missing. Please regenerate your Geoplet.",
        True,
    )),
    (("signature expired",), RevertInfo(
        MintRevertReason.SIGNATURE_EXPIRED,
        "Payment signature expired. Please try minting again.",
        True,
    )),
    (("signature already used",), RevertInfo(
        MintRevertReason.SIGNATURE_ALREADY_USED,
        "This mint signature was already used. Please try minting again.",
        True,
    )),
    (("invalid signature",), RevertInfo(
        MintRevertReason.INVALID_SIGNATURE,
        "Invalid mint signature. Please try again.",
        True,
    )),
    (("minting paused", "minting is paused"), RevertInfo(
        MintRevertReason.MINTING_PAUSED,
        "Minting is temporarily paused. Please try again later.",
        True,
    )),
    (("deadline too long",), RevertInfo(
        MintRevertReason.DEADLINE_TOO_LONG,
        "Mint signature deadline is invalid. Please try again.",
        True,
    )),
    (("insufficient funds",), RevertInfo(
        MintRevertReason.INSUFFICIENT_FUNDS,
        "Insufficient ETH for gas fees.",
        True,
    )),
    (("user rejected", "user denied", "rejected the request"), RevertInfo(
        MintRevertReason.USER_REJECTED,
        "Transaction was rejected in your wallet.",
        True,
    )),
]

_UNKNOWN = RevertInfo(
    MintRevertReason.UNKNOWN,
    "Transaction failed. Please try again.",
    True,
)


def decode_revert_reason(error: Union[BaseException, str, None]) -> RevertInfo:
    """Map a revert string (or an exception carrying one) to a RevertInfo."""
    if error is None:
        return _UNKNOWN
    message = str(error).lower()
    for needles, info in _PATTERNS:
        if any(needle in message for needle in needles):
            return info
    return _UNKNOWN
