"""
Error codes and user-facing messages shared by the API and the mint pipeline.

Every error response from the API has the shape::

    {"error": {"code": "...", "message": "...", "details": ...}}
"""

from enum import Enum
from typing import Any, Dict, Optional


class PaymentErrorCode(str, Enum):
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    USER_REJECTED = "USER_REJECTED"
    USER_CANCELLED = "USER_CANCELLED"
    SIGNATURE_EXPIRED = "SIGNATURE_EXPIRED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    SIGNATURE_GENERATION_FAILED = "SIGNATURE_GENERATION_FAILED"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    PAYMENT_VERIFICATION_FAILED = "PAYMENT_VERIFICATION_FAILED"
    PAYMENT_TIMEOUT = "PAYMENT_TIMEOUT"
    PAYMENT_REJECTED = "PAYMENT_REJECTED"
    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"
    ONCHAIN_FI_ERROR = "ONCHAIN_FI_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class MintErrorCode(str, Enum):
    FID_ALREADY_MINTED = "FID_ALREADY_MINTED"
    MAX_SUPPLY_REACHED = "MAX_SUPPLY_REACHED"
    IMAGE_TOO_LARGE = "IMAGE_TOO_LARGE"
    IMAGE_VALIDATION_FAILED = "IMAGE_VALIDATION_FAILED"
    CONTRACT_ERROR = "CONTRACT_ERROR"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    GAS_ESTIMATION_FAILED = "GAS_ESTIMATION_FAILED"
    WALLET_NOT_CONNECTED = "WALLET_NOT_CONNECTED"
    WRONG_NETWORK = "WRONG_NETWORK"
    INSUFFICIENT_GAS = "INSUFFICIENT_GAS"
    TX_REVERTED = "TX_REVERTED"
    TX_TIMEOUT = "TX_TIMEOUT"
    TX_REJECTED = "TX_REJECTED"
    INVALID_REQUEST = "INVALID_REQUEST"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    NOT_FOUND = "NOT_FOUND"


class GenerationErrorCode(str, Enum):
    OPENAI_API_ERROR = "OPENAI_API_ERROR"
    OPENAI_RATE_LIMIT = "OPENAI_RATE_LIMIT"
    OPENAI_TIMEOUT = "OPENAI_TIMEOUT"
    GENERATION_FAILED = "GENERATION_FAILED"
    INVALID_PROMPT = "INVALID_PROMPT"
    CONTENT_POLICY_VIOLATION = "CONTENT_POLICY_VIOLATION"
    IMAGE_PROCESSING_FAILED = "IMAGE_PROCESSING_FAILED"
    IMAGE_DOWNLOAD_FAILED = "IMAGE_DOWNLOAD_FAILED"


ERROR_MESSAGES: Dict[str, str] = {
    # Payment
    PaymentErrorCode.INSUFFICIENT_FUNDS.value: "Insufficient USDC balance. Please add funds to your wallet.",
    PaymentErrorCode.USER_REJECTED.value: "Transaction was rejected. Please try again.",
    PaymentErrorCode.USER_CANCELLED.value: "Payment was cancelled.",
    PaymentErrorCode.SIGNATURE_EXPIRED.value: "Payment signature expired. Please try minting again.",
    PaymentErrorCode.INVALID_SIGNATURE.value: "Invalid payment signature. Please try again.",
    PaymentErrorCode.SIGNATURE_GENERATION_FAILED.value: "Failed to generate mint signature. Please try again.",
    PaymentErrorCode.PAYMENT_REQUIRED.value: "Payment is required to continue.",
    PaymentErrorCode.PAYMENT_VERIFICATION_FAILED.value: "Payment verification failed. Please try again.",
    PaymentErrorCode.PAYMENT_TIMEOUT.value: "Payment timed out. Please try again.",
    PaymentErrorCode.PAYMENT_REJECTED.value: "Payment was rejected by the facilitator.",
    PaymentErrorCode.NETWORK_ERROR.value: "Network error. Please check your connection and try again.",
    PaymentErrorCode.API_ERROR.value: "Server error. Please try again later.",
    PaymentErrorCode.ONCHAIN_FI_ERROR.value: "Payment service error. Please try again later.",
    PaymentErrorCode.RATE_LIMIT_EXCEEDED.value: "Too many requests. Please wait a moment and try again.",
    PaymentErrorCode.TOO_MANY_REQUESTS.value: "Too many requests. Please wait a moment and try again.",
    PaymentErrorCode.UNKNOWN_ERROR.value: "An unexpected error occurred. Please try again.",
    # Mint
    MintErrorCode.FID_ALREADY_MINTED.value: "Your Farcaster ID has already been used to mint",
    MintErrorCode.MAX_SUPPLY_REACHED.value: "All Geoplets have been minted. Collection sold out!",
    MintErrorCode.IMAGE_TOO_LARGE.value: "Image is too large (max 24KB)",
    MintErrorCode.IMAGE_VALIDATION_FAILED.value: "Image validation failed. Please regenerate.",
    MintErrorCode.CONTRACT_ERROR.value: "Smart contract error. Please try again.",
    MintErrorCode.TRANSACTION_FAILED.value: "Transaction failed. Please try again.",
    MintErrorCode.GAS_ESTIMATION_FAILED.value: "Failed to estimate gas. Please try again.",
    MintErrorCode.WALLET_NOT_CONNECTED.value: "Please connect your wallet first.",
    MintErrorCode.WRONG_NETWORK.value: "Please switch to Base network.",
    MintErrorCode.INSUFFICIENT_GAS.value: "Insufficient ETH for gas fees.",
    MintErrorCode.TX_REVERTED.value: "Transaction reverted. Please try again.",
    MintErrorCode.TX_TIMEOUT.value: "Transaction timed out. Please check your wallet.",
    MintErrorCode.TX_REJECTED.value: "Transaction was rejected in your wallet.",
    MintErrorCode.INVALID_REQUEST.value: "Invalid request.",
    MintErrorCode.SERVICE_UNAVAILABLE.value: "Service is not configured. Please try again later.",
    MintErrorCode.NOT_FOUND.value: "Not found.",
    # Generation
    GenerationErrorCode.OPENAI_API_ERROR.value: "Image generation service error. Please try again.",
    GenerationErrorCode.OPENAI_RATE_LIMIT.value: "Image generation is busy. Please wait a minute and try again.",
    GenerationErrorCode.OPENAI_TIMEOUT.value: "Image generation timed out. Please try again.",
    GenerationErrorCode.GENERATION_FAILED.value: "Image generation failed. Please try again.",
    GenerationErrorCode.INVALID_PROMPT.value: "Invalid generation request.",
    GenerationErrorCode.CONTENT_POLICY_VIOLATION.value: "This image could not be processed due to content policy.",
    GenerationErrorCode.IMAGE_PROCESSING_FAILED.value: "Failed to process the generated image.",
    GenerationErrorCode.IMAGE_DOWNLOAD_FAILED.value: "Failed to download the source image.",
}


def get_error_message(code: Any) -> str:
    key = code.value if isinstance(code, Enum) else str(code)
    return ERROR_MESSAGES.get(key, ERROR_MESSAGES[PaymentErrorCode.UNKNOWN_ERROR.value])


def api_error(
    code: Any, message: Optional[str] = None, details: Any = None
) -> Dict[str, Any]:
    """Build the structured error body returned by every endpoint."""
    key = code.value if isinstance(code, Enum) else str(code)
    body: Dict[str, Any] = {"code": key, "message": message or get_error_message(key)}
    if details is not None:
        body["details"] = details
    return {"error": body}
