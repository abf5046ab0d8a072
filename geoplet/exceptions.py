"""
Custom Exception Classes

This module defines the exceptions raised across the Geoplet service and
mint pipeline. Each carries an error code from ``geoplet.core.error_codes``
so the API layer can turn it into a structured response.
"""

from typing import Any, Dict, Optional

from .core.error_codes import (
    GenerationErrorCode,
    MintErrorCode,
    PaymentErrorCode,
    get_error_message,
)


class GeopletError(Exception):
    """Base exception for the Geoplet application."""

    default_code: Any = PaymentErrorCode.UNKNOWN_ERROR

    def __init__(
        self,
        message: Optional[str] = None,
        code: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code or self.default_code
        self.details = details or {}
        self.message = message or get_error_message(self.code)
        super().__init__(self.message)


class ConfigurationError(GeopletError):
    """Raised when required credentials or settings are missing."""

    default_code = MintErrorCode.SERVICE_UNAVAILABLE


class InvalidRequest(GeopletError):
    """Raised for malformed input (never retried)."""

    default_code = MintErrorCode.INVALID_REQUEST


class PaymentRequired(GeopletError):
    """Raised when a priced endpoint is called without a payment proof."""

    default_code = PaymentErrorCode.PAYMENT_REQUIRED

    def __init__(self, requirements: Dict[str, Any], message: Optional[str] = None):
        self.requirements = requirements
        super().__init__(message, details={"requirements": requirements})


class PaymentNotVerified(GeopletError):
    """Raised when a payment proof cannot be verified or settled."""

    default_code = PaymentErrorCode.PAYMENT_VERIFICATION_FAILED


class AlreadyMinted(GeopletError):
    """Raised when the identity already holds a Geoplet."""

    default_code = MintErrorCode.FID_ALREADY_MINTED

    def __init__(self, fid: int, message: Optional[str] = None):
        self.fid = fid
        super().__init__(message, details={"fid": fid})


class ArtifactTooLarge(GeopletError):
    """Raised when a generated image exceeds the on-chain size ceiling."""

    default_code = MintErrorCode.IMAGE_TOO_LARGE

    def __init__(self, size_bytes: int, max_bytes: int):
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes
        super().__init__(
            f"Image is too large ({size_bytes / 1024:.2f}KB, max {max_bytes // 1024}KB)",
            details={"size_bytes": size_bytes, "max_bytes": max_bytes},
        )


class TransactionRejected(GeopletError):
    """Raised when the wallet or payment signer declines to sign."""

    default_code = MintErrorCode.TX_REJECTED


class TransactionReverted(GeopletError):
    """Raised when a mint transaction reverts; carries the decoded reason."""

    default_code = MintErrorCode.TX_REVERTED

    def __init__(
        self,
        reason: Any,
        message: str,
        can_retry: bool = True,
        tx_hash: Optional[str] = None,
    ):
        self.reason = reason
        self.can_retry = can_retry
        self.tx_hash = tx_hash
        super().__init__(
            message,
            details={"reason": getattr(reason, "value", reason), "tx_hash": tx_hash},
        )


class ContractCallReverted(GeopletError):
    """Raised by chain clients when a call or estimate hits a revert."""

    default_code = MintErrorCode.CONTRACT_ERROR


class MintCancelled(GeopletError):
    """Raised when the mint pipeline is aborted mid-flight."""

    default_code = PaymentErrorCode.USER_CANCELLED


class FetchTimeoutError(GeopletError):
    """Raised when retry-fetch exhausts its attempts on timeouts or network errors."""

    default_code = PaymentErrorCode.NETWORK_ERROR

    def __init__(self, url: str, attempts: int, message: Optional[str] = None):
        self.url = url
        self.attempts = attempts
        super().__init__(
            message or f"Request to {url} failed after {attempts} attempts",
            details={"attempts": attempts},
        )


class RateLimitExceeded(GeopletError):
    """Raised when a caller exceeds the fixed-window request cap."""

    default_code = PaymentErrorCode.RATE_LIMIT_EXCEEDED

    def __init__(self, key: str, reset_at: float):
        self.key = key
        self.reset_at = reset_at
        super().__init__(details={"reset_at": reset_at})


class GenerationError(GeopletError):
    """Raised for image generation failures."""

    default_code = GenerationErrorCode.GENERATION_FAILED


class MarketplaceAPIError(GeopletError):
    """Raised when a marketplace API (Rarible, Alchemy) returns an error."""

    default_code = PaymentErrorCode.API_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, details={"status_code": status_code})


class FarcasterIntegrationError(GeopletError):
    """Raised for errors specific to Farcaster integration."""

    default_code = PaymentErrorCode.API_ERROR
