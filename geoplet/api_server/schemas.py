"""
Pydantic models for API requests and responses.

Request fields use the camelCase names the mini-app sends.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from ..core.persistence import PaymentTracking, UnmintedGeoplet


class MintSignatureRequest(BaseModel):
    # Validated by the issuer so malformed values produce INVALID_REQUEST
    to: Optional[str] = None
    fid: Optional[Union[int, str]] = None


class SettlePaymentRequest(BaseModel):
    fid: Optional[int] = None


class GenerateImageRequest(BaseModel):
    image_url: str = Field(alias="imageUrl")
    token_id: str = Field(alias="tokenId")
    name: Optional[str] = None
    fid: Optional[int] = None


class SaveGenerationRequest(BaseModel):
    fid: int
    image_data: str = Field(alias="imageData")
    username: Optional[str] = None


class PaymentTrackingCreate(BaseModel):
    fid: int
    settlement_tx_hash: str = Field(alias="settlementTxHash")
    status: str = "settled"


class PaymentTrackingUpdate(BaseModel):
    status: str
    mint_tx_hash: Optional[str] = Field(default=None, alias="mintTxHash")
    refund_tx_hash: Optional[str] = Field(default=None, alias="refundTxHash")


class MarkContactedRequest(BaseModel):
    fids: List[int]
    contacted: bool = True


class SendCastRequest(BaseModel):
    fids: List[int]
    message: str = ""
    template: Optional[str] = None  # "friendly" rotates built-in variations


def generation_to_dict(record: UnmintedGeoplet) -> Dict[str, Any]:
    return {
        "fid": record.fid,
        "username": record.username,
        "imageData": record.image_data,
        "castSent": record.cast_sent,
        "createdAt": record.created_at,
    }


def payment_to_dict(record: PaymentTracking) -> Dict[str, Any]:
    return {
        "fid": record.fid,
        "settlementTxHash": record.settlement_tx_hash,
        "status": record.status,
        "mintTxHash": record.mint_tx_hash,
        "refundTxHash": record.refund_tx_hash,
        "createdAt": record.created_at,
        "updatedAt": record.updated_at,
    }
