"""
Tests for contract revert decoding.
"""

import pytest

from geoplet.chain.revert_reasons import MintRevertReason, decode_revert_reason


class TestDecodeRevertReason:
    @pytest.mark.parametrize(
        "message, reason, can_retry",
        [
            ("execution reverted: FID already minted", MintRevertReason.FID_ALREADY_MINTED, False),
            ("execution reverted: Max supply reached", MintRevertReason.MAX_SUPPLY_REACHED, False),
            ("Image too large", MintRevertReason.IMAGE_TOO_LARGE, True),
            ("execution reverted: Signature expired", MintRevertReason.SIGNATURE_EXPIRED, True),
            ("Signature already used", MintRevertReason.SIGNATURE_ALREADY_USED, True),
            ("execution reverted: Invalid signature", MintRevertReason.INVALID_SIGNATURE, True),
            ("Minting is paused", MintRevertReason.MINTING_PAUSED, True),
            ("MetaMask Tx Signature: User denied transaction signature.", MintRevertReason.USER_REJECTED, True),
            ("Caller mismatch", MintRevertReason.RECIPIENT_MISMATCH, False),
        ],
    )
    def test_known_reasons(self, message, reason, can_retry):
        info = decode_revert_reason(message)
        assert info.reason == reason
        assert info.can_retry is can_retry
        assert info.user_message

    def test_accepts_exceptions(self):
        info = decode_revert_reason(RuntimeError("execution reverted: FID ALREADY MINTED"))
        assert info.reason == MintRevertReason.FID_ALREADY_MINTED

    def test_unknown_and_none(self):
        assert decode_revert_reason("out of cheese").reason == MintRevertReason.UNKNOWN
        assert decode_revert_reason(None).reason == MintRevertReason.UNKNOWN
        assert decode_revert_reason(None).can_retry is True
