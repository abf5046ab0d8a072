"""
Tests for x402 payment requirements, header validation and client signing.
"""

import pytest

from geoplet.exceptions import TransactionRejected
from geoplet.integrations.payment.x402 import (
    InvalidPaymentHeader,
    PaymentRequirements,
    build_payment_requirements,
    decode_payment_header,
    encode_payment_header,
    payer_address,
    payment_required_body,
    validate_payment_header,
    X402PaymentSigner,
)

from tests.factories import RECIPIENT, USDC

NOW = 1_700_000_000


@pytest.fixture
def requirements() -> PaymentRequirements:
    return build_payment_requirements(
        price_usdc="1.99",
        pay_to=RECIPIENT,
        asset=USDC,
        resource="https://geoplet.example/api/get-mint-signature",
        description="Mint",
    )


@pytest.fixture
def payment_signer(payer_account) -> X402PaymentSigner:
    return X402PaymentSigner(payer_account, chain_id=8453)


class TestRequirements:
    def test_price_in_atomic_units(self, requirements):
        assert requirements.max_amount_required == 1_990_000
        data = requirements.to_dict()
        assert data["maxAmountRequired"] == "1990000"
        assert data["scheme"] == "exact"
        assert data["payTo"] == RECIPIENT
        assert PaymentRequirements.from_dict(data) == requirements

    def test_402_body(self, requirements):
        body = payment_required_body([requirements])
        assert body["x402Version"] == 1
        assert body["accepts"][0]["asset"] == USDC
        assert body["error"] == "Payment Required"


class TestHeaderValidation:
    """Server-side structural checks before the facilitator is called."""

    def test_signed_header_validates(self, requirements, payment_signer, payer_account):
        header = payment_signer.create_payment_header(requirements, now=NOW)

        decoded = validate_payment_header(header, 1_990_000, now=NOW + 10)

        assert payer_address(decoded) == payer_account.address
        auth = decoded["payload"]["authorization"]
        assert auth["value"] == "1990000"
        assert auth["validBefore"] == str(NOW + 300)

    def test_wrong_amount_rejected(self, requirements, payment_signer):
        header = payment_signer.create_payment_header(requirements, now=NOW)
        with pytest.raises(InvalidPaymentHeader) as exc_info:
            validate_payment_header(header, 3_000_000, now=NOW)
        assert any("value" in e for e in exc_info.value.details["validationErrors"])

    def test_expired_authorization_rejected(self, requirements, payment_signer):
        header = payment_signer.create_payment_header(requirements, now=NOW)
        with pytest.raises(InvalidPaymentHeader) as exc_info:
            validate_payment_header(header, 1_990_000, now=NOW + 301)
        assert "Payment authorization has expired" in exc_info.value.details["validationErrors"]

    def test_wrong_network_rejected(self, requirements, payment_signer):
        header = payment_signer.create_payment_header(requirements, now=NOW)
        with pytest.raises(InvalidPaymentHeader):
            validate_payment_header(header, 1_990_000, network="base-sepolia", now=NOW)

    def test_malformed_base64(self):
        with pytest.raises(InvalidPaymentHeader):
            decode_payment_header("not base64 at all!")

    def test_non_object_json(self):
        with pytest.raises(InvalidPaymentHeader):
            decode_payment_header(encode_payment_header([1, 2]))

    def test_lists_every_problem(self):
        header = encode_payment_header({"x402Version": 2, "scheme": "upto", "network": "base", "payload": {}})
        with pytest.raises(InvalidPaymentHeader) as exc_info:
            validate_payment_header(header, 1_990_000)
        errors = exc_info.value.details["validationErrors"]
        assert len(errors) == 4

    @pytest.mark.parametrize(
        "payload",
        ["x", ["signature"], 7, {"signature": "0xsig", "authorization": "x"}, {"signature": "0xsig", "authorization": [1]}],
    )
    def test_non_object_payload_parts(self, payload):
        header = encode_payment_header({"x402Version": 1, "scheme": "exact", "network": "base", "payload": payload})

        with pytest.raises(InvalidPaymentHeader) as exc_info:
            validate_payment_header(header, 1_990_000)

        errors = exc_info.value.details["validationErrors"]
        assert any("must be an object" in e for e in errors)
        assert payer_address(decode_payment_header(header)) is None


class TestPaymentSigner:
    def test_refuses_over_maximum(self, requirements, payer_account):
        signer = X402PaymentSigner(payer_account, chain_id=8453, max_amount_atomic=1_000_000)
        with pytest.raises(TransactionRejected):
            signer.create_payment_header(requirements)

    def test_refuses_unknown_scheme(self, requirements, payment_signer):
        requirements.scheme = "upto"
        with pytest.raises(TransactionRejected):
            payment_signer.create_payment_header(requirements)

    def test_nonces_are_unique(self, requirements, payment_signer):
        first = decode_payment_header(payment_signer.create_payment_header(requirements, now=NOW))
        second = decode_payment_header(payment_signer.create_payment_header(requirements, now=NOW))
        assert first["payload"]["authorization"]["nonce"] != second["payload"]["authorization"]["nonce"]
