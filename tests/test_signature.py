"""
Tests for transfer intent signatures.
"""

import pytest

from castpay_relay.signature import (
    build_transfer_message,
    sign_transfer_intent,
    verify_transfer_signature,
)

from conftest import OTHER_KEY, RECIPIENT, SENDER, SENDER_KEY


class TestTransferMessage:
    """Tests for the canonical signed message."""

    def test_message_format(self):
        message = build_transfer_message(SENDER, RECIPIENT, 10_000_000, 3)
        assert message == f"CastPay:{SENDER}:{RECIPIENT}:10000000:3"


class TestVerifyTransferSignature:
    """Tests for signature recovery and comparison."""

    def test_valid_signature(self):
        sig = sign_transfer_intent(SENDER_KEY, SENDER, RECIPIENT, 10_000_000, 0)
        assert sig.startswith("0x")
        assert len(sig) == 2 + 130
        assert verify_transfer_signature(SENDER, RECIPIENT, 10_000_000, 0, sig) is True

    def test_raw_bytes_signature(self):
        sig = sign_transfer_intent(SENDER_KEY, SENDER, RECIPIENT, 10_000_000, 0)
        assert verify_transfer_signature(SENDER, RECIPIENT, 10_000_000, 0, bytes.fromhex(sig[2:])) is True

    @pytest.mark.parametrize("index", [0, 10, 31, 32, 50, 63, 64])
    def test_single_byte_mutation_fails(self, index):
        """Changing any one byte of r, s or v breaks the signature."""
        sig = bytearray.fromhex(sign_transfer_intent(SENDER_KEY, SENDER, RECIPIENT, 10_000_000, 0)[2:])
        sig[index] ^= 0x01
        assert verify_transfer_signature(SENDER, RECIPIENT, 10_000_000, 0, "0x" + sig.hex()) is False

    @pytest.mark.parametrize(
        "field,value",
        [
            ("amount", 10_000_001),
            ("nonce", 1),
            ("recipient", SENDER),
        ],
    )
    def test_tampered_intent_fails(self, field, value):
        sig = sign_transfer_intent(SENDER_KEY, SENDER, RECIPIENT, 10_000_000, 0)
        args = {"amount": 10_000_000, "nonce": 0, "recipient": RECIPIENT}
        args[field] = value
        assert verify_transfer_signature(SENDER, args["recipient"], args["amount"], args["nonce"], sig) is False

    def test_wrong_signer_fails(self):
        sig = sign_transfer_intent(OTHER_KEY, SENDER, RECIPIENT, 10_000_000, 0)
        assert verify_transfer_signature(SENDER, RECIPIENT, 10_000_000, 0, sig) is False

    @pytest.mark.parametrize(
        "sig",
        [
            "",
            "0x",
            "0x1234",
            "0x" + "ab" * 64,
            "0x" + "ab" * 66,
            "not-hex-at-all",
            "0x" + "zz" * 65,
        ],
    )
    def test_malformed_signature_fails(self, sig):
        assert verify_transfer_signature(SENDER, RECIPIENT, 10_000_000, 0, sig) is False
