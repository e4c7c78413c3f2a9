"""
Shared fixtures for relay tests.
"""

from typing import Callable, Optional

import pytest
from eth_account import Account

from castpay_relay.config import Settings
from castpay_relay.evm import MockChainGateway
from castpay_relay.executor import TransferIntent
from castpay_relay.signature import sign_transfer_intent

SENDER_KEY = "0x" + "11" * 32
RECIPIENT_KEY = "0x" + "22" * 32
OTHER_KEY = "0x" + "33" * 32

SENDER = Account.from_key(SENDER_KEY).address
RECIPIENT = Account.from_key(RECIPIENT_KEY).address


@pytest.fixture
def gateway() -> MockChainGateway:
    return MockChainGateway()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        relayer_address="0x000000000000000000000000000000000000dEaD",
        paymaster_address="0x000000000000000000000000000000000000bEEF",
        api_token="test-token",
        neynar_api_key=None,
        max_concurrent_transfers=2,
        max_queued_transfers=10,
    )


@pytest.fixture
def make_intent() -> Callable[..., TransferIntent]:
    """Factory for signed intents from SENDER to RECIPIENT."""

    def _make(
        amount_base_units: int = 10_000_000,
        nonce: int = 0,
        signer_key: str = SENDER_KEY,
        sender: str = SENDER,
        recipient: str = RECIPIENT,
        signature: Optional[str] = None,
    ) -> TransferIntent:
        if signature is None:
            signature = sign_transfer_intent(signer_key, sender, recipient, amount_base_units, nonce)
        return TransferIntent(
            sender=sender,
            recipient=recipient,
            amount_base_units=amount_base_units,
            nonce=nonce,
            signature=signature,
        )

    return _make
