"""
CastPay Relay

Accepts signed transfer intents for a stablecoin and executes them on-chain
via transferFrom from a relay wallet, so senders never pay gas. Each intent
is tracked through pending -> processing -> submitted -> success | failed.

Usage:
    # Run the API server
    castpay-relay serve

    # Sign a test intent
    castpay-relay sign 0xRecipient... 10.00 --nonce 0 --private-key 0x...

    # Inspect the paymaster
    castpay-relay paymaster-status
"""

__version__ = "0.1.0"

from .config import Settings, get_settings
from .errors import ErrorKind, RelayError, TransferValidationError
from .evm import ChainGateway, MockChainGateway
from .executor import TransactionExecutor, TransferIntent
from .nonces import NonceTracker
from .relayer import TransferRelay
from .signature import sign_transfer_intent, verify_transfer_signature
from .store import TransactionRecord, TransactionStatus, TransactionStatusStore

__all__ = [
    "__version__",
    "Settings",
    "get_settings",
    "ErrorKind",
    "RelayError",
    "TransferValidationError",
    "ChainGateway",
    "MockChainGateway",
    "TransactionExecutor",
    "TransferIntent",
    "NonceTracker",
    "TransferRelay",
    "sign_transfer_intent",
    "verify_transfer_signature",
    "TransactionRecord",
    "TransactionStatus",
    "TransactionStatusStore",
]
