"""
Error kinds and exceptions for the CastPay relay.

Every failure a transfer can end in is tagged with an ErrorKind so callers
never have to inspect message strings to tell failures apart.

Exception hierarchy:
    RelayError
    ├── ConfigurationError
    ├── ChainError
    │   └── ChainTimeoutError
    ├── TransferValidationError
    ├── InvalidTransitionError
    ├── TransactionNotFoundError
    ├── RelayQueueFullError
    └── UserNotFoundError
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Tagged failure causes recorded in a transaction's detail."""

    INVALID_SIGNATURE = "InvalidSignature"
    INVALID_NONCE = "InvalidNonce"
    INVALID_ADDRESS = "InvalidAddress"
    INVALID_AMOUNT = "InvalidAmount"
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    INSUFFICIENT_ALLOWANCE = "InsufficientAllowance"
    TRANSACTION_REVERTED = "TransactionReverted"
    RPC_ERROR = "RpcError"
    TIMEOUT = "Timeout"
    CONFIGURATION = "ConfigurationError"
    NOT_FOUND = "NotFound"
    INTERNAL = "InternalError"


class RelayError(Exception):
    """Root exception for the relay."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        self.message = message
        if kind is not None:
            self.kind = kind
        super().__init__(message)


class ConfigurationError(RelayError):
    """A required setting (key, contract address) is missing."""

    kind = ErrorKind.CONFIGURATION


class ChainError(RelayError):
    """An RPC call or contract call failed."""

    kind = ErrorKind.RPC_ERROR


class ChainTimeoutError(ChainError):
    """An RPC call did not complete within its timeout."""

    kind = ErrorKind.TIMEOUT


class TransferValidationError(RelayError):
    """
    A transfer failed a precondition check.

    `kind` is one of InvalidAddress, InvalidAmount, InsufficientBalance or
    InsufficientAllowance; `hint` tells the user what to do about it.
    """

    def __init__(self, kind: ErrorKind, message: str, hint: Optional[str] = None):
        super().__init__(message, kind)
        self.hint = hint


class InvalidTransitionError(RelayError):
    """A status update would break the transaction state machine."""

    def __init__(self, record_id: str, current: str, requested: str):
        self.record_id = record_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Transaction {record_id}: cannot move from {current} to {requested}"
        )


class TransactionNotFoundError(RelayError):
    """No transaction record exists for the id."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Transaction not found: {record_id}")


class RelayQueueFullError(RelayError):
    """The transfer queue is at capacity."""


class UserNotFoundError(RelayError):
    """A username could not be resolved to a verified address."""

    kind = ErrorKind.NOT_FOUND
