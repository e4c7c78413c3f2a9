"""
Pydantic models for API requests and responses.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from web3 import Web3

from .store import TransactionRecord
from .units import format_units


def _valid_address(value: str) -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError("Invalid Ethereum address")
    return value


def _checksum_address(value: str) -> str:
    if not isinstance(value, str) or not Web3.is_address(value.strip()):
        raise ValueError("Invalid Ethereum address")
    return Web3.to_checksum_address(value.strip())


def _positive_decimal_string(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int, float, Decimal)):
        raise ValueError("Invalid amount")
    text = str(value).strip()
    try:
        amount = Decimal(text)
    except InvalidOperation as e:
        raise ValueError("Invalid amount") from e
    if not amount.is_finite() or amount <= 0:
        raise ValueError("Invalid amount")
    return text


# ============================================================================
# Transfers
# ============================================================================

class TransferRequest(BaseModel):
    """Signed request to relay a token transfer."""

    sender: str = Field(..., description="Sender EVM address (0x...)")
    recipient: str = Field(..., description="Recipient EVM address (0x...)")
    amount: str = Field(..., description="Token amount as a decimal string (e.g. \"10.5\")")
    nonce: int = Field(..., ge=0, description="Sender's next relay nonce")
    signature: str = Field(
        ...,
        min_length=1,
        description="personal_sign signature over CastPay:<sender>:<recipient>:<amountBaseUnits>:<nonce>",
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "sender": "0x1234567890abcdef1234567890abcdef12345678",
                    "recipient": "0xabcdef1234567890abcdef1234567890abcdef12",
                    "amount": "10.00",
                    "nonce": 0,
                    "signature": "0x...",
                }
            ]
        }
    }

    @field_validator("sender", "recipient")
    @classmethod
    def validate_address(cls, value: str) -> str:
        return _valid_address(value)

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, value: Any) -> str:
        return _positive_decimal_string(value)


class TransferResponse(BaseModel):
    """Acknowledgement of an accepted transfer."""

    id: str = Field(..., description="Tracking id for GET /api/payments/status/{id}")
    status: str = Field("submitted", description="Intake status")
    message: str = Field(..., description="Human-readable message")


class TransactionResponse(BaseModel):
    """Current state of a relayed transfer."""

    id: str
    sender: str
    recipient: str
    amount: str = Field(..., description="Amount as a decimal string")
    amount_base_units: int = Field(..., description="Amount in token base units")
    nonce: int
    status: str = Field(..., description="pending | processing | submitted | success | failed")
    chain_tx_hash: Optional[str] = Field(None, description="On-chain transaction hash once broadcast")
    detail: dict[str, Any] = Field(default_factory=dict, description="Diagnostics and transition history")
    created_at: datetime
    last_updated_at: datetime

    @classmethod
    def from_record(cls, record: TransactionRecord, decimals: int = 6) -> "TransactionResponse":
        return cls(
            id=record.id,
            sender=record.sender,
            recipient=record.recipient,
            amount=format_units(record.amount_base_units, decimals),
            amount_base_units=record.amount_base_units,
            nonce=record.nonce,
            status=record.status.value,
            chain_tx_hash=record.chain_tx_hash,
            detail=record.detail,
            created_at=record.created_at,
            last_updated_at=record.last_updated_at,
        )


class TransactionListResponse(BaseModel):
    """List of relayed transfers, newest first."""

    transactions: list[TransactionResponse]
    count: int


class BalanceResponse(BaseModel):
    """Token balance and relay allowance for an address."""

    address: str
    balance: str = Field(..., description="Balance as a decimal string")
    allowance: str = Field(..., description="Allowance granted to the relay as a decimal string")
    balance_base_units: int
    allowance_base_units: int
    spender: str = Field(..., description="Relay address that must be approved")


# ============================================================================
# Users
# ============================================================================

class NonceResponse(BaseModel):
    """Next nonce a sender must sign with."""

    address: str
    nonce: int
    source: str = "memory"


class ResolveUserResponse(BaseModel):
    """Username resolved to an address."""

    username: str
    address: str
    source: str
    display_name: Optional[str] = None
    fid: Optional[int] = None


# ============================================================================
# Paymaster
# ============================================================================

class PaymasterStatusResponse(BaseModel):
    """Paymaster contract state."""

    paymaster_address: str
    contract_balance: str = Field(..., description="Balance in base units")
    total_deposited: str = Field(..., description="Total deposited in base units")
    is_paused: bool
    sponsorship_enabled: bool
    user_count: int


class PaymasterBalanceResponse(BaseModel):
    """Paymaster token balance."""

    balance: str = Field(..., description="Balance in base units")
    formatted: str = Field(..., description="Balance as a decimal string")


class DepositRequest(BaseModel):
    """Request to deposit tokens from the relay wallet into the paymaster."""

    amount: str = Field(..., description="Token amount as a decimal string")

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, value: Any) -> str:
        return _positive_decimal_string(value)


class RegisterUserRequest(BaseModel):
    """Request to register with the paymaster."""

    user_address: str = Field(..., description="User EVM address (0x...)")

    @field_validator("user_address")
    @classmethod
    def validate_address(cls, value: str) -> str:
        return _checksum_address(value)


class PaymasterTxResponse(BaseModel):
    """Result of a paymaster write."""

    success: bool
    tx_hash: Optional[str] = None
    message: str
    amount_base_units: Optional[int] = None
    user_address: Optional[str] = None


# ============================================================================
# Meta / Health
# ============================================================================

class RelayerInfoResponse(BaseModel):
    """Relay wallet address users must approve."""

    relayer: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    evm_rpc: bool = Field(..., description="EVM RPC connectivity")
    relay_running: bool = Field(..., description="Transfer workers running")
    queued_transfers: int
    transfers_accepted: int
    transfers_succeeded: int
    transfers_failed: int
    contracts: dict[str, Optional[str]] = Field(..., description="Configured contract addresses")
