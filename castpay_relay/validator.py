"""
Precondition checks run before any on-chain write.
"""

from typing import Any

from web3 import Web3
import structlog

from .errors import ErrorKind, TransferValidationError
from .units import format_units

logger = structlog.get_logger()

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def is_valid_address(address: Any) -> bool:
    """Well-formed EVM address that is not the zero address."""
    if not isinstance(address, str) or not Web3.is_address(address):
        return False
    return address.lower() != ZERO_ADDRESS


class TransferValidator:
    """
    Checks a transfer against the sender's on-chain state.

    Checks run in order and stop at the first failure:
    1. addresses are well-formed and non-zero
    2. amount is positive
    3. balance covers the amount
    4. allowance granted to the relay covers the amount

    Steps 1 and 2 never touch the chain.
    """

    def __init__(self, gateway: Any, decimals: int = 6):
        self.gateway = gateway
        self.decimals = decimals

    async def validate(self, sender: str, recipient: str, amount_base_units: int) -> None:
        """
        Raises:
            TransferValidationError: with kind InvalidAddress, InvalidAmount,
                InsufficientBalance or InsufficientAllowance
        """
        if not is_valid_address(sender) or not is_valid_address(recipient):
            raise TransferValidationError(
                ErrorKind.INVALID_ADDRESS,
                "Invalid addresses",
                hint="Sender and recipient must be valid, non-zero EVM addresses",
            )

        if amount_base_units <= 0:
            raise TransferValidationError(
                ErrorKind.INVALID_AMOUNT,
                "Invalid amount",
                hint="Amount must be greater than zero",
            )

        balance = await self.gateway.get_balance(sender)
        if balance < amount_base_units:
            raise TransferValidationError(
                ErrorKind.INSUFFICIENT_BALANCE,
                f"Insufficient balance: {format_units(balance, self.decimals)} < "
                f"{format_units(amount_base_units, self.decimals)}",
                hint="Top up the sender's token balance",
            )

        allowance = await self.gateway.get_allowance(sender)
        if allowance < amount_base_units:
            raise TransferValidationError(
                ErrorKind.INSUFFICIENT_ALLOWANCE,
                f"Insufficient allowance: {format_units(allowance, self.decimals)} < "
                f"{format_units(amount_base_units, self.decimals)}",
                hint="Approve the relay to spend tokens on your behalf",
            )

        logger.debug(
            "transfer_validated",
            sender=sender,
            recipient=recipient,
            amount_base_units=amount_base_units,
            balance=balance,
            allowance=allowance,
        )
