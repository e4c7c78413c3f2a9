"""
Transfer execution: drives one transaction record from processing to a
terminal status.
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog

from .errors import ErrorKind, RelayError, TransferValidationError
from .evm import apply_gas_buffer
from .nonces import NonceTracker
from .signature import verify_transfer_signature
from .sponsorship import GasSponsorshipCoordinator, SponsorshipOutcome
from .store import TransactionRecord, TransactionStatus, TransactionStatusStore
from .validator import TransferValidator

logger = structlog.get_logger()


@dataclass
class TransferIntent:
    """A signed, not yet broadcast transfer request."""

    sender: str  # Checksummed EVM address
    recipient: str  # Checksummed EVM address
    amount_base_units: int  # Token amount at 6 decimals
    nonce: int  # Sender-supplied replay nonce
    signature: str  # personal_sign signature (0x hex)
    signed_sender: Optional[str] = None  # sender exactly as the client signed it
    signed_recipient: Optional[str] = None  # recipient exactly as the client signed it

    @property
    def message_addresses(self) -> tuple[str, str]:
        """Addresses as they appear in the signed message."""
        return self.signed_sender or self.sender, self.signed_recipient or self.recipient


class TransactionExecutor:
    """
    Runs a transfer intent through the relay pipeline:

    1. processing: verify signature, claim nonce, validate balance/allowance
    2. estimate gas (x gas_limit_multiplier) and request paymaster sponsorship
    3. submitted: broadcast transferFrom from the relay wallet
    4. success/failed: classify the receipt

    Every outcome is written to the status store; execute() never raises.
    Nothing is retried.
    """

    def __init__(
        self,
        gateway: Any,
        store: TransactionStatusStore,
        nonces: NonceTracker,
        validator: TransferValidator,
        sponsorship: GasSponsorshipCoordinator,
        gas_limit_multiplier: float = 1.2,
    ):
        self.gateway = gateway
        self.store = store
        self.nonces = nonces
        self.validator = validator
        self.sponsorship = sponsorship
        self.gas_limit_multiplier = gas_limit_multiplier

    async def execute(self, record_id: str, intent: TransferIntent) -> Optional[TransactionRecord]:
        """Process one intent. Returns the final record, or None if it vanished."""
        nonce_reserved = False
        try:
            await self.store.update_status(record_id, TransactionStatus.PROCESSING)

            signed_sender, signed_recipient = intent.message_addresses
            if not verify_transfer_signature(
                signed_sender,
                signed_recipient,
                intent.amount_base_units,
                intent.nonce,
                intent.signature,
            ):
                return await self._fail(record_id, ErrorKind.INVALID_SIGNATURE, "Invalid signature")

            if not await self.nonces.reserve(intent.sender, intent.nonce):
                expected = await self.nonces.current(intent.sender)
                return await self._fail(
                    record_id,
                    ErrorKind.INVALID_NONCE,
                    f"Nonce {intent.nonce} is not the sender's next nonce ({expected}) or is already in use",
                    expected_nonce=expected,
                )
            nonce_reserved = True

            await self.validator.validate(intent.sender, intent.recipient, intent.amount_base_units)

            estimated_gas = await self.gateway.estimate_transfer_gas(
                intent.sender, intent.recipient, intent.amount_base_units
            )
            gas_limit = apply_gas_buffer(estimated_gas, self.gas_limit_multiplier)
            gas_price = await self.gateway.get_gas_price()

            sponsorship = await self.sponsorship.try_sponsor(intent.sender, gas_limit * gas_price)

            tx_hash = await self.gateway.submit_transfer(
                intent.sender,
                intent.recipient,
                intent.amount_base_units,
                gas_limit=gas_limit,
                gas_price=gas_price,
            )
            await self.store.update_status(
                record_id,
                TransactionStatus.SUBMITTED,
                chain_tx_hash=tx_hash,
                estimated_gas=estimated_gas,
                gas_limit=gas_limit,
                gas_price=gas_price,
                sponsorship=sponsorship.value,
            )

            receipt = await self.gateway.wait_for_receipt(tx_hash)
            if not receipt.success:
                return await self._fail(
                    record_id,
                    ErrorKind.TRANSACTION_REVERTED,
                    "Transaction reverted on-chain",
                    block_number=receipt.block_number,
                    gas_used=receipt.gas_used,
                )

            new_nonce = await self.nonces.advance(intent.sender)
            record = await self.store.update_status(
                record_id,
                TransactionStatus.SUCCESS,
                block_number=receipt.block_number,
                gas_used=receipt.gas_used,
                paymaster_executed=sponsorship == SponsorshipOutcome.SPONSORED,
            )
            logger.info(
                "transfer_succeeded",
                id=record_id,
                tx_hash=tx_hash,
                sender=intent.sender,
                recipient=intent.recipient,
                amount_base_units=intent.amount_base_units,
                next_nonce=new_nonce,
            )
            return record

        except TransferValidationError as e:
            return await self._fail(record_id, e.kind, e.message, hint=e.hint)
        except RelayError as e:
            return await self._fail(record_id, e.kind, e.message)
        except Exception as e:
            logger.error("transfer_execution_error", id=record_id, error=str(e), exc_info=True)
            return await self._fail(record_id, ErrorKind.INTERNAL, str(e))
        finally:
            if nonce_reserved:
                await self.nonces.release(intent.sender, intent.nonce)

    async def _fail(
        self,
        record_id: str,
        kind: ErrorKind,
        message: str,
        **detail: Any,
    ) -> Optional[TransactionRecord]:
        logger.warning("transfer_failed", id=record_id, error_kind=kind.value, error=message)
        try:
            return await self.store.update_status(
                record_id,
                TransactionStatus.FAILED,
                error=message,
                error_kind=kind.value,
                **detail,
            )
        except RelayError as e:
            # Record swept or already terminal
            logger.error("transfer_failure_not_recorded", id=record_id, error=str(e))
            return None
