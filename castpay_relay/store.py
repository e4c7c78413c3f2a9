"""
In-memory store of relay-initiated transfers and their lifecycle.

Records are lost on restart. The store is the only owner of
TransactionRecord instances: callers get copies, and every change goes
through update_status().
"""

import asyncio
import copy
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

import structlog
from web3 import Web3

from .errors import InvalidTransitionError, TransactionNotFoundError

logger = structlog.get_logger()


class TransactionStatus(str, Enum):
    """Lifecycle of a relayed transfer."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUBMITTED = "submitted"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionStatus.SUCCESS, TransactionStatus.FAILED)


# Allowed moves; failed is reachable from every non-terminal state
TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.PROCESSING, TransactionStatus.FAILED}),
    TransactionStatus.PROCESSING: frozenset({TransactionStatus.SUBMITTED, TransactionStatus.FAILED}),
    TransactionStatus.SUBMITTED: frozenset({TransactionStatus.SUCCESS, TransactionStatus.FAILED}),
    TransactionStatus.SUCCESS: frozenset(),
    TransactionStatus.FAILED: frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def derive_transaction_id(
    sender: str,
    recipient: str,
    amount_base_units: int,
    nonce: int,
    submitted_at_ns: int,
) -> str:
    """keccak256 over the intent fields and the submission time in nanoseconds."""
    material = f"{sender.lower()}:{recipient.lower()}:{amount_base_units}:{nonce}:{submitted_at_ns}"
    return Web3.to_hex(Web3.keccak(text=material))


@dataclass
class TransactionRecord:
    """A relayed transfer and everything observed about it so far."""

    id: str
    sender: str
    recipient: str
    amount_base_units: int
    nonce: int
    status: TransactionStatus = TransactionStatus.PENDING
    chain_tx_hash: Optional[str] = None
    detail: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    last_updated_at: datetime = field(default_factory=utcnow)

    @property
    def transitions(self) -> list[TransactionStatus]:
        """Statuses in the order they were entered."""
        return [TransactionStatus(t["status"]) for t in self.detail.get("transitions", [])]


class TransactionStatusStore:
    """
    Keyed record of every transfer the relay has accepted.

    Concurrency: the id map is guarded by one lock; each record's
    read-modify-write is guarded by its own lock. sweep() never overlaps
    with itself.
    """

    def __init__(self, retention: timedelta = timedelta(hours=24)):
        self.retention = retention
        self._records: dict[str, TransactionRecord] = {}
        self._record_locks: dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()
        self._sweep_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def create(
        self,
        sender: str,
        recipient: str,
        amount_base_units: int,
        nonce: int,
        submitted_at_ns: Optional[int] = None,
    ) -> TransactionRecord:
        """Create a pending record and return a copy of it."""
        submitted_at_ns = submitted_at_ns if submitted_at_ns is not None else time.time_ns()

        async with self._lock:
            record_id = derive_transaction_id(sender, recipient, amount_base_units, nonce, submitted_at_ns)
            while record_id in self._records:
                # Same intent within the same nanosecond
                submitted_at_ns += 1
                record_id = derive_transaction_id(sender, recipient, amount_base_units, nonce, submitted_at_ns)

            now = utcnow()
            record = TransactionRecord(
                id=record_id,
                sender=sender,
                recipient=recipient,
                amount_base_units=amount_base_units,
                nonce=nonce,
                created_at=now,
                last_updated_at=now,
                detail={"transitions": [{"status": TransactionStatus.PENDING.value, "at": now.isoformat()}]},
            )
            self._records[record_id] = record
            self._record_locks[record_id] = asyncio.Lock()
            snapshot = copy.deepcopy(record)

        logger.info(
            "transaction_created",
            id=record_id,
            sender=sender,
            recipient=recipient,
            amount_base_units=amount_base_units,
            nonce=nonce,
        )
        return snapshot

    async def get(self, record_id: str) -> TransactionRecord:
        """Get a copy of a record."""
        record, lock = await self._lookup(record_id)
        async with lock:
            return copy.deepcopy(record)

    async def list_transactions(
        self,
        address: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
        limit: int = 50,
    ) -> list[TransactionRecord]:
        """
        List records, newest first.

        `address` matches either the sender or the recipient.
        """
        async with self._lock:
            records = list(self._records.values())

        if address:
            needle = address.lower()
            records = [r for r in records if needle in (r.sender.lower(), r.recipient.lower())]
        if status is not None:
            records = [r for r in records if r.status == status]

        records.sort(key=lambda r: r.created_at, reverse=True)
        return [copy.deepcopy(r) for r in records[:limit]]

    async def update_status(
        self,
        record_id: str,
        status: TransactionStatus,
        chain_tx_hash: Optional[str] = None,
        **detail: Any,
    ) -> TransactionRecord:
        """
        Move a record to `status`, merging `detail` into its diagnostics.

        Raises:
            TransactionNotFoundError: unknown id
            InvalidTransitionError: the move is not allowed from the current status
        """
        record, lock = await self._lookup(record_id)

        async with lock:
            if status not in TRANSITIONS[record.status]:
                raise InvalidTransitionError(record_id, record.status.value, status.value)

            now = utcnow()
            previous = record.status
            record.status = status
            record.last_updated_at = now
            if chain_tx_hash:
                record.chain_tx_hash = chain_tx_hash

            transitions = record.detail.get("transitions", [])
            record.detail.update(detail)
            record.detail["transitions"] = transitions + [{"status": status.value, "at": now.isoformat()}]
            snapshot = copy.deepcopy(record)

        logger.info(
            "transaction_status_updated",
            id=record_id,
            previous=previous.value,
            status=status.value,
            chain_tx_hash=snapshot.chain_tx_hash,
        )
        return snapshot

    async def discard(self, record_id: str) -> bool:
        """Remove a record that was never queued. Returns False if it is unknown."""
        async with self._lock:
            self._record_locks.pop(record_id, None)
            removed = self._records.pop(record_id, None) is not None

        if removed:
            logger.info("transaction_discarded", id=record_id)
        return removed

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Delete records created before the retention window.

        Returns the number of records removed; 0 if a sweep is already running.
        """
        if self._sweep_lock.locked():
            logger.debug("sweep_already_running")
            return 0

        async with self._sweep_lock:
            cutoff = (now or utcnow()) - self.retention
            async with self._lock:
                expired = [
                    (record_id, self._record_locks[record_id])
                    for record_id, record in self._records.items()
                    if record.created_at < cutoff
                ]

            removed = 0
            for record_id, lock in expired:
                async with lock:
                    async with self._lock:
                        if self._records.pop(record_id, None) is not None:
                            self._record_locks.pop(record_id, None)
                            removed += 1

        if removed:
            logger.info("transactions_swept", removed=removed, remaining=len(self._records))
        return removed

    async def _lookup(self, record_id: str) -> tuple[TransactionRecord, asyncio.Lock]:
        async with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise TransactionNotFoundError(record_id)
            return record, self._record_locks[record_id]
