"""
Transfer relay engine - accepts signed intents and executes them in the
background.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

import structlog

from .config import Settings
from .errors import RelayQueueFullError
from .evm import ChainGateway
from .executor import TransactionExecutor, TransferIntent
from .nonces import NonceTracker
from .sponsorship import GasSponsorshipCoordinator
from .store import TransactionRecord, TransactionStatus, TransactionStatusStore, utcnow
from .validator import TransferValidator

logger = structlog.get_logger()


@dataclass
class RelayerState:
    """Current relay state."""

    is_running: bool = False
    started_at: Optional[datetime] = None
    last_sweep_time: Optional[datetime] = None
    transfers_accepted: int = 0
    transfers_succeeded: int = 0
    transfers_failed: int = 0


class TransferRelay:
    """
    Relay engine that:
    1. Records each accepted intent as a pending transaction
    2. Queues it for a bounded pool of worker tasks
    3. Executes it (validate, sponsor, transferFrom, await receipt)
    4. Sweeps records past the retention window every hour

    The store, nonce tracker and gateway are injected so tests and
    alternative backends can replace them.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: Optional[Any] = None,
        store: Optional[TransactionStatusStore] = None,
        nonces: Optional[NonceTracker] = None,
    ):
        self.settings = settings
        self.state = RelayerState()

        self.gateway = gateway or ChainGateway(settings)
        self.store = store or TransactionStatusStore(
            retention=timedelta(hours=settings.transaction_retention_hours)
        )
        self.nonces = nonces or NonceTracker(strict=settings.strict_nonces)
        self.executor = TransactionExecutor(
            gateway=self.gateway,
            store=self.store,
            nonces=self.nonces,
            validator=TransferValidator(self.gateway, decimals=settings.token_decimals),
            sponsorship=GasSponsorshipCoordinator(self.gateway, enabled=settings.sponsorship_enabled),
            gas_limit_multiplier=settings.gas_limit_multiplier,
        )

        self._queue: asyncio.Queue[tuple[str, TransferIntent]] = asyncio.Queue(
            maxsize=settings.max_queued_transfers
        )
        self._workers: list[asyncio.Task[None]] = []
        self._sweeper: Optional[asyncio.Task[None]] = None

        logger.info(
            "relay_initialized",
            workers=settings.max_concurrent_transfers,
            queue_size=settings.max_queued_transfers,
            retention_hours=settings.transaction_retention_hours,
            strict_nonces=settings.strict_nonces,
        )

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the worker pool and the sweeper."""
        if self.state.is_running:
            return

        self.state.is_running = True
        self.state.started_at = utcnow()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"transfer-worker-{i}")
            for i in range(self.settings.max_concurrent_transfers)
        ]
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="transaction-sweeper")

        logger.info("relay_started", workers=len(self._workers))

    async def stop(self) -> None:
        """
        Stop workers and the sweeper.

        Queued intents that have not started stay pending. A broadcast
        transaction cannot be withdrawn.
        """
        self.state.is_running = False
        tasks = list(self._workers)
        if self._sweeper:
            tasks.append(self._sweeper)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._sweeper = None

        logger.info("relay_stopped", queued=self._queue.qsize())

    async def submit(self, intent: TransferIntent) -> TransactionRecord:
        """
        Accept an intent: create the pending record and queue it.

        Raises:
            RelayQueueFullError: the queue is at capacity
        """
        if self._queue.full():
            raise RelayQueueFullError("Transfer queue is full, try again later")

        record = await self.store.create(
            sender=intent.sender,
            recipient=intent.recipient,
            amount_base_units=intent.amount_base_units,
            nonce=intent.nonce,
        )
        try:
            self._queue.put_nowait((record.id, intent))
        except asyncio.QueueFull as e:
            # Filled up while the record was being created
            await self.store.discard(record.id)
            raise RelayQueueFullError("Transfer queue is full, try again later") from e

        self.state.transfers_accepted += 1
        return record

    async def process(self, record_id: str, intent: TransferIntent) -> Optional[TransactionRecord]:
        """Execute one queued intent and update counters."""
        record = await self.executor.execute(record_id, intent)
        if record is not None:
            if record.status == TransactionStatus.SUCCESS:
                self.state.transfers_succeeded += 1
            elif record.status == TransactionStatus.FAILED:
                self.state.transfers_failed += 1
        return record

    async def join(self) -> None:
        """Wait until every queued intent has been processed."""
        await self._queue.join()

    async def _worker(self, index: int) -> None:
        while True:
            record_id, intent = await self._queue.get()
            try:
                await self.process(record_id, intent)
            except Exception as e:
                logger.error("transfer_worker_error", worker=index, id=record_id, error=str(e))
            finally:
                self._queue.task_done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("sweep_error", error=str(e))

    async def sweep(self) -> int:
        """Evict expired transaction records."""
        removed = await self.store.sweep()
        self.state.last_sweep_time = utcnow()
        return removed
