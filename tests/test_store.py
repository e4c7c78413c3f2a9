"""
Tests for the in-memory transaction status store.
"""

import asyncio
from datetime import timedelta

import pytest

from castpay_relay.errors import InvalidTransitionError, TransactionNotFoundError
from castpay_relay.store import (
    TransactionStatus,
    TransactionStatusStore,
    derive_transaction_id,
    utcnow,
)

from conftest import RECIPIENT, SENDER


async def _create(store: TransactionStatusStore, **kwargs):
    params = {
        "sender": SENDER,
        "recipient": RECIPIENT,
        "amount_base_units": 10_000_000,
        "nonce": 0,
    }
    params.update(kwargs)
    return await store.create(**params)


class TestTransactionId:
    """Tests for derive_transaction_id."""

    def test_is_keccak_hex(self):
        tx_id = derive_transaction_id(SENDER, RECIPIENT, 1, 0, 123)
        assert tx_id.startswith("0x")
        assert len(tx_id) == 66

    def test_time_changes_id(self):
        assert derive_transaction_id(SENDER, RECIPIENT, 1, 0, 1) != derive_transaction_id(
            SENDER, RECIPIENT, 1, 0, 2
        )

    @pytest.mark.asyncio
    async def test_same_intent_same_instant_distinct_ids(self):
        store = TransactionStatusStore()
        first = await _create(store, submitted_at_ns=1_000)
        second = await _create(store, submitted_at_ns=1_000)
        assert first.id != second.id
        assert len(store) == 2


class TestStatusTransitions:
    """Tests for the record state machine."""

    @pytest.mark.asyncio
    async def test_create_is_pending(self):
        store = TransactionStatusStore()
        record = await _create(store)
        assert record.status == TransactionStatus.PENDING
        assert record.chain_tx_hash is None
        assert record.transitions == [TransactionStatus.PENDING]

    @pytest.mark.asyncio
    async def test_happy_path(self):
        store = TransactionStatusStore()
        record = await _create(store)

        await store.update_status(record.id, TransactionStatus.PROCESSING)
        await store.update_status(record.id, TransactionStatus.SUBMITTED, chain_tx_hash="0xabc", gas_limit=72_000)
        final = await store.update_status(record.id, TransactionStatus.SUCCESS, block_number=7)

        assert final.status == TransactionStatus.SUCCESS
        assert final.chain_tx_hash == "0xabc"
        assert final.transitions == [
            TransactionStatus.PENDING,
            TransactionStatus.PROCESSING,
            TransactionStatus.SUBMITTED,
            TransactionStatus.SUCCESS,
        ]
        assert final.last_updated_at >= final.created_at

    @pytest.mark.asyncio
    async def test_detail_merges(self):
        """Later updates add keys without dropping earlier ones."""
        store = TransactionStatusStore()
        record = await _create(store)

        await store.update_status(record.id, TransactionStatus.PROCESSING, step="validate")
        await store.update_status(record.id, TransactionStatus.SUBMITTED, gas_limit=72_000)
        final = await store.update_status(record.id, TransactionStatus.FAILED, error="boom")

        assert final.detail["step"] == "validate"
        assert final.detail["gas_limit"] == 72_000
        assert final.detail["error"] == "boom"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path",
        [
            [],
            [TransactionStatus.PROCESSING],
            [TransactionStatus.PROCESSING, TransactionStatus.SUBMITTED],
        ],
    )
    async def test_failed_reachable_from_any_open_state(self, path):
        store = TransactionStatusStore()
        record = await _create(store)
        for status in path:
            await store.update_status(record.id, status)
        final = await store.update_status(record.id, TransactionStatus.FAILED)
        assert final.status == TransactionStatus.FAILED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", [TransactionStatus.SUCCESS, TransactionStatus.FAILED])
    async def test_terminal_states_are_final(self, terminal):
        store = TransactionStatusStore()
        record = await _create(store)
        await store.update_status(record.id, TransactionStatus.PROCESSING)
        await store.update_status(record.id, TransactionStatus.SUBMITTED)
        await store.update_status(record.id, terminal)

        for status in TransactionStatus:
            with pytest.raises(InvalidTransitionError):
                await store.update_status(record.id, status)

        assert (await store.get(record.id)).status == terminal

    @pytest.mark.asyncio
    async def test_skipping_states_rejected(self):
        store = TransactionStatusStore()
        record = await _create(store)
        with pytest.raises(InvalidTransitionError):
            await store.update_status(record.id, TransactionStatus.SUBMITTED)
        with pytest.raises(InvalidTransitionError):
            await store.update_status(record.id, TransactionStatus.SUCCESS)

    @pytest.mark.asyncio
    async def test_concurrent_updates_single_winner(self):
        store = TransactionStatusStore()
        record = await _create(store)

        results = await asyncio.gather(
            *(store.update_status(record.id, TransactionStatus.PROCESSING) for _ in range(5)),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, InvalidTransitionError)]
        assert len(errors) == 4
        assert (await store.get(record.id)).transitions.count(TransactionStatus.PROCESSING) == 1

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self):
        store = TransactionStatusStore()
        record = await _create(store)
        record.detail["mutated"] = True
        record.status = TransactionStatus.SUCCESS

        stored = await store.get(record.id)
        assert "mutated" not in stored.detail
        assert stored.status == TransactionStatus.PENDING


class TestLookup:
    """Tests for get and list_transactions."""

    @pytest.mark.asyncio
    async def test_unknown_id(self):
        store = TransactionStatusStore()
        with pytest.raises(TransactionNotFoundError):
            await store.get("0xdoesnotexist")
        with pytest.raises(TransactionNotFoundError):
            await store.update_status("0xdoesnotexist", TransactionStatus.PROCESSING)

    @pytest.mark.asyncio
    async def test_list_filters(self):
        store = TransactionStatusStore()
        outgoing = await _create(store)
        incoming = await _create(store, sender=RECIPIENT, recipient="0x000000000000000000000000000000000000dEaD")
        await store.update_status(outgoing.id, TransactionStatus.FAILED)

        assert {r.id for r in await store.list_transactions(address=SENDER)} == {outgoing.id}
        assert {r.id for r in await store.list_transactions(address=RECIPIENT.lower())} == {
            outgoing.id,
            incoming.id,
        }
        failed = await store.list_transactions(status=TransactionStatus.FAILED)
        assert [r.id for r in failed] == [outgoing.id]
        assert len(await store.list_transactions(limit=1)) == 1


class TestSweep:
    """Tests for retention sweeps."""

    @pytest.mark.asyncio
    async def test_sweep_removes_expired(self):
        store = TransactionStatusStore(retention=timedelta(hours=24))
        record = await _create(store)

        assert await store.sweep() == 0
        assert await store.sweep(now=utcnow() + timedelta(hours=25)) == 1

        with pytest.raises(TransactionNotFoundError):
            await store.get(record.id)
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_update_after_sweep_is_not_found(self):
        store = TransactionStatusStore(retention=timedelta(seconds=1))
        record = await _create(store)
        await store.sweep(now=utcnow() + timedelta(seconds=5))

        with pytest.raises(TransactionNotFoundError):
            await store.update_status(record.id, TransactionStatus.PROCESSING)


class TestDiscard:
    """Tests for removing records that were never queued."""

    @pytest.mark.asyncio
    async def test_discard(self):
        store = TransactionStatusStore()
        record = await _create(store)

        assert await store.discard(record.id) is True
        with pytest.raises(TransactionNotFoundError):
            await store.get(record.id)
        assert len(store) == 0
        assert await store.discard(record.id) is False
