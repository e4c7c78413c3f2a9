"""
Tests for transfer precondition checks.
"""

import pytest

from castpay_relay.errors import ErrorKind, TransferValidationError
from castpay_relay.evm import MockChainGateway
from castpay_relay.validator import ZERO_ADDRESS, TransferValidator, is_valid_address

from conftest import RECIPIENT, SENDER


class TestIsValidAddress:
    """Tests for is_valid_address."""

    def test_valid(self):
        assert is_valid_address(SENDER)
        assert is_valid_address(SENDER.lower())

    @pytest.mark.parametrize("address", [ZERO_ADDRESS, "0x1234", "", None, 123, "not an address"])
    def test_invalid(self, address):
        assert not is_valid_address(address)


class TestTransferValidator:
    """Tests for TransferValidator."""

    @pytest.mark.asyncio
    async def test_passes(self, gateway: MockChainGateway):
        gateway.set_balance(SENDER, 100)
        gateway.set_allowance(SENDER, 100)
        await TransferValidator(gateway).validate(SENDER, RECIPIENT, 100)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -1])
    async def test_invalid_amount_makes_no_chain_reads(self, gateway: MockChainGateway, amount):
        with pytest.raises(TransferValidationError) as exc_info:
            await TransferValidator(gateway).validate(SENDER, RECIPIENT, amount)
        assert exc_info.value.kind == ErrorKind.INVALID_AMOUNT
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_zero_recipient_rejected(self, gateway: MockChainGateway):
        with pytest.raises(TransferValidationError) as exc_info:
            await TransferValidator(gateway).validate(SENDER, ZERO_ADDRESS, 1)
        assert exc_info.value.kind == ErrorKind.INVALID_ADDRESS
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, gateway: MockChainGateway):
        gateway.set_balance(SENDER, 50)
        gateway.set_allowance(SENDER, 1_000)
        with pytest.raises(TransferValidationError) as exc_info:
            await TransferValidator(gateway).validate(SENDER, RECIPIENT, 75)
        assert exc_info.value.kind == ErrorKind.INSUFFICIENT_BALANCE

    @pytest.mark.asyncio
    async def test_balance_checked_before_allowance(self, gateway: MockChainGateway):
        with pytest.raises(TransferValidationError) as exc_info:
            await TransferValidator(gateway).validate(SENDER, RECIPIENT, 75)
        assert exc_info.value.kind == ErrorKind.INSUFFICIENT_BALANCE
        assert [name for name, _ in gateway.calls] == ["get_balance"]

    @pytest.mark.asyncio
    async def test_insufficient_allowance_has_hint(self, gateway: MockChainGateway):
        gateway.set_balance(SENDER, 100)
        gateway.set_allowance(SENDER, 50)
        with pytest.raises(TransferValidationError) as exc_info:
            await TransferValidator(gateway).validate(SENDER, RECIPIENT, 75)
        assert exc_info.value.kind == ErrorKind.INSUFFICIENT_ALLOWANCE
        assert "Approve" in exc_info.value.hint

    @pytest.mark.asyncio
    async def test_allowance_checked_against_relay(self, gateway: MockChainGateway):
        gateway.set_balance(SENDER, 100)
        gateway.set_allowance(SENDER, 100)
        await TransferValidator(gateway).validate(SENDER, RECIPIENT, 100)
        assert ("get_allowance", (SENDER, gateway.relayer_address)) in gateway.calls

    @pytest.mark.asyncio
    async def test_raising_balance_makes_intent_pass(self, gateway: MockChainGateway):
        validator = TransferValidator(gateway)
        gateway.set_allowance(SENDER, 100)
        gateway.set_balance(SENDER, 10)
        with pytest.raises(TransferValidationError):
            await validator.validate(SENDER, RECIPIENT, 100)

        gateway.set_balance(SENDER, 100)
        await validator.validate(SENDER, RECIPIENT, 100)
