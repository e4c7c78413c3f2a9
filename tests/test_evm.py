"""
Tests for the EVM gateway helpers that need no node.
"""

import pytest

from castpay_relay.config import Settings
from castpay_relay.errors import ConfigurationError
from castpay_relay.evm import ChainGateway, ChainReceipt, apply_gas_buffer


class TestApplyGasBuffer:
    """Tests for apply_gas_buffer."""

    def test_twenty_percent(self):
        assert apply_gas_buffer(60_000) == 72_000
        assert apply_gas_buffer(100_000) == 120_000

    def test_rounds_up(self):
        assert apply_gas_buffer(100_001) == 120_002
        assert apply_gas_buffer(1) == 2

    def test_custom_multiplier(self):
        assert apply_gas_buffer(50_000, 1.5) == 75_000


class TestChainReceipt:
    def test_success(self):
        assert ChainReceipt(tx_hash="0x01", status=1).success
        assert not ChainReceipt(tx_hash="0x01", status=0).success


class TestChainGatewayConfig:
    """Tests for configuration handling (no RPC calls)."""

    def test_relayer_from_private_key(self):
        settings = Settings(_env_file=None, relayer_private_key="0x" + "44" * 32)
        gateway = ChainGateway(settings)
        assert gateway.relayer_address.startswith("0x")
        assert len(gateway.relayer_address) == 42

    def test_relayer_from_address(self):
        settings = Settings(_env_file=None, relayer_address="0x000000000000000000000000000000000000dead")
        gateway = ChainGateway(settings)
        assert gateway.relayer_address == "0x000000000000000000000000000000000000dEaD"

    def test_relayer_missing(self):
        gateway = ChainGateway(Settings(_env_file=None))
        with pytest.raises(ConfigurationError):
            _ = gateway.relayer_address

    def test_paymaster_missing(self):
        gateway = ChainGateway(Settings(_env_file=None, paymaster_address=None))
        assert gateway.paymaster_configured is False
        with pytest.raises(ConfigurationError):
            gateway.get_paymaster()

    @pytest.mark.asyncio
    async def test_send_without_key_is_configuration_error(self):
        gateway = ChainGateway(Settings(_env_file=None, relayer_address="0x000000000000000000000000000000000000dEaD"))
        with pytest.raises(ConfigurationError):
            await gateway.submit_transfer(
                "0x000000000000000000000000000000000000dEaD",
                "0x000000000000000000000000000000000000bEEF",
                1,
                gas_limit=72_000,
            )
