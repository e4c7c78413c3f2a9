"""
EVM client for the token and paymaster contracts.

ChainGateway is the only component that writes on-chain state. It owns the
relay's signing key and the RPC connection and performs no retries; every
call is a single RPC round trip bounded by a timeout.
"""

import asyncio
import math
from decimal import Decimal
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, TypeVar

from eth_account import Account
from web3 import AsyncWeb3, AsyncHTTPProvider, Web3
from web3.exceptions import TimeExhausted
import structlog

from .config import Settings
from .errors import ChainError, ChainTimeoutError, ConfigurationError, RelayError

logger = structlog.get_logger()

T = TypeVar("T")


# ERC-20 ABI (minimal for relayed transfers)
TOKEN_ABI = [
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
        ],
        "name": "transferFrom",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# Paymaster ABI (Stylus contract, snake_case methods)
PAYMASTER_ABI = [
    {
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "gas_cost", "type": "uint256"},
        ],
        "name": "sponsor_gas_for_user",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "register_user",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "amount", "type": "uint256"}],
        "name": "deposit_usdc",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "get_contract_balance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "get_total_usdc_deposited",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "is_paused",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "is_gas_sponsorship_enabled",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "get_user_count",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


@dataclass
class ChainReceipt:
    """Outcome of a mined transaction."""

    tx_hash: str
    status: int
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status == 1


@dataclass
class PaymasterSnapshot:
    """Aggregate paymaster state."""

    paymaster_address: str
    contract_balance: int
    total_deposited: int
    is_paused: bool
    sponsorship_enabled: bool
    user_count: int


def apply_gas_buffer(estimated_gas: int, multiplier: float = 1.2) -> int:
    """Gas limit with headroom over the node's estimate, rounded up."""
    return math.ceil(Decimal(estimated_gas) * Decimal(str(multiplier)))


class ChainGateway:
    """
    Async gateway over the stablecoin and paymaster contracts.
    """

    def __init__(self, settings: Settings, w3: Optional[AsyncWeb3] = None):
        self.settings = settings
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(settings.rpc_url))
        self.account = (
            Account.from_key(settings.relayer_private_key) if settings.relayer_private_key else None
        )
        # One signing identity: nonce fetch, sign and send must not interleave
        self._send_lock = asyncio.Lock()

        logger.info(
            "chain_gateway_initialized",
            rpc_url=settings.rpc_url,
            chain_id=settings.chain_id,
            token=settings.token_address,
            paymaster=settings.paymaster_address,
            relayer=self.account.address if self.account else settings.relayer_address,
        )

    @property
    def relayer_address(self) -> str:
        """Address of the relay wallet (the transferFrom spender)."""
        if self.account:
            return self.account.address
        if self.settings.relayer_address:
            return Web3.to_checksum_address(self.settings.relayer_address)
        raise ConfigurationError("RELAYER_PRIVATE_KEY or RELAYER_ADDRESS not configured")

    @property
    def paymaster_configured(self) -> bool:
        return bool(self.settings.paymaster_address)

    def get_token(self) -> Any:
        """Get the token contract instance."""
        if not self.settings.token_address:
            raise ConfigurationError("TOKEN_ADDRESS not configured")
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(self.settings.token_address),
            abi=TOKEN_ABI,
        )

    def get_paymaster(self) -> Any:
        """Get the paymaster contract instance."""
        if not self.settings.paymaster_address:
            raise ConfigurationError("PAYMASTER_ADDRESS not configured")
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(self.settings.paymaster_address),
            abi=PAYMASTER_ABI,
        )

    async def _rpc(self, operation: str, call: Awaitable[T]) -> T:
        """Await one RPC call under the configured timeout."""
        try:
            return await asyncio.wait_for(call, timeout=self.settings.rpc_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ChainTimeoutError(
                f"{operation} timed out after {self.settings.rpc_timeout_seconds}s"
            ) from e
        except RelayError:
            raise
        except Exception as e:
            raise ChainError(f"{operation} failed: {e}") from e

    async def check_connectivity(self) -> bool:
        """Check if the EVM RPC is reachable."""
        try:
            await self._rpc("block_number", self.w3.eth.block_number)
            return True
        except ChainError:
            return False

    # ------------------------------------------------------------------
    # Token reads
    # ------------------------------------------------------------------

    async def get_balance(self, address: str) -> int:
        """Token balance of `address` in base units."""
        token = self.get_token()
        return await self._rpc(
            "balanceOf",
            token.functions.balanceOf(Web3.to_checksum_address(address)).call(),
        )

    async def get_allowance(self, owner: str, spender: Optional[str] = None) -> int:
        """Allowance `owner` has granted to `spender` (the relay by default)."""
        token = self.get_token()
        spender = spender or self.relayer_address
        return await self._rpc(
            "allowance",
            token.functions.allowance(
                Web3.to_checksum_address(owner),
                Web3.to_checksum_address(spender),
            ).call(),
        )

    async def estimate_transfer_gas(self, sender: str, recipient: str, amount: int) -> int:
        """Estimate gas for transferFrom(sender, recipient, amount) sent by the relay."""
        token = self.get_token()
        return await self._rpc(
            "estimateGas",
            token.functions.transferFrom(
                Web3.to_checksum_address(sender),
                Web3.to_checksum_address(recipient),
                amount,
            ).estimate_gas({"from": self.relayer_address}),
        )

    async def get_gas_price(self) -> int:
        """Get current gas price in wei."""
        return await self._rpc("gasPrice", self.w3.eth.gas_price)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _send(
        self,
        operation: str,
        function: Any,
        gas_limit: Optional[int] = None,
        gas_price: Optional[int] = None,
    ) -> str:
        """Build, sign and broadcast a contract call from the relay wallet."""
        if not self.account:
            raise ConfigurationError("RELAYER_PRIVATE_KEY not configured")

        async with self._send_lock:
            nonce = await self._rpc(
                "getTransactionCount",
                self.w3.eth.get_transaction_count(self.account.address, "pending"),
            )
            if gas_price is None:
                gas_price = await self.get_gas_price()

            params: dict[str, Any] = {
                "from": self.account.address,
                "chainId": self.settings.chain_id,
                "nonce": nonce,
                "gasPrice": gas_price,
            }
            if gas_limit is not None:
                params["gas"] = gas_limit

            tx = await self._rpc(f"{operation}.build", function.build_transaction(params))
            signed = self.account.sign_transaction(tx)
            tx_hash = await self._rpc(
                f"{operation}.send",
                self.w3.eth.send_raw_transaction(signed.raw_transaction),
            )

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(
            "transaction_broadcast",
            operation=operation,
            tx_hash=tx_hash_hex,
            nonce=nonce,
            gas_limit=gas_limit,
            gas_price=gas_price,
        )
        return tx_hash_hex

    async def submit_transfer(
        self,
        sender: str,
        recipient: str,
        amount: int,
        gas_limit: int,
        gas_price: Optional[int] = None,
    ) -> str:
        """Broadcast transferFrom(sender, recipient, amount). Returns the tx hash."""
        token = self.get_token()
        function = token.functions.transferFrom(
            Web3.to_checksum_address(sender),
            Web3.to_checksum_address(recipient),
            amount,
        )
        return await self._send("transferFrom", function, gas_limit=gas_limit, gas_price=gas_price)

    async def wait_for_receipt(self, tx_hash: str) -> ChainReceipt:
        """Wait until `tx_hash` is mined."""
        timeout = self.settings.receipt_timeout_seconds
        try:
            receipt = await asyncio.wait_for(
                self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout),
                timeout=timeout + self.settings.rpc_timeout_seconds,
            )
        except (TimeExhausted, asyncio.TimeoutError) as e:
            raise ChainTimeoutError(f"Transaction {tx_hash} not mined within {timeout}s") from e
        except Exception as e:
            raise ChainError(f"waitForReceipt failed: {e}") from e

        return ChainReceipt(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            status=receipt["status"],
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
        )

    async def _send_and_wait(self, operation: str, function: Any) -> ChainReceipt:
        tx_hash = await self._send(operation, function)
        return await self.wait_for_receipt(tx_hash)

    # ------------------------------------------------------------------
    # Paymaster
    # ------------------------------------------------------------------

    async def sponsor_gas(self, user: str, gas_cost: int) -> ChainReceipt:
        """Call sponsor_gas_for_user(user, gas_cost)."""
        paymaster = self.get_paymaster()
        function = paymaster.functions.sponsor_gas_for_user(Web3.to_checksum_address(user), gas_cost)
        return await self._send_and_wait("sponsor_gas_for_user", function)

    async def get_paymaster_snapshot(self) -> PaymasterSnapshot:
        """Read balance, deposits, pause/sponsorship flags and user count together."""
        paymaster = self.get_paymaster()
        fns = paymaster.functions
        balance, deposited, paused, enabled, users = await asyncio.gather(
            self._rpc("get_contract_balance", fns.get_contract_balance().call()),
            self._rpc("get_total_usdc_deposited", fns.get_total_usdc_deposited().call()),
            self._rpc("is_paused", fns.is_paused().call()),
            self._rpc("is_gas_sponsorship_enabled", fns.is_gas_sponsorship_enabled().call()),
            self._rpc("get_user_count", fns.get_user_count().call()),
        )
        return PaymasterSnapshot(
            paymaster_address=paymaster.address,
            contract_balance=balance,
            total_deposited=deposited,
            is_paused=paused,
            sponsorship_enabled=enabled,
            user_count=users,
        )

    async def get_paymaster_balance(self) -> int:
        """Paymaster token balance in base units."""
        paymaster = self.get_paymaster()
        return await self._rpc(
            "get_contract_balance",
            paymaster.functions.get_contract_balance().call(),
        )

    async def deposit_to_paymaster(self, amount: int) -> ChainReceipt:
        """Call deposit_usdc(amount) from the relay wallet."""
        paymaster = self.get_paymaster()
        return await self._send_and_wait("deposit_usdc", paymaster.functions.deposit_usdc(amount))

    async def register_user(self) -> ChainReceipt:
        """Call register_user(); the paymaster registers msg.sender (the relay wallet)."""
        paymaster = self.get_paymaster()
        return await self._send_and_wait("register_user", paymaster.functions.register_user())


class MockChainGateway:
    """
    In-memory stand-in for ChainGateway.

    Balances and allowances are plain dicts keyed by lowercase address.
    Set the `fail_*` attributes to an exception to make a step fail, and
    `receipt_status` to 0 to simulate a revert. Every call is appended to
    `calls`.
    """

    def __init__(
        self,
        relayer_address: str = "0x000000000000000000000000000000000000dEaD",
        paymaster_address: Optional[str] = "0x000000000000000000000000000000000000bEEF",
    ) -> None:
        self.relayer_address = Web3.to_checksum_address(relayer_address)
        self.paymaster_address = paymaster_address
        self.balances: dict[str, int] = {}
        self.allowances: dict[str, int] = {}
        self.estimated_gas = 60_000
        self.gas_price = 100_000_000
        self.receipt_status = 1
        self.block_number = 1_000
        self.paymaster_balance = 0
        self.paymaster_users = 0
        self.paymaster_paused = False
        self.fail_reads: Optional[Exception] = None
        self.fail_estimate: Optional[Exception] = None
        self.fail_submit: Optional[Exception] = None
        self.fail_receipt: Optional[Exception] = None
        self.fail_sponsor: Optional[Exception] = None
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._tx_count = 0

    @property
    def paymaster_configured(self) -> bool:
        return bool(self.paymaster_address)

    def set_balance(self, address: str, amount: int) -> None:
        self.balances[address.lower()] = amount

    def set_allowance(self, owner: str, amount: int) -> None:
        self.allowances[owner.lower()] = amount

    def _next_hash(self) -> str:
        self._tx_count += 1
        return "0x" + f"{self._tx_count:064x}"

    async def check_connectivity(self) -> bool:
        return True

    async def get_balance(self, address: str) -> int:
        self.calls.append(("get_balance", (address,)))
        if self.fail_reads:
            raise self.fail_reads
        return self.balances.get(address.lower(), 0)

    async def get_allowance(self, owner: str, spender: Optional[str] = None) -> int:
        self.calls.append(("get_allowance", (owner, spender or self.relayer_address)))
        if self.fail_reads:
            raise self.fail_reads
        return self.allowances.get(owner.lower(), 0)

    async def estimate_transfer_gas(self, sender: str, recipient: str, amount: int) -> int:
        self.calls.append(("estimate_transfer_gas", (sender, recipient, amount)))
        if self.fail_estimate:
            raise self.fail_estimate
        return self.estimated_gas

    async def get_gas_price(self) -> int:
        return self.gas_price

    async def submit_transfer(
        self,
        sender: str,
        recipient: str,
        amount: int,
        gas_limit: int,
        gas_price: Optional[int] = None,
    ) -> str:
        self.calls.append(("submit_transfer", (sender, recipient, amount, gas_limit, gas_price)))
        if self.fail_submit:
            raise self.fail_submit
        if self.receipt_status == 1:
            self.balances[sender.lower()] = self.balances.get(sender.lower(), 0) - amount
            self.balances[recipient.lower()] = self.balances.get(recipient.lower(), 0) + amount
            self.allowances[sender.lower()] = self.allowances.get(sender.lower(), 0) - amount
        return self._next_hash()

    async def wait_for_receipt(self, tx_hash: str) -> ChainReceipt:
        self.calls.append(("wait_for_receipt", (tx_hash,)))
        if self.fail_receipt:
            raise self.fail_receipt
        self.block_number += 1
        return ChainReceipt(
            tx_hash=tx_hash,
            status=self.receipt_status,
            block_number=self.block_number,
            gas_used=self.estimated_gas,
        )

    async def sponsor_gas(self, user: str, gas_cost: int) -> ChainReceipt:
        self.calls.append(("sponsor_gas", (user, gas_cost)))
        if self.fail_sponsor:
            raise self.fail_sponsor
        self.block_number += 1
        return ChainReceipt(tx_hash=self._next_hash(), status=1, block_number=self.block_number, gas_used=30_000)

    async def get_paymaster_snapshot(self) -> PaymasterSnapshot:
        if not self.paymaster_address:
            raise ConfigurationError("PAYMASTER_ADDRESS not configured")
        return PaymasterSnapshot(
            paymaster_address=self.paymaster_address,
            contract_balance=self.paymaster_balance,
            total_deposited=self.paymaster_balance,
            is_paused=self.paymaster_paused,
            sponsorship_enabled=not self.paymaster_paused,
            user_count=self.paymaster_users,
        )

    async def get_paymaster_balance(self) -> int:
        if not self.paymaster_address:
            raise ConfigurationError("PAYMASTER_ADDRESS not configured")
        return self.paymaster_balance

    async def deposit_to_paymaster(self, amount: int) -> ChainReceipt:
        self.calls.append(("deposit_to_paymaster", (amount,)))
        self.paymaster_balance += amount
        return ChainReceipt(tx_hash=self._next_hash(), status=1, block_number=self.block_number)

    async def register_user(self) -> ChainReceipt:
        self.calls.append(("register_user", ()))
        self.paymaster_users += 1
        return ChainReceipt(tx_hash=self._next_hash(), status=1, block_number=self.block_number)
