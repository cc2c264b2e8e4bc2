from decimal import Decimal
from typing import Optional

import pytest
from eth_abi import encode

from stablepay import create_gateway
from stablepay.chain import TRANSFER_SELECTOR, ChainClient
from stablepay.config import GatewayConfig, PaymentConfig
from stablepay.models import ChainReceipt, ChainTransaction, PaymentCreate
from stablepay.networks import NetworkRegistry
from stablepay.scheduler import ManualClock

WALLET = "0x" + "11" * 20
OTHER_WALLET = "0x" + "22" * 20
WEBHOOK_SECRET = "test-webhook-secret"


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def transfer_calldata(recipient: str, raw_amount: int) -> str:
    return TRANSFER_SELECTOR + encode(["address", "uint256"], [recipient, raw_amount]).hex()


class ScriptedRandom:
    """randint() answers from a script, then repeats the last value."""

    def __init__(self, *values: int):
        self.values = list(values) or [1]

    def randint(self, a: int, b: int) -> int:
        value = self.values.pop(0) if len(self.values) > 1 else self.values[0]
        assert a <= value <= b
        return value


class FakeChainClient(ChainClient):
    """In-memory chain: tests put transactions and receipts in, the gateway reads them."""

    def __init__(self, network):
        self.network = network
        self.height = 1000
        self.transactions: dict[str, ChainTransaction] = {}
        self.receipts: dict[str, ChainReceipt] = {}
        self.native: int = 0
        self.tokens: dict[str, int] = {}
        self.calls: list[str] = []
        # raised from every chain read when set
        self.failure: Optional[Exception] = None
        # awaited before each transaction lookup, lets a test interleave other work
        self.before_lookup = None

    def add_transfer(
        self,
        hash_: str,
        contract: str,
        recipient: str,
        raw_amount: int,
        block: Optional[int] = 990,
        success: bool = True,
    ) -> None:
        self.transactions[hash_] = ChainTransaction(
            hash=hash_, to=contract, input=transfer_calldata(recipient, raw_amount), block_number=block
        )
        if block is not None:
            self.receipts[hash_] = ChainReceipt(transaction_hash=hash_, status=success, block_number=block)

    def pay(self, payment, hash_: str, depth: int = 3, **overrides) -> None:
        """Mines a transfer that settles `payment` exactly, `depth` blocks deep."""
        self.add_transfer(
            hash_,
            overrides.get("contract", payment.contract_address),
            overrides.get("recipient", payment.wallet_address),
            overrides.get("raw_amount", payment.raw_amount),
            block=self.height - depth + 1,
        )

    def _read(self, call: str) -> None:
        self.calls.append(call)
        if self.failure is not None:
            raise self.failure

    async def get_transaction(self, tx_hash):
        if self.before_lookup is not None:
            await self.before_lookup()
        self._read("get_transaction")
        return self.transactions.get(tx_hash)

    async def get_receipt(self, tx_hash):
        self._read("get_receipt")
        return self.receipts.get(tx_hash)

    async def block_height(self):
        self._read("block_height")
        return self.height

    async def native_balance(self, address):
        return self.native

    async def token_balance(self, contract_address, owner):
        return self.tokens.get(contract_address.lower(), 0)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def make_gateway(clock):
    """
    Factory for gateways wired to fake chains. Extra keyword arguments go
    to PaymentConfig.
    """

    def _make(testnet: bool = True, rng=None, **payment):
        registry = NetworkRegistry()
        clients = {
            key: FakeChainClient(registry.config(key, testnet))
            for key in registry.supported_networks(testnet)
        }
        config = GatewayConfig(
            wallet_address=WALLET,
            webhook_secret=WEBHOOK_SECRET,
            testnet=testnet,
            payment=PaymentConfig(**payment),
        )
        return create_gateway(config, chain_clients=clients, clock=clock, rng=rng or ScriptedRandom(37, 42, 5))

    return _make


@pytest.fixture
def gateway(make_gateway):
    return make_gateway()


@pytest.fixture
def order():
    """PaymentCreate builder with sensible defaults."""
    counter = iter(range(1, 10_000))

    def _order(amount="10.00", network="ethereum", token="usdt", **extra) -> PaymentCreate:
        return PaymentCreate(
            amount=Decimal(amount),
            order_id=extra.pop("order_id", f"ORDER{next(counter)}"),
            network_key=network,
            token=token,
            **extra,
        )

    return _order
