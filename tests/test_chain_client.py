import json

import httpx
import pytest
import pytest_asyncio

from stablepay.chain import BALANCE_OF_SELECTOR, EvmChainClient
from stablepay.exceptions import ChainRPCError
from stablepay.networks import NetworkRegistry

from .conftest import WALLET, transfer_calldata, tx_hash

pytestmark = pytest.mark.asyncio


class RpcStub:
    """Answers JSON-RPC calls from a method -> result table and records requests."""

    def __init__(self, results: dict, status_code: int = 200):
        self.results = results
        self.status_code = status_code
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="upstream down")
        result = self.results.get(body["method"])
        if isinstance(result, dict) and "error" in result:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": result["error"]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def _client(stub: RpcStub) -> EvmChainClient:
    network = NetworkRegistry().config("ethereum", testnet=True)
    return EvmChainClient(network, http_client=httpx.AsyncClient(transport=httpx.MockTransport(stub)))


@pytest_asyncio.fixture
async def make_client():
    clients = []

    def _make(results: dict, status_code: int = 200):
        stub = RpcStub(results, status_code)
        client = _client(stub)
        clients.append(client)
        return client, stub

    yield _make
    for client in clients:
        await client.aclose()


async def test_get_transaction(make_client):
    calldata = transfer_calldata(WALLET, 5_000_000)
    client, stub = make_client({
        "eth_getTransactionByHash": {
            "hash": tx_hash(1), "to": "0xabc", "input": calldata, "blockNumber": "0x10",
        }
    })

    tx = await client.get_transaction(tx_hash(1))

    assert tx.to == "0xabc"
    assert tx.block_number == 16
    assert tx.input == calldata
    assert stub.requests[0]["params"] == [tx_hash(1)]
    assert stub.requests[0]["jsonrpc"] == "2.0"


async def test_unknown_transaction_is_none(make_client):
    client, _ = make_client({"eth_getTransactionByHash": None, "eth_getTransactionReceipt": None})

    assert await client.get_transaction(tx_hash(2)) is None
    assert await client.get_receipt(tx_hash(2)) is None


async def test_pending_transaction_has_no_block(make_client):
    client, _ = make_client({
        "eth_getTransactionByHash": {"hash": tx_hash(3), "to": "0xabc", "input": "0x", "blockNumber": None}
    })

    tx = await client.get_transaction(tx_hash(3))

    assert tx.block_number is None


@pytest.mark.parametrize("status, expected", [("0x1", True), ("0x0", False)])
async def test_receipt_status(make_client, status, expected):
    client, _ = make_client({
        "eth_getTransactionReceipt": {"transactionHash": tx_hash(4), "status": status, "blockNumber": "0x20"}
    })

    receipt = await client.get_receipt(tx_hash(4))

    assert receipt.status is expected
    assert receipt.block_number == 32


async def test_block_height_and_native_balance(make_client):
    client, _ = make_client({"eth_blockNumber": "0x12d687", "eth_getBalance": hex(3 * 10**18)})

    assert await client.block_height() == 1234567
    assert await client.native_balance(WALLET) == 3 * 10**18


async def test_token_balance_encodes_balance_of(make_client):
    client, stub = make_client({"eth_call": "0x" + f"{42_000_000:064x}"})

    balance = await client.token_balance("0x" + "ab" * 20, WALLET)

    assert balance == 42_000_000
    call, block = stub.requests[0]["params"]
    assert block == "latest"
    assert call["to"] == "0x" + "ab" * 20
    assert call["data"] == BALANCE_OF_SELECTOR + "0" * 24 + WALLET[2:]


async def test_rpc_error_object_raises(make_client):
    client, _ = make_client({"eth_blockNumber": {"error": {"code": -32000, "message": "boom"}}})

    with pytest.raises(ChainRPCError):
        await client.block_height()


async def test_http_failure_raises(make_client):
    client, _ = make_client({}, status_code=503)

    with pytest.raises(ChainRPCError):
        await client.get_transaction(tx_hash(5))


@pytest.mark.parametrize("body", [b"null", b"[]", b'"0x10"'])
async def test_non_object_body_raises(body):
    network = NetworkRegistry().config("ethereum", testnet=True)
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=body))
    client = EvmChainClient(network, http_client=httpx.AsyncClient(transport=transport))

    try:
        with pytest.raises(ChainRPCError):
            await client.block_height()
        with pytest.raises(ChainRPCError):
            await client.get_transaction(tx_hash(6))
    finally:
        await client.aclose()


async def test_missing_quantity_raises(make_client):
    client, _ = make_client({"eth_blockNumber": None, "eth_getBalance": 12})

    with pytest.raises(ChainRPCError):
        await client.block_height()
    with pytest.raises(ChainRPCError):
        await client.native_balance(WALLET)


async def test_malformed_transaction_result_raises(make_client):
    client, _ = make_client({"eth_getTransactionByHash": ["not", "an", "object"]})

    with pytest.raises(ChainRPCError):
        await client.get_transaction(tx_hash(7))
