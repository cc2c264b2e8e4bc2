# src/stablepay/chain/client.py
import abc
import itertools
import logging
from typing import Any, Optional

import httpx
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError

from stablepay.exceptions import ChainRPCError, DecodeError
from stablepay.models.chain import ChainReceipt, ChainTransaction
from stablepay.models.network import NetworkConfig

logger = logging.getLogger(__name__)

TRANSFER_SELECTOR = "0xa9059cbb"    # transfer(address,uint256)
BALANCE_OF_SELECTOR = "0x70a08231"  # balanceOf(address)


def decode_transfer_input(raw_input: str) -> tuple[str, int]:
    """Returns (recipient, raw_amount) from `transfer(address,uint256)` calldata."""
    data = (raw_input or "").lower()
    if not data.startswith(TRANSFER_SELECTOR):
        raise DecodeError("calldata is not an ERC-20 transfer call")
    try:
        recipient, amount = decode(["address", "uint256"], bytes.fromhex(data[len(TRANSFER_SELECTOR):]))
    except (DecodingError, ValueError) as e:
        raise DecodeError(f"malformed transfer calldata: {e}") from e
    return recipient.lower(), int(amount)


def _hex_to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    return int(value, 16)


class ChainClient(abc.ABC):
    """
    Capability interface for one chain. "Not found" is a None result,
    transport problems are ChainRPCError.
    """

    network: NetworkConfig

    @abc.abstractmethod
    async def get_transaction(self, tx_hash: str) -> Optional[ChainTransaction]: ...

    @abc.abstractmethod
    async def get_receipt(self, tx_hash: str) -> Optional[ChainReceipt]: ...

    @abc.abstractmethod
    async def block_height(self) -> int: ...

    @abc.abstractmethod
    async def native_balance(self, address: str) -> int: ...

    @abc.abstractmethod
    async def token_balance(self, contract_address: str, owner: str) -> int: ...

    async def aclose(self) -> None:
        return None

    def decode_transfer_call(self, raw_input: str) -> tuple[str, int]:
        return decode_transfer_input(raw_input)


class EvmChainClient(ChainClient):
    """JSON-RPC 2.0 client for an EVM network."""

    def __init__(
        self,
        network: NetworkConfig,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.network = network
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def _rpc(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": next(self._ids)}
        try:
            response = await self._http.post(
                self.network.rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            logger.error(f"[{self.network.key}] RPC {method} failed: {e}")
            raise ChainRPCError(f"{self.network.name} RPC unreachable: {e}") from e
        except ValueError as e:
            raise ChainRPCError(f"{self.network.name} RPC returned invalid JSON") from e

        if not isinstance(body, dict):
            logger.error(f"[{self.network.key}] RPC {method} returned a non-object body: {body!r}")
            raise ChainRPCError(f"{self.network.name} RPC returned a malformed response")
        if "error" in body:
            logger.error(f"[{self.network.key}] RPC {method} error: {body['error']}")
            raise ChainRPCError(f"{self.network.name} RPC error: {body['error']}")
        return body.get("result")

    def _expect_object(self, method: str, result: Any) -> None:
        if not isinstance(result, dict):
            raise ChainRPCError(f"{self.network.name} RPC returned a malformed {method} result")

    async def get_transaction(self, tx_hash: str) -> Optional[ChainTransaction]:
        result = await self._rpc("eth_getTransactionByHash", [tx_hash])
        if not result:
            return None
        self._expect_object("eth_getTransactionByHash", result)
        return ChainTransaction(
            hash=result.get("hash", tx_hash),
            to=result.get("to"),
            input=result.get("input") or "0x",
            block_number=_hex_to_int(result.get("blockNumber")),
        )

    async def get_receipt(self, tx_hash: str) -> Optional[ChainReceipt]:
        result = await self._rpc("eth_getTransactionReceipt", [tx_hash])
        if not result:
            return None
        self._expect_object("eth_getTransactionReceipt", result)
        return ChainReceipt(
            transaction_hash=result.get("transactionHash", tx_hash),
            status=_hex_to_int(result.get("status")) == 1,
            block_number=_hex_to_int(result.get("blockNumber")),
        )

    async def _quantity(self, method: str, params: list) -> int:
        value = await self._rpc(method, params)
        if not isinstance(value, str):
            raise ChainRPCError(f"{self.network.name} RPC returned no value for {method}")
        try:
            return int(value, 16)
        except ValueError as e:
            raise ChainRPCError(f"{self.network.name} RPC returned a bad quantity for {method}: {value!r}") from e

    async def block_height(self) -> int:
        return await self._quantity("eth_blockNumber", [])

    async def native_balance(self, address: str) -> int:
        return await self._quantity("eth_getBalance", [address, "latest"])

    async def token_balance(self, contract_address: str, owner: str) -> int:
        try:
            args = encode(["address"], [owner.lower()]).hex()
        except EncodingError as e:
            raise DecodeError(f"bad owner address {owner!r}: {e}") from e
        call = {"to": contract_address, "data": BALANCE_OF_SELECTOR + args}
        result = await self._rpc("eth_call", [call, "latest"])
        if not result or result == "0x":
            return 0
        if not isinstance(result, str):
            raise ChainRPCError(f"{self.network.name} RPC returned a malformed eth_call result")
        return int(result, 16)

    async def aclose(self) -> None:
        await self._http.aclose()


def build_chain_clients(registry, testnet: bool, timeout: float = 10.0) -> dict[str, ChainClient]:
    """One client per supported network of the selected mode."""
    clients: dict[str, ChainClient] = {}
    for key in sorted(registry.supported_networks(testnet)):
        clients[key] = EvmChainClient(registry.config(key, testnet), timeout=timeout)
        logger.info(f"Initialized {key} network client")
    return clients
