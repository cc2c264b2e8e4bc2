# src/stablepay/networks.py
"""
Static network/token registry.

Each logical network key ("ethereum", "bsc", ...) has a mainnet and a
testnet variant; the testnet flag picks which one is served. The table is
validated into frozen pydantic models once, when the registry is built.
"""
import logging
from typing import Mapping, Optional

from stablepay.exceptions import UnsupportedNetworkError, UnsupportedTokenError
from stablepay.models.network import NetworkConfig, TokenConfig

logger = logging.getLogger(__name__)

TOKEN_META = {
    "usdt": ("USDT", "Tether USD"),
    "usdc": ("USDC", "USD Coin"),
}

# key -> mode -> raw config; tokens are key -> (address, decimals)
NETWORK_TABLE: dict[str, dict[str, dict]] = {
    "ethereum": {
        "mainnet": {
            "name": "Ethereum Mainnet", "chain_id": 1, "symbol": "ETH",
            "rpc_url": "https://eth.llamarpc.com",
            "block_explorer": "https://etherscan.io", "min_confirmations": 12,
            "tokens": {
                "usdt": ("0xdAC17F958D2ee523a2206206994597C13D831ec7", 6),
                "usdc": ("0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6),
            },
        },
        "testnet": {
            "name": "Sepolia", "chain_id": 11155111, "symbol": "ETH",
            "rpc_url": "https://ethereum-sepolia-rpc.publicnode.com",
            "block_explorer": "https://sepolia.etherscan.io", "min_confirmations": 3,
            "tokens": {
                "usdt": ("0x7169D38820dfd117C3FA1f22a697dBA58d90BA06", 6),
                "usdc": ("0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238", 6),
            },
        },
    },
    "bsc": {
        "mainnet": {
            "name": "BNB Smart Chain", "chain_id": 56, "symbol": "BNB",
            "rpc_url": "https://bsc-dataseed.binance.org",
            "block_explorer": "https://bscscan.com", "min_confirmations": 15,
            "tokens": {
                "usdt": ("0x55d398326f99059fF775485246999027B3197955", 18),
                "usdc": ("0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d", 18),
            },
        },
        "testnet": {
            "name": "BNB Smart Chain Testnet", "chain_id": 97, "symbol": "tBNB",
            "rpc_url": "https://data-seed-prebsc-1-s1.binance.org:8545",
            "block_explorer": "https://testnet.bscscan.com", "min_confirmations": 3,
            "tokens": {
                "usdt": ("0x337610d27c682E347C9cD60BD4b3b107C9d34dDd", 18),
                "usdc": ("0x64544969ed7EBf5f083679233325356EbE738930", 18),
            },
        },
    },
    "arbitrum": {
        "mainnet": {
            "name": "Arbitrum One", "chain_id": 42161, "symbol": "ETH",
            "rpc_url": "https://arb1.arbitrum.io/rpc",
            "block_explorer": "https://arbiscan.io", "min_confirmations": 12,
            "tokens": {
                "usdt": ("0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9", 6),
                "usdc": ("0xaf88d065e77c8cC2239327C5EDb3A432268e5831", 6),
            },
        },
        "testnet": {
            "name": "Arbitrum Sepolia", "chain_id": 421614, "symbol": "ETH",
            "rpc_url": "https://sepolia-rollup.arbitrum.io/rpc",
            "block_explorer": "https://sepolia.arbiscan.io", "min_confirmations": 3,
            "tokens": {
                "usdc": ("0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d", 6),
            },
        },
    },
    "optimism": {
        "mainnet": {
            "name": "OP Mainnet", "chain_id": 10, "symbol": "ETH",
            "rpc_url": "https://mainnet.optimism.io",
            "block_explorer": "https://optimistic.etherscan.io", "min_confirmations": 12,
            "tokens": {
                "usdt": ("0x94b008aA00579c1307B0EF2c499aD98a8ce58e58", 6),
                "usdc": ("0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85", 6),
            },
        },
        "testnet": {
            "name": "OP Sepolia", "chain_id": 11155420, "symbol": "ETH",
            "rpc_url": "https://sepolia.optimism.io",
            "block_explorer": "https://sepolia-optimism.etherscan.io", "min_confirmations": 3,
            "tokens": {
                "usdc": ("0x5fd84259d66Cd46123540766Be93DFE6D43130D7", 6),
            },
        },
    },
    "avalanche": {
        "mainnet": {
            "name": "Avalanche C-Chain", "chain_id": 43114, "symbol": "AVAX",
            "rpc_url": "https://api.avax.network/ext/bc/C/rpc",
            "block_explorer": "https://snowtrace.io", "min_confirmations": 12,
            "tokens": {
                "usdt": ("0x9702230A8Ea53601f5cD2dc00fDBc13d4dF4A8c7", 6),
                "usdc": ("0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E", 6),
            },
        },
        "testnet": {
            "name": "Avalanche Fuji", "chain_id": 43113, "symbol": "AVAX",
            "rpc_url": "https://api.avax-test.network/ext/bc/C/rpc",
            "block_explorer": "https://testnet.snowtrace.io", "min_confirmations": 3,
            "tokens": {
                "usdc": ("0x5425890298aed601595a70AB815c96711a31Bc65", 6),
            },
        },
    },
    "base": {
        "mainnet": {
            "name": "Base", "chain_id": 8453, "symbol": "ETH",
            "rpc_url": "https://mainnet.base.org",
            "block_explorer": "https://basescan.org", "min_confirmations": 12,
            "tokens": {
                "usdt": ("0xfde4C96c8593536E31F229EA8f37b2ADa2699bb2", 6),
                "usdc": ("0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", 6),
            },
        },
        "testnet": {
            "name": "Base Sepolia", "chain_id": 84532, "symbol": "ETH",
            "rpc_url": "https://sepolia.base.org",
            "block_explorer": "https://sepolia.basescan.org", "min_confirmations": 3,
            "tokens": {
                "usdc": ("0x036CbD53842c5426634e7929541eC2318f3dCF7e", 6),
            },
        },
    },
}


def _build(key: str, mode: str, raw: dict, rpc_url: Optional[str]) -> NetworkConfig:
    tokens = {}
    for token_key, (address, decimals) in raw["tokens"].items():
        symbol, name = TOKEN_META[token_key]
        tokens[token_key] = TokenConfig(
            key=token_key, symbol=symbol, name=name, address=address, decimals=decimals
        )
    return NetworkConfig(
        key=key,
        name=raw["name"],
        chain_id=raw["chain_id"],
        rpc_url=rpc_url or raw["rpc_url"],
        symbol=raw["symbol"],
        block_explorer=raw["block_explorer"],
        min_confirmations=raw["min_confirmations"],
        testnet=(mode == "testnet"),
        tokens=tokens,
    )


class NetworkRegistry:
    """
    Read-only lookup of network and token configuration.
    """

    def __init__(
        self,
        table: Mapping[str, Mapping[str, dict]] | None = None,
        rpc_urls: Mapping[str, str] | None = None,
    ):
        table = NETWORK_TABLE if table is None else table
        rpc_urls = rpc_urls or {}
        self._networks: dict[tuple[str, bool], NetworkConfig] = {}
        for key, modes in table.items():
            for mode, raw in modes.items():
                cfg = _build(key, mode, raw, rpc_urls.get(key))
                self._networks[(key, cfg.testnet)] = cfg
        logger.debug(f"Network registry loaded: {len(self._networks)} network variants")

    def config(self, network_key: str, testnet: bool) -> NetworkConfig:
        cfg = self._networks.get(((network_key or "").lower(), testnet))
        if cfg is None:
            mode = "testnet" if testnet else "mainnet"
            raise UnsupportedNetworkError(f"Unsupported network: {network_key} ({mode})")
        return cfg

    def token_config(self, network_key: str, token: str, testnet: bool) -> TokenConfig:
        cfg = self.config(network_key, testnet)
        token_cfg = cfg.tokens.get((token or "").lower())
        if token_cfg is None:
            raise UnsupportedTokenError(f"Token {token} not supported on {network_key}")
        return token_cfg

    def supported_networks(self, testnet: bool) -> set[str]:
        return {key for (key, is_test) in self._networks if is_test == testnet}

    def supported_tokens(self, network_key: str, testnet: bool) -> set[str]:
        return set(self.config(network_key, testnet).tokens)

    def find_token_by_address(self, address: str, testnet: bool) -> list[tuple[str, str]]:
        """All (network_key, token) scopes whose contract is `address`."""
        needle = address.lower()
        hits = []
        for (key, is_test), cfg in sorted(self._networks.items()):
            if is_test != testnet:
                continue
            for token_key, token_cfg in cfg.tokens.items():
                if token_cfg.address.lower() == needle:
                    hits.append((key, token_key))
        return hits
