from .client import (
    decode_transfer_input,
    BALANCE_OF_SELECTOR,
    TRANSFER_SELECTOR,
    ChainClient,
    EvmChainClient,
    build_chain_clients,
)

__all__ = [
    "ChainClient",
    "EvmChainClient",
    "build_chain_clients",
    "TRANSFER_SELECTOR",
    "BALANCE_OF_SELECTOR",
    "decode_transfer_input",
]
