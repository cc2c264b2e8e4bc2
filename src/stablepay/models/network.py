# src/stablepay/models/network.py
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TokenConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str                      # registry key, lowercase ("usdt")
    symbol: str                   # display symbol ("USDT")
    name: str
    address: str
    decimals: int = Field(..., ge=0, le=36)

    @field_validator("address")
    @classmethod
    def _check_address(cls, v: str) -> str:
        if not (v.startswith("0x") and len(v) == 42):
            raise ValueError(f"not an EVM address: {v!r}")
        return v


class NetworkConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    chain_id: int
    rpc_url: str
    symbol: str                   # native asset
    block_explorer: str
    min_confirmations: int = Field(..., ge=1)
    testnet: bool = False
    tokens: dict[str, TokenConfig] = Field(default_factory=dict)

    def info(self) -> dict:
        """Public projection, RPC endpoint left out."""
        return {
            "name": self.name,
            "chainId": self.chain_id,
            "symbol": self.symbol,
            "blockExplorer": self.block_explorer,
            "minConfirmations": self.min_confirmations,
            "tokens": {
                k: {"symbol": t.symbol, "name": t.name, "address": t.address, "decimals": t.decimals}
                for k, t in self.tokens.items()
            },
        }
