from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class ChainTransaction(BaseModel):
    hash: str
    to: Optional[str] = None          # None for contract creation
    input: str = "0x"
    block_number: Optional[int] = None  # None while unmined


class ChainReceipt(BaseModel):
    transaction_hash: str
    status: bool
    block_number: Optional[int] = None
