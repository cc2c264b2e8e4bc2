# src/stablepay/models/payment.py
from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MAX_AMOUNT_PLACES = 6
MAX_AMOUNT = Decimal("1e15")


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    pending_confirmation = "pending_confirmation"
    confirmed = "confirmed"
    expired = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.confirmed, PaymentStatus.expired)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentCreate(_CamelModel):
    amount: Decimal = Field(..., gt=0, le=MAX_AMOUNT)
    order_id: str = Field(..., pattern=r"^[A-Za-z0-9]{1,100}$")
    network_key: str = Field(
        "ethereum", validation_alias=AliasChoices("networkKey", "network", "network_key")
    )
    token: str = "usdt"
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("amount")
    @classmethod
    def _check_places(cls, v: Decimal) -> Decimal:
        exponent = v.as_tuple().exponent
        if not isinstance(exponent, int) or -exponent > MAX_AMOUNT_PLACES:
            raise ValueError(f"amount must have at most {MAX_AMOUNT_PLACES} decimal places")
        return v

    @field_validator("network_key", "token")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return {} if v is None else v


class PaymentVerify(_CamelModel):
    payment_id: str
    tx_hash: str = Field(..., pattern=r"^0x[0-9a-fA-F]{64}$")


class Payment(_CamelModel):
    id: str
    original_amount: Decimal
    disambiguated_amount: Decimal
    order_id: str
    network_key: str
    network_name: str
    token: str
    token_symbol: str
    token_name: str
    chain_id: int
    contract_address: str
    wallet_address: str
    decimals: int
    block_explorer: str
    status: PaymentStatus = PaymentStatus.pending
    created_at: datetime
    expires_at: datetime
    tx_hash: Optional[str] = None
    confirmations: int = 0
    verified_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def scope(self) -> tuple[str, str]:
        return (self.network_key, self.token)

    @property
    def raw_amount(self) -> int:
        """Amount in the token's smallest unit, as it must appear in calldata."""
        scaled = self.disambiguated_amount.scaleb(self.decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"{self.disambiguated_amount} is finer than {self.decimals} decimals")
        return int(scaled)

    def to_public(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class PaymentFilter(_CamelModel):
    status: Optional[PaymentStatus] = None
    network_key: Optional[str] = Field(
        None, validation_alias=AliasChoices("networkKey", "network", "network_key")
    )
    token: Optional[str] = None
    limit: int = Field(50, ge=1, le=500)
    offset: int = Field(0, ge=0)


class PaymentPage(_CamelModel):
    items: List[Payment]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total

    def to_public(self) -> dict:
        return {
            "payments": [p.to_public() for p in self.items],
            "pagination": {
                "total": self.total,
                "limit": self.limit,
                "offset": self.offset,
                "hasMore": self.has_more,
            },
        }


class PaymentInvoice(_CamelModel):
    """What the payer needs: the record plus ready-made wallet links."""
    payment: Payment
    wallet_urls: Dict[str, Any]
    qr_payload: str

    def to_public(self) -> dict:
        body = self.payment.to_public()
        body["paymentId"] = self.payment.id
        body["walletUrls"] = self.wallet_urls
        body["qrPayload"] = self.qr_payload
        amount = format(self.payment.disambiguated_amount, "f")
        body["note"] = (
            f"Please pay exactly {amount} {self.payment.token_symbol} "
            f"({format(self.payment.original_amount, 'f')} + unique identifier)"
        )
        return body
