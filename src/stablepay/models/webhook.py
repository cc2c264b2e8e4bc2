from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .payment import PaymentStatus


class _WebhookModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentConfirmedEvent(_WebhookModel):
    payment_id: str
    tx_hash: str = Field(..., pattern=r"^0x[0-9a-fA-F]{64}$")
    confirmations: int = Field(..., ge=0)


class TransactionNotification(_WebhookModel):
    tx_hash: str = Field(..., pattern=r"^0x[0-9a-fA-F]{64}$")
    to_address: str = Field(..., pattern=r"^0x[0-9a-fA-F]{40}$")
    amount: Decimal = Field(..., gt=0)
    token: str = Field(..., pattern=r"^0x[0-9a-fA-F]{40}$")  # contract address
    network: Optional[str] = None
    chain_id: Optional[int] = None

    @field_validator("network")
    @classmethod
    def _lower(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else None


class NotificationResult(_WebhookModel):
    """Outcome of a transaction notification; never an error for the sender."""
    matched: bool = False
    payment_id: Optional[str] = None
    status: Optional[PaymentStatus] = None
    error: Optional[str] = None
