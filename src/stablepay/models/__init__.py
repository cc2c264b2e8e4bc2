from .network import NetworkConfig, TokenConfig
from .chain import ChainTransaction, ChainReceipt
from .payment import (
    Payment,
    PaymentCreate,
    PaymentFilter,
    PaymentInvoice,
    PaymentPage,
    PaymentStatus,
    PaymentVerify,
)
from .webhook import NotificationResult, PaymentConfirmedEvent, TransactionNotification

__all__ = [
    "NetworkConfig", "TokenConfig",
    "ChainTransaction", "ChainReceipt",
    "Payment", "PaymentCreate", "PaymentFilter", "PaymentInvoice", "PaymentPage", "PaymentStatus", "PaymentVerify",
    "NotificationResult", "PaymentConfirmedEvent", "TransactionNotification",
]
