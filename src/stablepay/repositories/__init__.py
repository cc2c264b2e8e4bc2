from .ledger import PaymentLedger

__all__ = [
    "PaymentLedger",
]
