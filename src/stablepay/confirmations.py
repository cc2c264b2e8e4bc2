from typing import Optional

from stablepay.models.payment import PaymentStatus


class ConfirmationTracker:
    """Block depth arithmetic and the status it implies."""

    @staticmethod
    def depth(current_height: int, tx_block: Optional[int]) -> int:
        """Blocks including and after the one holding the transaction; 0 while unmined."""
        if tx_block is None:
            return 0
        return max(0, current_height - tx_block + 1)

    @staticmethod
    def is_final(confirmations: int, threshold: int) -> bool:
        return confirmations >= threshold

    @classmethod
    def status_for(cls, confirmations: int, threshold: int) -> PaymentStatus:
        if cls.is_final(confirmations, threshold):
            return PaymentStatus.confirmed
        return PaymentStatus.pending_confirmation
