import logging

from stablepay.chain.client import TRANSFER_SELECTOR, decode_transfer_input
from stablepay.exceptions import DecodeError
from stablepay.models.chain import ChainTransaction
from stablepay.models.payment import Payment

logger = logging.getLogger(__name__)


class TransactionValidator:
    """
    Checks that a transaction pays exactly one invoice: right token
    contract, a plain ERC-20 transfer, right recipient, exact amount.
    """

    def __init__(self, wallet_address: str):
        self._wallet = wallet_address.lower()

    def validate(self, transaction: ChainTransaction, payment: Payment) -> bool:
        if (transaction.to or "").lower() != payment.contract_address.lower():
            logger.debug(f"tx {transaction.hash}: target {transaction.to} is not {payment.contract_address}")
            return False

        if not (transaction.input or "").lower().startswith(TRANSFER_SELECTOR):
            logger.debug(f"tx {transaction.hash}: not a transfer call")
            return False

        try:
            recipient, raw_amount = decode_transfer_input(transaction.input)
        except DecodeError as e:
            logger.debug(f"tx {transaction.hash}: {e}")
            return False

        if recipient.lower() != self._wallet:
            logger.debug(f"tx {transaction.hash}: recipient {recipient} is not the merchant wallet")
            return False

        # exact integer equality, no rounding slack
        if raw_amount != payment.raw_amount:
            logger.debug(f"tx {transaction.hash}: amount {raw_amount} != expected {payment.raw_amount}")
            return False
        return True
