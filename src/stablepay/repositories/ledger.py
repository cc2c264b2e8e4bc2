# src/stablepay/repositories/ledger.py

import asyncio
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from stablepay.amounts import AmountDisambiguator
from stablepay.exceptions import (
    InvalidAmountError,
    InvalidTransactionError,
    PaymentAlreadyProcessedError,
    PaymentNotFoundError,
    PaymentNotVerifiedError,
    TransactionAlreadyUsedError,
)
from stablepay.logging import payment_context
from stablepay.models.payment import Payment, PaymentCreate, PaymentFilter, PaymentPage, PaymentStatus
from stablepay.networks import NetworkRegistry
from stablepay.scheduler import Job, Scheduler

logger = logging.getLogger(__name__)


class PaymentLedger:
    """
    In-memory store of payment records.

    All mutation goes through the methods below; each one takes the
    record's own lock, re-checks the status precondition and commits
    against that single record. Readers get deep copies.
    """

    def __init__(
        self,
        registry: NetworkRegistry,
        disambiguator: AmountDisambiguator,
        scheduler: Scheduler,
        wallet_address: str,
        testnet: bool = True,
        payment_timeout: int = 1800,
        amount_precision: int = 6,
    ):
        self._registry = registry
        self._amounts = disambiguator
        self._scheduler = scheduler
        self._wallet = wallet_address
        self._testnet = testnet
        self._timeout = timedelta(seconds=payment_timeout)
        self._precision = amount_precision

        self._payments: dict[str, Payment] = {}      # insertion order == creation order
        self._locks: dict[str, asyncio.Lock] = {}
        self._expiry_jobs: dict[str, Job] = {}
        self._tx_index: dict[tuple[str, str], str] = {}  # (network, tx hash) -> payment id
        self._create_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._payments)

    def _now(self):
        return self._scheduler.clock.now()

    def _record(self, payment_id: str) -> Payment:
        payment = self._payments.get(payment_id)
        if payment is None:
            raise PaymentNotFoundError(f"Payment {payment_id} not found")
        return payment

    # ――― create ――― #

    async def create(self, request: PaymentCreate) -> Payment:
        """
        Registers a new pending payment with a disambiguated amount.

        Network and token are resolved before anything is reserved, so an
        unsupported request leaves no trace.
        """
        if request.amount <= 0:
            raise InvalidAmountError(f"Amount must be positive, got {request.amount}")
        network = self._registry.config(request.network_key, self._testnet)
        token = self._registry.token_config(request.network_key, request.token, self._testnet)

        async with self._create_lock:
            scope = (network.key, token.key)
            precision = min(self._precision, token.decimals)
            amount = self._amounts.reserve(request.amount, scope, precision)
            now = self._now()
            payment = Payment(
                id=str(uuid4()),
                original_amount=request.amount,
                disambiguated_amount=amount,
                order_id=request.order_id,
                network_key=network.key,
                network_name=network.name,
                token=token.key,
                token_symbol=token.symbol,
                token_name=token.name,
                chain_id=network.chain_id,
                contract_address=token.address,
                wallet_address=self._wallet,
                decimals=token.decimals,
                block_explorer=network.block_explorer,
                status=PaymentStatus.pending,
                created_at=now,
                expires_at=now + self._timeout,
                metadata=dict(request.metadata),
            )
            self._payments[payment.id] = payment
            self._locks[payment.id] = asyncio.Lock()
            self._expiry_jobs[payment.id] = self._scheduler.schedule(
                payment.expires_at,
                lambda pid=payment.id: self.mark_expired(pid),
                name=f"expire:{payment.id}",
            )

        logger.info(
            f"Created payment {payment.id}: {request.amount} -> {amount} "
            f"{token.symbol} on {network.key} (order {request.order_id})",
            extra=payment_context(payment.id, network.key),
        )
        return payment.model_copy(deep=True)

    # ――― reads ――― #

    def get(self, payment_id: str) -> Payment:
        return self._record(payment_id).model_copy(deep=True)

    def find_by_scoped_amount(self, network_key: str, token: str, amount: Decimal) -> Optional[Payment]:
        """First pending payment in creation order asking for exactly `amount` in this scope."""
        token = token.lower()
        for payment in self._payments.values():
            if (
                payment.status == PaymentStatus.pending
                and payment.network_key == network_key
                and payment.token == token
                and payment.disambiguated_amount == amount
            ):
                return payment.model_copy(deep=True)
        return None

    def list(self, flt: PaymentFilter | None = None) -> PaymentPage:
        flt = flt or PaymentFilter()
        network_key = flt.network_key.lower() if flt.network_key else None
        token = flt.token.lower() if flt.token else None

        matching = [
            (idx, p) for idx, p in enumerate(self._payments.values())
            if (flt.status is None or p.status == flt.status)
            and (network_key is None or p.network_key == network_key)
            and (token is None or p.token == token)
        ]
        # newest first; creation index breaks ties between equal timestamps
        matching.sort(key=lambda item: (item[1].created_at, item[0]), reverse=True)
        window = matching[flt.offset: flt.offset + flt.limit]
        return PaymentPage(
            items=[p.model_copy(deep=True) for _, p in window],
            total=len(matching),
            limit=flt.limit,
            offset=flt.offset,
        )

    # ――― transitions ――― #

    def _leave_pending(self, payment: Payment) -> None:
        self._amounts.release(payment.scope, payment.disambiguated_amount)
        job = self._expiry_jobs.pop(payment.id, None)
        if job is not None:
            job.cancel()

    async def mark_expired(self, payment_id: str) -> Optional[Payment]:
        """Expires a still-pending payment; a no-op for anything else."""
        payment = self._record(payment_id)
        async with self._locks[payment_id]:
            if payment.status != PaymentStatus.pending:
                return None
            payment.status = PaymentStatus.expired
            self._leave_pending(payment)
            logger.info(
                f"Payment {payment_id} expired ({payment.disambiguated_amount} {payment.token_symbol} released)",
                extra=payment_context(payment_id, payment.network_key),
            )
            return payment.model_copy(deep=True)

    async def apply_verification(
        self,
        payment_id: str,
        tx_hash: str,
        confirmations: int,
        threshold_reached: bool,
    ) -> Payment:
        payment = self._record(payment_id)
        tx_key = (payment.network_key, tx_hash.lower())
        async with self._locks[payment_id]:
            if payment.status not in (PaymentStatus.pending, PaymentStatus.pending_confirmation):
                raise PaymentAlreadyProcessedError(f"Payment {payment_id} already processed ({payment.status.value})")
            if payment.tx_hash and payment.tx_hash.lower() != tx_hash.lower():
                raise PaymentAlreadyProcessedError(
                    f"Payment {payment_id} is already matched to transaction {payment.tx_hash}"
                )
            owner = self._tx_index.get(tx_key)
            if owner is not None and owner != payment_id:
                raise TransactionAlreadyUsedError(f"Transaction {tx_hash} already settled payment {owner}")

            now = self._now()
            was_pending = payment.status == PaymentStatus.pending
            payment.tx_hash = tx_hash
            payment.confirmations = max(payment.confirmations, confirmations)
            payment.verified_at = now
            if threshold_reached:
                payment.status = PaymentStatus.confirmed
                payment.confirmed_at = now
            else:
                payment.status = PaymentStatus.pending_confirmation
            self._tx_index[tx_key] = payment_id
            if was_pending:
                self._leave_pending(payment)

            logger.info(
                f"Payment {payment_id} verified with {tx_hash}: "
                f"{payment.status.value}, {payment.confirmations} confirmations",
                extra=payment_context(payment_id, payment.network_key, tx_hash),
            )
            return payment.model_copy(deep=True)

    async def apply_confirmation_update(
        self,
        payment_id: str,
        tx_hash: str,
        confirmations: int,
        threshold: int,
    ) -> Payment:
        """Confirmation count pushed by a watcher for an already verified payment."""
        payment = self._record(payment_id)
        async with self._locks[payment_id]:
            if payment.status == PaymentStatus.pending:
                raise PaymentNotVerifiedError(f"Payment {payment_id} has no verified transaction yet")
            if payment.status != PaymentStatus.pending_confirmation:
                raise PaymentAlreadyProcessedError(f"Payment {payment_id} already processed ({payment.status.value})")
            if (payment.tx_hash or "").lower() != tx_hash.lower():
                raise InvalidTransactionError(f"Transaction {tx_hash} does not belong to payment {payment_id}")

            payment.confirmations = max(payment.confirmations, confirmations)
            if payment.confirmations >= threshold:
                payment.status = PaymentStatus.confirmed
                payment.confirmed_at = self._now()
                logger.info(
                    f"Payment {payment_id} confirmed with {payment.confirmations} confirmations",
                    extra=payment_context(payment_id, payment.network_key, tx_hash),
                )
            return payment.model_copy(deep=True)
