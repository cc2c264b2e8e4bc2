# src/stablepay/gateway.py
import asyncio
import logging
from decimal import Decimal
from typing import Iterable, Optional

from stablepay.amounts import AmountDisambiguator
from stablepay.chain import ChainClient
from stablepay.config import GatewayConfig
from stablepay.confirmations import ConfirmationTracker
from stablepay.exceptions import (
    ChainRPCError,
    InvalidTransactionError,
    PaymentAlreadyProcessedError,
    StablePayError,
    TransactionNotFoundError,
    TransactionRevertedError,
)
from stablepay.links import build_wallet_links, qr_payload
from stablepay.logging import payment_context
from stablepay.models import (
    NotificationResult,
    Payment,
    PaymentConfirmedEvent,
    PaymentCreate,
    PaymentFilter,
    PaymentInvoice,
    PaymentPage,
    TransactionNotification,
)
from stablepay.networks import TOKEN_META, NetworkRegistry
from stablepay.repositories import PaymentLedger
from stablepay.scheduler import Scheduler
from stablepay.validator import TransactionValidator

logger = logging.getLogger(__name__)

NATIVE_DECIMALS = 18


def _format_units(raw: int, decimals: int) -> str:
    return format(Decimal(raw).scaleb(-decimals).normalize(), "f")


def _token_order(tokens: Iterable[str]) -> list[str]:
    # registry order first (usdt before usdc), unknown keys alphabetically after
    known = [t for t in TOKEN_META if t in tokens]
    return known + sorted(set(tokens) - set(known))


class PaymentGateway:
    """
    Single entry point for the payment flows.

    Owns the ledger and the per-network chain clients; the HTTP layer and
    the CLI only ever talk to this class.
    """

    def __init__(
        self,
        config: GatewayConfig,
        registry: NetworkRegistry,
        ledger: PaymentLedger,
        disambiguator: AmountDisambiguator,
        scheduler: Scheduler,
        chain_clients: dict[str, ChainClient],
        validator: TransactionValidator | None = None,
    ):
        self.config = config
        self.registry = registry
        self.ledger = ledger
        self.amounts = disambiguator
        self.scheduler = scheduler
        self.clients = chain_clients
        self.validator = validator or TransactionValidator(config.wallet_address)
        self._task: Optional[asyncio.Task] = None

    @property
    def testnet(self) -> bool:
        return self.config.testnet

    def _client(self, network_key: str) -> ChainClient:
        client = self.clients.get(network_key)
        if client is None:
            raise ChainRPCError(f"Network {network_key} not initialized")
        return client

    def _threshold(self, network_key: str) -> int:
        return self.registry.config(network_key, self.testnet).min_confirmations

    # ――― lifecycle ――― #

    async def tick(self) -> int:
        """Runs due expiry jobs and drops stale amount reservations."""
        ran = await self.scheduler.run_due()
        self.amounts.sweep()
        return ran

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(
            self.scheduler.run_forever(self.config.payment.scheduler_interval, on_tick=self.amounts.sweep),
            name="stablepay-scheduler",
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def aclose(self) -> None:
        await self.stop()
        for client in self.clients.values():
            await client.aclose()

    async def check_connections(self) -> dict[str, str]:
        """Block height per network, or the failure message."""
        statuses = {}
        for key in sorted(self.clients):
            try:
                height = await self.clients[key].block_height()
                statuses[key] = f"ok (block {height})"
            except StablePayError as e:
                statuses[key] = f"failed: {e}"
        return statuses

    # ――― payments ――― #

    async def create_payment(self, request: PaymentCreate) -> PaymentInvoice:
        payment = await self.ledger.create(request)
        links = build_wallet_links(payment)
        return PaymentInvoice(payment=payment, wallet_urls=links, qr_payload=qr_payload(links))

    def get_payment(self, payment_id: str) -> Payment:
        return self.ledger.get(payment_id)

    def list_payments(self, flt: PaymentFilter | None = None) -> PaymentPage:
        return self.ledger.list(flt)

    async def verify_payment(self, payment_id: str, tx_hash: str) -> Payment:
        """
        Checks `tx_hash` on chain against the payment and records the result.

        Raises TransactionNotFoundError, TransactionRevertedError or
        InvalidTransactionError without touching the record; chain access
        problems surface as ChainRPCError.
        """
        payment = self.ledger.get(payment_id)
        if payment.status.is_terminal:
            raise PaymentAlreadyProcessedError(f"Payment {payment_id} already processed ({payment.status.value})")

        client = self._client(payment.network_key)
        tx = await client.get_transaction(tx_hash)
        if tx is None:
            raise TransactionNotFoundError(f"Transaction {tx_hash} not found")

        receipt = await client.get_receipt(tx_hash)
        if receipt is None or not receipt.status:
            raise TransactionRevertedError(f"Transaction {tx_hash} failed or is not mined yet")

        if not self.validator.validate(tx, payment):
            raise InvalidTransactionError(f"Transaction {tx_hash} does not match payment {payment_id}")

        height = await client.block_height()
        block = receipt.block_number if receipt.block_number is not None else tx.block_number
        confirmations = ConfirmationTracker.depth(height, block)
        threshold = self._threshold(payment.network_key)

        return await self.ledger.apply_verification(
            payment_id,
            tx_hash,
            confirmations,
            ConfirmationTracker.is_final(confirmations, threshold),
        )

    # ――― webhooks ――― #

    def _candidate_scopes(self, note: TransactionNotification) -> list[tuple[str, str]]:
        if note.network:
            networks = [self.registry.config(note.network, self.testnet).key]
        else:
            networks = sorted(self.registry.supported_networks(self.testnet))
            if note.chain_id is not None:
                networks = [
                    k for k in networks if self.registry.config(k, self.testnet).chain_id == note.chain_id
                ]

        scopes = [
            (network, token)
            for network in networks
            for token in _token_order(self.registry.supported_tokens(network, self.testnet))
        ]
        if self.config.payment.webhook_match_mode == "strict":
            by_contract = set(self.registry.find_token_by_address(note.token, self.testnet))
            scopes = [s for s in scopes if s in by_contract]
        return scopes

    async def handle_transaction_notification(self, note: TransactionNotification) -> NotificationResult:
        """
        Matches an observed incoming transfer to a pending payment by exact
        amount and runs the normal verification on it. Never raises for
        business outcomes; the result says what happened.
        """
        if note.to_address.lower() != self.config.wallet_address.lower():
            logger.info(f"Notification for {note.tx_hash} targets foreign wallet {note.to_address}; ignored")
            return NotificationResult(matched=False, error="Recipient is not the merchant wallet")

        try:
            scopes = self._candidate_scopes(note)
        except StablePayError as e:
            logger.warning(f"Notification for {note.tx_hash}: {e}")
            return NotificationResult(matched=False, error=str(e))

        for network_key, token in scopes:
            payment = self.ledger.find_by_scoped_amount(network_key, token, note.amount)
            if payment is None:
                continue
            context = payment_context(payment.id, network_key, note.tx_hash)
            logger.info(f"Notification {note.tx_hash} matched payment {payment.id} ({network_key}/{token})", extra=context)
            try:
                verified = await self.verify_payment(payment.id, note.tx_hash)
            except StablePayError as e:
                logger.warning(f"Auto-verification of payment {payment.id} with {note.tx_hash} failed: {e}", extra=context)
                return NotificationResult(matched=True, payment_id=payment.id, status=payment.status, error=str(e))
            return NotificationResult(matched=True, payment_id=verified.id, status=verified.status)

        logger.info(f"No pending payment for {note.amount} from notification {note.tx_hash}")
        return NotificationResult(matched=False, error="No matching pending payment")

    async def handle_payment_confirmed(self, event: PaymentConfirmedEvent) -> Payment:
        payment = self.ledger.get(event.payment_id)
        return await self.ledger.apply_confirmation_update(
            event.payment_id,
            event.tx_hash,
            event.confirmations,
            self._threshold(payment.network_key),
        )

    # ――― balances / introspection ――― #

    async def get_balance(self, network_key: str) -> dict:
        cfg = self.registry.config(network_key, self.testnet)
        client = self._client(cfg.key)
        wallet = self.config.wallet_address

        native = await client.native_balance(wallet)
        tokens = {}
        for token_key in _token_order(cfg.tokens):
            token = cfg.tokens[token_key]
            try:
                raw = await client.token_balance(token.address, wallet)
            except StablePayError as e:
                logger.warning(f"Failed to get {token_key} balance on {cfg.key}: {e}")
                continue
            tokens[token_key] = {
                "amount": _format_units(raw, token.decimals),
                "symbol": token.symbol,
                "name": token.name,
                "contractAddress": token.address,
                "decimals": token.decimals,
            }
        return {
            "network": cfg.name,
            "chainId": cfg.chain_id,
            "native": {"amount": _format_units(native, NATIVE_DECIMALS), "symbol": cfg.symbol, "network": cfg.name},
            "tokens": tokens,
        }

    async def get_all_balances(self) -> dict:
        balances = {}
        for key in sorted(self.registry.supported_networks(self.testnet)):
            if key not in self.clients:
                continue
            try:
                balances[key] = await self.get_balance(key)
            except StablePayError as e:
                logger.warning(f"Failed to get balances for {key}: {e}")
        return balances

    def network_info(self, network_key: str) -> dict:
        return self.registry.config(network_key, self.testnet).info()

    def supported_networks(self) -> list[str]:
        return sorted(self.registry.supported_networks(self.testnet))

    def supported_tokens(self, network_key: str) -> list[str]:
        return _token_order(self.registry.supported_tokens(network_key, self.testnet))
