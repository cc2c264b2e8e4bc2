from decimal import Decimal

import pytest
from pydantic import ValidationError

from stablepay.exceptions import (
    InvalidAmountError,
    InvalidTransactionError,
    PaymentAlreadyProcessedError,
    PaymentNotFoundError,
    PaymentNotVerifiedError,
    TransactionAlreadyUsedError,
    UnsupportedNetworkError,
    UnsupportedTokenError,
)
from stablepay.models import PaymentCreate, PaymentFilter, PaymentStatus

from .conftest import tx_hash

pytestmark = pytest.mark.asyncio


async def test_create_snapshots_registry(gateway, order):
    # --- ACT ---
    payment = await gateway.ledger.create(order("10.00", network="bsc", token="USDT"))

    # --- ASSERT ---
    token = gateway.registry.token_config("bsc", "usdt", testnet=True)
    assert payment.status == PaymentStatus.pending
    assert payment.original_amount == Decimal("10.00")
    assert payment.disambiguated_amount == Decimal("10.37")
    assert payment.contract_address == token.address
    assert payment.decimals == 18
    assert payment.chain_id == 97
    assert payment.token == "usdt" and payment.token_symbol == "USDT"
    assert (payment.expires_at - payment.created_at).total_seconds() == 1800
    assert gateway.amounts.is_reserved(("bsc", "usdt"), payment.disambiguated_amount)


async def test_unsupported_network_leaves_no_trace(gateway, order):
    with pytest.raises(UnsupportedNetworkError):
        await gateway.ledger.create(order(network="moonchain"))

    assert len(gateway.ledger) == 0
    assert len(gateway.amounts) == 0
    assert len(gateway.scheduler) == 0


async def test_unsupported_token_leaves_no_trace(gateway, order):
    with pytest.raises(UnsupportedTokenError):
        await gateway.ledger.create(order(token="dai"))

    assert len(gateway.ledger) == 0
    assert len(gateway.amounts) == 0


async def test_oversized_amount_is_rejected(gateway, order):
    with pytest.raises(ValidationError):
        order("1E+22")

    request = PaymentCreate.model_construct(
        amount=Decimal("1E+22"), order_id="BIG1", network_key="bsc", token="usdt", metadata={}
    )
    with pytest.raises(InvalidAmountError):
        await gateway.ledger.create(request)

    assert len(gateway.ledger) == 0
    assert len(gateway.scheduler) == 0


async def test_get_returns_copies(gateway, order):
    payment = await gateway.ledger.create(order())

    copy = gateway.ledger.get(payment.id)
    copy.status = PaymentStatus.confirmed
    copy.metadata["x"] = 1

    stored = gateway.ledger.get(payment.id)
    assert stored.status == PaymentStatus.pending
    assert stored.metadata == {}


async def test_get_unknown_raises(gateway):
    with pytest.raises(PaymentNotFoundError):
        gateway.ledger.get("nope")


async def test_find_by_scoped_amount(gateway, order):
    a = await gateway.ledger.create(order("10.00", network="bsc"))
    await gateway.ledger.create(order("10.00", network="bsc", token="usdc"))

    assert gateway.ledger.find_by_scoped_amount("bsc", "usdt", Decimal("10.37")).id == a.id
    assert gateway.ledger.find_by_scoped_amount("bsc", "USDT", Decimal("10.370000")).id == a.id
    assert gateway.ledger.find_by_scoped_amount("ethereum", "usdt", Decimal("10.37")) is None
    assert gateway.ledger.find_by_scoped_amount("bsc", "usdt", Decimal("10.38")) is None


async def test_list_newest_first_with_pagination(gateway, order, clock):
    ids = []
    for _ in range(5):
        ids.append((await gateway.ledger.create(order())).id)
        clock.advance(1)

    page = gateway.ledger.list(PaymentFilter(limit=2, offset=1))

    assert [p.id for p in page.items] == [ids[3], ids[2]]
    assert page.total == 5
    assert page.has_more
    assert gateway.ledger.list(PaymentFilter(limit=2, offset=4)).has_more is False


async def test_list_same_timestamp_keeps_creation_order(gateway, order):
    first = await gateway.ledger.create(order())
    second = await gateway.ledger.create(order())

    assert [p.id for p in gateway.ledger.list().items] == [second.id, first.id]


async def test_list_filters(gateway, order):
    await gateway.ledger.create(order(network="bsc", token="usdt"))
    usdc = await gateway.ledger.create(order(network="bsc", token="usdc"))
    await gateway.ledger.create(order(network="ethereum", token="usdc"))

    page = gateway.ledger.list(PaymentFilter(network_key="BSC", token="USDC"))

    assert [p.id for p in page.items] == [usdc.id]
    assert gateway.ledger.list(PaymentFilter(status=PaymentStatus.expired)).total == 0


async def test_mark_expired_only_from_pending(gateway, order):
    payment = await gateway.ledger.create(order())
    await gateway.ledger.apply_verification(payment.id, tx_hash(1), 5, threshold_reached=True)

    assert await gateway.ledger.mark_expired(payment.id) is None
    assert gateway.ledger.get(payment.id).status == PaymentStatus.confirmed


async def test_verification_below_threshold(gateway, order):
    payment = await gateway.ledger.create(order())

    updated = await gateway.ledger.apply_verification(payment.id, tx_hash(1), 1, threshold_reached=False)

    assert updated.status == PaymentStatus.pending_confirmation
    assert updated.tx_hash == tx_hash(1)
    assert updated.verified_at is not None
    assert updated.confirmed_at is None
    # amount goes back to the pool once the payment leaves pending
    assert not gateway.amounts.is_reserved(payment.scope, payment.disambiguated_amount)
    assert len(gateway.scheduler) == 0


async def test_verification_on_terminal_payment_conflicts(gateway, order):
    payment = await gateway.ledger.create(order())
    await gateway.ledger.apply_verification(payment.id, tx_hash(1), 5, threshold_reached=True)
    before = gateway.ledger.get(payment.id)

    with pytest.raises(PaymentAlreadyProcessedError):
        await gateway.ledger.apply_verification(payment.id, tx_hash(1), 9, threshold_reached=True)

    assert gateway.ledger.get(payment.id) == before


async def test_other_transaction_on_matched_payment_conflicts(gateway, order):
    payment = await gateway.ledger.create(order())
    await gateway.ledger.apply_verification(payment.id, tx_hash(1), 1, threshold_reached=False)

    with pytest.raises(PaymentAlreadyProcessedError):
        await gateway.ledger.apply_verification(payment.id, tx_hash(2), 1, threshold_reached=False)


async def test_transaction_cannot_settle_two_payments(gateway, order):
    a = await gateway.ledger.create(order())
    b = await gateway.ledger.create(order())
    await gateway.ledger.apply_verification(a.id, tx_hash(1), 1, threshold_reached=False)

    with pytest.raises(TransactionAlreadyUsedError):
        await gateway.ledger.apply_verification(b.id, tx_hash(1).upper().replace("0X", "0x"), 1, False)

    assert gateway.ledger.get(b.id).status == PaymentStatus.pending


async def test_confirmation_update_promotes_and_never_decreases(gateway, order):
    payment = await gateway.ledger.create(order())
    await gateway.ledger.apply_verification(payment.id, tx_hash(1), 2, threshold_reached=False)

    lower = await gateway.ledger.apply_confirmation_update(payment.id, tx_hash(1), 1, threshold=3)
    assert lower.confirmations == 2
    assert lower.status == PaymentStatus.pending_confirmation

    final = await gateway.ledger.apply_confirmation_update(payment.id, tx_hash(1), 3, threshold=3)
    assert final.status == PaymentStatus.confirmed
    assert final.confirmed_at is not None


async def test_confirmation_update_preconditions(gateway, order):
    payment = await gateway.ledger.create(order())

    with pytest.raises(PaymentNotVerifiedError):
        await gateway.ledger.apply_confirmation_update(payment.id, tx_hash(1), 5, threshold=3)

    await gateway.ledger.apply_verification(payment.id, tx_hash(1), 1, threshold_reached=False)
    with pytest.raises(InvalidTransactionError):
        await gateway.ledger.apply_confirmation_update(payment.id, tx_hash(2), 5, threshold=3)

    await gateway.ledger.apply_confirmation_update(payment.id, tx_hash(1), 5, threshold=3)
    with pytest.raises(PaymentAlreadyProcessedError):
        await gateway.ledger.apply_confirmation_update(payment.id, tx_hash(1), 6, threshold=3)
