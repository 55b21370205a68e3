from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from app.errors import InvalidAddress, InvalidTransition, NetworkMismatch, OutOfBounds, UnknownIntent
from app.intents.model import (
    DisbursementConfirmed,
    DisbursementStarted,
    IntentState,
    Network,
    PaymentConfirmed,
)
from app.intents.registry import IntentRegistry
from app.intents.store import InMemoryIntentStore
from app.processor.mock import MockProcessor
from conftest import OTHER_WALLET, WALLET
from services.metrics import get_counter


def _registry(processor: MockProcessor | None = None, store: InMemoryIntentStore | None = None) -> IntentRegistry:
    return IntentRegistry(
        store=store or InMemoryIntentStore(),
        processor=processor or MockProcessor(),
        min_amount=Decimal("0.01"),
        max_amount=Decimal("10"),
        price_usd=Decimal("0.5"),
        network=Network.TESTNET,
    )


def test_create_stores_pending_record_and_charges_quote():
    processor = MockProcessor()
    registry = _registry(processor)

    created = registry.create(wallet_address=WALLET, requested_amount="0.1", network="testnet")

    record = created.record
    assert created.created is True
    assert record.state == IntentState.PENDING
    assert record.requested_amount == Decimal("0.1")
    assert record.wallet_address == WALLET
    assert record.tx_hash is None
    assert record.intent_id == created.payment.id
    assert record.processor_ref == created.payment.id
    assert record.amount_usd_cents == 5
    assert created.payment.amount_cents == 5
    assert created.payment.metadata["walletAddress"] == WALLET
    assert registry.get(record.intent_id) == record
    assert get_counter("intents_created_total", {"network": "testnet"}) == 1


@pytest.mark.parametrize("amount", ["0.005", "15", "0", "-1", "abc", "NaN", "Infinity"])
def test_amount_outside_bounds_is_rejected_without_record(amount):
    processor = MockProcessor()
    registry = _registry(processor)
    with pytest.raises(OutOfBounds):
        registry.create(wallet_address=WALLET, requested_amount=amount, network="testnet")
    assert processor.create_calls == 0


def test_bounds_are_inclusive():
    registry = _registry()
    assert registry.create(wallet_address=WALLET, requested_amount="0.01", network="testnet").created
    assert registry.create(wallet_address=OTHER_WALLET, requested_amount="10", network="testnet").created


def test_more_than_eighteen_decimals_is_rejected():
    registry = _registry()
    with pytest.raises(OutOfBounds):
        registry.create(wallet_address=WALLET, requested_amount="0.1000000000000000001", network="testnet")


def test_invalid_address_creates_nothing():
    processor = MockProcessor()
    store = InMemoryIntentStore()
    registry = _registry(processor, store)
    with pytest.raises(InvalidAddress):
        registry.create(wallet_address="0x5aaeb6053F3E94C9b9A09f33669435E7Ef1BeAed", requested_amount="1", network="testnet")
    assert processor.create_calls == 0
    assert store.list_by_state(IntentState.PENDING, updated_before=_far_future(), limit=10) == []


def test_network_aliases_and_mismatch():
    registry = _registry()
    assert registry.create(wallet_address=WALLET, requested_amount="1", network="amoy").record.network == Network.TESTNET

    with pytest.raises(NetworkMismatch):
        registry.create(wallet_address=WALLET, requested_amount="1", network="mainnet")
    with pytest.raises(NetworkMismatch):
        registry.create(wallet_address=WALLET, requested_amount="1", network="goerli")


def test_create_with_same_intent_id_returns_existing_record():
    processor = MockProcessor()
    registry = _registry(processor)

    first = registry.create(wallet_address=WALLET, requested_amount="0.5", network="testnet", intent_id="order-1")
    second = registry.create(wallet_address=WALLET, requested_amount="0.5", network="testnet", intent_id="order-1")

    assert first.created is True
    assert second.created is False
    assert second.record == first.record
    assert second.payment.id == first.payment.id
    assert first.record.intent_id == "order-1"
    assert first.payment.metadata["intentId"] == "order-1"


def test_concurrent_create_with_same_id_yields_one_record():
    processor = MockProcessor()
    registry = _registry(processor)

    def _create(_):
        return registry.create(wallet_address=WALLET, requested_amount="1", network="testnet", intent_id="race-1")

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(_create, range(8)))

    assert sum(1 for r in results if r.created) == 1
    assert len({r.record.processor_ref for r in results}) == 1
    assert len({r.record for r in results}) == 1


def test_transition_is_idempotent_and_reports_application():
    registry = _registry()
    intent_id = registry.create(wallet_address=WALLET, requested_amount="1", network="testnet").record.intent_id

    first = registry.apply(intent_id, PaymentConfirmed())
    second = registry.apply(intent_id, PaymentConfirmed())

    assert first.applied is True
    assert second.applied is False
    assert second.record == first.record


def test_transition_unknown_intent_raises():
    with pytest.raises(UnknownIntent):
        _registry().transition("pi_missing", PaymentConfirmed())


def test_illegal_transition_leaves_record_untouched():
    registry = _registry()
    intent_id = registry.create(wallet_address=WALLET, requested_amount="1", network="testnet").record.intent_id
    before = registry.get(intent_id)

    with pytest.raises(InvalidTransition):
        registry.transition(intent_id, DisbursementStarted())
    with pytest.raises(InvalidTransition):
        registry.transition(intent_id, DisbursementConfirmed("0x" + "11" * 32))

    assert registry.get(intent_id) == before


def test_only_one_caller_wins_the_disbursing_guard():
    registry = _registry()
    intent_id = registry.create(wallet_address=WALLET, requested_amount="1", network="testnet").record.intent_id
    registry.transition(intent_id, PaymentConfirmed())

    with ThreadPoolExecutor(max_workers=10) as pool:
        outcomes = list(pool.map(lambda _: registry.apply(intent_id, DisbursementStarted()), range(10)))

    assert sum(1 for o in outcomes if o.applied) == 1
    assert registry.get(intent_id).state == IntentState.DISBURSING


def test_quote_rounds_half_up_to_cents():
    registry = _registry()
    quote = registry.quote(Decimal("0.03"))
    assert quote.amount_usd == Decimal("0.02")  # 0.015 -> 0.02
    assert quote.amount_cents == 2


def _far_future():
    from datetime import datetime, timezone

    return datetime(2100, 1, 1, tzinfo=timezone.utc)
