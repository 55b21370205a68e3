"""
Runs against a migrated database (alembic upgrade head) when DATABASE_URL is set.
"""
from __future__ import annotations

import os
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.intents.model import (
    DisbursementConfirmed,
    DisbursementStarted,
    DisbursementSubmitted,
    IntentState,
    Network,
    PaymentConfirmed,
)
from app.intents.registry import IntentRegistry
from app.processor.mock import MockProcessor
from conftest import WALLET

pytestmark = pytest.mark.skipif(not os.getenv("DATABASE_URL"), reason="DATABASE_URL not set")


@pytest.fixture(scope="module")
def pg_store():
    import db
    from app.intents.repository import PostgresIntentStore

    db.init_pool(os.environ["DATABASE_URL"])
    yield PostgresIntentStore()
    db.close_pool()


@pytest.fixture()
def registry(pg_store):
    return IntentRegistry(
        store=pg_store,
        processor=MockProcessor(),
        min_amount=Decimal("0.01"),
        max_amount=Decimal("10"),
        price_usd=Decimal("0.5"),
        network=Network.TESTNET,
    )


def _new_id() -> str:
    return f"test-{uuid.uuid4().hex}"


def test_create_is_idempotent_and_amount_is_exact(registry):
    intent_id = _new_id()
    first = registry.create(wallet_address=WALLET, requested_amount="0.1", network="testnet", intent_id=intent_id)
    again = registry.create(wallet_address=WALLET, requested_amount="0.1", network="testnet", intent_id=intent_id)

    assert first.created is True
    assert again.created is False
    stored = registry.get(intent_id)
    assert stored.requested_amount == Decimal("0.1")
    assert str(stored.requested_amount) == "0.1"
    assert stored.amount_usd_cents == 5
    assert stored.processor_ref == first.payment.id


def test_full_lifecycle_persists(registry):
    intent_id = _new_id()
    registry.create(wallet_address=WALLET, requested_amount="1", network="testnet", intent_id=intent_id)
    tx_hash = "0x" + uuid.uuid4().hex * 2

    registry.transition(intent_id, PaymentConfirmed())
    registry.transition(intent_id, DisbursementStarted())
    registry.transition(intent_id, DisbursementSubmitted(tx_hash))
    done = registry.transition(intent_id, DisbursementConfirmed(tx_hash))

    assert done.state == IntentState.DISBURSED
    stored = registry.get(intent_id)
    assert stored.state == IntentState.DISBURSED
    assert stored.tx_hash == tx_hash
    assert stored.completed_at is not None


def test_row_lock_lets_one_disbursement_start(registry):
    intent_id = _new_id()
    registry.create(wallet_address=WALLET, requested_amount="1", network="testnet", intent_id=intent_id)
    registry.transition(intent_id, PaymentConfirmed())

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(lambda _: registry.apply(intent_id, DisbursementStarted()).applied, range(6)))

    assert results.count(True) == 1
    assert registry.get(intent_id).state == IntentState.DISBURSING


def test_list_by_state_filters_on_updated_at(pg_store, registry):
    intent_id = _new_id()
    registry.create(wallet_address=WALLET, requested_amount="1", network="testnet", intent_id=intent_id)
    registry.transition(intent_id, PaymentConfirmed())

    future = datetime.now(timezone.utc) + timedelta(minutes=1)
    past = datetime.now(timezone.utc) - timedelta(days=365)

    ids = {r.intent_id for r in pg_store.list_by_state(IntentState.CONFIRMED, updated_before=future, limit=500)}
    assert intent_id in ids
    assert pg_store.list_by_state(IntentState.CONFIRMED, updated_before=past, limit=500) == []
