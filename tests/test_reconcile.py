from __future__ import annotations

import threading

from app.errors import TransferError
from app.intents.model import (
    DisbursementStarted,
    DisbursementSubmitted,
    IntentState,
    PaymentConfirmed,
)
from conftest import WALLET, create_intent, wait_for_state
from services.metrics import get_counter


def _confirmed(client, services) -> str:
    intent_id = create_intent(client)["intentId"]
    services.registry.transition(intent_id, PaymentConfirmed())
    return intent_id


def test_lost_handoff_is_requeued(client, services, chain):
    intent_id = _confirmed(client, services)

    summary = services.reconciler.process_once()

    assert summary["requeued"] == 1
    record = wait_for_state(services.registry, intent_id, IntentState.DISBURSED)
    assert record.tx_hash == chain.sent[0]["hash"]


def test_disbursing_without_hash_fails_and_alerts(client, services, chain):
    intent_id = _confirmed(client, services)
    services.registry.transition(intent_id, DisbursementStarted())

    summary = services.reconciler.process_once()

    assert summary["failed"] == 1
    record = services.registry.get(intent_id)
    assert record.state == IntentState.FAILED
    assert record.failure_reason == "SUBMISSION_OUTCOME_UNKNOWN"
    assert chain.sent == []
    assert services.alerts.recent()[-1].reason == "SUBMISSION_OUTCOME_UNKNOWN"


def test_disbursing_with_mined_hash_is_completed(client, services, chain):
    chain.hold_receipts = True
    intent_id = _confirmed(client, services)
    record = services.engine.run(intent_id)
    assert record.state == IntentState.DISBURSING

    chain.mine_pending()
    summary = services.reconciler.process_once()

    assert summary["disbursed"] == 1
    done = services.registry.get(intent_id)
    assert done.state == IntentState.DISBURSED
    assert done.tx_hash == record.tx_hash
    assert len(chain.sent) == 1


def test_disbursing_with_pending_hash_is_left_alone(client, services, chain):
    chain.hold_receipts = True
    intent_id = _confirmed(client, services)
    services.engine.run(intent_id)

    summary = services.reconciler.process_once()

    assert summary["still_pending"] == 1
    assert services.registry.get(intent_id).state == IntentState.DISBURSING


def test_dropped_transaction_fails_without_resend(client, services, chain):
    chain.hold_receipts = True
    intent_id = _confirmed(client, services)
    services.engine.run(intent_id)
    chain.drop_pending()

    summary = services.reconciler.process_once()

    assert summary["failed"] == 1
    record = services.registry.get(intent_id)
    assert record.state == IntentState.FAILED
    assert record.failure_reason == "TRANSACTION_DROPPED"
    assert len(chain.sent) == 1
    assert get_counter("operator_alerts_total", {"reason": "TRANSACTION_DROPPED"}) == 1


def test_ambiguous_submission_settles_once_mined(client, services, chain):
    intent_id = _confirmed(client, services)
    services.registry.transition(intent_id, DisbursementStarted())
    # what the engine records when the RPC dropped after signing
    tx_hash = chain.send_transfer(to=WALLET, amount_wei=10**17, nonce=0)
    services.registry.transition(intent_id, DisbursementSubmitted(tx_hash))

    services.reconciler.process_once()

    assert services.registry.get(intent_id).state == IntentState.DISBURSED


def test_in_flight_intents_are_skipped(client, services, chain):
    intent_id = _confirmed(client, services)
    services.registry.transition(intent_id, DisbursementStarted())

    gate = threading.Event()
    original = services.engine.run

    def _slow_run(i):
        gate.wait(5)
        return original(i)

    services.engine.run = _slow_run
    services.engine.disburse(intent_id)
    try:
        summary = services.reconciler.process_once()
        assert summary["skipped_in_flight"] == 1
        assert services.registry.get(intent_id).state == IntentState.DISBURSING
    finally:
        gate.set()


def test_run_forever_stops_on_event(services):
    stop = threading.Event()
    stop.set()
    # returns immediately instead of looping
    services.reconciler.run_forever(poll_seconds=0.01, stop_event=stop)


def test_chain_error_does_not_abort_the_sweep(client, services, chain, monkeypatch):
    chain.hold_receipts = True
    first = _confirmed(client, services)
    services.engine.run(first)

    def _boom(tx_hash):
        raise TransferError("receipt lookup failed", retryable=True)

    monkeypatch.setattr(chain, "get_receipt", _boom)
    second = _confirmed(client, services)
    services.registry.transition(second, DisbursementStarted())

    summary = services.reconciler.process_once()

    assert summary["failed"] == 1
    assert services.registry.get(first).state == IntentState.DISBURSING
    assert services.registry.get(second).state == IntentState.FAILED
