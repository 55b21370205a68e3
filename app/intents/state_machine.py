# app/intents/state_machine.py
from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Optional

from app.errors import InvalidTransition
from app.intents.model import (
    DisbursementAttemptFailed,
    DisbursementConfirmed,
    DisbursementFailed,
    DisbursementStarted,
    DisbursementSubmitted,
    IntentEvent,
    IntentState,
    PaymentConfirmed,
    PaymentFailed,
    PaymentIntentRecord,
)


ALLOWED = {
    IntentState.PENDING: {IntentState.CONFIRMED, IntentState.FAILED},
    IntentState.CONFIRMED: {IntentState.DISBURSING},
    # DISBURSING->DISBURSING allowed for tx hash / retry bookkeeping
    IntentState.DISBURSING: {IntentState.DISBURSING, IntentState.DISBURSED, IntentState.FAILED},
    IntentState.DISBURSED: set(),
    IntentState.FAILED: set(),
}

# Position along the happy path. Terminal states share the last rank.
RANK = {
    IntentState.PENDING: 0,
    IntentState.CONFIRMED: 1,
    IntentState.DISBURSING: 2,
    IntentState.DISBURSED: 3,
    IntentState.FAILED: 3,
}


def assert_transition(old: IntentState, new: IntentState) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition(f"Illegal intent transition: {old.value} -> {new.value}")


def assert_tx_hash_invariant(new_state: IntentState, tx_hash: str | None) -> None:
    """
    Invariant: a DISBURSED intent MUST carry the hash of the transfer.
    """
    if new_state == IntentState.DISBURSED and not tx_hash:
        raise InvalidTransition("Invariant violation: state=DISBURSED requires tx_hash")


def _merge_tx_hash(record: PaymentIntentRecord, tx_hash: str) -> str:
    # tx_hash is written once; a different hash for the same intent means two transfers
    if record.tx_hash and record.tx_hash.lower() != tx_hash.lower():
        raise InvalidTransition(
            f"tx_hash already set to {record.tx_hash}, refusing {tx_hash}",
            intent_id=record.intent_id,
        )
    return record.tx_hash or tx_hash


def _at_or_past(record: PaymentIntentRecord, target: IntentState) -> bool:
    return record.terminal or RANK[record.state] >= RANK[target]


def apply_event(
    record: PaymentIntentRecord,
    event: IntentEvent,
    *,
    now: datetime,
) -> Optional[PaymentIntentRecord]:
    """
    Returns the new record, or None when the event is a no-op because the
    record is already in (or past) the state the event leads to.
    Raises InvalidTransition for jumps the machine does not allow.
    """
    state = record.state

    if isinstance(event, PaymentConfirmed):
        if _at_or_past(record, IntentState.CONFIRMED):
            return None
        assert_transition(state, IntentState.CONFIRMED)
        return replace(record, state=IntentState.CONFIRMED, confirmed_at=now, updated_at=now)

    if isinstance(event, PaymentFailed):
        # a payment failure only matters while we still wait for the payment
        if state != IntentState.PENDING:
            return None
        assert_transition(state, IntentState.FAILED)
        return replace(
            record,
            state=IntentState.FAILED,
            failure_reason=event.reason,
            completed_at=now,
            updated_at=now,
        )

    if isinstance(event, DisbursementStarted):
        if _at_or_past(record, IntentState.DISBURSING):
            return None
        assert_transition(state, IntentState.DISBURSING)
        return replace(record, state=IntentState.DISBURSING, updated_at=now)

    if isinstance(event, DisbursementSubmitted):
        if record.terminal:
            return None
        assert_transition(state, IntentState.DISBURSING)
        tx_hash = _merge_tx_hash(record, event.tx_hash)
        if tx_hash == record.tx_hash:
            return None
        return replace(record, tx_hash=tx_hash, updated_at=now)

    if isinstance(event, DisbursementAttemptFailed):
        if state != IntentState.DISBURSING:
            return None
        return replace(
            record,
            attempt_count=record.attempt_count + 1,
            last_error=event.error,
            updated_at=now,
        )

    if isinstance(event, DisbursementConfirmed):
        if record.terminal:
            return None
        assert_transition(state, IntentState.DISBURSED)
        tx_hash = _merge_tx_hash(record, event.tx_hash)
        assert_tx_hash_invariant(IntentState.DISBURSED, tx_hash)
        return replace(
            record,
            state=IntentState.DISBURSED,
            tx_hash=tx_hash,
            last_error=None,
            completed_at=now,
            updated_at=now,
        )

    if isinstance(event, DisbursementFailed):
        if record.terminal:
            return None
        assert_transition(state, IntentState.FAILED)
        return replace(
            record,
            state=IntentState.FAILED,
            failure_reason=event.reason,
            completed_at=now,
            updated_at=now,
        )

    raise InvalidTransition(f"Unsupported event: {type(event).__name__}")
