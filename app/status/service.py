# app/status/service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from app.errors import UnknownIntent
from app.intents.model import IntentState, PaymentIntentRecord
from app.intents.registry import IntentRegistry
from app.processor.base import PaymentProcessor

logger = logging.getLogger("gasbridge.status")

_CROSS_CHECK_STATES = {IntentState.PENDING, IntentState.CONFIRMED}


@dataclass(frozen=True)
class IntentStatus:
    intent_id: str
    state: IntentState
    wallet_address: str
    requested_amount: Decimal
    tx_hash: Optional[str]
    failure_reason: Optional[str]
    processor_status: Optional[str] = None
    stale: bool = False


class StatusService:
    """Read-only view of an intent. Never mutates the registry."""

    def __init__(self, *, registry: IntentRegistry, processor: PaymentProcessor, cross_check: bool = True):
        self._registry = registry
        self._processor = processor
        self._cross_check = cross_check

    def status(self, intent_id: str) -> IntentStatus:
        record = self._registry.get(intent_id)
        if record is None:
            raise UnknownIntent(intent_id)

        processor_status = None
        stale = False
        if self._cross_check and record.state in _CROSS_CHECK_STATES and record.processor_ref:
            # UpstreamError propagates as 502
            payment = self._processor.retrieve_payment(record.processor_ref)
            processor_status = payment.status
            stale = _is_stale(record, payment.succeeded)
            if stale:
                logger.warning(
                    "intent status stale intent_id=%s state=%s processor_status=%s",
                    intent_id,
                    record.state.value,
                    processor_status,
                )

        return IntentStatus(
            intent_id=record.intent_id,
            state=record.state,
            wallet_address=record.wallet_address,
            requested_amount=record.requested_amount,
            tx_hash=record.tx_hash,
            failure_reason=record.failure_reason,
            processor_status=processor_status,
            stale=stale,
        )


def _is_stale(record: PaymentIntentRecord, processor_succeeded: bool) -> bool:
    if record.state == IntentState.PENDING:
        return processor_succeeded
    if record.state == IntentState.CONFIRMED:
        return not processor_succeeded
    return False
