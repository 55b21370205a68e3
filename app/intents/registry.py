# app/intents/registry.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Callable, Optional

from app.chain.address import AddressValidator
from app.errors import InvalidAddress, NetworkMismatch, OutOfBounds
from app.intents.model import (
    IntentEvent,
    IntentState,
    Network,
    PaymentIntentRecord,
    TransitionOutcome,
    parse_network,
)
from app.intents.state_machine import apply_event
from app.intents.store import IntentStore
from app.processor.base import PaymentProcessor, ProcessorPayment
from services.metrics import increment_intent_created, increment_intent_transition

logger = logging.getLogger("gasbridge.intents")

MAX_DECIMALS = 18
_CENT = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Quote:
    amount: Decimal
    amount_usd: Decimal
    amount_cents: int


@dataclass(frozen=True)
class CreatedIntent:
    record: PaymentIntentRecord
    payment: Optional[ProcessorPayment]
    created: bool


class IntentRegistry:
    """
    Sole owner of PaymentIntentRecord.

    Every mutation goes through the store's per-intent critical section, and
    replays of an event the record already reflects are no-ops. That is what
    makes webhook redelivery and disbursement re-triggers safe.
    """

    def __init__(
        self,
        *,
        store: IntentStore,
        processor: PaymentProcessor,
        validator: AddressValidator | None = None,
        min_amount: Decimal,
        max_amount: Decimal,
        price_usd: Decimal,
        network: Network,
        currency: str = "usd",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._processor = processor
        self._validator = validator or AddressValidator()
        self._min = Decimal(min_amount)
        self._max = Decimal(max_amount)
        self._price = Decimal(price_usd)
        self._network = network
        self._currency = currency
        self._clock = clock

    @property
    def network(self) -> Network:
        return self._network

    # ==========================================================
    # Create
    # ==========================================================

    def check_amount(self, requested_amount: Decimal | str | int | float) -> Decimal:
        try:
            amount = Decimal(str(requested_amount))
        except (InvalidOperation, ValueError):
            raise OutOfBounds("Amount must be a number")
        if not amount.is_finite():
            raise OutOfBounds("Amount must be a number")
        if amount < self._min or amount > self._max:
            raise OutOfBounds(f"Amount must be between {self._min} and {self._max} MATIC")
        if amount.as_tuple().exponent < -MAX_DECIMALS:
            raise OutOfBounds(f"Amount supports at most {MAX_DECIMALS} decimal places")
        return amount

    def quote(self, amount: Decimal) -> Quote:
        amount_usd = (amount * self._price).quantize(_CENT, rounding=ROUND_HALF_UP)
        return Quote(amount=amount, amount_usd=amount_usd, amount_cents=int(amount_usd * 100))

    def create(
        self,
        *,
        wallet_address: str,
        requested_amount: Decimal | str,
        network: Network | str,
        intent_id: str | None = None,
    ) -> CreatedIntent:
        if not self._validator.validate(wallet_address):
            raise InvalidAddress("Invalid wallet address")

        amount = self.check_amount(requested_amount)

        try:
            net = parse_network(network)
        except ValueError:
            raise NetworkMismatch(f"Unsupported network: {network}")
        if net != self._network:
            raise NetworkMismatch(f"This service disburses on {self._network.value}, not {net.value}")

        intent_id = (intent_id or "").strip() or None
        if intent_id:
            existing = self._store.get(intent_id)
            if existing is not None:
                logger.info("intent create replay intent_id=%s state=%s", intent_id, existing.state.value)
                payment = (
                    self._processor.retrieve_payment(existing.processor_ref)
                    if existing.processor_ref
                    else None
                )
                return CreatedIntent(record=existing, payment=payment, created=False)

        quote = self.quote(amount)
        metadata = {
            "walletAddress": wallet_address,
            "amountMatic": str(amount),
            "network": net.value,
        }
        if intent_id:
            metadata["intentId"] = intent_id

        payment = self._processor.create_payment(
            amount_cents=quote.amount_cents,
            currency=self._currency,
            metadata=metadata,
            idempotency_key=intent_id,
        )

        now = self._clock()
        record = PaymentIntentRecord(
            intent_id=intent_id or payment.id,
            wallet_address=wallet_address,
            requested_amount=amount,
            network=net,
            state=IntentState.PENDING,
            processor_ref=payment.id,
            amount_usd_cents=quote.amount_cents,
            tx_hash=None,
            failure_reason=None,
            attempt_count=0,
            last_error=None,
            created_at=now,
            confirmed_at=None,
            completed_at=None,
            updated_at=now,
        )
        stored, created = self._store.insert_if_absent(record)

        if created:
            increment_intent_created(net.value)
            logger.info(
                "intent created intent_id=%s wallet=%s amount=%s amount_usd_cents=%s",
                stored.intent_id,
                stored.wallet_address,
                stored.requested_amount,
                stored.amount_usd_cents,
            )
        else:
            logger.info("intent create lost race intent_id=%s", stored.intent_id)

        return CreatedIntent(record=stored, payment=payment, created=created)

    # ==========================================================
    # Transitions
    # ==========================================================

    def apply(self, intent_id: str, event: IntentEvent) -> TransitionOutcome:
        def _mutate(current: PaymentIntentRecord) -> Optional[PaymentIntentRecord]:
            return apply_event(current, event, now=self._clock())

        record, applied = self._store.update(intent_id, _mutate)
        event_name = type(event).__name__
        increment_intent_transition(event_name, applied)
        if applied:
            logger.info("intent transition intent_id=%s event=%s state=%s", intent_id, event_name, record.state.value)
        else:
            logger.debug("intent transition no-op intent_id=%s event=%s state=%s", intent_id, event_name, record.state.value)
        return TransitionOutcome(record=record, applied=applied)

    def transition(self, intent_id: str, event: IntentEvent) -> PaymentIntentRecord:
        return self.apply(intent_id, event).record

    # ==========================================================
    # Reads
    # ==========================================================

    def get(self, intent_id: str) -> Optional[PaymentIntentRecord]:
        return self._store.get(intent_id)

    def stale(self, state: IntentState, *, older_than_s: float, limit: int = 50) -> list[PaymentIntentRecord]:
        cutoff = datetime.fromtimestamp(self._clock().timestamp() - older_than_s, tz=timezone.utc)
        return self._store.list_by_state(state, updated_before=cutoff, limit=limit)

    def ping(self) -> bool:
        return self._store.ping()
