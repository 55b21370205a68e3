# app/processor/mock.py
from __future__ import annotations

import secrets
import threading
from dataclasses import replace
from typing import Optional

from app.errors import UpstreamError
from app.processor.base import ProcessorPayment


class MockProcessor:
    """
    Test/dev processor.

    Mirrors the processor behaviour the service relies on:
    - same idempotency key -> same payment object
    - payments start in requires_payment_method
    Tests drive status changes with set_status() and outages with fail_requests.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._payments: dict[str, ProcessorPayment] = {}
        self._by_key: dict[str, str] = {}
        self.fail_requests = False
        self.create_calls = 0

    def create_payment(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> ProcessorPayment:
        if self.fail_requests:
            raise UpstreamError("Failed to create payment intent")

        with self._lock:
            self.create_calls += 1
            if idempotency_key and idempotency_key in self._by_key:
                return self._payments[self._by_key[idempotency_key]]

            payment_id = f"pi_mock_{secrets.token_hex(12)}"
            payment = ProcessorPayment(
                id=payment_id,
                client_secret=f"{payment_id}_secret_{secrets.token_hex(8)}",
                status="requires_payment_method",
                amount_cents=int(amount_cents),
                currency=currency,
                metadata=dict(metadata),
            )
            self._payments[payment_id] = payment
            if idempotency_key:
                self._by_key[idempotency_key] = payment_id
            return payment

    def retrieve_payment(self, payment_id: str) -> ProcessorPayment:
        if self.fail_requests:
            raise UpstreamError("Failed to retrieve payment intent")
        with self._lock:
            payment = self._payments.get(payment_id)
        if payment is None:
            raise UpstreamError(f"No such payment_intent: {payment_id}")
        return payment

    def set_status(self, payment_id: str, status: str) -> None:
        with self._lock:
            self._payments[payment_id] = replace(self._payments[payment_id], status=status)
