# app/processor/stripe_processor.py
from __future__ import annotations

import logging
from typing import Any, Optional

import stripe

from app.errors import UpstreamError
from app.processor.base import ProcessorPayment
from services.redaction import redact_text

logger = logging.getLogger("gasbridge.stripe")


def _to_payment(intent: Any) -> ProcessorPayment:
    metadata = getattr(intent, "metadata", None)
    return ProcessorPayment(
        id=intent.id,
        client_secret=getattr(intent, "client_secret", None),
        status=intent.status,
        amount_cents=int(intent.amount),
        currency=getattr(intent, "currency", "usd") or "usd",
        metadata={k: str(v) for k, v in (metadata.items() if metadata else ())},
    )


class StripeProcessor:
    def __init__(self, *, api_key: str, max_network_retries: int = 2):
        self._api_key = api_key
        stripe.max_network_retries = max_network_retries

    def create_payment(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> ProcessorPayment:
        params: dict[str, Any] = {
            "amount": int(amount_cents),
            "currency": currency,
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
            "api_key": self._api_key,
        }
        if idempotency_key:
            params["idempotency_key"] = f"gasbridge-intent-{idempotency_key}"

        try:
            intent = stripe.PaymentIntent.create(**params)
        except stripe.StripeError as exc:
            logger.error(
                "stripe create failed error_type=%s request_id=%s message=%s",
                type(exc).__name__,
                getattr(exc, "request_id", None),
                redact_text(str(exc)),
            )
            raise UpstreamError("Failed to create payment intent") from exc

        return _to_payment(intent)

    def retrieve_payment(self, payment_id: str) -> ProcessorPayment:
        try:
            intent = stripe.PaymentIntent.retrieve(payment_id, api_key=self._api_key)
        except stripe.StripeError as exc:
            logger.error(
                "stripe retrieve failed payment_id=%s error_type=%s message=%s",
                payment_id,
                type(exc).__name__,
                redact_text(str(exc)),
            )
            raise UpstreamError("Failed to retrieve payment intent") from exc

        return _to_payment(intent)
