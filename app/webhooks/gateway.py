# app/webhooks/gateway.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import stripe

from app.disbursement.engine import DisbursementEngine
from app.errors import AuthenticationError, MalformedEvent, UnknownIntent, WebhookSecretNotConfigured
from app.intents.model import IntentState, PaymentConfirmed, PaymentFailed
from app.intents.registry import IntentRegistry
from services.metrics import increment_webhook_event
from services.redaction import redact_text

logger = logging.getLogger("gasbridge.webhooks")

DEFAULT_TOLERANCE_SECONDS = 300

EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_FAILED = "payment_intent.payment_failed"
EVENT_CANCELED = "payment_intent.canceled"


@dataclass(frozen=True)
class WebhookOutcome:
    event_id: Optional[str]
    event_type: str
    intent_id: Optional[str] = None
    applied: bool = False
    ignored: bool = False
    reason: Optional[str] = None
    state: Optional[IntentState] = None

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"received": True, "type": self.event_type}
        if self.intent_id:
            body["intentId"] = self.intent_id
        if self.ignored:
            body["ignored"] = True
            body["reason"] = self.reason
        else:
            body["applied"] = self.applied
            if self.state is not None:
                body["state"] = self.state.value
        return body


def _resolve_intent_id(obj: dict) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    if isinstance(metadata, dict):
        intent_id = str(metadata.get("intentId") or "").strip()
        if intent_id:
            return intent_id
    object_id = str(obj.get("id") or "").strip()
    return object_id or None


def _failure_reason(obj: dict, event_type: str) -> str:
    last_error = obj.get("last_payment_error")
    if isinstance(last_error, dict) and last_error.get("message"):
        return str(last_error["message"])
    if event_type == EVENT_CANCELED:
        reason = obj.get("cancellation_reason")
        return f"PAYMENT_CANCELED: {reason}" if reason else "PAYMENT_CANCELED"
    return "PAYMENT_FAILED"


class WebhookGateway:
    """
    Authenticates processor events and turns them into registry commands.

    Nothing is mutated until the signature checks out. Redelivered events are
    harmless: the registry treats a repeat transition as a no-op and the engine
    only submits for the caller that moved the intent into DISBURSING.
    """

    def __init__(
        self,
        *,
        registry: IntentRegistry,
        engine: DisbursementEngine,
        webhook_secret: Optional[str],
        tolerance_s: int = DEFAULT_TOLERANCE_SECONDS,
    ):
        self._registry = registry
        self._engine = engine
        self._secret = webhook_secret
        self._tolerance_s = tolerance_s

    # ==========================================================
    # Verification
    # ==========================================================

    def verify(self, raw_payload: bytes, signature_header: Optional[str]) -> dict:
        if not self._secret:
            logger.error("webhook rejected: signing secret not configured")
            raise WebhookSecretNotConfigured("Webhook signing secret is not configured")

        if not (signature_header or "").strip():
            increment_webhook_event("unknown", signature_valid=False, applied=False)
            raise AuthenticationError("MISSING_SIGNATURE", "Missing Stripe-Signature header")

        try:
            payload = raw_payload.decode("utf-8")
        except UnicodeDecodeError:
            # cannot match any signature computed over a text payload
            increment_webhook_event("unknown", signature_valid=False, applied=False)
            logger.warning("webhook signature rejected error=body is not valid UTF-8")
            raise AuthenticationError("INVALID_SIGNATURE", "Invalid webhook signature")

        try:
            stripe.WebhookSignature.verify_header(payload, signature_header, self._secret, self._tolerance_s)
        except stripe.SignatureVerificationError as exc:
            increment_webhook_event("unknown", signature_valid=False, applied=False)
            logger.warning(
                "webhook signature rejected error=%s signature=%s",
                str(exc),
                redact_text(signature_header),
            )
            raise AuthenticationError("INVALID_SIGNATURE", "Invalid webhook signature")

        try:
            event = json.loads(payload)
        except ValueError:
            raise MalformedEvent("Webhook body is not valid JSON")
        if not isinstance(event, dict) or not isinstance(event.get("type"), str):
            raise MalformedEvent("Webhook event has no type")
        return event

    # ==========================================================
    # Dispatch
    # ==========================================================

    def handle(self, raw_payload: bytes, signature_header: Optional[str]) -> WebhookOutcome:
        event = self.verify(raw_payload, signature_header)
        event_id = event.get("id")
        event_type = event["type"]

        if event_type not in (EVENT_SUCCEEDED, EVENT_FAILED, EVENT_CANCELED):
            logger.info("webhook ignored event_id=%s type=%s", event_id, event_type)
            increment_webhook_event(event_type, signature_valid=True, applied=False)
            return WebhookOutcome(event_id=event_id, event_type=event_type, ignored=True, reason="unhandled_event_type")

        data = event.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        if not isinstance(obj, dict):
            raise MalformedEvent("Webhook event has no data.object")

        intent_id = _resolve_intent_id(obj)
        if not intent_id:
            raise MalformedEvent("Webhook event does not reference a payment intent")

        if event_type == EVENT_SUCCEEDED:
            command = PaymentConfirmed()
        else:
            command = PaymentFailed(_failure_reason(obj, event_type))

        try:
            outcome = self._registry.apply(intent_id, command)
        except UnknownIntent:
            logger.warning("webhook for unknown intent event_id=%s type=%s intent_id=%s", event_id, event_type, intent_id)
            increment_webhook_event(event_type, signature_valid=True, applied=False)
            return WebhookOutcome(
                event_id=event_id,
                event_type=event_type,
                intent_id=intent_id,
                ignored=True,
                reason="unknown_intent",
            )

        increment_webhook_event(event_type, signature_valid=True, applied=outcome.applied)
        logger.info(
            "webhook processed event_id=%s type=%s intent_id=%s applied=%s state=%s",
            event_id,
            event_type,
            intent_id,
            outcome.applied,
            outcome.record.state.value,
        )

        # a redelivery of an already-confirmed intent still nudges the engine;
        # its CONFIRMED -> DISBURSING guard makes the extra call harmless
        if event_type == EVENT_SUCCEEDED and outcome.record.state == IntentState.CONFIRMED:
            self._engine.disburse(intent_id)

        return WebhookOutcome(
            event_id=event_id,
            event_type=event_type,
            intent_id=intent_id,
            applied=outcome.applied,
            state=outcome.record.state,
        )
