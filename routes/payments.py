# routes/payments.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException

from app.container import Services
from deps.services import admission, get_services
from schemas import CreateIntentRequest, CreateIntentResponse, PaymentStatusResponse

router = APIRouter(prefix="/api/payment", tags=["payments"])
logger = logging.getLogger("gasbridge.payments")


def _intent_id_from(body: CreateIntentRequest, idempotency_key: str | None) -> str | None:
    header_key = (idempotency_key or "").strip() or None
    body_key = (body.intent_id or "").strip() or None
    if header_key and len(header_key) > 128:
        raise HTTPException(
            status_code=400,
            detail={"error": "VALIDATION_ERROR", "message": "Idempotency-Key too long"},
        )
    if header_key and body_key and header_key != body_key:
        raise HTTPException(
            status_code=400,
            detail={"error": "VALIDATION_ERROR", "message": "intentId and Idempotency-Key disagree"},
        )
    return body_key or header_key


@router.post(
    "/create-intent",
    response_model=CreateIntentResponse,
    dependencies=[Depends(admission("create_intent"))],
)
def create_intent(
    body: CreateIntentRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    services: Services = Depends(get_services),
):
    registry = services.registry
    created = registry.create(
        wallet_address=body.wallet_address,
        requested_amount=body.amount_matic,
        network=body.network or registry.network,
        intent_id=_intent_id_from(body, idempotency_key),
    )
    record = created.record
    quote = registry.quote(record.requested_amount)
    payment = created.payment

    return CreateIntentResponse(
        client_secret=payment.client_secret if payment else None,
        intent_id=record.intent_id,
        payment_intent_id=record.processor_ref or record.intent_id,
        amount_usd=f"{quote.amount_usd:.2f}",
        amount_matic=str(record.requested_amount),
        network=record.network.value,
        state=record.state.value,
    )


@router.get(
    "/status/{intent_id}",
    response_model=PaymentStatusResponse,
    dependencies=[Depends(admission("general"))],
)
def payment_status(intent_id: str, services: Services = Depends(get_services)):
    status = services.status.status(intent_id)
    return PaymentStatusResponse(
        intent_id=status.intent_id,
        state=status.state.value,
        amount_matic=str(status.requested_amount),
        wallet_address=status.wallet_address,
        tx_hash=status.tx_hash,
        failure_reason=status.failure_reason,
        processor_status=status.processor_status,
        stale=status.stale,
    )
