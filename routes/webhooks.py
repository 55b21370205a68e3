# routes/webhooks.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request
from starlette.concurrency import run_in_threadpool

from app.container import Services
from deps.services import admission, get_services

router = APIRouter(prefix="/api/webhook", tags=["webhooks"])


@router.post("/provider", dependencies=[Depends(admission("webhook"))])
async def processor_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    services: Services = Depends(get_services),
):
    # signature is computed over the exact bytes received
    raw = await request.body()
    outcome = await run_in_threadpool(services.gateway.handle, raw, stripe_signature)
    return outcome.to_response()
