from __future__ import annotations

import os
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response

from app.container import Services
from deps.services import get_services
from schemas import HealthResponse
from services.metrics import render_prometheus

router = APIRouter(tags=["health"])


def _check_store(services: Services) -> tuple[bool, str | None]:
    try:
        return bool(services.registry.ping()), None
    except Exception as exc:
        return False, f"{type(exc).__name__}: {exc}"


def _resolve_git_sha() -> str | None:
    return (os.getenv("GIT_SHA") or "").strip() or None


@router.get("/health", response_model=HealthResponse)
def health(services: Services = Depends(get_services)):
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        network=services.settings.NETWORK,
    )


@router.get("/readyz")
def readyz(services: Services = Depends(get_services)):
    store_ok, store_error = _check_store(services)
    body = {
        "ready": store_ok,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
        "store": services.settings.INTENT_STORE,
        "store_ok": store_ok,
        "store_error": store_error,
        "chain_mode": services.settings.CHAIN_MODE,
        "processor_mode": services.settings.PROCESSOR_MODE,
    }
    return JSONResponse(status_code=200 if store_ok else 503, content=body)


@router.get("/metrics")
def metrics():
    return Response(content=render_prometheus(), media_type="text/plain; version=0.0.4")
