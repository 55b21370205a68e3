# main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.container import Services, build_services
from middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from routes.health import router as health_router
from routes.payments import router as payments_router
from routes.wallet import router as wallet_router
from routes.webhooks import router as webhooks_router
from services.http_errors import install_error_handlers
from services.observability import configure_logging
from settings import Settings, settings as default_settings, validate_env_settings

logger = logging.getLogger("gasbridge.main")


def _parse_origins(raw: str) -> list[str]:
    return [o.strip() for o in (raw or "").split(",") if o.strip()]


def create_app(s: Settings | None = None, *, services: Services | None = None) -> FastAPI:
    s = s or default_settings
    configure_logging(s.LOG_LEVEL)
    validate_env_settings(s)

    services = services or build_services(s)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.start()
        logger.info("GasBridge API started env=%s network=%s", s.ENV, s.NETWORK)
        try:
            yield
        finally:
            services.stop()
            logger.info("GasBridge API stopped")

    app = FastAPI(title="GasBridge API", version="1.0.0", lifespan=lifespan)
    app.state.services = services

    # -----------------------------
    # MIDDLEWARE (last added runs first)
    # -----------------------------
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_parse_origins(s.ALLOWED_ORIGINS),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Idempotency-Key", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(RequestContextMiddleware)

    install_error_handlers(app)

    # -----------------------------
    # ROUTERS
    # -----------------------------
    app.include_router(health_router)
    app.include_router(payments_router)
    app.include_router(wallet_router)
    app.include_router(webhooks_router)

    return app


app = create_app()
