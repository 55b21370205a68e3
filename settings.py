# settings.py
from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # -----------------------
    # DB / intent store
    # -----------------------
    DATABASE_URL: str = ""
    INTENT_STORE: Literal["memory", "postgres"] = "memory"
    DB_POOL_MAX: int = Field(default=10, ge=1)
    DB_STATEMENT_TIMEOUT_MS: int = 5000

    # -----------------------
    # Chain (Mode Switch)
    # -----------------------
    CHAIN_MODE: Literal["sandbox", "real"] = "sandbox"
    NETWORK: Literal["testnet", "mainnet"] = "testnet"
    POLYGON_RPC_URL: str = "https://rpc-amoy.polygon.technology"
    CHAIN_ID: int = 0  # 0 = ask the node
    FUNDER_PRIVATE_KEY: str = ""
    GAS_LIMIT: int = 21000
    GAS_PRICE_MULTIPLIER: float = 1.0
    CHAIN_HTTP_TIMEOUT_S: float = 20.0

    # -----------------------
    # Processor (Mode Switch)
    # -----------------------
    PROCESSOR_MODE: Literal["sandbox", "real"] = "sandbox"
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_MAX_NETWORK_RETRIES: int = 2
    WEBHOOK_TOLERANCE_S: int = 300
    PAYMENT_CURRENCY: str = "usd"

    # -----------------------
    # Pricing / bounds
    # -----------------------
    MATIC_PRICE_USD: Decimal = Decimal("0.50")
    MIN_PURCHASE_MATIC: Decimal = Decimal("0.01")
    MAX_PURCHASE_MATIC: Decimal = Decimal("10")

    # -----------------------
    # HTTP
    # -----------------------
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_CREATE_INTENT_WINDOW_MS: int = 60 * 60 * 1000
    RATE_LIMIT_CREATE_INTENT_MAX: int = 10
    RATE_LIMIT_WEBHOOK_WINDOW_MS: int = 60 * 1000
    RATE_LIMIT_WEBHOOK_MAX: int = 600
    RATE_LIMIT_GENERAL_WINDOW_MS: int = 15 * 60 * 1000
    RATE_LIMIT_GENERAL_MAX: int = 100

    # -----------------------
    # Disbursement
    # -----------------------
    DISBURSE_MAX_ATTEMPTS: int = Field(default=5, ge=1)
    DISBURSE_BASE_BACKOFF_S: float = 2.0
    DISBURSE_MAX_BACKOFF_S: float = 60.0
    CONFIRMATION_TIMEOUT_S: float = 120.0
    CONFIRMATION_POLL_S: float = 2.0
    DISPATCH_WORKERS: int = Field(default=4, ge=1)

    STATUS_CROSS_CHECK: bool = True

    # -----------------------
    # Reconciler
    # -----------------------
    RECONCILE_ENABLED: bool = False
    RECONCILE_STALE_S: float = 900.0
    RECONCILE_INTERVAL_S: float = 60.0


settings = Settings()


def _is_strict_env(env: str) -> bool:
    return (env or "").strip().lower() in {"staging", "prod", "production"}


def validate_env_settings(s: Settings | None = None) -> None:
    """
    Fail fast on config that would only blow up at the first payment.
    Dev/sandbox runs are allowed to miss secrets.
    """
    s = s or settings
    strict = _is_strict_env(s.ENV)
    missing: list[str] = []

    if s.INTENT_STORE == "postgres" or strict:
        if not (s.DATABASE_URL or "").strip():
            missing.append("DATABASE_URL")
    if strict and s.INTENT_STORE != "postgres":
        missing.append("INTENT_STORE=postgres")

    if s.PROCESSOR_MODE == "real" or strict:
        if not (s.STRIPE_SECRET_KEY or "").strip():
            missing.append("STRIPE_SECRET_KEY")
        if not (s.STRIPE_WEBHOOK_SECRET or "").strip():
            missing.append("STRIPE_WEBHOOK_SECRET")

    if s.CHAIN_MODE == "real" or strict:
        if not (s.FUNDER_PRIVATE_KEY or "").strip():
            missing.append("FUNDER_PRIVATE_KEY")
        if not (s.POLYGON_RPC_URL or "").strip():
            missing.append("POLYGON_RPC_URL")

    if s.MIN_PURCHASE_MATIC <= 0 or s.MAX_PURCHASE_MATIC < s.MIN_PURCHASE_MATIC:
        missing.append("MIN_PURCHASE_MATIC<=MAX_PURCHASE_MATIC")
    if s.MATIC_PRICE_USD <= 0:
        missing.append("MATIC_PRICE_USD")

    if missing:
        raise RuntimeError("Missing/invalid required settings: " + ", ".join(missing))
