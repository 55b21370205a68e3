# app/container.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from app.alerts import OperatorAlerts
from app.chain.address import AddressValidator
from app.chain.base import ChainClient
from app.disbursement.engine import DisbursementEngine
from app.disbursement.submitter import FundingAccountSubmitter
from app.intents.model import parse_network
from app.intents.registry import IntentRegistry
from app.intents.store import IntentStore, InMemoryIntentStore
from app.processor.base import PaymentProcessor
from app.status.service import StatusService
from app.webhooks.gateway import WebhookGateway
from app.workers.reconcile_worker import DisbursementReconciler
from rate_limit import AdmissionGuard
from settings import Settings

logger = logging.getLogger("gasbridge.container")


@dataclass
class Services:
    settings: Settings
    store: IntentStore
    processor: PaymentProcessor
    chain: ChainClient
    alerts: OperatorAlerts
    registry: IntentRegistry
    submitter: FundingAccountSubmitter
    engine: DisbursementEngine
    gateway: WebhookGateway
    status: StatusService
    reconciler: DisbursementReconciler
    guards: dict[str, AdmissionGuard]
    _reconcile_stop: threading.Event = field(default_factory=threading.Event)
    _reconcile_thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self.engine.start()
        if self.settings.RECONCILE_ENABLED and self._reconcile_thread is None:
            self._reconcile_stop.clear()
            self._reconcile_thread = threading.Thread(
                target=self.reconciler.run_forever,
                kwargs={"poll_seconds": self.settings.RECONCILE_INTERVAL_S, "stop_event": self._reconcile_stop},
                name="reconciler",
                daemon=True,
            )
            self._reconcile_thread.start()

    def stop(self) -> None:
        if self._reconcile_thread is not None:
            self._reconcile_stop.set()
            self._reconcile_thread.join(timeout=5)
            self._reconcile_thread = None
        self.engine.shutdown(wait=True)
        if self.settings.INTENT_STORE == "postgres":
            from db import close_pool

            close_pool()


# -----------------------
# Mode switches
# -----------------------
def build_store(s: Settings) -> IntentStore:
    if s.INTENT_STORE == "postgres":
        from app.intents.repository import PostgresIntentStore
        from db import init_pool

        init_pool(s.DATABASE_URL, max_connections=s.DB_POOL_MAX)
        return PostgresIntentStore()
    return InMemoryIntentStore()


def build_processor(s: Settings) -> PaymentProcessor:
    if s.PROCESSOR_MODE == "real":
        from app.processor.stripe_processor import StripeProcessor

        return StripeProcessor(api_key=s.STRIPE_SECRET_KEY, max_network_retries=s.STRIPE_MAX_NETWORK_RETRIES)

    from app.processor.mock import MockProcessor

    return MockProcessor()


def build_chain(s: Settings) -> ChainClient:
    if s.CHAIN_MODE == "real":
        from app.chain.web3_client import Web3ChainClient

        return Web3ChainClient(
            rpc_url=s.POLYGON_RPC_URL,
            private_key=s.FUNDER_PRIVATE_KEY,
            chain_id=s.CHAIN_ID,
            gas_limit=s.GAS_LIMIT,
            gas_price_multiplier=s.GAS_PRICE_MULTIPLIER,
            request_timeout_s=s.CHAIN_HTTP_TIMEOUT_S,
        )

    from app.chain.mock import MockChainClient

    return MockChainClient()


def build_guards(s: Settings) -> dict[str, AdmissionGuard]:
    return {
        "create_intent": AdmissionGuard(
            "create_intent",
            window_ms=s.RATE_LIMIT_CREATE_INTENT_WINDOW_MS,
            max_requests=s.RATE_LIMIT_CREATE_INTENT_MAX,
            enabled=s.RATE_LIMIT_ENABLED,
        ),
        "webhook": AdmissionGuard(
            "webhook",
            window_ms=s.RATE_LIMIT_WEBHOOK_WINDOW_MS,
            max_requests=s.RATE_LIMIT_WEBHOOK_MAX,
            enabled=s.RATE_LIMIT_ENABLED,
        ),
        "general": AdmissionGuard(
            "general",
            window_ms=s.RATE_LIMIT_GENERAL_WINDOW_MS,
            max_requests=s.RATE_LIMIT_GENERAL_MAX,
            enabled=s.RATE_LIMIT_ENABLED,
        ),
    }


def build_services(
    s: Settings,
    *,
    store: IntentStore | None = None,
    processor: PaymentProcessor | None = None,
    chain: ChainClient | None = None,
    alerts: OperatorAlerts | None = None,
) -> Services:
    store = store or build_store(s)
    processor = processor or build_processor(s)
    chain = chain or build_chain(s)
    alerts = alerts or OperatorAlerts()

    registry = IntentRegistry(
        store=store,
        processor=processor,
        validator=AddressValidator(),
        min_amount=s.MIN_PURCHASE_MATIC,
        max_amount=s.MAX_PURCHASE_MATIC,
        price_usd=s.MATIC_PRICE_USD,
        network=parse_network(s.NETWORK),
        currency=s.PAYMENT_CURRENCY,
    )
    submitter = FundingAccountSubmitter(
        chain,
        max_attempts=s.DISBURSE_MAX_ATTEMPTS,
        base_backoff_s=s.DISBURSE_BASE_BACKOFF_S,
        max_backoff_s=s.DISBURSE_MAX_BACKOFF_S,
    )
    engine = DisbursementEngine(
        registry=registry,
        chain=chain,
        submitter=submitter,
        alerts=alerts,
        max_attempts=s.DISBURSE_MAX_ATTEMPTS,
        base_backoff_s=s.DISBURSE_BASE_BACKOFF_S,
        max_backoff_s=s.DISBURSE_MAX_BACKOFF_S,
        confirmation_timeout_s=s.CONFIRMATION_TIMEOUT_S,
        confirmation_poll_s=s.CONFIRMATION_POLL_S,
        dispatch_workers=s.DISPATCH_WORKERS,
    )
    gateway = WebhookGateway(
        registry=registry,
        engine=engine,
        webhook_secret=s.STRIPE_WEBHOOK_SECRET,
        tolerance_s=s.WEBHOOK_TOLERANCE_S,
    )
    status = StatusService(registry=registry, processor=processor, cross_check=s.STATUS_CROSS_CHECK)
    reconciler = DisbursementReconciler(
        registry=registry,
        engine=engine,
        chain=chain,
        alerts=alerts,
        stale_seconds=s.RECONCILE_STALE_S,
    )

    logger.info(
        "services built network=%s chain_mode=%s processor_mode=%s store=%s funding_address=%s",
        s.NETWORK,
        s.CHAIN_MODE,
        s.PROCESSOR_MODE,
        type(store).__name__,
        chain.funding_address,
    )

    return Services(
        settings=s,
        store=store,
        processor=processor,
        chain=chain,
        alerts=alerts,
        registry=registry,
        submitter=submitter,
        engine=engine,
        gateway=gateway,
        status=status,
        reconciler=reconciler,
        guards=build_guards(s),
    )
