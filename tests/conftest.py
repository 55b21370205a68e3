# tests/conftest.py

import json
import os
import sys
import time
from typing import Any, Dict, Optional

import pytest
from fastapi.testclient import TestClient

import rate_limit
from app.chain.mock import MockChainClient
from app.container import build_services
from app.intents.model import IntentState
from app.intents.store import InMemoryIntentStore
from app.processor.mock import MockProcessor
from main import create_app
import services.metrics as metrics
from settings import Settings

SCRIPT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "scripts"))
if SCRIPT_DIR not in sys.path:
    sys.path.insert(0, SCRIPT_DIR)

from _webhook_signing import payment_intent_event, stripe_signature_header  # noqa: E402


WEBHOOK_SECRET = "whsec_test_secret_for_pytest"

# EIP-55 checksummed; none of them is the sandbox funding address
WALLET = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
OTHER_WALLET = "0xdbF03B407c01E7cD3CBea99509d93f8DDDC8C6FB"
THIRD_WALLET = "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb"


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "ENV": "test",
        "INTENT_STORE": "memory",
        "CHAIN_MODE": "sandbox",
        "PROCESSOR_MODE": "sandbox",
        "NETWORK": "testnet",
        "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
        "ALLOWED_ORIGINS": "http://localhost:3000",
        "RATE_LIMIT_ENABLED": False,
        "DISBURSE_MAX_ATTEMPTS": 3,
        "DISBURSE_BASE_BACKOFF_S": 0.0,
        "DISBURSE_MAX_BACKOFF_S": 0.0,
        "CONFIRMATION_TIMEOUT_S": 0.05,
        "CONFIRMATION_POLL_S": 0.01,
        "RECONCILE_ENABLED": False,
        "RECONCILE_STALE_S": 0.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture(autouse=True)
def _reset_process_state():
    metrics.reset()
    rate_limit._limiter = rate_limit.InMemoryRateLimiter()
    yield


@pytest.fixture()
def chain() -> MockChainClient:
    return MockChainClient()


@pytest.fixture()
def processor() -> MockProcessor:
    return MockProcessor()


@pytest.fixture()
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture()
def services(test_settings, chain, processor):
    svc = build_services(test_settings, store=InMemoryIntentStore(), processor=processor, chain=chain)
    yield svc
    svc.engine.shutdown(wait=True)


@pytest.fixture()
def app(test_settings, services):
    return create_app(test_settings, services=services)


@pytest.fixture()
def client(app) -> TestClient:
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    return TestClient(app, raise_server_exceptions=False)


# ---------------------------
# Helpers
# ---------------------------

def create_intent(
    client: TestClient,
    *,
    wallet: str = WALLET,
    amount: Any = 0.1,
    network: Optional[str] = "testnet",
    intent_id: Optional[str] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"walletAddress": wallet, "amountMatic": amount}
    if network is not None:
        body["network"] = network
    if intent_id is not None:
        body["intentId"] = intent_id
    r = client.post("/api/payment/create-intent", json=body)
    assert r.status_code == 200, r.text
    return r.json()


def signed_event(event: Dict[str, Any], *, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None):
    body = json.dumps(event).encode("utf-8")
    headers = {"Content-Type": "application/json", **stripe_signature_header(secret, body, timestamp)}
    return body, headers


def post_event(
    client: TestClient,
    event_type: str,
    payment_intent: Dict[str, Any],
    *,
    event_id: str = "evt_test",
    secret: str = WEBHOOK_SECRET,
):
    event = payment_intent_event(event_type, payment_intent, event_id=event_id)
    body, headers = signed_event(event, secret=secret)
    return client.post("/api/webhook/provider", content=body, headers=headers)


def succeeded(client: TestClient, intent_id: str, *, event_id: str = "evt_succeeded"):
    return post_event(
        client,
        "payment_intent.succeeded",
        {"id": intent_id, "status": "succeeded", "metadata": {}},
        event_id=event_id,
    )


def wait_for_state(registry, intent_id: str, *states: IntentState, timeout: float = 3.0):
    deadline = time.monotonic() + timeout
    record = registry.get(intent_id)
    while time.monotonic() < deadline:
        record = registry.get(intent_id)
        if record is not None and record.state in states:
            return record
        time.sleep(0.01)
    raise AssertionError(f"intent {intent_id} never reached {states}; last={record}")
