from __future__ import annotations

import pytest
from fastapi import HTTPException

import rate_limit
from app.container import build_services
from app.intents.store import InMemoryIntentStore
from conftest import WALLET, make_settings
from services.metrics import get_counter


def test_limiter_window_slides():
    limiter = rate_limit.InMemoryRateLimiter()
    assert limiter.hit("k", limit=2, window_seconds=10, now=0.0) == (True, 0.0)
    assert limiter.hit("k", limit=2, window_seconds=10, now=1.0) == (True, 0.0)

    allowed, retry_after = limiter.hit("k", limit=2, window_seconds=10, now=2.0)
    assert allowed is False
    assert retry_after == pytest.approx(8.0)

    # first hit has aged out
    assert limiter.hit("k", limit=2, window_seconds=10, now=10.0)[0] is True
    # keys are independent
    assert limiter.hit("other", limit=2, window_seconds=10, now=2.0)[0] is True


def test_limiter_drops_drained_keys():
    limiter = rate_limit.InMemoryRateLimiter()
    for i in range(50):
        limiter.hit(f"client-{i}", limit=5, window_seconds=10, now=0.0)
    assert len(limiter._hits) == 50

    limiter.hit("late", limit=5, window_seconds=10, now=30.0)

    assert list(limiter._hits) == ["late"]


def test_rate_limit_or_429_sets_retry_after():
    rate_limit._limiter = rate_limit.InMemoryRateLimiter()

    rate_limit.rate_limit_or_429(key="test:key", limit=2, window_seconds=60)
    rate_limit.rate_limit_or_429(key="test:key", limit=2, window_seconds=60)

    with pytest.raises(HTTPException) as exc:
        rate_limit.rate_limit_or_429(key="test:key", limit=2, window_seconds=60)

    err = exc.value
    assert err.status_code == 429
    assert err.detail["error"] == "RATE_LIMITED"
    assert err.headers and int(err.headers["Retry-After"]) >= 1


def test_rate_limit_enabled_reads_env(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "0")
    assert rate_limit.rate_limit_enabled() is False
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "true")
    assert rate_limit.rate_limit_enabled() is True


def _limited_client(processor, chain, **overrides):
    from fastapi.testclient import TestClient

    from main import create_app

    s = make_settings(RATE_LIMIT_ENABLED=True, **overrides)
    svc = build_services(s, store=InMemoryIntentStore(), processor=processor, chain=chain)
    return TestClient(create_app(s, services=svc), raise_server_exceptions=False), svc


def test_create_intent_guard_rejects_before_processor(processor, chain):
    client, svc = _limited_client(processor, chain, RATE_LIMIT_CREATE_INTENT_MAX=2)
    try:
        body = {"walletAddress": WALLET, "amountMatic": 1}
        assert client.post("/api/payment/create-intent", json=body).status_code == 200
        assert client.post("/api/payment/create-intent", json=body).status_code == 200

        r = client.post("/api/payment/create-intent", json=body)

        assert r.status_code == 429, r.text
        assert r.json()["detail"]["error"] == "RATE_LIMITED"
        assert r.headers.get("Retry-After")
        assert r.headers.get("X-Request-ID")
        assert processor.create_calls == 2
        assert get_counter("rate_limited_total", {"guard": "create_intent"}) == 1
    finally:
        svc.engine.shutdown(wait=True)


def test_general_guard_is_separate_from_create_guard(processor, chain):
    client, svc = _limited_client(processor, chain, RATE_LIMIT_CREATE_INTENT_MAX=1, RATE_LIMIT_GENERAL_MAX=1)
    try:
        body = {"walletAddress": WALLET, "amountMatic": 1}
        intent_id = client.post("/api/payment/create-intent", json=body).json()["intentId"]
        assert client.post("/api/payment/create-intent", json=body).status_code == 429

        assert client.get(f"/api/payment/status/{intent_id}").status_code == 200
        assert client.get(f"/api/payment/status/{intent_id}").status_code == 429
        # health is never guarded
        assert client.get("/health").status_code == 200
    finally:
        svc.engine.shutdown(wait=True)


def test_webhook_guard_rejects_before_signature_check(processor, chain):
    client, svc = _limited_client(processor, chain, RATE_LIMIT_WEBHOOK_MAX=1)
    try:
        assert client.post("/api/webhook/provider", content=b"{}").status_code == 401
        r = client.post("/api/webhook/provider", content=b"{}")
        assert r.status_code == 429, r.text
    finally:
        svc.engine.shutdown(wait=True)


def test_disabled_guard_admits_everything(processor, chain):
    from fastapi.testclient import TestClient

    from main import create_app

    s = make_settings(RATE_LIMIT_ENABLED=False, RATE_LIMIT_GENERAL_MAX=1)
    svc = build_services(s, store=InMemoryIntentStore(), processor=processor, chain=chain)
    try:
        client = TestClient(create_app(s, services=svc), raise_server_exceptions=False)
        for _ in range(5):
            assert client.get(f"/api/wallet/balance/{WALLET}").status_code == 200
    finally:
        svc.engine.shutdown(wait=True)
