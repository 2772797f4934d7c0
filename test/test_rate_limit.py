import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from core.errors import register_exception_handlers
from middleware.security import InMemoryRateLimitStore, RateLimiter, RateLimitMiddleware


@pytest.fixture
def store():
    return InMemoryRateLimitStore()


@pytest.fixture
def limited_client(store):
    app = FastAPI()
    app.state.rate_limit_store = store
    app.add_middleware(RateLimitMiddleware, store=store, max_requests=2, window_seconds=60)
    register_exception_handlers(app)

    otp_limiter = RateLimiter("otp", 1, 60, "Too many codes requested")

    @app.get("/api/ping")
    async def ping():
        return {"ok": True}

    @app.post("/api/otp", dependencies=[Depends(otp_limiter)])
    async def otp():
        return {"sent": True}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return TestClient(app)


def test_store_allows_up_to_limit(store):
    assert store.allow("k", 2, 60)
    assert store.allow("k", 2, 60)
    assert not store.allow("k", 2, 60)
    assert store.allow("other", 2, 60)


def test_store_window_expires(store, monkeypatch):
    now = [1000.0]
    monkeypatch.setattr("middleware.security.time.time", lambda: now[0])

    assert store.allow("k", 1, 10)
    assert not store.allow("k", 1, 10)
    now[0] += 11
    assert store.allow("k", 1, 10)


def test_store_reset(store):
    store.allow("a", 1, 60)
    store.allow("b", 1, 60)

    store.reset("a")
    assert store.allow("a", 1, 60)
    assert not store.allow("b", 1, 60)

    store.reset()
    assert store.allow("b", 1, 60)


def test_middleware_limits_api_paths(limited_client):
    assert limited_client.get("/api/ping").status_code == 200
    assert limited_client.get("/api/ping").status_code == 200

    blocked = limited_client.get("/api/ping")
    assert blocked.status_code == 429
    assert blocked.headers["Retry-After"] == "60"
    assert blocked.json()["success"] is False


def test_middleware_ignores_other_paths(limited_client):
    for _ in range(5):
        assert limited_client.get("/health").status_code == 200


def test_route_limiter_returns_envelope(limited_client):
    assert limited_client.post("/api/otp").status_code == 200

    blocked = limited_client.post("/api/otp")
    assert blocked.status_code == 429
    assert blocked.json()["message"] == "Too many codes requested"
