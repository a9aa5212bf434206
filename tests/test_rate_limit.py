from fastapi import FastAPI
from starlette.testclient import TestClient

from didattest.middleware.rate_limit import DEFAULT_PATH_PREFIXES, RateLimitMiddleware, SlidingWindow


def _app(**kwargs) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, **kwargs)

    @app.post("/api/verify-did")
    def verify():
        return {"ok": True}

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    return app


def test_verify_rate_limit_returns_429():
    client = TestClient(_app(path_prefixes=["/api/verify-did"], limit_per_window=3, window_seconds=60))

    for _ in range(3):
        res = client.post("/api/verify-did", headers={"X-Forwarded-For": "1.2.3.4"})
        assert res.status_code == 200

    res = client.post("/api/verify-did", headers={"X-Forwarded-For": "1.2.3.4"})
    assert res.status_code == 429
    assert res.json().get("error") == "rate_limited"

    # Separate client IP has its own bucket
    res = client.post("/api/verify-did", headers={"X-Forwarded-For": "5.6.7.8"})
    assert res.status_code == 200


def test_untracked_paths_are_not_limited(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_LIMIT", "1")
    client = TestClient(_app())

    for _ in range(3):
        assert client.get("/healthz").status_code == 200
    assert "/api/verify-did" in DEFAULT_PATH_PREFIXES


def test_stale_buckets_are_evicted(monkeypatch):
    monkeypatch.setattr("didattest.middleware.rate_limit._now", lambda: 1000.0)
    limiter = RateLimitMiddleware(FastAPI(), limit_per_window=5, window_seconds=60)

    for ip, seen_at in (("1.1.1.1", 1000.0), ("2.2.2.2", 1050.0)):
        bucket = SlidingWindow(60)
        bucket.add_and_prune(seen_at)
        limiter._buckets[(ip, "/api/verify-did")] = bucket

    # Sweeps run at most once per window
    limiter._evict_stale(1030.0)
    assert len(limiter._buckets) == 2

    limiter._evict_stale(1070.0)
    assert list(limiter._buckets) == [("2.2.2.2", "/api/verify-did")]
