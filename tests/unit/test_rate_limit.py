"""Unit tests for per-user, per-route rate limiting

Tests cover:
- Fixed-window counting in SQLite
- Window rollover
- 429 envelope and headers from the route dependency
- Per-user and per-route isolation
"""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from inbox_helper.api.errors import ApiError, api_error_handler
from inbox_helper.api.middleware.rate_limit import RouteRateLimit
from inbox_helper.storage.rate_limit_repository import RateLimitRepository

WINDOW = 60_000


class TestRateLimitRepository:
    def test_requests_under_limit_allowed(self):
        repo = RateLimitRepository()
        decisions = [repo.consume("k", 3, WINDOW, now=1_000) for _ in range(3)]

        assert all(d.allowed for d in decisions)
        assert [d.remaining for d in decisions] == [2, 1, 0]
        assert decisions[0].reset_at == WINDOW

    def test_limit_enforced(self):
        repo = RateLimitRepository()
        for _ in range(3):
            repo.consume("k", 3, WINDOW, now=1_000)

        decision = repo.consume("k", 3, WINDOW, now=2_000)

        assert decision.allowed is False
        assert decision.remaining == 0

    def test_new_window_resets_count(self):
        repo = RateLimitRepository()
        for _ in range(4):
            repo.consume("k", 3, WINDOW, now=1_000)

        decision = repo.consume("k", 3, WINDOW, now=WINDOW + 5)

        assert decision.allowed is True
        assert decision.remaining == 2
        assert decision.reset_at == 2 * WINDOW

    def test_keys_isolated(self):
        repo = RateLimitRepository()
        repo.consume("a", 1, WINDOW, now=1_000)
        assert repo.consume("a", 1, WINDOW, now=1_000).allowed is False
        assert repo.consume("b", 1, WINDOW, now=1_000).allowed is True


@pytest.fixture
def client():
    """Test app with two limited routes"""
    app = FastAPI()
    app.add_exception_handler(ApiError, api_error_handler)

    @app.get("/limited", dependencies=[Depends(RouteRateLimit("test_route", limit=2))])
    def limited():
        return {"status": "ok"}

    @app.get("/other", dependencies=[Depends(RouteRateLimit("other_route", limit=2))])
    def other():
        return {"status": "ok"}

    return TestClient(app)


def test_rate_limit_headers(client):
    """Test that allowed responses carry the limit headers"""
    response = client.get("/limited")

    assert response.status_code == 200
    assert response.headers["X-RateLimit-Limit"] == "2"
    assert response.headers["X-RateLimit-Remaining"] == "1"
    assert "X-RateLimit-Reset" in response.headers


def test_rate_limit_exceeded(client):
    """Test that the request over the limit gets 429 with Retry-After"""
    for _ in range(2):
        assert client.get("/limited").status_code == 200

    response = client.get("/limited")

    assert response.status_code == 429
    assert response.json() == {"error": "Rate limit exceeded"}
    assert 1 <= int(response.headers["Retry-After"]) <= 60
    assert response.headers["X-RateLimit-Remaining"] == "0"


def test_routes_counted_separately(client):
    """Test that exhausting one route leaves other routes available"""
    for _ in range(3):
        client.get("/limited")

    assert client.get("/other").status_code == 200


def test_known_routes_have_limits():
    assert RouteRateLimit("threads_get").limit == 30
    assert RouteRateLimit("messages_check_new_post").limit == 90
