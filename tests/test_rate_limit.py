"""Tests for the chat rate limiter."""

import pytest
from fastapi.testclient import TestClient

from poolside.api import rate_limit
from poolside.api.rate_limit import RateLimiter, chat_limiter
from poolside.main import app


@pytest.fixture
def clock(monkeypatch):
    """Controllable stand-in for ``time.monotonic``."""
    now = [1000.0]
    monkeypatch.setattr(rate_limit.time, "monotonic", lambda: now[0])
    return now


def test_limit_per_key(clock):
    limiter = RateLimiter(max_requests=2, window_seconds=60)
    assert [limiter.is_allowed("10.0.0.1") for _ in range(3)] == [True, True, False]
    assert limiter.is_allowed("10.0.0.2") is True


def test_window_slides(clock):
    limiter = RateLimiter(max_requests=2, window_seconds=60)
    limiter.is_allowed("ip")
    clock[0] += 30
    limiter.is_allowed("ip")
    assert limiter.is_allowed("ip") is False

    # the first hit leaves the window, the second is still inside it
    clock[0] += 31
    assert limiter.is_allowed("ip") is True
    assert limiter.is_allowed("ip") is False


def test_rejected_requests_are_not_counted(clock):
    limiter = RateLimiter(max_requests=1, window_seconds=10)
    limiter.is_allowed("ip")
    for _ in range(5):
        limiter.is_allowed("ip")
    clock[0] += 10.5
    assert limiter.is_allowed("ip") is True


def test_remaining(clock):
    limiter = RateLimiter(max_requests=3, window_seconds=60)
    assert limiter.remaining("ip") == 3
    limiter.is_allowed("ip")
    assert limiter.remaining("ip") == 2
    clock[0] += 61
    assert limiter.remaining("ip") == 3


def test_idle_keys_are_swept(clock, monkeypatch):
    monkeypatch.setattr(RateLimiter, "_SWEEP_EVERY", 3)
    limiter = RateLimiter(max_requests=5, window_seconds=1)
    limiter.is_allowed("old")
    clock[0] += 5
    limiter.is_allowed("new")
    limiter.is_allowed("new")
    assert "old" not in limiter._hits


def test_reset(clock):
    limiter = RateLimiter(max_requests=1, window_seconds=60)
    limiter.is_allowed("ip")
    limiter.reset()
    assert limiter.is_allowed("ip") is True


def test_chat_endpoint_returns_429_when_limited(monkeypatch):
    """The chat router rejects a client over the limit before calling the model."""
    monkeypatch.setattr(chat_limiter, "_max", 0)
    response = TestClient(app).post("/api/chat/analyze", json={"files": ["a.py"]})
    assert response.status_code == 429
    assert response.json()["error"] == "Rate limit exceeded"
