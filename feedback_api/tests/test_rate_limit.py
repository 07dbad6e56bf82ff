"""Tests for the per-identity rate limiter and client identity derivation."""

import threading

from feedback_api.services.rate_limit import (
    UNKNOWN_IDENTITY,
    RateLimiter,
    client_identity,
    get_rate_limiter,
)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_allows_up_to_limit_then_blocks():
    limiter = RateLimiter(limit=10, window=60, clock=FakeClock())
    ip = "10.0.0.1"
    for _ in range(10):
        assert limiter.admit(ip) is True
    # 11th call within the window is blocked
    assert limiter.admit(ip) is False
    assert limiter.admit(ip) is False


def test_rejection_does_not_extend_window():
    clock = FakeClock()
    limiter = RateLimiter(limit=2, window=60, clock=clock)
    limiter.admit("a")
    limiter.admit("a")

    clock.advance(59)
    assert limiter.admit("a") is False

    clock.advance(2)  # 61s after the first request
    assert limiter.admit("a") is True


def test_window_boundary_is_inclusive():
    clock = FakeClock()
    limiter = RateLimiter(limit=1, window=60, clock=clock)
    assert limiter.admit("a") is True

    clock.advance(60)  # exactly at reset_at: still the same window
    assert limiter.admit("a") is False

    clock.advance(0.001)
    assert limiter.admit("a") is True


def test_reset_starts_fresh_count():
    clock = FakeClock()
    limiter = RateLimiter(limit=3, window=10, clock=clock)
    for _ in range(3):
        limiter.admit("a")
    clock.advance(11)

    for _ in range(3):
        assert limiter.admit("a") is True
    assert limiter.admit("a") is False


def test_identities_are_independent():
    limiter = RateLimiter(limit=1, window=60, clock=FakeClock())
    assert limiter.admit("a") is True
    assert limiter.admit("a") is False
    assert limiter.admit("b") is True


def test_least_recently_seen_identity_is_evicted():
    limiter = RateLimiter(limit=1, window=60, max_identities=2, clock=FakeClock())
    limiter.admit("a")
    limiter.admit("b")
    limiter.admit("a")  # refresh a — now b is oldest
    limiter.admit("c")  # evicts b

    assert len(limiter) == 2
    assert limiter.admit("a") is False  # still tracked
    assert limiter.admit("b") is True  # forgotten, fresh window


def test_reset_clears_all_entries():
    limiter = RateLimiter(limit=1, window=60, clock=FakeClock())
    limiter.admit("a")
    limiter.reset()
    assert len(limiter) == 0
    assert limiter.admit("a") is True


def test_concurrent_admits_never_exceed_limit():
    limiter = RateLimiter(limit=25, window=60)
    admitted: list[bool] = []
    lock = threading.Lock()
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        for _ in range(20):
            result = limiter.admit("shared")
            with lock:
                admitted.append(result)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(admitted) == 160
    assert sum(admitted) == 25


def test_singleton_uses_settings(mock_settings):
    mock_settings.rate_limit_max = 3
    mock_settings.rate_limit_window_seconds = 5
    limiter = get_rate_limiter()
    assert limiter.limit == 3
    assert limiter.window == 5
    assert get_rate_limiter() is limiter


class TestClientIdentity:
    def test_uses_first_forwarded_hop(self):
        headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.1", "x-real-ip": "10.0.0.9"}
        assert client_identity(headers, peer="127.0.0.1") == "203.0.113.7"

    def test_falls_back_to_real_ip(self):
        assert client_identity({"x-real-ip": "198.51.100.2"}) == "198.51.100.2"

    def test_blank_forwarded_header_is_ignored(self):
        headers = {"x-forwarded-for": " ", "x-real-ip": "198.51.100.2"}
        assert client_identity(headers) == "198.51.100.2"

    def test_falls_back_to_peer(self):
        assert client_identity({}, peer="192.0.2.1") == "192.0.2.1"

    def test_no_address_shares_unknown_bucket(self):
        assert client_identity({}) == UNKNOWN_IDENTITY
        assert client_identity({}, peer=None) == "unknown"
