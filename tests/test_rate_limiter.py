"""Tests for the dual-window admission decision."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from gatekeeper.config import Settings
from gatekeeper.services.rate_limiter import (
    Decision,
    DualWindowRateLimiter,
    InvalidClientKeyError,
    RejectKind,
    build_rate_limiter,
    now_ms,
)
from gatekeeper.services.window_store import LimiterConfig, Window, WindowCounterStore

T0 = 1_700_000_000_000
IP = "1.2.3.4"


def _limiter(**kwargs) -> DualWindowRateLimiter:
    return DualWindowRateLimiter(LimiterConfig(**kwargs))


# ---------------------------------------------------------------------------
# Concrete scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    def test_burst_over_short_window_rejected(self):
        rl = _limiter()
        for i in range(10):
            assert rl.check(IP, T0 + i * 100).admitted is True

        decision = rl.check(IP, T0 + 1_000)
        assert decision.admitted is False
        assert decision.reject_kind is RejectKind.SHORT_WINDOW_EXCEEDED
        assert decision.limit == 10
        assert decision.remaining == 0
        assert decision.reset == (T0 + 10_000) // 1000
        assert decision.message == "You reached the 10 request limit in 10 seconds"

    def test_short_window_rollover_keeps_long_count(self):
        rl = _limiter()
        for i in range(10):
            rl.check(IP, T0 + i * 100)

        decision = rl.check(IP, T0 + 900 + 11_000)
        assert decision.admitted is True
        assert decision.remaining == 60 - 11
        assert rl.peek(IP, T0 + 11_900) == (1, 11)

    def test_sustained_traffic_hits_long_window(self):
        # Burst cap above 10 per 10 s so only the long window can saturate
        rl = _limiter(short_window_max=20)
        for i in range(60):
            assert rl.check(IP, T0 + i * 1_000).admitted is True

        decision = rl.check(IP, T0 + 59_500)
        assert decision.admitted is False
        assert decision.reject_kind is RejectKind.LONG_WINDOW_EXCEEDED
        assert decision.limit == 60
        assert decision.remaining == 0
        assert decision.reset == (T0 + 60_000) // 1000
        assert decision.message == "You reached the 60 request limit in 1 minute(s)"

    def test_default_limits_report_burst_before_sustained(self):
        rl = _limiter()
        for i in range(60):
            rl.check(IP, T0 + i * 1_000)

        decision = rl.check(IP, T0 + 59_500)
        assert decision.reject_kind is RejectKind.SHORT_WINDOW_EXCEEDED


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


class TestProperties:
    def test_rejection_does_not_change_counts(self):
        rl = _limiter(short_window_max=3)
        for _ in range(3):
            rl.check(IP, T0)
        before = rl.peek(IP, T0 + 10)
        for _ in range(5):
            assert rl.check(IP, T0 + 10).admitted is False
        assert rl.peek(IP, T0 + 10) == before == (3, 3)

    def test_long_window_reset_after_idle(self):
        rl = _limiter(short_window_max=60)
        for _ in range(60):
            rl.check(IP, T0)
        assert rl.check(IP, T0 + 1).admitted is False

        later = T0 + 60_001
        assert rl.peek(IP, later) == (0, 0)
        decision = rl.check(IP, later)
        assert decision.admitted is True
        assert decision.remaining == 59
        assert rl.store.snapshot(IP).long.window_start == later

    def test_remaining_counts_down_and_never_negative(self):
        rl = _limiter(short_window_max=5, long_window_max=5)
        remaining = [rl.check(IP, T0).remaining for _ in range(7)]
        assert remaining == [4, 3, 2, 1, 0, 0, 0]

    def test_admitted_headers(self):
        rl = _limiter()
        decision = rl.check(IP, T0 + 250)
        assert decision.headers == {
            "X-RateLimit-Limit": "60",
            "X-RateLimit-Remaining": "59",
            "X-RateLimit-Reset": str((T0 + 250 + 60_000 + 999) // 1000),
        }

    def test_quota_never_exceeded_per_window(self):
        rl = _limiter(short_window_max=4, long_window_max=10)
        admitted: dict[int, int] = {}
        for i in range(600):
            now = T0 + i * 450
            if rl.check(IP, now).admitted:
                start = rl.store.snapshot(IP).long.window_start
                admitted[start] = admitted.get(start, 0) + 1
        assert admitted
        assert all(count <= 10 for count in admitted.values())

    def test_clients_limited_independently(self):
        rl = _limiter(short_window_max=1)
        assert rl.check("a", T0).admitted is True
        assert rl.check("a", T0).admitted is False
        assert rl.check("b", T0).admitted is True

    def test_uses_clock_when_now_omitted(self):
        rl = DualWindowRateLimiter(LimiterConfig(), clock=lambda: T0)
        decision = rl.check(IP)
        assert decision.reset == (T0 + 60_000) // 1000

    def test_clear_resets_state(self):
        rl = _limiter(short_window_max=1)
        rl.check(IP, T0)
        rl.clear()
        assert rl.check(IP, T0).admitted is True


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


def test_concurrent_requests_never_overshoot():
    rl = _limiter(short_window_max=10, long_window_max=60)
    barrier = threading.Barrier(50)

    def hit(_):
        barrier.wait()
        return rl.check(IP, T0).admitted

    with ThreadPoolExecutor(max_workers=50) as pool:
        results = list(pool.map(hit, range(50)))

    assert results.count(True) == 10
    assert rl.peek(IP, T0) == (10, 10)


# ---------------------------------------------------------------------------
# Invalid keys and construction
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("key", [None, "", "   ", 42])
def test_invalid_client_key_raises(key):
    rl = _limiter()
    with pytest.raises(InvalidClientKeyError):
        rl.check(key, T0)
    assert rl.store.active_keys == 0


def test_invalid_client_key_is_value_error():
    assert issubclass(InvalidClientKeyError, ValueError)


def test_build_from_settings():
    s = Settings(_env_file=None, short_window_max=3, long_window_ms=120_000)
    rl = build_rate_limiter(s)
    assert rl.config.short_window_max == 3
    assert rl.config.long_window_ms == 120_000


def test_separate_limiters_do_not_share_state():
    a, b = _limiter(short_window_max=1), _limiter(short_window_max=1)
    a.check(IP, T0)
    assert b.check(IP, T0).admitted is True


def test_now_ms_uses_wall_clock():
    with patch("gatekeeper.services.rate_limiter.time.time_ns", return_value=1_500_000_000):
        assert now_ms() == 1_500


def test_rejected_decision_headers():
    d = Decision(
        admitted=False,
        limit=10,
        remaining=0,
        reset=123,
        reject_kind=RejectKind.SHORT_WINDOW_EXCEEDED,
        message="slow down",
    )
    assert d.headers["X-RateLimit-Remaining"] == "0"
    assert d.headers["X-RateLimit-Reset"] == "123"


def test_store_with_mismatched_windows_rejected():
    cfg = LimiterConfig(short_window_ms=1_000, short_window_max=1, long_window_ms=5_000)
    with pytest.raises(ValueError, match="short window"):
        DualWindowRateLimiter(cfg, store=WindowCounterStore())


def test_store_with_matching_windows_shared():
    cfg = LimiterConfig(short_window_ms=1_000, short_window_max=1, long_window_ms=5_000)
    store = WindowCounterStore.from_config(cfg)
    rl = DualWindowRateLimiter(cfg, store=store)
    assert rl.store is store
    assert rl.check(IP, T0).admitted is True
    decision = rl.check(IP, T0 + 2_000)
    assert decision.admitted is True
    assert store.duration(Window.SHORT) == 1_000
