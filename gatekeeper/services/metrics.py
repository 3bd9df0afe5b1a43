"""Thread-safe in-memory request and admission counters."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from gatekeeper.services.rate_limiter import RejectKind


@dataclass
class MetricsCollector:
    """Counters and latency samples for the ``/metrics`` endpoint.

    The latency list is bounded at ``_MAX_LATENCY_SAMPLES``; when exceeded
    only the most recent half is kept.
    """

    _MAX_LATENCY_SAMPLES: int = field(default=10_000, repr=False)

    total_requests: int = field(default=0, init=False)
    status_codes: dict[int, int] = field(default_factory=dict, init=False)
    admitted: int = field(default=0, init=False)
    rejected_short: int = field(default=0, init=False)
    rejected_long: int = field(default=0, init=False)
    invalid_client_keys: int = field(default=0, init=False)

    _latencies: list[float] = field(default_factory=list, init=False, repr=False)

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _start_time: float = field(default_factory=time.monotonic, init=False, repr=False)

    # -- Counters ----------------------------------------------------------

    def inc_request(self, status_code: int) -> None:
        with self._lock:
            self.total_requests += 1
            self.status_codes[status_code] = self.status_codes.get(status_code, 0) + 1

    def inc_admitted(self) -> None:
        with self._lock:
            self.admitted += 1

    def inc_rejected(self, kind: RejectKind) -> None:
        with self._lock:
            if kind is RejectKind.SHORT_WINDOW_EXCEEDED:
                self.rejected_short += 1
            else:
                self.rejected_long += 1

    def inc_invalid_client_key(self) -> None:
        with self._lock:
            self.invalid_client_keys += 1

    # -- Latency -----------------------------------------------------------

    def record_latency(self, ms: float) -> None:
        with self._lock:
            self._latencies.append(ms)
            if len(self._latencies) > self._MAX_LATENCY_SAMPLES:
                half = self._MAX_LATENCY_SAMPLES // 2
                self._latencies = self._latencies[-half:]

    def get_latency_percentiles(self) -> dict[str, float]:
        with self._lock:
            return self._percentiles_unlocked()

    def _percentiles_unlocked(self) -> dict[str, float]:
        """Compute p50/p95/p99. Caller must hold ``_lock``."""
        if not self._latencies:
            return {"p50": 0.0, "p95": 0.0, "p99": 0.0}
        s = sorted(self._latencies)
        n = len(s)
        return {
            "p50": round(s[int(n * 0.50)], 2),
            "p95": round(s[int(min(n * 0.95, n - 1))], 2),
            "p99": round(s[int(min(n * 0.99, n - 1))], 2),
        }

    # -- Snapshot / reset --------------------------------------------------

    def uptime_seconds(self) -> float:
        return round(time.monotonic() - self._start_time, 2)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "uptime_seconds": round(time.monotonic() - self._start_time, 2),
                "total_requests": self.total_requests,
                "status_codes": dict(self.status_codes),
                "admission": {
                    "admitted": self.admitted,
                    "rejected_short_window": self.rejected_short,
                    "rejected_long_window": self.rejected_long,
                    "invalid_client_keys": self.invalid_client_keys,
                },
                "latency_ms": self._percentiles_unlocked(),
            }

    def reset(self) -> None:
        with self._lock:
            self.total_requests = 0
            self.status_codes.clear()
            self.admitted = 0
            self.rejected_short = 0
            self.rejected_long = 0
            self.invalid_client_keys = 0
            self._latencies.clear()
            self._start_time = time.monotonic()


metrics = MetricsCollector()
