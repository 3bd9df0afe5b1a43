"""Dual-window (burst + sustained) per-client rate limiter."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from gatekeeper.services.window_store import (
    LimiterConfig,
    Window,
    WindowCounterStore,
)

logger = logging.getLogger("gatekeeper.ratelimit")


class RejectKind(str, Enum):
    SHORT_WINDOW_EXCEEDED = "SHORT_WINDOW_EXCEEDED"
    LONG_WINDOW_EXCEEDED = "LONG_WINDOW_EXCEEDED"


_REJECT_KINDS = {
    Window.SHORT: RejectKind.SHORT_WINDOW_EXCEEDED,
    Window.LONG: RejectKind.LONG_WINDOW_EXCEEDED,
}


class InvalidClientKeyError(ValueError):
    """Raised when a request cannot be attributed to a client.

    This is an integration error in the calling layer, not a rate-limit
    outcome. Malformed keys are never counted under a shared bucket.
    """


@dataclass(frozen=True)
class Decision:
    """Outcome of one admission check.

    ``reset`` is the epoch second at which the reported window ends.
    """

    admitted: bool
    limit: int
    remaining: int
    reset: int
    reject_kind: RejectKind | None = None
    message: str | None = None

    @property
    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }


def now_ms() -> int:
    """Wall-clock milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


def validate_client_key(key: object) -> str:
    if not isinstance(key, str) or not key.strip():
        raise InvalidClientKeyError(f"Invalid client key: {key!r}")
    return key


def _reset_seconds(end_ms: int) -> int:
    return math.ceil(end_ms / 1000)


class DualWindowRateLimiter:
    """Admit or reject requests per client against two rolling windows.

    The short window bounds bursts, the long window bounds sustained
    traffic. Limits are checked *before* counting, so a rejected request
    is never charged against either window. The whole
    reset/check/increment sequence runs under the store lock.
    """

    def __init__(
        self,
        config: LimiterConfig | None = None,
        store: WindowCounterStore | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._config = config or LimiterConfig()
        self._store = store or WindowCounterStore.from_config(self._config)
        for window in Window:
            if self._store.duration(window) != self._config.duration(window):
                raise ValueError(
                    f"Store {window.value} window is {self._store.duration(window)} ms "
                    f"but config says {self._config.duration(window)} ms"
                )
        self._clock = clock

    @property
    def config(self) -> LimiterConfig:
        return self._config

    @property
    def store(self) -> WindowCounterStore:
        return self._store

    def check(self, key: str, now: int | None = None) -> Decision:
        """Decide whether *key* may proceed at *now* (ms since epoch).

        Raises :class:`InvalidClientKeyError` for a missing or blank key.
        Rejection is reported through the returned :class:`Decision`.
        """
        key = validate_client_key(key)
        if now is None:
            now = self._clock()
        cfg = self._config

        with self._store.locked():
            if self._store.ensure_reset(key, now):
                logger.debug("Long window elapsed for %s; counters reset", key)

            short_count, long_count = self._store.current_counts(key, now)
            if short_count >= cfg.short_window_max:
                return self._reject(key, Window.SHORT, now)
            if long_count >= cfg.long_window_max:
                return self._reject(key, Window.LONG, now)

            long_after = self._store.increment(key, now)
            long_bucket = self._store.live_bucket(key, Window.LONG, now)

        return Decision(
            admitted=True,
            limit=cfg.long_window_max,
            remaining=max(cfg.long_window_max - long_after, 0),
            reset=_reset_seconds(long_bucket.ends_at(cfg.long_window_ms)),
        )

    def _reject(self, key: str, window: Window, now: int) -> Decision:
        # Caller holds the store lock and has seen a saturated live bucket
        bucket = self._store.live_bucket(key, window, now)
        kind = _REJECT_KINDS[window]
        logger.info(
            "Rejected %s: %s (%d/%d)",
            key,
            kind.value,
            bucket.count,
            self._config.maximum(window),
        )
        return Decision(
            admitted=False,
            limit=self._config.maximum(window),
            remaining=0,
            reset=_reset_seconds(bucket.ends_at(self._config.duration(window))),
            reject_kind=kind,
            message=self._config.render_message(window),
        )

    def peek(self, key: str, now: int | None = None) -> tuple[int, int]:
        """Return ``(short_count, long_count)`` for *key* without charging it."""
        key = validate_client_key(key)
        return self._store.current_counts(key, self._clock() if now is None else now)

    def clear(self) -> None:
        self._store.clear()


def build_rate_limiter(settings) -> DualWindowRateLimiter:
    """Build a limiter with its own store from application settings."""
    return DualWindowRateLimiter(settings.limiter_config())
