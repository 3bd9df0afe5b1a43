"""In-memory per-client window counters for the dual-window rate limiter."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import Enum


class Window(str, Enum):
    SHORT = "short"
    LONG = "long"


def _plain(value: float) -> int | float:
    """Render ``10.0`` as ``10`` and ``2.5`` as ``2.5`` in messages."""
    return int(value) if float(value).is_integer() else round(value, 2)


@dataclass(frozen=True)
class LimiterConfig:
    """Immutable limiter configuration.

    Durations are milliseconds. Message templates are ``str.format``
    strings and may reference ``{max}``, ``{seconds}``, ``{minutes}`` and
    ``{interval_ms}`` for their own window.
    """

    short_window_ms: int = 10_000
    short_window_max: int = 10
    long_window_ms: int = 60_000
    long_window_max: int = 60
    short_window_message: str = (
        "You reached the {max} request limit in {seconds} seconds"
    )
    long_window_message: str = (
        "You reached the {max} request limit in {minutes} minute(s)"
    )

    def __post_init__(self) -> None:
        for name in (
            "short_window_ms",
            "short_window_max",
            "long_window_ms",
            "long_window_max",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.long_window_ms < self.short_window_ms:
            raise ValueError("long_window_ms must not be shorter than short_window_ms")
        for window in Window:
            try:
                self.render_message(window)
            except (KeyError, IndexError, AttributeError, TypeError, ValueError) as exc:
                raise ValueError(
                    f"Invalid {window.value} window message template: {exc!r}"
                ) from exc

    def duration(self, window: Window) -> int:
        return self.short_window_ms if window is Window.SHORT else self.long_window_ms

    def maximum(self, window: Window) -> int:
        return self.short_window_max if window is Window.SHORT else self.long_window_max

    def render_message(self, window: Window) -> str:
        template = (
            self.short_window_message
            if window is Window.SHORT
            else self.long_window_message
        )
        interval = self.duration(window)
        return template.format(
            max=self.maximum(window),
            seconds=_plain(interval / 1000),
            minutes=_plain(interval / 60_000),
            interval_ms=interval,
        )


@dataclass
class WindowBucket:
    """Request count for one window, keyed by the window's start (ms)."""

    window_start: int
    count: int = 1

    def is_live(self, now: int, duration: int) -> bool:
        return self.window_start > now - duration

    def ends_at(self, duration: int) -> int:
        return self.window_start + duration


@dataclass
class ClientState:
    short: WindowBucket | None = None
    long: WindowBucket | None = None

    def bucket(self, window: Window) -> WindowBucket | None:
        return self.short if window is Window.SHORT else self.long

    def set_bucket(self, window: Window, bucket: WindowBucket) -> None:
        if window is Window.SHORT:
            self.short = bucket
        else:
            self.long = bucket


class WindowCounterStore:
    """Thread-safe mapping of client key to its two window buckets.

    Every public method takes the store lock itself. The lock is
    re-entrant, so a caller that needs several operations to run as one
    unit can hold :meth:`locked` around them.

    Expiry is lazy: a client's state is only replaced when the client is
    next observed and its long-window bucket is no longer live.
    """

    def __init__(self, short_window_ms: int = 10_000, long_window_ms: int = 60_000):
        self._durations = {Window.SHORT: short_window_ms, Window.LONG: long_window_ms}
        self._states: dict[str, ClientState] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config: LimiterConfig) -> WindowCounterStore:
        return cls(config.short_window_ms, config.long_window_ms)

    def duration(self, window: Window) -> int:
        return self._durations[window]

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self._lock:
            yield

    @property
    def active_keys(self) -> int:
        with self._lock:
            return len(self._states)

    def get_or_insert(self, key: str, default: ClientState | None = None) -> ClientState:
        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = default if default is not None else ClientState()
                self._states[key] = state
            return state

    def ensure_reset(self, key: str, now: int) -> bool:
        """Give *key* fresh state if it has none or its long window elapsed.

        Returns ``True`` when existing state was discarded.
        """
        with self._lock:
            state = self._states.get(key)
            if state is None:
                self._states[key] = ClientState()
                return False
            if state.long is None or not state.long.is_live(now, self._durations[Window.LONG]):
                self._states[key] = ClientState()
                return state.long is not None
            return False

    def live_bucket(self, key: str, window: Window, now: int) -> WindowBucket | None:
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return None
            bucket = state.bucket(window)
            if bucket is not None and bucket.is_live(now, self._durations[window]):
                return bucket
            return None

    def current_counts(self, key: str, now: int) -> tuple[int, int]:
        with self._lock:
            short = self.live_bucket(key, Window.SHORT, now)
            long = self.live_bucket(key, Window.LONG, now)
            return (short.count if short else 0, long.count if long else 0)

    def increment(self, key: str, now: int) -> int:
        """Count one request in both windows; return the long-window count."""
        with self._lock:
            state = self.get_or_insert(key)
            for window in Window:
                bucket = self.live_bucket(key, window, now)
                if bucket is None:
                    # Stale buckets are replaced, never merged
                    state.set_bucket(window, WindowBucket(window_start=now))
                else:
                    bucket.count += 1
            return state.long.count

    def snapshot(self, key: str) -> ClientState | None:
        """Return a detached copy of *key*'s state, or ``None``."""
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return None
            return ClientState(
                short=replace(state.short) if state.short else None,
                long=replace(state.long) if state.long else None,
            )

    def purge_expired(self, now: int) -> int:
        """Drop clients whose long window has elapsed; return how many."""
        duration = self._durations[Window.LONG]
        with self._lock:
            stale = [
                key
                for key, state in self._states.items()
                if state.long is None or not state.long.is_live(now, duration)
            ]
            for key in stale:
                del self._states[key]
            return len(stale)

    def clear(self) -> None:
        """Remove all tracked state (useful in tests)."""
        with self._lock:
            self._states.clear()
