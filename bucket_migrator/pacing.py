"""Dispatch pacing and cooperative cancellation."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from .config import MigrationOptions

Clock = Callable[[], float]


class CancelToken:
    """Stop signal shared by the dispatcher and its workers.

    Cancelled either explicitly via :meth:`cancel` or once the optional
    deadline passes. Sleeps go through :meth:`wait` so they end early.
    """

    def __init__(self, deadline_seconds: float | None = None, clock: Clock = time.monotonic) -> None:
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + deadline_seconds if deadline_seconds is not None else None

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if cancelled meanwhile."""
        if self.is_cancelled():
            return True
        timeout = max(seconds, 0.0)
        if self._deadline is not None:
            timeout = min(timeout, max(self._deadline - self._clock(), 0.0))
        if timeout > 0 and self._event.wait(timeout):
            return True
        return self.is_cancelled()


class FixedDelayPacer:
    """Sleeps a fixed delay between successive dispatches, never before the first."""

    def __init__(self, delay_seconds: float) -> None:
        self._delay = delay_seconds
        self._started = False

    def acquire(self, cancel: CancelToken) -> bool:
        if not self._started:
            self._started = True
            return not cancel.is_cancelled()
        if self._delay <= 0:
            return not cancel.is_cancelled()
        return not cancel.wait(self._delay)


class RateLimiter:
    """Token bucket limiting dispatches to ``rate`` per second.

    Thread-safe, so one instance can gate any number of callers.
    """

    def __init__(self, rate: float, burst: int = 1, clock: Clock = time.monotonic) -> None:
        if rate <= 0:
            raise ValueError("rate must be > 0")
        self._rate = rate
        self._burst = max(burst, 1)
        self._tokens = float(self._burst)
        self._clock = clock
        self._updated = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(self._burst, self._tokens + (now - self._updated) * self._rate)
        self._updated = now

    def acquire(self, cancel: CancelToken) -> bool:
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return not cancel.is_cancelled()
                shortfall = (1 - self._tokens) / self._rate
            if cancel.wait(shortfall):
                return False


def build_pacer(options: MigrationOptions) -> FixedDelayPacer | RateLimiter:
    """Fixed delay for a single worker; a shared rate limit for a pool."""
    if options.max_concurrency == 1:
        return FixedDelayPacer(options.delay_seconds)
    rate = options.rate_limit_per_second
    if rate is None and options.delay_seconds > 0:
        rate = 1.0 / options.delay_seconds
    if rate is None:
        return FixedDelayPacer(0)
    return RateLimiter(rate)
