"""Per-client fixed-window rate limiter for the price endpoints."""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from nexo.config import RateLimitSettings
from nexo.models import RateLimitResult


@dataclass
class _WindowState:
    count: int
    window_reset_at: float


class FixedWindowRateLimiter:
    """Counts requests per client in fixed windows.

    Every call counts, including denied ones. A client's counter resets
    once ``now >= window_reset_at`` and a fresh window starts at that
    moment. Bursts of up to twice the limit across a window boundary are
    accepted. State is process-wide and never evicted.

    Args:
        settings: Window length and request budget.
        clock: Monotonic clock in seconds (injectable for tests).
    """

    def __init__(
        self,
        settings: RateLimitSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or RateLimitSettings()
        self._window = settings.window_seconds
        self._limit = settings.max_requests
        self._clock = clock
        self._states: dict[str, _WindowState] = {}
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    def check(self, client_id: str) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            state = self._states.get(client_id)
            if state is None or now >= state.window_reset_at:
                state = _WindowState(count=0, window_reset_at=now + self._window)
                self._states[client_id] = state

            state.count += 1
            return RateLimitResult(
                allowed=state.count <= self._limit,
                limit=self._limit,
                remaining=max(0, self._limit - state.count),
                reset_in_ms=max(0, int((state.window_reset_at - now) * 1000)),
            )
