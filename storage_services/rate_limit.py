"""
storage_services.rate_limit -- Fixed-window request limiter.

Responsibility:
    Throttle repeated service calls per ``action:identifier`` key. Each
    limiter instance owns its counters; nothing lives at module level, so
    separate services (and separate tests) never share state.

Architecture position:
    Services -- orchestration support. Reads time only through the
    injected ``Clock``.

Failure modes:
    - RateLimitExceededError when a key has used up its window.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from storage_kernel.domain.clock import Clock, SystemClock
from storage_kernel.exceptions import RateLimitExceededError
from storage_kernel.logging_config import get_logger

logger = get_logger("services.rate_limit")


@dataclass
class _Window:
    started_at: float
    count: int


class RateLimiter:
    """
    Allow at most ``limit`` calls per key within ``window_seconds``.

    The window for a key starts at its first call and resets once
    ``window_seconds`` have elapsed.
    """

    def __init__(self, limit: int, window_seconds: float = 60, clock: Clock | None = None):
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")
        self._limit = limit
        self._window_seconds = window_seconds
        self._clock = clock or SystemClock()
        self._windows: dict[str, _Window] = {}

    @property
    def limit(self) -> int:
        return self._limit

    @staticmethod
    def key(action: str, identifier: str | None) -> str:
        return f"{action}:{identifier or 'anon'}"

    def check(self, action: str, identifier: str | None = None) -> None:
        """Count one call for ``action`` by ``identifier``; raise if over the limit."""
        key = self.key(action, identifier)
        now = self._clock.monotonic()
        window = self._windows.get(key)

        if window is None or now - window.started_at >= self._window_seconds:
            self._windows[key] = _Window(started_at=now, count=1)
            return

        if window.count >= self._limit:
            retry_after = self._window_seconds - (now - window.started_at)
            logger.warning("rate_limit_exceeded", extra={
                "key": key,
                "limit": self._limit,
                "retry_after_seconds": round(retry_after, 2),
            })
            raise RateLimitExceededError(key, self._limit, retry_after)

        window.count += 1

    def reset(self, action: str | None = None, identifier: str | None = None) -> None:
        """Forget counters: all of them, or one key."""
        if action is None:
            self._windows.clear()
        else:
            self._windows.pop(self.key(action, identifier), None)


def build_rate_limiters(
    rules: Mapping[str, tuple[int, float]],
    clock: Clock | None = None,
) -> dict[str, RateLimiter]:
    """One limiter per action from ``{action: (limit, window_seconds)}``."""
    return {
        action: RateLimiter(limit, window, clock)
        for action, (limit, window) in rules.items()
    }
