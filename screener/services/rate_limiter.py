"""Sliding-window call budgeter for providers with strict per-minute quotas."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

from screener.config import (
    RATE_LIMIT_DEFAULT_RETRY_AFTER,
    RATE_LIMIT_MAX_BACKOFF_SECONDS,
    RATE_LIMIT_MAX_RETRIES,
    RATE_LIMIT_WINDOW_SECONDS,
)
from screener.errors import ProviderRateLimited
from screener.services.provider_state import ProviderState

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SlidingWindowRateLimiter:
    """Keep at most *calls_per_window* calls inside any *window* seconds.

    Timestamps live on the provider's ``ProviderState`` so that every
    request in the process draws from the same budget.  A provider-side
    429 is retried at most *max_retries* times with exponential backoff
    seeded from the server's Retry-After; after that the
    ``ProviderRateLimited`` error propagates to the adapter, which counts
    it as a failure for this call.
    """

    def __init__(
        self,
        state: ProviderState,
        calls_per_window: int,
        window: float = RATE_LIMIT_WINDOW_SECONDS,
        max_retries: int = RATE_LIMIT_MAX_RETRIES,
        default_retry_after: float = RATE_LIMIT_DEFAULT_RETRY_AFTER,
        max_backoff: float = RATE_LIMIT_MAX_BACKOFF_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if calls_per_window < 1:
            raise ValueError("calls_per_window must be >= 1")
        self.state = state
        self.calls_per_window = calls_per_window
        self.window = window
        self.max_retries = max_retries
        self.default_retry_after = default_retry_after
        self.max_backoff = max_backoff
        self._clock = clock
        self._sleep = sleep

    def _prune(self, now: float) -> None:
        stamps = self.state.call_timestamps
        while stamps and now - stamps[0] >= self.window:
            stamps.popleft()

    async def acquire(self) -> None:
        """Wait until a call slot is free, then claim it."""
        while True:
            now = self._clock()
            self._prune(now)
            stamps = self.state.call_timestamps
            if len(stamps) < self.calls_per_window:
                stamps.append(now)
                return
            wait = self.window - (now - stamps[0])
            logger.info("[%s] rate limit reached, waiting %.1fs", self.state.name, wait)
            await self._sleep(max(wait, 0.0))

    def backoff_delay(self, retry_after: float | None, attempt: int) -> float:
        base = retry_after if retry_after is not None else self.default_retry_after
        return min(base * (2 ** attempt), self.max_backoff)

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """Run *func* inside the budget, retrying a bounded number of 429s."""
        attempt = 0
        while True:
            await self.acquire()
            try:
                return await func()
            except ProviderRateLimited as exc:
                if attempt >= self.max_retries:
                    logger.warning(
                        "[%s] still throttled after %d retries, giving up",
                        self.state.name, attempt,
                    )
                    raise
                delay = self.backoff_delay(exc.retry_after, attempt)
                attempt += 1
                logger.info(
                    "[%s] got 429, retry %d/%d in %.1fs",
                    self.state.name, attempt, self.max_retries, delay,
                )
                await self._sleep(delay)
