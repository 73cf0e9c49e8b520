"""Drive provider adapters for stale symbols under fixed concurrency limits.

Quote-type providers are tried in precedence order; each one only sees
the symbols that earlier providers left without a price or volume.
Fundamentals-type providers run last, only for priced symbols still
missing market cap or float.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, TypedDict, TypeVar

from screener.config import PipelineSettings
from screener.models import FUNDAMENTAL_FIELDS, PartialQuote
from screener.providers.base import FUNDAMENTALS, QUOTE, QuoteProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class FetchResult(TypedDict):
    """Per-provider partial quotes plus call accounting."""

    results: dict[str, dict[str, PartialQuote]]  # provider -> symbol -> partial
    calls: dict[str, int]                         # provider -> adapter calls issued
    skipped: list[str]                            # providers skipped (unavailable / breaker open)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def chunked(items: list[T], size: int) -> list[list[T]]:
    """Split *items* into consecutive chunks of at most *size*."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [items[i:i + size] for i in range(0, len(items), size)]


async def map_with_concurrency(
    items: list[T],
    concurrency: int,
    fn: Callable[[T], Awaitable[R]],
) -> list[R | None]:
    """Apply *fn* to *items* with at most *concurrency* calls in flight.

    Workers pull from one shared queue and write into a pre-sized list
    by input position, so the output order matches *items* no matter
    which call finishes first.  A failing call leaves ``None`` at its
    index instead of aborting the pool.
    """
    results: list[R | None] = [None] * len(items)
    work = iter(enumerate(items))

    async def worker() -> None:
        for idx, item in work:
            try:
                results[idx] = await fn(item)
            except Exception:
                logger.exception("Worker failed at index %d", idx)
                results[idx] = None

    await asyncio.gather(*(worker() for _ in range(max(1, concurrency))))
    return results


def _needs_quote(symbol: str, merged: dict[str, PartialQuote]) -> bool:
    partial = merged.get(symbol)
    return partial is None or partial.get("price") is None or partial.get("volume") is None


def _needs_fundamentals(symbol: str, merged: dict[str, PartialQuote]) -> bool:
    partial = merged.get(symbol)
    if partial is None or partial.get("price") is None:
        return False
    return any(partial.get(f) is None for f in FUNDAMENTAL_FIELDS)


def _overlay(merged: dict[str, PartialQuote], found: dict[str, PartialQuote]) -> None:
    """Fill still-unknown fields in *merged* (earlier providers win)."""
    for symbol, partial in found.items():
        current = merged.setdefault(symbol, PartialQuote(symbol=symbol))
        for key, value in partial.items():
            if value is not None and current.get(key) is None:
                current[key] = value


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class FetchOrchestrator:
    """Cascade stale symbols through an ordered list of provider strategies."""

    def __init__(
        self,
        providers: list[QuoteProvider],
        settings: PipelineSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.providers = providers
        self.settings = settings or PipelineSettings()
        self._sleep = sleep

    def _usable(self, provider: QuoteProvider) -> bool:
        if not provider.is_available():
            logger.debug("%s unavailable (not configured), skipping", provider.name)
            return False
        if not provider.state.allows_call():
            logger.warning("%s circuit breaker open, skipping", provider.name)
            return False
        return True

    async def _run_batches(
        self, provider: QuoteProvider, symbols: list[str],
    ) -> tuple[dict[str, PartialQuote], int]:
        found: dict[str, PartialQuote] = {}
        calls = 0
        batches = chunked(symbols, self.settings.batch_size)
        for n, batch in enumerate(batches, start=1):
            if n > 1:
                if not provider.state.allows_call():
                    logger.warning(
                        "%s breaker opened mid-run, dropping %d remaining batches",
                        provider.name, len(batches) - n + 1,
                    )
                    break
                if self.settings.batch_throttle_seconds > 0:
                    await self._sleep(self.settings.batch_throttle_seconds)
            logger.debug("%s batch %d/%d (%d symbols)", provider.name, n, len(batches), len(batch))
            found.update(await provider.fetch_batch(batch))
            calls += 1
        return found, calls

    async def _run_single(
        self, provider: QuoteProvider, symbols: list[str],
    ) -> tuple[dict[str, PartialQuote], int]:
        calls = 0

        async def fetch(symbol: str) -> PartialQuote | None:
            nonlocal calls
            # The first call was already admitted by _usable().
            if calls and not provider.state.allows_call():
                return None
            calls += 1
            return await provider.fetch_one(symbol)

        outcomes = await map_with_concurrency(
            symbols, self.settings.single_symbol_concurrency, fetch,
        )
        found = {sym: partial for sym, partial in zip(symbols, outcomes) if partial}
        return found, calls

    async def _run(
        self, provider: QuoteProvider, symbols: list[str],
    ) -> tuple[dict[str, PartialQuote], int]:
        if provider.batch_capable:
            return await self._run_batches(provider, symbols)
        return await self._run_single(provider, symbols)

    async def fetch(
        self,
        symbols: Iterable[str],
        skip_fundamentals: Iterable[str] = (),
    ) -> FetchResult:
        """Resolve *symbols* through every usable provider, cheapest first.

        *skip_fundamentals* names symbols whose cached market cap / float
        are still fresh; the fundamentals provider is not asked for them.
        """
        symbols = list(symbols)
        skip = set(skip_fundamentals)
        merged: dict[str, PartialQuote] = {}
        out = FetchResult(results={}, calls={}, skipped=[])

        for provider in self.providers:
            if provider.kind == QUOTE:
                pending = [s for s in symbols if _needs_quote(s, merged)]
            elif provider.kind == FUNDAMENTALS:
                pending = [
                    s for s in symbols
                    if s not in skip and _needs_fundamentals(s, merged)
                ]
            else:
                logger.warning("Unknown provider kind %r for %s", provider.kind, provider.name)
                continue

            if not pending:
                continue
            if not self._usable(provider):
                out["skipped"].append(provider.name)
                continue

            found, calls = await self._run(provider, pending)
            out["results"][provider.name] = found
            out["calls"][provider.name] = calls
            _overlay(merged, found)
            logger.info(
                "%s resolved %d/%d symbols in %d calls",
                provider.name, len(found), len(pending), calls,
            )

        return out
