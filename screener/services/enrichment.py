"""Quote enrichment pipeline: cache first, provider cascade, merge, persist.

``EnrichmentPipeline.enrich`` resolves a symbol list; ``screen`` adds
candidate discovery, filtering, ranking and pagination on top.  Both
always return ``stats`` so partial provider failure is visible without
failing the request.
"""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timezone
from typing import Iterable, TypedDict

from screener.config import (
    DEFAULT_LIMIT,
    DEFAULT_ORDER_BY,
    MAX_SYMBOLS_TO_CHECK,
    PipelineSettings,
)
from screener.models import Comparison, FilterSpec, Quote, is_screenable
from screener.providers import QuoteProvider, build_providers
from screener.services import discovery, quote_cache, screening
from screener.services.merge import merge_quotes
from screener.services.orchestrator import FetchOrchestrator
from screener.services.provider_state import ProviderRegistry

logger = logging.getLogger(__name__)


class EnrichmentStats(TypedDict):
    candidates: int
    cached: int
    fetched: int
    enriched: int
    unresolved: int
    cache_hit_rate: float
    duration_ms: int
    provider_calls: dict[str, int]
    provider_failures: dict[str, int]
    skipped_providers: list[str]


class EnrichmentResult(TypedDict):
    quotes: list[Quote]
    source: str  # "cache", "live" or "hybrid"
    stats: EnrichmentStats


class ScreenResult(TypedDict):
    stocks: list[Quote]
    count: int
    total_matched: int
    total_checked: int
    source: str
    stats: EnrichmentStats


def _source(cached: int, fetched: int) -> str:
    if fetched == 0:
        return "cache"
    if cached == 0:
        return "live"
    return "hybrid"


class EnrichmentPipeline:
    """One parameterized pipeline over an ordered list of providers.

    The pipeline owns nothing process-global: the provider registry and
    adapters are passed in, so tests can drive each provider's
    degradation independently.
    """

    def __init__(
        self,
        providers: list[QuoteProvider],
        registry: ProviderRegistry,
        settings: PipelineSettings | None = None,
        orchestrator: FetchOrchestrator | None = None,
    ) -> None:
        self.providers = providers
        self.registry = registry
        self.settings = settings or PipelineSettings()
        self.orchestrator = orchestrator or FetchOrchestrator(providers, self.settings)
        self._windows = {
            quote_cache.REALTIME: self.settings.realtime_freshness_seconds,
            quote_cache.FUNDAMENTALS: self.settings.fundamentals_freshness_seconds,
        }

    @property
    def precedence(self) -> list[tuple[str, str]]:
        return [(p.name, p.kind) for p in self.providers]

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()

    async def _partition(
        self, symbols: list[str], now: datetime,
    ) -> tuple[dict[str, Quote], dict[str, Quote]]:
        """Split cached rows into realtime-fresh and fundamentals-only-fresh."""
        fresh = await quote_cache.lookup_all(symbols, now, self._windows)
        realtime = fresh[quote_cache.REALTIME]
        fundamentals = {
            symbol: entry
            for symbol, entry in fresh[quote_cache.FUNDAMENTALS].items()
            if symbol not in realtime
        }
        return realtime, fundamentals

    async def enrich(
        self,
        symbols: Iterable[str],
        *,
        force_refresh: bool = False,
    ) -> EnrichmentResult:
        """Resolve *symbols* to quotes, in input order.

        Symbols fresh in the cache are served without touching any
        provider.  Stale ones go through the provider cascade; those that
        come back with a price are persisted.  *force_refresh* bypasses
        the cache read (but still writes).
        """
        started = time.perf_counter()
        now = datetime.now(timezone.utc)
        symbols = discovery.normalize_symbols(symbols)

        if force_refresh or not symbols:
            realtime, fundamentals = {}, {}
        else:
            realtime, fundamentals = await self._partition(symbols, now)

        stale = [s for s in symbols if s not in realtime]
        resolved: dict[str, Quote] = {}
        fetch_calls: dict[str, int] = {}
        skipped: list[str] = []

        if stale:
            # A fresh row with a null market cap or float still needs the fundamentals provider.
            complete = [s for s, q in fundamentals.items() if quote_cache.has_fundamentals(q)]
            fetched = await self.orchestrator.fetch(stale, skip_fundamentals=complete)
            fetch_calls = fetched["calls"]
            skipped = fetched["skipped"]
            merged = merge_quotes(
                stale, fetched["results"], self.precedence, cached=fundamentals, now=now,
            )
            await quote_cache.upsert(merged, chunk_size=self.settings.upsert_chunk_size)
            resolved = {q["symbol"]: q for q in merged}

        quotes: list[Quote] = []
        for symbol in symbols:
            quote = realtime.get(symbol) or resolved.get(symbol)
            if quote is not None:
                quotes.append(quote)

        duration_ms = int((time.perf_counter() - started) * 1000)
        stats = EnrichmentStats(
            candidates=len(symbols),
            cached=len(realtime),
            fetched=len(stale),
            enriched=len(resolved),
            unresolved=len(stale) - len(resolved),
            cache_hit_rate=round(len(realtime) / len(symbols), 4) if symbols else 0.0,
            duration_ms=duration_ms,
            provider_calls=fetch_calls,
            provider_failures=self.registry.failure_counts(),
            skipped_providers=skipped,
        )
        logger.info(
            "Enriched %d symbols: %d cached, %d fetched, %d resolved, %d unresolved in %dms",
            stats["candidates"], stats["cached"], stats["fetched"],
            stats["enriched"], stats["unresolved"], duration_ms,
        )
        return EnrichmentResult(
            quotes=quotes,
            source=_source(len(realtime), len(stale)),
            stats=stats,
        )

    async def screen(
        self,
        filters: FilterSpec | dict | None = None,
        comparisons: Iterable[Comparison | dict] | None = None,
        *,
        symbols: Iterable[str] | None = None,
        exchange: str = "ALL",
        max_symbols: int = MAX_SYMBOLS_TO_CHECK,
        order_by: str = DEFAULT_ORDER_BY,
        offset: int = 0,
        limit: int = DEFAULT_LIMIT,
        rng: random.Random | None = None,
    ) -> ScreenResult:
        """Enrich candidates, then filter, rank and page them.

        Candidates are *symbols* when given, otherwise a random sample
        from the ticker universe (``CandidateDiscoveryFailure`` when
        nothing can be discovered).
        """
        # Validate before spending any provider budget.
        filters = screening.parse_filters(filters)
        comparisons = screening.parse_comparisons(comparisons)
        screening.validate_order_by(order_by)

        if symbols is None:
            candidates = await discovery.discover_candidates(exchange, max_symbols, rng)
        else:
            candidates = discovery.normalize_symbols(symbols)
        logger.info("Screening %d candidates (%s)", len(candidates), exchange)

        enriched = await self.enrich(candidates)
        valid = [q for q in enriched["quotes"] if is_screenable(q)]
        matched = screening.rank(screening.screen(valid, filters, comparisons), order_by)
        page = screening.paginate(matched, offset, limit)

        logger.info(
            "%d quotes with data, %d passed filters, returning %d",
            len(valid), len(matched), len(page),
        )
        return ScreenResult(
            stocks=page,
            count=len(page),
            total_matched=len(matched),
            total_checked=len(valid),
            source=enriched["source"],
            stats=enriched["stats"],
        )


def create_pipeline(
    settings: PipelineSettings | None = None,
    registry: ProviderRegistry | None = None,
) -> EnrichmentPipeline:
    """Build the default pipeline with one registry for the whole process."""
    settings = settings or PipelineSettings()
    registry = registry or ProviderRegistry(
        threshold=settings.breaker_threshold,
        cooldown=settings.breaker_cooldown_seconds,
    )
    providers = build_providers(registry, settings.precedence, settings.timeouts)
    return EnrichmentPipeline(providers, registry, settings)
