"""Finnhub single-symbol provider (rate-limited, free tier 60 calls/min).

Each symbol costs up to three calls: ``/quote`` (required) plus
``/stock/metric`` and ``/stock/profile2`` (best-effort, for relative
volume and company size).  Finnhub reports average volume, market
capitalization and shares outstanding in millions.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from screener.config import FINNHUB_API_KEY, FINNHUB_CALLS_PER_MINUTE, PROVIDER_TIMEOUTS
from screener.errors import ProviderError, ProviderMalformedResponse
from screener.models import PartialQuote
from screener.providers.base import (
    SingleSymbolProvider,
    percent_change,
    positive,
    relative_volume,
    safe_num,
)
from screener.services.provider_state import ProviderState
from screener.services.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

_BASE_URL = "https://finnhub.io/api/v1"
_MILLION = 1_000_000


def _scaled(value: object) -> float | None:
    num = positive(value)
    return num * _MILLION if num is not None else None


def _parse(symbol: str, quote: dict, metric: dict | None, profile: dict | None) -> PartialQuote:
    price = positive(quote.get("c"))
    volume = safe_num(quote.get("v", quote.get("volume")))

    metrics = (metric or {}).get("metric") or {}
    avg_volume = _scaled(metrics.get("10DayAverageTradingVolume"))

    profile = profile or {}
    return PartialQuote(
        symbol=symbol,
        name=profile.get("name") or None,
        price=price,
        change_percent=percent_change(price, safe_num(quote.get("pc")), quote.get("dp")),
        volume=volume,
        relative_volume=relative_volume(volume, avg_volume),
        market_cap=_scaled(profile.get("marketCapitalization")),
        shares_float=_scaled(profile.get("shareOutstanding")),
        raw={"quote": quote, "metric": metrics, "profile": profile},
    )


class FinnhubProvider(SingleSymbolProvider):
    name = "finnhub"
    base_url = _BASE_URL

    def __init__(
        self,
        state: ProviderState,
        *,
        api_key: str = FINNHUB_API_KEY,
        timeout: float = PROVIDER_TIMEOUTS["finnhub"],
        client: httpx.AsyncClient | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        super().__init__(state, timeout=timeout, client=client)
        self.api_key = api_key
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            state, calls_per_window=FINNHUB_CALLS_PER_MINUTE,
        )

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def _get(self, path: str, params: dict) -> object:
        params = {**params, "token": self.api_key}
        return await self.rate_limiter.call(lambda: self._request(path, params))

    async def _optional(self, path: str, params: dict) -> dict | None:
        """Secondary endpoints only enrich; their failure is not the provider's."""
        try:
            data = await self._get(path, params)
        except ProviderError as exc:
            logger.debug("finnhub %s for %s skipped: %s", path, params.get("symbol"), exc)
            return None
        return data if isinstance(data, dict) else None

    async def _fetch_one(self, symbol: str) -> PartialQuote | None:
        quote = await self._get("/quote", {"symbol": symbol})
        if not isinstance(quote, dict):
            raise ProviderMalformedResponse(self.name, f"quote for {symbol} is not an object")
        # Unknown symbols come back as all zeros; don't spend quota on them.
        if positive(quote.get("c")) is None:
            return None

        metric, profile = await asyncio.gather(
            self._optional("/stock/metric", {"symbol": symbol, "metric": "all"}),
            self._optional("/stock/profile2", {"symbol": symbol}),
        )
        return _parse(symbol, quote, metric, profile)
