"""Twelve Data batch quote provider (secondary source)."""

from __future__ import annotations

import asyncio
import logging

import httpx

from screener.config import PROVIDER_TIMEOUTS, TWELVE_DATA_API_KEY
from screener.errors import ProviderMalformedResponse, ProviderUnavailable
from screener.models import PartialQuote
from screener.providers.base import (
    BatchQuoteProvider,
    percent_change,
    positive,
    relative_volume,
    safe_num,
)
from screener.services.provider_state import ProviderState

logger = logging.getLogger(__name__)

_BASE_URL = "https://api.twelvedata.com"
_MAX_CONCURRENT = 8

# Errors that mean "no data for this symbol" rather than "the request failed".
_SYMBOL_ERROR_CODES = frozenset({400, 404})


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------


def _parse_quote(symbol: str, raw: dict) -> PartialQuote:
    """Normalize a single quote response into a partial quote."""
    price = positive(raw.get("close"))
    volume = safe_num(raw.get("volume"))
    return PartialQuote(
        symbol=symbol,
        name=raw.get("name"),
        price=price,
        change_percent=percent_change(
            price, safe_num(raw.get("previous_close")), raw.get("percent_change"),
        ),
        volume=volume,
        relative_volume=relative_volume(volume, safe_num(raw.get("average_volume"))),
        raw=raw,
    )


def _parse_batch_quotes(raw: object, symbols: list[str]) -> dict[str, PartialQuote]:
    """Parse a batch /quote response.

    Single-symbol responses return a flat dict; multi-symbol responses
    return a nested dict keyed by symbol.  Per-symbol errors are skipped.
    """
    if not isinstance(raw, dict):
        raise ProviderMalformedResponse("twelve_data", "expected an object")

    results: dict[str, PartialQuote] = {}

    if len(symbols) == 1:
        sym = symbols[0]
        if "code" in raw:
            logger.warning("Twelve Data quote error for %s: %s", sym, raw.get("message"))
            return results
        results[sym] = _parse_quote(sym, raw)
        return results

    for sym in symbols:
        entry = raw.get(sym)
        if entry is None:
            logger.debug("Twelve Data returned nothing for %s", sym)
            continue
        if not isinstance(entry, dict):
            raise ProviderMalformedResponse("twelve_data", f"entry for {sym} is not an object")
        if "code" in entry:
            logger.warning("Twelve Data quote error for %s: %s", sym, entry.get("message"))
            continue
        results[sym] = _parse_quote(sym, entry)

    return results


# ---------------------------------------------------------------------------
# Provider class
# ---------------------------------------------------------------------------


class TwelveDataProvider(BatchQuoteProvider):
    name = "twelve_data"
    base_url = _BASE_URL

    def __init__(
        self,
        state: ProviderState,
        *,
        api_key: str = TWELVE_DATA_API_KEY,
        timeout: float = PROVIDER_TIMEOUTS["twelve_data"],
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(state, timeout=timeout, client=client)
        self.api_key = api_key
        self._semaphore = asyncio.Semaphore(_MAX_CONCURRENT)

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def _fetch_batch(self, symbols: list[str]) -> dict[str, PartialQuote]:
        async with self._semaphore:
            data = await self._request(
                "/quote", {"symbol": ",".join(symbols), "apikey": self.api_key},
            )

        # A whole-request error (bad key, exhausted credits) is flat even for batches.
        if isinstance(data, dict) and data.get("status") == "error" and "code" in data:
            code = data.get("code")
            if code == 429:
                raise ProviderUnavailable(self.name, f"credits exhausted: {data.get('message')}")
            if len(symbols) > 1 or code not in _SYMBOL_ERROR_CODES:
                raise ProviderUnavailable(self.name, f"{code}: {data.get('message')}")

        return _parse_batch_quotes(data, symbols)
