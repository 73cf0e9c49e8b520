"""Yahoo Finance batch quote provider (primary source, no API key)."""

from __future__ import annotations

import logging

import httpx

from screener.config import PROVIDER_TIMEOUTS
from screener.errors import ProviderMalformedResponse
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

_BASE_URL = "https://query1.finance.yahoo.com"
_HEADERS = {"User-Agent": "Mozilla/5.0"}


def _parse_quote(raw: dict) -> PartialQuote:
    """Normalize one ``quoteResponse.result`` entry."""
    price = positive(raw.get("regularMarketPrice"))
    volume = safe_num(raw.get("regularMarketVolume"))
    return PartialQuote(
        symbol=str(raw["symbol"]).upper(),
        name=raw.get("longName") or raw.get("shortName"),
        price=price,
        change_percent=percent_change(
            price,
            safe_num(raw.get("regularMarketPreviousClose")),
            raw.get("regularMarketChangePercent"),
        ),
        volume=volume,
        relative_volume=relative_volume(volume, safe_num(raw.get("averageDailyVolume10Day"))),
        market_cap=positive(raw.get("marketCap")),
        shares_float=positive(raw.get("floatShares")),
        raw=raw,
    )


def _parse_batch(data: object) -> dict[str, PartialQuote]:
    if not isinstance(data, dict):
        raise ProviderMalformedResponse("yahoo", "expected an object")
    response = data.get("quoteResponse")
    if not isinstance(response, dict) or not isinstance(response.get("result"), list):
        raise ProviderMalformedResponse("yahoo", "missing quoteResponse.result")

    results: dict[str, PartialQuote] = {}
    for entry in response["result"]:
        if not isinstance(entry, dict) or not entry.get("symbol"):
            logger.debug("Skipping Yahoo entry without symbol")
            continue
        parsed = _parse_quote(entry)
        results[parsed["symbol"]] = parsed
    return results


class YahooProvider(BatchQuoteProvider):
    name = "yahoo"
    base_url = _BASE_URL

    def __init__(
        self,
        state: ProviderState,
        *,
        timeout: float = PROVIDER_TIMEOUTS["yahoo"],
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(state, timeout=timeout, client=client)

    async def _fetch_batch(self, symbols: list[str]) -> dict[str, PartialQuote]:
        data = await self._request(
            "/v7/finance/quote",
            {"symbols": ",".join(symbols)},
            headers=_HEADERS,
        )
        return _parse_batch(data)
