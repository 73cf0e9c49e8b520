"""Financial Modeling Prep profile provider (fundamentals only)."""

from __future__ import annotations

import logging

import httpx

from screener.config import FMP_API_KEY, PROVIDER_TIMEOUTS
from screener.errors import ProviderMalformedResponse
from screener.models import PartialQuote
from screener.providers.base import FUNDAMENTALS, BatchQuoteProvider, positive
from screener.services.provider_state import ProviderState

logger = logging.getLogger(__name__)

_BASE_URL = "https://financialmodelingprep.com/api/v3"


def _parse_profiles(data: object) -> dict[str, PartialQuote]:
    """Map a /profile list to partial quotes carrying only slow fields."""
    if not isinstance(data, list):
        raise ProviderMalformedResponse("fmp", "expected a list of profiles")

    results: dict[str, PartialQuote] = {}
    for profile in data:
        if not isinstance(profile, dict) or not profile.get("symbol"):
            continue
        symbol = str(profile["symbol"]).upper()
        results[symbol] = PartialQuote(
            symbol=symbol,
            name=profile.get("companyName"),
            market_cap=positive(profile.get("mktCap", profile.get("marketCap"))),
            shares_float=positive(
                profile.get("floatShares", profile.get("sharesOutstanding")),
            ),
            raw=profile,
        )
    return results


class FmpProvider(BatchQuoteProvider):
    name = "fmp"
    kind = FUNDAMENTALS
    base_url = _BASE_URL

    def __init__(
        self,
        state: ProviderState,
        *,
        api_key: str = FMP_API_KEY,
        timeout: float = PROVIDER_TIMEOUTS["fmp"],
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(state, timeout=timeout, client=client)
        self.api_key = api_key

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def _fetch_batch(self, symbols: list[str]) -> dict[str, PartialQuote]:
        data = await self._request(f"/profile/{','.join(symbols)}", {"apikey": self.api_key})
        return _parse_profiles(data)
