"""Abstract base classes and shared parsing helpers for quote providers."""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import Any

import httpx

from screener.errors import (
    ProviderError,
    ProviderMalformedResponse,
    ProviderRateLimited,
    ProviderUnavailable,
)
from screener.models import PartialQuote
from screener.services.provider_state import ProviderState

logger = logging.getLogger(__name__)

QUOTE = "quote"
FUNDAMENTALS = "fundamentals"


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------


def safe_num(value: Any) -> float | None:
    """Coerce *value* to a finite float, or ``None``."""
    if value is None or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def positive(value: Any) -> float | None:
    """Like ``safe_num`` but zero and negatives become unknown.

    Providers answer unknown symbols with ``0`` prices; those must not be
    mistaken for real values.
    """
    num = safe_num(value)
    return num if num is not None and num > 0 else None


def percent_change(
    price: float | None,
    previous_close: float | None,
    fallback: Any = None,
) -> float | None:
    """Percent move from *previous_close*, else the provider's own figure."""
    if price is not None and previous_close:
        return round((price - previous_close) / previous_close * 100, 4)
    return safe_num(fallback)


def relative_volume(volume: float | None, avg_volume: float | None) -> float | None:
    """Today's volume as a multiple of the trailing average."""
    if volume is None or avg_volume is None or avg_volume <= 0:
        return None
    return round(volume / avg_volume, 4)


def parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Provider classes
# ---------------------------------------------------------------------------


class QuoteProvider(ABC):
    """Common plumbing: HTTP client, error mapping, breaker bookkeeping.

    Public ``fetch_*`` methods never raise.  Any ``ProviderError`` from
    the private implementation becomes an empty result and a breaker
    failure; a clean parse (even of zero symbols) resets the breaker.
    """

    name: str = ""
    kind: str = QUOTE
    batch_capable: bool = True
    base_url: str = ""

    def __init__(
        self,
        state: ProviderState,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.state = state
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    def is_available(self) -> bool:
        """False when the provider cannot be used at all (e.g. no API key)."""
        return True

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request(
        self,
        path: str,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> Any:
        """GET *path* and return decoded JSON, mapping failures to ProviderError."""
        self.state.record_call()
        try:
            resp = await self._client.get(path, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailable(self.name, f"timeout on {path}") from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(self.name, f"{type(exc).__name__} on {path}") from exc

        if resp.status_code == 429:
            raise ProviderRateLimited(self.name, parse_retry_after(resp.headers.get("retry-after")))
        if resp.status_code >= 400:
            raise ProviderUnavailable(self.name, f"HTTP {resp.status_code} on {path}")

        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderMalformedResponse(self.name, f"non-JSON body on {path}") from exc

    def _failed(self, what: str, exc: ProviderError) -> None:
        self.state.record_failure()
        logger.warning(
            "%s failed (%d/%d): %s",
            what, self.state.failures, self.state.threshold, exc,
        )


class BatchQuoteProvider(QuoteProvider):
    """Provider that resolves many symbols in one HTTP call."""

    batch_capable = True

    async def fetch_batch(self, symbols: list[str]) -> dict[str, PartialQuote]:
        if not symbols:
            return {}
        try:
            results = await self._fetch_batch(symbols)
        except ProviderError as exc:
            self._failed(f"{self.name} batch of {len(symbols)}", exc)
            return {}
        self.state.record_success()
        return results

    @abstractmethod
    async def _fetch_batch(self, symbols: list[str]) -> dict[str, PartialQuote]:
        """Fetch and normalise *symbols*; raise ProviderError on failure."""


class SingleSymbolProvider(QuoteProvider):
    """Provider that serves one symbol per call, usually under a quota."""

    batch_capable = False

    async def fetch_one(self, symbol: str) -> PartialQuote | None:
        try:
            result = await self._fetch_one(symbol)
        except ProviderError as exc:
            self._failed(f"{self.name} {symbol}", exc)
            return None
        self.state.record_success()
        return result

    @abstractmethod
    async def _fetch_one(self, symbol: str) -> PartialQuote | None:
        """Fetch and normalise *symbol*; raise ProviderError on failure."""
