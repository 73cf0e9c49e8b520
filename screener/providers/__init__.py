"""Market-data provider adapters."""

from __future__ import annotations

from screener.providers.base import (
    FUNDAMENTALS,
    QUOTE,
    BatchQuoteProvider,
    QuoteProvider,
    SingleSymbolProvider,
)
from screener.providers.finnhub import FinnhubProvider
from screener.providers.fmp import FmpProvider
from screener.providers.twelve_data import TwelveDataProvider
from screener.providers.yahoo import YahooProvider
from screener.services.provider_state import ProviderRegistry

_PROVIDER_CLASSES: dict[str, type[QuoteProvider]] = {
    "yahoo": YahooProvider,
    "twelve_data": TwelveDataProvider,
    "finnhub": FinnhubProvider,
    "fmp": FmpProvider,
}


def build_providers(
    registry: ProviderRegistry,
    precedence: tuple[str, ...],
    timeouts: dict[str, float] | None = None,
) -> list[QuoteProvider]:
    """Instantiate adapters in *precedence* order, sharing *registry* state."""
    timeouts = timeouts or {}
    providers: list[QuoteProvider] = []
    for name in precedence:
        cls = _PROVIDER_CLASSES.get(name)
        if cls is None:
            raise ValueError(f"Unknown provider: {name!r}")
        kwargs = {"timeout": timeouts[name]} if name in timeouts else {}
        providers.append(cls(registry.state(name), **kwargs))
    return providers


__all__ = [
    "FUNDAMENTALS",
    "QUOTE",
    "BatchQuoteProvider",
    "FinnhubProvider",
    "FmpProvider",
    "QuoteProvider",
    "SingleSymbolProvider",
    "TwelveDataProvider",
    "YahooProvider",
    "build_providers",
]
