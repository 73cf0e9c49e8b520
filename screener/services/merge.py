"""Combine partial quotes from several providers into canonical quotes.

Precedence is applied per field, not per source:

- price, change_percent, volume, relative_volume: first non-null value
  among quote-type providers, in precedence order;
- market_cap, shares_float: first non-null among all providers (quote
  providers rank ahead of the fundamentals provider), then a cached
  value that is still fresh for fundamentals;
- name: first non-null anywhere, cache last.

Symbols that end up without a price are dropped.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Sequence

from screener.models import FUNDAMENTAL_FIELDS, QUOTE_FIELDS, PartialQuote, Quote, empty_quote
from screener.providers.base import QUOTE

logger = logging.getLogger(__name__)


def _first(values: Iterable[object]) -> object | None:
    for value in values:
        if value is not None:
            return value
    return None


def merge_symbol(
    symbol: str,
    results: dict[str, dict[str, PartialQuote]],
    precedence: Sequence[tuple[str, str]],
    cached: Quote | None = None,
    updated_at: str | None = None,
) -> Quote | None:
    """Resolve one symbol; ``None`` when no source supplied a price."""
    partials = [
        (name, kind, results[name][symbol])
        for name, kind in precedence
        if symbol in results.get(name, {})
    ]
    quote_partials = [p for _, kind, p in partials if kind == QUOTE]

    merged = empty_quote(symbol)
    for field in QUOTE_FIELDS:
        merged[field] = _first(p.get(field) for p in quote_partials)
    if merged["price"] is None:
        return None

    tail = [cached] if cached is not None else []
    for field in FUNDAMENTAL_FIELDS:
        merged[field] = _first(
            [p.get(field) for _, _, p in partials] + [c.get(field) for c in tail]
        )
    merged["name"] = _first(
        [p.get("name") for _, _, p in partials] + [c.get("name") for c in tail]
    )
    merged["raw"] = {name: p.get("raw") for name, _, p in partials}
    merged["updated_at"] = updated_at
    return merged


def merge_quotes(
    symbols: Iterable[str],
    results: dict[str, dict[str, PartialQuote]],
    precedence: Sequence[tuple[str, str]],
    cached: dict[str, Quote] | None = None,
    now: datetime | None = None,
) -> list[Quote]:
    """Resolve every symbol, keeping input order and dropping unpriced ones.

    *precedence* is ``[(provider_name, kind), ...]`` highest first.
    *cached* supplies fundamentals that are still fresh in the store.
    """
    cached = cached or {}
    stamp = (now or datetime.now(timezone.utc)).isoformat()

    resolved: list[Quote] = []
    dropped = 0
    for symbol in symbols:
        quote = merge_symbol(symbol, results, precedence, cached.get(symbol), stamp)
        if quote is None:
            dropped += 1
            continue
        resolved.append(quote)

    if dropped:
        logger.info("Merge dropped %d symbols with no price from any source", dropped)
    return resolved
