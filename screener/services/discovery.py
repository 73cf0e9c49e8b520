"""Candidate symbol discovery for screens and scheduled refreshes.

Screens that arrive with filters instead of symbols draw a random sample
from the ``stock_tickers`` universe.  Refresh jobs pick either the whole
universe (``full``) or a delta: the most active and most moved names
already in ``stocks`` plus a slice of tickers never fetched before.
"""

from __future__ import annotations

import logging
import random
from typing import Iterable

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from screener.config import MAX_SYMBOLS_HARD_CAP, NEW_SYMBOLS_PER_DELTA, TOP_N_DELTA
from screener.db import get_session
from screener.errors import CandidateDiscoveryFailure

logger = logging.getLogger(__name__)

EXCHANGES = ("NASDAQ", "NYSE", "ALL")


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def normalize_symbols(symbols: Iterable[object]) -> list[str]:
    """Strip, upper-case and de-duplicate, keeping first occurrence order."""
    seen: set[str] = set()
    out: list[str] = []
    for symbol in symbols:
        value = str(symbol or "").strip().upper()
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def sample_candidates(
    universe: list[str],
    max_symbols: int,
    rng: random.Random | None = None,
) -> list[str]:
    """Random sample of up to *max_symbols* (hard-capped) from *universe*."""
    size = max(0, min(max_symbols, MAX_SYMBOLS_HARD_CAP, len(universe)))
    return (rng or random).sample(universe, size)


# ---------------------------------------------------------------------------
# DB helpers
# ---------------------------------------------------------------------------


async def _symbols(query: str, params: dict | None = None) -> list[str]:
    session = await get_session()
    try:
        result = await session.execute(text(query), params or {})
        return [row[0] for row in result.all() if row[0]]
    finally:
        await session.close()


async def fetch_ticker_universe(exchange: str = "ALL") -> list[str]:
    """All listed symbols, optionally restricted to one exchange."""
    exchange = exchange.upper()
    if exchange not in EXCHANGES:
        raise ValueError(f"Unknown exchange: {exchange!r}")
    try:
        if exchange == "ALL":
            rows = await _symbols("SELECT symbol FROM stock_tickers ORDER BY symbol")
        else:
            rows = await _symbols(
                "SELECT symbol FROM stock_tickers WHERE exchange = :exchange ORDER BY symbol",
                {"exchange": exchange},
            )
    except (SQLAlchemyError, RuntimeError):
        logger.exception("Failed to read ticker universe (%s)", exchange)
        return []
    logger.info("Ticker universe %s: %d symbols", exchange, len(rows))
    return normalize_symbols(rows)


async def get_cached_symbols(limit: int | None = None) -> list[str]:
    """Symbols already present in ``stocks``, most recently updated first."""
    query = "SELECT symbol FROM stocks ORDER BY updated_at DESC"
    params: dict = {}
    if limit is not None:
        query += " LIMIT :limit"
        params["limit"] = limit
    try:
        return await _symbols(query, params)
    except (SQLAlchemyError, RuntimeError):
        logger.exception("Failed to read cached symbols")
        return []


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def discover_candidates(
    exchange: str = "ALL",
    max_symbols: int = MAX_SYMBOLS_HARD_CAP,
    rng: random.Random | None = None,
) -> list[str]:
    """Candidate symbols for a filter-driven screen.

    Falls back to symbols already in the cache when the universe cannot
    be read; raises ``CandidateDiscoveryFailure`` when both are empty.
    """
    universe = await fetch_ticker_universe(exchange)
    if not universe:
        logger.warning("Ticker universe empty, falling back to cached symbols")
        universe = await get_cached_symbols()
    if not universe:
        raise CandidateDiscoveryFailure("Failed to fetch stock list from database")
    return sample_candidates(universe, max_symbols, rng)


async def get_full_symbols() -> list[str]:
    return await fetch_ticker_universe("ALL")


async def get_delta_symbols(top_n: int = TOP_N_DELTA) -> list[str]:
    """Most relevant symbols to refresh: volume, gainers, losers, new listings.

    Shares of *top_n*: 50% by volume, 30% top gainers, 20% top losers,
    then up to ``NEW_SYMBOLS_PER_DELTA`` tickers not yet in ``stocks``.
    """
    selections = (
        ("SELECT symbol FROM stocks WHERE volume IS NOT NULL "
         "ORDER BY volume DESC LIMIT :limit", top_n // 2),
        ("SELECT symbol FROM stocks WHERE change_percent IS NOT NULL "
         "ORDER BY change_percent DESC LIMIT :limit", int(top_n * 0.3)),
        ("SELECT symbol FROM stocks WHERE change_percent IS NOT NULL "
         "ORDER BY change_percent ASC LIMIT :limit", int(top_n * 0.2)),
        ("SELECT t.symbol FROM stock_tickers t "
         "LEFT JOIN stocks s ON s.symbol = t.symbol "
         "WHERE s.symbol IS NULL ORDER BY t.symbol LIMIT :limit", NEW_SYMBOLS_PER_DELTA),
    )

    picked: list[str] = []
    for query, limit in selections:
        if limit <= 0:
            continue
        try:
            picked.extend(await _symbols(query, {"limit": limit}))
        except (SQLAlchemyError, RuntimeError):
            logger.exception("Delta selection query failed")

    result = normalize_symbols(picked)[:top_n]
    logger.info("Delta mode selected %d symbols", len(result))
    return result
