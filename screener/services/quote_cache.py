"""Cached quote store: freshness-aware lookup and chunked upsert.

Rows live in the ``stocks`` table keyed by symbol.  A row is served for
a purpose only while its ``updated_at`` age is inside that purpose's
window: short for price-sensitive fields, long for market cap / float.
Store failures never reach the caller; reads degrade to cache misses
and writes are skipped.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from screener.config import (
    FUNDAMENTALS_FRESHNESS_SECONDS,
    REALTIME_FRESHNESS_SECONDS,
    UPSERT_CHUNK_SIZE,
)
from screener.db import Stock, get_dialect, get_session
from screener.errors import CacheLookupFailure, PersistenceFailure
from screener.models import FUNDAMENTAL_FIELDS, NUMERIC_FIELDS, Quote, empty_quote
from screener.services.orchestrator import chunked

logger = logging.getLogger(__name__)

REALTIME = "realtime"
FUNDAMENTALS = "fundamentals"

_WINDOWS: dict[str, int] = {
    REALTIME: REALTIME_FRESHNESS_SECONDS,
    FUNDAMENTALS: FUNDAMENTALS_FRESHNESS_SECONDS,
}

# Keep IN (...) lists well under SQLite's bound-parameter limit.
_LOOKUP_CHUNK = 500


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(value)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def is_fresh(
    quote: Quote,
    purpose: str,
    now: datetime | None = None,
    windows: dict[str, int] | None = None,
) -> bool:
    """Whether *quote* is young enough to serve *purpose* without refetching."""
    windows = windows or _WINDOWS
    if purpose not in windows:
        raise ValueError(f"Unknown freshness purpose: {purpose!r}")
    updated = parse_timestamp(quote.get("updated_at"))
    if updated is None:
        return False
    now = now or datetime.now(timezone.utc)
    return (now - updated).total_seconds() <= windows[purpose]


def has_fundamentals(quote: Quote) -> bool:
    """Whether every fundamentals field of *quote* is populated."""
    return all(quote.get(f) is not None for f in FUNDAMENTAL_FIELDS)


def _row_to_quote(row) -> Quote:
    raw = row["raw"]
    try:
        raw = json.loads(raw) if raw else {}
    except ValueError:
        logger.warning("Unreadable raw payload for %s", row["symbol"])
        raw = {}
    quote = empty_quote(row["symbol"])
    quote["name"] = row["name"]
    quote["raw"] = raw
    quote["updated_at"] = row["updated_at"]
    for field in NUMERIC_FIELDS:
        quote[field] = row[field]
    return quote


def _quote_to_row(quote: Quote, updated_at: str) -> dict:
    row = {
        "symbol": quote["symbol"],
        "name": quote.get("name"),
        "raw": json.dumps(quote.get("raw") or {}, default=str),
        "updated_at": updated_at,
    }
    for field in NUMERIC_FIELDS:
        row[field] = quote.get(field)
    return row


# ---------------------------------------------------------------------------
# DB helpers
# ---------------------------------------------------------------------------


async def read_entries(symbols: Iterable[str]) -> dict[str, Quote]:
    """Return every stored row for *symbols*, regardless of age.

    Raises ``CacheLookupFailure`` when the store cannot be read.
    """
    symbols = list(dict.fromkeys(symbols))
    if not symbols:
        return {}

    entries: dict[str, Quote] = {}
    try:
        session = await get_session()
    except RuntimeError as exc:
        raise CacheLookupFailure(str(exc)) from exc
    try:
        for chunk in chunked(symbols, _LOOKUP_CHUNK):
            placeholders = ", ".join(f":s{i}" for i in range(len(chunk)))
            params = {f"s{i}": sym for i, sym in enumerate(chunk)}
            result = await session.execute(
                text(f"""
                    SELECT symbol, name, price, change_percent, volume,
                           market_cap, shares_float, relative_volume,
                           raw, updated_at
                    FROM stocks
                    WHERE symbol IN ({placeholders})
                """),
                params,
            )
            for row in result.mappings().all():
                entries[row["symbol"]] = _row_to_quote(row)
    except SQLAlchemyError as exc:
        raise CacheLookupFailure(f"stocks lookup failed: {exc}") from exc
    finally:
        await session.close()
    return entries


async def _write_chunk(rows: list[dict]) -> None:
    insert = pg_insert if get_dialect() == "postgresql" else sqlite_insert
    stmt = insert(Stock).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Stock.symbol],
        set_={col: stmt.excluded[col] for col in rows[0] if col != "symbol"},
    )

    try:
        session = await get_session()
    except RuntimeError as exc:
        raise PersistenceFailure(str(exc)) from exc
    try:
        await session.execute(stmt)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise PersistenceFailure(f"upsert of {len(rows)} rows failed: {exc}") from exc
    finally:
        await session.close()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def lookup_all(
    symbols: Iterable[str],
    now: datetime | None = None,
    windows: dict[str, int] | None = None,
) -> dict[str, dict[str, Quote]]:
    """One store read split by purpose: ``{purpose: {symbol: quote}}``.

    A symbol appears under every purpose it is still fresh for.
    """
    windows = windows or _WINDOWS
    try:
        entries = await read_entries(symbols)
    except CacheLookupFailure as exc:
        logger.warning("Cache lookup failed, treating as miss: %s", exc)
        entries = {}
    return {
        purpose: {
            sym: q for sym, q in entries.items() if is_fresh(q, purpose, now, windows)
        }
        for purpose in windows
    }


async def lookup(
    symbols: Iterable[str],
    purpose: str = REALTIME,
    now: datetime | None = None,
    windows: dict[str, int] | None = None,
) -> dict[str, Quote]:
    """Return cached quotes still fresh for *purpose*; absent symbols are misses."""
    windows = windows or _WINDOWS
    if purpose not in windows:
        raise ValueError(f"Unknown freshness purpose: {purpose!r}")
    return (await lookup_all(symbols, now, windows))[purpose]


async def upsert(
    quotes: list[Quote],
    chunk_size: int = UPSERT_CHUNK_SIZE,
    now: datetime | None = None,
) -> int:
    """Write *quotes* by symbol (replace on conflict), *chunk_size* rows per trip.

    Every row is stamped with the write time.  Returns the number of rows
    written; failed chunks are logged and skipped.
    """
    if not quotes:
        return 0

    stamp = (now or datetime.now(timezone.utc)).isoformat()
    rows = [_quote_to_row(q, stamp) for q in quotes if q.get("symbol")]

    written = 0
    for chunk in chunked(rows, chunk_size):
        try:
            await _write_chunk(chunk)
        except PersistenceFailure as exc:
            logger.error("Skipping persistence of %d quotes: %s", len(chunk), exc)
            continue
        written += len(chunk)

    logger.info("Persisted %d/%d quotes", written, len(rows))
    return written
