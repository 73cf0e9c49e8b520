"""Operational view of the stocks table and provider health."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import text

from screener.db import get_session
from screener.services.provider_state import ProviderRegistry
from screener.services.quote_cache import parse_timestamp

logger = logging.getLogger(__name__)

TOP_N = 10

# (bucket, upper age bound in seconds); ages past the last bound are very_stale
_BUCKETS: tuple[tuple[str, int], ...] = (
    ("very_fresh", 5 * 60),
    ("fresh", 60 * 60),
    ("stale", 24 * 60 * 60),
)


def freshness_bucket(updated_at: str | None, now: datetime) -> str:
    ts = parse_timestamp(updated_at)
    if ts is None:
        return "never_updated"
    age = (now - ts).total_seconds()
    for name, bound in _BUCKETS:
        if age < bound:
            return name
    return "very_stale"


def freshness_breakdown(updated: list[str | None], now: datetime | None = None) -> dict[str, int]:
    now = now or datetime.now(timezone.utc)
    counts = {name: 0 for name, _ in _BUCKETS}
    counts["very_stale"] = 0
    counts["never_updated"] = 0
    for value in updated:
        counts[freshness_bucket(value, now)] += 1
    return counts


async def _top(session, order: str, where: str) -> list[dict]:
    result = await session.execute(
        text(f"""
            SELECT symbol, name, price, change_percent, volume, updated_at
            FROM stocks
            WHERE {where}
            ORDER BY {order}
            LIMIT :limit
        """),
        {"limit": TOP_N},
    )
    return [dict(row) for row in result.mappings().all()]


async def get_monitor_report(
    registry: ProviderRegistry,
    now: datetime | None = None,
) -> dict:
    """Freshness breakdown, top movers and provider state in one payload."""
    session = await get_session()
    try:
        result = await session.execute(text("SELECT updated_at FROM stocks"))
        updated = [row[0] for row in result.all()]
        gainers = await _top(session, "change_percent DESC", "change_percent IS NOT NULL")
        losers = await _top(session, "change_percent ASC", "change_percent IS NOT NULL")
        by_volume = await _top(session, "volume DESC", "volume IS NOT NULL")
    finally:
        await session.close()

    return {
        "total_stocks": len(updated),
        "freshness": freshness_breakdown(updated, now),
        "top_gainers": gainers,
        "top_losers": losers,
        "top_volume": by_volume,
        "providers": registry.snapshot(),
        "timestamp": (now or datetime.now(timezone.utc)).isoformat(),
    }
