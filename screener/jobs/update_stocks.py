"""Job functions for refreshing the stocks table from providers."""

from __future__ import annotations

import logging
import math
import time
from datetime import datetime
from typing import Iterable
from zoneinfo import ZoneInfo

from screener.config import MARKET_HOURS, TOP_N_DELTA
from screener.services import discovery
from screener.services.enrichment import EnrichmentPipeline

logger = logging.getLogger(__name__)

_ET = ZoneInfo("US/Eastern")

MODES = ("full", "delta", "manual")


# ---------------------------------------------------------------------------
# Market-hours helpers
# ---------------------------------------------------------------------------


def is_market_open(market: str, now_et: datetime) -> bool:
    """Check whether a market region is currently in its trading hours.

    Returns ``False`` on weekends and for unknown regions.
    """
    # Saturday = 5, Sunday = 6
    if now_et.weekday() >= 5:
        return False

    hours = MARKET_HOURS.get(market)
    if hours is None:
        logger.warning("Unknown market region: %s", market)
        return False

    current_time = now_et.time()
    open_time = datetime.strptime(hours["open"], "%H:%M").time()
    close_time = datetime.strptime(hours["close"], "%H:%M").time()
    return open_time <= current_time <= close_time


# ---------------------------------------------------------------------------
# Symbol selection
# ---------------------------------------------------------------------------


async def resolve_symbols(
    mode: str,
    symbols: Iterable[str] | None = None,
    top_n: int = TOP_N_DELTA,
) -> list[str]:
    """Pick the symbols a refresh of *mode* should cover."""
    if mode == "manual":
        return discovery.normalize_symbols(symbols or [])
    if mode == "delta":
        return await discovery.get_delta_symbols(top_n)
    if mode == "full":
        return await discovery.get_full_symbols()
    raise ValueError(f"Unknown update mode: {mode!r}. Must be one of: {', '.join(MODES)}")


# ---------------------------------------------------------------------------
# Scheduled job functions
# ---------------------------------------------------------------------------


async def run_update(
    pipeline: EnrichmentPipeline,
    mode: str = "delta",
    symbols: Iterable[str] | None = None,
) -> dict:
    """Refresh *mode*'s symbols with a forced provider fetch.

    Never raises for provider trouble; the outcome is reported in the
    returned summary (``success`` is false when nothing was updated).
    """
    started = time.perf_counter()
    targets = await resolve_symbols(mode, symbols)
    logger.info("Update (%s): %d symbols requested", mode, len(targets))

    updated = 0
    if targets:
        result = await pipeline.enrich(targets, force_refresh=True)
        updated = len(result["quotes"])

    duration_ms = int((time.perf_counter() - started) * 1000)
    summary = {
        "success": updated > 0 or not targets,
        "mode": mode,
        "requested": len(targets),
        "updated": updated,
        "failed": len(targets) - updated,
        "duration_ms": duration_ms,
        "provider_status": pipeline.registry.snapshot(),
        "stats": {
            "batches_processed": math.ceil(len(targets) / pipeline.settings.batch_size),
            "avg_time_per_symbol_ms": round(duration_ms / len(targets), 2) if targets else 0.0,
        },
    }
    logger.info(
        "Update (%s) done: %d/%d updated in %dms",
        mode, updated, len(targets), duration_ms,
    )
    return summary


async def scheduled_delta_update(pipeline: EnrichmentPipeline) -> None:
    """Delta refresh, skipped while the US session is closed."""
    now_et = datetime.now(_ET)
    if not is_market_open("US", now_et):
        logger.info("US market closed, skipping delta update")
        return

    try:
        await run_update(pipeline, mode="delta")
    except Exception:
        logger.exception("Scheduled delta update failed")
