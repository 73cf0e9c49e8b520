"""Configuration: env vars, provider budgets, freshness windows, screening limits."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------
TWELVE_DATA_API_KEY: str = os.getenv("TWELVE_DATA_API_KEY", "")
FINNHUB_API_KEY: str = os.getenv("FINNHUB_API_KEY", "")
FMP_API_KEY: str = os.getenv("FMP_API_KEY", "")

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
DATABASE_URL: str = os.getenv("DATABASE_URL", "")
DATABASE_PATH: str = os.getenv("DATABASE_PATH", "screener.db")

# ---------------------------------------------------------------------------
# Market hours (ET, 24-hour format) for the scheduled refresh
# ---------------------------------------------------------------------------
MARKET_HOURS: dict[str, dict[str, str]] = {
    "US": {"open": "09:30", "close": "16:00"},
}

# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------
# Field-level precedence, highest first.
PROVIDER_PRECEDENCE: tuple[str, ...] = ("yahoo", "twelve_data", "finnhub", "fmp")

PROVIDER_TIMEOUTS: dict[str, float] = {
    "yahoo": 10.0,
    "twelve_data": 15.0,
    "finnhub": 8.0,
    "fmp": 10.0,
}

BATCH_SIZE: int = _env_int("BATCH_SIZE", 100)
BATCH_THROTTLE_SECONDS: float = _env_float("BATCH_THROTTLE_SECONDS", 0.5)
FINNHUB_CONCURRENCY: int = _env_int("FINNHUB_CONCURRENCY", 3)

# Finnhub free tier allows 60 calls/min; keep a buffer of 5.
FINNHUB_CALLS_PER_MINUTE: int = _env_int("FINNHUB_CALLS_PER_MINUTE", 55)
RATE_LIMIT_WINDOW_SECONDS: float = 60.0
RATE_LIMIT_MAX_RETRIES: int = _env_int("RATE_LIMIT_MAX_RETRIES", 3)
RATE_LIMIT_DEFAULT_RETRY_AFTER: float = 60.0
RATE_LIMIT_MAX_BACKOFF_SECONDS: float = 300.0

CIRCUIT_BREAKER_THRESHOLD: int = _env_int("CIRCUIT_BREAKER_THRESHOLD", 10)
# 0 keeps a tripped breaker closed until a success resets it.
CIRCUIT_BREAKER_COOLDOWN_SECONDS: float = _env_float("CIRCUIT_BREAKER_COOLDOWN_SECONDS", 0.0)

# ---------------------------------------------------------------------------
# Cache store
# ---------------------------------------------------------------------------
REALTIME_FRESHNESS_SECONDS: int = _env_int("REALTIME_FRESHNESS_SECONDS", 300)
FUNDAMENTALS_FRESHNESS_SECONDS: int = _env_int("FUNDAMENTALS_FRESHNESS_SECONDS", 6 * 3600)
UPSERT_CHUNK_SIZE: int = _env_int("UPSERT_CHUNK_SIZE", 100)

# ---------------------------------------------------------------------------
# Screening / discovery
# ---------------------------------------------------------------------------
DEFAULT_ORDER_BY: str = "change_percent"
DEFAULT_LIMIT: int = 50
MAX_LIMIT: int = 200
MAX_SYMBOLS_TO_CHECK: int = _env_int("MAX_SYMBOLS_TO_CHECK", 100)
MAX_SYMBOLS_HARD_CAP: int = 200
TOP_N_DELTA: int = _env_int("TOP_N_DELTA", 500)
NEW_SYMBOLS_PER_DELTA: int = 100
UPDATE_INTERVAL_MINUTES: int = _env_int("UPDATE_INTERVAL_MINUTES", 15)


@dataclass(frozen=True)
class PipelineSettings:
    """Every knob the enrichment pipeline reads, in one value.

    Variants of the pipeline (different provider sets, batch sizes or
    freshness windows) are expressed by passing a different instance
    rather than by separate code paths.
    """

    precedence: tuple[str, ...] = PROVIDER_PRECEDENCE
    batch_size: int = BATCH_SIZE
    batch_throttle_seconds: float = BATCH_THROTTLE_SECONDS
    single_symbol_concurrency: int = FINNHUB_CONCURRENCY
    upsert_chunk_size: int = UPSERT_CHUNK_SIZE
    realtime_freshness_seconds: int = REALTIME_FRESHNESS_SECONDS
    fundamentals_freshness_seconds: int = FUNDAMENTALS_FRESHNESS_SECONDS
    breaker_threshold: int = CIRCUIT_BREAKER_THRESHOLD
    breaker_cooldown_seconds: float = CIRCUIT_BREAKER_COOLDOWN_SECONDS
    timeouts: dict[str, float] = field(default_factory=lambda: dict(PROVIDER_TIMEOUTS))
