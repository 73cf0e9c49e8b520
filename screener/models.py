"""Shared data types: quotes, filter bounds, field comparisons."""

from __future__ import annotations

from typing import Any, Literal, Optional, TypedDict

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Field groups
# ---------------------------------------------------------------------------

# Fields resolved from quote-type providers.
QUOTE_FIELDS: tuple[str, ...] = ("price", "change_percent", "volume", "relative_volume")

# Slow-changing fields resolved from fundamentals-type data.
FUNDAMENTAL_FIELDS: tuple[str, ...] = ("market_cap", "shares_float")

NUMERIC_FIELDS: tuple[str, ...] = QUOTE_FIELDS + FUNDAMENTAL_FIELDS

QUOTE_COLUMNS: tuple[str, ...] = ("symbol", "name") + NUMERIC_FIELDS + ("raw", "updated_at")

NumericField = Literal[
    "price", "change_percent", "volume", "relative_volume", "market_cap", "shares_float",
]


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------


class PartialQuote(TypedDict, total=False):
    """Whatever one provider could tell us about one symbol.

    Values are already normalised by the adapter (absolute currency units,
    percent as a plain number).  ``None`` means unknown.
    """

    symbol: str
    name: Optional[str]
    price: Optional[float]
    change_percent: Optional[float]
    volume: Optional[float]
    relative_volume: Optional[float]
    market_cap: Optional[float]
    shares_float: Optional[float]
    raw: Any


class Quote(TypedDict):
    """Resolved, authoritative record for one symbol."""

    symbol: str
    name: Optional[str]
    price: Optional[float]
    change_percent: Optional[float]
    volume: Optional[float]
    relative_volume: Optional[float]
    market_cap: Optional[float]
    shares_float: Optional[float]
    raw: dict[str, Any]      # provider name -> payload, never mutated
    updated_at: Optional[str]  # ISO-8601 UTC


def empty_quote(symbol: str) -> Quote:
    return Quote(
        symbol=symbol,
        name=None,
        price=None,
        change_percent=None,
        volume=None,
        relative_volume=None,
        market_cap=None,
        shares_float=None,
        raw={},
        updated_at=None,
    )


def is_screenable(quote: Quote | None) -> bool:
    """A quote is usable for screening only with a positive price and volume."""
    if quote is None:
        return False
    price = quote.get("price")
    volume = quote.get("volume")
    return price is not None and price > 0 and volume is not None and volume > 0


def public_quote(quote: Quote) -> dict:
    """Quote as returned over HTTP (the audit payload stays in the store)."""
    return {key: quote.get(key) for key in QUOTE_COLUMNS if key != "raw"}


# ---------------------------------------------------------------------------
# Screening inputs
# ---------------------------------------------------------------------------


class FilterSpec(BaseModel):
    """Named numeric bounds; an absent bound places no constraint."""

    model_config = ConfigDict(extra="forbid")

    price_min: Optional[float] = None
    price_max: Optional[float] = None
    change_min: Optional[float] = None
    change_max: Optional[float] = None
    volume_min: Optional[float] = None
    market_cap_min: Optional[float] = None
    market_cap_max: Optional[float] = None
    float_min: Optional[float] = None
    float_max: Optional[float] = None
    relative_volume_min: Optional[float] = None


class Comparison(BaseModel):
    """``left <operator> right`` evaluated on two fields of the same quote."""

    model_config = ConfigDict(populate_by_name=True)

    left: NumericField = Field(validation_alias=AliasChoices("left", "left_field"))
    operator: Literal[">", "<", "="]
    right: NumericField = Field(validation_alias=AliasChoices("right", "right_field"))
