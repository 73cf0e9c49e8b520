"""Screening, ranking and pagination over resolved quotes."""

from __future__ import annotations

import logging
import math
import operator
from typing import Callable, Iterable

from screener.config import DEFAULT_LIMIT, DEFAULT_ORDER_BY, MAX_LIMIT
from screener.errors import InvalidRequest
from screener.models import Comparison, FilterSpec, Quote, is_screenable

logger = logging.getLogger(__name__)

# (bound name, quote field, predicate that must hold for the quote to pass)
_BOUNDS: tuple[tuple[str, str, Callable[[float, float], bool]], ...] = (
    ("price_min", "price", operator.ge),
    ("price_max", "price", operator.le),
    ("change_min", "change_percent", operator.ge),
    ("change_max", "change_percent", operator.le),
    ("volume_min", "volume", operator.ge),
    ("market_cap_min", "market_cap", operator.ge),
    ("market_cap_max", "market_cap", operator.le),
    ("float_min", "shares_float", operator.ge),
    ("float_max", "shares_float", operator.le),
    ("relative_volume_min", "relative_volume", operator.ge),
)

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    "=": operator.eq,
}

ORDER_FIELDS = ("change_percent", "volume", "relative_volume")


def parse_filters(filters: FilterSpec | dict | None) -> FilterSpec:
    if filters is None:
        return FilterSpec()
    if isinstance(filters, FilterSpec):
        return filters
    try:
        return FilterSpec.model_validate(filters)
    except ValueError as exc:
        raise InvalidRequest(f"Invalid filters: {exc}") from exc


def parse_comparisons(comparisons: Iterable[Comparison | dict] | None) -> list[Comparison]:
    out: list[Comparison] = []
    for cmp in comparisons or ():
        if isinstance(cmp, Comparison):
            out.append(cmp)
            continue
        try:
            out.append(Comparison.model_validate(cmp))
        except ValueError as exc:
            raise InvalidRequest(f"Invalid comparison {cmp!r}: {exc}") from exc
    return out


def passes(
    quote: Quote | None,
    filters: FilterSpec | dict | None = None,
    comparisons: Iterable[Comparison | dict] | None = None,
) -> bool:
    """True when *quote* satisfies every populated bound and every comparison.

    A missing value fails any bound or comparison that reads it.
    """
    if not is_screenable(quote):
        return False

    spec = parse_filters(filters)
    for bound, field, holds in _BOUNDS:
        limit = getattr(spec, bound)
        if limit is None:
            continue
        value = quote.get(field)
        if value is None or not holds(value, limit):
            return False

    for cmp in parse_comparisons(comparisons):
        left = quote.get(cmp.left)
        right = quote.get(cmp.right)
        if left is None or right is None:
            return False
        if not _OPERATORS[cmp.operator](left, right):
            return False

    return True


def screen(
    quotes: Iterable[Quote],
    filters: FilterSpec | dict | None = None,
    comparisons: Iterable[Comparison | dict] | None = None,
) -> list[Quote]:
    """Keep the quotes that pass, preserving their order."""
    spec = parse_filters(filters)
    cmps = parse_comparisons(comparisons)
    return [q for q in quotes if passes(q, spec, cmps)]


def validate_order_by(order_by: str) -> str:
    if order_by not in ORDER_FIELDS:
        raise InvalidRequest(
            f"Invalid orderBy: {order_by!r}. Must be one of: {', '.join(ORDER_FIELDS)}"
        )
    return order_by


def rank(quotes: Iterable[Quote], order_by: str = DEFAULT_ORDER_BY) -> list[Quote]:
    """Sort descending by *order_by*; quotes missing it sink to the bottom."""
    validate_order_by(order_by)

    def key(q: Quote) -> float:
        value = q.get(order_by)
        return -math.inf if value is None else value

    return sorted(quotes, key=key, reverse=True)


def paginate(
    quotes: list[Quote],
    offset: int = 0,
    limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> list[Quote]:
    """Slice the ``[offset, offset + limit)`` window, capping *limit*."""
    if offset < 0:
        raise InvalidRequest("offset must be >= 0")
    if limit < 0:
        raise InvalidRequest("limit must be >= 0")
    limit = min(limit, max_limit)
    return quotes[offset:offset + limit]
