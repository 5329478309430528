"""
Card Price Tracker — Change Metrics & Eligibility

Shared by ingestion and the staleness job so both entry points compute the
14 cached metrics the same way.

    pct = (current - comparator) / comparator * 100   (null if comparator null or <= 0)
    abs = current - comparator                         (null if comparator null)

Percentages are clamped to +/- PCT_CHANGE_BOUND; a near-zero comparator
produces a bounded value, never an error.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Mapping

import structlog

from price_tracker.config import Horizon, settings
from price_tracker.engine.windows import coerce_history_price, resolve_comparators

logger = structlog.get_logger(__name__)

_PCT_DP = Decimal("0.001")
_TWO_DP = Decimal("0.01")
_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def clamp_percent(value: Decimal, bound: Decimal | None = None) -> Decimal:
    limit = bound if bound is not None else settings.PCT_CHANGE_BOUND
    return max(-limit, min(limit, value))


def percent_change(
    current: Decimal | None,
    comparator: Decimal | None,
) -> Decimal | None:
    """Percentage change from comparator to current, clamped and rounded to 3 dp."""
    if current is None or comparator is None or comparator <= _ZERO:
        return None
    raw = (current - comparator) / comparator * _HUNDRED
    return clamp_percent(raw).quantize(_PCT_DP, rounding=ROUND_HALF_UP)


def absolute_change(
    current: Decimal | None,
    comparator: Decimal | None,
) -> Decimal | None:
    if current is None or comparator is None:
        return None
    return (current - comparator).quantize(_TWO_DP, rounding=ROUND_HALF_UP)


def compute_change_metrics(
    history: Mapping[str, Any] | None,
    anchor_date: date,
    current_price: Decimal | None,
) -> dict[str, Decimal | None]:
    """
    Compute all 14 metric columns for one product.

    Args:
        history: Price history to resolve comparators against. Callers pass
            the history as it was before the price being measured was added.
        anchor_date: Date the horizon windows are counted back from.
        current_price: Price the change is measured to.

    Returns:
        Mapping of column name (chg_1d_pct, chg_1d_abs, ...) to value.
    """
    comparators = resolve_comparators(history, anchor_date)
    values: dict[str, Decimal | None] = {}
    for horizon in Horizon:
        comparator = comparators[horizon]
        values[horizon.pct_column] = percent_change(current_price, comparator)
        values[horizon.abs_column] = absolute_change(current_price, comparator)
    return values


def is_eligible(
    price: Decimal | None,
    rarity: str | None,
    number: str | None,
) -> bool:
    """Eligible iff price >= ELIGIBILITY_MIN_PRICE and rarity or number is set."""
    if price is None or price < settings.ELIGIBILITY_MIN_PRICE:
        return False
    return rarity is not None or number is not None


def normalize_history(history: Mapping[str, Any] | None) -> dict[str, float]:
    """
    Return a copy of history where every value is a bare float.

    Nested values from the old defective write path are unwrapped; values
    that cannot be read as a price are dropped.
    """
    clean: dict[str, float] = {}
    for day, value in (history or {}).items():
        price = coerce_history_price(value)
        if price is None:
            logger.warning(
                "price_history_value_dropped",
                day=str(day),
                value_type=type(value).__name__,
            )
            continue
        clean[str(day)] = float(price)
    return clean


def history_with_price(
    history: Mapping[str, Any] | None,
    day: date,
    price: Decimal,
) -> dict[str, float]:
    """New history dict with day set to price. Same-day writes overwrite."""
    updated = normalize_history(history)
    updated[day.isoformat()] = float(price)
    return updated
