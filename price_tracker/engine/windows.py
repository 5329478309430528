"""
Card Price Tracker — Windowed Nearest-Price Resolver

Finds the comparator price for a change metric: the most recent recorded
price inside an inclusive day-offset window counted back from an anchor date.

Window table (days back from anchor):

    | Horizon | Range   |
    |:--------|:--------|
    | 1d      | 1-2     |
    | 3d      | 3-5     |
    | 7d      | 7-10    |
    | 1m      | 30-35   |
    | 3m      | 90-100  |
    | 6m      | 180-200 |
    | 1y      | 365-380 |

Ranges are disjoint, so a single historical day can never be the comparator
for two different horizons. Tolerant ranges keep comparators available across
weekend and vendor-outage gaps in the feed.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from price_tracker.config import Horizon

HORIZON_WINDOWS: dict[Horizon, tuple[int, int]] = {
    Horizon.ONE_DAY: (1, 2),
    Horizon.THREE_DAYS: (3, 5),
    Horizon.SEVEN_DAYS: (7, 10),
    Horizon.ONE_MONTH: (30, 35),
    Horizon.THREE_MONTHS: (90, 100),
    Horizon.SIX_MONTHS: (180, 200),
    Horizon.ONE_YEAR: (365, 380),
}


def coerce_history_price(value: Any) -> Decimal | None:
    """
    Read one history value as a Decimal.

    Accepts bare numbers and numeric strings. A legacy nested value such as
    {"price": 3.51} is unwrapped. Anything else reads as missing.
    """
    if isinstance(value, Mapping):
        value = value.get("price", value.get("market_price"))
    if value is None or isinstance(value, bool):
        return None
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not price.is_finite():
        return None
    return price


def resolve_nearest_price(
    history: Mapping[str, Any] | None,
    anchor_date: date,
    min_offset: int,
    max_offset: int,
) -> Decimal | None:
    """
    Return the first recorded price found scanning back from anchor_date.

    If 0 lies in [min_offset, max_offset] the anchor date itself is tried
    first. Offsets are then scanned min_offset..max_offset inclusive at
    anchor_date - offset.

    Args:
        history: ISO date string -> price mapping.
        anchor_date: Day the offsets are counted back from.
        min_offset: Closest day offset to consider (>= 0).
        max_offset: Furthest day offset to consider (>= min_offset).

    Returns:
        The comparator price, or None when no offset in range has a price.

    Raises:
        ValueError: If the range is negative or inverted.
    """
    if min_offset < 0 or max_offset < min_offset:
        raise ValueError(
            f"invalid offset range [{min_offset}, {max_offset}]"
        )
    if not history:
        return None

    if min_offset == 0:
        price = coerce_history_price(history.get(anchor_date.isoformat()))
        if price is not None:
            return price

    for offset in range(max(min_offset, 1), max_offset + 1):
        key = (anchor_date - timedelta(days=offset)).isoformat()
        price = coerce_history_price(history.get(key))
        if price is not None:
            return price

    return None


def resolve_comparators(
    history: Mapping[str, Any] | None,
    anchor_date: date,
) -> dict[Horizon, Decimal | None]:
    """Resolve the comparator price for every horizon."""
    return {
        horizon: resolve_nearest_price(history, anchor_date, lo, hi)
        for horizon, (lo, hi) in HORIZON_WINDOWS.items()
    }


def windows_are_disjoint(
    windows: Mapping[Horizon, tuple[int, int]] | None = None,
) -> bool:
    """True if no two windows share a day offset."""
    ranges = sorted((windows or HORIZON_WINDOWS).values())
    for (_, prev_hi), (next_lo, _) in zip(ranges, ranges[1:]):
        if next_lo <= prev_hi:
            return False
    return True
