"""
Tests for engine/metrics.py — change metrics, clamping, eligibility and
history normalisation.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from price_tracker.config import Horizon, settings
from price_tracker.engine.metrics import (
    absolute_change,
    clamp_percent,
    compute_change_metrics,
    history_with_price,
    is_eligible,
    normalize_history,
    percent_change,
)


# ---------------------------------------------------------------------------
# percent_change / absolute_change
# ---------------------------------------------------------------------------


def test_percent_change_basic() -> None:
    assert percent_change(Decimal("13.00"), Decimal("12.00")) == Decimal("8.333")
    assert percent_change(Decimal("5.00"), Decimal("10.00")) == Decimal("-50.000")


@pytest.mark.parametrize("comparator", [None, Decimal("0"), Decimal("-1.00")])
def test_percent_change_null_for_missing_or_non_positive_comparator(comparator) -> None:
    assert percent_change(Decimal("10.00"), comparator) is None


def test_percent_change_is_clamped() -> None:
    assert percent_change(Decimal("50.00"), Decimal("0.001")) == settings.PCT_CHANGE_BOUND


def test_clamp_percent_both_directions() -> None:
    bound = Decimal("100")
    assert clamp_percent(Decimal("250"), bound) == Decimal("100")
    assert clamp_percent(Decimal("-250"), bound) == Decimal("-100")
    assert clamp_percent(Decimal("42.5"), bound) == Decimal("42.5")


def test_absolute_change() -> None:
    assert absolute_change(Decimal("13.00"), Decimal("12.00")) == Decimal("1.00")
    assert absolute_change(Decimal("3.00"), Decimal("4.50")) == Decimal("-1.50")


def test_absolute_change_allows_zero_comparator() -> None:
    # Only percentage is guarded against a zero comparator
    assert absolute_change(Decimal("2.00"), Decimal("0")) == Decimal("2.00")


def test_absolute_change_null_for_missing_comparator() -> None:
    assert absolute_change(Decimal("2.00"), None) is None
    assert absolute_change(None, Decimal("2.00")) is None


# ---------------------------------------------------------------------------
# compute_change_metrics
# ---------------------------------------------------------------------------


def test_compute_change_metrics_has_all_fourteen_columns() -> None:
    values = compute_change_metrics({}, date(2025, 1, 11), Decimal("1.00"))
    expected = {h.pct_column for h in Horizon} | {h.abs_column for h in Horizon}
    assert set(values) == expected
    assert len(values) == 14
    assert all(v is None for v in values.values())


def test_compute_change_metrics_uses_window_table() -> None:
    history = {"2025-01-01": 10.0, "2025-01-08": 12.0}
    values = compute_change_metrics(history, date(2025, 1, 11), Decimal("13.00"))

    # 2025-01-08 is 3 days back -> 3d window
    assert values["chg_3d_abs"] == Decimal("1.00")
    assert values["chg_3d_pct"] == Decimal("8.333")
    # 2025-01-01 is 10 days back -> 7d window
    assert values["chg_7d_abs"] == Decimal("3.00")
    assert values["chg_7d_pct"] == Decimal("30.000")
    assert values["chg_1d_abs"] is None
    assert values["chg_1m_pct"] is None


# ---------------------------------------------------------------------------
# is_eligible
# ---------------------------------------------------------------------------


def test_eligible_at_threshold_with_number_only() -> None:
    assert is_eligible(Decimal("15"), None, "004") is True


def test_not_eligible_below_threshold() -> None:
    assert is_eligible(Decimal("14.99"), "Rare", "004") is False


def test_not_eligible_without_rarity_or_number() -> None:
    # Sealed product: no rarity, no number
    assert is_eligible(Decimal("120.00"), None, None) is False


def test_not_eligible_without_price() -> None:
    assert is_eligible(None, "Rare", "004") is False


def test_eligible_with_rarity_only() -> None:
    assert is_eligible(Decimal("15.01"), "Rare", None) is True


# ---------------------------------------------------------------------------
# History normalisation
# ---------------------------------------------------------------------------


def test_normalize_history_unwraps_nested_values() -> None:
    raw = {"2025-01-01": {"price": 3.51}, "2025-01-02": "3.60", "2025-01-03": 3.7}
    assert normalize_history(raw) == {
        "2025-01-01": 3.51,
        "2025-01-02": 3.6,
        "2025-01-03": 3.7,
    }


def test_normalize_history_drops_unreadable_values() -> None:
    assert normalize_history({"2025-01-01": {"oops": 1}, "2025-01-02": 2}) == {"2025-01-02": 2.0}


def test_history_with_price_overwrites_same_day() -> None:
    history = {"2025-01-11": 12.0}
    updated = history_with_price(history, date(2025, 1, 11), Decimal("13.00"))
    assert updated == {"2025-01-11": 13.0}
    assert history == {"2025-01-11": 12.0}


def test_history_with_price_always_writes_scalar() -> None:
    updated = history_with_price(None, date(2025, 1, 11), Decimal("13.25"))
    assert updated == {"2025-01-11": 13.25}
    assert all(isinstance(v, float) for v in updated.values())
