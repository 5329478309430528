from price_tracker.engine.metrics import (
    absolute_change,
    clamp_percent,
    compute_change_metrics,
    history_with_price,
    is_eligible,
    normalize_history,
    percent_change,
)
from price_tracker.engine.windows import (
    HORIZON_WINDOWS,
    resolve_comparators,
    resolve_nearest_price,
    windows_are_disjoint,
)

__all__ = [
    "HORIZON_WINDOWS",
    "absolute_change",
    "clamp_percent",
    "compute_change_metrics",
    "history_with_price",
    "is_eligible",
    "normalize_history",
    "percent_change",
    "resolve_comparators",
    "resolve_nearest_price",
    "windows_are_disjoint",
]
