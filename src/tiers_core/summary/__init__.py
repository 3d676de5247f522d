"""Tier summaries over a window and its previous window."""

from tiers_core.summary.api import (
    OrderSalesSource,
    SalesSource,
    SummaryRequest,
    SummaryResult,
    build_summary,
    recalculate,
)
from tiers_core.summary.windows import (
    month_window,
    previous_month_window,
    previous_window,
    trailing_window,
    window_ending_on,
)

__all__ = [
    "OrderSalesSource",
    "SalesSource",
    "SummaryRequest",
    "SummaryResult",
    "build_summary",
    "month_window",
    "previous_month_window",
    "previous_window",
    "recalculate",
    "trailing_window",
    "window_ending_on",
]
