"""Window arithmetic for summaries.

All windows are half-open ``[start, end)`` and day-aligned in the
configured timezone: a 35-day window ending today runs from local midnight
35 days ago up to (not including) local midnight tomorrow. Calendar-day
arithmetic uses ``pd.DateOffset`` so DST transitions keep wall-clock
midnights.

Examples:
    >>> w = month_window(2025, 3, "UTC")
    >>> w.to_iso()
    ('2025-03-01T00:00:00+00:00', '2025-04-01T00:00:00+00:00')
    >>> previous_month_window(w).to_iso()[0]
    '2025-02-01T00:00:00+00:00'
"""

from __future__ import annotations

from datetime import date, datetime, tzinfo

import pandas as pd

from tiers_core.sales.models import SalesWindow

DELTA_BASES = ("anchor_start", "anchor_end", "month")


def _local_now(tz: str | tzinfo, now: datetime | None) -> pd.Timestamp:
    ts = pd.Timestamp(now) if now is not None else pd.Timestamp.now(tz="UTC")
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return ts.tz_convert(tz)


def trailing_window(
    days: int,
    completed_only: bool = False,
    tz: str | tzinfo = "UTC",
    now: datetime | None = None,
) -> SalesWindow:
    """Window covering the last ``days`` local calendar days.

    Args:
        days: Number of days (values below 1 are treated as 1).
        completed_only: End at local midnight today (exclude today) instead
            of local midnight tomorrow.
        tz: Timezone name or tzinfo defining day boundaries.
        now: Reference time. Defaults to the current time.
    """
    days = max(1, int(days))
    today = _local_now(tz, now).normalize()
    end = today if completed_only else today + pd.DateOffset(days=1)
    return SalesWindow(end - pd.DateOffset(days=days), end)


def window_ending_on(day: date | str, days: int, tz: str | tzinfo = "UTC") -> SalesWindow:
    """Window of ``days`` local days whose last (inclusive) day is ``day``."""
    days = max(1, int(days))
    last = pd.Timestamp(day).normalize()
    if last.tzinfo is None:
        last = last.tz_localize(tz)
    end = last + pd.DateOffset(days=1)
    return SalesWindow(end - pd.DateOffset(days=days), end)


def month_window(year: int, month: int, tz: str | tzinfo = "UTC") -> SalesWindow:
    """Window covering one calendar month; ``month`` is clamped to 1..12."""
    month = min(12, max(1, int(month)))
    start = pd.Timestamp(year=int(year), month=month, day=1).tz_localize(tz)
    return SalesWindow(start, start + pd.DateOffset(months=1))


def previous_month_window(window: SalesWindow) -> SalesWindow:
    """Calendar month before the month containing ``window.start``."""
    start = window.start.normalize().replace(day=1) - pd.DateOffset(months=1)
    return SalesWindow(start, start + pd.DateOffset(months=1))


def previous_window(
    window: SalesWindow,
    policy: str = "anchor_start",
    days: int | None = None,
) -> SalesWindow:
    """Comparison window immediately before ``window``.

    Args:
        window: Current window.
        policy: "anchor_start" ends the previous window where ``window``
            starts; "anchor_end" shifts both ends back; "month" takes the
            previous calendar month.
        days: Length in days. Defaults to the length of ``window``: whole
            local calendar days when it spans them, else its exact span.

    Raises:
        ValueError: If ``policy`` is unknown.
    """
    if policy not in DELTA_BASES:
        raise ValueError(f"Invalid delta base '{policy}'. Must be one of {DELTA_BASES}.")
    if policy == "month":
        return previous_month_window(window)
    if days:
        shift = pd.DateOffset(days=max(1, int(days)))
    elif window.start + pd.DateOffset(days=window.days) == window.end:
        shift = pd.DateOffset(days=window.days)
    else:
        shift = window.span
    if policy == "anchor_end":
        return SalesWindow(window.start - shift, window.end - shift)
    return SalesWindow(window.start - shift, window.start)
