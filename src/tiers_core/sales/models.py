"""Data model for the sales pipeline.

Input side (ephemeral, built per request by a source adapter):
    OrderRecord -> LineItem / Refund -> RefundLineItem, each pointing at a Variant.

Output side (recomputed on every aggregation):
    ProductSalesRow - one row per product with 30/100 unit buckets and revenue.

Grain:
    ProductSalesRow is unique on product_id within one aggregation result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import pandas as pd


class Channel(str, Enum):
    """Sales surface an order is attributed to."""

    TOTAL = "TOTAL"
    POS = "POS"
    ONLINE = "ONLINE"

    @classmethod
    def parse(cls, value: str | Channel) -> Channel:
        """Parse a channel name case-insensitively.

        Raises:
            ValueError: If the name is not TOTAL, POS or ONLINE.
        """
        if isinstance(value, Channel):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(
                f"Invalid channel '{value}'. Must be 'TOTAL', 'POS' or 'ONLINE'."
            ) from None


def _to_utc_timestamp(value: datetime | str) -> pd.Timestamp:
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return ts


@dataclass(frozen=True)
class SalesWindow:
    """Half-open time range [start, end) used to scope orders and refunds.

    Naive datetimes are interpreted as UTC.
    """

    start: pd.Timestamp
    end: pd.Timestamp

    def __post_init__(self) -> None:
        start = _to_utc_timestamp(self.start)
        end = _to_utc_timestamp(self.end)
        if end < start:
            raise ValueError(f"Window end {end} is before start {start}")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @property
    def span(self) -> pd.Timedelta:
        return self.end - self.start

    @property
    def days(self) -> int:
        """Length in whole days (at least 1)."""
        return max(1, round(self.span / pd.Timedelta(days=1)))

    def contains(self, moment: datetime | None) -> bool:
        if moment is None:
            return False
        ts = _to_utc_timestamp(moment)
        return self.start <= ts < self.end

    def to_iso(self) -> tuple[str, str]:
        return self.start.isoformat(), self.end.isoformat()


@dataclass(frozen=True)
class Variant:
    """Product variant referenced by a line item or refund line."""

    id: str = ""
    sku: str = ""
    title: str = ""
    product_id: str = ""
    product_name: str = ""


@dataclass(frozen=True)
class LineItem:
    """One order line.

    Attributes:
        quantity: Units sold.
        amount: Line total after discounts (tax-inclusive or not, per order).
        tax_amount: Sum of the line's itemized taxes.
        variant: Variant sold, or None when the product was deleted.
    """

    quantity: float
    amount: float
    tax_amount: float = 0.0
    variant: Variant | None = None


@dataclass(frozen=True)
class RefundLineItem:
    """Refunded units; carries no money amount of its own."""

    quantity: float
    variant: Variant | None = None


@dataclass(frozen=True)
class Refund:
    created_at: datetime | None
    line_items: tuple[RefundLineItem, ...] = ()


@dataclass(frozen=True)
class OrderRecord:
    """Snapshot of one storefront order at fetch time.

    Attributes:
        id: Order identifier.
        created_at: Order creation timestamp.
        processed_at: Order processing timestamp.
        taxes_included: Whether line amounts already include tax.
        app_name: Attribution tag (originating sales app), "" when unknown.
        line_items: Ordered line items.
        refunds: Ordered refunds.
    """

    id: str
    created_at: datetime | None = None
    processed_at: datetime | None = None
    taxes_included: bool = False
    app_name: str = ""
    line_items: tuple[LineItem, ...] = ()
    refunds: tuple[Refund, ...] = ()


@dataclass(frozen=True)
class ProductSalesRow:
    """Per-product sales for one window and channel.

    Attributes:
        product_id: Stable, non-empty product identifier.
        name: Display name.
        qty30: Units in the 30 bucket (may be negative after returns netting).
        qty100: Units in the 100 bucket.
        revenue: Net revenue, rounded to 2 decimals.
        total_sales: Gross revenue (tax-inclusive), rounded to 2 decimals.
        share_pct: Share of total (0-100), if already known.
        tier: Tier label supplied by a pre-aggregated source.
        rank: Rank supplied by a pre-aggregated source.
        launch_date: Product launch date, used for the temporary tier.
    """

    product_id: str
    name: str
    qty30: int = 0
    qty100: int = 0
    revenue: float = 0.0
    total_sales: float = 0.0
    share_pct: float | None = None
    tier: str | None = None
    rank: int | None = None
    launch_date: datetime | None = field(default=None, compare=False)

    @property
    def total_qty(self) -> int:
        return self.qty30 + self.qty100


ROW_COLUMNS = [
    "product_id",
    "name",
    "qty30",
    "qty100",
    "revenue",
    "total_sales",
    "share_pct",
    "tier",
    "rank",
]
