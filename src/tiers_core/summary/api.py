"""Public API for tier summaries.

This module provides the main entry points for building tier summaries:

- ``build_summary``: aggregate a window and its previous window, assign
  tiers, rank, compute share deltas, then filter and paginate.
- ``recalculate``: assign tiers from quantity shares over the configured
  trailing window of completed days.

Sales come from an injected ``SalesSource``: any callable
``source(channel, window) -> list[ProductSalesRow]``. ``OrderSalesSource``
adapts an order fetcher (e.g. ``ShopifyOrdersClient.fetch_orders``) and
``TieringTableSource`` reads pre-aggregated rows.
"""

from __future__ import annotations

import logging
import unicodedata
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, tzinfo
from typing import Protocol

import pandas as pd

from tiers_core.config import DEFAULT_POS_APP_NAMES, AccountingPolicy, TiersConfig
from tiers_core.exceptions import DataQualityError
from tiers_core.sales.aggregate import aggregate_sales, attach_shares
from tiers_core.sales.models import Channel, OrderRecord, ProductSalesRow, SalesWindow
from tiers_core.sizes import SizeMatcher
from tiers_core.summary.windows import DELTA_BASES, previous_window, trailing_window
from tiers_core.tiers.assign import Tier, TierAssignment, assign_tiers

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = [
    "rank",
    "product_id",
    "name",
    "tier",
    "reason",
    "share_pct",
    "delta_share_pct",
    "qty30",
    "qty100",
    "revenue",
    "total_sales",
]

CHANNEL_COLUMNS = ["product_id", "qty30", "qty100", "revenue", "total_sales", "share_pct"]


class SalesSource(Protocol):
    """Anything that returns per-product sales for a channel and window."""

    def __call__(self, channel: Channel, window: SalesWindow) -> list[ProductSalesRow]: ...


class OrderSalesSource:
    """SalesSource that fetches orders and runs the aggregator on them.

    Example:
        >>> client = ShopifyOrdersClient.from_env()
        >>> source = OrderSalesSource(client.fetch_orders, AccountingPolicy.from_env())
        >>> rows = source(Channel.POS, window)
    """

    def __init__(
        self,
        fetch_orders: Callable[[SalesWindow, AccountingPolicy], Sequence[OrderRecord]],
        policy: AccountingPolicy | None = None,
        classifier: SizeMatcher | None = None,
        pos_app_names: Iterable[str] = DEFAULT_POS_APP_NAMES,
    ) -> None:
        self.fetch_orders = fetch_orders
        self.policy = policy or AccountingPolicy()
        self.classifier = classifier
        self.pos_app_names = frozenset(pos_app_names)

    def __call__(self, channel: Channel, window: SalesWindow) -> list[ProductSalesRow]:
        orders = self.fetch_orders(window, self.policy)
        return aggregate_sales(
            orders,
            channel,
            self.policy,
            window=window,
            classifier=self.classifier,
            pos_app_names=self.pos_app_names,
        )


@dataclass(frozen=True)
class SummaryRequest:
    """Parameters of one summary.

    Attributes:
        window: Current window.
        channel: TOTAL, POS or ONLINE.
        tiers: Tier labels to keep (None keeps all).
        search: Case- and accent-insensitive substring of the product name.
        page: 1-based page number (clamped to >= 1).
        page_size: Rows per page (clamped to >= 1).
        delta_base: "anchor_start", "anchor_end" or "month".
        include_previous: Compute the previous window and deltas. When
            False ("lite"), deltas are 0.
        include_channels: On TOTAL, also return per-channel ONLINE and POS rows.
    """

    window: SalesWindow
    channel: Channel = Channel.TOTAL
    tiers: frozenset[str] | None = None
    search: str = ""
    page: int = 1
    page_size: int = 50
    delta_base: str = "anchor_start"
    include_previous: bool = True
    include_channels: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "channel", Channel.parse(self.channel))
        if self.delta_base not in DELTA_BASES:
            raise ValueError(
                f"Invalid delta base '{self.delta_base}'. Must be one of {DELTA_BASES}."
            )
        if self.tiers is not None:
            object.__setattr__(
                self, "tiers", frozenset(str(t).strip().upper() for t in self.tiers if str(t).strip())
            )


@dataclass
class SummaryResult:
    """One page of a tier summary.

    Attributes:
        rows: Page of SUMMARY_COLUMNS rows, ordered by rank.
        total: Row count after filtering, before pagination.
        page: Effective page number.
        page_size: Effective page size.
        config_version: Version of the config used for tiering.
        window: Current window.
        previous_window: Comparison window, None in lite mode.
        channels: Per-channel rows ("ONLINE", "POS") when requested.
    """

    rows: pd.DataFrame
    total: int
    page: int
    page_size: int
    config_version: int
    window: SalesWindow
    previous_window: SalesWindow | None = None
    channels: dict[str, pd.DataFrame] = field(default_factory=dict)


def normalize_text(value: str) -> str:
    """Lower-case and strip diacritics for search matching.

    Examples:
        >>> normalize_text("Éclat d'Été")
        "eclat d'ete"
    """
    value = unicodedata.normalize("NFKD", str(value or ""))
    return "".join(ch for ch in value if not unicodedata.combining(ch)).lower()


def base_rows(source: SalesSource, channel: Channel, window: SalesWindow) -> list[ProductSalesRow]:
    """Fetch rows for one channel and window and attach revenue shares.

    Shares supplied by the source are discarded, so shares always sum to
    100 over the rows returned.
    """
    rows = source(channel, window)
    if rows is None:
        raise DataQualityError(f"Sales source returned None for {channel.value}")
    return attach_shares([replace(row, share_pct=None) for row in rows])


def tiered_frame(
    rows: Sequence[ProductSalesRow],
    config: TiersConfig,
    *,
    now: datetime | None = None,
) -> pd.DataFrame:
    """Assign tiers and return ranked rows (without deltas)."""
    by_id = {row.product_id: row for row in rows}
    if len(by_id) != len(rows):
        raise DataQualityError("Sales rows repeat a product id")
    assignments = assign_tiers(rows, config, now=now)
    records = []
    for rank, assignment in enumerate(assignments, start=1):
        row = by_id[assignment.product_id]
        records.append(
            {
                "rank": rank,
                "product_id": row.product_id,
                "name": row.name,
                "tier": assignment.tier.value,
                "reason": assignment.reason,
                "share_pct": assignment.share_pct,
                "qty30": row.qty30,
                "qty100": row.qty100,
                "revenue": row.revenue,
                "total_sales": row.total_sales,
            }
        )
    columns = [c for c in SUMMARY_COLUMNS if c != "delta_share_pct"]
    return pd.DataFrame(records, columns=columns)


def _channel_frame(rows: Sequence[ProductSalesRow]) -> pd.DataFrame:
    return pd.DataFrame(
        [{c: getattr(row, c) for c in CHANNEL_COLUMNS} for row in rows],
        columns=CHANNEL_COLUMNS,
    )


def _filter(df: pd.DataFrame, tiers: frozenset[str] | None, search: str) -> pd.DataFrame:
    if tiers:
        df = df[df["tier"].isin(tiers)]
    needle = normalize_text(search).strip()
    if needle and not df.empty:
        df = df[df["name"].map(normalize_text).str.contains(needle, regex=False)]
    return df


def build_summary(
    source: SalesSource,
    config: TiersConfig,
    request: SummaryRequest,
    *,
    now: datetime | None = None,
) -> SummaryResult:
    """Build one page of the tier summary.

    Steps:
    1. Fetch the current window's rows and attach shares.
    2. Assign tiers and rank by share (stable, descending).
    3. Unless lite, fetch the previous window and compute
       ``delta_share_pct = current - previous`` (0 when absent), rounded to 4 places.
    4. Filter by tier and name, then paginate.

    Args:
        source: Sales source for the requested channel.
        config: Validated tier configuration.
        request: Window, channel, filters and paging.
        now: Reference time for the T override.

    Returns:
        SummaryResult with the requested page.

    Examples:
        >>> request = SummaryRequest(window=trailing_window(35, True), channel="POS", tiers={"SS", "S"})
        >>> result = build_summary(source, TiersConfigStore("config.json").read(), request)
        >>> result.rows[["rank", "name", "tier", "delta_share_pct"]]
    """
    if source is None:
        raise ValueError("source must be a SalesSource, got None")
    if config is None:
        raise ValueError("config must be a TiersConfig, got None")

    channel = request.channel
    logger.info(
        "Building %s summary for %s..%s", channel.value, request.window.start, request.window.end
    )
    df = tiered_frame(base_rows(source, channel, request.window), config, now=now)

    prev_window = None
    if request.include_previous:
        prev_window = previous_window(request.window, request.delta_base)
        prev_rows = base_rows(source, channel, prev_window)
        prev_shares = {row.product_id: row.share_pct or 0.0 for row in prev_rows}
        previous = df["product_id"].map(prev_shares).fillna(0.0)
        df["delta_share_pct"] = (df["share_pct"] - previous).astype(float).round(4)
    else:
        df["delta_share_pct"] = 0.0
    df = df[SUMMARY_COLUMNS]

    channels: dict[str, pd.DataFrame] = {}
    if request.include_channels and channel is Channel.TOTAL:
        for sub in (Channel.ONLINE, Channel.POS):
            channels[sub.value] = _channel_frame(base_rows(source, sub, request.window))

    filtered = _filter(df, request.tiers, request.search)
    page = max(1, int(request.page))
    page_size = max(1, int(request.page_size))
    offset = (page - 1) * page_size
    page_rows = filtered.iloc[offset : offset + page_size].reset_index(drop=True)

    logger.info(
        "Summary: %d products, %d after filters, page %d (%d rows)",
        len(df),
        len(filtered),
        page,
        len(page_rows),
    )
    return SummaryResult(
        rows=page_rows,
        total=len(filtered),
        page=page,
        page_size=page_size,
        config_version=config.config_version,
        window=request.window,
        previous_window=prev_window,
        channels=channels,
    )


def recalculate(
    source: SalesSource,
    config: TiersConfig,
    channel: Channel | str = Channel.TOTAL,
    window: SalesWindow | None = None,
    *,
    tz: str | tzinfo = "UTC",
    now: datetime | None = None,
) -> list[TierAssignment]:
    """Assign tiers from quantity shares.

    Any share supplied by the source is discarded, so tiers reflect units
    sold. The default window is the last ``config.sales_window_days``
    completed days in ``tz``.

    Returns:
        Tier assignments sorted by share descending.
    """
    channel = Channel.parse(channel)
    window = window or trailing_window(config.sales_window_days, True, tz, now)
    rows = [replace(row, share_pct=None) for row in source(channel, window)]
    assignments = assign_tiers(rows, config, now=now)
    logger.info(
        "Recalculated %d tiers for %s (%d SS)",
        len(assignments),
        channel.value,
        sum(1 for a in assignments if a.tier is Tier.SS),
    )
    return assignments
