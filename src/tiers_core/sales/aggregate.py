"""Aggregate storefront orders into per-product sales rows.

This module turns OrderRecord objects into ProductSalesRow objects (one per
product) with 30/100 unit buckets, net revenue and gross revenue.

The aggregation runs in two passes:

1. Line items of every included order are classified and accumulated. The
   variant -> size bucket index built here is frozen once the pass ends.
2. When returns netting is enabled, refunds are resolved against that
   read-only index and subtracted at the weighted-average unit price of the
   refunded variant within its order.

Money is rounded to 2 decimals (half-up) every time it is accumulated, so
long runs of small amounts never drift.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Mapping

import pandas as pd

from tiers_core.config import DEFAULT_POS_APP_NAMES, AccountingPolicy
from tiers_core.sales.models import (
    ROW_COLUMNS,
    Channel,
    LineItem,
    OrderRecord,
    ProductSalesRow,
    SalesWindow,
    Variant,
)
from tiers_core.sizes import (
    BUCKET_30,
    BUCKET_100,
    SizeMatcher,
    classify_size,
    make_prefix_matcher,
)

logger = logging.getLogger(__name__)

DEFAULT_APP_LABEL = "Online Store"

_CENT = Decimal("0.01")


def round_money(value: float) -> float:
    """Round a monetary amount to 2 decimals, half-up.

    Examples:
        >>> round_money(2.675)
        2.68
        >>> round_money(0.001)
        0.0
    """
    return float(Decimal(repr(float(value))).quantize(_CENT, rounding=ROUND_HALF_UP))


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _is_valid_number(value: object) -> bool:
    return _is_number(value) and value >= 0


def _is_valid_quantity(value: object) -> bool:
    return _is_valid_number(value) and float(value).is_integer()


def order_channel(order: OrderRecord, pos_app_names: Iterable[str] = DEFAULT_POS_APP_NAMES) -> Channel:
    """Return POS if the order's attribution app is a POS app, else ONLINE."""
    return Channel.POS if order.app_name in set(pos_app_names) else Channel.ONLINE


def line_amounts(line: LineItem, taxes_included: bool) -> tuple[float, float] | None:
    """Return the (net, gross) amounts of a line, each rounded to 2 decimals.

    When the order's line amounts include tax, net is the amount minus tax
    (floored at 0) and gross is the amount. Otherwise net is the amount and
    gross adds the tax.

    Returns:
        (net, gross), or None if the amount is negative or not a finite
        number, or the tax is not a finite number.
    """
    amount = line.amount
    tax = line.tax_amount or 0.0
    if not _is_valid_number(amount) or not _is_number(tax):
        return None
    if taxes_included:
        net, gross = max(amount - tax, 0.0), amount
    else:
        net, gross = amount, amount + tax
    return round_money(net), round_money(gross)


@dataclass
class _RowAccumulator:
    product_id: str
    name: str
    qty30: int = 0
    qty100: int = 0
    revenue: float = 0.0
    total_sales: float = 0.0

    def add_units(self, bucket: str, quantity: int) -> None:
        if bucket == BUCKET_100:
            self.qty100 += quantity
        elif bucket == BUCKET_30:
            self.qty30 += quantity

    def to_row(self) -> ProductSalesRow:
        return ProductSalesRow(
            product_id=self.product_id,
            name=self.name or self.product_id,
            qty30=self.qty30,
            qty100=self.qty100,
            revenue=round_money(self.revenue),
            total_sales=round_money(self.total_sales),
        )


@dataclass
class _Pass1Result:
    rows: dict[str, _RowAccumulator] = field(default_factory=dict)
    variant_buckets: dict[str, str] = field(default_factory=dict)
    included: list[OrderRecord] = field(default_factory=list)


def _variant_fields(variant: Variant | None) -> tuple[str, str, str, str, str]:
    if variant is None:
        return "", "", "", "", ""
    return (
        (variant.id or "").strip(),
        (variant.sku or "").strip(),
        (variant.title or "").strip(),
        (variant.product_id or "").strip(),
        (variant.product_name or "").strip(),
    )


def _scan_line_items(
    orders: Iterable[OrderRecord],
    channel: Channel,
    classifier: SizeMatcher,
    sku_ok: Callable[[str], bool],
    pos_app_names: frozenset[str],
) -> _Pass1Result:
    result = _Pass1Result()
    for order in orders:
        if channel is not Channel.TOTAL and order_channel(order, pos_app_names) is not channel:
            continue
        result.included.append(order)

        for line in order.line_items:
            variant_id, sku, title, product_id, product_name = _variant_fields(line.variant)
            if not product_id:
                logger.debug("Order %s: skipping line without product", order.id)
                continue
            if not sku_ok(sku):
                continue
            bucket = classifier(sku, title).bucket
            if bucket is None:
                continue
            if not _is_valid_quantity(line.quantity):
                logger.debug("Order %s: skipping line with quantity %r", order.id, line.quantity)
                continue
            amounts = line_amounts(line, order.taxes_included)
            if amounts is None:
                logger.debug("Order %s: skipping line with amount %r", order.id, line.amount)
                continue
            net, gross = amounts

            acc = result.rows.get(product_id)
            if acc is None:
                acc = result.rows[product_id] = _RowAccumulator(product_id, product_name)
            elif not acc.name and product_name:
                acc.name = product_name
            acc.add_units(bucket, int(line.quantity))
            acc.revenue = round_money(acc.revenue + net)
            acc.total_sales = round_money(acc.total_sales + gross)
            if variant_id:
                result.variant_buckets[variant_id] = bucket
    return result


def unit_prices(order: OrderRecord, variant_id: str, sku: str) -> tuple[float, float]:
    """Weighted-average (net, gross) unit price of a variant within one order.

    Lines are matched by variant id, or by SKU when no variant id is known.
    Refund records carry no amount, so this is how refunded revenue is
    reconstructed.

    Returns:
        (unit_net, unit_gross); (0.0, 0.0) when nothing matches.
    """
    total_qty = 0.0
    total_net = 0.0
    total_gross = 0.0
    for line in order.line_items:
        line_variant_id, line_sku, _, _, _ = _variant_fields(line.variant)
        if variant_id:
            matches = line_variant_id == variant_id
        else:
            matches = bool(sku) and line_sku == sku
        if not matches or not _is_valid_quantity(line.quantity):
            continue
        amounts = line_amounts(line, order.taxes_included)
        if amounts is None:
            continue
        total_qty += line.quantity
        total_net += amounts[0]
        total_gross += amounts[1]
    if total_qty <= 0:
        return 0.0, 0.0
    return total_net / total_qty, total_gross / total_qty


def _net_refunds(
    pass1: _Pass1Result,
    variant_index: Mapping[str, str],
    policy: AccountingPolicy,
    window: SalesWindow | None,
    classifier: SizeMatcher,
    sku_ok: Callable[[str], bool],
) -> None:
    rows = pass1.rows
    for order in pass1.included:
        for refund in order.refunds:
            if policy.by_refund_date and not window.contains(refund.created_at):
                continue
            for refund_line in refund.line_items:
                variant_id, sku, title, product_id, product_name = _variant_fields(
                    refund_line.variant
                )
                if not product_id:
                    continue
                if not _is_valid_quantity(refund_line.quantity) or refund_line.quantity == 0:
                    continue
                qty = int(refund_line.quantity)

                bucket = variant_index.get(variant_id) if variant_id else None
                if bucket is None:
                    if product_id not in rows and not sku_ok(sku):
                        # Known gap: such refunds are dropped, which can under-net.
                        logger.debug(
                            "Order %s: dropping refund of unindexed variant %s (sku %r)",
                            order.id,
                            variant_id,
                            sku,
                        )
                        continue
                    bucket = classifier(sku, title).bucket
                    if bucket is None:
                        continue

                acc = rows.get(product_id)
                if acc is None:
                    acc = rows[product_id] = _RowAccumulator(product_id, product_name)
                acc.add_units(bucket, -qty)

                unit_net, unit_gross = unit_prices(order, variant_id, sku)
                if unit_net > 0:
                    acc.revenue = round_money(acc.revenue - unit_net * qty)
                if unit_gross > 0:
                    acc.total_sales = round_money(acc.total_sales - unit_gross * qty)


def aggregate_sales(
    orders: Sequence[OrderRecord],
    channel: Channel | str = Channel.TOTAL,
    policy: AccountingPolicy | None = None,
    *,
    window: SalesWindow | None = None,
    classifier: SizeMatcher | None = None,
    pos_app_names: Iterable[str] = DEFAULT_POS_APP_NAMES,
) -> list[ProductSalesRow]:
    """Aggregate orders into one sales row per product.

    Args:
        orders: Orders already selected for the window by the source.
        channel: TOTAL, POS or ONLINE. Orders from other channels are skipped.
        policy: Accounting policy. Defaults to ``AccountingPolicy()``.
        window: Requested window. Required when ``policy.by_refund_date``.
        classifier: Size matcher. Defaults to the built-in patterns.
        pos_app_names: Attribution app names that count as POS.

    Returns:
        Rows in first-seen product order. Quantities are not floored, so they
        can be negative when returns exceed in-window sales.

    Raises:
        ValueError: If ``orders`` is None, or ``by_refund_date`` is set
            without a window.

    Examples:
        >>> rows = aggregate_sales(orders, "POS", AccountingPolicy(net_of_returns=True))
        >>> rows[0].qty100
        3
    """
    if orders is None:
        raise ValueError("orders must be a sequence of OrderRecord, got None")
    policy = policy or AccountingPolicy()
    if policy.net_of_returns and policy.by_refund_date and window is None:
        raise ValueError("window is required when netting returns by refund date")
    channel = Channel.parse(channel)
    classifier = classifier or classify_size
    sku_ok = make_prefix_matcher(policy.sku_prefix)
    pos_apps = frozenset(pos_app_names)

    pass1 = _scan_line_items(orders, channel, classifier, sku_ok, pos_apps)
    if policy.net_of_returns:
        variant_index = MappingProxyType(dict(pass1.variant_buckets))
        _net_refunds(pass1, variant_index, policy, window, classifier, sku_ok)

    rows = [acc.to_row() for acc in pass1.rows.values()]
    logger.info(
        "Aggregated %d product rows from %d of %d orders (channel=%s, net_of_returns=%s)",
        len(rows),
        len(pass1.included),
        len(orders),
        channel.value,
        policy.net_of_returns,
    )
    return rows


def attach_shares(rows: Sequence[ProductSalesRow]) -> list[ProductSalesRow]:
    """Fill in ``share_pct`` for rows that do not have one yet.

    The share is revenue over total revenue. When total revenue is 0 (e.g.
    unit-only sources), total quantity is used instead. A zero denominator
    is treated as 1, which yields all-zero shares. Existing shares are kept.
    """
    if rows is None:
        raise ValueError("rows must be a sequence of ProductSalesRow, got None")
    by_revenue = bool(sum(row.revenue for row in rows))
    values = [row.revenue if by_revenue else row.total_qty for row in rows]
    denominator = sum(values) or 1

    out = []
    for row, value in zip(rows, values):
        if row.share_pct is None:
            row = replace(row, share_pct=value * 100 / denominator)
        out.append(row)
    return out


def rows_to_frame(rows: Sequence[ProductSalesRow]) -> pd.DataFrame:
    """Convert sales rows into a DataFrame with ROW_COLUMNS."""
    if not rows:
        return pd.DataFrame(columns=ROW_COLUMNS)
    return pd.DataFrame(
        [{column: getattr(row, column) for column in ROW_COLUMNS} for row in rows],
        columns=ROW_COLUMNS,
    )


@dataclass
class SkuTotals:
    qty: int = 0
    net_sales: float = 0.0
    total_sales: float = 0.0

    def add(self, qty: int, net: float, gross: float) -> None:
        self.qty += qty
        self.net_sales = round_money(self.net_sales + net)
        self.total_sales = round_money(self.total_sales + gross)


@dataclass
class SkuSummary:
    """Sales of one exact SKU, with a breakdown per attribution app."""

    sku: str
    qty: int = 0
    net_sales: float = 0.0
    total_sales: float = 0.0
    by_app: dict[str, SkuTotals] = field(default_factory=dict)


def summarize_sku(
    orders: Sequence[OrderRecord],
    sku: str,
    channel: Channel | str = Channel.TOTAL,
    *,
    pos_app_names: Iterable[str] = DEFAULT_POS_APP_NAMES,
) -> SkuSummary:
    """Total the line items of one SKU, for reconciling against shop reports.

    Refunds are not netted; the result mirrors gross line-item sales.
    Orders without an attribution app are grouped under "Online Store".
    """
    if orders is None:
        raise ValueError("orders must be a sequence of OrderRecord, got None")
    channel = Channel.parse(channel)
    pos_apps = frozenset(pos_app_names)
    summary = SkuSummary(sku=sku)
    overall = SkuTotals()

    for order in orders:
        if channel is not Channel.TOTAL and order_channel(order, pos_apps) is not channel:
            continue
        app = order.app_name or DEFAULT_APP_LABEL
        for line in order.line_items:
            _, line_sku, _, _, _ = _variant_fields(line.variant)
            if line_sku != sku or not _is_valid_quantity(line.quantity):
                continue
            amounts = line_amounts(line, order.taxes_included)
            if amounts is None:
                continue
            qty = int(line.quantity)
            overall.add(qty, *amounts)
            summary.by_app.setdefault(app, SkuTotals()).add(qty, *amounts)

    summary.qty = overall.qty
    summary.net_sales = overall.net_sales
    summary.total_sales = overall.total_sales
    return summary
