"""Normalize raw source payloads into the sales data model.

Two input shapes are supported:

- Shopify Admin GraphQL order nodes -> OrderRecord (``parse_order_node``).
- Pre-aggregated tiering-table rows -> ProductSalesRow
  (``rows_from_tiering_records``). These bypass the aggregator; the size
  bucket comes from the SKU suffix (``-30`` / ``-100``) after stripping the
  configured prefix.

Unparseable amounts become NaN so the aggregator can skip the line instead
of failing the whole batch.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Mapping
from typing import Any

import pandas as pd

from tiers_core.sales.models import (
    LineItem,
    OrderRecord,
    ProductSalesRow,
    Refund,
    RefundLineItem,
    Variant,
)

logger = logging.getLogger(__name__)

_SUFFIX_30_RE = re.compile(r"-30$", re.IGNORECASE)
_SUFFIX_100_RE = re.compile(r"-100$", re.IGNORECASE)

TIERING_COLUMNS = (
    "sku",
    "product_title",
    "participation_pct",
    "tier",
    "three_weeks_units",
    "revenue_gross",
    "rank",
)


def _to_float(value: Any) -> float:
    """Convert a money/quantity value to float, NaN when unparseable."""
    if value is None:
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _to_timestamp(value: Any) -> pd.Timestamp | None:
    if not value:
        return None
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError):
        logger.debug("Unparseable timestamp %r", value)
        return None
    if pd.isna(ts):
        return None
    return ts if ts.tzinfo is not None else ts.tz_localize("UTC")


def _money(money_set: Mapping[str, Any] | None) -> float:
    """Read ``{shopMoney: {amount}}`` as a float."""
    shop_money = (money_set or {}).get("shopMoney") or {}
    return _to_float(shop_money.get("amount", 0))


def _edges(connection: Mapping[str, Any] | None) -> list[dict[str, Any]]:
    return [edge.get("node") or {} for edge in (connection or {}).get("edges") or []]


def parse_variant(node: Mapping[str, Any] | None) -> Variant | None:
    """Parse a GraphQL variant node (``id sku title product { id title }``)."""
    if not node:
        return None
    product = node.get("product") or {}
    return Variant(
        id=str(node.get("id") or ""),
        sku=str(node.get("sku") or "").strip(),
        title=str(node.get("title") or "").strip(),
        product_id=str(product.get("id") or ""),
        product_name=str(product.get("title") or product.get("handle") or ""),
    )


def parse_line_item(node: Mapping[str, Any]) -> LineItem:
    taxes = [_money(tax_line.get("priceSet")) for tax_line in node.get("taxLines") or []]
    return LineItem(
        quantity=_to_float(node.get("quantity", 0)),
        amount=_money(node.get("discountedTotalSet")),
        tax_amount=sum(tax for tax in taxes if math.isfinite(tax)),
        variant=parse_variant(node.get("variant")),
    )


def parse_refund(node: Mapping[str, Any]) -> Refund:
    lines = tuple(
        RefundLineItem(
            quantity=_to_float(line.get("quantity", 0)),
            variant=parse_variant((line.get("lineItem") or {}).get("variant")),
        )
        for line in _edges(node.get("refundLineItems"))
    )
    return Refund(created_at=_to_timestamp(node.get("createdAt")), line_items=lines)


def parse_order_node(node: Mapping[str, Any]) -> OrderRecord:
    """Convert one Shopify Admin GraphQL order node into an OrderRecord.

    Args:
        node: Order node as returned by the ``orders`` connection.

    Returns:
        OrderRecord with line items and refunds in source order.

    Examples:
        >>> order = parse_order_node({"id": "gid://shopify/Order/1", "app": {"name": "Point of Sale"}})
        >>> order.app_name
        'Point of Sale'
    """
    return OrderRecord(
        id=str(node.get("id") or ""),
        created_at=_to_timestamp(node.get("createdAt")),
        processed_at=_to_timestamp(node.get("processedAt")),
        taxes_included=bool(node.get("taxesIncluded")),
        app_name=str((node.get("app") or {}).get("name") or ""),
        line_items=tuple(parse_line_item(line) for line in _edges(node.get("lineItems"))),
        refunds=tuple(parse_refund(refund) for refund in node.get("refunds") or []),
    )


def parse_orders(nodes: Iterable[Mapping[str, Any]]) -> list[OrderRecord]:
    return [parse_order_node(node) for node in nodes]


def strip_prefix(sku: str, prefix: str) -> str:
    prefix = (prefix or "").strip()
    if prefix and sku.startswith(prefix):
        return sku[len(prefix) :]
    return sku


def rows_from_tiering_records(
    records: Iterable[Mapping[str, Any]],
    sku_prefix: str = "",
) -> list[ProductSalesRow]:
    """Map pre-aggregated tiering rows into ProductSalesRow objects.

    Each record carries ``sku``, ``product_title``, ``participation_pct``,
    ``tier``, ``three_weeks_units``, ``revenue_gross`` and ``rank``. The SKU
    (minus ``sku_prefix``) ending in ``-30`` or ``-100`` decides the bucket;
    rows that land in neither bucket with positive units are dropped.

    Args:
        records: Rows from a tiering table (mappings keyed by column name).
        sku_prefix: Literal prefix to strip from the SKU.

    Returns:
        One ProductSalesRow per usable record, in input order.
    """
    out: list[ProductSalesRow] = []
    for record in records:
        raw_sku = str(record.get("sku") or "").strip()
        product_key = strip_prefix(raw_sku, sku_prefix)
        title = str(record.get("product_title") or "").strip()

        qty = _to_float(record.get("three_weeks_units"))
        if not math.isfinite(qty):
            logger.debug("Skipping tiering row %r with units %r", raw_sku, qty)
            continue
        units = int(round(qty))
        revenue = _to_float(record.get("revenue_gross"))
        revenue = revenue if math.isfinite(revenue) else 0.0
        share = _to_float(record.get("participation_pct"))
        rank = _to_float(record.get("rank"))

        row = ProductSalesRow(
            product_id=product_key or raw_sku or title or "UNKNOWN",
            name=title or product_key or raw_sku,
            qty30=units if _SUFFIX_30_RE.search(product_key) else 0,
            qty100=units if _SUFFIX_100_RE.search(product_key) else 0,
            revenue=revenue,
            total_sales=revenue,
            share_pct=share if math.isfinite(share) else None,
            tier=str(record["tier"]) if record.get("tier") else None,
            rank=int(rank) if math.isfinite(rank) else None,
        )
        if row.qty30 > 0 or row.qty100 > 0:
            out.append(row)
    return out
