"""Sales domain module.

Turns storefront data into per-product sales rows:

- **OrderRecord** (models): orders with line items and refunds, parsed from
  Shopify Admin GraphQL nodes (transform) fetched by ShopifyOrdersClient
  (extract).
- **ProductSalesRow** (aggregate): one row per product with 30/100 unit
  buckets, net revenue and gross revenue. Pre-aggregated tiering tables map
  straight into this grain (warehouse).

Example:
    >>> from tiers_core.sales import Channel, aggregate_sales, parse_orders
    >>>
    >>> orders = parse_orders(nodes)
    >>> rows = aggregate_sales(orders, Channel.POS)
"""

from tiers_core.sales.aggregate import (
    aggregate_sales,
    attach_shares,
    rows_to_frame,
    summarize_sku,
)
from tiers_core.sales.extract import ShopifyOrdersClient
from tiers_core.sales.models import (
    Channel,
    LineItem,
    OrderRecord,
    ProductSalesRow,
    Refund,
    RefundLineItem,
    SalesWindow,
    Variant,
)
from tiers_core.sales.transform import parse_orders, rows_from_tiering_records
from tiers_core.sales.warehouse import TieringTableSource

__all__ = [
    "Channel",
    "LineItem",
    "OrderRecord",
    "ProductSalesRow",
    "Refund",
    "RefundLineItem",
    "SalesWindow",
    "ShopifyOrdersClient",
    "TieringTableSource",
    "Variant",
    "aggregate_sales",
    "attach_shares",
    "parse_orders",
    "rows_from_tiering_records",
    "rows_to_frame",
    "summarize_sku",
]
