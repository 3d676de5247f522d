"""Tiers Core - sales aggregation and product tiering.

This package turns storefront orders (or pre-aggregated tiering rows) into
per-product sales and assigns each product a merchandising tier from its
share of total sales.

Module Structure:
    tiers_core.sales: Order model, extraction (Shopify, SQL) and aggregation
    tiers_core.tiers: Tier assignment engine and config persistence
    tiers_core.summary: Windows, ranked summaries and share deltas
    tiers_core.sizes: 30 / 100 size classification
    tiers_core.config: TiersConfig, AccountingPolicy, SourceSettings

Quick Start:
    >>> from tiers_core import AccountingPolicy, TiersConfigStore
    >>> from tiers_core.sales import ShopifyOrdersClient
    >>> from tiers_core.summary import OrderSalesSource, SummaryRequest, build_summary, trailing_window
    >>>
    >>> config = TiersConfigStore("config.json").read()
    >>> client = ShopifyOrdersClient.from_env()
    >>> source = OrderSalesSource(client.fetch_orders, AccountingPolicy(net_of_returns=True))
    >>>
    >>> request = SummaryRequest(window=trailing_window(config.sales_window_days, True), channel="POS")
    >>> result = build_summary(source, config, request)
    >>> print(result.rows.head())

Grain Reference:
    - OrderRecord: one storefront order with its line items and refunds
    - ProductSalesRow: one product x window x channel
    - TierAssignment: one product x window x channel
"""

__version__ = "0.1.0"

from tiers_core.config import AccountingPolicy, SourceSettings, TiersConfig
from tiers_core.exceptions import (
    ConfigError,
    DataQualityError,
    ETLError,
    ExtractionError,
    TiersAPIError,
)
from tiers_core.tiers.store import TiersConfigStore

__all__ = [
    "AccountingPolicy",
    "ConfigError",
    "DataQualityError",
    "ETLError",
    "ExtractionError",
    "SourceSettings",
    "TiersAPIError",
    "TiersConfig",
    "TiersConfigStore",
    "__version__",
]
