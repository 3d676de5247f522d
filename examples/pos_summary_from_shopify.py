"""Example: POS tier summary from the Shopify Admin API

This example builds the ranked tier summary for the last completed
salesWindowDays, netting returns, and prints the top products with their
share change against the previous window.

Prerequisites:
- Set SHOPIFY_STORE_DOMAIN and SHOPIFY_ADMIN_TOKEN environment variables
- Optionally set TIERS_TZ (e.g. "America/Mexico_City") for day boundaries
- Optionally create config.json (defaults are used when missing)
"""

from tiers_core import AccountingPolicy, SourceSettings, TiersConfigStore
from tiers_core.sales import ShopifyOrdersClient
from tiers_core.summary import OrderSalesSource, SummaryRequest, build_summary, trailing_window

settings = SourceSettings.from_env()
config = TiersConfigStore("config.json").read()

client = ShopifyOrdersClient.from_env()
policy = AccountingPolicy(net_of_returns=True)
source = OrderSalesSource(
    client.fetch_orders, policy, settings.size_classifier(), settings.pos_app_names
)

window = trailing_window(config.sales_window_days, completed_only=True, tz=settings.tz)
request = SummaryRequest(window=window, channel="POS", page_size=20)

print(f"Building POS summary for {window.start:%Y-%m-%d} to {window.end:%Y-%m-%d}...")
result = build_summary(source, config, request)

print(f"{result.total} products (config v{result.config_version})")
print(result.rows[["rank", "name", "tier", "share_pct", "delta_share_pct"]].to_string(index=False))
