"""Command-line interface for tiers-core.

Subcommands:
    summary  Build a ranked tier summary for a window.
    sku      Total the sales of one exact SKU, per attribution app.

Orders are read from a JSON file (``--orders``) holding Shopify order nodes,
or fetched from the Shopify Admin API when ``--orders`` is omitted
(SHOPIFY_STORE_DOMAIN / SHOPIFY_ADMIN_TOKEN must be set).

Examples:
    $ tiers-core summary --orders orders.json --days 35 --channel POS
    $ tiers-core summary --orders orders.json --from 2025-01-01 --to 2025-01-31 --tiers SS,S
    $ tiers-core sku --orders orders.json --sku EDP-ROSE-100 --days 7
"""

from __future__ import annotations

import argparse
import json
import logging
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pandas as pd

from tiers_core.config import AccountingPolicy, SourceSettings, TiersConfig
from tiers_core.exceptions import DataQualityError, TiersAPIError
from tiers_core.sales.aggregate import summarize_sku
from tiers_core.sales.extract import ShopifyOrdersClient
from tiers_core.sales.models import OrderRecord, SalesWindow
from tiers_core.sales.transform import parse_orders
from tiers_core.summary.api import OrderSalesSource, SummaryRequest, build_summary
from tiers_core.summary.windows import trailing_window, window_ending_on
from tiers_core.tiers.store import TiersConfigStore

logger = logging.getLogger(__name__)

OrderFetcher = Callable[[SalesWindow, AccountingPolicy], Sequence[OrderRecord]]


def load_order_nodes(path: Path) -> list[dict[str, Any]]:
    """Load Shopify order nodes from a JSON file.

    Accepts a list of nodes, ``{"orders": [...]}``, or a raw GraphQL
    response (``{"data": {"orders": {"edges": [...]}}}``).
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("data", data)
    if isinstance(data, dict):
        data = data.get("orders", data)
        if isinstance(data, dict):
            data = [edge.get("node") or {} for edge in data.get("edges") or []]
    if not isinstance(data, list):
        raise DataQualityError(f"Unrecognized orders file layout: {path}")
    return data


def file_fetcher(orders: Sequence[OrderRecord]) -> OrderFetcher:
    """Select in-window orders from a preloaded list by the policy's time field."""

    def fetch(window: SalesWindow, policy: AccountingPolicy) -> list[OrderRecord]:
        return [o for o in orders if window.contains(getattr(o, policy.time_field))]

    return fetch


def _resolve_window(args: argparse.Namespace, config: TiersConfig, tz: Any) -> SalesWindow:
    if args.date_from or args.date_to:
        if not (args.date_from and args.date_to):
            raise ValueError("--from and --to must be given together")
        first = pd.Timestamp(args.date_from)
        last = pd.Timestamp(args.date_to)
        days = (last.normalize() - first.normalize()).days + 1
        return window_ending_on(last.date(), days, tz)
    days = args.days or config.sales_window_days
    return trailing_window(days, config.use_completed_days, tz)


def _policy(args: argparse.Namespace) -> AccountingPolicy:
    policy = AccountingPolicy.from_env()
    return AccountingPolicy(
        net_of_returns=args.net_of_returns or policy.net_of_returns,
        by_refund_date=args.by_refund_date or policy.by_refund_date,
        time_field=args.time_field or policy.time_field,
        extra_query=policy.extra_query,
        sku_prefix=policy.sku_prefix,
    )


def _fetcher(args: argparse.Namespace) -> OrderFetcher:
    if args.orders:
        orders = parse_orders(load_order_nodes(args.orders))
        logger.info("Loaded %d orders from %s", len(orders), args.orders)
        return file_fetcher(orders)
    return ShopifyOrdersClient.from_env().fetch_orders


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--orders", type=Path, help="JSON file with Shopify order nodes.")
    parser.add_argument("--from", dest="date_from", help="First day (YYYY-MM-DD).")
    parser.add_argument("--to", dest="date_to", help="Last day, inclusive (YYYY-MM-DD).")
    parser.add_argument("--days", type=int, help="Trailing window length in days.")
    parser.add_argument("--channel", default="TOTAL", help="TOTAL, POS or ONLINE.")
    parser.add_argument(
        "--time-field", choices=("created_at", "processed_at"), help="Order timestamp to window on."
    )
    parser.add_argument("--net-of-returns", action="store_true", help="Subtract refunds.")
    parser.add_argument(
        "--by-refund-date",
        action="store_true",
        help="Only net refunds created inside the window.",
    )
    parser.add_argument(
        "--config", type=Path, default=Path("config.json"), help="Tiers config JSON file."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tiers-core", description="Sales aggregation and product tiering."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    summary = sub.add_parser("summary", help="Ranked tier summary for a window.")
    _add_common(summary)
    summary.add_argument("--tiers", default="", help="Comma-separated tiers to keep, e.g. SS,S.")
    summary.add_argument("--search", default="", help="Product name substring.")
    summary.add_argument("--page", type=int, default=1)
    summary.add_argument("--page-size", type=int, default=50)
    summary.add_argument(
        "--delta-base",
        choices=("anchor_start", "anchor_end", "month"),
        help="How the previous window is anchored.",
    )
    summary.add_argument("--lite", action="store_true", help="Skip the previous window.")

    sku = sub.add_parser("sku", help="Sales of one SKU by attribution app.")
    _add_common(sku)
    sku.add_argument("--sku", required=True, help="Exact SKU to total.")

    return parser.parse_args(argv)


def run_summary(args: argparse.Namespace, settings: SourceSettings) -> None:
    config = TiersConfigStore(args.config).read()
    policy = _policy(args)
    window = _resolve_window(args, config, settings.tz)
    source = OrderSalesSource(
        _fetcher(args), policy, settings.size_classifier(), settings.pos_app_names
    )
    tiers = [t for t in args.tiers.split(",") if t.strip()] or None
    request = SummaryRequest(
        window=window,
        channel=args.channel,
        tiers=tiers,
        search=args.search,
        page=args.page,
        page_size=args.page_size,
        delta_base=args.delta_base or settings.delta_base_policy,
        include_previous=not args.lite,
    )
    result = build_summary(source, config, request)

    start, end = window.to_iso()
    print(f"Window      : {start} .. {end}")
    if result.previous_window is not None:
        prev_start, prev_end = result.previous_window.to_iso()
        print(f"Previous    : {prev_start} .. {prev_end}")
    print(f"Channel     : {request.channel.value}")
    print(f"Config      : v{result.config_version}")
    print(f"Rows        : {len(result.rows)} of {result.total} (page {result.page})\n")
    if result.rows.empty:
        print("No products.")
    else:
        print(result.rows.to_string(index=False))


def run_sku(args: argparse.Namespace, settings: SourceSettings) -> None:
    config = TiersConfigStore(args.config).read()
    policy = _policy(args)
    window = _resolve_window(args, config, settings.tz)
    orders = _fetcher(args)(window, policy)
    summary = summarize_sku(orders, args.sku, args.channel, pos_app_names=settings.pos_app_names)

    print(f"SKU         : {summary.sku}")
    print(f"Units       : {summary.qty}")
    print(f"Net sales   : {summary.net_sales:.2f}")
    print(f"Total sales : {summary.total_sales:.2f}")
    for app, totals in sorted(summary.by_app.items()):
        print(f"  {app:<20} {totals.qty:>6} {totals.net_sales:>12.2f} {totals.total_sales:>12.2f}")


def main(argv: list[str] | None = None) -> None:
    """Entry point for the ``tiers-core`` command.

    Exits with code 1 on configuration, extraction or argument errors.
    """
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    settings = SourceSettings.from_env()
    try:
        if args.command == "summary":
            run_summary(args, settings)
        else:
            run_sku(args, settings)
    except (TiersAPIError, ValueError, OSError) as e:
        logger.error("%s", e)
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
