"""Builders for order fixtures used across the test suite."""

from __future__ import annotations

import pandas as pd

from tiers_core.sales.models import (
    LineItem,
    OrderRecord,
    ProductSalesRow,
    Refund,
    RefundLineItem,
    Variant,
)

POS_APP = "Point of Sale"
ONLINE_APP = "Online Store"


def variant(
    product: str = "p1",
    size: str = "100",
    *,
    sku: str | None = None,
    variant_id: str | None = None,
    title: str | None = None,
    name: str | None = None,
) -> Variant:
    """Variant whose SKU and title classify into ``size`` unless overridden."""
    return Variant(
        id=variant_id if variant_id is not None else f"v-{product}-{size}",
        sku=sku if sku is not None else f"{product.upper()}-{size}",
        title=title if title is not None else f"{size} ml",
        product_id=product,
        product_name=name if name is not None else product.title(),
    )


def line(v: Variant | None, quantity: float = 1, amount: float = 100.0, tax: float = 0.0) -> LineItem:
    return LineItem(quantity=quantity, amount=amount, tax_amount=tax, variant=v)


def refund(v: Variant | None, quantity: float = 1, created_at: str | None = "2025-01-12T10:00:00Z") -> Refund:
    created = pd.Timestamp(created_at) if created_at else None
    return Refund(created_at=created, line_items=(RefundLineItem(quantity=quantity, variant=v),))


def order(
    order_id: str,
    *lines: LineItem,
    app: str = ONLINE_APP,
    at: str = "2025-01-10T12:00:00Z",
    taxes_included: bool = False,
    refunds: tuple[Refund, ...] = (),
) -> OrderRecord:
    ts = pd.Timestamp(at)
    return OrderRecord(
        id=order_id,
        created_at=ts,
        processed_at=ts,
        taxes_included=taxes_included,
        app_name=app,
        line_items=tuple(lines),
        refunds=tuple(refunds),
    )


def share_row(product_id: str, share: float | None, **kwargs) -> ProductSalesRow:
    return ProductSalesRow(product_id=product_id, name=product_id.upper(), share_pct=share, **kwargs)
