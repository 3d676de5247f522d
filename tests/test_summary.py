"""Tests for the summary orchestrator and recalculation."""

import pandas as pd
import pytest

from tests.helpers import POS_APP, line, order, variant
from tiers_core.config import AccountingPolicy, TiersConfig
from tiers_core.exceptions import DataQualityError
from tiers_core.sales.models import Channel, ProductSalesRow, SalesWindow
from tiers_core.sales.transform import rows_from_tiering_records
from tiers_core.summary.api import (
    SUMMARY_COLUMNS,
    OrderSalesSource,
    SummaryRequest,
    build_summary,
    normalize_text,
    recalculate,
)

CURRENT = SalesWindow("2025-01-08", "2025-01-15")
CONFIG = TiersConfig(tier_ss_pct=40, tier_s_pct=25, tier_a_pct=10, tiers_top_count=0, config_version=7)


class FakeSource:
    """Returns fixed rows per window start and records every call."""

    def __init__(self, current, previous=(), by_channel=None):
        self.current = list(current)
        self.previous = list(previous)
        self.by_channel = by_channel or {}
        self.calls = []

    def __call__(self, channel, window):
        self.calls.append((channel, window))
        if channel in self.by_channel:
            return list(self.by_channel[channel])
        return list(self.current if window.start == CURRENT.start else self.previous)


def row(pid, name, revenue, **kwargs):
    return ProductSalesRow(product_id=pid, name=name, revenue=revenue, total_sales=revenue, **kwargs)


def tiering_record(sku, pct, units, revenue):
    return {
        "sku": sku,
        "product_title": sku.title(),
        "participation_pct": pct,
        "three_weeks_units": units,
        "revenue_gross": revenue,
    }


@pytest.fixture
def source():
    return FakeSource(
        current=[
            row("c", "Cèdre Blanc", 200.0, qty30=2),
            row("a", "Ambre", 500.0, qty100=5),
            row("b", "Élan Vital", 300.0, qty100=3),
        ],
        previous=[row("a", "Ambre", 400.0), row("b", "Élan Vital", 600.0)],
    )


class TestBuildSummary:
    def test_ranked_rows_with_deltas(self, source) -> None:
        result = build_summary(source, CONFIG, SummaryRequest(window=CURRENT))
        df = result.rows
        assert list(df.columns) == SUMMARY_COLUMNS
        assert df["product_id"].tolist() == ["a", "b", "c"]
        assert df["rank"].tolist() == [1, 2, 3]
        assert df["tier"].tolist() == ["SS", "S", "A"]
        assert df["share_pct"].tolist() == pytest.approx([50.0, 30.0, 20.0])
        assert df["delta_share_pct"].tolist() == pytest.approx([10.0, -30.0, 20.0])

    def test_result_metadata(self, source) -> None:
        result = build_summary(source, CONFIG, SummaryRequest(window=CURRENT, channel="pos"))
        assert result.total == 3
        assert result.page == 1
        assert result.page_size == 50
        assert result.config_version == 7
        assert result.window == CURRENT
        assert result.previous_window == SalesWindow("2025-01-01", "2025-01-08")
        assert [c for c, _ in source.calls] == [Channel.POS, Channel.POS]

    def test_month_delta_base(self, source) -> None:
        result = build_summary(source, CONFIG, SummaryRequest(window=CURRENT, delta_base="month"))
        assert result.previous_window == SalesWindow("2024-12-01", "2025-01-01")

    def test_tier_filter(self, source) -> None:
        result = build_summary(source, CONFIG, SummaryRequest(window=CURRENT, tiers={"s", "A"}))
        assert result.rows["product_id"].tolist() == ["b", "c"]
        assert result.rows["rank"].tolist() == [2, 3]
        assert result.total == 2

    def test_search_ignores_case_and_accents(self, source) -> None:
        result = build_summary(source, CONFIG, SummaryRequest(window=CURRENT, search="ELAN"))
        assert result.rows["name"].tolist() == ["Élan Vital"]
        result = build_summary(source, CONFIG, SummaryRequest(window=CURRENT, search="cedre"))
        assert result.rows["product_id"].tolist() == ["c"]

    def test_pagination(self, source) -> None:
        result = build_summary(source, CONFIG, SummaryRequest(window=CURRENT, page=2, page_size=2))
        assert result.rows["product_id"].tolist() == ["c"]
        assert result.total == 3

    def test_page_and_size_are_clamped(self, source) -> None:
        result = build_summary(source, CONFIG, SummaryRequest(window=CURRENT, page=0, page_size=-4))
        assert (result.page, result.page_size) == (1, 1)
        assert result.rows["product_id"].tolist() == ["a"]

    def test_page_past_end_is_empty(self, source) -> None:
        result = build_summary(source, CONFIG, SummaryRequest(window=CURRENT, page=9))
        assert result.rows.empty
        assert result.total == 3

    def test_lite_mode(self, source) -> None:
        result = build_summary(source, CONFIG, SummaryRequest(window=CURRENT, include_previous=False))
        assert result.previous_window is None
        assert result.rows["delta_share_pct"].tolist() == [0.0, 0.0, 0.0]
        assert len(source.calls) == 1

    def test_channel_breakdown_on_total(self) -> None:
        source = FakeSource(
            current=[row("a", "Ambre", 100.0)],
            by_channel={
                Channel.POS: [row("a", "Ambre", 25.0, qty100=1)],
                Channel.ONLINE: [row("a", "Ambre", 75.0, qty100=3)],
            },
        )
        request = SummaryRequest(window=CURRENT, include_channels=True, include_previous=False)
        result = build_summary(source, CONFIG, request)
        assert set(result.channels) == {"ONLINE", "POS"}
        assert result.channels["POS"].loc[0, "revenue"] == 25.0
        assert result.channels["ONLINE"].loc[0, "share_pct"] == 100.0

    def test_no_channel_breakdown_for_single_channel(self, source) -> None:
        request = SummaryRequest(window=CURRENT, channel=Channel.POS, include_channels=True)
        assert build_summary(source, CONFIG, request).channels == {}

    def test_empty_source(self) -> None:
        result = build_summary(FakeSource([]), CONFIG, SummaryRequest(window=CURRENT, search="x"))
        assert result.rows.empty
        assert list(result.rows.columns) == SUMMARY_COLUMNS
        assert result.total == 0

    def test_new_product_delta_is_full_share(self) -> None:
        source = FakeSource(current=[row("a", "Ambre", 10.0)], previous=[])
        result = build_summary(source, CONFIG, SummaryRequest(window=CURRENT))
        assert result.rows.loc[0, "delta_share_pct"] == 100.0

    def test_invalid_delta_base(self) -> None:
        with pytest.raises(ValueError, match="Invalid delta base"):
            SummaryRequest(window=CURRENT, delta_base="week")

    def test_invalid_channel(self) -> None:
        with pytest.raises(ValueError, match="Invalid channel"):
            SummaryRequest(window=CURRENT, channel="WHOLESALE")

    def test_none_source(self) -> None:
        with pytest.raises(ValueError):
            build_summary(None, CONFIG, SummaryRequest(window=CURRENT))

    def test_supplied_shares_are_replaced_by_revenue_shares(self) -> None:
        rows = rows_from_tiering_records(
            [
                tiering_record("OUD-30", pct=60, units=1, revenue=100),
                tiering_record("ROSE-100", pct=10, units=9, revenue=900),
                tiering_record("CANDLE", pct=30, units=5, revenue=500),
            ]
        )
        request = SummaryRequest(window=CURRENT, include_previous=False)
        result = build_summary(lambda channel, window: rows, CONFIG, request)
        assert result.rows["product_id"].tolist() == ["ROSE-100", "OUD-30"]
        assert result.rows["share_pct"].tolist() == pytest.approx([90.0, 10.0])
        assert result.rows["share_pct"].sum() == pytest.approx(100.0)

    def test_source_returning_none(self) -> None:
        with pytest.raises(DataQualityError, match="returned None"):
            build_summary(lambda channel, window: None, CONFIG, SummaryRequest(window=CURRENT))

    def test_duplicate_product_ids(self) -> None:
        source = FakeSource([row("p1", "Rose", 10.0), row("p1", "Rose", 5.0)])
        with pytest.raises(DataQualityError, match="repeat a product id"):
            build_summary(source, CONFIG, SummaryRequest(window=CURRENT, include_previous=False))


def test_normalize_text() -> None:
    assert normalize_text("Éclat d'Été") == "eclat d'ete"
    assert normalize_text(None) == ""


class TestOrderSalesSource:
    def test_aggregates_fetched_orders(self) -> None:
        v = variant("p1", "100")
        orders = [order("pos", line(v, 2, 200.0), app=POS_APP), order("web", line(v, 1, 100.0))]
        seen = []

        def fetch(window, policy):
            seen.append((window, policy))
            return orders

        policy = AccountingPolicy(time_field="created_at")
        source = OrderSalesSource(fetch, policy)
        (result,) = source(Channel.POS, CURRENT)
        assert result.qty100 == 2
        assert seen == [(CURRENT, policy)]

    def test_end_to_end_summary(self) -> None:
        rose, oud = variant("rose", "100"), variant("oud", "30")
        orders = [order("o1", line(rose, 3, 300.0), line(oud, 1, 100.0))]
        source = OrderSalesSource(lambda window, policy: orders if window == CURRENT else [])
        result = build_summary(source, TiersConfig(), SummaryRequest(window=CURRENT))
        assert result.rows["product_id"].tolist() == ["rose", "oud"]
        assert result.rows["tier"].tolist() == ["SS", "SS"]
        assert result.rows["delta_share_pct"].tolist() == pytest.approx([75.0, 25.0])


class TestRecalculate:
    def test_uses_quantity_shares(self) -> None:
        source = FakeSource(
            current=[
                row("b", "B", 900.0, qty30=4, share_pct=90.0),
                row("a", "A", 100.0, qty100=6, share_pct=10.0),
            ]
        )
        result = recalculate(source, TiersConfig(tiers_top_count=0), window=CURRENT)
        assert [a.product_id for a in result] == ["a", "b"]
        assert [a.share_pct for a in result] == [60.0, 40.0]

    def test_default_window_is_completed_days(self) -> None:
        source = FakeSource([])
        now = pd.Timestamp("2025-03-10T12:00:00Z")
        recalculate(source, TiersConfig(sales_window_days=35), "POS", now=now)
        ((channel, window),) = source.calls
        assert channel is Channel.POS
        assert window == SalesWindow("2025-02-03", "2025-03-10")
