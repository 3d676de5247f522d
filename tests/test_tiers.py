"""Tests for the tier assignment engine."""

import random

import pandas as pd
import pytest

from tests.helpers import share_row
from tiers_core.config import TiersConfig
from tiers_core.sales.models import ProductSalesRow
from tiers_core.tiers.assign import (
    TIER_ORDER,
    Tier,
    assign_tiers,
    classify_share,
    tier_counts,
)

NOW = pd.Timestamp("2025-06-01T00:00:00Z")


def tiers_of(assignments):
    return [a.tier.value for a in assignments]


class TestScenarios:
    def test_backfill_promotes_best_c(self) -> None:
        config = TiersConfig(tier_ss_pct=20, tier_s_pct=5, tier_a_pct=4, tiers_top_count=3)
        rows = [share_row(f"p{i}", s) for i, s in enumerate([25, 10, 3, 1, 0.5])]
        result = assign_tiers(rows, config, now=NOW)
        assert tiers_of(result) == ["SS", "S", "B", "C", "C"]
        assert result[2].reason == "B fill"
        assert result[2].product_id == "p2"

    def test_no_backfill_when_quota_met(self) -> None:
        config = TiersConfig(tier_ss_pct=20, tier_s_pct=5, tier_a_pct=1.5, tiers_top_count=3)
        rows = [share_row(f"p{i}", s) for i, s in enumerate([25, 10, 3, 1, 0.5])]
        assert tiers_of(assign_tiers(rows, config, now=NOW)) == ["SS", "S", "A", "C", "C"]

    def test_reason_codes(self) -> None:
        config = TiersConfig(tiers_top_count=0)
        rows = [share_row("a", 30), share_row("b", 6), share_row("c", 2), share_row("d", 1)]
        reasons = [a.reason for a in assign_tiers(rows, config, now=NOW)]
        assert reasons == ["SS>=threshold", "S>=threshold", "A>=threshold", "C else"]

    def test_sorted_by_share_descending(self) -> None:
        rows = [share_row("low", 1), share_row("high", 50), share_row("mid", 10)]
        result = assign_tiers(rows, TiersConfig(), now=NOW)
        assert [a.product_id for a in result] == ["high", "mid", "low"]

    def test_ties_keep_input_order(self) -> None:
        rows = [share_row(pid, 5) for pid in ["x", "a", "m", "b"]]
        result = assign_tiers(rows, TiersConfig(), now=NOW)
        assert [a.product_id for a in result] == ["x", "a", "m", "b"]

    def test_quantity_shares_when_missing(self) -> None:
        rows = [
            ProductSalesRow("a", "A", qty30=1, qty100=2),
            ProductSalesRow("b", "B", qty100=1),
        ]
        result = assign_tiers(rows, TiersConfig(), now=NOW)
        assert [a.share_pct for a in result] == [75.0, 25.0]

    def test_all_zero_quantities(self) -> None:
        rows = [ProductSalesRow("a", "A"), ProductSalesRow("b", "B")]
        result = assign_tiers(rows, TiersConfig(tiers_top_count=1), now=NOW)
        assert [a.share_pct for a in result] == [0.0, 0.0]
        assert tiers_of(result) == ["B", "C"]

    def test_one_assignment_per_product(self) -> None:
        rows = [share_row(f"p{i}", float(i)) for i in range(40)]
        result = assign_tiers(rows, TiersConfig(), now=NOW)
        assert sorted(a.product_id for a in result) == sorted(r.product_id for r in rows)

    def test_empty(self) -> None:
        assert assign_tiers([], TiersConfig(), now=NOW) == []

    def test_none_rows(self) -> None:
        with pytest.raises(ValueError, match="rows must be"):
            assign_tiers(None, TiersConfig())


class TestTemporaryTier:
    def test_recent_launch_is_t(self) -> None:
        rows = [share_row("new", 50, launch_date=NOW - pd.Timedelta(weeks=3))]
        (a,) = assign_tiers(rows, TiersConfig(), now=NOW)
        assert a.tier is Tier.T
        assert a.reason == "T<tempWeeks"

    def test_old_launch_uses_thresholds(self) -> None:
        rows = [share_row("old", 50, launch_date=NOW - pd.Timedelta(weeks=12))]
        (a,) = assign_tiers(rows, TiersConfig(temp_tier_weeks=12), now=NOW)
        assert a.tier is Tier.SS

    def test_future_launch_is_t(self) -> None:
        rows = [share_row("soon", 0, launch_date=NOW + pd.Timedelta(days=10))]
        (a,) = assign_tiers(rows, TiersConfig(), now=NOW)
        assert a.tier is Tier.T

    def test_naive_launch_date_is_utc(self) -> None:
        rows = [share_row("new", 1, launch_date=pd.Timestamp("2025-05-20"))]
        (a,) = assign_tiers(rows, TiersConfig(), now=NOW)
        assert a.tier is Tier.T

    def test_t_never_backfilled(self) -> None:
        rows = [
            share_row("new", 0.1, launch_date=NOW - pd.Timedelta(days=1)),
            share_row("old", 0.2),
        ]
        result = assign_tiers(rows, TiersConfig(tiers_top_count=10), now=NOW)
        assert {a.product_id: a.tier for a in result} == {"old": Tier.B, "new": Tier.T}


class TestProperties:
    @pytest.fixture
    def random_rows(self):
        rng = random.Random(7)
        rows = []
        for i in range(200):
            launch = NOW - pd.Timedelta(weeks=rng.choice([1, 5, 30, 100])) if i % 9 == 0 else None
            rows.append(share_row(f"p{i}", round(rng.uniform(0, 30), 2), launch_date=launch))
        return rows

    def test_threshold_monotonicity(self) -> None:
        config = TiersConfig()
        rank = {tier: i for i, tier in enumerate(TIER_ORDER)}
        shares = sorted({0.0, 0.5, 1.49, 1.5, 3.0, 4.99, 5.0, 19.99, 20.0, 99.0})
        tiers = [classify_share(s, config)[0] for s in shares]
        for lower, higher in zip(tiers, tiers[1:]):
            assert rank[higher] <= rank[lower]

    @pytest.mark.parametrize("top_count", [0, 5, 30, 150, 500])
    def test_backfill_bound(self, random_rows, top_count: int) -> None:
        result = assign_tiers(random_rows, TiersConfig(tiers_top_count=top_count), now=NOW)
        counts = tier_counts(result)
        top = counts[Tier.SS] + counts[Tier.S] + counts[Tier.A]
        assert top + counts[Tier.B] >= min(top_count, top + counts[Tier.B] + counts[Tier.C])
        assert counts[Tier.B] <= max(0, top_count - top)

    def test_t_immunity(self, random_rows) -> None:
        before = assign_tiers(random_rows, TiersConfig(tiers_top_count=0), now=NOW)
        after = assign_tiers(random_rows, TiersConfig(tiers_top_count=500), now=NOW)
        t_before = {a.product_id for a in before if a.tier is Tier.T}
        t_after = {a.product_id for a in after if a.tier is Tier.T}
        assert t_before == t_after
        assert t_before

    def test_deterministic(self, random_rows) -> None:
        config = TiersConfig()
        assert assign_tiers(random_rows, config, now=NOW) == assign_tiers(
            random_rows, config, now=NOW
        )


def test_tier_counts_includes_zeros() -> None:
    counts = tier_counts(assign_tiers([share_row("a", 50)], TiersConfig(tiers_top_count=0), now=NOW))
    assert counts[Tier.SS] == 1
    assert counts[Tier.T] == 0
    assert set(counts) == set(Tier)
