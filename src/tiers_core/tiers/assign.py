"""Tier assignment engine.

Turns per-product sales rows into merchandising tiers:

- SS / S / A: share of total at or above the configured thresholds.
- C: everything below the A threshold.
- B: C products promoted, best share first, until SS+S+A+B reaches
  ``tiers_top_count``.
- T: products launched fewer than ``temp_tier_weeks`` weeks ago. T rows are
  never promoted or demoted.

Examples:
    >>> rows = [ProductSalesRow("p1", "Rose", qty100=8), ProductSalesRow("p2", "Oud", qty100=2)]
    >>> [a.tier for a in assign_tiers(rows, TiersConfig(tiers_top_count=0))]
    ['SS', 'SS']
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import pandas as pd

from tiers_core.config import TiersConfig
from tiers_core.sales.models import ProductSalesRow

logger = logging.getLogger(__name__)

WEEK = pd.Timedelta(weeks=1)


class Tier(str, Enum):
    SS = "SS"
    S = "S"
    A = "A"
    B = "B"
    C = "C"
    T = "T"


# Best first; T sits outside the threshold ordering.
TIER_ORDER = (Tier.SS, Tier.S, Tier.A, Tier.B, Tier.C)

REASON_TEMPORARY = "T<tempWeeks"
REASON_SS = "SS>=threshold"
REASON_S = "S>=threshold"
REASON_A = "A>=threshold"
REASON_C = "C else"
REASON_FILL = "B fill"


@dataclass(frozen=True)
class TierAssignment:
    """Tier of one product.

    Attributes:
        product_id: Product the tier applies to.
        tier: Assigned tier.
        reason: Diagnostic code for the rule that fired.
        share_pct: Share of total the engine used.
    """

    product_id: str
    tier: Tier
    reason: str
    share_pct: float


def classify_share(share: float, config: TiersConfig) -> tuple[Tier, str]:
    """Apply the SS/S/A thresholds to one share.

    Examples:
        >>> classify_share(5.0, TiersConfig())
        (<Tier.S: 'S'>, 'S>=threshold')
    """
    if share >= config.tier_ss_pct:
        return Tier.SS, REASON_SS
    if share >= config.tier_s_pct:
        return Tier.S, REASON_S
    if share >= config.tier_a_pct:
        return Tier.A, REASON_A
    return Tier.C, REASON_C


def _quantity_shares(rows: Sequence[ProductSalesRow]) -> list[float]:
    denominator = sum(row.total_qty for row in rows) or 1
    shares = []
    for row in rows:
        share = row.share_pct
        if share is None:
            share = row.total_qty * 100 / denominator
        elif not math.isfinite(share):
            logger.debug("Product %s has share %r; using 0", row.product_id, share)
            share = 0.0
        shares.append(float(share))
    return shares


def _is_temporary(launch_date: datetime | None, now: pd.Timestamp, weeks: float) -> bool:
    if launch_date is None:
        return False
    launched = pd.Timestamp(launch_date)
    if pd.isna(launched):
        return False
    if launched.tzinfo is None:
        launched = launched.tz_localize("UTC")
    return (now - launched) / WEEK < weeks


def assign_tiers(
    rows: Sequence[ProductSalesRow],
    config: TiersConfig,
    *,
    now: datetime | None = None,
) -> list[TierAssignment]:
    """Assign a tier to every product.

    Rows without ``share_pct`` get a quantity share
    (``total_qty * 100 / sum(total_qty)``, denominator floored to 1).

    Args:
        rows: Per-product sales rows with unique product ids.
        config: Validated tier configuration.
        now: Reference time for the T override. Defaults to the current time.

    Returns:
        One assignment per row, sorted by share descending (stable for ties).

    Raises:
        ValueError: If ``rows`` or ``config`` is None.
    """
    if rows is None:
        raise ValueError("rows must be a sequence of ProductSalesRow, got None")
    if config is None:
        raise ValueError("config must be a TiersConfig, got None")
    reference = pd.Timestamp(now) if now is not None else pd.Timestamp.now(tz="UTC")
    if reference.tzinfo is None:
        reference = reference.tz_localize("UTC")

    shares = _quantity_shares(rows)
    ordered = sorted(zip(rows, shares), key=lambda pair: pair[1], reverse=True)

    assignments: list[TierAssignment] = []
    for row, share in ordered:
        if _is_temporary(row.launch_date, reference, config.temp_tier_weeks):
            tier, reason = Tier.T, REASON_TEMPORARY
        else:
            tier, reason = classify_share(share, config)
        assignments.append(TierAssignment(row.product_id, tier, reason, share))

    counts = tier_counts(assignments)
    current_top = counts[Tier.SS] + counts[Tier.S] + counts[Tier.A]
    to_fill = max(0, config.tiers_top_count - current_top)
    if to_fill:
        # assignments is already share-descending, so C rows come out in fill order.
        candidates = [i for i, a in enumerate(assignments) if a.tier is Tier.C][:to_fill]
        for i in candidates:
            a = assignments[i]
            assignments[i] = TierAssignment(a.product_id, Tier.B, REASON_FILL, a.share_pct)

    logger.info(
        "Assigned tiers to %d products (%s)",
        len(assignments),
        ", ".join(f"{t.value}={n}" for t, n in tier_counts(assignments).items() if n),
    )
    return assignments


def tier_counts(assignments: Sequence[TierAssignment]) -> dict[Tier, int]:
    """Count assignments per tier; every tier is present, zeros included."""
    counter = Counter(a.tier for a in assignments)
    return {tier: counter.get(tier, 0) for tier in Tier}
