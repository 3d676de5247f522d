"""Tier assignment and configuration persistence."""

from tiers_core.tiers.assign import Tier, TierAssignment, assign_tiers, classify_share, tier_counts
from tiers_core.tiers.store import TiersConfigStore

__all__ = [
    "Tier",
    "TierAssignment",
    "TiersConfigStore",
    "assign_tiers",
    "classify_share",
    "tier_counts",
]
