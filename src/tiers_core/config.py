"""Configuration for tiers-core.

This module holds the three configuration objects the pipeline consumes:

- ``TiersConfig``: tier thresholds and window parameters (persisted as JSON
  by ``tiers_core.tiers.store``).
- ``AccountingPolicy``: how orders, taxes and refunds are turned into sales.
- ``SourceSettings``: size-detection patterns, POS app names and timezone.

None of the engine functions resolve defaults on their own; callers build
these objects once (``from_dict`` / ``from_env``) and pass them in.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from datetime import timedelta, timezone, tzinfo
from typing import Any, Mapping

from tiers_core.sizes import SizeClassifier

logger = logging.getLogger(__name__)

TIME_FIELDS = ("created_at", "processed_at")
DELTA_BASE_POLICIES = ("anchor_start", "anchor_end")
DEFAULT_EXTRA_QUERY = "financial_status:paid -status:cancelled"
DEFAULT_POS_APP_NAMES = frozenset({"Point of Sale"})

_TRUTHY = {"1", "true", "yes", "on"}

# JSON key -> dataclass attribute
_CONFIG_KEYS = {
    "tierSSPct": "tier_ss_pct",
    "tierSPct": "tier_s_pct",
    "tierAPct": "tier_a_pct",
    "tiersTopCount": "tiers_top_count",
    "tempTierWeeks": "temp_tier_weeks",
    "salesWindowDays": "sales_window_days",
    "useCompletedDays": "use_completed_days",
    "recalcFrequencyDays": "recalc_frequency_days",
    "graceMonthsC": "grace_months_c",
    "configVersion": "config_version",
}

_INT_FIELDS = {
    "tiers_top_count",
    "sales_window_days",
    "recalc_frequency_days",
    "grace_months_c",
    "config_version",
}


def parse_flag(raw: Any, default: bool = False) -> bool:
    """Interpret a JSON or environment value as a boolean.

    Strings are true when they are "1", "true", "yes" or "on" (any case).
    Blank strings and None give ``default``.

    Examples:
        >>> parse_flag("false")
        False
        >>> parse_flag(1)
        True
    """
    if raw is None:
        return default
    if isinstance(raw, str):
        return raw.strip().lower() in _TRUTHY if raw.strip() else default
    if isinstance(raw, (bool, int, float)):
        return bool(raw)
    logger.warning("Invalid flag value %r, falling back to %r", raw, default)
    return default


def env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean environment variable ("1", "true", "yes", "on")."""
    return parse_flag(os.environ.get(name), default)


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


@dataclass(frozen=True)
class TiersConfig:
    """Tier thresholds and window parameters.

    Attributes:
        tier_ss_pct: Minimum share (percent) for tier SS.
        tier_s_pct: Minimum share for tier S.
        tier_a_pct: Minimum share for tier A.
        tiers_top_count: Target minimum count of SS+S+A+B products.
        temp_tier_weeks: Products launched fewer weeks ago get tier T.
        sales_window_days: Length of the default trailing window.
        use_completed_days: Whether the default window ends yesterday.
        recalc_frequency_days: How often callers should recompute tiers.
        grace_months_c: Months a C product is kept before delisting review.
        config_version: Incremented on every save.
    """

    tier_ss_pct: float = 20.0
    tier_s_pct: float = 5.0
    tier_a_pct: float = 1.5
    tiers_top_count: int = 30
    temp_tier_weeks: float = 12.0
    sales_window_days: int = 35
    use_completed_days: bool = False
    recalc_frequency_days: int = 14
    grace_months_c: int = 12
    config_version: int = 1

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any] | None,
        fallback: TiersConfig | None = None,
    ) -> TiersConfig:
        """Build a config from a JSON-style mapping, normalizing bad values.

        Each field is read from its camelCase key (as stored on disk) or its
        snake_case attribute name. Values that are missing, non-numeric,
        non-finite or negative are replaced by the value from ``fallback``
        (the last known good config) or the built-in default. If the three
        thresholds are out of order, all three are taken from the fallback.

        Args:
            data: Raw mapping, e.g. parsed from ``config.json``.
            fallback: Last known good config. Defaults to ``TiersConfig()``.

        Returns:
            A valid, ordered TiersConfig.

        Examples:
            >>> TiersConfig.from_dict({"tierSSPct": 25, "tierAPct": -1}).tier_a_pct
            1.5
        """
        base = fallback or cls()
        data = data or {}
        values: dict[str, Any] = {}

        for json_key, attr in _CONFIG_KEYS.items():
            raw = data.get(json_key, data.get(attr))
            default = getattr(base, attr)
            if attr == "use_completed_days":
                values[attr] = parse_flag(raw, default)
                continue
            if raw is None:
                values[attr] = default
                continue
            if not _is_number(raw) or raw < 0:
                logger.warning(
                    "Invalid value %r for %s, falling back to %r", raw, json_key, default
                )
                values[attr] = default
                continue
            values[attr] = int(raw) if attr in _INT_FIELDS else float(raw)

        if not values["tier_ss_pct"] >= values["tier_s_pct"] >= values["tier_a_pct"]:
            logger.warning(
                "Tier thresholds out of order (SS=%s, S=%s, A=%s); using %s/%s/%s",
                values["tier_ss_pct"],
                values["tier_s_pct"],
                values["tier_a_pct"],
                base.tier_ss_pct,
                base.tier_s_pct,
                base.tier_a_pct,
            )
            values["tier_ss_pct"] = base.tier_ss_pct
            values["tier_s_pct"] = base.tier_s_pct
            values["tier_a_pct"] = base.tier_a_pct

        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the camelCase keys used by the JSON config file."""
        return {json_key: getattr(self, attr) for json_key, attr in _CONFIG_KEYS.items()}


@dataclass(frozen=True)
class AccountingPolicy:
    """How orders, taxes and refunds are turned into product sales.

    Attributes:
        net_of_returns: Subtract refunded units and revenue.
        by_refund_date: Only net refunds whose own timestamp is in the window.
            When False, every refund of an in-window order is netted.
        time_field: Order timestamp used upstream to select the window
            ("created_at" or "processed_at").
        extra_query: Opaque order search filter applied by the source.
        sku_prefix: Literal prefix a SKU must start with. Empty = no filter.
    """

    net_of_returns: bool = False
    by_refund_date: bool = False
    time_field: str = "processed_at"
    extra_query: str = DEFAULT_EXTRA_QUERY
    sku_prefix: str = ""

    def __post_init__(self) -> None:
        if self.time_field not in TIME_FIELDS:
            raise ValueError(
                f"Invalid time_field '{self.time_field}'. Must be one of {TIME_FIELDS}."
            )

    @classmethod
    def from_env(cls) -> AccountingPolicy:
        """Build a policy from TIERS_* environment variables."""
        time_field = os.environ.get("TIERS_ORDER_TIME_FIELD", "processed_at").strip().lower()
        if time_field not in TIME_FIELDS:
            logger.warning("Unknown TIERS_ORDER_TIME_FIELD %r, using processed_at", time_field)
            time_field = "processed_at"
        return cls(
            net_of_returns=env_flag("TIERS_NET_OF_RETURNS"),
            by_refund_date=env_flag("TIERS_NET_RETURNS_BY_REFUND_DATE"),
            time_field=time_field,
            extra_query=os.environ.get("TIERS_ORDER_QUERY_EXTRA", DEFAULT_EXTRA_QUERY),
            sku_prefix=os.environ.get("TIERS_SKU_PREFIX", "").strip(),
        )


@dataclass(frozen=True)
class SourceSettings:
    """Settings shared by the sales sources and the summary windows.

    Attributes:
        size30_pattern: Regex for the 30 bucket (None = built-in default).
        size100_pattern: Regex for the 100 bucket (None = built-in default).
        pos_app_names: Attribution app names that count as POS.
        tz: Timezone used to compute day and month windows.
        delta_base_policy: How the previous window is anchored.
    """

    size30_pattern: str | None = None
    size100_pattern: str | None = None
    pos_app_names: frozenset[str] = field(default_factory=lambda: DEFAULT_POS_APP_NAMES)
    tz: str | tzinfo = "UTC"
    delta_base_policy: str = "anchor_start"

    @classmethod
    def from_env(cls) -> SourceSettings:
        """Build settings from TIERS_* environment variables.

        TIERS_TZ takes precedence over TIERS_TZ_OFFSET_HOURS. With neither
        set, windows are computed in UTC.
        """
        tz: str | tzinfo = "UTC"
        tz_name = os.environ.get("TIERS_TZ", "").strip()
        offset = os.environ.get("TIERS_TZ_OFFSET_HOURS", "").strip()
        if tz_name:
            tz = tz_name
        elif offset:
            try:
                tz = timezone(timedelta(hours=float(offset)))
            except ValueError:
                logger.warning("Invalid TIERS_TZ_OFFSET_HOURS %r, using UTC", offset)

        app_names = os.environ.get("TIERS_POS_APP_NAMES", "").strip()
        pos_app_names = (
            frozenset(name.strip() for name in app_names.split(",") if name.strip())
            if app_names
            else DEFAULT_POS_APP_NAMES
        )

        delta_base = os.environ.get("TIERS_DELTA_BASE_POLICY", "anchor_start").strip().lower()
        if delta_base not in DELTA_BASE_POLICIES:
            delta_base = "anchor_start"

        return cls(
            size30_pattern=os.environ.get("TIERS_SIZE30_REGEX") or None,
            size100_pattern=os.environ.get("TIERS_SIZE100_REGEX") or None,
            pos_app_names=pos_app_names,
            tz=tz,
            delta_base_policy=delta_base,
        )

    def size_classifier(self) -> SizeClassifier:
        """Compile the configured size patterns into a SizeClassifier."""
        return SizeClassifier(self.size30_pattern, self.size100_pattern)


__all__ = [
    "AccountingPolicy",
    "DEFAULT_EXTRA_QUERY",
    "DEFAULT_POS_APP_NAMES",
    "SourceSettings",
    "TiersConfig",
    "env_flag",
    "parse_flag",
]
