"""Read pre-aggregated tiering tables from a SQL warehouse.

The warehouse keeps one table per channel (``tiering_pos``,
``tiering_online``, ``tiering_global``), each already aggregated over its
own trailing window. Rows are mapped into ProductSalesRow objects through
``rows_from_tiering_records`` and bypass the order aggregator.

Environment:
    SUPABASE_DB_URL: SQLAlchemy database URL (required for ``from_env``)
    TIERS_SKU_PREFIX: Literal SKU prefix stripped from tiering rows
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from tiers_core.exceptions import ConfigError, ExtractionError
from tiers_core.sales.models import Channel, ProductSalesRow, SalesWindow
from tiers_core.sales.transform import TIERING_COLUMNS, rows_from_tiering_records

logger = logging.getLogger(__name__)

TIERING_TABLES = {
    Channel.POS: "tiering_pos",
    Channel.ONLINE: "tiering_online",
    Channel.TOTAL: "tiering_global",
}

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class TieringTableSource:
    """SalesSource backed by the per-channel tiering tables.

    The tables carry their own fixed window, so the ``window`` argument is
    accepted for interface compatibility and only logged.

    Example:
        >>> source = TieringTableSource.from_env()
        >>> rows = source(Channel.POS, window)
    """

    def __init__(self, engine: Engine, schema: str | None = "public", sku_prefix: str = "") -> None:
        if schema is not None and not _IDENTIFIER_RE.match(schema):
            raise ValueError(f"Invalid schema name '{schema}'")
        self.engine = engine
        self.schema = schema
        self.sku_prefix = sku_prefix

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> TieringTableSource:
        engine = create_engine(url, pool_pre_ping=True)
        return cls(engine, **kwargs)

    @classmethod
    def from_env(cls) -> TieringTableSource:
        """Create a source from SUPABASE_DB_URL and TIERS_SKU_PREFIX.

        Raises:
            ConfigError: If SUPABASE_DB_URL is not set.
        """
        url = os.environ.get("SUPABASE_DB_URL", "").strip()
        if not url:
            raise ConfigError("SUPABASE_DB_URL must be set to read tiering tables")
        return cls.from_url(url, sku_prefix=os.environ.get("TIERS_SKU_PREFIX", "").strip())

    def table_name(self, channel: Channel | str) -> str:
        table = TIERING_TABLES[Channel.parse(channel)]
        return f"{self.schema}.{table}" if self.schema else table

    def _query(self, sql: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(sql), params)
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as e:
            raise ExtractionError(f"Tiering table query failed: {e}") from e

    def fetch_records(self, channel: Channel | str) -> list[dict[str, Any]]:
        """Return raw tiering rows for a channel, ordered by rank."""
        table = self.table_name(channel)
        columns = ", ".join(TIERING_COLUMNS)
        records = self._query(f"SELECT {columns} FROM {table} ORDER BY rank", {})
        logger.info("Read %d rows from %s", len(records), table)
        return records

    def __call__(self, channel: Channel | str, window: SalesWindow) -> list[ProductSalesRow]:
        logger.debug(
            "Tiering tables ignore the requested window %s..%s", window.start, window.end
        )
        return rows_from_tiering_records(self.fetch_records(channel), self.sku_prefix)

    def sku_row(self, channel: Channel | str, sku: str) -> dict[str, Any] | None:
        """Look up one SKU's tiering row, or None when absent."""
        table = self.table_name(channel)
        columns = ", ".join(TIERING_COLUMNS)
        records = self._query(
            f"SELECT {columns} FROM {table} WHERE sku = :sku", {"sku": sku}
        )
        return records[0] if records else None
