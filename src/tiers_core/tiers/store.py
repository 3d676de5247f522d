"""JSON persistence for TiersConfig.

The config lives in a single JSON file with camelCase keys. Every write
bumps ``configVersion`` so consumers can tell when tiers were produced
with an older configuration.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any

from tiers_core.config import TiersConfig
from tiers_core.exceptions import ConfigError

logger = logging.getLogger(__name__)


class TiersConfigStore:
    """Read and write a TiersConfig JSON file.

    Example:
        >>> store = TiersConfigStore(Path("config.json"))
        >>> store.write({"tierSSPct": 25}).config_version
        2
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def read(self) -> TiersConfig:
        """Load the config, or the defaults when the file does not exist.

        Raises:
            ConfigError: If the file exists but is not a JSON object.
        """
        if not self.path.exists():
            logger.debug("No config at %s, using defaults", self.path)
            return TiersConfig()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read tiers config {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Tiers config {self.path} must be a JSON object")
        return TiersConfig.from_dict(data)

    def write(self, values: Mapping[str, Any] | TiersConfig) -> TiersConfig:
        """Validate ``values``, bump the version and save.

        Invalid fields fall back to the currently stored config. The new
        version is the stored version + 1 (2 when nothing was stored).

        Returns:
            The config as written.
        """
        try:
            current: TiersConfig | None = self.read() if self.path.exists() else None
        except ConfigError as e:
            logger.warning("Overwriting unreadable config: %s", e)
            current = None

        if isinstance(values, TiersConfig):
            values = values.to_dict()
        validated = TiersConfig.from_dict(values, fallback=current)
        previous = current.config_version if current else validated.config_version
        saved = replace(validated, config_version=previous + 1)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(saved.to_dict(), indent=2), encoding="utf-8")
        logger.info("Wrote tiers config v%d to %s", saved.config_version, self.path)
        return saved
