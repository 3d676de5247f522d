"""Tests for the JSON config store."""

import json
import logging
from pathlib import Path

import pytest

from tiers_core.config import TiersConfig
from tiers_core.exceptions import ConfigError
from tiers_core.tiers.store import TiersConfigStore


@pytest.fixture
def store(tmp_path: Path) -> TiersConfigStore:
    return TiersConfigStore(tmp_path / "tiers" / "config.json")


def test_read_missing_returns_defaults(store: TiersConfigStore) -> None:
    assert store.read() == TiersConfig()


def test_write_bumps_version(store: TiersConfigStore) -> None:
    first = store.write({"tierSSPct": 25})
    assert first.config_version == 2
    assert first.tier_ss_pct == 25.0

    second = store.write({"tierSSPct": 22, "configVersion": 1})
    assert second.config_version == 3
    assert store.read() == second


def test_written_file_is_camel_case_json(store: TiersConfigStore) -> None:
    store.write({"tiersTopCount": 10})
    text = store.path.read_text(encoding="utf-8")
    data = json.loads(text)
    assert data["tiersTopCount"] == 10
    assert data["configVersion"] == 2
    assert '\n  "tierSSPct"' in text


def test_invalid_values_fall_back_to_stored(store: TiersConfigStore) -> None:
    store.write({"tiersTopCount": 10})
    saved = store.write({"tiersTopCount": -5, "salesWindowDays": 21})
    assert saved.tiers_top_count == 10
    assert saved.sales_window_days == 21


def test_write_accepts_config(store: TiersConfigStore) -> None:
    saved = store.write(TiersConfig(grace_months_c=6))
    assert saved.grace_months_c == 6
    assert saved.config_version == 2


def test_read_invalid_json(store: TiersConfigStore) -> None:
    store.path.parent.mkdir(parents=True)
    store.path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError, match="Cannot read tiers config"):
        store.read()


def test_read_non_object(store: TiersConfigStore) -> None:
    store.path.parent.mkdir(parents=True)
    store.path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ConfigError, match="must be a JSON object"):
        store.read()


def test_write_over_unreadable_file(store: TiersConfigStore, caplog: pytest.LogCaptureFixture) -> None:
    store.path.parent.mkdir(parents=True)
    store.path.write_text("garbage", encoding="utf-8")
    with caplog.at_level(logging.WARNING, logger="tiers_core.tiers.store"):
        saved = store.write({})
    assert saved.config_version == 2
    assert "Overwriting unreadable config" in caplog.text
