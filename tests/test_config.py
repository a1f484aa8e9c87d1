"""Tests for reconciliation configuration."""

import json
from decimal import Decimal
from pathlib import Path

import pytest

from bankrecon.engine.config import AmountBand, ReconciliationConfig
from bankrecon.engine.errors import ConfigError, ConfigFileError


EXAMPLE_CONFIG = Path(__file__).parent.parent / "examples" / "config.json"


class TestReconciliationConfig:

    def test_defaults(self):
        config = ReconciliationConfig()
        assert config.auto_match_threshold == 90
        assert config.suggestion_threshold == 50
        assert config.ambiguity_margin == 5
        assert [b.name for b in config.amount_tolerance_bands] == ["tight", "loose"]

    def test_bands_sorted_narrowest_first(self):
        config = ReconciliationConfig(amount_tolerance_bands=(
            AmountBand("wide", Decimal("0.1"), 5),
            AmountBand("exact", Decimal("0"), 40),
        ))
        assert [b.name for b in config.amount_tolerance_bands] == ["exact", "wide"]

    def test_from_dict_converts_types(self):
        config = ReconciliationConfig.from_dict({
            "auto_match_threshold": "85",
            "balance_epsilon": "0.05",
            "amount_tolerance_bands": [{"name": "tight", "ratio": "0.01", "weight": 25}],
        })
        assert config.auto_match_threshold == 85
        assert config.balance_epsilon == Decimal("0.05")
        assert config.amount_tolerance_bands == (AmountBand("tight", Decimal("0.01"), 25),)

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigError, match="fuzzy_threshold"):
            ReconciliationConfig.from_dict({"fuzzy_threshold": 80})

    @pytest.mark.parametrize("kwargs", [
        {"auto_match_threshold": 101},
        {"suggestion_threshold": 95},
        {"ambiguity_margin": -1},
        {"max_workers": 0},
        {"max_candidates": 0},
        {"balance_epsilon": Decimal("-0.01")},
        {"amount_tolerance_bands": ()},
        {"amount_tolerance_bands": (AmountBand("a", Decimal("0.1"), 1), AmountBand("a", Decimal("0.2"), 1))},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigError):
            ReconciliationConfig(**kwargs)

    @pytest.mark.parametrize("band", [
        {"ratio": "0.1", "weight": 5},
        {"name": "x", "ratio": "abc"},
        {"name": "x", "ratio": "1.5"},
        {"name": "x", "ratio": "0.1", "weight": -1},
    ])
    def test_invalid_band(self, band):
        with pytest.raises(ConfigError):
            ReconciliationConfig.from_dict({"amount_tolerance_bands": [band]})

    def test_load_example(self):
        config = ReconciliationConfig.load(EXAMPLE_CONFIG)
        assert config.auto_match_threshold == 90
        assert config.amount_tolerance_bands[0].ratio == Decimal("0.005")

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ConfigFileError, match="not found"):
            ReconciliationConfig.load(tmp_path / "missing.json")

    def test_load_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigFileError, match="Invalid JSON"):
            ReconciliationConfig.load(path)

    def test_load_non_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps([1, 2]), encoding="utf-8")
        with pytest.raises(ConfigFileError):
            ReconciliationConfig.load(path)
