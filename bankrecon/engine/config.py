"""Reconciliation configuration and JSON loading."""

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Tuple

from bankrecon.engine.errors import ConfigError, ConfigFileError


@dataclass(frozen=True)
class AmountBand:
    """Relative tolerance band around a target's remaining amount."""
    name: str
    ratio: Decimal
    weight: int

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AmountBand":
        name = str(d.get("name", "")).strip()
        if not name:
            raise ConfigError("amount band requires a name")
        try:
            ratio = Decimal(str(d.get("ratio")))
        except InvalidOperation:
            raise ConfigError(f"amount band {name!r}: ratio must be a number (got {d.get('ratio')!r})")
        weight = int(d.get("weight", 0))
        if not 0 <= ratio < 1:
            raise ConfigError(f"amount band {name!r}: ratio must be in [0, 1) (got {ratio})")
        if weight < 0:
            raise ConfigError(f"amount band {name!r}: weight must be >= 0 (got {weight})")
        return cls(name=name, ratio=ratio, weight=weight)


DEFAULT_AMOUNT_BANDS: Tuple[AmountBand, ...] = (
    AmountBand("tight", Decimal("0.005"), 30),
    AmountBand("loose", Decimal("0.05"), 15),
)


@dataclass(frozen=True)
class ReconciliationConfig:
    """
    Weights, thresholds and limits for matching.

    Suggestions start at 50, so MEDIUM covers 50-89: a same-partner payment
    within the tight amount band and inside the date window, with no
    reference, scores 30 + 20 + 10 = 60 and is suggested, never auto-matched.
    """

    exact_reference_weight: int = 60
    amount_tolerance_bands: Tuple[AmountBand, ...] = DEFAULT_AMOUNT_BANDS
    partner_exact_weight: int = 20
    partner_fuzzy_weight: int = 10
    partner_fuzzy_threshold: int = 85
    date_window_weight: int = 10
    date_grace_days: int = 15

    auto_match_threshold: int = 90
    suggestion_threshold: int = 50
    ambiguity_margin: int = 5

    max_candidates: int = 20
    max_commit_retries: int = 3
    balance_epsilon: Decimal = Decimal("0.01")
    max_workers: int = 4

    def __post_init__(self):
        if not self.amount_tolerance_bands:
            raise ConfigError("at least one amount tolerance band is required")
        # Narrowest band first so the best band wins
        bands = tuple(sorted(self.amount_tolerance_bands, key=lambda b: b.ratio))
        object.__setattr__(self, "amount_tolerance_bands", bands)
        names = [b.name for b in bands]
        if len(set(names)) != len(names):
            raise ConfigError(f"amount band names must be unique (got {names})")

        for name in (
            "exact_reference_weight",
            "partner_exact_weight",
            "partner_fuzzy_weight",
            "date_window_weight",
            "date_grace_days",
            "ambiguity_margin",
            "max_commit_retries",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0 (got {getattr(self, name)})")
        for name in ("auto_match_threshold", "suggestion_threshold", "partner_fuzzy_threshold"):
            if not 0 <= getattr(self, name) <= 100:
                raise ConfigError(f"{name} must be between 0 and 100 (got {getattr(self, name)})")
        if self.suggestion_threshold > self.auto_match_threshold:
            raise ConfigError(
                f"suggestion_threshold ({self.suggestion_threshold}) must not exceed "
                f"auto_match_threshold ({self.auto_match_threshold})"
            )
        if self.max_candidates < 1:
            raise ConfigError(f"max_candidates must be >= 1 (got {self.max_candidates})")
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be >= 1 (got {self.max_workers})")
        if self.balance_epsilon < 0:
            raise ConfigError(f"balance_epsilon must be >= 0 (got {self.balance_epsilon})")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ReconciliationConfig":
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(d) - known)
        if unknown:
            raise ConfigError(f"unknown configuration keys: {unknown}")

        kwargs: Dict[str, Any] = {}
        for key, value in d.items():
            if key == "amount_tolerance_bands":
                if not isinstance(value, list):
                    raise ConfigError("amount_tolerance_bands must be a list")
                kwargs[key] = tuple(AmountBand.from_dict(b) for b in value)
            elif key == "balance_epsilon":
                try:
                    kwargs[key] = Decimal(str(value))
                except InvalidOperation:
                    raise ConfigError(f"balance_epsilon must be a number (got {value!r})")
            else:
                try:
                    kwargs[key] = int(value)
                except (TypeError, ValueError):
                    raise ConfigError(f"{key} must be an integer (got {value!r})")
        return cls(**kwargs)

    @classmethod
    def load(cls, path: str | Path) -> "ReconciliationConfig":
        """Load configuration from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise ConfigFileError(f"Config file not found: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigFileError(f"Invalid JSON in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigFileError(f"Config root must be an object: {path}")
        return cls.from_dict(data)

