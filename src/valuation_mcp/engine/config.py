"""Tunable constants for the composite valuation.

The blending constants were chosen empirically. They are kept together here
so they can be calibrated against reference fair values (see
`valuation_mcp.engine.calibration`) and overridden without code changes.
"""

import dataclasses
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "VALUATION_CONFIG_PATH"


def _default_bucket_weights() -> dict[str, float]:
    return {"cashflow": 0.55, "relative": 0.35, "analyst": 0.10}


def _default_method_weights() -> dict[str, float]:
    return {
        "dcf_unlevered": 1.0,
        "dcf_exit_multiple": 0.6,
        "earnings_power_value": 0.5,
        "fair_value_ps": 0.8,
        "fair_value_pe": 1.0,
        "fair_value_pb": 0.6,
        "peg_value": 0.5,
        "psg_value": 0.4,
        "analyst_target": 1.0,
        "graham_number": 1.0,
    }


@dataclass(frozen=True)
class ValuationConfig:
    """Constants driving the valuation models and composite blend."""

    # Blending
    bucket_weights: dict[str, float] = field(default_factory=_default_bucket_weights)
    method_weights: dict[str, float] = field(default_factory=_default_method_weights)
    calibration_factors: dict[str, float] = field(default_factory=dict)
    median_anchor_weight: float = 0.05
    price_anchor_base: float = 0.04
    price_anchor_spread: float = 0.30
    price_anchor_beta: float = 0.05
    price_anchor_max: float = 0.22
    floor_ratio: float = 0.45
    ceiling_ratio: float = 2.40

    # Bounded adjustments
    max_growth_premium: float = 0.08
    max_quality_premium: float = 0.06
    max_risk_penalty: float = 0.10
    healthy_growth: float = 0.05

    # Regime correction between cashflow and relative buckets
    bubble_threshold: float = 0.35
    max_bubble_damp: float = 0.12
    max_value_lift: float = 0.05

    # Discount rate
    risk_free_rate: float = 0.04
    equity_risk_premium: float = 0.05
    default_cost_of_debt: float = 0.05
    default_tax_rate: float = 0.21
    max_tax_rate: float = 0.35

    # Multi-stage DCF
    projection_years: int = 10
    fade_start_year: int = 6
    terminal_growth: float = 0.025
    dcf_safety_margin: float = 0.01
    growth_floor: float = -0.05
    growth_cap: float = 0.25
    default_terminal_margin: float = 0.10
    terminal_margin_floor: float = 0.02
    terminal_margin_cap: float = 0.20
    fallback_da_ratio: float = 0.04
    fallback_capex_ratio: float = 0.05
    fallback_nwc_ratio: float = 0.10
    ratio_history_years: int = 5

    # Exit-multiple model and reverse valuation
    exit_multiple: float = 15.0
    exit_years: int = 5

    # Relative and growth-adjusted models
    min_haircut: float = 0.10
    max_haircut: float = 0.20
    target_peg: float = 1.0
    target_psg: float = 0.25
    max_growth_pct: float = 25.0

    def method_weight(self, key: str) -> float:
        return self.method_weights.get(key, 1.0)

    def calibration_factor(self, key: str) -> float:
        return self.calibration_factors.get(key, 1.0)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, overrides: dict[str, Any]) -> "ValuationConfig":
        """Build a config from defaults plus overrides; dict fields are merged."""
        base = cls()
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            logger.warning(f"Ignoring unknown valuation config keys: {unknown}")

        changes: dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in known:
                continue
            current = getattr(base, key)
            if isinstance(current, dict):
                if not isinstance(value, dict):
                    raise ValueError(f"Valuation config '{key}' must be an object")
                changes[key] = {**current, **{k: float(v) for k, v in value.items()}}
            elif isinstance(current, int) and not isinstance(current, bool):
                changes[key] = int(value)
            else:
                changes[key] = float(value)
        return dataclasses.replace(base, **changes)

    @classmethod
    def from_env(cls) -> "ValuationConfig":
        """Defaults, overlaid with the JSON file named by VALUATION_CONFIG_PATH."""
        path = os.environ.get(CONFIG_PATH_ENV)
        if not path:
            return cls()
        with open(path, encoding="utf-8") as fh:
            overrides = json.load(fh)
        if not isinstance(overrides, dict):
            raise ValueError(f"{CONFIG_PATH_ENV} must point to a JSON object: {path}")
        logger.info(f"Loaded valuation config overrides from {path}")
        return cls.from_dict(overrides)
