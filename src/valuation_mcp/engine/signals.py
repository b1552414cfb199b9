"""Mean-reversion trading signal over a daily price series.

The latest close is scored against a volume-weighted mean reference, the
market is classified as trending or ranging from SMA50/SMA200, and the
z-score thresholds for each regime produce a discrete action.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from valuation_mcp.utils.indicators import (
    calculate_anchored_vwap,
    calculate_atr,
    calculate_sma,
    calculate_vwma,
    population_std,
)
from valuation_mcp.utils.numbers import safe_round
from valuation_mcp.utils.ohlcv import valid_bars

logger = logging.getLogger(__name__)

MIN_BARS = 60
STD_WINDOW = 60
SLOPE_LOOKBACK = 20
MIN_VWAP_BARS = 5
ATR_PERIOD = 14
STOP_ATR_MULTIPLE = 2.0

REGIME_UP = "TREND_UP"
REGIME_DOWN = "TREND_DOWN"
REGIME_RANGE = "RANGE"
REGIME_UNKNOWN = "UNKNOWN"

WAIT = "WAIT"
SCALE_IN = "SCALE IN"
ACCUMULATE = "ACCUMULATE"
TAKE_PROFIT = "TAKE PROFIT"
REDUCE_EXPOSURE = "REDUCE EXPOSURE"

BUY_ACTIONS = frozenset({SCALE_IN, ACCUMULATE})
SELL_ACTIONS = frozenset({TAKE_PROFIT, REDUCE_EXPOSURE})

# Regime classification thresholds (fractions)
TREND_SPREAD = 0.01
TREND_SLOPE = 0.005


@dataclass
class TradingSignal:
    """Discrete action with the levels it was derived from."""

    action: str = WAIT
    regime: str = REGIME_UNKNOWN
    confidence: int = 0
    mean_reference: float | None = None
    mean_type: str | None = None
    std_dev: float | None = None
    z_score: float | None = None
    levels: dict[str, float | None] = field(default_factory=dict)
    entry_zone: dict[str, Any] | None = None
    targets: dict[str, float | None] | None = None
    rationale: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "regime": self.regime,
            "confidence": self.confidence,
            "mean_reference": safe_round(self.mean_reference, 4),
            "mean_type": self.mean_type,
            "std_dev": safe_round(self.std_dev, 4),
            "z_score": safe_round(self.z_score, 3),
            "levels": {k: safe_round(v, 4) for k, v in self.levels.items()},
            "entry_zone": self.entry_zone,
            "targets": self.targets,
            "rationale": self.rationale,
        }


def mean_reference(bars: pd.DataFrame) -> tuple[float | None, str | None]:
    """
    Pick the mean the latest close reverts to.

    Anchored VWAP from the first trading day of the latest bar's year, then
    the 20-day VWMA, then the 50-day SMA.
    """
    year_start = f"{bars['date'].iloc[-1][:4]}-01-01"
    vwap = calculate_anchored_vwap(bars, year_start, min_bars=MIN_VWAP_BARS)
    if vwap is not None:
        return vwap, "anchored_vwap_ytd"

    vwma = calculate_vwma(bars["close"], bars["volume"], 20)
    if vwma is not None:
        return vwma, "vwma_20"

    sma = calculate_sma(bars["close"], 50).iloc[-1]
    if pd.notna(sma):
        return float(sma), "sma_50"
    return None, None


def classify_regime(close: pd.Series) -> tuple[str, float | None, float | None]:
    """
    Trend/range regime from the SMA50/SMA200 spread and the SMA50 slope.

    Returns:
        (regime, spread, slope); spread and slope are None without SMA200
    """
    sma50 = calculate_sma(close, 50)
    sma200 = calculate_sma(close, 200)
    latest_50 = sma50.iloc[-1]
    latest_200 = sma200.iloc[-1]
    if pd.isna(latest_200) or pd.isna(latest_50) or latest_200 <= 0:
        return REGIME_RANGE, None, None

    spread = float(latest_50 / latest_200 - 1)
    slope = None
    if len(sma50) > SLOPE_LOOKBACK:
        prior = sma50.iloc[-1 - SLOPE_LOOKBACK]
        if pd.notna(prior) and prior > 0:
            slope = float(latest_50 / prior - 1)

    if slope is not None and spread >= TREND_SPREAD and slope >= TREND_SLOPE:
        return REGIME_UP, spread, slope
    if slope is not None and spread <= -TREND_SPREAD and slope <= -TREND_SLOPE:
        return REGIME_DOWN, spread, slope
    return REGIME_RANGE, spread, slope


def choose_action(regime: str, z: float | None) -> str:
    """Map a regime and z-score to an action."""
    if z is None:
        return WAIT
    if regime == REGIME_RANGE:
        if z <= -2.5:
            return ACCUMULATE
        if z <= -1.8:
            return SCALE_IN
        if z >= 2.5:
            return REDUCE_EXPOSURE
        if z >= 1.8:
            return TAKE_PROFIT
    elif regime == REGIME_UP:
        if z <= -2.0:
            return ACCUMULATE
        if z <= -1.0:
            return SCALE_IN
        if z >= 2.5:
            return TAKE_PROFIT
    elif regime == REGIME_DOWN:
        if z <= -2.8:
            return SCALE_IN
        if z >= 2.0:
            return REDUCE_EXPOSURE
    return WAIT


def signal_confidence(
    action: str,
    regime: str,
    z: float | None,
    spread: float | None,
    slope: float | None,
) -> int:
    """Weighted 0-100 score from z magnitude, regime fit and trend strength."""
    z_score = min(100.0, abs(z) / 3 * 100) if z is not None else 0.0
    if action == WAIT:
        regime_fit = 40
    elif regime == REGIME_RANGE:
        regime_fit = 85
    else:
        regime_fit = 75
    trend_strength = min(100.0, abs(spread or 0.0) * 1500 + abs(slope or 0.0) * 1500)
    score = round(0.55 * z_score + 0.30 * regime_fit + 0.15 * trend_strength)
    return int(max(0, min(100, score)))


def _zones_and_targets(
    action: str,
    mean: float,
    std: float,
) -> tuple[dict[str, Any] | None, dict[str, float] | None, dict[str, float]]:
    buy_zone = {"low": mean - 2 * std, "high": mean - std}
    sell_zone = {"low": mean + std, "high": mean + 2 * std}
    levels = {
        "buy_zone_low": buy_zone["low"],
        "buy_zone_high": buy_zone["high"],
        "sell_zone_low": sell_zone["low"],
        "sell_zone_high": sell_zone["high"],
    }

    if action in BUY_ACTIONS:
        entry = {"side": "BUY", "low": round(buy_zone["low"], 4), "high": round(buy_zone["high"], 4)}
        targets = {"tp1": mean - std, "tp2": mean, "tp3": mean + std}
    elif action in SELL_ACTIONS:
        entry = {"side": "SELL", "low": round(sell_zone["low"], 4), "high": round(sell_zone["high"], 4)}
        targets = {"tp1": mean + std, "tp2": mean, "tp3": mean - std}
    else:
        return None, None, levels
    return entry, {k: round(v, 4) for k, v in targets.items()}, levels


def compute_signal(df: pd.DataFrame | None) -> TradingSignal:
    """
    Classify the latest bar of a daily series into a trading signal.

    Args:
        df: Standardized OHLCV frame (date, open, high, low, close, volume)

    Returns:
        TradingSignal; {WAIT, UNKNOWN, 0} when fewer than 60 valid bars
    """
    bars = valid_bars(df)
    if len(bars) < MIN_BARS:
        logger.debug(f"compute_signal: {len(bars)} valid bars, need {MIN_BARS}")
        return TradingSignal(rationale=[f"Insufficient history: {len(bars)} valid bars (need {MIN_BARS})"])

    close = bars["close"]
    latest_close = float(close.iloc[-1])

    mean, mean_type = mean_reference(bars)
    std = population_std(close.tail(STD_WINDOW))
    z = None
    if mean is not None and std:
        z = (latest_close - mean) / std

    regime, spread, slope = classify_regime(close)
    action = choose_action(regime, z)
    confidence = signal_confidence(action, regime, z, spread, slope)

    atr_series = calculate_atr(bars["high"].fillna(close), bars["low"].fillna(close), close, ATR_PERIOD)
    atr = atr_series.iloc[-1]
    atr = float(atr) if pd.notna(atr) else None

    entry_zone = None
    targets = None
    levels: dict[str, float | None] = {"latest_close": latest_close, "atr14": atr}
    if mean is not None and std:
        entry_zone, targets, zone_levels = _zones_and_targets(action, mean, std)
        levels.update(zone_levels)

    stop = None
    if atr is not None:
        if action in BUY_ACTIONS:
            stop = latest_close - STOP_ATR_MULTIPLE * atr
        elif action in SELL_ACTIONS:
            stop = latest_close + STOP_ATR_MULTIPLE * atr
    levels["stop"] = stop

    rationale = []
    if mean is not None:
        rationale.append(f"Mean reference {mean_type} at {mean:.2f}")
    if z is not None:
        rationale.append(f"Close {latest_close:.2f} is {z:+.2f} standard deviations from the mean")
    else:
        rationale.append("Dispersion is zero or mean unavailable; z-score undefined")
    if spread is None:
        rationale.append("SMA200 unavailable; treating as range")
    else:
        slope_text = f"{slope * 100:+.2f}%" if slope is not None else "n/a"
        rationale.append(f"SMA50/SMA200 spread {spread * 100:+.2f}%, SMA50 slope {slope_text} -> {regime}")
    if action != WAIT:
        rationale.append(f"{action} triggered by {regime} thresholds")
    if stop is not None:
        rationale.append(f"Protective stop at {stop:.2f} ({STOP_ATR_MULTIPLE:g}x ATR14)")

    return TradingSignal(
        action=action,
        regime=regime,
        confidence=confidence,
        mean_reference=mean,
        mean_type=mean_type,
        std_dev=std,
        z_score=z,
        levels=levels,
        entry_zone=entry_zone,
        targets=targets,
        rationale=rationale,
    )
