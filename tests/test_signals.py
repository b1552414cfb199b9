"""Tests for the mean-reversion trading signal."""

import numpy as np
import pandas as pd
import pytest

from conftest import make_bars
from valuation_mcp.engine.signals import (
    ACCUMULATE,
    REDUCE_EXPOSURE,
    REGIME_DOWN,
    REGIME_RANGE,
    REGIME_UNKNOWN,
    REGIME_UP,
    SCALE_IN,
    TAKE_PROFIT,
    WAIT,
    choose_action,
    classify_regime,
    compute_signal,
    mean_reference,
    signal_confidence,
)
from valuation_mcp.utils.ohlcv import valid_bars


def choppy_closes(n: int, last: float) -> list[float]:
    """n-1 bars alternating 99/101, then `last`."""
    return [100.0 + (1.0 if i % 2 else -1.0) for i in range(n - 1)] + [last]


class TestInsufficientHistory:
    """Tests for short or dirty series."""

    def test_fewer_than_sixty_bars(self) -> None:
        """Test too little history gives no signal."""
        signal = compute_signal(make_bars(np.linspace(100, 110, 59)))
        assert signal.action == WAIT
        assert signal.regime == REGIME_UNKNOWN
        assert signal.confidence == 0
        assert signal.entry_zone is None

    def test_none_and_empty(self) -> None:
        """Test missing bars give no signal."""
        assert compute_signal(None).regime == REGIME_UNKNOWN
        assert compute_signal(pd.DataFrame()).regime == REGIME_UNKNOWN

    def test_invalid_closes_are_not_counted(self) -> None:
        """Test invalid closes do not count toward history."""
        bars = make_bars(np.linspace(100, 110, 61))
        bars.loc[3, "close"] = np.nan
        bars.loc[7, "close"] = 0.0
        assert len(valid_bars(bars)) == 59
        assert compute_signal(bars).regime == REGIME_UNKNOWN

    def test_duplicate_dates_keep_last(self) -> None:
        """Test duplicate dates keep the last bar."""
        bars = make_bars([100.0, 101.0, 102.0])
        bars.loc[2, "date"] = bars.loc[1, "date"]
        cleaned = valid_bars(bars)
        assert len(cleaned) == 2
        assert cleaned["close"].iloc[-1] == 102.0


class TestRegime:
    """Tests for SMA50/SMA200 regime classification."""

    def test_steady_rise_is_trend_up(self) -> None:
        """Test a steady rise is TREND_UP."""
        regime, spread, slope = classify_regime(pd.Series(np.linspace(100, 200, 300)))
        assert regime == REGIME_UP
        assert spread > 0
        assert slope > 0

    def test_steady_fall_is_trend_down(self) -> None:
        """Test a steady fall is TREND_DOWN."""
        regime, _, _ = classify_regime(pd.Series(np.linspace(200, 100, 300)))
        assert regime == REGIME_DOWN

    def test_short_series_is_range(self) -> None:
        """Test short series default to RANGE."""
        assert classify_regime(pd.Series(np.linspace(100, 200, 150))) == (REGIME_RANGE, None, None)


class TestChooseAction:
    """Tests for regime-specific z thresholds."""

    @pytest.mark.parametrize(
        "regime,z,expected",
        [
            (REGIME_RANGE, -2.6, ACCUMULATE),
            (REGIME_RANGE, -2.0, SCALE_IN),
            (REGIME_RANGE, 1.9, TAKE_PROFIT),
            (REGIME_RANGE, 2.5, REDUCE_EXPOSURE),
            (REGIME_RANGE, 0.5, WAIT),
            (REGIME_UP, -1.5, SCALE_IN),
            (REGIME_UP, -2.1, ACCUMULATE),
            (REGIME_UP, 2.6, TAKE_PROFIT),
            (REGIME_UP, 2.0, WAIT),
            (REGIME_DOWN, -3.0, SCALE_IN),
            (REGIME_DOWN, -2.0, WAIT),
            (REGIME_DOWN, 2.1, REDUCE_EXPOSURE),
            (REGIME_UNKNOWN, -5.0, WAIT),
        ],
    )
    def test_thresholds(self, regime: str, z: float, expected: str) -> None:
        """Test action thresholds per regime."""
        assert choose_action(regime, z) == expected

    def test_undefined_z_waits(self) -> None:
        """Test an undefined z-score waits."""
        assert choose_action(REGIME_RANGE, None) == WAIT

    def test_confidence_bounded(self) -> None:
        """Test confidence stays within bounds."""
        strong = signal_confidence(ACCUMULATE, REGIME_RANGE, -10.0, 1.0, 1.0)
        assert 90 <= strong <= 100
        assert signal_confidence(WAIT, REGIME_RANGE, None, None, None) == 12


class TestComputeSignal:
    """End-to-end signal tests on synthetic series."""

    def test_range_drop_accumulates(self) -> None:
        """Test a drop in a range accumulates."""
        signal = compute_signal(make_bars(choppy_closes(100, 90.0)))

        assert signal.regime == REGIME_RANGE
        assert signal.action == ACCUMULATE
        assert signal.z_score <= -2.5
        assert signal.entry_zone["side"] == "BUY"
        assert signal.targets["tp1"] < signal.targets["tp2"] < signal.targets["tp3"]
        assert signal.levels["stop"] < 90.0

    def test_range_spike_reduces_exposure(self) -> None:
        """Test a spike in a range reduces exposure."""
        signal = compute_signal(make_bars(choppy_closes(100, 110.0)))

        assert signal.action == REDUCE_EXPOSURE
        assert signal.entry_zone["side"] == "SELL"
        assert signal.targets["tp1"] > signal.targets["tp2"] > signal.targets["tp3"]
        assert signal.levels["stop"] > 110.0

    def test_quiet_market_waits(self) -> None:
        """Test small deviations wait."""
        signal = compute_signal(make_bars(choppy_closes(100, 101.0)))

        assert signal.action == WAIT
        assert signal.entry_zone is None
        assert signal.targets is None
        assert signal.levels["stop"] is None
        assert signal.levels["buy_zone_high"] < signal.levels["sell_zone_low"]

    def test_zero_dispersion(self) -> None:
        """Test flat prices give an undefined z-score."""
        signal = compute_signal(make_bars([100.0] * 80))
        assert signal.action == WAIT
        assert signal.z_score is None

    def test_uptrend(self) -> None:
        """Test signals in an uptrend."""
        signal = compute_signal(make_bars(np.linspace(100, 200, 300)))
        assert signal.regime == REGIME_UP
        assert signal.mean_type == "anchored_vwap_ytd"
        assert 0 <= signal.confidence <= 100

    def test_to_dict(self) -> None:
        """Test signal serialization."""
        payload = compute_signal(make_bars(choppy_closes(100, 90.0))).to_dict()
        assert payload["action"] == ACCUMULATE
        assert payload["rationale"]
        assert set(payload["levels"]) >= {"latest_close", "atr14", "stop"}


class TestMeanReference:
    """Tests for the mean fallback chain."""

    def test_sma_when_no_volume(self) -> None:
        """Test SMA is the reference without volume."""
        bars = valid_bars(make_bars(np.linspace(100, 120, 80), volume=0.0))
        mean, mean_type = mean_reference(bars)
        assert mean_type == "sma_50"
        assert mean == pytest.approx(bars["close"].tail(50).mean())

    def test_vwma_early_in_year(self) -> None:
        """Test VWMA is the reference early in the year."""
        bars = valid_bars(make_bars(np.linspace(100, 120, 67), start="2023-10-02"))
        # The last bar falls in the first days of January
        assert bars["date"].iloc[-1].startswith("2024-01")
        _, mean_type = mean_reference(bars)
        assert mean_type == "vwma_20"
