"""Price series calculations used by the signal engine."""

import numpy as np
import pandas as pd


def calculate_sma(prices: pd.Series, period: int) -> pd.Series:
    """
    Calculate Simple Moving Average.

    Args:
        prices: Price series (typically close prices)
        period: Number of periods for the average

    Returns:
        SMA series
    """
    return prices.rolling(window=period, min_periods=period).mean()


def calculate_vwma(close: pd.Series, volume: pd.Series, period: int) -> float | None:
    """
    Volume-weighted moving average of the last `period` bars.

    Returns:
        VWMA value, or None if there are too few bars or no traded volume
    """
    if len(close) < period:
        return None
    c = close.tail(period)
    v = volume.tail(period).fillna(0)
    total_volume = float(v.sum())
    if total_volume <= 0:
        return None
    return float((c * v).sum() / total_volume)


def calculate_anchored_vwap(
    df: pd.DataFrame,
    anchor_date: str,
    min_bars: int = 1,
) -> float | None:
    """
    Running VWAP from anchor_date (inclusive) to the latest bar.

    Uses typical price (high + low + close) / 3, falling back to close where
    high/low are missing.

    Args:
        df: Standardized OHLCV frame, ascending by date
        anchor_date: ISO date the accumulation starts from
        min_bars: Minimum number of bars with volume required after the anchor

    Returns:
        Anchored VWAP, or None when there is not enough traded volume
    """
    window = df[df["date"] >= anchor_date]
    if window.empty:
        return None

    close = pd.to_numeric(window["close"], errors="coerce")
    high = pd.to_numeric(window["high"], errors="coerce").fillna(close)
    low = pd.to_numeric(window["low"], errors="coerce").fillna(close)
    volume = pd.to_numeric(window["volume"], errors="coerce").fillna(0)

    typical = (high + low + close) / 3
    traded = volume > 0
    if int(traded.sum()) < min_bars:
        return None

    total_volume = float(volume[traded].sum())
    if total_volume <= 0:
        return None
    return float((typical[traded] * volume[traded]).sum() / total_volume)


def calculate_atr(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    period: int = 14,
) -> pd.Series:
    """
    Calculate Average True Range.

    Args:
        high: High price series
        low: Low price series
        close: Close price series
        period: ATR period (default: 14)

    Returns:
        ATR series
    """
    prev_close = close.shift(1)

    tr1 = high - low
    tr2 = (high - prev_close).abs()
    tr3 = (low - prev_close).abs()

    true_range = pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)

    # Wilder's smoothing for ATR
    return true_range.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()


def population_std(values: pd.Series) -> float | None:
    """Population standard deviation (ddof=0), None for empty input."""
    clean = values.dropna()
    if clean.empty:
        return None
    return float(np.std(clean.to_numpy(dtype=float), ddof=0))
