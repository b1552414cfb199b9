"""Daily bar frames: yfinance normalization, validity filtering and summaries."""

from typing import Any

import numpy as np
import pandas as pd

CANONICAL_COLUMNS = ["date", "open", "high", "low", "close", "volume"]
PRICE_COLUMNS = CANONICAL_COLUMNS[1:]


def standardize_ohlcv(df: pd.DataFrame) -> pd.DataFrame:
    """
    Reshape a yfinance history frame into canonical daily bars.

    Output columns are exactly CANONICAL_COLUMNS, lowercase, with dates as
    YYYY-MM-DD strings. 'Adj Close' is dropped (auto_adjust decides which
    closes we get). Absent columns are NaN. Rows are ascending with one bar
    per date.
    """
    frame = df.copy()

    # yf.download returns (field, ticker) columns
    if isinstance(frame.columns, pd.MultiIndex):
        frame.columns = frame.columns.get_level_values(0)

    frame = frame.drop(columns=["Adj Close"], errors="ignore")
    frame.columns = [str(c).lower() for c in frame.columns]
    frame = frame.reset_index()

    date_column = next((c for c in frame.columns if str(c).lower() in ("date", "datetime", "index")), None)
    if date_column is not None and date_column != "date":
        frame = frame.rename(columns={date_column: "date"})

    if "date" in frame.columns and pd.api.types.is_datetime64_any_dtype(frame["date"]):
        frame["date"] = frame["date"].dt.strftime("%Y-%m-%d")

    for column in CANONICAL_COLUMNS:
        if column not in frame.columns:
            frame[column] = pd.NA

    return dedupe_bars(frame[CANONICAL_COLUMNS])


def dedupe_bars(df: pd.DataFrame) -> pd.DataFrame:
    """Ascending by date; the last row seen for a date wins."""
    if df.empty:
        return df.reset_index(drop=True)
    out = df.dropna(subset=["date"]).drop_duplicates(subset="date", keep="last")
    return out.sort_values("date", kind="stable").reset_index(drop=True)


def valid_bars(df: pd.DataFrame | None) -> pd.DataFrame:
    """
    Bars usable for price statistics.

    A bar counts only with a parseable date and a finite, positive close.
    Price and volume columns are coerced to numbers (garbage becomes NaN).
    """
    if df is None or df.empty or "close" not in df.columns or "date" not in df.columns:
        return pd.DataFrame(columns=CANONICAL_COLUMNS)

    bars = df.copy()
    dates = pd.to_datetime(bars["date"], errors="coerce")
    bars["date"] = dates.dt.strftime("%Y-%m-%d")
    for column in PRICE_COLUMNS:
        if column in bars.columns:
            bars[column] = pd.to_numeric(bars[column], errors="coerce")
        else:
            bars[column] = np.nan

    close = bars["close"].astype(float)
    keep = dates.notna() & np.isfinite(close) & (close > 0)
    return dedupe_bars(bars.loc[keep, CANONICAL_COLUMNS])


def summarize_bars(df: pd.DataFrame) -> dict[str, Any]:
    """First/last close, period range and total return."""
    close = df["close"].dropna()
    start_price = float(close.iloc[0]) if len(close) > 0 else None
    end_price = float(close.iloc[-1]) if len(close) > 0 else None
    total_return = None
    if len(close) >= 2 and start_price:
        total_return = round((end_price - start_price) / start_price, 4)

    high = df["high"].dropna()
    low = df["low"].dropna()
    return {
        "data_points": len(df),
        "start_date": df["date"].iloc[0] if len(df) > 0 else None,
        "end_date": df["date"].iloc[-1] if len(df) > 0 else None,
        "start_price": start_price,
        "end_price": end_price,
        "period_high": float(high.max()) if len(high) > 0 else None,
        "period_low": float(low.min()) if len(low) > 0 else None,
        "total_return": total_return,
    }


def df_to_rows(df: pd.DataFrame) -> list[dict]:
    """Preview rows; missing values become None so they serialize as null."""
    return df.astype(object).where(df.notna(), None).to_dict("records")


def df_to_csv(df: pd.DataFrame) -> str:
    """CSV body for the price:// resource."""
    return df.to_csv(index=False)
