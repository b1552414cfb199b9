"""Tests for daily bar standardization, filtering and summaries."""

import numpy as np
import pandas as pd
import pytest

from conftest import make_bars
from valuation_mcp.utils.ohlcv import (
    CANONICAL_COLUMNS,
    dedupe_bars,
    df_to_csv,
    df_to_rows,
    standardize_ohlcv,
    summarize_bars,
    valid_bars,
)


class TestStandardizeOhlcv:
    """Tests for standardize_ohlcv."""

    def test_canonical_columns_without_adj_close(self, sample_ohlcv_df: pd.DataFrame) -> None:
        """Test output columns are canonical and Adj Close is dropped."""
        result = standardize_ohlcv(sample_ohlcv_df)
        assert list(result.columns) == CANONICAL_COLUMNS
        assert len(result) == 10
        assert result["close"].iloc[0] == 100.5

    def test_daily_dates_as_iso_strings(self, sample_ohlcv_df: pd.DataFrame) -> None:
        """Test daily dates render as YYYY-MM-DD."""
        result = standardize_ohlcv(sample_ohlcv_df)
        assert result["date"].iloc[0] == "2024-01-01"
        assert result["date"].iloc[-1] == "2024-01-10"

    def test_flattens_download_multi_index(self) -> None:
        """Test multi-index download columns are flattened."""
        columns = pd.MultiIndex.from_tuples(
            [(field, "MSFT") for field in ("Open", "High", "Low", "Close", "Volume")]
        )
        df = pd.DataFrame(
            [[400.0, 404.0, 398.0, 402.0, 2_000_000]],
            index=pd.DatetimeIndex(["2024-03-01"], name="Date"),
            columns=columns,
        )
        result = standardize_ohlcv(df)
        assert list(result.columns) == CANONICAL_COLUMNS
        assert result["close"].iloc[0] == 402.0

    def test_missing_volume_filled(self) -> None:
        """Test a missing volume column is added."""
        df = pd.DataFrame(
            {"Close": [10.0, 11.0]},
            index=pd.DatetimeIndex(["2024-01-02", "2024-01-03"], name="Date"),
        )
        result = standardize_ohlcv(df)
        assert result["volume"].isna().all()
        assert result["open"].isna().all()

    def test_sorted_and_deduplicated(self) -> None:
        """Test bars are ascending with one per date."""
        df = pd.DataFrame(
            {"Close": [12.0, 10.0, 11.0]},
            index=pd.DatetimeIndex(["2024-01-04", "2024-01-02", "2024-01-04"], name="Date"),
        )
        result = standardize_ohlcv(df)
        assert list(result["date"]) == ["2024-01-02", "2024-01-04"]
        assert result["close"].iloc[-1] == 11.0


class TestSerialization:
    """Tests for preview rows and CSV export."""

    def test_rows_and_csv(self, sample_ohlcv_df: pd.DataFrame) -> None:
        """Test preview rows and CSV output."""
        result = standardize_ohlcv(sample_ohlcv_df)
        rows = df_to_rows(result.tail(2))
        assert rows[-1]["date"] == "2024-01-10"
        assert set(rows[0]) == set(CANONICAL_COLUMNS)
        assert df_to_csv(result).splitlines()[0] == ",".join(CANONICAL_COLUMNS)

    def test_dedupe_empty(self) -> None:
        """Test deduplicating an empty frame."""
        empty = pd.DataFrame(columns=CANONICAL_COLUMNS)
        assert dedupe_bars(empty).empty

    def test_rows_use_none_for_missing(self) -> None:
        """Test missing values serialize as None."""
        df = pd.DataFrame({"date": ["2024-01-02"], "close": [10.0], "volume": [np.nan]})
        assert df_to_rows(df) == [{"date": "2024-01-02", "close": 10.0, "volume": None}]


class TestValidBars:
    """Tests for filtering bars usable in price statistics."""

    def test_drops_bad_closes_and_dates(self) -> None:
        """Test rows with bad closes or dates are dropped."""
        bars = make_bars([10.0, 11.0, 12.0, 13.0, 14.0])
        bars.loc[1, "close"] = np.nan
        bars.loc[2, "close"] = -1.0
        bars.loc[3, "date"] = "not a date"
        result = valid_bars(bars)
        assert list(result["close"]) == [10.0, 14.0]
        assert list(result.columns) == CANONICAL_COLUMNS

    def test_coerces_text_and_fills_missing_columns(self) -> None:
        """Test text values are coerced and absent columns added."""
        df = pd.DataFrame({"date": ["2024-01-03", "2024-01-02"], "close": ["11.5", "oops"]})
        result = valid_bars(df)
        assert list(result["date"]) == ["2024-01-03"]
        assert result["close"].iloc[0] == 11.5
        assert result["volume"].isna().all()

    def test_missing_input(self) -> None:
        """Test None and empty frames yield no bars."""
        assert valid_bars(None).empty
        assert valid_bars(pd.DataFrame({"close": [1.0]})).empty


class TestSummarizeBars:
    """Tests for price history summaries."""

    def test_summary(self) -> None:
        """Test period range and total return."""
        summary = summarize_bars(make_bars([100.0, 90.0, 110.0]))
        assert summary["data_points"] == 3
        assert summary["total_return"] == 0.1
        assert summary["period_high"] == pytest.approx(111.1)
        assert summary["period_low"] == pytest.approx(89.1)

    def test_single_bar_has_no_return(self) -> None:
        """Test one bar gives no total return."""
        summary = summarize_bars(make_bars([50.0]))
        assert summary["start_price"] == summary["end_price"] == 50.0
        assert summary["total_return"] is None
