"""Pytest configuration and fixtures."""

from datetime import date
from unittest.mock import AsyncMock, patch

import numpy as np
import pandas as pd
import pytest

from valuation_mcp.data.retry import UpstreamRetryError
from valuation_mcp.data.sec_client import parse_ticker_directory
from valuation_mcp.engine.facts import RawFactPoint


def make_point(
    field_id: str,
    end: str,
    value: float,
    fp: str = "FY",
    start: str | None = None,
    filed: str | None = None,
    unit: str = "USD",
) -> RawFactPoint:
    """Build a RawFactPoint from ISO date strings."""
    return RawFactPoint(
        field_id=field_id,
        unit=unit,
        period_start=date.fromisoformat(start) if start else None,
        period_end=date.fromisoformat(end),
        filed=date.fromisoformat(filed) if filed else None,
        value=value,
        fiscal_period=fp,
    )


def annual_facts(years: list[int], base_revenue: float = 1000.0, growth: float = 0.10) -> dict[str, list[RawFactPoint]]:
    """
    Synthetic annual filings for a steadily growing, profitable company.

    Revenue compounds at `growth`; margins and balance sheet scale with it.
    Values are in millions only by convention; units stay USD.
    """
    facts: dict[str, list[RawFactPoint]] = {}

    def add(tag: str, year: int, value: float, unit: str = "USD", instant: bool = False) -> None:
        end = f"{year}-12-31"
        start = None if instant else f"{year}-01-01"
        facts.setdefault(tag, []).append(
            make_point(tag, end, value, fp="FY", start=start, filed=f"{year + 1}-02-15", unit=unit)
        )

    for i, year in enumerate(sorted(years)):
        revenue = base_revenue * (1 + growth) ** i
        add("Revenues", year, revenue)
        add("CostOfRevenue", year, revenue * 0.55)
        add("OperatingIncomeLoss", year, revenue * 0.20)
        add("NetIncomeLoss", year, revenue * 0.15)
        add("IncomeTaxExpenseBenefit", year, revenue * 0.04)
        add(
            "IncomeLossFromContinuingOperationsBeforeIncomeTaxesExtraordinaryItemsNoncontrollingInterest",
            year,
            revenue * 0.19,
        )
        add("InterestExpense", year, 10.0)
        add("WeightedAverageNumberOfDilutedSharesOutstanding", year, 100.0, unit="shares")
        add("Assets", year, revenue * 1.5, instant=True)
        add("Liabilities", year, revenue * 0.7, instant=True)
        add("StockholdersEquity", year, revenue * 0.8, instant=True)
        add("CashAndCashEquivalentsAtCarryingValue", year, revenue * 0.2, instant=True)
        add("AssetsCurrent", year, revenue * 0.5, instant=True)
        add("LiabilitiesCurrent", year, revenue * 0.3, instant=True)
        add("LongTermDebtNoncurrent", year, 200.0, instant=True)
        add("NetCashProvidedByUsedInOperatingActivities", year, revenue * 0.22)
        add("PaymentsToAcquirePropertyPlantAndEquipment", year, revenue * 0.05)
        add("DepreciationDepletionAndAmortization", year, revenue * 0.04)
    return facts


def make_bars(closes: list[float] | np.ndarray, start: str = "2023-01-02", volume: float = 1_000_000.0) -> pd.DataFrame:
    """Standardized daily bars (business days) around the given closes."""
    closes = np.asarray(closes, dtype=float)
    dates = pd.bdate_range(start, periods=len(closes))
    return pd.DataFrame(
        {
            "date": dates.strftime("%Y-%m-%d"),
            "open": closes,
            "high": closes * 1.01,
            "low": closes * 0.99,
            "close": closes,
            "volume": [volume] * len(closes),
        }
    )


@pytest.fixture
def sample_ohlcv_df() -> pd.DataFrame:
    """Raw yfinance-shaped OHLCV DataFrame."""
    return pd.DataFrame(
        {
            "Date": pd.date_range("2024-01-01", periods=10, freq="D"),
            "Open": [100.0, 101.0, 102.0, 101.5, 103.0, 104.0, 103.5, 105.0, 106.0, 105.5],
            "High": [101.0, 102.5, 103.0, 102.5, 104.5, 105.5, 105.0, 106.5, 107.0, 106.5],
            "Low": [99.5, 100.5, 101.0, 100.5, 102.0, 103.0, 102.5, 104.0, 105.0, 104.5],
            "Close": [100.5, 102.0, 101.5, 102.0, 104.0, 103.5, 104.5, 106.0, 105.5, 106.0],
            "Adj Close": [100.0, 101.5, 101.0, 101.5, 103.5, 103.0, 104.0, 105.5, 105.0, 105.5],
            "Volume": [1000000] * 10,
        }
    ).set_index("Date")


@pytest.fixture
def growing_company_facts() -> dict[str, list[RawFactPoint]]:
    """Six fiscal years (2019-2024) of clean annual filings."""
    return annual_facts(list(range(2019, 2025)))


@pytest.fixture
def quote_info() -> dict:
    """A complete yfinance info dict."""
    return {
        "longName": "Example Corp",
        "shortName": "Example",
        "sector": "Technology",
        "industry": "Software",
        "regularMarketPrice": 30.0,
        "previousClose": 29.5,
        "marketCap": 3_000.0,
        "sharesOutstanding": 100.0,
        "beta": 1.1,
        "targetMeanPrice": 33.0,
        "revenueGrowth": 0.10,
        "earningsGrowth": 0.12,
        "trailingEps": 2.4,
        "bookValue": 12.0,
        "trailingPE": 12.5,
        "priceToSalesTrailing12Months": 1.9,
        "priceToBook": 2.5,
    }


def company_facts_payload(facts: dict[str, list[RawFactPoint]], cover_shares: float | None = None) -> dict:
    """Render a fact index as an EDGAR companyfacts JSON body."""
    us_gaap: dict = {}
    for tag, points in facts.items():
        for point in points:
            entry = {
                "end": point.period_end.isoformat(),
                "val": point.value,
                "fp": point.fiscal_period,
                "filed": point.filed.isoformat() if point.filed else None,
                "form": "10-K",
            }
            if point.period_start is not None:
                entry["start"] = point.period_start.isoformat()
            us_gaap.setdefault(tag, {"units": {}})["units"].setdefault(point.unit, []).append(entry)

    payload = {"cik": 320193, "entityName": "Example Corp", "facts": {"us-gaap": us_gaap}}
    if cover_shares is not None:
        payload["facts"]["dei"] = {
            "EntityCommonStockSharesOutstanding": {
                "units": {"shares": [{"end": "2025-01-20", "val": cover_shares, "fp": "FY", "filed": "2025-02-15"}]}
            }
        }
    return payload


TICKER_DIRECTORY_PAYLOAD = {
    "0": {"cik_str": 320193, "ticker": "EXMP", "title": "Example Corp"},
    "1": {"cik_str": 789019, "ticker": "MSFT", "title": "MICROSOFT CORP"},
}


PROVENANCE = {"source": "test", "attempts": 1, "total_backoff_seconds": 0.0}


def market_statements() -> dict[str, dict[str, pd.DataFrame]]:
    """yfinance-shaped statements for a non-filer."""
    columns = [pd.Timestamp("2024-12-31"), pd.Timestamp("2023-12-31")]
    income = pd.DataFrame(
        [[500.0, 450.0], [60.0, 50.0], [80.0, 70.0], [10.0, 10.0]],
        index=["Total Revenue", "Net Income", "Operating Income", "Diluted Average Shares"],
        columns=columns,
    )
    balance = pd.DataFrame([[900.0, 850.0], [400.0, 380.0]], index=["Total Assets", "Stockholders Equity"], columns=columns)
    cashflow = pd.DataFrame([[90.0, 80.0], [-20.0, -18.0]], index=["Operating Cash Flow", "Capital Expenditure"], columns=columns)
    return {
        "annual": {"income": income, "balance": balance, "cashflow": cashflow},
        "quarterly": {"income": pd.DataFrame(), "balance": pd.DataFrame(), "cashflow": pd.DataFrame()},
    }


class FakeFeeds:
    """Patches both upstream clients with AsyncMocks."""

    def __init__(self, quote_info=None, facts=None, statements=None, bars=None):
        directory = parse_ticker_directory(TICKER_DIRECTORY_PAYLOAD)
        facts_result = (
            (company_facts_payload(facts, cover_shares=95.0), PROVENANCE) if facts is not None
            else UpstreamRetryError("Failed after 4 attempts: 503")
        )
        quote_result = (quote_info, PROVENANCE) if quote_info is not None else ValueError("No quote for symbol")
        history_result = (bars, PROVENANCE) if bars is not None else ValueError("No data returned")

        self.mocks = {
            "valuation_mcp.data.sec_client.fetch_ticker_directory": AsyncMock(return_value=directory),
            "valuation_mcp.data.sec_client.fetch_company_facts": self._mock(facts_result),
            "valuation_mcp.data.yfinance_client.fetch_info": self._mock(quote_result),
            "valuation_mcp.data.yfinance_client.fetch_history": self._mock(history_result),
            "valuation_mcp.data.yfinance_client.fetch_insider_transactions": AsyncMock(return_value=pd.DataFrame()),
            "valuation_mcp.data.yfinance_client.fetch_statements": self._mock(
                statements if statements is not None else UpstreamRetryError("Failed after 4 attempts")
            ),
        }
        self._patches = [patch(target, mock) for target, mock in self.mocks.items()]

    @staticmethod
    def _mock(result) -> AsyncMock:
        if isinstance(result, Exception):
            return AsyncMock(side_effect=result)
        return AsyncMock(return_value=result)

    def __getitem__(self, name: str) -> AsyncMock:
        return next(mock for target, mock in self.mocks.items() if target.endswith(f".{name}"))

    def __enter__(self) -> "FakeFeeds":
        for p in self._patches:
            p.start()
        return self

    def __exit__(self, *exc) -> None:
        for p in self._patches:
            p.stop()
