"""Async yfinance client: quote, daily bars, insider trades and statements."""

import logging
from datetime import datetime
from typing import Any

import pandas as pd
import pytz
import yfinance as yf

from valuation_mcp.data.retry import (
    YFINANCE_POLICY,
    IncompleteQuoteError,
    ServerShuttingDownError,
    retry_with_backoff,
    shutdown_event,
)
from valuation_mcp.utils.ohlcv import standardize_ohlcv
from valuation_mcp.utils.validators import FetchParams

logger = logging.getLogger(__name__)

PRICE_KEYS: tuple[str, ...] = ("regularMarketPrice", "currentPrice", "previousClose")
NAME_KEYS: tuple[str, ...] = ("longName", "shortName")

# Ticker attribute per (period type, statement)
STATEMENT_ATTRS: dict[str, dict[str, str]] = {
    "annual": {
        "income": "income_stmt",
        "balance": "balance_sheet",
        "cashflow": "cashflow",
    },
    "quarterly": {
        "income": "quarterly_income_stmt",
        "balance": "quarterly_balance_sheet",
        "cashflow": "quarterly_cashflow",
    },
}


def _check_running() -> None:
    if shutdown_event.is_set():
        raise ServerShuttingDownError("Server is shutting down")


def quote_price(info: dict[str, Any]) -> float | None:
    """First positive price field of a quote."""
    for key in PRICE_KEYS:
        value = info.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value == value and value > 0:
            return float(value)
    return None


def check_quote(symbol: str, info: dict[str, Any] | None) -> dict[str, Any]:
    """
    Validate a quote payload.

    Unknown tickers come back as an (almost) empty dict with neither a name
    nor a price. A name without a price is a partial, retryable response.

    Raises:
        ValueError: No quote exists for the symbol
        IncompleteQuoteError: Partial quote
    """
    if not info:
        raise ValueError(f"No quote for {symbol}")
    has_name = any(info.get(k) for k in NAME_KEYS)
    has_price = quote_price(info) is not None
    if not has_name and not has_price:
        raise ValueError(f"No quote for {symbol}")
    if not has_price:
        raise IncompleteQuoteError(symbol, key_count=len(info))
    return info


async def fetch_history(params: FetchParams) -> tuple[pd.DataFrame, dict[str, Any]]:
    """
    Fetch daily bars, standardized, with retry provenance.

    Raises:
        ServerShuttingDownError: If server is shutting down
        UpstreamRetryError: If all retries exhausted for retryable errors
        ValueError: If no data returned
    """
    _check_running()

    def _fetch() -> pd.DataFrame:
        df = yf.download(**params.to_yf_kwargs())
        if df is None or df.empty:
            raise ValueError(f"No data returned for {params.symbol}")
        return standardize_ohlcv(df)

    retry_result = await retry_with_backoff(f"fetch_history({params.symbol})", _fetch, policy=YFINANCE_POLICY)
    return retry_result.result, retry_result.to_provenance()


async def fetch_info(symbol: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Fetch the live quote and company profile.

    Raises:
        ServerShuttingDownError: If server is shutting down
        UpstreamRetryError: If all retries exhausted for retryable errors
        ValueError: If no quote exists for the symbol
    """
    _check_running()

    def _fetch() -> dict[str, Any]:
        return check_quote(symbol, yf.Ticker(symbol).info)

    retry_result = await retry_with_backoff(f"fetch_info({symbol})", _fetch, policy=YFINANCE_POLICY)
    return retry_result.result, retry_result.to_provenance()


async def fetch_insider_transactions(symbol: str) -> pd.DataFrame:
    """
    Fetch insider transactions (may be empty for symbols without coverage).

    Raises:
        ServerShuttingDownError: If server is shutting down
        UpstreamRetryError: If all retries exhausted for retryable errors
    """
    _check_running()

    def _fetch() -> pd.DataFrame:
        df = yf.Ticker(symbol).insider_transactions
        return df if isinstance(df, pd.DataFrame) else pd.DataFrame()

    retry_result = await retry_with_backoff(
        f"fetch_insider_transactions({symbol})", _fetch, policy=YFINANCE_POLICY
    )
    return retry_result.result


async def fetch_statements(symbol: str) -> dict[str, dict[str, pd.DataFrame]]:
    """
    Fetch annual and quarterly statements for the fallback path.

    Returns:
        {"annual": {"income": df, "balance": df, "cashflow": df}, "quarterly": {...}}
        Missing statements are empty frames.

    Raises:
        ServerShuttingDownError: If server is shutting down
        UpstreamRetryError: If all retries exhausted for retryable errors
    """
    _check_running()

    def _fetch() -> dict[str, dict[str, pd.DataFrame]]:
        ticker = yf.Ticker(symbol)
        frames: dict[str, dict[str, pd.DataFrame]] = {}
        for period_type, attrs in STATEMENT_ATTRS.items():
            frames[period_type] = {}
            for statement, attr in attrs.items():
                df = getattr(ticker, attr, None)
                frames[period_type][statement] = df if isinstance(df, pd.DataFrame) else pd.DataFrame()
        return frames

    retry_result = await retry_with_backoff(f"fetch_statements({symbol})", _fetch, policy=YFINANCE_POLICY)
    return retry_result.result


def get_market_state(tz: str = "America/New_York") -> dict[str, str]:
    """
    Determine market state. Clock-based only (no holiday calendar).

    Returns:
        Dict with state, method, and checked_at timestamp
    """
    now = datetime.now(pytz.timezone(tz))

    if now.weekday() >= 5:
        state = "closed"
    else:
        minutes = now.hour * 60 + now.minute
        if minutes < 4 * 60:
            state = "closed"
        elif minutes < 9 * 60 + 30:
            state = "pre_market"
        elif minutes < 16 * 60:
            state = "regular"
        elif minutes < 20 * 60:
            state = "after_hours"
        else:
            state = "closed"

    return {
        "state": state,
        "method": "clock_only_no_holidays",
        "checked_at": now.isoformat(),
    }
