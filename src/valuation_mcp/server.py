"""Valuation MCP Server using FastMCP."""

import asyncio
import json
import logging
import os

from fastmcp import FastMCP

from valuation_mcp import SCHEMA_VERSION, SERVER_VERSION
from valuation_mcp.data.retry import shutdown_executor
from valuation_mcp.resources.price_resource import ResourceNotFoundError, read_price_resource
from valuation_mcp.tools import (
    financial_history,
    implied_growth,
    price_history,
    stock_report,
    ticker_lookup,
    trading_signal,
    valuation,
)

# Configure logging
log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, log_level, logging.INFO))
logger = logging.getLogger(__name__)

mcp = FastMCP(
    name="valuation",
)


# ============================================================================
# TOOLS
# ============================================================================


@mcp.tool
async def get_stock_report(symbol: str) -> str:
    """
    Full equity report for a ticker.

    Reconciles SEC filings (falling back to market-feed statements), then
    returns profile, quote, annual and quarterly statements, ratios,
    per-share metrics, a composite fair value, a mean-reversion trading
    signal, six-month insider activity and a data-quality block.

    Args:
        symbol: Stock ticker symbol (e.g., AAPL, BRK.B)

    Returns:
        JSON report; on failure an error object with error_type
        invalid_symbol, not_found or data_unavailable
    """
    result = await stock_report(symbol=symbol)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_valuation(symbol: str) -> str:
    """
    Composite intrinsic value from DCF, exit-multiple, earnings power,
    historical multiples, PEG/PSG and analyst target.

    Each method is listed with its raw value, weight and effective share of
    the blend; the Graham number is reported but not blended.

    Args:
        symbol: Stock ticker symbol

    Returns:
        JSON with methods, composite value, upside percent and assumptions
    """
    result = await valuation(symbol=symbol)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_trading_signal(symbol: str) -> str:
    """
    Classify recent daily price action into a trend/range regime and a
    discrete action (WAIT, SCALE IN, ACCUMULATE, TAKE PROFIT, REDUCE EXPOSURE).

    Args:
        symbol: Stock ticker symbol

    Returns:
        JSON with action, regime, confidence, z-score, entry zone, targets and ATR stop
    """
    result = await trading_signal(symbol=symbol)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_implied_growth(
    symbol: str,
    basis: str = "eps",
    terminal_multiple: float | None = None,
    required_return: float | None = None,
    years: int | None = None,
) -> str:
    """
    Reverse valuation: the annual growth the current price implies.

    Args:
        symbol: Stock ticker symbol
        basis: "eps" or "fcf" (free cash flow per share)
        terminal_multiple: Exit multiple (default: 15)
        required_return: Required annual return (default: CAPM cost of equity)
        years: Horizon in years (default: 5)

    Returns:
        JSON with the implied growth rate and the inputs used
    """
    result = await implied_growth(
        symbol=symbol,
        basis=basis,
        terminal_multiple=terminal_multiple,
        required_return=required_return,
        years=years,
    )
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_financial_history(symbol: str, period_type: str = "annual", limit: int = 10) -> str:
    """
    Reconciled income statement, balance sheet and cash flow history.

    Args:
        symbol: Stock ticker symbol
        period_type: "annual" or "quarterly"
        limit: Number of periods, newest first (1-20)

    Returns:
        JSON with statements, ratios and per-share metrics per period
    """
    result = await financial_history(symbol=symbol, period_type=period_type, limit=limit)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def lookup_ticker(query: str, limit: int = 10) -> str:
    """
    Look up SEC filers by ticker or company name.

    Args:
        query: Ticker or part of a company name
        limit: Maximum number of results (default: 10)

    Returns:
        JSON with matching tickers, CIKs and names
    """
    result = await ticker_lookup(query=query, limit=limit)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_price_history(
    symbol: str,
    period: str = "1y",
    interval: str = "1d",
    adjusted: bool = True,
    include_preview: bool = True,
) -> str:
    """
    Fetch historical price data with summary statistics.

    Args:
        symbol: Stock ticker symbol
        period: Time period - 1mo, 3mo, 6mo, 1y, 2y, 5y, 10y, ytd, max
        interval: Bar interval - 1d, 1wk, 1mo
        adjusted: Use split/dividend adjusted prices (default: true)
        include_preview: Include last 5 bars in response (default: true)

    Returns:
        JSON with price summary, preview bars, whether the window supports
        get_trading_signal, and the resource URI and cache metadata for the full CSV
    """
    result = await price_history(
        symbol=symbol,
        period=period,
        interval=interval,
        adjusted=adjusted,
        include_preview=include_preview,
    )
    return json.dumps(result, indent=2, default=str)


# ============================================================================
# RESOURCES
# ============================================================================


@mcp.resource("price://{symbol}/{period}/{interval}/{adjusted}")
def get_cached_price_data(symbol: str, period: str, interval: str, adjusted: str) -> str:
    """
    Get cached price data as CSV.

    Must call get_price_history first to populate the cache.
    """
    try:
        return read_price_resource(symbol, period, interval, adjusted)
    except (ResourceNotFoundError, ValueError) as e:
        return f"Error: {e}"


# ============================================================================
# ENTRY POINT
# ============================================================================


def main() -> None:
    """Run the MCP server."""
    logger.info(f"Starting Valuation MCP Server v{SERVER_VERSION} (schema v{SCHEMA_VERSION})")
    try:
        mcp.run()
    finally:
        asyncio.run(shutdown_executor())


if __name__ == "__main__":
    main()
