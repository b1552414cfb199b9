"""Data layer for fetching and caching filings and market data."""

from valuation_mcp.data.cache import CacheEntry, PriceCache, TtlCache, price_cache
from valuation_mcp.data.retry import (
    SEC_POLICY,
    YFINANCE_POLICY,
    FeedPolicy,
    IncompleteQuoteError,
    RetryResult,
    ServerShuttingDownError,
    UpstreamRetryError,
    shutdown_executor,
)
from valuation_mcp.data.sec_client import (
    CompanyRecord,
    TickerNotFoundError,
    fetch_company_facts,
    fetch_ticker_directory,
    resolve_ticker,
    search_directory,
)
from valuation_mcp.data.yfinance_client import (
    fetch_history,
    fetch_info,
    fetch_insider_transactions,
    fetch_statements,
    get_market_state,
)

__all__ = [
    # Cache
    "CacheEntry",
    "PriceCache",
    "TtlCache",
    "price_cache",
    # Retry
    "SEC_POLICY",
    "YFINANCE_POLICY",
    "FeedPolicy",
    "IncompleteQuoteError",
    "RetryResult",
    "ServerShuttingDownError",
    "UpstreamRetryError",
    "shutdown_executor",
    # SEC
    "CompanyRecord",
    "TickerNotFoundError",
    "fetch_company_facts",
    "fetch_ticker_directory",
    "resolve_ticker",
    "search_directory",
    # yfinance
    "fetch_history",
    "fetch_info",
    "fetch_insider_transactions",
    "fetch_statements",
    "get_market_state",
]
