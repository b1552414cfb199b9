"""Aggregated stock report tool."""

import logging
from datetime import date
from time import perf_counter
from typing import Any

from valuation_mcp.data.yfinance_client import get_market_state
from valuation_mcp.engine.history import financial_ratios, per_share_metrics
from valuation_mcp.engine.insiders import summarize_insider_activity
from valuation_mcp.engine.signals import compute_signal
from valuation_mcp.engine.valuation import run_valuation
from valuation_mcp.service import Snapshot, get_service
from valuation_mcp.tools.errors import error_response
from valuation_mcp.tools.valuation import filings_provenance
from valuation_mcp.utils.numbers import safe_float
from valuation_mcp.utils.provenance import build_meta, build_provenance, utc_now_iso
from valuation_mcp.utils.sanitize import sanitize_text

logger = logging.getLogger(__name__)


def build_profile(snapshot: Snapshot) -> dict[str, Any]:
    info = snapshot.info or {}
    company = snapshot.company
    return {
        "name": sanitize_text(info.get("longName") or info.get("shortName") or (company.title if company else None)),
        "cik": company.cik if company else None,
        "sector": sanitize_text(info.get("sector")),
        "industry": sanitize_text(info.get("industry")),
        "exchange": info.get("exchange"),
        "currency": info.get("currency", "USD"),
        "country": sanitize_text(info.get("country")),
        "website": sanitize_text(info.get("website")),
        "employees": info.get("fullTimeEmployees"),
        "description": sanitize_text(info.get("longBusinessSummary"), max_length=500),
    }


def build_quote(snapshot: Snapshot) -> dict[str, Any]:
    info = snapshot.info or {}
    market = snapshot.market()
    return {
        "price": market.price,
        "previous_close": safe_float(info.get("previousClose") or info.get("regularMarketPreviousClose")),
        "market_cap": market.market_cap,
        "shares_outstanding": market.shares_outstanding,
        "beta": market.beta,
        "fifty_two_week_high": safe_float(info.get("fiftyTwoWeekHigh")),
        "fifty_two_week_low": safe_float(info.get("fiftyTwoWeekLow")),
        "trailing_pe": market.trailing_pe,
        "price_to_book": market.price_to_book,
        "analyst_target": market.analyst_target,
        "analyst_count": info.get("numberOfAnalystOpinions"),
        "recommendation": info.get("recommendationKey"),
        "market_state": get_market_state()["state"],
    }


async def stock_report(symbol: str) -> dict[str, Any]:
    """
    Full report: profile, quote, statements, ratios, per-share metrics,
    composite valuation, trading signal, insider activity and data quality.

    Args:
        symbol: Stock ticker symbol
    """
    start_time = perf_counter()

    service = get_service()
    try:
        snapshot = await service.snapshot(symbol, include_prices=True, include_insiders=True)
    except Exception as e:
        return error_response(e, symbol)

    market = snapshot.market()
    valuation = run_valuation(snapshot.annual, market, snapshot.prices, service.config)
    signal = compute_signal(snapshot.prices)
    insiders = summarize_insider_activity(snapshot.insiders, as_of=date.today())
    live_shares = snapshot.live_shares
    missing = valuation.assumptions["confidence"]["missing"]

    if valuation.composite_value is None:
        logger.info(f"stock_report({snapshot.symbol}): no usable valuation method")

    duration_ms = (perf_counter() - start_time) * 1000
    return {
        "meta": build_meta("stock_report", duration_ms),
        "data_provenance": {
            "filings": filings_provenance(snapshot),
            "quote": build_provenance(source="yfinance", as_of=utc_now_iso()),
            "price": build_provenance(
                source="yfinance",
                as_of=utc_now_iso(),
                bars=len(snapshot.prices) if snapshot.prices is not None else 0,
            ),
        },
        "symbol": snapshot.symbol,
        "profile": build_profile(snapshot),
        "quote": build_quote(snapshot),
        "statements": {
            "annual": snapshot.annual.to_dict(),
            "quarterly": snapshot.quarterly.to_dict(),
        },
        "ratios": {
            "annual": financial_ratios(snapshot.annual),
            "quarterly": financial_ratios(snapshot.quarterly),
        },
        "per_share": {
            "annual": per_share_metrics(snapshot.annual, live_shares),
            "quarterly": per_share_metrics(snapshot.quarterly, live_shares),
        },
        "valuation": valuation.to_dict(),
        "trading_signal": signal.to_dict(),
        "insider_activity": insiders.to_dict(),
        "data_quality": snapshot.data_quality(missing),
    }
