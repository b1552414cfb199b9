"""Reconciled financial statement history tool."""

from time import perf_counter
from typing import Any

from valuation_mcp.engine.history import build_history, financial_ratios, per_share_metrics
from valuation_mcp.service import get_service
from valuation_mcp.tools.errors import error_response
from valuation_mcp.tools.valuation import filings_provenance
from valuation_mcp.utils.provenance import build_error_response, build_meta

PERIOD_TYPES = ("annual", "quarterly")
MAX_PERIODS = 20


async def financial_history(symbol: str, period_type: str = "annual", limit: int = 10) -> dict[str, Any]:
    """
    Income, balance sheet and cash flow history with ratios and per-share metrics.

    Args:
        symbol: Stock ticker symbol
        period_type: "annual" or "quarterly"
        limit: Number of periods (1-20, newest first)
    """
    start_time = perf_counter()

    period_type = period_type.lower().strip()
    if period_type not in PERIOD_TYPES:
        return build_error_response(
            "invalid_parameters",
            f"period_type must be one of {PERIOD_TYPES}",
            symbol=symbol,
        )
    if not 1 <= limit <= MAX_PERIODS:
        return build_error_response(
            "invalid_parameters",
            f"limit must be between 1 and {MAX_PERIODS}",
            symbol=symbol,
        )

    try:
        snapshot = await get_service().snapshot(symbol, include_prices=False)
    except Exception as e:
        return error_response(e, symbol)

    history = build_history(snapshot.facts, period_type, limit)
    live_shares = snapshot.live_shares

    duration_ms = (perf_counter() - start_time) * 1000
    return {
        "meta": build_meta("financial_history", duration_ms),
        "data_provenance": {"filings": filings_provenance(snapshot)},
        "symbol": snapshot.symbol,
        "period_type": period_type,
        "statements": history.to_dict(),
        "ratios": financial_ratios(history),
        "per_share": per_share_metrics(history, live_shares),
    }
