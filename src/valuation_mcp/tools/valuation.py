"""Composite valuation and reverse-valuation tools."""

from time import perf_counter
from typing import Any

from valuation_mcp.engine.valuation import reverse_valuation, run_valuation
from valuation_mcp.service import get_service
from valuation_mcp.tools.errors import error_response
from valuation_mcp.utils.provenance import build_error_response, build_meta, build_provenance, utc_now_iso

IMPLIED_GROWTH_BASES = ("eps", "fcf")


def filings_provenance(snapshot: Any) -> dict[str, Any]:
    """Provenance for the statement data behind a snapshot."""
    company = snapshot.company
    return build_provenance(
        source="yfinance_statements" if snapshot.fallback_used else "sec_edgar",
        as_of=utc_now_iso(),
        cik=company.cik if company else None,
        annual_periods=len(snapshot.annual.income),
        quarterly_periods=len(snapshot.quarterly.income),
        fallback_used=snapshot.fallback_used,
    )


async def valuation(symbol: str) -> dict[str, Any]:
    """
    Composite fair value from every available valuation method.

    Args:
        symbol: Stock ticker symbol

    Returns:
        Dict with per-method values, composite value, upside and assumptions
    """
    start_time = perf_counter()

    service = get_service()
    try:
        snapshot = await service.snapshot(symbol, include_prices=True)
    except Exception as e:
        return error_response(e, symbol)

    result = run_valuation(snapshot.annual, snapshot.market(), snapshot.prices, service.config)
    missing = result.assumptions["confidence"]["missing"]

    duration_ms = (perf_counter() - start_time) * 1000
    return {
        "meta": build_meta("valuation", duration_ms),
        "data_provenance": {
            "filings": filings_provenance(snapshot),
            "quote": build_provenance(source="yfinance", as_of=utc_now_iso()),
        },
        "symbol": snapshot.symbol,
        "valuation": result.to_dict(),
        "data_quality": snapshot.data_quality(missing),
    }


async def implied_growth(
    symbol: str,
    basis: str = "eps",
    terminal_multiple: float | None = None,
    required_return: float | None = None,
    years: int | None = None,
) -> dict[str, Any]:
    """
    Growth rate the current price implies under the exit-multiple model.

    Args:
        symbol: Stock ticker symbol
        basis: "eps" or "fcf" per-share base
        terminal_multiple: Exit multiple (default 15)
        required_return: Annual required return (default: cost of equity)
        years: Horizon in years (default 5)
    """
    start_time = perf_counter()

    basis = basis.lower().strip()
    if basis not in IMPLIED_GROWTH_BASES:
        return build_error_response(
            "invalid_parameters",
            f"basis must be one of {IMPLIED_GROWTH_BASES}",
            symbol=symbol,
        )
    if years is not None and years <= 0:
        return build_error_response("invalid_parameters", "years must be positive", symbol=symbol)

    service = get_service()
    try:
        snapshot = await service.snapshot(symbol, include_prices=False)
    except Exception as e:
        return error_response(e, symbol)

    result = reverse_valuation(
        snapshot.annual,
        snapshot.market(),
        basis=basis,
        terminal_multiple=terminal_multiple,
        required_return=required_return,
        years=years,
        config=service.config,
    )

    duration_ms = (perf_counter() - start_time) * 1000
    return {
        "meta": build_meta("implied_growth", duration_ms),
        "data_provenance": {"filings": filings_provenance(snapshot)},
        "symbol": snapshot.symbol,
        "reverse_valuation": result,
    }
