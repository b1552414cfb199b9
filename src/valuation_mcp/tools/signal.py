"""Trading signal tool."""

from time import perf_counter
from typing import Any

from valuation_mcp.data.yfinance_client import get_market_state
from valuation_mcp.engine.signals import compute_signal
from valuation_mcp.service import get_service
from valuation_mcp.tools.errors import error_response
from valuation_mcp.utils.provenance import build_error_response, build_meta, build_provenance, utc_now_iso
from valuation_mcp.utils.validators import InvalidTickerError, normalize_ticker


async def trading_signal(symbol: str) -> dict[str, Any]:
    """
    Mean-reversion signal from the daily price series.

    Args:
        symbol: Stock ticker symbol

    Returns:
        Dict with action, regime, confidence, z-score, zones, targets and levels
    """
    start_time = perf_counter()

    try:
        normalized = normalize_ticker(symbol)
        df, provenance = await get_service().price_history(normalized)
    except InvalidTickerError as e:
        return error_response(e, symbol)
    except ValueError as e:
        # No bars at all for the symbol
        return build_error_response("not_found", str(e), symbol=symbol)
    except Exception as e:
        return error_response(e, symbol)

    signal = compute_signal(df)
    market_state = get_market_state()

    duration_ms = (perf_counter() - start_time) * 1000
    return {
        "meta": build_meta("trading_signal", duration_ms),
        "data_provenance": {
            "price": build_provenance(
                source="yfinance",
                as_of=utc_now_iso(),
                bars=len(df),
                last_bar_date=df["date"].iloc[-1] if len(df) > 0 else None,
                market_state=market_state["state"],
                attempts=provenance.get("attempts"),
            ),
        },
        "symbol": normalized,
        "signal": signal.to_dict(),
    }
