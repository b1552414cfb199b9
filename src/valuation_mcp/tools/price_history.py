"""Daily price history tool backing the price:// resource."""

from time import perf_counter
from typing import Any

from valuation_mcp.data.cache import price_cache
from valuation_mcp.data.yfinance_client import fetch_history, get_market_state
from valuation_mcp.engine.signals import MIN_BARS
from valuation_mcp.tools.errors import error_response
from valuation_mcp.utils.ohlcv import df_to_rows, summarize_bars, valid_bars
from valuation_mcp.utils.provenance import build_error_response, build_meta, build_provenance, utc_now_iso
from valuation_mcp.utils.validators import FetchParams, InvalidTickerError

PREVIEW_ROWS = 5


async def price_history(
    symbol: str,
    period: str = "1y",
    interval: str = "1d",
    adjusted: bool = True,
    include_preview: bool = True,
) -> dict[str, Any]:
    """
    Fetch bars, cache them as CSV and return a summary plus the resource URI.

    Args:
        symbol: Stock ticker symbol
        period: 1mo, 3mo, 6mo, 1y, 2y, 5y, 10y, ytd or max
        interval: 1d, 1wk or 1mo
        adjusted: Split/dividend-adjusted closes (default: True)
        include_preview: Include the last few bars inline (default: True)
    """
    start_time = perf_counter()

    try:
        params = FetchParams(symbol=symbol, period=period, interval=interval, adjusted=adjusted)
    except InvalidTickerError as e:
        return error_response(e, symbol)
    except ValueError as e:
        return build_error_response("invalid_parameters", str(e), symbol=symbol)

    try:
        df, provenance = await fetch_history(params)
    except ValueError as e:
        return build_error_response("not_found", str(e), symbol=symbol)
    except Exception as e:
        return error_response(e, symbol)

    uri = price_cache.store(params, df)
    market_state = get_market_state(params.tz)
    usable = len(valid_bars(df))

    duration_ms = (perf_counter() - start_time) * 1000
    response: dict[str, Any] = {
        "meta": build_meta("price_history", duration_ms),
        "data_provenance": {
            "price": build_provenance(
                source="yfinance",
                as_of=utc_now_iso(),
                bar_timezone=params.tz,
                price_adjustment="auto_adjust_true" if adjusted else "auto_adjust_false",
                market_state=market_state["state"],
                attempts=provenance.get("attempts"),
            ),
        },
        "symbol": params.symbol,
        "period": params.period,
        "interval": params.interval,
        "adjusted": adjusted,
        "summary": summarize_bars(df),
        "valid_bars": usable,
        # Daily bars only; the signal needs MIN_BARS of them
        "signal_ready": params.interval == "1d" and usable >= MIN_BARS,
        "resource_uri": uri,
        "resource_metadata": price_cache.get_metadata(uri),
    }
    if include_preview:
        response["preview"] = df_to_rows(df.tail(PREVIEW_ROWS))
    return response
