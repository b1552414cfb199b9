"""price:// resource handler."""

from valuation_mcp.data.cache import price_cache
from valuation_mcp.utils.validators import FetchParams


class ResourceNotFoundError(Exception):
    """Resource not found in cache."""

    pass


def read_price_resource(symbol: str, period: str, interval: str, adjusted: str) -> str:
    """
    Serve cached price data only; never fetches live.

    Args:
        symbol: Stock ticker symbol
        period: Time period
        interval: Bar interval
        adjusted: 'adjusted' or 'unadjusted'

    Returns:
        CSV text with date,open,high,low,close,volume columns

    Raises:
        ResourceNotFoundError: If the URI has not been populated by get_price_history
        ValueError: If the URI parts are invalid
    """
    is_adjusted = adjusted.lower() == "adjusted"
    params = FetchParams(symbol=symbol, period=period, interval=interval, adjusted=is_adjusted)
    uri = params.to_uri()

    csv_text = price_cache.get_csv(uri)
    if csv_text is None:
        raise ResourceNotFoundError(
            f"Resource not cached. Call get_price_history('{params.symbol}', '{params.period}', "
            f"'{params.interval}', adjusted={str(is_adjusted).lower()}) first: {uri}"
        )
    return csv_text
