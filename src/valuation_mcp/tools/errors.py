"""Map pipeline exceptions onto error responses."""

import logging
from typing import Any

from valuation_mcp.data.retry import ServerShuttingDownError
from valuation_mcp.data.sec_client import TickerNotFoundError
from valuation_mcp.service import DataUnavailableError
from valuation_mcp.utils.provenance import build_error_response
from valuation_mcp.utils.validators import InvalidTickerError

logger = logging.getLogger(__name__)


def error_response(error: Exception, symbol: str | None) -> dict[str, Any]:
    """Error envelope for an exception raised while serving a tool call."""
    if isinstance(error, InvalidTickerError):
        return build_error_response("invalid_symbol", str(error), symbol=symbol)
    if isinstance(error, TickerNotFoundError):
        return build_error_response(
            "not_found",
            f"{error.symbol} is not a known filer and has no live quote",
            symbol=symbol,
        )
    if isinstance(error, DataUnavailableError):
        return build_error_response("data_unavailable", str(error), symbol=symbol, details=error.details)
    if isinstance(error, ServerShuttingDownError):
        return build_error_response("server_shutting_down", str(error), symbol=symbol)

    logger.exception(f"Unexpected failure for {symbol}")
    return build_error_response("data_unavailable", f"Failed to fetch data: {error}", symbol=symbol)
