"""Response metadata, provenance and error envelopes."""

from datetime import datetime, timezone
from typing import Any

from valuation_mcp import SCHEMA_VERSION, SERVER_VERSION

# Error kinds a tool may return
ERROR_TYPES = (
    "invalid_symbol",
    "invalid_parameters",
    "not_found",
    "data_unavailable",
    "server_shutting_down",
)


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def build_meta(tool: str, duration_ms: float | None = None) -> dict[str, Any]:
    """
    Build standard metadata block for responses.

    Args:
        tool: Name of the tool producing this response
        duration_ms: Execution time in milliseconds (optional)
    """
    meta: dict[str, Any] = {
        "server_version": SERVER_VERSION,
        "schema_version": SCHEMA_VERSION,
        "tool": tool,
    }
    if duration_ms is not None:
        meta["duration_ms"] = round(duration_ms, 1)
    return meta


def build_provenance(
    source: str,
    as_of: datetime | str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Build data provenance block for a single data source.

    Args:
        source: Data source name (e.g., "sec_edgar", "yfinance")
        as_of: Timestamp of data freshness
        **kwargs: Additional provenance fields
    """
    prov: dict[str, Any] = {"source": source}
    if as_of is not None:
        prov["as_of"] = as_of.isoformat() if isinstance(as_of, datetime) else as_of
    prov.update(kwargs)
    prov.setdefault("warnings", [])
    return prov


def build_error_response(
    error_type: str,
    message: str,
    symbol: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build standardized error response.

    Args:
        error_type: One of ERROR_TYPES
        message: Human-readable error message
        symbol: Symbol that caused the error (if applicable)
        details: Diagnostic detail (e.g., per-source failures)
    """
    if error_type not in ERROR_TYPES:
        raise ValueError(f"Unknown error type: {error_type}")

    response: dict[str, Any] = {
        "error": True,
        "error_type": error_type,
        "message": message,
        "meta": build_meta("error"),
    }
    if symbol is not None:
        response["symbol"] = symbol
    if details:
        response["details"] = details
    return response
