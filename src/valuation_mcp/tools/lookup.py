"""Ticker lookup against the filer directory."""

from time import perf_counter
from typing import Any

from valuation_mcp.data.sec_client import search_directory
from valuation_mcp.service import get_service
from valuation_mcp.tools.errors import error_response
from valuation_mcp.utils.provenance import build_error_response, build_meta, build_provenance, utc_now_iso
from valuation_mcp.utils.sanitize import sanitize_text


async def ticker_lookup(query: str, limit: int = 10) -> dict[str, Any]:
    """
    Search the SEC ticker directory by ticker or company name.

    Args:
        query: Ticker or part of a company name
        limit: Maximum number of results (default: 10)

    Returns:
        Dict with matching filers (ticker, CIK, name) and the exact match, if any
    """
    start_time = perf_counter()

    cleaned = sanitize_text(query, max_length=100) or ""
    if not cleaned:
        return build_error_response("invalid_parameters", "Query is required")

    try:
        directory = await get_service().directory()
    except Exception as e:
        return error_response(e, None)

    matches = search_directory(directory, cleaned, limit=max(1, min(limit, 50)))
    normalized_query = cleaned.upper()
    exact_match = next(
        (r.ticker for r in matches if r.ticker in (normalized_query, normalized_query.replace(".", "-"))),
        None,
    )

    duration_ms = (perf_counter() - start_time) * 1000
    return {
        "meta": build_meta("ticker_lookup", duration_ms),
        "data_provenance": {
            "directory": build_provenance(
                source="sec_edgar",
                as_of=utc_now_iso(),
                query=cleaned,
                directory_size=len(directory),
            ),
        },
        "results": [r.to_dict() for r in matches],
        "exact_match": exact_match,
    }
