"""Utility modules."""

from valuation_mcp.utils.indicators import (
    calculate_anchored_vwap,
    calculate_atr,
    calculate_sma,
    calculate_vwma,
    population_std,
)
from valuation_mcp.utils.numbers import safe_div, safe_float, safe_round
from valuation_mcp.utils.ohlcv import df_to_csv, df_to_rows, standardize_ohlcv
from valuation_mcp.utils.provenance import build_error_response, build_meta, build_provenance
from valuation_mcp.utils.sanitize import sanitize_text
from valuation_mcp.utils.validators import FetchParams, InvalidTickerError, normalize_ticker

__all__ = [
    "calculate_anchored_vwap",
    "calculate_atr",
    "calculate_sma",
    "calculate_vwma",
    "population_std",
    "safe_div",
    "safe_float",
    "safe_round",
    "df_to_csv",
    "df_to_rows",
    "standardize_ohlcv",
    "build_error_response",
    "build_meta",
    "build_provenance",
    "sanitize_text",
    "FetchParams",
    "InvalidTickerError",
    "normalize_ticker",
]
