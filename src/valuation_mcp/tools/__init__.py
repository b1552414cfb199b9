"""Valuation tools."""

from valuation_mcp.tools.financials import financial_history
from valuation_mcp.tools.lookup import ticker_lookup
from valuation_mcp.tools.price_history import price_history
from valuation_mcp.tools.report import stock_report
from valuation_mcp.tools.signal import trading_signal
from valuation_mcp.tools.valuation import implied_growth, valuation

__all__ = [
    "financial_history",
    "implied_growth",
    "price_history",
    "stock_report",
    "ticker_lookup",
    "trading_signal",
    "valuation",
]
