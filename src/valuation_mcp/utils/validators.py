"""Validation utilities and parameter classes."""

import re
from dataclasses import dataclass
from typing import Any

# Allowlists for cache key stability
VALID_PERIODS = {"1mo", "3mo", "6mo", "1y", "2y", "5y", "10y", "ytd", "max"}
VALID_INTERVALS = {"1d", "1wk", "1mo"}

# Letters, digits, dot and hyphen (BRK.B, BF-B), at most 10 characters
TICKER_PATTERN = re.compile(r"^[A-Za-z0-9.\-]{1,10}$")


class InvalidTickerError(ValueError):
    """Raised when a ticker fails validation before any upstream call."""

    pass


def normalize_ticker(symbol: str | None) -> str:
    """
    Validate and normalize a ticker symbol.

    Args:
        symbol: Raw ticker input

    Returns:
        Uppercased, stripped ticker

    Raises:
        InvalidTickerError: If the ticker is empty or fails the allowed pattern
    """
    if symbol is None:
        raise InvalidTickerError("Ticker symbol is required")
    cleaned = symbol.strip().upper()
    if not cleaned:
        raise InvalidTickerError("Ticker symbol is required")
    if not TICKER_PATTERN.match(cleaned):
        raise InvalidTickerError(
            f"Invalid ticker '{symbol}'. Use 1-10 letters, digits, '.' or '-'"
        )
    return cleaned


@dataclass(frozen=True)
class FetchParams:
    """Immutable fetch parameters. Used for cache key + fetch."""

    symbol: str
    period: str = "5y"
    interval: str = "1d"
    adjusted: bool = True
    tz: str = "America/New_York"

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbol", normalize_ticker(self.symbol))

        period = self.period.lower().strip()
        interval = self.interval.lower().strip()

        if period not in VALID_PERIODS:
            raise ValueError(f"Invalid period '{self.period}'. Must be one of: {VALID_PERIODS}")
        if interval not in VALID_INTERVALS:
            raise ValueError(
                f"Invalid interval '{self.interval}'. Must be one of: {VALID_INTERVALS}"
            )

        object.__setattr__(self, "period", period)
        object.__setattr__(self, "interval", interval)

    def to_uri(self) -> str:
        """Canonical URI for caching."""
        adj = "adjusted" if self.adjusted else "unadjusted"
        return f"price://{self.symbol}/{self.period}/{self.interval}/{adj}"

    def to_yf_kwargs(self) -> dict[str, Any]:
        """Kwargs for yf.download()."""
        return {
            "tickers": self.symbol,
            "period": self.period,
            "interval": self.interval,
            "auto_adjust": self.adjusted,
            "progress": False,
        }

