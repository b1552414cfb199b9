"""Request orchestration: fetch both feeds, fall back, assemble a snapshot.

One `ReportService` lives for the process. It owns the ticker-directory and
price-history caches; everything it computes per request is derived from the
snapshot and never shared between requests.
"""

import asyncio
import logging
import os
from collections.abc import Awaitable
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any

import pandas as pd

from valuation_mcp.data import sec_client, yfinance_client
from valuation_mcp.data.cache import TtlCache
from valuation_mcp.data.sec_client import CompanyRecord, TickerDirectory, TickerNotFoundError
from valuation_mcp.engine.config import ValuationConfig
from valuation_mcp.engine.facts import (
    FactIndex,
    facts_from_statement_frame,
    latest_value,
    merge_fact_indexes,
    parse_company_facts,
)
from valuation_mcp.engine.history import SHARES_OUTSTANDING_CANDIDATES, StatementHistory, build_history
from valuation_mcp.engine.valuation import MarketInputs
from valuation_mcp.utils.numbers import safe_float
from valuation_mcp.utils.validators import FetchParams, normalize_ticker

logger = logging.getLogger(__name__)

FEED_TIMEOUT_SECONDS = float(os.environ.get("FEED_TIMEOUT_SECONDS", "12"))
DIRECTORY_CACHE_TTL = float(os.environ.get("DIRECTORY_CACHE_TTL", str(24 * 3600)))
HISTORY_CACHE_TTL = float(os.environ.get("HISTORY_CACHE_TTL", str(6 * 3600)))

ANNUAL_LIMIT = 10
QUARTERLY_LIMIT = 12

# Daily bars backing the signal (SMA200) and historical multiples
SIGNAL_HISTORY_PERIOD = "5y"

_DIRECTORY_KEY = "directory"


class DataUnavailableError(RuntimeError):
    """Raised when neither feed produced usable data."""

    def __init__(self, symbol: str, details: dict[str, Any]):
        super().__init__(f"No usable filings or quote data for {symbol}")
        self.symbol = symbol
        self.details = details


@dataclass
class SourceOutcome:
    """Result of one upstream call."""

    name: str
    ok: bool
    duration_ms: float
    error: str | None = None
    message: str | None = None
    provenance: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"available": self.ok, "duration_ms": round(self.duration_ms, 1)}
        if self.error:
            out["error"] = self.error
            out["message"] = self.message
        if self.provenance:
            out["provenance"] = self.provenance
        return out


@dataclass
class Snapshot:
    """Everything fetched and reconciled for one ticker."""

    symbol: str
    company: CompanyRecord | None = None
    info: dict[str, Any] | None = None
    facts: FactIndex = field(default_factory=dict)
    annual: StatementHistory = field(default_factory=lambda: StatementHistory("annual"))
    quarterly: StatementHistory = field(default_factory=lambda: StatementHistory("quarterly"))
    prices: pd.DataFrame | None = None
    insiders: pd.DataFrame | None = None
    fallback_used: bool = False
    sources: dict[str, SourceOutcome] = field(default_factory=dict)

    @property
    def live_shares(self) -> float | None:
        shares = safe_float((self.info or {}).get("sharesOutstanding"))
        if shares is not None and shares > 0:
            return shares
        cover = latest_value(self.facts, SHARES_OUTSTANDING_CANDIDATES, unit="shares")
        return cover.value if cover is not None and cover.value > 0 else None

    def market(self) -> MarketInputs:
        """Quote inputs, with filed share count and last close filling quote gaps."""
        market = MarketInputs.from_quote(self.info)
        if market.shares_outstanding is None:
            market.shares_outstanding = self.live_shares
        if market.price is None and self.prices is not None and not self.prices.empty:
            market.price = safe_float(self.prices["close"].iloc[-1])
        return market

    def data_quality(self, missing_inputs: list[str] | None = None) -> dict[str, Any]:
        def available(name: str) -> bool:
            outcome = self.sources.get(name)
            return bool(outcome and outcome.ok)

        return {
            "filings_available": available("filings"),
            "quote_available": self.info is not None,
            "price_history_available": self.prices is not None and not self.prices.empty,
            "insiders_available": available("insiders"),
            "fallback_used": self.fallback_used,
            "annual_periods": len(self.annual.income),
            "quarterly_periods": len(self.quarterly.income),
            "missing_valuation_inputs": missing_inputs or [],
            "sources": {name: outcome.to_dict() for name, outcome in self.sources.items()},
        }


async def run_with_timeout(
    name: str,
    coro: Awaitable[Any],
    timeout: float,
) -> tuple[Any, SourceOutcome]:
    """Await one upstream call, capturing failures instead of raising."""
    start = perf_counter()
    try:
        result = await asyncio.wait_for(coro, timeout=timeout)
        return result, SourceOutcome(name=name, ok=True, duration_ms=(perf_counter() - start) * 1000)
    except TimeoutError:
        duration = (perf_counter() - start) * 1000
        logger.warning(f"{name}: exceeded {timeout}s")
        return None, SourceOutcome(
            name=name, ok=False, duration_ms=duration, error="TimeoutError", message=f"exceeded {timeout}s"
        )
    except Exception as e:
        duration = (perf_counter() - start) * 1000
        logger.warning(f"{name}: {type(e).__name__}: {e}")
        return e, SourceOutcome(
            name=name, ok=False, duration_ms=duration, error=type(e).__name__, message=str(e)
        )


class ReportService:
    """Fetches, reconciles and caches the inputs every tool works from."""

    def __init__(
        self,
        config: ValuationConfig | None = None,
        timeout: float = FEED_TIMEOUT_SECONDS,
        directory_ttl: float = DIRECTORY_CACHE_TTL,
        history_ttl: float = HISTORY_CACHE_TTL,
    ):
        self.config = config or ValuationConfig.from_env()
        self.timeout = timeout
        self.directory_cache: TtlCache[TickerDirectory] = TtlCache(directory_ttl)
        self.history_cache: TtlCache[tuple[pd.DataFrame, dict[str, Any]]] = TtlCache(history_ttl)

    async def directory(self) -> TickerDirectory:
        cached = self.directory_cache.get(_DIRECTORY_KEY)
        if cached is not None:
            return cached
        directory = await sec_client.fetch_ticker_directory()
        self.directory_cache.set(_DIRECTORY_KEY, directory)
        return directory

    async def resolve(self, symbol: str) -> CompanyRecord:
        return sec_client.resolve_ticker(await self.directory(), symbol)

    async def price_history(self, symbol: str) -> tuple[pd.DataFrame, dict[str, Any]]:
        """Daily bars for the signal, cached per symbol."""
        cached = self.history_cache.get(symbol)
        if cached is not None:
            return cached
        params = FetchParams(symbol=symbol, period=SIGNAL_HISTORY_PERIOD, interval="1d")
        result = await yfinance_client.fetch_history(params)
        self.history_cache.set(symbol, result)
        return result

    async def _filings(self, symbol: str) -> tuple[CompanyRecord, dict[str, Any], dict[str, Any]]:
        company = await self.resolve(symbol)
        payload, provenance = await sec_client.fetch_company_facts(company.cik)
        return company, parse_company_facts(payload), provenance

    async def _fallback_facts(self, snapshot: Snapshot) -> FactIndex | None:
        frames, outcome = await run_with_timeout(
            "market_statements", yfinance_client.fetch_statements(snapshot.symbol), self.timeout
        )
        snapshot.sources["market_statements"] = outcome
        if not outcome.ok:
            return None
        return merge_fact_indexes(*(
            facts_from_statement_frame(frame, period_type)
            for period_type, statements in frames.items()
            for frame in statements.values()
        ))

    async def snapshot(
        self,
        symbol: str,
        include_prices: bool = True,
        include_insiders: bool = False,
    ) -> Snapshot:
        """
        Fetch and reconcile everything known about a ticker.

        Raises:
            InvalidTickerError: Malformed ticker (no upstream calls made)
            TickerNotFoundError: Not in the filer directory and no live quote
            DataUnavailableError: Neither feed usable after the fallback
        """
        normalized = normalize_ticker(symbol)
        snapshot = Snapshot(symbol=normalized)

        calls: list[tuple[str, Awaitable[Any]]] = [
            ("filings", self._filings(normalized)),
            ("quote", yfinance_client.fetch_info(normalized)),
        ]
        if include_prices:
            calls.append(("price_history", self.price_history(normalized)))
        if include_insiders:
            calls.append(("insiders", yfinance_client.fetch_insider_transactions(normalized)))

        results = await asyncio.gather(
            *[run_with_timeout(name, coro, self.timeout) for name, coro in calls]
        )

        filings_error: Any = None
        for (name, _), (result, outcome) in zip(calls, results):
            snapshot.sources[name] = outcome
            if not outcome.ok:
                if name == "filings":
                    filings_error = result
                continue
            if name == "filings":
                snapshot.company, snapshot.facts, outcome.provenance = result
            elif name == "quote":
                snapshot.info, outcome.provenance = result
            elif name == "price_history":
                snapshot.prices, outcome.provenance = result
            elif name == "insiders":
                snapshot.insiders = result

        if isinstance(filings_error, TickerNotFoundError) and snapshot.info is None:
            raise filings_error

        snapshot.annual = build_history(snapshot.facts, "annual", ANNUAL_LIMIT)
        snapshot.quarterly = build_history(snapshot.facts, "quarterly", QUARTERLY_LIMIT)

        # A failed quote says nothing about the statement endpoints
        if snapshot.annual.is_empty:
            logger.info(f"snapshot({normalized}): filings unusable, using market-feed statements")
            fallback = await self._fallback_facts(snapshot)
            if fallback:
                snapshot.facts = merge_fact_indexes(snapshot.facts, fallback)
                snapshot.annual = build_history(snapshot.facts, "annual", ANNUAL_LIMIT)
                snapshot.quarterly = build_history(snapshot.facts, "quarterly", QUARTERLY_LIMIT)
                snapshot.fallback_used = not snapshot.annual.is_empty

        if snapshot.annual.is_empty and snapshot.info is None:
            raise DataUnavailableError(
                normalized,
                {name: outcome.to_dict() for name, outcome in snapshot.sources.items()},
            )

        return snapshot


_service: ReportService | None = None


def get_service() -> ReportService:
    """Process-wide service instance (created on first use)."""
    global _service
    if _service is None:
        _service = ReportService()
    return _service
