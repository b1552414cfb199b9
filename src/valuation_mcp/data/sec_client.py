"""SEC EDGAR client: ticker directory and XBRL company facts."""

import logging
import os
from dataclasses import dataclass
from typing import Any

import requests

from valuation_mcp.data.retry import SEC_POLICY, retry_with_backoff

logger = logging.getLogger(__name__)

SEC_TICKERS_URL = "https://www.sec.gov/files/company_tickers.json"
SEC_COMPANYFACTS_URL = "https://data.sec.gov/api/xbrl/companyfacts/CIK{cik}.json"

# EDGAR rejects requests without a descriptive User-Agent
_user_agent = os.environ.get("SEC_USER_AGENT", "valuation-mcp/0.1 (contact: admin@example.com)")
_request_timeout = float(os.environ.get("SEC_REQUEST_TIMEOUT", "10"))


class TickerNotFoundError(LookupError):
    """Raised when a ticker is not present in the filer directory."""

    def __init__(self, symbol: str):
        super().__init__(f"Ticker not found in SEC directory: {symbol}")
        self.symbol = symbol


@dataclass(frozen=True)
class CompanyRecord:
    """One filer in the ticker directory."""

    cik: str
    ticker: str
    title: str

    def to_dict(self) -> dict[str, str]:
        return {"cik": self.cik, "ticker": self.ticker, "title": self.title}


TickerDirectory = dict[str, CompanyRecord]


def _headers() -> dict[str, str]:
    return {"User-Agent": _user_agent, "Accept": "application/json"}


def _get_json(url: str) -> Any:
    resp = requests.get(url, headers=_headers(), timeout=_request_timeout)
    resp.raise_for_status()
    return resp.json()


def parse_ticker_directory(payload: Any) -> TickerDirectory:
    """
    Build a ticker -> CompanyRecord map from company_tickers.json.

    The payload is an object keyed by row index; malformed rows are skipped.
    CIKs are zero-padded to 10 digits.
    """
    if isinstance(payload, dict):
        rows = payload.values()
    elif isinstance(payload, list):
        rows = payload
    else:
        return {}

    directory: TickerDirectory = {}
    for item in rows:
        if not isinstance(item, dict):
            continue
        cik = item.get("cik_str") or item.get("cik")
        ticker = str(item.get("ticker", "")).upper().strip()
        if cik is None or not ticker:
            continue
        try:
            cik_num = int(cik)
        except (TypeError, ValueError):
            continue
        directory.setdefault(
            ticker,
            CompanyRecord(cik=str(cik_num).zfill(10), ticker=ticker, title=str(item.get("title", "")).strip()),
        )
    return directory


def resolve_ticker(directory: TickerDirectory, symbol: str) -> CompanyRecord:
    """
    Look up a normalized ticker; share-class dots are tried as hyphens (BRK.B -> BRK-B).

    Raises:
        TickerNotFoundError: If neither spelling is present
    """
    for candidate in (symbol, symbol.replace(".", "-")):
        record = directory.get(candidate)
        if record is not None:
            return record
    raise TickerNotFoundError(symbol)


def search_directory(directory: TickerDirectory, query: str, limit: int = 10) -> list[CompanyRecord]:
    """Exact ticker match first, then tickers and titles containing the query."""
    q = query.strip().upper()
    if not q:
        return []

    matches: list[CompanyRecord] = []
    exact = directory.get(q) or directory.get(q.replace(".", "-"))
    if exact is not None:
        matches.append(exact)

    for record in directory.values():
        if len(matches) >= limit:
            break
        if record in matches:
            continue
        if q in record.ticker or q in record.title.upper():
            matches.append(record)
    return matches[:limit]


async def fetch_ticker_directory() -> TickerDirectory:
    """
    Fetch the full ticker directory.

    Raises:
        UpstreamRetryError: If all retries exhausted for retryable errors
        requests.HTTPError: For non-retryable HTTP failures
    """
    retry_result = await retry_with_backoff(
        "fetch_ticker_directory",
        lambda: _get_json(SEC_TICKERS_URL),
        policy=SEC_POLICY,
    )
    directory = parse_ticker_directory(retry_result.result)
    logger.info(f"Loaded SEC ticker directory: {len(directory)} tickers")
    return directory


async def fetch_company_facts(cik: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Fetch the XBRL company-facts document for a CIK.

    Returns:
        Tuple of (payload, provenance_dict)

    Raises:
        UpstreamRetryError: If all retries exhausted for retryable errors
        requests.HTTPError: For non-retryable HTTP failures (e.g., 404 for non-filers)
    """
    url = SEC_COMPANYFACTS_URL.format(cik=cik)
    retry_result = await retry_with_backoff(
        f"fetch_company_facts({cik})",
        lambda: _get_json(url),
        policy=SEC_POLICY,
    )
    payload = retry_result.result
    if not isinstance(payload, dict):
        raise ValueError(f"Unexpected company facts payload for CIK {cik}")
    return payload, retry_result.to_provenance()
