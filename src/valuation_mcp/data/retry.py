"""Blocking feed calls on a shared thread pool, retried per feed policy.

SEC EDGAR (over requests) and Yahoo Finance (over yfinance) are both
blocking. Every call runs on one executor, capped per feed by a semaphore.
Transient failures are retried with exponential backoff and jitter.

The feeds throttle differently: EDGAR answers over-limit clients with 403
("Request Rate Threshold Exceeded") and asks for at most 10 requests per
second; Yahoo answers with 429 or a 401 crumb error.
"""

import asyncio
import dataclasses
import logging
import os
import random
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, TypeVar

from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import HTTPError, Timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_MESSAGES = ("rate limit", "too many requests", "connection", "timeout", "temporary")
CRUMB_RETRIES = 1
INCOMPLETE_QUOTE_RETRIES = 2
TRACE_LENGTH = 3


@dataclass(frozen=True)
class FeedPolicy:
    """Retry budget and concurrency cap for one upstream feed."""

    source: str
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_concurrency: int = 4
    # Statuses this feed uses to say "slow down", besides 5xx
    throttle_statuses: frozenset[int] = field(default_factory=lambda: frozenset({429}))

    @classmethod
    def from_env(cls, source: str, prefix: str, **defaults: Any) -> "FeedPolicy":
        """Defaults overridden by <PREFIX>_MAX_RETRIES, _BASE_DELAY, _MAX_DELAY, _MAX_WORKERS."""
        policy = cls(source=source, **defaults)
        return dataclasses.replace(
            policy,
            max_retries=int(os.environ.get(f"{prefix}_MAX_RETRIES", policy.max_retries)),
            base_delay=float(os.environ.get(f"{prefix}_BASE_DELAY", policy.base_delay)),
            max_delay=float(os.environ.get(f"{prefix}_MAX_DELAY", policy.max_delay)),
            max_concurrency=int(os.environ.get(f"{prefix}_MAX_WORKERS", policy.max_concurrency)),
        )


YFINANCE_POLICY = FeedPolicy.from_env("yfinance", "YF")
SEC_POLICY = FeedPolicy.from_env(
    "sec_edgar",
    "SEC",
    base_delay=0.5,
    max_concurrency=2,
    throttle_statuses=frozenset({403, 429}),
)

_executor = ThreadPoolExecutor(max_workers=YFINANCE_POLICY.max_concurrency + SEC_POLICY.max_concurrency)
_semaphores: dict[str, asyncio.Semaphore] = {}

# Shutdown coordination
shutdown_event = asyncio.Event()


class ServerShuttingDownError(Exception):
    """Raised when server is shutting down."""

    pass


class UpstreamRetryError(Exception):
    """Raised when an upstream call fails after all retries."""

    def __init__(self, message: str, last_error: Exception | None = None):
        super().__init__(message)
        self.last_error = last_error


class IncompleteQuoteError(RuntimeError):
    """Raised when the market feed returns a partial quote (e.g., 401 Invalid Crumb)."""

    def __init__(self, symbol: str, key_count: int):
        super().__init__(f"Incomplete quote for {symbol}: keys={key_count}")
        self.symbol = symbol
        self.key_count = key_count


def _semaphore(policy: FeedPolicy) -> asyncio.Semaphore:
    semaphore = _semaphores.get(policy.source)
    if semaphore is None:
        semaphore = _semaphores[policy.source] = asyncio.Semaphore(policy.max_concurrency)
    return semaphore


def _response(error: Exception) -> Any:
    return getattr(error, "response", None)


def _status_code(error: Exception) -> int | None:
    return getattr(_response(error), "status_code", None)


def retry_after_seconds(error: Exception) -> float | None:
    """Numeric Retry-After header of a throttled response, if the server sent one."""
    response = _response(error)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    value = headers.get("Retry-After")
    if not isinstance(value, (int, float, str)):
        return None
    try:
        seconds = float(value)
    except ValueError:
        # HTTP-date form
        return None
    return seconds if seconds >= 0 else None


def is_retryable_error(error: Exception, policy: FeedPolicy) -> tuple[bool, int]:
    """
    Classify an upstream failure.

    Returns:
        Tuple of (is_retryable, max_retries_for_this_error)
    """
    if isinstance(error, IncompleteQuoteError):
        return (True, INCOMPLETE_QUOTE_RETRIES)

    if isinstance(error, HTTPError):
        status_code = _status_code(error)
        if status_code == 401:
            # Invalid crumb rarely recovers with more retries
            return (True, CRUMB_RETRIES)
        if status_code in policy.throttle_statuses or (status_code is not None and 500 <= status_code < 600):
            return (True, policy.max_retries)
        return (False, 0)

    if isinstance(error, (RequestsConnectionError, Timeout)):
        return (True, policy.max_retries)

    message = str(error).lower()
    if any(pattern in message for pattern in TRANSIENT_MESSAGES):
        return (True, policy.max_retries)
    return (False, 0)


def calculate_backoff(attempt: int, policy: FeedPolicy, retry_after: float | None = None) -> float:
    """Exponential backoff with +/-25% jitter, never shorter than Retry-After, capped."""
    delay = policy.base_delay * (2**attempt)
    delay += delay * 0.25 * (2 * random.random() - 1)
    if retry_after is not None:
        delay = max(delay, retry_after)
    return min(delay, policy.max_delay)


@dataclass
class RetryAttempt:
    """Record of a single attempt."""

    attempt: int
    ok: bool
    error: str | None = None
    backoff_s: float | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"attempt": self.attempt, "ok": self.ok}
        if self.error:
            out["error"] = self.error
        if self.backoff_s:
            out["backoff_s"] = self.backoff_s
        return out


@dataclass
class RetryResult:
    """Value returned by a feed call, with how hard it was to get."""

    result: Any
    attempts: int
    total_backoff_seconds: float
    source: str
    retry_trace: list[RetryAttempt] | None = None

    def to_provenance(self) -> dict[str, Any]:
        prov: dict[str, Any] = {
            "source": self.source,
            "attempts": self.attempts,
            "total_backoff_seconds": self.total_backoff_seconds,
        }
        if self.retry_trace:
            prov["retry_trace"] = [t.to_dict() for t in self.retry_trace[-TRACE_LENGTH:]]
        return prov


async def retry_with_backoff(
    operation_name: str,
    sync_func: Callable[[], T],
    policy: FeedPolicy,
    max_retries: int | None = None,
) -> RetryResult:
    """
    Run a blocking feed call on the shared pool, retrying transient failures.

    Args:
        operation_name: Name for logging (e.g., "fetch_company_facts(0000320193)")
        sync_func: Blocking callable
        policy: Feed the call belongs to
        max_retries: Override of the policy's retry budget

    Raises:
        UpstreamRetryError: If all retries exhausted
        ServerShuttingDownError: If server is shutting down
        Exception: Non-retryable failures propagate unchanged
    """
    budget = policy.max_retries if max_retries is None else max_retries
    total_backoff = 0.0
    trace: list[RetryAttempt] = []
    loop = asyncio.get_running_loop()

    for attempt in range(budget + 1):
        if shutdown_event.is_set():
            raise ServerShuttingDownError("Server is shutting down")

        try:
            async with _semaphore(policy):
                result = await loop.run_in_executor(_executor, sync_func)
        except Exception as e:
            trace.append(RetryAttempt(attempt=attempt + 1, ok=False, error=type(e).__name__))

            retryable, error_budget = is_retryable_error(e, policy)
            if not retryable:
                raise

            limit = min(budget, error_budget)
            if attempt >= limit:
                logger.warning(
                    f"{operation_name}: giving up after {attempt + 1} attempts "
                    f"(limit={limit + 1}, source={policy.source}). Last error: {e}"
                )
                raise UpstreamRetryError(f"Failed after {attempt + 1} attempts: {e}", last_error=e) from e

            delay = calculate_backoff(attempt, policy, retry_after_seconds(e))
            total_backoff += delay
            trace[-1].backoff_s = round(delay, 2)
            logger.info(f"{operation_name}: attempt {attempt + 1} failed ({e}), retrying in {delay:.1f}s")
            await asyncio.sleep(delay)
            continue

        trace.append(RetryAttempt(attempt=attempt + 1, ok=True))
        return RetryResult(
            result=result,
            attempts=attempt + 1,
            total_backoff_seconds=round(total_backoff, 2),
            source=policy.source,
            retry_trace=trace if len(trace) > 1 else None,
        )

    raise UpstreamRetryError(f"Failed after {budget + 1} attempts")


async def shutdown_executor() -> None:
    """Refuse new feed calls and drop queued ones."""
    shutdown_event.set()
    _executor.shutdown(wait=False, cancel_futures=True)
