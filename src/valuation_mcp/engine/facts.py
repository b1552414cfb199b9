"""Reconcile raw, multiply-tagged financial facts into one series per metric.

Filers report the same logical metric under several tags, restate earlier
periods in later filings, and embed prior-year comparatives and year-to-date
figures next to the current period. Reconciliation keeps one value per
period end: the one from the most recent filing that passes the period-shape
checks for the requested period type.
"""

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any, Literal

import pandas as pd

logger = logging.getLogger(__name__)

PeriodType = Literal["annual", "quarterly"]

QUARTER_TAGS = frozenset({"Q1", "Q2", "Q3", "Q4"})
ANNUAL_TAG = "FY"

# Average month length used to turn day spans into month spans
_DAYS_PER_MONTH = 30.4375

# Quarterly span must be under this many months (rejects 6/9-month YTD values)
MAX_QUARTER_SPAN_MONTHS = 5.0
# Annual span must sit inside this window (rejects partial-year comparatives)
MIN_ANNUAL_SPAN_MONTHS = 10.0
MAX_ANNUAL_SPAN_MONTHS = 14.0

TAXONOMIES = ("us-gaap", "ifrs-full", "dei")

# Field id prefix for line items sourced from the market feed's statements
MARKET_FIELD_PREFIX = "yf:"


@dataclass(frozen=True)
class RawFactPoint:
    """A single fact exactly as received from a feed."""

    field_id: str
    unit: str
    period_end: date | None
    filed: date | None
    value: float
    fiscal_period: str | None = None
    period_start: date | None = None
    form: str | None = None

    @property
    def span_months(self) -> float | None:
        """Length of the reporting period in months, None for instants."""
        if self.period_start is None or self.period_end is None:
            return None
        return (self.period_end - self.period_start).days / _DAYS_PER_MONTH


@dataclass(frozen=True)
class ReconciledPeriod:
    """One resolved value for a (metric, period_end) key."""

    field_id: str
    period_end: date
    fiscal_year: int
    fiscal_period: str
    filed: date | None
    value: float
    period_start: date | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_id": self.field_id,
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat(),
            "fiscal_year": self.fiscal_year,
            "fiscal_period": self.fiscal_period,
            "filed": self.filed.isoformat() if self.filed else None,
            "value": self.value,
        }


FactIndex = Mapping[str, Sequence[RawFactPoint]]


def _parse_date(value: Any) -> date | None:
    """Parse an ISO date (or timestamp) into a date, None when unparseable."""
    if value is None:
        return None
    if isinstance(value, pd.Timestamp):
        return None if pd.isna(value) else value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _finite(value: Any) -> float | None:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def parse_company_facts(payload: Mapping[str, Any]) -> dict[str, list[RawFactPoint]]:
    """
    Flatten an EDGAR company-facts document into raw fact points.

    Args:
        payload: JSON body of the companyfacts endpoint

    Returns:
        Mapping of tag name to its raw points (all units). Points without a
        period end or with a non-finite value are dropped.
    """
    facts = payload.get("facts") if isinstance(payload, Mapping) else None
    if not isinstance(facts, Mapping):
        return {}

    index: dict[str, list[RawFactPoint]] = {}
    dropped = 0

    for taxonomy in TAXONOMIES:
        tags = facts.get(taxonomy)
        if not isinstance(tags, Mapping):
            continue
        for tag, body in tags.items():
            units = body.get("units") if isinstance(body, Mapping) else None
            if not isinstance(units, Mapping):
                continue
            points = index.setdefault(tag, [])
            for unit, entries in units.items():
                for entry in entries or []:
                    period_end = _parse_date(entry.get("end"))
                    value = _finite(entry.get("val"))
                    if period_end is None or value is None:
                        dropped += 1
                        continue
                    points.append(
                        RawFactPoint(
                            field_id=tag,
                            unit=unit,
                            period_start=_parse_date(entry.get("start")),
                            period_end=period_end,
                            fiscal_period=entry.get("fp"),
                            filed=_parse_date(entry.get("filed")),
                            value=value,
                            form=entry.get("form"),
                        )
                    )

    if dropped:
        logger.debug(f"parse_company_facts: dropped {dropped} points without end date or value")
    return index


def quarter_tag(period_end: date) -> str:
    """Calendar quarter of a period end, e.g. Q2 for 2024-06-30."""
    return f"Q{(period_end.month - 1) // 3 + 1}"


def _statement_row_unit(label: str, currency_unit: str) -> str:
    if "EPS" in label:
        return f"{currency_unit}/shares"
    if "Shares" in label:
        return "shares"
    return currency_unit


def facts_from_statement_frame(
    frame: pd.DataFrame | None,
    period_type: PeriodType,
    unit: str = "USD",
) -> dict[str, list[RawFactPoint]]:
    """
    Convert a market-feed statement frame into raw fact points.

    yfinance statements have line items as rows and period-end timestamps as
    columns. Each non-null cell becomes a point tagged FY (annual) or Q1..Q4
    (quarterly, from the period-end month) with the period end as its filed
    date, so the same reconciler can consume it.
    """
    index: dict[str, list[RawFactPoint]] = {}
    if frame is None or frame.empty:
        return index

    for label, row in frame.iterrows():
        field_id = f"{MARKET_FIELD_PREFIX}{label}"
        row_unit = _statement_row_unit(str(label), unit)
        for column, raw in row.items():
            period_end = _parse_date(column)
            value = _finite(raw)
            if period_end is None or value is None:
                continue
            tag = ANNUAL_TAG if period_type == "annual" else quarter_tag(period_end)
            index.setdefault(field_id, []).append(
                RawFactPoint(
                    field_id=field_id,
                    unit=row_unit,
                    period_end=period_end,
                    filed=period_end,
                    value=value,
                    fiscal_period=tag,
                )
            )
    return index


def merge_fact_indexes(*indexes: FactIndex) -> dict[str, list[RawFactPoint]]:
    """Combine several fact indexes into one (field ids never collide across feeds)."""
    merged: dict[str, list[RawFactPoint]] = {}
    for index in indexes:
        for field_id, points in index.items():
            merged.setdefault(field_id, []).extend(points)
    return merged


def is_valid_candidate(point: RawFactPoint, period_type: PeriodType) -> bool:
    """
    Check whether a point has the shape of the requested period type.

    Quarterly points need a single-quarter tag and, when dated, a span under
    5 months. Annual points need the FY tag and, when dated, a span within
    [10, 14] months.
    """
    if point.period_end is None:
        return False

    span = point.span_months
    if period_type == "quarterly":
        if point.fiscal_period not in QUARTER_TAGS:
            return False
        return span is None or span < MAX_QUARTER_SPAN_MONTHS

    if point.fiscal_period != ANNUAL_TAG:
        return False
    return span is None or MIN_ANNUAL_SPAN_MONTHS <= span <= MAX_ANNUAL_SPAN_MONTHS


def _filed_key(point: RawFactPoint) -> date:
    return point.filed or date.min


def reconcile(
    facts: FactIndex,
    candidates: Iterable[str],
    period_type: PeriodType,
    limit: int = 10,
    unit: str | None = "USD",
) -> list[ReconciledPeriod]:
    """
    Resolve one value per period end for a logical metric.

    Args:
        facts: Raw points keyed by field id
        candidates: Field ids that may carry this metric (order is irrelevant)
        period_type: "annual" or "quarterly"
        limit: Maximum number of periods returned
        unit: Only points in this unit are considered (None accepts any unit)

    Returns:
        Up to `limit` reconciled periods, newest period end first. Empty when
        nothing matches; callers must treat that as unavailable, not zero.
    """
    best: dict[date, RawFactPoint] = {}

    for field_id in candidates:
        for point in facts.get(field_id, ()):
            if unit is not None and point.unit != unit:
                continue
            if not is_valid_candidate(point, period_type):
                continue
            key = point.period_end
            current = best.get(key)
            # Strictly later filing replaces; equal filed dates keep the first seen
            if current is None or _filed_key(point) > _filed_key(current):
                best[key] = point

    ordered = sorted(best.values(), key=lambda p: p.period_end, reverse=True)[: max(limit, 0)]
    return [
        ReconciledPeriod(
            field_id=point.field_id,
            period_start=point.period_start,
            period_end=point.period_end,
            fiscal_year=point.period_end.year,
            fiscal_period=point.fiscal_period or "",
            filed=point.filed,
            value=point.value,
        )
        for point in ordered
    ]


def latest_value(
    facts: FactIndex,
    candidates: Iterable[str],
    unit: str | None = None,
) -> ReconciledPeriod | None:
    """
    Most recent point-in-time value across any period type.

    Used for cover-page facts such as shares outstanding, which are tagged
    with the fiscal period of the filing they appear in.
    """
    latest: RawFactPoint | None = None
    for field_id in candidates:
        for point in facts.get(field_id, ()):
            if unit is not None and point.unit != unit:
                continue
            if point.period_end is None:
                continue
            if latest is None or (point.period_end, _filed_key(point)) > (
                latest.period_end,
                _filed_key(latest),
            ):
                latest = point
    if latest is None or latest.period_end is None:
        return None
    return ReconciledPeriod(
        field_id=latest.field_id,
        period_start=latest.period_start,
        period_end=latest.period_end,
        fiscal_year=latest.period_end.year,
        fiscal_period=latest.fiscal_period or "",
        filed=latest.filed,
        value=latest.value,
    )
