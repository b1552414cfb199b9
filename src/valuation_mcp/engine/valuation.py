"""Fair-value models and the composite blend.

Every model is a pure function of its inputs and returns None whenever an
input it needs is unavailable or a denominator is unstable. The composite
only blends methods with a positive, finite value.
"""

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import pandas as pd

from valuation_mcp.engine.config import ValuationConfig
from valuation_mcp.engine.history import PeriodRecord, StatementHistory, compound_growth, resolve_shares
from valuation_mcp.utils.numbers import (
    clamp,
    first_available,
    is_positive,
    median,
    safe_div,
    safe_float,
    safe_round,
)

logger = logging.getLogger(__name__)

BUCKET_CASHFLOW = "cashflow"
BUCKET_RELATIVE = "relative"
BUCKET_ANALYST = "analyst"
BUCKET_CONSERVATIVE = "conservative"

# Conservative methods are reported alongside the composite but not blended
BLENDED_BUCKETS = (BUCKET_CASHFLOW, BUCKET_RELATIVE, BUCKET_ANALYST)

METHOD_LABELS: dict[str, tuple[str, str]] = {
    "dcf_unlevered": ("Discounted Cash Flow (Unlevered Free Cash Flow)", BUCKET_CASHFLOW),
    "dcf_exit_multiple": ("Discounted Cash Flow (Exit Multiple)", BUCKET_CASHFLOW),
    "earnings_power_value": ("Earnings Power Value", BUCKET_CASHFLOW),
    "fair_value_ps": ("Fair Value (Historical Price-to-Sales)", BUCKET_RELATIVE),
    "fair_value_pe": ("Fair Value (Historical Price-to-Earnings)", BUCKET_RELATIVE),
    "fair_value_pb": ("Fair Value (Historical Price-to-Book)", BUCKET_RELATIVE),
    "peg_value": ("Price-to-Earnings-to-Growth Value", BUCKET_RELATIVE),
    "psg_value": ("Price-to-Sales-to-Growth Value", BUCKET_RELATIVE),
    "analyst_target": ("Analyst Target", BUCKET_ANALYST),
    "graham_number": ("Graham Number", BUCKET_CONSERVATIVE),
}

# Long-run operating margins by sector (clamped into the configured band)
SECTOR_TERMINAL_MARGINS: dict[str, float] = {
    "technology": 0.22,
    "communication services": 0.18,
    "healthcare": 0.15,
    "financial services": 0.20,
    "consumer cyclical": 0.09,
    "consumer defensive": 0.08,
    "industrials": 0.11,
    "energy": 0.10,
    "utilities": 0.14,
    "real estate": 0.20,
    "basic materials": 0.10,
}


@dataclass
class MarketInputs:
    """Live quote and statistics used by the models."""

    price: float | None = None
    market_cap: float | None = None
    shares_outstanding: float | None = None
    beta: float | None = None
    sector: str | None = None
    analyst_target: float | None = None
    revenue_growth: float | None = None
    earnings_growth: float | None = None
    trailing_eps: float | None = None
    book_value_per_share: float | None = None
    trailing_pe: float | None = None
    price_to_sales: float | None = None
    price_to_book: float | None = None

    @classmethod
    def from_quote(cls, info: Mapping[str, Any] | None) -> "MarketInputs":
        """Map a yfinance info dict onto model inputs."""
        if not info:
            return cls()
        return cls(
            price=safe_float(info.get("regularMarketPrice") or info.get("currentPrice")),
            market_cap=safe_float(info.get("marketCap")),
            shares_outstanding=safe_float(info.get("sharesOutstanding")),
            beta=safe_float(info.get("beta")),
            sector=info.get("sector"),
            analyst_target=safe_float(info.get("targetMeanPrice")),
            revenue_growth=safe_float(info.get("revenueGrowth")),
            earnings_growth=safe_float(info.get("earningsGrowth")),
            trailing_eps=safe_float(info.get("trailingEps")),
            book_value_per_share=safe_float(info.get("bookValue")),
            trailing_pe=safe_float(info.get("trailingPE")),
            price_to_sales=safe_float(info.get("priceToSalesTrailing12Months")),
            price_to_book=safe_float(info.get("priceToBook")),
        )


@dataclass
class ValuationMethodResult:
    """Outcome of one valuation model."""

    key: str
    label: str
    bucket: str
    raw_value: float | None
    calibrated_value: float | None = None
    weight: float = 0.0
    dynamic_weight: float | None = None

    @property
    def usable(self) -> bool:
        return is_positive(self.calibrated_value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "bucket_type": self.bucket,
            "raw_value": safe_round(self.raw_value, 4),
            "calibrated_value": safe_round(self.calibrated_value, 4),
            "weight": self.weight,
            "dynamic_weight": safe_round(self.dynamic_weight, 4),
        }


@dataclass
class CompositeValuation:
    """Blended fair value with per-method detail and the assumptions used."""

    methods: list[ValuationMethodResult]
    composite_value: float | None
    upside_percent: float | None
    assumptions: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "methods": [m.to_dict() for m in self.methods],
            "composite_value": safe_round(self.composite_value, 4),
            "upside_percent": safe_round(self.upside_percent, 2),
            "assumptions": self.assumptions,
        }


@dataclass(frozen=True)
class DiscountRate:
    """Blended cost of capital and its components."""

    rate: float
    cost_of_equity: float
    cost_of_debt: float
    tax_rate: float
    equity_weight: float
    debt_weight: float

    def to_dict(self) -> dict[str, float]:
        return {
            "discount_rate": round(self.rate, 6),
            "cost_of_equity": round(self.cost_of_equity, 6),
            "cost_of_debt": round(self.cost_of_debt, 6),
            "tax_rate": round(self.tax_rate, 6),
            "equity_weight": round(self.equity_weight, 6),
            "debt_weight": round(self.debt_weight, 6),
        }


# ============================================================================
# Building blocks
# ============================================================================


def effective_tax_rate(
    income_tax: float | None,
    pretax_income: float | None,
    config: ValuationConfig,
) -> float:
    """Observed effective rate clamped to [0, max], else the statutory default."""
    observed = safe_div(income_tax, pretax_income) if is_positive(pretax_income) else None
    if observed is None:
        return config.default_tax_rate
    return clamp(observed, 0.0, config.max_tax_rate)


def discount_rate(
    beta: float | None,
    market_cap: float | None,
    total_debt: float | None,
    interest_expense: float | None,
    tax_rate: float,
    config: ValuationConfig,
) -> DiscountRate:
    """
    Blended cost of capital.

    cost of equity = risk free + beta * equity risk premium; cost of debt =
    interest / debt when both positive, else the default; weights are the
    market-cap and debt shares of combined capital.
    """
    beta_used = beta if beta is not None else 1.0
    cost_of_equity = config.risk_free_rate + beta_used * config.equity_risk_premium

    interest = abs(interest_expense) if interest_expense is not None else None
    if is_positive(interest) and is_positive(total_debt):
        cost_of_debt = interest / total_debt
    else:
        cost_of_debt = config.default_cost_of_debt

    equity = market_cap if is_positive(market_cap) else None
    debt = total_debt if is_positive(total_debt) else 0.0
    if equity is None:
        equity_weight, debt_weight = 1.0, 0.0
    else:
        total = equity + debt
        equity_weight, debt_weight = equity / total, debt / total

    rate = equity_weight * cost_of_equity + debt_weight * cost_of_debt * (1 - tax_rate)
    return DiscountRate(
        rate=rate,
        cost_of_equity=cost_of_equity,
        cost_of_debt=cost_of_debt,
        tax_rate=tax_rate,
        equity_weight=equity_weight,
        debt_weight=debt_weight,
    )


def terminal_margin_for(sector: str | None, config: ValuationConfig) -> float:
    """Sector-looked-up terminal operating margin, clamped."""
    margin = SECTOR_TERMINAL_MARGINS.get((sector or "").strip().lower(), config.default_terminal_margin)
    return clamp(margin, config.terminal_margin_floor, config.terminal_margin_cap)


def project_unlevered_dcf(
    revenue: float | None,
    initial_growth: float | None,
    current_margin: float | None,
    terminal_margin: float,
    tax_rate: float,
    da_ratio: float,
    capex_ratio: float,
    nwc_ratio: float,
    rate: float,
    shares: float | None,
    net_debt: float | None,
    config: ValuationConfig,
) -> float | None:
    """
    Multi-stage unlevered free-cash-flow value per share.

    Revenue grows at `initial_growth` (clamped) through year 5, then fades
    linearly to the terminal growth rate by the final year. Operating margin
    moves linearly from the current margin to the terminal margin. Each year's
    FCF = EBIT * (1 - tax) + D&A - capex - change in NWC, all as ratios of
    revenue, discounted with a Gordon-growth terminal value.

    Returns None when the discount rate does not clear terminal growth plus
    the safety margin, when terminal FCF is not positive, or when revenue,
    growth or shares are unavailable.
    """
    terminal_growth = config.terminal_growth
    if rate <= terminal_growth + config.dcf_safety_margin:
        return None
    if not is_positive(revenue) or initial_growth is None or not is_positive(shares):
        return None

    years = config.projection_years
    fade_start = config.fade_start_year
    g0 = clamp(initial_growth, config.growth_floor, config.growth_cap)
    m0 = current_margin if current_margin is not None else terminal_margin

    prev_revenue = revenue
    pv_sum = 0.0
    fcf = 0.0
    for year in range(1, years + 1):
        if year < fade_start:
            growth = g0
        else:
            fade_span = years - fade_start + 1
            progress = (year - fade_start + 1) / fade_span
            growth = g0 + (terminal_growth - g0) * progress
        year_revenue = prev_revenue * (1 + growth)
        margin = m0 + (terminal_margin - m0) * (year / years)

        ebit = year_revenue * margin
        fcf = (
            ebit * (1 - tax_rate)
            + year_revenue * da_ratio
            - year_revenue * capex_ratio
            - (year_revenue - prev_revenue) * nwc_ratio
        )
        pv_sum += fcf / (1 + rate) ** year
        prev_revenue = year_revenue

    terminal_fcf = fcf * (1 + terminal_growth)
    if terminal_fcf <= 0:
        return None
    terminal_value = terminal_fcf / (rate - terminal_growth)
    enterprise_value = pv_sum + terminal_value / (1 + rate) ** years

    # Bridge only where net debt is known
    equity_value = enterprise_value if net_debt is None else enterprise_value - net_debt
    if equity_value <= 0:
        return None
    value = equity_value / shares
    return value if math.isfinite(value) else None


def exit_multiple_value(
    base: float | None,
    growth: float | None,
    terminal_multiple: float | None,
    required_return: float | None,
    years: int,
) -> float | None:
    """Present value of base * (1 + g)^years * multiple, discounted at required_return."""
    if not is_positive(base) or not is_positive(terminal_multiple) or years <= 0:
        return None
    if growth is None or required_return is None or growth <= -1 or required_return <= -1:
        return None
    value = base * (1 + growth) ** years * terminal_multiple / (1 + required_return) ** years
    return value if math.isfinite(value) and value > 0 else None


def implied_growth(
    price: float | None,
    base: float | None,
    terminal_multiple: float | None,
    required_return: float | None,
    years: int,
) -> float | None:
    """
    Growth rate the current price implies under the exit-multiple model.

    Solves price = base * (1 + g)^years * multiple / (1 + r)^years for g.
    Returns None on any non-positive input.
    """
    if not (
        is_positive(price)
        and is_positive(base)
        and is_positive(terminal_multiple)
        and is_positive(required_return)
        and years > 0
    ):
        return None
    ratio = price * (1 + required_return) ** years / (base * terminal_multiple)
    growth = ratio ** (1 / years) - 1
    return growth if math.isfinite(growth) else None


def graham_number(
    eps: float | None,
    book_value_per_share: float | None,
    net_income: float | None,
    equity: float | None,
) -> float | None:
    """sqrt(22.5 * EPS * BVPS), only for profitable companies with positive equity."""
    if not (is_positive(net_income) and is_positive(equity)):
        return None
    if not (is_positive(eps) and is_positive(book_value_per_share)):
        return None
    return math.sqrt(22.5 * eps * book_value_per_share)


def earnings_power_value(
    net_income: float | None,
    rate: float | None,
    shares: float | None,
) -> float | None:
    """Net income capitalised at the discount rate, per share."""
    if not (is_positive(net_income) and is_positive(rate) and is_positive(shares)):
        return None
    return net_income / rate / shares


def margin_of_safety(multiples: list[float], config: ValuationConfig) -> float:
    """Haircut widening from min to max with the dispersion of the multiples."""
    if len(multiples) < 2:
        return config.max_haircut
    mean = sum(multiples) / len(multiples)
    variance = sum((m - mean) ** 2 for m in multiples) / len(multiples)
    cv = math.sqrt(variance) / mean if mean > 0 else 1.0
    haircut = config.min_haircut + (config.max_haircut - config.min_haircut) * cv
    return clamp(haircut, config.min_haircut, config.max_haircut)


def relative_value(
    multiples: list[float],
    fundamental_per_share: float | None,
    config: ValuationConfig,
) -> tuple[float | None, float | None]:
    """
    Historical-average multiple applied to the current fundamental, less a haircut.

    Returns:
        (value, haircut); (None, None) when inputs are unusable
    """
    clean = [m for m in multiples if is_positive(m)]
    if not clean or not is_positive(fundamental_per_share):
        return None, None
    average = sum(clean) / len(clean)
    haircut = margin_of_safety(clean, config)
    return average * fundamental_per_share * (1 - haircut), haircut


def growth_adjusted_value(
    per_share: float | None,
    growth: float | None,
    target_ratio: float,
    config: ValuationConfig,
) -> float | None:
    """PEG/PSG style value: per-share fundamental * growth% * target ratio."""
    if not is_positive(per_share) or not is_positive(growth):
        return None
    growth_pct = min(growth * 100, config.max_growth_pct)
    return per_share * growth_pct * target_ratio


def blended_growth(signals: Mapping[str, float | None]) -> float | None:
    """Mean of the available growth signals, each clamped to [-50%, 100%]."""
    values = [clamp(v, -0.5, 1.0) for v in signals.values() if v is not None and math.isfinite(v)]
    if not values:
        return None
    return sum(values) / len(values)


def quality_score(
    roe: float | None,
    net_margin: float | None,
    fcf_margin: float | None,
) -> float | None:
    """Profitability/return score in [-1, 1]; None when no signal is available."""
    parts = []
    if roe is not None:
        parts.append(clamp((roe - 0.10) / 0.20, -1.0, 1.0))
    if net_margin is not None:
        parts.append(clamp((net_margin - 0.08) / 0.15, -1.0, 1.0))
    if fcf_margin is not None:
        parts.append(clamp((fcf_margin - 0.06) / 0.15, -1.0, 1.0))
    if not parts:
        return None
    return sum(parts) / len(parts)


# ============================================================================
# Historical multiples
# ============================================================================


def _closes_by_date(price_history: pd.DataFrame | None) -> pd.Series | None:
    if price_history is None or price_history.empty:
        return None
    closes = pd.to_numeric(price_history["close"], errors="coerce")
    index = pd.to_datetime(price_history["date"], errors="coerce")
    series = pd.Series(closes.to_numpy(), index=index).dropna()
    series = series[series.index.notna()].sort_index()
    return series if not series.empty else None


def _close_on_or_before(closes: pd.Series, when: date, max_gap_days: int = 10) -> float | None:
    ts = pd.Timestamp(when)
    prior = closes[closes.index <= ts]
    if prior.empty:
        return None
    if (ts - prior.index[-1]).days > max_gap_days:
        return None
    return safe_float(prior.iloc[-1])


def historical_multiples(
    annual: StatementHistory,
    price_history: pd.DataFrame | None,
    live_shares: float | None,
    max_years: int = 5,
) -> dict[str, list[float]]:
    """
    P/S, P/E and P/B at each fiscal year end covered by the price history.

    Uses the closing price on (or just before) each period end and per-share
    fundamentals for that year. Non-positive fundamentals are skipped.
    """
    multiples: dict[str, list[float]] = {"ps": [], "pe": [], "pb": []}
    closes = _closes_by_date(price_history)
    if closes is None:
        return multiples

    for income in annual.income[:max_years]:
        price = _close_on_or_before(closes, income.period_end)
        if price is None:
            continue
        shares, _ = resolve_shares(income, live_shares)
        balance = annual.record_for("balance", income.period_end)
        equity = balance.get("total_equity") if balance else None

        per_share = {
            "ps": safe_div(income.get("revenue"), shares),
            "pe": safe_div(income.get("net_income"), shares),
            "pb": safe_div(equity, shares),
        }
        for key, fundamental in per_share.items():
            if is_positive(fundamental):
                multiples[key].append(price / fundamental)
    return multiples


def _average_ratio(
    annual: StatementHistory,
    numerator_statement: str,
    numerator_key: str,
    years: int,
    absolute: bool = False,
) -> float | None:
    ratios = []
    for income in annual.income[:years]:
        record = annual.record_for(numerator_statement, income.period_end)
        numerator = record.get(numerator_key) if record else None
        if numerator is not None and absolute:
            numerator = abs(numerator)
        ratio = safe_div(numerator, income.get("revenue")) if is_positive(income.get("revenue")) else None
        if ratio is not None:
            ratios.append(ratio)
    if not ratios:
        return None
    return sum(ratios) / len(ratios)


def _nwc_ratio(annual: StatementHistory, years: int) -> float | None:
    ratios = []
    for income in annual.income[:years]:
        balance = annual.record_for("balance", income.period_end)
        if balance is None:
            continue
        ca, cl = balance.get("current_assets"), balance.get("current_liabilities")
        revenue = income.get("revenue")
        if ca is None or cl is None or not is_positive(revenue):
            continue
        ratios.append((ca - cl) / revenue)
    if not ratios:
        return None
    return sum(ratios) / len(ratios)


# ============================================================================
# Composite
# ============================================================================


def _bucket_mean(methods: list[ValuationMethodResult]) -> tuple[float | None, dict[str, float]]:
    """Reliability-weighted mean of one bucket; returns (mean, key -> weight used)."""
    values = [m.calibrated_value for m in methods]
    bucket_median = median(values)
    if bucket_median is None or bucket_median <= 0:
        return None, {}

    weighted_sum = 0.0
    weight_sum = 0.0
    used: dict[str, float] = {}
    for m in methods:
        reliability = 1.0 / (1.0 + 2.0 * abs(math.log(m.calibrated_value / bucket_median)))
        w = m.weight * reliability
        used[m.key] = w
        weighted_sum += m.calibrated_value * w
        weight_sum += w
    if weight_sum <= 0:
        return None, {}
    return weighted_sum / weight_sum, used


def blend_composite(
    methods: list[ValuationMethodResult],
    price: float | None,
    beta: float | None,
    growth: float | None,
    quality: float | None,
    leverage: float | None,
    config: ValuationConfig,
) -> tuple[float | None, dict[str, Any]]:
    """
    Blend method values into one fair value.

    Two-stage: reliability-weighted mean per bucket, then fixed bucket weights
    renormalised over present buckets. The blend is pulled toward the
    cross-bucket median, adjusted for growth/quality/risk, corrected when the
    relative and cashflow buckets disagree strongly, anchored toward price
    and finally clamped to [floor, ceiling] x the cross-bucket median.

    Returns:
        (composite or None, details for the assumptions block)
    """
    details: dict[str, Any] = {}
    blended_methods = [
        m for m in methods if m.bucket in BLENDED_BUCKETS and m.usable and m.weight > 0
    ]
    if not blended_methods:
        return None, details

    by_bucket: dict[str, list[ValuationMethodResult]] = {}
    for m in blended_methods:
        by_bucket.setdefault(m.bucket, []).append(m)

    bucket_means: dict[str, float] = {}
    method_weights: dict[str, dict[str, float]] = {}
    for bucket, members in by_bucket.items():
        mean, used = _bucket_mean(members)
        if mean is not None:
            bucket_means[bucket] = mean
            method_weights[bucket] = used
    if not bucket_means:
        return None, details

    raw_weights = {b: config.bucket_weights.get(b, 0.0) for b in bucket_means}
    total_weight = sum(raw_weights.values())
    if total_weight <= 0:
        return None, details
    bucket_weights = {b: w / total_weight for b, w in raw_weights.items()}
    blended = sum(bucket_means[b] * bucket_weights[b] for b in bucket_means)

    # Effective share of each method in the final blend
    for bucket, used in method_weights.items():
        used_total = sum(used.values())
        for m in by_bucket[bucket]:
            if used_total > 0 and m.key in used:
                m.dynamic_weight = bucket_weights.get(bucket, 0.0) * used[m.key] / used_total

    cross_median = median(m.calibrated_value for m in blended_methods)
    value = blended * (1 - config.median_anchor_weight) + cross_median * config.median_anchor_weight

    growth_premium = 0.0
    if growth is not None:
        growth_premium = clamp((growth - config.healthy_growth) / 0.25, 0.0, 1.0) * config.max_growth_premium
    quality_premium = 0.0
    if quality is not None:
        quality_premium = clamp(quality, 0.0, 1.0) * config.max_quality_premium
    risk_penalty = 0.0
    if beta is not None:
        risk_penalty += 0.04 * max(0.0, beta - 1.0)
    if leverage is not None:
        risk_penalty += 0.03 * max(0.0, leverage - 1.0)
    risk_penalty = min(risk_penalty, config.max_risk_penalty)
    value *= 1 + growth_premium + quality_premium - risk_penalty

    regime_correction = 0.0
    cashflow_mean = bucket_means.get(BUCKET_CASHFLOW)
    relative_mean = bucket_means.get(BUCKET_RELATIVE)
    spread = 0.0
    if cashflow_mean and relative_mean:
        spread = abs(math.log(cashflow_mean / relative_mean))
        threshold = 1 + config.bubble_threshold
        if relative_mean > cashflow_mean * threshold:
            excess = relative_mean / cashflow_mean - threshold
            regime_correction = -min(config.max_bubble_damp, 0.03 + 0.25 * excess)
        elif cashflow_mean > relative_mean * threshold and growth is not None and growth >= config.healthy_growth:
            excess = cashflow_mean / relative_mean - threshold
            regime_correction = min(config.max_value_lift, 0.01 + 0.10 * excess)
        value *= 1 + regime_correction

    price_anchor = 0.0
    if is_positive(price):
        beta_excess = max(0.0, (beta if beta is not None else 1.0) - 1.0)
        price_anchor = min(
            config.price_anchor_max,
            config.price_anchor_base
            + config.price_anchor_spread * spread
            + config.price_anchor_beta * beta_excess,
        )
        value = value * (1 - price_anchor) + price * price_anchor

    floor = cross_median * config.floor_ratio
    ceiling = cross_median * config.ceiling_ratio
    composite = clamp(value, floor, ceiling)

    details.update({
        "bucket_means": {b: round(v, 4) for b, v in bucket_means.items()},
        "bucket_weights": {b: round(w, 4) for b, w in bucket_weights.items()},
        "blended_bucket_value": round(blended, 4),
        "cross_bucket_median": round(cross_median, 4),
        "median_anchor_weight": config.median_anchor_weight,
        "growth_premium": round(growth_premium, 4),
        "quality_premium": round(quality_premium, 4),
        "risk_penalty": round(risk_penalty, 4),
        "regime_correction": round(regime_correction, 4),
        "bucket_spread": round(spread, 4),
        "price_anchor_weight": round(price_anchor, 4),
        "guardrail": [round(floor, 4), round(ceiling, 4)],
        "guardrail_applied": composite != value,
    })
    return composite, details


def method_result(key: str, raw_value: float | None, config: ValuationConfig) -> ValuationMethodResult:
    label, bucket = METHOD_LABELS[key]
    raw = raw_value if raw_value is not None and math.isfinite(raw_value) else None
    calibrated = raw * config.calibration_factor(key) if raw is not None else None
    return ValuationMethodResult(
        key=key,
        label=label,
        bucket=bucket,
        raw_value=raw,
        calibrated_value=calibrated,
        weight=config.method_weight(key),
    )


def run_valuation(
    annual: StatementHistory,
    market: MarketInputs,
    price_history: pd.DataFrame | None = None,
    config: ValuationConfig | None = None,
) -> CompositeValuation:
    """
    Compute every valuation method whose inputs are available and blend them.

    Args:
        annual: Annual statement history (newest first)
        market: Live quote inputs
        price_history: Standardized daily bars for historical multiples
        config: Blending constants (defaults when None)

    Returns:
        CompositeValuation; composite_value is None when no method is usable
    """
    config = config or ValuationConfig()
    missing: list[str] = []

    latest_income: PeriodRecord | None = annual.income[0] if annual.income else None
    latest_balance = annual.balance[0] if annual.balance else None
    latest_cashflow = annual.cashflow[0] if annual.cashflow else None

    def _get(record: PeriodRecord | None, key: str) -> float | None:
        return record.get(key) if record is not None else None

    revenue = _get(latest_income, "revenue")
    net_income = _get(latest_income, "net_income")
    operating_income = _get(latest_income, "operating_income")
    equity = _get(latest_balance, "total_equity")
    total_debt = _get(latest_balance, "total_debt")
    net_debt = _get(latest_balance, "net_debt")
    fcf = _get(latest_cashflow, "free_cash_flow")

    shares, shares_source = resolve_shares(latest_income, market.shares_outstanding)
    if shares is None:
        missing.append("shares_outstanding")
    if revenue is None:
        missing.append("revenue")
    if net_income is None:
        missing.append("net_income")
    if market.price is None:
        missing.append("price")
    if market.beta is None:
        missing.append("beta")

    tax_rate = effective_tax_rate(
        _get(latest_income, "income_tax"), _get(latest_income, "pretax_income"), config
    )
    rate = discount_rate(
        market.beta,
        market.market_cap,
        total_debt,
        _get(latest_income, "interest_expense"),
        tax_rate,
        config,
    )

    # Growth signals
    revenue_cagr = compound_growth(annual.series("income", "revenue"))
    earnings_cagr = compound_growth(annual.series("income", "net_income"))
    growth_signals = {
        "revenue_cagr": revenue_cagr,
        "earnings_cagr": earnings_cagr,
        "revenue_growth_yoy": market.revenue_growth,
        "earnings_growth_yoy": market.earnings_growth,
    }
    growth = blended_growth(growth_signals)
    dcf_growth = first_available([lambda: revenue_cagr, lambda: market.revenue_growth])
    if dcf_growth is None:
        missing.append("revenue_growth")

    years = config.ratio_history_years
    da_ratio = first_available([
        lambda: _average_ratio(annual, "cashflow", "depreciation_amortization", years),
        lambda: config.fallback_da_ratio,
    ])
    capex_ratio = first_available([
        lambda: _average_ratio(annual, "cashflow", "capital_expenditure", years, absolute=True),
        lambda: config.fallback_capex_ratio,
    ])
    nwc_ratio = first_available([
        lambda: _nwc_ratio(annual, years),
        lambda: config.fallback_nwc_ratio,
    ])
    current_margin = safe_div(operating_income, revenue) if is_positive(revenue) else None
    terminal_margin = terminal_margin_for(market.sector, config)

    dcf_value = project_unlevered_dcf(
        revenue=revenue,
        initial_growth=dcf_growth,
        current_margin=current_margin,
        terminal_margin=terminal_margin,
        tax_rate=tax_rate,
        da_ratio=da_ratio,
        capex_ratio=capex_ratio,
        nwc_ratio=nwc_ratio,
        rate=rate.rate,
        shares=shares,
        net_debt=net_debt,
        config=config,
    )

    eps = first_available([
        lambda: _get(latest_income, "eps_diluted"),
        lambda: safe_div(net_income, shares),
        lambda: market.trailing_eps,
    ])
    book_value_per_share = first_available([
        lambda: safe_div(equity, shares),
        lambda: market.book_value_per_share,
    ])
    sales_per_share = safe_div(revenue, shares)
    fcf_per_share = safe_div(fcf, shares)

    exit_growth = (
        clamp(dcf_growth, config.growth_floor, config.growth_cap) if dcf_growth is not None else None
    )
    exit_value = exit_multiple_value(
        fcf_per_share, exit_growth, config.exit_multiple, rate.rate, config.exit_years
    )

    multiples = historical_multiples(annual, price_history, market.shares_outstanding)
    multiples_source = "historical"
    if not any(multiples.values()):
        multiples_source = "current_quote"
        multiples = {
            "ps": [market.price_to_sales] if market.price_to_sales else [],
            "pe": [market.trailing_pe] if market.trailing_pe else [],
            "pb": [market.price_to_book] if market.price_to_book else [],
        }
    ps_value, ps_haircut = relative_value(multiples["ps"], sales_per_share, config)
    pe_value, pe_haircut = relative_value(multiples["pe"], eps, config)
    pb_value, pb_haircut = relative_value(multiples["pb"], book_value_per_share, config)

    methods = [
        method_result("dcf_unlevered", dcf_value, config),
        method_result("dcf_exit_multiple", exit_value, config),
        method_result("earnings_power_value", earnings_power_value(net_income, rate.rate, shares), config),
        method_result("fair_value_ps", ps_value, config),
        method_result("fair_value_pe", pe_value, config),
        method_result("fair_value_pb", pb_value, config),
        method_result("peg_value", growth_adjusted_value(eps, growth, config.target_peg, config), config),
        method_result("psg_value", growth_adjusted_value(sales_per_share, growth, config.target_psg, config), config),
        method_result("analyst_target", market.analyst_target, config),
        method_result("graham_number", graham_number(eps, book_value_per_share, net_income, equity), config),
    ]

    roe = safe_div(net_income, equity) if is_positive(equity) else None
    net_margin = safe_div(net_income, revenue) if is_positive(revenue) else None
    fcf_margin = safe_div(fcf, revenue) if is_positive(revenue) else None
    quality = quality_score(roe, net_margin, fcf_margin)
    leverage = safe_div(total_debt, equity) if is_positive(equity) else None

    composite, blend_details = blend_composite(
        methods, market.price, market.beta, growth, quality, leverage, config
    )
    upside = None
    if composite is not None and is_positive(market.price):
        upside = (composite - market.price) / market.price * 100

    if dcf_value is None:
        logger.debug("Unlevered DCF unavailable (inputs missing or unstable denominator)")

    assumptions: dict[str, Any] = {
        **rate.to_dict(),
        "terminal_growth": config.terminal_growth,
        "projection_years": config.projection_years,
        "initial_growth": safe_round(exit_growth, 6),
        "current_operating_margin": safe_round(current_margin, 6),
        "terminal_operating_margin": terminal_margin,
        "da_ratio": round(da_ratio, 6),
        "capex_ratio": round(capex_ratio, 6),
        "nwc_ratio": round(nwc_ratio, 6),
        "shares": shares,
        "shares_source": shares_source,
        "net_debt": net_debt,
        "blended_growth": safe_round(growth, 6),
        "growth_signals": {k: safe_round(v, 6) for k, v in growth_signals.items()},
        "quality_score": safe_round(quality, 4),
        "leverage": safe_round(leverage, 4),
        "multiples_source": multiples_source,
        "haircuts": {
            "ps": safe_round(ps_haircut, 4),
            "pe": safe_round(pe_haircut, 4),
            "pb": safe_round(pb_haircut, 4),
        },
        "exit_multiple": config.exit_multiple,
        "current_price": market.price,
        **blend_details,
        "confidence": {
            "valid": dcf_value is not None and not missing,
            "missing": missing,
        },
    }

    return CompositeValuation(
        methods=methods,
        composite_value=composite,
        upside_percent=upside,
        assumptions=assumptions,
    )


def reverse_valuation(
    annual: StatementHistory,
    market: MarketInputs,
    basis: str = "eps",
    terminal_multiple: float | None = None,
    required_return: float | None = None,
    years: int | None = None,
    config: ValuationConfig | None = None,
) -> dict[str, Any]:
    """
    Implied growth the live price bakes in, on an EPS or FCF-per-share base.

    Args:
        basis: "eps" or "fcf"
        terminal_multiple: Exit multiple (defaults to config.exit_multiple)
        required_return: Annual required return (defaults to cost of equity)
        years: Horizon (defaults to config.exit_years)
    """
    config = config or ValuationConfig()
    latest_income = annual.income[0] if annual.income else None
    latest_cashflow = annual.cashflow[0] if annual.cashflow else None
    shares, _ = resolve_shares(latest_income, market.shares_outstanding)

    if basis == "fcf":
        fcf = latest_cashflow.get("free_cash_flow") if latest_cashflow else None
        base = safe_div(fcf, shares)
    else:
        net_income = latest_income.get("net_income") if latest_income else None
        base = first_available([
            lambda: latest_income.get("eps_diluted") if latest_income else None,
            lambda: safe_div(net_income, shares),
            lambda: market.trailing_eps,
        ])

    multiple = terminal_multiple if terminal_multiple is not None else config.exit_multiple
    if required_return is None:
        beta_used = market.beta if market.beta is not None else 1.0
        required_return = config.risk_free_rate + beta_used * config.equity_risk_premium
    horizon = years if years is not None else config.exit_years

    growth = implied_growth(market.price, base, multiple, required_return, horizon)
    return {
        "basis": basis,
        "base_per_share": safe_round(base, 4),
        "price": market.price,
        "terminal_multiple": multiple,
        "required_return": round(required_return, 6),
        "years": horizon,
        "implied_growth": safe_round(growth, 6),
        "implied_growth_percent": safe_round(growth * 100, 2) if growth is not None else None,
    }
