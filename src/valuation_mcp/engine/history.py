"""Join reconciled metrics into per-period financial statement records."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from valuation_mcp.engine.facts import FactIndex, PeriodType, ReconciledPeriod, quarter_tag, reconcile
from valuation_mcp.utils.numbers import first_available, is_positive, safe_div, safe_round

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricSpec:
    """Candidate field ids for one logical metric, in any order."""

    candidates: tuple[str, ...]
    unit: str = "USD"


METRICS: dict[str, MetricSpec] = {
    # Income statement
    "revenue": MetricSpec((
        "RevenueFromContractWithCustomerExcludingAssessedTax",
        "RevenueFromContractWithCustomerIncludingAssessedTax",
        "Revenues",
        "SalesRevenueNet",
        "SalesRevenueGoodsNet",
        "Revenue",
        "yf:Total Revenue",
    )),
    "cost_of_revenue": MetricSpec((
        "CostOfRevenue",
        "CostOfGoodsAndServicesSold",
        "CostOfGoodsSold",
        "CostOfSales",
        "yf:Cost Of Revenue",
    )),
    "gross_profit": MetricSpec(("GrossProfit", "yf:Gross Profit")),
    "operating_income": MetricSpec((
        "OperatingIncomeLoss",
        "ProfitLossFromOperatingActivities",
        "yf:Operating Income",
    )),
    "net_income": MetricSpec((
        "NetIncomeLoss",
        "ProfitLoss",
        "NetIncomeLossAvailableToCommonStockholdersBasic",
        "yf:Net Income",
    )),
    "interest_expense": MetricSpec((
        "InterestExpense",
        "InterestExpenseNonoperating",
        "InterestExpenseDebt",
        "yf:Interest Expense",
    )),
    "income_tax": MetricSpec((
        "IncomeTaxExpenseBenefit",
        "IncomeTaxExpense",
        "yf:Tax Provision",
    )),
    "pretax_income": MetricSpec((
        "IncomeLossFromContinuingOperationsBeforeIncomeTaxesExtraordinaryItemsNoncontrollingInterest",
        "IncomeLossFromContinuingOperationsBeforeIncomeTaxesMinorityInterestAndIncomeLossFromEquityMethodInvestments",
        "ProfitLossBeforeTax",
        "yf:Pretax Income",
    )),
    "eps_diluted": MetricSpec(
        ("EarningsPerShareDiluted", "DilutedEarningsLossPerShare", "yf:Diluted EPS"),
        unit="USD/shares",
    ),
    "diluted_shares": MetricSpec(
        ("WeightedAverageNumberOfDilutedSharesOutstanding", "yf:Diluted Average Shares"),
        unit="shares",
    ),
    "basic_shares": MetricSpec(
        ("WeightedAverageNumberOfSharesOutstandingBasic", "yf:Basic Average Shares"),
        unit="shares",
    ),
    # Balance sheet
    "total_assets": MetricSpec(("Assets", "yf:Total Assets")),
    "total_liabilities": MetricSpec((
        "Liabilities",
        "yf:Total Liabilities Net Minority Interest",
    )),
    "total_equity": MetricSpec((
        "StockholdersEquity",
        "StockholdersEquityIncludingPortionAttributableToNoncontrollingInterest",
        "Equity",
        "yf:Stockholders Equity",
    )),
    "cash": MetricSpec((
        "CashAndCashEquivalentsAtCarryingValue",
        "CashCashEquivalentsRestrictedCashAndRestrictedCashEquivalents",
        "CashAndCashEquivalents",
        "yf:Cash And Cash Equivalents",
    )),
    "short_term_investments": MetricSpec((
        "ShortTermInvestments",
        "MarketableSecuritiesCurrent",
        "AvailableForSaleSecuritiesDebtSecuritiesCurrent",
        "yf:Other Short Term Investments",
    )),
    "current_assets": MetricSpec(("AssetsCurrent", "CurrentAssets", "yf:Current Assets")),
    "current_liabilities": MetricSpec((
        "LiabilitiesCurrent",
        "CurrentLiabilities",
        "yf:Current Liabilities",
    )),
    "long_term_debt": MetricSpec((
        "LongTermDebtNoncurrent",
        "LongTermDebt",
        "LongTermDebtAndCapitalLeaseObligations",
        "yf:Long Term Debt",
    )),
    "short_term_debt": MetricSpec((
        "LongTermDebtCurrent",
        "DebtCurrent",
        "ShortTermBorrowings",
        "yf:Current Debt",
    )),
    # Cash flow statement
    "operating_cash_flow": MetricSpec((
        "NetCashProvidedByUsedInOperatingActivities",
        "NetCashProvidedByUsedInOperatingActivitiesContinuingOperations",
        "CashFlowsFromUsedInOperatingActivities",
        "yf:Operating Cash Flow",
    )),
    "capital_expenditure": MetricSpec((
        "PaymentsToAcquirePropertyPlantAndEquipment",
        "PaymentsToAcquireProductiveAssets",
        "PurchaseOfPropertyPlantAndEquipmentClassifiedAsInvestingActivities",
        "yf:Capital Expenditure",
    )),
    "depreciation_amortization": MetricSpec((
        "DepreciationDepletionAndAmortization",
        "DepreciationAndAmortization",
        "DepreciationAmortizationAndAccretionNet",
        "Depreciation",
        "yf:Depreciation And Amortization",
        "yf:Reconciled Depreciation",
    )),
    "dividends_paid": MetricSpec((
        "PaymentsOfDividends",
        "PaymentsOfDividendsCommonStock",
        "yf:Cash Dividends Paid",
    )),
    "share_repurchases": MetricSpec((
        "PaymentsForRepurchaseOfCommonStock",
        "yf:Repurchase Of Capital Stock",
    )),
}

# Cover-page share count, used as the live fallback when the quote feed has none
SHARES_OUTSTANDING_CANDIDATES = ("EntityCommonStockSharesOutstanding", "CommonStockSharesOutstanding")

STATEMENT_FIELDS: dict[str, tuple[str, ...]] = {
    "income": (
        "revenue",
        "cost_of_revenue",
        "gross_profit",
        "operating_income",
        "net_income",
        "interest_expense",
        "income_tax",
        "pretax_income",
        "eps_diluted",
        "diluted_shares",
        "basic_shares",
    ),
    "balance": (
        "total_assets",
        "total_liabilities",
        "total_equity",
        "cash",
        "short_term_investments",
        "current_assets",
        "current_liabilities",
        "long_term_debt",
        "short_term_debt",
    ),
    "cashflow": (
        "operating_cash_flow",
        "capital_expenditure",
        "depreciation_amortization",
        "dividends_paid",
        "share_repurchases",
    ),
}

# Rows exist only where at least one anchor metric reported that period end
STATEMENT_ANCHORS: dict[str, tuple[str, ...]] = {
    "income": ("revenue", "net_income", "operating_income"),
    "balance": ("total_assets", "total_equity"),
    "cashflow": ("operating_cash_flow",),
}


@dataclass
class PeriodRecord:
    """Composite statement record for one fiscal period."""

    statement: str
    period_end: date
    fiscal_year: int
    fiscal_period: str
    values: dict[str, float | None] = field(default_factory=dict)

    def get(self, key: str) -> float | None:
        return self.values.get(key)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.period_end.isoformat(),
            "fiscal_year": self.fiscal_year,
            "period": self.fiscal_period,
            **self.values,
        }


@dataclass
class StatementHistory:
    """Income, balance and cash flow records for one period type, newest first."""

    period_type: PeriodType
    income: list[PeriodRecord] = field(default_factory=list)
    balance: list[PeriodRecord] = field(default_factory=list)
    cashflow: list[PeriodRecord] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.income or self.balance or self.cashflow)

    def records(self, statement: str) -> list[PeriodRecord]:
        return getattr(self, statement)

    def latest(self, statement: str, key: str) -> float | None:
        """Most recent non-null value of a field in a statement."""
        for record in self.records(statement):
            value = record.get(key)
            if value is not None:
                return value
        return None

    def series(self, statement: str, key: str) -> list[tuple[date, float]]:
        """(period_end, value) pairs for a field, newest first, nulls skipped."""
        return [
            (record.period_end, record.values[key])
            for record in self.records(statement)
            if record.get(key) is not None
        ]

    def record_for(self, statement: str, period_end: date) -> PeriodRecord | None:
        for record in self.records(statement):
            if record.period_end == period_end:
                return record
        return None

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "income": [r.to_dict() for r in self.income],
            "balance": [r.to_dict() for r in self.balance],
            "cashflow": [r.to_dict() for r in self.cashflow],
        }


def _derive_income(values: dict[str, float | None]) -> None:
    revenue = values.get("revenue")
    cost = values.get("cost_of_revenue")
    values["gross_profit"] = first_available([
        lambda: values.get("gross_profit"),
        lambda: revenue - cost if revenue is not None and cost is not None else None,
    ])


def _derive_balance(values: dict[str, float | None]) -> None:
    parts = [values.get("long_term_debt"), values.get("short_term_debt")]
    present = [p for p in parts if p is not None]
    total_debt = sum(present) if present else None
    values["total_debt"] = total_debt

    liquid_parts = [values.get("cash"), values.get("short_term_investments")]
    liquid_present = [p for p in liquid_parts if p is not None]
    liquid = sum(liquid_present) if liquid_present else None
    values["cash_and_short_term_investments"] = liquid

    # Unknown cash leaves gross debt; unknown debt leaves net debt unknown
    if total_debt is None:
        values["net_debt"] = None
    elif liquid is None:
        values["net_debt"] = total_debt
    else:
        values["net_debt"] = total_debt - liquid


def _derive_cashflow(values: dict[str, float | None]) -> None:
    ocf = values.get("operating_cash_flow")
    capex = values.get("capital_expenditure")
    values["free_cash_flow"] = first_available([
        lambda: ocf - abs(capex) if ocf is not None and capex is not None else None,
    ])


_DERIVERS: dict[str, Callable[[dict[str, float | None]], None]] = {
    "income": _derive_income,
    "balance": _derive_balance,
    "cashflow": _derive_cashflow,
}


def build_statement(
    facts: FactIndex,
    statement: str,
    period_type: PeriodType,
    limit: int = 10,
) -> list[PeriodRecord]:
    """
    Build statement records joined by period end.

    Args:
        facts: Raw fact index (regulatory and/or market-statement points)
        statement: "income", "balance" or "cashflow"
        period_type: "annual" or "quarterly"
        limit: Maximum number of periods

    Returns:
        Records newest first; missing metrics are None
    """
    # Reconcile deeper than the limit so the join is not cut short by one metric
    depth = limit * 2 + 4
    series: dict[str, dict[date, ReconciledPeriod]] = {}
    for name in STATEMENT_FIELDS[statement]:
        metric = METRICS[name]
        periods = reconcile(facts, metric.candidates, period_type, limit=depth, unit=metric.unit)
        series[name] = {p.period_end: p for p in periods}

    anchor_ends: set[date] = set()
    for anchor in STATEMENT_ANCHORS[statement]:
        anchor_ends.update(series[anchor])

    records: list[PeriodRecord] = []
    for period_end in sorted(anchor_ends, reverse=True)[:limit]:
        values: dict[str, float | None] = {}
        for name in STATEMENT_FIELDS[statement]:
            point = series[name].get(period_end)
            values[name] = point.value if point is not None else None
        _DERIVERS[statement](values)

        # Label from the period end; a filing's fp also tags its restated comparatives
        fiscal_period = "FY" if period_type == "annual" else quarter_tag(period_end)
        records.append(
            PeriodRecord(
                statement=statement,
                period_end=period_end,
                fiscal_year=period_end.year,
                fiscal_period=fiscal_period,
                values=values,
            )
        )

    logger.debug(f"build_statement({statement}, {period_type}): {len(records)} periods")
    return records


def build_history(facts: FactIndex, period_type: PeriodType, limit: int = 10) -> StatementHistory:
    """Build all three statements for one period type."""
    return StatementHistory(
        period_type=period_type,
        income=build_statement(facts, "income", period_type, limit),
        balance=build_statement(facts, "balance", period_type, limit),
        cashflow=build_statement(facts, "cashflow", period_type, limit),
    )


def resolve_shares(
    income: PeriodRecord | None,
    live_shares: float | None,
) -> tuple[float | None, str | None]:
    """
    Resolve the share count for a fiscal period.

    Diluted weighted-average, then basic weighted-average, then the latest
    live share count. Never substitutes a placeholder denominator.

    Returns:
        (shares, source) or (None, None) when no positive count is available
    """
    chain: list[tuple[str, Callable[[], float | None]]] = [
        ("diluted_weighted_average", lambda: income.get("diluted_shares") if income else None),
        ("basic_weighted_average", lambda: income.get("basic_shares") if income else None),
        ("live_share_count", lambda: live_shares),
    ]
    for source, candidate in chain:
        shares = candidate()
        if is_positive(shares):
            return shares, source
    return None, None


def per_share_metrics(history: StatementHistory, live_shares: float | None) -> list[dict[str, Any]]:
    """Per-share metrics for each income period, with the share source used."""
    rows: list[dict[str, Any]] = []
    for income in history.income:
        shares, source = resolve_shares(income, live_shares)
        balance = history.record_for("balance", income.period_end)
        cashflow = history.record_for("cashflow", income.period_end)
        equity = balance.get("total_equity") if balance else None
        fcf = cashflow.get("free_cash_flow") if cashflow else None

        rows.append({
            "date": income.period_end.isoformat(),
            "fiscal_year": income.fiscal_year,
            "period": income.fiscal_period,
            "shares": shares,
            "shares_source": source,
            "revenue_per_share": safe_round(safe_div(income.get("revenue"), shares), 4),
            "net_income_per_share": safe_round(safe_div(income.get("net_income"), shares), 4),
            "book_value_per_share": safe_round(safe_div(equity, shares), 4),
            "free_cash_flow_per_share": safe_round(safe_div(fcf, shares), 4),
        })
    return rows


def financial_ratios(history: StatementHistory) -> list[dict[str, Any]]:
    """Profitability, return and leverage ratios per period."""
    rows: list[dict[str, Any]] = []
    for income in history.income:
        balance = history.record_for("balance", income.period_end)
        revenue = income.get("revenue")
        net_income = income.get("net_income")
        operating_income = income.get("operating_income")

        equity = balance.get("total_equity") if balance else None
        assets = balance.get("total_assets") if balance else None
        total_debt = balance.get("total_debt") if balance else None
        current_assets = balance.get("current_assets") if balance else None
        current_liabilities = balance.get("current_liabilities") if balance else None
        # Capital employed: total assets less current liabilities
        capital_employed = (
            assets - current_liabilities
            if assets is not None and current_liabilities is not None
            else None
        )

        rows.append({
            "date": income.period_end.isoformat(),
            "fiscal_year": income.fiscal_year,
            "period": income.fiscal_period,
            "gross_profit_margin": safe_round(safe_div(income.get("gross_profit"), revenue), 4),
            "operating_profit_margin": safe_round(safe_div(operating_income, revenue), 4),
            "net_profit_margin": safe_round(safe_div(net_income, revenue), 4),
            "return_on_equity": safe_round(safe_div(net_income, equity), 4),
            "return_on_assets": safe_round(safe_div(net_income, assets), 4),
            "return_on_capital_employed": safe_round(
                safe_div(operating_income, capital_employed), 4
            ),
            "debt_to_equity": safe_round(safe_div(total_debt, equity), 4),
            "current_ratio": safe_round(safe_div(current_assets, current_liabilities), 4),
        })
    return rows


def compound_growth(series: list[tuple[date, float]], max_years: int = 5) -> float | None:
    """
    Compound annual growth rate between the newest point and the oldest one
    within max_years, from a newest-first (period_end, value) series.

    Returns None unless both endpoints are positive and at least ~9 months apart.
    """
    if len(series) < 2:
        return None
    latest_end, latest_value = series[0]
    oldest_end, oldest_value = series[min(len(series) - 1, max_years)]
    years = (latest_end - oldest_end).days / 365.25
    if years < 0.75 or not is_positive(latest_value) or not is_positive(oldest_value):
        return None
    return (latest_value / oldest_value) ** (1 / years) - 1
