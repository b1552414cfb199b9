"""Tests for statement assembly, share resolution and derived metrics."""

from datetime import date

import pytest

from conftest import annual_facts, make_point
from valuation_mcp.engine.history import (
    PeriodRecord,
    StatementHistory,
    build_history,
    build_statement,
    compound_growth,
    financial_ratios,
    per_share_metrics,
    resolve_shares,
)


class TestBuildStatement:
    """Tests for joining reconciled metrics into records."""

    def test_rows_newest_first(self, growing_company_facts) -> None:
        """Test records are ordered newest first."""
        records = build_statement(growing_company_facts, "income", "annual", limit=3)
        assert [r.fiscal_year for r in records] == [2024, 2023, 2022]
        assert all(r.fiscal_period == "FY" for r in records)

    def test_missing_metric_is_none(self) -> None:
        """Test unreported metrics are None."""
        facts = {"Revenues": [make_point("Revenues", "2023-12-31", 100, start="2023-01-01")]}
        record = build_statement(facts, "income", "annual")[0]
        assert record.get("revenue") == 100
        assert record.get("net_income") is None
        assert record.get("gross_profit") is None

    def test_gross_profit_derived_from_cost(self) -> None:
        """Test gross profit from revenue less cost."""
        facts = {
            "Revenues": [make_point("Revenues", "2023-12-31", 100, start="2023-01-01")],
            "CostOfRevenue": [make_point("CostOfRevenue", "2023-12-31", 60, start="2023-01-01")],
        }
        record = build_statement(facts, "income", "annual")[0]
        assert record.get("gross_profit") == 40

    def test_balance_derivations(self, growing_company_facts) -> None:
        """Test total and net debt derivation."""
        record = build_statement(growing_company_facts, "balance", "annual")[0]
        assert record.get("total_debt") == 200.0
        assert record.get("net_debt") == pytest.approx(200.0 - record.get("cash"))

    def test_net_debt_without_cash_is_gross_debt(self) -> None:
        """Test debt still counts when the filer reports no cash."""
        facts = {
            "Assets": [make_point("Assets", "2023-12-31", 900)],
            "LongTermDebtNoncurrent": [make_point("LongTermDebtNoncurrent", "2023-12-31", 500)],
        }
        record = build_statement(facts, "balance", "annual")[0]
        assert record.get("cash_and_short_term_investments") is None
        assert record.get("net_debt") == 500

    def test_net_debt_unknown_without_debt(self) -> None:
        """Test net debt stays unknown when no debt is reported."""
        facts = {
            "Assets": [make_point("Assets", "2023-12-31", 900)],
            "CashAndCashEquivalentsAtCarryingValue": [
                make_point("CashAndCashEquivalentsAtCarryingValue", "2023-12-31", 100)
            ],
        }
        record = build_statement(facts, "balance", "annual")[0]
        assert record.get("cash_and_short_term_investments") == 100
        assert record.get("net_debt") is None

    def test_free_cash_flow_uses_absolute_capex(self) -> None:
        """Test capex sign does not change free cash flow."""
        facts = {
            "NetCashProvidedByUsedInOperatingActivities": [
                make_point("NetCashProvidedByUsedInOperatingActivities", "2023-12-31", 100, start="2023-01-01")
            ],
            "PaymentsToAcquirePropertyPlantAndEquipment": [
                make_point("PaymentsToAcquirePropertyPlantAndEquipment", "2023-12-31", -30, start="2023-01-01")
            ],
        }
        record = build_statement(facts, "cashflow", "annual")[0]
        assert record.get("free_cash_flow") == 70

    def test_quarter_label_follows_period_end(self) -> None:
        """Test comparatives restated in a Q2 filing keep their own quarter."""
        facts = {
            "Assets": [
                make_point("Assets", "2024-06-30", 900, fp="Q2", filed="2024-08-01"),
                make_point("Assets", "2024-03-31", 880, fp="Q1", filed="2024-05-01"),
                make_point("Assets", "2023-12-31", 850, fp="Q2", filed="2024-08-01"),
            ]
        }
        records = build_statement(facts, "balance", "quarterly")
        labels = [(r.period_end.isoformat(), r.fiscal_period) for r in records]
        assert labels == [("2024-06-30", "Q2"), ("2024-03-31", "Q1"), ("2023-12-31", "Q4")]

    def test_no_anchor_no_rows(self) -> None:
        """Test no rows without an anchor metric."""
        facts = {"CostOfRevenue": [make_point("CostOfRevenue", "2023-12-31", 60, start="2023-01-01")]}
        assert build_statement(facts, "income", "annual") == []

    def test_empty_history(self) -> None:
        """Test an empty history serializes to empty lists."""
        history = build_history({}, "annual")
        assert history.is_empty
        assert history.to_dict() == {"income": [], "balance": [], "cashflow": []}


class TestResolveShares:
    """Tests for the share-count fallback chain."""

    def _income(self, **values) -> PeriodRecord:
        return PeriodRecord("income", date(2023, 12, 31), 2023, "FY", values)

    def test_prefers_diluted(self) -> None:
        """Test diluted shares come first."""
        income = self._income(diluted_shares=110.0, basic_shares=100.0)
        assert resolve_shares(income, 90.0) == (110.0, "diluted_weighted_average")

    def test_falls_back_to_basic_then_live(self) -> None:
        """Test basic then live share counts are used in turn."""
        assert resolve_shares(self._income(basic_shares=100.0), 90.0) == (100.0, "basic_weighted_average")
        assert resolve_shares(self._income(), 90.0) == (90.0, "live_share_count")

    def test_never_substitutes_placeholder(self) -> None:
        """Test no placeholder share count is invented."""
        assert resolve_shares(self._income(diluted_shares=0.0), None) == (None, None)
        assert resolve_shares(None, None) == (None, None)


class TestDerivedMetrics:
    """Tests for per-share metrics and ratios."""

    def test_per_share_metrics(self, growing_company_facts) -> None:
        """Test per-share values from the resolved share count."""
        history = build_history(growing_company_facts, "annual", limit=2)
        rows = per_share_metrics(history, live_shares=None)

        latest = rows[0]
        revenue = history.income[0].get("revenue")
        assert latest["shares"] == 100.0
        assert latest["shares_source"] == "diluted_weighted_average"
        assert latest["revenue_per_share"] == pytest.approx(round(revenue / 100.0, 4))

    def test_per_share_null_without_shares(self) -> None:
        """Test per-share values are None without shares."""
        facts = {"Revenues": [make_point("Revenues", "2023-12-31", 100, start="2023-01-01")]}
        rows = per_share_metrics(build_history(facts, "annual"), live_shares=None)
        assert rows[0]["revenue_per_share"] is None
        assert rows[0]["shares_source"] is None

    def test_ratios(self, growing_company_facts) -> None:
        """Test margin and liquidity ratios."""
        history = build_history(growing_company_facts, "annual", limit=1)
        ratios = financial_ratios(history)[0]
        assert ratios["net_profit_margin"] == pytest.approx(0.15)
        assert ratios["operating_profit_margin"] == pytest.approx(0.20)
        assert ratios["gross_profit_margin"] == pytest.approx(0.45)
        assert ratios["current_ratio"] == pytest.approx(round(0.5 / 0.3, 4))
        assert ratios["return_on_capital_employed"] == pytest.approx(round(0.20 / (1.5 - 0.3), 4))

    def test_ratios_null_on_zero_denominator(self) -> None:
        """Test ratios are None on zero denominators."""
        facts = {
            "Revenues": [make_point("Revenues", "2023-12-31", 0, start="2023-01-01")],
            "NetIncomeLoss": [make_point("NetIncomeLoss", "2023-12-31", 5, start="2023-01-01")],
        }
        ratios = financial_ratios(build_history(facts, "annual"))[0]
        assert ratios["net_profit_margin"] is None
        assert ratios["return_on_equity"] is None


class TestCompoundGrowth:
    """Tests for CAGR over a newest-first series."""

    def test_ten_percent_growth(self) -> None:
        """Test CAGR over a steady series."""
        history = build_history(annual_facts([2020, 2021, 2022, 2023]), "annual")
        growth = compound_growth(history.series("income", "revenue"))
        assert growth == pytest.approx(0.10, abs=0.001)

    def test_requires_positive_endpoints(self) -> None:
        """Test CAGR needs positive endpoints."""
        series = [(date(2023, 12, 31), 100.0), (date(2021, 12, 31), -10.0)]
        assert compound_growth(series) is None

    def test_requires_two_points(self) -> None:
        """Test CAGR needs two points."""
        assert compound_growth([(date(2023, 12, 31), 100.0)]) is None

    def test_series_skips_nulls(self) -> None:
        """Test series drop missing values."""
        history = StatementHistory(
            "annual",
            income=[
                PeriodRecord("income", date(2023, 12, 31), 2023, "FY", {"revenue": None}),
                PeriodRecord("income", date(2022, 12, 31), 2022, "FY", {"revenue": 90.0}),
            ],
        )
        assert history.series("income", "revenue") == [(date(2022, 12, 31), 90.0)]
        assert history.latest("income", "revenue") == 90.0
