"""Tests for plan financial metrics and loss ratios."""

from __future__ import annotations

import pytest

from claims_engine.financials import (
    calculate_loss_ratio,
    calculate_totals,
    compute_financial_metrics,
    compute_monthly_summaries,
)
from claims_engine.schema import ExperienceRow, FeesRow


def _rows(month: str, values: dict[str, float]) -> list[ExperienceRow]:
    return [ExperienceRow(month=month, category=c, amount=a) for c, a in values.items()]


def _months(count: int, start_year: int = 2023) -> list[str]:
    return [f"{start_year + i // 12}-{i % 12 + 1:02d}" for i in range(count)]


@pytest.fixture
def experience() -> list[ExperienceRow]:
    january = _rows(
        "2024-01",
        {
            "Domestic Medical Facility Claims (IP/OP)": 1000,
            "Non-Domestic Medical Claims (IP/OP)": 200,
            "Non-Hospital Medical Claims": 300,
            "UC Claims Settlement Adjustment": -50,
            "Run Out Claims": 25,
            "ESI Pharmacy Claims": 400,
            "Rx Rebates": -100,
            "Stop Loss Reimbursement": -75,
            "Consulting": 10,
            "TPA Claims/COBRA Administration Fee (PEPM)": 20,
            "Total Stop Loss Fees": 30,
            "EE COUNT (Active & COBRA)": 10,
            "MEMBER COUNT": 25,
            "PEPM Budget": 150,
        },
    )
    february = _rows(
        "2024-02",
        {
            "Total Hospital Medical Claims": 2000,
            "Domestic Medical Facility Claims (IP/OP)": 1500,
            "EE COUNT (Active & COBRA)": 10,
            "PEPM Budget": 150,
        },
    )
    # Deliberately out of order
    return february + january


class TestComputeFinancialMetrics:
    def test_medical_rollup(self, experience: list[ExperienceRow]) -> None:
        jan, feb = compute_financial_metrics(experience)
        assert jan.month == "2024-01"
        assert jan.total_hospital_medical_claims == pytest.approx(1200)
        assert jan.total_all_medical_claims == pytest.approx(1500)
        assert jan.total_adjusted_medical_claims == pytest.approx(1450)
        assert jan.total_medical_claims == pytest.approx(1475)
        assert jan.total_rx_claims == pytest.approx(400)
        assert jan.total_admin_fees == pytest.approx(60)
        assert jan.rx_rebates == pytest.approx(-100)
        assert jan.stop_loss_reimbursement == pytest.approx(-75)
        assert jan.monthly_claims_and_expenses == pytest.approx(1760)
        assert feb.total_hospital_medical_claims == pytest.approx(2000)

    def test_budget_and_cumulative(self, experience: list[ExperienceRow]) -> None:
        jan, feb = compute_financial_metrics(experience)
        assert jan.monthly_budget == pytest.approx(1500)
        assert jan.monthly_difference == pytest.approx(260)
        assert jan.monthly_difference_pct == pytest.approx(260 / 1500)
        assert jan.pepm_actual == pytest.approx(176)
        assert jan.ee_count == 10
        assert jan.member_count == 25

        assert feb.cumulative_claims_and_expenses == pytest.approx(3760)
        assert feb.cumulative_budget == pytest.approx(3000)
        assert feb.cumulative_difference == pytest.approx(760)
        assert feb.cumulative_difference_pct == pytest.approx(760 / 3000)
        assert feb.pepm_cumulative == pytest.approx(188)

    def test_zero_denominators_are_none(self) -> None:
        [metrics] = compute_financial_metrics(_rows("2024-05", {"Non-Hospital Medical Claims": 500}))
        assert metrics.monthly_budget == 0
        assert metrics.monthly_difference_pct is None
        assert metrics.cumulative_difference_pct is None
        assert metrics.pepm_actual is None
        assert metrics.pepm_cumulative is None
        assert metrics.monthly_claims_and_expenses == pytest.approx(500)

    def test_first_alias_with_data_wins(self) -> None:
        rows = _rows("2024-01", {"Rx Rebates": -100, "Total Pharmacy Rebates": -999})
        rows += _rows("2024-02", {"Total Pharmacy Rebates": -40})
        jan, feb = compute_financial_metrics(rows)
        assert jan.rx_rebates == pytest.approx(-100)
        assert feb.rx_rebates == pytest.approx(-40)

    def test_duplicate_categories_are_summed(self) -> None:
        rows = _rows("2024-01", {"Non-Hospital Medical Claims": 100})
        rows += _rows("2024-01", {"Non-Hospital Medical Claims": 50})
        [metrics] = compute_financial_metrics(rows)
        assert metrics.total_all_medical_claims == pytest.approx(150)

    def test_empty(self) -> None:
        assert compute_financial_metrics([]) == []


class TestLossRatio:
    def test_ratio(self) -> None:
        assert calculate_loss_ratio(80, 100) == pytest.approx(0.8)

    @pytest.mark.parametrize("premium", [0, -10, None])
    def test_undefined_without_premium(self, premium: float | None) -> None:
        assert calculate_loss_ratio(500, premium) is None


class TestMonthlySummaries:
    def test_zero_premium_month(self) -> None:
        rows = [ExperienceRow(month="2024-01", category="Medical", amount=0, claims=500, premium=0)]
        [summary] = compute_monthly_summaries(rows, {})
        assert summary.claims == 500
        assert summary.loss_ratio is None

    def test_claims_resolution(self) -> None:
        rows = [
            ExperienceRow(month="2024-01", category="Medical Claims", amount=300, premium=1000),
            ExperienceRow(month="2024-01", category="Admin", amount=999),
            ExperienceRow(month="2024-01", category="Admin", amount=5, claims=100),
        ]
        [summary] = compute_monthly_summaries(rows)
        assert summary.claims == pytest.approx(400)
        assert summary.premium == pytest.approx(1000)
        assert summary.loss_ratio == pytest.approx(0.4)

    def test_fees_join(self) -> None:
        rows = [
            ExperienceRow(month="2024-01", category="Claims", amount=100, premium=200),
            ExperienceRow(month="2024-02", category="Claims", amount=100, premium=200),
        ]
        fees = {"2024-01": FeesRow(month="2024-01", tpa_fee=10, network_fee=5, other_fees=1)}
        jan, feb = compute_monthly_summaries(rows, fees)
        assert jan.fees_total == pytest.approx(16)
        assert jan.total_cost == pytest.approx(116)
        assert feb.fees_total == 0
        assert feb.total_cost == pytest.approx(100)

    def test_rolling_twelve_needs_full_window(self) -> None:
        rows = [
            ExperienceRow(month=month, category="Claims", amount=80, premium=100)
            for month in _months(14)
        ]
        summaries = compute_monthly_summaries(list(reversed(rows)))
        assert [s.month for s in summaries] == _months(14)
        assert all(s.r12_loss_ratio is None for s in summaries[:11])
        assert all(s.r12_loss_ratio == pytest.approx(0.8) for s in summaries[11:])
        assert all(s.loss_ratio == pytest.approx(0.8) for s in summaries)

    def test_rolling_window_slides(self) -> None:
        rows = [
            ExperienceRow(month=month, category="Claims", amount=100 if i == 0 else 50, premium=100)
            for i, month in enumerate(_months(13))
        ]
        summaries = compute_monthly_summaries(rows)
        # Month 12 window includes the first month; month 13 drops it
        assert summaries[11].r12_loss_ratio == pytest.approx((100 + 11 * 50) / 1200)
        assert summaries[12].r12_loss_ratio == pytest.approx(0.5)

    def test_rolling_undefined_without_premium(self) -> None:
        rows = [ExperienceRow(month=m, category="Claims", amount=10) for m in _months(12)]
        summaries = compute_monthly_summaries(rows)
        assert summaries[-1].r12_loss_ratio is None

    def test_totals(self) -> None:
        rows = [
            ExperienceRow(month="2024-01", category="Claims", amount=100, premium=200),
            ExperienceRow(month="2024-02", category="Claims", amount=50, premium=100),
        ]
        fees = {"2024-02": FeesRow(month="2024-02", stop_loss_premium=25)}
        totals = calculate_totals(compute_monthly_summaries(rows, fees))
        assert totals.claims == pytest.approx(150)
        assert totals.premium == pytest.approx(300)
        assert totals.fees_total == pytest.approx(25)
        assert totals.total_cost == pytest.approx(175)

    def test_empty(self) -> None:
        assert compute_monthly_summaries([]) == []
