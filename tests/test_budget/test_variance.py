"""
Tests for variance analysis

calculate_variance is pure; analyze_budget_variance records the result
against a budget so it shows up in history and summaries.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from fund_control.budget.models import VarianceStatus
from fund_control.budget.variance import calculate_variance, classify_variance, variance_percent
from fund_control.control import FundControl
from fund_control.kernel.policy import ControlPolicy


@pytest.mark.parametrize(
    ("actual", "status", "pct"),
    [
        (8_500, VarianceStatus.FAVORABLE, Decimal("-15.00")),
        (11_500, VarianceStatus.UNFAVORABLE, Decimal("15.00")),
        (12_500, VarianceStatus.CRITICAL, Decimal("25.00")),
        (7_500, VarianceStatus.CRITICAL, Decimal("-25.00")),
        (10_000, VarianceStatus.NEUTRAL, Decimal("0.00")),
        (10_500, VarianceStatus.NEUTRAL, Decimal("5.00")),
    ],
)
def test_calculate_variance_bands(actual: int, status: VarianceStatus, pct: Decimal) -> None:
    result = calculate_variance(10_000, actual)

    assert result.status == status
    assert result.variance_pct == pct
    assert result.variance_cents == actual - 10_000


def test_band_edges_are_inclusive() -> None:
    assert classify_variance(Decimal("10")) == VarianceStatus.UNFAVORABLE
    assert classify_variance(Decimal("-10")) == VarianceStatus.FAVORABLE
    assert classify_variance(Decimal("20")) == VarianceStatus.CRITICAL
    assert classify_variance(Decimal("9.99")) == VarianceStatus.NEUTRAL


def test_zero_plan() -> None:
    assert variance_percent(0, 0) == 0
    assert calculate_variance(0, 0).status == VarianceStatus.NEUTRAL

    result = calculate_variance(0, 500)
    assert result.variance_pct == Decimal("100.00")
    assert result.status == VarianceStatus.CRITICAL


def test_policy_moves_the_bands() -> None:
    relaxed = ControlPolicy(variance_threshold_pct=Decimal("20"), variance_critical_pct=Decimal("40"))

    assert calculate_variance(10_000, 12_500, relaxed).status == VarianceStatus.UNFAVORABLE
    assert calculate_variance(10_000, 11_500, relaxed).status == VarianceStatus.NEUTRAL


def test_facade_calculate_variance_takes_amounts(fc: FundControl) -> None:
    result = fc.calculate_variance(100, Decimal("85"))

    assert result.planned_cents == 10_000
    assert result.status == VarianceStatus.FAVORABLE


def test_analyze_budget_variance_records_paid_spending(fc: FundControl, approved_budget: dict) -> None:
    budget_id = approved_budget["budget_id"]
    paid_on = datetime(2025, 3, 1, tzinfo=timezone.utc)
    fc.create_expenditure(budget_id, 85_000, "Fuel", paid_on, "alice")
    fc.create_expenditure(budget_id, 5_000, "Pending invoice", paid_on, "alice", status="pending")

    analysis = fc.analyze_budget_variance(budget_id, "2025-Q2", actor_id="analyst")

    assert analysis["planned_cents"] == 10_000_000
    assert analysis["actual_cents"] == 8_500_000
    assert analysis["status"] == "favorable"
    assert Decimal(analysis["variance_pct"]) == Decimal("-15.00")
    assert analysis["analyzed_by"] == "analyst"

    history = fc.get_variance_history(budget_id)
    assert [a["period"] for a in history] == ["2025-Q2"]


def test_variance_summary(fc: FundControl, approved_budget: dict) -> None:
    budget_id = approved_budget["budget_id"]
    fc.create_expenditure(budget_id, 85_000, "Fuel", datetime(2025, 3, 1, tzinfo=timezone.utc), "alice")

    fc.analyze_budget_variance(budget_id, "2025-Q2")
    fc.create_budget(2026, "Next year", 100, "alice")
    # Nothing spent yet: -100%
    other = fc.create_budget(2025, "Parks", 1_000, "dan")
    fc.analyze_budget_variance(other["budget_id"], "2025-Q2")

    summary = fc.get_variance_summary(2025)
    assert summary["count"] == 2
    assert summary["by_status"]["favorable"] == 1
    assert summary["by_status"]["critical"] == 1
    assert summary["average_variance_pct"] == Decimal("-57.50")
    assert summary["total_variance_cents"] == -1_500_000 - 100_000
    assert [a["budget_id"] for a in summary["critical"]] == [other["budget_id"]]

    assert fc.get_variance_summary(2026)["count"] == 0
