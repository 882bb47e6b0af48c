"""
Variance analysis - planned vs actual

calculate_variance is a pure function of two amounts. Bands (percent of
planned, defaults from ControlPolicy):

    abs(pct) >= 20  → critical (overrides the two below)
    pct <= -10      → favorable (under plan)
    pct >= +10      → unfavorable (over plan)
    otherwise       → neutral

Classification uses the exact percentage; the reported percentage is
rounded to two places.
"""

from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any

from fund_control.budget.models import VarianceResult, VarianceStatus
from fund_control.kernel.money import CENT
from fund_control.kernel.policy import ControlPolicy, default_control_policy


def variance_percent(planned_cents: int, actual_cents: int) -> Decimal:
    """
    Signed deviation of actual from planned, in percent (unrounded)

    A zero plan has no meaningful ratio: nothing against nothing is 0%,
    anything against nothing is treated as +100%.
    """
    if planned_cents == 0:
        return Decimal(0) if actual_cents == 0 else Decimal(100)
    return Decimal(actual_cents - planned_cents) * 100 / Decimal(planned_cents)


def classify_variance(pct: Decimal, policy: ControlPolicy = default_control_policy) -> VarianceStatus:
    if abs(pct) >= policy.variance_critical_pct:
        return VarianceStatus.CRITICAL
    if pct <= -policy.variance_threshold_pct:
        return VarianceStatus.FAVORABLE
    if pct >= policy.variance_threshold_pct:
        return VarianceStatus.UNFAVORABLE
    return VarianceStatus.NEUTRAL


def calculate_variance(
    planned_cents: int,
    actual_cents: int,
    policy: ControlPolicy = default_control_policy,
) -> VarianceResult:
    """
    Example:
        >>> calculate_variance(10000, 8500).status
        <VarianceStatus.FAVORABLE: 'favorable'>
    """
    pct = variance_percent(planned_cents, actual_cents)
    return VarianceResult(
        planned_cents=planned_cents,
        actual_cents=actual_cents,
        variance_cents=actual_cents - planned_cents,
        variance_pct=pct.quantize(CENT, rounding=ROUND_HALF_EVEN),
        status=classify_variance(pct, policy),
    )


def summarize_variances(analyses: list[dict[str, Any]]) -> dict[str, Any]:
    """Count, total, average percentage and status breakdown of recorded analyses"""
    by_status = {status.value: 0 for status in VarianceStatus}
    total_variance = 0
    pct_sum = Decimal(0)

    for analysis in analyses:
        by_status[analysis["status"]] += 1
        total_variance += analysis["variance_cents"]
        pct_sum += Decimal(str(analysis["variance_pct"]))

    count = len(analyses)
    average = (pct_sum / count).quantize(CENT) if count else Decimal("0.00")
    return {
        "count": count,
        "total_variance_cents": total_variance,
        "average_variance_pct": average,
        "by_status": by_status,
        "critical": [a for a in analyses if a["status"] == VarianceStatus.CRITICAL.value],
    }
