"""
Rollups - Summaries recomputed from authoritative records

Every figure here is summed from obligations, expenditures and ledger
allocations at the moment it is asked for. Nothing is cached, so a status
change on a child record shows up in the next summary without any
bookkeeping.
"""

from collections import defaultdict
from typing import Any

from fund_control.budget.projections import SpendingLedger
from fund_control.kernel.time import parse_timestamp


def funded_cents(budget: dict[str, Any], allocated_cents: int) -> int:
    """What a budget may commit: its ledger allocation when fund-gated, else its amount"""
    if budget.get("appropriation_code"):
        return allocated_cents
    return budget["amount_cents"]


def budget_rollup(
    budget: dict[str, Any], allocated_cents: int, spending: SpendingLedger
) -> dict[str, Any]:
    """Budget record plus allocated/obligated/expended/available"""
    budget_id = budget["budget_id"]
    committed = spending.committed_cents(budget_id)
    return {
        **budget,
        "fund_gated": bool(budget.get("appropriation_code")),
        "allocated_cents": allocated_cents,
        "obligated_cents": spending.obligated_cents(budget_id),
        "expended_cents": spending.expended_cents(budget_id),
        "committed_cents": committed,
        "available_cents": funded_cents(budget, allocated_cents) - committed,
    }


def line_item_rollups(
    line_items: list[dict[str, Any]], spending: SpendingLedger
) -> list[dict[str, Any]]:
    return [
        {
            **item,
            "obligated_cents": spending.obligated_cents(item["budget_id"], item["line_item_id"]),
            "expended_cents": spending.expended_cents(item["budget_id"], item["line_item_id"]),
        }
        for item in line_items
    ]


def _bucket() -> dict[str, int]:
    return {"count": 0, "amount_cents": 0}


def _add(buckets: dict[str, dict[str, int]], key: str, amount_cents: int) -> None:
    buckets[key]["count"] += 1
    buckets[key]["amount_cents"] += amount_cents


def summarize_budgets(budgets: list[dict[str, Any]]) -> dict[str, Any]:
    by_status: defaultdict[str, dict[str, int]] = defaultdict(_bucket)
    by_department: defaultdict[str, dict[str, int]] = defaultdict(_bucket)
    for budget in budgets:
        _add(by_status, budget["status"], budget["amount_cents"])
        _add(by_department, budget.get("department") or "unassigned", budget["amount_cents"])

    return {
        "total_count": len(budgets),
        "total_amount_cents": sum(b["amount_cents"] for b in budgets),
        "by_status": dict(by_status),
        "by_department": dict(by_department),
    }


def summarize_obligations(obligations: list[dict[str, Any]]) -> dict[str, Any]:
    by_status: defaultdict[str, dict[str, int]] = defaultdict(_bucket)
    by_vendor: defaultdict[str, dict[str, int]] = defaultdict(_bucket)
    for obligation in obligations:
        _add(by_status, obligation["status"], obligation["amount_cents"])
        _add(by_vendor, obligation.get("vendor") or "unspecified", obligation["amount_cents"])

    return {
        "total_count": len(obligations),
        "total_amount_cents": sum(o["amount_cents"] for o in obligations),
        "by_status": dict(by_status),
        "by_vendor": dict(by_vendor),
    }


def summarize_expenditures(expenditures: list[dict[str, Any]]) -> dict[str, Any]:
    by_status: defaultdict[str, dict[str, int]] = defaultdict(_bucket)
    by_vendor: defaultdict[str, dict[str, int]] = defaultdict(_bucket)
    by_month: defaultdict[str, dict[str, int]] = defaultdict(_bucket)
    for expenditure in expenditures:
        amount = expenditure["amount_cents"]
        _add(by_status, expenditure["status"], amount)
        _add(by_vendor, expenditure.get("vendor") or "unspecified", amount)
        _add(by_month, parse_timestamp(expenditure["payment_date"]).strftime("%Y-%m"), amount)

    return {
        "total_count": len(expenditures),
        "total_amount_cents": sum(e["amount_cents"] for e in expenditures),
        "by_status": dict(by_status),
        "by_vendor": dict(by_vendor),
        "by_month": dict(sorted(by_month.items())),
    }
