"""
Budget Module Projections - Read models for budgets and spending

BudgetRegistry: current state of all budgets, their version snapshots and
line items
SpendingLedger: obligations and expenditures (the authoritative child
records every rollup is computed from)
VarianceLog: recorded variance analyses

No projection keeps running totals. Obligated and expended amounts are
summed from the child records whenever they are asked for.
"""

from typing import Any

from fund_control.budget.events import VERSION_EVENT_TYPES
from fund_control.budget.models import (
    COMMITTING_EXPENDITURE_STATUSES,
    COMMITTING_OBLIGATION_STATUSES,
    ExpenditureStatus,
    ObligationStatus,
)
from fund_control.kernel.events import Event

_COMMITTING_OBLIGATIONS = {status.value for status in COMMITTING_OBLIGATION_STATUSES}
_COMMITTING_EXPENDITURES = {status.value for status in COMMITTING_EXPENDITURE_STATUSES}


class BudgetRegistry:
    """
    Main budget projection

    Built from events: all version-bumping budget events, LineItemAdded;
    every budget-stream event advances the budget's stream_version

    Query methods: get, list_all, list_by_fiscal_year, get_versions,
                   get_version, get_line_items
    """

    def __init__(self) -> None:
        self.budgets: dict[str, dict[str, Any]] = {}
        self.versions: dict[str, list[dict[str, Any]]] = {}
        self.line_items: dict[str, list[dict[str, Any]]] = {}

    def apply_event(self, event: Event) -> None:
        payload = event.payload

        if event.event_type in VERSION_EVENT_TYPES:
            self._apply_version(event)
        elif event.event_type == "LineItemAdded":
            self.line_items.setdefault(payload["budget_id"], []).append(dict(payload))

        budget = self.budgets.get(event.stream_id)
        if budget is not None:
            budget["stream_version"] = event.version

    def _apply_version(self, event: Event) -> None:
        payload = event.payload
        budget_id = payload["budget_id"]

        self.budgets[budget_id] = {
            "budget_id": budget_id,
            **payload["snapshot"],
            "version": payload["version"],
            "updated_at": payload["changed_at"],
            "stream_version": event.version,
        }
        self.versions.setdefault(budget_id, []).append(
            {
                "budget_id": budget_id,
                "version": payload["version"],
                "snapshot": payload["snapshot"],
                "change_summary": payload["change_summary"],
                "created_by": payload.get("changed_by"),
                "created_at": payload["changed_at"],
                "event_type": event.event_type,
            }
        )

    # ========== Query Methods ==========

    def get(self, budget_id: str) -> dict[str, Any] | None:
        return self.budgets.get(budget_id)

    def list_all(self) -> list[dict[str, Any]]:
        return list(self.budgets.values())

    def list_by_fiscal_year(self, fiscal_year: int) -> list[dict[str, Any]]:
        return [b for b in self.budgets.values() if b["fiscal_year"] == fiscal_year]

    def get_versions(self, budget_id: str) -> list[dict[str, Any]]:
        """Version snapshots, newest first"""
        return sorted(self.versions.get(budget_id, []), key=lambda v: v["version"], reverse=True)

    def get_version(self, budget_id: str, version: int) -> dict[str, Any] | None:
        for snapshot in self.versions.get(budget_id, []):
            if snapshot["version"] == version:
                return snapshot
        return None

    def get_line_items(self, budget_id: str) -> list[dict[str, Any]]:
        return sorted(self.line_items.get(budget_id, []), key=lambda i: i["line_number"])


class SpendingLedger:
    """
    Obligations and expenditures

    Built from events: ObligationRecorded, ObligationStatusChanged,
                       ExpenditureRecorded, ExpenditureStatusChanged

    Query methods: get_obligation, get_expenditure, obligations_for,
                   expenditures_for, expenditures_against and the
                   recomputed totals below
    """

    def __init__(self) -> None:
        self.obligations: dict[str, dict[str, Any]] = {}
        self.expenditures: dict[str, dict[str, Any]] = {}

    def apply_event(self, event: Event) -> None:
        payload = event.payload

        if event.event_type == "ObligationRecorded":
            self.obligations[payload["obligation_id"]] = {
                key: value
                for key, value in payload.items()
                if key not in ("funded_cents", "committed_after_cents")
            }
        elif event.event_type == "ObligationStatusChanged":
            obligation = self.obligations.get(payload["obligation_id"])
            if obligation is not None:
                obligation["status"] = payload["to_status"]
                obligation["updated_at"] = payload["changed_at"]
        elif event.event_type == "ExpenditureRecorded":
            self.expenditures[payload["expenditure_id"]] = dict(payload)
        elif event.event_type == "ExpenditureStatusChanged":
            expenditure = self.expenditures.get(payload["expenditure_id"])
            if expenditure is not None:
                expenditure["status"] = payload["to_status"]
                expenditure["updated_at"] = payload["changed_at"]

    # ========== Query Methods ==========

    def get_obligation(self, obligation_id: str) -> dict[str, Any] | None:
        return self.obligations.get(obligation_id)

    def get_expenditure(self, expenditure_id: str) -> dict[str, Any] | None:
        return self.expenditures.get(expenditure_id)

    def obligations_for(self, budget_id: str) -> list[dict[str, Any]]:
        return [o for o in self.obligations.values() if o["budget_id"] == budget_id]

    def expenditures_for(self, budget_id: str) -> list[dict[str, Any]]:
        return [e for e in self.expenditures.values() if e["budget_id"] == budget_id]

    def expenditures_against(self, obligation_id: str) -> list[dict[str, Any]]:
        return [e for e in self.expenditures.values() if e["obligation_id"] == obligation_id]

    def obligated_cents(self, budget_id: str, line_item_id: str | None = None) -> int:
        """Sum of OBLIGATED obligations"""
        return sum(
            o["amount_cents"]
            for o in self.obligations_for(budget_id)
            if o["status"] == ObligationStatus.OBLIGATED.value
            and (line_item_id is None or o["line_item_id"] == line_item_id)
        )

    def expended_cents(self, budget_id: str, line_item_id: str | None = None) -> int:
        """Sum of PAID expenditures"""
        return sum(
            e["amount_cents"]
            for e in self.expenditures_for(budget_id)
            if e["status"] == ExpenditureStatus.PAID.value
            and (line_item_id is None or e["line_item_id"] == line_item_id)
        )

    def committed_cents(self, budget_id: str) -> int:
        """
        Everything that draws on the budget's funds

        Pending and obligated obligations, plus pending and paid
        expenditures that do not settle an obligation (payments against an
        obligation are already inside that obligation's amount).
        """
        obligations = sum(
            o["amount_cents"]
            for o in self.obligations_for(budget_id)
            if o["status"] in _COMMITTING_OBLIGATIONS
        )
        direct = sum(
            e["amount_cents"]
            for e in self.expenditures_for(budget_id)
            if e["obligation_id"] is None and e["status"] in _COMMITTING_EXPENDITURES
        )
        return obligations + direct

    def spent_against(self, obligation_id: str) -> int:
        """Pending and paid payments against one obligation"""
        return sum(
            e["amount_cents"]
            for e in self.expenditures_against(obligation_id)
            if e["status"] in _COMMITTING_EXPENDITURES
        )


class VarianceLog:
    """
    Built from events: VarianceAnalyzed

    Query methods: for_budget, for_fiscal_year
    """

    def __init__(self) -> None:
        self.analyses: list[dict[str, Any]] = []

    def apply_event(self, event: Event) -> None:
        if event.event_type == "VarianceAnalyzed":
            self.analyses.append(dict(event.payload))

    def for_budget(self, budget_id: str) -> list[dict[str, Any]]:
        """Analyses of one budget, newest first"""
        return [a for a in reversed(self.analyses) if a["budget_id"] == budget_id]

    def for_fiscal_year(self, fiscal_year: int | None = None) -> list[dict[str, Any]]:
        return [
            a for a in self.analyses if fiscal_year is None or a["fiscal_year"] == fiscal_year
        ]
