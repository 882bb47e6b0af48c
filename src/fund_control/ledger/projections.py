"""
Ledger Projections - Read models for appropriations

AppropriationRegistry: current balances of every appropriation, an index
by (code, fiscal year) and the allocation history of each appropriation.
"""

from typing import Any

from fund_control.kernel.events import Event


class AppropriationRegistry:
    """
    Main ledger projection - current state of all appropriations

    Built from events: AppropriationCreated, FundsAllocated, FundsDeallocated

    Query methods: get, get_by_code, list_all, list_by_fiscal_year,
                   get_allocations, allocated_to_budget
    """

    def __init__(self) -> None:
        self.appropriations: dict[str, dict[str, Any]] = {}
        self.by_code: dict[tuple[str, int], str] = {}
        self.movements: dict[str, list[dict[str, Any]]] = {}

    def apply_event(self, event: Event) -> None:
        """Apply an event to update the projection"""
        if event.event_type == "AppropriationCreated":
            self._apply_appropriation_created(event)
        elif event.event_type == "FundsAllocated":
            self._apply_funds_allocated(event)
        elif event.event_type == "FundsDeallocated":
            self._apply_funds_deallocated(event)

    def _apply_appropriation_created(self, event: Event) -> None:
        payload = event.payload
        appropriation_id = payload["appropriation_id"]

        self.appropriations[appropriation_id] = {
            "appropriation_id": appropriation_id,
            "code": payload["code"],
            "name": payload["name"],
            "fiscal_year": payload["fiscal_year"],
            "appropriation_type": payload["appropriation_type"],
            "availability_years": payload.get("availability_years"),
            "total_cents": payload["total_cents"],
            "allocated_cents": 0,
            "available_cents": payload["total_cents"],
            "expiration_date": payload.get("expiration_date"),
            "restrictions": payload.get("restrictions", []),
            "created_at": payload["created_at"],
            "created_by": payload.get("created_by"),
            "stream_version": event.version,
        }
        self.by_code[(payload["code"], payload["fiscal_year"])] = appropriation_id
        self.movements[appropriation_id] = []

    def _apply_funds_allocated(self, event: Event) -> None:
        payload = event.payload
        record = self.appropriations.get(payload["appropriation_id"])
        if record is None:
            return

        record["allocated_cents"] += payload["amount_cents"]
        record["available_cents"] -= payload["amount_cents"]
        record["stream_version"] = event.version

        self.movements[record["appropriation_id"]].append(
            {
                "event_id": event.event_id,
                "kind": "allocation",
                "amount_cents": payload["amount_cents"],
                "budget_id": payload.get("budget_id"),
                "purpose": payload.get("purpose"),
                "allocated_after_cents": payload["allocated_after_cents"],
                "available_after_cents": payload["available_after_cents"],
                "occurred_at": payload["allocated_at"],
                "actor_id": payload.get("allocated_by"),
            }
        )

    def _apply_funds_deallocated(self, event: Event) -> None:
        payload = event.payload
        record = self.appropriations.get(payload["appropriation_id"])
        if record is None:
            return

        record["allocated_cents"] -= payload["released_cents"]
        record["available_cents"] += payload["released_cents"]
        record["stream_version"] = event.version

        self.movements[record["appropriation_id"]].append(
            {
                "event_id": event.event_id,
                "kind": "deallocation",
                "amount_cents": payload["released_cents"],
                "requested_cents": payload["requested_cents"],
                "budget_id": payload.get("budget_id"),
                "reason": payload.get("reason"),
                "allocated_after_cents": payload["allocated_after_cents"],
                "available_after_cents": payload["available_after_cents"],
                "occurred_at": payload["deallocated_at"],
                "actor_id": payload.get("deallocated_by"),
            }
        )

    # ========== Query Methods ==========

    def get(self, appropriation_id: str) -> dict[str, Any] | None:
        return self.appropriations.get(appropriation_id)

    def get_by_code(self, code: str, fiscal_year: int) -> dict[str, Any] | None:
        """Look up an appropriation by its code within a fiscal year"""
        appropriation_id = self.by_code.get((code, fiscal_year))
        return self.appropriations.get(appropriation_id) if appropriation_id else None

    def list_all(self) -> list[dict[str, Any]]:
        return sorted(
            self.appropriations.values(), key=lambda a: (a["fiscal_year"], a["code"])
        )

    def list_by_fiscal_year(self, fiscal_year: int) -> list[dict[str, Any]]:
        return [a for a in self.list_all() if a["fiscal_year"] == fiscal_year]

    def get_allocations(self, appropriation_id: str) -> list[dict[str, Any]]:
        """Allocation and deallocation history, oldest first"""
        return list(self.movements.get(appropriation_id, []))

    def allocated_to_budget(self, budget_id: str, appropriation_id: str | None = None) -> int:
        """
        Net cents allocated to a budget, across all appropriations or from one

        Recomputed from the movement history on every call.
        """
        if appropriation_id is None:
            histories = list(self.movements.values())
        else:
            histories = [self.movements.get(appropriation_id, [])]
        total = 0
        for movements in histories:
            for movement in movements:
                if movement["budget_id"] != budget_id:
                    continue
                if movement["kind"] == "allocation":
                    total += movement["amount_cents"]
                else:
                    total -= movement["amount_cents"]
        return total
