"""
Budget Module Handlers - Command→Event transformation

Handlers are the decision-making layer. They:
1. Load current state (from projections, passed in by the façade)
2. Validate invariants
3. Generate events if valid
4. Return events for append to event store

Amounts the handlers cannot see for themselves (ledger allocations,
committed totals) are computed by the façade from the projections and
passed in, keeping these handlers free of cross-module lookups.
"""

from typing import Any

from fund_control.budget.commands import (
    ActivateBudget,
    AddLineItem,
    AnalyzeVariance,
    ChangeExpenditureStatus,
    ChangeObligationStatus,
    CloseBudget,
    CreateBudget,
    CreateExpenditure,
    CreateObligation,
    RollbackBudget,
    SubmitBudget,
    UpdateBudget,
)
from fund_control.budget.events import (
    BudgetActivated,
    BudgetApprovalDecided,
    BudgetClosed,
    BudgetCreated,
    BudgetRolledBack,
    BudgetSubmissionWithdrawn,
    BudgetSubmitted,
    BudgetUpdated,
    BudgetVersionRecorded,
    ExpenditureRecorded,
    ExpenditureStatusChanged,
    LineItemAdded,
    ObligationRecorded,
    ObligationStatusChanged,
    VarianceAnalyzed,
)
from fund_control.budget.invariants import (
    validate_budget_editable,
    validate_budget_spendable,
    validate_budget_transition,
    validate_commitment_within_funds,
    validate_expenditure_against_obligation,
    validate_expenditure_transition,
    validate_line_item_reference,
    validate_line_number_unique,
    validate_obligation_date,
    validate_obligation_transition,
)
from fund_control.budget.models import (
    EDITABLE_FIELDS,
    EDITABLE_STATUSES,
    BudgetApprovalStatus,
    BudgetSnapshot,
    BudgetStatus,
)
from fund_control.budget.variance import calculate_variance
from fund_control.kernel.errors import BudgetNotFound, BudgetVersionNotFound
from fund_control.kernel.events import Event, StreamEvents
from fund_control.kernel.ids import generate_id
from fund_control.kernel.money import format_cents, to_cents
from fund_control.kernel.policy import ControlPolicy
from fund_control.kernel.time import TimeProvider, ensure_utc
from fund_control.ledger.invariants import validate_purpose
from fund_control.ledger.models import Appropriation

STREAM_TYPE = "budget"


class BudgetChanges:
    """
    Version-bumping events for one budget within one command

    Each record() takes the previous snapshot, applies the changes and
    stores the result as the next version.
    """

    def __init__(self, stream: StreamEvents, budget: dict[str, Any] | None) -> None:
        self.stream = stream
        self.version = budget["version"] if budget else 0
        self.snapshot = BudgetSnapshot.model_validate(budget) if budget else None

    def record(
        self,
        event_type: str,
        payload_cls: type[BudgetVersionRecorded],
        change_summary: str,
        snapshot: BudgetSnapshot | None = None,
        updates: dict[str, Any] | None = None,
        **extra: Any,
    ) -> Event:
        if snapshot is None:
            snapshot = BudgetSnapshot.model_validate(
                {**self.snapshot.model_dump(), **(updates or {})}
            )
        self.snapshot = snapshot
        self.version += 1
        return self.stream.add(
            event_type,
            payload_cls(
                budget_id=self.stream.stream_id,
                version=self.version,
                snapshot=snapshot,
                change_summary=change_summary,
                changed_by=self.stream.actor_id,
                changed_at=self.stream.occurred_at,
                **extra,
            ),
        )


# Budget state after its approval request ends, by request outcome
OUTCOME_STATES = {
    "approved": (BudgetStatus.APPROVED, BudgetApprovalStatus.APPROVED),
    "rejected": (BudgetStatus.REJECTED, BudgetApprovalStatus.REJECTED),
    "cancelled": (BudgetStatus.DRAFT, BudgetApprovalStatus.PENDING),
}


class BudgetCommandHandlers:
    """
    Command handlers for the budget module

    They depend on projections to get current state.
    """

    def __init__(self, time_provider: TimeProvider, policy: ControlPolicy) -> None:
        """
        Args:
            time_provider: For timestamps (injectable for testing)
            policy: Fund-control parameters
        """
        self.time_provider = time_provider
        self.policy = policy

    # ========== Budget lifecycle ==========

    def handle_create_budget(
        self,
        command: CreateBudget,
        command_id: str,
        actor_id: str,
    ) -> list[Event]:
        """Handle CreateBudget command - version 1, status draft"""
        budget_id = generate_id()
        stream = self._stream(budget_id, 0, command_id, actor_id)
        now = stream.occurred_at

        snapshot = BudgetSnapshot(
            fiscal_year=command.fiscal_year,
            title=command.title,
            description=command.description,
            amount_cents=to_cents(command.amount),
            department=command.department,
            organization_id=command.organization_id,
            appropriation_code=command.appropriation_code,
            purpose=command.purpose,
            created_by=actor_id,
            created_at=now,
        )
        BudgetChanges(stream, None).record(
            "BudgetCreated", BudgetCreated, "Budget created", snapshot=snapshot
        )
        return stream.events

    def handle_update_budget(
        self,
        command: UpdateBudget,
        command_id: str,
        actor_id: str,
        budgets: dict[str, dict],
    ) -> list[Event]:
        """
        Handle UpdateBudget command

        Always produces a new version, even when no field value changes.

        Raises:
            BudgetNotFound: If budget doesn't exist
            BudgetLocked: If budget is not draft or rejected
            Unauthorized: If a draft is edited by someone other than its creator
        """
        budget = self._load(command.budget_id, budgets)
        validate_budget_editable(budget, actor_id, self.policy)

        updates: dict[str, Any] = {}
        for field in command.model_fields_set - {"budget_id"}:
            value = getattr(command, field)
            if value is None and field in ("title", "amount"):
                continue
            if field == "amount":
                updates["amount_cents"] = to_cents(value)
            else:
                updates[field] = value

        changed = sorted(k for k, v in updates.items() if budget.get(k) != v)
        stream = self._stream(command.budget_id, budget["stream_version"], command_id, actor_id)
        BudgetChanges(stream, budget).record(
            "BudgetUpdated",
            BudgetUpdated,
            f"Updated {', '.join(changed)}" if changed else "Updated (no field changes)",
            updates=updates,
            changed_fields=changed,
        )
        return stream.events

    def handle_rollback_budget(
        self,
        command: RollbackBudget,
        command_id: str,
        actor_id: str,
        budgets: dict[str, dict],
        target: dict | None,
    ) -> list[Event]:
        """
        Handle RollbackBudget command

        Restores the editable fields of the target version under a new
        version number. The target's status comes back too when it was
        draft or rejected; any other status returns the budget to draft.

        Raises:
            BudgetNotFound: If budget doesn't exist
            BudgetVersionNotFound: If the target version doesn't exist
            BudgetLocked / Unauthorized: Same gating as update
        """
        budget = self._load(command.budget_id, budgets)
        if target is None:
            raise BudgetVersionNotFound(command.budget_id, command.version)
        validate_budget_editable(budget, actor_id, self.policy)

        restored = BudgetSnapshot.model_validate(target["snapshot"])
        updates: dict[str, Any] = {field: getattr(restored, field) for field in EDITABLE_FIELDS}
        if restored.status in EDITABLE_STATUSES:
            updates["status"] = restored.status
            updates["approval_status"] = restored.approval_status
        else:
            updates["status"] = BudgetStatus.DRAFT
            updates["approval_status"] = BudgetApprovalStatus.PENDING

        stream = self._stream(command.budget_id, budget["stream_version"], command_id, actor_id)
        BudgetChanges(stream, budget).record(
            "BudgetRolledBack",
            BudgetRolledBack,
            f"Rolled back to version {command.version}",
            updates=updates,
            rolled_back_to=command.version,
        )
        return stream.events

    def handle_submit_budget(
        self,
        command: SubmitBudget,
        command_id: str,
        actor_id: str,
        budgets: dict[str, dict],
        approval_request_id: str,
        outcome: str | None = None,
    ) -> list[Event]:
        """
        Handle SubmitBudget command (draft/rejected → submitted)

        outcome is set when the approval request finished within the same
        command (every step auto-approved); the decision is then recorded
        right after the submission.

        Raises:
            BudgetNotFound: If budget doesn't exist
            InvalidTransition: If budget is not draft or rejected
        """
        budget = self._load(command.budget_id, budgets)
        validate_budget_transition(budget, EDITABLE_STATUSES, BudgetStatus.SUBMITTED)

        stream = self._stream(command.budget_id, budget["stream_version"], command_id, actor_id)
        changes = BudgetChanges(stream, budget)
        changes.record(
            "BudgetSubmitted",
            BudgetSubmitted,
            "Submitted for approval",
            updates={
                "status": BudgetStatus.SUBMITTED,
                "approval_status": BudgetApprovalStatus.IN_REVIEW,
                "approval_request_id": approval_request_id,
            },
            approval_request_id=approval_request_id,
            comments=command.comments,
        )
        if outcome is not None:
            self._record_outcome(changes, approval_request_id, outcome)
        return stream.events

    def handle_approval_outcome(
        self,
        budget_id: str,
        approval_request_id: str,
        outcome: str,
        command_id: str,
        actor_id: str | None,
        budgets: dict[str, dict],
    ) -> list[Event]:
        """
        Mirror the end of the budget's approval request onto the budget

        approved → approved/approved, rejected → rejected/rejected,
        cancelled → draft/pending.
        """
        budget = self._load(budget_id, budgets)
        stream = self._stream(budget_id, budget["stream_version"], command_id, actor_id)
        self._record_outcome(BudgetChanges(stream, budget), approval_request_id, outcome)
        return stream.events

    def _record_outcome(
        self, changes: BudgetChanges, approval_request_id: str, outcome: str
    ) -> None:
        status, approval_status = OUTCOME_STATES[outcome]
        if outcome == "cancelled":
            changes.record(
                "BudgetSubmissionWithdrawn",
                BudgetSubmissionWithdrawn,
                "Approval request cancelled - returned to draft",
                updates={
                    "status": status,
                    "approval_status": approval_status,
                    "approval_request_id": None,
                },
                approval_request_id=approval_request_id,
            )
            return
        changes.record(
            "BudgetApprovalDecided",
            BudgetApprovalDecided,
            f"Approval {outcome}",
            updates={"status": status, "approval_status": approval_status},
            approval_request_id=approval_request_id,
            decision=outcome,
        )

    def handle_activate_budget(
        self,
        command: ActivateBudget,
        command_id: str,
        actor_id: str,
        budgets: dict[str, dict],
    ) -> list[Event]:
        """
        Raises:
            BudgetNotFound: If budget doesn't exist
            InvalidTransition: If budget is not approved
        """
        budget = self._load(command.budget_id, budgets)
        validate_budget_transition(budget, {BudgetStatus.APPROVED}, BudgetStatus.ACTIVE)

        stream = self._stream(command.budget_id, budget["stream_version"], command_id, actor_id)
        BudgetChanges(stream, budget).record(
            "BudgetActivated",
            BudgetActivated,
            "Activated for execution",
            updates={"status": BudgetStatus.ACTIVE},
        )
        return stream.events

    def handle_close_budget(
        self,
        command: CloseBudget,
        command_id: str,
        actor_id: str,
        budgets: dict[str, dict],
        released_cents: int,
    ) -> list[Event]:
        """
        Raises:
            BudgetNotFound: If budget doesn't exist
            InvalidTransition: If budget is not approved or active
        """
        budget = self._load(command.budget_id, budgets)
        validate_budget_transition(
            budget, {BudgetStatus.APPROVED, BudgetStatus.ACTIVE}, BudgetStatus.CLOSED
        )

        summary = "Closed"
        if command.reason:
            summary = f"Closed: {command.reason}"
        if released_cents:
            summary += f" (released {format_cents(released_cents)} unobligated)"

        stream = self._stream(command.budget_id, budget["stream_version"], command_id, actor_id)
        BudgetChanges(stream, budget).record(
            "BudgetClosed",
            BudgetClosed,
            summary,
            updates={"status": BudgetStatus.CLOSED},
            released_cents=released_cents,
        )
        return stream.events

    # ========== Line items ==========

    def handle_add_line_item(
        self,
        command: AddLineItem,
        command_id: str,
        actor_id: str,
        budgets: dict[str, dict],
        line_items: list[dict],
    ) -> list[Event]:
        """
        Raises:
            BudgetNotFound: If budget doesn't exist
            BudgetLocked / Unauthorized: Line items follow the edit gating
            DuplicateLineItem: If the line number is taken
        """
        budget = self._load(command.budget_id, budgets)
        validate_budget_editable(budget, actor_id, self.policy)
        validate_line_number_unique(command.budget_id, command.line_number, line_items)

        stream = self._stream(command.budget_id, budget["stream_version"], command_id, actor_id)
        stream.add(
            "LineItemAdded",
            LineItemAdded(
                line_item_id=generate_id(),
                budget_id=command.budget_id,
                line_number=command.line_number,
                description=command.description,
                amount_cents=to_cents(command.amount),
                category=command.category,
                appropriation_code=command.appropriation_code or budget.get("appropriation_code"),
                created_by=actor_id,
                created_at=stream.occurred_at,
            ),
        )
        return stream.events

    # ========== Obligations ==========

    def handle_create_obligation(
        self,
        command: CreateObligation,
        command_id: str,
        actor_id: str,
        budgets: dict[str, dict],
        line_items: list[dict],
        funded_cents: int,
        committed_cents: int,
        appropriation: Appropriation | None,
    ) -> list[Event]:
        """
        Handle CreateObligation command

        Raises:
            BudgetNotFound: If budget doesn't exist
            BudgetNotSpendable: If budget is not approved or active
            LineItemNotFound: If line_item_id is not in the budget
            BonaFideNeedViolation: If obligation_date predates the appropriation's fiscal year
            AppropriationExpired: If obligation_date is past the appropriation's expiration
            PurposeViolation: If the purpose is missing or outside restricted funds' tags
            InsufficientFunds: If commitments would exceed the funded amount
        """
        budget = self._load(command.budget_id, budgets)
        validate_budget_spendable(budget)
        validate_line_item_reference(command.line_item_id, line_items)
        validate_obligation_date(command.obligation_date, appropriation)
        purpose = command.purpose or budget.get("purpose")
        if appropriation is not None:
            validate_purpose(appropriation, purpose, required=True)

        amount_cents = to_cents(command.amount)
        validate_commitment_within_funds(
            command.budget_id, funded_cents, committed_cents, amount_cents
        )

        stream = self._stream(command.budget_id, budget["stream_version"], command_id, actor_id)
        stream.add(
            "ObligationRecorded",
            ObligationRecorded(
                obligation_id=generate_id(),
                budget_id=command.budget_id,
                document_number=command.document_number,
                amount_cents=amount_cents,
                description=command.description,
                obligation_date=ensure_utc(command.obligation_date),
                status=command.status,
                line_item_id=command.line_item_id,
                program_element_id=command.program_element_id,
                vendor=command.vendor,
                purpose=purpose,
                funded_cents=funded_cents,
                committed_after_cents=committed_cents + amount_cents,
                created_by=actor_id,
                created_at=stream.occurred_at,
            ),
        )
        return stream.events

    def handle_change_obligation_status(
        self,
        command: ChangeObligationStatus,
        command_id: str,
        actor_id: str,
        budgets: dict[str, dict],
        obligation: dict,
        paid_against_cents: int,
    ) -> list[Event]:
        """
        Raises:
            InvalidTransition: If the obligation lifecycle doesn't allow it
        """
        validate_obligation_transition(obligation, command.status, paid_against_cents)
        budget = self._load(obligation["budget_id"], budgets)

        stream = self._stream(budget["budget_id"], budget["stream_version"], command_id, actor_id)
        stream.add(
            "ObligationStatusChanged",
            ObligationStatusChanged(
                obligation_id=obligation["obligation_id"],
                budget_id=budget["budget_id"],
                from_status=obligation["status"],
                to_status=command.status,
                reason=command.reason,
                changed_by=actor_id,
                changed_at=stream.occurred_at,
            ),
        )
        return stream.events

    # ========== Expenditures ==========

    def handle_create_expenditure(
        self,
        command: CreateExpenditure,
        command_id: str,
        actor_id: str,
        budgets: dict[str, dict],
        line_items: list[dict],
        funded_cents: int,
        committed_cents: int,
        obligation: dict | None,
        spent_against_cents: int,
    ) -> list[Event]:
        """
        Handle CreateExpenditure command

        Against an obligation the payment is bounded by what remains of
        the obligation; without one it is a direct commitment bounded by
        the budget's funded amount.

        Raises:
            BudgetNotFound: If budget doesn't exist
            BudgetNotSpendable: If budget is not approved or active
            LineItemNotFound: If line_item_id is not in the budget
            InvalidTransition: If the obligation is not OBLIGATED
            ExpenditureExceedsObligation: If payments would exceed the obligation
            InsufficientFunds: If a direct payment exceeds the funded amount
        """
        budget = self._load(command.budget_id, budgets)
        validate_budget_spendable(budget)
        validate_line_item_reference(command.line_item_id, line_items)

        amount_cents = to_cents(command.amount)
        if obligation is not None:
            validate_expenditure_against_obligation(obligation, spent_against_cents, amount_cents)
        else:
            validate_commitment_within_funds(
                command.budget_id, funded_cents, committed_cents, amount_cents
            )

        stream = self._stream(command.budget_id, budget["stream_version"], command_id, actor_id)
        stream.add(
            "ExpenditureRecorded",
            ExpenditureRecorded(
                expenditure_id=generate_id(),
                budget_id=command.budget_id,
                amount_cents=amount_cents,
                description=command.description,
                payment_date=ensure_utc(command.payment_date),
                status=command.status,
                obligation_id=command.obligation_id,
                line_item_id=command.line_item_id or (obligation or {}).get("line_item_id"),
                vendor=command.vendor or (obligation or {}).get("vendor"),
                invoice_number=command.invoice_number,
                created_by=actor_id,
                created_at=stream.occurred_at,
            ),
        )
        return stream.events

    def handle_change_expenditure_status(
        self,
        command: ChangeExpenditureStatus,
        command_id: str,
        actor_id: str,
        budgets: dict[str, dict],
        expenditure: dict,
    ) -> list[Event]:
        """
        Raises:
            InvalidTransition: If the expenditure lifecycle doesn't allow it
        """
        validate_expenditure_transition(expenditure, command.status)
        budget = self._load(expenditure["budget_id"], budgets)

        stream = self._stream(budget["budget_id"], budget["stream_version"], command_id, actor_id)
        stream.add(
            "ExpenditureStatusChanged",
            ExpenditureStatusChanged(
                expenditure_id=expenditure["expenditure_id"],
                budget_id=budget["budget_id"],
                from_status=expenditure["status"],
                to_status=command.status,
                reason=command.reason,
                changed_by=actor_id,
                changed_at=stream.occurred_at,
            ),
        )
        return stream.events

    # ========== Variance ==========

    def handle_analyze_variance(
        self,
        command: AnalyzeVariance,
        command_id: str,
        actor_id: str,
        budgets: dict[str, dict],
        actual_cents: int,
    ) -> list[Event]:
        """Planned = budget amount, actual = paid expenditures"""
        budget = self._load(command.budget_id, budgets)
        result = calculate_variance(budget["amount_cents"], actual_cents, self.policy)

        stream = self._stream(command.budget_id, budget["stream_version"], command_id, actor_id)
        stream.add(
            "VarianceAnalyzed",
            VarianceAnalyzed(
                analysis_id=generate_id(),
                budget_id=command.budget_id,
                fiscal_year=budget["fiscal_year"],
                period=command.period,
                planned_cents=result.planned_cents,
                actual_cents=result.actual_cents,
                variance_cents=result.variance_cents,
                variance_pct=result.variance_pct,
                status=result.status,
                analyzed_by=actor_id,
                analyzed_at=stream.occurred_at,
            ),
        )
        return stream.events

    # ========== Helpers ==========

    def _stream(
        self, budget_id: str, version: int, command_id: str, actor_id: str | None
    ) -> StreamEvents:
        return StreamEvents(
            stream_id=budget_id,
            stream_type=STREAM_TYPE,
            current_version=version,
            command_id=command_id,
            occurred_at=self.time_provider.now(),
            actor_id=actor_id,
        )

    def _load(self, budget_id: str, budgets: dict[str, dict]) -> dict:
        budget = budgets.get(budget_id)
        if budget is None:
            raise BudgetNotFound(budget_id)
        return budget
