"""
Budget Module Invariants - Edit gating and anti-deficiency at budget level

These pure functions enforce:
1. Edit gating (draft/rejected only, creator-only while draft)
2. Lifecycle transitions of budgets, obligations and expenditures
3. Commitments never exceed the budget's funded amount
4. Payments against an obligation never exceed the obligation
"""

from datetime import datetime

from fund_control.budget.models import (
    EDITABLE_STATUSES,
    EXPENDITURE_TRANSITIONS,
    OBLIGATION_TRANSITIONS,
    SPENDABLE_STATUSES,
    BudgetStatus,
    ExpenditureStatus,
    ObligationStatus,
)
from fund_control.kernel.errors import (
    AppropriationExpired,
    BonaFideNeedViolation,
    BudgetLocked,
    BudgetNotSpendable,
    DuplicateLineItem,
    ExpenditureExceedsObligation,
    InsufficientFunds,
    InvalidTransition,
    LineItemNotFound,
    Unauthorized,
)
from fund_control.kernel.policy import ControlPolicy
from fund_control.kernel.time import ensure_utc, fiscal_year_start
from fund_control.ledger.models import Appropriation


def validate_budget_editable(budget: dict, actor_id: str, policy: ControlPolicy) -> None:
    """
    Raises:
        BudgetLocked: If status is not draft or rejected
        Unauthorized: If a draft is edited by someone other than its creator
    """
    status = BudgetStatus(budget["status"])
    if status not in EDITABLE_STATUSES:
        raise BudgetLocked(budget["budget_id"], status.value)
    if (
        status == BudgetStatus.DRAFT
        and policy.draft_edit_creator_only
        and actor_id != budget["created_by"]
    ):
        raise Unauthorized(actor_id, f"only the creator may edit draft budget {budget['budget_id']}")


def validate_budget_transition(
    budget: dict, allowed_from: frozenset[BudgetStatus] | set[BudgetStatus], to_status: BudgetStatus
) -> None:
    """
    Raises:
        InvalidTransition: If the budget's status is not in allowed_from
    """
    if BudgetStatus(budget["status"]) not in allowed_from:
        raise InvalidTransition("Budget", budget["budget_id"], budget["status"], to_status.value)


def validate_budget_spendable(budget: dict) -> None:
    """
    Raises:
        BudgetNotSpendable: If the budget is not approved or active
    """
    if BudgetStatus(budget["status"]) not in SPENDABLE_STATUSES:
        raise BudgetNotSpendable(budget["budget_id"], budget["status"])


def validate_commitment_within_funds(
    budget_id: str, funded_cents: int, committed_cents: int, amount_cents: int
) -> None:
    """
    Anti-deficiency gate at budget level

    Raises:
        InsufficientFunds: If committed + amount would exceed funded
    """
    if committed_cents + amount_cents > funded_cents:
        raise InsufficientFunds(budget_id, amount_cents, max(0, funded_cents - committed_cents))


def validate_obligation_date(
    obligation_date: datetime, appropriation: Appropriation | None
) -> None:
    """
    Funds can only be obligated inside their period of availability

    The window opens on 1 October of the appropriation's fiscal year and
    closes at its expiration date. No-year funds have no closing date.

    Raises:
        BonaFideNeedViolation: If the date is before the fiscal year began
        AppropriationExpired: If the date is past the expiration date
    """
    if appropriation is None:
        return
    obligation_date = ensure_utc(obligation_date)
    available_from = fiscal_year_start(appropriation.fiscal_year)
    if obligation_date < available_from:
        raise BonaFideNeedViolation(
            appropriation.code,
            appropriation.fiscal_year,
            obligation_date.date().isoformat(),
            available_from.date().isoformat(),
        )
    if appropriation.expiration_date is None:
        return
    if obligation_date > appropriation.expiration_date:
        raise AppropriationExpired(
            appropriation.code,
            appropriation.fiscal_year,
            appropriation.expiration_date.isoformat(),
        )


def validate_obligation_transition(
    obligation: dict, to_status: ObligationStatus, paid_against_cents: int
) -> None:
    """
    Raises:
        InvalidTransition: If the lifecycle doesn't allow the move, or an
            obligation with payments against it is deobligated
    """
    from_status = ObligationStatus(obligation["status"])
    if to_status not in OBLIGATION_TRANSITIONS[from_status]:
        raise InvalidTransition(
            "Obligation", obligation["obligation_id"], from_status.value, to_status.value
        )
    if to_status == ObligationStatus.DEOBLIGATED and paid_against_cents > 0:
        raise InvalidTransition(
            "Obligation",
            obligation["obligation_id"],
            from_status.value,
            f"{to_status.value} (payments of {paid_against_cents} cents recorded against it)",
        )


def validate_expenditure_transition(expenditure: dict, to_status: ExpenditureStatus) -> None:
    """
    Raises:
        InvalidTransition: If the lifecycle doesn't allow the move
    """
    from_status = ExpenditureStatus(expenditure["status"])
    if to_status not in EXPENDITURE_TRANSITIONS[from_status]:
        raise InvalidTransition(
            "Expenditure", expenditure["expenditure_id"], from_status.value, to_status.value
        )


def validate_expenditure_against_obligation(
    obligation: dict, spent_cents: int, amount_cents: int
) -> None:
    """
    Raises:
        InvalidTransition: If the obligation is not in OBLIGATED status
        ExpenditureExceedsObligation: If payments would exceed the obligation
    """
    if obligation["status"] != ObligationStatus.OBLIGATED.value:
        raise InvalidTransition(
            "Obligation", obligation["obligation_id"], obligation["status"], "paid against"
        )
    if spent_cents + amount_cents > obligation["amount_cents"]:
        raise ExpenditureExceedsObligation(
            obligation["obligation_id"], amount_cents, obligation["amount_cents"], spent_cents
        )


def validate_line_number_unique(budget_id: str, line_number: int, line_items: list[dict]) -> None:
    """
    Raises:
        DuplicateLineItem: If the line number is taken
    """
    if any(item["line_number"] == line_number for item in line_items):
        raise DuplicateLineItem(budget_id, line_number)


def validate_line_item_reference(line_item_id: str | None, line_items: list[dict]) -> None:
    """
    Raises:
        LineItemNotFound: If the referenced line item is not in the budget
    """
    if line_item_id is None:
        return
    if not any(item["line_item_id"] == line_item_id for item in line_items):
        raise LineItemNotFound(line_item_id)
