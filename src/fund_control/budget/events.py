"""
Budget Module Events - Domain events for budgets and spending

Version-bumping events (everything derived from BudgetVersionRecorded)
carry the complete snapshot of the budget at the new version. The event
log is therefore also the append-only table of budget versions.

Line items, obligations, expenditures and variance analyses live on the
budget stream too, so they are serialized with the budget, but they do
not change the budget's version.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from fund_control.budget.models import (
    BudgetSnapshot,
    ExpenditureStatus,
    ObligationStatus,
    VarianceStatus,
)


class BudgetVersionRecorded(BaseModel):
    """Base payload of every version-bumping budget event"""

    budget_id: str
    version: int
    snapshot: BudgetSnapshot
    change_summary: str
    changed_by: str | None
    changed_at: datetime


class BudgetCreated(BudgetVersionRecorded):
    pass


class BudgetUpdated(BudgetVersionRecorded):
    changed_fields: list[str] = Field(default_factory=list)


class BudgetRolledBack(BudgetVersionRecorded):
    rolled_back_to: int


class BudgetSubmitted(BudgetVersionRecorded):
    approval_request_id: str
    comments: str | None = None


class BudgetApprovalDecided(BudgetVersionRecorded):
    """The budget's approval request reached APPROVED or REJECTED"""

    approval_request_id: str
    decision: str


class BudgetSubmissionWithdrawn(BudgetVersionRecorded):
    """The budget's approval request was cancelled - back to draft"""

    approval_request_id: str


class BudgetActivated(BudgetVersionRecorded):
    pass


class BudgetClosed(BudgetVersionRecorded):
    released_cents: int = 0


VERSION_EVENT_TYPES = (
    "BudgetCreated",
    "BudgetUpdated",
    "BudgetRolledBack",
    "BudgetSubmitted",
    "BudgetApprovalDecided",
    "BudgetSubmissionWithdrawn",
    "BudgetActivated",
    "BudgetClosed",
)


class LineItemAdded(BaseModel):
    line_item_id: str
    budget_id: str
    line_number: int
    description: str
    amount_cents: int
    category: str
    appropriation_code: str | None
    created_by: str
    created_at: datetime


class ObligationRecorded(BaseModel):
    """
    A commitment to pay was recorded

    funded_cents and committed_after_cents document the anti-deficiency
    check that let it through.
    """

    obligation_id: str
    budget_id: str
    document_number: str
    amount_cents: int
    description: str
    obligation_date: datetime
    status: ObligationStatus
    line_item_id: str | None
    program_element_id: str | None
    vendor: str | None
    purpose: str | None = None
    funded_cents: int
    committed_after_cents: int
    created_by: str
    created_at: datetime


class ObligationStatusChanged(BaseModel):
    obligation_id: str
    budget_id: str
    from_status: ObligationStatus
    to_status: ObligationStatus
    reason: str | None
    changed_by: str
    changed_at: datetime


class ExpenditureRecorded(BaseModel):
    expenditure_id: str
    budget_id: str
    amount_cents: int
    description: str
    payment_date: datetime
    status: ExpenditureStatus
    obligation_id: str | None
    line_item_id: str | None
    vendor: str | None
    invoice_number: str | None
    created_by: str
    created_at: datetime


class ExpenditureStatusChanged(BaseModel):
    expenditure_id: str
    budget_id: str
    from_status: ExpenditureStatus
    to_status: ExpenditureStatus
    reason: str | None
    changed_by: str
    changed_at: datetime


class VarianceAnalyzed(BaseModel):
    analysis_id: str
    budget_id: str
    fiscal_year: int
    period: str
    planned_cents: int
    actual_cents: int
    variance_cents: int
    variance_pct: Decimal
    status: VarianceStatus
    analyzed_by: str
    analyzed_at: datetime
