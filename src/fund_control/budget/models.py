"""
Budget Domain Models - Version snapshots, lifecycle states and variance

These models describe the records a budget office works with. Budgets,
line items, obligations and expenditures live as projection rows; what is
modelled here is the version snapshot stored in every budget event, the
lifecycle states and their allowed transitions.

Key concepts:
- Every budget mutation bumps the version and stores a full snapshot
- Only draft and rejected budgets are editable
- Obligations and expenditures are never re-amounted, only re-statused
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class BudgetStatus(str, Enum):
    """
    Budget lifecycle states

    DRAFT → SUBMITTED → APPROVED → ACTIVE → CLOSED, with
    SUBMITTED → REJECTED → (edit) → SUBMITTED again.
    """

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"
    CLOSED = "closed"


class BudgetApprovalStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"


EDITABLE_STATUSES = frozenset({BudgetStatus.DRAFT, BudgetStatus.REJECTED})
SPENDABLE_STATUSES = frozenset({BudgetStatus.APPROVED, BudgetStatus.ACTIVE})

# Fields an update or rollback may change
EDITABLE_FIELDS = (
    "title",
    "description",
    "amount_cents",
    "department",
    "organization_id",
    "appropriation_code",
    "purpose",
)


class BudgetSnapshot(BaseModel):
    """
    Full state of a budget at one version

    Stored in every version-bumping event; the current budget is simply the
    latest snapshot.
    """

    fiscal_year: int
    title: str
    description: str | None = None
    amount_cents: int = Field(ge=0)
    department: str | None = None
    organization_id: str | None = None
    appropriation_code: str | None = None
    purpose: str | None = None
    status: BudgetStatus = BudgetStatus.DRAFT
    approval_status: BudgetApprovalStatus = BudgetApprovalStatus.PENDING
    approval_request_id: str | None = None
    created_by: str
    created_at: datetime


class ObligationStatus(str, Enum):
    PENDING = "pending"
    OBLIGATED = "obligated"
    DEOBLIGATED = "deobligated"
    CANCELLED = "cancelled"


OBLIGATION_TRANSITIONS: dict[ObligationStatus, frozenset[ObligationStatus]] = {
    ObligationStatus.PENDING: frozenset({ObligationStatus.OBLIGATED, ObligationStatus.CANCELLED}),
    ObligationStatus.OBLIGATED: frozenset({ObligationStatus.DEOBLIGATED}),
    ObligationStatus.DEOBLIGATED: frozenset(),
    ObligationStatus.CANCELLED: frozenset(),
}

# Obligations that still commit funds
COMMITTING_OBLIGATION_STATUSES = frozenset({ObligationStatus.PENDING, ObligationStatus.OBLIGATED})


class ExpenditureStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


EXPENDITURE_TRANSITIONS: dict[ExpenditureStatus, frozenset[ExpenditureStatus]] = {
    ExpenditureStatus.PENDING: frozenset({ExpenditureStatus.PAID, ExpenditureStatus.CANCELLED}),
    ExpenditureStatus.PAID: frozenset({ExpenditureStatus.CANCELLED}),
    ExpenditureStatus.CANCELLED: frozenset(),
}

# Expenditures that still draw on funds
COMMITTING_EXPENDITURE_STATUSES = frozenset({ExpenditureStatus.PENDING, ExpenditureStatus.PAID})


class VarianceStatus(str, Enum):
    FAVORABLE = "favorable"
    UNFAVORABLE = "unfavorable"
    CRITICAL = "critical"
    NEUTRAL = "neutral"


class VarianceResult(BaseModel):
    """Planned vs actual, classified"""

    planned_cents: int
    actual_cents: int
    variance_cents: int
    variance_pct: Decimal
    status: VarianceStatus
