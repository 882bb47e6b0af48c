"""
Budget Module Commands - Intentions to change budget state

Commands are validated by pydantic on construction; the handlers then
check them against the current budget state. Unknown update fields are
rejected outright.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from fund_control.budget.models import ExpenditureStatus, ObligationStatus


class CreateBudget(BaseModel):
    """
    Create a budget in DRAFT (version 1)

    appropriation_code makes the budget fund-gated: submission checks the
    appropriation and final approval allocates from it. purpose must match
    the appropriation's restriction tags when it has any.
    """

    fiscal_year: int = Field(..., ge=1900, le=2200)
    title: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0)
    description: str | None = None
    department: str | None = None
    organization_id: str | None = None
    appropriation_code: str | None = None
    purpose: str | None = None


class UpdateBudget(BaseModel):
    """Change editable fields; omitted fields keep their value"""

    model_config = {"extra": "forbid"}

    budget_id: str
    title: str | None = Field(default=None, min_length=1, max_length=200)
    amount: Decimal | None = Field(default=None, ge=0)
    description: str | None = None
    department: str | None = None
    organization_id: str | None = None
    appropriation_code: str | None = None
    purpose: str | None = None


class RollbackBudget(BaseModel):
    """Restore the fields of an earlier version as a new version"""

    budget_id: str
    version: int = Field(..., ge=1)


class SubmitBudget(BaseModel):
    budget_id: str
    comments: str | None = None


class ActivateBudget(BaseModel):
    """APPROVED → ACTIVE (execution year starts)"""

    budget_id: str


class CloseBudget(BaseModel):
    """ACTIVE or APPROVED → CLOSED; unobligated allocation goes back to the ledger"""

    budget_id: str
    reason: str | None = None


class AddLineItem(BaseModel):
    budget_id: str
    line_number: int = Field(..., ge=1)
    description: str = Field(..., min_length=1)
    amount: Decimal = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    appropriation_code: str | None = None


class CreateObligation(BaseModel):
    """
    Record a commitment to pay against an approved or active budget

    Starts OBLIGATED unless PENDING is asked for. purpose defaults to the
    budget's own.
    """

    budget_id: str
    document_number: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    description: str = Field(..., min_length=1)
    obligation_date: datetime
    line_item_id: str | None = None
    program_element_id: str | None = None
    vendor: str | None = None
    purpose: str | None = None
    status: ObligationStatus = ObligationStatus.OBLIGATED


class ChangeObligationStatus(BaseModel):
    obligation_id: str
    status: ObligationStatus
    reason: str | None = None


class CreateExpenditure(BaseModel):
    """
    Record a payment, optionally settling an obligation

    Starts PAID unless PENDING is asked for.
    """

    budget_id: str
    amount: Decimal = Field(..., gt=0)
    description: str = Field(..., min_length=1)
    payment_date: datetime
    obligation_id: str | None = None
    line_item_id: str | None = None
    vendor: str | None = None
    invoice_number: str | None = None
    status: ExpenditureStatus = ExpenditureStatus.PAID


class ChangeExpenditureStatus(BaseModel):
    expenditure_id: str
    status: ExpenditureStatus
    reason: str | None = None


class AnalyzeVariance(BaseModel):
    """Compare the budget amount with paid expenditures and record the result"""

    budget_id: str
    period: str = Field(..., min_length=1, max_length=20)
