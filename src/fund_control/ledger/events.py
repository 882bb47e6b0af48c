"""
Ledger Events - Facts about appropriation balances

Balances change only through FundsAllocated and FundsDeallocated. Each
event records the balances after it applied, so any point in the
appropriation's history can be read straight off the log.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from fund_control.ledger.models import AppropriationType


class AppropriationCreated(BaseModel):
    """A new appropriation was enacted with its full amount available"""

    appropriation_id: str
    code: str
    name: str
    fiscal_year: int
    appropriation_type: AppropriationType
    availability_years: int | None
    total_cents: int
    expiration_date: datetime | None
    restrictions: list[str] = Field(default_factory=list)
    created_at: datetime
    created_by: str | None


class FundsAllocated(BaseModel):
    """Funds moved from available to allocated"""

    appropriation_id: str
    code: str
    fiscal_year: int
    amount_cents: int
    budget_id: str | None
    purpose: str | None
    allocated_after_cents: int
    available_after_cents: int
    allocated_at: datetime
    allocated_by: str | None


class FundsDeallocated(BaseModel):
    """
    Funds returned from allocated to available

    requested_cents is what the caller asked for; released_cents is what
    was actually returned (never more than was allocated).
    """

    appropriation_id: str
    code: str
    fiscal_year: int
    requested_cents: int
    released_cents: int
    budget_id: str | None
    reason: str | None
    allocated_after_cents: int
    available_after_cents: int
    deallocated_at: datetime
    deallocated_by: str | None
