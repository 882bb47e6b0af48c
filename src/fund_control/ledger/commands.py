"""
Ledger Commands - Intentions to change appropriation balances

Amounts arrive as Decimal (or int / numeric string) and are converted to
integer cents by the handlers. Every command amount must be positive.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from fund_control.ledger.models import AppropriationType


class CreateAppropriation(BaseModel):
    """
    Record a new appropriation

    When expiration_date is omitted it is derived from the appropriation
    type and fiscal year. Code must be unique within the fiscal year.
    """

    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    fiscal_year: int = Field(..., ge=1900, le=2200)
    amount: Decimal = Field(..., gt=0)
    appropriation_type: AppropriationType = AppropriationType.ANNUAL
    availability_years: int | None = Field(default=None, ge=2, le=10)
    expiration_date: datetime | None = None
    restrictions: list[str] = Field(default_factory=list)

    @field_validator("restrictions")
    @classmethod
    def _normalize_tags(cls, tags: list[str]) -> list[str]:
        return sorted({tag.strip().lower() for tag in tags if tag.strip()})


class AllocateFunds(BaseModel):
    """
    Move funds from available to allocated

    budget_id tags the allocation so budget rollups can find it;
    purpose is checked against the appropriation's restrictions.
    """

    appropriation_id: str
    amount: Decimal = Field(..., gt=0)
    budget_id: str | None = None
    purpose: str | None = None


class CheckAvailability(BaseModel):
    """Read-only question: could this amount be allocated now?"""

    code: str = Field(..., min_length=1)
    fiscal_year: int = Field(..., ge=1900, le=2200)
    amount: Decimal = Field(..., gt=0)


class DeallocateFunds(BaseModel):
    """
    Return allocated funds to available

    Clamped at what is allocated, and for a budget-tagged release at what
    that budget holds.
    """

    appropriation_id: str
    amount: Decimal = Field(..., gt=0)
    budget_id: str | None = None
    reason: str | None = None
