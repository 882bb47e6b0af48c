"""
Ledger Domain Models - Appropriations and fund availability

An appropriation is a legal authority to obligate funds: a code, a fiscal
year, a total and an expiration. The ledger tracks how much of the total is
allocated to budgets and how much is still available.

Key concepts:
- Balance identity: available + allocated == total, always
- Appropriation type decides how long funds stay available
- Purpose restrictions limit what the money may be used for
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class AppropriationType(str, Enum):
    """
    Period of availability

    - ANNUAL: one fiscal year
    - MULTI_YEAR: several fiscal years (RDT&E 2, procurement 3, construction 5)
    - NO_YEAR: available until expended
    """

    ANNUAL = "annual"
    MULTI_YEAR = "multi_year"
    NO_YEAR = "no_year"


class RiskLevel(str, Enum):
    """Anti-deficiency risk of a proposed commitment"""

    LOW = "LOW"
    MEDIUM = "MEDIUM"  # less than 10% of the total would remain
    HIGH = "HIGH"  # less than 5% of the total would remain
    CRITICAL = "CRITICAL"  # request exceeds availability


class ValidationReason(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    NO_FUNDS = "no_funds"


class Appropriation(BaseModel):
    """
    Appropriation record

    Attributes:
        appropriation_id: Unique identifier
        code: Treasury-style code, unique within a fiscal year
        fiscal_year: Fiscal year the funds were appropriated for
        total_cents: Enacted amount
        allocated_cents: Amount allocated to budgets
        available_cents: Amount still available
        expiration_date: End of availability (None = no-year funds)
        restrictions: Purpose tags; empty means unrestricted
    """

    appropriation_id: str
    code: str
    name: str
    fiscal_year: int
    appropriation_type: AppropriationType
    availability_years: int | None = None
    total_cents: int = Field(ge=0)
    allocated_cents: int = Field(default=0, ge=0)
    available_cents: int = Field(ge=0)
    expiration_date: datetime | None = None
    restrictions: list[str] = Field(default_factory=list)
    created_at: datetime
    created_by: str | None = None

    def is_expired(self, now: datetime) -> bool:
        """Funds past their expiration date cannot be allocated"""
        return self.expiration_date is not None and now > self.expiration_date

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "appropriation_id": "01908e9a-0000-7000-8000-000000000001",
                    "code": "O&M-2025",
                    "name": "Operation and Maintenance",
                    "fiscal_year": 2025,
                    "appropriation_type": "annual",
                    "total_cents": 1000000,
                    "allocated_cents": 600000,
                    "available_cents": 400000,
                    "expiration_date": "2025-09-30T23:59:59Z",
                    "restrictions": [],
                    "created_at": "2024-10-01T00:00:00Z",
                }
            ]
        }
    }


class FundAvailability(BaseModel):
    """Result of an availability check (read-only, never mutates)"""

    appropriation_id: str
    code: str
    fiscal_year: int
    available: bool
    requested_cents: int
    available_cents: int
    shortage_cents: int = 0
    remaining_after_cents: int
    risk: RiskLevel


class AppropriationValidation(BaseModel):
    """Result of validate(): usable or the reason it is not"""

    valid: bool
    reason: ValidationReason | None = None
    message: str | None = None
    appropriation_id: str | None = None
