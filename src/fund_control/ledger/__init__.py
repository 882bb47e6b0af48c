"""
Ledger - Appropriations and fund availability

The ledger answers one question with certainty: how much money is still
available under an appropriation. Allocations are gated by expiration,
purpose restrictions and the available balance.
"""

from fund_control.ledger.commands import (
    AllocateFunds,
    CheckAvailability,
    CreateAppropriation,
    DeallocateFunds,
)
from fund_control.ledger.handlers import LedgerCommandHandlers
from fund_control.ledger.models import (
    Appropriation,
    AppropriationType,
    AppropriationValidation,
    FundAvailability,
    RiskLevel,
    ValidationReason,
)
from fund_control.ledger.projections import AppropriationRegistry

__all__ = [
    "Appropriation",
    "AppropriationType",
    "AppropriationValidation",
    "FundAvailability",
    "RiskLevel",
    "ValidationReason",
    "CreateAppropriation",
    "AllocateFunds",
    "CheckAvailability",
    "DeallocateFunds",
    "LedgerCommandHandlers",
    "AppropriationRegistry",
]
