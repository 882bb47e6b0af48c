"""
Ledger Invariants - Anti-deficiency enforcement

Pure functions: they read an appropriation and a proposed change and
either return quietly or raise a typed error. No I/O, no clock reads
(the caller passes "now").

The gates, in the order allocate() applies them:
1. Not expired
2. Purpose within the restriction tags
3. Amount within available balance
"""

from datetime import datetime

from fund_control.kernel.errors import (
    AppropriationExpired,
    DuplicateAppropriation,
    InsufficientFunds,
    PurposeViolation,
)
from fund_control.kernel.money import percent_of
from fund_control.kernel.policy import ControlPolicy
from fund_control.kernel.time import fiscal_year_end
from fund_control.ledger.models import (
    Appropriation,
    AppropriationType,
    FundAvailability,
    RiskLevel,
)


def derive_expiration_date(
    appropriation_type: AppropriationType,
    fiscal_year: int,
    availability_years: int | None = None,
) -> datetime | None:
    """
    End of the availability period implied by the appropriation type

    Annual funds expire at the end of their fiscal year; multi-year funds at
    the end of the last fiscal year of their window; no-year funds never.
    """
    if appropriation_type == AppropriationType.NO_YEAR:
        return None
    if appropriation_type == AppropriationType.MULTI_YEAR:
        years = availability_years or 2
        return fiscal_year_end(fiscal_year + years - 1)
    return fiscal_year_end(fiscal_year)


def validate_code_unique(code: str, fiscal_year: int, appropriations: dict[str, dict]) -> None:
    """
    Raises:
        DuplicateAppropriation: If the code is taken for the fiscal year
    """
    for record in appropriations.values():
        if record["code"] == code and record["fiscal_year"] == fiscal_year:
            raise DuplicateAppropriation(code, fiscal_year)


def validate_not_expired(appropriation: Appropriation, now: datetime) -> None:
    """
    Raises:
        AppropriationExpired: If now is past the expiration date
    """
    if appropriation.is_expired(now):
        raise AppropriationExpired(
            appropriation.code,
            appropriation.fiscal_year,
            appropriation.expiration_date.isoformat(),
        )


def validate_purpose(
    appropriation: Appropriation, purpose: str | None, required: bool = False
) -> None:
    """
    Purpose-restricted funds may only be used for a listed purpose

    Unrestricted appropriations accept any purpose. A missing purpose is
    accepted only when not required: a direct allocation that claims no
    purpose is let through, budgets and obligations must state one.

    Raises:
        PurposeViolation: If purpose is not among the restriction tags, or
            is missing while required
    """
    if not appropriation.restrictions:
        return
    if purpose is None or not purpose.strip():
        if required:
            raise PurposeViolation(appropriation.code, None, appropriation.restrictions)
        return
    if purpose.strip().lower() not in appropriation.restrictions:
        raise PurposeViolation(appropriation.code, purpose, appropriation.restrictions)


def validate_sufficient_funds(appropriation: Appropriation, amount_cents: int) -> None:
    """
    Raises:
        InsufficientFunds: If amount exceeds the available balance
    """
    if amount_cents > appropriation.available_cents:
        raise InsufficientFunds(
            appropriation.appropriation_id, amount_cents, appropriation.available_cents
        )


def classify_risk(
    total_cents: int,
    available_cents: int,
    requested_cents: int,
    policy: ControlPolicy,
) -> RiskLevel:
    """
    Anti-deficiency risk of committing requested_cents

    CRITICAL when the request exceeds availability, otherwise by the share
    of the total that would remain afterwards.
    """
    if requested_cents > available_cents:
        return RiskLevel.CRITICAL

    remaining_pct = percent_of(available_cents - requested_cents, total_cents)
    if remaining_pct < policy.risk_high_remaining_pct:
        return RiskLevel.HIGH
    if remaining_pct < policy.risk_medium_remaining_pct:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def assess_availability(
    appropriation: Appropriation,
    amount_cents: int,
    now: datetime,
    policy: ControlPolicy,
) -> FundAvailability:
    """
    Read-only availability check

    Raises:
        AppropriationExpired: If the appropriation is expired
    """
    validate_not_expired(appropriation, now)

    available = amount_cents <= appropriation.available_cents
    return FundAvailability(
        appropriation_id=appropriation.appropriation_id,
        code=appropriation.code,
        fiscal_year=appropriation.fiscal_year,
        available=available,
        requested_cents=amount_cents,
        available_cents=appropriation.available_cents,
        shortage_cents=0 if available else amount_cents - appropriation.available_cents,
        remaining_after_cents=max(0, appropriation.available_cents - amount_cents),
        risk=classify_risk(
            appropriation.total_cents, appropriation.available_cents, amount_cents, policy
        ),
    )
