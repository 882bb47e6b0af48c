"""
Ledger Handlers - Command→Event transformation with anti-deficiency gates

Handlers are the decision-making layer. They:
1. Load current state (from projections)
2. Validate invariants
3. Generate events if valid
4. Return events for append to the event store

Handlers never write; the façade appends the returned events under the
appropriation's lock, so the balance read here is the balance the
append is checked against.
"""

from fund_control.kernel.errors import AppropriationNotFound
from fund_control.kernel.events import Event, create_event
from fund_control.kernel.ids import generate_id
from fund_control.kernel.logging import get_logger
from fund_control.kernel.money import to_cents
from fund_control.kernel.policy import ControlPolicy
from fund_control.kernel.time import TimeProvider, ensure_utc
from fund_control.ledger.commands import AllocateFunds, CreateAppropriation, DeallocateFunds
from fund_control.ledger.events import AppropriationCreated, FundsAllocated, FundsDeallocated
from fund_control.ledger.invariants import (
    derive_expiration_date,
    validate_code_unique,
    validate_not_expired,
    validate_purpose,
    validate_sufficient_funds,
)
from fund_control.ledger.models import Appropriation, AppropriationType

logger = get_logger(__name__)

STREAM_TYPE = "appropriation"


class LedgerCommandHandlers:
    """
    Command handlers for the appropriation ledger

    They depend on projections to get current state.
    """

    def __init__(self, time_provider: TimeProvider, policy: ControlPolicy) -> None:
        """
        Args:
            time_provider: For timestamps and expiration checks
            policy: Fund-control parameters
        """
        self.time_provider = time_provider
        self.policy = policy

    def handle_create_appropriation(
        self,
        command: CreateAppropriation,
        command_id: str,
        actor_id: str | None,
        appropriations: dict[str, dict],
    ) -> list[Event]:
        """
        Handle CreateAppropriation command

        Raises:
            DuplicateAppropriation: If code already exists for the fiscal year
        """
        now = self.time_provider.now()
        validate_code_unique(command.code, command.fiscal_year, appropriations)

        availability_years = None
        if command.appropriation_type == AppropriationType.MULTI_YEAR:
            availability_years = (
                command.availability_years or self.policy.default_availability_years
            )

        if command.expiration_date is not None:
            expiration_date = ensure_utc(command.expiration_date)
        else:
            expiration_date = derive_expiration_date(
                command.appropriation_type, command.fiscal_year, availability_years
            )

        appropriation_id = generate_id()
        payload = AppropriationCreated(
            appropriation_id=appropriation_id,
            code=command.code,
            name=command.name,
            fiscal_year=command.fiscal_year,
            appropriation_type=command.appropriation_type,
            availability_years=availability_years,
            total_cents=to_cents(command.amount),
            expiration_date=expiration_date,
            restrictions=command.restrictions,
            created_at=now,
            created_by=actor_id,
        ).model_dump(mode="json")

        return [
            create_event(
                event_id=generate_id(),
                stream_id=appropriation_id,
                stream_type=STREAM_TYPE,
                event_type="AppropriationCreated",
                occurred_at=now,
                command_id=command_id,
                actor_id=actor_id,
                payload=payload,
                version=1,
            )
        ]

    def handle_allocate_funds(
        self,
        command: AllocateFunds,
        command_id: str,
        actor_id: str | None,
        appropriations: dict[str, dict],
    ) -> list[Event]:
        """
        Handle AllocateFunds command

        Raises:
            AppropriationNotFound: If appropriation doesn't exist
            AppropriationExpired: If past its expiration date
            PurposeViolation: If purpose is outside the restriction tags
            InsufficientFunds: If amount exceeds available balance
        """
        now = self.time_provider.now()
        record = self._load(command.appropriation_id, appropriations)
        appropriation = Appropriation.model_validate(record)
        amount_cents = to_cents(command.amount)

        validate_not_expired(appropriation, now)
        validate_purpose(appropriation, command.purpose)
        validate_sufficient_funds(appropriation, amount_cents)

        payload = FundsAllocated(
            appropriation_id=appropriation.appropriation_id,
            code=appropriation.code,
            fiscal_year=appropriation.fiscal_year,
            amount_cents=amount_cents,
            budget_id=command.budget_id,
            purpose=command.purpose,
            allocated_after_cents=appropriation.allocated_cents + amount_cents,
            available_after_cents=appropriation.available_cents - amount_cents,
            allocated_at=now,
            allocated_by=actor_id,
        ).model_dump(mode="json")

        return [
            create_event(
                event_id=generate_id(),
                stream_id=appropriation.appropriation_id,
                stream_type=STREAM_TYPE,
                event_type="FundsAllocated",
                occurred_at=now,
                command_id=command_id,
                actor_id=actor_id,
                payload=payload,
                version=record["stream_version"] + 1,
            )
        ]

    def handle_deallocate_funds(
        self,
        command: DeallocateFunds,
        command_id: str,
        actor_id: str | None,
        appropriations: dict[str, dict],
        budget_allocated_cents: int | None = None,
    ) -> list[Event]:
        """
        Handle DeallocateFunds command

        Releases min(amount, allocated). A release tagged with a budget is
        further capped at what that budget holds from this appropriation
        (budget_allocated_cents, computed by the caller). Expired
        appropriations may still take funds back.

        Raises:
            AppropriationNotFound: If appropriation doesn't exist
        """
        now = self.time_provider.now()
        record = self._load(command.appropriation_id, appropriations)
        appropriation = Appropriation.model_validate(record)
        requested_cents = to_cents(command.amount)
        released_cents = min(requested_cents, appropriation.allocated_cents)
        if command.budget_id is not None and budget_allocated_cents is not None:
            released_cents = min(released_cents, max(0, budget_allocated_cents))

        if released_cents < requested_cents:
            logger.warning(
                "Deallocation clamped to allocated balance",
                appropriation_id=appropriation.appropriation_id,
                budget_id=command.budget_id,
                requested_cents=requested_cents,
                released_cents=released_cents,
            )

        payload = FundsDeallocated(
            appropriation_id=appropriation.appropriation_id,
            code=appropriation.code,
            fiscal_year=appropriation.fiscal_year,
            requested_cents=requested_cents,
            released_cents=released_cents,
            budget_id=command.budget_id,
            reason=command.reason,
            allocated_after_cents=appropriation.allocated_cents - released_cents,
            available_after_cents=appropriation.available_cents + released_cents,
            deallocated_at=now,
            deallocated_by=actor_id,
        ).model_dump(mode="json")

        return [
            create_event(
                event_id=generate_id(),
                stream_id=appropriation.appropriation_id,
                stream_type=STREAM_TYPE,
                event_type="FundsDeallocated",
                occurred_at=now,
                command_id=command_id,
                actor_id=actor_id,
                payload=payload,
                version=record["stream_version"] + 1,
            )
        ]

    def _load(self, appropriation_id: str, appropriations: dict[str, dict]) -> dict:
        record = appropriations.get(appropriation_id)
        if record is None:
            raise AppropriationNotFound(appropriation_id)
        return record
