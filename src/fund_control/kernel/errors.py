"""
Custom exceptions for Fund Control

Every failure the engine reports is a typed exception raised synchronously
to the immediate caller. The taxonomy mirrors the financial-control rules:
unknown records, expired funds, insufficient funds, finalized requests,
invalid decisions, missing workflows and unauthorized approvers.

Fun fact: the Anti-Deficiency Act dates from 1870 - Congress got tired of
agencies spending money first and asking for appropriations afterwards.
"""


class FundControlError(Exception):
    """Base exception for all Fund Control errors"""

    pass


# Storage errors


class EventStoreError(FundControlError):
    """Base class for event store errors"""

    pass


class CommandIdempotencyViolation(EventStoreError):
    """
    Raised when a command_id was already processed

    The store normally returns the original events instead of raising; this
    is only raised when the original events cannot be found after a race.
    """

    def __init__(self, command_id: str, message: str = "") -> None:
        self.command_id = command_id
        super().__init__(
            message or f"Command {command_id} already processed (idempotency preserved)"
        )


class StreamVersionConflict(EventStoreError):
    """
    Raised when stream version doesn't match expected (optimistic locking)

    Indicates concurrent modification - the façade reloads and re-runs the command.
    """

    def __init__(
        self, stream_id: str, expected_version: int, actual_version: int
    ) -> None:
        self.stream_id = stream_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Stream {stream_id} version mismatch: "
            f"expected {expected_version}, got {actual_version}"
        )


# Taxonomy


class NotFound(FundControlError):
    """Raised when an id or code does not resolve to a record"""

    entity = "Record"

    def __init__(self, key: str, message: str = "") -> None:
        self.key = key
        super().__init__(message or f"{self.entity} {key} not found")


class Expired(FundControlError):
    """Raised when funds are used after their availability window"""

    pass


class InsufficientFunds(FundControlError):
    """
    Raised when an allocation or obligation exceeds the available balance

    This is the anti-deficiency gate: no commitment beyond what is available.
    """

    def __init__(self, source_id: str, requested_cents: int, available_cents: int) -> None:
        self.source_id = source_id
        self.requested_cents = requested_cents
        self.available_cents = available_cents
        self.shortage_cents = requested_cents - available_cents
        super().__init__(
            f"Insufficient funds in {source_id}: requested {requested_cents} cents, "
            f"available {available_cents} cents (shortage {self.shortage_cents})"
        )


class AlreadyFinalized(FundControlError):
    """Raised when a decision is attempted on a terminal approval request"""

    def __init__(self, request_id: str, status: str) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Approval request {request_id} is already {status} and accepts no further actions"
        )


class InvalidAction(FundControlError):
    """Raised for unrecognized decision values"""

    def __init__(self, action: str, message: str = "") -> None:
        self.action = action
        super().__init__(message or f"Invalid approval action '{action}'")


class NoWorkflowDefined(FundControlError):
    """Raised when no active workflow exists for an entity type"""

    def __init__(self, entity_type: str) -> None:
        self.entity_type = entity_type
        super().__init__(f"No active approval workflow defined for entity type '{entity_type}'")


class Unauthorized(FundControlError):
    """Raised when an actor is not allowed to perform an operation"""

    def __init__(self, actor_id: str, reason: str) -> None:
        self.actor_id = actor_id
        self.reason = reason
        super().__init__(f"Actor {actor_id} is not authorized: {reason}")


# Not found


class AppropriationNotFound(NotFound):
    entity = "Appropriation"


class BudgetNotFound(NotFound):
    entity = "Budget"


class LineItemNotFound(NotFound):
    entity = "Line item"


class ObligationNotFound(NotFound):
    entity = "Obligation"


class ExpenditureNotFound(NotFound):
    entity = "Expenditure"


class WorkflowNotFound(NotFound):
    entity = "Approval workflow"


class ApprovalRequestNotFound(NotFound):
    entity = "Approval request"


class BudgetVersionNotFound(NotFound):
    """Raised when a budget has no snapshot with the requested version"""

    entity = "Budget version"

    def __init__(self, budget_id: str, version: int) -> None:
        self.budget_id = budget_id
        self.version = version
        super().__init__(f"{budget_id}@{version}")


class AppropriationExpired(Expired):
    """Raised when an appropriation is past its expiration date"""

    def __init__(self, code: str, fiscal_year: int, expired_at: str) -> None:
        self.code = code
        self.fiscal_year = fiscal_year
        self.expired_at = expired_at
        super().__init__(
            f"Appropriation {code} (FY{fiscal_year}) expired at {expired_at} - "
            "expired funds cannot be allocated or obligated"
        )


# Invalid actions


class ReviewNotStarted(InvalidAction):
    """Raised when a decision arrives for a request still in PENDING"""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(
            "decide",
            f"Approval request {request_id} is PENDING - start the review before deciding",
        )


class InvalidTransition(InvalidAction):
    """Raised when a record is moved to a status its lifecycle does not allow"""

    def __init__(self, entity: str, entity_id: str, from_status: str, to_status: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            to_status,
            f"{entity} {entity_id} cannot move from {from_status} to {to_status}",
        )


# Invariant violations


class InvariantViolation(FundControlError):
    """
    Raised when a domain invariant would be violated

    Invariants are the financial-control constraints - they MUST hold.
    """

    pass


class DuplicateAppropriation(InvariantViolation):
    """Raised when an appropriation code already exists for a fiscal year"""

    def __init__(self, code: str, fiscal_year: int) -> None:
        self.code = code
        self.fiscal_year = fiscal_year
        super().__init__(f"Appropriation {code} already exists for FY{fiscal_year}")


class PurposeViolation(InvariantViolation):
    """Raised when funds are requested for a purpose outside the restriction tags"""

    def __init__(self, code: str, purpose: str | None, allowed: list[str]) -> None:
        self.code = code
        self.purpose = purpose
        self.allowed = allowed
        stated = f"Purpose '{purpose}' is" if purpose else "A missing purpose is"
        super().__init__(
            f"{stated} not authorized for appropriation {code} "
            f"(allowed: {', '.join(allowed)})"
        )


class BonaFideNeedViolation(InvariantViolation):
    """Raised when an obligation predates the fiscal year its funds were appropriated for"""

    def __init__(self, code: str, fiscal_year: int, obligation_date: str, available_from: str) -> None:
        self.code = code
        self.fiscal_year = fiscal_year
        self.obligation_date = obligation_date
        self.available_from = available_from
        super().__init__(
            f"Obligation dated {obligation_date} predates FY{fiscal_year} funds of {code} "
            f"(available from {available_from})"
        )


class ActiveRequestExists(InvariantViolation):
    """Raised when an entity already has a non-terminal approval request"""

    def __init__(self, entity_type: str, entity_id: str, request_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.request_id = request_id
        super().__init__(
            f"{entity_type} {entity_id} already has an active approval request {request_id}"
        )


class BudgetLocked(InvariantViolation):
    """Raised when a budget is edited while its status does not allow edits"""

    def __init__(self, budget_id: str, status: str) -> None:
        self.budget_id = budget_id
        self.status = status
        super().__init__(
            f"Budget {budget_id} is {status} - only draft or rejected budgets can be edited"
        )


class ExpenditureExceedsObligation(InvariantViolation):
    """Raised when payments against an obligation would exceed its amount"""

    def __init__(
        self, obligation_id: str, amount_cents: int, obligated_cents: int, spent_cents: int
    ) -> None:
        self.obligation_id = obligation_id
        self.amount_cents = amount_cents
        self.obligated_cents = obligated_cents
        self.spent_cents = spent_cents
        super().__init__(
            f"Expenditure of {amount_cents} cents exceeds remaining {obligated_cents - spent_cents} "
            f"cents on obligation {obligation_id}"
        )


class InvalidWorkflowDefinition(InvariantViolation):
    """Raised when workflow steps are malformed"""

    pass


class BudgetNotSpendable(InvariantViolation):
    """Raised when obligations or expenditures target a budget that is not approved or active"""

    def __init__(self, budget_id: str, status: str) -> None:
        self.budget_id = budget_id
        self.status = status
        super().__init__(
            f"Budget {budget_id} is {status} - only approved or active budgets can be obligated"
        )


class DuplicateLineItem(InvariantViolation):
    """Raised when a line number is already used within a budget"""

    def __init__(self, budget_id: str, line_number: int) -> None:
        self.budget_id = budget_id
        self.line_number = line_number
        super().__init__(f"Budget {budget_id} already has line item {line_number}")
