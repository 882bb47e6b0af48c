"""
FundControl - Main façade class

This is the primary interface for the approval workflow engine and the
fund-control ledger. It hides event sourcing, projections and command
handling behind plain method calls that take and return plain data.

Every command runs the same way:
1. Hold the in-process locks of every key it touches (sorted, no nesting)
2. Catch the projections up with the log (other processes may have written)
3. Let the pure handlers turn the command into events
4. Append all events in one atomic batch, checked against stream versions
5. Catch up again, then publish the committed events on the bus

A stream version conflict re-runs steps 2-4 with fresh state, so the
loser of a race gets the right domain error instead of a stale decision.

Example:
    >>> from fund_control import FundControl
    >>> fc = FundControl("funds.db")
    >>> fc.create_appropriation("O&M-2025", "Operations", 2025, Decimal("100"))
    >>> fc.create_workflow("Budget review", "budget", [{"order": 1, "required_role": "cfo"}])
    >>> budget = fc.create_budget(2025, "Fleet", Decimal("60"), "alice",
    ...                           appropriation_code="O&M-2025")
    >>> fc.submit_budget(budget["budget_id"], "alice")
    >>> fc.process_approval(request_id, "approve", "carol", approver_roles=["cfo"])
"""

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from fund_control.budget.commands import (
    ActivateBudget,
    AddLineItem,
    AnalyzeVariance,
    ChangeExpenditureStatus,
    ChangeObligationStatus,
    CloseBudget,
    CreateBudget,
    CreateExpenditure,
    CreateObligation,
    RollbackBudget,
    SubmitBudget,
    UpdateBudget,
)
from fund_control.budget.handlers import BudgetCommandHandlers
from fund_control.budget.invariants import validate_budget_transition
from fund_control.budget.models import EDITABLE_STATUSES, BudgetStatus, VarianceResult
from fund_control.budget.projections import BudgetRegistry, SpendingLedger, VarianceLog
from fund_control.budget.rollups import (
    budget_rollup,
    funded_cents,
    line_item_rollups,
    summarize_budgets,
    summarize_expenditures,
    summarize_obligations,
)
from fund_control.budget.variance import calculate_variance, summarize_variances
from fund_control.kernel.bus import InProcessBus
from fund_control.kernel.errors import (
    AppropriationExpired,
    AppropriationNotFound,
    ApprovalRequestNotFound,
    BudgetNotFound,
    BudgetVersionNotFound,
    ExpenditureNotFound,
    InsufficientFunds,
    ObligationNotFound,
    PurposeViolation,
    WorkflowNotFound,
)
from fund_control.kernel.event_store import EventStore, SQLiteEventStore, StreamAppend
from fund_control.kernel.events import Event
from fund_control.kernel.ids import generate_id
from fund_control.kernel.locks import StreamLocks
from fund_control.kernel.logging import LogOperation, command_context, get_logger
from fund_control.kernel.metrics import (
    approval_decisions_total,
    fund_allocations_total,
    projection_rebuild_duration_seconds,
    track_command_duration,
    update_appropriation_utilization,
)
from fund_control.kernel.money import from_cents, to_cents
from fund_control.kernel.policy import ControlPolicy
from fund_control.kernel.retry import retry_on_version_conflict
from fund_control.kernel.time import RealTimeProvider, TimeProvider
from fund_control.ledger.commands import (
    AllocateFunds,
    CheckAvailability,
    CreateAppropriation,
    DeallocateFunds,
)
from fund_control.ledger.handlers import LedgerCommandHandlers
from fund_control.ledger.invariants import assess_availability, validate_purpose
from fund_control.ledger.models import (
    Appropriation,
    AppropriationType,
    AppropriationValidation,
    FundAvailability,
    ValidationReason,
)
from fund_control.ledger.projections import AppropriationRegistry
from fund_control.sinks import (
    AuditSink,
    AuditSubscriber,
    InMemoryNotificationSink,
    NotificationSink,
    NotificationSubscriber,
    StructlogAuditSink,
    register_subscribers,
)
from fund_control.workflow.commands import (
    CancelApprovalRequest,
    CreateApprovalRequest,
    CreateWorkflow,
    DeactivateWorkflow,
    ProcessApproval,
    ReviseWorkflow,
    StartReview,
)
from fund_control.workflow.handlers import WorkflowCommandHandlers
from fund_control.workflow.models import EntityType
from fund_control.workflow.projections import TERMINAL_EVENTS, ApprovalRequestRegistry, WorkflowRegistry

logger = get_logger(__name__)

Amount = Decimal | int | str

# Builds the events of one command attempt from the current projections
CommandBuilder = Callable[[str], list[Event]]


def _amount(value: Amount) -> Decimal:
    """Normalize an input amount to a two-place Decimal (floats are refused)"""
    return from_cents(to_cents(value))


def _entity_key(entity_type: str, entity_id: str) -> str:
    return f"{entity_type}:{entity_id}"


def _group_by_stream(events: list[Event]) -> list[StreamAppend]:
    """One batch entry per stream, in order of first appearance"""
    streams: dict[str, list[Event]] = {}
    for event in events:
        streams.setdefault(event.stream_id, []).append(event)
    return [
        (stream_id, stream_events[0].version - 1, stream_events)
        for stream_id, stream_events in streams.items()
    ]


def _request_outcome(events: list[Event]) -> str | None:
    """approved/rejected/cancelled if the events end a request, else None"""
    for event in events:
        if event.event_type in TERMINAL_EVENTS:
            return TERMINAL_EVENTS[event.event_type]
    return None


class FundControl:
    """
    Fund Control main façade

    Provides a unified API for:
    - Appropriations: creation, availability checks, allocation
    - Approval workflows and the request state machine
    - Versioned budgets with line items, obligations and expenditures
    - Rollups, summaries and variance analysis
    """

    def __init__(
        self,
        sqlite_path: str | Path | None = None,
        policy: ControlPolicy | None = None,
        time_provider: TimeProvider | None = None,
        notification_sink: NotificationSink | None = None,
        audit_sink: AuditSink | None = None,
        event_store: EventStore | None = None,
    ) -> None:
        """
        Initialize the engine on a SQLite database or a given event store

        Args:
            sqlite_path: Path to SQLite database (created if missing);
                ignored when event_store is given
            policy: Control policy (uses defaults if None)
            time_provider: Time provider (uses real time if None)
            notification_sink: Receives notifications (kept in memory if None)
            audit_sink: Receives audit records (logged via structlog if None)
            event_store: Event log to run on instead of opening sqlite_path
        """
        if event_store is None and sqlite_path is None:
            raise ValueError("FundControl needs a sqlite_path or an event_store")
        self.sqlite_path = Path(sqlite_path) if sqlite_path is not None else None
        self.policy = policy or ControlPolicy()
        self.time_provider = time_provider or RealTimeProvider()
        self.notification_sink = notification_sink or InMemoryNotificationSink()
        self.audit_sink = audit_sink or StructlogAuditSink()

        # Initialize infrastructure
        if event_store is None:
            event_store = SQLiteEventStore(self.sqlite_path)
        self.event_store: EventStore = event_store
        self.locks = StreamLocks()
        self.bus = InProcessBus()
        self.ledger_handlers = LedgerCommandHandlers(self.time_provider, self.policy)
        self.workflow_handlers = WorkflowCommandHandlers(self.time_provider, self.policy)
        self.budget_handlers = BudgetCommandHandlers(self.time_provider, self.policy)

        # Initialize projections
        self.appropriation_registry = AppropriationRegistry()
        self.workflow_registry = WorkflowRegistry()
        self.request_registry = ApprovalRequestRegistry()
        self.budget_registry = BudgetRegistry()
        self.spending_ledger = SpendingLedger()
        self.variance_log = VarianceLog()
        self._projection_lock = threading.RLock()
        self._position = 0

        register_subscribers(
            self.bus,
            NotificationSubscriber(
                self.notification_sink,
                self.appropriation_registry,
                self.budget_registry,
                self.policy,
            ),
            AuditSubscriber(self.audit_sink),
        )

        # Rebuild projections from event store
        self._rebuild_projections()

    # ========== Projection maintenance ==========

    def _rebuild_projections(self) -> None:
        """Rebuild all projections from the event store"""
        start = time.perf_counter()
        self._catch_up()
        projection_rebuild_duration_seconds.observe(time.perf_counter() - start)
        logger.info(
            "Projections rebuilt",
            store=type(self.event_store).__name__,
            db_path=str(self.sqlite_path) if self.sqlite_path else None,
            position=self._position,
        )

    def _catch_up(self) -> None:
        """Apply every event committed after the last one seen, in commit order"""
        with self._projection_lock:
            for event in self.event_store.load_all_events(after_position=self._position):
                self._apply(event)
                self._position = event.position

    def _apply(self, event: Event) -> None:
        if event.stream_type == "appropriation":
            self.appropriation_registry.apply_event(event)
        elif event.stream_type == "workflow":
            self.workflow_registry.apply_event(event)
        elif event.stream_type == "approval_request":
            self.request_registry.apply_event(event)
        elif event.stream_type == "budget":
            self.budget_registry.apply_event(event)
            self.spending_ledger.apply_event(event)
            self.variance_log.apply_event(event)

    @contextmanager
    def _reading(self) -> Iterator[None]:
        """Up-to-date projections, held still for the duration of a query"""
        with self._projection_lock:
            self._catch_up()
            yield

    def refresh(self) -> int:
        """Pick up events written by other processes; returns the log position"""
        self._catch_up()
        return self._position

    # ========== Command execution ==========

    def _execute(
        self,
        operation: str,
        keys: list[str | None],
        build: CommandBuilder,
        **log_context: Any,
    ) -> list[Event]:
        """
        Run one command: lock, catch up, build, append atomically, publish

        Raises whatever the handlers raise; StreamVersionConflict only when
        every retry attempt lost its race.
        """
        command_id = generate_id()

        def attempt() -> list[Event]:
            with self._projection_lock:
                self._catch_up()
                events = build(command_id)
            if not events:
                return []
            stored = self.event_store.append_batch(_group_by_stream(events))
            self._catch_up()
            return stored

        retrying = retry_on_version_conflict(max_attempts=self.policy.conflict_retry_attempts)
        with command_context(command_id, operation):
            with LogOperation(logger, operation, **log_context):
                with self.locks.hold(*keys):
                    events = retrying(attempt)()

            self._observe(events)
            self.bus.publish_events(events)
        return events

    def _observe(self, events: list[Event]) -> None:
        """Metrics derived from committed events"""
        for event in events:
            payload = event.payload
            if event.event_type == "FundsAllocated":
                fund_allocations_total.labels(outcome="allocated").inc()
            if event.event_type in ("FundsAllocated", "FundsDeallocated"):
                update_appropriation_utilization(
                    payload["code"],
                    payload["fiscal_year"],
                    payload["allocated_after_cents"],
                    payload["allocated_after_cents"] + payload["available_after_cents"],
                )
            elif event.event_type == "ApprovalActionRecorded":
                request = self.request_registry.get(payload["request_id"]) or {}
                decision = "auto_approve" if payload["automatic"] else payload["decision"]
                approval_decisions_total.labels(
                    entity_type=request.get("entity_type", "unknown"), decision=decision
                ).inc()

    def _peek(self, fn: Callable[[], Any]) -> Any:
        """Read current state before taking locks (to learn which keys to lock)"""
        with self._reading():
            return fn()

    # ========== Lookups ==========

    def _appropriation(self, appropriation_id: str) -> dict[str, Any]:
        record = self.appropriation_registry.get(appropriation_id)
        if record is None:
            raise AppropriationNotFound(appropriation_id)
        return record

    def _appropriation_by_code(self, code: str, fiscal_year: int) -> dict[str, Any]:
        record = self.appropriation_registry.get_by_code(code, fiscal_year)
        if record is None:
            raise AppropriationNotFound(f"{code} (FY{fiscal_year})")
        return record

    def _budget(self, budget_id: str) -> dict[str, Any]:
        budget = self.budget_registry.get(budget_id)
        if budget is None:
            raise BudgetNotFound(budget_id)
        return budget

    def _request(self, request_id: str) -> dict[str, Any]:
        request = self.request_registry.get(request_id)
        if request is None:
            raise ApprovalRequestNotFound(request_id)
        return request

    def _obligation(self, obligation_id: str) -> dict[str, Any]:
        obligation = self.spending_ledger.get_obligation(obligation_id)
        if obligation is None:
            raise ObligationNotFound(obligation_id)
        return obligation

    def _expenditure(self, expenditure_id: str) -> dict[str, Any]:
        expenditure = self.spending_ledger.get_expenditure(expenditure_id)
        if expenditure is None:
            raise ExpenditureNotFound(expenditure_id)
        return expenditure

    def _funding_source(self, budget: dict[str, Any]) -> dict[str, Any] | None:
        """The appropriation a fund-gated budget draws on (None if not gated or unknown)"""
        if not budget.get("appropriation_code"):
            return None
        return self.appropriation_registry.get_by_code(
            budget["appropriation_code"], budget["fiscal_year"]
        )

    def _funding_key(self, budget_id: str) -> str | None:
        budget = self.budget_registry.get(budget_id)
        source = self._funding_source(budget) if budget else None
        return source["appropriation_id"] if source else None

    def _budget_view(self, budget: dict[str, Any]) -> dict[str, Any]:
        allocated = self.appropriation_registry.allocated_to_budget(budget["budget_id"])
        return budget_rollup(budget, allocated, self.spending_ledger)

    # ========== Appropriation Ledger ==========

    @track_command_duration("create_appropriation")
    def create_appropriation(
        self,
        code: str,
        name: str,
        fiscal_year: int,
        amount: Amount,
        appropriation_type: str | AppropriationType = AppropriationType.ANNUAL,
        expiration_date: datetime | None = None,
        restrictions: list[str] | tuple[str, ...] = (),
        availability_years: int | None = None,
        actor_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Create an appropriation

        Args:
            code: Appropriation code, unique within the fiscal year
            name: Descriptive name
            fiscal_year: Fiscal year of the funds
            amount: Enacted total
            appropriation_type: annual, multi_year or no_year
            expiration_date: Explicit end of availability (derived from the type if None)
            restrictions: Purpose tags; empty means unrestricted
            availability_years: Years a multi-year appropriation stays available
            actor_id: Actor creating the appropriation

        Returns:
            Appropriation dict with appropriation_id and balances

        Raises:
            DuplicateAppropriation: If code already exists for the fiscal year
        """
        command = CreateAppropriation(
            code=code,
            name=name,
            fiscal_year=fiscal_year,
            amount=_amount(amount),
            appropriation_type=appropriation_type,
            expiration_date=expiration_date,
            restrictions=list(restrictions),
            availability_years=availability_years,
        )
        events = self._execute(
            "create_appropriation",
            [_entity_key("appropriation", f"{command.code}/{command.fiscal_year}")],
            lambda command_id: self.ledger_handlers.handle_create_appropriation(
                command, command_id, actor_id, self.appropriation_registry.appropriations
            ),
            code=command.code,
            fiscal_year=command.fiscal_year,
        )
        return self.get_appropriation(events[0].stream_id)

    def check_availability(self, code: str, fiscal_year: int, amount: Amount) -> FundAvailability:
        """
        Read-only check whether an amount could be allocated

        Raises:
            ValidationError: If amount is not positive
            AppropriationNotFound: If no appropriation has this code and year
            AppropriationExpired: If the appropriation is expired
        """
        query = CheckAvailability(code=code, fiscal_year=fiscal_year, amount=_amount(amount))
        with self._reading():
            record = self._appropriation_by_code(query.code, query.fiscal_year)
            return assess_availability(
                Appropriation.model_validate(record),
                to_cents(query.amount),
                self.time_provider.now(),
                self.policy,
            )

    @track_command_duration("allocate")
    def allocate(
        self,
        appropriation_id: str,
        amount: Amount,
        budget_id: str | None = None,
        purpose: str | None = None,
        actor_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Move an amount from available to allocated

        Raises:
            AppropriationNotFound: If appropriation doesn't exist
            AppropriationExpired: If past its expiration date
            PurposeViolation: If purpose is outside the restriction tags
            InsufficientFunds: If amount exceeds the available balance
        """
        command = AllocateFunds(
            appropriation_id=appropriation_id,
            amount=_amount(amount),
            budget_id=budget_id,
            purpose=purpose,
        )
        try:
            self._execute(
                "allocate",
                [appropriation_id],
                lambda command_id: self.ledger_handlers.handle_allocate_funds(
                    command, command_id, actor_id, self.appropriation_registry.appropriations
                ),
                appropriation_id=appropriation_id,
                amount=str(command.amount),
            )
        except InsufficientFunds:
            fund_allocations_total.labels(outcome="insufficient").inc()
            raise
        except AppropriationExpired:
            fund_allocations_total.labels(outcome="expired").inc()
            raise
        except PurposeViolation:
            fund_allocations_total.labels(outcome="purpose_violation").inc()
            raise
        return self.get_appropriation(appropriation_id)

    @track_command_duration("deallocate")
    def deallocate(
        self,
        appropriation_id: str,
        amount: Amount,
        budget_id: str | None = None,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Release allocated funds back to available

        Over-deallocation is clamped to the allocated balance; with budget_id
        it is also clamped to what that budget holds from this appropriation.

        Raises:
            AppropriationNotFound: If appropriation doesn't exist
        """
        command = DeallocateFunds(
            appropriation_id=appropriation_id,
            amount=_amount(amount),
            budget_id=budget_id,
            reason=reason,
        )
        self._execute(
            "deallocate",
            [appropriation_id],
            lambda command_id: self.ledger_handlers.handle_deallocate_funds(
                command,
                command_id,
                actor_id,
                self.appropriation_registry.appropriations,
                self._budget_allocation(budget_id, appropriation_id),
            ),
            appropriation_id=appropriation_id,
            amount=str(command.amount),
        )
        return self.get_appropriation(appropriation_id)

    def _budget_allocation(self, budget_id: str | None, appropriation_id: str) -> int | None:
        if budget_id is None:
            return None
        return self.appropriation_registry.allocated_to_budget(budget_id, appropriation_id)

    def validate(self, code: str, fiscal_year: int) -> AppropriationValidation:
        """Whether an appropriation can take new allocations; never raises"""
        with self._reading():
            record = self.appropriation_registry.get_by_code(code, fiscal_year)
            if record is None:
                return AppropriationValidation(
                    valid=False,
                    reason=ValidationReason.NOT_FOUND,
                    message=f"Appropriation {code} not found for FY{fiscal_year}",
                )
            appropriation = Appropriation.model_validate(record)

        if appropriation.is_expired(self.time_provider.now()):
            return AppropriationValidation(
                valid=False,
                reason=ValidationReason.EXPIRED,
                message=f"Appropriation {code} expired at {appropriation.expiration_date.isoformat()}",
                appropriation_id=appropriation.appropriation_id,
            )
        if appropriation.available_cents <= 0:
            return AppropriationValidation(
                valid=False,
                reason=ValidationReason.NO_FUNDS,
                message=f"Appropriation {code} has no available funds",
                appropriation_id=appropriation.appropriation_id,
            )
        return AppropriationValidation(valid=True, appropriation_id=appropriation.appropriation_id)

    def get_appropriation(self, appropriation_id: str) -> dict[str, Any]:
        with self._reading():
            return dict(self._appropriation(appropriation_id))

    def get_appropriation_by_code(self, code: str, fiscal_year: int) -> dict[str, Any]:
        with self._reading():
            return dict(self._appropriation_by_code(code, fiscal_year))

    def list_appropriations(self, fiscal_year: int | None = None) -> list[dict[str, Any]]:
        with self._reading():
            if fiscal_year is None:
                return [dict(a) for a in self.appropriation_registry.list_all()]
            return [dict(a) for a in self.appropriation_registry.list_by_fiscal_year(fiscal_year)]

    def get_allocations(self, appropriation_id: str) -> list[dict[str, Any]]:
        """Allocation and deallocation history of an appropriation, oldest first"""
        with self._reading():
            self._appropriation(appropriation_id)
            return self.appropriation_registry.get_allocations(appropriation_id)

    # ========== Approval Workflows ==========

    @track_command_duration("create_workflow")
    def create_workflow(
        self,
        name: str,
        entity_type: str | EntityType,
        steps: list[dict[str, Any]],
        description: str | None = None,
        created_by: str | None = None,
    ) -> dict[str, Any]:
        """
        Define an approval workflow

        Args:
            name: Workflow name
            entity_type: budget, program, execution or lineitem
            steps: Step specs: order, required_role, optional approver_id
                   and auto_approve_threshold
            description: Free text
            created_by: Actor defining the workflow

        Returns:
            Workflow dict with workflow_id

        Raises:
            InvalidWorkflowDefinition: If step orders repeat
        """
        command = CreateWorkflow(
            name=name, entity_type=entity_type, steps=steps, description=description
        )
        events = self._execute(
            "create_workflow",
            [],
            lambda command_id: self.workflow_handlers.handle_create_workflow(
                command, command_id, created_by
            ),
            entity_type=command.entity_type.value,
        )
        return self.get_workflow(events[0].stream_id)

    @track_command_duration("revise_workflow")
    def revise_workflow(
        self, workflow_id: str, steps: list[dict[str, Any]], actor_id: str | None = None
    ) -> dict[str, Any]:
        """Replace a workflow's steps; requests already created keep their snapshot"""
        command = ReviseWorkflow(workflow_id=workflow_id, steps=steps)
        self._execute(
            "revise_workflow",
            [workflow_id],
            lambda command_id: self.workflow_handlers.handle_revise_workflow(
                command, command_id, actor_id, self.workflow_registry.workflows
            ),
            workflow_id=workflow_id,
        )
        return self.get_workflow(workflow_id)

    @track_command_duration("deactivate_workflow")
    def deactivate_workflow(self, workflow_id: str, actor_id: str | None = None) -> dict[str, Any]:
        command = DeactivateWorkflow(workflow_id=workflow_id)
        self._execute(
            "deactivate_workflow",
            [workflow_id],
            lambda command_id: self.workflow_handlers.handle_deactivate_workflow(
                command, command_id, actor_id, self.workflow_registry.workflows
            ),
            workflow_id=workflow_id,
        )
        return self.get_workflow(workflow_id)

    def get_workflow(self, workflow_id: str) -> dict[str, Any]:
        with self._reading():
            workflow = self.workflow_registry.get(workflow_id)
            if workflow is None:
                raise WorkflowNotFound(workflow_id)
            return dict(workflow)

    def list_workflows(self, entity_type: str | None = None) -> list[dict[str, Any]]:
        with self._reading():
            if entity_type is None:
                return [dict(w) for w in self.workflow_registry.list_all()]
            return [dict(w) for w in self.workflow_registry.list_by_entity_type(entity_type)]

    # ========== Approval Requests ==========

    @track_command_duration("create_approval_request")
    def create_approval_request(
        self,
        entity_type: str | EntityType,
        entity_id: str,
        requested_by: str,
        workflow_id: str | None = None,
        amount: Amount | None = None,
        comments: str | None = None,
        start: bool = True,
    ) -> dict[str, Any]:
        """
        Open an approval request for an entity

        Budgets are better submitted through submit_budget, which links the
        request to the budget's status.

        Raises:
            NoWorkflowDefined: If no active workflow exists for the entity type
            WorkflowNotFound: If workflow_id doesn't exist
            ActiveRequestExists: If the entity already has an active request
        """
        command = CreateApprovalRequest(
            entity_type=entity_type,
            entity_id=entity_id,
            requested_by=requested_by,
            workflow_id=workflow_id,
            amount=_amount(amount) if amount is not None else None,
            comments=comments,
            start=start,
        )
        events = self._execute(
            "create_approval_request",
            [_entity_key(command.entity_type.value, entity_id)],
            lambda command_id: self.workflow_handlers.handle_create_approval_request(
                command,
                command_id,
                self.workflow_registry.workflows,
                self.request_registry.active_request_for(command.entity_type.value, entity_id),
            ),
            entity_type=command.entity_type.value,
            entity_id=entity_id,
            requested_by=requested_by,
        )
        return self.get_approval_request(events[0].stream_id)

    @track_command_duration("start_review")
    def start_review(self, request_id: str, actor_id: str | None = None) -> dict[str, Any]:
        """
        PENDING → IN_REVIEW at the first step

        Raises:
            ApprovalRequestNotFound: If request doesn't exist
            AlreadyFinalized: If request is terminal
            InvalidTransition: If review already started
        """
        command = StartReview(request_id=request_id)
        keys = self._decision_keys(request_id)
        self._execute(
            "start_review",
            keys,
            lambda command_id: self._with_budget_outcome(
                self.workflow_handlers.handle_start_review(
                    command, command_id, actor_id, self.request_registry.requests
                ),
                command_id,
                actor_id,
            ),
            request_id=request_id,
        )
        return self.get_approval_request(request_id)

    @track_command_duration("process_approval")
    def process_approval(
        self,
        request_id: str,
        decision: str,
        approver_id: str,
        comments: str | None = None,
        approver_roles: list[str] | tuple[str, ...] = (),
    ) -> dict[str, Any]:
        """
        Record a decision on the current step of a request

        Args:
            request_id: Request to decide on
            decision: approve/approved or reject/rejected
            approver_id: Who decides
            comments: Free text kept with the action
            approver_roles: Roles the approver holds

        Returns:
            Request dict including its actions

        Raises:
            ApprovalRequestNotFound: If request doesn't exist
            AlreadyFinalized: If request is approved, rejected or cancelled
            ReviewNotStarted: If request is still PENDING
            InvalidAction: If decision is unrecognized
            Unauthorized: If approver is not bound to the current step
            InsufficientFunds / AppropriationExpired: If the final approval of
                a fund-gated budget cannot allocate (nothing is recorded)
        """
        command = ProcessApproval(
            request_id=request_id,
            decision=decision,
            approver_id=approver_id,
            comments=comments,
            approver_roles=list(approver_roles),
        )
        keys = self._decision_keys(request_id)
        self._execute(
            "process_approval",
            keys,
            lambda command_id: self._with_budget_outcome(
                self.workflow_handlers.handle_process_approval(
                    command, command_id, self.request_registry.requests
                ),
                command_id,
                approver_id,
            ),
            request_id=request_id,
            decision=decision,
            approver_id=approver_id,
        )
        return self.get_approval_request(request_id)

    @track_command_duration("cancel_approval_request")
    def cancel_approval_request(
        self, request_id: str, actor_id: str | None = None, reason: str | None = None
    ) -> dict[str, Any]:
        """
        Cancel a non-terminal request; a submitted budget goes back to draft

        Raises:
            ApprovalRequestNotFound: If request doesn't exist
            AlreadyFinalized: If request is already terminal
        """
        command = CancelApprovalRequest(request_id=request_id, reason=reason)
        keys = self._decision_keys(request_id)
        self._execute(
            "cancel_approval_request",
            keys,
            lambda command_id: self._with_budget_outcome(
                self.workflow_handlers.handle_cancel_approval_request(
                    command, command_id, actor_id, self.request_registry.requests
                ),
                command_id,
                actor_id,
            ),
            request_id=request_id,
        )
        return self.get_approval_request(request_id)

    def _decision_keys(self, request_id: str) -> list[str | None]:
        """The request, plus the budget and appropriation its outcome may touch"""

        def keys() -> list[str | None]:
            request = self._request(request_id)
            if request["entity_type"] != EntityType.BUDGET.value:
                return [request_id]
            budget_id = request["entity_id"]
            return [request_id, budget_id, self._funding_key(budget_id)]

        return self._peek(keys)

    def _with_budget_outcome(
        self, request_events: list[Event], command_id: str, actor_id: str | None
    ) -> list[Event]:
        """
        Append the budget side of a finished budget request to the same batch

        Only the budget's current request counts; an approval also allocates
        the budget amount from its appropriation.
        """
        outcome = _request_outcome(request_events)
        if outcome is None:
            return request_events

        request = request_events[0].stream_id
        record = self.request_registry.get(request)
        if record is None or record["entity_type"] != EntityType.BUDGET.value:
            return request_events

        budget = self.budget_registry.get(record["entity_id"])
        if (
            budget is None
            or budget.get("approval_request_id") != request
            or budget["status"] != BudgetStatus.SUBMITTED.value
        ):
            return request_events

        events = list(request_events)
        events += self.budget_handlers.handle_approval_outcome(
            budget["budget_id"],
            request,
            outcome,
            command_id,
            actor_id,
            self.budget_registry.budgets,
        )
        if outcome == "approved":
            events += self._allocate_for_budget(budget, command_id, actor_id)
        return events

    def _allocate_for_budget(
        self, budget: dict[str, Any], command_id: str, actor_id: str | None
    ) -> list[Event]:
        """Allocation events funding an approved budget (none if not fund-gated)"""
        if not budget.get("appropriation_code") or budget["amount_cents"] == 0:
            return []
        source = self._appropriation_by_code(budget["appropriation_code"], budget["fiscal_year"])
        command = AllocateFunds(
            appropriation_id=source["appropriation_id"],
            amount=from_cents(budget["amount_cents"]),
            budget_id=budget["budget_id"],
            purpose=budget.get("purpose"),
        )
        return self.ledger_handlers.handle_allocate_funds(
            command, command_id, actor_id, self.appropriation_registry.appropriations
        )

    def get_pending_approvals(
        self, approver_id: str, roles: list[str] | tuple[str, ...] = ()
    ) -> list[dict[str, Any]]:
        """In-review requests whose current step this approver may decide"""
        with self._reading():
            return [dict(r) for r in self.request_registry.pending_for(approver_id, roles)]

    def get_approval_request(self, request_id: str) -> dict[str, Any]:
        with self._reading():
            request = self._request(request_id)
            return {**request, "actions": self.request_registry.get_actions(request_id)}

    def list_approval_requests(
        self,
        entity_type: str | None = None,
        entity_id: str | None = None,
        status: str | None = None,
        requested_by: str | None = None,
    ) -> list[dict[str, Any]]:
        with self._reading():
            return [
                dict(r)
                for r in self.request_registry.list_requests(
                    entity_type, entity_id, status, requested_by
                )
            ]

    def get_approval_history(self, entity_type: str, entity_id: str) -> list[dict[str, Any]]:
        """Every request made for an entity with its actions, newest first"""
        with self._reading():
            return self.request_registry.history(entity_type, entity_id)

    # ========== Budgets ==========

    @track_command_duration("create_budget")
    def create_budget(
        self,
        fiscal_year: int,
        title: str,
        amount: Amount,
        created_by: str,
        description: str | None = None,
        department: str | None = None,
        organization_id: str | None = None,
        appropriation_code: str | None = None,
        purpose: str | None = None,
    ) -> dict[str, Any]:
        """
        Create a budget in DRAFT at version 1

        appropriation_code makes the budget fund-gated. Budgets drawing on
        purpose-restricted funds must state one of the restriction tags as
        purpose before they can be submitted.
        """
        command = CreateBudget(
            fiscal_year=fiscal_year,
            title=title,
            amount=_amount(amount),
            description=description,
            department=department,
            organization_id=organization_id,
            appropriation_code=appropriation_code,
            purpose=purpose,
        )
        events = self._execute(
            "create_budget",
            [],
            lambda command_id: self.budget_handlers.handle_create_budget(
                command, command_id, created_by
            ),
            fiscal_year=fiscal_year,
            actor_id=created_by,
        )
        return self.get_budget(events[0].stream_id)

    @track_command_duration("update_budget")
    def update_budget(
        self, budget_id: str, updates: dict[str, Any], updated_by: str
    ) -> dict[str, Any]:
        """
        Change editable fields (title, description, amount, department,
        organization_id, appropriation_code, purpose); always a new version

        Raises:
            BudgetNotFound: If budget doesn't exist
            BudgetLocked: If budget is not draft or rejected
            Unauthorized: If a draft is edited by someone other than its creator
            ValidationError: For unknown fields
        """
        fields = dict(updates)
        if fields.get("amount") is not None:
            fields["amount"] = _amount(fields["amount"])
        command = UpdateBudget(budget_id=budget_id, **fields)
        self._execute(
            "update_budget",
            [budget_id],
            lambda command_id: self.budget_handlers.handle_update_budget(
                command, command_id, updated_by, self.budget_registry.budgets
            ),
            budget_id=budget_id,
            actor_id=updated_by,
        )
        return self.get_budget(budget_id)

    @track_command_duration("rollback_budget")
    def rollback_budget(self, budget_id: str, version: int, updated_by: str) -> dict[str, Any]:
        """
        Restore an earlier version's fields as a new version

        Raises:
            BudgetNotFound / BudgetVersionNotFound: Unknown budget or version
            BudgetLocked / Unauthorized: Same gating as update_budget
        """
        command = RollbackBudget(budget_id=budget_id, version=version)
        self._execute(
            "rollback_budget",
            [budget_id],
            lambda command_id: self.budget_handlers.handle_rollback_budget(
                command,
                command_id,
                updated_by,
                self.budget_registry.budgets,
                self.budget_registry.get_version(budget_id, version),
            ),
            budget_id=budget_id,
            version=version,
            actor_id=updated_by,
        )
        return self.get_budget(budget_id)

    @track_command_duration("submit_budget")
    def submit_budget(
        self, budget_id: str, submitted_by: str, comments: str | None = None
    ) -> dict[str, Any]:
        """
        Submit a draft or rejected budget for approval

        Fund-gated budgets are checked against their appropriation first.
        The approval request and the budget's new status are committed
        together; if every step auto-approves, so is the approval and the
        allocation.

        Raises:
            BudgetNotFound: If budget doesn't exist
            InvalidTransition: If budget is not draft or rejected
            AppropriationNotFound / AppropriationExpired / InsufficientFunds:
                If a fund-gated budget cannot be funded
            PurposeViolation: If the budget's purpose is missing or outside
                restricted funds' tags
            NoWorkflowDefined: If no active budget workflow exists
            ActiveRequestExists: If the budget already has an active request
        """
        command = SubmitBudget(budget_id=budget_id, comments=comments)
        keys = self._peek(
            lambda: [
                budget_id,
                _entity_key(EntityType.BUDGET.value, budget_id),
                self._funding_key(budget_id),
            ]
        )
        self._execute(
            "submit_budget",
            keys,
            lambda command_id: self._build_submission(command, command_id, submitted_by),
            budget_id=budget_id,
            actor_id=submitted_by,
        )
        return self.get_budget(budget_id)

    def _build_submission(
        self, command: SubmitBudget, command_id: str, submitted_by: str
    ) -> list[Event]:
        budget = self._budget(command.budget_id)
        validate_budget_transition(budget, EDITABLE_STATUSES, BudgetStatus.SUBMITTED)

        if budget.get("appropriation_code"):
            source = self._appropriation_by_code(
                budget["appropriation_code"], budget["fiscal_year"]
            )
            appropriation = Appropriation.model_validate(source)
            availability = assess_availability(
                appropriation,
                budget["amount_cents"],
                self.time_provider.now(),
                self.policy,
            )
            validate_purpose(appropriation, budget.get("purpose"), required=True)
            if not availability.available:
                raise InsufficientFunds(
                    source["appropriation_id"],
                    availability.requested_cents,
                    availability.available_cents,
                )

        request_id = generate_id()
        request_events = self.workflow_handlers.handle_create_approval_request(
            CreateApprovalRequest(
                entity_type=EntityType.BUDGET,
                entity_id=command.budget_id,
                requested_by=submitted_by,
                amount=from_cents(budget["amount_cents"]),
                comments=command.comments,
            ),
            command_id,
            self.workflow_registry.workflows,
            self.request_registry.active_request_for(EntityType.BUDGET.value, command.budget_id),
            request_id=request_id,
        )
        outcome = _request_outcome(request_events)
        events = request_events + self.budget_handlers.handle_submit_budget(
            command,
            command_id,
            submitted_by,
            self.budget_registry.budgets,
            request_id,
            outcome,
        )
        if outcome == "approved":
            events += self._allocate_for_budget(budget, command_id, submitted_by)
        return events

    @track_command_duration("activate_budget")
    def activate_budget(self, budget_id: str, actor_id: str) -> dict[str, Any]:
        """APPROVED → ACTIVE"""
        command = ActivateBudget(budget_id=budget_id)
        self._execute(
            "activate_budget",
            [budget_id],
            lambda command_id: self.budget_handlers.handle_activate_budget(
                command, command_id, actor_id, self.budget_registry.budgets
            ),
            budget_id=budget_id,
        )
        return self.get_budget(budget_id)

    @track_command_duration("close_budget")
    def close_budget(
        self, budget_id: str, actor_id: str, reason: str | None = None
    ) -> dict[str, Any]:
        """
        Close an approved or active budget

        The part of its allocation not committed to obligations or direct
        payments goes back to the appropriation in the same batch.
        """
        command = CloseBudget(budget_id=budget_id, reason=reason)
        keys = self._peek(lambda: [budget_id, self._funding_key(budget_id)])
        self._execute(
            "close_budget",
            keys,
            lambda command_id: self._build_close(command, command_id, actor_id),
            budget_id=budget_id,
        )
        return self.get_budget(budget_id)

    def _build_close(self, command: CloseBudget, command_id: str, actor_id: str) -> list[Event]:
        budget = self._budget(command.budget_id)
        source = self._funding_source(budget)
        released = 0
        if source is not None:
            allocated = self.appropriation_registry.allocated_to_budget(command.budget_id)
            committed = self.spending_ledger.committed_cents(command.budget_id)
            released = max(0, allocated - committed)

        events = self.budget_handlers.handle_close_budget(
            command, command_id, actor_id, self.budget_registry.budgets, released
        )
        if released:
            events += self.ledger_handlers.handle_deallocate_funds(
                DeallocateFunds(
                    appropriation_id=source["appropriation_id"],
                    amount=from_cents(released),
                    budget_id=command.budget_id,
                    reason="Budget closed - unobligated balance released",
                ),
                command_id,
                actor_id,
                self.appropriation_registry.appropriations,
                self._budget_allocation(command.budget_id, source["appropriation_id"]),
            )
        return events

    def get_budget(self, budget_id: str) -> dict[str, Any]:
        """Budget with its allocated/obligated/expended/available rollup"""
        with self._reading():
            return self._budget_view(self._budget(budget_id))

    def list_budgets(
        self, fiscal_year: int | None = None, status: str | None = None
    ) -> list[dict[str, Any]]:
        with self._reading():
            budgets = (
                self.budget_registry.list_all()
                if fiscal_year is None
                else self.budget_registry.list_by_fiscal_year(fiscal_year)
            )
            return [
                self._budget_view(b) for b in budgets if status is None or b["status"] == status
            ]

    def get_budget_versions(self, budget_id: str) -> list[dict[str, Any]]:
        """Version snapshots, newest first"""
        with self._reading():
            self._budget(budget_id)
            return self.budget_registry.get_versions(budget_id)

    def get_budget_version(self, budget_id: str, version: int) -> dict[str, Any]:
        with self._reading():
            self._budget(budget_id)
            snapshot = self.budget_registry.get_version(budget_id, version)
            if snapshot is None:
                raise BudgetVersionNotFound(budget_id, version)
            return snapshot

    def get_budget_summary(self, fiscal_year: int | None = None) -> dict[str, Any]:
        with self._reading():
            budgets = (
                self.budget_registry.list_all()
                if fiscal_year is None
                else self.budget_registry.list_by_fiscal_year(fiscal_year)
            )
            return summarize_budgets(budgets)

    # ========== Line Items ==========

    @track_command_duration("add_line_item")
    def add_line_item(
        self,
        budget_id: str,
        line_number: int,
        description: str,
        amount: Amount,
        category: str,
        actor_id: str,
        appropriation_code: str | None = None,
    ) -> dict[str, Any]:
        """
        Raises:
            BudgetNotFound: If budget doesn't exist
            BudgetLocked / Unauthorized: Same gating as update_budget
            DuplicateLineItem: If the line number is taken
        """
        command = AddLineItem(
            budget_id=budget_id,
            line_number=line_number,
            description=description,
            amount=_amount(amount),
            category=category,
            appropriation_code=appropriation_code,
        )
        events = self._execute(
            "add_line_item",
            [budget_id],
            lambda command_id: self.budget_handlers.handle_add_line_item(
                command,
                command_id,
                actor_id,
                self.budget_registry.budgets,
                self.budget_registry.get_line_items(budget_id),
            ),
            budget_id=budget_id,
        )
        line_item_id = events[0].payload["line_item_id"]
        return next(i for i in self.list_line_items(budget_id) if i["line_item_id"] == line_item_id)

    def list_line_items(self, budget_id: str) -> list[dict[str, Any]]:
        """Line items ordered by line number, with obligated/expended rollups"""
        with self._reading():
            self._budget(budget_id)
            return line_item_rollups(
                self.budget_registry.get_line_items(budget_id), self.spending_ledger
            )

    # ========== Obligations ==========

    @track_command_duration("create_obligation")
    def create_obligation(
        self,
        budget_id: str,
        document_number: str,
        amount: Amount,
        description: str,
        obligation_date: datetime,
        created_by: str,
        line_item_id: str | None = None,
        program_element_id: str | None = None,
        vendor: str | None = None,
        status: str = "obligated",
        purpose: str | None = None,
    ) -> dict[str, Any]:
        """
        Record a commitment against an approved or active budget

        purpose defaults to the budget's purpose.

        Raises:
            BudgetNotFound: If budget doesn't exist
            BudgetNotSpendable: If budget is not approved or active
            BonaFideNeedViolation: If obligation_date predates the appropriation's fiscal year
            AppropriationExpired: If obligation_date is past the appropriation's expiration
            PurposeViolation: If the purpose does not fit restricted funds
            InsufficientFunds: If commitments would exceed the funded amount
        """
        command = CreateObligation(
            budget_id=budget_id,
            document_number=document_number,
            amount=_amount(amount),
            description=description,
            obligation_date=obligation_date,
            line_item_id=line_item_id,
            program_element_id=program_element_id,
            vendor=vendor,
            purpose=purpose,
            status=status,
        )

        def build(command_id: str) -> list[Event]:
            budget = self._budget(budget_id)
            source = self._funding_source(budget)
            return self.budget_handlers.handle_create_obligation(
                command,
                command_id,
                created_by,
                self.budget_registry.budgets,
                self.budget_registry.get_line_items(budget_id),
                funded_cents(budget, self.appropriation_registry.allocated_to_budget(budget_id)),
                self.spending_ledger.committed_cents(budget_id),
                Appropriation.model_validate(source) if source else None,
            )

        events = self._execute(
            "create_obligation",
            [budget_id],
            build,
            budget_id=budget_id,
            amount=str(command.amount),
            vendor=vendor,
        )
        return self.get_obligation(events[0].payload["obligation_id"])

    @track_command_duration("change_obligation_status")
    def change_obligation_status(
        self, obligation_id: str, status: str, actor_id: str, reason: str | None = None
    ) -> dict[str, Any]:
        """
        pending → obligated | cancelled, obligated → deobligated

        Raises:
            ObligationNotFound: If obligation doesn't exist
            InvalidTransition: For any other move
        """
        command = ChangeObligationStatus(obligation_id=obligation_id, status=status, reason=reason)
        budget_id = self._peek(lambda: self._obligation(obligation_id)["budget_id"])
        self._execute(
            "change_obligation_status",
            [budget_id],
            lambda command_id: self.budget_handlers.handle_change_obligation_status(
                command,
                command_id,
                actor_id,
                self.budget_registry.budgets,
                self._obligation(obligation_id),
                self.spending_ledger.spent_against(obligation_id),
            ),
            obligation_id=obligation_id,
            status=command.status.value,
        )
        return self.get_obligation(obligation_id)

    def get_obligation(self, obligation_id: str) -> dict[str, Any]:
        with self._reading():
            obligation = self._obligation(obligation_id)
            return {
                **obligation,
                "expended_cents": sum(
                    e["amount_cents"]
                    for e in self.spending_ledger.expenditures_against(obligation_id)
                    if e["status"] == "paid"
                ),
            }

    def list_obligations(self, budget_id: str) -> list[dict[str, Any]]:
        with self._reading():
            self._budget(budget_id)
            return [dict(o) for o in self.spending_ledger.obligations_for(budget_id)]

    def get_obligation_summary(self, fiscal_year: int | None = None) -> dict[str, Any]:
        with self._reading():
            return summarize_obligations(
                [
                    o
                    for o in self.spending_ledger.obligations.values()
                    if self._in_fiscal_year(o["budget_id"], fiscal_year)
                ]
            )

    def _in_fiscal_year(self, budget_id: str, fiscal_year: int | None) -> bool:
        if fiscal_year is None:
            return True
        budget = self.budget_registry.get(budget_id)
        return budget is not None and budget["fiscal_year"] == fiscal_year

    # ========== Expenditures ==========

    @track_command_duration("create_expenditure")
    def create_expenditure(
        self,
        budget_id: str,
        amount: Amount,
        description: str,
        payment_date: datetime,
        created_by: str,
        obligation_id: str | None = None,
        line_item_id: str | None = None,
        vendor: str | None = None,
        invoice_number: str | None = None,
        status: str = "paid",
    ) -> dict[str, Any]:
        """
        Record a payment, against an obligation or directly against the budget

        Raises:
            BudgetNotFound / ObligationNotFound: Unknown budget or obligation
            BudgetNotSpendable: If budget is not approved or active
            InvalidTransition: If the obligation is not obligated
            ExpenditureExceedsObligation: If payments would exceed the obligation
            InsufficientFunds: If a direct payment exceeds the funded amount
        """
        command = CreateExpenditure(
            budget_id=budget_id,
            amount=_amount(amount),
            description=description,
            payment_date=payment_date,
            obligation_id=obligation_id,
            line_item_id=line_item_id,
            vendor=vendor,
            invoice_number=invoice_number,
            status=status,
        )

        def build(command_id: str) -> list[Event]:
            budget = self._budget(budget_id)
            obligation = None
            if obligation_id is not None:
                obligation = self._obligation(obligation_id)
                if obligation["budget_id"] != budget_id:
                    raise ObligationNotFound(
                        obligation_id, f"Obligation {obligation_id} not found in budget {budget_id}"
                    )
            return self.budget_handlers.handle_create_expenditure(
                command,
                command_id,
                created_by,
                self.budget_registry.budgets,
                self.budget_registry.get_line_items(budget_id),
                funded_cents(budget, self.appropriation_registry.allocated_to_budget(budget_id)),
                self.spending_ledger.committed_cents(budget_id),
                obligation,
                self.spending_ledger.spent_against(obligation_id) if obligation_id else 0,
            )

        events = self._execute(
            "create_expenditure",
            [budget_id],
            build,
            budget_id=budget_id,
            amount=str(command.amount),
            vendor=vendor,
        )
        return self.get_expenditure(events[0].payload["expenditure_id"])

    @track_command_duration("change_expenditure_status")
    def change_expenditure_status(
        self, expenditure_id: str, status: str, actor_id: str, reason: str | None = None
    ) -> dict[str, Any]:
        """pending → paid | cancelled, paid → cancelled"""
        command = ChangeExpenditureStatus(
            expenditure_id=expenditure_id, status=status, reason=reason
        )
        budget_id = self._peek(lambda: self._expenditure(expenditure_id)["budget_id"])
        self._execute(
            "change_expenditure_status",
            [budget_id],
            lambda command_id: self.budget_handlers.handle_change_expenditure_status(
                command,
                command_id,
                actor_id,
                self.budget_registry.budgets,
                self._expenditure(expenditure_id),
            ),
            expenditure_id=expenditure_id,
            status=command.status.value,
        )
        return self.get_expenditure(expenditure_id)

    def get_expenditure(self, expenditure_id: str) -> dict[str, Any]:
        with self._reading():
            return dict(self._expenditure(expenditure_id))

    def list_expenditures(self, budget_id: str) -> list[dict[str, Any]]:
        with self._reading():
            self._budget(budget_id)
            return [dict(e) for e in self.spending_ledger.expenditures_for(budget_id)]

    def get_expenditure_summary(self, fiscal_year: int | None = None) -> dict[str, Any]:
        with self._reading():
            return summarize_expenditures(
                [
                    e
                    for e in self.spending_ledger.expenditures.values()
                    if self._in_fiscal_year(e["budget_id"], fiscal_year)
                ]
            )

    # ========== Variance ==========

    def calculate_variance(self, planned: Amount, actual: Amount) -> VarianceResult:
        """Pure planned-vs-actual comparison under this engine's policy"""
        return calculate_variance(to_cents(planned), to_cents(actual), self.policy)

    @track_command_duration("analyze_budget_variance")
    def analyze_budget_variance(
        self, budget_id: str, period: str, actor_id: str = "system"
    ) -> dict[str, Any]:
        """
        Compare a budget's amount with its paid expenditures and record it

        Returns:
            The recorded analysis
        """
        command = AnalyzeVariance(budget_id=budget_id, period=period)
        events = self._execute(
            "analyze_budget_variance",
            [budget_id],
            lambda command_id: self.budget_handlers.handle_analyze_variance(
                command,
                command_id,
                actor_id,
                self.budget_registry.budgets,
                self.spending_ledger.expended_cents(budget_id),
            ),
            budget_id=budget_id,
            period=period,
        )
        return dict(events[0].payload)

    def get_variance_history(self, budget_id: str) -> list[dict[str, Any]]:
        """Recorded analyses of a budget, newest first"""
        with self._reading():
            self._budget(budget_id)
            return self.variance_log.for_budget(budget_id)

    def get_variance_summary(self, fiscal_year: int | None = None) -> dict[str, Any]:
        with self._reading():
            return summarize_variances(self.variance_log.for_fiscal_year(fiscal_year))
