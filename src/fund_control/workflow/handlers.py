"""
Workflow Handlers - The approval state machine

Handlers turn commands into events on the workflow and approval_request
streams. A single command may emit several request events: a decision is
recorded, then the request advances (possibly through auto-approved steps)
or reaches a terminal state.

Transition function of process_approval, for the current step k of N:
- terminal request            → AlreadyFinalized
- PENDING request             → ReviewNotStarted
- unknown decision            → InvalidAction
- approver not bound to step  → Unauthorized
- approve, k == N-1           → ActionRecorded, ApprovalGranted
- approve, k <  N-1           → ActionRecorded, ApprovalStepAdvanced(k+1)
- reject                      → ActionRecorded, ApprovalRejected
"""

from typing import Any

from fund_control.kernel.errors import (
    ApprovalRequestNotFound,
    InvalidTransition,
    WorkflowNotFound,
)
from fund_control.kernel.events import Event, StreamEvents
from fund_control.kernel.ids import generate_id
from fund_control.kernel.money import to_cents
from fund_control.kernel.policy import ControlPolicy
from fund_control.kernel.time import TimeProvider
from fund_control.workflow.commands import (
    ApprovalStepSpec,
    CancelApprovalRequest,
    CreateApprovalRequest,
    CreateWorkflow,
    DeactivateWorkflow,
    ProcessApproval,
    ReviseWorkflow,
    StartReview,
)
from fund_control.workflow.events import (
    ApprovalActionRecorded,
    ApprovalCancelled,
    ApprovalGranted,
    ApprovalRejected,
    ApprovalRequested,
    ApprovalStepAdvanced,
    ReviewStarted,
    WorkflowDeactivated,
    WorkflowDefined,
    WorkflowRevised,
)
from fund_control.workflow.invariants import (
    parse_decision,
    resolve_workflow,
    validate_approver,
    validate_no_active_request,
    validate_not_finalized,
    validate_review_started,
    validate_steps,
)
from fund_control.workflow.models import (
    SYSTEM_ACTOR,
    ApprovalRequest,
    ApprovalStatus,
    ApprovalStep,
    Decision,
)

WORKFLOW_STREAM = "workflow"
REQUEST_STREAM = "approval_request"


def build_steps(specs: list[ApprovalStepSpec]) -> list[ApprovalStep]:
    """Convert step specs (Decimal thresholds) to validated, ordered steps"""
    steps = [
        ApprovalStep(
            order=spec.order,
            required_role=spec.required_role,
            approver_id=spec.approver_id,
            auto_approve_threshold_cents=(
                to_cents(spec.auto_approve_threshold)
                if spec.auto_approve_threshold is not None
                else None
            ),
        )
        for spec in specs
    ]
    return validate_steps(steps)


class WorkflowCommandHandlers:
    """
    Command handlers for workflows and approval requests

    They depend on projections to get current state.
    """

    def __init__(self, time_provider: TimeProvider, policy: ControlPolicy) -> None:
        self.time_provider = time_provider
        self.policy = policy

    # ========== Workflow definitions ==========

    def handle_create_workflow(
        self,
        command: CreateWorkflow,
        command_id: str,
        actor_id: str | None,
    ) -> list[Event]:
        """
        Handle CreateWorkflow command

        Raises:
            InvalidWorkflowDefinition: If steps are malformed
        """
        now = self.time_provider.now()
        steps = build_steps(command.steps)
        workflow_id = generate_id()

        stream = self._workflow_stream(workflow_id, 0, command_id, actor_id)
        stream.add(
            "WorkflowDefined",
            WorkflowDefined(
                workflow_id=workflow_id,
                name=command.name,
                description=command.description,
                entity_type=command.entity_type,
                steps=steps,
                defined_at=now,
                defined_by=actor_id,
            ),
        )
        return stream.events

    def handle_revise_workflow(
        self,
        command: ReviseWorkflow,
        command_id: str,
        actor_id: str | None,
        workflows: dict[str, dict],
    ) -> list[Event]:
        """
        Handle ReviseWorkflow command

        Raises:
            WorkflowNotFound: If workflow doesn't exist
            InvalidWorkflowDefinition: If steps are malformed
        """
        workflow = self._load_workflow(command.workflow_id, workflows)
        steps = build_steps(command.steps)

        stream = self._workflow_stream(
            command.workflow_id, workflow["stream_version"], command_id, actor_id
        )
        stream.add(
            "WorkflowRevised",
            WorkflowRevised(
                workflow_id=command.workflow_id,
                revision=workflow["revision"] + 1,
                steps=steps,
                revised_at=stream.occurred_at,
                revised_by=actor_id,
            ),
        )
        return stream.events

    def handle_deactivate_workflow(
        self,
        command: DeactivateWorkflow,
        command_id: str,
        actor_id: str | None,
        workflows: dict[str, dict],
    ) -> list[Event]:
        workflow = self._load_workflow(command.workflow_id, workflows)
        if not workflow["active"]:
            return []

        stream = self._workflow_stream(
            command.workflow_id, workflow["stream_version"], command_id, actor_id
        )
        stream.add(
            "WorkflowDeactivated",
            WorkflowDeactivated(
                workflow_id=command.workflow_id,
                deactivated_at=stream.occurred_at,
                deactivated_by=actor_id,
            ),
        )
        return stream.events

    # ========== Approval requests ==========

    def handle_create_approval_request(
        self,
        command: CreateApprovalRequest,
        command_id: str,
        workflows: dict[str, dict],
        active_request_id: str | None,
        request_id: str | None = None,
    ) -> list[Event]:
        """
        Handle CreateApprovalRequest command

        The request snapshots the workflow's steps. With start=True the
        review starts in the same command (and auto-approvable steps are
        satisfied right away).

        Raises:
            NoWorkflowDefined: If no active workflow exists for the entity type
            WorkflowNotFound: If an explicit workflow_id doesn't exist
            ActiveRequestExists: If the entity already has an active request
        """
        workflow = resolve_workflow(command.entity_type, workflows, command.workflow_id)
        validate_no_active_request(command.entity_type, command.entity_id, active_request_id)

        request_id = request_id or generate_id()
        amount_cents = to_cents(command.amount) if command.amount is not None else None
        steps = [ApprovalStep.model_validate(step) for step in workflow["steps"]]

        stream = self._request_stream(request_id, 0, command_id, command.requested_by)
        stream.add(
            "ApprovalRequested",
            ApprovalRequested(
                request_id=request_id,
                workflow_id=workflow["workflow_id"],
                workflow_revision=workflow["revision"],
                entity_type=command.entity_type,
                entity_id=command.entity_id,
                requested_by=command.requested_by,
                amount_cents=amount_cents,
                comments=command.comments,
                steps=steps,
                requested_at=stream.occurred_at,
            ),
        )

        if command.start:
            request = ApprovalRequest(
                request_id=request_id,
                workflow_id=workflow["workflow_id"],
                workflow_revision=workflow["revision"],
                entity_type=command.entity_type,
                entity_id=command.entity_id,
                requested_by=command.requested_by,
                amount_cents=amount_cents,
                steps=steps,
                requested_at=stream.occurred_at,
            )
            self._start(stream, request, command.requested_by)

        return stream.events

    def handle_start_review(
        self,
        command: StartReview,
        command_id: str,
        actor_id: str | None,
        requests: dict[str, dict],
    ) -> list[Event]:
        """
        Handle StartReview command (PENDING → IN_REVIEW)

        Raises:
            ApprovalRequestNotFound: If request doesn't exist
            AlreadyFinalized: If request is terminal
            InvalidTransition: If review already started
        """
        record = self._load_request(command.request_id, requests)
        validate_not_finalized(record)
        if record["status"] != ApprovalStatus.PENDING.value:
            raise InvalidTransition(
                "Approval request", command.request_id, record["status"], "in_review"
            )

        request = ApprovalRequest.model_validate(record)
        stream = self._request_stream(
            command.request_id, record["stream_version"], command_id, actor_id
        )
        self._start(stream, request, actor_id)
        return stream.events

    def handle_process_approval(
        self,
        command: ProcessApproval,
        command_id: str,
        requests: dict[str, dict],
    ) -> list[Event]:
        """
        Handle ProcessApproval command - one decision on the current step

        Raises:
            ApprovalRequestNotFound: If request doesn't exist
            AlreadyFinalized: If request is approved, rejected or cancelled
            ReviewNotStarted: If request is still PENDING
            InvalidAction: If decision is not approve/reject
            Unauthorized: If approver is not bound to the current step
        """
        record = self._load_request(command.request_id, requests)
        validate_not_finalized(record)
        validate_review_started(record)
        decision = parse_decision(command.decision)

        request = ApprovalRequest.model_validate(record)
        step = request.current()
        validate_approver(record, step, command.approver_id, command.approver_roles)

        stream = self._request_stream(
            command.request_id, record["stream_version"], command_id, command.approver_id
        )
        self._record_action(
            stream, request, command.approver_id, decision, command.comments, automatic=False
        )

        if decision == Decision.REJECT:
            stream.add(
                "ApprovalRejected",
                ApprovalRejected(
                    request_id=request.request_id,
                    entity_type=request.entity_type,
                    entity_id=request.entity_id,
                    requested_by=request.requested_by,
                    rejected_by=command.approver_id,
                    step_index=request.current_step,
                    comments=command.comments,
                    completed_at=stream.occurred_at,
                ),
            )
            return stream.events

        self._advance(stream, request, command.approver_id)
        return stream.events

    def handle_cancel_approval_request(
        self,
        command: CancelApprovalRequest,
        command_id: str,
        actor_id: str | None,
        requests: dict[str, dict],
    ) -> list[Event]:
        """
        Handle CancelApprovalRequest command

        Raises:
            ApprovalRequestNotFound: If request doesn't exist
            AlreadyFinalized: If request is already terminal
        """
        record = self._load_request(command.request_id, requests)
        validate_not_finalized(record)

        stream = self._request_stream(
            command.request_id, record["stream_version"], command_id, actor_id
        )
        stream.add(
            "ApprovalCancelled",
            ApprovalCancelled(
                request_id=record["request_id"],
                entity_type=record["entity_type"],
                entity_id=record["entity_id"],
                requested_by=record["requested_by"],
                cancelled_by=actor_id,
                reason=command.reason,
                completed_at=stream.occurred_at,
            ),
        )
        return stream.events

    # ========== State machine internals ==========

    def _start(self, stream: StreamEvents, request: ApprovalRequest, actor_id: str | None) -> None:
        request.current_step = 0
        stream.add(
            "ReviewStarted",
            ReviewStarted(
                **_step_opened(request),
                started_at=stream.occurred_at,
                started_by=actor_id,
            ),
        )
        self._auto_approve(stream, request)

    def _advance(self, stream: StreamEvents, request: ApprovalRequest, approved_by: str) -> None:
        """Current step approved: grant on the last step, else open the next one"""
        if request.is_last_step():
            stream.add(
                "ApprovalGranted",
                ApprovalGranted(
                    request_id=request.request_id,
                    entity_type=request.entity_type,
                    entity_id=request.entity_id,
                    requested_by=request.requested_by,
                    approved_by=approved_by,
                    completed_at=stream.occurred_at,
                ),
            )
            return

        from_step = request.current_step
        request.current_step += 1
        stream.add(
            "ApprovalStepAdvanced",
            ApprovalStepAdvanced(
                **_step_opened(request),
                from_step=from_step,
                advanced_at=stream.occurred_at,
            ),
        )
        self._auto_approve(stream, request)

    def _auto_approve(self, stream: StreamEvents, request: ApprovalRequest) -> None:
        """Satisfy the newly opened step if the amount is within its threshold"""
        step = request.current()
        if not step.auto_approves(request.amount_cents):
            return
        self._record_action(
            stream,
            request,
            SYSTEM_ACTOR,
            Decision.APPROVE,
            f"Auto-approved: amount within step threshold of {step.auto_approve_threshold_cents} cents",
            automatic=True,
        )
        self._advance(stream, request, SYSTEM_ACTOR)

    def _record_action(
        self,
        stream: StreamEvents,
        request: ApprovalRequest,
        approver_id: str,
        decision: Decision,
        comments: str | None,
        automatic: bool,
    ) -> None:
        step = request.current()
        stream.add(
            "ApprovalActionRecorded",
            ApprovalActionRecorded(
                action_id=generate_id(),
                request_id=request.request_id,
                step_index=request.current_step,
                step_order=step.order,
                approver_id=approver_id,
                decision=decision,
                comments=comments,
                automatic=automatic,
                acted_at=stream.occurred_at,
            ),
        )

    # ========== Helpers ==========

    def _workflow_stream(
        self, workflow_id: str, version: int, command_id: str, actor_id: str | None
    ) -> StreamEvents:
        return StreamEvents(
            stream_id=workflow_id,
            stream_type=WORKFLOW_STREAM,
            current_version=version,
            command_id=command_id,
            occurred_at=self.time_provider.now(),
            actor_id=actor_id,
        )

    def _request_stream(
        self, request_id: str, version: int, command_id: str, actor_id: str | None
    ) -> StreamEvents:
        return StreamEvents(
            stream_id=request_id,
            stream_type=REQUEST_STREAM,
            current_version=version,
            command_id=command_id,
            occurred_at=self.time_provider.now(),
            actor_id=actor_id,
        )

    def _load_workflow(self, workflow_id: str, workflows: dict[str, dict]) -> dict:
        workflow = workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(workflow_id)
        return workflow

    def _load_request(self, request_id: str, requests: dict[str, dict]) -> dict:
        record = requests.get(request_id)
        if record is None:
            raise ApprovalRequestNotFound(request_id)
        return record


def _step_opened(request: ApprovalRequest) -> dict[str, Any]:
    """Payload fields describing the request's current step"""
    return {
        "request_id": request.request_id,
        "entity_type": request.entity_type,
        "entity_id": request.entity_id,
        "amount_cents": request.amount_cents,
        "current_step": request.current_step,
        "total_steps": len(request.steps),
        "step": request.current(),
    }
