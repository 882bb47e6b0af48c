"""
Workflow Invariants - Guards of the approval state machine

Pure functions over projection records. The façade calls them under the
request's lock, so a guard that passes here is still true when the
resulting events are appended.
"""

from fund_control.kernel.errors import (
    ActiveRequestExists,
    AlreadyFinalized,
    InvalidAction,
    InvalidWorkflowDefinition,
    NoWorkflowDefined,
    ReviewNotStarted,
    Unauthorized,
    WorkflowNotFound,
)
from fund_control.workflow.models import (
    DECISION_ALIASES,
    TERMINAL_STATUSES,
    ApprovalStatus,
    ApprovalStep,
    Decision,
    EntityType,
)


def validate_steps(steps: list[ApprovalStep]) -> list[ApprovalStep]:
    """
    Check a step list and return it sorted by order

    Raises:
        InvalidWorkflowDefinition: If empty or orders repeat
    """
    if not steps:
        raise InvalidWorkflowDefinition("A workflow needs at least one step")

    orders = [step.order for step in steps]
    duplicates = sorted({order for order in orders if orders.count(order) > 1})
    if duplicates:
        raise InvalidWorkflowDefinition(f"Duplicate step orders: {duplicates}")

    return sorted(steps, key=lambda step: step.order)


def resolve_workflow(
    entity_type: EntityType,
    workflows: dict[str, dict],
    workflow_id: str | None = None,
) -> dict:
    """
    Pick the workflow a new request will follow

    An explicit workflow_id must exist, be active and match the entity
    type. Otherwise the most recently defined active workflow for the
    entity type wins.

    Raises:
        WorkflowNotFound: If workflow_id doesn't exist
        NoWorkflowDefined: If no usable workflow exists
    """
    if workflow_id is not None:
        workflow = workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(workflow_id)
        if not workflow["active"] or workflow["entity_type"] != entity_type.value:
            raise NoWorkflowDefined(entity_type.value)
        return workflow

    candidates = [
        w
        for w in workflows.values()
        if w["active"] and w["entity_type"] == entity_type.value
    ]
    if not candidates:
        raise NoWorkflowDefined(entity_type.value)
    return max(candidates, key=lambda w: w["defined_seq"])


def validate_no_active_request(
    entity_type: EntityType, entity_id: str, active_request_id: str | None
) -> None:
    """
    Raises:
        ActiveRequestExists: If the entity already has a non-terminal request
    """
    if active_request_id is not None:
        raise ActiveRequestExists(entity_type.value, entity_id, active_request_id)


def validate_not_finalized(request: dict) -> None:
    """
    Raises:
        AlreadyFinalized: If the request is approved, rejected or cancelled
    """
    if ApprovalStatus(request["status"]) in TERMINAL_STATUSES:
        raise AlreadyFinalized(request["request_id"], request["status"])


def validate_review_started(request: dict) -> None:
    """
    Raises:
        ReviewNotStarted: If the request is still PENDING
    """
    if request["status"] == ApprovalStatus.PENDING.value:
        raise ReviewNotStarted(request["request_id"])


def parse_decision(value: str) -> Decision:
    """
    Raises:
        InvalidAction: For anything but approve/reject
    """
    decision = DECISION_ALIASES.get(str(value).strip().lower())
    if decision is None:
        raise InvalidAction(str(value))
    return decision


def validate_approver(
    request: dict, step: ApprovalStep, approver_id: str, approver_roles: list[str]
) -> None:
    """
    The approver must be the step's named approver or hold its role

    Raises:
        Unauthorized: Otherwise
    """
    if not step.authorizes(approver_id, approver_roles):
        raise Unauthorized(
            approver_id,
            f"not an approver for step {request['current_step']} "
            f"(role '{step.required_role}') of request {request['request_id']}",
        )
