"""
Workflow Events - Facts about workflows and approval requests

For every decision, ApprovalActionRecorded comes first in the stream and
the resulting state change follows it, so the audit trail never lags the
state it explains.
"""

from datetime import datetime

from pydantic import BaseModel

from fund_control.workflow.models import ApprovalStep, Decision, EntityType


class WorkflowDefined(BaseModel):
    workflow_id: str
    name: str
    description: str | None
    entity_type: EntityType
    steps: list[ApprovalStep]
    defined_at: datetime
    defined_by: str | None


class WorkflowRevised(BaseModel):
    """New steps for future requests; in-flight requests keep their snapshot"""

    workflow_id: str
    revision: int
    steps: list[ApprovalStep]
    revised_at: datetime
    revised_by: str | None


class WorkflowDeactivated(BaseModel):
    workflow_id: str
    deactivated_at: datetime
    deactivated_by: str | None


class ApprovalRequested(BaseModel):
    """A request was created in PENDING with a snapshot of the workflow steps"""

    request_id: str
    workflow_id: str
    workflow_revision: int
    entity_type: EntityType
    entity_id: str
    requested_by: str
    amount_cents: int | None
    comments: str | None
    steps: list[ApprovalStep]
    requested_at: datetime


class StepOpened(BaseModel):
    """
    A step is now awaiting a decision

    Carries what the approver needs to know about the request, so readers
    never have to look the request up.
    """

    request_id: str
    entity_type: EntityType
    entity_id: str
    amount_cents: int | None
    current_step: int
    total_steps: int
    step: ApprovalStep


class ReviewStarted(StepOpened):
    """PENDING → IN_REVIEW; step 0 is now awaiting a decision"""

    started_at: datetime
    started_by: str | None


class ApprovalActionRecorded(BaseModel):
    """A decision was made on the current step"""

    action_id: str
    request_id: str
    step_index: int
    step_order: int
    approver_id: str
    decision: Decision
    comments: str | None
    automatic: bool
    acted_at: datetime


class ApprovalStepAdvanced(StepOpened):
    """The request moved on; step is the one now awaiting a decision"""

    from_step: int
    advanced_at: datetime


class ApprovalGranted(BaseModel):
    """The last step approved - the request is APPROVED (terminal)"""

    request_id: str
    entity_type: EntityType
    entity_id: str
    requested_by: str
    approved_by: str
    completed_at: datetime


class ApprovalRejected(BaseModel):
    """A step rejected - the request is REJECTED (terminal)"""

    request_id: str
    entity_type: EntityType
    entity_id: str
    requested_by: str
    rejected_by: str
    step_index: int
    comments: str | None
    completed_at: datetime


class ApprovalCancelled(BaseModel):
    request_id: str
    entity_type: EntityType
    entity_id: str
    requested_by: str
    cancelled_by: str | None
    reason: str | None
    completed_at: datetime
