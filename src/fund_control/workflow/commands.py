"""
Workflow Commands - Intentions to define workflows and move requests

Decisions arrive as free text and are parsed by the handler, so an
unknown decision surfaces as InvalidAction rather than a schema error.
"""

from decimal import Decimal

from pydantic import BaseModel, Field

from fund_control.workflow.models import EntityType


class ApprovalStepSpec(BaseModel):
    """One step of a workflow definition"""

    order: int = Field(..., ge=0)
    required_role: str = Field(..., min_length=1, max_length=100)
    approver_id: str | None = None
    auto_approve_threshold: Decimal | None = Field(default=None, ge=0)


class CreateWorkflow(BaseModel):
    """
    Define an approval workflow for an entity type

    Requirements:
    - At least one step
    - Step orders unique
    """

    name: str = Field(..., min_length=1, max_length=200)
    entity_type: EntityType
    steps: list[ApprovalStepSpec] = Field(..., min_length=1)
    description: str | None = None


class ReviseWorkflow(BaseModel):
    """Replace the steps of a workflow (future requests only)"""

    workflow_id: str
    steps: list[ApprovalStepSpec] = Field(..., min_length=1)


class DeactivateWorkflow(BaseModel):
    workflow_id: str


class CreateApprovalRequest(BaseModel):
    """
    Start approval for an entity

    workflow_id pins a workflow; otherwise the active workflow for the
    entity type is used. start=False leaves the request in PENDING.
    """

    entity_type: EntityType
    entity_id: str
    requested_by: str
    workflow_id: str | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    comments: str | None = None
    start: bool = True


class StartReview(BaseModel):
    """Move a PENDING request to IN_REVIEW at step 0"""

    request_id: str


class ProcessApproval(BaseModel):
    """
    Record a decision on the current step

    approver_roles are the roles the caller vouches for; authentication
    happens outside this package.
    """

    request_id: str
    decision: str
    approver_id: str = Field(..., min_length=1)
    comments: str | None = None
    approver_roles: list[str] = Field(default_factory=list)


class CancelApprovalRequest(BaseModel):
    request_id: str
    reason: str | None = None
