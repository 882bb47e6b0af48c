"""
Workflow Domain Models - Approval steps, requests and decisions

A workflow is an ordered list of sign-off steps for one entity type. A
request applies a workflow to one entity and walks its steps one decision
at a time. Workflows and recorded actions live as projection rows.

Key concepts:
- Steps are evaluated strictly in ascending order
- One decision satisfies a step (no quorum)
- Terminal requests accept no further actions
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class EntityType(str, Enum):
    """Kinds of records that go through approval"""

    BUDGET = "budget"
    PROGRAM = "program"
    EXECUTION = "execution"
    LINEITEM = "lineitem"


class ApprovalStatus(str, Enum):
    """
    Request lifecycle states

    PENDING → IN_REVIEW → APPROVED | REJECTED, and CANCELLED from any
    non-terminal state. PENDING means created but review not yet started.
    """

    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED, ApprovalStatus.CANCELLED}
)


class Decision(str, Enum):
    """Decision an approver can record on the current step"""

    APPROVE = "approve"
    REJECT = "reject"


# "approved"/"rejected" are accepted as spellings of the two decisions
DECISION_ALIASES = {
    "approve": Decision.APPROVE,
    "approved": Decision.APPROVE,
    "reject": Decision.REJECT,
    "rejected": Decision.REJECT,
}

SYSTEM_ACTOR = "system"


class ApprovalStep(BaseModel):
    """
    One sign-off step

    Authorized approvers: the named approver_id, or anyone holding
    required_role. A request amount at or below
    auto_approve_threshold_cents satisfies the step automatically.
    """

    order: int = Field(..., ge=0)
    required_role: str = Field(..., min_length=1)
    approver_id: str | None = None
    auto_approve_threshold_cents: int | None = Field(default=None, ge=0)

    def authorizes(self, approver_id: str, roles: list[str] | tuple[str, ...] = ()) -> bool:
        """Whether an approver may decide this step"""
        if self.approver_id is not None and self.approver_id == approver_id:
            return True
        return self.required_role in roles

    def auto_approves(self, amount_cents: int | None) -> bool:
        return (
            self.auto_approve_threshold_cents is not None
            and amount_cents is not None
            and amount_cents <= self.auto_approve_threshold_cents
        )


class ApprovalRequest(BaseModel):
    """
    One workflow applied to one entity

    steps is the snapshot taken at creation; later workflow revisions do
    not affect an in-flight request.
    """

    request_id: str
    workflow_id: str
    workflow_revision: int
    entity_type: EntityType
    entity_id: str
    requested_by: str
    amount_cents: int | None = None
    comments: str | None = None
    steps: list[ApprovalStep]
    current_step: int = 0
    status: ApprovalStatus = ApprovalStatus.PENDING
    requested_at: datetime
    completed_at: datetime | None = None

    def current(self) -> ApprovalStep:
        return self.steps[self.current_step]

    def is_last_step(self) -> bool:
        return self.current_step == len(self.steps) - 1

