"""
Workflow - Approval workflow definitions and the request state machine

A workflow says who must sign off on an entity type; a request walks one
entity through those steps, one recorded decision at a time.
"""

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
from fund_control.workflow.handlers import WorkflowCommandHandlers
from fund_control.workflow.models import (
    ApprovalRequest,
    ApprovalStatus,
    ApprovalStep,
    Decision,
    EntityType,
)
from fund_control.workflow.projections import ApprovalRequestRegistry, WorkflowRegistry

__all__ = [
    "ApprovalRequest",
    "ApprovalStatus",
    "ApprovalStep",
    "Decision",
    "EntityType",
    "ApprovalStepSpec",
    "CreateWorkflow",
    "ReviseWorkflow",
    "DeactivateWorkflow",
    "CreateApprovalRequest",
    "StartReview",
    "ProcessApproval",
    "CancelApprovalRequest",
    "WorkflowCommandHandlers",
    "WorkflowRegistry",
    "ApprovalRequestRegistry",
]
