"""
Notification and audit sinks

The engine never talks to mail servers or audit databases itself. It
publishes committed events on the in-process bus; the subscribers here turn
them into notifications and audit records and hand those to whatever sink
the caller injected.

Delivery is best-effort. A sink that raises is logged by the bus and the
financial state it reports on stays committed.

Fun fact: federal audit trails must survive longer than most careers -
some appropriation records are retained for decades after the money is spent.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field

from fund_control.budget.projections import BudgetRegistry
from fund_control.kernel.bus import ALL_EVENTS, InProcessBus
from fund_control.kernel.events import Event
from fund_control.kernel.logging import get_logger
from fund_control.kernel.money import format_cents, percent_of
from fund_control.kernel.policy import ControlPolicy
from fund_control.ledger.projections import AppropriationRegistry
from fund_control.workflow.models import ApprovalStep

logger = get_logger(__name__)


class NotificationType(str, Enum):
    APPROVAL_REQUEST = "approval_request"
    APPROVAL_APPROVED = "approval_approved"
    APPROVAL_REJECTED = "approval_rejected"
    APPROVAL_CANCELLED = "approval_cancelled"
    BUDGET_UPDATED = "budget_updated"
    THRESHOLD_EXCEEDED = "threshold_exceeded"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    ALLOCATE = "allocate"
    DEALLOCATE = "deallocate"


class Notification(BaseModel):
    user_id: str
    notification_type: NotificationType
    title: str
    message: str
    entity_ref: dict[str, str] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.MEDIUM


class AuditRecord(BaseModel):
    actor: str | None
    action: AuditAction
    entity_type: str
    entity_id: str
    changes: dict[str, Any] = Field(default_factory=dict)
    outcome: str = "success"
    recorded_at: datetime | None = None


class NotificationSink(Protocol):
    """Delivers a message to a user (mail, inbox, chat - the caller decides)"""

    def notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        entity_ref: dict[str, str],
        priority: NotificationPriority,
    ) -> None:
        ...


class AuditSink(Protocol):
    """Stores who did what to which record"""

    def record(
        self,
        actor: str | None,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        changes: dict[str, Any],
        outcome: str,
    ) -> None:
        ...


class InMemoryNotificationSink:
    """Keeps every delivery in a list"""

    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    def notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        entity_ref: dict[str, str],
        priority: NotificationPriority,
    ) -> None:
        self.notifications.append(
            Notification(
                user_id=user_id,
                notification_type=notification_type,
                title=title,
                message=message,
                entity_ref=entity_ref,
                priority=priority,
            )
        )

    def for_user(self, user_id: str) -> list[Notification]:
        return [n for n in self.notifications if n.user_id == user_id]


class InMemoryAuditSink:
    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    def record(
        self,
        actor: str | None,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        changes: dict[str, Any],
        outcome: str,
    ) -> None:
        self.records.append(
            AuditRecord(
                actor=actor,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                changes=changes,
                outcome=outcome,
            )
        )

    def for_entity(self, entity_type: str, entity_id: str) -> list[AuditRecord]:
        return [
            r for r in self.records if r.entity_type == entity_type and r.entity_id == entity_id
        ]


class StructlogAuditSink:
    """Writes each audit record as one structured log line"""

    def __init__(self) -> None:
        self.logger = get_logger("fund_control.audit")

    def record(
        self,
        actor: str | None,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        changes: dict[str, Any],
        outcome: str,
    ) -> None:
        self.logger.info(
            "audit",
            audit_actor=actor,
            action=action.value,
            entity_type=entity_type,
            entity_id=entity_id,
            changes=changes,
            outcome=outcome,
        )


# ============================================================================
# Audit subscriber
# ============================================================================

# event_type → (action, entity_type, payload key of the entity id)
AUDITED_EVENTS: dict[str, tuple[AuditAction | None, str, str]] = {
    "AppropriationCreated": (AuditAction.CREATE, "appropriation", "appropriation_id"),
    "FundsAllocated": (AuditAction.ALLOCATE, "appropriation", "appropriation_id"),
    "FundsDeallocated": (AuditAction.DEALLOCATE, "appropriation", "appropriation_id"),
    "WorkflowDefined": (AuditAction.CREATE, "workflow", "workflow_id"),
    "WorkflowRevised": (AuditAction.UPDATE, "workflow", "workflow_id"),
    "WorkflowDeactivated": (AuditAction.UPDATE, "workflow", "workflow_id"),
    "ApprovalRequested": (AuditAction.CREATE, "approval_request", "request_id"),
    "ApprovalActionRecorded": (None, "approval_request", "request_id"),
    "ApprovalCancelled": (AuditAction.CANCEL, "approval_request", "request_id"),
    "BudgetCreated": (AuditAction.CREATE, "budget", "budget_id"),
    "BudgetUpdated": (AuditAction.UPDATE, "budget", "budget_id"),
    "BudgetRolledBack": (AuditAction.UPDATE, "budget", "budget_id"),
    "BudgetSubmitted": (AuditAction.UPDATE, "budget", "budget_id"),
    "BudgetApprovalDecided": (None, "budget", "budget_id"),
    "BudgetSubmissionWithdrawn": (AuditAction.CANCEL, "budget", "budget_id"),
    "BudgetActivated": (AuditAction.UPDATE, "budget", "budget_id"),
    "BudgetClosed": (AuditAction.UPDATE, "budget", "budget_id"),
    "LineItemAdded": (AuditAction.CREATE, "line_item", "line_item_id"),
    "ObligationRecorded": (AuditAction.CREATE, "obligation", "obligation_id"),
    "ObligationStatusChanged": (AuditAction.UPDATE, "obligation", "obligation_id"),
    "ExpenditureRecorded": (AuditAction.CREATE, "expenditure", "expenditure_id"),
    "ExpenditureStatusChanged": (AuditAction.UPDATE, "expenditure", "expenditure_id"),
    "VarianceAnalyzed": (AuditAction.CREATE, "variance_analysis", "analysis_id"),
}

_DECISION_ACTIONS = {
    "approve": AuditAction.APPROVE,
    "approved": AuditAction.APPROVE,
    "reject": AuditAction.REJECT,
    "rejected": AuditAction.REJECT,
}


class AuditSubscriber:
    """Maps every committed domain event to one audit record"""

    def __init__(self, sink: AuditSink) -> None:
        self.sink = sink

    def __call__(self, event: Event) -> None:
        entry = AUDITED_EVENTS.get(event.event_type)
        if entry is None:
            return
        action, entity_type, id_key = entry
        if action is None:
            action = _DECISION_ACTIONS[event.payload["decision"]]

        changes = {k: v for k, v in event.payload.items() if k != id_key}
        changes["event_type"] = event.event_type
        self.sink.record(
            event.actor_id,
            action,
            entity_type,
            event.payload[id_key],
            changes,
            "success",
        )


# ============================================================================
# Notification subscriber
# ============================================================================


class NotificationSubscriber:
    """
    Tells people what needs their attention

    - the approver (or role) of a step that just opened
    - the requester when their request ends
    - a budget's creator when someone else edits it
    - the allocator when an appropriation runs low, and a budget's creator
      when its variance turns critical
    """

    def __init__(
        self,
        sink: NotificationSink,
        appropriations: AppropriationRegistry,
        budgets: BudgetRegistry,
        policy: ControlPolicy,
    ) -> None:
        self.sink = sink
        self.appropriations = appropriations
        self.budgets = budgets
        self.policy = policy
        self._handlers = {
            "ReviewStarted": self._step_opened,
            "ApprovalStepAdvanced": self._step_opened,
            "ApprovalGranted": self._request_finished,
            "ApprovalRejected": self._request_finished,
            "ApprovalCancelled": self._request_finished,
            "BudgetUpdated": self._budget_edited,
            "BudgetRolledBack": self._budget_edited,
            "FundsAllocated": self._funds_allocated,
            "VarianceAnalyzed": self._variance_analyzed,
        }

    def __call__(self, event: Event) -> None:
        handler = self._handlers.get(event.event_type)
        if handler is not None:
            handler(event)

    def _step_opened(self, event: Event) -> None:
        payload = event.payload
        step = ApprovalStep.model_validate(payload["step"])
        amount = payload["amount_cents"]
        # A step the system will auto-approve needs nobody's attention
        if step.auto_approves(amount):
            return

        recipient = step.approver_id or f"role:{step.required_role}"
        amount_text = f" for {format_cents(amount)}" if amount is not None else ""
        self.sink.notify(
            recipient,
            NotificationType.APPROVAL_REQUEST,
            "Approval required",
            f"{payload['entity_type'].capitalize()} {payload['entity_id']}{amount_text} "
            f"awaits your decision (step {payload['current_step'] + 1} of {payload['total_steps']})",
            _request_ref(payload),
            NotificationPriority.HIGH,
        )

    def _request_finished(self, event: Event) -> None:
        payload = event.payload
        outcomes = {
            "ApprovalGranted": (NotificationType.APPROVAL_APPROVED, "approved", NotificationPriority.MEDIUM),
            "ApprovalRejected": (NotificationType.APPROVAL_REJECTED, "rejected", NotificationPriority.HIGH),
            "ApprovalCancelled": (NotificationType.APPROVAL_CANCELLED, "cancelled", NotificationPriority.LOW),
        }
        notification_type, verb, priority = outcomes[event.event_type]
        message = f"Your {payload['entity_type']} {payload['entity_id']} was {verb}"
        if payload.get("comments"):
            message += f": {payload['comments']}"
        self.sink.notify(
            payload["requested_by"],
            notification_type,
            f"Request {verb}",
            message,
            {
                "request_id": payload["request_id"],
                "entity_type": payload["entity_type"],
                "entity_id": payload["entity_id"],
            },
            priority,
        )

    def _budget_edited(self, event: Event) -> None:
        payload = event.payload
        creator = payload["snapshot"]["created_by"]
        if payload.get("changed_by") in (None, creator):
            return
        self.sink.notify(
            creator,
            NotificationType.BUDGET_UPDATED,
            "Budget changed",
            f"Budget '{payload['snapshot']['title']}' is now at version {payload['version']}: "
            f"{payload['change_summary']}",
            {"budget_id": payload["budget_id"], "version": str(payload["version"])},
            NotificationPriority.LOW,
        )

    def _funds_allocated(self, event: Event) -> None:
        payload = event.payload
        appropriation = self.appropriations.get(payload["appropriation_id"])
        if appropriation is None or not event.actor_id:
            return
        remaining_pct = percent_of(payload["available_after_cents"], appropriation["total_cents"])
        if remaining_pct >= self.policy.risk_high_remaining_pct:
            return
        self.sink.notify(
            event.actor_id,
            NotificationType.THRESHOLD_EXCEEDED,
            "Appropriation nearly exhausted",
            f"{payload['code']} (FY{payload['fiscal_year']}) has "
            f"{format_cents(payload['available_after_cents'])} left ({remaining_pct}% of total)",
            {"appropriation_id": payload["appropriation_id"]},
            NotificationPriority.URGENT,
        )

    def _variance_analyzed(self, event: Event) -> None:
        payload = event.payload
        if payload["status"] != "critical":
            return
        budget = self.budgets.get(payload["budget_id"])
        if budget is None:
            return
        self.sink.notify(
            budget["created_by"],
            NotificationType.THRESHOLD_EXCEEDED,
            "Critical budget variance",
            f"Budget '{budget['title']}' is {payload['variance_pct']}% off plan for {payload['period']}",
            {"budget_id": payload["budget_id"], "analysis_id": payload["analysis_id"]},
            NotificationPriority.URGENT,
        )


def _request_ref(request: dict[str, Any]) -> dict[str, str]:
    return {
        "request_id": request["request_id"],
        "entity_type": request["entity_type"],
        "entity_id": request["entity_id"],
    }


def register_subscribers(
    bus: InProcessBus,
    notification_subscriber: NotificationSubscriber,
    audit_subscriber: AuditSubscriber,
) -> None:
    """Attach both subscribers to every event type"""
    bus.register_event_handler(ALL_EVENTS, audit_subscriber)
    bus.register_event_handler(ALL_EVENTS, notification_subscriber)
    logger.debug("Notification and audit subscribers registered")
