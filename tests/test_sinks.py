"""
Tests for the notification and audit subscribers

Both run off the bus after a command commits, so what they see is
exactly what was written.
"""

from pathlib import Path

from fund_control.budget.projections import BudgetRegistry
from fund_control.control import FundControl
from fund_control.kernel.policy import ControlPolicy
from fund_control.kernel.time import TestTimeProvider
from fund_control.ledger.projections import AppropriationRegistry
from fund_control.sinks import (
    AuditAction,
    InMemoryAuditSink,
    InMemoryNotificationSink,
    NotificationPriority,
    NotificationSubscriber,
    NotificationType,
)


# Notifications


def test_opened_steps_notify_their_approvers(
    fc: FundControl, notifications: InMemoryNotificationSink, budget_workflow: dict
) -> None:
    budget = fc.create_budget(2025, "Fleet", 1_500, "alice")
    request_id = fc.submit_budget(budget["budget_id"], "alice")["approval_request_id"]

    [first] = notifications.for_user("role:budget_officer")
    assert first.notification_type == NotificationType.APPROVAL_REQUEST
    assert first.priority == NotificationPriority.HIGH
    assert "1,500.00" in first.message
    assert "step 1 of 2" in first.message
    assert first.entity_ref["request_id"] == request_id

    fc.process_approval(request_id, "approve", "bob", approver_roles=["budget_officer"])

    [second] = notifications.for_user("carol")
    assert "step 2 of 2" in second.message


def test_step_notifications_need_nothing_but_the_event(
    fc: FundControl, budget_workflow: dict, control_policy: ControlPolicy
) -> None:
    budget = fc.create_budget(2025, "Fleet", 1_500, "alice")
    request_id = fc.submit_budget(budget["budget_id"], "alice")["approval_request_id"]
    fc.process_approval(request_id, "approve", "bob", approver_roles=["budget_officer"])
    fc.process_approval(request_id, "approve", "carol")
    opened = [
        e
        for e in fc.event_store.load_all_events()
        if e.event_type in ("ReviewStarted", "ApprovalStepAdvanced")
    ]

    # Replayed after the request is long approved, against empty projections
    sink = InMemoryNotificationSink()
    subscriber = NotificationSubscriber(sink, AppropriationRegistry(), BudgetRegistry(), control_policy)
    for event in opened:
        subscriber(event)

    [first] = sink.for_user("role:budget_officer")
    [second] = sink.for_user("carol")
    assert "step 1 of 2" in first.message
    assert "1,500.00" in second.message
    assert "step 2 of 2" in second.message
    assert second.entity_ref == {
        "request_id": request_id,
        "entity_type": "budget",
        "entity_id": budget["budget_id"],
    }


def test_requester_hears_the_outcome(
    fc: FundControl, notifications: InMemoryNotificationSink, budget_workflow: dict
) -> None:
    budget = fc.create_budget(2025, "Fleet", 100, "alice")
    request_id = fc.submit_budget(budget["budget_id"], "alice")["approval_request_id"]
    fc.process_approval(
        request_id, "reject", "bob", comments="Missing quotes", approver_roles=["budget_officer"]
    )

    [outcome] = notifications.for_user("alice")
    assert outcome.notification_type == NotificationType.APPROVAL_REJECTED
    assert outcome.priority == NotificationPriority.HIGH
    assert outcome.message.endswith("Missing quotes")

    second = fc.submit_budget(budget["budget_id"], "alice")["approval_request_id"]
    fc.cancel_approval_request(second, "alice")

    assert notifications.for_user("alice")[-1].notification_type == NotificationType.APPROVAL_CANCELLED


def test_auto_approved_steps_notify_nobody(fc: FundControl, notifications: InMemoryNotificationSink) -> None:
    fc.create_workflow(
        "Small purchases",
        "execution",
        [
            {"order": 1, "required_role": "supervisor", "auto_approve_threshold": 1_000},
            {"order": 2, "required_role": "cfo"},
        ],
    )
    fc.create_approval_request("execution", "exec-1", "alice", amount=50)

    assert notifications.for_user("role:supervisor") == []
    assert len(notifications.for_user("role:cfo")) == 1


def test_creator_hears_about_edits_by_others(
    fc: FundControl, notifications: InMemoryNotificationSink, budget_workflow: dict
) -> None:
    budget = fc.create_budget(2025, "Fleet", 100, "alice")
    budget_id = budget["budget_id"]
    fc.update_budget(budget_id, {"amount": 120}, "alice")
    assert notifications.for_user("alice") == []

    request_id = fc.submit_budget(budget_id, "alice")["approval_request_id"]
    fc.process_approval(request_id, "reject", "bob", approver_roles=["budget_officer"])
    # Rejected budgets are open to anyone's fixes
    fc.update_budget(budget_id, {"title": "Fleet (revised)"}, "bob")

    edit = notifications.for_user("alice")[-1]
    assert edit.notification_type == NotificationType.BUDGET_UPDATED
    assert edit.entity_ref == {"budget_id": budget_id, "version": "5"}


def test_low_appropriation_warns_the_allocator(
    fc: FundControl, notifications: InMemoryNotificationSink, om_appropriation: dict
) -> None:
    appropriation_id = om_appropriation["appropriation_id"]
    fc.allocate(appropriation_id, 500_000, actor_id="treasury")
    assert notifications.for_user("treasury") == []

    fc.allocate(appropriation_id, 460_000, actor_id="treasury")

    [warning] = notifications.for_user("treasury")
    assert warning.notification_type == NotificationType.THRESHOLD_EXCEEDED
    assert warning.priority == NotificationPriority.URGENT
    assert "4.00%" in warning.message


def test_critical_variance_warns_the_budget_creator(
    fc: FundControl, notifications: InMemoryNotificationSink
) -> None:
    budget = fc.create_budget(2025, "Fleet", 100, "alice")
    fc.analyze_budget_variance(budget["budget_id"], "2025-Q2", actor_id="analyst")

    [warning] = notifications.for_user("alice")
    assert warning.title == "Critical budget variance"
    assert "-100.00%" in warning.message


class BrokenSink:
    def notify(self, *args, **kwargs) -> None:
        raise ConnectionError("mail relay unreachable")

    def record(self, *args, **kwargs) -> None:
        raise ConnectionError("audit database unreachable")


def test_failing_sinks_do_not_undo_commands(temp_db: Path, test_time: TestTimeProvider) -> None:
    fc = FundControl(temp_db, time_provider=test_time, notification_sink=BrokenSink(), audit_sink=BrokenSink())
    appropriation = fc.create_appropriation("O&M", "Operations", 2025, 100)

    after = fc.allocate(appropriation["appropriation_id"], 99, actor_id="treasury")

    assert after["allocated_cents"] == 9_900
    assert fc.event_store.count_events() == 2


# Audit


def test_every_ledger_change_is_audited(fc: FundControl, audit: InMemoryAuditSink) -> None:
    appropriation = fc.create_appropriation("O&M", "Operations", 2025, 100, actor_id="treasury")
    appropriation_id = appropriation["appropriation_id"]
    fc.allocate(appropriation_id, 40, actor_id="treasury")
    fc.deallocate(appropriation_id, 10, actor_id="treasury")

    records = audit.for_entity("appropriation", appropriation_id)
    assert [r.action for r in records] == [AuditAction.CREATE, AuditAction.ALLOCATE, AuditAction.DEALLOCATE]
    assert all(r.actor == "treasury" for r in records)
    assert records[1].changes["event_type"] == "FundsAllocated"
    assert records[1].changes["amount_cents"] == 4_000
    assert "appropriation_id" not in records[1].changes


def test_decisions_are_audited_as_approve_and_reject(
    fc: FundControl, audit: InMemoryAuditSink, budget_workflow: dict
) -> None:
    budget = fc.create_budget(2025, "Fleet", 100, "alice")
    budget_id = budget["budget_id"]
    request_id = fc.submit_budget(budget_id, "alice")["approval_request_id"]
    fc.process_approval(request_id, "approve", "bob", approver_roles=["budget_officer"])
    fc.process_approval(request_id, "reject", "carol")

    decisions = [
        (r.actor, r.action)
        for r in audit.for_entity("approval_request", request_id)
        if r.changes["event_type"] == "ApprovalActionRecorded"
    ]
    assert decisions == [("bob", AuditAction.APPROVE), ("carol", AuditAction.REJECT)]

    budget_actions = [r.action for r in audit.for_entity("budget", budget_id)]
    assert budget_actions == [AuditAction.CREATE, AuditAction.UPDATE, AuditAction.REJECT]
