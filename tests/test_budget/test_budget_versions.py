"""
Tests for budget versioning and edit gating

Every mutation writes a full snapshot under the next version number, so
a rollback is just another version - history is never rewritten.
"""

from typing import Callable

import pytest
from pydantic import ValidationError

from fund_control.control import FundControl
from fund_control.kernel.errors import (
    BudgetLocked,
    BudgetNotFound,
    BudgetVersionNotFound,
    DuplicateLineItem,
    InvalidTransition,
    Unauthorized,
)


def test_create_budget_starts_as_draft_version_one(draft_budget: dict) -> None:
    assert draft_budget["version"] == 1
    assert draft_budget["status"] == "draft"
    assert draft_budget["approval_status"] == "pending"
    assert draft_budget["approval_request_id"] is None
    assert draft_budget["amount_cents"] == 10_000_000
    assert draft_budget["fund_gated"] is False


def test_each_update_is_a_new_version(fc: FundControl, draft_budget: dict) -> None:
    budget_id = draft_budget["budget_id"]

    fc.update_budget(budget_id, {"amount": 120_000}, "alice")
    updated = fc.update_budget(budget_id, {"title": "Fleet and facilities"}, "alice")

    assert updated["version"] == 3
    assert updated["title"] == "Fleet and facilities"
    assert updated["amount_cents"] == 12_000_000

    versions = fc.get_budget_versions(budget_id)
    assert [v["version"] for v in versions] == [3, 2, 1]
    assert [v["change_summary"] for v in versions] == [
        "Updated title",
        "Updated amount_cents",
        "Budget created",
    ]
    assert versions[2]["snapshot"]["amount_cents"] == 10_000_000


def test_update_without_changes_still_bumps_version(fc: FundControl, draft_budget: dict) -> None:
    updated = fc.update_budget(draft_budget["budget_id"], {"title": draft_budget["title"]}, "alice")

    assert updated["version"] == 2
    assert fc.get_budget_versions(draft_budget["budget_id"])[0]["change_summary"] == (
        "Updated (no field changes)"
    )


def test_unknown_update_fields_are_refused(fc: FundControl, draft_budget: dict) -> None:
    with pytest.raises(ValidationError):
        fc.update_budget(draft_budget["budget_id"], {"status": "approved"}, "alice")


def test_rollback_restores_fields_as_new_version(fc: FundControl, draft_budget: dict) -> None:
    budget_id = draft_budget["budget_id"]
    fc.update_budget(budget_id, {"amount": 120_000}, "alice")
    fc.update_budget(budget_id, {"title": "Renamed"}, "alice")

    rolled_back = fc.rollback_budget(budget_id, 1, "alice")

    assert rolled_back["version"] == 4
    assert rolled_back["title"] == "Fleet operations"
    assert rolled_back["amount_cents"] == 10_000_000
    assert fc.get_budget_versions(budget_id)[0]["change_summary"] == "Rolled back to version 1"
    # Versions 2 and 3 are still there
    assert fc.get_budget_version(budget_id, 3)["snapshot"]["title"] == "Renamed"


def test_rollback_to_unknown_version(fc: FundControl, draft_budget: dict) -> None:
    with pytest.raises(BudgetVersionNotFound):
        fc.rollback_budget(draft_budget["budget_id"], 9, "alice")
    with pytest.raises(BudgetVersionNotFound):
        fc.get_budget_version(draft_budget["budget_id"], 9)


def test_only_the_creator_edits_a_draft(fc: FundControl, draft_budget: dict) -> None:
    with pytest.raises(Unauthorized):
        fc.update_budget(draft_budget["budget_id"], {"amount": 1}, "mallory")

    assert fc.get_budget(draft_budget["budget_id"])["version"] == 1


def test_submitted_budget_is_locked(fc: FundControl, draft_budget: dict, budget_workflow: dict) -> None:
    budget_id = draft_budget["budget_id"]
    submitted = fc.submit_budget(budget_id, "alice", comments="Ready for review")

    assert submitted["status"] == "submitted"
    assert submitted["approval_status"] == "in_review"
    assert submitted["version"] == 2

    with pytest.raises(BudgetLocked):
        fc.update_budget(budget_id, {"amount": 1}, "alice")
    with pytest.raises(BudgetLocked):
        fc.rollback_budget(budget_id, 1, "alice")
    with pytest.raises(BudgetLocked):
        fc.add_line_item(budget_id, 1, "Fuel", 10, "supplies", "alice")
    with pytest.raises(InvalidTransition):
        fc.submit_budget(budget_id, "alice")


def test_approved_budget_is_locked(fc: FundControl, approved_budget: dict) -> None:
    assert approved_budget["status"] == "approved"
    with pytest.raises(BudgetLocked):
        fc.update_budget(approved_budget["budget_id"], {"title": "Too late"}, "alice")


def test_rejected_budget_can_be_edited_and_resubmitted(
    fc: FundControl, draft_budget: dict, budget_workflow: dict
) -> None:
    budget_id = draft_budget["budget_id"]
    first_request = fc.submit_budget(budget_id, "alice")["approval_request_id"]
    fc.process_approval(first_request, "reject", "bob", approver_roles=["budget_officer"])

    rejected = fc.get_budget(budget_id)
    assert rejected["status"] == "rejected"
    assert rejected["approval_status"] == "rejected"
    assert rejected["version"] == 3

    fc.update_budget(budget_id, {"amount": 80_000}, "alice")
    resubmitted = fc.submit_budget(budget_id, "alice")

    assert resubmitted["status"] == "submitted"
    assert resubmitted["version"] == 5
    assert resubmitted["approval_request_id"] != first_request
    assert [v["change_summary"] for v in fc.get_budget_versions(budget_id)] == [
        "Submitted for approval",
        "Updated amount_cents",
        "Approval rejected",
        "Submitted for approval",
        "Budget created",
    ]


def test_rollback_to_a_submitted_version_returns_to_draft(
    fc: FundControl, draft_budget: dict, budget_workflow: dict
) -> None:
    budget_id = draft_budget["budget_id"]
    request_id = fc.submit_budget(budget_id, "alice")["approval_request_id"]
    fc.process_approval(request_id, "reject", "bob", approver_roles=["budget_officer"])

    rolled_back = fc.rollback_budget(budget_id, 2, "alice")

    assert rolled_back["status"] == "draft"
    assert rolled_back["approval_status"] == "pending"


def test_rollback_to_a_rejected_version_stays_rejected(
    fc: FundControl, draft_budget: dict, budget_workflow: dict
) -> None:
    budget_id = draft_budget["budget_id"]
    request_id = fc.submit_budget(budget_id, "alice")["approval_request_id"]
    fc.process_approval(request_id, "reject", "bob", approver_roles=["budget_officer"])
    fc.update_budget(budget_id, {"title": "Second try"}, "alice")

    rolled_back = fc.rollback_budget(budget_id, 3, "alice")

    assert rolled_back["status"] == "rejected"
    assert rolled_back["title"] == "Fleet operations"


def test_unknown_budget(fc: FundControl) -> None:
    with pytest.raises(BudgetNotFound):
        fc.get_budget("missing")
    with pytest.raises(BudgetNotFound):
        fc.update_budget("missing", {"title": "x"}, "alice")


# Line items


def test_line_items_do_not_bump_the_version(fc: FundControl, draft_budget: dict) -> None:
    budget_id = draft_budget["budget_id"]
    fc.add_line_item(budget_id, 2, "Maintenance", 40_000, "services", "alice")
    item = fc.add_line_item(budget_id, 1, "Fuel", 60_000, "supplies", "alice")

    assert item["amount_cents"] == 6_000_000
    assert item["obligated_cents"] == 0
    assert [i["line_number"] for i in fc.list_line_items(budget_id)] == [1, 2]
    assert fc.get_budget(budget_id)["version"] == 1


def test_line_numbers_are_unique(fc: FundControl, draft_budget: dict) -> None:
    fc.add_line_item(draft_budget["budget_id"], 1, "Fuel", 10, "supplies", "alice")

    with pytest.raises(DuplicateLineItem):
        fc.add_line_item(draft_budget["budget_id"], 1, "Tyres", 10, "supplies", "alice")


def test_line_items_follow_edit_gating(fc: FundControl, draft_budget: dict) -> None:
    with pytest.raises(Unauthorized):
        fc.add_line_item(draft_budget["budget_id"], 1, "Fuel", 10, "supplies", "mallory")


# Lifecycle


def test_activate_and_close(fc: FundControl, approved_budget: dict) -> None:
    budget_id = approved_budget["budget_id"]

    active = fc.activate_budget(budget_id, "alice")
    assert active["status"] == "active"

    closed = fc.close_budget(budget_id, "alice", reason="Fiscal year end")
    assert closed["status"] == "closed"
    assert fc.get_budget_versions(budget_id)[0]["change_summary"] == "Closed: Fiscal year end"

    with pytest.raises(InvalidTransition):
        fc.activate_budget(budget_id, "alice")


def test_draft_budget_cannot_be_activated_or_closed(fc: FundControl, draft_budget: dict) -> None:
    with pytest.raises(InvalidTransition):
        fc.activate_budget(draft_budget["budget_id"], "alice")
    with pytest.raises(InvalidTransition):
        fc.close_budget(draft_budget["budget_id"], "alice")


def test_list_budgets_and_summary(
    fc: FundControl, draft_budget: dict, approve: Callable[[str], dict]
) -> None:
    other = fc.create_budget(2025, "Parks", 50_000, "dan", department="Recreation")
    fc.create_budget(2026, "Next year", 10, "alice")
    approve(other["budget_id"], "dan")

    assert len(fc.list_budgets(2025)) == 2
    assert [b["title"] for b in fc.list_budgets(status="approved")] == ["Parks"]

    summary = fc.get_budget_summary(2025)
    assert summary["total_count"] == 2
    assert summary["total_amount_cents"] == 15_000_000
    assert summary["by_status"]["draft"] == {"count": 1, "amount_cents": 10_000_000}
    assert summary["by_department"]["Recreation"]["count"] == 1
