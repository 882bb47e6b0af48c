"""
Budget fixtures - budgets walked through the two-step review
"""

from typing import Callable

import pytest

from fund_control.control import FundControl


@pytest.fixture
def approve(fc: FundControl, budget_workflow: dict) -> Callable[[str], dict]:
    """Submit a budget and approve it at both steps"""

    def run(budget_id: str, submitted_by: str = "alice") -> dict:
        budget = fc.submit_budget(budget_id, submitted_by)
        request_id = budget["approval_request_id"]
        fc.process_approval(request_id, "approve", "bob", approver_roles=["budget_officer"])
        fc.process_approval(request_id, "approve", "carol")
        return fc.get_budget(budget_id)

    return run


@pytest.fixture
def draft_budget(fc: FundControl) -> dict:
    """$100,000 operations budget, not tied to an appropriation"""
    return fc.create_budget(
        2025,
        "Fleet operations",
        100_000,
        "alice",
        department="Transportation",
        description="Fuel and maintenance",
    )


@pytest.fixture
def approved_budget(draft_budget: dict, approve: Callable[[str], dict]) -> dict:
    return approve(draft_budget["budget_id"])
