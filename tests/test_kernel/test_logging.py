"""
Tests for structured logging helpers
"""

import pytest

from fund_control.control import FundControl
from fund_control.kernel.errors import InsufficientFunds
from fund_control.kernel.logging import (
    REDACTED,
    LogOperation,
    command_context,
    current_correlation_id,
    get_logger,
    redact_sensitive,
)


def test_redaction_masks_identities_and_amounts() -> None:
    event_dict = {"event": "allocate completed", "approver_id": "carol", "amount": "60.00", "budget_id": "b-1"}

    redacted = redact_sensitive(None, "info", event_dict)

    assert redacted["approver_id"] == REDACTED
    assert redacted["amount"] == REDACTED
    assert redacted["budget_id"] == "b-1"


def test_command_context_binds_correlation_id() -> None:
    assert current_correlation_id() is None

    with command_context("cmd-1", "allocate"):
        assert current_correlation_id() == "cmd-1"

    assert current_correlation_id() is None


def test_log_operation_propagates_errors() -> None:
    with pytest.raises(InsufficientFunds):
        with LogOperation(get_logger(__name__), "allocate", appropriation_id="a-1"):
            raise InsufficientFunds("a-1", requested_cents=200, available_cents=100)


def test_facade_commands_leave_no_context_behind(fc: FundControl) -> None:
    fc.create_appropriation("O&M", "Operations", 2025, 100)

    assert current_correlation_id() is None
