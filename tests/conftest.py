"""
Pytest configuration and shared fixtures

Fun fact: The name "conftest" comes from pytest's configuration testing
framework. Files named conftest.py are automatically discovered and their
fixtures are available to all tests in the same directory and subdirectories!
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest

from fund_control.budget.handlers import BudgetCommandHandlers
from fund_control.control import FundControl
from fund_control.kernel.event_store import SQLiteEventStore
from fund_control.kernel.policy import ControlPolicy
from fund_control.kernel.time import TestTimeProvider
from fund_control.ledger.handlers import LedgerCommandHandlers
from fund_control.sinks import InMemoryAuditSink, InMemoryNotificationSink
from fund_control.workflow.handlers import WorkflowCommandHandlers


@pytest.fixture
def temp_db() -> Iterator[Path]:
    """Provide a temporary database file that's cleaned up after test"""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup (WAL mode leaves two companion files behind)
    for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
        if path.exists():
            path.unlink()


@pytest.fixture
def event_store(temp_db: Path) -> SQLiteEventStore:
    """Provide a fresh event store for each test"""
    return SQLiteEventStore(temp_db)


@pytest.fixture
def test_time() -> TestTimeProvider:
    """
    Provide a controllable time provider for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC - second quarter of FY2025, so
    annual FY2025 funds are live until 30 September.
    """
    return TestTimeProvider(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def control_policy() -> ControlPolicy:
    """Provide default control policy for tests"""
    return ControlPolicy()


@pytest.fixture
def ledger_handlers(test_time: TestTimeProvider, control_policy: ControlPolicy) -> LedgerCommandHandlers:
    """
    Handlers are stateless - they take projections as parameters.
    Fun fact: This pattern follows the CQRS principle established by Greg Young in 2010!
    """
    return LedgerCommandHandlers(test_time, control_policy)


@pytest.fixture
def workflow_handlers(
    test_time: TestTimeProvider, control_policy: ControlPolicy
) -> WorkflowCommandHandlers:
    return WorkflowCommandHandlers(test_time, control_policy)


@pytest.fixture
def budget_handlers(test_time: TestTimeProvider, control_policy: ControlPolicy) -> BudgetCommandHandlers:
    return BudgetCommandHandlers(test_time, control_policy)


@pytest.fixture
def notifications() -> InMemoryNotificationSink:
    return InMemoryNotificationSink()


@pytest.fixture
def audit() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def fc(
    temp_db: Path,
    test_time: TestTimeProvider,
    notifications: InMemoryNotificationSink,
    audit: InMemoryAuditSink,
) -> FundControl:
    """
    Provide a FundControl engine on a fresh database

    Sinks are in-memory so tests can inspect what was delivered.
    """
    return FundControl(
        temp_db,
        time_provider=test_time,
        notification_sink=notifications,
        audit_sink=audit,
    )


@pytest.fixture
def budget_workflow(fc: FundControl) -> dict:
    """
    Two-step budget review: a budget officer, then the CFO

    Fun fact: two signatures is the classic "four eyes" principle -
    no single person can both propose and release public money.
    """
    return fc.create_workflow(
        "Budget review",
        "budget",
        [
            {"order": 1, "required_role": "budget_officer"},
            {"order": 2, "required_role": "cfo", "approver_id": "carol"},
        ],
        created_by="admin",
    )


@pytest.fixture
def om_appropriation(fc: FundControl) -> dict:
    """Annual O&M appropriation of $1,000,000 for FY2025"""
    return fc.create_appropriation("O&M-2025", "Operation and Maintenance", 2025, 1_000_000)
