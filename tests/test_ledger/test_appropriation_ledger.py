"""
Tests for the appropriation ledger through the FundControl façade

Covers creation, the allocation gates, clamped deallocation, read-only
checks, and the balance identity under concurrent writers - both threads
sharing one engine and two engines sharing one database file.

Fun fact: the Anti-Deficiency Act dates from 1870. Its whole point is the
test at the bottom of this file: two requests for 60 against 100 must
never both succeed.
"""

from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from fund_control.control import FundControl
from fund_control.kernel.errors import (
    AppropriationExpired,
    AppropriationNotFound,
    DuplicateAppropriation,
    InsufficientFunds,
    PurposeViolation,
)
from fund_control.kernel.time import TestTimeProvider
from fund_control.ledger.models import RiskLevel, ValidationReason
from tests.helpers import race


def assert_balanced(appropriation: dict) -> None:
    assert appropriation["available_cents"] + appropriation["allocated_cents"] == appropriation["total_cents"]
    assert appropriation["available_cents"] >= 0
    assert appropriation["allocated_cents"] >= 0


def test_create_appropriation(fc: FundControl) -> None:
    appropriation = fc.create_appropriation(
        "O&M-2025", "Operation and Maintenance", 2025, Decimal("1000000.00"), actor_id="treasury"
    )

    assert appropriation["code"] == "O&M-2025"
    assert appropriation["total_cents"] == 100_000_000
    assert appropriation["available_cents"] == 100_000_000
    assert appropriation["allocated_cents"] == 0
    assert appropriation["expiration_date"].startswith("2025-09-30")
    assert fc.get_appropriation_by_code("O&M-2025", 2025)["appropriation_id"] == appropriation["appropriation_id"]


def test_duplicate_code_in_same_fiscal_year_rejected(fc: FundControl) -> None:
    fc.create_appropriation("O&M", "Operations", 2025, 100)
    fc.create_appropriation("O&M", "Operations", 2026, 100)

    with pytest.raises(DuplicateAppropriation):
        fc.create_appropriation("O&M", "Operations again", 2025, 100)

    assert [a["fiscal_year"] for a in fc.list_appropriations()] == [2025, 2026]
    assert len(fc.list_appropriations(2026)) == 1


def test_float_amounts_are_refused(fc: FundControl) -> None:
    with pytest.raises(TypeError):
        fc.create_appropriation("O&M", "Operations", 2025, 100.10)  # type: ignore[arg-type]


def test_allocate_and_deallocate(fc: FundControl, om_appropriation: dict) -> None:
    appropriation_id = om_appropriation["appropriation_id"]

    after = fc.allocate(appropriation_id, 600_000, budget_id="budget-1", actor_id="alice")
    assert after["allocated_cents"] == 60_000_000
    assert after["available_cents"] == 40_000_000
    assert_balanced(after)

    after = fc.deallocate(appropriation_id, 100_000, budget_id="budget-1", reason="Scope cut")
    assert after["allocated_cents"] == 50_000_000
    assert_balanced(after)

    history = fc.get_allocations(appropriation_id)
    assert [m["kind"] for m in history] == ["allocation", "deallocation"]
    assert history[1]["reason"] == "Scope cut"


def test_allocate_exactly_available(fc: FundControl, om_appropriation: dict) -> None:
    after = fc.allocate(om_appropriation["appropriation_id"], 1_000_000)
    assert after["available_cents"] == 0
    assert_balanced(after)


def test_allocate_over_available_rejected(fc: FundControl, om_appropriation: dict) -> None:
    appropriation_id = om_appropriation["appropriation_id"]
    fc.allocate(appropriation_id, 999_999)

    with pytest.raises(InsufficientFunds) as exc_info:
        fc.allocate(appropriation_id, Decimal("1.01"))

    assert exc_info.value.available_cents == 100
    assert exc_info.value.shortage_cents == 1
    assert fc.get_appropriation(appropriation_id)["allocated_cents"] == 99_999_900


def test_over_deallocation_is_clamped(fc: FundControl, om_appropriation: dict) -> None:
    appropriation_id = om_appropriation["appropriation_id"]
    fc.allocate(appropriation_id, 100)

    after = fc.deallocate(appropriation_id, 500)

    assert after["allocated_cents"] == 0
    assert after["available_cents"] == after["total_cents"]
    last = fc.get_allocations(appropriation_id)[-1]
    assert last["requested_cents"] == 50_000
    assert last["amount_cents"] == 10_000


def test_expired_appropriation_refuses_allocation(
    fc: FundControl, om_appropriation: dict, test_time: TestTimeProvider
) -> None:
    test_time.set_time(datetime(2025, 10, 1, tzinfo=timezone.utc))

    with pytest.raises(AppropriationExpired):
        fc.allocate(om_appropriation["appropriation_id"], 100)
    with pytest.raises(AppropriationExpired):
        fc.check_availability("O&M-2025", 2025, 100)

    validation = fc.validate("O&M-2025", 2025)
    assert validation.valid is False
    assert validation.reason == ValidationReason.EXPIRED


def test_expired_appropriation_still_takes_funds_back(
    fc: FundControl, om_appropriation: dict, test_time: TestTimeProvider
) -> None:
    fc.allocate(om_appropriation["appropriation_id"], 500)
    test_time.set_time(datetime(2025, 10, 1, tzinfo=timezone.utc))

    after = fc.deallocate(om_appropriation["appropriation_id"], 500)
    assert after["allocated_cents"] == 0


def test_no_year_funds_do_not_expire(fc: FundControl, test_time: TestTimeProvider) -> None:
    appropriation = fc.create_appropriation("MILCON", "Construction", 2025, 100, appropriation_type="no_year")
    assert appropriation["expiration_date"] is None

    test_time.set_time(datetime(2040, 1, 1, tzinfo=timezone.utc))
    assert fc.allocate(appropriation["appropriation_id"], 100)["available_cents"] == 0


def test_purpose_restrictions(fc: FundControl) -> None:
    appropriation = fc.create_appropriation("TRN", "Training", 2025, 100, restrictions=["Training"])

    fc.allocate(appropriation["appropriation_id"], 10, purpose="training")
    with pytest.raises(PurposeViolation):
        fc.allocate(appropriation["appropriation_id"], 10, purpose="construction")


def test_check_availability_is_read_only(fc: FundControl, om_appropriation: dict) -> None:
    result = fc.check_availability("O&M-2025", 2025, 960_000)

    assert result.available is True
    assert result.risk == RiskLevel.HIGH
    assert result.remaining_after_cents == 4_000_000
    assert fc.get_appropriation(om_appropriation["appropriation_id"])["allocated_cents"] == 0

    too_much = fc.check_availability("O&M-2025", 2025, 2_000_000)
    assert too_much.available is False
    assert too_much.risk == RiskLevel.CRITICAL
    assert too_much.shortage_cents == 100_000_000


def test_check_availability_unknown_code(fc: FundControl) -> None:
    with pytest.raises(AppropriationNotFound):
        fc.check_availability("NOPE", 2025, 1)


def test_validate(fc: FundControl, om_appropriation: dict) -> None:
    assert fc.validate("O&M-2025", 2025).valid is True
    assert fc.validate("NOPE", 2025).reason == ValidationReason.NOT_FOUND

    fc.allocate(om_appropriation["appropriation_id"], 1_000_000)
    assert fc.validate("O&M-2025", 2025).reason == ValidationReason.NO_FUNDS


def test_balances_survive_restart(temp_db: Path, test_time: TestTimeProvider) -> None:
    """Projections are rebuilt from the log on startup"""
    first = FundControl(temp_db, time_provider=test_time)
    appropriation = first.create_appropriation("O&M", "Operations", 2025, 100)
    first.allocate(appropriation["appropriation_id"], 30)
    first.deallocate(appropriation["appropriation_id"], 10)

    second = FundControl(temp_db, time_provider=test_time)
    record = second.get_appropriation(appropriation["appropriation_id"])
    assert record["allocated_cents"] == 2_000
    assert record["available_cents"] == 8_000
    assert len(second.get_allocations(appropriation["appropriation_id"])) == 2


# Concurrency


def test_concurrent_allocations_never_overdraw(fc: FundControl) -> None:
    appropriation = fc.create_appropriation("O&M", "Operations", 2025, 100)
    appropriation_id = appropriation["appropriation_id"]

    results, errors = race(
        lambda: fc.allocate(appropriation_id, 60, actor_id="alice"),
        lambda: fc.allocate(appropriation_id, 60, actor_id="bob"),
        expected=InsufficientFunds,
    )

    assert len(results) == 1
    assert len(errors) == 1
    record = fc.get_appropriation(appropriation_id)
    assert record["allocated_cents"] == 6_000
    assert record["available_cents"] == 4_000


def test_two_engines_on_one_database_never_overdraw(temp_db: Path, test_time: TestTimeProvider) -> None:
    """Per-process locks don't span engines; the stream version check does"""
    first = FundControl(temp_db, time_provider=test_time)
    second = FundControl(temp_db, time_provider=test_time)
    appropriation = first.create_appropriation("O&M", "Operations", 2025, 100)
    appropriation_id = appropriation["appropriation_id"]

    results, errors = race(
        lambda: first.allocate(appropriation_id, 60),
        lambda: second.allocate(appropriation_id, 60),
        expected=InsufficientFunds,
    )

    assert len(results) == 1
    assert len(errors) == 1
    for engine in (first, second):
        record = engine.get_appropriation(appropriation_id)
        assert record["allocated_cents"] == 6_000
        assert_balanced(record)


def test_sequential_engines_see_each_others_writes(temp_db: Path, test_time: TestTimeProvider) -> None:
    first = FundControl(temp_db, time_provider=test_time)
    second = FundControl(temp_db, time_provider=test_time)
    appropriation = first.create_appropriation("O&M", "Operations", 2025, 100)

    first.allocate(appropriation["appropriation_id"], 60)
    with pytest.raises(InsufficientFunds):
        second.allocate(appropriation["appropriation_id"], 60)

    with pytest.raises(DuplicateAppropriation):
        second.create_appropriation("O&M", "Operations", 2025, 100)
