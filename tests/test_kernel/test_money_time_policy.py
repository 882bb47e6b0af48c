"""
Tests for kernel helpers: money, fiscal calendar, locks, policy, retry, bus
"""

import threading
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from fund_control.kernel.bus import ALL_EVENTS, InProcessBus
from fund_control.kernel.errors import InsufficientFunds, StreamVersionConflict
from fund_control.kernel.events import StreamEvents, create_event
from fund_control.kernel.locks import StreamLocks
from fund_control.kernel.money import format_cents, from_cents, percent_of, to_cents
from fund_control.kernel.policy import ControlPolicy
from fund_control.kernel.retry import retry_on_version_conflict
from fund_control.kernel.time import (
    TestTimeProvider,
    ensure_utc,
    fiscal_year_end,
    fiscal_year_of,
    fiscal_year_start,
    parse_timestamp,
)
from fund_control.ledger.events import FundsDeallocated


# Money


def test_to_cents_accepts_decimal_int_and_str() -> None:
    assert to_cents(Decimal("1234.56")) == 123456
    assert to_cents(100) == 10000
    assert to_cents("1,000.10") == 100010


def test_to_cents_rounds_half_even() -> None:
    assert to_cents(Decimal("0.005")) == 0
    assert to_cents(Decimal("0.015")) == 2


def test_to_cents_refuses_floats() -> None:
    with pytest.raises(TypeError):
        to_cents(0.1)  # type: ignore[arg-type]


def test_to_cents_refuses_garbage_strings() -> None:
    with pytest.raises(ValueError):
        to_cents("ten dollars")


def test_from_cents_and_format() -> None:
    assert from_cents(123456) == Decimal("1234.56")
    assert format_cents(123456) == "1,234.56"
    assert format_cents(0) == "0.00"


def test_percent_of() -> None:
    assert percent_of(50, 1000) == Decimal("5.00")
    assert percent_of(1, 3) == Decimal("33.33")
    assert percent_of(10, 0) == Decimal("0.00")


# Fiscal calendar


def test_fiscal_year_end_is_september_30() -> None:
    end = fiscal_year_end(2025)
    assert (end.year, end.month, end.day) == (2025, 9, 30)
    assert end.tzinfo is not None


def test_fiscal_year_start_is_october_1_of_prior_year() -> None:
    start = fiscal_year_start(2025)
    assert (start.year, start.month, start.day) == (2024, 10, 1)
    assert fiscal_year_of(start) == 2025
    assert fiscal_year_of(start - timedelta(seconds=1)) == 2024


def test_fiscal_year_of() -> None:
    assert fiscal_year_of(datetime(2024, 10, 1, tzinfo=timezone.utc)) == 2025
    assert fiscal_year_of(datetime(2025, 9, 30, tzinfo=timezone.utc)) == 2025


def test_parse_timestamp_handles_z_suffix_and_naive() -> None:
    assert parse_timestamp("2025-09-30T23:59:59Z") == fiscal_year_end(2025)
    naive = datetime(2025, 1, 1)
    assert ensure_utc(naive).tzinfo == timezone.utc


def test_time_provider_advances() -> None:
    clock = TestTimeProvider(datetime(2025, 9, 29, tzinfo=timezone.utc))
    clock.advance_days(2)
    assert clock.now() > fiscal_year_end(2025)


# StreamEvents


def test_stream_events_number_versions_consecutively() -> None:
    stream = StreamEvents(
        stream_id="approp-1",
        stream_type="appropriation",
        current_version=4,
        command_id="cmd-1",
        occurred_at=datetime(2025, 1, 15, tzinfo=timezone.utc),
        actor_id="alice",
    )
    payload = FundsDeallocated(
        appropriation_id="approp-1",
        code="O&M-2025",
        fiscal_year=2025,
        requested_cents=100,
        released_cents=100,
        budget_id=None,
        reason=None,
        allocated_after_cents=0,
        available_after_cents=1000,
        deallocated_at=datetime(2025, 1, 15, tzinfo=timezone.utc),
        deallocated_by="alice",
    )
    stream.add("FundsDeallocated", payload)
    stream.add("FundsDeallocated", payload)

    assert [e.version for e in stream.events] == [5, 6]
    assert all(e.command_id == "cmd-1" for e in stream.events)


# Locks


def test_locks_serialize_same_key() -> None:
    locks = StreamLocks()
    inside = []
    overlap = []

    def work() -> None:
        with locks.hold("approp-1"):
            if inside:
                overlap.append(True)
            inside.append(True)
            time.sleep(0.01)
            inside.pop()

    threads = [threading.Thread(target=work) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlap == []


def test_locks_ignore_none_and_are_reentrant() -> None:
    locks = StreamLocks()
    with locks.hold("b", None, "a"):
        with locks.hold("a"):
            assert len(locks) == 2
    assert len(locks) == 0


def test_locks_are_dropped_once_released() -> None:
    locks = StreamLocks()

    def work(n: int) -> None:
        with locks.hold(f"budget-{n % 7}", "approp-1"):
            time.sleep(0.001)

    threads = [threading.Thread(target=work, args=(n,)) for n in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for n in range(200):
        with locks.hold(f"request-{n}"):
            pass

    assert len(locks) == 0
    assert locks._locks == {}


# Policy


def test_policy_defaults() -> None:
    policy = ControlPolicy()
    assert policy.variance_threshold_pct == Decimal("10")
    assert policy.variance_critical_pct == Decimal("20")
    assert policy.risk_high_remaining_pct == Decimal("5")
    assert policy.risk_medium_remaining_pct == Decimal("10")


def test_policy_rejects_inverted_bands() -> None:
    with pytest.raises(ValidationError):
        ControlPolicy(variance_threshold_pct=Decimal("30"), variance_critical_pct=Decimal("20"))


def test_policy_reads_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FUND_CONTROL_VARIANCE_CRITICAL_PCT", "25")
    monkeypatch.setenv("FUND_CONTROL_DRAFT_EDIT_CREATOR_ONLY", "false")
    monkeypatch.setenv("VARIANCE_THRESHOLD_PCT", "15")

    policy = ControlPolicy()

    assert policy.variance_critical_pct == Decimal("25")
    assert policy.draft_edit_creator_only is False
    assert policy.variance_threshold_pct == Decimal("10")


def test_policy_keyword_arguments_win_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FUND_CONTROL_CONFLICT_RETRY_ATTEMPTS", "9")

    assert ControlPolicy(conflict_retry_attempts=2).conflict_retry_attempts == 2


def test_policy_environment_is_validated(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FUND_CONTROL_VARIANCE_THRESHOLD_PCT", "30")

    with pytest.raises(ValidationError):
        ControlPolicy()


# Retry


def test_retry_on_version_conflict_reruns_until_success() -> None:
    calls = []

    @retry_on_version_conflict(max_attempts=3)
    def flaky() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise StreamVersionConflict("approp-1", 1, 2)
        return "ok"

    assert flaky() == "ok"
    assert len(calls) == 3


def test_retry_never_retries_domain_errors() -> None:
    calls = []

    @retry_on_version_conflict(max_attempts=5)
    def refuse() -> None:
        calls.append(1)
        raise InsufficientFunds("approp-1", 200, 100)

    with pytest.raises(InsufficientFunds):
        refuse()
    assert len(calls) == 1


def test_retry_gives_up_after_max_attempts() -> None:
    @retry_on_version_conflict(max_attempts=2)
    def always_conflicts() -> None:
        raise StreamVersionConflict("approp-1", 1, 2)

    with pytest.raises(StreamVersionConflict):
        always_conflicts()


# Bus


def test_bus_isolates_failing_handlers() -> None:
    bus = InProcessBus()
    seen = []

    def broken(event) -> None:
        raise RuntimeError("mail server down")

    bus.register_event_handler("BudgetCreated", broken)
    bus.register_event_handler(ALL_EVENTS, lambda e: seen.append(e.event_type))

    bus.publish_event(
        create_event(
            event_id="e-1",
            stream_id="b-1",
            stream_type="budget",
            event_type="BudgetCreated",
            occurred_at=datetime(2025, 1, 15, tzinfo=timezone.utc),
            command_id="cmd-1",
            version=1,
        )
    )

    assert seen == ["BudgetCreated"]
