"""
Tests for SQLite Event Store

Verifies core event sourcing properties:
- Append-only semantics (enforced by triggers, not just by convention)
- Idempotency via command_id
- Optimistic locking via stream versioning
- Atomic multi-stream batches
- Commit-order positions

Fun fact: Event sourcing tests are like archaeology - we're verifying
that the historical record is complete, immutable, and replayable!
"""

import sqlite3
from datetime import datetime, timezone

import pytest

from fund_control.kernel.errors import EventStoreError, StreamVersionConflict
from fund_control.kernel.event_store import SQLiteEventStore
from fund_control.kernel.events import Event, create_event
from fund_control.kernel.ids import generate_id

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_event(
    stream_id: str,
    version: int,
    command_id: str | None = None,
    event_type: str = "FundsAllocated",
    stream_type: str = "appropriation",
    payload: dict | None = None,
) -> Event:
    return create_event(
        event_id=generate_id(),
        stream_id=stream_id,
        stream_type=stream_type,
        event_type=event_type,
        occurred_at=NOW,
        command_id=command_id or generate_id(),
        actor_id="finance-officer",
        payload=payload or {"amount_cents": 100},
        version=version,
    )


def test_append_and_load_single_event(event_store: SQLiteEventStore) -> None:
    """Test appending and loading a single event"""
    event = make_event("approp-1", 1, payload={"amount_cents": 6000})

    appended = event_store.append("approp-1", 0, [event])
    assert len(appended) == 1

    loaded = event_store.load_stream("approp-1")
    assert len(loaded) == 1
    assert loaded[0].event_id == event.event_id
    assert loaded[0].payload == {"amount_cents": 6000}
    assert loaded[0].occurred_at == NOW
    assert loaded[0].position is not None


def test_stream_versioning(event_store: SQLiteEventStore) -> None:
    """Test that stream versions advance with each append"""
    event_store.append("approp-1", 0, [make_event("approp-1", 1)])
    assert event_store.get_stream_version("approp-1") == 1

    event_store.append("approp-1", 1, [make_event("approp-1", 2), make_event("approp-1", 3)])
    assert event_store.get_stream_version("approp-1") == 3
    assert event_store.get_stream_version("never-written") == 0


def test_version_conflict_on_stale_expected_version(event_store: SQLiteEventStore) -> None:
    """Two writers read version 1; the second append must be refused"""
    event_store.append("approp-1", 0, [make_event("approp-1", 1)])
    event_store.append("approp-1", 1, [make_event("approp-1", 2)])

    with pytest.raises(StreamVersionConflict) as exc_info:
        event_store.append("approp-1", 1, [make_event("approp-1", 2)])

    assert exc_info.value.expected_version == 1
    assert exc_info.value.actual_version == 2
    assert event_store.count_events() == 2


def test_non_consecutive_versions_rejected(event_store: SQLiteEventStore) -> None:
    """Events must continue the stream without gaps"""
    with pytest.raises(EventStoreError):
        event_store.append("approp-1", 0, [make_event("approp-1", 2)])

    assert event_store.count_events() == 0


def test_idempotency_returns_stored_events(event_store: SQLiteEventStore) -> None:
    """Replaying a command_id writes nothing and returns the original events"""
    command_id = generate_id()
    first = event_store.append("approp-1", 0, [make_event("approp-1", 1, command_id)])

    # A retry builds fresh event ids but carries the same command id
    replay = event_store.append("approp-1", 0, [make_event("approp-1", 1, command_id)])

    assert [e.event_id for e in replay] == [e.event_id for e in first]
    assert event_store.count_events() == 1


def test_batch_spans_streams_atomically(event_store: SQLiteEventStore) -> None:
    """A decision and the allocation it triggers land together"""
    command_id = generate_id()
    batch = [
        ("request-1", 0, [make_event("request-1", 1, command_id, "ApprovalGranted", "approval_request")]),
        ("approp-1", 0, [make_event("approp-1", 1, command_id)]),
    ]

    stored = event_store.append_batch(batch)

    assert len(stored) == 2
    assert event_store.get_stream_version("request-1") == 1
    assert event_store.get_stream_version("approp-1") == 1


def test_batch_conflict_writes_nothing(event_store: SQLiteEventStore) -> None:
    """If any stream in the batch moved, no stream is written"""
    event_store.append("approp-1", 0, [make_event("approp-1", 1)])
    command_id = generate_id()

    with pytest.raises(StreamVersionConflict):
        event_store.append_batch(
            [
                ("request-1", 0, [make_event("request-1", 1, command_id, stream_type="approval_request")]),
                ("approp-1", 0, [make_event("approp-1", 1, command_id)]),
            ]
        )

    assert event_store.get_stream_version("request-1") == 0
    assert event_store.count_events() == 1


def test_positions_follow_commit_order(event_store: SQLiteEventStore) -> None:
    """Replay order across streams is the order events were committed"""
    event_store.append("b", 0, [make_event("b", 1)])
    event_store.append("a", 0, [make_event("a", 1)])
    event_store.append("b", 1, [make_event("b", 2)])

    events = event_store.load_all_events()
    assert [(e.stream_id, e.version) for e in events] == [("b", 1), ("a", 1), ("b", 2)]
    positions = [e.position for e in events]
    assert positions == sorted(positions)

    after_first = event_store.load_all_events(after_position=positions[0])
    assert len(after_first) == 2


def test_update_is_rejected_by_trigger(event_store: SQLiteEventStore) -> None:
    """History cannot be rewritten, even with direct SQL"""
    event_store.append("approp-1", 0, [make_event("approp-1", 1)])

    conn = sqlite3.connect(event_store.db_path)
    try:
        with pytest.raises(sqlite3.DatabaseError, match="append-only"):
            conn.execute("UPDATE events SET payload_json = '{}'")
    finally:
        conn.close()

    assert event_store.load_stream("approp-1")[0].payload == {"amount_cents": 100}


def test_delete_is_rejected_by_trigger(event_store: SQLiteEventStore) -> None:
    event_store.append("approp-1", 0, [make_event("approp-1", 1)])

    conn = sqlite3.connect(event_store.db_path)
    try:
        with pytest.raises(sqlite3.DatabaseError, match="append-only"):
            conn.execute("DELETE FROM events")
    finally:
        conn.close()

    assert event_store.count_events() == 1


def test_query_events_by_type(event_store: SQLiteEventStore) -> None:
    event_store.append("approp-1", 0, [make_event("approp-1", 1, event_type="AppropriationCreated")])
    event_store.append("approp-1", 1, [make_event("approp-1", 2)])
    event_store.append("approp-2", 0, [make_event("approp-2", 1, event_type="AppropriationCreated")])

    created = event_store.query_events(event_type="AppropriationCreated")
    assert {e.stream_id for e in created} == {"approp-1", "approp-2"}
    assert event_store.count_streams() == 2


def test_store_reopens_existing_database(temp_db) -> None:
    """A second store on the same file sees the first one's events"""
    SQLiteEventStore(temp_db).append("approp-1", 0, [make_event("approp-1", 1)])

    reopened = SQLiteEventStore(temp_db)
    assert reopened.get_stream_version("approp-1") == 1
