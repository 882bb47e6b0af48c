"""
SQLite Event Store - Append-only event log with idempotency

The event store is the source of truth for every balance and decision:
- Append-only semantics (UPDATE and DELETE are rejected by triggers)
- Idempotency via command_id (same command = same events)
- Optimistic locking via stream versioning
- Atomic multi-stream batches (a decision and its allocation land together)
- A global position so replay order equals commit order

Fun fact: double-entry bookkeeping never erases a line either - corrections
are new entries. An event log is the same habit, applied to every record.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Protocol, Sequence

from fund_control.kernel.errors import (
    CommandIdempotencyViolation,
    EventStoreError,
    StreamVersionConflict,
)
from fund_control.kernel.events import Event
from fund_control.kernel.logging import get_logger
from fund_control.kernel.metrics import events_appended_total, stream_version_conflicts_total
from fund_control.kernel.retry import retry_on_sqlite_lock

logger = get_logger(__name__)

# (stream_id, expected_version, events) - one entry per stream in a batch
StreamAppend = tuple[str, int, list[Event]]

_COLUMNS = (
    "position, event_id, stream_id, stream_type, version, "
    "command_id, event_type, occurred_at, actor_id, payload_json"
)


class EventStore(Protocol):
    """Persistence interface the façade depends on"""

    def append(self, stream_id: str, expected_version: int, events: list[Event]) -> list[Event]:
        ...

    def append_batch(self, batch: Sequence[StreamAppend]) -> list[Event]:
        ...

    def load_stream(self, stream_id: str, after_version: int = 0) -> list[Event]:
        ...

    def load_all_events(self, after_position: int = 0, limit: int | None = None) -> list[Event]:
        ...

    def query_events(
        self,
        *,
        stream_type: str | None = None,
        event_type: str | None = None,
        stream_id: str | None = None,
        from_time: datetime | None = None,
        to_time: datetime | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        ...

    def get_stream_version(self, stream_id: str) -> int:
        ...


class SQLiteEventStore:
    """
    SQLite-based event store with append-only semantics

    Uses WAL mode for crash safety and concurrent readers. Writers take the
    database write lock up front (BEGIN IMMEDIATE) so the version check and
    the insert happen under the same lock, also across processes sharing
    one database file.

    Schema:
    - events table: append-only event log, position = commit order
    - Unique constraints: (stream_id, version), event_id
    - Triggers: reject UPDATE and DELETE
    """

    def __init__(self, db_path: str | Path, timeout_seconds: float = 5.0) -> None:
        """
        Initialize event store with SQLite database

        Args:
            db_path: Path to SQLite database file
            timeout_seconds: How long a writer waits for the database lock
        """
        self.db_path = Path(db_path)
        self.timeout_seconds = timeout_seconds
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create tables, indices and append-only triggers if they don't exist"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    position INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT NOT NULL UNIQUE,
                    stream_id TEXT NOT NULL,
                    stream_type TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    command_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    actor_id TEXT,
                    payload_json TEXT NOT NULL,

                    UNIQUE(stream_id, version)
                )
            """)

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_stream ON events(stream_id, version)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_time ON events(occurred_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_command ON events(command_id)")

            # Snapshots and approval actions live here - history is never rewritten
            conn.execute("""
                CREATE TRIGGER IF NOT EXISTS events_no_update
                BEFORE UPDATE ON events
                BEGIN
                    SELECT RAISE(ABORT, 'events are append-only');
                END
            """)
            conn.execute("""
                CREATE TRIGGER IF NOT EXISTS events_no_delete
                BEFORE DELETE ON events
                BEGIN
                    SELECT RAISE(ABORT, 'events are append-only');
                END
            """)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database connections

        Connections run in autocommit mode; writers open their own
        transaction explicitly.
        """
        conn = sqlite3.connect(
            str(self.db_path), timeout=self.timeout_seconds, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def append(
        self,
        stream_id: str,
        expected_version: int,
        events: list[Event],
    ) -> list[Event]:
        """
        Append events to a single stream with optimistic locking

        Args:
            stream_id: Aggregate root identifier
            expected_version: Expected current stream version
            events: Events to append (sequential versions)

        Returns:
            The appended events (or the earlier ones if the command already ran)

        Raises:
            StreamVersionConflict: If stream version doesn't match expected
            EventStoreError: On other database errors
        """
        return self.append_batch([(stream_id, expected_version, events)])

    @retry_on_sqlite_lock()
    def append_batch(self, batch: Sequence[StreamAppend]) -> list[Event]:
        """
        Append events to several streams in one transaction

        Either every stream in the batch is written or none is. Each
        stream's current version must equal its expected version.

        Idempotency: if the batch's command_id is already in the log for
        any of the streams, nothing is written and the stored events of
        that command are returned.

        Raises:
            StreamVersionConflict: If any stream moved since it was read
            EventStoreError: On other database errors
        """
        all_events = [event for _, _, events in batch for event in events]
        if not all_events:
            return []

        command_id = all_events[0].command_id
        stream_ids = {stream_id for stream_id, _, _ in batch}

        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                existing = [
                    e
                    for e in self._events_by_command_id(conn, command_id)
                    if e.stream_id in stream_ids
                ]
                if existing:
                    conn.execute("ROLLBACK")
                    logger.info(
                        "Command already applied, returning stored events",
                        command_id=command_id,
                        event_count=len(existing),
                    )
                    return existing

                for stream_id, expected_version, events in batch:
                    current_version = self._get_stream_version(conn, stream_id)
                    if current_version != expected_version:
                        raise StreamVersionConflict(stream_id, expected_version, current_version)

                    for offset, event in enumerate(events, start=1):
                        if event.stream_id != stream_id or event.version != expected_version + offset:
                            raise EventStoreError(
                                f"Event {event.event_id} does not continue stream {stream_id} "
                                f"at version {expected_version + offset}"
                            )
                        self._insert(conn, event)

                conn.execute("COMMIT")

            except StreamVersionConflict as e:
                conn.execute("ROLLBACK")
                stream_type = next(
                    (ev.stream_type for ev in all_events if ev.stream_id == e.stream_id), "unknown"
                )
                stream_version_conflicts_total.labels(stream_type=stream_type).inc()
                raise

            except sqlite3.IntegrityError as e:
                conn.execute("ROLLBACK")
                error_msg = str(e).lower()
                if "stream_id" in error_msg and "version" in error_msg:
                    raise StreamVersionConflict(
                        all_events[0].stream_id, all_events[0].version - 1, -1
                    ) from e
                if "event_id" in error_msg:
                    raise CommandIdempotencyViolation(command_id) from e
                raise EventStoreError(f"Failed to append events: {e}") from e

            except sqlite3.OperationalError:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

            except EventStoreError:
                conn.execute("ROLLBACK")
                raise

        for event in all_events:
            events_appended_total.labels(
                stream_type=event.stream_type, event_type=event.event_type
            ).inc()
        return all_events

    def _insert(self, conn: sqlite3.Connection, event: Event) -> None:
        conn.execute(
            """
            INSERT INTO events (
                event_id, stream_id, stream_type, version,
                command_id, event_type, occurred_at, actor_id, payload_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.stream_id,
                event.stream_type,
                event.version,
                event.command_id,
                event.event_type,
                event.occurred_at.isoformat(),
                event.actor_id,
                json.dumps(event.payload),
            ),
        )

    def load_stream(self, stream_id: str, after_version: int = 0) -> list[Event]:
        """
        Load the events of one stream in version order

        Args:
            stream_id: Aggregate root identifier
            after_version: Only return events with a higher version

        Returns:
            List of events (empty if stream doesn't exist)
        """
        with self._connect() as conn:
            cursor = conn.execute(
                f"SELECT {_COLUMNS} FROM events "
                "WHERE stream_id = ? AND version > ? ORDER BY version ASC",
                (stream_id, after_version),
            )
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def load_all_events(
        self,
        after_position: int = 0,
        limit: int | None = None,
    ) -> list[Event]:
        """
        Load events in commit order (for projection rebuild and catch-up)

        Args:
            after_position: Only return events past this log position
            limit: Maximum number of events to return, or None for all
        """
        query = f"SELECT {_COLUMNS} FROM events WHERE position > ? ORDER BY position ASC"
        params: list = [after_position]
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def query_events(
        self,
        *,
        stream_type: str | None = None,
        event_type: str | None = None,
        stream_id: str | None = None,
        from_time: datetime | None = None,
        to_time: datetime | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        """
        Query events by various criteria, in commit order

        Args:
            stream_type: Filter by stream type (e.g., "appropriation")
            event_type: Filter by event type (e.g., "FundsAllocated")
            stream_id: Filter by aggregate
            from_time: Events at or after this time
            to_time: Events at or before this time
            limit: Maximum number of events to return
        """
        conditions = []
        params: list = []

        if stream_type:
            conditions.append("stream_type = ?")
            params.append(stream_type)
        if event_type:
            conditions.append("event_type = ?")
            params.append(event_type)
        if stream_id:
            conditions.append("stream_id = ?")
            params.append(stream_id)
        if from_time:
            conditions.append("occurred_at >= ?")
            params.append(from_time.isoformat())
        if to_time:
            conditions.append("occurred_at <= ?")
            params.append(to_time.isoformat())

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        query = f"SELECT {_COLUMNS} FROM events WHERE {where_clause} ORDER BY position ASC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def get_stream_version(self, stream_id: str) -> int:
        """Current version of a stream (0 if it doesn't exist)"""
        with self._connect() as conn:
            return self._get_stream_version(conn, stream_id)

    def _get_stream_version(self, conn: sqlite3.Connection, stream_id: str) -> int:
        cursor = conn.execute(
            "SELECT MAX(version) FROM events WHERE stream_id = ?",
            (stream_id,),
        )
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    def _events_by_command_id(self, conn: sqlite3.Connection, command_id: str) -> list[Event]:
        cursor = conn.execute(
            f"SELECT {_COLUMNS} FROM events WHERE command_id = ? ORDER BY position ASC",
            (command_id,),
        )
        return [self._row_to_event(row) for row in cursor.fetchall()]

    def _row_to_event(self, row: sqlite3.Row) -> Event:
        """Convert SQLite row to Event object"""
        return Event(
            event_id=row["event_id"],
            stream_id=row["stream_id"],
            stream_type=row["stream_type"],
            version=row["version"],
            command_id=row["command_id"],
            event_type=row["event_type"],
            occurred_at=datetime.fromisoformat(row["occurred_at"]),
            actor_id=row["actor_id"],
            payload=json.loads(row["payload_json"]),
            position=row["position"],
        )

    def count_events(self) -> int:
        """Get total number of events in store"""
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]

    def count_streams(self) -> int:
        """Get total number of distinct streams"""
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(DISTINCT stream_id) FROM events").fetchone()[0]
