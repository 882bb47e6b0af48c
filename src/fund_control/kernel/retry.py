"""
Retry logic with exponential backoff for transient failures.

Two kinds of failure are transient here: SQLite lock contention, and
optimistic-concurrency conflicts where another writer moved a stream
between our read and our append. Domain errors are never retried.
"""

import sqlite3
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random_exponential,
)

from fund_control.kernel.errors import StreamVersionConflict
from fund_control.kernel.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def retry_on_sqlite_lock(
    max_attempts: int = 3,
    min_wait_ms: int = 100,
    max_wait_ms: int = 1000,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry decorator for SQLite lock contention (OperationalError).

    SQLite uses file-based locking and can report "database is locked" when
    another process holds the write lock past the connect timeout.

    Example:
        @retry_on_sqlite_lock()
        def append_batch(...):
            conn.execute("BEGIN IMMEDIATE")
    """
    return retry(
        retry=retry_if_exception_type(sqlite3.OperationalError),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=min_wait_ms / 1000.0,
            max=max_wait_ms / 1000.0,
        ),
        before_sleep=lambda retry_state: logger.warning(
            "SQLite lock detected, retrying",
            attempt=retry_state.attempt_number,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        ),
        reraise=True,
    )


def retry_on_version_conflict(
    max_attempts: int = 5,
    max_wait_ms: int = 200,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Re-run a whole command when a stream moved under it.

    The decorated callable must reload state on each attempt, so the retry
    sees the winner's events and either succeeds or raises the correct
    domain error (InsufficientFunds, AlreadyFinalized, ...). Jittered
    backoff keeps racing writers from colliding again in lockstep.
    """
    return retry(
        retry=retry_if_exception_type(StreamVersionConflict),
        stop=stop_after_attempt(max_attempts),
        wait=wait_random_exponential(multiplier=0.01, max=max_wait_ms / 1000.0),
        before_sleep=lambda retry_state: logger.info(
            "Stream version conflict, reloading and retrying",
            attempt=retry_state.attempt_number,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        ),
        reraise=True,
    )
