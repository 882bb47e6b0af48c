"""
Time provider abstraction and fiscal-year calendar

Expiration checks compare against "now", so time is injectable: tests freeze
it, production reads the system clock.

The federal fiscal year runs 1 October - 30 September and is named after
the calendar year in which it ends (FY2025 ends 30 September 2025).
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class TimeProvider(Protocol):
    """Protocol for time providers - allows deterministic testing"""

    def now(self) -> datetime:
        """Return current UTC datetime"""
        ...


class RealTimeProvider:
    """Production time provider using system clock"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class TestTimeProvider:
    """
    Controllable time provider for deterministic tests

    Allows tests to freeze time and move it forward past expiration dates.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, initial_time: datetime | None = None) -> None:
        self._current_time = initial_time or datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current_time

    def set_time(self, dt: datetime) -> None:
        self._current_time = dt

    def advance_days(self, days: int) -> None:
        self._current_time += timedelta(days=days)


def fiscal_year_start(fiscal_year: int) -> datetime:
    """First instant of a federal fiscal year (1 October of the prior calendar year, UTC)"""
    return datetime(fiscal_year - 1, 10, 1, tzinfo=timezone.utc)


def fiscal_year_end(fiscal_year: int) -> datetime:
    """Last instant of a federal fiscal year (30 September, UTC)"""
    return datetime(fiscal_year, 9, 30, 23, 59, 59, tzinfo=timezone.utc)


def fiscal_year_of(moment: datetime) -> int:
    """Fiscal year a moment falls in (October-December belong to the next year)"""
    return moment.year + 1 if moment.month >= 10 else moment.year


def parse_timestamp(value: str | datetime) -> datetime:
    """Read back a timestamp stored in an event payload (ISO 8601, 'Z' allowed)"""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def ensure_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix naive and aware values"""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
