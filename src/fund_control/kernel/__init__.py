"""
Kernel - Core event sourcing infrastructure

The kernel provides the machinery the ledger, workflow and budget modules
build upon: an append-only event log, idempotent commands, integer money,
injectable time and per-key serialization.

Fun fact: Event sourcing was inspired by accountants - they never erase ledger
entries, they add correcting entries. Here it is applied back to accounting.
"""

from fund_control.kernel.errors import (
    CommandIdempotencyViolation,
    EventStoreError,
    FundControlError,
    InvariantViolation,
    StreamVersionConflict,
)
from fund_control.kernel.events import Event
from fund_control.kernel.ids import generate_id
from fund_control.kernel.money import format_cents, from_cents, to_cents
from fund_control.kernel.policy import ControlPolicy
from fund_control.kernel.time import RealTimeProvider, TestTimeProvider, TimeProvider

__all__ = [
    # IDs
    "generate_id",
    # Time
    "TimeProvider",
    "RealTimeProvider",
    "TestTimeProvider",
    # Money
    "to_cents",
    "from_cents",
    "format_cents",
    # Events
    "Event",
    # Policy
    "ControlPolicy",
    # Errors
    "FundControlError",
    "EventStoreError",
    "CommandIdempotencyViolation",
    "StreamVersionConflict",
    "InvariantViolation",
]
