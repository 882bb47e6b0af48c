"""
Prometheus metrics collection for Fund Control.

Provides observability into the event log, command processing, fund
movements and approval decisions.
"""

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Gauge, Histogram

# ============================================================================
# Core Event Store Metrics
# ============================================================================

events_appended_total = Counter(
    "fund_control_events_appended_total",
    "Total number of events appended to the event store",
    ["stream_type", "event_type"],
)

stream_version_conflicts_total = Counter(
    "fund_control_stream_version_conflicts_total",
    "Total number of optimistic locking version conflicts",
    ["stream_type"],
)

# ============================================================================
# Command Processing Metrics
# ============================================================================

command_duration_seconds = Histogram(
    "fund_control_command_duration_seconds",
    "Duration of command processing in seconds",
    ["command_type"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

commands_processed_total = Counter(
    "fund_control_commands_processed_total",
    "Total number of commands processed",
    ["command_type", "status"],  # status: success, failure
)

# ============================================================================
# Ledger Metrics
# ============================================================================

fund_allocations_total = Counter(
    "fund_control_fund_allocations_total",
    "Allocation attempts against appropriations",
    ["outcome"],  # allocated, insufficient, expired, purpose_violation
)

appropriation_utilization_ratio = Gauge(
    "fund_control_appropriation_utilization_ratio",
    "Allocated share of an appropriation's total (0..1)",
    ["code", "fiscal_year"],
)

# ============================================================================
# Approval Metrics
# ============================================================================

approval_decisions_total = Counter(
    "fund_control_approval_decisions_total",
    "Approval actions recorded",
    ["entity_type", "decision"],  # decision: approve, reject, auto_approve
)

projection_rebuild_duration_seconds = Histogram(
    "fund_control_projection_rebuild_duration_seconds",
    "Duration of projection rebuild in seconds",
    buckets=(0.01, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0),
)

# ============================================================================
# Helper Functions
# ============================================================================

P = ParamSpec("P")
R = TypeVar("R")


def track_command_duration(command_type: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator to track command processing duration.

    Args:
        command_type: Type of command being processed
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            status = "success"
            try:
                return func(*args, **kwargs)
            except Exception:
                status = "failure"
                raise
            finally:
                duration = time.perf_counter() - start
                command_duration_seconds.labels(command_type=command_type).observe(duration)
                commands_processed_total.labels(
                    command_type=command_type, status=status
                ).inc()

        return wrapper

    return decorator


def update_appropriation_utilization(
    code: str, fiscal_year: int, allocated_cents: int, total_cents: int
) -> None:
    """Set the utilization gauge for one appropriation."""
    ratio = allocated_cents / total_cents if total_cents else 0.0
    appropriation_utilization_ratio.labels(code=code, fiscal_year=str(fiscal_year)).set(ratio)
