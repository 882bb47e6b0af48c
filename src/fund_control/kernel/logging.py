"""
Structured logging for Fund Control

Every façade command binds its command id into structlog's context
variables, so the store, the handlers and the bus subscribers all log
under the same id as the events they produced. Grep one command id and
you get the whole story of one decision.

Approver and requester identities, vendors and amounts are masked in
every log line. The event log is the place to look those up.
"""

import logging
import os
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

# Keys masked anywhere in a log line's context
REDACTED_FIELDS = frozenset(
    {
        "actor_id",
        "approver_id",
        "requested_by",
        "created_by",
        "vendor",
        "amount",
        "amount_cents",
        "password",
        "token",
        "secret",
        "api_key",
    }
)
REDACTED = "***REDACTED***"


def is_production() -> bool:
    """True when the ENVIRONMENT variable says 'production'"""
    return os.getenv("ENVIRONMENT", "development").lower() == "production"


def redact_sensitive(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    structlog processor masking sensitive keys

    Example:
        >>> redact_sensitive(None, "info", {"event": "x", "approver_id": "alice"})
        {'event': 'x', 'approver_id': '***REDACTED***'}
    """
    for key in REDACTED_FIELDS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def configure_logging(
    *,
    json_output: bool | None = None,
    log_level: str = "INFO",
) -> None:
    """
    Configure structlog for the process

    Args:
        json_output: JSON lines instead of console rendering. Defaults to
            JSON when ENVIRONMENT=production.
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
    """
    if json_output is None:
        json_output = is_production()

    # stderr so CLI output on stdout stays parseable
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=getattr(logging, log_level.upper()))

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_sensitive,
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors += [structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger for a module (pass __name__)"""
    return structlog.get_logger(name)


@contextmanager
def command_context(command_id: str, operation: str) -> Iterator[None]:
    """Bind the command id as correlation id for everything logged inside"""
    with structlog.contextvars.bound_contextvars(correlation_id=command_id, operation=operation):
        yield


def current_correlation_id() -> str | None:
    """Correlation id of the command being executed, if any"""
    return structlog.contextvars.get_contextvars().get("correlation_id")


class LogOperation:
    """
    Time a façade command and log its outcome

    Domain errors are expected outcomes (a rejected allocation is the ledger
    doing its job), so they log as warnings without a stack trace.
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger, operation: str, **context: Any):
        self.logger = logger
        self.operation = operation
        self.context = context
        self.start_time = 0.0

    def __enter__(self) -> "LogOperation":
        self.start_time = time.perf_counter()
        self.logger.debug(f"{self.operation} started", **self.context)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)
        if exc_type is None:
            self.logger.info(f"{self.operation} completed", duration_ms=duration_ms, **self.context)
            return

        expected = _is_domain_error(exc_type)
        log = self.logger.warning if expected else self.logger.error
        log(
            f"{self.operation} failed",
            duration_ms=duration_ms,
            error_type=exc_type.__name__,
            error=str(exc_val),
            exc_info=not expected,
            **self.context,
        )


def _is_domain_error(exc_type: type[BaseException]) -> bool:
    from fund_control.kernel.errors import FundControlError

    return issubclass(exc_type, FundControlError)
