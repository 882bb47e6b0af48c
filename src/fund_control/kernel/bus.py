"""
In-process Event Bus

Committed events are published here after the append succeeds. Subscribers
(notification and audit adapters) react to facts that are already durable,
so a failing subscriber can never undo a financial state change.

Fun fact: This is the "observer" pattern with a twist - the subject is the
log itself, so every subscriber sees events in exactly the commit order.
"""

from collections import defaultdict
from typing import Callable

from fund_control.kernel.events import Event
from fund_control.kernel.logging import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[Event], None]

# Subscribe with this key to receive every event type
ALL_EVENTS = "*"


class InProcessBus:
    """
    Simple synchronous in-process bus

    Handlers are called in registration order. A handler exception is
    logged and swallowed so the other handlers still run.
    """

    def __init__(self) -> None:
        self._event_handlers: defaultdict[str, list[EventHandler]] = defaultdict(list)

    def register_event_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register an event handler (can have multiple per event type)

        Args:
            event_type: Type of event to handle (e.g., "ApprovalGranted"), or ALL_EVENTS
            handler: Function that processes the event
        """
        self._event_handlers[event_type].append(handler)
        logger.debug(
            "Event handler registered",
            event_type=event_type,
            total_handlers=len(self._event_handlers[event_type]),
        )

    def publish_event(self, event: Event) -> None:
        """Publish an event to its handlers and to the catch-all handlers"""
        handlers = self._event_handlers.get(event.event_type, []) + self._event_handlers.get(
            ALL_EVENTS, []
        )
        if not handlers:
            return

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Event handler failed",
                    event_type=event.event_type,
                    event_id=event.event_id,
                    stream_id=event.stream_id,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                    exc_info=True,
                )

    def publish_events(self, events: list[Event]) -> None:
        """Publish multiple events in order"""
        for event in events:
            self.publish_event(event)

    def get_event_types(self) -> list[str]:
        """Event types with at least one subscriber"""
        return list(self._event_handlers.keys())

    def clear(self) -> None:
        """Remove all registered handlers (useful for testing)"""
        self._event_handlers.clear()
