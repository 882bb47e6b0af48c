"""
Base Event model for the fund-control log

Every financial fact (an allocation, a decision, a budget snapshot) is an
immutable event. The log is append-only; projections are derived from it.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from fund_control.kernel.ids import generate_id


class Event(BaseModel):
    """
    Base event record - all domain events are stored in this envelope

    stream_id + version gives optimistic locking per aggregate
    (appropriation, approval request, workflow, budget); command_id ties
    every event back to the command that produced it.
    """

    event_id: str = Field(..., description="Unique event identifier (UUIDv7-like)")
    stream_id: str = Field(..., description="Aggregate identifier")
    stream_type: str = Field(
        ...,
        description="Aggregate type: 'appropriation', 'workflow', 'approval_request', 'budget'",
    )
    event_type: str = Field(..., description="Event type, e.g. 'FundsAllocated'")
    occurred_at: datetime = Field(..., description="UTC timestamp")
    actor_id: str | None = Field(
        default=None, description="Who triggered the event (None for system events)"
    )
    command_id: str = Field(..., description="Idempotency key of the originating command")
    payload: dict = Field(default_factory=dict, description="JSON-serializable event data")
    version: int = Field(..., ge=1, description="Stream version after this event")
    position: int | None = Field(
        default=None, description="Global log position, assigned by the store on commit"
    )

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "event_id": "01908e9a-3b87-7000-8000-123456789abc",
                    "stream_id": "01908e9a-0000-7000-8000-000000000001",
                    "stream_type": "appropriation",
                    "event_type": "FundsAllocated",
                    "occurred_at": "2025-01-15T10:30:00Z",
                    "actor_id": "finance-officer-1",
                    "command_id": "cmd-123",
                    "payload": {"amount_cents": 6000, "available_after_cents": 4000},
                    "version": 2,
                }
            ]
        },
    }


def create_event(
    *,
    event_id: str,
    stream_id: str,
    stream_type: str,
    event_type: str,
    occurred_at: datetime,
    command_id: str,
    version: int,
    actor_id: str | None = None,
    payload: dict | None = None,
) -> Event:
    """Build an event with named parameters so no field is forgotten"""
    return Event(
        event_id=event_id,
        stream_id=stream_id,
        stream_type=stream_type,
        event_type=event_type,
        occurred_at=occurred_at,
        actor_id=actor_id,
        command_id=command_id,
        payload=payload or {},
        version=version,
    )


class StreamEvents:
    """
    Collects the events one command produces on one stream

    Versions are numbered consecutively from the stream's current version,
    which is what the store's optimistic check expects.
    """

    def __init__(
        self,
        *,
        stream_id: str,
        stream_type: str,
        current_version: int,
        command_id: str,
        occurred_at: datetime,
        actor_id: str | None = None,
    ) -> None:
        self.stream_id = stream_id
        self.stream_type = stream_type
        self.version = current_version
        self.command_id = command_id
        self.occurred_at = occurred_at
        self.actor_id = actor_id
        self.events: list[Event] = []

    def add(self, event_type: str, payload: BaseModel) -> Event:
        self.version += 1
        event = create_event(
            event_id=generate_id(),
            stream_id=self.stream_id,
            stream_type=self.stream_type,
            event_type=event_type,
            occurred_at=self.occurred_at,
            command_id=self.command_id,
            actor_id=self.actor_id,
            payload=payload.model_dump(mode="json"),
            version=self.version,
        )
        self.events.append(event)
        return event
