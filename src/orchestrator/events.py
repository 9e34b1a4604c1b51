"""Typed streaming events emitted during a turn."""

from enum import Enum
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Event types, in the order a caller typically sees them."""

    ROUTING_DECISION = "routing_decision"
    TEXT_DELTA = "text_delta"
    TOOL_STARTED = "tool_started"
    TOOL_COMPLETED = "tool_completed"
    APPROVAL_REQUIRED = "approval_required"
    ERROR = "error"
    TURN_COMPLETED = "turn_completed"


TERMINAL_EVENT_TYPES = frozenset(
    {EventType.APPROVAL_REQUIRED, EventType.ERROR, EventType.TURN_COMPLETED}
)


class StreamEvent(BaseModel):
    """One event of a turn's ordered event stream."""

    type: EventType
    thread_id: str
    seq: int = Field(..., ge=0, description="Position of the event within the turn")
    node: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        """Whether this event ends the turn."""
        return self.type in TERMINAL_EVENT_TYPES


def node_event(event_type: EventType, node: str, **data: Any) -> Dict[str, Any]:
    """Payload a node hands to the LangGraph stream writer."""
    return {"type": event_type.value, "node": node, "data": data}


def emit(writer: Optional[Callable[[Any], None]], event_type: EventType, node: str, **data) -> None:
    """Send a node event through the stream writer when one is attached."""
    if writer is not None:
        writer(node_event(event_type, node, **data))
