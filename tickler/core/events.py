"""
Tickler Event System — types and constants.

The scheduler reports every lifecycle step of an intent as an event.
Events flow through the middleware chain, then to subscribers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
import time
import uuid


class EventType:
    """
    Event type constants.

    Hierarchical naming: "category:action"
    Supports wildcard matching: "intent:*" matches "intent:fired"
    """

    # Scheduler lifecycle
    SCHEDULER_START = "scheduler:start"
    SCHEDULER_STOP = "scheduler:stop"
    SCHEDULER_REHYDRATED = "scheduler:rehydrated"

    # Intent states
    INTENT_SCHEDULED = "intent:scheduled"
    INTENT_FIRING = "intent:firing"
    INTENT_FIRED = "intent:fired"
    INTENT_FAILED = "intent:failed"
    INTENT_CANCELLED = "intent:cancelled"

    # Liveness
    HEARTBEAT_BEAT = "heartbeat:beat"
    HEARTBEAT_ERROR = "heartbeat:error"

    # Wildcard
    ALL = "*"


@dataclass(slots=True)
class Event:
    """
    One scheduler occurrence: what happened (type), which component
    reported it (source) and the intent-specific details (data).
    """

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    source: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    timestamp: float = field(default_factory=time.time)

    @property
    def intent_id(self) -> str | None:
        """The intent this event is about, if any."""
        return self.data.get("intent_id")
