"""Engine events and the sinks that render them.

The engine never formats diagnostics inline; it emits ``EngineEvent``
records and a sink decides what to do with them.  ``LoggingEventSink``
writes them to the standard ``logging`` tree, ``RecordingEventSink``
keeps them in memory (optionally forwarding to another sink).
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any
from typing import Protocol

from pydantic import BaseModel
from pydantic import Field

logger = logging.getLogger(__name__)


class EngineEventType(str, Enum):
    """Categories of engine events."""

    STEP_RENDERED = "step_rendered"
    CUSTOM_PURPOSE = "custom_purpose"
    PREFIX_MISSING = "prefix_missing"
    DEPENDENCIES_MISSING = "dependencies_missing"
    STEP_REVISED = "step_revised"
    REVISION_TARGET_MISSING = "revision_target_missing"
    BRANCH_CREATED = "branch_created"
    BRANCH_REMOVED = "branch_removed"
    HISTORY_TRIMMED = "history_trimmed"
    HISTORY_CLEARED = "history_cleared"
    SESSION_CREATED = "session_created"
    SESSION_EXPIRED = "session_expired"
    LOW_CONFIDENCE = "low_confidence"
    STEP_REJECTED = "step_rejected"


_ADVISORY = frozenset(
    {
        EngineEventType.CUSTOM_PURPOSE,
        EngineEventType.PREFIX_MISSING,
        EngineEventType.DEPENDENCIES_MISSING,
        EngineEventType.REVISION_TARGET_MISSING,
        EngineEventType.LOW_CONFIDENCE,
        EngineEventType.STEP_REJECTED,
    }
)


class EngineEvent(BaseModel):
    """A single immutable engine event."""

    model_config = {"frozen": True}

    timestamp: float = Field(
        default_factory=time.time,
        description="Unix epoch when the event occurred.",
    )
    event_type: EngineEventType = Field(
        description="Category of the event.",
    )
    message: str = Field(
        description="Human-readable rendering of the event.",
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific structured data.",
    )

    @property
    def advisory(self) -> bool:
        return self.event_type in _ADVISORY


class EventSink(Protocol):
    """Receiver for engine events."""

    def emit(self, event: EngineEvent) -> None: ...


class LoggingEventSink:
    """Render events through ``logging``: advisories as warnings."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def emit(self, event: EngineEvent) -> None:
        level = logging.WARNING if event.advisory else logging.INFO
        self._log.log(level, "%s: %s", event.event_type.value, event.message)


class RecordingEventSink:
    """Keep events in memory, forwarding each one to *forward* if given."""

    def __init__(self, forward: EventSink | None = None) -> None:
        self._forward = forward
        self.events: list[EngineEvent] = []

    def emit(self, event: EngineEvent) -> None:
        self.events.append(event)
        if self._forward is not None:
            self._forward.emit(event)

    def of_type(self, event_type: EngineEventType) -> list[EngineEvent]:
        return [event for event in self.events if event.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()
