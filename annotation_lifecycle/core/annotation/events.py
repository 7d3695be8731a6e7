"""
Event system for the annotation workflow.

Provides typed publish/subscribe channels so tools, the coordinator
and persistence consumers stay decoupled. Channels are plain objects
owned by whoever creates them; nothing here is global.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from .records import AnnotationRecord, Point, ToolKind, utc_now

logger = logging.getLogger(__name__)


class SignalType(Enum):
    """Raw signals a rendering surface reports for a tool."""

    COMPLETED = "completed"
    MODIFIED = "modified"
    REMOVED = "removed"


class EventType(Enum):
    """Unified events republished by the coordinator."""

    # Measurement events
    MEASUREMENT_COMPLETED = "measurement_completed"
    MEASUREMENT_MODIFIED = "measurement_modified"
    MEASUREMENT_REMOVED = "measurement_removed"

    # Tool state events
    TOOL_ACTIVATED = "tool_activated"
    TOOL_DEACTIVATED = "tool_deactivated"


@dataclass
class ToolSignal:
    """Tool-specific signal carrying raw geometry."""

    event_type: SignalType
    tool: ToolKind
    points: Sequence[Point] = ()
    viewport_id: str = ""
    image_id: str = ""
    record_id: Optional[str] = None
    text: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)


@dataclass
class MeasurementEvent:
    """Event published on the coordinator's unified stream."""

    event_type: EventType
    tool: Optional[ToolKind] = None
    record: Optional[AnnotationRecord] = None
    data: Optional[Dict[str, Any]] = None
    timestamp: str = field(default_factory=utc_now)

    def __post_init__(self):
        if self.data is None:
            self.data = {}


class EventEmitter:
    """
    Simple event emitter for pub/sub pattern.

    Events are dispatched by their ``event_type`` attribute; any Enum
    can be used as the key, so one class serves both raw tool signals
    and unified measurement events.
    """

    def __init__(self, name: str = "events"):
        self.name = name
        self._listeners: Dict[Enum, List[Callable]] = {}

    def on(self, event_type: Enum, callback: Callable[[Any], None]):
        """Subscribe to an event type."""
        if event_type not in self._listeners:
            self._listeners[event_type] = []
        self._listeners[event_type].append(callback)

    def off(self, event_type: Enum, callback: Callable[[Any], None]):
        """Unsubscribe from an event type."""
        if event_type in self._listeners and callback in self._listeners[event_type]:
            self._listeners[event_type].remove(callback)

    def emit(self, event):
        """Emit an event to all subscribers."""
        # Copy so listeners may unsubscribe while being called
        for callback in list(self._listeners.get(event.event_type, [])):
            try:
                callback(event)
            except Exception:
                # Log but don't crash on listener errors
                logger.exception(
                    f"Error in {self.name} listener for {event.event_type.value}"
                )

    def listener_count(self, event_type: Enum) -> int:
        return len(self._listeners.get(event_type, []))

    def clear(self):
        """Clear all event listeners."""
        self._listeners.clear()
