"""
Core annotation module - UI-agnostic annotation data and events.

This module provides the canonical annotation record, the session
model that persistence stores, and the typed event channels used by
tools and the coordinator.
"""

from .records import (
    AnnotationRecord,
    Bounds,
    PersistenceSession,
    ToolKind,
    new_record_id,
)
from .events import (
    EventEmitter,
    EventType,
    MeasurementEvent,
    SignalType,
    ToolSignal,
)

__all__ = [
    "AnnotationRecord",
    "Bounds",
    "PersistenceSession",
    "ToolKind",
    "new_record_id",
    "EventEmitter",
    "EventType",
    "MeasurementEvent",
    "SignalType",
    "ToolSignal",
]
