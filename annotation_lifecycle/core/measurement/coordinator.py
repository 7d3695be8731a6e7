"""
Measurement tool coordinator.

Owns the tool adapters and both event channels, keeps at most one
measurement tool active and answers queries over the live records.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from ..annotation import (
    AnnotationRecord,
    EventEmitter,
    EventType,
    MeasurementEvent,
    ToolKind,
)
from .tools import TOOL_CLASSES, AnnotationTool, NullSurface, ToolSurface

logger = logging.getLogger(__name__)

MEASUREMENT_ORDER = (
    ToolKind.LENGTH,
    ToolKind.ANGLE,
    ToolKind.ELLIPTICAL_AREA,
    ToolKind.RECTANGULAR_AREA,
)
ANNOTATION_ORDER = MEASUREMENT_ORDER + (ToolKind.TEXT, ToolKind.ARROW)

TOOL_ALIASES = {
    "elliptical": ToolKind.ELLIPTICAL_AREA,
    "ellipticalroi": ToolKind.ELLIPTICAL_AREA,
    "rectangle": ToolKind.RECTANGULAR_AREA,
    "rectangleroi": ToolKind.RECTANGULAR_AREA,
}


def parse_tool_name(name) -> Optional[ToolKind]:
    """Resolve a tool name or alias, case-insensitively."""
    if isinstance(name, ToolKind):
        return name
    key = str(name).strip().lower()
    try:
        return ToolKind(key)
    except ValueError:
        return TOOL_ALIASES.get(key)


class CoordinatorState(Enum):
    IDLE = "idle"
    ACTIVATING = "activating"
    ACTIVE = "active"


@dataclass
class MeasurementSummary:
    total: int = 0
    by_kind: Dict[str, int] = field(default_factory=dict)
    by_viewport: Dict[str, int] = field(default_factory=dict)
    by_image: Dict[str, int] = field(default_factory=dict)

    def to_dict(self):
        return {
            "total": self.total,
            "by_kind": dict(self.by_kind),
            "by_viewport": dict(self.by_viewport),
            "by_image": dict(self.by_image),
        }


class MeasurementToolCoordinator:
    """
    Single-active-tool coordination over the measurement tools.

    Rendering surfaces publish ``ToolSignal`` objects on ``signals``;
    tool adapters normalize them into records and the unified stream
    of ``MeasurementEvent`` objects is published on ``events``.

    Text and arrow tools are not part of the mutual-exclusion group and
    can be active next to a measurement tool.
    """

    def __init__(
        self,
        surface: Optional[ToolSurface] = None,
        enabled_tools: Optional[Iterable] = None,
        tool_config: Optional[Dict[str, dict]] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            surface: Rendering surface that switches tools on and off
            enabled_tools: Names of tools to register (all by default)
            tool_config: Per-tool keyword arguments keyed by tool name,
                e.g. ``{"length": {"precision": 3}}``
        """
        self.signals = EventEmitter("tool signals")
        self.events = EventEmitter("measurement events")
        self.surface = surface or NullSurface()

        if enabled_tools is None:
            enabled = set(ANNOTATION_ORDER)
        else:
            enabled = set()
            for name in enabled_tools:
                kind = parse_tool_name(name)
                if kind is None:
                    raise ValueError(f"Unknown tool: {name}")
                enabled.add(kind)

        tool_config = tool_config or {}
        self.tools: Dict[ToolKind, AnnotationTool] = {}
        for kind in ANNOTATION_ORDER:
            if kind in enabled:
                self.tools[kind] = TOOL_CLASSES[kind](
                    self.signals,
                    self.events,
                    surface=self.surface,
                    **tool_config.get(kind.value, {}),
                )

        self._state = CoordinatorState.IDLE
        self._active: Optional[ToolKind] = None
        self._lock = threading.RLock()

    @property
    def state(self) -> CoordinatorState:
        return self._state

    def _resolve(self, name) -> Optional[AnnotationTool]:
        kind = parse_tool_name(name)
        if kind is None:
            logger.error(f"Unknown tool: {name}")
            return None
        tool = self.tools.get(kind)
        if tool is None:
            logger.error(f"Tool {kind.value} is not registered")
        return tool

    def _ordered(self, order) -> List[AnnotationTool]:
        return [self.tools[kind] for kind in order if kind in self.tools]

    def _publish_tool_event(self, event_type: EventType, kind: ToolKind, **data):
        self.events.emit(MeasurementEvent(event_type=event_type, tool=kind, data=data))

    # Activation

    def activate_tool(self, name) -> bool:
        """
        Activate a tool.

        For measurement tools every other measurement tool is
        deactivated first. If the requested tool then fails to activate
        the previously active tool is restored.
        """
        tool = self._resolve(name)
        if tool is None:
            return False

        with self._lock:
            if not tool.kind.is_measurement:
                if tool.active:
                    return True
                if tool.activate():
                    self._publish_tool_event(EventType.TOOL_ACTIVATED, tool.kind)
                    return True
                return False

            if self._active is tool.kind and tool.active:
                return True

            previous = self._active
            self._state = CoordinatorState.ACTIVATING
            for other in self._ordered(MEASUREMENT_ORDER):
                if other is tool or not other.active:
                    continue
                if not other.deactivate():
                    logger.warning(f"Deactivating {other.name} failed, activating {tool.name} anyway")
                self._publish_tool_event(EventType.TOOL_DEACTIVATED, other.kind)

            if tool.activate():
                self._active = tool.kind
                self._state = CoordinatorState.ACTIVE
                logger.info(f"Activated measurement tool {tool.name}")
                self._publish_tool_event(
                    EventType.TOOL_ACTIVATED,
                    tool.kind,
                    previous=previous.value if previous else None,
                )
                return True

            logger.error(f"Failed to activate {tool.name}")
            self._rollback(previous)
            return False

    def _rollback(self, previous: Optional[ToolKind]):
        if previous is not None and self.tools[previous].activate():
            self._active = previous
            self._state = CoordinatorState.ACTIVE
            self._publish_tool_event(EventType.TOOL_ACTIVATED, previous, restored=True)
            return
        if previous is not None:
            logger.error(f"Could not restore {previous.value} after failed activation")
        self._active = None
        self._state = CoordinatorState.IDLE

    def deactivate_tool(self, name) -> bool:
        tool = self._resolve(name)
        if tool is None:
            return False

        with self._lock:
            was_active = tool.active
            ok = tool.deactivate()
            if tool.kind is self._active:
                self._active = None
                self._state = CoordinatorState.IDLE
            if was_active:
                self._publish_tool_event(EventType.TOOL_DEACTIVATED, tool.kind)
            return ok

    def deactivate_all(self) -> bool:
        """Return the measurement group to idle; False if any surface switch failed."""
        with self._lock:
            ok = True
            for tool in self._ordered(MEASUREMENT_ORDER):
                if tool.active:
                    ok = tool.deactivate() and ok
                    self._publish_tool_event(EventType.TOOL_DEACTIVATED, tool.kind)
            self._active = None
            self._state = CoordinatorState.IDLE
            return ok

    def get_active_tool(self) -> Optional[str]:
        with self._lock:
            return self._active.value if self._active else None

    def is_tool_active(self, name) -> bool:
        tool = self._resolve(name)
        return tool is not None and tool.active

    # Queries

    def get_all_measurements(self) -> List[AnnotationRecord]:
        """Live measurement records in fixed tool order."""
        records = []
        for tool in self._ordered(MEASUREMENT_ORDER):
            records.extend(tool.get_measurements())
        return records

    def get_all_annotations(self) -> List[AnnotationRecord]:
        """Measurements followed by text and arrow annotations."""
        records = []
        for tool in self._ordered(ANNOTATION_ORDER):
            records.extend(tool.get_measurements())
        return records

    def get_measurement(self, record_id: str) -> Optional[AnnotationRecord]:
        for tool in self._ordered(ANNOTATION_ORDER):
            record = tool.get_measurement(record_id)
            if record is not None:
                return record
        return None

    def get_measurements_by_kind(self, name) -> List[AnnotationRecord]:
        tool = self._resolve(name)
        return tool.get_measurements() if tool is not None else []

    def get_measurements_by_viewport(self, viewport_id: str) -> List[AnnotationRecord]:
        return [r for r in self.get_all_measurements() if r.viewport_id == viewport_id]

    def get_measurements_by_image(self, image_id: str) -> List[AnnotationRecord]:
        return [r for r in self.get_all_measurements() if r.image_id == image_id]

    def get_measurement_summary(self) -> MeasurementSummary:
        """Counts computed fresh from the live records on every call."""
        summary = MeasurementSummary(by_kind={kind.value: 0 for kind in MEASUREMENT_ORDER})
        for record in self.get_all_measurements():
            summary.total += 1
            summary.by_kind[record.kind.value] += 1
            summary.by_viewport[record.viewport_id] = summary.by_viewport.get(record.viewport_id, 0) + 1
            summary.by_image[record.image_id] = summary.by_image.get(record.image_id, 0) + 1
        return summary

    # Removal

    def remove_measurement(self, record_id: str) -> bool:
        """Remove a record from the first tool that owns it."""
        for tool in self._ordered(ANNOTATION_ORDER):
            record = tool.remove_measurement(record_id)
            if record is not None:
                self.events.emit(
                    MeasurementEvent(
                        event_type=EventType.MEASUREMENT_REMOVED, tool=tool.kind, record=record
                    )
                )
                return True
        return False

    def _clear(self, tools: List[AnnotationTool], predicate: Optional[Callable] = None) -> int:
        removed = 0
        for tool in tools:
            for record in tool.clear_measurements(predicate):
                removed += 1
                self.events.emit(
                    MeasurementEvent(
                        event_type=EventType.MEASUREMENT_REMOVED, tool=tool.kind, record=record
                    )
                )
        return removed

    def clear_all_measurements(self) -> int:
        return self._clear(self._ordered(MEASUREMENT_ORDER))

    def clear_measurements_by_kind(self, name) -> int:
        tool = self._resolve(name)
        return self._clear([tool]) if tool is not None else 0

    def clear_measurements_by_viewport(self, viewport_id: str) -> int:
        return self._clear(
            self._ordered(MEASUREMENT_ORDER), lambda r: r.viewport_id == viewport_id
        )

    def clear_measurements_by_image(self, image_id: str) -> int:
        return self._clear(self._ordered(MEASUREMENT_ORDER), lambda r: r.image_id == image_id)

    # Export / import

    def export_all_measurements(self) -> str:
        return json.dumps(
            {
                tool.name: [r.to_dict() for r in tool.get_measurements()]
                for tool in self._ordered(MEASUREMENT_ORDER)
            },
            indent=2,
        )

    def import_measurements(self, data: str) -> bool:
        """Load an ``export_all_measurements`` document into the matching tools."""
        try:
            document = json.loads(data)
        except json.JSONDecodeError as e:
            logger.error(f"Cannot import measurements: {e}")
            return False
        if not isinstance(document, dict):
            logger.error("Cannot import measurements: expected an object keyed by tool")
            return False

        ok = True
        for name, items in document.items():
            tool = self._resolve(name)
            if tool is None:
                ok = False
                continue
            ok = tool.import_measurements(json.dumps(items)) and ok
        return ok

    def dispose(self):
        """Deactivate everything and drop tools and listeners."""
        self.deactivate_all()
        for tool in self.tools.values():
            tool.dispose()
        self.signals.clear()
        self.events.clear()
