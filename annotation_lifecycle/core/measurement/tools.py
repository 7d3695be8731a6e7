"""
Tool adapters turning raw surface signals into annotation records.

Each adapter listens on the coordinator's signal channel for its own
tool kind, keeps the live records it produced and publishes normalized
events on the coordinator's event channel.
"""

import json
import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from ..annotation import (
    AnnotationRecord,
    EventEmitter,
    EventType,
    MeasurementEvent,
    SignalType,
    ToolKind,
    ToolSignal,
    new_record_id,
)
from ..annotation.records import POINT_COUNTS, MIN_AREA_HANDLES, Point
from ..annotation.utils import (
    angle_between,
    bounds_from_points,
    distance,
    ellipse_area,
    ellipse_perimeter,
    rectangle_area,
    rectangle_perimeter,
    round_half_up,
    scale_points,
)

logger = logging.getLogger(__name__)


class ToolSurface:
    """
    Rendering-surface collaborator that enables tools for interaction.

    Implementations return False when the surface could not switch the
    tool.
    """

    def activate(self, kind: ToolKind) -> bool:
        raise NotImplementedError

    def deactivate(self, kind: ToolKind) -> bool:
        raise NotImplementedError


class NullSurface(ToolSurface):
    """Surface without a display; every switch succeeds."""

    def activate(self, kind: ToolKind) -> bool:
        return True

    def deactivate(self, kind: ToolKind) -> bool:
        return True


class AnnotationTool:
    """
    Base adapter for one tool kind.

    Subclasses implement ``build_record``; everything else (signal
    handling, live map, export/import) is shared.
    """

    kind: ToolKind
    default_precision = 2
    default_unit: Optional[str] = None

    def __init__(
        self,
        signals: EventEmitter,
        events: EventEmitter,
        surface: Optional[ToolSurface] = None,
        precision: Optional[int] = None,
        pixel_spacing: Tuple[float, float] = (1.0, 1.0),
        unit: Optional[str] = None,
    ):
        self.signals = signals
        self.events = events
        self.surface = surface or NullSurface()
        self.precision = self.default_precision if precision is None else precision
        self.pixel_spacing = tuple(pixel_spacing)
        self.unit = unit or self.default_unit
        self.active = False

        self._measurements: Dict[str, AnnotationRecord] = {}
        self._lock = threading.RLock()
        self._handlers: Dict[SignalType, Callable] = {
            SignalType.COMPLETED: self._on_completed,
            SignalType.MODIFIED: self._on_modified,
            SignalType.REMOVED: self._on_removed,
        }
        for signal_type, handler in self._handlers.items():
            self.signals.on(signal_type, handler)

    @property
    def name(self) -> str:
        return self.kind.value

    # Activation

    def activate(self) -> bool:
        if not self.surface.activate(self.kind):
            logger.warning(f"Surface refused to activate {self.name}")
            return False
        self.active = True
        return True

    def deactivate(self) -> bool:
        """
        Deactivate the tool.

        The tool always stops reporting itself active; the return value
        tells whether the surface confirmed the switch.
        """
        ok = self.surface.deactivate(self.kind)
        self.active = False
        if not ok:
            logger.warning(f"Surface refused to deactivate {self.name}")
        return ok

    # Record construction

    def build_record(self, signal: ToolSignal, record_id: str) -> AnnotationRecord:
        raise NotImplementedError

    def _take_points(self, signal: ToolSignal, count: int) -> Tuple[Point, ...]:
        points = tuple(signal.points)
        if len(points) != count:
            raise ValueError(f"{self.name} needs exactly {count} points, got {len(points)}")
        return points

    def _scaled(self, points) -> list:
        return [tuple(p) for p in scale_points(points, self.pixel_spacing)]

    def _round(self, value: float) -> float:
        return round_half_up(value, self.precision)

    # Signal handling

    def _on_completed(self, signal: ToolSignal):
        if signal.tool is not self.kind:
            return
        record = self._build(signal, signal.record_id or new_record_id(self.kind))
        if record is None:
            return
        with self._lock:
            self._measurements[record.id] = record
        logger.debug(f"{self.name} measurement completed: {record.id}")
        self._publish(EventType.MEASUREMENT_COMPLETED, record)

    def _on_modified(self, signal: ToolSignal):
        if signal.tool is not self.kind:
            return
        with self._lock:
            previous = self._measurements.get(signal.record_id) if signal.record_id else None
        if previous is None:
            logger.debug(f"Ignoring modification of unknown {self.name} {signal.record_id}")
            return
        record = self._build(signal, previous.id, previous)
        if record is None:
            return
        with self._lock:
            if previous.id not in self._measurements:
                return
            self._measurements[record.id] = record
        self._publish(EventType.MEASUREMENT_MODIFIED, record)

    def _on_removed(self, signal: ToolSignal):
        if signal.tool is not self.kind or not signal.record_id:
            return
        with self._lock:
            record = self._measurements.pop(signal.record_id, None)
        if record is not None:
            self._publish(EventType.MEASUREMENT_REMOVED, record)

    def _build(
        self,
        signal: ToolSignal,
        record_id: str,
        previous: Optional[AnnotationRecord] = None,
    ) -> Optional[AnnotationRecord]:
        try:
            record = self.build_record(signal, record_id)
        except (ValueError, TypeError) as e:
            logger.warning(f"Discarding malformed {self.name} signal: {e}")
            return None
        if previous is not None:
            changes = {}
            if record.label is None and previous.label is not None:
                changes["label"] = previous.label
            if not record.metadata and previous.metadata:
                changes["metadata"] = dict(previous.metadata)
            if changes:
                record = record.with_changes(**changes)
        return record

    def _publish(self, event_type: EventType, record: AnnotationRecord):
        self.events.emit(MeasurementEvent(event_type=event_type, tool=self.kind, record=record))

    def _common_fields(self, signal: ToolSignal) -> dict:
        return {
            "image_id": signal.image_id,
            "viewport_id": signal.viewport_id,
            "timestamp": signal.timestamp,
            "metadata": dict(signal.metadata),
        }

    # Live map

    def get_measurements(self) -> List[AnnotationRecord]:
        with self._lock:
            return list(self._measurements.values())

    def get_measurement(self, record_id: str) -> Optional[AnnotationRecord]:
        with self._lock:
            return self._measurements.get(record_id)

    def remove_measurement(self, record_id: str) -> Optional[AnnotationRecord]:
        with self._lock:
            return self._measurements.pop(record_id, None)

    def clear_measurements(
        self, predicate: Optional[Callable[[AnnotationRecord], bool]] = None
    ) -> List[AnnotationRecord]:
        """Remove matching records (all when no predicate); returns them."""
        with self._lock:
            removed = [r for r in self._measurements.values() if predicate is None or predicate(r)]
            for record in removed:
                del self._measurements[record.id]
        return removed

    def count(self) -> int:
        with self._lock:
            return len(self._measurements)

    def export_measurements(self) -> str:
        return json.dumps([r.to_dict() for r in self.get_measurements()], indent=2)

    def import_measurements(self, data: str) -> bool:
        """
        Replace the live map with records from ``export_measurements``.

        Records of another kind or with a malformed shape are skipped.
        """
        try:
            items = json.loads(data)
        except json.JSONDecodeError as e:
            logger.error(f"Cannot import {self.name} measurements: {e}")
            return False
        if not isinstance(items, list):
            logger.error(f"Cannot import {self.name} measurements: expected a list")
            return False

        records = []
        for item in items:
            try:
                record = AnnotationRecord.from_dict(item)
            except ValueError as e:
                logger.warning(f"Skipping {self.name} measurement on import: {e}")
                continue
            if record.kind is not self.kind:
                logger.warning(f"Skipping {record.kind.value} record in {self.name} import")
                continue
            records.append(record)

        with self._lock:
            self._measurements = {r.id: r for r in records}
        logger.info(f"Imported {len(records)} {self.name} measurements")
        return True

    def update_config(self, precision=None, pixel_spacing=None, unit=None):
        """Applies to measurements completed from now on."""
        if precision is not None:
            self.precision = precision
        if pixel_spacing is not None:
            self.pixel_spacing = tuple(pixel_spacing)
        if unit is not None:
            self.unit = unit

    def dispose(self):
        for signal_type, handler in self._handlers.items():
            self.signals.off(signal_type, handler)
        with self._lock:
            self._measurements.clear()
        self.active = False


class LengthTool(AnnotationTool):
    kind = ToolKind.LENGTH
    default_unit = "mm"

    def build_record(self, signal, record_id):
        points = self._take_points(signal, POINT_COUNTS[self.kind])
        start, end = self._scaled(points)
        return AnnotationRecord(
            id=record_id,
            kind=self.kind,
            points=points,
            value=self._round(distance(start, end)),
            unit=self.unit,
            label=signal.text,
            **self._common_fields(signal),
        )


class AngleTool(AnnotationTool):
    """Angle at the middle of three points."""

    kind = ToolKind.ANGLE
    default_precision = 1
    default_unit = "degrees"

    def build_record(self, signal, record_id):
        points = self._take_points(signal, POINT_COUNTS[self.kind])
        p1, vertex, p3 = self._scaled(points)
        return AnnotationRecord(
            id=record_id,
            kind=self.kind,
            points=points,
            value=self._round(angle_between(p1, vertex, p3, unit=self.unit)),
            unit=self.unit,
            label=signal.text,
            **self._common_fields(signal),
        )


class AreaTool(AnnotationTool):
    """
    Area enclosed by the bounding box of the handle points.

    Bounds stay in pixel coordinates; area and perimeter use the
    physical size given by the pixel spacing.
    """

    default_unit = "mm²"
    area_formula: Callable[[float, float], float]
    perimeter_formula: Callable[[float, float], float]

    def build_record(self, signal, record_id):
        points = tuple(signal.points)
        if len(points) < MIN_AREA_HANDLES:
            raise ValueError(
                f"{self.name} needs at least {MIN_AREA_HANDLES} points, got {len(points)}"
            )
        bounds = bounds_from_points(points)
        width = bounds.width * self.pixel_spacing[0]
        height = bounds.height * self.pixel_spacing[1]
        return AnnotationRecord(
            id=record_id,
            kind=self.kind,
            points=points,
            bounds=bounds,
            value=self._round(self.area_formula(width, height)),
            perimeter=self._round(self.perimeter_formula(width, height)),
            unit=self.unit,
            label=signal.text,
            **self._common_fields(signal),
        )


class EllipticalAreaTool(AreaTool):
    kind = ToolKind.ELLIPTICAL_AREA
    area_formula = staticmethod(ellipse_area)
    perimeter_formula = staticmethod(ellipse_perimeter)


class RectangularAreaTool(AreaTool):
    kind = ToolKind.RECTANGULAR_AREA
    area_formula = staticmethod(rectangle_area)
    perimeter_formula = staticmethod(rectangle_perimeter)


class TextTool(AnnotationTool):
    """Free text anchored at one point."""

    kind = ToolKind.TEXT

    def build_record(self, signal, record_id):
        return AnnotationRecord(
            id=record_id,
            kind=self.kind,
            points=self._take_points(signal, POINT_COUNTS[self.kind]),
            label=signal.text,
            **self._common_fields(signal),
        )


class ArrowTool(AnnotationTool):
    """Directional marker from a tail point to a head point."""

    kind = ToolKind.ARROW

    def build_record(self, signal, record_id):
        return AnnotationRecord(
            id=record_id,
            kind=self.kind,
            points=self._take_points(signal, POINT_COUNTS[self.kind]),
            label=signal.text,
            **self._common_fields(signal),
        )


TOOL_CLASSES = {
    ToolKind.LENGTH: LengthTool,
    ToolKind.ANGLE: AngleTool,
    ToolKind.ELLIPTICAL_AREA: EllipticalAreaTool,
    ToolKind.RECTANGULAR_AREA: RectangularAreaTool,
    ToolKind.TEXT: TextTool,
    ToolKind.ARROW: ArrowTool,
}
