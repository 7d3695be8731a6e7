"""
Data model for annotations and persistence sessions.

Contains the canonical, tool-agnostic annotation record and the
session that groups records for one viewing context.
"""

import copy
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

Point = Tuple[float, float]


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, assuming UTC when no offset is given."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ToolKind(Enum):
    """Closed set of tools able to produce an annotation record."""

    TEXT = "text"
    ARROW = "arrow"
    LENGTH = "length"
    ANGLE = "angle"
    ELLIPTICAL_AREA = "elliptical-area"
    RECTANGULAR_AREA = "rectangular-area"

    @property
    def is_measurement(self) -> bool:
        return self not in (ToolKind.TEXT, ToolKind.ARROW)

    @property
    def is_area(self) -> bool:
        return self in (ToolKind.ELLIPTICAL_AREA, ToolKind.RECTANGULAR_AREA)


# Exact number of points each kind carries; area kinds carry handles
# (at least two) plus a bounding region.
POINT_COUNTS = {
    ToolKind.TEXT: 1,
    ToolKind.ARROW: 2,
    ToolKind.LENGTH: 2,
    ToolKind.ANGLE: 3,
}
MIN_AREA_HANDLES = 2


@dataclass(frozen=True)
class Bounds:
    """Axis-aligned bounding region."""

    left: float
    top: float
    width: float
    height: float

    def to_dict(self):
        return {
            "left": self.left,
            "top": self.top,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, data: dict):
        return cls(
            left=float(data["left"]),
            top=float(data["top"]),
            width=float(data["width"]),
            height=float(data["height"]),
        )


def new_record_id(kind: ToolKind) -> str:
    return f"{kind.value}-{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class AnnotationRecord:
    """
    One measurement or label, independent of the tool that produced it.

    Records are immutable: a modification produces a new record with the
    same id. The geometry shape is validated against the tool kind.
    """

    id: str
    kind: ToolKind
    points: Tuple[Point, ...]
    image_id: str = ""
    viewport_id: str = ""
    timestamp: str = field(default_factory=utc_now)
    bounds: Optional[Bounds] = None
    value: Optional[float] = None
    unit: Optional[str] = None
    perimeter: Optional[float] = None
    label: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.id:
            raise ValueError("Annotation record requires an id")
        if not isinstance(self.kind, ToolKind):
            raise ValueError(f"Unknown tool kind: {self.kind!r}")
        try:
            points = tuple((float(x), float(y)) for x, y in self.points)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Malformed point: {e}") from e
        object.__setattr__(self, "points", points)

        if self.kind.is_area:
            if len(points) < MIN_AREA_HANDLES:
                raise ValueError(
                    f"{self.kind.value} record needs at least "
                    f"{MIN_AREA_HANDLES} points, got {len(points)}"
                )
            if self.bounds is None:
                raise ValueError(f"{self.kind.value} record needs bounds")
        elif len(points) != POINT_COUNTS[self.kind]:
            raise ValueError(
                f"{self.kind.value} record needs exactly "
                f"{POINT_COUNTS[self.kind]} points, got {len(points)}"
            )

    def with_changes(self, **changes) -> "AnnotationRecord":
        """Return a modified copy; id and kind cannot change."""
        if "id" in changes or "kind" in changes:
            raise ValueError("id and kind of a record are immutable")
        return replace(self, **changes)

    def to_dict(self):
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "points": [list(p) for p in self.points],
            "bounds": self.bounds.to_dict() if self.bounds else None,
            "value": self.value,
            "unit": self.unit,
            "perimeter": self.perimeter,
            "label": self.label,
            "image_id": self.image_id,
            "viewport_id": self.viewport_id,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict):
        """
        Create from dictionary.

        Raises:
            ValueError: If required fields are missing or malformed
        """
        try:
            kind = ToolKind(data["kind"])
            points = [(p[0], p[1]) for p in data["points"]]
            record_id = data["id"]
            bounds = data.get("bounds")
            bounds = Bounds.from_dict(bounds) if bounds else None
            metadata = dict(data.get("metadata") or {})
        except (KeyError, TypeError, IndexError, AttributeError, ValueError) as e:
            raise ValueError(f"Malformed annotation record: {e}") from e

        return cls(
            id=record_id,
            kind=kind,
            points=tuple(points),
            image_id=data.get("image_id") or "",
            viewport_id=data.get("viewport_id") or "",
            timestamp=data.get("timestamp") or utc_now(),
            bounds=bounds,
            value=data.get("value"),
            unit=data.get("unit"),
            perimeter=data.get("perimeter"),
            label=data.get("label"),
            metadata=metadata,
        )


SESSION_METADATA_KEYS = ("viewport_id", "image_id", "study_id", "series_id", "patient_id")


@dataclass
class PersistenceSession:
    """
    A versioned, ordered collection of records tied to a viewing context.

    Insertion order of records is significant (exports reproduce it).
    The version counter only grows for the lifetime of a session id.
    """

    session_id: str
    user_id: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    records: List[AnnotationRecord] = field(default_factory=list)
    metadata: Dict[str, Optional[str]] = field(default_factory=dict)
    summary: Dict[str, Any] = field(default_factory=dict)
    version: int = 1

    def refresh_summary(self):
        """Recompute record count and distinct tool kinds."""
        kinds = []
        for record in self.records:
            if record.kind.value not in kinds:
                kinds.append(record.kind.value)
        self.summary = {"record_count": len(self.records), "tool_kinds": kinds}

    def find_record(self, record_id: str) -> Optional[int]:
        """Index of the record with this id, or None."""
        for index, record in enumerate(self.records):
            if record.id == record_id:
                return index
        return None

    def copy(self) -> "PersistenceSession":
        # Records are frozen, so a shallow copy of the list suffices for them
        return PersistenceSession(
            session_id=self.session_id,
            user_id=self.user_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            records=list(self.records),
            metadata=dict(self.metadata),
            summary=copy.deepcopy(self.summary),
            version=self.version,
        )

    def to_dict(self):
        """Convert to dictionary for serialization."""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
            "metadata": dict(self.metadata),
            "summary": copy.deepcopy(self.summary),
            "records": [r.to_dict() for r in self.records],
        }

    @classmethod
    def from_dict(cls, data: dict):
        """Create from dictionary; malformed records raise ValueError."""
        try:
            session_id = data["session_id"]
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed session: {e}") from e
        return cls(
            session_id=session_id,
            user_id=data.get("user_id"),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
            records=[AnnotationRecord.from_dict(r) for r in data.get("records", [])],
            metadata=dict(data.get("metadata") or {}),
            summary=dict(data.get("summary") or {}),
            version=int(data.get("version", 1)),
        )
