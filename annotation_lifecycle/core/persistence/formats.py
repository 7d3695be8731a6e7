"""
Export and import of sessions.

JSON keeps everything. CSV flattens every record to a single anchor
point and is therefore lossy: only single-point records (text labels)
can be read back; other rows are reported as skipped.
"""

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from ..annotation import AnnotationRecord, PersistenceSession, ToolKind
from ..annotation.records import utc_now

logger = logging.getLogger(__name__)

CSV_COLUMNS = ("id", "kind", "text", "x", "y", "image_id", "viewport_id", "timestamp")


class ExportFormat(Enum):
    JSON = "json"
    CSV = "csv"

    @classmethod
    def parse(cls, value) -> "ExportFormat":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unsupported format: {value!r}") from None


@dataclass
class ParsedSession:
    """Records recovered from an export, before a session id is assigned."""

    records: List[AnnotationRecord] = field(default_factory=list)
    skipped: int = 0
    metadata: Dict[str, Optional[str]] = field(default_factory=dict)
    user_id: Optional[str] = None


def export_json(session: PersistenceSession) -> str:
    return json.dumps(session.to_dict(), indent=2)


def export_csv(session: PersistenceSession) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for record in session.records:
        x, y = record.points[0] if record.points else ("", "")
        writer.writerow(
            [
                record.id,
                record.kind.value,
                record.label or "",
                x,
                y,
                record.image_id,
                record.viewport_id,
                record.timestamp,
            ]
        )
    return buffer.getvalue()


def parse_json(data: str) -> ParsedSession:
    """
    Read a JSON export.

    A payload that is not a JSON object raises ValueError; individual
    malformed records are skipped.
    """
    try:
        document = json.loads(data)
    except json.JSONDecodeError as e:
        raise ValueError(f"Import data is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise ValueError("Import data must be a JSON object")

    parsed = ParsedSession(
        metadata=dict(document.get("metadata") or {}),
        user_id=document.get("user_id"),
    )
    raw_records = document.get("records") or []
    if not isinstance(raw_records, list):
        raise ValueError("Import data has no record list")

    for index, raw in enumerate(raw_records):
        try:
            parsed.records.append(AnnotationRecord.from_dict(raw))
        except ValueError as e:
            logger.warning(f"Skipping record {index} on import: {e}")
            parsed.skipped += 1
    return parsed


def parse_csv(data: str) -> ParsedSession:
    parsed = ParsedSession()
    reader = csv.DictReader(io.StringIO(data.strip()))
    missing = set(CSV_COLUMNS) - set(reader.fieldnames or ())
    if missing:
        raise ValueError(f"CSV import is missing columns: {', '.join(sorted(missing))}")

    for line, row in enumerate(reader, start=2):
        try:
            if row["kind"] != ToolKind.TEXT.value:
                raise ValueError(f"{row['kind']} records cannot be rebuilt from CSV")
            parsed.records.append(
                AnnotationRecord(
                    id=row["id"],
                    kind=ToolKind.TEXT,
                    points=((float(row["x"]), float(row["y"])),),
                    label=row["text"] or None,
                    image_id=row["image_id"] or "",
                    viewport_id=row["viewport_id"] or "",
                    timestamp=row["timestamp"] or utc_now(),
                )
            )
        except (ValueError, TypeError) as e:
            logger.debug(f"Skipping CSV line {line}: {e}")
            parsed.skipped += 1
    return parsed


EXPORTERS = {
    ExportFormat.JSON: export_json,
    ExportFormat.CSV: export_csv,
}

PARSERS = {
    ExportFormat.JSON: parse_json,
    ExportFormat.CSV: parse_csv,
}
