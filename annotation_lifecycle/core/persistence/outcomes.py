"""
Result values returned by the persistence layer.

Failures are reported as values rather than exceptions so callers can
keep working while data waits in the change queue.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class ErrorKind(Enum):
    """Why a persistence operation did not fully succeed."""

    BACKEND_FAILURE = "backend_failure"
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    INVARIANT = "invariant"
    CAPACITY = "capacity"
    NO_ACTIVE_SESSION = "no_active_session"


@dataclass
class SaveOutcome:
    """
    Outcome of queuing or flushing annotation mutations.

    ``saved`` is True only when the mutations were durable when the
    call returned; with auto-save on, accepted mutations are queued
    and ``saved`` stays False until the next flush.
    """

    saved: bool
    queued: int = 0
    error: Optional[ErrorKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class FlushResult:
    """What a single pass over the change queue did."""

    skipped: bool = False
    applied: int = 0
    sessions_saved: List[str] = field(default_factory=list)
    sessions_failed: List[str] = field(default_factory=list)
    discarded: int = 0

    @property
    def ok(self) -> bool:
        return not self.sessions_failed


@dataclass
class ImportResult:
    """Outcome of importing a serialized session."""

    session_id: str
    imported: int
    skipped: int = 0
    saved: bool = True


@dataclass
class PersistenceStats:
    total_annotations: int
    total_sessions: int
    storage_used: int
    storage_limit: int
    pending_changes: int
    dirty_sessions: int
    last_saved: str
    auto_save_enabled: bool
    backup_enabled: bool


@dataclass
class StorageStats:
    """Space accounting reported by a storage backend, in characters."""

    used: int = 0
    limit: int = 0
