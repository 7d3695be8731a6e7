"""
Backup management for persistence sessions.

Handles full snapshots of all sessions and their retention.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from ..annotation import PersistenceSession
from ..annotation.records import parse_timestamp
from .backends import BACKUP_PREFIX, StorageBackend
from .codec import PayloadCodec

logger = logging.getLogger(__name__)


class BackupReason(Enum):
    PERIODIC = "periodic"
    MANUAL = "manual"
    PRE_DELETE = "pre-delete"
    PRE_CLEAR = "pre-clear"


# Reasons counted against ``max_backups``; safety copies are aged out only
CAPPED_REASONS = (BackupReason.PERIODIC, BackupReason.MANUAL)


def backup_key(backup_id: str) -> str:
    return f"{BACKUP_PREFIX}{backup_id}"


def backup_sort_key(backup_id: str) -> Tuple[int, int]:
    """Order backup ids chronologically: ``<epoch ms>-<sequence>``."""
    millis, _, seq = backup_id.partition("-")
    try:
        return int(millis), int(seq or 0)
    except ValueError:
        return 0, 0


@dataclass
class Backup:
    """
    A snapshot of every session at capture time.

    Backups are decoded fresh from storage on each access, so changing
    a returned object never affects the stored snapshot.
    """

    backup_id: str
    timestamp: str
    reason: BackupReason
    sessions: List[PersistenceSession] = field(default_factory=list)

    @property
    def created(self) -> datetime:
        return parse_timestamp(self.timestamp)

    def to_dict(self):
        return {
            "backup_id": self.backup_id,
            "timestamp": self.timestamp,
            "reason": self.reason.value,
            "sessions": [s.to_dict() for s in self.sessions],
        }

    @classmethod
    def from_dict(cls, data: dict):
        try:
            return cls(
                backup_id=data["backup_id"],
                timestamp=data["timestamp"],
                reason=BackupReason(data["reason"]),
                sessions=[PersistenceSession.from_dict(s) for s in data["sessions"]],
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed backup: {e}") from e


class BackupManager:
    """
    Manages session backups.

    Features:
    - Capture all sessions under a time-derived id
    - Load and list backups, newest first
    - Cap periodic/manual backups by count
    - Cap every backup by age
    """

    def __init__(
        self,
        backend: StorageBackend,
        codec: PayloadCodec,
        max_backups: int = 5,
        max_age_days: int = 30,
    ):
        """
        Initialize backup manager.

        Args:
            backend: Storage backend holding ``backup-<id>`` entries
            codec: Codec used to encode snapshots
            max_backups: Number of periodic/manual backups to keep
            max_age_days: Backups older than this are removed on prune
        """
        self.backend = backend
        self.codec = codec
        self.max_backups = max_backups
        self.max_age_days = max_age_days

        self._lock = threading.Lock()
        self._last_millis = 0
        self._sequence = 0

    def _next_id(self, now: datetime) -> str:
        millis = int(now.timestamp() * 1000)
        with self._lock:
            if millis <= self._last_millis:
                # Same millisecond (or clock moved back): keep ids ordered
                millis = self._last_millis
                self._sequence += 1
            else:
                self._last_millis = millis
                self._sequence = 0
            return f"{millis}-{self._sequence:04d}"

    def create_backup(
        self,
        sessions: Sequence[PersistenceSession],
        reason: BackupReason = BackupReason.MANUAL,
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """
        Save a backup of the given sessions.

        Returns:
            The backup id, or None when the backend refused the write
        """
        now = now or datetime.now(timezone.utc)
        backup_id = self._next_id(now)
        # Another manager on the same store may have used this id already
        while self.backend.exists(backup_key(backup_id)):
            backup_id = self._next_id(now)
        backup = Backup(
            backup_id=backup_id,
            timestamp=now.isoformat(),
            reason=reason,
            sessions=[s.copy() for s in sessions],
        )
        if not self.backend.save(backup_key(backup.backup_id), self.codec.encode(backup.to_dict())):
            logger.error(f"Failed to save {reason.value} backup of {len(sessions)} sessions")
            return None

        logger.info(
            f"Saved {reason.value} backup {backup.backup_id} of {len(sessions)} sessions"
        )
        self.prune(now=now)
        return backup.backup_id

    def get_backup(self, backup_id: str) -> Optional[Backup]:
        payload = self.backend.load(backup_key(backup_id))
        if payload is None:
            return None
        try:
            return Backup.from_dict(self.codec.decode(payload))
        except ValueError as e:
            logger.error(f"Backup {backup_id} is unreadable: {e}")
            return None

    def backup_ids(self) -> List[str]:
        """Stored backup ids, newest first."""
        ids = [
            key[len(BACKUP_PREFIX):]
            for key in self.backend.list()
            if key.startswith(BACKUP_PREFIX)
        ]
        return sorted(ids, key=backup_sort_key, reverse=True)

    def list_backups(self) -> List[Backup]:
        backups = []
        for backup_id in self.backup_ids():
            backup = self.get_backup(backup_id)
            if backup is not None:
                backups.append(backup)
        return backups

    def delete_backup(self, backup_id: str) -> bool:
        return self.backend.delete(backup_key(backup_id))

    def prune(self, now: Optional[datetime] = None) -> List[str]:
        """
        Apply retention.

        Every backup older than ``max_age_days`` is removed; beyond that
        only the newest ``max_backups`` periodic/manual backups are kept.
        Unreadable backups are left alone.

        Returns:
            Ids of removed backups
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.max_age_days)

        to_remove = []
        capped_seen = 0
        for backup in self.list_backups():
            if backup.created < cutoff:
                to_remove.append(backup.backup_id)
            elif backup.reason in CAPPED_REASONS:
                capped_seen += 1
                if capped_seen > self.max_backups:
                    to_remove.append(backup.backup_id)

        removed = [backup_id for backup_id in to_remove if self.delete_backup(backup_id)]
        if removed:
            logger.info(f"Pruned {len(removed)} old backups")
        return removed
