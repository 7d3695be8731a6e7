"""
Annotation persistence facade.

Entry point used by the coordinator layer and by UIs to create
sessions, queue annotation changes, export/import and manage backups.
"""

import copy
import logging
import threading
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Set

from easydict import EasyDict as edict

from ..annotation import AnnotationRecord, PersistenceSession
from ..annotation.records import parse_timestamp, utc_now
from .backends import StorageBackend, create_backend
from .backup_manager import Backup, BackupManager, BackupReason
from .change_queue import ChangeQueue, Mutation, MutationKind
from .codec import PayloadCodec
from .config import get_default_persistence_config, merge_config, resolve_backend_spec
from .formats import EXPORTERS, PARSERS, ExportFormat
from .outcomes import ErrorKind, FlushResult, ImportResult, PersistenceStats, SaveOutcome
from .scheduler import PeriodicTask
from .session_store import SessionStore

logger = logging.getLogger(__name__)


def apply_mutations(session: PersistenceSession, mutations: Iterable[Mutation]) -> int:
    """
    Apply mutations to ``session`` in order.

    An upsert replaces the record with the same id in place and appends
    otherwise; removing an unknown id does nothing.
    """
    applied = 0
    for mutation in mutations:
        index = session.find_record(mutation.record_id)
        if mutation.kind is MutationKind.UPSERT:
            if index is None:
                session.records.append(mutation.record)
            else:
                session.records[index] = mutation.record
            applied += 1
        elif index is not None:
            del session.records[index]
            applied += 1
    return applied


class AnnotationPersistence:
    """
    Session-oriented persistence with batched writes and backups.

    Annotation changes go through an in-memory change queue which is
    flushed into whole-session writes, either by the auto-save timer or
    synchronously when auto-save is disabled. A failed write leaves the
    queue intact and the session dirty; nothing is dropped.
    """

    def __init__(
        self,
        config: Optional[dict] = None,
        backend: Optional[StorageBackend] = None,
        autostart: bool = True,
    ):
        """
        Initialize the persistence engine.

        Args:
            config: Full configuration tree, or a partial dict merged
                onto the defaults
            backend: Storage backend to use instead of the configured one
            autostart: Start the auto-save/backup timers right away
        """
        self.config = get_default_persistence_config()
        if config:
            merge_config(self.config, config)

        self.backend = backend or create_backend(resolve_backend_spec(self.config))
        self.codec = PayloadCodec(compress=bool(self.config.compression))
        self.store = SessionStore(self.backend, self.codec)
        self.queue = ChangeQueue()
        self.backups = BackupManager(
            self.backend,
            self.codec,
            max_backups=int(self.config.backup.max_backups),
            max_age_days=int(self.config.backup.max_age_days),
        )

        self._auto_save_task = PeriodicTask(
            "auto-save", float(self.config.auto_save.interval), self._auto_save_tick
        )
        self._backup_task = PeriodicTask(
            "backup", float(self.config.backup.interval), self._backup_tick
        )

        self._lock = threading.RLock()
        self._current_session_id: Optional[str] = None
        self._deleted_ids: Set[str] = set()
        self._last_saved: Optional[str] = None
        self._started = False

        logger.info(f"Annotation persistence using {self.backend.kind.value} storage")
        if autostart:
            self.start()

    # Timers

    def start(self):
        """Arm the auto-save and backup timers that are enabled."""
        with self._lock:
            self._started = True
            self._arm_timers()

    def stop(self):
        with self._lock:
            self._started = False
            self._auto_save_task.stop()
            self._backup_task.stop()

    def _arm_timers(self):
        # Clear-then-reset so reconfiguring never stacks timers
        self._auto_save_task.stop()
        self._backup_task.stop()
        if self.config.auto_save.enabled:
            self._auto_save_task.restart(float(self.config.auto_save.interval))
        if self.config.backup.enabled:
            self._backup_task.restart(float(self.config.backup.interval))

    def _auto_save_tick(self):
        self.process_change_queue()

    def _backup_tick(self):
        self.create_backup(BackupReason.PERIODIC)

    # Sessions

    def create_session(
        self, metadata: Optional[Dict[str, Optional[str]]] = None, user_id: Optional[str] = None
    ) -> str:
        """
        Create a session and make it current.

        The session is usable even if the first write fails; it then
        stays dirty until a flush persists it.
        """
        session = PersistenceSession(
            session_id=uuid.uuid4().hex,
            user_id=user_id,
            metadata=dict(metadata or {}),
        )
        session.refresh_summary()
        with self._lock:
            self.store.put(session, dirty=True)
            self._current_session_id = session.session_id

        if self.store.save(session):
            self._last_saved = utc_now()
            logger.info(f"Created session {session.session_id}")
        else:
            logger.warning(f"Session {session.session_id} created but not yet durable")
        return session.session_id

    def load_session(self, session_id: str) -> Optional[PersistenceSession]:
        """Load a session and make it current; returns a copy or None."""
        session = self.store.load(session_id)
        if session is None:
            return None
        with self._lock:
            self._current_session_id = session_id
        return session.copy()

    def save_session(self, session: PersistenceSession) -> bool:
        snapshot = session.copy()
        with self._lock:
            known = self.store.load(session.session_id)
            if known is not None:
                # Versions never go backwards for a session id
                snapshot.version = max(snapshot.version, known.version)
                if self.config.versioning:
                    snapshot.version += 1
            ok = self.store.save(snapshot)
            if ok:
                self._deleted_ids.discard(snapshot.session_id)
                self._last_saved = utc_now()
        return ok

    def delete_session(self, session_id: str) -> bool:
        """
        Delete a session after backing up every session.

        Pending changes for the session are flushed first so the backup
        holds its latest content. The backup is taken even if the
        removal then fails. Runs under the flush guard, so a flush that
        is already writing the session finishes before it is removed.
        """
        with self.queue.flushing(blocking=True):
            if not self.store.exists(session_id):
                logger.warning(f"Cannot delete unknown session {session_id}")
                return False

            if self.queue.pending_for(session_id):
                self._flush_pending()

            if self.create_backup(BackupReason.PRE_DELETE) is None:
                logger.warning(f"No pre-delete backup could be taken for {session_id}")

            with self._lock:
                if not self.store.delete(session_id):
                    logger.error(f"Failed to delete session {session_id}")
                    return False
                self._deleted_ids.add(session_id)
                if self._current_session_id == session_id:
                    self._current_session_id = None

            dropped = self.queue.drop_session(session_id)
        if dropped:
            logger.warning(f"Dropped {dropped} queued changes of deleted session {session_id}")
        logger.info(f"Deleted session {session_id}")
        return True

    def get_sessions(self) -> List[PersistenceSession]:
        return [s.copy() for s in self.store.all_sessions()]

    def get_current_session(self) -> Optional[PersistenceSession]:
        with self._lock:
            session_id = self._current_session_id
        if session_id is None:
            return None
        session = self.store.load(session_id)
        return session.copy() if session is not None else None

    def is_dirty(self, session_id: str) -> bool:
        """True while the session has changes that are not durable yet."""
        return self.store.is_dirty(session_id) or bool(self.queue.pending_for(session_id))

    def cleanup_old_sessions(self, now: Optional[datetime] = None) -> List[str]:
        """
        Delete sessions not updated within ``retention_days``.

        Each deletion goes through ``delete_session`` and so gets its own
        pre-delete backup.

        Returns:
            Ids of deleted sessions
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=float(self.config.retention_days))
        deleted = []
        for session in self.store.all_sessions():
            try:
                updated = parse_timestamp(session.updated_at)
            except ValueError:
                logger.warning(
                    f"Session {session.session_id} has an unreadable timestamp, keeping it"
                )
                continue
            if updated < cutoff and self.delete_session(session.session_id):
                deleted.append(session.session_id)
        if deleted:
            logger.info(f"Retention sweep removed {len(deleted)} sessions")
        return deleted

    def clear_sessions(self) -> bool:
        """Remove every session after taking a pre-clear backup."""
        with self.queue.flushing(blocking=True):
            if self.create_backup(BackupReason.PRE_CLEAR) is None:
                logger.warning("No pre-clear backup could be taken")

            ok = True
            with self._lock:
                for session_id in self.store.session_ids():
                    if self.store.delete(session_id):
                        self._deleted_ids.add(session_id)
                    else:
                        ok = False
                self._current_session_id = None
            dropped = self.queue.clear()
        if dropped:
            logger.warning(f"Dropped {dropped} queued changes while clearing sessions")
        return ok

    # Annotations

    def save_annotation(self, record: AnnotationRecord) -> SaveOutcome:
        return self.save_annotations([record])

    def save_annotations(self, records: Iterable[AnnotationRecord]) -> SaveOutcome:
        """
        Queue records for the current session.

        With auto-save enabled this returns as soon as the records are
        queued; otherwise the queue is flushed before returning and
        ``saved`` tells whether the records are durable.
        """
        records = list(records)
        for record in records:
            if not isinstance(record, AnnotationRecord):
                return SaveOutcome(
                    saved=False,
                    error=ErrorKind.VALIDATION,
                    message=f"Not an annotation record: {record!r}",
                )

        with self._lock:
            session_id = self._current_session_id
            if session_id is None:
                return SaveOutcome(
                    saved=False, error=ErrorKind.NO_ACTIVE_SESSION, message="No active session"
                )
            session = self.store.load(session_id)
            if session is None:
                return SaveOutcome(
                    saved=False,
                    error=ErrorKind.BACKEND_FAILURE,
                    message=f"Current session {session_id} could not be loaded",
                )

            mutations = [Mutation.upsert(session_id, r) for r in records]
            projected = self._projected_ids(session, mutations)
            limit = int(self.config.max_annotations)
            if limit and len(projected) > limit:
                return SaveOutcome(
                    saved=False,
                    error=ErrorKind.CAPACITY,
                    message=f"Session {session_id} would exceed {limit} annotations",
                )
            self.queue.extend(mutations)

        return self._after_enqueue(session_id, len(mutations))

    def remove_annotation(self, record_id: str) -> SaveOutcome:
        with self._lock:
            session_id = self._current_session_id
            if session_id is None:
                return SaveOutcome(
                    saved=False, error=ErrorKind.NO_ACTIVE_SESSION, message="No active session"
                )
            session = self.store.load(session_id)
            if session is None:
                return SaveOutcome(
                    saved=False,
                    error=ErrorKind.BACKEND_FAILURE,
                    message=f"Current session {session_id} could not be loaded",
                )
            if record_id not in self._projected_ids(session, []):
                return SaveOutcome(
                    saved=False,
                    error=ErrorKind.INVARIANT,
                    message=f"No annotation {record_id} in session {session_id}",
                )
            self.queue.extend([Mutation.remove(session_id, record_id)])

        return self._after_enqueue(session_id, 1)

    def load_annotations(self, session_id: Optional[str] = None) -> List[AnnotationRecord]:
        """Records of a session (the current one by default), excluding queued changes."""
        session_id = session_id or self._current_session_id
        if session_id is None:
            return []
        session = self.store.load(session_id)
        return list(session.records) if session is not None else []

    def _projected_ids(self, session: PersistenceSession, mutations: List[Mutation]) -> Set[str]:
        """Record ids the session will hold once queued and given mutations apply."""
        ids = {r.id for r in session.records}
        for mutation in self.queue.pending_for(session.session_id) + mutations:
            if mutation.kind is MutationKind.UPSERT:
                ids.add(mutation.record_id)
            else:
                ids.discard(mutation.record_id)
        return ids

    def _after_enqueue(self, session_id: str, queued: int) -> SaveOutcome:
        if self.config.auto_save.enabled:
            return SaveOutcome(saved=False, queued=queued)

        result = self.process_change_queue()
        if result.skipped:
            # A running flush owns the queue; these changes go in the next one
            return SaveOutcome(saved=False, queued=queued)
        if session_id in result.sessions_failed:
            return SaveOutcome(
                saved=False,
                queued=queued,
                error=ErrorKind.BACKEND_FAILURE,
                message=f"Session {session_id} could not be saved",
            )
        return SaveOutcome(saved=True, queued=queued)

    # Flushing

    def process_change_queue(self) -> FlushResult:
        """Flush queued changes; skipped while another flush is running."""
        return self._flush(blocking=False)

    def force_save(self) -> SaveOutcome:
        """Flush everything now, waiting for a running flush to finish first."""
        result = self._flush(blocking=True)
        if not result.ok:
            return SaveOutcome(
                saved=False,
                queued=len(self.queue),
                error=ErrorKind.BACKEND_FAILURE,
                message=f"Failed to save sessions: {', '.join(result.sessions_failed)}",
            )
        return SaveOutcome(saved=True, queued=result.applied)

    def _flush(self, blocking: bool) -> FlushResult:
        with self.queue.flushing(blocking=blocking) as owner:
            if not owner:
                logger.debug("Flush already running, skipping")
                return FlushResult(skipped=True)
            return self._flush_pending()

    def _flush_pending(self) -> FlushResult:
        # Caller holds the flush guard
        batch = self.queue.snapshot()
        dirty = self.store.dirty_ids()
        if not batch and not dirty:
            return FlushResult()

        grouped: Dict[str, List[Mutation]] = OrderedDict()
        for mutation in batch:
            grouped.setdefault(mutation.session_id, []).append(mutation)
        for session_id in dirty:
            grouped.setdefault(session_id, [])

        result = FlushResult()
        for session_id, mutations in grouped.items():
            self._flush_session(session_id, mutations, result)

        if result.sessions_saved or result.sessions_failed:
            logger.debug(
                f"Flushed {result.applied} changes, saved {len(result.sessions_saved)} "
                f"sessions, {len(result.sessions_failed)} failed"
            )
        return result

    def _flush_session(self, session_id: str, mutations: List[Mutation], result: FlushResult):
        if session_id in self._deleted_ids:
            result.discarded += self.queue.discard(mutations)
            logger.warning(
                f"Discarded {len(mutations)} changes queued for deleted session {session_id}"
            )
            return

        base = self.store.load(session_id)
        if base is None:
            logger.error(f"Session {session_id} could not be loaded, keeping its changes queued")
            result.sessions_failed.append(session_id)
            return

        updated = base.copy()
        applied = apply_mutations(updated, mutations)
        if mutations:
            updated.updated_at = utc_now()
            if self.config.versioning:
                updated.version = base.version + 1

        if self.store.save(updated):
            self.queue.discard(mutations)
            result.applied += applied
            result.sessions_saved.append(session_id)
            self._last_saved = utc_now()
        else:
            self.store.mark_dirty(session_id)
            result.sessions_failed.append(session_id)

    # Backups

    def create_backup(self, reason: BackupReason = BackupReason.MANUAL) -> Optional[str]:
        """Snapshot every known session; returns the backup id or None."""
        return self.backups.create_backup(self.store.all_sessions(), reason)

    def list_backups(self) -> List[Backup]:
        return self.backups.list_backups()

    def get_backup(self, backup_id: str) -> Optional[Backup]:
        return self.backups.get_backup(backup_id)

    def restore_backup(self, backup_id: str) -> bool:
        """
        Replace the in-memory sessions with those of a backup.

        Every restored session is written back. Version counters keep
        growing: a restored session gets a version above any version
        already seen for its id. Sessions missing from the backup are
        dropped from memory but stay in storage.
        """
        backup = self.backups.get_backup(backup_id)
        if backup is None:
            logger.error(f"Backup not found: {backup_id}")
            return False

        with self.queue.flushing(blocking=True):
            self._flush_pending()
            known_versions = {s.session_id: s.version for s in self.store.all_sessions()}

            ok = True
            with self._lock:
                self.store.clear_cache()
                self._current_session_id = None
                for session in backup.sessions:
                    restored = session.copy()
                    if session.session_id in known_versions:
                        restored.version = max(
                            restored.version, known_versions[session.session_id] + 1
                        )
                    self._deleted_ids.discard(restored.session_id)
                    self.store.put(restored, dirty=True)
                    if not self.store.save(restored):
                        ok = False

        logger.info(f"Restored {len(backup.sessions)} sessions from backup {backup_id}")
        return ok

    # Export / import

    def export_session(self, session_id: str, format="json") -> str:
        """
        Serialize a session after flushing pending changes.

        Raises:
            ValueError: If the format is not supported
            KeyError: If the session does not exist
        """
        export_format = ExportFormat.parse(format)
        self.force_save()
        session = self.store.load(session_id)
        if session is None:
            raise KeyError(f"Unknown session {session_id}")
        return EXPORTERS[export_format](session)

    def import_session(self, data: str, format="json") -> ImportResult:
        """
        Import serialized records into a new session.

        The new session always gets a fresh id. Malformed records are
        skipped and counted.

        Raises:
            ValueError: If the format is unsupported or the document
                itself cannot be read
        """
        export_format = ExportFormat.parse(format)
        parsed = PARSERS[export_format](data)

        records: List[AnnotationRecord] = []
        seen: Set[str] = set()
        skipped = parsed.skipped
        limit = int(self.config.max_annotations)
        for record in parsed.records:
            if record.id in seen or (limit and len(records) >= limit):
                skipped += 1
                continue
            seen.add(record.id)
            records.append(record)

        session = PersistenceSession(
            session_id=uuid.uuid4().hex,
            user_id=parsed.user_id,
            records=records,
            metadata=parsed.metadata,
        )
        self.store.put(session, dirty=True)
        saved = self.store.save(session)
        if saved:
            self._last_saved = utc_now()
        logger.info(
            f"Imported {len(records)} records into session {session.session_id} "
            f"({skipped} skipped)"
        )
        return ImportResult(
            session_id=session.session_id, imported=len(records), skipped=skipped, saved=saved
        )

    # Status and configuration

    def get_stats(self) -> PersistenceStats:
        sessions = self.store.all_sessions()
        storage = self.backend.get_stats()
        return PersistenceStats(
            total_annotations=sum(len(s.records) for s in sessions),
            total_sessions=len(sessions),
            storage_used=storage.used,
            storage_limit=storage.limit,
            pending_changes=len(self.queue),
            dirty_sessions=len(self.store.dirty_ids()),
            last_saved=self._last_saved or "",
            auto_save_enabled=bool(self.config.auto_save.enabled),
            backup_enabled=bool(self.config.backup.enabled),
        )

    def get_config(self) -> edict:
        return copy.deepcopy(self.config)

    def update_config(self, **changes):
        """
        Patch the configuration and re-arm timers.

        The storage backend is chosen once at construction; backend
        changes are ignored.
        """
        if "backend" in changes:
            logger.warning("Storage backend cannot change after start, ignoring")
            changes.pop("backend")

        with self._lock:
            merge_config(self.config, changes)
            self.codec.compress = bool(self.config.compression)
            self.backups.max_backups = int(self.config.backup.max_backups)
            self.backups.max_age_days = int(self.config.backup.max_age_days)
            self._auto_save_task.interval = float(self.config.auto_save.interval)
            self._backup_task.interval = float(self.config.backup.interval)
            if self._started:
                self._arm_timers()

    def dispose(self):
        """Flush, stop timers and release the backend."""
        outcome = self.force_save()
        if not outcome.saved:
            logger.error(f"Disposing with {len(self.queue)} unsaved changes")
        self.stop()
        self.queue.clear()
        self.store.clear_cache()
        with self._lock:
            self._current_session_id = None
        self.backend.close()
