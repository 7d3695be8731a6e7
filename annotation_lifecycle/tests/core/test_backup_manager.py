"""
Tests for backup creation, listing and retention.
"""

from datetime import datetime, timedelta, timezone

import pytest

from annotation_lifecycle.core.annotation import PersistenceSession
from annotation_lifecycle.core.persistence import BackupManager, BackupReason, MemoryBackend
from annotation_lifecycle.core.persistence.backup_manager import backup_key, backup_sort_key
from annotation_lifecycle.core.persistence.codec import PayloadCodec
from annotation_lifecycle.tests.conftest import make_record

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def manager(backend):
    return BackupManager(backend, PayloadCodec(), max_backups=2, max_age_days=30)


@pytest.fixture
def sessions():
    return [
        PersistenceSession(session_id="s1", records=[make_record()]),
        PersistenceSession(session_id="s2"),
    ]


def at(minutes):
    return NOW + timedelta(minutes=minutes)


class TestCreateBackup:
    def test_backup_holds_every_session(self, manager, sessions):
        backup_id = manager.create_backup(sessions, BackupReason.MANUAL, now=NOW)
        backup = manager.get_backup(backup_id)
        assert backup.reason is BackupReason.MANUAL
        assert backup.created == NOW
        assert [s.session_id for s in backup.sessions] == ["s1", "s2"]
        assert backup.sessions[0].records == sessions[0].records

    def test_ids_stay_ordered_within_one_millisecond(self, manager, sessions):
        first = manager.create_backup(sessions, now=NOW)
        second = manager.create_backup(sessions, now=NOW)
        assert first != second
        assert backup_sort_key(second) > backup_sort_key(first)
        assert manager.backup_ids() == [second, first]

    def test_ids_unique_across_managers(self, backend, sessions):
        first = BackupManager(backend, PayloadCodec()).create_backup(sessions, now=NOW)
        second = BackupManager(backend, PayloadCodec()).create_backup(sessions, now=NOW)
        assert first != second
        assert len(BackupManager(backend, PayloadCodec()).backup_ids()) == 2

    def test_refused_write_returns_none(self, sessions):
        manager = BackupManager(MemoryBackend(quota=10), PayloadCodec())
        assert manager.create_backup(sessions, now=NOW) is None
        assert manager.backup_ids() == []

    def test_snapshot_is_isolated(self, manager, sessions):
        backup_id = manager.create_backup(sessions, now=NOW)
        sessions[0].records.clear()
        loaded = manager.get_backup(backup_id)
        loaded.sessions.clear()
        assert len(manager.get_backup(backup_id).sessions[0].records) == 1


class TestListBackups:
    def test_newest_first(self, manager, sessions):
        ids = [manager.create_backup(sessions, BackupReason.PRE_DELETE, now=at(i)) for i in range(3)]
        assert [b.backup_id for b in manager.list_backups()] == list(reversed(ids))

    def test_unreadable_backup_is_skipped(self, manager, backend, sessions):
        good = manager.create_backup(sessions, now=NOW)
        backend.save(backup_key("1-0000"), "garbage")
        assert [b.backup_id for b in manager.list_backups()] == [good]
        assert manager.get_backup("1-0000") is None

    def test_delete_backup(self, manager, sessions):
        backup_id = manager.create_backup(sessions, now=NOW)
        assert manager.delete_backup(backup_id)
        assert manager.get_backup(backup_id) is None


class TestRetention:
    def test_count_cap_keeps_newest(self, manager, sessions):
        ids = [manager.create_backup(sessions, BackupReason.PERIODIC, now=at(i)) for i in range(4)]
        assert manager.backup_ids() == [ids[3], ids[2]]

    def test_safety_backups_do_not_count_against_cap(self, manager, sessions):
        safety = [
            manager.create_backup(sessions, BackupReason.PRE_DELETE, now=at(0)),
            manager.create_backup(sessions, BackupReason.PRE_CLEAR, now=at(1)),
        ]
        manual = [manager.create_backup(sessions, BackupReason.MANUAL, now=at(2 + i)) for i in range(3)]
        remaining = set(manager.backup_ids())
        assert set(safety) <= remaining
        assert manual[0] not in remaining
        assert {manual[1], manual[2]} <= remaining

    def test_age_cap_applies_to_every_reason(self, manager, sessions):
        old = NOW - timedelta(days=31)
        stale = manager.create_backup(sessions, BackupReason.PRE_DELETE, now=old)
        recent = manager.create_backup(sessions, BackupReason.PRE_DELETE, now=NOW - timedelta(days=29))
        assert manager.prune(now=NOW) == [stale]
        assert manager.backup_ids() == [recent]
