"""
End-to-end tests for the complete annotation workflow.

Tests the full pipeline from tool signals through the coordinator and
the persistence facade down to durable storage, and back after a
restart.
"""

import json

import pytest

from annotation_lifecycle.core.annotation import ToolKind
from annotation_lifecycle.core.measurement import MeasurementToolCoordinator
from annotation_lifecycle.core.persistence import AnnotationPersistence, BackupReason
from annotation_lifecycle.interfaces import PersistenceBridge
from annotation_lifecycle.tests.conftest import make_signal

pytestmark = pytest.mark.integration


@pytest.fixture(params=["durable", "database"])
def config(request, tmp_path):
    return {
        "backend": {
            "kind": request.param,
            "storage_dir": str(tmp_path / "store"),
            "db_path": str(tmp_path / "annotations.db"),
        },
        "auto_save": {"enabled": True, "interval": 3600.0},
        "backup": {"enabled": False},
    }


def draw_study(coordinator):
    signals = coordinator.signals
    signals.emit(make_signal(ToolKind.LENGTH, [(0, 0), (30, 40)], record_id="len-1"))
    signals.emit(make_signal(ToolKind.ANGLE, [(10, 0), (0, 0), (0, 10)], record_id="ang-1"))
    signals.emit(make_signal(ToolKind.ELLIPTICAL_AREA, [(0, 0), (20, 10)], record_id="ell-1"))
    signals.emit(make_signal(ToolKind.TEXT, [(5, 5)], record_id="txt-1", text="follow up"))


class TestCompleteWorkflow:
    """Test the complete workflow from drawing to reload."""

    def test_measurements_survive_restart(self, config):
        persistence = AnnotationPersistence(config, autostart=False)
        coordinator = MeasurementToolCoordinator()
        bridge = PersistenceBridge(coordinator, persistence)

        session_id = persistence.create_session({"study_id": "st-1", "image_id": "image-1"})
        coordinator.activate_tool("length")
        draw_study(coordinator)
        assert persistence.load_annotations() == []

        persistence.dispose()
        bridge.detach()
        coordinator.dispose()

        reopened = AnnotationPersistence(config, autostart=False)
        session = reopened.load_session(session_id)
        assert [r.id for r in session.records] == ["len-1", "ang-1", "ell-1", "txt-1"]
        assert session.records[0].value == 50.0
        assert session.records[1].value == 90.0
        assert session.summary == {
            "record_count": 4,
            "tool_kinds": ["length", "angle", "elliptical-area", "text"],
        }
        reopened.dispose()

    def test_edit_delete_and_restore(self, config):
        persistence = AnnotationPersistence(config, autostart=False)
        coordinator = MeasurementToolCoordinator()
        bridge = PersistenceBridge(coordinator, persistence)

        session_id = persistence.create_session()
        draw_study(coordinator)
        persistence.force_save()

        coordinator.clear_measurements_by_kind("angle")
        persistence.force_save()
        assert [r.id for r in persistence.load_annotations()] == ["len-1", "ell-1", "txt-1"]

        assert persistence.delete_session(session_id)
        backup = persistence.list_backups()[0]
        assert backup.reason is BackupReason.PRE_DELETE

        assert persistence.restore_backup(backup.backup_id)
        assert len(persistence.load_annotations(session_id)) == 3

        bridge.detach()
        coordinator.dispose()
        persistence.dispose()

    def test_export_and_import_between_stores(self, config, tmp_path):
        source = AnnotationPersistence(config, autostart=False)
        coordinator = MeasurementToolCoordinator()
        bridge = PersistenceBridge(coordinator, source)
        session_id = source.create_session({"patient_id": "p-1"})
        draw_study(coordinator)
        exported = source.export_session(session_id)
        bridge.detach()
        coordinator.dispose()
        source.dispose()

        target = AnnotationPersistence(
            {"backend": {"kind": "volatile"}, "auto_save": {"enabled": False}},
            autostart=False,
        )
        result = target.import_session(exported)
        assert result.imported == 4
        assert result.session_id != session_id
        assert target.load_session(result.session_id).metadata == {"patient_id": "p-1"}
        assert json.loads(target.export_session(result.session_id))["records"][0]["id"] == "len-1"
        target.dispose()
