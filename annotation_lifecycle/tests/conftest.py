"""
Test fixtures and utilities for annotation_lifecycle tests.

Provides reusable fixtures for backends, persistence engines, the
measurement coordinator and annotation records.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from annotation_lifecycle.core.annotation import (
    AnnotationRecord,
    Bounds,
    SignalType,
    ToolKind,
    ToolSignal,
    new_record_id,
)


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: end-to-end workflow tests")


@pytest.fixture
def memory_backend():
    from annotation_lifecycle.core.persistence import MemoryBackend

    return MemoryBackend()


@pytest.fixture
def sync_config():
    """Configuration writing every change synchronously, no timers."""
    return {
        "auto_save": {"enabled": False},
        "backup": {"enabled": False, "max_backups": 5, "max_age_days": 30},
    }


@pytest.fixture
def persistence(memory_backend, sync_config):
    """AnnotationPersistence with auto-save disabled over a memory backend."""
    from annotation_lifecycle.core.persistence import AnnotationPersistence

    engine = AnnotationPersistence(sync_config, backend=memory_backend, autostart=False)
    yield engine
    engine.stop()


@pytest.fixture
def queued_persistence(memory_backend):
    """
    AnnotationPersistence with auto-save enabled but timers not started.

    Changes stay queued until a test flushes them explicitly.
    """
    from annotation_lifecycle.core.persistence import AnnotationPersistence

    engine = AnnotationPersistence(
        {"auto_save": {"enabled": True, "interval": 3600.0}},
        backend=memory_backend,
        autostart=False,
    )
    yield engine
    engine.stop()


@pytest.fixture
def coordinator():
    from annotation_lifecycle.core.measurement import MeasurementToolCoordinator

    coord = MeasurementToolCoordinator()
    yield coord
    coord.dispose()


@pytest.fixture
def mock_surface():
    """Surface mock accepting every switch unless told otherwise."""
    surface = Mock()
    surface.activate = Mock(return_value=True)
    surface.deactivate = Mock(return_value=True)
    return surface


def make_record(kind=ToolKind.TEXT, record_id=None, **fields):
    """Build a valid record of any kind with sensible geometry."""
    points = {
        ToolKind.TEXT: ((10.0, 20.0),),
        ToolKind.ARROW: ((0.0, 0.0), (5.0, 5.0)),
        ToolKind.LENGTH: ((0.0, 0.0), (3.0, 4.0)),
        ToolKind.ANGLE: ((0.0, 0.0), (1.0, 0.0), (0.0, 1.0)),
        ToolKind.ELLIPTICAL_AREA: ((0.0, 0.0), (4.0, 3.0)),
        ToolKind.RECTANGULAR_AREA: ((0.0, 0.0), (4.0, 3.0)),
    }[kind]
    defaults = {
        "points": points,
        "image_id": "image-1",
        "viewport_id": "viewport-1",
    }
    if kind.is_area:
        defaults["bounds"] = Bounds(0.0, 0.0, 4.0, 3.0)
    if kind is ToolKind.TEXT:
        defaults["label"] = "lesion"
    defaults.update(fields)
    return AnnotationRecord(id=record_id or new_record_id(kind), kind=kind, **defaults)


def make_signal(kind, points, event_type=SignalType.COMPLETED, **fields):
    fields.setdefault("viewport_id", "viewport-1")
    fields.setdefault("image_id", "image-1")
    return ToolSignal(event_type=event_type, tool=kind, points=points, **fields)


def days_ago(days: float, now=None) -> str:
    now = now or datetime.now(timezone.utc)
    return (now - timedelta(days=days)).isoformat()


class FlakyBackend:
    """
    Wraps a backend and fails ``save`` while ``failing`` is set.

    Every other call goes straight to the wrapped backend.
    """

    def __init__(self, inner):
        self.inner = inner
        self.failing = False
        self.saves = []

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def save(self, key, data):
        self.saves.append(key)
        if self.failing:
            return False
        return self.inner.save(key, data)


@pytest.fixture
def flaky_backend(memory_backend):
    return FlakyBackend(memory_backend)
