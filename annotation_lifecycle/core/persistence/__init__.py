"""
Core persistence module - sessions, change queue, backups and storage.

This module provides the annotation persistence facade and the pieces
it is built from, independent of any UI.
"""

from .backends import (
    BackendKind,
    DatabaseConfig,
    DurableConfig,
    FileSystemBackend,
    HttpBackend,
    MemoryBackend,
    RemoteConfig,
    SQLiteBackend,
    StorageBackend,
    VolatileConfig,
    create_backend,
)
from .backup_manager import Backup, BackupManager, BackupReason
from .change_queue import ChangeQueue, Mutation, MutationKind
from .codec import PayloadCodec
from .config import (
    get_default_persistence_config,
    load_persistence_config,
    resolve_backend_spec,
)
from .formats import ExportFormat
from .manager import AnnotationPersistence
from .outcomes import (
    ErrorKind,
    FlushResult,
    ImportResult,
    PersistenceStats,
    SaveOutcome,
    StorageStats,
)

__all__ = [
    "AnnotationPersistence",
    "BackendKind",
    "Backup",
    "BackupManager",
    "BackupReason",
    "ChangeQueue",
    "DatabaseConfig",
    "DurableConfig",
    "ErrorKind",
    "ExportFormat",
    "FileSystemBackend",
    "FlushResult",
    "HttpBackend",
    "ImportResult",
    "MemoryBackend",
    "Mutation",
    "MutationKind",
    "PayloadCodec",
    "PersistenceStats",
    "RemoteConfig",
    "SQLiteBackend",
    "SaveOutcome",
    "StorageBackend",
    "StorageStats",
    "VolatileConfig",
    "create_backend",
    "get_default_persistence_config",
    "load_persistence_config",
    "resolve_backend_spec",
]
