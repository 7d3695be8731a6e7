"""
Storage backends.

Every backend stores opaque string payloads under namespaced keys
(``session-<id>``, ``backup-<id>``) and exposes the same contract. The
public methods never raise: failures are logged and reported as
``False``, ``None`` or an empty list so callers can degrade to
"dirty, retry later".
"""

import logging
import os
import re
import sqlite3
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import requests

from .outcomes import StorageStats

logger = logging.getLogger(__name__)

SESSION_PREFIX = "session-"
BACKUP_PREFIX = "backup-"

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class BackendKind(Enum):
    """Closed set of storage backends."""

    DURABLE = "durable"
    VOLATILE = "volatile"
    DATABASE = "database"
    REMOTE = "remote"


@dataclass(frozen=True)
class DurableConfig:
    root: Path
    quota: int = 0


@dataclass(frozen=True)
class VolatileConfig:
    quota: int = 0


@dataclass(frozen=True)
class DatabaseConfig:
    path: Path
    table: str = "annotation_store"
    quota: int = 0


@dataclass(frozen=True)
class RemoteConfig:
    endpoint: str
    api_key: Optional[str] = None
    timeout: float = 10.0


BackendSpec = Union[DurableConfig, VolatileConfig, DatabaseConfig, RemoteConfig]


class QuotaExceededError(Exception):
    """Raised inside a backend when a write would exceed its quota."""


def validate_key(key: str) -> str:
    if not isinstance(key, str) or not _KEY_PATTERN.match(key):
        raise ValueError(f"Invalid storage key: {key!r}")
    return key


def entry_size(key: str, data: str) -> int:
    """Bytes an entry takes, counted as UTF-8 like the stored files."""
    return len(key.encode("utf-8")) + len(data.encode("utf-8"))


class StorageBackend:
    """
    Base class for storage backends.

    Subclasses implement the underscore methods and may raise; the
    public methods wrap them so no exception reaches the caller.
    """

    kind: BackendKind

    def _guarded(self, operation: str, key: Optional[str], default, fn: Callable):
        try:
            return fn()
        except QuotaExceededError as e:
            logger.warning(f"{self.kind.value} backend refused {operation}: {e}")
        except Exception:
            target = f" {key}" if key else ""
            logger.exception(f"{self.kind.value} backend failed to {operation}{target}")
        return default

    def save(self, key: str, data: str) -> bool:
        return bool(
            self._guarded("save", key, False, lambda: self._save(validate_key(key), data))
        )

    def load(self, key: str) -> Optional[str]:
        return self._guarded("load", key, None, lambda: self._load(validate_key(key)))

    def delete(self, key: str) -> bool:
        return bool(
            self._guarded("delete", key, False, lambda: self._delete(validate_key(key)))
        )

    def exists(self, key: str) -> bool:
        return bool(
            self._guarded("check", key, False, lambda: self._exists(validate_key(key)))
        )

    def list(self) -> List[str]:
        return self._guarded("list keys", None, [], self._list)

    def clear(self) -> bool:
        return bool(self._guarded("clear", None, False, self._clear))

    def get_stats(self) -> StorageStats:
        return self._guarded("report stats", None, StorageStats(), self._get_stats)

    def close(self):
        """Release held resources; the backend may be reused afterwards."""

    def _save(self, key: str, data: str) -> bool:
        raise NotImplementedError

    def _load(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def _delete(self, key: str) -> bool:
        raise NotImplementedError

    def _exists(self, key: str) -> bool:
        return self._load(key) is not None

    def _list(self) -> List[str]:
        raise NotImplementedError

    def _clear(self) -> bool:
        raise NotImplementedError

    def _get_stats(self) -> StorageStats:
        raise NotImplementedError


class FileSystemBackend(StorageBackend):
    """
    One file per key inside a directory.

    Writes go to a temporary file in the same directory and are moved
    into place with ``os.replace``, so a crash never leaves a partially
    written entry behind.
    """

    kind = BackendKind.DURABLE
    suffix = ".payload"

    def __init__(self, root: Path, quota: int = 0):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.quota = quota
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        return self.root / f"{key}{self.suffix}"

    def _entry_sizes(self) -> Dict[str, int]:
        return {
            path.name[: -len(self.suffix)]: path.stat().st_size
            for path in self.root.glob(f"*{self.suffix}")
        }

    def _save(self, key, data):
        with self._lock:
            if self.quota:
                sizes = self._entry_sizes()
                used = sum(entry_size(k, "") + size for k, size in sizes.items())
                if key in sizes:
                    used -= entry_size(key, "") + sizes[key]
                if used + entry_size(key, data) > self.quota:
                    raise QuotaExceededError(
                        f"writing {key} needs {entry_size(key, data)} of "
                        f"{self.quota - used} remaining"
                    )

            fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=".tmp-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self._path(key))
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        return True

    def _load(self, key):
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _delete(self, key):
        with self._lock:
            self._path(key).unlink(missing_ok=True)
        return True

    def _exists(self, key):
        return self._path(key).exists()

    def _list(self):
        return sorted(self._entry_sizes())

    def _clear(self):
        with self._lock:
            for path in self.root.glob(f"*{self.suffix}"):
                path.unlink()
        return True

    def _get_stats(self):
        sizes = self._entry_sizes()
        used = sum(entry_size(k, "") + size for k, size in sizes.items())
        return StorageStats(used=used, limit=self.quota)


class MemoryBackend(StorageBackend):
    """Process-local store; contents are lost when the process exits."""

    kind = BackendKind.VOLATILE

    def __init__(self, quota: int = 0):
        self.quota = quota
        self._entries: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _used(self) -> int:
        return sum(entry_size(k, v) for k, v in self._entries.items())

    def _save(self, key, data):
        with self._lock:
            if self.quota:
                used = self._used()
                if key in self._entries:
                    used -= entry_size(key, self._entries[key])
                if used + entry_size(key, data) > self.quota:
                    raise QuotaExceededError(
                        f"writing {key} needs {entry_size(key, data)} of "
                        f"{self.quota - used} remaining"
                    )
            self._entries[key] = data
        return True

    def _load(self, key):
        with self._lock:
            return self._entries.get(key)

    def _delete(self, key):
        with self._lock:
            self._entries.pop(key, None)
        return True

    def _exists(self, key):
        with self._lock:
            return key in self._entries

    def _list(self):
        with self._lock:
            return sorted(self._entries)

    def _clear(self):
        with self._lock:
            self._entries.clear()
        return True

    def _get_stats(self):
        with self._lock:
            return StorageStats(used=self._used(), limit=self.quota)


class SQLiteBackend(StorageBackend):
    """
    Transactional key/value table in a SQLite database.

    The connection is opened lazily and shared between threads; a lock
    serializes access to it.
    """

    kind = BackendKind.DATABASE

    def __init__(self, path: Path, table: str = "annotation_store", quota: int = 0):
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", table):
            raise ValueError(f"Invalid table name: {table!r}")
        self.path = Path(path)
        self.table = table
        self.quota = quota
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            if str(self.path) != ":memory:":
                self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            with self._conn:
                self._conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {self.table} ("
                    "key TEXT PRIMARY KEY, "
                    "value TEXT NOT NULL)"
                )
        return self._conn

    def close(self):
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                finally:
                    self._conn = None

    def _used(self, exclude: Optional[str] = None) -> int:
        row = self.conn.execute(
            "SELECT COALESCE(SUM("
            "LENGTH(CAST(key AS BLOB)) + LENGTH(CAST(value AS BLOB))), 0) AS used "
            f"FROM {self.table} WHERE key IS NOT ?",
            (exclude,),
        ).fetchone()
        return int(row["used"])

    def _save(self, key, data):
        with self._lock, self.conn:
            if self.quota:
                used = self._used(exclude=key)
                if used + entry_size(key, data) > self.quota:
                    raise QuotaExceededError(
                        f"writing {key} needs {entry_size(key, data)} of "
                        f"{self.quota - used} remaining"
                    )
            self.conn.execute(
                f"INSERT OR REPLACE INTO {self.table} (key, value) VALUES (?, ?)",
                (key, data),
            )
        return True

    def _load(self, key):
        with self._lock:
            row = self.conn.execute(
                f"SELECT value FROM {self.table} WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row is not None else None

    def _delete(self, key):
        with self._lock, self.conn:
            self.conn.execute(f"DELETE FROM {self.table} WHERE key = ?", (key,))
        return True

    def _exists(self, key):
        with self._lock:
            row = self.conn.execute(
                f"SELECT 1 FROM {self.table} WHERE key = ?", (key,)
            ).fetchone()
        return row is not None

    def _list(self):
        with self._lock:
            rows = self.conn.execute(
                f"SELECT key FROM {self.table} ORDER BY key"
            ).fetchall()
        return [row["key"] for row in rows]

    def _clear(self):
        with self._lock, self.conn:
            self.conn.execute(f"DELETE FROM {self.table}")
        return True

    def _get_stats(self):
        with self._lock:
            return StorageStats(used=self._used(), limit=self.quota)


class HttpBackend(StorageBackend):
    """
    Remote key/value store reached over HTTP.

    Layout: ``PUT/GET/DELETE/HEAD {endpoint}/{key}`` for entries,
    ``GET {endpoint}`` lists keys, ``DELETE {endpoint}`` clears, and
    ``GET {endpoint}/stats`` reports usage. A request that times out
    counts as a failed call.
    """

    kind = BackendKind.REMOTE

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()
        self.http.headers.update({"Content-Type": "application/json"})
        if api_key:
            self.http.headers.update({"Authorization": f"Bearer {api_key}"})

    def _url(self, key: Optional[str] = None) -> str:
        return f"{self.endpoint}/{key}" if key else self.endpoint

    def close(self):
        self.http.close()

    def _save(self, key, data):
        response = self.http.put(self._url(key), json=data, timeout=self.timeout)
        if not response.ok:
            logger.warning(f"Remote store answered {response.status_code} saving {key}")
        return response.ok

    def _load(self, key):
        response = self.http.get(self._url(key), timeout=self.timeout)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        payload = response.json()
        if payload is None:
            return None
        if not isinstance(payload, str):
            raise ValueError(f"Remote store returned a non-string payload for {key}")
        return payload

    def _delete(self, key):
        response = self.http.delete(self._url(key), timeout=self.timeout)
        return response.ok or response.status_code == 404

    def _exists(self, key):
        response = self.http.head(self._url(key), timeout=self.timeout)
        return response.ok

    def _list(self):
        response = self.http.get(self._url(), timeout=self.timeout)
        response.raise_for_status()
        return list(response.json().get("keys") or [])

    def _clear(self):
        response = self.http.delete(self._url(), timeout=self.timeout)
        return response.ok

    def _get_stats(self):
        response = self.http.get(self._url("stats"), timeout=self.timeout)
        response.raise_for_status()
        data = response.json()
        return StorageStats(
            used=int(data.get("used") or 0), limit=int(data.get("limit") or 0)
        )


def create_backend(spec: BackendSpec) -> StorageBackend:
    """Build the backend described by a resolved configuration variant."""
    if isinstance(spec, DurableConfig):
        return FileSystemBackend(spec.root, quota=spec.quota)
    if isinstance(spec, VolatileConfig):
        return MemoryBackend(quota=spec.quota)
    if isinstance(spec, DatabaseConfig):
        return SQLiteBackend(spec.path, table=spec.table, quota=spec.quota)
    if isinstance(spec, RemoteConfig):
        return HttpBackend(spec.endpoint, api_key=spec.api_key, timeout=spec.timeout)
    raise TypeError(f"Unsupported backend configuration: {spec!r}")
