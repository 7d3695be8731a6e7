"""
Session store: cached sessions backed by a storage backend.
"""

import logging
import threading
from typing import Dict, List, Optional, Set

from ..annotation import PersistenceSession
from .backends import SESSION_PREFIX, StorageBackend
from .codec import PayloadCodec

logger = logging.getLogger(__name__)


def session_key(session_id: str) -> str:
    return f"{SESSION_PREFIX}{session_id}"


class SessionStore:
    """
    Owns the session cache and delegates durable reads/writes.

    Cached sessions are never mutated in place: a change builds a new
    session object which replaces the cached one in a single assignment
    under the lock once the backend accepted it. Sessions whose cached
    state is not known to be durable are tracked as dirty.
    """

    def __init__(self, backend: StorageBackend, codec: PayloadCodec):
        self.backend = backend
        self.codec = codec
        self._cache: Dict[str, PersistenceSession] = {}
        self._dirty: Set[str] = set()
        self._lock = threading.RLock()

    def get(self, session_id: str) -> Optional[PersistenceSession]:
        """Cached session, without touching the backend."""
        with self._lock:
            return self._cache.get(session_id)

    def put(self, session: PersistenceSession, dirty: bool = False):
        with self._lock:
            self._cache[session.session_id] = session
            if dirty:
                self._dirty.add(session.session_id)

    def load(self, session_id: str) -> Optional[PersistenceSession]:
        """Cache first, then the backend; None when absent or unreadable."""
        cached = self.get(session_id)
        if cached is not None:
            return cached

        payload = self.backend.load(session_key(session_id))
        if payload is None:
            return None
        try:
            session = PersistenceSession.from_dict(self.codec.decode(payload))
        except ValueError as e:
            logger.error(f"Stored session {session_id} is unreadable: {e}")
            return None

        with self._lock:
            # A concurrent writer may have cached a newer object meanwhile
            return self._cache.setdefault(session_id, session)

    def encode(self, session: PersistenceSession) -> str:
        return self.codec.encode(session.to_dict())

    def save(self, session: PersistenceSession) -> bool:
        """
        Persist a whole session.

        On success the cache holds ``session`` and it is no longer dirty.
        On failure the cache is left untouched and the session id is
        flagged dirty if it is cached.
        """
        session.refresh_summary()
        ok = self.backend.save(session_key(session.session_id), self.encode(session))
        with self._lock:
            if ok:
                self._cache[session.session_id] = session
                self._dirty.discard(session.session_id)
            elif session.session_id in self._cache:
                self._dirty.add(session.session_id)
        if not ok:
            logger.warning(f"Session {session.session_id} could not be saved, will retry")
        return ok

    def delete(self, session_id: str) -> bool:
        if not self.backend.delete(session_key(session_id)):
            return False
        self.forget(session_id)
        return True

    def forget(self, session_id: str):
        """Drop a session from the cache only."""
        with self._lock:
            self._cache.pop(session_id, None)
            self._dirty.discard(session_id)

    def exists(self, session_id: str) -> bool:
        if self.get(session_id) is not None:
            return True
        return self.backend.exists(session_key(session_id))

    def stored_ids(self) -> List[str]:
        return [
            key[len(SESSION_PREFIX):]
            for key in self.backend.list()
            if key.startswith(SESSION_PREFIX)
        ]

    def session_ids(self) -> List[str]:
        """Ids of cached and stored sessions, cached ones first."""
        with self._lock:
            ids = list(self._cache)
        for session_id in self.stored_ids():
            if session_id not in ids:
                ids.append(session_id)
        return ids

    def all_sessions(self) -> List[PersistenceSession]:
        sessions = []
        for session_id in self.session_ids():
            session = self.load(session_id)
            if session is not None:
                sessions.append(session)
        return sessions

    def mark_dirty(self, session_id: str):
        with self._lock:
            self._dirty.add(session_id)

    def is_dirty(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._dirty

    def dirty_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._dirty)

    def clear_cache(self):
        with self._lock:
            self._cache.clear()
            self._dirty.clear()
