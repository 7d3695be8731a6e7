"""
In-memory buffer of annotation mutations waiting to be persisted.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Optional

from ..annotation import AnnotationRecord


class MutationKind(Enum):
    UPSERT = "upsert"
    REMOVE = "remove"


@dataclass(frozen=True)
class Mutation:
    """A queued change, bound to the session that was current when queued."""

    kind: MutationKind
    session_id: str
    record: Optional[AnnotationRecord] = None
    record_id: Optional[str] = None

    @classmethod
    def upsert(cls, session_id: str, record: AnnotationRecord):
        return cls(MutationKind.UPSERT, session_id, record=record, record_id=record.id)

    @classmethod
    def remove(cls, session_id: str, record_id: str):
        return cls(MutationKind.REMOVE, session_id, record_id=record_id)


class ChangeQueue:
    """
    FIFO of pending mutations with a single-flight flush guard.

    Mutations leave the queue only through ``discard`` once the flush
    that applied them has been persisted, so a failed flush loses
    nothing.
    """

    def __init__(self):
        self._items: List[Mutation] = []
        self._lock = threading.Lock()
        self._flush_guard = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def extend(self, mutations: Iterable[Mutation]) -> int:
        mutations = list(mutations)
        with self._lock:
            self._items.extend(mutations)
        return len(mutations)

    def snapshot(self) -> List[Mutation]:
        with self._lock:
            return list(self._items)

    def pending_for(self, session_id: str) -> List[Mutation]:
        with self._lock:
            return [m for m in self._items if m.session_id == session_id]

    def discard(self, batch: Iterable[Mutation]) -> int:
        """Remove exactly the given mutation objects, keeping later arrivals."""
        # Identity, not equality: the same record may be queued twice
        batch_ids = {id(m) for m in batch}
        with self._lock:
            before = len(self._items)
            self._items = [m for m in self._items if id(m) not in batch_ids]
            return before - len(self._items)

    def drop_session(self, session_id: str) -> int:
        with self._lock:
            before = len(self._items)
            self._items = [m for m in self._items if m.session_id != session_id]
            return before - len(self._items)

    def clear(self) -> int:
        with self._lock:
            count = len(self._items)
            self._items = []
            return count

    @property
    def is_flushing(self) -> bool:
        return self._flush_guard.locked()

    @contextmanager
    def flushing(self, blocking: bool = False) -> Iterator[bool]:
        """
        Single-flight guard for flushes.

        Yields True when the caller owns the flush. Without ``blocking``
        it yields False at once if another flush is already running;
        with it, the caller waits for that flush to finish.
        """
        acquired = self._flush_guard.acquire(blocking=blocking)
        try:
            yield acquired
        finally:
            if acquired:
                self._flush_guard.release()
