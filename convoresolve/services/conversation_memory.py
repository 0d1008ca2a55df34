"""
Conversation Memory Store: short-lived, per-thread state.

Each thread owns one bucket holding the last list shown, the last selection,
a pending disambiguation and a pagination continuation. Buckets expire when
they have not been written for longer than the TTL; expiry is checked lazily on
every read. All access goes through one lock held only for the read-modify-write.
"""

import dataclasses
import threading
from typing import Callable, Dict, Iterable, Optional, Tuple, TypeVar

from ..models.core import Candidate, Continuation, LastList, LastSelection, PendingDisambiguation, ThreadBucket
from ..utils.config import MemoryConfig
from ..utils.config import config as default_config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import Clock, is_expired, now_seconds

logger = get_logger(__name__)

T = TypeVar('T')

BUCKET_FIELDS = ('last_list', 'last_selection', 'pending', 'continuation')


class ConversationMemoryStore:
    """TTL-bounded key/value state per conversation thread."""

    def __init__(self, config: Optional[MemoryConfig] = None, clock: Optional[Clock] = None):
        self.config = config or default_config.memory
        self.ttl_seconds = self.config.ttl_hours * 3600
        self.clock = clock
        self._buckets: Dict[str, ThreadBucket] = {}
        self._lock = threading.Lock()

    def _now(self) -> float:
        return now_seconds(self.clock)

    def _live_bucket(self, thread_id: str, now: float) -> Optional[ThreadBucket]:
        # Caller holds the lock
        bucket = self._buckets.get(thread_id)
        if bucket is not None and is_expired(bucket.updated_at, self.ttl_seconds, now):
            del self._buckets[thread_id]
            logger.debug(f'Evicted expired memory for thread {thread_id}')
            return None
        return bucket

    def get(self, thread_id: str) -> Optional[ThreadBucket]:
        """Copy of the thread's bucket, or None when absent or expired."""
        if not thread_id:
            return None
        with self._lock:
            bucket = self._live_bucket(thread_id, self._now())
            return dataclasses.replace(bucket) if bucket else None

    def set(self, thread_id: str, **updates) -> ThreadBucket:
        """Replace the named bucket fields and refresh ``updated_at``.

        Passing ``None`` clears a field. Unnamed fields are left as they are.
        """
        unknown = set(updates) - set(BUCKET_FIELDS)
        if unknown:
            raise ValueError(f'Unknown bucket fields: {sorted(unknown)}')

        def assign(bucket: ThreadBucket) -> ThreadBucket:
            for name, value in updates.items():
                setattr(bucket, name, value)
            return dataclasses.replace(bucket)

        return self.update(thread_id, assign)

    def update(self, thread_id: str, mutate: Callable[[ThreadBucket], T]) -> T:
        """Run ``mutate`` on the live bucket under the store lock.

        A fresh bucket is created when none exists. ``updated_at`` is refreshed
        before ``mutate`` runs; whatever it returns is passed back.
        """
        if not thread_id:
            raise ValueError('thread_id is required')
        with self._lock:
            now = self._now()
            bucket = self._live_bucket(thread_id, now)
            if bucket is None:
                bucket = ThreadBucket(updated_at=now)
                self._buckets[thread_id] = bucket
            bucket.updated_at = now
            return mutate(bucket)

    def clear(self, thread_id: str) -> None:
        with self._lock:
            self._buckets.pop(thread_id, None)

    def prune(self) -> int:
        """Drop every expired bucket; returns how many were removed."""
        with self._lock:
            now = self._now()
            expired = [tid for tid, b in self._buckets.items() if is_expired(b.updated_at, self.ttl_seconds, now)]
            for thread_id in expired:
                del self._buckets[thread_id]
        if expired:
            logger.info(f'Pruned {len(expired)} expired conversation threads')
        return len(expired)

    def thread_count(self) -> int:
        with self._lock:
            return len(self._buckets)

    # Convenience accessors

    def get_pending(self, thread_id: str) -> Optional[PendingDisambiguation]:
        bucket = self.get(thread_id)
        return bucket.pending if bucket else None

    def set_pending(self, thread_id: str, pending: Optional[PendingDisambiguation]) -> None:
        self.set(thread_id, pending=pending)

    def clear_pending(self, thread_id: str) -> None:
        self.set(thread_id, pending=None)

    def get_continuation(self, thread_id: str) -> Optional[Continuation]:
        bucket = self.get(thread_id)
        return bucket.continuation if bucket else None

    def set_continuation(self, thread_id: str, continuation: Optional[Continuation]) -> None:
        """Store a continuation; one with nothing left to show is cleared instead."""
        if continuation is not None and continuation.remaining == 0:
            continuation = None
        self.set(thread_id, continuation=continuation)

    def get_last_list(self, thread_id: str) -> Optional[LastList]:
        bucket = self.get(thread_id)
        return bucket.last_list if bucket else None

    def set_last_list(self, thread_id: str, kind: str, items: Iterable[Candidate]) -> None:
        self.set(thread_id, last_list=LastList(kind=kind, items=tuple(items), created_at=self._now()))

    def get_last_selection(self, thread_id: str) -> Optional[LastSelection]:
        bucket = self.get(thread_id)
        return bucket.last_selection if bucket else None

    def set_last_selection(self, thread_id: str, kind: str, item: Candidate) -> None:
        self.set(thread_id, last_selection=LastSelection(kind=kind, item=item, created_at=self._now()))

    def take_pending(self, thread_id: str, expected: PendingDisambiguation,
                     selection: Tuple[str, Candidate]) -> bool:
        """Atomically consume ``expected`` and record the pick as last selection.

        Returns False when another request already replaced or consumed it.
        """
        kind, item = selection

        def consume(bucket: ThreadBucket) -> bool:
            if bucket.pending != expected:
                return False
            bucket.pending = None
            bucket.last_selection = LastSelection(kind=kind, item=item, created_at=self._now())
            return True

        return self.update(thread_id, consume)

    def pop_continuation(self, thread_id: str,
                         advance: Callable[[Continuation], Tuple[T, Optional[Continuation]]]) -> Optional[T]:
        """Advance the stored continuation under the lock.

        ``advance`` returns (result, next_continuation); a next continuation with
        nothing remaining clears it. Returns None when no continuation exists.
        """
        if not thread_id:
            return None
        with self._lock:
            now = self._now()
            bucket = self._live_bucket(thread_id, now)
            if bucket is None or bucket.continuation is None:
                return None
            result, following = advance(bucket.continuation)
            bucket.continuation = following if following is not None and following.remaining > 0 else None
            bucket.updated_at = now
            return result
