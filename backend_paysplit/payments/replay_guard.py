"""
Replay guard: a payment signature is accepted at most once.

mark_used is the only way a signature enters the guard and is atomic with
respect to concurrent callers: of N concurrent calls with the same signature,
exactly one returns True. Signatures are never removed except by capacity
eviction, oldest first.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import deque

from sqlalchemy.exc import IntegrityError

from backend_paysplit.database.models import UsedSignature
from backend_paysplit.database.session import session_scope
from backend_paysplit.paysplit_logging import get_logger, short

logger = get_logger(__name__)

DEFAULT_CAPACITY = 10_000
DEFAULT_EVICT_BATCH = 1_000


class ReplayGuard(ABC):
    """Set of payment signatures already accepted."""

    @abstractmethod
    def contains(self, signature: str) -> bool:
        """True if signature was already accepted."""

    @abstractmethod
    def mark_used(self, signature: str) -> bool:
        """Record signature. True if newly recorded; False if it was already present."""


def _check_limits(capacity: int, evict_batch: int) -> None:
    if capacity < 1:
        raise ValueError("capacity must be positive")
    if not 1 <= evict_batch <= capacity:
        raise ValueError("evict_batch must be between 1 and capacity")


class InMemoryReplayGuard(ReplayGuard):
    """
    Process-local guard. Set for O(1) lookup + deque for FIFO eviction.

    When the set grows past capacity, the evict_batch oldest signatures are
    dropped. Not shared across processes; use SQLReplayGuard for that.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, evict_batch: int = DEFAULT_EVICT_BATCH) -> None:
        _check_limits(capacity, evict_batch)
        self._capacity = capacity
        self._evict_batch = evict_batch
        self._seen: set[str] = set()
        self._order: deque[str] = deque()
        self._lock = threading.Lock()

    def contains(self, signature: str) -> bool:
        with self._lock:
            return signature in self._seen

    def mark_used(self, signature: str) -> bool:
        with self._lock:
            if signature in self._seen:
                return False
            self._seen.add(signature)
            self._order.append(signature)
            if len(self._seen) > self._capacity:
                self._evict_locked()
            return True

    def _evict_locked(self) -> None:
        n = min(self._evict_batch, len(self._order))
        for _ in range(n):
            self._seen.discard(self._order.popleft())
        logger.info("replay_guard_evicted", evicted=n, remaining=len(self._seen))

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)


class SQLReplayGuard(ReplayGuard):
    """
    Durable guard backed by the used_signatures table.

    The unique constraint on signature makes mark_used an atomic
    insert-or-fail across threads and processes. Survives restarts.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, evict_batch: int = DEFAULT_EVICT_BATCH) -> None:
        _check_limits(capacity, evict_batch)
        self._capacity = capacity
        self._evict_batch = evict_batch

    def contains(self, signature: str) -> bool:
        with session_scope() as session:
            row = session.query(UsedSignature.id).filter(UsedSignature.signature == signature).first()
            return row is not None

    def mark_used(self, signature: str) -> bool:
        try:
            with session_scope() as session:
                session.add(UsedSignature(signature=signature))
                session.flush()
        except IntegrityError:
            logger.info("replay_guard_duplicate", signature=short(signature))
            return False
        self._evict_if_needed()
        return True

    def _evict_if_needed(self) -> None:
        with session_scope() as session:
            count = session.query(UsedSignature.id).count()
            if count <= self._capacity:
                return
            oldest_ids = [
                row.id
                for row in session.query(UsedSignature.id)
                .order_by(UsedSignature.id)
                .limit(self._evict_batch)
                .all()
            ]
            session.query(UsedSignature).filter(UsedSignature.id.in_(oldest_ids)).delete(synchronize_session=False)
        logger.info("replay_guard_evicted", evicted=len(oldest_ids), remaining=count - len(oldest_ids))

    def __len__(self) -> int:
        with session_scope() as session:
            return session.query(UsedSignature.id).count()
