"""In-memory session store with TTL, intended for development and tests."""

import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from routecast.session_store.base import SessionRecord, SessionStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="session_store/in_memory_session_store")


@dataclass
class _StoredSession:
    record: SessionRecord
    created_at: float
    expires_at: float


class InMemorySessionStore(SessionStore):
    """Thread-safe session map; idle sessions expire after `ttl_seconds`.

    Every read or write pushes expiry out again, but never past
    `max_age_seconds` from creation when that cap is set.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        max_age_seconds: int | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        logger.debug("Initializing InMemorySessionStore", extra={"ttl_s": ttl_seconds, "max_age_s": max_age_seconds})
        self.ttl = ttl_seconds
        self.max_age = max_age_seconds
        self._clock = clock
        self._sessions: dict[str, _StoredSession] = {}
        self._lock = threading.Lock()

    def _deadline(self, created_at: float, now: float) -> float:
        if self.max_age is None:
            return now + self.ttl
        return min(now + self.ttl, created_at + self.max_age)

    def _touch(self, session_id: str) -> Optional[_StoredSession]:
        """Look up a session (lock held), evicting it if expired or extending it if not."""
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        now = self._clock()
        if now > entry.expires_at:
            del self._sessions[session_id]
            logger.debug("Session expired", extra={"session_id": session_id})
            return None
        entry.expires_at = self._deadline(entry.created_at, now)
        return entry

    def create_session(self) -> str:
        sid = str(uuid.uuid4())
        with self._lock:
            now = self._clock()
            self._sessions[sid] = _StoredSession(
                record=SessionRecord(session_id=sid),
                created_at=now,
                expires_at=self._deadline(now, now),
            )
        return sid

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Return a private copy of the record, or None if unknown or expired."""
        with self._lock:
            entry = self._touch(session_id)
            return entry.record.model_copy(deep=True) if entry else None

    def save_session(self, record: SessionRecord) -> None:
        """Replace a live session's record; unknown or expired ids are ignored."""
        with self._lock:
            entry = self._touch(record.session_id)
            if entry is None:
                logger.debug("Ignoring save for unknown session", extra={"session_id": record.session_id})
                return
            entry.record = record.model_copy(deep=True)

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
