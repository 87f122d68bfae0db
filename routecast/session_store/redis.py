"""Redis-backed session store with TTL."""

import time
import uuid
from typing import Optional

from pydantic import BaseModel, ValidationError

from routecast.session_store.base import SessionRecord, SessionStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="session_store/redis_session_store")


class _Envelope(BaseModel):
    """What is written under each key: the record plus its wall-clock creation time."""
    record: SessionRecord
    created_at: float


class RedisSessionStore(SessionStore):
    """Sessions as JSON envelopes under `prefix`, expiring through Redis TTLs.

    Each access re-arms the key's TTL, capped so a session never outlives
    `max_age_seconds` from creation.
    """

    def __init__(
        self,
        client,
        ttl_seconds: int = 3600,
        max_age_seconds: int | None = None,
        prefix: str = "routecast:session:",
    ) -> None:
        logger.debug("Initializing RedisSessionStore", extra={"prefix": prefix, "ttl_s": ttl_seconds})
        self.client = client
        self.ttl = ttl_seconds
        self.max_age = max_age_seconds
        self.prefix = prefix

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}{session_id}"

    def _remaining(self, created_at: float) -> int:
        """Seconds the key may live from now; zero or less once past max age."""
        if self.max_age is None:
            return self.ttl
        return min(self.ttl, int(created_at + self.max_age - time.time()))

    def _write(self, envelope: _Envelope, ttl: int) -> None:
        self.client.setex(self._key(envelope.record.session_id), ttl, envelope.model_dump_json().encode("utf-8"))

    def _read(self, session_id: str) -> Optional[_Envelope]:
        """Load a session's envelope, dropping it if corrupt or past max age."""
        raw = self.client.get(self._key(session_id))
        if not raw:
            return None
        try:
            envelope = _Envelope.model_validate_json(raw)
        except (ValidationError, ValueError) as exc:
            logger.error("Failed to deserialize session payload", extra={"session_id": session_id, "error": str(exc)})
            return None
        if self.max_age is not None and time.time() - envelope.created_at > self.max_age:
            self.delete_session(session_id)
            return None
        return envelope

    def create_session(self) -> str:
        sid = str(uuid.uuid4())
        envelope = _Envelope(record=SessionRecord(session_id=sid), created_at=time.time())
        ttl = self._remaining(envelope.created_at)
        if ttl <= 0:
            raise RuntimeError("Session max age expired before storage")
        self._write(envelope, ttl)
        return sid

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Fetch a session record and re-arm its TTL; None if missing, corrupt or expired."""
        envelope = self._read(session_id)
        if envelope is None:
            return None
        ttl = self._remaining(envelope.created_at)
        if ttl > 0:
            self.client.expire(self._key(session_id), ttl)
        return envelope.record

    def save_session(self, record: SessionRecord) -> None:
        """Replace a live session's record; unknown or expired ids are ignored."""
        previous = self._read(record.session_id)
        if previous is None:
            return
        ttl = self._remaining(previous.created_at)
        if ttl <= 0:
            self.delete_session(record.session_id)
            return
        self._write(_Envelope(record=record, created_at=previous.created_at), ttl)

    def delete_session(self, session_id: str) -> None:
        self.client.delete(self._key(session_id))

    def clear(self) -> None:
        """Delete every key under the configured prefix."""
        for key in self.client.scan_iter(f"{self.prefix}*"):
            self.client.delete(key)
