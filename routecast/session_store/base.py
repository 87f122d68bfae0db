"""Shared protocol and types for session storage backends."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from routecast.domain import RoutePrediction


class SessionStatus(str, Enum):
    """Where the session's latest run stands."""
    IDLE = "idle"
    RUNNING = "running"
    READY = "ready"
    FAILED = "failed"


class SessionRecord(BaseModel):
    """What a session remembers: the latest run and its outcome."""
    model_config = ConfigDict(extra="forbid")

    session_id: str
    status: SessionStatus = SessionStatus.IDLE
    request_id: Optional[str] = None
    prediction: Optional[RoutePrediction] = None
    error: Optional[dict[str, Any]] = None
    updated_at: AwareDatetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SessionStore(Protocol):
    """Protocol for session storage backends."""
    def create_session(self) -> str:
        """Persist a new, idle session and return its id."""

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Fetch a session by id, returning None if missing or expired."""

    def save_session(self, record: SessionRecord) -> None:
        """Replace the stored record for an existing session, ignoring missing/expired ids."""

    def delete_session(self, session_id: str) -> None:
        """Delete a session without raising if it is absent."""

    def clear(self) -> None:
        """Clear all stored sessions."""
