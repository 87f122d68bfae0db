"""Session storage backends."""

from .base import SessionRecord, SessionStatus, SessionStore
from .memory import InMemorySessionStore
from .redis import RedisSessionStore

__all__ = [
    "SessionRecord",
    "SessionStatus",
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
]
