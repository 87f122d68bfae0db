"""Session manager facade over pluggable backends.

Besides storage, this module tracks the predictor currently running for each
session: starting a new run cancels the previous one, and only the newest run
may write its outcome back to the session.
"""
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

import redis

from routecast.config import settings
from routecast.domain import RoutePrediction, RouteRequest
from routecast.errors import PredictionCancelled, PredictionFailed
from routecast.predictor import Predictor
from routecast.session_store import InMemorySessionStore, RedisSessionStore, SessionRecord, SessionStatus, SessionStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="session_manager")


def _init_store() -> SessionStore:
    """Initialize the backing session store based on configuration."""
    logger.debug(f"Initializing session store: redis_url='{settings.session_redis_url or 'None'}'")
    if settings.session_redis_url:
        try:
            client = redis.Redis.from_url(settings.session_redis_url)
            client.ping()
            logger.info("Using RedisSessionStore", extra={"redis_url": settings.session_redis_url})
            return RedisSessionStore(client, ttl_seconds=settings.session_ttl_seconds)
        except redis.RedisError as exc:
            logger.warning("Falling back to InMemorySessionStore (Redis unavailable)", extra={"error": str(exc)})
    return InMemorySessionStore(ttl_seconds=settings.session_ttl_seconds)


_store: SessionStore = _init_store()
_active_runs: dict[str, Predictor] = {}
_runs_lock = threading.Lock()


def use_in_memory_store_for_tests(ttl_seconds: int = 3600) -> None:
    """Override store for tests to ensure isolation and determinism."""
    global _store
    _store = InMemorySessionStore(ttl_seconds=ttl_seconds)


def create_session() -> str:
    """Create and persist a new idle session, returning its ID."""
    return _store.create_session()


def get_session(session_id: str) -> Optional[SessionRecord]:
    """Fetch a session record by ID, refreshing TTL if applicable."""
    return _store.get_session(session_id)


def get_prediction(session_id: str) -> Optional[RoutePrediction]:
    """Return the latest completed prediction for a session, if any."""
    record = _store.get_session(session_id)
    return record.prediction if record else None


def _register(session_id: str, predictor: Predictor) -> None:
    """Make `predictor` the session's active run, cancelling any previous one."""
    with _runs_lock:
        previous = _active_runs.get(session_id)
        _active_runs[session_id] = predictor
    if previous is not None and previous is not predictor:
        logger.info("Cancelling superseded run", extra={"session_id": session_id, "request_id": previous.request_id})
        previous.cancel()


def _unregister(session_id: str, predictor: Predictor) -> None:
    with _runs_lock:
        if _active_runs.get(session_id) is predictor:
            del _active_runs[session_id]


def _save_if_active(session_id: str, predictor: Predictor, **fields) -> None:
    """Write the run's outcome only if no newer run has started since.

    The check and the write happen under `_runs_lock`, so a run registered
    in between cannot have its record overwritten by the one it replaced.
    """
    record = SessionRecord(session_id=session_id, request_id=predictor.request_id,
                           updated_at=datetime.now(timezone.utc), **fields)
    with _runs_lock:
        if _active_runs.get(session_id) is not predictor:
            logger.debug("Discarding outcome of superseded run", extra={"session_id": session_id})
            return
        _store.save_session(record)


def run_prediction(session_id: str, request: RouteRequest, predictor_factory: Callable[[], Predictor],
                   request_id: str | None = None) -> RoutePrediction:
    """Run a prediction for the session, superseding any run already in flight.

    Raises PredictionFailed or PredictionCancelled from the predictor; the
    session keeps the latest successful snapshot or the failure details.
    """
    request_id = request_id or str(uuid.uuid4())
    predictor = predictor_factory()
    predictor.request_id = request_id
    _register(session_id, predictor)
    previous = _store.get_session(session_id)
    last_good = previous.prediction if previous else None
    _save_if_active(session_id, predictor, status=SessionStatus.RUNNING, prediction=last_good)
    try:
        prediction = predictor.run(request.origin, request.destination, request.departure_time,
                                   request_id=request_id)
    except PredictionFailed as exc:
        _save_if_active(session_id, predictor, status=SessionStatus.FAILED, prediction=last_good,
                        error=exc.to_dict())
        raise
    except PredictionCancelled:
        logger.info("Run cancelled", extra={"session_id": session_id, "request_id": predictor.request_id})
        raise
    else:
        _save_if_active(session_id, predictor, status=SessionStatus.READY, prediction=prediction)
        return prediction
    finally:
        _unregister(session_id, predictor)


def cancel_run(session_id: str) -> bool:
    """Cancel the session's in-flight run; returns True if one was running."""
    with _runs_lock:
        predictor = _active_runs.pop(session_id, None)
    if predictor is None:
        return False
    predictor.cancel()
    return True


def delete_session(session_id: str) -> None:
    """Cancel any in-flight run and delete the session."""
    cancel_run(session_id)
    _store.delete_session(session_id)


def clear_sessions() -> None:
    """Cancel every run and clear the backing store (dev/testing)."""
    with _runs_lock:
        runs = list(_active_runs.values())
        _active_runs.clear()
    for predictor in runs:
        predictor.cancel()
    _store.clear()
