"""HTTP API for route weather predictions."""

from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Response, status
from pydantic import BaseModel

from .config import settings
from .data_manager import DataManager
from .data_sources import build_estimator, build_routing_source, build_weather_source
from .domain import RoutePrediction, RouteRequest
from .errors import PredictionCancelled, PredictionFailed, RateLimited, RouteUnavailable, WeatherUnavailable
from .map_service import MapService
from .predictor import Predictor
from .session_manager import create_session, delete_session, get_session, run_prediction
from .session_store import SessionRecord
from .weather_service import WeatherService
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="routecast/api")

router = APIRouter()


def _build_map_service() -> MapService:
    """Routing source plus the straight-line fallback when estimates are allowed."""
    fallback = None
    if settings.allow_estimated_routes and settings.routing_source != "straight_line":
        fallback = build_estimator(settings)
    return MapService(build_routing_source(settings), fallback=fallback)


WEATHER_SERVICE = WeatherService(
    build_weather_source(settings),
    timeout=settings.weather_timeout_seconds,
    max_retries=settings.weather_max_retries,
    backoff_seconds=settings.weather_backoff_seconds,
)
MAP_SERVICE = _build_map_service()
PREDICTOR_OPTIONS = settings.predictor_options()
DATA_MANAGER = DataManager.from_options(PREDICTOR_OPTIONS, settings)


def build_predictor() -> Predictor:
    """Fresh predictor for one run, sharing the process-wide services and cache."""
    return Predictor(MAP_SERVICE, WEATHER_SERVICE, DATA_MANAGER, PREDICTOR_OPTIONS)


class PredictRequest(RouteRequest):
    """Route request, optionally tied to an existing session."""
    session_id: Optional[str] = None


class PredictResponse(BaseModel):
    """Completed prediction for a session."""
    session_id: str
    prediction: RoutePrediction


class HealthResponse(BaseModel):
    """Liveness plus the configured providers and cache counters."""
    status: str
    weather_source: str
    routing_source: str
    cache: dict[str, Any]


def _status_for(exc: PredictionFailed) -> int:
    """Map a failed run to the HTTP status the UI should see; internal faults are 500."""
    cause = exc.cause
    if isinstance(cause, RateLimited):
        return status.HTTP_429_TOO_MANY_REQUESTS
    if isinstance(cause, (RouteUnavailable, WeatherUnavailable)):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.post("/routes/predict", response_model=PredictResponse)
def predict_route(req: PredictRequest):
    """Resolve the route, annotate it with forecasts and return the risk segments."""
    if req.session_id is not None:
        if get_session(req.session_id) is None:
            raise HTTPException(status_code=404, detail="Unknown session ID")
        session_id = req.session_id
    else:
        session_id = create_session()

    request = RouteRequest(origin=req.origin, destination=req.destination, departure_time=req.departure_time)
    logger.info("Prediction requested", extra={"session_id": session_id})
    try:
        prediction = run_prediction(session_id, request, build_predictor)
    except PredictionFailed as exc:
        code = _status_for(exc)
        headers = None
        if isinstance(exc.cause, RateLimited) and exc.cause.retry_after is not None:
            headers = {"Retry-After": str(int(exc.cause.retry_after))}
        logger.warning(
            "Prediction failed",
            extra={"session_id": session_id, "status": code, "step": exc.step, "error": str(exc.cause)},
        )
        raise HTTPException(status_code=code, detail={"session_id": session_id, **exc.to_dict()}, headers=headers)
    except PredictionCancelled as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"session_id": session_id, "error": "PredictionCancelled", "message": str(exc)},
        )

    return PredictResponse(session_id=session_id, prediction=prediction)


@router.get("/sessions/{session_id}/prediction", response_model=SessionRecord)
def get_session_prediction(session_id: str):
    """Return the session's latest run status and prediction snapshot."""
    record = get_session(session_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Unknown session ID")
    return record


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def end_session(session_id: str):
    """Cancel any in-flight run and forget the session."""
    delete_session(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/health", response_model=HealthResponse)
def health():
    """Report liveness and cache counters."""
    return HealthResponse(
        status="ok",
        weather_source=WEATHER_SERVICE.source_name,
        routing_source=MAP_SERVICE.routing_source.name,
        cache=DATA_MANAGER.stats(),
    )
