"""Prediction pipeline as an explicit state machine.

A run moves idle -> resolving -> sampling -> annotating -> ready. Any failure
moves it to error and surfaces as PredictionFailed naming the step; a cancel
request moves it to cancelled. Each step is a public method so it can be
exercised on its own; `run` drives them in order.
"""

from __future__ import annotations

import datetime as dt
import threading
import uuid
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from typing import List, Sequence, Tuple

from routecast import analysis
from routecast.data_manager import DataManager
from routecast.domain import (
    Endpoint,
    ForecastSample,
    PredictorOptions,
    PredictorState,
    RiskSegment,
    Route,
    RoutePoint,
    RoutePrediction,
    RouteSummary,
)
from routecast.errors import PredictionCancelled, PredictionFailed
from routecast.map_service import MapService
from routecast.weather_service import WeatherService
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="predictor")

# How often a blocked join re-checks the cancel flag.
_CANCEL_POLL_SECONDS = 0.05


class Predictor:
    """Run one route through routing, sampling, weather lookups and analysis."""

    def __init__(
        self,
        map_service: MapService,
        weather_service: WeatherService,
        data_manager: DataManager,
        options: PredictorOptions | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.map_service = map_service
        self.weather_service = weather_service
        self.data_manager = data_manager
        self.options = options or PredictorOptions()
        self._cancel = cancel_event or threading.Event()
        self.request_id: str | None = None
        self._reset()

    def _reset(self) -> None:
        """Discard everything from a previous run."""
        self.state = PredictorState.IDLE
        self.route: Route | None = None
        self.points: List[RoutePoint] = []
        self.samples: List[ForecastSample] = []
        self.segments: List[RiskSegment] = []
        self.summary: RouteSummary | None = None
        self.prediction: RoutePrediction | None = None
        self.error: BaseException | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Ask the current run to stop at the next checkpoint."""
        self._cancel.set()

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise PredictionCancelled(f"run {self.request_id} was cancelled")

    def _transition(self, state: PredictorState) -> None:
        logger.debug(
            "State change",
            extra={"request_id": self.request_id, "from": self.state.value, "to": state.value},
        )
        self.state = state

    @contextmanager
    def _step(self, step: str, state: PredictorState):
        """Enter `state`, mapping failures to the error/cancelled states."""
        try:
            self._check_cancelled()
            if self.state != state:
                self._transition(state)
            yield
            self._check_cancelled()
        except PredictionCancelled:
            self._transition(PredictorState.CANCELLED)
            logger.info("Prediction cancelled", extra={"request_id": self.request_id, "step": step})
            raise
        except Exception as exc:
            self.error = exc
            self._transition(PredictorState.ERROR)
            logger.error(
                "Prediction step failed",
                extra={"request_id": self.request_id, "step": step, "error": type(exc).__name__, "detail": str(exc)},
            )
            raise PredictionFailed(step, exc) from exc

    # Steps

    def resolve(self, origin: Endpoint, destination: Endpoint,
                departure_time: dt.datetime | None = None) -> Route:
        """Resolve the timed route between the endpoints."""
        with self._step("resolving", PredictorState.RESOLVING):
            self.route = self.map_service.resolve_route(origin, destination, departure_time)
        return self.route

    def sample(self, route: Route | None = None) -> List[RoutePoint]:
        """Pick sample points along the route; first and last points always included."""
        with self._step("sampling", PredictorState.SAMPLING):
            route = route or self.route
            if route is None:
                raise ValueError("no route to sample; call resolve() first")
            self.route = route
            if self.options.sample_interval_seconds and route.total_duration_s > 0:
                self.points = self._sample_by_time(route, self.options.sample_interval_seconds)
            else:
                self.points = self._sample_by_distance(route, self.options.sample_interval_meters)
            logger.debug("Sampled route", extra={"request_id": self.request_id, "samples": len(self.points)})
        return self.points

    def _sample_by_distance(self, route: Route, interval: float) -> List[RoutePoint]:
        total = route.total_distance_m
        points = []
        k = 0
        while k * interval < total:
            points.append(self.map_service.point_at_progress(route, distance_m=k * interval))
            k += 1
        points.append(route.points[-1])
        return points

    def _sample_by_time(self, route: Route, interval: float) -> List[RoutePoint]:
        points = []
        k = 0
        step = dt.timedelta(seconds=interval)
        while route.departure + k * step < route.arrival:
            points.append(self.map_service.point_at_time(route, route.departure + k * step))
            k += 1
        points.append(route.points[-1])
        return points

    def _lookup(self, point: RoutePoint) -> ForecastSample:
        self._check_cancelled()
        return self.data_manager.get_or_fetch(point.coordinate, point.eta, self.weather_service.get_forecast)

    def annotate(self, points: Sequence[RoutePoint] | None = None) -> List[ForecastSample]:
        """Fetch a forecast per sample point, concurrently, joined back in route order."""
        with self._step("annotating", PredictorState.ANNOTATING):
            points = list(points if points is not None else self.points)
            if not points:
                raise ValueError("no sample points; call sample() first")
            self.points = points
            self.samples = self._fetch_all(points)
        return self.samples

    def _fetch_all(self, points: Sequence[RoutePoint]) -> List[ForecastSample]:
        executor = ThreadPoolExecutor(
            max_workers=self.options.max_concurrent_fetches, thread_name_prefix="forecast-lookup"
        )
        futures: List[Future] = []
        try:
            futures = [executor.submit(self._lookup, point) for point in points]
            pending = set(futures)
            while pending:
                self._check_cancelled()
                done, pending = wait(pending, timeout=_CANCEL_POLL_SECONDS, return_when=FIRST_EXCEPTION)
                failed = [f for f in futures if f in done and f.exception() is not None]
                if failed:
                    raise failed[0].exception()
            return [f.result() for f in futures]
        finally:
            # Lookups already running finish in the background and still land in the cache.
            for f in futures:
                f.cancel()
            executor.shutdown(wait=False, cancel_futures=True)

    def analyze(self, samples: Sequence[ForecastSample] | None = None,
                points: Sequence[RoutePoint] | None = None) -> Tuple[List[RiskSegment], RouteSummary]:
        """Segment the samples by risk and build the route summary."""
        with self._step("analyzing", PredictorState.ANNOTATING):
            samples = list(samples if samples is not None else self.samples)
            points = list(points if points is not None else self.points)
            distances = [p.distance_m for p in points] if len(points) == len(samples) else None
            thresholds = self.options.risk_thresholds
            self.segments = analysis.summarize(samples, distances, thresholds=thresholds)
            self.summary = analysis.build_route_summary(self.segments, thresholds=thresholds)
        self._transition(PredictorState.READY)
        return self.segments, self.summary

    def run(self, origin: Endpoint, destination: Endpoint, departure_time: dt.datetime | None = None,
            *, request_id: str | None = None) -> RoutePrediction:
        """Drive every step and return the read-only prediction snapshot."""
        self._reset()
        self.request_id = request_id or str(uuid.uuid4())
        logger.info("Starting prediction", extra={"request_id": self.request_id})

        route = self.resolve(origin, destination, departure_time)
        points = self.sample(route)
        samples = self.annotate(points)
        segments, summary = self.analyze(samples, points)

        self.prediction = RoutePrediction(
            request_id=self.request_id,
            route=route,
            samples=tuple(samples),
            segments=tuple(segments),
            summary=summary,
            generated_at=dt.datetime.now(dt.timezone.utc),
        )
        logger.info(
            "Prediction ready",
            extra={
                "request_id": self.request_id,
                "samples": len(samples),
                "segments": len(segments),
                "overall_risk": summary.overall_risk.value,
            },
        )
        return self.prediction
