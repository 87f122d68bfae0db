"""Route resolution and progress lookup along a resolved route."""
from __future__ import annotations

import datetime as dt
from bisect import bisect_left
from typing import Callable, Optional

from routecast.data_sources.base import RoutingDataSource
from routecast.data_sources.geocoding import geocode
from routecast.domain import Coordinate, Endpoint, Route, RoutePoint
from routecast.errors import OutOfRangeProgress, RouteUnavailable
from routecast.geo import interpolate
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="map_service")


class MapService:
    """Resolve routes through a routing source and interpolate along them.

    `fallback` is consulted only when the primary source raises
    RouteUnavailable (typically the straight-line estimator, when estimated
    routes are allowed).
    """

    def __init__(
        self,
        routing_source: RoutingDataSource,
        *,
        fallback: Optional[RoutingDataSource] = None,
        geocoder: Callable[[str], Coordinate] = geocode,
    ) -> None:
        self.routing_source = routing_source
        self.fallback = fallback
        self.geocoder = geocoder

    def resolve_endpoint(self, endpoint: Endpoint) -> Coordinate:
        """Turn a coordinate or place name into a coordinate."""
        if isinstance(endpoint, Coordinate):
            return endpoint
        try:
            return self.geocoder(endpoint)
        except LookupError as exc:
            raise RouteUnavailable(str(exc)) from exc
        except Exception as exc:
            logger.warning("Geocoding failed", extra={"place": endpoint, "error": str(exc)})
            raise RouteUnavailable(f"could not resolve place '{endpoint}': {exc}") from exc

    def resolve_route(
        self,
        origin: Endpoint,
        destination: Endpoint,
        departure_time: dt.datetime | None = None,
    ) -> Route:
        """Resolve a timed route; raises RouteUnavailable when no route can be produced."""
        start = self.resolve_endpoint(origin)
        end = self.resolve_endpoint(destination)
        if start == end:
            raise RouteUnavailable("origin and destination are identical")

        if departure_time is None:
            departure_time = dt.datetime.now(dt.timezone.utc)
        elif departure_time.tzinfo is None:
            departure_time = departure_time.replace(tzinfo=dt.timezone.utc)

        logger.info(
            "Resolving route",
            extra={
                "origin": start.as_tuple(),
                "destination": end.as_tuple(),
                "departure": departure_time.isoformat(),
                "source": self.routing_source.name,
            },
        )
        try:
            route = self._fetch(self.routing_source, start, end, departure_time)
        except RouteUnavailable as exc:
            if self.fallback is None:
                raise
            logger.warning(
                "Primary routing failed; using estimated route",
                extra={"error": str(exc), "fallback": self.fallback.name},
            )
            route = self._fetch(self.fallback, start, end, departure_time)

        logger.info(
            "Resolved route",
            extra={
                "points": len(route.points),
                "distance_m": round(route.total_distance_m),
                "duration_s": round(route.total_duration_s),
                "estimated": route.estimated,
            },
        )
        return route

    @staticmethod
    def _fetch(source: RoutingDataSource, start: Coordinate, end: Coordinate,
               departure_time: dt.datetime) -> Route:
        """Call a routing source, folding malformed provider data into RouteUnavailable."""
        try:
            return source.fetch_route(start, end, departure_time=departure_time)
        except RouteUnavailable:
            raise
        except ValueError as exc:
            # pydantic rejects provider geometry that breaks route invariants
            raise RouteUnavailable(f"{source.name} returned an invalid route: {exc}") from exc

    @staticmethod
    def point_at_progress(
        route: Route,
        fraction: float | None = None,
        *,
        distance_m: float | None = None,
    ) -> RoutePoint:
        """Interpolate position and ETA at a fraction of the route or an absolute distance.

        Position is linear in distance between the two bounding points; time is
        linear too, i.e. constant speed within a segment.
        """
        if (fraction is None) == (distance_m is None):
            raise ValueError("pass exactly one of fraction or distance_m")

        total = route.total_distance_m
        if fraction is not None:
            if not 0.0 <= fraction <= 1.0:
                raise OutOfRangeProgress(f"fraction {fraction} outside [0, 1]")
            target = fraction * total
        else:
            if not 0.0 <= distance_m <= total:
                raise OutOfRangeProgress(f"distance {distance_m} m outside [0, {total}]")
            target = distance_m

        distances = [p.distance_m for p in route.points]
        idx = bisect_left(distances, target)
        if distances[idx] == target:
            return route.points[idx]

        lo, hi = route.points[idx - 1], route.points[idx]
        f = (target - lo.distance_m) / (hi.distance_m - lo.distance_m)
        return RoutePoint(
            coordinate=interpolate(lo.coordinate, hi.coordinate, f),
            distance_m=target,
            eta=lo.eta + (hi.eta - lo.eta) * f,
        )

    @staticmethod
    def point_at_time(route: Route, when: dt.datetime) -> RoutePoint:
        """Interpolate the position reached at `when`, assuming constant speed per segment."""
        if when < route.departure or when > route.arrival:
            raise OutOfRangeProgress(f"time {when.isoformat()} outside the route's schedule")

        for idx, point in enumerate(route.points):
            if point.eta == when:
                return point
            if point.eta > when:
                lo, hi = route.points[idx - 1], point
                f = (when - lo.eta).total_seconds() / (hi.eta - lo.eta).total_seconds()
                return RoutePoint(
                    coordinate=interpolate(lo.coordinate, hi.coordinate, f),
                    distance_m=lo.distance_m + (hi.distance_m - lo.distance_m) * f,
                    eta=when,
                )
        return route.points[-1]
