"""OSRM-backed routing source plus a straight-line estimator.

OSRM's route service returns the full geometry with per-segment distance and
duration annotations, which maps directly onto RoutePoint ETAs. The estimator
is used when no routing backend is reachable and estimates are allowed: great
circle distance times a road factor, driven at a constant average speed.
"""
from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List

import requests
from retry_requests import retry

from routecast.domain import Coordinate, Route, RoutePoint
from routecast.errors import RouteUnavailable
from routecast.geo import haversine_m
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="osrm_client")

session = retry(requests.Session(), retries=3, backoff_factor=0.2)


def fetch_route_json(
    origin: Coordinate,
    destination: Coordinate,
    *,
    base_url: str,
    profile: str = "driving",
    timeout: float = 15.0,
) -> Dict[str, Any]:
    """Call OSRM's /route endpoint and return the decoded JSON body."""
    coords = f"{origin.longitude},{origin.latitude};{destination.longitude},{destination.latitude}"
    url = f"{base_url}/route/v1/{profile}/{coords}"
    params = {
        "overview": "full",
        "geometries": "geojson",
        "annotations": "distance,duration",
        "steps": "false",
    }
    resp = session.get(url, params=params, timeout=timeout)
    # OSRM answers "NoRoute" with a 400 and a JSON body; surface the code.
    if resp.status_code == 400:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        raise RouteUnavailable(f"OSRM rejected route request: {body.get('code') or resp.status_code}")
    resp.raise_for_status()
    return resp.json()


def route_from_osrm(payload: Dict[str, Any], departure_time: dt.datetime, *, source: str = "osrm") -> Route:
    """Convert an OSRM route response into a monotonic Route."""
    if payload.get("code") != "Ok" or not payload.get("routes"):
        raise RouteUnavailable(f"OSRM returned no route: {payload.get('code')}")

    distances: List[float] = []
    durations: List[float] = []
    try:
        best = payload["routes"][0]
        coords: List[List[float]] = list(best["geometry"]["coordinates"])
        for leg in best.get("legs", []):
            annotation = leg.get("annotation") or {}
            distances.extend(annotation.get("distance", []))
            durations.extend(annotation.get("duration", []))
    except (KeyError, TypeError, IndexError, AttributeError) as exc:
        raise RouteUnavailable(f"OSRM returned a malformed route: {exc!r}") from exc

    if len(coords) < 2 or len(distances) != len(coords) - 1 or len(durations) != len(distances):
        raise RouteUnavailable("OSRM route is missing per-segment annotations")

    try:
        lon0, lat0 = coords[0]
        vertices = [(float(lon), float(lat)) for lon, lat in coords[1:]]
    except (TypeError, ValueError) as exc:
        raise RouteUnavailable(f"OSRM returned malformed coordinates: {exc!r}") from exc

    points = [RoutePoint(coordinate=Coordinate(latitude=lat0, longitude=lon0), distance_m=0.0, eta=departure_time)]
    travelled = 0.0
    elapsed = 0.0
    for (lon, lat), seg_dist, seg_dur in zip(vertices, distances, durations):
        elapsed += max(0.0, float(seg_dur))
        if seg_dist <= 0:
            # duplicate vertex; its travel time is carried onto the next point
            continue
        travelled += float(seg_dist)
        points.append(
            RoutePoint(
                coordinate=Coordinate(latitude=lat, longitude=lon),
                distance_m=travelled,
                eta=departure_time + dt.timedelta(seconds=elapsed),
            )
        )

    if len(points) < 2:
        raise RouteUnavailable("OSRM route has zero length")
    last = points[-1]
    final_eta = departure_time + dt.timedelta(seconds=elapsed)
    if final_eta > last.eta:
        points[-1] = last.model_copy(update={"eta": final_eta})

    return Route.from_points(points, source=source)


class OsrmRoutingSource:
    """Routing data source backed by an OSRM HTTP server."""

    name = "osrm"

    def __init__(self, base_url: str, *, profile: str = "driving", timeout: float = 15.0) -> None:
        """Bind to an OSRM server and routing profile."""
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.timeout = timeout

    def fetch_route(self, origin: Coordinate, destination: Coordinate, *, departure_time: dt.datetime) -> Route:
        """Fetch and normalize a route; provider failures become RouteUnavailable."""
        try:
            payload = fetch_route_json(
                origin,
                destination,
                base_url=self.base_url,
                profile=self.profile,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("OSRM request failed", extra={"error": str(exc)})
            raise RouteUnavailable(f"routing provider unavailable: {exc}") from exc
        except ValueError as exc:
            raise RouteUnavailable(f"routing provider returned invalid JSON: {exc}") from exc
        return route_from_osrm(payload, departure_time, source=self.name)


class StraightLineRoutingSource:
    """Estimate a route as a straight line with a road correction factor."""

    name = "straight_line"

    def __init__(self, *, road_factor: float = 1.25, speed_kmh: float = 70.0) -> None:
        """Configure the road correction factor and assumed average speed."""
        self.road_factor = road_factor
        self.speed_ms = speed_kmh / 3.6

    def fetch_route(self, origin: Coordinate, destination: Coordinate, *, departure_time: dt.datetime) -> Route:
        """Return a two-point estimated route."""
        distance = haversine_m(origin, destination) * self.road_factor
        if distance <= 0:
            raise RouteUnavailable("origin and destination are the same place")
        duration = distance / self.speed_ms
        logger.debug(
            "Estimated straight-line route",
            extra={"distance_m": round(distance), "duration_s": round(duration)},
        )
        return Route.from_points(
            [
                RoutePoint(coordinate=origin, distance_m=0.0, eta=departure_time),
                RoutePoint(
                    coordinate=destination,
                    distance_m=distance,
                    eta=departure_time + dt.timedelta(seconds=duration),
                ),
            ],
            source=self.name,
            estimated=True,
        )
