"""Interfaces and helpers for weather and routing data sources."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Callable, List, Protocol

from routecast.data_sources.open_meteo_client import WeatherHour
from routecast.domain import Coordinate, Route


class WeatherDataSource(Protocol):
    """Interface for anything that can provide hourly forecasts for a location."""

    name: str

    def fetch_hours(
        self,
        latitude: float,
        longitude: float,
        *,
        start: dt.datetime,
        end: dt.datetime,
        timeout: float = 10.0,
    ) -> List[WeatherHour]:
        """Return hourly forecasts covering [start, end], ordered by time."""
        ...


class RoutingDataSource(Protocol):
    """Interface for anything that can turn two coordinates into a timed route."""

    name: str

    def fetch_route(
        self,
        origin: Coordinate,
        destination: Coordinate,
        *,
        departure_time: dt.datetime,
    ) -> Route:
        """Return a route departing at `departure_time`; raise RouteUnavailable on failure."""
        ...


@dataclass
class CallableWeatherDataSource(WeatherDataSource):
    """Wrap a fetch callable so it can be swapped for different backends."""

    hours: Callable[..., List[WeatherHour]]
    name: str = "open_meteo"

    def fetch_hours(self, *args, **kwargs) -> List[WeatherHour]:
        """Delegate to the configured hourly-forecast callable."""
        return self.hours(*args, **kwargs)
