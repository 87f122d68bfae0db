"""Data source factories for plugging different weather and routing backends."""

from .base import CallableWeatherDataSource, RoutingDataSource, WeatherDataSource
from .factory import build_estimator, build_routing_source, build_weather_source
from .database_source import DatabaseWeatherDataSource
from .geocoding import geocode
from .open_meteo_client import WeatherHour, condition_from_wmo, fetch_forecast_hours
from .osrm_client import OsrmRoutingSource, StraightLineRoutingSource

__all__ = [
    "build_estimator",
    "build_routing_source",
    "build_weather_source",
    "CallableWeatherDataSource",
    "DatabaseWeatherDataSource",
    "OsrmRoutingSource",
    "RoutingDataSource",
    "StraightLineRoutingSource",
    "WeatherDataSource",
    "WeatherHour",
    "condition_from_wmo",
    "fetch_forecast_hours",
    "geocode",
]
