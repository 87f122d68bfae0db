"""Factory helpers for choosing weather and routing data sources at startup."""

from __future__ import annotations

from routecast import config
from routecast.data_sources.base import CallableWeatherDataSource, RoutingDataSource, WeatherDataSource
from routecast.data_sources.open_meteo_client import fetch_forecast_hours
from routecast.data_sources.osrm_client import OsrmRoutingSource, StraightLineRoutingSource
from utils.logging_utils import get_tagged_logger, mask_db_url

logger = get_tagged_logger(__name__, tag="data_sources/factory")


DEFAULT_WEATHER_SOURCE = "open_meteo"
DEFAULT_ROUTING_SOURCE = "osrm"


def build_weather_source(settings: config.Settings | None = None) -> WeatherDataSource:
    """Instantiate the configured weather data source."""
    settings = settings or config.settings
    source = (settings.weather_source or DEFAULT_WEATHER_SOURCE).lower()

    if source == "open_meteo":
        logger.info("Using Open-Meteo weather source")
        return CallableWeatherDataSource(hours=fetch_forecast_hours, name="open_meteo")

    if source == "database":
        from .database_source import DatabaseWeatherDataSource

        db_url = settings.weather_database_url
        if not db_url:
            raise ValueError("weather_database_url must be set for the database weather source")
        logger.info("Using database weather source", extra={"db_url": mask_db_url(db_url)})
        return DatabaseWeatherDataSource.from_url(db_url, table=settings.weather_table)

    raise ValueError(f"Unknown weather source '{source}'")


def build_routing_source(settings: config.Settings | None = None) -> RoutingDataSource:
    """Instantiate the configured routing data source."""
    settings = settings or config.settings
    source = (settings.routing_source or DEFAULT_ROUTING_SOURCE).lower()

    if source == "osrm":
        logger.info("Using OSRM routing source", extra={"base_url": settings.osrm_base_url})
        return OsrmRoutingSource(
            settings.osrm_base_url,
            profile=settings.osrm_profile,
            timeout=settings.routing_timeout_seconds,
        )

    if source == "straight_line":
        logger.info("Using straight-line routing estimator")
        return build_estimator(settings)

    raise ValueError(f"Unknown routing source '{source}'")


def build_estimator(settings: config.Settings | None = None) -> StraightLineRoutingSource:
    """Build the straight-line estimator used directly or as a fallback."""
    settings = settings or config.settings
    return StraightLineRoutingSource(
        road_factor=settings.straight_line_road_factor,
        speed_kmh=settings.straight_line_speed_kmh,
    )
