"""SQL-backed weather data source.

Reads hourly forecasts that an ingestion job has already written to a table,
instead of calling Open-Meteo per request. Expected columns:

    latitude, longitude, forecast_time, temperature_c,
    precipitation_probability, precipitation_mm, wind_speed_ms,
    wind_gusts_ms, weather_code

The nearest stored grid point within `max_offset_degrees` is used. Works with
any SQLAlchemy engine (Postgres in production, SQLite in tests).
"""

from __future__ import annotations

import datetime as dt
from typing import List, Mapping

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from routecast.data_sources.base import WeatherDataSource
from routecast.data_sources.open_meteo_client import WeatherHour
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="database_data_source")


class DatabaseWeatherDataSource(WeatherDataSource):
    """Fetch hourly forecasts from a database table."""

    name = "database"

    def __init__(self, engine: Engine, *, table: str = "hourly_forecasts",
                 max_offset_degrees: float = 0.25) -> None:
        """Bind to a database engine and optionally override the source table."""
        self.engine = engine
        self.table = table
        self.max_offset_degrees = max_offset_degrees

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "DatabaseWeatherDataSource":
        """Create an engine from a URL and build the data source."""
        engine = create_engine(database_url, future=True)
        return cls(engine, **kwargs)

    @staticmethod
    def _as_utc(value) -> dt.datetime:
        """Return a UTC-aware datetime from a driver value (datetime or ISO string)."""
        if isinstance(value, str):
            value = dt.datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.timezone.utc)
        return value.astimezone(dt.timezone.utc)

    @staticmethod
    def _get_value(row: Mapping, *keys):
        """Return the first non-null value for the provided keys."""
        for key in keys:
            if key in row and row[key] is not None:
                return row[key]
        return None

    def _row_to_hour(self, row: Mapping) -> WeatherHour:
        """Map a forecast row into a WeatherHour."""
        code = self._get_value(row, "weather_code")
        return WeatherHour(
            time=self._as_utc(row["forecast_time"]),
            temperature_c=self._get_value(row, "temperature_c"),
            precipitation_probability=self._get_value(row, "precipitation_probability"),
            precipitation_mm=self._get_value(row, "precipitation_mm"),
            wind_speed_ms=self._get_value(row, "wind_speed_ms"),
            wind_gusts_ms=self._get_value(row, "wind_gusts_ms"),
            weather_code=int(code) if code is not None else None,
        )

    def _nearest_location(self, conn, latitude: float, longitude: float):
        """Find the closest stored grid point, or None."""
        query = text(
            f"""
            SELECT latitude, longitude
              FROM {self.table}
             WHERE latitude BETWEEN :lat_lo AND :lat_hi
               AND longitude BETWEEN :lon_lo AND :lon_hi
             ORDER BY (latitude - :lat) * (latitude - :lat)
                    + (longitude - :lon) * (longitude - :lon)
             LIMIT 1
            """
        )
        off = self.max_offset_degrees
        return conn.execute(
            query,
            {
                "lat": latitude,
                "lon": longitude,
                "lat_lo": latitude - off,
                "lat_hi": latitude + off,
                "lon_lo": longitude - off,
                "lon_hi": longitude + off,
            },
        ).mappings().first()

    def fetch_hours(
        self,
        latitude: float,
        longitude: float,
        *,
        start: dt.datetime,
        end: dt.datetime,
        timeout: float = 10.0,
    ) -> List[WeatherHour]:
        """Return stored hours bracketing [start, end] for the nearest grid point."""
        query = text(
            f"""
            SELECT forecast_time,
                   temperature_c,
                   precipitation_probability,
                   precipitation_mm,
                   wind_speed_ms,
                   wind_gusts_ms,
                   weather_code
              FROM {self.table}
             WHERE latitude = :lat AND longitude = :lon
             ORDER BY forecast_time
            """
        )
        with self.engine.connect() as conn:
            location = self._nearest_location(conn, latitude, longitude)
            if not location:
                raise LookupError(f"No stored forecasts near ({latitude}, {longitude})")
            logger.debug(
                "Reading stored forecasts",
                extra={"table": self.table, "grid_lat": location["latitude"], "grid_lon": location["longitude"]},
            )
            rows = conn.execute(
                query, {"lat": location["latitude"], "lon": location["longitude"]}
            ).mappings().all()

        # Keep one hour of slack on either side so callers can interpolate.
        lo = start.astimezone(dt.timezone.utc) - dt.timedelta(hours=1)
        hi = end.astimezone(dt.timezone.utc) + dt.timedelta(hours=1)
        hours = [self._row_to_hour(row) for row in rows]
        return [h for h in hours if lo <= h.time <= hi]
